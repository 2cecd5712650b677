import asyncio
import json

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from mangaverse import bypass, settings
from mangaverse.bypass import BODY_TEXT_JS, BypassResolver, backoff_delay, looks_like_challenge
from mangaverse.errors import BypassExhausted
from mangaverse.libs.stealth import STEALTH_SCRIPTS, apply_stealth
from mangaverse.models import BypassResult

PROXY = "http://proxy.test/v1"
TARGET = "https://s.example/truyen-tranh/abc"


def proxy_client(post_responses, log):
    """Mock FlareSolverr: the health check always answers, POSTs pop canned replies in order."""
    replies = list(post_responses)

    def handler(request: httpx.Request) -> httpx.Response:
        log.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"msg": "FlareSolverr is ready!"})
        reply = replies.pop(0) if replies else httpx.Response(500, json={"status": "error"})
        if isinstance(reply, Exception):
            raise reply
        return reply

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ok_reply(html="<html><h1>ok</h1></html>"):
    return httpx.Response(
        200,
        json={
            "status": "ok",
            "solution": {
                "url": TARGET,
                "response": html,
                "cookies": [{"name": "cf_clearance", "value": "abc"}, {"name": "sid", "value": "1"}],
                "userAgent": "ProxyUA/1.0",
            },
        },
    )


def make_resolver(client, **kwargs):
    kwargs.setdefault("backoff_base", 0)
    return BypassResolver(PROXY, client=client, **kwargs)


def test_backoff_delay_doubles_up_to_cap():
    assert [backoff_delay(n, 2.0, 10.0) for n in range(1, 5)] == [2.0, 4.0, 8.0, 10.0]


def test_looks_like_challenge():
    assert looks_like_challenge("Just a moment...", "")
    assert looks_like_challenge("Abc", "Checking your browser before accessing")
    assert not looks_like_challenge("Abc Adventures", "Chapter 1")


def test_proxy_success_returns_session():
    log = []
    resolver = make_resolver(proxy_client([ok_reply()], log))

    result = asyncio.run(resolver.solve(TARGET))

    assert result.strategy == "proxy"
    assert result.html == "<html><h1>ok</h1></html>"
    assert result.user_agent == "ProxyUA/1.0"
    assert result.cookie_header() == "cf_clearance=abc; sid=1"

    health, post = log
    assert str(health.url) == "http://proxy.test/"
    assert json.loads(post.content) == {"cmd": "request.get", "url": TARGET, "maxTimeout": 60000}


def test_proxy_retries_then_succeeds():
    log = []
    replies = [
        httpx.ConnectError("refused"),
        httpx.Response(200, json={"status": "error", "message": "Challenge not solved"}),
        ok_reply(),
    ]
    resolver = make_resolver(proxy_client(replies, log), retries=2)

    result = asyncio.run(resolver.solve(TARGET))

    assert result.strategy == "proxy"
    assert [r.method for r in log] == ["GET", "POST", "POST", "POST"]


def test_empty_proxy_page_counts_as_failure(monkeypatch):
    log = []
    resolver = make_resolver(proxy_client([ok_reply(html="")], log), retries=0)
    browser_calls = []

    async def fake_browser(url, *, scroll=False):
        browser_calls.append((url, scroll))
        return BypassResult(html="<html>rendered</html>", url=url, strategy="browser")

    monkeypatch.setattr(resolver, "_solve_with_browser", fake_browser)
    result = asyncio.run(resolver.solve(TARGET, scroll=True))

    assert result.strategy == "browser"
    assert browser_calls == [(TARGET, True)]


def test_proxy_exhaustion_falls_back_to_browser(monkeypatch):
    log = []
    resolver = make_resolver(proxy_client([], log), retries=2)

    async def fake_browser(url, *, scroll=False):
        return BypassResult(html="<html>rendered</html>", url=url, strategy="browser")

    monkeypatch.setattr(resolver, "_solve_with_browser", fake_browser)
    result = asyncio.run(resolver.solve(TARGET))

    assert result.strategy == "browser"
    assert sum(1 for r in log if r.method == "POST") == 3


def test_all_strategies_failing_raises(monkeypatch):
    resolver = make_resolver(proxy_client([], []), retries=0)

    async def broken_browser(url, *, scroll=False):
        return None

    monkeypatch.setattr(resolver, "_solve_with_browser", broken_browser)
    with pytest.raises(BypassExhausted) as exc:
        asyncio.run(resolver.solve(TARGET))
    assert exc.value.url == TARGET


def test_unreachable_proxy_is_checked_once(monkeypatch):
    log = []

    def handler(request):
        log.append(request)
        raise httpx.ConnectError("down")

    resolver = make_resolver(httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    async def fake_browser(url, *, scroll=False):
        return BypassResult(html="<html></html>", url=url, strategy="browser")

    monkeypatch.setattr(resolver, "_solve_with_browser", fake_browser)

    async def run():
        await resolver.solve(TARGET)
        await resolver.solve(TARGET)

    asyncio.run(run())
    assert len(log) == 1
    assert resolver.proxy_available is False


def test_no_proxy_configured_goes_straight_to_browser(monkeypatch):
    resolver = BypassResolver(None)

    async def fake_browser(url, *, scroll=False):
        return BypassResult(html="<html></html>", url=url, strategy="browser")

    monkeypatch.setattr(resolver, "_solve_with_browser", fake_browser)
    result = asyncio.run(resolver.solve(TARGET))

    assert result.strategy == "browser"
    assert resolver._client is None


def test_apply_stealth_registers_every_script():
    class FakeContext:
        def __init__(self):
            self.scripts = []

        async def add_init_script(self, script):
            self.scripts.append(script)

    context = FakeContext()
    asyncio.run(apply_stealth(context))

    assert context.scripts == STEALTH_SCRIPTS
    assert any("webdriver" in s for s in context.scripts)


class FakePage:
    def __init__(self, titles, goto_error=None, idle_timeout=False):
        self.titles = list(titles)
        self.goto_error = goto_error
        self.idle_timeout = idle_timeout
        self.url = TARGET
        self.evaluated = []
        self.waits = []

    async def goto(self, url, wait_until=None, timeout=None):
        if self.goto_error:
            raise self.goto_error
        self.url = url

    async def title(self):
        return self.titles.pop(0) if len(self.titles) > 1 else self.titles[0]

    async def evaluate(self, script):
        self.evaluated.append(script)
        if script == "() => navigator.userAgent":
            return "RenderedUA/2.0"
        if script == BODY_TEXT_JS:
            return ""
        return None

    async def wait_for_timeout(self, ms):
        self.waits.append(ms)

    async def wait_for_load_state(self, state, timeout=None):
        if self.idle_timeout:
            raise PlaywrightTimeoutError("networkidle")

    async def content(self):
        return "<html><h1>rendered</h1></html>"

    @property
    def scrolls(self):
        return [s for s in self.evaluated if s.startswith("window.scroll")]


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.scripts = []

    async def add_init_script(self, script):
        self.scripts.append(script)

    async def new_page(self):
        return self.page

    async def cookies(self):
        return [{"name": "cf_clearance", "value": "xyz"}]


class FakeBrowser:
    def __init__(self, page):
        self.context = FakeContext(page)
        self.closed = False

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self.context

    async def close(self):
        self.closed = True


def fake_playwright(monkeypatch, page):
    browser = FakeBrowser(page)

    class Chromium:
        async def launch(self, **kwargs):
            return browser

    class Playwright:
        chromium = Chromium()

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

    monkeypatch.setattr(bypass, "async_playwright", Playwright)
    return browser


def test_browser_closes_when_navigation_fails(monkeypatch):
    browser = fake_playwright(monkeypatch, FakePage(["Abc"], goto_error=PlaywrightError("net::ERR_ABORTED")))

    with pytest.raises(BypassExhausted):
        asyncio.run(BypassResolver(None).solve(TARGET))

    assert browser.closed


def test_browser_captures_session_without_scrolling(monkeypatch):
    page = FakePage(["Abc"], idle_timeout=True)
    browser = fake_playwright(monkeypatch, page)

    result = asyncio.run(BypassResolver(None).solve(TARGET))

    assert result.strategy == "browser"
    assert result.html == "<html><h1>rendered</h1></html>"
    assert result.user_agent == "RenderedUA/2.0"
    assert result.cookie_header() == "cf_clearance=xyz"
    assert browser.context.scripts == STEALTH_SCRIPTS
    assert browser.context_kwargs["user_agent"] == settings.USER_AGENT
    assert page.scrolls == []
    assert page.waits == []
    assert browser.closed


def test_browser_scrolls_only_when_asked(monkeypatch):
    page = FakePage(["Abc"])
    fake_playwright(monkeypatch, page)

    asyncio.run(BypassResolver(None).solve(TARGET, scroll=True))

    assert len(page.scrolls) == settings.SCROLL_STEPS + 3
    assert page.scrolls[0] == f"window.scrollBy(0, {settings.SCROLL_STEP_PX})"


def test_browser_waits_out_a_challenge_that_clears(monkeypatch):
    page = FakePage(["Just a moment...", "Just a moment...", "Abc"])
    fake_playwright(monkeypatch, page)

    result = asyncio.run(BypassResolver(None).solve(TARGET))

    assert result.html == "<html><h1>rendered</h1></html>"
    assert page.waits == [settings.CHALLENGE_POLL_INTERVAL_MS] * 2


def test_browser_returns_page_when_challenge_never_clears(monkeypatch):
    page = FakePage(["Just a moment..."])
    browser = fake_playwright(monkeypatch, page)

    result = asyncio.run(BypassResolver(None).solve(TARGET))

    assert result.strategy == "browser"
    assert result.html == "<html><h1>rendered</h1></html>"
    assert page.waits == [settings.CHALLENGE_POLL_INTERVAL_MS] * settings.CHALLENGE_MAX_POLLS
    assert page.evaluated.count(BODY_TEXT_JS) == settings.CHALLENGE_MAX_POLLS
    assert browser.closed
