"""Page fetching behind anti-bot protection.

Two strategies, tried in order:

1. a FlareSolverr-compatible bypass proxy, retried with exponential backoff;
2. a local headless Chromium (Playwright) that waits out challenge pages and
   can scroll to trigger lazy-loaded images.

Whichever succeeds returns its session cookies and user-agent inside the
``BypassResult`` so image downloads can reuse them.
"""

import asyncio
import logging

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from . import settings
from .errors import BypassExhausted
from .libs.stealth import apply_stealth
from .models import BypassResult

logger = logging.getLogger("mangaverse.bypass")

BODY_TEXT_JS = "() => ((document.body && document.body.innerText) || '').substring(0, 500)"


def looks_like_challenge(title: str, body_text: str) -> bool:
    title = title or ""
    body_text = body_text or ""
    return any(marker in title for marker in settings.CHALLENGE_TITLE_MARKERS) or any(
        marker in body_text for marker in settings.CHALLENGE_BODY_MARKERS
    )


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay after the given (1-based) failed attempt."""
    return min(base * (2 ** (attempt - 1)), cap)


class BypassResolver:
    def __init__(
        self,
        proxy_url: str | None = settings.FLARESOLVERR_URL,
        *,
        retries: int = settings.PROXY_RETRIES,
        backoff_base: float = settings.PROXY_BACKOFF_BASE,
        backoff_max: float = settings.PROXY_BACKOFF_MAX,
        max_timeout_ms: int = settings.PROXY_MAX_TIMEOUT_MS,
        headless: bool = settings.HEADLESS,
        client: httpx.AsyncClient | None = None,
    ):
        self.proxy_url = proxy_url or None
        self.retries = max(0, retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_timeout_ms = max_timeout_ms
        self.headless = headless
        self._client = client
        self._owns_client = client is None
        self._proxy_available: bool | None = None if self.proxy_url else False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.max_timeout_ms / 1000 + 10, follow_redirects=True
            )
        return self._client

    @property
    def proxy_available(self) -> bool:
        return bool(self._proxy_available)

    async def check_proxy(self) -> bool:
        """Checks the proxy once; the answer is reused for the resolver's lifetime."""
        if self._proxy_available is not None:
            return self._proxy_available
        health_url = self.proxy_url.replace("/v1", "/")
        try:
            resp = await self.client.get(health_url, timeout=settings.PROXY_HEALTH_TIMEOUT)
            self._proxy_available = resp.status_code == 200
        except httpx.HTTPError as e:
            logger.info("[Bypass] Proxy health check failed: %s", e)
            self._proxy_available = False

        if self._proxy_available:
            logger.info("[Bypass] Proxy available at %s", self.proxy_url)
        else:
            logger.warning("[Bypass] Proxy not available, will use the headless browser")
        return self._proxy_available

    async def solve(self, url: str, *, scroll: bool = False) -> BypassResult:
        if await self.check_proxy():
            result = await self._solve_with_proxy(url)
            if result is not None:
                return result
            logger.warning("[Bypass] Proxy exhausted for %s, trying headless browser...", url)

        result = await self._solve_with_browser(url, scroll=scroll)
        if result is not None:
            return result
        raise BypassExhausted(url)

    # ── PROXY ─────────────────────────────────────────────────
    async def _solve_with_proxy(self, url: str) -> BypassResult | None:
        payload = {"cmd": "request.get", "url": url, "maxTimeout": self.max_timeout_ms}
        attempts = self.retries + 1

        for attempt in range(1, attempts + 1):
            try:
                resp = await self.client.post(self.proxy_url, json=payload)
                data = resp.json()
                if data.get("status") != "ok":
                    raise ValueError(f"proxy error: {data.get('message', resp.status_code)}")
                solution = data.get("solution") or {}
                html = solution.get("response") or ""
                if not html:
                    raise ValueError("proxy returned an empty page")
                return BypassResult(
                    html=html,
                    url=solution.get("url") or url,
                    cookies=solution.get("cookies") or [],
                    user_agent=solution.get("userAgent") or "",
                    strategy="proxy",
                )
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("[Bypass] Proxy attempt %d/%d for %s: %s", attempt, attempts, url, e)
                if attempt < attempts:
                    delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                    logger.info("    -> Waiting %.1fs before retrying...", delay)
                    await asyncio.sleep(delay)

        return None

    # ── HEADLESS BROWSER ──────────────────────────────────────
    async def _solve_with_browser(self, url: str, *, scroll: bool = False) -> BypassResult | None:
        logger.info("[Browser] Rendering %s", url)
        try:
            async with async_playwright() as playwright:
                browser = await playwright.chromium.launch(
                    headless=self.headless,
                    args=settings.BROWSER_ARGS,
                    ignore_default_args=["--enable-automation"],
                )
                try:
                    context = await browser.new_context(
                        user_agent=settings.USER_AGENT,
                        viewport={"width": 1920, "height": 1080},
                    )
                    await apply_stealth(context)
                    page = await context.new_page()

                    await page.goto(
                        url,
                        wait_until="domcontentloaded",
                        timeout=settings.NAVIGATION_TIMEOUT_MS,
                    )
                    await self._wait_for_challenge(page)

                    try:
                        await page.wait_for_load_state(
                            "networkidle", timeout=settings.NETWORK_IDLE_TIMEOUT_MS
                        )
                    except PlaywrightTimeoutError:
                        logger.info("[Browser] Network not fully idle, continuing...")

                    if scroll:
                        await self._trigger_lazy_loading(page)

                    html = await page.content()
                    cookies = [dict(c) for c in await context.cookies()]
                    user_agent = await page.evaluate("() => navigator.userAgent")
                    return BypassResult(
                        html=html,
                        url=page.url,
                        cookies=cookies,
                        user_agent=user_agent,
                        strategy="browser",
                    )
                finally:
                    await browser.close()
        except PlaywrightError as e:
            logger.error("[Browser] Rendering failed for %s: %s", url, e)
            return None

    async def _wait_for_challenge(self, page: Page) -> bool:
        """Polls until the challenge page clears. False if it never did."""
        for attempt in range(1, settings.CHALLENGE_MAX_POLLS + 1):
            title = await page.title()
            body_text = await page.evaluate(BODY_TEXT_JS)
            if not looks_like_challenge(title, body_text):
                if attempt > 1:
                    logger.info("[Browser] Challenge passed")
                return True
            logger.info(
                "[Browser] Challenge detected (%d/%d), waiting...",
                attempt,
                settings.CHALLENGE_MAX_POLLS,
            )
            await page.wait_for_timeout(settings.CHALLENGE_POLL_INTERVAL_MS)

        logger.warning("[Browser] Challenge did not clear, continuing anyway")
        return False

    async def _trigger_lazy_loading(self, page: Page):
        for _ in range(settings.SCROLL_STEPS):
            await page.evaluate(f"window.scrollBy(0, {settings.SCROLL_STEP_PX})")
            await page.wait_for_timeout(settings.SCROLL_STEP_WAIT_MS)

        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        await page.wait_for_timeout(settings.SCROLL_SETTLE_MS)

        # Second pass catches images that only load after leaving the viewport
        await page.evaluate("window.scrollTo(0, 0)")
        await page.wait_for_timeout(settings.SCROLL_STEP_WAIT_MS)
        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        await page.wait_for_timeout(settings.SCROLL_SETTLE_MS)
