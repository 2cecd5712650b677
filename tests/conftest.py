import httpx
import pytest

from mangaverse.errors import BypassExhausted
from mangaverse.models import BypassResult, SourceConfig
from mangaverse.storage import LocalBlobStore
from mangaverse.store import MetadataStore

IMAGE_BYTES = b"\xff\xd8\xff" + b"x" * 2000


class FakeResolver:
    """Serves canned HTML by URL; unknown URLs behave like a fully blocked page."""

    def __init__(self, pages=None, proxy_available=False):
        self.pages = dict(pages or {})
        self.calls = []
        self.proxy_available = proxy_available

    async def solve(self, url, *, scroll=False):
        self.calls.append((url, scroll))
        if url not in self.pages:
            raise BypassExhausted(url)
        return BypassResult(
            html=self.pages[url],
            url=url,
            cookies=[{"name": "cf_clearance", "value": "token"}],
            user_agent="FakeBrowser/1.0",
            strategy="browser",
        )


def image_client(failing=(), requests=None):
    """httpx client answering every image URL with a real-sized JPEG, except `failing` ones."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if str(request.url) in failing:
            return httpx.Response(404)
        return httpx.Response(200, content=IMAGE_BYTES)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def store(tmp_path):
    return MetadataStore(tmp_path / "test.db")


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "media", public_url="https://cdn.test")


@pytest.fixture
def source_config(store):
    return store.save_source_config(
        SourceConfig(
            base_url="https://new.example",
            title_url_pattern="https://new.example/truyen-tranh/{slug}",
            search_url_pattern="https://new.example/tim-truyen?keyword={keyword}",
        )
    )
