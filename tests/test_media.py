import asyncio

import httpx

from conftest import IMAGE_BYTES, image_client
from mangaverse.errors import PublishFailure
from mangaverse.media import MediaPipeline, referer_candidates
from mangaverse.models import BypassResult
from mangaverse.storage import BlobStore

PAGE = "https://s.example/truyen-tranh/abc/chapter-1"


def sources(n):
    return [f"https://cdn.example/abc/{i}.jpg" for i in range(n)]


def test_referer_candidates_order_and_dedup():
    assert referer_candidates(PAGE, "https://s.example") == [
        PAGE,
        "https://s.example",
        "https://s.example/",
        None,
    ]
    assert referer_candidates(PAGE, "https://mirror.example") == [
        PAGE,
        "https://s.example",
        "https://s.example/",
        "https://mirror.example",
        None,
    ]


def test_batch_size_is_clamped(blobs):
    assert MediaPipeline(blobs, batch_size=1).batch_size == 4
    assert MediaPipeline(blobs, batch_size=6).batch_size == 6
    assert MediaPipeline(blobs, batch_size=50).batch_size == 8


def test_failed_items_are_dropped_in_order(blobs):
    srcs = sources(6)
    failing = {srcs[1], srcs[4]}
    media = MediaPipeline(blobs, client=image_client(failing=failing))

    urls = asyncio.run(media.fetch_and_publish(srcs, "abc/chapter-1", page_url=PAGE))

    assert urls == [
        "https://cdn.test/abc/chapter-1/000.jpg",
        "https://cdn.test/abc/chapter-1/002.jpg",
        "https://cdn.test/abc/chapter-1/003.jpg",
        "https://cdn.test/abc/chapter-1/005.jpg",
    ]
    assert (blobs.root / "abc/chapter-1/000.jpg").read_bytes() == IMAGE_BYTES
    assert not (blobs.root / "abc/chapter-1/001.jpg").exists()


def test_republishing_overwrites_same_names(blobs):
    media = MediaPipeline(blobs, client=image_client())

    async def run_twice():
        first = await media.fetch_and_publish(sources(3), "abc/chapter-1", page_url=PAGE)
        second = await media.fetch_and_publish(sources(3), "abc/chapter-1", page_url=PAGE)
        return first, second

    first, second = asyncio.run(run_twice())
    assert first == second
    assert [name for name, _ in blobs.list_folder("abc/chapter-1")] == ["000.jpg", "001.jpg", "002.jpg"]


def test_referer_rotation_stops_at_first_accepted():
    seen = []

    def handler(request):
        referer = request.headers.get("Referer")
        seen.append(referer)
        if referer == "https://s.example/":
            return httpx.Response(200, content=IMAGE_BYTES)
        return httpx.Response(403)

    class MemoryStore(BlobStore):
        def upload(self, folder, name, data, content_type="image/jpeg"):
            return f"mem://{folder}/{name}"

    media = MediaPipeline(MemoryStore(), client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    urls = asyncio.run(media.fetch_and_publish(sources(1), "abc/chapter-1", page_url=PAGE))

    assert urls == ["mem://abc/chapter-1/000.jpg"]
    assert seen == [PAGE, "https://s.example", "https://s.example/"]


def test_undersized_payloads_are_rejected(blobs):
    seen = []

    def handler(request):
        seen.append(request.headers.get("Referer"))
        return httpx.Response(200, content=b"tiny placeholder")

    media = MediaPipeline(blobs, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    urls = asyncio.run(media.fetch_and_publish(sources(1), "abc/chapter-1", page_url=PAGE))

    assert urls == []
    assert seen == [PAGE, "https://s.example", "https://s.example/", None]


def test_session_headers_are_forwarded(blobs):
    requests = []
    media = MediaPipeline(blobs, client=image_client(requests=requests))
    session = BypassResult(
        html="",
        url=PAGE,
        cookies=[{"name": "cf_clearance", "value": "tok"}],
        user_agent="SessionUA/2.0",
    )

    asyncio.run(media.fetch_and_publish(sources(1), "abc/chapter-1", page_url=PAGE, session=session))

    headers = requests[0].headers
    assert headers["User-Agent"] == "SessionUA/2.0"
    assert headers["Cookie"] == "cf_clearance=tok"
    assert headers["Referer"] == PAGE
    assert headers["Cache-Control"] == "no-cache"


def test_batches_bound_concurrency(blobs):
    active = 0
    peak = 0

    async def handler(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return httpx.Response(200, content=IMAGE_BYTES)

    media = MediaPipeline(blobs, batch_size=4, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    urls = asyncio.run(media.fetch_and_publish(sources(10), "abc/chapter-1", page_url=PAGE))

    assert len(urls) == 10
    assert peak <= 4


def test_publish_failure_is_skipped():
    class FlakyStore(BlobStore):
        def upload(self, folder, name, data, content_type="image/jpeg"):
            if name == "001.jpg":
                raise PublishFailure("disk full")
            return f"mem://{folder}/{name}"

    media = MediaPipeline(FlakyStore(), client=image_client())
    urls = asyncio.run(media.fetch_and_publish(sources(3), "abc/chapter-1", page_url=PAGE))

    assert urls == ["mem://abc/chapter-1/000.jpg", "mem://abc/chapter-1/002.jpg"]


def test_unfetchable_sources_are_skipped(blobs):
    media = MediaPipeline(blobs, client=image_client())
    srcs = ["data:image/gif;base64,R0lGOD", "//cdn.example/abc/1.jpg"]

    urls = asyncio.run(media.fetch_and_publish(srcs, "abc/chapter-1", page_url=PAGE))

    assert urls == ["https://cdn.test/abc/chapter-1/001.jpg"]


def test_publish_cover(blobs):
    media = MediaPipeline(blobs, client=image_client(failing={"https://cdn.example/missing.jpg"}))

    url = asyncio.run(media.publish_cover("https://cdn.example/cover.jpg", "abc", page_url=PAGE))
    assert url == "https://cdn.test/covers/abc.jpg"

    missing = asyncio.run(media.publish_cover("https://cdn.example/missing.jpg", "abc", page_url=PAGE))
    assert missing is None
    assert asyncio.run(media.publish_cover(None, "abc", page_url=PAGE)) is None
