"""Image download and republish.

Images are fetched straight from the source CDN with httpx, rotating through
Referer candidates until one gets past hotlink protection, then written to
the blob store under fixed names (``000.jpg``, ``001.jpg``, ...). Work runs in
small batches: every batch finishes before the next one starts.

A failed image is logged and dropped; the rest of the chapter still goes
through and the returned URL list keeps the survivors in source order.
"""

import asyncio
import logging

import httpx

from . import settings
from .bypass import BypassResolver
from .errors import MediaFetchFailure, PublishFailure
from .models import BypassResult
from .storage import BlobStore
from .utils import origin_of, resolve_media_url

logger = logging.getLogger("mangaverse.media")


def referer_candidates(page_url: str, base_url: str | None) -> list[str | None]:
    """Referers to try, in priority order; None means no Referer header."""
    origin = origin_of(page_url) if page_url else ""
    candidates = [page_url, origin, origin + "/" if origin else "", base_url]
    ordered = list(dict.fromkeys(c for c in candidates if c))
    return [*ordered, None]


def page_file_name(index: int) -> str:
    return f"{index:03d}.jpg"


class MediaPipeline:
    def __init__(
        self,
        storage: BlobStore,
        *,
        base_url: str | None = None,
        batch_size: int = settings.MEDIA_BATCH_SIZE,
        min_bytes: int = settings.MIN_IMAGE_BYTES,
        resolver: BypassResolver | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.storage = storage
        self.base_url = base_url
        self.batch_size = min(max(batch_size, settings.MEDIA_BATCH_MIN), settings.MEDIA_BATCH_MAX)
        self.min_bytes = min_bytes
        self.resolver = resolver
        self._client = client

    def _headers(self, session: BypassResult | None) -> dict[str, str]:
        headers = dict(settings.IMAGE_HEADERS)
        headers["User-Agent"] = (session.user_agent if session else "") or settings.USER_AGENT
        if session and session.cookies:
            headers["Cookie"] = session.cookie_header()
        return headers

    async def fetch_and_publish(
        self,
        sources: list[str],
        folder: str,
        *,
        page_url: str,
        session: BypassResult | None = None,
        base_url: str | None = None,
    ) -> list[str]:
        """Published URLs for the sources that made it, in source order."""
        if not sources:
            return []

        referers = referer_candidates(page_url, base_url or self.base_url)
        headers = self._headers(session)
        published: list[str | None] = [None] * len(sources)
        done = 0

        logger.info("[Media] Downloading %d images into %s...", len(sources), folder)
        async with self._http() as client:
            for start in range(0, len(sources), self.batch_size):
                batch = sources[start : start + self.batch_size]
                results = await asyncio.gather(
                    *(
                        self._process(client, src, start + offset, folder, page_url, referers, headers)
                        for offset, src in enumerate(batch)
                    )
                )
                for offset, url in enumerate(results):
                    if url:
                        published[start + offset] = url
                        done += 1
                logger.info("    -> [%d/%d] downloaded + published", done, len(sources))

        final = [url for url in published if url is not None]
        logger.info("[Media] Completed %d/%d images", len(final), len(sources))
        return final

    async def publish_cover(
        self,
        source_url: str | None,
        title_id: str,
        *,
        page_url: str,
        session: BypassResult | None = None,
        base_url: str | None = None,
    ) -> str | None:
        if not source_url:
            return None
        referers = referer_candidates(page_url, base_url or self.base_url)
        async with self._http() as client:
            try:
                data = await self._download(client, source_url, page_url, referers, self._headers(session))
                return await asyncio.to_thread(
                    self.storage.upload, settings.COVERS_FOLDER, f"{title_id}.jpg", data
                )
            except (MediaFetchFailure, PublishFailure) as e:
                logger.warning("[Media] Cover for %s not published: %s", title_id, e)
                return None

    def _http(self):
        if self._client is not None:
            return _Borrowed(self._client)
        return httpx.AsyncClient(follow_redirects=True, timeout=settings.IMAGE_TIMEOUT)

    async def _process(
        self,
        client: httpx.AsyncClient,
        src: str,
        index: int,
        folder: str,
        page_url: str,
        referers: list[str | None],
        headers: dict[str, str],
    ) -> str | None:
        try:
            data = await self._download(client, src, page_url, referers, headers)
            return await asyncio.to_thread(self.storage.upload, folder, page_file_name(index), data)
        except MediaFetchFailure as e:
            logger.warning("  [!] Image %d failed: %s", index, e)
        except PublishFailure as e:
            logger.warning("  [!] Image %d not published: %s", index, e)
        return None

    async def _download(
        self,
        client: httpx.AsyncClient,
        src: str,
        page_url: str,
        referers: list[str | None],
        headers: dict[str, str],
    ) -> bytes:
        url = resolve_media_url(src, page_url)
        if url is None:
            raise MediaFetchFailure(f"not a fetchable image source: {src!r}")

        last_error = ""
        for referer in referers:
            request_headers = dict(headers)
            if referer:
                request_headers["Referer"] = referer
            try:
                resp = await client.get(url, headers=request_headers)
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                continue
            if resp.status_code == 200 and len(resp.content) > self.min_bytes:
                return resp.content
            last_error = f"status {resp.status_code}, {len(resp.content)} bytes"

        data = await self._download_via_proxy(url)
        if data is not None:
            return data
        raise MediaFetchFailure(f"{url} ({last_error})")

    async def _download_via_proxy(self, url: str) -> bytes | None:
        """Last-resort path through the bypass proxy.

        Deliberately a no-op: the proxy returns decoded page text and errors on
        binary payloads, so an image fetched through it can't be trusted.
        """
        if self.resolver is not None and self.resolver.proxy_available:
            logger.info("  [Proxy] Skipping proxy retry for %s (unreliable for images)", url)
        return None


class _Borrowed:
    """Async context wrapper that leaves an injected client open."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def __aenter__(self) -> httpx.AsyncClient:
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False
