"""Read path with crawl-on-miss.

A serving layer calls LazyReader instead of the store: hits come straight
from the database, misses crawl synchronously and re-query. The crawl is
bounded by a hard timeout; when it elapses the caller stops waiting, but the
shielded crawl task keeps running in the background until it finishes or the
event loop goes away, and its outcome is logged when it does. Any crawl
failure reaches the caller as ContentUnavailable.
"""

import asyncio
import functools
import logging

from . import settings
from .errors import ContentUnavailable, CrawlError
from .models import ChapterView, Title
from .orchestrator import CrawlOrchestrator
from .store import MetadataStore

logger = logging.getLogger("mangaverse.lazy")


def _report_background_crawl(what: str, task: asyncio.Future):
    """Done callback for a crawl the caller stopped waiting for."""
    if task.cancelled():
        logger.warning("[Lazy] Background crawl of %s was cancelled", what)
        return
    error = task.exception()
    if error is not None:
        logger.error("[Lazy] Background crawl of %s failed: %s", what, error)
    else:
        logger.info("[Lazy] Background crawl of %s finished", what)


class LazyReader:
    def __init__(
        self,
        store: MetadataStore,
        orchestrator: CrawlOrchestrator,
        timeout: float = settings.LAZY_CRAWL_TIMEOUT,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.timeout = timeout

    async def _await_crawl(self, coro, what: str) -> bool:
        task = asyncio.ensure_future(coro)
        try:
            await asyncio.wait_for(asyncio.shield(task), self.timeout)
        except asyncio.TimeoutError:
            logger.error("[Lazy] Crawl of %s timed out after %ss", what, self.timeout)
            task.add_done_callback(functools.partial(_report_background_crawl, what))
            return False
        except CrawlError as e:
            logger.error("[Lazy] Crawl of %s failed: %s", what, e)
            return False
        except Exception:
            logger.exception("[Lazy] Crawl of %s failed unexpectedly", what)
            return False
        return True

    async def get_title(self, title_id: str) -> Title:
        title = self.store.get_title(title_id)
        if title is not None:
            return title

        logger.info("[Lazy] %s not in the catalog, crawling...", title_id)
        await self._await_crawl(self.orchestrator.crawl_title(title_id), title_id)
        title = self.store.get_title(title_id)
        if title is None:
            raise ContentUnavailable(f"Title {title_id} is not available")
        return title

    async def get_chapter(self, title_id: str, chapter_id: str) -> ChapterView:
        content = self.store.get_chapter_content(title_id, chapter_id)
        if content is None or not content.is_downloaded:
            what = f"{title_id}/{chapter_id}"
            logger.info("[Lazy] %s not downloaded yet, crawling...", what)
            await self._await_crawl(self.orchestrator.crawl_chapter(title_id, chapter_id), what)
            content = self.store.get_chapter_content(title_id, chapter_id)
            if content is None or not content.is_downloaded:
                raise ContentUnavailable(f"Chapter {chapter_id} of {title_id} is not available")

        view = ChapterView(content=content)
        title = self.store.get_title(title_id)
        index = title.chapter_index(chapter_id) if title else None
        if index is not None:
            # Newest first: the next chapter sits one slot earlier in the list
            if index > 0:
                view.next = title.chapters[index - 1]
            if index + 1 < len(title.chapters):
                view.prev = title.chapters[index + 1]
        return view
