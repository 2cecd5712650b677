"""Crawl coordination: fetch, parse, republish, persist.

The orchestrator owns no network or storage resources itself. It reads the
source config fresh on every operation, so a base-URL change made while the
process runs is picked up by the next crawl.
"""

import asyncio
import logging
from urllib.parse import quote_plus

from . import settings
from .bypass import BypassResolver
from .errors import (
    BypassExhausted,
    ChapterNotFound,
    CrawlError,
    ParseValidationFailure,
    TitleNotFound,
)
from .media import MediaPipeline
from .models import ChapterContent, RangeReport, SourceConfig, Title, TitleSummary
from .parser import (
    DEFAULT_RULES,
    SelectorRules,
    parse_chapter_page,
    parse_search_results,
    parse_title_page,
    parse_title_summary,
)
from .patterns import build_chapter_list
from .storage import BlobStore
from .store import MetadataStore
from .utils import (
    build_chapter_url,
    ensure_absolute,
    is_absolute,
    media_folder,
    slug_from_identifier,
    slugify,
)

logger = logging.getLogger("mangaverse.orchestrator")


class CrawlOrchestrator:
    def __init__(
        self,
        store: MetadataStore,
        storage: BlobStore,
        resolver: BypassResolver,
        media: MediaPipeline,
        rules: SelectorRules = DEFAULT_RULES,
    ):
        self.store = store
        self.storage = storage
        self.resolver = resolver
        self.media = media
        self.rules = rules

    def _require_title(self, title_id: str) -> Title:
        title = self.store.get_title(title_id)
        if title is None:
            raise TitleNotFound(title_id)
        return title

    # ── TITLE ─────────────────────────────────────────────────
    async def crawl_title(self, identifier: str) -> Title:
        """Crawls a detail page (slug or absolute URL) and upserts the Title.

        A page without a title, or one that suddenly lists no chapters for a
        title that had some, is treated as blocked: ParseValidationFailure is
        raised and the stored Title is left untouched.
        """
        config = self.store.get_source_config()
        slug = slug_from_identifier(identifier)
        if not slug:
            raise ParseValidationFailure(f"Cannot derive a title id from {identifier!r}")

        if is_absolute(identifier.strip()):
            url = identifier.strip()
        else:
            url = ensure_absolute(config.title_url(slug), config.base_url)

        logger.info("[Crawl] Title %s: %s", slug, url)
        result = await self.resolver.solve(url)
        page_url = result.url or url
        parsed = parse_title_page(result.html, page_url, self.rules)

        if not parsed.title:
            raise ParseValidationFailure(
                f"No title found at {url} (blocked page or outdated selectors)"
            )

        chapters = build_chapter_list(
            parsed.anchors, slug=slug, chapter_url_pattern=config.chapter_url_pattern or None
        )
        previous = self.store.get_title(slug)
        if not chapters and previous is not None and previous.chapters:
            raise ParseValidationFailure(
                f"{slug}: no chapters parsed, keeping the {previous.total_chapters} stored chapters"
            )

        thumbnail = await self.media.publish_cover(
            parsed.cover_url, slug, page_url=page_url, session=result, base_url=config.base_url
        )

        title = self.store.upsert_title(
            Title(
                id=slug,
                name=parsed.title,
                url=url,
                thumbnail=thumbnail or parsed.cover_url or "",
                description=parsed.description,
                author=parsed.author,
                status=parsed.status,
                genres=list(dict.fromkeys(parsed.genres)),
                chapters=chapters,
            )
        )
        logger.info("[Crawl] Saved %s (%d chapters)", title.name, title.total_chapters)
        return title

    # ── CHAPTER ───────────────────────────────────────────────
    async def crawl_chapter(self, title_id: str, chapter_id: str) -> ChapterContent | None:
        """Downloads and republishes one chapter.

        Returns the stored record without any network activity when the chapter
        is already downloaded. Returns None, persisting nothing, when no image
        made it through, so the next request tries again.
        """
        existing = self.store.get_chapter_content(title_id, chapter_id)
        if existing is not None and existing.is_downloaded:
            logger.info("[Crawl] %s/%s already downloaded (%d images)", title_id, chapter_id, len(existing.images))
            return existing

        title = self._require_title(title_id)
        index = title.chapter_index(chapter_id)
        if index is None:
            raise ChapterNotFound(title_id, chapter_id)

        config = self.store.get_source_config()
        url = build_chapter_url(title.chapters[index].url, config.base_url)
        logger.info("[Crawl] Chapter %s/%s: %s", title_id, chapter_id, url)

        result = await self.resolver.solve(url, scroll=True)
        sources = parse_chapter_page(result.html, self.rules)
        if not sources:
            logger.warning("[Crawl] No images found in %s", url)
            return None

        images = await self.media.fetch_and_publish(
            sources,
            media_folder(title_id, chapter_id),
            page_url=result.url or url,
            session=result,
            base_url=config.base_url,
        )
        if not images:
            logger.warning("[Crawl] None of the %d images of %s/%s were published", len(sources), title_id, chapter_id)
            return None

        return self.store.upsert_chapter_content(
            ChapterContent(title_id=title_id, chapter_id=chapter_id, images=images)
        )

    async def crawl_range(self, title_id: str, first_chapter_id: str, last_chapter_id: str) -> RangeReport:
        """Crawls every chapter between two ids (inclusive), one at a time."""
        title = self._require_title(title_id)
        positions = []
        for chapter_id in (first_chapter_id, last_chapter_id):
            index = title.chapter_index(chapter_id)
            if index is None:
                raise ChapterNotFound(title_id, chapter_id)
            positions.append(index)
        start, end = sorted(positions)

        selected = title.chapters[start : end + 1]
        downloaded = self.store.downloaded_chapter_ids(title_id)
        report = RangeReport()
        logger.info("[Range] %s: %d chapters (%s .. %s)", title_id, len(selected), first_chapter_id, last_chapter_id)

        for i, chapter in enumerate(selected, start=1):
            if chapter.id in downloaded:
                report.skipped.append(chapter.id)
                continue
            logger.info("[Range] [%d/%d] %s", i, len(selected), chapter.id)
            try:
                content = await self.crawl_chapter(title_id, chapter.id)
            except CrawlError as e:
                logger.error("[Range] %s failed: %s", chapter.id, e)
                report.failed.append((chapter.id, str(e)))
                continue
            if content is None:
                report.failed.append((chapter.id, "no images published"))
            else:
                report.succeeded.append(chapter.id)

        logger.info(
            "[Range] Done: %d ok, %d skipped, %d failed",
            len(report.succeeded),
            len(report.skipped),
            len(report.failed),
        )
        return report

    # ── SEARCH ────────────────────────────────────────────────
    async def search(self, keyword: str) -> list[TitleSummary]:
        """Tries the keyword as a slug first, then the site search."""
        keyword = keyword.strip()
        if not keyword:
            return []

        config = self.store.get_source_config()
        slug = slugify(keyword)

        if slug:
            url = ensure_absolute(config.title_url(slug), config.base_url)
            logger.info("[Search] Trying direct URL: %s", url)
            try:
                result = await self.resolver.solve(url)
            except BypassExhausted as e:
                logger.warning("[Search] Direct URL failed: %s", e)
            else:
                summary = parse_title_summary(result.html, slug, url, self.rules)
                if summary is not None:
                    logger.info("[Search] Found by direct URL: %s", summary.title)
                    return [summary]

        if not config.search_url_pattern:
            return []

        results = await self._search_listing(config, keyword)
        if not results and slug and slug != keyword:
            results = await self._search_listing(config, slug)
        return results

    async def _search_listing(self, config: SourceConfig, keyword: str) -> list[TitleSummary]:
        url = ensure_absolute(config.search_url(quote_plus(keyword)), config.base_url)
        logger.info("[Search] Search page: %s", url)
        result = await self.resolver.solve(url)
        results = parse_search_results(result.html, result.url or url, self.rules)
        logger.info("[Search] %d results for %r", len(results), keyword)
        return results

    # ── MAINTENANCE ───────────────────────────────────────────
    async def sync_chapters(self, title_id: str) -> tuple[int, int]:
        """Rebuilds missing chapter records from media already in storage.

        Returns (restored, skipped); skipped counts chapters that were
        already recorded as downloaded.
        """
        title = self._require_title(title_id)
        downloaded = self.store.downloaded_chapter_ids(title_id)
        restored = skipped = 0

        for chapter in title.chapters:
            if chapter.id in downloaded:
                skipped += 1
                continue
            files = await asyncio.to_thread(self.storage.list_folder, media_folder(title_id, chapter.id))
            if not files:
                continue
            self.store.upsert_chapter_content(
                ChapterContent(title_id=title_id, chapter_id=chapter.id, images=[url for _, url in files])
            )
            restored += 1
            logger.info("[Sync] %s: restored %d images", chapter.id, len(files))

        logger.info("[Sync] %s: %d restored, %d skipped", title_id, restored, skipped)
        return restored, skipped

    async def delete_title(self, title_id: str) -> bool:
        """Removes the title's media, cover and records. False when it didn't exist."""
        await asyncio.to_thread(self.storage.delete_folder, title_id)
        await asyncio.to_thread(self.storage.delete, settings.COVERS_FOLDER, f"{title_id}.jpg")
        deleted = self.store.delete_title(title_id)
        logger.info("[Delete] %s: %s", title_id, "deleted" if deleted else "not found")
        return deleted

    async def delete_chapters(self, title_id: str, chapter_ids: list[str]) -> int:
        """Drops downloaded content; the chapter references stay so they can be re-crawled."""
        for chapter_id in chapter_ids:
            await asyncio.to_thread(self.storage.delete_folder, media_folder(title_id, chapter_id))
        deleted = self.store.delete_chapter_contents(title_id, chapter_ids)
        logger.info("[Delete] %s: %d chapter records removed", title_id, deleted)
        return deleted
