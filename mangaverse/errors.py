class CrawlError(Exception):
    """Base class for every failure raised by the crawler."""


class BypassExhausted(CrawlError):
    """Both the bypass proxy and the headless browser failed to fetch a page."""

    def __init__(self, url: str):
        super().__init__(f"All bypass methods failed for {url}")
        self.url = url


class ParseValidationFailure(CrawlError):
    """The fetched page lacks required fields (anti-bot block or selector drift)."""


class PatternInferenceEmpty(CrawlError):
    """No numeric chapter pattern was found. Degraded mode, never fatal."""


class MediaFetchFailure(CrawlError):
    """A single image could not be downloaded with any referer."""


class StorageError(CrawlError):
    """The blob store could not list or delete media."""


class PublishFailure(StorageError):
    """A single image could not be written to durable storage."""


class PersistenceConflict(CrawlError):
    """The metadata store rejected a write that an upsert could not resolve."""


class TitleNotFound(CrawlError):
    def __init__(self, title_id: str):
        super().__init__(f"Title not found: {title_id}")
        self.title_id = title_id


class ChapterNotFound(CrawlError):
    def __init__(self, title_id: str, chapter_id: str):
        super().__init__(f"Chapter {chapter_id} not found in title {title_id}")
        self.title_id = title_id
        self.chapter_id = chapter_id


class ContentUnavailable(CrawlError):
    """Lazy crawl did not produce the requested content."""
