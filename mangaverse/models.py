from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ChapterReference:
    id: str
    label: str
    url: str


@dataclass
class Title:
    id: str
    name: str
    url: str = ""
    thumbnail: str = ""
    description: str = ""
    author: str = "Unknown"
    status: str = "Unknown"
    genres: list[str] = field(default_factory=list)
    # Newest first. The list is replaced as a whole on every re-crawl.
    chapters: list[ChapterReference] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def total_chapters(self) -> int:
        return len(self.chapters)

    def chapter_index(self, chapter_id: str) -> int | None:
        for idx, chapter in enumerate(self.chapters):
            if chapter.id == chapter_id:
                return idx
        return None


@dataclass
class ChapterContent:
    title_id: str
    chapter_id: str
    images: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_downloaded(self) -> bool:
        return bool(self.images)


@dataclass
class SourceConfig:
    base_url: str
    title_url_pattern: str
    chapter_url_pattern: str = ""
    search_url_pattern: str = ""
    updated_at: datetime | None = None

    def title_url(self, slug: str) -> str:
        return self.title_url_pattern.replace("{slug}", slug)

    def search_url(self, keyword: str) -> str:
        return self.search_url_pattern.replace("{keyword}", keyword)


@dataclass
class CrawlPattern:
    """Numeric chapter-URL convention inferred from visible chapter links.

    Derived per crawl and never persisted.
    """

    prefix: str
    separator: str
    base_url: str
    min_chapter: int
    max_chapter: int

    def chapter_id(self, number: int) -> str:
        return f"{self.prefix}{self.separator}{number}"


@dataclass
class BypassResult:
    html: str
    url: str
    cookies: list[dict] = field(default_factory=list)
    user_agent: str = ""
    strategy: str = "proxy"

    def cookie_header(self) -> str:
        return "; ".join(
            f"{c['name']}={c['value']}" for c in self.cookies if c.get("name")
        )


@dataclass
class ChapterAnchor:
    label: str
    url: str


@dataclass
class ParsedTitle:
    title: str
    description: str = ""
    author: str = "Unknown"
    status: str = "Unknown"
    genres: list[str] = field(default_factory=list)
    cover_url: str | None = None
    anchors: list[ChapterAnchor] = field(default_factory=list)


@dataclass
class TitleSummary:
    id: str
    title: str
    url: str
    thumbnail: str | None = None
    latest_chapter: str = "N/A"


@dataclass
class RangeReport:
    succeeded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.skipped) + len(self.failed)


@dataclass
class ChapterView:
    content: ChapterContent
    prev: ChapterReference | None = None
    next: ChapterReference | None = None
