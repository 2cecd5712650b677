"""HTML extraction for detail, chapter and search pages.

Every field is read through an ordered list of CSS selectors; the first one
that yields a non-empty value wins, so selector drift on the source degrades
field by field instead of all at once.
"""

from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag

from . import settings
from .models import ChapterAnchor, ParsedTitle, TitleSummary
from .utils import ensure_absolute, last_path_segment, origin_of


@dataclass
class SelectorRules:
    title: list[str] = field(default_factory=lambda: list(settings.TITLE_SELECTORS))
    description: list[str] = field(default_factory=lambda: list(settings.DESCRIPTION_SELECTORS))
    author: list[str] = field(default_factory=lambda: list(settings.AUTHOR_SELECTORS))
    status: list[str] = field(default_factory=lambda: list(settings.STATUS_SELECTORS))
    genres: list[str] = field(default_factory=lambda: list(settings.GENRE_SELECTORS))
    cover: list[str] = field(default_factory=lambda: list(settings.COVER_SELECTORS))
    chapter_links: list[str] = field(default_factory=lambda: list(settings.CHAPTER_LINK_SELECTORS))
    chapter_images: list[str] = field(default_factory=lambda: list(settings.CHAPTER_IMAGE_SELECTORS))
    image_attributes: list[str] = field(default_factory=lambda: list(settings.IMAGE_ATTRIBUTES))
    non_content_markers: list[str] = field(
        default_factory=lambda: list(settings.NON_CONTENT_IMAGE_MARKERS)
    )
    cdn_hints: list[str] = field(default_factory=lambda: list(settings.CDN_IMAGE_HINTS))
    search_items: list[str] = field(default_factory=lambda: list(settings.SEARCH_ITEM_SELECTORS))
    search_item_title: list[str] = field(
        default_factory=lambda: list(settings.SEARCH_ITEM_TITLE_SELECTORS)
    )
    latest_chapter: list[str] = field(
        default_factory=lambda: list(settings.LATEST_CHAPTER_SELECTORS)
    )


DEFAULT_RULES = SelectorRules()


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def first_text(root: Tag, selectors: list[str]) -> str:
    for sel in selectors:
        if el := root.select_one(sel):
            text = el.get_text(" ", strip=True)
            if text:
                return text
    return ""


def image_source(img: Tag, attributes: list[str]) -> str:
    for attr in attributes:
        value = img.get(attr)
        if value and value.strip():
            return value.strip()
    return ""


def first_image(root: Tag, selectors: list[str], attributes: list[str]) -> str:
    for sel in selectors:
        for img in root.select(sel):
            if src := image_source(img, attributes):
                return src
    return ""


def all_texts(root: Tag, selectors: list[str]) -> list[str]:
    """Texts from the first selector that matches anything, de-duplicated."""
    for sel in selectors:
        found = [el.get_text(strip=True) for el in root.select(sel)]
        found = [text for text in found if text]
        if found:
            return list(dict.fromkeys(found))
    return []


def parse_chapter_anchors(root: Tag, page_url: str, rules: SelectorRules) -> list[ChapterAnchor]:
    base = origin_of(page_url)
    for sel in rules.chapter_links:
        anchors = []
        for link in root.select(sel):
            label = link.get_text(strip=True)
            href = ensure_absolute(link.get("href"), base)
            if label and href:
                anchors.append(ChapterAnchor(label=label, url=href))
        if anchors:
            unique: dict[str, ChapterAnchor] = {}
            for anchor in anchors:
                unique.setdefault(anchor.url, anchor)
            return list(unique.values())
    return []


def parse_title_page(html: str, page_url: str, rules: SelectorRules = DEFAULT_RULES) -> ParsedTitle:
    soup = _soup(html)
    base = origin_of(page_url)
    cover = first_image(soup, rules.cover, rules.image_attributes)

    return ParsedTitle(
        title=first_text(soup, rules.title),
        description=first_text(soup, rules.description),
        author=first_text(soup, rules.author) or "Unknown",
        status=first_text(soup, rules.status) or "Unknown",
        genres=all_texts(soup, rules.genres),
        cover_url=ensure_absolute(cover, base) or None,
        anchors=parse_chapter_anchors(soup, page_url, rules),
    )


def _is_content_image(src: str, rules: SelectorRules) -> bool:
    lowered = src.lower()
    return not any(marker in lowered for marker in rules.non_content_markers)


def parse_chapter_page(html: str, rules: SelectorRules = DEFAULT_RULES) -> list[str]:
    """Ordered, de-duplicated page-image sources of a chapter."""
    soup = _soup(html)

    images = []
    for sel in rules.chapter_images:
        for img in soup.select(sel):
            src = image_source(img, rules.image_attributes)
            if src and _is_content_image(src, rules):
                images.append(src)

    if not images:
        # No reader container matched; fall back to any CDN-looking image
        for img in soup.find_all("img"):
            src = image_source(img, rules.image_attributes)
            lowered = src.lower()
            if src and _is_content_image(src, rules) and any(h in lowered for h in rules.cdn_hints):
                images.append(src)

    return list(dict.fromkeys(images))


def parse_title_summary(
    html: str, slug: str, page_url: str, rules: SelectorRules = DEFAULT_RULES
) -> TitleSummary | None:
    """Summary of a detail page, or None when the page isn't one."""
    soup = _soup(html)
    name = first_text(soup, rules.title[:1])
    if not name:
        return None

    base = origin_of(page_url)
    thumbnail = first_image(soup, rules.cover, rules.image_attributes)
    return TitleSummary(
        id=slug,
        title=name,
        url=page_url,
        thumbnail=ensure_absolute(thumbnail, base) or None,
        latest_chapter=first_text(soup, rules.latest_chapter) or "N/A",
    )


def parse_search_results(
    html: str, page_url: str, rules: SelectorRules = DEFAULT_RULES
) -> list[TitleSummary]:
    soup = _soup(html)
    base = origin_of(page_url)

    items = []
    for sel in rules.search_items:
        items = soup.select(sel)
        if items:
            break

    results: dict[str, TitleSummary] = {}
    for item in items:
        link = None
        for sel in rules.search_item_title:
            if link := item.select_one(sel):
                break
        if link is None or not link.get("href"):
            continue

        url = ensure_absolute(link.get("href"), base)
        if url in results:
            continue
        thumbnail = first_image(item, ["img"], rules.image_attributes)
        results[url] = TitleSummary(
            id=last_path_segment(url),
            title=link.get_text(strip=True),
            url=url,
            thumbnail=ensure_absolute(thumbnail, base) or None,
            latest_chapter=first_text(item, [".chapter a"]) or "N/A",
        )

    return list(results.values())
