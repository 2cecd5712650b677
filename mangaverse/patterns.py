"""Chapter-list recovery from a partial set of visible chapter links.

Detail pages usually show only part of the archive (paginated or
virtualized lists). When the visible links follow a numeric convention such
as ``/chapter-12`` the whole range is enumerated from the highest number seen
down to 0, newest first, without walking the pagination.
"""

import logging
import re

from .errors import PatternInferenceEmpty
from .models import ChapterAnchor, ChapterReference, CrawlPattern
from .utils import last_path_segment

logger = logging.getLogger("mangaverse.patterns")

CHAPTER_NUMBER = re.compile(r"[/-](chuong|chap|chapter)[/-]?(\d+)", re.IGNORECASE)


def infer_pattern(anchors: list[ChapterAnchor]) -> CrawlPattern:
    """Raises PatternInferenceEmpty unless some link carries a chapter number above 0."""
    pattern = None
    min_chapter = None
    max_chapter = 0

    for anchor in anchors:
        match = CHAPTER_NUMBER.search(anchor.url)
        if not match:
            continue

        number = int(match.group(2))
        max_chapter = max(max_chapter, number)
        min_chapter = number if min_chapter is None else min(min_chapter, number)

        if pattern is None:
            prefix = match.group(1).lower()
            suffix = re.compile(rf"[/-]{prefix}[/-]?\d+.*$", re.IGNORECASE)
            pattern = CrawlPattern(
                prefix=prefix,
                separator="-" if f"{prefix}-" in anchor.url.lower() else "",
                base_url=suffix.sub("", anchor.url),
                min_chapter=number,
                max_chapter=number,
            )

    if pattern is None or max_chapter <= 0:
        raise PatternInferenceEmpty(f"no numeric chapter pattern in {len(anchors)} links")

    pattern.min_chapter = min_chapter
    pattern.max_chapter = max_chapter
    return pattern


def build_chapter_list(
    anchors: list[ChapterAnchor],
    *,
    slug: str,
    chapter_url_pattern: str | None = None,
) -> list[ChapterReference]:
    """Full chapter list, newest first.

    Falls back to the visible anchors verbatim when no numeric pattern is found.
    """
    try:
        pattern = infer_pattern(anchors)
    except PatternInferenceEmpty as e:
        logger.warning("[Chapters] %s, keeping the visible chapters", e)
        return [
            ChapterReference(id=last_path_segment(a.url), label=a.label, url=a.url)
            for a in anchors
        ]

    chapters = []
    for number in range(pattern.max_chapter, -1, -1):
        if chapter_url_pattern:
            url = (
                chapter_url_pattern.replace("{slug}", slug).replace("{chapter}", str(number))
            )
            chapter_id = last_path_segment(url)
        else:
            chapter_id = pattern.chapter_id(number)
            url = f"{pattern.base_url}/{chapter_id}"
        chapters.append(ChapterReference(id=chapter_id, label=f"Chapter {number}", url=url))

    logger.info(
        "[Chapters] Pattern detected: chapter %d -> %d, generated %d chapters",
        pattern.min_chapter,
        pattern.max_chapter,
        len(chapters),
    )
    return chapters
