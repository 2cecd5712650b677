"""URL and naming helpers shared by the crawler components."""

import re
import unicodedata
from urllib.parse import urljoin, urlsplit, urlunsplit

SLUG_PATTERN = re.compile(r"[^a-z0-9\s-]")
LEGACY_CHAPTER_PREFIX = "chuong-"
NATURAL_CHUNK = re.compile(r"(\d+)")

# Chapter path spellings the source has used over time, rewritten to chapter-N
CHAPTER_PATH_ALIASES = [
    (re.compile(r"/chuong-(\d+)"), r"/chapter-\1"),
    (re.compile(r"/chapter-chapter-(\d+)"), r"/chapter-\1"),
    (re.compile(r"/(\d+)$"), r"/chapter-\1"),
]


def slugify(text: str) -> str:
    """'One Piece' -> 'one-piece', 'Đấu Phá' -> 'dau-pha'."""
    text = text.lower().replace("đ", "d")
    nfkd_form = unicodedata.normalize("NFKD", text)
    ascii_text = "".join(c for c in nfkd_form if not unicodedata.combining(c))
    ascii_text = ascii_text.encode("ASCII", "ignore").decode("ASCII")
    clean_text = SLUG_PATTERN.sub("", ascii_text).strip()
    return re.sub(r"\s+", "-", clean_text)


def is_absolute(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


def ensure_absolute(url: str | None, base_url: str) -> str:
    if not url:
        return ""
    url = url.strip()
    if is_absolute(url):
        return url
    if url.startswith("//"):
        return "https:" + url
    return base_url.rstrip("/") + ("" if url.startswith("/") else "/") + url


def resolve_media_url(src: str, page_url: str) -> str | None:
    """Absolute http(s) URL for an image source, or None when it can't be fetched."""
    src = (src or "").strip()
    if not src or src.startswith("data:") or src.startswith("blob:"):
        return None
    if src.startswith("//"):
        return "https:" + src
    if is_absolute(src):
        return src
    joined = urljoin(page_url, src)
    return joined if is_absolute(joined) else None


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def slug_from_identifier(identifier: str) -> str:
    """Title slug from either a bare slug or a detail-page URL."""
    identifier = identifier.strip()
    if "/" not in identifier:
        return identifier
    path = urlsplit(identifier).path if is_absolute(identifier) else identifier
    parts = [p for p in path.split("/") if p]
    return parts[-1] if parts else ""


def last_path_segment(url: str) -> str:
    parts = [p for p in urlsplit(url).path.split("/") if p]
    return parts[-1] if parts else ""


def rewrite_host(url: str, base_url: str) -> str:
    """Move an absolute URL onto the base URL's host, keeping path and query."""
    if not is_absolute(url):
        return url
    parts = urlsplit(url)
    target = urlsplit(base_url).netloc
    if not target or parts.netloc == target:
        return url
    return urlunsplit(parts._replace(netloc=target))


def normalize_chapter_path(url: str) -> str:
    for pattern, replacement in CHAPTER_PATH_ALIASES:
        url = pattern.sub(replacement, url, count=1)
    return url


def build_chapter_url(url: str, base_url: str) -> str:
    """Absolute chapter URL on the current source host with canonical chapter paths."""
    url = rewrite_host(url.strip(), base_url)
    url = normalize_chapter_path(url)
    return ensure_absolute(url, base_url)


def chapter_folder(chapter_id: str) -> str:
    """Storage folder for a chapter, derived from the whole id.

    Distinct ids must never share a folder: "ep-5" and "ep-10.5" both end in 5
    but publish under fixed page names, so a shared folder would overwrite.
    Only the "chuong-" spelling is folded onto "chapter-".
    """
    folder = slugify(chapter_id.replace(".", "-").replace("_", "-")) or "chapter"
    if folder.startswith(LEGACY_CHAPTER_PREFIX):
        folder = "chapter-" + folder[len(LEGACY_CHAPTER_PREFIX) :]
    return folder


def media_folder(title_id: str, chapter_id: str) -> str:
    return f"{title_id}/{chapter_folder(chapter_id)}"


def natural_key(name: str) -> list:
    """Sort key that orders '2.jpg' before '10.jpg'."""
    return [
        int(chunk) if chunk.isdigit() else chunk.lower()
        for chunk in NATURAL_CHUNK.split(name)
    ]
