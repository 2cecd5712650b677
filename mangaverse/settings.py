import os
from pathlib import Path

# ── BYPASS PROXY (FlareSolverr) ───────────────────────────────
FLARESOLVERR_URL = os.getenv("FLARESOLVERR_URL", "http://localhost:8191/v1")
PROXY_MAX_TIMEOUT_MS = int(os.getenv("PROXY_MAX_TIMEOUT_MS", "60000"))
PROXY_HEALTH_TIMEOUT = 5.0

# RETRY: 1 attempt + N retries, exponential backoff with a ceiling
PROXY_RETRIES = int(os.getenv("PROXY_RETRIES", "2"))
PROXY_BACKOFF_BASE = float(os.getenv("PROXY_BACKOFF_BASE", "2.0"))
PROXY_BACKOFF_MAX = float(os.getenv("PROXY_BACKOFF_MAX", "10.0"))

# ── HEADLESS BROWSER (fallback) ──────────────────────────────
HEADLESS = os.getenv("HEADLESS", "true").lower() != "false"
NAVIGATION_TIMEOUT_MS = 60_000
NETWORK_IDLE_TIMEOUT_MS = 10_000

# Anti-bot challenge page: poll at fixed intervals, then continue anyway
CHALLENGE_POLL_INTERVAL_MS = 5_000
CHALLENGE_MAX_POLLS = 6
CHALLENGE_TITLE_MARKERS = ("Just a moment", "Cloudflare")
CHALLENGE_BODY_MARKERS = ("Checking your browser", "Please wait")

# Scroll passes to trigger lazy loading
SCROLL_STEPS = 15
SCROLL_STEP_PX = 800
SCROLL_STEP_WAIT_MS = 500
SCROLL_SETTLE_MS = 2_000

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--mute-audio",
    "--disable-extensions",
]

USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
)

# Image CDNs block hotlinking by Referer, these go along with it
IMAGE_HEADERS = {
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# ── MEDIA ─────────────────────────────────────────────────────
IMAGE_TIMEOUT = 20.0
# Smaller payloads are placeholder or error images
MIN_IMAGE_BYTES = int(os.getenv("MIN_IMAGE_BYTES", "1000"))
MEDIA_BATCH_SIZE = int(os.getenv("MEDIA_BATCH_SIZE", "4"))
MEDIA_BATCH_MIN = 4
MEDIA_BATCH_MAX = 8
COVERS_FOLDER = "covers"

# ── STORAGE ───────────────────────────────────────────────────
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")  # "local" or "s3"
STORAGE_ROOT = Path(os.getenv("STORAGE_ROOT", "./manga_verse_media"))
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "")
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "manga_verse")
AWS_REGION = os.getenv("AWS_REGION", "")

DATABASE_PATH = Path(os.getenv("DATABASE_PATH", "./manga_verse.db"))

# ── SOURCE (SourceConfig defaults) ────────────────────────────
BASE_URL = os.getenv("MANGA_BASE_URL", "https://nettruyen.one")
TITLE_URL_PATTERN = os.getenv(
    "MANGA_TITLE_URL_PATTERN", BASE_URL + "/truyen-tranh/{slug}"
)
# Empty = use the pattern inferred from chapter URLs
CHAPTER_URL_PATTERN = os.getenv("MANGA_CHAPTER_URL_PATTERN", "")
SEARCH_URL_PATTERN = os.getenv(
    "MANGA_SEARCH_URL_PATTERN", BASE_URL + "/tim-truyen?keyword={keyword}"
)

# ── LAZY CRAWL ────────────────────────────────────────────────
LAZY_CRAWL_TIMEOUT = float(os.getenv("LAZY_CRAWL_TIMEOUT", "300"))

# ── CSS SELECTORS ─────────────────────────────────────────────
TITLE_SELECTORS = ["h1.title-detail", "h1.entry-title", ".post-title h1", "h1"]
DESCRIPTION_SELECTORS = [
    ".detail-content p",
    ".summary__content p",
    ".description-summary",
    ".manga-excerpt",
]
AUTHOR_SELECTORS = [".author .col-xs-8", ".author-content a", ".author-content"]
STATUS_SELECTORS = [".status .col-xs-8", ".post-status .summary-content"]
GENRE_SELECTORS = [".kind p a", ".genres-content a", ".genres a"]
COVER_SELECTORS = [".col-image img", ".summary_image img", ".book img"]
CHAPTER_LINK_SELECTORS = [
    "#nt_listchapter ul li.row:not(.heading) a",
    ".list-chapter li a",
    ".wp-manga-chapter a",
    ".listing-chapters_wrap a",
]

CHAPTER_IMAGE_SELECTORS = [
    ".reading-detail img",
    ".page-chapter img",
    ".reading img",
    "#content img",
    ".chapter-content img",
    ".box-chap img",
    ".chapter-detail img",
    ".content-images img",
    "article img",
    ".main-content img",
]
# Lazy-load attributes take precedence over src
IMAGE_ATTRIBUTES = ["data-original", "data-src", "data-lazy-src", "src"]
NON_CONTENT_IMAGE_MARKERS = ["logo", "avatar"]
CDN_IMAGE_HINTS = ["cdn", "img", "chapter", "truyen"]

SEARCH_ITEM_SELECTORS = [".item", ".c-tabs-item__content", ".page-item-detail"]
SEARCH_ITEM_TITLE_SELECTORS = ["h3 a", ".post-title a"]
LATEST_CHAPTER_SELECTORS = ["#nt_listchapter .chapter a", ".chapter a"]
