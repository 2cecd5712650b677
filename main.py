import argparse
import asyncio
import logging
import sys

from mangaverse import settings
from mangaverse.bypass import BypassResolver
from mangaverse.errors import CrawlError
from mangaverse.media import MediaPipeline
from mangaverse.orchestrator import CrawlOrchestrator
from mangaverse.storage import build_blob_store
from mangaverse.store import MetadataStore
from mangaverse.utils import rewrite_host

logger = logging.getLogger("mangaverse.cli")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mangaverse",
        description="Crawl manga titles and chapters from the configured source.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("search", help="Search titles by keyword")
    p.add_argument("keyword", nargs="+")

    p = sub.add_parser("crawl", help="Crawl a title by slug or detail URL")
    p.add_argument("identifier")

    p = sub.add_parser("chapter", help="Download one chapter")
    p.add_argument("title_id")
    p.add_argument("chapter_id")

    p = sub.add_parser("range", help="Download every chapter between two chapter ids")
    p.add_argument("title_id")
    p.add_argument("first_chapter_id")
    p.add_argument("last_chapter_id")

    p = sub.add_parser("sync", help="Restore chapter records from media already in storage")
    p.add_argument("title_id")

    p = sub.add_parser("config", help="Show or update the source config")
    p.add_argument("--base-url", help="New source base URL; URL patterns on the old host follow it")
    p.add_argument("--title-pattern", help="Detail URL template containing {slug}")
    p.add_argument("--chapter-pattern", help="Chapter URL template with {slug} and {chapter} ('' to clear)")
    p.add_argument("--search-pattern", help="Search URL template containing {keyword}")

    return parser.parse_args(argv)


def run_config(store: MetadataStore, args: argparse.Namespace) -> int:
    config = store.get_source_config()
    changed = False

    if args.base_url:
        new_base = args.base_url.rstrip("/")
        config.title_url_pattern = rewrite_host(config.title_url_pattern, new_base)
        config.search_url_pattern = rewrite_host(config.search_url_pattern, new_base)
        config.chapter_url_pattern = rewrite_host(config.chapter_url_pattern, new_base)
        config.base_url = new_base
        changed = True
    for field in ("title_pattern", "chapter_pattern", "search_pattern"):
        value = getattr(args, field)
        if value is not None:
            setattr(config, field.replace("_pattern", "_url_pattern"), value)
            changed = True

    if changed:
        config = store.save_source_config(config)

    print(f"base_url            = {config.base_url}")
    print(f"title_url_pattern   = {config.title_url_pattern}")
    print(f"chapter_url_pattern = {config.chapter_url_pattern or '(inferred)'}")
    print(f"search_url_pattern  = {config.search_url_pattern}")
    return 0


async def run(args: argparse.Namespace) -> int:
    store = MetadataStore()
    if args.command == "config":
        return run_config(store, args)

    storage = build_blob_store()
    async with BypassResolver() as resolver:
        media = MediaPipeline(storage, base_url=store.get_source_config().base_url, resolver=resolver)
        orchestrator = CrawlOrchestrator(store, storage, resolver, media)

        if args.command == "search":
            results = await orchestrator.search(" ".join(args.keyword))
            if not results:
                print("No results.")
                return 1
            for item in results:
                print(f"{item.id:<40} {item.title}  [{item.latest_chapter}]")
            return 0

        if args.command == "crawl":
            title = await orchestrator.crawl_title(args.identifier)
            print(f"{title.name} ({title.id}): {title.total_chapters} chapters")
            return 0

        if args.command == "chapter":
            content = await orchestrator.crawl_chapter(args.title_id, args.chapter_id)
            if content is None:
                print("No images were published.")
                return 1
            print(f"{args.title_id}/{args.chapter_id}: {len(content.images)} images")
            return 0

        if args.command == "range":
            report = await orchestrator.crawl_range(args.title_id, args.first_chapter_id, args.last_chapter_id)
            print(f"ok: {len(report.succeeded)}  skipped: {len(report.skipped)}  failed: {len(report.failed)}")
            for chapter_id, reason in report.failed:
                print(f"  [X] {chapter_id}: {reason}")
            return 1 if report.failed else 0

        if args.command == "sync":
            restored, skipped = await orchestrator.sync_chapters(args.title_id)
            print(f"restored: {restored}  skipped: {skipped}")
            return 0

    return 2


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logger.debug("Database: %s, storage: %s", settings.DATABASE_PATH, settings.STORAGE_BACKEND)
    try:
        return asyncio.run(run(args))
    except CrawlError as e:
        logger.error("[Main] %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
