"""SQLite persistence for titles, downloaded chapters and the source config.

Writes are upserts keyed by the title slug and by the ``(title_id,
chapter_id)`` composite key, so repeated or concurrent crawls of the same
thing converge on one row. List-valued fields are stored as JSON text.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from . import settings
from .errors import PersistenceConflict
from .models import ChapterContent, ChapterReference, SourceConfig, Title

logger = logging.getLogger("mangaverse.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS titles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    url TEXT,
    thumbnail TEXT,
    description TEXT,
    author TEXT,
    status TEXT,
    genres TEXT NOT NULL DEFAULT '[]',
    chapters TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chapter_contents (
    title_id TEXT NOT NULL,
    chapter_id TEXT NOT NULL,
    images TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (title_id, chapter_id),
    FOREIGN KEY (title_id) REFERENCES titles (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS source_config (
    key TEXT PRIMARY KEY,
    base_url TEXT NOT NULL,
    title_url_pattern TEXT NOT NULL,
    chapter_url_pattern TEXT NOT NULL DEFAULT '',
    search_url_pattern TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def default_source_config() -> SourceConfig:
    return SourceConfig(
        base_url=settings.BASE_URL,
        title_url_pattern=settings.TITLE_URL_PATTERN,
        chapter_url_pattern=settings.CHAPTER_URL_PATTERN,
        search_url_pattern=settings.SEARCH_URL_PATTERN,
    )


class MetadataStore:
    def __init__(self, db_path: Path | str = settings.DATABASE_PATH):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise PersistenceConflict(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── TITLES ────────────────────────────────────────────────
    @staticmethod
    def _row_to_title(row: sqlite3.Row) -> Title:
        return Title(
            id=row["id"],
            name=row["name"],
            url=row["url"] or "",
            thumbnail=row["thumbnail"] or "",
            description=row["description"] or "",
            author=row["author"] or "Unknown",
            status=row["status"] or "Unknown",
            genres=json.loads(row["genres"]),
            chapters=[ChapterReference(**c) for c in json.loads(row["chapters"])],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def get_title(self, title_id: str) -> Title | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM titles WHERE id = ?", (title_id,)).fetchone()
        return self._row_to_title(row) if row else None

    def upsert_title(self, title: Title) -> Title:
        """Inserts or replaces every field except created_at; the chapter list is replaced whole."""
        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO titles (id, name, url, thumbnail, description, author, status,
                                    genres, chapters, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    name = excluded.name,
                    url = excluded.url,
                    thumbnail = excluded.thumbnail,
                    description = excluded.description,
                    author = excluded.author,
                    status = excluded.status,
                    genres = excluded.genres,
                    chapters = excluded.chapters,
                    updated_at = excluded.updated_at
                """,
                (
                    title.id,
                    title.name,
                    title.url,
                    title.thumbnail,
                    title.description,
                    title.author,
                    title.status,
                    json.dumps(title.genres, ensure_ascii=False),
                    json.dumps([asdict(c) for c in title.chapters], ensure_ascii=False),
                    now,
                    now,
                ),
            )
        return self.get_title(title.id)

    def delete_title(self, title_id: str) -> bool:
        """Deletes the title and, through the foreign key, its chapter contents."""
        with self._connect() as conn:
            deleted = conn.execute("DELETE FROM titles WHERE id = ?", (title_id,)).rowcount
        return deleted > 0

    # ── CHAPTER CONTENT ───────────────────────────────────────
    @staticmethod
    def _row_to_content(row: sqlite3.Row) -> ChapterContent:
        return ChapterContent(
            title_id=row["title_id"],
            chapter_id=row["chapter_id"],
            images=json.loads(row["images"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def get_chapter_content(self, title_id: str, chapter_id: str) -> ChapterContent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM chapter_contents WHERE title_id = ? AND chapter_id = ?",
                (title_id, chapter_id),
            ).fetchone()
        return self._row_to_content(row) if row else None

    def upsert_chapter_content(self, content: ChapterContent) -> ChapterContent:
        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chapter_contents (title_id, chapter_id, images, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (title_id, chapter_id) DO UPDATE SET
                    images = excluded.images,
                    updated_at = excluded.updated_at
                """,
                (content.title_id, content.chapter_id, json.dumps(content.images), now, now),
            )
        return self.get_chapter_content(content.title_id, content.chapter_id)

    def downloaded_chapter_ids(self, title_id: str) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT chapter_id FROM chapter_contents WHERE title_id = ? AND images != '[]'",
                (title_id,),
            ).fetchall()
        return {row["chapter_id"] for row in rows}

    def delete_chapter_contents(self, title_id: str, chapter_ids: list[str]) -> int:
        if not chapter_ids:
            return 0
        placeholders = ", ".join("?" for _ in chapter_ids)
        with self._connect() as conn:
            deleted = conn.execute(
                f"DELETE FROM chapter_contents WHERE title_id = ? AND chapter_id IN ({placeholders})",
                (title_id, *chapter_ids),
            ).rowcount
        return deleted

    # ── SOURCE CONFIG ─────────────────────────────────────────
    def get_source_config(self, key: str = "default") -> SourceConfig:
        """Current source config, read fresh on every call; settings defaults when unset."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM source_config WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default_source_config()
        return SourceConfig(
            base_url=row["base_url"],
            title_url_pattern=row["title_url_pattern"],
            chapter_url_pattern=row["chapter_url_pattern"],
            search_url_pattern=row["search_url_pattern"],
            updated_at=_parse_ts(row["updated_at"]),
        )

    def save_source_config(self, config: SourceConfig, key: str = "default") -> SourceConfig:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO source_config (key, base_url, title_url_pattern, chapter_url_pattern,
                                           search_url_pattern, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    base_url = excluded.base_url,
                    title_url_pattern = excluded.title_url_pattern,
                    chapter_url_pattern = excluded.chapter_url_pattern,
                    search_url_pattern = excluded.search_url_pattern,
                    updated_at = excluded.updated_at
                """,
                (
                    key,
                    config.base_url,
                    config.title_url_pattern,
                    config.chapter_url_pattern,
                    config.search_url_pattern,
                    _now().isoformat(),
                ),
            )
        logger.info("[Config] Source config saved: base_url = %s", config.base_url)
        return self.get_source_config(key)
