"""SQLite-backed catalog and job store."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator

from ..errors import ActiveJobConflict, StoreWriteError
from ..models import (
    BookRecord,
    JobStatus,
    SummaryJob,
    SummaryRecord,
    normalise_text,
    utcnow,
)
from .base import CatalogStore, JobStore

_SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    title_key TEXT NOT NULL,
    author_key TEXT NOT NULL,
    subtitle TEXT,
    authors TEXT NOT NULL,
    isbn10 TEXT,
    isbn13 TEXT,
    external_id TEXT,
    categories TEXT NOT NULL DEFAULT '[]',
    description TEXT,
    publisher TEXT,
    published_year INTEGER,
    cover_url TEXT,
    source_attribution TEXT NOT NULL DEFAULT '[]',
    average_rating REAL,
    ratings_count INTEGER,
    popularity_rank REAL,
    is_featured INTEGER NOT NULL DEFAULT 0,
    is_bestseller INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_books_external_id ON books(external_id);
CREATE INDEX IF NOT EXISTS idx_books_isbn13 ON books(isbn13);
CREATE INDEX IF NOT EXISTS idx_books_isbn10 ON books(isbn10);
CREATE INDEX IF NOT EXISTS idx_books_title_author ON books(title_key, author_key);

CREATE TABLE IF NOT EXISTS summaries (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL UNIQUE REFERENCES books(id) ON DELETE CASCADE,
    payload TEXT NOT NULL,
    extended_summary TEXT,
    generation_date TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS summary_jobs (
    id TEXT PRIMARY KEY,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    status TEXT NOT NULL CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    style TEXT NOT NULL DEFAULT 'full',
    error_message TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON summary_jobs(status, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS ux_jobs_active_book
    ON summary_jobs(book_id) WHERE status IN ('pending', 'processing');
"""

_BOOK_JSON_COLUMNS = ("authors", "categories", "source_attribution")
_ENRICHABLE_COLUMNS = frozenset({"average_rating", "ratings_count", "popularity_rank", "cover_url"})


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(_SCHEMA)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class SQLiteCatalogStore(CatalogStore, JobStore):
    """Catalog, summary and job tables behind a single locked connection."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    def find_by_external_id(self, external_id: str) -> BookRecord | None:
        return self._find_book("external_id = ?", (external_id,))

    def find_by_isbn13(self, isbn13: str) -> BookRecord | None:
        return self._find_book("isbn13 = ?", (isbn13,))

    def find_by_isbn10(self, isbn10: str) -> BookRecord | None:
        return self._find_book("isbn10 = ?", (isbn10,))

    def find_by_title_author(self, title: str, primary_author: str) -> BookRecord | None:
        return self._find_book(
            "title_key = ? AND author_key = ?",
            (normalise_text(title), normalise_text(primary_author)),
        )

    def get_book(self, book_id: str) -> BookRecord | None:
        return self._find_book("id = ?", (book_id,))

    def insert_book(self, book: BookRecord) -> BookRecord:
        row = book.model_dump(mode="json")
        for column in _BOOK_JSON_COLUMNS:
            row[column] = json.dumps(row[column], ensure_ascii=False)
        row["is_featured"] = int(book.is_featured)
        row["is_bestseller"] = int(book.is_bestseller)
        row["title_key"] = normalise_text(book.title)
        row["author_key"] = normalise_text(book.primary_author)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        with self._write("insert_book") as conn:
            conn.execute(f"INSERT INTO books ({columns}) VALUES ({placeholders})", row)
        return book

    def delete_book(self, book_id: str) -> bool:
        with self._write("delete_book") as conn:
            cur = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cur.rowcount > 0

    def update_book(self, book_id: str, changes: dict[str, Any]) -> BookRecord | None:
        unknown = set(changes) - _ENRICHABLE_COLUMNS
        if unknown:
            raise ValueError(f"Book columns cannot be updated: {sorted(unknown)}")
        if not changes:
            return self.get_book(book_id)
        assignments = ", ".join(f"{column} = :{column}" for column in changes)
        params = {**changes, "id": book_id, "updated_at": utcnow().isoformat()}
        with self._write("update_book") as conn:
            cur = conn.execute(
                f"UPDATE books SET {assignments}, updated_at = :updated_at WHERE id = :id", params
            )
        if cur.rowcount == 0:
            return None
        return self.get_book(book_id)

    def list_books(self, missing: str | None = None, limit: int | None = None) -> list[BookRecord]:
        query = "SELECT * FROM books"
        if missing is not None:
            if missing not in _ENRICHABLE_COLUMNS:
                raise ValueError(f"Unknown book column: {missing}")
            empty = "''" if missing == "cover_url" else "0"
            query += f" WHERE {missing} IS NULL OR {missing} = {empty}"
        query += " ORDER BY created_at, rowid"
        if limit is not None:
            query += f" LIMIT {int(limit)}"
        with self._lock:
            rows = self._conn.execute(query).fetchall()
        return [self._book_from_row(row) for row in rows]

    def count_books(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT count(*) FROM books").fetchone()[0]

    def _find_book(self, where: str, params: tuple[Any, ...]) -> BookRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM books WHERE {where} ORDER BY created_at LIMIT 1", params
            ).fetchone()
        return self._book_from_row(row) if row is not None else None

    @staticmethod
    def _book_from_row(row: sqlite3.Row) -> BookRecord:
        data = dict(row)
        data.pop("title_key")
        data.pop("author_key")
        for column in _BOOK_JSON_COLUMNS:
            data[column] = json.loads(data[column])
        return BookRecord.model_validate(data)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------
    def insert_summary(self, summary: SummaryRecord) -> SummaryRecord:
        with self._write("insert_summary") as conn:
            conn.execute(
                """
                INSERT INTO summaries(id, book_id, payload, extended_summary,
                                      generation_date, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                self._summary_params(summary),
            )
        return summary

    def update_summary(self, summary_id: str, changes: dict[str, Any]) -> SummaryRecord | None:
        with self._write("update_summary") as conn:
            current = self._summary_row(conn, "id = ?", (summary_id,))
            if current is None:
                return None
            merged = current.model_dump()
            merged.update(changes)
            merged.update(id=current.id, book_id=current.book_id, updated_at=utcnow())
            updated = SummaryRecord.model_validate(merged)
            _, _, payload, extended, generated, _, updated_at = self._summary_params(updated)
            conn.execute(
                """
                UPDATE summaries
                SET payload = ?, extended_summary = ?, generation_date = ?, updated_at = ?
                WHERE id = ?
                """,
                (payload, extended, generated, updated_at, summary_id),
            )
        return updated

    def delete_summary(self, summary_id: str) -> SummaryRecord | None:
        with self._write("delete_summary") as conn:
            current = self._summary_row(conn, "id = ?", (summary_id,))
            if current is not None:
                conn.execute("DELETE FROM summaries WHERE id = ?", (summary_id,))
        return current

    def get_summary(self, summary_id: str) -> SummaryRecord | None:
        return self._find_summary("id = ?", (summary_id,))

    def find_completed_summary(self, book_id: str) -> SummaryRecord | None:
        return self._find_summary("book_id = ?", (book_id,))

    def _find_summary(self, where: str, params: tuple[Any, ...]) -> SummaryRecord | None:
        with self._lock:
            return self._summary_row(self._conn, where, params)

    @staticmethod
    def _summary_row(
        conn: sqlite3.Connection, where: str, params: tuple[Any, ...]
    ) -> SummaryRecord | None:
        """Read one summary; the caller holds ``_lock``."""

        row = conn.execute(f"SELECT * FROM summaries WHERE {where}", params).fetchone()
        if row is None:
            return None
        data = json.loads(row["payload"])
        data.update(
            id=row["id"],
            book_id=row["book_id"],
            extended_summary=row["extended_summary"],
            generation_date=row["generation_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        return SummaryRecord.model_validate(data)

    @staticmethod
    def _summary_params(summary: SummaryRecord) -> tuple[Any, ...]:
        payload = summary.content().model_dump(mode="json")
        return (
            summary.id,
            summary.book_id,
            json.dumps(payload, ensure_ascii=False),
            summary.extended_summary,
            summary.generation_date.isoformat(),
            summary.created_at.isoformat(),
            summary.updated_at.isoformat(),
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def insert_job(self, job: SummaryJob) -> SummaryJob:
        try:
            with self._write("insert_job") as conn:
                conn.execute(
                    """
                    INSERT INTO summary_jobs(id, book_id, status, style, error_message,
                                             retry_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.book_id,
                        job.status.value,
                        job.style,
                        job.error_message,
                        job.retry_count,
                        job.created_at.isoformat(),
                        job.updated_at.isoformat(),
                    ),
                )
        except StoreWriteError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError) and job.is_active:
                if self.find_active_job_for_book(job.book_id) is not None:
                    raise ActiveJobConflict(f"Book {job.book_id} already has an active job") from exc
            raise
        return job

    def get_job(self, job_id: str) -> SummaryJob | None:
        return self._find_job("id = ?", (job_id,))

    def find_active_job_for_book(self, book_id: str) -> SummaryJob | None:
        return self._find_job(
            "book_id = ? AND status IN ('pending', 'processing')", (book_id,)
        )

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: str | None = None,
        increment_retry: bool = False,
    ) -> SummaryJob | None:
        with self._write("update_job_status") as conn:
            cur = conn.execute(
                """
                UPDATE summary_jobs
                SET status = ?,
                    error_message = COALESCE(?, error_message),
                    retry_count = retry_count + ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (status.value, error_message, 1 if increment_retry else 0, utcnow().isoformat(), job_id),
            )
        if cur.rowcount == 0:
            return None
        return self.get_job(job_id)

    def claim_next_pending(self) -> SummaryJob | None:
        with self._write("claim_next_pending") as conn:
            row = conn.execute(
                "SELECT id FROM summary_jobs WHERE status = 'pending' ORDER BY created_at, rowid LIMIT 1"
            ).fetchone()
            if row is None:
                return None
            cur = conn.execute(
                "UPDATE summary_jobs SET status = 'processing', updated_at = ? WHERE id = ? AND status = 'pending'",
                (utcnow().isoformat(), row["id"]),
            )
            claimed = cur.rowcount == 1
        return self.get_job(row["id"]) if claimed else None

    def requeue_stale(self, older_than: datetime) -> int:
        with self._write("requeue_stale") as conn:
            cur = conn.execute(
                """
                UPDATE summary_jobs SET status = 'pending', updated_at = ?
                WHERE status = 'processing' AND updated_at < ?
                """,
                (utcnow().isoformat(), older_than.isoformat()),
            )
        return cur.rowcount

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[SummaryJob]:
        query = "SELECT * FROM summary_jobs"
        params: tuple[Any, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        query += " ORDER BY created_at DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, (*params, limit)).fetchall()
        return [SummaryJob.model_validate(dict(row)) for row in rows]

    def _find_job(self, where: str, params: tuple[Any, ...]) -> SummaryJob | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM summary_jobs WHERE {where} ORDER BY created_at DESC LIMIT 1",
                params,
            ).fetchone()
        return SummaryJob.model_validate(dict(row)) if row is not None else None

    # ------------------------------------------------------------------
    @contextmanager
    def _write(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreWriteError(f"{operation} failed: {exc}") from exc


__all__ = ["SQLiteCatalogStore", "SQLiteManager"]
