from __future__ import annotations

import contextlib
import os
import sqlite3
import time
from collections.abc import Iterable, Iterator
from typing import Any, Optional

from .config import SourceConfig
from .logging_bridge import error as log_error
from .models import RUN_ERROR, RUN_RUNNING, RUN_SUCCESS, Candidate, Posting, RunLog, Source
from .utils import now_iso

# One row guards ingestion runs across processes sharing this database.
RUN_LEASE = "ingestion"
DEFAULT_LEASE_TTL_S = 3600.0

_POSTING_FIELDS = (
    "title",
    "company",
    "location",
    "description",
    "url",
    "posted_date",
    "closing_date",
    "salary",
    "job_type",
    "category",
)


class SourceNotFound(LookupError):
    """The source id has no row in the sources table."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id!r}")
        self.source_id = source_id


class RunLogStateError(RuntimeError):
    """A run log was completed twice, or does not exist."""


class RecordStore:
    """
    SQLite persistence for postings, sources and run logs.

    One short-lived connection per operation (WAL mode), so the store can be
    shared between the scheduler thread and readers without extra locking.
    Every write is its own BEGIN IMMEDIATE transaction.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path

    # ---- lifecycle -------------------------------------------------------------

    def init(self) -> None:
        """Ensure the database file and schema exist. Safe to call multiple times."""
        with self._session():
            pass

    def reset(self) -> None:
        """Remove the DB file (and WAL side files) entirely. Safe if missing."""
        for suffix in ("", "-wal", "-shm"):
            with contextlib.suppress(FileNotFoundError):
                os.remove(self.sqlite_path + suffix)

    # ---- sources ---------------------------------------------------------------

    def sync_sources(self, configs: Iterable[SourceConfig]) -> None:
        """
        Seed/refresh source rows from configuration.
        name/url follow the config; `enabled` is only set when the row is created.
        """
        ts = now_iso()
        with self._session() as conn, _transaction(conn):
            for sc in configs:
                conn.execute(
                    """
                    INSERT INTO sources (id, name, url, enabled, total_jobs, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      name = excluded.name,
                      url = excluded.url,
                      updated_at = excluded.updated_at
                    """,
                    (sc.id, sc.name, sc.url, int(sc.enabled), ts, ts),
                )

    def list_sources(self) -> list[Source]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM sources ORDER BY name, id").fetchall()
        return [_source(r) for r in rows]

    def enabled_sources(self) -> list[Source]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM sources WHERE enabled = 1 ORDER BY name, id").fetchall()
        return [_source(r) for r in rows]

    def get_source(self, source_id: str) -> Optional[Source]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        return _source(row) if row else None

    def require_source(self, source_id: str) -> Source:
        src = self.get_source(source_id)
        if src is None:
            raise SourceNotFound(source_id)
        return src

    def set_source_enabled(self, source_id: str, enabled: bool) -> bool:
        """Returns False if no such source."""
        with self._session() as conn, _transaction(conn):
            cur = conn.execute(
                "UPDATE sources SET enabled = ?, updated_at = ? WHERE id = ?",
                (int(bool(enabled)), now_iso(), source_id),
            )
            return cur.rowcount > 0

    def update_source_stats(self, source_id: str, jobs_found: int) -> None:
        """Stamp last_scraped and record how many postings the latest run found."""
        ts = now_iso()
        with self._session() as conn, _transaction(conn):
            conn.execute(
                "UPDATE sources SET last_scraped = ?, total_jobs = ?, updated_at = ? WHERE id = ?",
                (ts, int(jobs_found), ts, source_id),
            )

    def source_stats(self, source_id: str) -> dict[str, Any]:
        """{"total_jobs", "active_jobs", "last_scrape": RunLog | None} for one source."""
        with self._session() as conn:
            total, active = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(active), 0) FROM postings WHERE source_id = ?",
                (source_id,),
            ).fetchone()
            row = conn.execute(
                "SELECT * FROM run_logs WHERE source_id = ? ORDER BY started_at DESC, id DESC LIMIT 1",
                (source_id,),
            ).fetchone()
        return {
            "total_jobs": int(total or 0),
            "active_jobs": int(active or 0),
            "last_scrape": _run_log(row) if row else None,
        }

    # ---- postings --------------------------------------------------------------

    def upsert_posting(self, source_id: str, candidate: Candidate) -> bool:
        """
        Insert or update by (source_id, external_id). Returns True if created.
        `active` and `created_at` are never touched on update.
        """
        row = candidate.as_row(source_id)
        ts = now_iso()
        try:
            with self._session() as conn, _transaction(conn):
                found = conn.execute(
                    "SELECT id FROM postings WHERE source_id = ? AND external_id = ?",
                    (source_id, candidate.external_id),
                ).fetchone()
                if found:
                    sets = ", ".join(f"{f} = ?" for f in _POSTING_FIELDS)
                    conn.execute(
                        f"UPDATE postings SET {sets}, updated_at = ? WHERE id = ?",
                        (*(row[f] for f in _POSTING_FIELDS), ts, found["id"]),
                    )
                    return False
                cols = ("source_id", "external_id", *_POSTING_FIELDS)
                conn.execute(
                    f"""
                    INSERT INTO postings ({", ".join(cols)}, active, created_at, updated_at)
                    VALUES ({", ".join("?" for _ in cols)}, 1, ?, ?)
                    """,
                    (*(row[c] for c in cols), ts, ts),
                )
                return True
        except Exception as e:
            log_error({
                "component": "job_tracker.db",
                "op": "upsert_posting",
                "sqlite_path": self.sqlite_path,
                "source_id": source_id,
                "external_id": candidate.external_id,
                "error": repr(e),
            })
            raise

    def get_posting(self, posting_id: int) -> Optional[Posting]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM postings WHERE id = ?", (posting_id,)).fetchone()
        return _posting(row) if row else None

    def find_posting(self, source_id: str, external_id: str) -> Optional[Posting]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM postings WHERE source_id = ? AND external_id = ?",
                (source_id, external_id),
            ).fetchone()
        return _posting(row) if row else None

    def query_postings(
        self,
        *,
        active: Optional[bool] = None,
        source_id: Optional[str] = None,
        search: Optional[str] = None,
        location: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Posting]:
        """Most recent first. `search` hits title/company/description, case-insensitive."""
        where: list[str] = []
        args: list[Any] = []
        if active is not None:
            where.append("active = ?")
            args.append(int(bool(active)))
        if source_id:
            where.append("source_id = ?")
            args.append(source_id)
        if search:
            where.append("(title LIKE ? OR company LIKE ? OR description LIKE ?)")
            args.extend([f"%{search}%"] * 3)
        if location:
            where.append("location LIKE ?")
            args.append(f"%{location}%")

        sql = "SELECT * FROM postings"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            args.append(int(limit))

        with self._session() as conn:
            rows = conn.execute(sql, args).fetchall()
        return [_posting(r) for r in rows]

    def posting_stats(self) -> dict[str, Any]:
        with self._session() as conn:
            total, active = conn.execute("SELECT COUNT(*), COALESCE(SUM(active), 0) FROM postings").fetchone()
            by_source = conn.execute(
                """
                SELECT source_id, COUNT(*) AS count FROM postings
                WHERE active = 1
                GROUP BY source_id
                ORDER BY count DESC, source_id
                """
            ).fetchall()
        return {
            "total": int(total or 0),
            "active": int(active or 0),
            "by_source": [{"source_id": r["source_id"], "count": int(r["count"])} for r in by_source],
        }

    def deactivate_posting(self, posting_id: int) -> bool:
        with self._session() as conn, _transaction(conn):
            cur = conn.execute(
                "UPDATE postings SET active = 0, updated_at = ? WHERE id = ?",
                (now_iso(), posting_id),
            )
            return cur.rowcount > 0

    def sweep_expired(self, today: str) -> int:
        """
        Flip active postings whose closing_date (YYYY-MM-DD) is strictly before
        `today` to inactive. Returns the number flipped; never re-activates.
        """
        with self._session() as conn, _transaction(conn):
            cur = conn.execute(
                """
                UPDATE postings SET active = 0, updated_at = ?
                WHERE active = 1
                  AND closing_date IS NOT NULL AND closing_date != ''
                  AND closing_date < ?
                """,
                (now_iso(), today),
            )
            return cur.rowcount

    def count_postings(self, source_id: Optional[str] = None) -> int:
        """Return total rows in postings (optionally per source); 0 if DB missing."""
        if not os.path.exists(self.sqlite_path):
            return 0
        with self._session() as conn:
            if source_id is None:
                (n,) = conn.execute("SELECT COUNT(*) FROM postings").fetchone()
            else:
                (n,) = conn.execute("SELECT COUNT(*) FROM postings WHERE source_id = ?", (source_id,)).fetchone()
        return int(n or 0)

    # ---- run logs --------------------------------------------------------------

    def create_run_log(self, source_id: str) -> int:
        with self._session() as conn, _transaction(conn):
            cur = conn.execute(
                "INSERT INTO run_logs (source_id, status, started_at) VALUES (?, ?, ?)",
                (source_id, RUN_RUNNING, now_iso()),
            )
            return int(cur.lastrowid)

    def complete_run_log(
        self,
        log_id: int,
        status: str,
        *,
        jobs_found: int = 0,
        jobs_added: int = 0,
        jobs_updated: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        """
        running -> success|error, exactly once.
        Raises RunLogStateError for a second completion or an unknown id.
        """
        if status not in (RUN_SUCCESS, RUN_ERROR):
            raise ValueError(f"Terminal status must be {RUN_SUCCESS!r} or {RUN_ERROR!r}, got {status!r}")
        with self._session() as conn, _transaction(conn):
            cur = conn.execute(
                """
                UPDATE run_logs
                SET status = ?, jobs_found = ?, jobs_added = ?, jobs_updated = ?,
                    error_message = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (status, jobs_found, jobs_added, jobs_updated, error_message, now_iso(), log_id, RUN_RUNNING),
            )
            if cur.rowcount == 0:
                row = conn.execute("SELECT status FROM run_logs WHERE id = ?", (log_id,)).fetchone()
                if row is None:
                    raise RunLogStateError(f"Run log {log_id} does not exist")
                raise RunLogStateError(f"Run log {log_id} already completed ({row['status']})")

    def get_run_log(self, log_id: int) -> Optional[RunLog]:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT l.*, s.name AS source_name FROM run_logs l
                LEFT JOIN sources s ON s.id = l.source_id
                WHERE l.id = ?
                """,
                (log_id,),
            ).fetchone()
        return _run_log(row) if row else None

    def recent_run_logs(self, limit: int = 50) -> list[RunLog]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT l.*, s.name AS source_name FROM run_logs l
                LEFT JOIN sources s ON s.id = l.source_id
                ORDER BY l.started_at DESC, l.id DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        return [_run_log(r) for r in rows]

    def run_logs_for_source(self, source_id: str, limit: int = 10) -> list[RunLog]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT l.*, s.name AS source_name FROM run_logs l
                LEFT JOIN sources s ON s.id = l.source_id
                WHERE l.source_id = ?
                ORDER BY l.started_at DESC, l.id DESC
                LIMIT ?
                """,
                (source_id, int(limit)),
            ).fetchall()
        return [_run_log(r) for r in rows]

    # ---- run lease -------------------------------------------------------------

    def acquire_run_lease(self, holder: str, ttl_s: float = DEFAULT_LEASE_TTL_S) -> bool:
        """
        Claim the store-wide run lease for `holder`.

        False when another holder has an unexpired claim. An expired claim
        (a crashed process) is taken over; re-claiming one's own lease renews it.
        """
        now = time.time()
        with self._session() as conn, _transaction(conn):
            row = conn.execute("SELECT holder, expires_at FROM run_lease WHERE name = ?", (RUN_LEASE,)).fetchone()
            if row is not None and row["holder"] != holder and row["expires_at"] > now:
                return False
            conn.execute(
                """
                INSERT INTO run_lease (name, holder, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                  holder = excluded.holder,
                  acquired_at = excluded.acquired_at,
                  expires_at = excluded.expires_at
                """,
                (RUN_LEASE, holder, now_iso(), now + float(ttl_s)),
            )
            return True

    def release_run_lease(self, holder: str) -> bool:
        """Drop the lease if `holder` owns it. Returns False otherwise."""
        with self._session() as conn, _transaction(conn):
            cur = conn.execute("DELETE FROM run_lease WHERE name = ? AND holder = ?", (RUN_LEASE, holder))
            return cur.rowcount > 0

    def run_lease_holder(self) -> Optional[str]:
        """Current unexpired holder, or None."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT holder FROM run_lease WHERE name = ? AND expires_at > ?",
                (RUN_LEASE, time.time()),
            ).fetchone()
        return row["holder"] if row else None

    # ---- internals -------------------------------------------------------------

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        _ensure_dir(self.sqlite_path)
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)
            yield conn


# ---- Internal utilities -----------------------------------------------------


@contextlib.contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; transactions are explicit.
    conn = sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-8000;")  # approx 8MB cache


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sources (
          id           TEXT PRIMARY KEY,
          name         TEXT NOT NULL,
          url          TEXT NOT NULL,
          enabled      INTEGER NOT NULL DEFAULT 1,
          last_scraped TEXT,
          total_jobs   INTEGER NOT NULL DEFAULT 0,
          created_at   TEXT NOT NULL,
          updated_at   TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS postings (
          id           INTEGER PRIMARY KEY,
          source_id    TEXT NOT NULL REFERENCES sources(id),
          external_id  TEXT NOT NULL,
          title        TEXT NOT NULL,
          company      TEXT,
          location     TEXT,
          description  TEXT,
          url          TEXT NOT NULL,
          posted_date  TEXT,
          closing_date TEXT,
          salary       TEXT,
          job_type     TEXT,
          category     TEXT,
          active       INTEGER NOT NULL DEFAULT 1,
          created_at   TEXT NOT NULL,
          updated_at   TEXT NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS ux_postings_source_external
          ON postings (source_id, external_id);
        CREATE INDEX IF NOT EXISTS ix_postings_active_closing
          ON postings (active, closing_date);
        CREATE INDEX IF NOT EXISTS ix_postings_created
          ON postings (created_at);

        -- No FK on source_id: an unknown source still gets its failed run logged.
        CREATE TABLE IF NOT EXISTS run_logs (
          id            INTEGER PRIMARY KEY,
          source_id     TEXT NOT NULL,
          status        TEXT NOT NULL CHECK (status IN ('running', 'success', 'error')),
          jobs_found    INTEGER NOT NULL DEFAULT 0,
          jobs_added    INTEGER NOT NULL DEFAULT 0,
          jobs_updated  INTEGER NOT NULL DEFAULT 0,
          error_message TEXT,
          started_at    TEXT NOT NULL,
          completed_at  TEXT
        );
        CREATE INDEX IF NOT EXISTS ix_run_logs_source
          ON run_logs (source_id, started_at);

        CREATE TABLE IF NOT EXISTS run_lease (
          name        TEXT PRIMARY KEY,
          holder      TEXT NOT NULL,
          acquired_at TEXT NOT NULL,
          expires_at  REAL NOT NULL
        );
        """
    )


def _source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        enabled=bool(row["enabled"]),
        last_scraped=row["last_scraped"],
        total_jobs=int(row["total_jobs"] or 0),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _posting(row: sqlite3.Row) -> Posting:
    return Posting(
        id=int(row["id"]),
        source_id=row["source_id"],
        external_id=row["external_id"],
        active=bool(row["active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        **{f: row[f] for f in _POSTING_FIELDS},
    )


def _run_log(row: sqlite3.Row) -> RunLog:
    keys = row.keys()
    return RunLog(
        id=int(row["id"]),
        source_id=row["source_id"],
        status=row["status"],
        jobs_found=int(row["jobs_found"] or 0),
        jobs_added=int(row["jobs_added"] or 0),
        jobs_updated=int(row["jobs_updated"] or 0),
        error_message=row["error_message"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        source_name=row["source_name"] if "source_name" in keys else None,
    )
