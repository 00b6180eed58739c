"""SQLite-backed ledger of archived files, run reports and errors."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import sqlite_utils

from .errors import StorageError
from .models import ErrorLogEntry, RunReport, UploadRecord
from .utils import isoformat_utc, utcnow

MAX_ERROR_LOG_ENTRIES = 1000


class DedupLedger:
    """Append-only set of ``year/filename`` keys plus reporting tables."""

    FILES = "archived_files"
    REPORTS = "run_reports"
    ERRORS = "error_log"

    def __init__(self, db_path: Path, max_errors: int = MAX_ERROR_LOG_ENTRIES) -> None:
        self.db_path = db_path
        self.max_errors = max_errors
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite_utils.Database(str(db_path))
        with self._storage("ensure_schema"):
            self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.FILES].create(
            {
                "key": str,
                "email_id": str,
                "filename": str,
                "archive_file_id": str,
                "size": int,
                "upload_time": str,
                "recorded_at": str,
            },
            pk="key",
            if_not_exists=True,
        )
        self.db[self.REPORTS].create(
            {"id": int, "start_time": str, "end_time": str, "status": str, "report": str},
            pk="id",
            if_not_exists=True,
        )
        self.db[self.ERRORS].create(
            {
                "id": int,
                "timestamp": str,
                "error": str,
                "context": str,
                "service": str,
                "operation": str,
                "message_id": str,
                "stack": str,
            },
            pk="id",
            if_not_exists=True,
        )

    @contextmanager
    def _storage(self, operation: str, key: str | None = None) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StorageError(
                f"Ledger {operation} failed: {exc}", operation=operation, key=key
            ) from exc

    def is_recorded(self, key: str) -> bool:
        with self._storage("is_recorded", key):
            return self.db[self.FILES].count_where("key = ?", [key]) > 0

    def record(self, key: str, upload: Optional[UploadRecord] = None) -> None:
        """Idempotent; the first record for a key wins."""
        row: dict[str, Any] = {"key": key, "recorded_at": isoformat_utc(utcnow())}
        if upload is not None:
            row.update(
                email_id=upload.email_id,
                filename=upload.filename,
                archive_file_id=upload.archive_file_id,
                size=upload.size,
                upload_time=upload.upload_time,
            )
        with self._storage("record", key):
            self.db[self.FILES].insert(row, pk="key", ignore=True)

    def keys(self) -> set[str]:
        with self._storage("keys"):
            return {row["key"] for row in self.db[self.FILES].rows_where(select="key")}

    def get_upload(self, key: str) -> Optional[dict[str, Any]]:
        with self._storage("get_upload", key):
            rows = list(self.db[self.FILES].rows_where("key = ?", [key], limit=1))
        return rows[0] if rows else None

    def clear(self) -> int:
        """Administrative reset of archived keys; returns how many were dropped."""
        with self._storage("clear"):
            count = self.db[self.FILES].count
            with self.db.conn:
                self.db.execute(f"DELETE FROM [{self.FILES}]")
        return count

    def save_run_report(self, report: RunReport) -> None:
        payload = report.to_dict()
        with self._storage("save_run_report"):
            self.db[self.REPORTS].insert(
                {
                    "start_time": payload["startTime"],
                    "end_time": payload["endTime"],
                    "status": payload["status"],
                    "report": json.dumps(payload),
                }
            )

    def last_run_report(self) -> Optional[dict[str, Any]]:
        with self._storage("last_run_report"):
            rows = list(self.db[self.REPORTS].rows_where(order_by="id desc", limit=1))
        return json.loads(rows[0]["report"]) if rows else None

    def append_error(self, entry: ErrorLogEntry) -> None:
        """Append and trim to the most recent ``max_errors`` entries."""
        with self._storage("append_error"):
            self.db[self.ERRORS].insert(entry.to_dict())
            with self.db.conn:
                self.db.execute(
                    f"DELETE FROM [{self.ERRORS}] WHERE id NOT IN "
                    f"(SELECT id FROM [{self.ERRORS}] ORDER BY id DESC LIMIT ?)",
                    [self.max_errors],
                )

    def get_recent_errors(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent errors, oldest first."""
        with self._storage("get_recent_errors"):
            rows = list(self.db[self.ERRORS].rows_where(order_by="id desc", limit=limit))
        rows.reverse()
        for row in rows:
            row.pop("id", None)
        return rows

    def error_count(self) -> int:
        with self._storage("error_count"):
            return self.db[self.ERRORS].count

    def clear_errors(self) -> int:
        with self._storage("clear_errors"):
            count = self.db[self.ERRORS].count
            with self.db.conn:
                self.db.execute(f"DELETE FROM [{self.ERRORS}]")
        return count

    def is_healthy(self) -> bool:
        try:
            self.db.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True
