"""Persisted operator event log for ingestion lifecycle and failures."""

from __future__ import annotations

import itertools
import logging
from typing import Optional

from tracker.common import LedgerClock, LedgerDatabase, stable_hash

logger = logging.getLogger(__name__)


class IngestionEventLog:
    """Appends rows to ``ingestion_event_log``, each in its own unit of work."""

    def __init__(self, db: LedgerDatabase, clock: LedgerClock | None = None) -> None:
        self._db = db
        self._clock = clock or LedgerClock()
        self._sequence = itertools.count()

    def log_event(
        self,
        event_type: str,
        status: str,
        details: str,
        *,
        owner_id: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> None:
        ts = self._clock.now_utc()
        event_id = stable_hash(
            ("ingestion_event_log", event_type, status, ts, owner_id, wallet, details, next(self._sequence))
        )
        self._db.begin()
        try:
            self._db.execute(
                """
                INSERT INTO ingestion_event_log (
                    event_id, event_ts_utc, owner_id, wallet, event_type, status, details
                ) VALUES (
                    :event_id, :event_ts_utc, :owner_id, :wallet, :event_type, :status, :details
                )
                ON CONFLICT (event_id) DO NOTHING
                """,
                {
                    "event_id": event_id,
                    "event_ts_utc": ts,
                    "owner_id": owner_id,
                    "wallet": wallet,
                    "event_type": event_type,
                    "status": status,
                    "details": details,
                },
            )
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    def safe_log_event(
        self,
        event_type: str,
        status: str,
        details: str,
        *,
        owner_id: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> None:
        """Best-effort variant; a failing event write must not stop ingestion."""
        try:
            self.log_event(event_type, status, details, owner_id=owner_id, wallet=wallet)
        except Exception as exc:
            logger.warning("Event log write failed for %s/%s: %s", event_type, status, exc)

    def recent_events(self, limit: int = 20, *, owner_id: Optional[str] = None) -> list[dict[str, object]]:
        sql = """
            SELECT event_ts_utc, owner_id, wallet, event_type, status, details
            FROM ingestion_event_log
        """
        params: dict[str, object] = {"limit": limit}
        if owner_id is not None:
            sql += " WHERE owner_id = :owner_id"
            params["owner_id"] = owner_id
        sql += " ORDER BY event_ts_utc DESC LIMIT :limit"
        return [dict(row) for row in self._db.fetch_all(sql, params)]
