"""Background purge of expired and long-revoked refresh tokens."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenkeeper.config import settings
from tokenkeeper.core import clock
from tokenkeeper.core.database import SessionLocal
from tokenkeeper.core.exceptions import PersistenceError
from tokenkeeper.core.metrics import CLEANUP_DELETED
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.services.token_store import refresh_token_store

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Periodic token cleanup on a daemon thread."""

    def __init__(
        self,
        *,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
        retention_days: Optional[int] = None,
        batch_size: Optional[int] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.CLEANUP_INTERVAL_SECONDS
        self.initial_delay_seconds = (
            initial_delay_seconds if initial_delay_seconds is not None else settings.CLEANUP_INITIAL_DELAY_SECONDS
        )
        self.retention = timedelta(
            days=retention_days if retention_days is not None else settings.CLEANUP_REVOKED_RETENTION_DAYS
        )
        self.batch_size = max(1, batch_size or settings.CLEANUP_BATCH_SIZE)
        self._session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._heartbeat: float = 0.0
        self._runs: int = 0
        self._deleted_total: int = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="token-cleanup", daemon=True)
        self._thread.start()
        logger.info("Token cleanup scheduler started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Token cleanup scheduler stopped")

    def status(self) -> dict:
        with self._lock:
            return {
                "running": self.is_running(),
                "last_heartbeat": self._heartbeat,
                "runs": self._runs,
                "deleted_total": self._deleted_total,
            }

    def _run_loop(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            db = self._session_factory()
            try:
                self._purge(db, clock.utcnow(), cancellable=True)
            except Exception as exc:
                logger.error("Token cleanup run failed: %s", exc.__class__.__name__)
            finally:
                db.close()
            self._heartbeat = time.time()
            if self._stop_event.wait(self.interval_seconds):
                break

    def _purge(self, db: Session, now: datetime, cancellable: bool) -> int:
        criteria = [
            or_(
                RefreshToken.expires_at < now,
                and_(
                    RefreshToken.is_revoked == True,  # noqa: E712
                    RefreshToken.revoked_at < now - self.retention,
                ),
            )
        ]
        total = 0
        while not (cancellable and self._stop_event.is_set()):
            try:
                ids = refresh_token_store.find_ids(db, criteria, self.batch_size)
                if not ids:
                    break
                total += refresh_token_store.delete_many(db, [RefreshToken.id.in_(ids), *criteria])
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Token cleanup failed") from exc
            if len(ids) < self.batch_size:
                break

        with self._lock:
            self._runs += 1
            self._deleted_total += total
        CLEANUP_DELETED.inc(total)
        if total:
            logger.info("Cleaned up %d refresh token records", total)
        return total

    def run_once(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Delete expired records and records revoked longer than the retention window.

        Each batch commits on its own, so an interrupted run leaves only whole
        batches deleted.

        Returns:
            Number of deleted records
        """
        return self._purge(db, now or clock.utcnow(), cancellable=False)


cleanup_scheduler = CleanupScheduler()
