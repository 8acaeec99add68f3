"""
Database Maintenance Service

Hourly background housekeeping:
1. Purge refresh tokens past their absolute expiry
2. Reclaim free pages (incremental vacuum) and refresh planner statistics

Each step's failure is logged and does not stop the next step or the
next run.
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from wgpanel.db import base as db_base
from wgpanel.security.credential_store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600


class MaintenanceService:
    """
    Periodic database maintenance task

    Attributes:
        session_factory: Callable returning a new database session
        interval: Seconds between runs
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        interval: int = DEFAULT_INTERVAL_SECONDS,
        optimize: Optional[Callable[[], None]] = None,
    ):
        self.session_factory = session_factory or db_base.SessionLocal
        self.interval = interval
        self._optimize = optimize or db_base.optimize_db
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def run_once(self) -> int:
        """
        Run one maintenance pass

        Returns:
            Number of expired refresh tokens purged
        """
        purged = 0
        db = self.session_factory()
        try:
            purged = CredentialStore(db).clean_expired_tokens()
            logger.info(f"Cleaned {purged} expired refresh tokens")
        except Exception as e:
            logger.warning(f"Failed to clean expired tokens: {e}")
        finally:
            db.close()

        try:
            self._optimize()
            logger.info("Database optimized")
        except Exception as e:
            logger.warning(f"Failed to optimize database: {e}")

        return purged

    async def start(self) -> None:
        """Start background maintenance"""
        if self.running:
            logger.warning("Maintenance task already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._maintenance_loop())
        logger.info(f"Database maintenance started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Stop background maintenance"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Database maintenance stopped")

    async def _maintenance_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.interval)
            await asyncio.to_thread(self.run_once)
