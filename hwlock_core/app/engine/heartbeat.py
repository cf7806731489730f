# app/engine/heartbeat.py
# -*- coding: utf-8 -*-
"""
Heartbeat Monitor

Every HEARTBEAT_INTERVAL_SECONDS, suspends each active license whose
verifier has not checked in for more than HEARTBEAT_THRESHOLD_HOURS.
Licenses that were never verified are left alone.

The sweep runs in a worker thread with its own DB session; the asyncio
task only schedules it.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config import HEARTBEAT_INTERVAL_SECONDS, HEARTBEAT_THRESHOLD_HOURS, SessionLocal
from app.engine.repository import Repository

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    def __init__(self, session_factory: Callable = SessionLocal,
                 interval: float = HEARTBEAT_INTERVAL_SECONDS,
                 threshold_hours: float = HEARTBEAT_THRESHOLD_HOURS,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self._session_factory = session_factory
        self.interval = interval
        self.threshold = timedelta(hours=threshold_hours)
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> List[str]:
        """Suspend silent licenses; returns their license ids."""
        db = self._session_factory()
        try:
            repo = Repository(db, actor="system")
            now = self._clock()
            cutoff = now - self.threshold

            stale = []
            for lic in repo.heartbeat_candidates():
                elapsed = now - lic.last_verified_at
                if elapsed <= self.threshold:
                    continue
                # a verify that lands after the read keeps the license active
                if repo.suspend_if_silent(lic.id, cutoff):
                    stale.append((lic, elapsed))

            repo.save()
            if not stale:
                return []

            for lic, elapsed in stale:
                hours = round(elapsed.total_seconds() / 3600, 2)
                logger.warning("Heartbeat lost for %s (%.2fh); suspended", lic.license_id, hours)
                repo.log(
                    "heartbeat_suspend",
                    {"elapsed_hours": hours, "last_verified_at": lic.last_verified_at},
                    license_id=lic.license_id,
                    server_id=lic.server_id,
                )
            return [lic.license_id for lic, _ in stale]
        finally:
            db.close()

    # -----------------------
    # Background loop
    # -----------------------
    async def _loop(self):
        while True:
            try:
                suspended = await asyncio.to_thread(self.sweep)
                if suspended:
                    logger.info("Heartbeat sweep suspended %d license(s)", len(suspended))
            except Exception:
                # keep the loop alive; the next interval retries
                logger.exception("Heartbeat sweep failed")
            await asyncio.sleep(self.interval)

    def start(self) -> bool:
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Heartbeat monitor started (every %ss)", self.interval)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Heartbeat monitor stopped")
