"""Periodic driver for the reminder and monthly digest checks."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List

from telegram.ext import ContextTypes, Job, JobQueue

from subnotifier.db.repository import Repository
from subnotifier.engine.digest import check_monthly_digests
from subnotifier.engine.gateway import DeliveryGateway
from subnotifier.engine.reminders import check_due_reminders
from subnotifier.utils.time_utils import seconds_until_next_minute

logger = logging.getLogger(__name__)

REMINDERS_TASK = "reminders"
DIGEST_TASK = "monthly-digest"

Check = Callable[[DeliveryGateway, Repository, datetime], Awaitable[int]]


class NotificationScheduler:
    """Runs the two notification checks on a fixed tick.

    Both tasks fire every tick and gate themselves on the date and time, so
    the scheduling stays uniform. Each task is idle or running; a tick that
    arrives while the same task is still running is skipped. The tasks share
    nothing but the gateway and repository.
    """

    def __init__(
        self,
        gateway: DeliveryGateway,
        repo: Repository,
        interval: int = 60,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.gateway = gateway
        self.repo = repo
        self.interval = interval
        self.clock = clock
        self.state: Dict[str, str] = {REMINDERS_TASK: "idle", DIGEST_TASK: "idle"}
        self._jobs: List[Job] = []
        self._stopped = False

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self, job_queue: JobQueue) -> None:
        """Register both tasks, first tick on the next minute boundary."""
        if self._jobs:
            logger.warning("Notification scheduler already started")
            return

        self._stopped = False
        first = seconds_until_next_minute(self.clock())

        for name, callback in (
            (REMINDERS_TASK, self._reminders_job),
            (DIGEST_TASK, self._digest_job),
        ):
            job = job_queue.run_repeating(
                callback, interval=self.interval, first=first, name=name
            )
            self._jobs.append(job)

        logger.info(
            f"Notification scheduler started (interval: {self.interval}s, "
            f"first tick in {first:.0f}s)"
        )

    def stop(self) -> None:
        """Prevent any new tick from starting; a running tick is left to finish."""
        self._stopped = True
        for job in self._jobs:
            job.schedule_removal()
        self._jobs.clear()
        logger.info("Notification scheduler stopped")

    async def run_reminders(self) -> int:
        """One tick of the lead-time reminder task."""
        return await self._tick(REMINDERS_TASK, check_due_reminders)

    async def run_monthly_digest(self) -> int:
        """One tick of the monthly digest task."""
        return await self._tick(DIGEST_TASK, check_monthly_digests)

    async def _tick(self, name: str, check: Check) -> int:
        if self._stopped:
            return 0

        if self.state[name] == "running":
            logger.warning(f"Previous {name} tick still running, skipping")
            return 0

        self.state[name] = "running"
        try:
            return await check(self.gateway, self.repo, self.clock())
        except Exception as e:
            logger.error(f"Error running {name} tick: {e}")
            return 0
        finally:
            self.state[name] = "idle"

    async def _reminders_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.run_reminders()

    async def _digest_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.run_monthly_digest()
