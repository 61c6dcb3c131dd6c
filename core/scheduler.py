"""Background polling for due campaigns.

Every ``POLL_INTERVAL_SECONDS`` the poller lists active campaigns, keeps the
ones whose ``next_run_at`` has passed, and hands them to the runner one at a
time. A tick that fires while the previous one is still working is dropped,
not queued, so a slow Telegram call cannot pile up overlapping ticks.

Only one poller may run against a database: the overlap guard lives in this
process, not in the database.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler

from core.config import Config
from core.logger import get_logger
from core.repository import CampaignRepository, CampaignSnapshot
from core.timeutil import as_utc, utcnow

log = get_logger("Poller")

JOB_ID = "due-campaign-poller"


@dataclass
class TickReport:
    checked: int = 0
    due: List[int] = field(default_factory=list)
    results: List[Tuple[int, object]] = field(default_factory=list)
    skipped: bool = False


def find_due(campaigns: Iterable[CampaignSnapshot], now: datetime) -> List[CampaignSnapshot]:
    """Active campaigns whose ``next_run_at`` is set and not in the future."""

    now = as_utc(now)
    return [c for c in campaigns if c.is_due(now)]


class DueCampaignPoller:
    def __init__(
        self,
        repository: Optional[CampaignRepository] = None,
        runner=None,
        interval_seconds: Optional[int] = None,
        clock=utcnow,
    ):
        if runner is None:
            from run_campaign import CampaignRunner

            runner = CampaignRunner(repository=repository)
        self.repository = repository or runner.repository
        self.runner = runner
        self.interval_seconds = interval_seconds or Config.POLL_INTERVAL_SECONDS
        self.clock = clock
        self._tick_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def busy(self) -> bool:
        return self._tick_lock.locked()

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        if not self._tick_lock.acquire(blocking=False):
            log.warning("Previous tick still running; skipping this one.")
            return TickReport(skipped=True)
        try:
            return self._tick(now)
        finally:
            self._tick_lock.release()

    def _tick(self, now: Optional[datetime]) -> TickReport:
        now = as_utc(now) if now is not None else self.clock()
        report = TickReport()
        log.debug("🕐 Checking for due campaigns...")

        try:
            active = self.repository.list_active()
        except Exception as exc:  # noqa: BLE001 - a database hiccup must not kill the job.
            log.error(f"Failed to list active campaigns: {exc}")
            return report

        report.checked = len(active)
        due = find_due(active, now)
        report.due = [c.id for c in due]
        if due:
            log.info(f"Found {len(active)} active campaign(s), {len(due)} due")

        for campaign in due:
            log.info(f"⏰ Campaign '{campaign.name}' is due to run")
            try:
                result = self.runner.run(campaign.id)
            except Exception as exc:  # noqa: BLE001 - keep going with the next campaign.
                log.error(f"❌ Campaign '{campaign.name}' crashed the runner: {exc}")
                result = exc
            report.results.append((campaign.id, result))
        return report

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=utcnow(),
        )
        scheduler.start()
        self._scheduler = scheduler
        log.info(f"🟢 Poller started; checking every {self.interval_seconds}s.")

    def stop(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.shutdown(wait=wait)
        finally:
            self._scheduler = None
        log.info("🛑 Poller stopped.")

    def run_forever(self, sleep=time.sleep) -> None:
        """Start the poller and block until interrupted."""

        try:
            self.start()
        except Exception as exc:  # noqa: BLE001 - ensure failure is surfaced cleanly.
            log.error(f"Failed to start poller: {exc}")
            return

        try:
            while True:
                sleep(60)
        except KeyboardInterrupt:
            log.warning("🛑 Scheduler stopped manually.")
        finally:
            self.stop(wait=False)


def start_poller(poller: Optional[DueCampaignPoller] = None) -> None:
    """Main entry point used by CLIs: run the poller until interrupted."""

    poller = poller or DueCampaignPoller()
    poller.run_forever()
