"""
Scheduler runner - polls the clock and runs due tiers.

Used when no external scheduler (cron) is available. The same runner is
driven either by its own loop in a separate process (``run``) or by an
APScheduler interval job inside the web app (``poll_once``).
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from rotavault.backup.tiers import EPOCH, TIER_ORDER, TierPolicy, as_aware, is_due


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 300


def make_clock(tz_name: Optional[str] = None) -> Callable[[], datetime]:
    """
    Build a clock returning timezone-aware 'now' in the given zone.

    Args:
        tz_name: IANA zone name, e.g. 'UTC' or 'Europe/Paris'

    Returns:
        Callable returning the current time
    """
    tz = ZoneInfo(tz_name) if tz_name else timezone.utc

    def clock() -> datetime:
        return datetime.now(tz)

    return clock


class SchedulerState:
    """
    Last run time per tier.

    Starts at the epoch for every tier ("never run"). Only the runner
    mutates it, after a tier's full sequence has finished.
    """

    def __init__(self, last_runs: Optional[Dict[str, datetime]] = None):
        self._last_runs = {tier: EPOCH for tier in TIER_ORDER}
        if last_runs:
            self._last_runs.update(last_runs)

    def last_run(self, tier: str) -> datetime:
        return self._last_runs.get(tier, EPOCH)

    def mark_run(self, tier: str, when: datetime):
        self._last_runs[tier] = when

    def as_dict(self) -> Dict[str, datetime]:
        return dict(self._last_runs)


class CancellationToken:
    """Cooperative stop signal for the runner loop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


class CheckpointStore:
    """Opt-in durable copy of SchedulerState."""

    def load(self) -> Dict[str, datetime]:
        raise NotImplementedError

    def save(self, tier: str, when: datetime):
        raise NotImplementedError


class DatabaseCheckpointStore(CheckpointStore):
    """
    Checkpoints stored in the TierCheckpoint table.

    Times are stored as naive UTC. Must be used inside an app context.
    """

    def load(self) -> Dict[str, datetime]:
        from rotavault.models import TierCheckpoint

        checkpoints = {}
        for record in TierCheckpoint.query.all():
            if record.last_run_at is not None:
                checkpoints[record.tier] = record.last_run_at.replace(tzinfo=timezone.utc)
        return checkpoints

    def save(self, tier: str, when: datetime):
        from rotavault import db
        from rotavault.models import TierCheckpoint

        value = as_aware(when).astimezone(timezone.utc).replace(tzinfo=None)

        record = TierCheckpoint.query.filter_by(tier=tier).first()
        if record is None:
            record = TierCheckpoint(tier=tier, last_run_at=value)
            db.session.add(record)
        else:
            record.last_run_at = value
        db.session.commit()


class SchedulerRunner:
    """
    Long-lived form of tier scheduling, backup orchestration and retention.

    States: RUNNING while ``run`` loops, STOPPED once the cancellation token
    fires. A tier in progress is never interrupted.
    """

    RUNNING = 'RUNNING'
    STOPPED = 'STOPPED'

    def __init__(self, policies: Dict[str, TierPolicy], tier_job: Callable[[str], object],
                 state: Optional[SchedulerState] = None, clock: Optional[Callable[[], datetime]] = None,
                 checkpoints: Optional[CheckpointStore] = None, poll_interval: float = DEFAULT_POLL_INTERVAL):
        """
        Initialize scheduler runner.

        Args:
            policies: Tier policies by tier name
            tier_job: Callable running one tier by name; may return an object
                with an ``ok`` attribute (TierResult)
            state: Initial state (default: every tier never run)
            clock: Callable returning the current time
            checkpoints: Optional durable checkpoint store
            poll_interval: Seconds between polls
        """
        self.policies = policies
        self.tier_job = tier_job
        self.state = state or SchedulerState()
        self.clock = clock or make_clock()
        self.checkpoints = checkpoints
        self.poll_interval = poll_interval
        self.status = self.STOPPED

    def restore_checkpoints(self):
        """Load last-run times from the checkpoint store, if one is configured."""
        if self.checkpoints is None:
            return
        try:
            for tier, when in self.checkpoints.load().items():
                self.state.mark_run(tier, when)
                logger.info(f"Restored {tier} last run: {when.isoformat()}")
        except Exception as e:
            logger.error(f"Failed to load scheduler checkpoints: {e}")

    def due_tiers(self, now: datetime) -> List[str]:
        return [
            tier for tier in TIER_ORDER
            if tier in self.policies and is_due(self.policies[tier], now, self.state.last_run(tier))
        ]

    def poll_once(self, now: Optional[datetime] = None) -> List[str]:
        """
        Run one poll iteration.

        Args:
            now: Time to evaluate (default: clock)

        Returns:
            Names of tiers that were run
        """
        if now is None:
            now = self.clock()

        ran = []

        for tier in self.due_tiers(now):
            logger.info(f"Running {tier} backup")

            try:
                result = self.tier_job(tier)
                if getattr(result, 'ok', True):
                    logger.info(f"{tier} backup finished")
                else:
                    logger.warning(f"{tier} backup finished with failures: {getattr(result, 'status', 'failed')}")
            except Exception as e:
                logger.error(f"{tier} backup failed: {e}")

            # Failed runs also advance the timestamp to avoid tight retry loops
            self.state.mark_run(tier, now)
            ran.append(tier)

            if self.checkpoints is not None:
                try:
                    self.checkpoints.save(tier, now)
                except Exception as e:
                    logger.error(f"Failed to save {tier} checkpoint: {e}")

        return ran

    def run(self, token: CancellationToken):
        """
        Poll until cancelled.

        Args:
            token: Cancellation token checked between polls
        """
        self.status = self.RUNNING
        logger.info(f"Backup scheduler started (poll interval: {self.poll_interval}s)")

        try:
            while not token.cancelled:
                try:
                    self.poll_once()
                except Exception as e:
                    logger.error(f"Scheduler poll failed: {e}")

                if token.wait(self.poll_interval):
                    break
        finally:
            self.status = self.STOPPED
            logger.info("Backup scheduler stopped")
