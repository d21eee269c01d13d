"""
Tier executor - orchestrates a complete tier run.

Workflow:
1. Create TierRun record (status: running)
2. For each unit, in registration order:
   a. Run the producer into the staging namespace
   b. Locate the staged application and database artifacts
   c. Copy both into the tier namespace under today's date
3. Trim the tier namespace to its retention count
4. Trim the staging namespace to its fixed retention count
5. Update TierRun (status: success/partial_failure/failed)

One unit's failure never aborts the tier; partial copies are not rolled back.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .naming import Artifact, STAGING, tier_filename
from .producer import ArtifactProducer, ProducerFailure, create_producer
from .retention import RetentionEnforcer
from .storage import LocalArtifactStore, StorageError
from .tiers import CATEGORIES, BackupUnit, TierPolicy, build_policies, build_units


logger = logging.getLogger(__name__)


class MissingArtifact(Exception):
    """Raised when an expected artifact is absent."""
    pass


@dataclass
class UnitResult:
    """Artifacts staged and copied for one unit."""
    unit: str
    tier: str
    staged: Dict[str, Artifact] = field(default_factory=dict)
    copied: Dict[str, str] = field(default_factory=dict)


@dataclass
class TierResult:
    """Success/failure partition of one tier run."""
    tier: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    deleted: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        if not self.failed:
            return 'success'
        if self.succeeded:
            return 'partial_failure'
        return 'failed'

    @property
    def ok(self) -> bool:
        return not self.failed


class UnitLocks:
    """
    Per-unit mutual exclusion.

    Operations on the same unit are serialized; distinct units never block
    each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, unit: str) -> threading.Lock:
        with self._guard:
            if unit not in self._locks:
                self._locks[unit] = threading.Lock()
            return self._locks[unit]

    @contextmanager
    def hold(self, unit: str):
        lock = self._lock_for(unit)
        with lock:
            yield


def format_duration(seconds: float) -> str:
    """Format a duration as '3m 12s' or '45s'."""
    seconds = int(seconds)
    minutes, remaining = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{seconds}s"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupOrchestrator:
    """
    Produces and stages artifacts for every unit of a tier.
    """

    def __init__(self, store: LocalArtifactStore, producer: ArtifactProducer,
                 clock: Optional[Callable[[], datetime]] = None,
                 locks: Optional[UnitLocks] = None, logs: Optional[List[str]] = None):
        """
        Initialize backup orchestrator.

        Args:
            store: Artifact store holding staging and tier namespaces
            producer: Producer invoked once per unit
            clock: Callable returning the current time (tier artifact date)
            locks: Per-unit locks, shared when several orchestrators run
            logs: List to collect log lines into
        """
        self.store = store
        self.producer = producer
        self.clock = clock or datetime.now
        self.locks = locks or UnitLocks()
        self.logs = logs if logs is not None else []

    def backup_unit(self, unit: BackupUnit, tier: str) -> UnitResult:
        """
        Back up one unit into a tier.

        Args:
            unit: Unit to back up
            tier: Tier name

        Returns:
            UnitResult with staged and copied artifacts

        Raises:
            ProducerFailure: If the producer fails
            MissingArtifact: If an expected artifact is absent
            StorageError: If a copy fails
        """
        with self.locks.hold(unit.name):
            self._log(f"Backing up {unit.name} for {tier} backup...")

            produced = self.producer.produce(unit)
            if not produced.ok:
                raise ProducerFailure(unit.name, produced.exit_status)

            result = UnitResult(unit=unit.name, tier=tier)

            for category in CATEGORIES:
                result.staged[category] = self._locate(unit, category, produced.artifacts.get(category))

            today = self.clock()
            tier_dir = self.store.namespace_path(tier)

            for category, artifact in result.staged.items():
                dest = tier_dir / tier_filename(unit.name, tier, category, today)
                result.copied[category] = self.store.copy_artifact(artifact.path, str(dest))

            for category in CATEGORIES:
                if self.store.get_artifact(result.copied[category], tier, unit.name, category) is None:
                    raise MissingArtifact(
                        f"{category} artifact for {unit.name} missing after copy: {result.copied[category]}"
                    )

            self._log(f"Copied {unit.name} backups to {tier} directory:")
            for category in CATEGORIES:
                self._log(f"  - {category.capitalize()}: {result.copied[category].rsplit('/', 1)[-1]}")

            return result

    def _locate(self, unit: BackupUnit, category: str, reported_path: Optional[str]) -> Artifact:
        """
        Find the staged artifact for a category.

        Uses the path reported by the producer. Only when the producer did not
        report one does this fall back to the newest staging artifact, which
        can pick up another run's artifact if two backups of the same unit race.
        """
        if reported_path:
            artifact = self.store.get_artifact(reported_path, STAGING, unit.name, category)
            if artifact is None:
                raise MissingArtifact(
                    f"Producer reported success but {category} artifact is missing: {reported_path}"
                )
            return artifact

        self._log(
            f"Producer did not report a {category} artifact for {unit.name}, using newest staged file",
            logging.WARNING
        )
        artifact = self.store.latest_artifact(STAGING, unit.name, category)
        if artifact is None:
            raise MissingArtifact(f"Failed to find latest {category} backup for {unit.name}")
        return artifact

    def run_tier(self, tier: str, units: List[BackupUnit]) -> TierResult:
        """
        Back up all units into a tier, sequentially.

        Args:
            tier: Tier name
            units: Units in registration order

        Returns:
            TierResult partitioning units into succeeded and failed
        """
        result = TierResult(tier=tier, started_at=_utcnow())

        for unit in units:
            try:
                self.backup_unit(unit, tier)
                result.succeeded.append(unit.name)
            except (ProducerFailure, MissingArtifact, StorageError) as e:
                result.failed.append(unit.name)
                result.errors[unit.name] = str(e)
                self._log(f"Failed to backup {unit.name}: {e}", logging.ERROR)
            except Exception as e:
                result.failed.append(unit.name)
                result.errors[unit.name] = str(e)
                self._log(f"Unexpected error backing up {unit.name}: {e}", logging.ERROR)
                logger.exception("Unexpected error backing up %s", unit.name)

        result.completed_at = _utcnow()
        self._log(
            f"{tier} backup: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = _utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")
        logger.log(level, message)


class TierExecutor:
    """
    Runs one tier end to end and records it as a TierRun.
    """

    def __init__(self, policy: TierPolicy, units: List[BackupUnit], store: LocalArtifactStore,
                 producer: ArtifactProducer, staging_retention: int = 2, trigger: str = 'manual',
                 clock: Optional[Callable[[], datetime]] = None, locks: Optional[UnitLocks] = None):
        """
        Initialize tier executor.

        Args:
            policy: Policy of the tier to run
            units: Registered units
            store: Artifact store
            producer: Artifact producer
            staging_retention: Artifacts kept per unit per category in staging
            trigger: What started the run ('manual', 'scheduler', 'cron')
            clock: Callable returning the current time
            locks: Shared per-unit locks
        """
        self.policy = policy
        self.units = units
        self.store = store
        self.staging_retention = staging_retention
        self.trigger = trigger
        self.history_record = None
        self.logs = []
        self.orchestrator = BackupOrchestrator(store, producer, clock=clock, locks=locks, logs=self.logs)
        self.enforcer = RetentionEnforcer(store, logs=self.logs)

    def execute(self) -> TierResult:
        """
        Execute the tier.

        Returns:
            TierResult of the run. Unexpected errors are recorded on the
            TierRun and reported as every unit failing.
        """
        from rotavault import db
        from rotavault.models import TierRun

        tier = self.policy.name

        self.history_record = TierRun(
            tier=tier,
            trigger=self.trigger,
            status='running',
            started_at=_utcnow()
        )
        db.session.add(self.history_record)
        db.session.commit()

        start = time.monotonic()
        self.orchestrator._log(f"Starting {tier} backup...")

        try:
            self.store.ensure_layout()
            result = self.orchestrator.run_tier(tier, self.units)

            retention = self.enforcer.enforce_tier(self.policy, self.units)
            staging = self.enforcer.enforce_staging(self.units, self.staging_retention)
            result.deleted = retention['deleted'] + staging['deleted']

            self.history_record.status = result.status
            if result.errors:
                self.history_record.error_message = '; '.join(
                    f"{unit}: {error}" for unit, error in result.errors.items()
                )

        except Exception as e:
            result = TierResult(
                tier=tier,
                failed=[unit.name for unit in self.units],
                errors={unit.name: str(e) for unit in self.units},
                started_at=self.history_record.started_at,
                completed_at=_utcnow()
            )
            self.history_record.status = 'failed'
            self.history_record.error_message = str(e)
            self.orchestrator._log(f"{tier} backup failed: {e}", logging.ERROR)

        finally:
            self.orchestrator._log(
                f"{tier} backup completed in {format_duration(time.monotonic() - start)}"
            )

        self.history_record.succeeded_units = ','.join(result.succeeded)
        self.history_record.failed_units = ','.join(result.failed)
        self.history_record.deleted_count = result.deleted
        self.history_record.completed_at = _utcnow()
        self.history_record.logs = '\n'.join(self.logs)
        db.session.commit()

        return result


def execute_tier(tier: str, trigger: str = 'manual') -> TierResult:
    """
    Execute a tier by name using the current app's configuration.

    Must be called inside a Flask app context.

    Args:
        tier: Tier name ('daily', 'weekly', 'monthly')
        trigger: What started the run

    Returns:
        TierResult of the run

    Raises:
        ValueError: If tier is unknown
    """
    from flask import current_app
    from rotavault.runner import make_clock

    config = current_app.config
    policies = build_policies(config)

    if tier not in policies:
        raise ValueError(f"Unknown tier: {tier}")

    clock = make_clock(config['SCHEDULER_TIMEZONE'])

    executor = TierExecutor(
        policy=policies[tier],
        units=build_units(config),
        store=LocalArtifactStore(config['BACKUP_DIR']),
        producer=create_producer(config, clock=clock),
        staging_retention=config['STAGING_RETENTION'],
        trigger=trigger,
        clock=clock,
        locks=current_app.extensions.setdefault('rotavault_unit_locks', UnitLocks())
    )
    return executor.execute()
