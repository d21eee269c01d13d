"""
Read-only backup status.

Collects retention configuration, artifact counts per tier/unit/category,
staging counts, last runs and whether a runner or cron is active. Nothing
here creates, moves or deletes files.
"""

from typing import Any, Dict

from rotavault.backup.naming import STAGING
from rotavault.backup.storage import LocalArtifactStore
from rotavault.backup.tiers import APPLICATION, DATABASE, TIER_ORDER, build_policies, build_units
from rotavault.crontab import cron_jobs_installed
from rotavault.runner import make_clock
from rotavault.scheduler import is_scheduler_running, read_pid


def _counts(store: LocalArtifactStore, namespace: str, unit: str) -> Dict[str, int]:
    return {
        APPLICATION: store.count_artifacts(namespace, unit, APPLICATION),
        DATABASE: store.count_artifacts(namespace, unit, DATABASE),
    }


def collect_status(config) -> Dict[str, Any]:
    """
    Collect backup status.

    Args:
        config: Flask config mapping

    Returns:
        Dict with 'tiers', 'staging', 'runner', 'cron_installed' and
        'last_runs' keys
    """
    from rotavault.models import TierRun

    store = LocalArtifactStore(config['BACKUP_DIR'])
    policies = build_policies(config)
    units = build_units(config)
    now = make_clock(config['SCHEDULER_TIMEZONE'])()

    tiers = {}
    for tier in TIER_ORDER:
        policy = policies[tier]
        next_window = policy.next_window(now)
        tiers[tier] = {
            'retention': policy.retention,
            'schedule': policy.describe(),
            'cron': policy.cron_expression(),
            'next_window': next_window.isoformat() if next_window else None,
            'units': {unit.name: _counts(store, tier, unit.name) for unit in units}
        }

    staging = {
        'retention': config['STAGING_RETENTION'],
        'units': {unit.name: _counts(store, STAGING, unit.name) for unit in units}
    }

    pid_file = config['SCHEDULER_PID_FILE']
    pid = read_pid(pid_file)

    last_runs = {}
    for tier in TIER_ORDER:
        run = TierRun.query.filter_by(tier=tier).order_by(TierRun.started_at.desc()).first()
        last_runs[tier] = run.to_dict() if run else None

    return {
        'backup_dir': config['BACKUP_DIR'],
        'tiers': tiers,
        'staging': staging,
        'runner': {
            'running': is_scheduler_running(pid_file),
            'pid': pid,
            'pid_file': pid_file
        },
        'cron_installed': cron_jobs_installed(),
        'last_runs': last_runs
    }
