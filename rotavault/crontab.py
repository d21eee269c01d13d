"""
Crontab integration.

Installs one crontab entry per tier, each running ``<command> <tier>`` at
the start of the tier's trigger window, labelled ``--trigger cron`` in the
run history. Entries are identified by a marker comment so they can be
removed again.
"""

import logging
import shutil
import subprocess
from typing import Dict, List

from rotavault.backup.tiers import TIER_ORDER, TierPolicy


logger = logging.getLogger(__name__)

CRON_MARKER = '# rotavault backup jobs'


class CronUnavailable(Exception):
    """Raised when the crontab command is not available."""
    pass


def build_cron_lines(policies: Dict[str, TierPolicy], command: str) -> List[str]:
    """
    Build crontab lines for all tiers, marker comment first.

    Args:
        policies: Tier policies by name
        command: Command prefix, e.g. '/usr/local/bin/rotavault'

    Returns:
        List of crontab lines
    """
    lines = [CRON_MARKER]
    for tier in TIER_ORDER:
        if tier in policies:
            lines.append(f"{policies[tier].cron_expression()} {command} {tier} --trigger cron {CRON_MARKER}")
    return lines


def _require_crontab():
    if shutil.which('crontab') is None:
        raise CronUnavailable("Crontab command not available")


def _read_crontab() -> List[str]:
    # 'crontab -l' exits non-zero when the user has no crontab yet
    completed = subprocess.run(['crontab', '-l'], capture_output=True, text=True)
    if completed.returncode != 0:
        return []
    return completed.stdout.splitlines()


def _write_crontab(lines: List[str]):
    content = '\n'.join(lines).strip('\n') + '\n'
    subprocess.run(['crontab', '-'], input=content, text=True, check=True)


def cron_jobs_installed() -> bool:
    """Check whether our entries are present. Never modifies the crontab."""
    try:
        _require_crontab()
    except CronUnavailable:
        return False
    return any(CRON_MARKER in line for line in _read_crontab())


def install_cron_jobs(policies: Dict[str, TierPolicy], command: str) -> bool:
    """
    Install crontab entries for all tiers.

    Returns:
        True if entries were added, False if they were already installed

    Raises:
        CronUnavailable: If crontab is not available
        subprocess.CalledProcessError: If writing the crontab fails
    """
    _require_crontab()

    current = _read_crontab()
    if any(CRON_MARKER in line for line in current):
        logger.info("Backup cron jobs are already installed")
        return False

    _write_crontab(current + build_cron_lines(policies, command))
    logger.info("Cron jobs installed successfully")
    return True


def remove_cron_jobs() -> int:
    """
    Remove our crontab entries.

    Returns:
        Number of lines removed

    Raises:
        CronUnavailable: If crontab is not available
        subprocess.CalledProcessError: If writing the crontab fails
    """
    _require_crontab()

    current = _read_crontab()
    kept = [line for line in current if CRON_MARKER not in line]
    removed = len(current) - len(kept)

    if removed:
        _write_crontab(kept)
        logger.info(f"Removed {removed} backup cron lines")
    return removed
