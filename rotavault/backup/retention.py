"""
Retention policy enforcement for backups.

Keeps the N most recent artifacts per (namespace, unit, category) and
deletes the rest. Recency comes from the timestamp in the artifact name.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .naming import Artifact, STAGING
from .storage import LocalArtifactStore, StorageError
from .tiers import CATEGORIES, BackupUnit, TierPolicy


logger = logging.getLogger(__name__)

# Staging artifacts kept per unit per category, independent of any tier
STAGING_RETENTION = 2


class RetentionEnforcer:
    """
    Trims artifact sets down to their keep-count.

    Deletion is unconditional (no confirmation, no dry run). A failed delete
    is logged and skipped so one undeletable file never blocks the others.
    """

    def __init__(self, store: LocalArtifactStore, logs: Optional[List[str]] = None):
        """
        Initialize retention enforcer.

        Args:
            store: Artifact store
            logs: List to collect log lines into
        """
        self.store = store
        self.logs = logs if logs is not None else []

    def enforce(self, namespace: str, unit: str, category: str, keep_count: int) -> List[Artifact]:
        """
        Keep the ``keep_count`` newest artifacts and delete the remainder.

        Args:
            namespace: Tier name or 'staging'
            unit: Backup unit name
            category: 'application' or 'database'
            keep_count: Number of artifacts to keep

        Returns:
            Artifacts that were deleted

        Raises:
            ValueError: If keep_count is negative
            StorageError: If listing fails
        """
        if keep_count < 0:
            raise ValueError(f"keep_count must be >= 0, got {keep_count}")

        artifacts = self.store.list_artifacts(namespace, unit, category)

        if len(artifacts) <= keep_count:
            self._log(
                f"Found {len(artifacts)} {namespace} {category} backups for {unit}, no cleanup needed",
                logging.DEBUG
            )
            return []

        self._log(f"Found {len(artifacts)} {namespace} {category} backups for {unit}, keeping {keep_count}")

        deleted = []
        for artifact in artifacts[keep_count:]:
            try:
                self.store.delete_artifact(artifact.path)
                deleted.append(artifact)
                self._log(f"Deleting old {namespace} {category} backup: {artifact.name}")
            except StorageError as e:
                self._log(f"Failed to delete {artifact.name}: {e}", logging.ERROR)

        return deleted

    def enforce_all(self, namespace: str, units: List[BackupUnit], keep_count: int) -> Dict[str, Any]:
        """
        Enforce a keep-count for every (unit, category) pair in a namespace.

        Args:
            namespace: Tier name or 'staging'
            units: Registered units
            keep_count: Number of artifacts to keep per unit per category

        Returns:
            Dict with summary of cleanup operations:
            {
                'namespace': str,
                'deleted': int,
                'errors': List[str]
            }
        """
        summary = {
            'namespace': namespace,
            'deleted': 0,
            'errors': []
        }

        for unit in units:
            for category in CATEGORIES:
                try:
                    summary['deleted'] += len(self.enforce(namespace, unit.name, category, keep_count))
                except StorageError as e:
                    error_msg = f"Failed to enforce retention for {unit.name} {category}: {e}"
                    self._log(error_msg, logging.ERROR)
                    summary['errors'].append(error_msg)

        self._log(
            f"Cleanup of old {namespace} backups completed. "
            f"Deleted: {summary['deleted']}, Errors: {len(summary['errors'])}"
        )
        return summary

    def enforce_tier(self, policy: TierPolicy, units: List[BackupUnit]) -> Dict[str, Any]:
        """Trim a tier namespace to its retention count."""
        self._log(f"Cleaning up old {policy.name} backups (keeping {policy.retention} most recent)...")
        return self.enforce_all(policy.name, units, policy.retention)

    def enforce_staging(self, units: List[BackupUnit], keep_count: int = STAGING_RETENTION) -> Dict[str, Any]:
        """Trim the staging namespace to its fixed retention count."""
        self._log(f"Cleaning up temporary backups (keeping {keep_count} most recent)...")
        return self.enforce_all(STAGING, units, keep_count)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")
        logger.log(level, message)
