"""
Local artifact storage.

Layout under the backup directory:
- {base_path}/{unit}_backup_{timestamp}.tar.gz      staging namespace
- {base_path}/{tier}/{unit}_{tier}_{cat}_{date}.tar.gz  tier namespaces

The store only reasons about names and timestamps, never payload bytes.
"""

import os
import shutil
from pathlib import Path
from typing import List, Optional

from .naming import Artifact, STAGING, parse_artifact_name
from .tiers import TIER_ORDER


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class LocalArtifactStore:
    """
    Handler for backup artifacts in the local filesystem.
    """

    def __init__(self, base_path: str):
        """
        Initialize local artifact store.

        Args:
            base_path: Base backup directory

        The directory is not created here so read-only callers (status) never
        touch the filesystem. Call ensure_layout() before writing.
        """
        self.base_path = Path(base_path)

    def ensure_layout(self):
        """
        Create the base directory and one directory per tier.

        Raises:
            StorageError: If a directory cannot be created
        """
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            for tier in TIER_ORDER:
                (self.base_path / tier).mkdir(exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create backup directory layout: {e}")

    def namespace_path(self, namespace: str) -> Path:
        """
        Get the directory holding a namespace.

        Args:
            namespace: 'staging' or a tier name

        Returns:
            Directory path
        """
        if namespace == STAGING:
            return self.base_path
        if namespace not in TIER_ORDER:
            raise ValueError(f"Unknown namespace: {namespace}")
        return self.base_path / namespace

    def list_artifacts(self, namespace: str, unit: str, category: str) -> List[Artifact]:
        """
        List artifacts for a namespace, unit and category, newest first.

        Ordering uses the timestamp encoded in the filename; ties are broken
        by name so the order is stable.

        Args:
            namespace: 'staging' or a tier name
            unit: Backup unit name
            category: 'application' or 'database'

        Returns:
            List of Artifact, newest first

        Raises:
            StorageError: If listing fails
        """
        directory = self.namespace_path(namespace)

        if not directory.exists():
            return []

        try:
            artifacts = []

            for entry in directory.iterdir():
                if not entry.is_file():
                    continue
                timestamp = parse_artifact_name(entry.name, namespace, unit, category)
                if timestamp is None:
                    continue
                artifacts.append(Artifact(
                    unit=unit,
                    category=category,
                    namespace=namespace,
                    timestamp=timestamp,
                    path=str(entry)
                ))

        except Exception as e:
            raise StorageError(f"Failed to list artifacts in {directory}: {e}")

        artifacts.sort(key=lambda a: (a.timestamp, a.name), reverse=True)
        return artifacts

    def latest_artifact(self, namespace: str, unit: str, category: str) -> Optional[Artifact]:
        """Get the most recent artifact, or None if there is none."""
        artifacts = self.list_artifacts(namespace, unit, category)
        return artifacts[0] if artifacts else None

    def count_artifacts(self, namespace: str, unit: str, category: str) -> int:
        return len(self.list_artifacts(namespace, unit, category))

    def get_artifact(self, path: str, namespace: str, unit: str, category: str) -> Optional[Artifact]:
        """
        Build an Artifact for a known path.

        Returns:
            Artifact, or None if the file is missing or misnamed
        """
        file_path = Path(path)
        if not file_path.is_file():
            return None
        timestamp = parse_artifact_name(file_path.name, namespace, unit, category)
        if timestamp is None:
            return None
        return Artifact(unit=unit, category=category, namespace=namespace,
                        timestamp=timestamp, path=str(file_path))

    def copy_artifact(self, source_path: str, dest_path: str) -> str:
        """
        Copy an artifact. The source is left in place.

        Args:
            source_path: Path of the artifact to copy
            dest_path: Destination path

        Returns:
            Destination path

        Raises:
            StorageError: If the copy fails
        """
        if not os.path.exists(source_path):
            raise StorageError(f"Source artifact not found: {source_path}")

        dest = Path(dest_path)

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, dest)
            return str(dest)

        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to copy artifact: {e}")

    def delete_artifact(self, path: str):
        """
        Delete an artifact. Deleting an already-deleted path is a no-op.

        Args:
            path: Path of the artifact

        Raises:
            StorageError: If deletion fails
        """
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete artifact: {e}")
