"""
Artifact producers.

A producer backs up one unit's two categories into the staging namespace.
How the bytes are produced (docker volumes, database dumps) is up to the
external command; the producer only hands it the staging paths to write and
reports back what it wrote.

Supports:
- CommandProducer: runs an external command per unit
"""

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .naming import staging_filename
from .tiers import APPLICATION, DATABASE, BackupUnit


# Environment variables telling the command where to write each category
CATEGORY_ENV_VARS = {
    APPLICATION: 'BACKUP_APP_ARTIFACT',
    DATABASE: 'BACKUP_DB_ARTIFACT',
}


class ProducerFailure(Exception):
    """Raised when the external producer reports failure."""

    def __init__(self, unit: str, exit_status: int, detail: str = ''):
        self.unit = unit
        self.exit_status = exit_status
        message = f"Producer failed for {unit} (exit status {exit_status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


@dataclass
class ProducerResult:
    """
    Outcome of one producer call.

    ``artifacts`` maps category to the staging path the producer wrote. An
    empty mapping means the producer did not say what it wrote.
    """
    exit_status: int
    artifacts: Dict[str, str] = field(default_factory=dict)
    output: str = ''

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class ArtifactProducer:
    """Base class for producers."""

    def produce(self, unit: BackupUnit) -> ProducerResult:
        raise NotImplementedError


class CommandProducer(ArtifactProducer):
    """
    Producer that runs an external command for each unit.

    The command template may reference ``{unit}``. The staging paths to write
    are passed in BACKUP_APP_ARTIFACT and BACKUP_DB_ARTIFACT, together with
    BACKUP_UNIT and BACKUP_STAGING_DIR. Commands that choose their own
    names can set ``reports_paths=False``; the orchestrator then falls back
    to the newest staging artifact. The command is expected to start the
    unit's runtime dependencies itself if they are not running. There is no
    timeout: a hanging command blocks the tier.
    """

    def __init__(self, command: str, staging_dir: str, cwd: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None, reports_paths: bool = True):
        """
        Initialize command producer.

        Args:
            command: Command template, e.g. './service-manager.sh backup {unit}'
            staging_dir: Directory of the staging namespace
            cwd: Working directory for the command (default: current)
            clock: Callable returning the current time (for artifact names)
            reports_paths: Whether the command writes to the paths it is given
        """
        self.command = command
        self.staging_dir = Path(staging_dir)
        self.cwd = cwd
        self.clock = clock or datetime.now
        self.reports_paths = reports_paths

    def _build_args(self, unit: BackupUnit) -> List[str]:
        return shlex.split(self.command.format(unit=unit.name))

    def staging_paths(self, unit: BackupUnit, when: datetime) -> Dict[str, str]:
        """Get the staging path for each category at time ``when``."""
        return {
            category: str(self.staging_dir / staging_filename(unit.name, category, when))
            for category in CATEGORY_ENV_VARS
        }

    def produce(self, unit: BackupUnit) -> ProducerResult:
        """
        Run the command for one unit.

        Args:
            unit: Unit to back up

        Returns:
            ProducerResult with the exit status and the requested paths

        Raises:
            ProducerFailure: If the command cannot be started
        """
        paths = self.staging_paths(unit, self.clock())

        env = os.environ.copy()
        env['BACKUP_UNIT'] = unit.name
        env['BACKUP_STAGING_DIR'] = str(self.staging_dir)
        for category, var in CATEGORY_ENV_VARS.items():
            env[var] = paths[category]

        args = self._build_args(unit)

        try:
            completed = subprocess.run(
                args,
                cwd=self.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True
            )
        except OSError as e:
            raise ProducerFailure(unit.name, -1, f"cannot run {args[0]!r}: {e}")

        return ProducerResult(
            exit_status=completed.returncode,
            artifacts=paths if completed.returncode == 0 and self.reports_paths else {},
            output=completed.stdout or ''
        )


def create_producer(config, clock: Optional[Callable[[], datetime]] = None) -> ArtifactProducer:
    """
    Factory function to create the configured producer.

    Args:
        config: Flask config mapping
        clock: Callable returning the current time

    Returns:
        ArtifactProducer instance
    """
    return CommandProducer(
        command=config['PRODUCER_COMMAND'],
        staging_dir=config['BACKUP_DIR'],
        cwd=config.get('PRODUCER_CWD'),
        clock=clock,
        reports_paths=config.get('PRODUCER_REPORTS_PATHS', True)
    )
