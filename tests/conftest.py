"""
Shared pytest fixtures for rotavault tests.

This module provides fixtures for:
- Flask app, CLI runner and test client
- Database setup with in-memory SQLite
- Temporary backup directory and artifact store
- A fake producer that writes staging artifacts without any external command
"""

from datetime import datetime
from pathlib import Path

import pytest

from rotavault import create_app, db as _db
from rotavault.backup.naming import staging_filename, tier_filename
from rotavault.backup.producer import ArtifactProducer, ProducerResult
from rotavault.backup.storage import LocalArtifactStore
from rotavault.backup.tiers import APPLICATION, DATABASE, BackupUnit


# Writes both staging artifacts named after the requested paths
WRITING_COMMAND = (
    "sh -c 'printf app > \"$BACKUP_APP_ARTIFACT\" && printf db > \"$BACKUP_DB_ARTIFACT\"'"
)


@pytest.fixture(scope='function')
def backup_dir(tmp_path):
    """Empty backup directory (not created on disk yet)."""
    return tmp_path / 'backups'


@pytest.fixture(scope='function')
def app(tmp_path, backup_dir):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing', config_overrides={
        'DATA_DIR': str(tmp_path / 'data'),
        'LOG_DIR': str(tmp_path / 'logs'),
        'BACKUP_DIR': str(backup_dir),
        'SCHEDULER_PID_FILE': str(tmp_path / 'data' / 'backup-scheduler.pid'),
        'SCHEDULER_LOG_FILE': str(tmp_path / 'logs' / 'backup-scheduler.log'),
        'BACKUP_UNITS': ['moodle', 'opensis', 'rosario'],
        'PRODUCER_COMMAND': WRITING_COMMAND,
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def store(backup_dir):
    """Artifact store over the test backup directory, with its layout created."""
    store = LocalArtifactStore(str(backup_dir))
    store.ensure_layout()
    return store


@pytest.fixture
def units():
    return [BackupUnit('moodle'), BackupUnit('opensis'), BackupUnit('rosario')]


def write_staging(store, unit, category, when, content=b'data'):
    """Create a staging artifact and return its path."""
    path = store.namespace_path('staging') / staging_filename(unit, category, when)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return str(path)


def write_tier(store, tier, unit, category, when, content=b'data'):
    """Create a tier artifact and return its path."""
    path = store.namespace_path(tier) / tier_filename(unit, tier, category, when)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return str(path)


class FakeProducer(ArtifactProducer):
    """
    Producer writing staging artifacts in-process.

    Args:
        store: Store whose staging namespace receives the artifacts
        fail: Unit names whose producer call exits non-zero
        skip: Unit name -> category that "succeeds" without writing that file
        report_paths: Whether to report written paths back
    """

    def __init__(self, store, when=None, fail=(), skip=None, report_paths=True):
        self.store = store
        self.when = when or datetime(2024, 1, 15, 1, 0, 0)
        self.fail = set(fail)
        self.skip = skip or {}
        self.report_paths = report_paths
        self.calls = []

    def produce(self, unit):
        self.calls.append(unit.name)

        if unit.name in self.fail:
            return ProducerResult(exit_status=1)

        artifacts = {}
        for category in (APPLICATION, DATABASE):
            path = Path(self.store.namespace_path('staging')) / staging_filename(unit.name, category, self.when)
            if self.skip.get(unit.name) != category:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(f"{unit.name}-{category}".encode())
            artifacts[category] = str(path)

        return ProducerResult(exit_status=0, artifacts=artifacts if self.report_paths else {})


@pytest.fixture
def fake_producer(store):
    return FakeProducer(store)
