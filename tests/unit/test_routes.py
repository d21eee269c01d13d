"""
Unit tests for HTTP status endpoints (rotavault/routes/status_routes.py).
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from rotavault.models import TierRun


@pytest.fixture
def runs(db):
    """Three recorded runs, newest last."""
    base = datetime(2024, 1, 15, 1, 0, 0)
    records = [
        TierRun(tier='daily', trigger='scheduler', status='success', started_at=base,
                succeeded_units='moodle,opensis,rosario', failed_units='', logs='[..] INFO done'),
        TierRun(tier='weekly', trigger='cron', status='partial_failure', started_at=base + timedelta(hours=1),
                succeeded_units='moodle', failed_units='opensis,rosario', error_message='opensis: exit 1'),
        TierRun(tier='daily', trigger='manual', status='failed', started_at=base + timedelta(days=1),
                succeeded_units='', failed_units='moodle'),
    ]
    db.session.add_all(records)
    db.session.commit()
    return records


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestRuns:

    def test_list_newest_first(self, client, runs):
        response = client.get('/api/status/runs')

        data = response.get_json()
        assert response.status_code == 200
        assert data['total'] == 3
        assert [r['status'] for r in data['runs']] == ['failed', 'partial_failure', 'success']
        assert 'logs' not in data['runs'][0]

    def test_filter_by_tier(self, client, runs):
        data = client.get('/api/status/runs?tier=daily').get_json()

        assert data['total'] == 2
        assert {r['tier'] for r in data['runs']} == {'daily'}

    def test_filter_by_status(self, client, runs):
        data = client.get('/api/status/runs?status=partial_failure').get_json()

        assert data['total'] == 1
        assert data['runs'][0]['failed_units'] == ['opensis', 'rosario']

    def test_invalid_filters(self, client, runs):
        assert client.get('/api/status/runs?tier=hourly').status_code == 400
        assert client.get('/api/status/runs?status=done').status_code == 400

    def test_limit_is_clamped(self, client, runs):
        data = client.get('/api/status/runs?limit=0').get_json()

        assert data['limit'] == 1
        assert len(data['runs']) == 1

    def test_get_run_includes_logs(self, client, runs):
        data = client.get(f'/api/status/runs/{runs[0].id}').get_json()

        assert data['tier'] == 'daily'
        assert data['logs'] == '[..] INFO done'

    def test_get_missing_run(self, client, db):
        response = client.get('/api/status/runs/999')

        assert response.status_code == 404


class TestOverview:

    @patch('rotavault.crontab.shutil.which', return_value=None)
    def test_overview(self, mock_which, client, runs, backup_dir):
        data = client.get('/api/status/overview').get_json()

        assert data['tiers']['daily']['retention'] == 7
        assert data['tiers']['weekly']['cron'] == '0 2 * * 0'
        assert data['tiers']['monthly']['units']['moodle'] == {'application': 0, 'database': 0}
        assert data['last_runs']['daily']['status'] == 'failed'
        assert data['last_runs']['monthly'] is None
        assert data['runner']['running'] is False
        assert data['cron_installed'] is False
        assert not backup_dir.exists()

    def test_scheduler_diagnostics(self, client, db):
        data = client.get('/api/status/scheduler-diagnostics').get_json()

        assert data['initialized'] is False
        assert data['process']['running'] is False
