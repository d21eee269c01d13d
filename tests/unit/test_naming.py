"""
Unit tests for artifact naming (rotavault/backup/naming.py).
"""

from datetime import datetime

import pytest

from rotavault.backup.naming import (
    STAGING,
    parse_artifact_name,
    staging_filename,
    tier_filename,
)


WHEN = datetime(2024, 1, 15, 1, 2, 3)


class TestFilenames:

    def test_staging_application_name(self):
        assert staging_filename('moodle', 'application', WHEN) == 'moodle_backup_20240115_010203.tar.gz'

    def test_staging_database_name(self):
        assert staging_filename('moodle', 'database', WHEN) == 'moodle_db_backup_20240115_010203.tar.gz'

    def test_tier_names(self):
        assert tier_filename('rosario', 'weekly', 'application', WHEN) == 'rosario_weekly_app_20240115.tar.gz'
        assert tier_filename('rosario', 'weekly', 'database', WHEN) == 'rosario_weekly_db_20240115.tar.gz'

    def test_invalid_category(self):
        with pytest.raises(ValueError, match="Invalid artifact category"):
            staging_filename('moodle', 'logs', WHEN)

    def test_invalid_tier(self):
        with pytest.raises(ValueError, match="Invalid tier"):
            tier_filename('moodle', 'hourly', 'application', WHEN)


class TestParsing:

    def test_parse_staging_timestamp(self):
        name = staging_filename('opensis', 'database', WHEN)

        assert parse_artifact_name(name, STAGING, 'opensis', 'database') == WHEN

    def test_parse_tier_date(self):
        name = tier_filename('opensis', 'daily', 'application', WHEN)

        assert parse_artifact_name(name, 'daily', 'opensis', 'application') == datetime(2024, 1, 15)

    def test_application_pattern_ignores_database_files(self):
        name = staging_filename('moodle', 'database', WHEN)

        assert parse_artifact_name(name, STAGING, 'moodle', 'application') is None

    def test_other_unit_not_matched(self):
        name = tier_filename('moodle2', 'daily', 'application', WHEN)

        assert parse_artifact_name(name, 'daily', 'moodle', 'application') is None

    def test_other_tier_not_matched(self):
        name = tier_filename('moodle', 'weekly', 'application', WHEN)

        assert parse_artifact_name(name, 'daily', 'moodle', 'application') is None

    def test_impossible_date_not_matched(self):
        assert parse_artifact_name('moodle_daily_app_20240231.tar.gz', 'daily', 'moodle', 'application') is None

    def test_names_sort_like_timestamps(self):
        """Lexical order of tier names matches chronological order."""
        dates = [datetime(2023, 12, 31), datetime(2024, 1, 2), datetime(2024, 1, 10)]
        names = [tier_filename('moodle', 'daily', 'application', d) for d in dates]

        assert sorted(names) == names
