"""
Unit tests for tier policies (rotavault/backup/tiers.py).

Tests trigger windows, the minimum-interval guard and policy building.
"""

from datetime import datetime, timedelta, timezone

import pytest

from rotavault.backup.tiers import (
    DAILY, WEEKLY, MONTHLY, EPOCH,
    BackupUnit, TierPolicy, is_due, build_policies, build_units
)
from rotavault.config import Config


UTC = timezone.utc


@pytest.fixture
def policies():
    return build_policies({
        'DAILY_HOUR': 1, 'DAILY_RETENTION': 7,
        'WEEKLY_HOUR': 2, 'WEEKLY_WEEKDAY': 7, 'WEEKLY_RETENTION': 4,
        'MONTHLY_HOUR': 3, 'MONTHLY_DAY': 1, 'MONTHLY_RETENTION': 12,
    })


class TestTriggerWindows:
    """Test window matching, independent of last run."""

    @pytest.mark.parametrize('hour', [0, 2, 12, 23])
    def test_daily_outside_hour_never_due(self, policies, hour):
        """Outside the window a tier is never due, whatever the last run."""
        now = datetime(2024, 1, 15, hour, 5, tzinfo=UTC)

        assert is_due(policies[DAILY], now, None) is False
        assert is_due(policies[DAILY], now, EPOCH) is False
        assert is_due(policies[DAILY], now, now - timedelta(days=365)) is False

    def test_weekly_requires_sunday(self, policies):
        # 2024-01-14 is a Sunday, 2024-01-15 a Monday
        sunday = datetime(2024, 1, 14, 2, 5, tzinfo=UTC)
        monday = datetime(2024, 1, 15, 2, 5, tzinfo=UTC)

        assert is_due(policies[WEEKLY], sunday, None) is True
        assert is_due(policies[WEEKLY], monday, None) is False

    def test_monthly_requires_first_day(self, policies):
        assert is_due(policies[MONTHLY], datetime(2024, 2, 1, 3, 0, tzinfo=UTC), None) is True
        assert is_due(policies[MONTHLY], datetime(2024, 2, 2, 3, 0, tzinfo=UTC), None) is False

    def test_monthly_wrong_hour(self, policies):
        assert is_due(policies[MONTHLY], datetime(2024, 2, 1, 2, 55, tzinfo=UTC), None) is False

    def test_day_31_never_fires_in_short_month(self):
        policy = TierPolicy(name=MONTHLY, hour=3, day_of_month=31,
                            min_interval=timedelta(days=27), retention=12)

        # February 2024 has no day 31; no rollover to March 1st
        for day in range(1, 30):
            assert is_due(policy, datetime(2024, 2, day, 3, 0, tzinfo=UTC), None) is False
        assert is_due(policy, datetime(2024, 3, 1, 3, 0, tzinfo=UTC), None) is False
        assert is_due(policy, datetime(2024, 3, 31, 3, 0, tzinfo=UTC), None) is True


class TestMinimumInterval:
    """Test the debounce guard inside a matching window."""

    def test_daily_due_after_23_hours(self, policies):
        now = datetime(2024, 1, 15, 1, 5, tzinfo=UTC)
        last_run = datetime(2024, 1, 14, 1, 0, tzinfo=UTC)

        assert is_due(policies[DAILY], now, last_run) is True

    def test_daily_not_due_within_same_window(self, policies):
        now = datetime(2024, 1, 15, 1, 5, tzinfo=UTC)
        last_run = datetime(2024, 1, 15, 1, 2, tzinfo=UTC)

        assert is_due(policies[DAILY], now, last_run) is False

    @pytest.mark.parametrize('elapsed', [
        timedelta(0),
        timedelta(minutes=5),
        timedelta(minutes=55),
        timedelta(hours=23),
    ])
    def test_not_due_when_elapsed_at_most_min_interval(self, policies, elapsed):
        now = datetime(2024, 1, 15, 1, 30, tzinfo=UTC)

        assert is_due(policies[DAILY], now, now - elapsed) is False

    def test_due_just_past_min_interval(self, policies):
        now = datetime(2024, 1, 15, 1, 30, tzinfo=UTC)
        last_run = now - timedelta(hours=23, seconds=1)

        assert is_due(policies[DAILY], now, last_run) is True

    def test_window_spanning_polls_fires_once(self, policies):
        """Every 5-minute poll in the window matches; only the first fires."""
        last_run = None
        fired = []

        for minute in range(0, 60, 5):
            now = datetime(2024, 1, 15, 1, minute, tzinfo=UTC)
            if is_due(policies[DAILY], now, last_run):
                fired.append(now)
                last_run = now

        assert fired == [datetime(2024, 1, 15, 1, 0, tzinfo=UTC)]

    def test_weekly_jitter_still_fires_next_week(self, policies):
        """A run late in last week's window does not block this week's early poll."""
        last_run = datetime(2024, 1, 7, 2, 55, tzinfo=UTC)
        now = datetime(2024, 1, 14, 2, 0, tzinfo=UTC)

        assert is_due(policies[WEEKLY], now, last_run) is True

    def test_monthly_fires_after_february(self, policies):
        """March 1st is only 28 days after February 1st in a common year."""
        last_run = datetime(2023, 2, 1, 3, 0, tzinfo=UTC)
        now = datetime(2023, 3, 1, 3, 0, tzinfo=UTC)

        assert is_due(policies[MONTHLY], now, last_run) is True

    def test_naive_times_read_as_utc(self, policies):
        now = datetime(2024, 1, 15, 1, 5)

        assert is_due(policies[DAILY], now, None) is True
        assert is_due(policies[DAILY], now, datetime(2024, 1, 15, 1, 0, tzinfo=UTC)) is False
        assert is_due(policies[DAILY], datetime(2024, 1, 15, 1, 5, tzinfo=UTC), datetime(2024, 1, 14, 1, 0)) is True

    def test_min_intervals_shorter_than_periods(self, policies):
        assert policies[DAILY].min_interval < timedelta(days=1)
        assert policies[WEEKLY].min_interval < timedelta(days=7)
        assert policies[MONTHLY].min_interval < timedelta(days=28)


class TestPolicyHelpers:
    """Test cron rendering and next-window computation."""

    def test_cron_expressions(self, policies):
        assert policies[DAILY].cron_expression() == '0 1 * * *'
        assert policies[WEEKLY].cron_expression() == '0 2 * * 0'
        assert policies[MONTHLY].cron_expression() == '0 3 1 * *'

    def test_next_window_daily(self, policies):
        now = datetime(2024, 1, 15, 5, 0, tzinfo=UTC)

        assert policies[DAILY].next_window(now) == datetime(2024, 1, 16, 1, 0, tzinfo=UTC)

    def test_next_window_weekly(self, policies):
        now = datetime(2024, 1, 15, 5, 0, tzinfo=UTC)

        assert policies[WEEKLY].next_window(now) == datetime(2024, 1, 21, 2, 0, tzinfo=UTC)

    def test_describe(self, policies):
        assert policies[DAILY].describe() == '01:00 every day'
        assert policies[WEEKLY].describe() == '02:00 every Sun'
        assert policies[MONTHLY].describe() == '03:00 on day 1 of each month'

    def test_build_policies_uses_configured_retention(self, policies):
        assert policies[DAILY].retention == 7
        assert policies[WEEKLY].retention == 4
        assert policies[MONTHLY].retention == 12

    def test_build_policies_from_config_class(self):
        policies = build_policies({k: getattr(Config, k) for k in dir(Config) if k.isupper()})

        assert list(policies) == [DAILY, WEEKLY, MONTHLY]


class TestBuildUnits:

    def test_keeps_registration_order(self):
        units = build_units({'BACKUP_UNITS': ['rosario', 'moodle', 'opensis']})

        assert units == [BackupUnit('rosario'), BackupUnit('moodle'), BackupUnit('opensis')]

    def test_drops_blanks_and_duplicates(self):
        units = build_units({'BACKUP_UNITS': ['moodle', ' ', 'moodle', ' opensis ']})

        assert [u.name for u in units] == ['moodle', 'opensis']

    def test_rejects_ambiguous_db_suffix(self):
        # "x_db_backup_..." would be both x's database and x_db's application artifact
        with pytest.raises(ValueError, match="ambiguous"):
            build_units({'BACKUP_UNITS': ['moodle', 'moodle_db']})

    def test_db_infix_alone_is_allowed(self):
        units = build_units({'BACKUP_UNITS': ['moodle_db', 'opensis']})

        assert [u.name for u in units] == ['moodle_db', 'opensis']
