"""
Backup tiers, units and the due/not-due decision.

Each tier (daily, weekly, monthly) has a trigger window and a minimum
interval. The minimum interval is kept strictly below the shortest real
period of the tier so that poll jitter never skips a window, while still
preventing a second run inside the same window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from apscheduler.triggers.cron import CronTrigger


DAILY = 'daily'
WEEKLY = 'weekly'
MONTHLY = 'monthly'

# Evaluation order inside one poll
TIER_ORDER = (DAILY, WEEKLY, MONTHLY)

APPLICATION = 'application'
DATABASE = 'database'
CATEGORIES = (APPLICATION, DATABASE)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# ISO weekday numbers (Monday=1 ... Sunday=7) to crontab day-of-week
_CRON_WEEKDAYS = {1: 'mon', 2: 'tue', 3: 'wed', 4: 'thu', 5: 'fri', 6: 'sat', 7: 'sun'}


@dataclass(frozen=True)
class BackupUnit:
    """One backed-up subject: an application plus its database."""
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class TierPolicy:
    """Schedule and retention settings for one tier."""
    name: str
    hour: int
    min_interval: timedelta
    retention: int
    weekday: Optional[int] = None  # ISO weekday, 7 = Sunday
    day_of_month: Optional[int] = None

    def in_window(self, now: datetime) -> bool:
        """Return True if ``now`` falls inside this tier's trigger window."""
        if now.hour != self.hour:
            return False
        if self.weekday is not None and now.isoweekday() != self.weekday:
            return False
        if self.day_of_month is not None and now.day != self.day_of_month:
            return False
        return True

    def cron_expression(self) -> str:
        """Render the trigger window start as a five-field crontab expression."""
        day = str(self.day_of_month) if self.day_of_month is not None else '*'
        weekday = str(self.weekday % 7) if self.weekday is not None else '*'
        return f"0 {self.hour} {day} * {weekday}"

    def next_window(self, now: datetime) -> Optional[datetime]:
        """
        Get the start of the next trigger window after ``now``.

        Args:
            now: Timezone-aware reference time

        Returns:
            Datetime of the next window start, or None if it never fires
        """
        trigger = CronTrigger(
            hour=self.hour,
            minute=0,
            day=self.day_of_month if self.day_of_month is not None else '*',
            day_of_week=_CRON_WEEKDAYS[self.weekday] if self.weekday is not None else '*',
            timezone=now.tzinfo or timezone.utc
        )
        return trigger.get_next_fire_time(None, now)

    def describe(self) -> str:
        when = f"{self.hour:02d}:00"
        if self.weekday is not None:
            return f"{when} every {_CRON_WEEKDAYS[self.weekday].capitalize()}"
        if self.day_of_month is not None:
            return f"{when} on day {self.day_of_month} of each month"
        return f"{when} every day"


def as_aware(when: datetime) -> datetime:
    """Return ``when`` unchanged if timezone-aware, else read it as UTC."""
    if when.tzinfo is None or when.utcoffset() is None:
        return when.replace(tzinfo=timezone.utc)
    return when


def is_due(policy: TierPolicy, now: datetime, last_run: Optional[datetime]) -> bool:
    """
    Decide whether a tier should run at ``now``.

    A tier is due when ``now`` is inside its trigger window and more than
    ``min_interval`` has passed since the last run. Windows that do not exist
    in a given month (e.g. day 31) never match; there is no rollover.
    Naive datetimes are read as UTC.

    Args:
        policy: Tier policy to evaluate
        now: Current time
        last_run: Time of the last run, or None if never run

    Returns:
        True if the tier should run now
    """
    if not policy.in_window(now):
        return False

    if last_run is None:
        last_run = EPOCH

    return as_aware(now) - as_aware(last_run) > policy.min_interval


def build_policies(config) -> Dict[str, TierPolicy]:
    """
    Build tier policies from application config.

    Args:
        config: Flask config mapping

    Returns:
        Dict of tier name to TierPolicy, in evaluation order
    """
    return {
        DAILY: TierPolicy(
            name=DAILY,
            hour=config['DAILY_HOUR'],
            min_interval=timedelta(hours=23),
            retention=config['DAILY_RETENTION']
        ),
        WEEKLY: TierPolicy(
            name=WEEKLY,
            hour=config['WEEKLY_HOUR'],
            weekday=config['WEEKLY_WEEKDAY'],
            min_interval=timedelta(days=6, hours=23),
            retention=config['WEEKLY_RETENTION']
        ),
        MONTHLY: TierPolicy(
            name=MONTHLY,
            hour=config['MONTHLY_HOUR'],
            day_of_month=config['MONTHLY_DAY'],
            # February is the shortest month
            min_interval=timedelta(days=27),
            retention=config['MONTHLY_RETENTION']
        ),
    }


def build_units(config) -> List[BackupUnit]:
    """
    Build the registered backup units, keeping registration order.

    Raises:
        ValueError: If one unit name is another's plus '_db'; their staging
            artifact names would collide ('x_db_backup_...')
    """
    units = []
    seen = set()
    for name in config['BACKUP_UNITS']:
        name = name.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        units.append(BackupUnit(name))

    for name in seen:
        if f"{name}_db" in seen:
            raise ValueError(
                f"Backup units '{name}' and '{name}_db' cannot both be registered: "
                f"their staging artifact names are ambiguous"
            )
    return units
