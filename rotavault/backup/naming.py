"""
Artifact naming.

Staging artifacts (written by the producer):
- {unit}_backup_{YYYYMMDD_HHMMSS}.tar.gz     (application)
- {unit}_db_backup_{YYYYMMDD_HHMMSS}.tar.gz  (database)

Tier artifacts (copied by the orchestrator):
- {tier}/{unit}_{tier}_{app|db}_{YYYYMMDD}.tar.gz

Timestamps are always recoverable from the name alone, so ordering never
depends on filesystem metadata.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .tiers import APPLICATION, DATABASE, CATEGORIES, TIER_ORDER


STAGING = 'staging'
ARCHIVE_EXTENSION = '.tar.gz'

STAGING_TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'
TIER_DATE_FORMAT = '%Y%m%d'

# Category tokens used in tier artifact names
CATEGORY_TOKENS = {
    APPLICATION: 'app',
    DATABASE: 'db',
}

# Category infixes used in staging artifact names
STAGING_INFIXES = {
    APPLICATION: 'backup',
    DATABASE: 'db_backup',
}


@dataclass(frozen=True)
class Artifact:
    """An immutable, timestamped backup output."""
    unit: str
    category: str
    namespace: str
    timestamp: datetime
    path: str

    @property
    def name(self) -> str:
        return self.path.replace('\\', '/').rsplit('/', 1)[-1]


def _check_category(category: str):
    if category not in CATEGORIES:
        raise ValueError(
            f"Invalid artifact category: {category}. "
            f"Valid options: {list(CATEGORIES)}"
        )


def staging_filename(unit: str, category: str, when: datetime) -> str:
    """
    Generate a staging artifact filename.

    Args:
        unit: Backup unit name
        category: 'application' or 'database'
        when: Creation time

    Returns:
        Filename (without directory)
    """
    _check_category(category)
    timestamp = when.strftime(STAGING_TIMESTAMP_FORMAT)
    return f"{unit}_{STAGING_INFIXES[category]}_{timestamp}{ARCHIVE_EXTENSION}"


def tier_filename(unit: str, tier: str, category: str, when: datetime) -> str:
    """
    Generate a tier artifact filename.

    Args:
        unit: Backup unit name
        tier: Tier name
        category: 'application' or 'database'
        when: Date the artifact is filed under

    Returns:
        Filename (without directory)
    """
    _check_category(category)
    if tier not in TIER_ORDER:
        raise ValueError(f"Invalid tier: {tier}")
    date = when.strftime(TIER_DATE_FORMAT)
    return f"{unit}_{tier}_{CATEGORY_TOKENS[category]}_{date}{ARCHIVE_EXTENSION}"


def artifact_pattern(namespace: str, unit: str, category: str) -> re.Pattern:
    """Compile the filename pattern for one namespace, unit and category."""
    _check_category(category)
    ext = re.escape(ARCHIVE_EXTENSION)
    if namespace == STAGING:
        infix = STAGING_INFIXES[category]
        return re.compile(rf"^{re.escape(unit)}_{infix}_(?P<ts>\d{{8}}_\d{{6}}){ext}$")
    token = CATEGORY_TOKENS[category]
    return re.compile(rf"^{re.escape(unit)}_{re.escape(namespace)}_{token}_(?P<ts>\d{{8}}){ext}$")


def parse_artifact_name(filename: str, namespace: str, unit: str, category: str) -> Optional[datetime]:
    """
    Recover the timestamp of an artifact from its filename.

    Args:
        filename: Filename (without directory)
        namespace: 'staging' or a tier name
        unit: Backup unit name
        category: 'application' or 'database'

    Returns:
        Timestamp encoded in the name, or None if the name does not belong
        to this namespace/unit/category
    """
    match = artifact_pattern(namespace, unit, category).match(filename)
    if not match:
        return None

    fmt = STAGING_TIMESTAMP_FORMAT if namespace == STAGING else TIER_DATE_FORMAT
    try:
        return datetime.strptime(match.group('ts'), fmt)
    except ValueError:
        # Digits in the right shape but not a real date
        return None
