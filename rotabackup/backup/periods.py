"""
Period resolution and staging area layout.

A period tag names one time bucket, e.g. ``day_2025-05-14``,
``week_2025-week-20`` or ``month_2025-05``. Only these three exact forms are
recognized; any other directory under the backup root is left alone.
"""

import os
import re
import logging
from datetime import datetime
from enum import Enum
from typing import List, NamedTuple, Optional


logger = logging.getLogger(__name__)

# Staging area subtrees
REPOSITORIES_DIR = 'repositories'
RESOURCES_DIR = 'archived_resources'


class Granularity(Enum):
    DAILY = 'day'
    WEEKLY = 'week'
    MONTHLY = 'month'


# BACKUP_PERIOD values; anything else falls back to daily
PERIOD_SETTINGS = {
    'days': Granularity.DAILY,
    'weeks': Granularity.WEEKLY,
    'months': Granularity.MONTHLY,
}

_TAG_PATTERNS = {
    Granularity.DAILY: re.compile(r'^day_(\d{4}-\d{2}-\d{2})$'),
    Granularity.WEEKLY: re.compile(r'^week_(\d{4}-week-\d{2})$'),
    Granularity.MONTHLY: re.compile(r'^month_(\d{4}-\d{2})$'),
}


class PeriodTag(NamedTuple):
    granularity: Granularity
    value: str

    def __str__(self):
        return f"{self.granularity.value}_{self.value}"

    @classmethod
    def for_time(cls, now: datetime, granularity: Granularity) -> 'PeriodTag':
        if granularity is Granularity.MONTHLY:
            return cls(granularity, now.strftime('%Y-%m'))
        if granularity is Granularity.WEEKLY:
            iso_year, iso_week, _ = now.isocalendar()
            return cls(granularity, f"{iso_year}-week-{iso_week:02d}")
        return cls(granularity, now.strftime('%Y-%m-%d'))

    @classmethod
    def parse(cls, name: str) -> Optional['PeriodTag']:
        """Parse a directory name, returning None unless it is a period tag."""
        for granularity, pattern in _TAG_PATTERNS.items():
            match = pattern.match(name)
            if match:
                return cls(granularity, match.group(1))
        return None


def granularity_for(backup_period: Optional[str]) -> Granularity:
    """
    Map a BACKUP_PERIOD setting to a granularity.

    Unrecognized values fall back to daily buckets, with a warning.
    """
    granularity = PERIOD_SETTINGS.get(backup_period)
    if granularity is None:
        logger.warning(f"Unrecognized BACKUP_PERIOD {backup_period!r}, using daily periods")
        return Granularity.DAILY
    return granularity


def resolve_period(now: datetime, backup_period: Optional[str]) -> PeriodTag:
    """Period tag of the bucket that `now` falls into."""
    return PeriodTag.for_time(now, granularity_for(backup_period))


class StagingArea:
    """On-disk working copy of one period."""

    def __init__(self, root: str, tag: PeriodTag):
        self.root = root
        self.tag = tag

    @property
    def name(self) -> str:
        return str(self.tag)

    @property
    def path(self) -> str:
        return os.path.join(self.root, self.name)

    @property
    def repositories_dir(self) -> str:
        return os.path.join(self.path, REPOSITORIES_DIR)

    @property
    def resources_dir(self) -> str:
        return os.path.join(self.path, RESOURCES_DIR)

    def exists(self) -> bool:
        return os.path.isdir(self.path)

    def ensure(self):
        """Create both subtrees if missing."""
        os.makedirs(self.repositories_dir, exist_ok=True)
        os.makedirs(self.resources_dir, exist_ok=True)

    def __eq__(self, other):
        return isinstance(other, StagingArea) and (self.root, self.tag) == (other.root, other.tag)

    def __hash__(self):
        return hash((self.root, self.tag))

    def __repr__(self):
        return f'<StagingArea {self.path}>'


def list_staging_areas(root: str) -> List[StagingArea]:
    """
    All staging areas under the backup root, sorted by name.

    Files and directories that are not period tags are ignored.
    """
    if not os.path.isdir(root):
        return []

    areas = []
    for name in sorted(os.listdir(root)):
        if not os.path.isdir(os.path.join(root, name)):
            continue
        tag = PeriodTag.parse(name)
        if tag is not None:
            areas.append(StagingArea(root, tag))
    return areas
