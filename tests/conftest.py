"""
Shared fixtures for the intelligence tests.

All scenarios are built against a fixed clock (NOW, a Monday at noon) so
window boundaries and weekday checks are reproducible.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from intelligence.job_record import JobRecord
from intelligence.period_resolver import build_periods

NOW = datetime(2025, 6, 30, 12, 0)

_counter = {"next": 0}


def build_record(days_ago: float, agency="WFP", category="digital-technology", grade="P-3",
                 station="Kampala", country="Uganda", continent="Africa",
                 window=30, **fields) -> JobRecord:
    """One posting, `days_ago` days before NOW. Defaults describe a Field P-3 post."""
    _counter["next"] += 1
    row = {
        "id": f"job-{_counter['next']}",
        "title": "Programme Officer",
        "short_agency": agency,
        "primary_category": category,
        "up_grade": grade,
        "posting_date": (NOW - timedelta(days=days_ago)).isoformat(),
        "duty_station": station,
        "duty_country": country,
        "duty_continent": continent,
        "application_window_days": window,
    }
    row.update(fields)
    return JobRecord.from_dict(row)


def build_records(count: int, days_ago: float, **kwargs) -> list:
    return [build_record(days_ago, **kwargs) for _ in range(count)]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_record():
    """Factory for a single JobRecord (see build_record)."""
    return build_record


@pytest.fixture
def make_records():
    """Factory for `count` identical postings on the same day."""
    return build_records


@pytest.fixture
def make_periods():
    """build_periods bound to NOW."""
    def _make(records, time_range="3months", agency=None):
        return build_periods(records, time_range, NOW, agency)
    return _make
