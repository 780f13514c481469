"""
Period Resolver
Turns a time-range selector and an injected "now" into the three analysis
windows and splits the record set into them.

    current   = (now - duration, now]
    previous  = (current.start - duration, current.start]
    baseline  = (now - 12 months, now]      (independent of the time range)

A record belongs to a window when start < posted_at <= end, so adjacent
windows share a boundary but never a record. Records without a parseable
posting date are left out of every window.

When a subject agency is given, each window carries both the subject's
records and the unfiltered market records.

Example usage:
    from datetime import datetime
    from intelligence.period_resolver import build_periods

    periods = build_periods(records, "3months", now=datetime(2025, 6, 30), agency="WFP")
    periods.current.records      # WFP postings in the current window
    periods.current.market       # all postings in the current window
    periods.previous.window.end == periods.current.window.start  # True
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple, Union

from intelligence.job_record import JobRecord, to_naive_utc

logger = logging.getLogger(__name__)

MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

BASELINE_MONTHS = 12

MARKET_VIEW_VALUES = {"", "all"}


class TimeRange(Enum):
    """Supported analysis durations"""
    FOUR_WEEKS = "4weeks"
    EIGHT_WEEKS = "8weeks"
    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    ONE_YEAR = "1year"


# (unit, amount) per range
RANGE_DURATIONS = {
    TimeRange.FOUR_WEEKS: ("weeks", 4),
    TimeRange.EIGHT_WEEKS: ("weeks", 8),
    TimeRange.THREE_MONTHS: ("months", 3),
    TimeRange.SIX_MONTHS: ("months", 6),
    TimeRange.ONE_YEAR: ("months", 12),
}


def parse_time_range(value: Union[str, TimeRange]) -> TimeRange:
    """
    Validate a time-range selector.

    Raises:
        ValueError: For anything outside the supported enumeration
    """
    if isinstance(value, TimeRange):
        return value
    try:
        return TimeRange(value)
    except ValueError:
        valid = ", ".join(t.value for t in TimeRange)
        raise ValueError(f"Unknown time range {value!r}; expected one of: {valid}") from None


def subtract_months(value: datetime, months: int) -> datetime:
    """Shift back by whole months, clamping the day to the target month's length."""
    year_offset, month_index = divmod(value.month - 1 - months, 12)
    year = value.year + year_offset
    month = month_index + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def shift_back(value: datetime, time_range: TimeRange) -> datetime:
    """Subtract one duration of the given range."""
    unit, amount = RANGE_DURATIONS[time_range]
    if unit == "weeks":
        return value - timedelta(weeks=amount)
    return subtract_months(value, amount)


def format_day(value: datetime) -> str:
    """'Mar 4' style label, independent of locale."""
    return f"{MONTH_ABBR[value.month - 1]} {value.day}"


@dataclass(frozen=True)
class PeriodWindow:
    """A bounded date range (start, end]"""
    start: datetime
    end: datetime
    label: str

    def contains(self, posted_at: Optional[datetime]) -> bool:
        if posted_at is None:
            return False
        return self.start < posted_at <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
        }


@dataclass
class WindowRecords:
    """A window with its subject-filtered and market-wide record lists"""
    window: PeriodWindow
    records: List[JobRecord]
    market: List[JobRecord]


@dataclass
class AnalysisPeriods:
    """The three windows of one analysis run"""
    time_range: TimeRange
    now: datetime
    agency: Optional[str]
    current: WindowRecords
    previous: WindowRecords
    baseline: WindowRecords
    historical_windows: List[PeriodWindow] = field(default_factory=list)

    @property
    def is_agency_view(self) -> bool:
        return self.agency is not None

    @property
    def history_days(self) -> int:
        """Length of the baseline stretch before the current window opens."""
        return max(0, (self.current.window.start - self.baseline.window.start).days)

    def history(self, market: bool = False) -> List[JobRecord]:
        """Baseline records posted before the current window opened."""
        source = self.baseline.market if market else self.baseline.records
        cutoff = self.current.window.start
        return [r for r in source if r.posted_at <= cutoff]


# =============================================================================
# Window Resolution
# =============================================================================

def resolve_windows(time_range: Union[str, TimeRange],
                    now: datetime) -> Tuple[PeriodWindow, PeriodWindow, PeriodWindow]:
    """
    Compute current, previous and 12-month baseline windows.

    Args:
        time_range: One of 4weeks, 8weeks, 3months, 6months, 1year
        now: Injected clock value

    Returns:
        (current, previous, baseline)

    Raises:
        ValueError: Unknown time range
        TypeError: now is not a datetime
    """
    if not isinstance(now, datetime):
        raise TypeError(f"now must be a datetime, got {type(now).__name__}")

    tr = parse_time_range(time_range)
    end = to_naive_utc(now)

    current_start = shift_back(end, tr)
    previous_start = shift_back(current_start, tr)
    baseline_start = subtract_months(end, BASELINE_MONTHS)

    current = PeriodWindow(
        start=current_start,
        end=end,
        label=f"{format_day(current_start)} - {format_day(end)}, {end.year}",
    )
    previous = PeriodWindow(
        start=previous_start,
        end=current_start,
        label=f"{format_day(previous_start)} - {format_day(current_start)}",
    )
    baseline = PeriodWindow(
        start=baseline_start,
        end=end,
        label=f"{format_day(baseline_start)}, {baseline_start.year} - {format_day(end)}, {end.year}",
    )
    return current, previous, baseline


def resolve_historical_windows(time_range: Union[str, TimeRange], current: PeriodWindow,
                               baseline: PeriodWindow) -> List[PeriodWindow]:
    """
    Consecutive windows of the current duration, walking back from the
    current window's start, that fit inside the baseline. Most recent first.
    """
    tr = parse_time_range(time_range)
    windows = []
    end = current.start
    while True:
        start = shift_back(end, tr)
        if start < baseline.start:
            break
        windows.append(PeriodWindow(start=start, end=end,
                                    label=f"{format_day(start)} - {format_day(end)}"))
        end = start
    return windows


# =============================================================================
# Record Assignment
# =============================================================================

def normalize_agency(agency: Optional[str]) -> Optional[str]:
    """None for market view ("", "all" or None), else the trimmed agency."""
    if agency is None:
        return None
    agency = agency.strip()
    if agency.lower() in MARKET_VIEW_VALUES:
        return None
    return agency


def _split(records: List[JobRecord], window: PeriodWindow,
           agency: Optional[str]) -> WindowRecords:
    market = [r for r in records if window.contains(r.posted_at)]
    if agency is None:
        subject = market
    else:
        subject = [r for r in market if r.agency == agency]
    return WindowRecords(window=window, records=subject, market=market)


def build_periods(records: List[JobRecord], time_range: Union[str, TimeRange],
                  now: datetime, agency: Optional[str] = None) -> AnalysisPeriods:
    """
    Resolve windows and assign records to them.

    Args:
        records: JobRecords (see job_record.load_records)
        time_range: Time-range selector
        now: Injected clock value
        agency: Subject agency; None / "" / "all" selects the market view

    Returns:
        AnalysisPeriods

    Raises:
        TypeError: records is None or now is not a datetime
        ValueError: Unknown time range
    """
    if records is None:
        raise TypeError("build_periods() requires a list of records, got None")

    tr = parse_time_range(time_range)
    current, previous, baseline = resolve_windows(tr, now)
    subject = normalize_agency(agency)

    dated = [r for r in records if r.posted_at is not None]
    skipped = len(records) - len(dated)
    if skipped:
        logger.debug(f"Excluded {skipped} records without a valid posting date")

    periods = AnalysisPeriods(
        time_range=tr,
        now=current.end,
        agency=subject,
        current=_split(dated, current, subject),
        previous=_split(dated, previous, subject),
        baseline=_split(dated, baseline, subject),
        historical_windows=resolve_historical_windows(tr, current, baseline),
    )

    logger.info(
        f"Resolved {tr.value} for {subject or 'market'}: "
        f"current={len(periods.current.records)}, previous={len(periods.previous.records)}, "
        f"baseline={len(periods.baseline.records)}"
    )
    return periods
