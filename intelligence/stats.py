"""
Shared statistics helpers for the metrics engine and anomaly detector.

Every ratio is a percentage in [0, 100] and is 0 for an empty input.
Counting helpers return collections.Counter, whose insertion order is the
tie-breaker wherever results are ranked.
"""

import math
import statistics
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from intelligence.grade_classifier import classify_grade
from intelligence.job_record import JobRecord
from intelligence.location_classifier import FIELD


def pct(part: float, total: float) -> float:
    """part as a percentage of total; 0 when total is 0."""
    return part / total * 100 if total > 0 else 0


def growth_rate(current: float, previous: float) -> float:
    """Percent change vs previous; 0 when there is no previous value."""
    return (current - previous) / previous * 100 if previous > 0 else 0


def count_by(records: Iterable[JobRecord], key: Callable[[JobRecord], Any]) -> Counter:
    """Count records per key, skipping records whose key is empty."""
    counts = Counter()
    for record in records:
        value = key(record)
        if value:
            counts[value] += 1
    return counts


def ranked(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    """(key, count) pairs by count descending; ties keep insertion order."""
    return sorted(counts.items(), key=lambda item: -item[1])


def top_keys(counts: Dict[str, int], n: int) -> List[str]:
    return [key for key, _ in ranked(counts)[:n]]


# =============================================================================
# Record Ratios
# =============================================================================

def staff_ratio(records: Sequence[JobRecord]) -> float:
    """Share of records whose grade is in the Staff category."""
    if not records:
        return 0
    staff = sum(1 for r in records if classify_grade(r.up_grade).is_staff)
    return pct(staff, len(records))


def field_ratio(records: Sequence[JobRecord]) -> float:
    """Share of records at Field duty stations."""
    if not records:
        return 0
    field = sum(1 for r in records if r.location_type == FIELD)
    return pct(field, len(records))


def senior_ratio(records: Sequence[JobRecord]) -> float:
    """Share of Executive, Director and Senior Professional records."""
    if not records:
        return 0
    senior = sum(1 for r in records if classify_grade(r.up_grade).is_senior)
    return pct(senior, len(records))


def junior_ratio(records: Sequence[JobRecord]) -> float:
    """Share of Entry Professional, Support and Intern records."""
    if not records:
        return 0
    junior = sum(1 for r in records if classify_grade(r.up_grade).is_junior)
    return pct(junior, len(records))


def average(values: Iterable[Optional[float]]) -> float:
    """Mean of the non-null values; 0 when there are none."""
    present = [v for v in values if v is not None]
    return statistics.mean(present) if present else 0


# =============================================================================
# Distribution Statistics
# =============================================================================

def zscore(value: float, history: Sequence[float]) -> Optional[float]:
    """
    Standard score of value against a historical series.

    Uses the population standard deviation. Returns None when the series
    has fewer than two points or no spread.

    Examples:
        >>> zscore(20, [8, 12] * 6)
        5.0
        >>> zscore(5, [3]) is None
        True
    """
    if len(history) < 2:
        return None
    spread = statistics.pstdev(history)
    if spread == 0:
        return None
    return (value - statistics.mean(history)) / spread


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson r of two equal-length vectors; 0 when either has no variance."""
    n = len(xs)
    if n == 0 or n != len(ys):
        return 0
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n

    num = 0.0
    den_x = 0.0
    den_y = 0.0
    for x, y in zip(xs, ys):
        dx = x - mean_x
        dy = y - mean_y
        num += dx * dy
        den_x += dx * dx
        den_y += dy * dy

    den = math.sqrt(den_x * den_y)
    return num / den if den > 0 else 0


def share_correlation(counts_a: Dict[str, int], counts_b: Dict[str, int]) -> float:
    """
    Correlate two category mixes.

    Each mix becomes a vector of category shares over the union of
    categories either side posts in.
    """
    total_a = sum(counts_a.values())
    total_b = sum(counts_b.values())
    if total_a == 0 or total_b == 0:
        return 0

    keys = list(counts_a)
    keys.extend(k for k in counts_b if k not in counts_a)

    xs = [counts_a.get(k, 0) / total_a for k in keys]
    ys = [counts_b.get(k, 0) / total_b for k in keys]
    return pearson_correlation(xs, ys)


def herfindahl_index(counts: Dict[str, int]) -> float:
    """Sum of squared shares, scaled to 0-100."""
    total = sum(counts.values())
    if total == 0:
        return 0
    return sum((c / total) ** 2 for c in counts.values()) * 100


def top_n_share(counts: Dict[str, int], n: int = 3) -> float:
    """Combined percentage share of the n largest entries."""
    total = sum(counts.values())
    if total == 0:
        return 0
    largest = sorted(counts.values(), reverse=True)[:n]
    return pct(sum(largest), total)


def rank_of(counts: Dict[str, int], key: str) -> Tuple[int, int]:
    """
    1-based rank of key by count descending, plus the number of ranked keys.

    A key that is absent ranks after every present key.

    Examples:
        >>> rank_of({"WFP": 10, "UNICEF": 20}, "WFP")
        (2, 2)
        >>> rank_of({"WFP": 10}, "UNDP")
        (2, 1)
    """
    order = [k for k, _ in ranked(counts)]
    if key in order:
        return order.index(key) + 1, len(order)
    return len(order) + 1, len(order)
