"""
Anomaly Detector
Detects statistical anomalies and unusual patterns in hiring data.

Six detection families run over the same AnalysisPeriods snapshot:

    volume             - category / location / grade-tier counts vs their own history
    pattern            - staff ratio, field ratio, top-3 concentration vs the 12-month baseline
    competitor         - competitor surges and category entries (market view: top mover)
    cross-dimensional  - new or spiking grade x location type x category combinations
    timing             - application windows, urgent-hiring rate, Friday posting skew
    gap                - categories / regions where peers hire and the subject does not

All signals are pooled, ordered by severity (high, medium, low; detection
order kept within a severity) and capped at MAX_SIGNALS.

Usage:
    from intelligence.anomaly_detector import AnomalyDetector, format_anomaly

    signals = AnomalyDetector(periods).detect_all()
    for signal in signals:
        print(format_anomaly(signal))
"""

import logging
import statistics
from collections import Counter
from typing import Callable, Dict, List, Optional, Sequence

from intelligence import stats
from intelligence.categories import get_category_name
from intelligence.grade_classifier import classify_grade
from intelligence.job_record import JobRecord
from intelligence.location_classifier import FIELD, OTHER_REGION
from intelligence.period_resolver import AnalysisPeriods

logger = logging.getLogger(__name__)

MAX_SIGNALS = 15

SEVERITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}

SIGNAL_TYPES = ('volume', 'pattern', 'competitor', 'cross-dimensional', 'timing', 'gap')

FRIDAY = 4


def volume_zscore(value: float, history: Sequence[float]) -> Optional[float]:
    """z-score of a count against its per-period history (None if not computable)."""
    return stats.zscore(value, history)


def sort_signals(signals: List[dict]) -> List[dict]:
    """Order by severity, keeping detection order within a severity, and cap."""
    ordered = sorted(signals, key=lambda s: SEVERITY_ORDER.get(s['severity'], len(SEVERITY_ORDER)))
    return ordered[:MAX_SIGNALS]


def format_anomaly(signal: dict) -> str:
    """One-line rendering: 'title: description (metric) — context'."""
    line = f"{signal['title']}: {signal['description']}"
    if signal.get('metric'):
        line += f" ({signal['metric']})"
    if signal.get('context'):
        line += f" — {signal['context']}"
    return line


def _signal(signal_id: str, signal_type: str, severity: str, title: str,
            description: str, metric: str = '', context: str = '') -> dict:
    return {
        'id': signal_id,
        'type': signal_type,
        'severity': severity,
        'title': title,
        'description': description,
        'metric': metric,
        'context': context,
    }


def _tier(record: JobRecord) -> str:
    return classify_grade(record.up_grade).consolidated_tier


def _country(record: JobRecord) -> str:
    return record.duty_country or 'Unknown'


class AnomalyDetector:
    """Detect anomaly signals for one analysis run."""

    # Volume
    ZSCORE_THRESHOLD = 2
    ZSCORE_HIGH = 3
    LOCATION_SPIKE_RATIO = 2.5
    LOCATION_HIGH_RATIO = 3
    LOCATION_MIN_COUNT = 5
    GRADE_SHIFT_PP = 10
    GRADE_HIGH_PP = 15
    GRADE_MIN_COUNT = 3

    # Pattern breaks
    PATTERN_SHIFT_PP = 15

    # Competitors
    COMPETITOR_SPIKE_RATIO = 2
    COMPETITOR_HIGH_RATIO = 3
    COMPETITOR_MIN_COUNT = 10
    ENTRY_MIN_COUNT = 5
    ENTRY_MAX_HISTORY = 3
    MARKET_GROWTH_PCT = 50
    MARKET_GROWTH_HIGH_PCT = 100
    MARKET_DECLINE_PCT = -40
    MARKET_DECLINE_HIGH_PCT = -60
    MARKET_MIN_COUNT = 20

    # Cross-dimensional
    NEW_PATTERN_MIN = 3
    NEW_PATTERN_HIGH = 5
    SPIKE_MIN = 5
    SPIKE_RATIO = 3
    SENIOR_TIERS = ('Executive', 'Director')
    SENIOR_MIN = 3
    STATION_MIN = 5

    # Timing
    MAX_WINDOW_DAYS = 365
    URGENT_WINDOW_DAYS = 10
    URGENT_RATE = 20
    URGENT_HIGH_RATE = 30
    FRIDAY_SHARE = 0.3

    # Gaps
    GAP_CATEGORY_AGENCIES = 5
    GAP_CATEGORY_MEDIUM = 10
    GAP_REGION_AGENCIES = 3
    GAP_REGION_MEDIUM = 5

    def __init__(self, periods: AnalysisPeriods):
        self.periods = periods
        self.agency = periods.agency

        self.current = periods.current.records
        self.previous = periods.previous.records
        self.baseline = periods.baseline.records
        self.market_current = periods.current.market
        self.market_previous = periods.previous.market

    @property
    def is_agency_view(self) -> bool:
        return self.agency is not None

    def detect_all(self) -> List[dict]:
        """Run every detection family and return the ranked, capped signal list."""
        signals = []
        signals.extend(self.detect_volume_anomalies())
        signals.extend(self.detect_pattern_breaks())
        signals.extend(self.detect_competitor_signals())
        signals.extend(self.detect_cross_dimensional_outliers())
        signals.extend(self.detect_timing_anomalies())
        signals.extend(self.detect_gap_signals())

        ranked = sort_signals(signals)
        logger.info(f"Detected {len(signals)} anomaly signals, returning {len(ranked)}")
        return ranked

    # =========================================================================
    # Historical series
    # =========================================================================

    def _window_counts(self, key: Callable[[JobRecord], str]) -> List[Counter]:
        """Per-key counts for each historical window of the current duration."""
        return [
            stats.count_by((r for r in self.baseline if window.contains(r.posted_at)), key)
            for window in self.periods.historical_windows
        ]

    def _window_totals(self) -> List[int]:
        return [
            sum(1 for r in self.baseline if window.contains(r.posted_at))
            for window in self.periods.historical_windows
        ]

    @staticmethod
    def _series(window_counts: List[Counter], value: str) -> List[int]:
        return [counts.get(value, 0) for counts in window_counts]

    def _zscore_severity(self, z: float) -> str:
        return 'high' if abs(z) > self.ZSCORE_HIGH else 'medium'

    # =========================================================================
    # Volume anomalies
    # =========================================================================

    def detect_volume_anomalies(self) -> List[dict]:
        signals = []
        signals.extend(self._category_volume())
        signals.extend(self._location_spikes())
        signals.extend(self._grade_shifts())
        return signals

    def _category_volume(self) -> List[dict]:
        history = self._window_counts(lambda r: r.primary_category)

        signals = []
        for category, count in stats.count_by(self.current, lambda r: r.primary_category).items():
            series = self._series(history, category)
            z = volume_zscore(count, series)
            if z is None or abs(z) <= self.ZSCORE_THRESHOLD:
                continue

            name = get_category_name(category)
            signals.append(_signal(
                f"vol-cat-{name}", 'volume', self._zscore_severity(z),
                f"Unusual {name} volume",
                f"{count} positions in {name} is {'above' if z > 0 else 'below'} the historical norm",
                f"{abs(z):.1f} std deviations from average",
                f"Historical avg: {statistics.mean(series):.0f}",
            ))
        return signals

    def _location_spikes(self) -> List[dict]:
        history = self._window_counts(_country)
        previous_counts = stats.count_by(self.previous, _country)

        signals = []
        for location, count in stats.count_by(self.current, _country).items():
            prev = previous_counts.get(location, 0)
            if not (prev > 0 and count >= prev * self.LOCATION_SPIKE_RATIO and count >= self.LOCATION_MIN_COUNT):
                continue

            z = volume_zscore(count, self._series(history, location))
            if z is not None:
                if z <= self.ZSCORE_THRESHOLD:
                    continue
                severity = self._zscore_severity(z)
            else:
                severity = 'high' if count > prev * self.LOCATION_HIGH_RATIO else 'medium'

            signals.append(_signal(
                f"vol-loc-{location}", 'volume', severity,
                f"{location} hiring spike",
                f"{count} positions in {location} — {stats.growth_rate(count, prev):.0f}% increase",
                f"{count} vs {prev} prior period",
                'Rapid expansion in this location',
            ))
        return signals

    def _grade_shifts(self) -> List[dict]:
        history = self._window_counts(_tier)
        totals = self._window_totals()
        previous_counts = stats.count_by(self.previous, _tier)

        signals = []
        for tier, count in stats.count_by(self.current, _tier).items():
            current_pct = stats.pct(count, len(self.current))
            previous_pct = stats.pct(previous_counts.get(tier, 0), len(self.previous))
            swing = current_pct - previous_pct
            if abs(swing) < self.GRADE_SHIFT_PP or count < self.GRADE_MIN_COUNT:
                continue

            shares = [stats.pct(c, t) for c, t in zip(self._series(history, tier), totals)]
            z = volume_zscore(current_pct, shares)
            if z is not None:
                if abs(z) <= self.ZSCORE_THRESHOLD:
                    continue
                severity = self._zscore_severity(z)
            else:
                severity = 'high' if abs(swing) > self.GRADE_HIGH_PP else 'medium'

            signals.append(_signal(
                f"vol-grade-{tier}", 'volume', severity,
                f"{tier} hiring shift",
                f"{tier} positions now {current_pct:.0f}% (was {previous_pct:.0f}%)",
                f"{'+' if swing > 0 else ''}{swing:.0f}pp change",
                'Increasing focus on this tier' if swing > 0 else 'Decreasing focus on this tier',
            ))
        return signals

    # =========================================================================
    # Pattern breaks
    # =========================================================================

    def detect_pattern_breaks(self) -> List[dict]:
        signals = []

        current_staff = stats.staff_ratio(self.current)
        historical_staff = stats.staff_ratio(self.baseline)
        if abs(current_staff - historical_staff) > self.PATTERN_SHIFT_PP:
            inverted = ((current_staff > 50 and historical_staff < 50) or
                        (current_staff < 50 and historical_staff > 50))
            signals.append(_signal(
                'pattern-staff-ratio', 'pattern', 'high' if inverted else 'medium',
                'Staff/consultant ratio inverted' if inverted else 'Staff ratio shift',
                f"Staff ratio now {current_staff:.0f}% (historical avg: {historical_staff:.0f}%)",
                f"{abs(current_staff - historical_staff):.0f}pp "
                f"{'more' if current_staff > historical_staff else 'less'} staff",
                'First time ratio has flipped in recent history' if inverted
                else 'Significant deviation from normal pattern',
            ))

        current_field = stats.field_ratio(self.current)
        historical_field = stats.field_ratio(self.baseline)
        if abs(current_field - historical_field) > self.PATTERN_SHIFT_PP:
            signals.append(_signal(
                'pattern-field-ratio', 'pattern', 'medium',
                'Field presence shift',
                f"Field positions now {current_field:.0f}% (historical avg: {historical_field:.0f}%)",
                f"{abs(current_field - historical_field):.0f}pp deviation",
                'Expanding field footprint' if current_field > historical_field else 'Contracting to HQ',
            ))

        current_top3 = stats.top_n_share(stats.count_by(self.current, lambda r: r.primary_category))
        historical_top3 = stats.top_n_share(stats.count_by(self.baseline, lambda r: r.primary_category))
        if abs(current_top3 - historical_top3) > self.PATTERN_SHIFT_PP:
            signals.append(_signal(
                'pattern-concentration', 'pattern', 'medium',
                'Category focus shift',
                f"Top 3 categories now {current_top3:.0f}% of hiring (was {historical_top3:.0f}%)",
                f"{abs(current_top3 - historical_top3):.0f}pp change",
                'More specialized hiring' if current_top3 > historical_top3 else 'More diversified hiring',
            ))

        return signals

    # =========================================================================
    # Competitor signals
    # =========================================================================

    def detect_competitor_signals(self) -> List[dict]:
        if not self.is_agency_view:
            return self._market_movers()

        current_counts = stats.count_by(self.market_current, lambda r: r.agency)
        previous_counts = stats.count_by(self.market_previous, lambda r: r.agency)
        current_counts.pop(self.agency, None)

        signals = []
        for agency, count in current_counts.items():
            prev = previous_counts.get(agency, 0)
            if prev > 0 and count >= prev * self.COMPETITOR_SPIKE_RATIO and count >= self.COMPETITOR_MIN_COUNT:
                signals.append(_signal(
                    f"comp-spike-{agency}", 'competitor',
                    'high' if count > prev * self.COMPETITOR_HIGH_RATIO else 'medium',
                    f"{agency} hiring surge",
                    f"{agency} posted {count} positions (was {prev})",
                    f"{stats.growth_rate(count, prev):.0f}% increase",
                    'Major expansion by competitor',
                ))

        signals.extend(self._competitor_entries())
        return signals

    def _competitor_entries(self) -> List[dict]:
        """Competitors posting heavily in a subject category with little prior history."""
        if self.periods.history_days <= 0:
            return []

        your_categories = {r.primary_category for r in self.current}
        history = stats.count_by(self.periods.history(market=True),
                                 lambda r: (r.agency, r.primary_category))
        pairs = stats.count_by(
            (r for r in self.market_current if r.agency and r.agency != self.agency),
            lambda r: (r.agency, r.primary_category),
        )

        signals = []
        for (agency, category), count in pairs.items():
            if category not in your_categories or count < self.ENTRY_MIN_COUNT:
                continue
            if history.get((agency, category), 0) >= self.ENTRY_MAX_HISTORY:
                continue

            name = get_category_name(category)
            signals.append(_signal(
                f"comp-entry-{agency}-{name}", 'competitor', 'high',
                f"{agency} entered {name}",
                f"{agency} posted {count} positions in {name} — new activity",
                f"{count} positions",
                'New competitor in your category',
            ))
        return signals

    def _market_movers(self) -> List[dict]:
        """Largest agency-wide grower and decliner vs the previous period."""
        current_counts = stats.count_by(self.market_current, lambda r: r.agency)
        previous_counts = stats.count_by(self.market_previous, lambda r: r.agency)

        # Agencies that stopped posting count as -100%
        agencies = list(current_counts) + [a for a in previous_counts if a not in current_counts]

        changes = []
        for agency in agencies:
            count = current_counts.get(agency, 0)
            prev = previous_counts.get(agency, 0)
            if prev > 0:
                changes.append({
                    'agency': agency,
                    'current': count,
                    'previous': prev,
                    'change': stats.growth_rate(count, prev),
                })

        signals = []

        growers = sorted(changes, key=lambda c: -c['change'])
        top_grower = next((c for c in growers
                           if c['change'] > self.MARKET_GROWTH_PCT and c['current'] >= self.MARKET_MIN_COUNT), None)
        if top_grower:
            signals.append(_signal(
                f"market-growth-{top_grower['agency']}", 'competitor',
                'high' if top_grower['change'] > self.MARKET_GROWTH_HIGH_PCT else 'medium',
                f"{top_grower['agency']} hiring surge",
                f"{top_grower['agency']} increased hiring by {top_grower['change']:.0f}%",
                f"{top_grower['current']} positions (was {top_grower['previous']})",
                'Major market movement',
            ))

        decliners = sorted(changes, key=lambda c: c['change'])
        top_decliner = next((c for c in decliners
                             if c['change'] < self.MARKET_DECLINE_PCT and c['previous'] >= self.MARKET_MIN_COUNT), None)
        if top_decliner:
            signals.append(_signal(
                f"market-decline-{top_decliner['agency']}", 'competitor',
                'high' if top_decliner['change'] < self.MARKET_DECLINE_HIGH_PCT else 'medium',
                f"{top_decliner['agency']} hiring drop",
                f"{top_decliner['agency']} decreased hiring by {abs(top_decliner['change']):.0f}%",
                f"{top_decliner['current']} positions (was {top_decliner['previous']})",
                'Significant pullback',
            ))

        return signals

    # =========================================================================
    # Cross-dimensional outliers
    # =========================================================================

    @staticmethod
    def _combination(record: JobRecord):
        return (_tier(record), record.location_type, record.primary_category)

    def detect_cross_dimensional_outliers(self) -> List[dict]:
        signals = []
        signals.extend(self._combination_outliers())
        signals.extend(self._senior_field_concentration())
        return signals

    def _combination_outliers(self) -> List[dict]:
        history_days = self.periods.history_days
        if history_days <= 0:
            return []

        current_days = self.periods.current.window.days
        historical = stats.count_by(self.periods.history(), self._combination)

        signals = []
        for (tier, location_type, category), count in stats.count_by(self.current, self._combination).items():
            hist_count = historical.get((tier, location_type, category), 0)
            name = get_category_name(category)
            key = f"{tier}|{location_type}|{name}"

            if count >= self.NEW_PATTERN_MIN and hist_count == 0:
                signals.append(_signal(
                    f"cross-new-{key}", 'cross-dimensional',
                    'high' if count >= self.NEW_PATTERN_HIGH else 'medium',
                    f"New pattern: {tier} {name} in {location_type}",
                    f"{count} positions with this combination — not seen historically",
                    f"{count} positions",
                    'Unusual hiring pattern',
                ))
                continue

            expected = hist_count * current_days / history_days
            if count >= self.SPIKE_MIN and hist_count > 0 and count > expected * self.SPIKE_RATIO:
                monthly = hist_count * 30 / history_days
                signals.append(_signal(
                    f"cross-spike-{key}", 'cross-dimensional', 'high',
                    f"Spike: {tier} {name} in {location_type}",
                    f"{count} positions (historical avg: {monthly:.1f}/month)",
                    f"{count / expected:.1f}x normal",
                    'Unusual concentration',
                ))
        return signals

    def _senior_field_concentration(self) -> List[dict]:
        station_counts = stats.count_by(self.current, lambda r: r.duty_station or 'Unknown')
        combos = stats.count_by(self.current, lambda r: (r.duty_station or 'Unknown', _tier(r)))

        signals = []
        for (station, tier), count in combos.items():
            if tier not in self.SENIOR_TIERS or count < self.SENIOR_MIN:
                continue
            if station_counts[station] < self.STATION_MIN:
                continue
            if not any(r.location_type == FIELD for r in self.current
                       if (r.duty_station or 'Unknown') == station):
                continue

            signals.append(_signal(
                f"cross-senior-field-{station}", 'cross-dimensional', 'medium',
                f"Senior hiring in {station}",
                f"{count} {tier} positions in {station}",
                f"{count} positions",
                'Unusual senior concentration in field location',
            ))
        return signals

    # =========================================================================
    # Timing anomalies
    # =========================================================================

    def _valid_windows(self, records: List[JobRecord]) -> List[int]:
        return [
            r.application_window_days for r in records
            if r.application_window_days is not None
            and 0 < r.application_window_days < self.MAX_WINDOW_DAYS
        ]

    def detect_timing_anomalies(self) -> List[dict]:
        signals = []

        windows = self._valid_windows(self.current)
        if windows:
            mean_window = statistics.mean(windows)
            historical = self._valid_windows(self.baseline)
            if historical:
                hist_mean = statistics.mean(historical)
                hist_spread = statistics.stdev(historical) if len(historical) > 1 else 0
                if mean_window < hist_mean - hist_spread:
                    signals.append(_signal(
                        'timing-short-windows', 'timing', 'medium',
                        'Shortened application windows',
                        f"Average window now {mean_window:.0f} days (historical: {hist_mean:.0f} days)",
                        f"{mean_window - hist_mean:.0f} days shorter",
                        'Hiring pressure or urgency',
                    ))

            urgent = sum(1 for w in windows if w < self.URGENT_WINDOW_DAYS)
            urgent_rate = stats.pct(urgent, len(self.current))
            if urgent_rate > self.URGENT_RATE:
                signals.append(_signal(
                    'timing-urgent-rate', 'timing',
                    'high' if urgent_rate > self.URGENT_HIGH_RATE else 'medium',
                    'High urgent hiring rate',
                    f"{urgent_rate:.0f}% of positions have <{self.URGENT_WINDOW_DAYS} day windows",
                    f"{urgent} urgent positions",
                    'May indicate planning issues or emergency hiring',
                ))

        if self.current:
            fridays = sum(1 for r in self.current if r.posted_at.weekday() == FRIDAY)
            share = fridays / len(self.current)
            if share > self.FRIDAY_SHARE:
                signals.append(_signal(
                    'timing-friday-heavy', 'timing', 'low',
                    'Friday-heavy posting pattern',
                    f"{share * 100:.0f}% of positions posted on Fridays",
                    f"{fridays} Friday posts",
                    'Friday postings may get less visibility',
                ))

        return signals

    # =========================================================================
    # Gap signals
    # =========================================================================

    def _competitor_spread(self, key: Callable[[JobRecord], str]) -> Dict[str, set]:
        """Distinct non-subject agencies per key in the current market."""
        spread = {}
        for record in self.market_current:
            value = key(record)
            if record.agency and record.agency != self.agency and value:
                spread.setdefault(value, set()).add(record.agency)
        return spread

    def detect_gap_signals(self) -> List[dict]:
        if not self.is_agency_view:
            return []

        signals = []

        your_categories = {r.primary_category for r in self.current}
        market_categories = stats.count_by(self.market_current, lambda r: r.primary_category)
        for category, agencies in self._competitor_spread(lambda r: r.primary_category).items():
            if category in your_categories or len(agencies) < self.GAP_CATEGORY_AGENCIES:
                continue

            name = get_category_name(category)
            signals.append(_signal(
                f"gap-category-{name}", 'gap',
                'medium' if len(agencies) >= self.GAP_CATEGORY_MEDIUM else 'low',
                f"Not active in {name}",
                f"{len(agencies)} agencies posted {market_categories[category]} positions in {name} — you have none",
                f"{len(agencies)} competitors active",
                'Market opportunity or strategic gap',
            ))

        your_regions = {r.region for r in self.current}
        baseline_regions = {r.region for r in self.baseline}
        market_regions = stats.count_by(self.market_current, lambda r: r.region)
        for region, agencies in self._competitor_spread(lambda r: r.region).items():
            if region == OTHER_REGION or region in your_regions or region in baseline_regions:
                continue
            if len(agencies) < self.GAP_REGION_AGENCIES:
                continue

            signals.append(_signal(
                f"gap-region-{region}", 'gap',
                'medium' if len(agencies) >= self.GAP_REGION_MEDIUM else 'low',
                f"No presence in {region}",
                f"{len(agencies)} agencies active in {region} with {market_regions[region]} positions — you have none",
                f"{len(agencies)} competitors active",
                'Geographic gap vs market',
            ))

        return signals
