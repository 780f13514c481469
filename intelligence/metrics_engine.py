"""
Metrics Engine - period-aware hiring metrics.

Computes five metric groups from an AnalysisPeriods snapshot:

    volume       - counts, velocity, weekly histogram, acceleration
    workforce    - staff ratio, grade mix, experience requirements
    geography    - location types, top duty stations, conflict zones, regions
    category     - top categories, growth / decline, concentration
    competitive  - market share, rank, peers, competitor overlap

plus an executive summary that rolls them up. Every group is a plain
JSON-serializable dict. Empty record sets produce zeros, never errors.

Usage:
    from intelligence.period_resolver import build_periods
    from intelligence.metrics_engine import MetricsEngine

    periods = build_periods(records, "3months", now=now, agency="WFP")
    engine = MetricsEngine(periods)

    volume = engine.calculate_volume_metrics()
    print(volume['total_positions'], volume['volume_change'])

    summary = engine.generate_executive_summary()
    print(summary['headline'])
"""

import logging
import math
from datetime import timedelta
from typing import Dict, List, Optional

from intelligence.categories import get_category_color, get_category_name
from intelligence.grade_classifier import DISTRIBUTION_TIERS, classify_grade, get_tier_color
from intelligence.job_record import JobRecord
from intelligence.location_classifier import LOCATION_TYPES, get_location_type_color
from intelligence.peer_groups import get_agency_peer_group, get_peer_group_description
from intelligence.period_resolver import AnalysisPeriods, format_day
from intelligence import stats

logger = logging.getLogger(__name__)


def _agency(record: JobRecord) -> Optional[str]:
    return record.agency


def _category(record: JobRecord) -> str:
    return record.primary_category


class MetricsEngine:
    """
    Calculate metric groups for one analysis run.

    The engine holds no state beyond the periods it was built with, so
    every method can be called in any order, any number of times.
    """

    TOP_LOCATIONS = 10
    TOP_CATEGORIES = 10
    TOP_REGIONS = 8
    TOP_FOCUS_CATEGORIES = 5
    MAX_NEW_LOCATIONS = 5
    MAX_MOVERS = 5
    SENIORITY_TREND_WEEKS = 6
    MARKET_PEER_TABLE_SIZE = 10

    # Acceleration: second half vs first half of the weekly histogram
    ACCELERATION_THRESHOLD = 1.2
    DECELERATION_THRESHOLD = 0.8

    # Growth filters (both conditions required)
    MIN_GROWTH_RATE = 15
    MIN_ABSOLUTE_CHANGE = 2

    GRADE_ANOMALY_DEVIATION = 0.5
    KEY_DIFFERENCE_GAP = 15
    NEW_ENTRY_MIN_POSITIONS = 3

    # Executive summary gates (percentage points / percent)
    HEADLINE_CHANGE_THRESHOLD = 5
    KEY_POINT_SHIFT_THRESHOLD = 5

    WEEKS_PER_YEAR = 52
    MONTHS_PER_YEAR = 12

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

    @property
    def period_label(self) -> str:
        return self.periods.current.window.label

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _top_categories(self, records: List[JobRecord], n: int) -> List[str]:
        return stats.top_keys(stats.count_by(records, _category), n)

    def _in_category(self, records: List[JobRecord], category: str) -> List[JobRecord]:
        return [r for r in records if r.primary_category == category]

    def _for_agency(self, records: List[JobRecord], agency: str) -> List[JobRecord]:
        return [r for r in records if r.agency == agency]

    def _competitor_counts(self, records: List[JobRecord]) -> Dict[str, int]:
        """Per-agency counts excluding the subject."""
        counts = stats.count_by(records, _agency)
        if self.agency is not None:
            counts.pop(self.agency, None)
        return counts

    def _weeks(self, window) -> int:
        return max(1, math.ceil(window.days / 7))

    def _weekly_buckets(self, records: List[JobRecord]) -> Dict:
        """Records grouped by Monday week start, in chronological order."""
        buckets = {}
        for record in records:
            week_start = record.posted_at.date() - timedelta(days=record.posted_at.weekday())
            buckets.setdefault(week_start, []).append(record)
        return dict(sorted(buckets.items()))

    @staticmethod
    def _average_experience(records: List[JobRecord]) -> float:
        return stats.average(r.min_experience for r in records)

    @staticmethod
    def _average_window(records: List[JobRecord]) -> float:
        return stats.average(
            r.application_window_days for r in records
            if r.application_window_days is not None and r.application_window_days > 0
        )

    @staticmethod
    def assess_application_window(yours: float, market: float) -> str:
        """Compare an average application window against the market's."""
        diff = yours - market
        if diff < -3:
            return "Faster than market"
        if diff > 3:
            return "Slower than market"
        return "In line with market"

    @staticmethod
    def interpret_correlation(correlation: float) -> str:
        """Plain-language reading of a category-mix correlation."""
        if correlation > 0.8:
            return "Strong competition for similar roles"
        if correlation > 0.6:
            return "Moderate overlap in hiring"
        if correlation > 0.4:
            return "Some shared focus areas"
        return "Minimal overlap"

    # =========================================================================
    # Volume & velocity
    # =========================================================================

    def calculate_volume_metrics(self) -> dict:
        """
        Calculate volume and velocity metrics.

        - Period-over-period change
        - Weekly velocity vs the previous period and the 12-month average
        - Weekly histogram with running total
        - Acceleration pattern and peak week
        """
        total = len(self.current)
        previous_total = len(self.previous)
        volume_change = stats.growth_rate(total, previous_total)

        weekly_velocity = total / self._weeks(self.periods.current.window)
        previous_weekly_velocity = previous_total / self._weeks(self.periods.previous.window)
        velocity_change = stats.growth_rate(weekly_velocity, previous_weekly_velocity)

        # 12-month baseline
        baseline_total = len(self.baseline)
        avg_monthly_12mo = baseline_total / self.MONTHS_PER_YEAR
        avg_weekly_12mo = baseline_total / self.WEEKS_PER_YEAR
        vs_12mo_avg = stats.growth_rate(weekly_velocity, avg_weekly_12mo)

        weekly_breakdown = self._calculate_weekly_breakdown(self.current)

        active = sum(1 for r in self.current if r.is_active)
        closed = sum(1 for r in self.current if r.is_expired or r.archived)

        return {
            'total_positions': total,
            'previous_period_positions': previous_total,
            'volume_change': volume_change,
            'weekly_velocity': weekly_velocity,
            'previous_weekly_velocity': previous_weekly_velocity,
            'velocity_change': velocity_change,
            'avg_monthly_12mo': avg_monthly_12mo,
            'vs_12mo_avg': vs_12mo_avg,
            'weekly_breakdown': weekly_breakdown,
            'active_vs_closed': {
                'active': active,
                'closed': closed,
                'ratio': active / (active + closed) if (active + closed) > 0 else 0,
            },
            'acceleration_pattern': self._acceleration_pattern(weekly_breakdown),
            'peak_week': self._peak_week(weekly_breakdown),
        }

    def _calculate_weekly_breakdown(self, records: List[JobRecord]) -> List[dict]:
        breakdown = []
        cumulative = 0
        for week_start, week_records in self._weekly_buckets(records).items():
            cumulative += len(week_records)
            breakdown.append({
                'week': format_day(week_start),
                'count': len(week_records),
                'start_date': week_start.isoformat(),
                'cumulative': cumulative,
            })
        return breakdown

    def _acceleration_pattern(self, weekly_breakdown: List[dict]) -> str:
        if len(weekly_breakdown) < 2:
            return 'steady'

        half = len(weekly_breakdown) // 2
        first_half = sum(w['count'] for w in weekly_breakdown[:half])
        second_half = sum(w['count'] for w in weekly_breakdown[half:])

        if second_half > first_half * self.ACCELERATION_THRESHOLD:
            return 'accelerating'
        if second_half < first_half * self.DECELERATION_THRESHOLD:
            return 'decelerating'
        return 'steady'

    @staticmethod
    def _peak_week(weekly_breakdown: List[dict]) -> Optional[dict]:
        peak = None
        for week in weekly_breakdown:
            if peak is None or week['count'] > peak['count']:
                peak = week
        if peak is None:
            return None
        return {'week': peak['week'], 'count': peak['count']}

    # =========================================================================
    # Workforce patterns
    # =========================================================================

    def calculate_workforce_patterns(self) -> dict:
        """
        Calculate workforce composition metrics.

        - Staff ratio for current, previous and market
        - Grade tier distribution with period-over-period change
        - Staff ratio by top category vs market and the leading competitor
        - Grade tiers deviating from their 12-month share
        - Experience requirements and weekly seniority trend
        """
        current_ratio = stats.staff_ratio(self.current)
        previous_ratio = stats.staff_ratio(self.previous)

        return {
            'staff_ratio': {
                'current': current_ratio,
                'previous': previous_ratio,
                'market': stats.staff_ratio(self.market_current),
                'change': current_ratio - previous_ratio,
            },
            'grade_distribution': self._calculate_grade_distribution(self.current, self.previous),
            'category_staff_patterns': self._calculate_category_staff_patterns(),
            'grade_anomalies': self._detect_grade_anomalies(),
            'experience_requirements': self._calculate_experience_requirements(),
            'seniority_trend': self._calculate_seniority_trend(),
        }

    @staticmethod
    def _tier_shares(records: List[JobRecord]) -> Dict[str, float]:
        counts = {tier: 0 for tier in DISTRIBUTION_TIERS}
        for record in records:
            tier = classify_grade(record.up_grade).consolidated_tier
            if tier in counts:
                counts[tier] += 1
        return {tier: stats.pct(count, len(records)) for tier, count in counts.items()}

    def _calculate_grade_distribution(self, current: List[JobRecord],
                                      previous: List[JobRecord]) -> List[dict]:
        current_shares = self._tier_shares(current)
        previous_shares = self._tier_shares(previous)
        return [
            {
                'tier': tier,
                'current': current_shares[tier],
                'previous': previous_shares[tier],
                'change': current_shares[tier] - previous_shares[tier],
                'color': get_tier_color(tier),
            }
            for tier in DISTRIBUTION_TIERS
        ]

    def _calculate_category_staff_patterns(self) -> List[dict]:
        patterns = []
        for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES):
            yours = self._in_category(self.current, category)
            market = self._in_category(self.market_current, category)

            your_ratio = stats.staff_ratio(yours)
            market_ratio = stats.staff_ratio(market)

            top_competitor = None
            competitors = stats.ranked(self._competitor_counts(market))
            if competitors:
                name = competitors[0][0]
                top_competitor = {
                    'name': name,
                    'staff_ratio': stats.staff_ratio(self._for_agency(market, name)),
                }

            patterns.append({
                'category': category,
                'category_name': get_category_name(category),
                'your_staff_ratio': your_ratio,
                'market_staff_ratio': market_ratio,
                'top_competitor': top_competitor,
                'diff': your_ratio - market_ratio,
            })
        return patterns

    def _detect_grade_anomalies(self) -> List[dict]:
        """Tiers whose current share deviates > 50% (relative) from the 12-month share."""
        historical = self._tier_shares(self.baseline)
        current = self._tier_shares(self.current)

        anomalies = []
        for tier in DISTRIBUTION_TIERS:
            hist_share = historical[tier]
            deviation = (current[tier] - hist_share) / max(hist_share, 1) if hist_share > 0 else 0
            if abs(deviation) > self.GRADE_ANOMALY_DEVIATION:
                anomalies.append({
                    'tier': tier,
                    'count': round(current[tier] * len(self.current) / 100),
                    'historical_avg': hist_share,
                    'deviation': deviation,
                })
        return anomalies

    def _calculate_experience_requirements(self) -> List[dict]:
        requirements = []
        for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES):
            yours = self._average_experience(self._in_category(self.current, category))
            market = self._average_experience(self._in_category(self.market_current, category))
            requirements.append({
                'category': category,
                'category_name': get_category_name(category),
                'avg_experience': yours,
                'market_avg': market,
                'diff': yours - market,
            })
        return requirements

    def _calculate_seniority_trend(self) -> List[dict]:
        buckets = list(self._weekly_buckets(self.current).items())
        return [
            {
                'period': format_day(week_start),
                'senior_ratio': stats.senior_ratio(week_records),
            }
            for week_start, week_records in buckets[-self.SENIORITY_TREND_WEEKS:]
        ]

    # =========================================================================
    # Geography
    # =========================================================================

    def calculate_geographic_metrics(self) -> dict:
        """
        Calculate geographic footprint metrics.

        - Location type distribution and field ratio
        - Top duty stations and stations new vs the prior 12 months
        - Conflict-zone hiring vs market
        - Field ratio by category, grade mix by location type, regions
        """
        current_field = stats.field_ratio(self.current)
        previous_field = stats.field_ratio(self.previous)

        return {
            'location_type_distribution': self._calculate_location_type_distribution(),
            'field_ratio': {
                'current': current_field,
                'previous': previous_field,
                'change': current_field - previous_field,
            },
            'top_locations': self._calculate_top_locations(),
            'new_locations': self._find_new_locations(),
            'conflict_zone_hiring': self._calculate_conflict_zone_hiring(),
            'category_geography_patterns': self._calculate_category_geography_patterns(),
            'grade_by_location_type': self._calculate_grade_by_location_type(),
            'region_breakdown': self._calculate_region_breakdown(),
        }

    def _calculate_location_type_distribution(self) -> List[dict]:
        current_counts = stats.count_by(self.current, lambda r: r.location_type)
        previous_counts = stats.count_by(self.previous, lambda r: r.location_type)

        distribution = []
        for location_type in LOCATION_TYPES:
            current = stats.pct(current_counts[location_type], len(self.current))
            previous = stats.pct(previous_counts[location_type], len(self.previous))
            distribution.append({
                'type': location_type,
                'current': current,
                'previous': previous,
                'change': current - previous,
                'color': get_location_type_color(location_type),
            })
        return distribution

    @staticmethod
    def _location_key(record: JobRecord) -> str:
        return record.duty_station or record.duty_country or 'Unknown'

    def _calculate_top_locations(self) -> List[dict]:
        current_counts = stats.count_by(self.current, self._location_key)
        previous_counts = stats.count_by(self.previous, self._location_key)

        countries = {}
        for record in self.current:
            countries.setdefault(self._location_key(record), record.duty_country or 'Unknown')

        return [
            {
                'location': location,
                'country': countries[location],
                'count': count,
                'change': count - previous_counts.get(location, 0),
            }
            for location, count in stats.ranked(current_counts)[:self.TOP_LOCATIONS]
        ]

    def _find_new_locations(self) -> List[str]:
        """Duty stations posted in now that were absent before the current window."""
        if self.periods.history_days <= 0:
            return []
        seen = {r.duty_station.lower() for r in self.periods.history() if r.duty_station}

        new_locations = []
        for record in self.current:
            station = record.duty_station
            if station and station.lower() not in seen and station not in new_locations:
                new_locations.append(station)
        return new_locations[:self.MAX_NEW_LOCATIONS]

    def _calculate_conflict_zone_hiring(self) -> dict:
        conflict = [r for r in self.current if r.is_conflict_zone]
        market_conflict = [r for r in self.market_current if r.is_conflict_zone]
        return {
            'count': len(conflict),
            'percentage': stats.pct(len(conflict), len(self.current)),
            'staff_ratio': stats.staff_ratio(conflict),
            'market_staff_ratio': stats.staff_ratio(market_conflict),
        }

    def _calculate_category_geography_patterns(self) -> List[dict]:
        patterns = []
        for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES):
            yours = stats.field_ratio(self._in_category(self.current, category))
            market = stats.field_ratio(self._in_category(self.market_current, category))
            patterns.append({
                'category': category,
                'category_name': get_category_name(category),
                'your_field_ratio': yours,
                'market_field_ratio': market,
                'diff': yours - market,
            })
        return patterns

    def _calculate_grade_by_location_type(self) -> List[dict]:
        breakdown = []
        for location_type in LOCATION_TYPES:
            typed = [r for r in self.current if r.location_type == location_type]
            breakdown.append({
                'location_type': location_type,
                'count': len(typed),
                'junior_ratio': stats.junior_ratio(typed),
                'senior_ratio': stats.senior_ratio(typed),
            })
        return breakdown

    def _calculate_region_breakdown(self) -> List[dict]:
        current_counts = stats.count_by(self.current, lambda r: r.region)
        previous_counts = stats.count_by(self.previous, lambda r: r.region)
        return [
            {
                'region': region,
                'count': count,
                'percentage': stats.pct(count, len(self.current)),
                'change': count - previous_counts.get(region, 0),
            }
            for region, count in stats.ranked(current_counts)[:self.TOP_REGIONS]
        ]

    # =========================================================================
    # Categories
    # =========================================================================

    def calculate_category_metrics(self) -> dict:
        """
        Calculate category focus metrics.

        - Top categories with market rank and leading competitor
        - Fastest growing / declining (>15% AND >=2 positions)
        - Concentration (Herfindahl and top-3 share)
        - Experience and application windows vs market
        """
        current_counts = stats.count_by(self.current, _category)
        previous_counts = stats.count_by(self.previous, _category)
        growth = self._category_growth(current_counts, previous_counts)

        growing = [g for g in growth
                   if g['growth_rate'] > self.MIN_GROWTH_RATE
                   and g['absolute_change'] >= self.MIN_ABSOLUTE_CHANGE]
        growing.sort(key=lambda g: -g['growth_rate'])

        declining = [dict(g, decline_rate=abs(g['growth_rate'])) for g in growth
                     if g['growth_rate'] < -self.MIN_GROWTH_RATE
                     and g['absolute_change'] <= -self.MIN_ABSOLUTE_CHANGE]
        declining.sort(key=lambda g: g['growth_rate'])

        top3 = stats.top_n_share(current_counts, 3)
        previous_top3 = stats.top_n_share(previous_counts, 3)

        return {
            'top_categories': self._calculate_top_categories(current_counts, previous_counts),
            'fastest_growing': growing[:self.MAX_MOVERS],
            'declining': declining[:self.MAX_MOVERS],
            'concentration': {
                'herfindahl': stats.herfindahl_index(current_counts),
                'top3_share': top3,
                'previous_top3_share': previous_top3,
                'change': top3 - previous_top3,
            },
            'category_experience': self._calculate_category_experience(),
            'application_windows': self._calculate_application_windows(),
        }

    @staticmethod
    def _category_growth(current_counts: Dict[str, int], previous_counts: Dict[str, int]) -> List[dict]:
        categories = list(current_counts)
        categories.extend(c for c in previous_counts if c not in current_counts)

        growth = []
        for category in categories:
            current = current_counts.get(category, 0)
            previous = previous_counts.get(category, 0)
            if previous > 0:
                rate = (current - previous) / previous * 100
            else:
                rate = 100 if current > 0 else 0
            growth.append({
                'category': category,
                'category_name': get_category_name(category),
                'current': current,
                'previous': previous,
                'growth_rate': rate,
                'absolute_change': current - previous,
            })
        return growth

    def _calculate_top_categories(self, current_counts: Dict[str, int],
                                  previous_counts: Dict[str, int]) -> List[dict]:
        market_counts = stats.count_by(self.market_current, _category)
        market_total = len(self.market_current)

        top = []
        for category, count in stats.ranked(current_counts)[:self.TOP_CATEGORIES]:
            share = stats.pct(count, len(self.current))
            previous_share = stats.pct(previous_counts.get(category, 0), len(self.previous))

            market = self._in_category(self.market_current, category)
            competitors = stats.ranked(self._competitor_counts(market))
            market_rank = None
            if category in market_counts:
                market_rank = stats.rank_of(market_counts, category)[0]

            top.append({
                'category': category,
                'category_name': get_category_name(category),
                'color': get_category_color(category),
                'count': count,
                'percentage': share,
                'change': share - previous_share,
                'market_rank': market_rank,
                'market_share': stats.pct(market_counts.get(category, 0), market_total),
                'top_competitor': competitors[0][0] if competitors else None,
                'your_staff_ratio': stats.staff_ratio(self._in_category(self.current, category)),
                'competitor_staff_ratio': stats.staff_ratio(market),
            })
        return top

    def _calculate_category_experience(self) -> List[dict]:
        return [
            {
                'category': category,
                'category_name': get_category_name(category),
                'avg_experience': self._average_experience(self._in_category(self.current, category)),
                'market_avg': self._average_experience(self._in_category(self.market_current, category)),
            }
            for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES)
        ]

    def _calculate_application_windows(self) -> List[dict]:
        windows = []
        for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES):
            yours = self._average_window(self._in_category(self.current, category))
            market = self._average_window(self._in_category(self.market_current, category))
            windows.append({
                'category': category,
                'category_name': get_category_name(category),
                'avg_window': yours,
                'market_avg': market,
                'difference': yours - market,
                'assessment': self.assess_application_window(yours, market),
            })
        return windows

    # =========================================================================
    # Competitive position
    # =========================================================================

    def calculate_competitive_metrics(self) -> dict:
        """
        Calculate the subject's competitive position.

        - Market share and rank (current vs previous)
        - Peer group table
        - Category-mix correlation with the five largest competitors
        - Position in the subject's top categories
        - Competitors entering categories they were absent from

        Market view returns a degenerate structure (100% share, rank 0) with
        the ten largest agencies as the peer table.
        """
        if not self.is_agency_view:
            return self._calculate_market_competitive_metrics()

        current_share = stats.pct(len(self.current), len(self.market_current))
        previous_share = stats.pct(len(self.previous), len(self.market_previous))

        current_rank, total = stats.rank_of(stats.count_by(self.market_current, _agency), self.agency)
        previous_rank, _ = stats.rank_of(stats.count_by(self.market_previous, _agency), self.agency)

        return {
            'is_agency_view': True,
            'market_share': {
                'current': current_share,
                'previous': previous_share,
                'change': current_share - previous_share,
            },
            'rank': {
                'current': current_rank,
                'previous': previous_rank,
                'total': total,
                # Positive = improved
                'change': previous_rank - current_rank,
            },
            'peer_group': get_peer_group_description(self.agency),
            'peer_group_performance': self._calculate_peer_group_performance(),
            'competitor_patterns': self._calculate_competitor_patterns(),
            'category_position': self._calculate_category_position(),
            'new_competitor_moves': self._detect_new_competitor_moves(),
        }

    def _calculate_market_competitive_metrics(self) -> dict:
        counts = stats.count_by(self.current, _agency)

        peers = []
        for agency, count in stats.ranked(counts)[:self.MARKET_PEER_TABLE_SIZE]:
            agency_records = self._for_agency(self.current, agency)
            peers.append({
                'agency': agency,
                'volume': count,
                'senior_ratio': stats.senior_ratio(agency_records),
                'field_ratio': stats.field_ratio(agency_records),
                'is_you': False,
            })

        return {
            'is_agency_view': False,
            'market_share': {'current': 100, 'previous': 100, 'change': 0},
            'rank': {'current': 0, 'previous': 0, 'total': len(counts), 'change': 0},
            'peer_group': None,
            'peer_group_performance': peers,
            'competitor_patterns': [],
            'category_position': [],
            'new_competitor_moves': [],
        }

    def _calculate_peer_group_performance(self) -> List[dict]:
        group = get_agency_peer_group(self.agency)
        if not group:
            return []

        peers = list(group['agencies'])
        if self.agency not in peers:
            peers.append(self.agency)

        table = []
        for agency in peers:
            agency_records = self._for_agency(self.market_current, agency)
            table.append({
                'agency': agency,
                'volume': len(agency_records),
                'senior_ratio': stats.senior_ratio(agency_records),
                'field_ratio': stats.field_ratio(agency_records),
                'is_you': agency == self.agency,
            })
        table.sort(key=lambda row: -row['volume'])
        return table

    def _key_difference(self, theirs: List[JobRecord]) -> str:
        staff_gap = stats.staff_ratio(self.current) - stats.staff_ratio(theirs)
        field_gap = stats.field_ratio(self.current) - stats.field_ratio(theirs)

        if max(abs(staff_gap), abs(field_gap)) <= self.KEY_DIFFERENCE_GAP:
            return 'Similar hiring profile'

        if abs(staff_gap) >= abs(field_gap):
            if staff_gap > 0:
                return f"{abs(staff_gap):.0f}% more staff-focused"
            return f"{abs(staff_gap):.0f}% more consultant-focused"

        if field_gap > 0:
            return f"{abs(field_gap):.0f}% more field-deployed"
        return f"{abs(field_gap):.0f}% more HQ-centric"

    def _calculate_competitor_patterns(self) -> List[dict]:
        your_categories = stats.count_by(self.current, _category)
        previous_counts = stats.count_by(self.market_previous, _agency)

        patterns = []
        for agency, count in stats.ranked(self._competitor_counts(self.market_current))[:self.MAX_MOVERS]:
            theirs = self._for_agency(self.market_current, agency)
            correlation = stats.share_correlation(your_categories, stats.count_by(theirs, _category))
            patterns.append({
                'agency': agency,
                'correlation': correlation,
                'interpretation': self.interpret_correlation(correlation),
                'volume_change': stats.growth_rate(count, previous_counts.get(agency, 0)),
                'key_difference': self._key_difference(theirs),
            })
        return patterns

    def _calculate_category_position(self) -> List[dict]:
        positions = []
        for category in self._top_categories(self.current, self.TOP_FOCUS_CATEGORIES):
            market = self._in_category(self.market_current, category)
            counts = stats.count_by(market, _agency)
            your_rank, _ = stats.rank_of(counts, self.agency)
            leaders = stats.ranked(counts)

            positions.append({
                'category': category,
                'category_name': get_category_name(category),
                'your_rank': your_rank,
                'your_share': stats.pct(counts.get(self.agency, 0), len(market)),
                'leader': leaders[0][0] if leaders else 'Unknown',
                'leader_share': stats.pct(leaders[0][1], len(market)) if leaders else 0,
            })
        return positions

    def _detect_new_competitor_moves(self) -> List[dict]:
        """Competitors with >= 3 postings in a category they had none in last period."""
        previous_pairs = {(r.primary_category, r.agency) for r in self.market_previous if r.agency}
        current_pairs = stats.count_by(
            (r for r in self.market_current if r.agency and r.agency != self.agency),
            lambda r: (r.primary_category, r.agency),
        )

        moves = []
        for (category, agency), count in current_pairs.items():
            if (category, agency) in previous_pairs or count < self.NEW_ENTRY_MIN_POSITIONS:
                continue
            moves.append({
                'agency': agency,
                'category': category,
                'category_name': get_category_name(category),
                'count': count,
                'description': f"New entry with {count} positions",
            })
        return moves[:self.MAX_MOVERS]

    # =========================================================================
    # Executive summary
    # =========================================================================

    def calculate_all(self) -> dict:
        """Every metric group, keyed by section name."""
        return {
            'volume': self.calculate_volume_metrics(),
            'workforce': self.calculate_workforce_patterns(),
            'geography': self.calculate_geographic_metrics(),
            'category': self.calculate_category_metrics(),
            'competitive': self.calculate_competitive_metrics(),
        }

    def generate_executive_summary(self, anomaly_count: int = 0,
                                   metrics: Optional[dict] = None) -> dict:
        """
        Roll the metric groups up into a headline and key points.

        Args:
            anomaly_count: Number of anomaly signals for this run
            metrics: Output of calculate_all(), to avoid recomputing

        Returns:
            Dict with headline, key_points, volume_trend, top_shift,
            competitor_alert, anomaly_count, period_label
        """
        metrics = metrics or self.calculate_all()
        volume = metrics['volume']
        workforce = metrics['workforce']
        category = metrics['category']
        geography = metrics['geography']

        total = volume['total_positions']
        change = volume['volume_change']

        if self.is_agency_view:
            headline = f"Over {self.period_label}, {self.agency} posted {total} positions"
        else:
            headline = f"The UN system posted {total:,} positions over {self.period_label}"
        if abs(change) > self.HEADLINE_CHANGE_THRESHOLD:
            direction = 'up' if change > 0 else 'down'
            headline += f" — {direction} {abs(change):.0f}% from the prior period"
        headline += "."

        staff = workforce['staff_ratio']
        field = geography['field_ratio']
        growing = category['fastest_growing']

        key_points = []
        if abs(staff['change']) > self.KEY_POINT_SHIFT_THRESHOLD:
            key_points.append(
                f"Non-staff positions made up {100 - staff['current']:.0f}% of postings "
                f"(was {100 - staff['previous']:.0f}% prior period)"
            )
        if growing:
            top = growing[0]
            key_points.append(f"{top['category_name']} grew {top['growth_rate']:.0f}% vs prior period")
        if abs(field['change']) > self.KEY_POINT_SHIFT_THRESHOLD:
            direction = 'increased' if field['change'] > 0 else 'decreased'
            key_points.append(f"Field positions {direction} to {field['current']:.0f}% of postings")

        top_shift = {'area': 'Workforce', 'description': 'Stable hiring patterns'}
        if growing:
            top = growing[0]
            top_shift = {'area': top['category_name'], 'description': f"+{top['growth_rate']:.0f}% growth"}
        elif abs(staff['change']) > self.KEY_POINT_SHIFT_THRESHOLD:
            more_or_less = 'More' if staff['change'] > 0 else 'Less'
            top_shift = {'area': 'Workforce Mix', 'description': f"{more_or_less} staff positions"}

        competitor_alert = None
        if self.is_agency_view:
            rank = metrics['competitive']['rank']
            if rank['change'] < 0:
                competitor_alert = f"Rank dropped from #{rank['previous']} to #{rank['current']}"
            elif rank['change'] > 0:
                competitor_alert = f"Rank improved from #{rank['previous']} to #{rank['current']}"

        logger.info(f"Executive summary: {total} positions, {len(key_points)} key points")

        return {
            'headline': headline,
            'key_points': key_points,
            'volume_trend': {
                'current': total,
                'previous': volume['previous_period_positions'],
                'change': change,
            },
            'top_shift': top_shift,
            'competitor_alert': competitor_alert,
            'anomaly_count': anomaly_count,
            'period_label': self.period_label,
        }
