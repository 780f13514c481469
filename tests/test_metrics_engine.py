"""
Test metrics engine

Unit tests for intelligence/metrics_engine.py. Scenarios are built from
small record sets against the fixed clock in conftest.
"""

import json

import pytest

from intelligence.metrics_engine import MetricsEngine


def engine_for(make_periods, records, time_range="4weeks", agency="WFP"):
    return MetricsEngine(make_periods(records, time_range, agency))


# =============================================================================
# Volume
# =============================================================================

class TestVolumeMetrics:
    """calculate_volume_metrics()"""

    @pytest.fixture
    def volume(self, make_periods, make_records):
        records = (
            make_records(2, 20)                     # Tue Jun 10 -> week of Jun 9
            + make_records(6, 3, is_active=True)    # Fri Jun 27 -> week of Jun 23
            + make_records(4, 40)                   # previous window
        )
        return engine_for(make_periods, records).calculate_volume_metrics()

    def test_counts_and_change(self, volume):
        """Totals and period-over-period change"""
        assert volume['total_positions'] == 8
        assert volume['previous_period_positions'] == 4
        assert volume['volume_change'] == pytest.approx(100)

    def test_velocity(self, volume):
        """Weekly velocity is count / weeks in the window"""
        assert volume['weekly_velocity'] == pytest.approx(2.0)
        assert volume['previous_weekly_velocity'] == pytest.approx(1.0)
        assert volume['velocity_change'] == pytest.approx(100)

    def test_twelve_month_baseline(self, volume):
        """Baseline averages include the current window"""
        assert volume['avg_monthly_12mo'] == pytest.approx(1.0)
        assert volume['vs_12mo_avg'] == pytest.approx((2.0 - 12 / 52) / (12 / 52) * 100)

    def test_weekly_breakdown_keyed_by_monday(self, volume):
        """Weeks start on Monday and carry a running total"""
        assert volume['weekly_breakdown'] == [
            {'week': 'Jun 9', 'count': 2, 'start_date': '2025-06-09', 'cumulative': 2},
            {'week': 'Jun 23', 'count': 6, 'start_date': '2025-06-23', 'cumulative': 8},
        ]

    def test_acceleration_and_peak(self, volume):
        """Second-half heavy histogram is accelerating"""
        assert volume['acceleration_pattern'] == 'accelerating'
        assert volume['peak_week'] == {'week': 'Jun 23', 'count': 6}

    def test_active_vs_closed(self, volume):
        """Active count from the is_active flag"""
        assert volume['active_vs_closed']['active'] == 6
        assert volume['active_vs_closed']['closed'] == 0
        assert volume['active_vs_closed']['ratio'] == pytest.approx(1.0)

    def test_single_week_is_steady(self, make_periods, make_records):
        """Fewer than two weeks cannot accelerate"""
        volume = engine_for(make_periods, make_records(5, 3)).calculate_volume_metrics()
        assert volume['acceleration_pattern'] == 'steady'

    def test_decelerating(self, make_periods, make_records):
        """First-half heavy histogram is decelerating"""
        records = make_records(10, 20) + make_records(2, 3)
        volume = engine_for(make_periods, records).calculate_volume_metrics()
        assert volume['acceleration_pattern'] == 'decelerating'


# =============================================================================
# Empty input
# =============================================================================

class TestEmptyInput:
    """Empty record sets produce zeros, never errors"""

    def test_calculate_all_on_empty(self, make_periods):
        """Every group computes on no data"""
        engine = engine_for(make_periods, [], agency=None)
        metrics = engine.calculate_all()

        assert metrics['volume']['total_positions'] == 0
        assert metrics['volume']['volume_change'] == 0
        assert metrics['volume']['peak_week'] is None
        assert metrics['workforce']['staff_ratio']['current'] == 0
        assert metrics['geography']['top_locations'] == []
        assert metrics['category']['top_categories'] == []
        assert metrics['category']['concentration']['herfindahl'] == 0
        assert metrics['competitive']['rank']['total'] == 0

    def test_metrics_are_json_serializable(self, make_periods, make_records):
        """Metric groups are plain data"""
        records = make_records(3, 3) + make_records(2, 3, agency="UNICEF")
        metrics = engine_for(make_periods, records).calculate_all()
        json.dumps(metrics)

    def test_empty_market_headline(self, make_periods):
        """Market headline on no data"""
        summary = engine_for(make_periods, [], agency=None).generate_executive_summary()
        assert summary['headline'] == "The UN system posted 0 positions over Jun 2 - Jun 30, 2025."
        assert summary['key_points'] == []


# =============================================================================
# Workforce
# =============================================================================

class TestWorkforcePatterns:
    """calculate_workforce_patterns()"""

    @pytest.fixture
    def workforce(self, make_periods, make_records):
        records = (
            make_records(3, 3, grade="P-3")
            + make_records(1, 3, grade="Consultant")
            + make_records(2, 40, grade="P-3")
            + make_records(2, 40, grade="Consultant")
            + make_records(4, 3, agency="UNICEF", grade="Consultant")
        )
        return engine_for(make_periods, records).calculate_workforce_patterns()

    def test_staff_ratio(self, workforce):
        """Subject, previous and market staff ratios"""
        staff = workforce['staff_ratio']
        assert staff['current'] == pytest.approx(75)
        assert staff['previous'] == pytest.approx(50)
        assert staff['market'] == pytest.approx(37.5)
        assert staff['change'] == pytest.approx(25)

    def test_grade_distribution(self, workforce):
        """Distribution covers every display tier in order"""
        distribution = {g['tier']: g for g in workforce['grade_distribution']}
        assert distribution['Mid Professional']['current'] == pytest.approx(75)
        assert distribution['Consultant']['current'] == pytest.approx(25)
        assert distribution['Consultant']['change'] == pytest.approx(-25)
        assert workforce['grade_distribution'][0]['tier'] == 'Executive'

    def test_category_staff_patterns(self, workforce):
        """Top category staff ratio vs market and leading competitor"""
        pattern = workforce['category_staff_patterns'][0]
        assert pattern['category_name'] == 'Digital & Technology'
        assert pattern['your_staff_ratio'] == pytest.approx(75)
        assert pattern['market_staff_ratio'] == pytest.approx(37.5)
        assert pattern['top_competitor'] == {'name': 'UNICEF', 'staff_ratio': 0}

    def test_experience_requirements(self, make_periods, make_records):
        """Average experience uses the master's requirement first"""
        records = (
            make_records(2, 3, master_min_exp=2)
            + make_records(2, 3, bachelor_min_exp=6)
            + make_records(2, 3, agency="UNICEF", master_min_exp=10)
        )
        requirement = engine_for(make_periods, records).calculate_workforce_patterns()['experience_requirements'][0]
        assert requirement['avg_experience'] == pytest.approx(4)
        assert requirement['market_avg'] == pytest.approx(6)
        assert requirement['diff'] == pytest.approx(-2)


# =============================================================================
# Geography
# =============================================================================

class TestGeographicMetrics:
    """calculate_geographic_metrics()"""

    def test_top_locations_and_field_ratio(self, make_periods, make_records):
        """Locations ranked by count with change vs previous"""
        records = (
            make_records(3, 3, station="Juba", country="South Sudan")
            + make_records(1, 3, station="Geneva", country="Switzerland", continent="Europe")
            + make_records(1, 40, station="Juba", country="South Sudan")
        )
        geography = engine_for(make_periods, records).calculate_geographic_metrics()

        assert geography['top_locations'][0] == {
            'location': 'Juba', 'country': 'South Sudan', 'count': 3, 'change': 2,
        }
        assert geography['field_ratio']['current'] == pytest.approx(75)
        assert geography['field_ratio']['previous'] == pytest.approx(100)
        assert geography['conflict_zone_hiring']['count'] == 3
        assert geography['conflict_zone_hiring']['percentage'] == pytest.approx(75)
        assert geography['region_breakdown'][0]['region'] == 'Africa'

    def test_region_breakdown_uses_macro_regions(self, make_periods, make_records):
        """Freeform source regions are grouped under the fixed macro-regions"""
        records = (
            make_records(3, 3, continent="", geographic_region="Sub-Saharan Africa")
            + make_records(2, 3, geographic_region="East Africa")
        )
        geography = engine_for(make_periods, records).calculate_geographic_metrics()
        assert [r['region'] for r in geography['region_breakdown']] == ['Africa']
        assert geography['region_breakdown'][0]['count'] == 5

    def test_new_locations(self, make_periods, make_records):
        """Stations unseen before the current window are new"""
        records = (
            make_records(1, 200, station="Kampala")
            + make_records(1, 3, station="Kampala")
            + make_records(1, 3, station="Juba", country="South Sudan")
        )
        geography = engine_for(make_periods, records, time_range="3months").calculate_geographic_metrics()
        assert geography['new_locations'] == ['Juba']

    def test_new_locations_skipped_without_history(self, make_periods, make_records):
        """1year has no prior stretch to compare against"""
        records = make_records(1, 3, station="Juba", country="South Sudan")
        geography = engine_for(make_periods, records, time_range="1year").calculate_geographic_metrics()
        assert geography['new_locations'] == []

    def test_location_type_distribution(self, make_periods, make_records):
        """One entry per location type"""
        records = make_records(1, 3, station="Bangkok", country="Thailand", continent="Asia")
        distribution = engine_for(make_periods, records).calculate_geographic_metrics()['location_type_distribution']
        assert [d['type'] for d in distribution] == ['Headquarters', 'Regional Hub', 'Field', 'Home-based']
        assert distribution[1]['current'] == pytest.approx(100)


# =============================================================================
# Categories
# =============================================================================

class TestCategoryMetrics:
    """calculate_category_metrics()"""

    @pytest.fixture
    def category(self, make_periods, make_records):
        records = (
            make_records(6, 3, category="digital-technology")
            + make_records(1, 3, category="humanitarian-emergency")
            + make_records(2, 3, category="health-medical")
            + make_records(3, 40, category="digital-technology")
            + make_records(4, 40, category="humanitarian-emergency")
            + make_records(1, 40, category="health-medical")
        )
        return engine_for(make_periods, records).calculate_category_metrics()

    def test_fastest_growing_requires_absolute_change(self, category):
        """+100% on one extra position does not qualify"""
        growing = category['fastest_growing']
        assert [g['category'] for g in growing] == ['digital-technology']
        assert growing[0]['growth_rate'] == pytest.approx(100)
        assert growing[0]['absolute_change'] == 3

    def test_declining(self, category):
        """Declines carry a positive decline_rate"""
        declining = category['declining']
        assert [d['category_name'] for d in declining] == ['Humanitarian & Emergency']
        assert declining[0]['decline_rate'] == pytest.approx(75)

    def test_top_categories(self, category):
        """Ranked by count with display name and color"""
        top = category['top_categories'][0]
        assert top['category_name'] == 'Digital & Technology'
        assert top['color'] == '#3B82F6'
        assert top['percentage'] == pytest.approx(6 / 9 * 100)
        assert top['market_rank'] == 1

    def test_concentration(self, category):
        """Top-3 share and Herfindahl index"""
        concentration = category['concentration']
        assert concentration['top3_share'] == pytest.approx(100)
        assert concentration['herfindahl'] == pytest.approx(((6 / 9) ** 2 + (1 / 9) ** 2 + (2 / 9) ** 2) * 100)

    @pytest.mark.parametrize("yours,market,expected", [
        (20, 30, "Faster than market"),
        (35, 30, "Slower than market"),
        (31, 30, "In line with market"),
    ])
    def test_assess_application_window(self, yours, market, expected):
        """Window assessment thresholds are +/- 3 days"""
        assert MetricsEngine.assess_application_window(yours, market) == expected


# =============================================================================
# Competitive position
# =============================================================================

class TestCompetitiveMetrics:
    """calculate_competitive_metrics()"""

    def test_rank_improvement(self, make_periods, make_records):
        """#5 -> #3 is a change of +2"""
        records = []
        for agency, previous, current in [("UNICEF", 50, 50), ("UNDP", 40, 40), ("UNHCR", 30, 30),
                                          ("WHO", 20, 20), ("WFP", 10, 35)]:
            records += make_records(previous, 40, agency=agency)
            records += make_records(current, 3, agency=agency)

        competitive = engine_for(make_periods, records).calculate_competitive_metrics()
        assert competitive['rank'] == {'current': 3, 'previous': 5, 'total': 5, 'change': 2}
        assert competitive['market_share']['current'] == pytest.approx(35 / 175 * 100)
        assert competitive['peer_group'] == 'Large Operational Agencies (Tier 1)'

    def test_market_view_is_degenerate(self, make_periods, make_records):
        """Market view: 100% share, rank 0, top agencies table"""
        records = make_records(3, 3, agency="WFP") + make_records(5, 3, agency="UNICEF")
        competitive = engine_for(make_periods, records, agency=None).calculate_competitive_metrics()

        assert competitive['market_share'] == {'current': 100, 'previous': 100, 'change': 0}
        assert competitive['rank'] == {'current': 0, 'previous': 0, 'total': 2, 'change': 0}
        assert competitive['peer_group'] is None
        assert [p['agency'] for p in competitive['peer_group_performance']] == ['UNICEF', 'WFP']

    def test_subject_appended_to_peer_table(self, make_periods, make_records):
        """An agency missing from its default group still appears in the table"""
        records = make_records(2, 3, agency="Made Up Agency")
        peers = engine_for(make_periods, records, agency="Made Up Agency").calculate_competitive_metrics()[
            'peer_group_performance']
        you = [p for p in peers if p['is_you']]
        assert len(you) == 1
        assert you[0]['agency'] == 'Made Up Agency'
        assert you[0]['volume'] == 2

    def test_competitor_patterns_key_difference(self, make_periods, make_records):
        """Staff gap dominates the key difference"""
        records = make_records(4, 3, grade="P-3") + make_records(4, 3, agency="UNICEF", grade="Consultant")
        patterns = engine_for(make_periods, records).calculate_competitive_metrics()['competitor_patterns']
        assert patterns[0]['agency'] == 'UNICEF'
        assert patterns[0]['key_difference'] == '100% more staff-focused'

    def test_new_competitor_moves(self, make_periods, make_records):
        """Competitor with >= 3 postings in a category new to it"""
        records = (
            make_records(2, 3)
            + make_records(3, 3, agency="UNICEF", category="health-medical")
            + make_records(2, 3, agency="UNDP", category="health-medical")
        )
        moves = engine_for(make_periods, records).calculate_competitive_metrics()['new_competitor_moves']
        assert moves == [{
            'agency': 'UNICEF',
            'category': 'health-medical',
            'category_name': 'Health & Medical',
            'count': 3,
            'description': 'New entry with 3 positions',
        }]

    @pytest.mark.parametrize("correlation,expected", [
        (0.9, "Strong competition for similar roles"),
        (0.7, "Moderate overlap in hiring"),
        (0.5, "Some shared focus areas"),
        (0.1, "Minimal overlap"),
    ])
    def test_interpret_correlation(self, correlation, expected):
        """Correlation reading ladder"""
        assert MetricsEngine.interpret_correlation(correlation) == expected


# =============================================================================
# Executive summary
# =============================================================================

class TestExecutiveSummary:
    """generate_executive_summary()"""

    def test_wfp_headline_up(self, make_periods, make_records):
        """120 vs 100 positions reads as up 20%"""
        records = make_records(120, 10) + make_records(100, 100)
        summary = engine_for(make_periods, records, time_range="3months").generate_executive_summary()

        assert summary['headline'] == (
            "Over Mar 30 - Jun 30, 2025, WFP posted 120 positions — up 20% from the prior period."
        )
        assert summary['volume_trend'] == {'current': 120, 'previous': 100, 'change': pytest.approx(20)}
        assert summary['key_points'] == ["Digital & Technology grew 20% vs prior period"]
        assert summary['top_shift'] == {'area': 'Digital & Technology', 'description': '+20% growth'}

    def test_headline_down(self, make_periods, make_records):
        """Declines read as down"""
        records = make_records(80, 10) + make_records(100, 100)
        summary = engine_for(make_periods, records, time_range="3months").generate_executive_summary()
        assert summary['headline'].endswith("posted 80 positions — down 20% from the prior period.")

    def test_small_change_has_no_clause(self, make_periods, make_records):
        """Changes within 5% omit the direction clause"""
        records = make_records(103, 10) + make_records(100, 100)
        summary = engine_for(make_periods, records, time_range="3months").generate_executive_summary()
        assert summary['headline'] == "Over Mar 30 - Jun 30, 2025, WFP posted 103 positions."

    def test_competitor_alert_and_anomaly_count(self, make_periods, make_records):
        """Rank drops raise an alert; anomaly count is passed through"""
        records = (
            make_records(5, 40) + make_records(1, 3)
            + make_records(1, 40, agency="UNICEF") + make_records(5, 3, agency="UNICEF")
        )
        summary = engine_for(make_periods, records).generate_executive_summary(anomaly_count=4)
        assert summary['competitor_alert'] == "Rank dropped from #1 to #2"
        assert summary['anomaly_count'] == 4
        assert summary['period_label'] == "Jun 2 - Jun 30, 2025"
