"""
Test narrative generator

Unit tests for intelligence/narrative_generator.py. Most groups feed
hand-built metric dicts so each sentence gate can be checked in isolation.
"""

import pytest

from intelligence.metrics_engine import MetricsEngine
from intelligence.narrative_generator import (
    CALLOUT_TYPES,
    NarrativeGenerator,
    describe_change,
    format_change,
    format_number,
    format_percent,
    get_change_word,
)

LABEL = "Mar 30 - Jun 30, 2025"


def callout_texts(narrative, callout_type=None):
    return [c['text'] for c in narrative['callouts']
            if callout_type is None or c['type'] == callout_type]


# =============================================================================
# Phrase helpers
# =============================================================================

class TestPhraseHelpers:
    """Formatting and wording ladders"""

    def test_format_number(self):
        """Thousands separators from 1,000"""
        assert format_number(999) == "999"
        assert format_number(12345) == "12,345"

    def test_format_percent(self):
        """Fixed decimals with a percent sign"""
        assert format_percent(12.345) == "12%"
        assert format_percent(12.345, 1) == "12.3%"

    @pytest.mark.parametrize("value,expected", [
        (12.4, "+12%"),
        (-7, "-7%"),
        (0, "+0"),
    ])
    def test_format_change(self, value, expected):
        """Signed change keeps the minus sign"""
        assert format_change(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (2, "steady"),
        (-2.9, "steady"),
        (5, "increased"),
        (-5, "decreased"),
        (15, "grew significantly"),
        (-15, "declined notably"),
        (40, "surged"),
        (-40, "dropped sharply"),
    ])
    def test_get_change_word(self, value, expected):
        """Magnitude ladder at 3 / 10 / 25"""
        assert get_change_word(value) == expected

    def test_describe_change(self):
        """Small changes read as unchanged"""
        assert describe_change(4) == "unchanged from"
        assert describe_change(6) == "up from"
        assert describe_change(-6) == "down from"


# =============================================================================
# Volume
# =============================================================================

class TestVolumeNarrative:
    """generate_volume_narrative()"""

    @pytest.fixture
    def metrics(self):
        return {
            'total_positions': 1250,
            'previous_period_positions': 1000,
            'volume_change': 25.0,
            'weekly_velocity': 96.2,
            'previous_weekly_velocity': 76.9,
            'vs_12mo_avg': 3.0,
            'acceleration_pattern': 'accelerating',
            'peak_week': {'week': 'Jun 9', 'count': 140},
        }

    def test_headline_and_body(self, metrics):
        """Headline with period, gated body sentences"""
        narrative = NarrativeGenerator("WFP", LABEL).generate_volume_narrative(metrics)

        assert narrative['headline'] == f"WFP posted 1,250 positions over {LABEL}"
        assert narrative['body'] == [
            "This represents a 25% increase from the prior period (1,000 positions).",
            "Hiring velocity averaged 96.2 positions per week, up from 76.9/week previously.",
            "Hiring velocity accelerated in the later weeks of the period.",
        ]
        assert narrative['highlights'] == ["Peak: Week of Jun 9 (140 positions)"]

    def test_callouts(self, metrics):
        """Surge and momentum are both positive"""
        narrative = NarrativeGenerator("WFP", LABEL).generate_volume_narrative(metrics)
        assert narrative['callouts'] == [
            {'type': 'positive', 'text': 'Significant hiring surge'},
            {'type': 'positive', 'text': 'Momentum building'},
        ]

    def test_market_subject_and_slowdown(self, metrics):
        """Market view says 'The market'; a 30% drop is a negative callout"""
        metrics.update(volume_change=-30.0, vs_12mo_avg=-12.0, acceleration_pattern='steady')
        narrative = NarrativeGenerator().generate_volume_narrative(metrics)

        assert narrative['headline'] == "The market posted 1,250 positions"
        assert "This is 12% below the trailing 12-month weekly average." in narrative['body']
        assert callout_texts(narrative, 'negative') == ['Notable hiring slowdown']

    def test_small_change_omits_sentence(self, metrics):
        """Changes within 2% skip the comparison sentence"""
        metrics.update(volume_change=1.5)
        narrative = NarrativeGenerator("WFP").generate_volume_narrative(metrics)
        assert narrative['body'][0].startswith("Hiring velocity averaged")


# =============================================================================
# Workforce
# =============================================================================

class TestWorkforceNarrative:
    """generate_workforce_narrative()"""

    @pytest.fixture
    def metrics(self):
        return {
            'staff_ratio': {'current': 40, 'previous': 50, 'market': 60, 'change': -10},
            'grade_distribution': [
                {'tier': 'Executive', 'current': 10, 'previous': 5, 'change': 5},
                {'tier': 'Consultant', 'current': 60, 'previous': 50, 'change': 10},
            ],
            'category_staff_patterns': [{
                'category': 'digital-technology',
                'category_name': 'Digital & Technology',
                'your_staff_ratio': 30,
                'market_staff_ratio': 55,
                'top_competitor': {'name': 'UNICEF', 'staff_ratio': 70},
                'diff': -25,
            }],
            'grade_anomalies': [{'tier': 'Executive', 'count': 3, 'historical_avg': 4, 'deviation': 0.8}],
        }

    def test_body(self, metrics):
        """Each gated sentence appears in order"""
        narrative = NarrativeGenerator("WFP", LABEL).generate_workforce_narrative(metrics)

        assert narrative['headline'] == "Non-staff positions made up 60% of postings"
        assert narrative['body'] == [
            "This increased from 50% in the prior period.",
            "The system average is 40%. WFP is more consultant-reliant than the market.",
            "Consultant hiring increased by 10.0 percentage points.",
            "In Digital & Technology, WFP hires 30% staff while the market hires 55% staff.",
            "Executive positions are 80% above the historical average — an unusual spike.",
        ]
        assert narrative['highlights'] == ["In Digital & Technology: You 30% staff vs UNICEF 70% staff"]

    def test_callouts(self, metrics):
        """Consultant reliance is neutral, senior spike is a warning"""
        narrative = NarrativeGenerator("WFP").generate_workforce_narrative(metrics)
        assert narrative['callouts'] == [
            {'type': 'neutral', 'text': 'High consultant reliance'},
            {'type': 'warning', 'text': 'Unusual senior hiring'},
        ]

    def test_market_view_skips_comparisons(self, metrics):
        """No market or category comparison without a subject"""
        narrative = NarrativeGenerator().generate_workforce_narrative(metrics)
        assert not [s for s in narrative['body'] if 'system average' in s or 'hires' in s]


# =============================================================================
# Geography
# =============================================================================

class TestGeographyNarrative:
    """generate_geography_narrative()"""

    @pytest.fixture
    def metrics(self):
        return {
            'location_type_distribution': [{'type': 'Field', 'current': 75}],
            'field_ratio': {'current': 75, 'previous': 60, 'change': 15},
            'top_locations': [
                {'location': 'Juba', 'country': 'South Sudan', 'count': 20, 'change': 8},
                {'location': 'Kampala', 'country': 'Uganda', 'count': 12, 'change': -4},
                {'location': 'Geneva', 'country': 'Switzerland', 'count': 10, 'change': 1},
            ],
            'new_locations': ['Goma', 'Bunia', 'Kalemie', 'Bukavu'],
            'conflict_zone_hiring': {'count': 20, 'percentage': 40, 'staff_ratio': 55, 'market_staff_ratio': 65},
            'region_breakdown': [{'region': 'Africa', 'count': 32, 'percentage': 76, 'change': 4}],
        }

    def test_body(self, metrics):
        """Field shift, movers, new stations, conflict zones, leading region"""
        narrative = NarrativeGenerator("WFP").generate_geography_narrative(metrics)

        assert narrative['headline'] == "Field positions represented 75% of postings"
        assert narrative['body'] == [
            "This is up from 60% in the prior period — expanding field presence.",
            "Largest increases: Juba (+8).",
            "Largest decreases: Kampala (-4).",
            "New duty stations not seen in the prior 12 months: Goma, Bunia, Kalemie.",
            "Conflict zone hiring: 20 positions (40% of total). "
            "Staff ratio in conflict zones: 55% vs market 65%.",
            "Africa leads with 76% of positions.",
        ]
        assert narrative['highlights'] == [
            "Juba: 20 positions", "Kampala: 12 positions", "Geneva: 10 positions",
        ]

    def test_callouts(self, metrics):
        """Field presence, expansion and heavy conflict-zone hiring"""
        narrative = NarrativeGenerator("WFP").generate_geography_narrative(metrics)
        assert narrative['callouts'] == [
            {'type': 'positive', 'text': 'Strong field presence'},
            {'type': 'positive', 'text': 'Geographic expansion'},
            {'type': 'warning', 'text': 'Heavy conflict-zone hiring'},
        ]

    def test_hq_concentrated(self, metrics):
        """Low field ratio is a neutral callout"""
        metrics['field_ratio'] = {'current': 30, 'previous': 30, 'change': 0}
        metrics['new_locations'] = []
        metrics['conflict_zone_hiring']['percentage'] = 10
        narrative = NarrativeGenerator("WFP").generate_geography_narrative(metrics)
        assert narrative['callouts'] == [{'type': 'neutral', 'text': 'HQ-concentrated footprint'}]


# =============================================================================
# Categories
# =============================================================================

class TestCategoryNarrative:
    """generate_category_narrative()"""

    @pytest.fixture
    def metrics(self):
        def top(category_name, percentage, rank, yours, market):
            return {
                'category_name': category_name, 'percentage': percentage, 'market_rank': rank,
                'your_staff_ratio': yours, 'competitor_staff_ratio': market,
            }

        return {
            'top_categories': [
                top('Digital & Technology', 45, 2, 80, 60),
                top('Health & Medical', 20, 4, 50, 50),
                top('Peace & Security', 10, None, 40, 45),
            ],
            'fastest_growing': [{'category_name': 'Digital & Technology', 'growth_rate': 60.0}],
            'declining': [{'category_name': 'Peace & Security', 'growth_rate': -30.0, 'decline_rate': 30.0}],
            'concentration': {'herfindahl': 27, 'top3_share': 75, 'previous_top3_share': 70, 'change': 5},
        }

    def test_body(self, metrics):
        """Top-3, movers, concentration and market position"""
        narrative = NarrativeGenerator("WFP").generate_category_narrative(metrics)

        assert narrative['headline'] == "Digital & Technology led at 45% of postings"
        assert narrative['body'] == [
            "Top 3: Digital & Technology (45%), Health & Medical (20%), Peace & Security (10%).",
            "Digital & Technology grew fastest at +60% vs prior period.",
            "Peace & Security declined by 30%.",
            "Top 3 concentration: 75% (more concentrated than prior period).",
            "Strongest market position: #2 in Digital & Technology.",
            "In Digital & Technology, hiring approach differs: 80% staff vs market 60%.",
        ]
        assert narrative['highlights'] == ["Digital & Technology: +60%", "Peace & Security: -30%"]

    def test_callouts(self, metrics):
        """Concentration and emerging focus"""
        narrative = NarrativeGenerator("WFP").generate_category_narrative(metrics)
        assert narrative['callouts'] == [
            {'type': 'neutral', 'text': 'High category concentration'},
            {'type': 'positive', 'text': 'Emerging focus area'},
        ]

    def test_empty_categories(self):
        """No categories reads as balanced with no body"""
        narrative = NarrativeGenerator().generate_category_narrative({
            'top_categories': [], 'fastest_growing': [], 'declining': [],
            'concentration': {'herfindahl': 0, 'top3_share': 0, 'previous_top3_share': 0, 'change': 0},
        })
        assert narrative['headline'] == "Balanced category distribution"
        assert narrative['body'] == []
        assert narrative['callouts'] == []


# =============================================================================
# Competitive position
# =============================================================================

class TestCompetitiveNarrative:
    """generate_competitive_narrative()"""

    def test_rank_improvement(self, make_periods, make_records):
        """#5 -> #3 is a positive 'Rank improved by 2' callout"""
        records = []
        for agency, previous, current in [("UNICEF", 50, 50), ("UNDP", 40, 40), ("UNHCR", 30, 30),
                                          ("WHO", 20, 20), ("WFP", 10, 35)]:
            records += make_records(previous, 40, agency=agency)
            records += make_records(current, 3, agency=agency)
        periods = make_periods(records, "4weeks", "WFP")
        competitive = MetricsEngine(periods).calculate_competitive_metrics()

        narrative = NarrativeGenerator("WFP").generate_competitive_narrative(competitive)

        assert narrative['headline'] == "Ranked #3 of 5 agencies (↑ 2 from prior period)"
        assert {'type': 'positive', 'text': 'Rank improved by 2'} in narrative['callouts']
        assert {'type': 'positive', 'text': 'Gaining market share'} in narrative['callouts']
        assert narrative['highlights'] == ["Market share: 20.0%", "System rank: #3 of 5"]
        assert narrative['body'][0] == "Market share: 20.0% (+13.3% from 6.7%)."

    def test_body_sentences(self):
        """Peer, correlation, category position and new entrants"""
        metrics = {
            'market_share': {'current': 12.0, 'previous': 12.1, 'change': -0.1},
            'rank': {'current': 2, 'previous': 2, 'total': 9, 'change': 0},
            'peer_group_performance': [
                {'agency': 'UNICEF', 'volume': 40, 'senior_ratio': 10, 'field_ratio': 60, 'is_you': False},
                {'agency': 'WFP', 'volume': 30, 'senior_ratio': 20, 'field_ratio': 80, 'is_you': True},
            ],
            'competitor_patterns': [
                {'agency': 'UNHCR', 'correlation': 0.82, 'key_difference': '20% more field-deployed'},
                {'agency': 'UNDP', 'correlation': 0.3, 'key_difference': 'Similar hiring profile'},
            ],
            'category_position': [
                {'category_name': 'Humanitarian & Emergency', 'your_rank': 1, 'your_share': 40,
                 'leader': 'WFP', 'leader_share': 40},
                {'category_name': 'Health & Medical', 'your_rank': 7, 'your_share': 3,
                 'leader': 'WHO', 'leader_share': 35},
            ],
            'new_competitor_moves': [{'agency': 'IOM', 'category_name': 'Humanitarian & Emergency', 'count': 4}],
        }
        narrative = NarrativeGenerator("WFP").generate_competitive_narrative(metrics)

        assert narrative['headline'] == "Ranked #2 of 9 agencies"
        assert narrative['body'] == [
            "Market share: 12.0%.",
            "Within peer group: #2 by volume, above average in senior hiring.",
            "UNHCR's hiring pattern correlates 0.82 with yours — likely competing for similar talent. "
            "Key difference: 20% more field-deployed.",
            "Top 3 position in: Humanitarian & Emergency.",
            "Gap to leader in Health & Medical: WHO holds 35% vs your 3%.",
            "New competitor activity: IOM entered Humanitarian & Emergency.",
        ]
        assert narrative['callouts'] == []

    def test_market_view(self, make_periods, make_records):
        """Market view leads with the top agency"""
        records = (
            make_records(6, 3, agency="UNICEF") + make_records(4, 3, agency="WFP")
            + make_records(2, 3, agency="UNDP")
        )
        competitive = MetricsEngine(make_periods(records, "4weeks", None)).calculate_competitive_metrics()
        narrative = NarrativeGenerator(period_label=LABEL).generate_competitive_narrative(competitive)

        assert narrative['headline'] == "UNICEF led hiring with 6 positions"
        assert narrative['body'][:2] == [
            f"3 agencies posted positions over {LABEL}.",
            "Top agencies by volume: UNICEF (6), WFP (4), UNDP (2).",
        ]
        assert narrative['highlights'][-1] == "Agencies active: 3"

    def test_market_view_without_activity(self):
        """No agencies at all"""
        narrative = NarrativeGenerator().generate_competitive_narrative({
            'peer_group_performance': [], 'rank': {'current': 0, 'previous': 0, 'total': 0, 'change': 0},
        })
        assert narrative['headline'] == "No agency activity in this period"


# =============================================================================
# Executive summary and anomalies
# =============================================================================

class TestExecutiveNarrative:
    """generate_executive_narrative() and format_anomaly_narrative()"""

    @pytest.fixture
    def summary(self):
        return {
            'headline': f"Over {LABEL}, WFP posted 80 positions — down 20% from the prior period.",
            'key_points': ["Field positions increased to 75% of postings"],
            'volume_trend': {'current': 80, 'previous': 100, 'change': -20.0},
            'top_shift': {'area': 'Workforce', 'description': 'Stable hiring patterns'},
            'competitor_alert': "Rank dropped from #2 to #4",
            'anomaly_count': 3,
            'period_label': LABEL,
        }

    def test_body_and_highlights(self, summary):
        """Key points then shift, competitive alert and anomaly count"""
        narrative = NarrativeGenerator("WFP", LABEL).generate_executive_narrative(summary)

        assert narrative['headline'] == summary['headline']
        assert narrative['body'] == [
            "Field positions increased to 75% of postings",
            "Most significant shift: Workforce — Stable hiring patterns.",
            "Competitive position: Rank dropped from #2 to #4.",
            "3 notable anomalies detected — see Anomalies section for details.",
        ]
        assert narrative['highlights'][0] == "80 positions (-20%)"

    def test_callouts(self, summary):
        """A 20% drop is negative; anomalies add an info callout"""
        narrative = NarrativeGenerator("WFP").generate_executive_narrative(summary)
        assert narrative['callouts'] == [
            {'type': 'negative', 'text': 'Hiring slowdown'},
            {'type': 'info', 'text': '3 anomalies flagged'},
        ]
        assert all(c['type'] in CALLOUT_TYPES for c in narrative['callouts'])

    def test_format_anomaly_narrative(self):
        """Anomalies render on one line"""
        signal = {
            'id': 'gap-category-Digital & Technology', 'type': 'gap', 'severity': 'low',
            'title': 'Not active in Digital & Technology',
            'description': '6 agencies posted 40 positions in Digital & Technology — you have none',
            'metric': '6 competitors active', 'context': 'Market opportunity or strategic gap',
        }
        assert NarrativeGenerator("WFP").format_anomaly_narrative(signal) == (
            "Not active in Digital & Technology: 6 agencies posted 40 positions in Digital & Technology"
            " — you have none (6 competitors active) — Market opportunity or strategic gap"
        )
