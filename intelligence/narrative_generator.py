"""
Narrative Generator
Turns metric groups into readable text for the intelligence brief.

Each generator returns a narrative dict:

    {
        'headline': str,
        'body': [str, ...],          # sentences, each gated by its own threshold
        'highlights': [str, ...],    # short chips
        'callouts': [{'type': ..., 'text': ...}, ...]
    }

Callout types: positive, negative, neutral, warning, info.

Phrasing is rule-based: direction and magnitude words come from fixed
threshold ladders, so the same metrics always produce the same text.

Usage:
    from intelligence.narrative_generator import NarrativeGenerator

    narrator = NarrativeGenerator(agency="WFP", period_label="Apr 1 - Jun 30, 2025")
    volume_text = narrator.generate_volume_narrative(metrics['volume'])
    print(volume_text['headline'])
"""

from typing import Dict, List, Optional

from intelligence.anomaly_detector import format_anomaly

POSITIVE = 'positive'
NEGATIVE = 'negative'
NEUTRAL = 'neutral'
WARNING = 'warning'
INFO = 'info'

CALLOUT_TYPES = (POSITIVE, NEGATIVE, NEUTRAL, WARNING, INFO)


# =============================================================================
# Phrase helpers
# =============================================================================

def format_number(n) -> str:
    """Thousands separators from 1,000 up."""
    if n >= 1000:
        return f"{n:,}"
    return str(n)


def format_percent(n: float, decimals: int = 0) -> str:
    return f"{n:.{decimals}f}%"


def format_change(n: float, decimals: int = 0) -> str:
    """
    Signed percentage change.

    Examples:
        >>> format_change(12.4)
        '+12%'
        >>> format_change(-7)
        '-7%'
        >>> format_change(0)
        '+0'
    """
    sign = '+' if n >= 0 else '-'
    suffix = '%' if n != 0 else ''
    return f"{sign}{abs(n):.{decimals}f}{suffix}"


def describe_change(change: float, threshold: float = 5) -> str:
    """'up from' / 'down from', or 'unchanged from' below the threshold."""
    if abs(change) < threshold:
        return 'unchanged from'
    return 'up from' if change > 0 else 'down from'


def get_change_word(change: float) -> str:
    """
    Verb phrase for a percentage change.

    <3 steady, <10 increased/decreased, <25 grew significantly/declined
    notably, otherwise surged/dropped sharply.
    """
    magnitude = abs(change)
    if magnitude < 3:
        return 'steady'
    if magnitude < 10:
        return 'increased' if change > 0 else 'decreased'
    if magnitude < 25:
        return 'grew significantly' if change > 0 else 'declined notably'
    return 'surged' if change > 0 else 'dropped sharply'


def _narrative(headline: str, body: List[str], highlights: List[str],
               callouts: List[Dict[str, str]]) -> dict:
    return {
        'headline': headline,
        'body': body,
        'highlights': highlights,
        'callouts': callouts,
    }


def _callout(callout_type: str, text: str) -> Dict[str, str]:
    return {'type': callout_type, 'text': text}


class NarrativeGenerator:
    """Generate narratives for one subject (agency) or for the whole market."""

    def __init__(self, agency: Optional[str] = None, period_label: Optional[str] = None):
        self.agency = agency
        self.period_label = period_label

    @property
    def is_agency_view(self) -> bool:
        return self.agency is not None

    @property
    def subject(self) -> str:
        return self.agency if self.is_agency_view else 'The market'

    # =========================================================================
    # Volume
    # =========================================================================

    def generate_volume_narrative(self, metrics: dict) -> dict:
        volume_change = metrics['volume_change']
        weekly = metrics['weekly_velocity']
        previous_weekly = metrics['previous_weekly_velocity']
        vs_12mo = metrics['vs_12mo_avg']
        pattern = metrics['acceleration_pattern']

        headline = f"{self.subject} posted {format_number(metrics['total_positions'])} positions"
        if self.period_label:
            headline += f" over {self.period_label}"

        body = []
        if abs(volume_change) > 2:
            body.append(
                f"This represents a {abs(volume_change):.0f}% "
                f"{'increase' if volume_change > 0 else 'decrease'} from the prior period "
                f"({format_number(metrics['previous_period_positions'])} positions)."
            )

        body.append(
            f"Hiring velocity averaged {weekly:.1f} positions per week, "
            f"{describe_change(weekly - previous_weekly)} {previous_weekly:.1f}/week previously."
        )

        if abs(vs_12mo) > 5:
            body.append(
                f"This is {abs(vs_12mo):.0f}% {'above' if vs_12mo > 0 else 'below'} "
                f"the trailing 12-month weekly average."
            )

        if pattern != 'steady':
            phase = 'accelerated in the later weeks' if pattern == 'accelerating' else 'slowed in the later weeks'
            body.append(f"Hiring velocity {phase} of the period.")

        highlights = []
        peak = metrics.get('peak_week')
        if peak:
            highlights.append(f"Peak: Week of {peak['week']} ({peak['count']} positions)")

        callouts = []
        if volume_change > 20:
            callouts.append(_callout(POSITIVE, 'Significant hiring surge'))
        elif volume_change < -20:
            callouts.append(_callout(NEGATIVE, 'Notable hiring slowdown'))
        if pattern == 'accelerating':
            callouts.append(_callout(POSITIVE, 'Momentum building'))

        return _narrative(headline, body, highlights, callouts)

    # =========================================================================
    # Workforce
    # =========================================================================

    def generate_workforce_narrative(self, metrics: dict) -> dict:
        staff = metrics['staff_ratio']
        distribution = metrics['grade_distribution']
        patterns = metrics['category_staff_patterns']
        anomalies = metrics['grade_anomalies']

        headline = f"Non-staff positions made up {format_percent(100 - staff['current'])} of postings"

        body = []
        if abs(staff['change']) > 2:
            body.append(
                f"This {'decreased from' if staff['change'] > 0 else 'increased from'} "
                f"{format_percent(100 - staff['previous'])} in the prior period."
            )

        if self.is_agency_view and abs(staff['current'] - staff['market']) > 5:
            focus = 'more staff-focused' if staff['current'] > staff['market'] else 'more consultant-reliant'
            body.append(
                f"The system average is {format_percent(100 - staff['market'])}. "
                f"{self.subject} is {focus} than the market."
            )

        shifts = [g for g in distribution if abs(g['change']) > 3]
        if shifts:
            top = max(shifts, key=lambda g: abs(g['change']))
            body.append(
                f"{top['tier']} hiring {'increased' if top['change'] > 0 else 'decreased'} "
                f"by {abs(top['change']):.1f} percentage points."
            )

        if self.is_agency_view and patterns:
            different = max(patterns, key=lambda p: abs(p['diff']))
            if abs(different['diff']) > 10:
                body.append(
                    f"In {different['category_name']}, {self.subject} hires "
                    f"{format_percent(different['your_staff_ratio'])} staff while the market hires "
                    f"{format_percent(different['market_staff_ratio'])} staff."
                )

        if anomalies:
            top = max(anomalies, key=lambda a: abs(a['deviation']))
            if top['deviation'] > 0.5:
                body.append(
                    f"{top['tier']} positions are {top['deviation'] * 100:.0f}% above the "
                    f"historical average — an unusual spike."
                )

        highlights = []
        if patterns and patterns[0]['top_competitor']:
            top = patterns[0]
            competitor = top['top_competitor']
            highlights.append(
                f"In {top['category_name']}: You {format_percent(top['your_staff_ratio'])} staff "
                f"vs {competitor['name']} {format_percent(competitor['staff_ratio'])} staff"
            )

        callouts = []
        has_postings = any(g['current'] > 0 for g in distribution)
        if has_postings and staff['current'] < 50:
            callouts.append(_callout(NEUTRAL, 'High consultant reliance'))
        if any(a['tier'] == 'Executive' and a['deviation'] > 0.5 for a in anomalies):
            callouts.append(_callout(WARNING, 'Unusual senior hiring'))

        return _narrative(headline, body, highlights, callouts)

    # =========================================================================
    # Geography
    # =========================================================================

    def generate_geography_narrative(self, metrics: dict) -> dict:
        field = metrics['field_ratio']
        top_locations = metrics['top_locations']
        new_locations = metrics['new_locations']
        conflict = metrics['conflict_zone_hiring']
        regions = metrics['region_breakdown']

        headline = f"Field positions represented {format_percent(field['current'])} of postings"

        body = []
        if abs(field['change']) > 3:
            body.append(
                f"This is {'up' if field['change'] > 0 else 'down'} from "
                f"{format_percent(field['previous'])} in the prior period — "
                f"{'expanding' if field['change'] > 0 else 'contracting'} field presence."
            )

        growing = sorted((l for l in top_locations if l['change'] > 2), key=lambda l: -l['change'])
        shrinking = sorted((l for l in top_locations if l['change'] < -2), key=lambda l: l['change'])
        if growing:
            body.append("Largest increases: " + ", ".join(
                f"{l['location']} (+{l['change']})" for l in growing[:2]) + ".")
        if shrinking:
            body.append("Largest decreases: " + ", ".join(
                f"{l['location']} ({l['change']})" for l in shrinking[:2]) + ".")

        if new_locations:
            body.append(
                f"New duty stations not seen in the prior 12 months: {', '.join(new_locations[:3])}."
            )

        if conflict['count'] > 0:
            body.append(
                f"Conflict zone hiring: {conflict['count']} positions "
                f"({format_percent(conflict['percentage'])} of total). Staff ratio in conflict zones: "
                f"{format_percent(conflict['staff_ratio'])} vs market {format_percent(conflict['market_staff_ratio'])}."
            )

        if regions and regions[0]['percentage'] > 30:
            body.append(f"{regions[0]['region']} leads with {format_percent(regions[0]['percentage'])} of positions.")

        highlights = [f"{l['location']}: {l['count']} positions" for l in top_locations[:3]]

        callouts = []
        has_postings = any(t['current'] > 0 for t in metrics['location_type_distribution'])
        if field['current'] > 70:
            callouts.append(_callout(POSITIVE, 'Strong field presence'))
        elif has_postings and field['current'] < 40:
            callouts.append(_callout(NEUTRAL, 'HQ-concentrated footprint'))
        if len(new_locations) >= 3:
            callouts.append(_callout(POSITIVE, 'Geographic expansion'))
        if conflict['percentage'] > 25:
            callouts.append(_callout(WARNING, 'Heavy conflict-zone hiring'))

        return _narrative(headline, body, highlights, callouts)

    # =========================================================================
    # Categories
    # =========================================================================

    def generate_category_narrative(self, metrics: dict) -> dict:
        top_categories = metrics['top_categories']
        growing = metrics['fastest_growing']
        declining = metrics['declining']
        concentration = metrics['concentration']

        if top_categories:
            top = top_categories[0]
            headline = f"{top['category_name']} led at {format_percent(top['percentage'])} of postings"
        else:
            headline = 'Balanced category distribution'

        body = []
        if len(top_categories) >= 3:
            body.append("Top 3: " + ", ".join(
                f"{c['category_name']} ({format_percent(c['percentage'])})" for c in top_categories[:3]) + ".")

        if growing:
            body.append(f"{growing[0]['category_name']} grew fastest at "
                        f"{format_change(growing[0]['growth_rate'])} vs prior period.")

        if declining:
            body.append(f"{declining[0]['category_name']} declined by {declining[0]['decline_rate']:.0f}%.")

        if top_categories:
            body.append(
                f"Top 3 concentration: {format_percent(concentration['top3_share'])} "
                f"({'more' if concentration['change'] > 0 else 'less'} concentrated than prior period)."
            )

        if self.is_agency_view:
            ranked = [c for c in top_categories if c['market_rank']]
            if ranked:
                best = min(ranked, key=lambda c: c['market_rank'])
                if best['market_rank'] <= 3:
                    body.append(f"Strongest market position: #{best['market_rank']} in {best['category_name']}.")

            if top_categories:
                different = max(top_categories,
                                key=lambda c: abs(c['your_staff_ratio'] - c['competitor_staff_ratio']))
                if abs(different['your_staff_ratio'] - different['competitor_staff_ratio']) > 15:
                    body.append(
                        f"In {different['category_name']}, hiring approach differs: "
                        f"{format_percent(different['your_staff_ratio'])} staff vs market "
                        f"{format_percent(different['competitor_staff_ratio'])}."
                    )

        highlights = [f"{c['category_name']}: {format_change(c['growth_rate'])}" for c in growing[:2]]
        highlights.extend(f"{c['category_name']}: -{c['decline_rate']:.0f}%" for c in declining[:2])

        callouts = []
        if concentration['top3_share'] > 60:
            callouts.append(_callout(NEUTRAL, 'High category concentration'))
        if any(c['growth_rate'] > 50 for c in growing):
            callouts.append(_callout(POSITIVE, 'Emerging focus area'))

        return _narrative(headline, body, highlights, callouts)

    # =========================================================================
    # Competitive position
    # =========================================================================

    def generate_competitive_narrative(self, metrics: dict) -> dict:
        if not self.is_agency_view:
            return self._market_competitive_narrative(metrics)

        share = metrics['market_share']
        rank = metrics['rank']
        peers = metrics['peer_group_performance']
        patterns = metrics['competitor_patterns']
        positions = metrics['category_position']
        moves = metrics['new_competitor_moves']

        headline = f"Ranked #{rank['current']} of {rank['total']} agencies"
        if rank['change'] != 0:
            arrow = '↑' if rank['change'] > 0 else '↓'
            headline += f" ({arrow} {abs(rank['change'])} from prior period)"

        body = []
        share_text = f"Market share: {format_percent(share['current'], 1)}"
        if abs(share['change']) > 0.2:
            share_text += f" ({format_change(share['change'], 1)} from {format_percent(share['previous'], 1)})"
        body.append(share_text + ".")

        you = next((p for p in peers if p['is_you']), None)
        if you:
            peer_rank = peers.index(you) + 1
            avg_senior = sum(p['senior_ratio'] for p in peers) / len(peers)
            body.append(
                f"Within peer group: #{peer_rank} by volume, "
                f"{'above' if you['senior_ratio'] > avg_senior else 'below'} average in senior hiring."
            )

        if patterns:
            closest = max(patterns, key=lambda p: abs(p['correlation']))
            if abs(closest['correlation']) > 0.5:
                body.append(
                    f"{closest['agency']}'s hiring pattern correlates {closest['correlation']:.2f} with yours — "
                    f"likely competing for similar talent. Key difference: {closest['key_difference']}."
                )

        leading = [c for c in positions if c['your_rank'] <= 3]
        if leading:
            body.append(f"Top 3 position in: {', '.join(c['category_name'] for c in leading)}.")

        behind = [c for c in positions if c['your_rank'] > 5 and c['leader_share'] > 15]
        if behind:
            gap = behind[0]
            body.append(
                f"Gap to leader in {gap['category_name']}: {gap['leader']} holds "
                f"{format_percent(gap['leader_share'])} vs your {format_percent(gap['your_share'])}."
            )

        if moves:
            body.append("New competitor activity: " + "; ".join(
                f"{m['agency']} entered {m['category_name']}" for m in moves[:2]) + ".")

        highlights = [
            f"Market share: {format_percent(share['current'], 1)}",
            f"System rank: #{rank['current']} of {rank['total']}",
        ]

        callouts = []
        if rank['change'] > 0:
            callouts.append(_callout(POSITIVE, f"Rank improved by {rank['change']}"))
        elif rank['change'] < 0:
            callouts.append(_callout(NEGATIVE, f"Rank dropped by {abs(rank['change'])}"))
        if share['change'] > 1:
            callouts.append(_callout(POSITIVE, 'Gaining market share'))
        elif share['change'] < -1:
            callouts.append(_callout(NEGATIVE, 'Losing market share'))

        return _narrative(headline, body, highlights, callouts)

    def _market_competitive_narrative(self, metrics: dict) -> dict:
        """Market view: who leads, and how concentrated hiring is among agencies."""
        leaders = metrics['peer_group_performance']
        total = metrics['rank']['total']

        if not leaders:
            return _narrative('No agency activity in this period', [], [], [])

        top = leaders[0]
        headline = f"{top['agency']} led hiring with {format_number(top['volume'])} positions"

        body = [f"{total} agencies posted positions"
                + (f" over {self.period_label}." if self.period_label else ".")]
        if len(leaders) >= 3:
            body.append("Top agencies by volume: " + ", ".join(
                f"{p['agency']} ({p['volume']})" for p in leaders[:3]) + ".")

        field_leader = max(leaders, key=lambda p: p['field_ratio'])
        if field_leader['field_ratio'] > 50:
            body.append(
                f"{field_leader['agency']} is the most field-deployed of the leading agencies "
                f"at {format_percent(field_leader['field_ratio'])}."
            )

        highlights = [f"{p['agency']}: {p['volume']} positions" for p in leaders[:3]]
        highlights.append(f"Agencies active: {total}")

        return _narrative(headline, body, highlights, [])

    # =========================================================================
    # Executive summary
    # =========================================================================

    def generate_executive_narrative(self, summary: dict) -> dict:
        trend = summary['volume_trend']
        top_shift = summary['top_shift']
        anomaly_count = summary['anomaly_count']

        body = list(summary['key_points'])
        if top_shift and top_shift.get('description'):
            body.append(f"Most significant shift: {top_shift['area']} — {top_shift['description']}.")
        if summary.get('competitor_alert'):
            body.append(f"Competitive position: {summary['competitor_alert']}.")
        if anomaly_count > 0:
            body.append(f"{anomaly_count} notable anomalies detected — see Anomalies section for details.")

        highlights = [
            f"{format_number(trend['current'])} positions ({format_change(trend['change'])})",
            f"Volume {get_change_word(trend['change'])} vs prior period",
        ]

        callouts = []
        if trend['change'] > 15:
            callouts.append(_callout(POSITIVE, 'Hiring surge'))
        elif trend['change'] < -15:
            callouts.append(_callout(NEGATIVE, 'Hiring slowdown'))
        if anomaly_count > 0:
            callouts.append(_callout(INFO, f"{anomaly_count} anomalies flagged"))

        return _narrative(summary['headline'], body, highlights, callouts)

    # =========================================================================
    # Anomalies
    # =========================================================================

    def format_anomaly_narrative(self, signal: dict) -> str:
        return format_anomaly(signal)

    def generate_all(self, metrics: dict, summary: dict) -> dict:
        """Narratives for every metric group plus the executive summary."""
        return {
            'executive': self.generate_executive_narrative(summary),
            'volume': self.generate_volume_narrative(metrics['volume']),
            'workforce': self.generate_workforce_narrative(metrics['workforce']),
            'geography': self.generate_geography_narrative(metrics['geography']),
            'category': self.generate_category_narrative(metrics['category']),
            'competitive': self.generate_competitive_narrative(metrics['competitive']),
        }
