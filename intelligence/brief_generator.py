"""
Brief Generator
Runs the full intelligence pipeline for one subject and time range:

    records -> periods -> metrics -> anomalies -> executive summary -> narratives

The result is one JSON-serializable dict. For a fixed "now" the same records
always produce the same brief.

Usage:
    from datetime import datetime
    from intelligence.brief_generator import generate_brief

    brief = generate_brief(rows, "3months", now=datetime(2025, 6, 30), agency="WFP")
    print(brief['executive_summary']['headline'])
    for signal in brief['anomalies']:
        print(signal['title'])

CLI:
    intel-brief --input jobs.json --range 3months --agency WFP --now 2025-06-30
    intel-brief --input jobs.json --output json --save brief.json
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Union

from dotenv import load_dotenv

from intelligence.anomaly_detector import AnomalyDetector, format_anomaly
from intelligence.job_record import JobRecord, load_records, to_naive_utc
from intelligence.metrics_engine import MetricsEngine
from intelligence.narrative_generator import NarrativeGenerator
from intelligence.period_resolver import TimeRange, build_periods

logger = logging.getLogger(__name__)

DEFAULT_TIME_RANGE = "3months"
DEFAULT_LOG_LEVEL = "WARNING"


def generate_brief(records: Iterable[Union[JobRecord, Dict[str, Any]]],
                   time_range: Union[str, TimeRange], now: datetime,
                   agency: Optional[str] = None) -> dict:
    """
    Build the intelligence brief.

    Args:
        records: Raw row dicts or JobRecords (already deduplicated)
        time_range: One of 4weeks, 8weeks, 3months, 6months, 1year
        now: Injected clock value
        agency: Subject agency; None / "" / "all" selects the market view

    Returns:
        Dict with period, metrics, executive_summary, anomalies, narratives

    Raises:
        TypeError: records is None or now is not a datetime
        ValueError: Unknown time range
    """
    job_records = load_records(records)
    periods = build_periods(job_records, time_range, now, agency)

    engine = MetricsEngine(periods)
    metrics = engine.calculate_all()
    anomalies = AnomalyDetector(periods).detect_all()
    summary = engine.generate_executive_summary(anomaly_count=len(anomalies), metrics=metrics)

    narrator = NarrativeGenerator(agency=periods.agency, period_label=engine.period_label)
    narratives = narrator.generate_all(metrics, summary)
    narratives['anomalies'] = [narrator.format_anomaly_narrative(s) for s in anomalies]

    logger.info(
        f"Brief for {periods.agency or 'market'} ({periods.time_range.value}): "
        f"{metrics['volume']['total_positions']} positions, {len(anomalies)} anomalies"
    )

    return {
        'period': {
            'time_range': periods.time_range.value,
            'agency': periods.agency,
            'is_agency_view': periods.is_agency_view,
            'current': periods.current.window.to_dict(),
            'previous': periods.previous.window.to_dict(),
            'baseline': periods.baseline.window.to_dict(),
        },
        'metrics': metrics,
        'executive_summary': summary,
        'anomalies': anomalies,
        'narratives': narratives,
    }


def read_snapshot(path: str) -> list:
    """
    Read a JSON snapshot of job rows.

    Accepts either a top-level list or an object with a "jobs" list.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file holds no list of rows
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('jobs')
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of job rows (or an object with a 'jobs' list)")
    return data


def parse_now(value: Optional[str]) -> datetime:
    """ISO date or datetime from the command line; the current UTC time when omitted."""
    if not value:
        return to_naive_utc(datetime.now(timezone.utc))
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def print_summary(brief: dict):
    """Console rendering of a brief."""
    period = brief['period']
    narratives = brief['narratives']

    print(f"\n{'='*60}")
    print(f"HIRING INTELLIGENCE: {(period['agency'] or 'UN SYSTEM').upper()}")
    print(f"Period: {period['current']['label']} ({period['time_range']})")
    print(f"{'='*60}\n")

    print(brief['executive_summary']['headline'])
    for point in brief['executive_summary']['key_points']:
        print(f"  - {point}")

    for section in ('volume', 'workforce', 'geography', 'category', 'competitive'):
        narrative = narratives[section]
        print(f"\n{section.upper()}")
        print(f"  {narrative['headline']}")
        for sentence in narrative['body']:
            print(f"  {sentence}")
        for callout in narrative['callouts']:
            print(f"  [{callout['type'].upper()}] {callout['text']}")

    print(f"\nANOMALIES ({len(brief['anomalies'])})")
    for signal in brief['anomalies']:
        print(f"  [{signal['severity'].upper()}] {format_anomaly(signal)}")


def main():
    """CLI entry point for brief generation."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description='Generate a hiring intelligence brief from a job snapshot',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    intel-brief --input jobs.json --range 3months --agency WFP --now 2025-06-30
    intel-brief --input jobs.json --range 4weeks --output json
    intel-brief --input jobs.json --agency UNICEF --output json --save unicef_brief.json
        """
    )
    parser.add_argument('--input', required=True, help='JSON snapshot of job rows')
    parser.add_argument('--range', dest='time_range',
                        choices=[t.value for t in TimeRange],
                        default=os.getenv('INTEL_TIME_RANGE', DEFAULT_TIME_RANGE),
                        help='Analysis window (default: INTEL_TIME_RANGE or 3months)')
    parser.add_argument('--agency', default=None,
                        help='Subject agency (omit or "all" for the market view)')
    parser.add_argument('--now', default=None,
                        help='Reference date (YYYY-MM-DD or ISO datetime); defaults to now')
    parser.add_argument('--output', choices=['json', 'summary'], default='summary',
                        help='Output format: json (raw brief), summary (console)')
    parser.add_argument('--save', type=str, default=None,
                        help='Save the JSON brief to a file path')
    parser.add_argument('--log-level', default=os.getenv('INTEL_LOG_LEVEL', DEFAULT_LOG_LEVEL),
                        help='Logging level (default: INTEL_LOG_LEVEL or WARNING)')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        rows = read_snapshot(args.input)
        now = parse_now(args.now)
        brief = generate_brief(rows, args.time_range, now, args.agency)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Brief generation failed: {e}")
        sys.exit(1)

    output_json = json.dumps(brief, indent=2, ensure_ascii=False)

    if args.save:
        with open(args.save, 'w', encoding='utf-8') as f:
            f.write(output_json)
        print(f"[OK] Brief saved to: {args.save}")
        print(f"     Positions: {brief['metrics']['volume']['total_positions']}")
        print(f"     Anomalies: {len(brief['anomalies'])}")
        print(f"     Period: {brief['period']['current']['label']}")
        return

    if args.output == 'json':
        print(output_json)
    else:
        print_summary(brief)


if __name__ == "__main__":
    main()
