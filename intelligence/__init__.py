"""
UN hiring intelligence core.

Period-aware metrics, anomaly detection and narrative text for job postings
at international organizations. Everything here is a pure, synchronous,
in-memory computation over a snapshot of job records.

Usage:
    from datetime import datetime
    from intelligence.brief_generator import generate_brief
    from intelligence.job_record import load_records

    records = load_records(rows)
    brief = generate_brief(records, "3months", now=datetime(2025, 6, 30), agency="WFP")
"""

__version__ = "0.3.0"
