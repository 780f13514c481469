"""
Job Record - typed, read-only job posting record

Rows arrive as plain dicts from whatever loaded them (CSV export, database
snapshot, JSON file). They are resolved once here: flags are coerced to
booleans, the posting date is parsed, the agency identity is picked, and
location type / conflict flag are filled in from the location
classifier when the row does not already carry them. Region is always one
of the fixed macro-regions, whatever label the source row uses.

The analytics modules only ever read JobRecord attributes; no fallback
logic is repeated at read sites.
"""

import math
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from intelligence.categories import UNKNOWN_CATEGORY
from intelligence.location_classifier import LOCATION_TYPES, classify_location, standardize_region

logger = logging.getLogger(__name__)

TRUTHY_STRINGS = {"true", "t", "yes", "y", "1"}


def coerce_bool(value: Any) -> bool:
    """
    Canonical boolean coercion for source flags (archived, is_active, ...).

    bool -> itself; int/float -> non-zero; str -> one of
    true/t/yes/y/1 (case-insensitive); anything else -> False.

    Examples:
        >>> coerce_bool("TRUE"), coerce_bool("0"), coerce_bool(1), coerce_bool(None)
        (True, False, True, False)
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return False


def parse_posting_date(value: Any) -> Optional[datetime]:
    """
    Parse a posting date into a naive UTC datetime.

    Accepts datetime/date objects and ISO-8601 strings (a trailing "Z" is
    allowed). Returns None for anything unparseable.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    return to_naive_utc(parsed)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class JobRecord:
    """Normalized job posting"""
    # Identity
    id: str
    title: str = ""
    primary_category: str = UNKNOWN_CATEGORY
    up_grade: str = ""

    # Dates
    posting_date: str = ""
    posted_at: Optional[datetime] = None
    application_window_days: Optional[int] = None

    # Location
    duty_station: str = ""
    duty_country: str = ""
    duty_continent: str = ""
    geographic_region: Optional[str] = None
    region: str = "Other"
    location_type: str = "Field"
    is_conflict_zone: bool = False

    # Agency
    short_agency: str = ""
    long_agency: str = ""
    agency: Optional[str] = None

    # Status flags
    archived: bool = False
    is_active: bool = False
    is_expired: bool = False

    # Experience requirements (years, nullable)
    master_min_exp: Optional[float] = None
    bachelor_min_exp: Optional[float] = None

    # Classification-quality metadata (read, never interpreted)
    classification_confidence: Optional[float] = None
    is_ambiguous_category: bool = False
    emerging_terms_found: Any = None
    hybrid_category_candidate: bool = False

    extra: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def min_experience(self) -> Optional[float]:
        """Master's requirement if stated, else bachelor's, else None."""
        if self.master_min_exp is not None:
            return self.master_min_exp
        return self.bachelor_min_exp

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        """
        Build a JobRecord from a raw row.

        Missing optional fields fall back to defaults; nothing here raises
        for messy data.
        """
        station = _text(data.get("duty_station"))
        country = _text(data.get("duty_country"))
        continent = _text(data.get("duty_continent"))
        location = classify_location(station, country, continent)

        location_type = _text(data.get("location_type"))
        if location_type not in LOCATION_TYPES:
            location_type = location.location_type

        if data.get("is_conflict_zone") is None:
            conflict = location.is_conflict_zone
        else:
            conflict = coerce_bool(data.get("is_conflict_zone"))

        geographic_region = _text(data.get("geographic_region")) or None

        short_agency = _text(data.get("short_agency"))
        long_agency = _text(data.get("long_agency"))

        known = {f for f in cls.__dataclass_fields__}
        extra = {k: v for k, v in data.items() if k not in known}

        return cls(
            id=_text(data.get("id")),
            title=_text(data.get("title")),
            primary_category=_text(data.get("primary_category")) or UNKNOWN_CATEGORY,
            up_grade=_text(data.get("up_grade")),
            posting_date=_text(data.get("posting_date")),
            posted_at=parse_posting_date(data.get("posting_date")),
            application_window_days=_optional_int(data.get("application_window_days")),
            duty_station=station,
            duty_country=country,
            duty_continent=continent,
            geographic_region=geographic_region,
            region=standardize_region(continent or geographic_region),
            location_type=location_type,
            is_conflict_zone=conflict,
            short_agency=short_agency,
            long_agency=long_agency,
            agency=short_agency or long_agency or None,
            archived=coerce_bool(data.get("archived")),
            is_active=coerce_bool(data.get("is_active")),
            is_expired=coerce_bool(data.get("is_expired")),
            master_min_exp=_optional_float(data.get("master_min_exp")),
            bachelor_min_exp=_optional_float(data.get("bachelor_min_exp")),
            classification_confidence=_optional_float(data.get("classification_confidence")),
            is_ambiguous_category=coerce_bool(data.get("is_ambiguous_category")),
            emerging_terms_found=data.get("emerging_terms_found"),
            hybrid_category_candidate=coerce_bool(data.get("hybrid_category_candidate")),
            extra=extra,
        )


def load_records(rows: Iterable[Dict[str, Any]]) -> List[JobRecord]:
    """
    Convert raw rows into JobRecords.

    Args:
        rows: Iterable of dicts (already deduplicated)

    Returns:
        List of JobRecord in input order

    Raises:
        TypeError: If rows is None (caller bug, not messy data)
    """
    if rows is None:
        raise TypeError("load_records() requires an iterable of rows, got None")

    records = []
    for row in rows:
        if isinstance(row, JobRecord):
            records.append(row)
        else:
            records.append(JobRecord.from_dict(row))

    unparsed = sum(1 for r in records if r.posted_at is None)
    if unparsed:
        logger.debug(f"{unparsed} of {len(records)} records have no parseable posting date")

    return records
