"""
Location Classifier Module
Maps duty station / country / continent strings to a location type, a
macro-region and two flags (DAC donor country, conflict zone).

Matching is case-insensitive against the lists in
config/location_classification.yaml. Place names match on word boundaries
so that short codes ("uk", "us") do not fire inside longer names
("Ukraine", "Belarus"). A place name surrounded by punctuation still
matches ("Geneva, Switzerland"); one fused into a longer word ("Romeo",
"GenevaHQ") does not. Home-based keywords match anywhere in the station.

Precedence (first match wins):
    1. home-based keyword in the station       -> Home-based
    2. known HQ city in the station             -> Headquarters
    3. known regional hub in the station        -> Regional Hub
    4. DAC or high-income country               -> Headquarters (never Field)
    5. everything else                          -> Field

Example usage:
    from intelligence.location_classifier import classify_location

    analysis = classify_location("Geneva", "Switzerland", "Europe")
    # analysis.location_type == "Headquarters", analysis.region == "Europe"

    analysis = classify_location("Juba", "South Sudan", "Africa")
    # analysis.location_type == "Field", analysis.is_conflict_zone is True
"""

import re
import logging
from dataclasses import dataclass, asdict
from functools import lru_cache
from typing import Dict, List, Optional

from intelligence.config_loader import load_config

logger = logging.getLogger(__name__)

CONFIG_FILE = "location_classification.yaml"

HEADQUARTERS = "Headquarters"
REGIONAL_HUB = "Regional Hub"
FIELD = "Field"
HOME_BASED = "Home-based"

LOCATION_TYPES = [HEADQUARTERS, REGIONAL_HUB, FIELD, HOME_BASED]

OTHER_REGION = "Other"


@dataclass(frozen=True)
class LocationAnalysis:
    """Derived location facts for one (station, country, continent) triple"""
    original_station: str
    original_country: str
    location_type: str
    is_hq: bool
    is_field: bool
    is_dac_country: bool
    is_conflict_zone: bool
    region: str
    display_location: str

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# Pattern Matching Functions
# =============================================================================

def _place_pattern(term: str) -> re.Pattern:
    return re.compile(r'\b' + re.escape(term.lower()) + r'\b')


@lru_cache(maxsize=1)
def _compiled_lists() -> Dict[str, List]:
    config = load_config(CONFIG_FILE)

    def places(key: str) -> List[re.Pattern]:
        return [_place_pattern(term) for term in config.get(key, [])]

    return {
        "home_based": [k.lower() for k in config.get("home_based_keywords", [])],
        "hq_cities": places("hq_cities"),
        "regional_hubs": places("regional_hubs"),
        "dac_countries": places("dac_countries"),
        "high_income": places("high_income_countries"),
        "conflict_zones": places("conflict_zones"),
        "region_patterns": config.get("region_patterns", []),
        "colors": config.get("location_type_colors", {}),
    }


def _matches_any(text: str, patterns: List[re.Pattern]) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in patterns)


def is_home_based(station: str) -> bool:
    """True if the station text contains a home-based keyword."""
    text = (station or "").lower()
    return any(k in text for k in _compiled_lists()["home_based"])


def is_conflict_zone_country(country: str) -> bool:
    """True if the country is on the conflict-zone list."""
    return _matches_any((country or "").lower().strip(), _compiled_lists()["conflict_zones"])


def is_dac_country(country: str) -> bool:
    """True if the country is an OECD DAC donor."""
    return _matches_any((country or "").lower().strip(), _compiled_lists()["dac_countries"])


def standardize_region(continent: Optional[str]) -> str:
    """
    Normalize a freeform continent string into a macro-region.

    Returns one of: Africa, Asia-Pacific, Europe, Latin America & Caribbean,
    North America, Arab States, Other.

    Examples:
        >>> standardize_region("Sub-Saharan Africa")
        'Africa'
        >>> standardize_region("North America")
        'North America'
        >>> standardize_region("")
        'Other'
    """
    text = (continent or "").lower()
    if not text:
        return OTHER_REGION

    for rule in _compiled_lists()["region_patterns"]:
        for keywords in rule.get("any", []):
            if all(k in text for k in keywords):
                return rule["region"]

    return OTHER_REGION


# =============================================================================
# Public API
# =============================================================================

@lru_cache(maxsize=4096)
def classify_location(duty_station: Optional[str], duty_country: Optional[str],
                      duty_continent: Optional[str]) -> LocationAnalysis:
    """
    Classify a duty location. Total function: every input resolves to
    exactly one of the four location types.

    Args:
        duty_station: Duty station (city) text
        duty_country: Country text
        duty_continent: Continent / region text

    Returns:
        LocationAnalysis
    """
    station_raw = duty_station or ""
    country_raw = duty_country or ""
    station = station_raw.lower().strip()
    country = country_raw.lower().strip()
    region = standardize_region(duty_continent)
    lists = _compiled_lists()

    if is_home_based(station):
        return LocationAnalysis(
            original_station=station_raw,
            original_country=country_raw,
            location_type=HOME_BASED,
            is_hq=False,
            is_field=False,
            is_dac_country=False,
            is_conflict_zone=False,
            region=region,
            display_location=HOME_BASED,
        )

    dac = _matches_any(country, lists["dac_countries"])

    if _matches_any(station, lists["hq_cities"]):
        return LocationAnalysis(
            original_station=station_raw,
            original_country=country_raw,
            location_type=HEADQUARTERS,
            is_hq=True,
            is_field=False,
            is_dac_country=dac,
            is_conflict_zone=False,
            region=region,
            display_location=station_raw or country_raw,
        )

    conflict = _matches_any(country, lists["conflict_zones"])

    if _matches_any(station, lists["regional_hubs"]):
        return LocationAnalysis(
            original_station=station_raw,
            original_country=country_raw,
            location_type=REGIONAL_HUB,
            is_hq=False,
            is_field=False,
            is_dac_country=dac,
            is_conflict_zone=conflict,
            region=region,
            display_location=station_raw or country_raw,
        )

    # Liaison offices in donor / high-income countries are treated as HQ-type
    if dac or _matches_any(country, lists["high_income"]):
        return LocationAnalysis(
            original_station=station_raw,
            original_country=country_raw,
            location_type=HEADQUARTERS,
            is_hq=False,
            is_field=False,
            is_dac_country=True,
            is_conflict_zone=False,
            region=region,
            display_location=country_raw or station_raw,
        )

    return LocationAnalysis(
        original_station=station_raw,
        original_country=country_raw,
        location_type=FIELD,
        is_hq=False,
        is_field=True,
        is_dac_country=False,
        is_conflict_zone=conflict,
        region=region,
        display_location=country_raw or station_raw,
    )


def get_location_type_color(location_type: str) -> str:
    """Chart color for a location type (grey fallback)."""
    return _compiled_lists()["colors"].get(location_type, "#6B7280")


def clear_location_cache():
    """Drop compiled lists and memoized results (after a config change)."""
    _compiled_lists.cache_clear()
    classify_location.cache_clear()
