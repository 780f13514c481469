"""
Grade Classifier
================
Maps a raw UN grade string ("P-4", "NOC", "IPSA-10", "Consultant", ...) to a
structured grade analysis: tier, contract type, binary staff category,
numeric seniority level and pyramid position.

The rules live in config/grade_rules.yaml as an ordered table, most senior
first. Classification is a pure function of the input string and never
fails: unmatched or empty input falls through to the "Other" / Non-Staff
default.

Usage:
    from intelligence.grade_classifier import classify_grade, consolidate_tier

    analysis = classify_grade("P-4")
    # analysis.tier == "Mid Professional", analysis.numeric_level == 8

    consolidate_tier(classify_grade("G5").tier)  # "Support"
"""

import re
import logging
from dataclasses import dataclass, asdict
from functools import lru_cache
from typing import Dict, List, Optional

from intelligence.config_loader import load_config

logger = logging.getLogger(__name__)

CONFIG_FILE = "grade_rules.yaml"

SUPPORT_SUB_TIERS = ("Senior Support", "Mid Support", "Entry Support")

# Consolidated tier names
SENIOR_TIERS = ("Executive", "Director", "Senior Professional")
JUNIOR_TIERS = ("Entry Professional", "Support", "Intern")

DISTRIBUTION_TIERS = [
    "Executive",
    "Director",
    "Senior Professional",
    "Mid Professional",
    "Entry Professional",
    "Support",
    "Consultant",
    "Intern",
    "Volunteer",
    "Other",
]

STAFF = "Staff"
NON_STAFF = "Non-Staff"


@dataclass(frozen=True)
class GradeAnalysis:
    """Structured view of one grade string"""
    original_grade: str
    tier: str
    contract_type: str
    staff_category: str
    numeric_level: int
    is_international: bool
    is_national: bool
    pyramid_position: int
    display_label: str
    service_agreement_type: Optional[str] = None

    @property
    def consolidated_tier(self) -> str:
        return consolidate_tier(self.tier)

    @property
    def is_staff(self) -> bool:
        return self.staff_category == STAFF

    @property
    def is_senior(self) -> bool:
        return self.consolidated_tier in SENIOR_TIERS

    @property
    def is_junior(self) -> bool:
        return self.consolidated_tier in JUNIOR_TIERS

    def to_dict(self) -> Dict:
        return asdict(self)


def _default_analysis(grade: str) -> GradeAnalysis:
    return GradeAnalysis(
        original_grade=grade,
        tier="Other",
        contract_type="Other",
        staff_category=NON_STAFF,
        numeric_level=0,
        is_international=False,
        is_national=False,
        pyramid_position=0,
        display_label=grade or "Unknown",
    )


# =============================================================================
# Rule Loading
# =============================================================================

@lru_cache(maxsize=1)
def _load_rules() -> List[Dict]:
    """Load and compile the ordered rule table."""
    raw_rules = load_config(CONFIG_FILE).get("rules", [])

    rules = []
    for rule in raw_rules:
        compiled = dict(rule)
        if "regex" in rule:
            compiled["_pattern"] = re.compile(rule["regex"])
        compiled["exact"] = [str(v).upper() for v in rule.get("exact", [])]
        compiled["contains"] = [str(v).upper() for v in rule.get("contains", [])]
        compiled["excludes"] = [str(v).upper() for v in rule.get("excludes", [])]
        rules.append(compiled)

    logger.debug(f"Loaded {len(rules)} grade rules")
    return rules


def _match_rule(rule: Dict, grade: str) -> Optional[re.Match]:
    """
    Test one rule against a normalized grade.

    Returns a match object for regex rules, True for exact / contains
    matches, None when the rule does not apply.
    """
    if grade in rule["exact"]:
        return True

    pattern = rule.get("_pattern")
    if pattern is not None:
        m = pattern.fullmatch(grade)
        if m:
            return m

    if rule["contains"] and any(token in grade for token in rule["contains"]):
        if not any(token in grade for token in rule["excludes"]):
            return True

    return None


def _build_analysis(rule: Dict, original: str, grade: str, match) -> GradeAnalysis:
    label = rule.get("display_label", grade)
    group = match.group(1) if isinstance(match, re.Match) and match.groups() else ""
    label = label.replace("{grade}", grade).replace("{1}", group)

    return GradeAnalysis(
        original_grade=original,
        tier=rule["tier"],
        contract_type=rule["contract_type"],
        staff_category=rule["staff_category"],
        numeric_level=rule.get("numeric_level", 0),
        is_international=bool(rule.get("international", False)),
        is_national=bool(rule.get("national", False)),
        pyramid_position=rule.get("pyramid_position", 0),
        display_label=label,
        service_agreement_type=rule.get("service_agreement_type"),
    )


# =============================================================================
# Public API
# =============================================================================

@lru_cache(maxsize=1024)
def classify_grade(grade: Optional[str]) -> GradeAnalysis:
    """
    Classify a raw grade string.

    Args:
        grade: Raw grade (e.g. "P-4", "D2", "NPSA-9", "Intern"); may be None

    Returns:
        GradeAnalysis. Empty input yields the "Other" default with
        original_grade "Unknown".

    Examples:
        >>> classify_grade("D-2").tier
        'Executive'
        >>> classify_grade("NPSA-9").staff_category
        'Non-Staff'
        >>> classify_grade("").tier
        'Other'
    """
    if not grade or not str(grade).strip():
        return _default_analysis("Unknown")

    original = str(grade)
    normalized = original.upper().strip()

    for rule in _load_rules():
        match = _match_rule(rule, normalized)
        if match:
            return _build_analysis(rule, original, normalized, match)

    return _default_analysis(original)


def consolidate_tier(tier: str) -> str:
    """
    Collapse the three Support sub-tiers into "Support" for display.

    Examples:
        >>> consolidate_tier("Mid Support")
        'Support'
        >>> consolidate_tier("Director")
        'Director'
    """
    if tier in SUPPORT_SUB_TIERS:
        return "Support"
    return tier


def get_tier_color(tier: str) -> str:
    """Chart color for a (consolidated) tier, grey fallback."""
    colors = load_config(CONFIG_FILE).get("tier_colors", {})
    return colors.get(consolidate_tier(tier), "#6B7280")


def clear_grade_cache():
    """Drop compiled rules and memoized results (after a config change)."""
    _load_rules.cache_clear()
    classify_grade.cache_clear()
