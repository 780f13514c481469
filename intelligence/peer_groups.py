"""
Peer Groups - static agency comparison groups

Agencies are grouped by size and operational scope (config/peer_groups.yaml)
so that comparisons are like-for-like. Unknown agencies default to tier 4.
"""

import logging
from typing import Dict, List, Optional

from intelligence.config_loader import load_config

logger = logging.getLogger(__name__)

CONFIG_FILE = "peer_groups.yaml"


def _load_peer_groups() -> Dict:
    config = load_config(CONFIG_FILE)
    tiers = {}
    for tier, group in config.get("tiers", {}).items():
        tiers[int(tier)] = {
            "tier": int(tier),
            "name": group["name"],
            "agencies": list(group.get("agencies", [])),
            "field_presence": group.get("field_presence"),
            "description": group.get("description", ""),
        }
    return {
        "tiers": tiers,
        "secretariat_entities": config.get("secretariat_entities", {}),
        "default_tier": int(config.get("default_tier", 4)),
    }


def get_agency_peer_group(agency: Optional[str]) -> Optional[Dict]:
    """
    Get the peer group for an agency.

    Matches case-insensitively on equality or substring in either direction,
    then falls back to the Secretariat entity table, then to the default tier.

    Args:
        agency: Agency short or long name

    Returns:
        Peer group dict (tier, name, agencies, ...) or None for empty input

    Examples:
        >>> get_agency_peer_group("WFP")["tier"]
        1
        >>> get_agency_peer_group("OCHA")["tier"]
        2
    """
    if not agency or not agency.strip():
        return None

    groups = _load_peer_groups()
    normalized = agency.strip().lower()

    for tier in sorted(groups["tiers"]):
        group = groups["tiers"][tier]
        for member in group["agencies"]:
            m = member.lower()
            if m == normalized or m in normalized or normalized in m:
                return group

    secretariat_tier = groups["secretariat_entities"].get(agency.strip())
    if secretariat_tier:
        return groups["tiers"].get(int(secretariat_tier))

    return groups["tiers"].get(groups["default_tier"])


def get_agency_tier(agency: Optional[str]) -> int:
    """Tier number for an agency (default tier for unknown agencies)."""
    group = get_agency_peer_group(agency)
    if group is None:
        return _load_peer_groups()["default_tier"]
    return group["tier"]


def get_peer_agencies(agency: Optional[str]) -> List[str]:
    """Same-tier agencies, excluding the agency itself."""
    group = get_agency_peer_group(agency)
    if not group:
        return []
    return [a for a in group["agencies"] if a.lower() != agency.strip().lower()]


def get_peer_group_description(agency: Optional[str]) -> str:
    """Human-readable peer group label, e.g. 'Large Operational Agencies (Tier 1)'."""
    group = get_agency_peer_group(agency)
    if not group:
        return "Unknown classification"
    return f"{group['name']} (Tier {group['tier']})"
