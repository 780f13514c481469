"""
Category display dictionary lookups.

Category ids ("digital-technology") map to display names and colors via
config/category_display.yaml. Ids missing from the dictionary are
formatted from the id itself, so every category has a printable name.
"""

from typing import Optional

from intelligence.config_loader import load_config

CONFIG_FILE = "category_display.yaml"

UNKNOWN_CATEGORY = "uncategorized"


def format_category_name(category_id: Optional[str]) -> str:
    """
    Format a raw category id for display.

    Examples:
        >>> format_category_name("digital-technology")
        'Digital & Technology'
        >>> format_category_name("Peace & Security")
        'Peace & Security'
    """
    if not category_id or category_id == UNKNOWN_CATEGORY:
        return "Uncategorized"
    parts = [p.strip() for p in category_id.split("-") if p.strip()]
    return " & ".join(p[0].upper() + p[1:] for p in parts)


def get_category_name(category_id: Optional[str]) -> str:
    """Display name from the dictionary, else the formatted id."""
    categories = load_config(CONFIG_FILE).get("categories", {})
    entry = categories.get(category_id) if category_id else None
    if entry and entry.get("name"):
        return entry["name"]
    return format_category_name(category_id)


def get_category_color(category_id: Optional[str]) -> str:
    """Chart color for a category (grey fallback)."""
    categories = load_config(CONFIG_FILE).get("categories", {})
    entry = categories.get(category_id) if category_id else None
    if entry and entry.get("color"):
        return entry["color"]
    return "#6B7280"
