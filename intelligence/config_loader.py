"""
Config Loader
Loads the YAML lookup tables in config/ and caches them in memory.

The tables (grade rules, location lists, peer groups, category dictionary)
are static reference data. They are read once per process; tests can call
clear_config_cache() after pointing INTEL_CONFIG_DIR somewhere else.

Example usage:
    from intelligence.config_loader import load_config

    rules = load_config("grade_rules.yaml")["rules"]
"""

import os
import logging
from pathlib import Path
from typing import Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent / "config"

_config_cache: Dict[str, Dict] = {}


def get_config_dir() -> Path:
    """Config directory, overridable with INTEL_CONFIG_DIR."""
    override = os.getenv("INTEL_CONFIG_DIR")
    return Path(override) if override else DEFAULT_CONFIG_DIR


def load_config(filename: str) -> Dict:
    """
    Load a YAML config file from the config directory.
    Caches the parsed file in memory for subsequent calls.

    Args:
        filename: File name inside the config directory (e.g. "peer_groups.yaml")

    Returns:
        Parsed YAML content (empty dict for an empty file)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    if filename in _config_cache:
        return _config_cache[filename]

    config_path = get_config_dir() / filename

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    logger.debug(f"Loaded {filename} from {config_path}")
    _config_cache[filename] = config
    return config


def clear_config_cache():
    """Clear the config cache (useful for testing)."""
    _config_cache.clear()
