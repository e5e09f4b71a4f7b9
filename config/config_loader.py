"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this — never hardcoded values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def _section(name: str) -> Any:
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No '{name}' section in config. Available: {list(config.keys())}"
        )
    return config[name]


def get_scoring_config() -> Dict[str, Any]:
    """Returns the scoring block."""
    return _section("scoring")


def get_temporal_config() -> Dict[str, Any]:
    """Returns the temporal block (cadence bands and bonuses)."""
    return _section("temporal")


def get_repeat_config() -> Dict[str, Any]:
    """Returns the repeated-amount block."""
    return _section("repeat")


def get_filtering_config() -> Dict[str, Any]:
    """Returns the final filtering block."""
    return _section("filtering")


def get_service_catalog() -> list[Dict[str, Any]]:
    """Returns the ordered list of known subscription services."""
    return _section("services")


def get_subscription_indicators() -> list[Dict[str, Any]]:
    return _section("indicators")


def get_category_keywords() -> list[Dict[str, Any]]:
    return _section("category_keywords")


def get_exclusion_keywords() -> list[str]:
    return _section("exclusion_keywords")


def get_refund_allowlist() -> list[str]:
    return _section("refund_allowlist")


def get_common_prices() -> list[int]:
    return _section("common_prices")


def get_definite_brands() -> list[str]:
    return _section("definite_brands")


def get_major_brand_tokens() -> list[str]:
    return _section("major_brand_tokens")


def get_report_config() -> Dict[str, Any]:
    """Returns the reporting block."""
    return _section("report")


def get_batch_store_config() -> Dict[str, Any]:
    return _section("batch_store")


def get_csv_columns() -> Dict[str, list[str]]:
    """Returns CSV column aliases keyed by logical field."""
    return _section("csv_columns")


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
