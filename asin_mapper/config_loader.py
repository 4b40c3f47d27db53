"""Configuration loader for the Amazon ASIN mapper."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from asin_mapper.retry import BackoffPolicy


DEFAULT_RETRY_POLICIES: Dict[str, Dict[str, float]] = {
    "brand_search": {"max_attempts": 100, "base_seconds": 2.0, "jitter_seconds": 0.0},
    "keyword_search": {"max_attempts": 3, "base_seconds": 2.0, "jitter_seconds": 0.0},
    "detail_scrape": {"max_attempts": 100, "base_seconds": 2.0, "jitter_seconds": 2.0},
    "brand_lookup": {"max_attempts": 100, "base_seconds": 1.0, "jitter_seconds": 1.0},
    "retry_invalid": {"max_attempts": 5, "base_seconds": 2.0, "jitter_seconds": 0.0},
}

DEFAULT_PATHS: Dict[str, str] = {
    "brands_input": "data/company_name_deduped.csv",
    "asin_map": "data/brand_asin_map.csv",
    "keywords_input": "data/keyword_brand_scrap.csv",
    "keyword_map": "data/brand_keyword_map.csv",
    "product_details": "data/amazon_product_details.csv",
    "keyword_brands": "data/brandName_for_keywords.csv",
    "retry_output": "data/brand_asin_retry.csv",
    "dedupe_input": "data/ICP_data_scrapping.csv",
    "dedupe_output": "data/company_name_deduped.csv",
    "duplicates_output": "data/duplicate_company_names.csv",
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default locations.

    Returns:
        Dictionary with configuration values.
    """
    load_dotenv()

    if config_path is None:
        locations = [
            "config.yaml",
            "config.yml",
            "../config.yaml",
            "../config.yml",
        ]
        for loc in locations:
            if Path(loc).exists():
                config_path = loc
                break

    if config_path is None or not Path(config_path).exists():
        raise FileNotFoundError("Configuration file not found. Please provide config.yaml")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute environment variables in config.

    Supports syntax: ${VAR_NAME} or ${VAR_NAME:default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _substitute_env_string(obj)
    else:
        return obj


def _substitute_env_string(value: str) -> str:
    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_expr = match.group(1)
        if ':' in var_expr:
            var_name, default = var_expr.split(':', 1)
            return os.getenv(var_name, default)
        return os.getenv(var_expr, match.group(0))

    return re.sub(pattern, replace, value)


def get_website_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get website configuration."""
    return config.get("website", {}) or {}


def get_browser_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get browser configuration."""
    return config.get("browser", {}) or {}


def get_pipeline_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get pipeline pacing configuration."""
    return config.get("pipeline", {}) or {}


def get_retry_policy(config: Dict[str, Any], call_site: str) -> Tuple[int, BackoffPolicy]:
    """Resolve attempt budget and backoff for one call site.

    Values in ``retry.<call_site>`` override the built-in defaults key by key.

    Raises:
        KeyError: If the call site is unknown and not configured.
        ValueError: If the configured attempt budget is below one.
    """
    configured = (config.get("retry", {}) or {}).get(call_site)
    defaults = DEFAULT_RETRY_POLICIES.get(call_site)
    if configured is None and defaults is None:
        raise KeyError(f"Unknown retry call site: {call_site}")

    merged = dict(defaults or {})
    merged.update(configured or {})

    max_attempts = int(merged.get("max_attempts", 3))
    if max_attempts < 1:
        raise ValueError(f"retry.{call_site}.max_attempts must be >= 1 (got {max_attempts})")

    backoff = BackoffPolicy(
        base_seconds=float(merged.get("base_seconds", 2.0)),
        jitter_seconds=float(merged.get("jitter_seconds", 0.0)),
    )
    return max_attempts, backoff


def get_storage_paths(config: Dict[str, Any]) -> Dict[str, str]:
    """Get input/output CSV paths, falling back to the data/ layout."""
    paths = dict(DEFAULT_PATHS)
    paths.update((config.get("storage", {}) or {}).get("paths", {}) or {})
    return paths


def ensure_directories(config: Dict[str, Any]):
    """Ensure all required directories exist."""
    for path in get_storage_paths(config).values():
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    log_path = config.get("logging", {}).get("file", "data/logs/asin_mapper.log")
    Path(log_path).parent.mkdir(parents=True, exist_ok=True)
