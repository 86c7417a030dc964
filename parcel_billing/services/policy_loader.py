# ==== POLICY LOADER SERVICE ==== #

"""
Policy loader for shipping rates and the currency catalogue.

This module loads the YAML billing policies shipped under
``parcel_billing/business/policies`` (or the paths configured in
settings), falling back to built-in defaults when a file is missing.
"""

import functools
import os
from typing import Any, Dict, List

import yaml

from parcel_billing.observability.tracing import get_tracer
from parcel_billing.settings import settings


tracer = get_tracer(__name__)

POLICIES_DIR = os.path.join(os.path.dirname(__file__), "..", "business", "policies")


def _policy_path(configured: str | None, filename: str) -> str:
    return configured or os.path.join(POLICIES_DIR, filename)


# ==== RATE POLICY LOADING ==== #


@functools.lru_cache(maxsize=8)
def get_rate_policy(path: str | None = None) -> Dict[str, Any]:
    """
    Get the shipping charges policy.

    Args:
        path (str | None): Explicit policy file, defaults to the configured one

    Returns:
        Dict[str, Any]: Raw rate table mapping
    """
    with tracer.start_as_current_span("load_rate_policy") as span:
        config_path = path or _policy_path(settings.RATES_POLICY_PATH, "default_rates.yaml")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}

            span.set_attribute("config_loaded", True)
            return config

        except FileNotFoundError:
            span.set_attribute("config_loaded", False)
            span.set_attribute("fallback_used", True)

            return {
                "base_currency": "JMD",
                "base_rate": 700,             # first pound
                "additional_rate": 350,       # each further pound
                "customs_duty_percent": 15,
                "customs_threshold": 15500,   # US$100 at 155 JMD/USD
                "storage_free_days": 7,
                "storage_daily_rate": 50,
            }


# ==== CURRENCY CATALOGUE LOADING ==== #


@functools.lru_cache(maxsize=8)
def get_currency_policy(path: str | None = None) -> List[Dict[str, Any]]:
    """
    Get the currency catalogue.

    Args:
        path (str | None): Explicit policy file, defaults to the configured one

    Returns:
        List[Dict[str, Any]]: Currency entries with code, symbol,
        decimal places, format template and reference exchange rate
    """
    with tracer.start_as_current_span("load_currency_policy") as span:
        config_path = path or _policy_path(settings.CURRENCIES_POLICY_PATH, "currencies.yaml")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}

            span.set_attribute("config_loaded", True)
            return list(config.get("currencies", []))

        except FileNotFoundError:
            span.set_attribute("config_loaded", False)
            span.set_attribute("fallback_used", True)

            return [
                {"code": "USD", "name": "US Dollar", "symbol": "$", "exchange_rate": 1.0,
                 "decimal_places": 2, "format": "$1,234.56"},
                {"code": "JMD", "name": "Jamaican Dollar", "symbol": "J$", "exchange_rate": 155.0,
                 "decimal_places": 2, "format": "J$1,234.56"},
            ]
