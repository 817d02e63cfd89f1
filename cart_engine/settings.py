"""Environment configuration and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import structlog

from .pricing import PricingConfig
from .reconciliation import MergePolicy

DEFAULT_API_URL = "http://localhost:5000/api/v1"


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog with JSON rendering and ISO timestamps."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"LOG_LEVEL: unknown level {level!r}")
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


def _number(env: Mapping[str, str], name: str, default: str) -> Decimal:
    raw = env.get(name, default)
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as e:
        raise ValueError(f"{name}: not a number: {raw!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"{name}: must be a non-negative number, got {raw!r}")
    return value


def _integer(env: Mapping[str, str], name: str, default: str) -> int:
    raw = env.get(name, default)
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name}: not an integer: {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name}: must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class EngineSettings:
    api_url: str = DEFAULT_API_URL
    api_timeout: float = 10.0
    snapshot_path: Optional[str] = None
    snapshot_ttl: timedelta = timedelta(days=7)
    pricing: PricingConfig = PricingConfig()
    merge_retry_attempts: int = 0
    log_level: str = "INFO"

    @property
    def merge_policy(self) -> MergePolicy:
        return MergePolicy(retry_transient=self.merge_retry_attempts)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> EngineSettings:
        """Load settings from environment variables.

        Environment variables:
            CART_API_URL: Storefront API base URL
            CART_API_TIMEOUT: Request timeout in seconds (default: 10)
            CART_SNAPSHOT_PATH: JSON file for the local snapshot; unset keeps
                it in memory
            CART_SNAPSHOT_TTL_DAYS: Snapshot staleness horizon (default: 7)
            CART_FREE_SHIPPING_THRESHOLD, CART_FLAT_SHIPPING_FEE,
            CART_TAX_RATE, CART_CURRENCY: Pricing configuration
            CART_MERGE_RETRY_ATTEMPTS: Extra attempts for transient merge
                failures on login (default: 0)
            LOG_LEVEL: Log level (default: INFO)

        Raises:
            ValueError: A numeric variable could not be parsed.
        """
        env = os.environ if env is None else env
        pricing = PricingConfig(
            free_shipping_threshold=_number(env, "CART_FREE_SHIPPING_THRESHOLD", "500"),
            flat_shipping_fee=_number(env, "CART_FLAT_SHIPPING_FEE", "50"),
            tax_rate=_number(env, "CART_TAX_RATE", "0.18"),
            currency=env.get("CART_CURRENCY", "INR"),
        )
        return cls(
            api_url=env.get("CART_API_URL", DEFAULT_API_URL),
            api_timeout=float(_number(env, "CART_API_TIMEOUT", "10")),
            snapshot_path=env.get("CART_SNAPSHOT_PATH") or None,
            snapshot_ttl=timedelta(days=_integer(env, "CART_SNAPSHOT_TTL_DAYS", "7")),
            pricing=pricing,
            merge_retry_attempts=_integer(env, "CART_MERGE_RETRY_ATTEMPTS", "0"),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
