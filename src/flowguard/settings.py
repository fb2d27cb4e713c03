from __future__ import annotations

from typing import Any

from pydantic import (
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from flowguard.circuit_breaker import CircuitBreakerConfig
from flowguard.client_identity import TrustedProxy, detect_trusted_proxy
from flowguard.logging import get_log_level_value, get_logger, log_warning
from flowguard.manager import ResilienceConfig
from flowguard.rate_limit import RateLimiter, RateLimitStore, RateLimitSweeper
from flowguard.retry import RetryPolicy

_logger = get_logger(__name__)

# Inclusive (min, max) per integer tunable.
_INT_BOUNDS: dict[str, tuple[int, int]] = {
    "retry_max_retries": (0, 10),
    "retry_initial_delay_ms": (100, 60_000),
    "retry_max_delay_ms": (1_000, 300_000),
    "retry_backoff_multiplier": (1, 10),
    "circuit_failure_threshold": (1, 100),
    "circuit_reset_timeout_ms": (1_000, 3_600_000),
    "circuit_monitoring_period_ms": (1_000, 3_600_000),
    "operation_timeout_ms": (100, 600_000),
    "rate_limit_max_store_size": (100, 100_000),
    "rate_limit_max_requests_per_identifier": (300, 100_000),
    "rate_limit_cleanup_interval_ms": (5_000, 300_000),
    "rate_limit_cleanup_window_ms": (60_000, 86_400_000),
    "rate_limit_eviction_percentage": (1, 50),
}


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class FlowguardSettings(BaseSettings):
    """Process-wide resilience and admission-control tunables.

    Every value is read once from ``FLOWGUARD_*`` environment variables. A bad
    value never fails startup: unparsable input falls back to the default and
    out-of-range input is clamped to the nearest bound, with a warning logged.
    """

    model_config = prefixed_settings_config("FLOWGUARD_")

    retry_max_retries: int = 3
    retry_initial_delay_ms: int = 1_000
    retry_max_delay_ms: int = 10_000
    retry_backoff_multiplier: int = 2
    retry_enable_jitter: bool = True
    circuit_failure_threshold: int = 5
    circuit_reset_timeout_ms: int = 60_000
    circuit_monitoring_period_ms: int = 10_000
    operation_timeout_ms: int = 30_000
    rate_limit_max_store_size: int = 10_000
    rate_limit_max_requests_per_identifier: int = 1_000
    rate_limit_cleanup_interval_ms: int = 60_000
    rate_limit_cleanup_window_ms: int = 3_600_000
    rate_limit_eviction_percentage: int = 10
    trusted_proxy: TrustedProxy = Field(default_factory=detect_trusted_proxy)
    log_level: str = "INFO"

    @classmethod
    def _default_for(cls, field_name: str) -> Any:
        return cls.model_fields[field_name].get_default(call_default_factory=True)

    @field_validator(*_INT_BOUNDS, mode="wrap")
    @classmethod
    def _clamp_to_bounds(
        cls,
        value: object,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> int:
        field_name = info.field_name
        assert field_name is not None
        try:
            parsed: int = handler(value)
        except ValidationError:
            default = cls._default_for(field_name)
            log_warning(
                _logger,
                "settings_value_invalid",
                field=field_name,
                value=str(value),
                default=default,
            )
            return default

        low, high = _INT_BOUNDS[field_name]
        clamped = min(max(parsed, low), high)
        if clamped != parsed:
            log_warning(
                _logger,
                "settings_value_clamped",
                field=field_name,
                value=parsed,
                clamped=clamped,
            )
        return clamped

    @field_validator("retry_enable_jitter", "trusted_proxy", mode="wrap")
    @classmethod
    def _fallback_to_default(
        cls,
        value: object,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> object:
        field_name = info.field_name
        assert field_name is not None
        if isinstance(value, str):
            value = value.strip().lower()
        try:
            return handler(value)
        except ValidationError:
            default = cls._default_for(field_name)
            log_warning(
                _logger,
                "settings_value_invalid",
                field=field_name,
                value=str(value),
                default=str(default),
            )
            return default

    @field_validator("log_level", mode="after")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        try:
            get_log_level_value(value)
        except ValueError:
            log_warning(
                _logger,
                "settings_value_invalid",
                field="log_level",
                value=value,
                default="INFO",
            )
            return "INFO"
        return value.strip().upper()

    def retry_policy(self) -> RetryPolicy:
        base_delay = self.retry_initial_delay_ms / 1000
        return RetryPolicy.from_retries(
            self.retry_max_retries,
            base_delay=base_delay,
            max_delay=max(self.retry_max_delay_ms / 1000, base_delay),
            backoff_multiplier=float(self.retry_backoff_multiplier),
            jitter=1.0 if self.retry_enable_jitter else 0.0,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout=self.circuit_reset_timeout_ms / 1000,
            monitoring_period=self.circuit_monitoring_period_ms / 1000,
        )

    def resilience_config(self) -> ResilienceConfig:
        """Build the default layer configuration for an outbound dependency."""
        return ResilienceConfig(
            timeout=self.operation_timeout_ms / 1000,
            retry=self.retry_policy(),
            circuit_breaker=self.circuit_breaker_config(),
        )

    def rate_limit_store(self) -> RateLimitStore:
        return RateLimitStore(
            max_entries=self.rate_limit_max_store_size,
            max_requests_per_identifier=self.rate_limit_max_requests_per_identifier,
            eviction_fraction=self.rate_limit_eviction_percentage / 100,
        )

    def rate_limiter(self) -> RateLimiter:
        return RateLimiter(
            self.rate_limit_store(),
            cleanup_window=self.rate_limit_cleanup_window_ms / 1000,
        )

    def rate_limit_sweeper(self, limiter: RateLimiter) -> RateLimitSweeper:
        return RateLimitSweeper(
            limiter,
            interval=self.rate_limit_cleanup_interval_ms / 1000,
        )
