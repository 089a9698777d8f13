"""
Configuration for CreditSwap API.
"""

import math
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Optional

import structlog
from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


def _parse_number(raw: Any) -> Optional[Decimal]:
    """Parse an env-style number, returning None for blank/garbage/NaN/inf."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


class Settings(BaseSettings):
    """
    API configuration settings.

    All settings can be overridden via environment variables.
    Numeric settings never fail startup: an unparsable or out-of-range value
    falls back to the field default and a warning is logged.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API Server
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external - REQUIRES API_TOKEN)",
        alias="HOST",
    )
    port: int = Field(
        default=8000,
        description="API port (Railway sets PORT automatically)",
        validation_alias="PORT",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Authentication
    api_token: Optional[str] = Field(
        default=None,
        description="API token guarding admin-mutating endpoints (X-API-Key header)",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins",
    )

    # Admin / custodial wallet
    admin_wallet_address: str = Field(
        default="",
        description="Admin wallet address (exact match grants admin rights)",
    )
    admin_secret_key: Optional[str] = Field(
        default=None,
        description="Custodial wallet secret key (base58) funding the SOL leg",
    )

    # Solana
    solana_network: str = Field(default="devnet", description="Solana cluster name")
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana JSON-RPC URL",
    )

    # Bridge
    bridge_api_url: Optional[str] = Field(default=None, description="Bridge provider base URL")
    bridge_api_key: Optional[str] = Field(default=None, description="Bridge provider API key")
    bitcoin_network: str = Field(
        default="mainnet",
        description="Bitcoin network for destination address checks: mainnet or testnet",
    )

    # Credits
    credit_to_sol_rate: Decimal = Field(
        default=Decimal("0.001"),
        description="SOL paid out per credit",
    )
    min_withdrawal_amount: int = Field(default=10, description="Minimum credits per swap")
    max_withdrawal_amount: int = Field(default=10000, description="Maximum credits per swap")

    # Fees (charged in credits, on top of the swapped amount)
    swap_fee_percentage: Decimal = Field(
        default=Decimal("15"),
        description="Percentage swap fee",
    )
    min_fee_credits: int = Field(default=5, description="Swap fee floor in credits")
    network_fee_credits: int = Field(default=2, description="Fixed network fee in credits")

    # Timeouts and reconciliation
    settlement_timeout_seconds: float = Field(default=60.0, description="SOL transfer timeout")
    bridge_timeout_seconds: float = Field(default=30.0, description="Bridge call timeout")
    reconcile_interval_seconds: float = Field(default=30.0, description="Reconciler poll interval")
    reconcile_stale_seconds: float = Field(
        default=60.0,
        description="Bridging records older than this are polled by the reconciler",
    )

    # Storage
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL; in-memory stores are used when unset",
    )

    @field_validator("credit_to_sol_rate", mode="before")
    @classmethod
    def _positive_decimal(cls, value: Any, info: ValidationInfo) -> Decimal:
        parsed = _parse_number(value)
        if parsed is None or parsed <= 0:
            return cls._fallback(info.field_name, value)
        return parsed

    @field_validator("swap_fee_percentage", mode="before")
    @classmethod
    def _percentage(cls, value: Any, info: ValidationInfo) -> Decimal:
        parsed = _parse_number(value)
        if parsed is None or parsed < 0 or parsed > 100:
            return cls._fallback(info.field_name, value)
        return parsed

    @field_validator(
        "min_withdrawal_amount",
        "max_withdrawal_amount",
        "min_fee_credits",
        "network_fee_credits",
        mode="before",
    )
    @classmethod
    def _non_negative_int(cls, value: Any, info: ValidationInfo) -> int:
        parsed = _parse_number(value)
        if parsed is None or parsed < 0 or parsed != parsed.to_integral_value():
            return cls._fallback(info.field_name, value)
        return int(parsed)

    @field_validator(
        "settlement_timeout_seconds",
        "bridge_timeout_seconds",
        "reconcile_interval_seconds",
        "reconcile_stale_seconds",
        mode="before",
    )
    @classmethod
    def _positive_seconds(cls, value: Any, info: ValidationInfo) -> float:
        parsed = _parse_number(value)
        if parsed is None or parsed <= 0:
            return cls._fallback(info.field_name, value)
        return float(parsed)

    @model_validator(mode="after")
    def _withdrawal_bounds(self) -> "Settings":
        if self.min_withdrawal_amount > self.max_withdrawal_amount:
            logger.warning(
                "config_fallback",
                field="min_withdrawal_amount/max_withdrawal_amount",
                value=f"{self.min_withdrawal_amount}>{self.max_withdrawal_amount}",
            )
            self.min_withdrawal_amount = type(self).model_fields["min_withdrawal_amount"].default
            self.max_withdrawal_amount = type(self).model_fields["max_withdrawal_amount"].default
        return self

    @classmethod
    def _fallback(cls, field_name: str, value: Any) -> Any:
        default = cls.model_fields[field_name].default
        if value is not None and value != "":
            logger.warning("config_fallback", field=field_name, value=str(value), default=str(default))
        return default


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
