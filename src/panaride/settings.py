from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PricingSettings(BaseSettings):
    """Regulatory split and tax constants for fare liquidation."""

    driver_share: float = Field(default=0.95, gt=0.0, le=1.0)
    platform_commission: float = Field(default=0.05, ge=0.0, lt=1.0)
    income_tax_withholding: float = Field(
        default=0.03,
        ge=0.0,
        lt=1.0,
        description="Income tax (ISLR) withheld from the driver's gross pay",
    )
    vat_rate: float = Field(
        default=0.16,
        ge=0.0,
        lt=1.0,
        description="VAT (IVA) already included in the platform commission",
    )
    reconciliation_tolerance: float = Field(default=0.02, ge=0.0, le=1.0)
    catalog_path: Path | None = Field(
        default=None,
        description="JSON service catalog; the bundled catalog is used when unset",
    )

    model_config = SettingsConfigDict(env_prefix="PRICING_")

    @model_validator(mode="after")
    def validate_split(self) -> "PricingSettings":
        if abs(self.driver_share + self.platform_commission - 1.0) > 1e-9:
            raise ValueError(
                f"Driver share and platform commission must sum to 1.0, got "
                f"{self.driver_share} + {self.platform_commission}"
            )
        return self


class MatchingSettings(BaseSettings):
    """Radius-expansion matching configuration."""

    search_radii_km: list[float] = Field(default_factory=lambda: [1.0, 3.0, 5.0])
    poll_interval_seconds: float = Field(default=2.0, gt=0.0, le=60.0)
    tier_wait_seconds: float = Field(
        default=15.0,
        gt=0.0,
        le=600.0,
        description="Wait budget per radius tier before widening the search",
    )
    default_origin: tuple[float, float] = Field(
        default=(10.0647, -69.3451),
        description="Pickup coordinates used when a trip has none (Barquisimeto)",
    )

    model_config = SettingsConfigDict(env_prefix="MATCHING_")

    @field_validator("search_radii_km")
    @classmethod
    def validate_radii(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("At least one search radius is required")
        if any(r <= 0 for r in v):
            raise ValueError("Search radii must be positive")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError(f"Search radii must be strictly increasing, got {v}")
        return v

    @property
    def total_wait_seconds(self) -> float:
        return self.tier_wait_seconds * len(self.search_radii_km)


class ExchangeRateSettings(BaseSettings):
    api_url: str = "https://ve.dolarapi.com/v1/dolares/oficial"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    refresh_interval_seconds: float = Field(default=300.0, ge=1.0)
    max_age_hours: float = Field(
        default=48.0,
        gt=0.0,
        description="Rates older than this are treated as stale",
    )
    fallback_rate: float = Field(
        default=352.71,
        gt=0.0,
        description="Local-currency units per USD used until the first successful refresh",
    )
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0.0, le=5.0)

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_RATE_")

    @field_validator("api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Exchange rate API URL must start with http:// or https://")
        return v


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class APISettings(BaseSettings):
    key: str = ""
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(env_prefix="API_")


class StorageSettings(BaseSettings):
    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "./db/panaride.db"

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class Settings(BaseSettings):
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    exchange_rate: ExchangeRateSettings = Field(default_factory=ExchangeRateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
