"""Exchange rate source with multi-source fallback.

Priority on every refresh:
1. an unexpired manual override set by an operator
2. configured sources in order (official dollar API first), skipping stale data
3. the last known rate, kept in memory and flagged as not fresh

The liquidation engine reads ``current()`` at computation time, so a
quote and a later settlement may legitimately use different rates.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from panaride.core.exceptions import (
    NetworkError,
    PanaRideError,
    ServiceUnavailableError,
    ValidationError,
)
from panaride.core.retry import RetryConfig, with_retry
from panaride.metrics import record_exchange_rate, record_rate_refresh_failure
from panaride.settings import ExchangeRateSettings

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "hardcoded_fallback"
MANUAL_OVERRIDE_SOURCE = "manual_override"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExchangeRate(BaseModel):
    """Local-currency units per USD at a point in time."""

    model_config = ConfigDict(frozen=True)

    rate: float = Field(gt=0)
    updated_at: datetime
    source: str
    is_fresh: bool = True


class RateSourceError(ServiceUnavailableError):
    """Rate source returned a server error (5xx). Retryable."""

    pass


class RateSourceTimeoutError(NetworkError):
    """Rate source request timed out. Retryable."""

    pass


class InvalidRateError(ValidationError):
    """Rate source answered with an unusable payload. Not retryable."""

    pass


class RateSource(Protocol):
    name: str

    async def fetch(self) -> tuple[float, datetime]: ...


class DolarApiSource:
    """Official BCV rate published by DolarAPI (uses the ``promedio`` field)."""

    name = "DolarAPI"

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def fetch(self) -> tuple[float, datetime]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url)
        except httpx.TimeoutException as e:
            raise RateSourceTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.NetworkError as e:
            raise RateSourceError(f"Network error: {e}") from e
        except httpx.HTTPError as e:
            raise RateSourceError(f"HTTP error: {e}") from e

        if response.status_code >= 500:
            raise RateSourceError(f"DolarAPI server error: {response.status_code}")
        if response.status_code != 200:
            raise InvalidRateError(f"DolarAPI returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidRateError("DolarAPI returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise InvalidRateError(
                f"DolarAPI returned {type(data).__name__}, expected an object",
                details={"payload": data},
            )

        rate = data.get("promedio")
        if isinstance(rate, bool) or not isinstance(rate, int | float) or rate <= 0:
            raise InvalidRateError(
                f"Invalid rate format received: {rate!r}", details={"payload": data}
            )

        return float(rate), self._parse_date(data.get("fechaActualizacion"))

    @staticmethod
    def _parse_date(value: object) -> datetime:
        if not isinstance(value, str):
            return _utcnow()
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise InvalidRateError(f"Invalid update timestamp: {value!r}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class ExchangeRateProvider:
    """Holds the current exchange rate and refreshes it periodically."""

    def __init__(
        self,
        sources: Sequence[RateSource],
        settings: ExchangeRateSettings | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings or ExchangeRateSettings()
        self._sources = list(sources)
        self._now = now
        self._snapshot = ExchangeRate(
            rate=self._settings.fallback_rate,
            updated_at=now(),
            source=FALLBACK_SOURCE,
            is_fresh=False,
        )
        self._override: ExchangeRate | None = None
        self._override_expires_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None
        self._max_age = timedelta(hours=self._settings.max_age_hours)
        self._retry_config = RetryConfig(
            max_attempts=self._settings.max_retries,
            base_delay=self._settings.retry_base_delay,
        )

    @classmethod
    def from_settings(cls, settings: ExchangeRateSettings) -> "ExchangeRateProvider":
        source = DolarApiSource(settings.api_url, timeout=settings.timeout_seconds)
        return cls([source], settings=settings)

    def current(self) -> ExchangeRate:
        return self._active_override() or self._snapshot

    @property
    def last_updated(self) -> datetime:
        return self.current().updated_at

    def rate_age_hours(self) -> float:
        return (self._now() - self.last_updated).total_seconds() / 3600

    def set_manual_override(self, rate: float, valid_hours: float = 24.0) -> ExchangeRate:
        now = self._now()
        self._override = ExchangeRate(rate=rate, updated_at=now, source=MANUAL_OVERRIDE_SOURCE)
        self._override_expires_at = now + timedelta(hours=valid_hours)
        record_exchange_rate(self._override)
        logger.info(f"Manual exchange rate override set: {rate} (valid for {valid_hours}h)")
        return self._override

    def clear_manual_override(self) -> None:
        self._override = None
        self._override_expires_at = None

    def _active_override(self) -> ExchangeRate | None:
        if self._override is None or self._override_expires_at is None:
            return None
        if self._now() >= self._override_expires_at:
            logger.info("Manual exchange rate override expired")
            self.clear_manual_override()
            return None
        return self._override

    async def refresh(self) -> ExchangeRate:
        """Refresh the rate from the first source with fresh data."""
        override = self._active_override()
        if override:
            return override

        for source in self._sources:
            try:
                rate, updated_at = await with_retry(
                    source.fetch,
                    config=self._retry_config,
                    operation_name=f"{source.name} rate fetch",
                )
            except PanaRideError as e:
                logger.warning(f"Exchange rate source {source.name} failed: {e}")
                record_rate_refresh_failure(source.name)
                continue

            age = self._now() - updated_at
            if age > self._max_age:
                age_hours = round(age.total_seconds() / 3600)
                logger.warning(
                    f"{source.name} has stale data ({age_hours}h old), trying next source"
                )
                continue

            self._snapshot = ExchangeRate(rate=rate, updated_at=updated_at, source=source.name)
            record_exchange_rate(self._snapshot)
            logger.info(f"Exchange rate updated: {rate} (source: {source.name})")
            return self._snapshot

        if self._snapshot.is_fresh:
            self._snapshot = self._snapshot.model_copy(update={"is_fresh": False})
        logger.warning(
            f"No fresh exchange rate available, keeping {self._snapshot.rate} "
            f"from {self._snapshot.source}"
        )
        return self._snapshot

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Exchange rate refresh failed, retrying next interval")
            await asyncio.sleep(self._settings.refresh_interval_seconds)
