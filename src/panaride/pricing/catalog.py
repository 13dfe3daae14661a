"""Service tier catalog.

The catalog is configuration, not code: tariffs change with the
jurisdiction, so tiers are read from JSON once at startup and never
mutated afterwards.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from enum import Enum
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from panaride.core.exceptions import ConfigurationError, UnknownServiceError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_RESOURCE = "service_catalog.json"


class VehicleType(str, Enum):
    MOTO = "MOTO"
    CAR = "CAR"
    FREIGHT = "FREIGHT"


class ServiceConfig(BaseModel):
    """Tariff for one service tier."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    base_net_fare_usd: float = Field(ge=0)
    net_per_km_surcharge_usd: float = Field(ge=0)
    base_gross_fare_usd: float = Field(ge=0)
    gross_per_km_surcharge_usd: float = Field(ge=0)
    base_distance_km: float = Field(ge=0, description="Distance covered by the base fare")
    vehicle_type: VehicleType
    icon: str | None = None

    def gross_fare_for(self, distance_km: float) -> float:
        """Unrounded gross fare (PFS) for a trip of the given distance."""
        fare = self.base_gross_fare_usd
        if distance_km > self.base_distance_km:
            fare += (distance_km - self.base_distance_km) * self.gross_per_km_surcharge_usd
        return fare


class ServiceCatalog:
    """Read-only lookup of service tiers by id."""

    def __init__(self, services: Iterable[ServiceConfig]):
        self._services: dict[str, ServiceConfig] = {}
        for service in services:
            if service.id in self._services:
                raise ConfigurationError(
                    f"Duplicate service id {service.id!r} in catalog",
                    details={"service_id": service.id},
                )
            self._services[service.id] = service

    def get(self, service_id: str) -> ServiceConfig:
        try:
            return self._services[service_id]
        except KeyError:
            raise UnknownServiceError(service_id) from None

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __iter__(self) -> Iterator[ServiceConfig]:
        return iter(self._services.values())

    def __len__(self) -> int:
        return len(self._services)

    def ids(self) -> list[str]:
        return list(self._services)

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceCatalog":
        raw_services = data.get("services") if isinstance(data, dict) else None
        if not isinstance(raw_services, list):
            raise ConfigurationError("Service catalog must contain a 'services' list")
        try:
            services = [ServiceConfig.model_validate(raw) for raw in raw_services]
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid service catalog entry", details={"errors": e.errors()}
            ) from e
        return cls(services)


def load_catalog(path: Path | str | None = None) -> ServiceCatalog:
    """Load the service catalog from a JSON file, or the bundled default."""
    try:
        if path is None:
            text = (
                resources.files("panaride.pricing")
                .joinpath("data")
                .joinpath(DEFAULT_CATALOG_RESOURCE)
                .read_text(encoding="utf-8")
            )
            source = f"bundled {DEFAULT_CATALOG_RESOURCE}"
        else:
            text = Path(path).read_text(encoding="utf-8")
            source = str(path)
        data = json.loads(text)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read service catalog: {e}") from e

    catalog = ServiceCatalog.from_dict(data)
    logger.info(f"Loaded {len(catalog)} service tiers from {source}")
    return catalog
