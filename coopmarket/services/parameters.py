import math
from typing import Any

from pydantic import BaseModel

from coopmarket.core.config import (
    DEFAULT_BASE_DELIVERY_FEE,
    DEFAULT_DAILY_MINIMUM_GUARANTEE,
    DEFAULT_INFRA_FEE_RATE,
    DEFAULT_PER_KM_RATE,
    DEFAULT_POOL_CONTRIBUTION_RATE,
)
from coopmarket.models.parameters import SystemParameters

EARTH_RADIUS_M = 6371e3


class GovernedParameters(BaseModel):
    """Read-only snapshot of the parameters the cooperative votes on."""
    base_delivery_fee: int = DEFAULT_BASE_DELIVERY_FEE
    per_km_rate: int = DEFAULT_PER_KM_RATE
    pool_contribution_rate: int = DEFAULT_POOL_CONTRIBUTION_RATE
    infra_fee_rate: int = DEFAULT_INFRA_FEE_RATE
    daily_minimum_guarantee: int = DEFAULT_DAILY_MINIMUM_GUARANTEE


async def get_governed_parameters(conn: Any = None) -> GovernedParameters:
    row = await SystemParameters.filter(id=1).using_db(conn).first()
    if row is None:
        return GovernedParameters()
    return GovernedParameters(
        base_delivery_fee=row.base_delivery_fee,
        per_km_rate=row.per_km_rate,
        pool_contribution_rate=row.pool_contribution_rate,
        infra_fee_rate=row.infra_fee_rate,
        daily_minimum_guarantee=row.daily_minimum_guarantee,
    )


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def delivery_fee_for(distance_m: float, params: GovernedParameters) -> int:
    return round(params.base_delivery_fee + params.per_km_rate * distance_m / 1000)
