from tortoise import fields, models

from coopmarket.core.config import (
    DEFAULT_BASE_DELIVERY_FEE,
    DEFAULT_DAILY_MINIMUM_GUARANTEE,
    DEFAULT_INFRA_FEE_RATE,
    DEFAULT_PER_KM_RATE,
    DEFAULT_POOL_CONTRIBUTION_RATE,
)


class SystemParameters(models.Model):
    """
    Governed parameters (singleton row, id=1). Written by the governance
    subsystem; the core only reads it.
    """
    id = fields.IntField(primary_key=True, generated=False, default=1)
    base_delivery_fee = fields.IntField(default=DEFAULT_BASE_DELIVERY_FEE)
    per_km_rate = fields.IntField(default=DEFAULT_PER_KM_RATE)
    pool_contribution_rate = fields.IntField(default=DEFAULT_POOL_CONTRIBUTION_RATE)
    infra_fee_rate = fields.IntField(default=DEFAULT_INFRA_FEE_RATE)
    daily_minimum_guarantee = fields.IntField(default=DEFAULT_DAILY_MINIMUM_GUARANTEE)
    updated_by_proposal = fields.CharField(max_length=64, null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "system_parameters"
