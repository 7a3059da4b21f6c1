from tortoise import fields, models


POOL_STATE_ID = 1


class PoolState(models.Model):
    """Singleton row holding the worker guarantee pool balance."""
    id = fields.IntField(primary_key=True, generated=False, default=POOL_STATE_ID)
    balance = fields.BigIntField(default=0)
    total_contributions = fields.BigIntField(default=0)
    total_topups = fields.BigIntField(default=0)
    last_updated = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "pool_state"


class PoolLedgerEntry(models.Model):
    """Immutable financial line for the pool. Negative amounts are payouts."""
    id = fields.IntField(primary_key=True)
    transaction_type = fields.CharField(max_length=50)  # 'contribution' | 'daily_topup'
    amount = fields.BigIntField()
    balance_after = fields.BigIntField()
    order_id = fields.CharField(max_length=64, null=True)
    worker_id = fields.CharField(max_length=64, null=True)
    description = fields.TextField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "pool_ledger"
        indexes = [
            ("transaction_type",),
            ("order_id",),
        ]


class WorkerDailyEarnings(models.Model):
    id = fields.IntField(primary_key=True)
    worker_id = fields.CharField(max_length=64)
    date = fields.DateField()
    deliveries_completed = fields.IntField(default=0)
    delivery_fees = fields.IntField(default=0)
    tips = fields.IntField(default=0)
    pool_topup = fields.IntField(default=0)
    total_earnings = fields.IntField(default=0)
    is_settled = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "worker_daily_earnings"
        unique_together = (("worker_id", "date"),)
        indexes = [
            ("date", "is_settled"),
        ]
