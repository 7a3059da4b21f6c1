from enum import Enum
from tortoise import fields, models
import uuid


class EscrowStatus(str, Enum):
    AUTHORIZED = "authorized"
    SETTLED = "settled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class EscrowRecord(models.Model):
    """
    Funds held for one order and, once settled, the payout split computed for it.
    Owned by the settlement engine.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.OneToOneField("models.Order", related_name="escrow")
    payment_intent_id = fields.CharField(max_length=64)
    amount = fields.IntField()
    currency = fields.CharField(max_length=3, default="INR")
    status = fields.CharEnumField(EscrowStatus, max_length=24, default=EscrowStatus.AUTHORIZED)

    # Settlement inputs, as they were when the split was computed
    subtotal = fields.IntField(null=True)
    delivery_fee = fields.IntField(null=True)
    tip_amount = fields.IntField(null=True)
    pool_rate = fields.IntField(null=True)
    infra_rate = fields.IntField(null=True)

    # Settlement outputs
    pool_contribution = fields.IntField(null=True)
    infra_fee = fields.IntField(null=True)
    worker_delivery_pay = fields.IntField(null=True)
    worker_payout = fields.IntField(null=True)
    restaurant_payout = fields.IntField(null=True)
    worker_id = fields.CharField(max_length=64, null=True)

    restaurant_transfer_id = fields.CharField(max_length=64, null=True)
    worker_transfer_id = fields.CharField(max_length=64, null=True)
    refund_id = fields.CharField(max_length=64, null=True)
    refund_amount = fields.IntField(null=True)
    settled_at = fields.DatetimeField(null=True)
    # False until the post-commit settlement events are in the ledger
    ledger_synced = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "escrow_records"
        indexes = [
            ("status", "ledger_synced"),  # Reconciler scan
        ]
