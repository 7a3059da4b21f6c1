from enum import Enum
from tortoise import fields, models
import uuid


class DisputeType(str, Enum):
    QUALITY = "quality"
    MISSING_ITEMS = "missing_items"
    WRONG_ORDER = "wrong_order"
    DELIVERY_ISSUE = "delivery_issue"
    PAYMENT = "payment"
    OTHER = "other"


class DisputeResolution(str, Enum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    NO_REFUND = "no_refund"
    REDELIVERY = "redelivery"


class Dispute(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="disputes")
    raised_by = fields.CharField(max_length=64)
    raised_by_role = fields.CharField(max_length=20)
    dispute_type = fields.CharEnumField(DisputeType, max_length=32)
    description = fields.TextField()
    evidence = fields.JSONField(default=list)
    resolution = fields.CharEnumField(DisputeResolution, max_length=32, null=True)
    resolved_by = fields.CharField(max_length=64, null=True)
    refund_amount = fields.IntField(null=True)
    notes = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    resolved_at = fields.DatetimeField(null=True)

    class Meta:
        table = "disputes"
        indexes = [
            ("order_id",),
        ]
