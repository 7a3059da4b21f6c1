from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    CREATED = "created"
    PAYMENT_HELD = "payment_held"
    RESTAURANT_ACCEPTED = "restaurant_accepted"
    RESTAURANT_REJECTED = "restaurant_rejected"
    POSTED_TO_BOARD = "posted_to_board"
    WORKER_CLAIMED = "worker_claimed"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    DISPUTE_RESOLVED = "dispute_resolved"


# Every status mutation is checked against this table first.
ORDER_STATUS_TRANSITIONS = {
    OrderStatus.CREATED: {OrderStatus.PAYMENT_HELD, OrderStatus.CANCELLED},
    OrderStatus.PAYMENT_HELD: {
        OrderStatus.RESTAURANT_ACCEPTED,
        OrderStatus.RESTAURANT_REJECTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.RESTAURANT_ACCEPTED: {OrderStatus.POSTED_TO_BOARD, OrderStatus.CANCELLED},
    OrderStatus.RESTAURANT_REJECTED: {OrderStatus.CANCELLED},
    OrderStatus.POSTED_TO_BOARD: {OrderStatus.WORKER_CLAIMED, OrderStatus.CANCELLED},
    OrderStatus.WORKER_CLAIMED: {
        OrderStatus.PICKED_UP,
        OrderStatus.POSTED_TO_BOARD,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PICKED_UP: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.SETTLED, OrderStatus.DISPUTED},
    OrderStatus.SETTLED: {OrderStatus.DISPUTED},
    OrderStatus.DISPUTED: {OrderStatus.DISPUTE_RESOLVED},
    OrderStatus.DISPUTE_RESOLVED: {OrderStatus.SETTLED},
    OrderStatus.CANCELLED: set(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in ORDER_STATUS_TRANSITIONS.get(OrderStatus(current), set())


class Restaurant(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    owner_id = fields.CharField(max_length=64, unique=True)  # principal that operates the restaurant
    name = fields.CharField(max_length=255)
    lat = fields.FloatField()
    lng = fields.FloatField()
    is_open = fields.BooleanField(default=True)
    average_prep_time = fields.IntField(default=20)  # minutes
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "restaurants"
        indexes = [
            ("is_open",),
        ]


class MenuItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    restaurant = fields.ForeignKeyField("models.Restaurant", related_name="menu_items")
    name = fields.CharField(max_length=255)
    price = fields.IntField()  # paise
    is_available = fields.BooleanField(default=True)

    class Meta:
        table = "menu_items"
        indexes = [
            ("restaurant_id", "is_available"),  # Composite: restaurant's orderable items
        ]


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    customer_id = fields.CharField(max_length=64)
    restaurant = fields.ForeignKeyField("models.Restaurant", related_name="orders")
    worker_id = fields.CharField(max_length=64, null=True)
    items = fields.JSONField()  # snapshot: [{menu_item_id, name, quantity, unit_price}]
    subtotal = fields.IntField()
    delivery_fee = fields.IntField()
    tip = fields.IntField(default=0)
    total = fields.IntField()
    status = fields.CharEnumField(OrderStatus, max_length=32, default=OrderStatus.CREATED)

    delivery_street = fields.CharField(max_length=255)
    delivery_city = fields.CharField(max_length=100)
    delivery_postal_code = fields.CharField(max_length=20)
    delivery_lat = fields.FloatField()
    delivery_lng = fields.FloatField()
    estimated_prep_time = fields.IntField(null=True)

    restaurant_accepted_at = fields.DatetimeField(null=True)
    worker_claimed_at = fields.DatetimeField(null=True)
    picked_up_at = fields.DatetimeField(null=True)
    delivered_at = fields.DatetimeField(null=True)
    settled_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    cancellation_reason = fields.TextField(null=True)
    proof_photo_url = fields.TextField(null=True)
    signature_confirmation = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("customer_id",),            # Customer order history
            ("restaurant_id",),          # Restaurant order queries
            ("worker_id",),              # Worker deliveries
            ("status",),                 # Status-based filtering
            ("status", "created_at"),    # Composite: status with time
        ]
