# coopmarket/models/__init__.py
from .order import Order, OrderStatus, Restaurant, MenuItem, ORDER_STATUS_TRANSITIONS, can_transition
from .escrow import EscrowRecord, EscrowStatus
from .pool import PoolState, PoolLedgerEntry, WorkerDailyEarnings
from .event_log import EventLog
from .dispute import Dispute, DisputeType, DisputeResolution
from .parameters import SystemParameters

# Export all models
__all__ = [
    "Dispute",
    "DisputeResolution",
    "DisputeType",
    "EscrowRecord",
    "EscrowStatus",
    "EventLog",
    "MenuItem",
    "ORDER_STATUS_TRANSITIONS",
    "Order",
    "OrderStatus",
    "PoolLedgerEntry",
    "PoolState",
    "Restaurant",
    "SystemParameters",
    "WorkerDailyEarnings",
    "can_transition",
]
