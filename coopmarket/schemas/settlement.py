from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class SettlementSplit(BaseModel):
    """Payout breakdown for one order. All amounts in paise."""
    subtotal: int
    delivery_fee: int
    tip: int
    pool_rate: int
    infra_rate: int
    pool_contribution: int
    infra_fee: int
    worker_delivery_pay: int
    worker_payout: int
    restaurant_payout: int


class FeeTransparency(BaseModel):
    """What the customer is shown at checkout: where every rupee of the order goes."""
    restaurant_receives: int
    worker_receives: int
    coop_infra_fee: int
    pool_contribution: int


class PoolStateResponse(BaseModel):
    balance: int
    total_contributions: int
    total_topups: int


class DailySettleRequest(BaseModel):
    date: date


class WorkerTopup(BaseModel):
    worker_id: str
    amount: int


class DailySettleResult(BaseModel):
    date: date
    topups: List[WorkerTopup]
    pool_balance_after: int


class WorkerEarningsResponse(BaseModel):
    worker_id: str
    date: date
    deliveries_completed: int
    delivery_fees: int
    tips: int
    pool_topup: int
    total_earnings: int
    is_settled: bool
    currency: Optional[str] = "INR"


class EscrowResponse(BaseModel):
    order_id: str
    payment_intent_id: str
    amount: int
    currency: str
    status: str
    split: Optional[SettlementSplit] = None
    restaurant_transfer_id: Optional[str] = None
    worker_transfer_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[int] = None
    settled_at: Optional[datetime] = None
