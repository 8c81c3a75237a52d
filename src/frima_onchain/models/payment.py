"""PaymentOrder - minimal order information needed to settle a purchase in ETH."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PAYMENT_ERROR = "PAYMENT_ERROR"


class PaymentOrder(BaseModel):
    """Payment order returned to the frontend."""

    order_id: str
    product_id: str
    product_name: str = ""
    price_yen: int
    amount_eth: str
    amount_wei: str = Field(description="Payment amount in wei as a decimal string")
    payment_addr: str
    buyer_wallet: str = ""
    status: OrderStatus
    tx_hash: str = ""
    created_at: datetime | None = None
