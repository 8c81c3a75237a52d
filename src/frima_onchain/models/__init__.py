"""Domain records for the Frima on-chain service."""

from frima_onchain.models.chain import (
    ContractItem,
    ItemStatus,
    RawLog,
    ReceiptInfo,
    TransactionInfo,
    VerificationResult,
    VerificationStatus,
)
from frima_onchain.models.events import ContractEvent, EventKind
from frima_onchain.models.payment import OrderStatus, PaymentOrder

__all__ = [
    "ContractEvent",
    "ContractItem",
    "EventKind",
    "ItemStatus",
    "OrderStatus",
    "PaymentOrder",
    "RawLog",
    "ReceiptInfo",
    "TransactionInfo",
    "VerificationResult",
    "VerificationStatus",
]
