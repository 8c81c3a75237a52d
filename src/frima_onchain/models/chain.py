"""Chain-level records: raw logs, transactions, receipts and verification results."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from eth_utils import to_checksum_address
from hexbytes import HexBytes


def _to_bytes(value: Any) -> bytes:
    """Normalize HexBytes / bytes / 0x-hex strings to plain bytes."""
    if isinstance(value, bytes):
        return bytes(value)
    return bytes(HexBytes(value))


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + _to_bytes(value).hex()


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass(frozen=True)
class RawLog:
    """A log entry as returned by eth_getLogs or a logs subscription.

    topics[0] is the event signature; topics[1..n] are indexed fields.
    """

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    tx_hash: str
    block_number: int
    log_index: int

    @classmethod
    def from_receipt(cls, log: Mapping[str, Any]) -> "RawLog":
        """Build from a web3 LogReceipt (AttributeDict) or a raw JSON-RPC log dict."""
        return cls(
            address=to_checksum_address(log["address"]),
            topics=tuple(_to_bytes(topic) for topic in log.get("topics", [])),
            data=_to_bytes(log.get("data", b"")),
            tx_hash=_to_hex(log["transactionHash"]),
            block_number=_to_int(log["blockNumber"]),
            log_index=_to_int(log.get("logIndex", 0)),
        )


@dataclass(frozen=True)
class TransactionInfo:
    """The fields of a transaction the verifier inspects."""

    tx_hash: str
    to: str | None
    value: int
    block_number: int | None

    @property
    def is_pending(self) -> bool:
        return self.block_number is None


@dataclass(frozen=True)
class ReceiptInfo:
    """The fields of a transaction receipt the verifier inspects."""

    status: int
    block_number: int
    gas_used: int


class VerificationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationResult:
    """Point-in-time verdict for a transaction. Never cached."""

    tx_hash: str
    status: VerificationStatus
    success: bool
    is_contract_call: bool
    block_number: int | None = None
    gas_used: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "block_number": self.block_number,
            "gas_used": self.gas_used,
            "success": self.success,
            "is_contract_call": self.is_contract_call,
        }


class ItemStatus(int, Enum):
    LISTED = 0
    PURCHASED = 1
    COMPLETED = 2
    CANCELLED = 3


@dataclass(frozen=True)
class ContractItem:
    """Current on-chain state of a marketplace item (getItem struct)."""

    item_id: int
    token_id: int
    title: str
    price: int
    explanation: str
    image_url: str
    uid: str
    created_at: int
    updated_at: int
    is_purchased: bool
    category: str
    seller: str
    buyer: str
    status: int

    @classmethod
    def from_tuple(cls, raw: tuple | list) -> "ContractItem":
        """Build from the positional tuple returned by ``getItem(...).call()``."""
        (
            item_id,
            token_id,
            title,
            price,
            explanation,
            image_url,
            uid,
            created_at,
            updated_at,
            is_purchased,
            category,
            seller,
            buyer,
            status,
        ) = raw
        return cls(
            item_id=item_id,
            token_id=token_id,
            title=title,
            price=price,
            explanation=explanation,
            image_url=image_url,
            uid=uid,
            created_at=created_at,
            updated_at=updated_at,
            is_purchased=is_purchased,
            category=category,
            seller=to_checksum_address(seller),
            buyer=to_checksum_address(buyer),
            status=status,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation; price is a decimal string."""
        return {
            "item_id": self.item_id,
            "token_id": self.token_id,
            "title": self.title,
            "price_wei": str(self.price),
            "explanation": self.explanation,
            "image_url": self.image_url,
            "uid": self.uid,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_purchased": self.is_purchased,
            "category": self.category,
            "seller": self.seller,
            "buyer": self.buyer,
            "status": self.status,
        }
