"""ContractEvent - typed marketplace events decoded from contract logs."""

from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    """Marketplace events emitted by the FrimaMarketplace contract."""

    ITEM_LISTED = "ItemListed"
    ITEM_PURCHASED = "ItemPurchased"
    ITEM_UPDATED = "ItemUpdated"
    ITEM_CANCELLED = "ItemCancelled"
    RECEIPT_CONFIRMED = "ReceiptConfirmed"


@dataclass(frozen=True)
class ContractEvent:
    """A decoded marketplace event.

    ``kind`` determines which optional fields carry meaning; the decoder never
    leaves a field required by the kind unset.
    """

    kind: EventKind
    tx_hash: str
    block_number: int
    log_index: int
    item_id: int
    token_id: int | None = None
    title: str | None = None
    price: int | None = None  # wei
    explanation: str | None = None
    image_url: str | None = None
    uid: str | None = None
    category: str | None = None
    seller: str | None = None
    buyer: str | None = None
    created_at: int | None = None
    updated_at: int | None = None
    timestamp: int | None = None

    @property
    def idempotency_key(self) -> tuple[str, int, str]:
        """Key downstream consumers deduplicate on."""
        return (self.kind.value, self.item_id, self.tx_hash)

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)
