"""pytest fixtures for frima-onchain tests.

Provides:
- FakeNode: In-memory NodeClient (logs, head, subscription, transactions, items)
- make_log: Builds ABI-encoded RawLogs for marketplace events
- event_fields: Default ABI field values per event kind
- wait_until: Polls a predicate while background tasks run
"""

import asyncio
import os

# Settings validation is skipped in tests; must be set before importing the app
os.environ["APP_ENV"] = "test"

import httpx  # noqa: E402
import pytest  # noqa: E402
from eth_abi import encode as abi_encode  # noqa: E402
from eth_utils import to_checksum_address  # noqa: E402

from frima_onchain.models.chain import RawLog  # noqa: E402
from frima_onchain.models.events import EventKind  # noqa: E402
from frima_onchain.services.blockchain.decoder import EventDecoder  # noqa: E402
from frima_onchain.services.exceptions import (  # noqa: E402
    BlockchainConnectionError,
    ContractCallError,
    SubscriptionUnavailableError,
)

CONTRACT_ADDRESS = to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
SELLER = to_checksum_address("0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
BUYER = to_checksum_address("0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc")
COLLECT_ADDRESS = to_checksum_address("0x90f79bf6eb2c4f870365e785982e1f101e93b906")
OTHER_ADDRESS = to_checksum_address("0x15d34aaf54267db7d7c367839aaf71a00a2c6a65")


def tx_hash_for(n: int) -> str:
    """Deterministic non-zero 32-byte transaction hash."""
    return "0x" + f"{n:064x}"


def event_fields(kind: EventKind, **overrides) -> dict:
    """Default ABI parameter values for an event kind (keys are ABI names)."""
    defaults = {
        EventKind.ITEM_LISTED: {
            "itemId": 7,
            "tokenId": 3,
            "seller": SELLER,
            "title": "Widget",
            "price": 10**15,
            "explanation": "A very useful widget",
            "imageUrl": "https://images.example.com/widget.png",
            "uid": "user-123",
            "createdAt": 1_700_000_000,
            "category": "gadgets",
        },
        EventKind.ITEM_PURCHASED: {
            "itemId": 7,
            "buyer": BUYER,
            "price": 10**15,
            "timestamp": 1_700_000_100,
            "tokenId": 3,
        },
        EventKind.ITEM_UPDATED: {
            "itemId": 7,
            "title": "Widget v2",
            "price": 2 * 10**15,
            "explanation": "Now with more widget",
            "imageUrl": "https://images.example.com/widget2.png",
            "category": "gadgets",
            "updatedAt": 1_700_000_200,
        },
        EventKind.ITEM_CANCELLED: {
            "itemId": 7,
            "seller": SELLER,
            "timestamp": 1_700_000_300,
        },
        EventKind.RECEIPT_CONFIRMED: {
            "itemId": 7,
            "buyer": BUYER,
            "seller": SELLER,
            "price": 10**15,
            "timestamp": 1_700_000_400,
        },
    }[kind]
    return {**defaults, **overrides}


def make_log(
    decoder: EventDecoder,
    kind: EventKind,
    fields: dict | None = None,
    *,
    block_number: int = 90,
    log_index: int = 0,
    tx_hash: str | None = None,
    address: str = CONTRACT_ADDRESS,
) -> RawLog:
    """ABI-encode a marketplace event into a RawLog."""
    fields = fields if fields is not None else event_fields(kind)
    schema = decoder.schema_for(kind)

    topics = [schema.topic]
    topics.extend(abi_encode([abi_type], [fields[name]]) for name, abi_type in schema.indexed)
    data = abi_encode(
        [abi_type for _, abi_type in schema.data],
        [fields[name] for name, _ in schema.data],
    )

    return RawLog(
        address=address,
        topics=tuple(topics),
        data=data,
        tx_hash=tx_hash or tx_hash_for(block_number * 1000 + log_index + 1),
        block_number=block_number,
        log_index=log_index,
    )


class FakeNode:
    """In-memory NodeClient.

    - ``heads`` is consumed one value per head lookup, then ``head`` repeats
    - ``get_logs_errors`` is consumed one error per get_logs call
    - ``subscription_logs=None`` behaves like an HTTP provider (no push);
      otherwise each subscribe streams the current list once and clears it
    """

    def __init__(self, contract_address: str | None = CONTRACT_ADDRESS):
        self.contract_address = contract_address
        self.head = 100
        self.heads: list[int] = []
        self.head_error: Exception | None = None
        self.head_delay = 0.0
        self.logs: list[RawLog] = []
        self.get_logs_errors: list[Exception] = []
        self.get_logs_calls: list[tuple[int, int]] = []
        self.subscription_logs: list[RawLog] | None = None
        self.subscribe_calls = 0
        self.transactions: dict = {}
        self.receipts: dict = {}
        self.items: dict = {}
        self.transaction_calls: list[str] = []
        self.receipt_calls: list[str] = []

    async def get_latest_block_number(self) -> int:
        if self.head_delay:
            await asyncio.sleep(self.head_delay)
        if self.head_error is not None:
            raise self.head_error
        if self.heads:
            self.head = self.heads.pop(0)
        return self.head

    async def get_logs(self, from_block: int, to_block: int) -> list[RawLog]:
        self.get_logs_calls.append((from_block, to_block))
        if self.get_logs_errors:
            raise self.get_logs_errors.pop(0)
        return [log for log in self.logs if from_block <= log.block_number <= to_block]

    async def subscribe_logs(self):
        self.subscribe_calls += 1
        if self.subscription_logs is None:
            raise SubscriptionUnavailableError("AsyncHTTPProvider does not support subscriptions")

        logs, self.subscription_logs = self.subscription_logs, []

        async def stream():
            for log in logs:
                yield log

        return stream()

    async def get_transaction(self, tx_hash: str):
        self.transaction_calls.append(tx_hash)
        return self.transactions.get(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str):
        self.receipt_calls.append(tx_hash)
        return self.receipts.get(tx_hash)

    async def get_item(self, item_id: int):
        if self.head_error is not None:
            raise BlockchainConnectionError(str(self.head_error))
        if item_id not in self.items:
            raise ContractCallError(f"getItem({item_id}) failed: execution reverted")
        return self.items[item_id]


class RecordingBackend:
    """httpx MockTransport handler recording notification requests."""

    def __init__(self, statuses: list[int] | None = None, default_status: int = 200):
        self.statuses = list(statuses or [])
        self.default_status = default_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = self.statuses.pop(0) if self.statuses else self.default_status
        return httpx.Response(code, json={"ok": 200 <= code < 300})

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Wait until ``predicate()`` is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def decoder() -> EventDecoder:
    return EventDecoder(CONTRACT_ADDRESS)


@pytest.fixture
def fake_node() -> FakeNode:
    return FakeNode()
