"""Node adapter: the narrow I/O boundary between the service and the RPC node.

Everything the ingestion pipeline and the verifier need from the chain goes
through ``NodeClient``:
1. Latest block number (connectivity check and range resolution)
2. Address-filtered logs over an inclusive block range
3. Live log subscription (WebSocket transports only)
4. Transaction / receipt reads and the marketplace ``getItem`` view

Failures surface as ``BlockchainConnectionError`` / ``SubscriptionUnavailableError``;
nothing is swallowed here.
"""

import asyncio
from typing import AsyncIterator, Protocol

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TransactionNotFound
from web3.providers.persistent import PersistentConnectionProvider

from frima_onchain.abi import get_contract_abi
from frima_onchain.core.config import Settings
from frima_onchain.models.chain import ContractItem, RawLog, ReceiptInfo, TransactionInfo
from frima_onchain.services.exceptions import (
    BlockchainConnectionError,
    ContractCallError,
    SubscriptionUnavailableError,
)

logger = structlog.get_logger()


class NodeClient(Protocol):
    """Read-only node operations used by the pipeline and the verifier."""

    contract_address: str | None

    async def get_latest_block_number(self) -> int: ...

    async def get_logs(self, from_block: int, to_block: int) -> list[RawLog]: ...

    async def subscribe_logs(self) -> AsyncIterator[RawLog]: ...

    async def get_transaction(self, tx_hash: str) -> TransactionInfo | None: ...

    async def get_transaction_receipt(self, tx_hash: str) -> ReceiptInfo | None: ...

    async def get_item(self, item_id: int) -> ContractItem: ...


class Web3NodeClient:
    """NodeClient backed by an AsyncWeb3 instance (WebSocket or HTTP provider)."""

    def __init__(
        self, w3: AsyncWeb3, contract_address: str | None = None, request_timeout: float = 10.0
    ):
        """
        Initialize node client.

        Args:
            w3: AsyncWeb3 instance (WebSocket provider enables live subscriptions)
            contract_address: FrimaMarketplace contract address; log and item
                reads are unavailable without it
            request_timeout: Upper bound in seconds for every RPC call
        """
        self.w3 = w3
        self.contract_address = (
            AsyncWeb3.to_checksum_address(contract_address) if contract_address else None
        )
        self.request_timeout = request_timeout
        self._reconnect_lock = asyncio.Lock()
        self.contract = (
            self.w3.eth.contract(address=self.contract_address, abi=get_contract_abi())
            if self.contract_address
            else None
        )

    @property
    def supports_subscriptions(self) -> bool:
        return isinstance(self.w3.provider, PersistentConnectionProvider)

    async def _ensure_connected(self) -> None:
        provider = self.w3.provider
        if not isinstance(provider, PersistentConnectionProvider):
            return
        # One reconnect at a time; each connect() starts its own message listener
        async with self._reconnect_lock:
            if not await provider.is_connected():
                logger.info("node.reconnecting_websocket")
                await provider.connect()

    async def get_latest_block_number(self) -> int:
        try:
            async with asyncio.timeout(self.request_timeout):
                await self._ensure_connected()
                block = await self.w3.eth.get_block("latest")
        except Exception as e:
            raise BlockchainConnectionError(f"Failed to get latest block: {e}") from e
        return int(block["number"])

    async def get_logs(self, from_block: int, to_block: int) -> list[RawLog]:
        try:
            async with asyncio.timeout(self.request_timeout):
                logs = await self.w3.eth.get_logs(
                    {
                        "fromBlock": from_block,
                        "toBlock": to_block,
                        "address": self.contract_address,
                    }
                )
        except Exception as e:
            raise BlockchainConnectionError(
                f"Failed to fetch logs for blocks {from_block}-{to_block}: {e}"
            ) from e
        return [RawLog.from_receipt(log) for log in logs]

    async def subscribe_logs(self) -> AsyncIterator[RawLog]:
        """Open an address-filtered ``logs`` subscription.

        Raises:
            SubscriptionUnavailableError: Transport cannot push, or eth_subscribe failed
        """
        if not self.supports_subscriptions:
            raise SubscriptionUnavailableError(
                f"{type(self.w3.provider).__name__} does not support subscriptions"
            )

        try:
            async with asyncio.timeout(self.request_timeout):
                await self._ensure_connected()
                subscription_id = await self.w3.eth.subscribe(
                    "logs", {"address": self.contract_address}
                )
        except Exception as e:
            raise SubscriptionUnavailableError(f"eth_subscribe failed: {e}") from e

        logger.info("node.subscribed", subscription_id=subscription_id)
        return self._iter_subscription(subscription_id)

    async def _iter_subscription(self, subscription_id: str) -> AsyncIterator[RawLog]:
        stream = self.w3.socket.process_subscriptions()
        try:
            while True:
                try:
                    message = await anext(stream)
                except StopAsyncIteration:
                    logger.warning("node.subscription_closed", subscription_id=subscription_id)
                    return
                except Exception as e:
                    raise BlockchainConnectionError(f"Subscription stream failed: {e}") from e

                if message.get("subscription") != subscription_id:
                    continue
                yield RawLog.from_receipt(message["result"])
        finally:
            await self._unsubscribe(subscription_id)

    async def _unsubscribe(self, subscription_id: str) -> None:
        try:
            async with asyncio.timeout(self.request_timeout):
                await self.w3.eth.unsubscribe(subscription_id)
        except Exception as e:
            # Connection is usually already gone at this point
            logger.debug("node.unsubscribe_failed", subscription_id=subscription_id, error=str(e))

    async def get_transaction(self, tx_hash: str) -> TransactionInfo | None:
        try:
            async with asyncio.timeout(self.request_timeout):
                tx = await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise BlockchainConnectionError(f"Failed to get transaction {tx_hash}: {e}") from e

        to = tx.get("to")
        return TransactionInfo(
            tx_hash=tx_hash,
            to=AsyncWeb3.to_checksum_address(to) if to else None,
            value=int(tx.get("value", 0)),
            block_number=tx.get("blockNumber"),
        )

    async def get_transaction_receipt(self, tx_hash: str) -> ReceiptInfo | None:
        try:
            async with asyncio.timeout(self.request_timeout):
                receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise BlockchainConnectionError(f"Failed to get receipt for {tx_hash}: {e}") from e

        return ReceiptInfo(
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
        )

    async def get_item(self, item_id: int) -> ContractItem:
        if self.contract is None:
            raise ContractCallError("No marketplace contract configured")

        try:
            async with asyncio.timeout(self.request_timeout):
                raw = await self.contract.functions.getItem(item_id).call()
        except (BadFunctionCallOutput, ContractLogicError) as e:
            logger.error(
                "node.get_item_failed",
                item_id=item_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ContractCallError(f"getItem({item_id}) failed: {e}") from e
        except Exception as e:
            raise BlockchainConnectionError(f"Failed to call getItem({item_id}): {e}") from e

        return ContractItem.from_tuple(raw)


async def connect_node(settings: Settings) -> AsyncWeb3:
    """Connect to the node, preferring WebSocket for live subscriptions.

    Falls back to HTTP when the WebSocket handshake fails; the live subscriber
    then runs in polling mode.
    """
    ws_url = settings.node_ws_url
    if ws_url.startswith(("ws://", "wss://")):
        w3 = AsyncWeb3(WebSocketProvider(ws_url))
        try:
            async with asyncio.timeout(settings.health_check_timeout_seconds):
                await w3.provider.connect()
            logger.info("node.connected", transport="websocket", network=settings.network)
            return w3
        except Exception as e:
            logger.warning(
                "node.websocket_failed",
                error=str(e),
                error_type=type(e).__name__,
                message="Using HTTP provider, real-time events fall back to polling",
            )

    w3 = AsyncWeb3(AsyncHTTPProvider(settings.node_http_url))
    logger.info("node.connected", transport="http", network=settings.network)
    return w3


async def disconnect_node(w3: AsyncWeb3) -> None:
    if isinstance(w3.provider, PersistentConnectionProvider):
        await w3.provider.disconnect()
        logger.info("node.disconnected")
