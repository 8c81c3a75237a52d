"""Live subscriber for new marketplace events.

Flow:
1. Connectivity check (latest block, bounded timeout); failure is reported
   immediately so the caller's backoff applies
2. Push subscription over WebSocket when the transport supports it
3. Otherwise poll: every interval, scan (last_processed, head] and advance
   the cursor to head

The returned sequence is unbounded and ends only by raising (connectivity
loss, subscription error), by the upstream stream closing, or by the caller
cancelling it.
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Callable

import structlog

from frima_onchain.models.chain import RawLog
from frima_onchain.models.events import ContractEvent
from frima_onchain.services.blockchain.decoder import EventDecoder
from frima_onchain.services.blockchain.node import NodeClient
from frima_onchain.services.exceptions import (
    BlockchainConnectionError,
    EventDecodeError,
    SubscriptionUnavailableError,
)

logger = structlog.get_logger()


class LiveSubscriber:
    """Produces an unbounded stream of new ContractEvents."""

    def __init__(
        self,
        node: NodeClient,
        decoder: EventDecoder,
        poll_interval: float = 5.0,
        health_check_timeout: float = 10.0,
    ):
        """
        Initialize live subscriber.

        Args:
            node: Node adapter
            decoder: Event decoder bound to the marketplace address
            poll_interval: Seconds between polls in fallback mode
            health_check_timeout: Timeout for the pre-subscribe connectivity check
        """
        self.node = node
        self.decoder = decoder
        self.poll_interval = poll_interval
        self.health_check_timeout = health_check_timeout
        self.mode: str | None = None

    async def check_connectivity(self) -> int:
        """Fetch the latest block number under the health-check timeout.

        Raises:
            BlockchainConnectionError: Node unreachable or too slow
        """
        try:
            async with asyncio.timeout(self.health_check_timeout):
                return await self.node.get_latest_block_number()
        except TimeoutError as e:
            raise BlockchainConnectionError(
                f"Connection test timed out after {self.health_check_timeout}s"
            ) from e

    async def subscribe(
        self, on_connected: Callable[[], None] | None = None
    ) -> AsyncIterator[ContractEvent]:
        """Yield new events until the upstream fails or closes.

        Args:
            on_connected: Called once the subscription (or polling fallback)
                is established, before any event is yielded

        Raises:
            BlockchainConnectionError: Connectivity check or stream failure
        """
        latest_block = await self.check_connectivity()

        try:
            logs = await self.node.subscribe_logs()
        except SubscriptionUnavailableError as e:
            self.mode = "polling"
            logger.warning(
                "subscriber.polling_fallback",
                error=str(e),
                start_block=latest_block,
                poll_interval=self.poll_interval,
            )
            if on_connected is not None:
                on_connected()
            async for event in self._poll(latest_block):
                yield event
            return

        self.mode = "subscription"
        logger.info("subscriber.subscribed", latest_block=latest_block)
        if on_connected is not None:
            on_connected()

        async with aclosing(logs):
            async for log in logs:
                event = self._decode(log)
                if event is not None:
                    yield event

        logger.warning("subscriber.stream_closed")

    async def _poll(self, start_block: int) -> AsyncIterator[ContractEvent]:
        last_processed = start_block

        while True:
            await asyncio.sleep(self.poll_interval)

            # Head failure means the connection is gone: end the sequence
            current_block = await self.node.get_latest_block_number()
            if current_block <= last_processed:
                continue

            from_block = last_processed + 1
            try:
                logs = await self.node.get_logs(from_block, current_block)
            except BlockchainConnectionError as e:
                # At-most-once: the gap is skipped so polling stays live
                logger.error(
                    "subscriber.poll_fetch_failed",
                    error=str(e),
                    skipped_from=from_block,
                    skipped_to=current_block,
                )
                last_processed = current_block
                continue

            if logs:
                logger.info(
                    "subscriber.poll_logs_found",
                    count=len(logs),
                    from_block=from_block,
                    to_block=current_block,
                )

            for log in logs:
                event = self._decode(log)
                if event is not None:
                    yield event

            last_processed = current_block

    def _decode(self, log: RawLog) -> ContractEvent | None:
        try:
            event = self.decoder.decode(log)
        except EventDecodeError as e:
            logger.error(
                "subscriber.decode_failed",
                error=str(e),
                missing_fields=e.missing_fields,
                tx_hash=log.tx_hash,
                block_number=log.block_number,
            )
            return None

        if event is not None:
            logger.info(
                "subscriber.event_received",
                kind=event.kind.value,
                item_id=event.item_id,
                tx_hash=event.tx_hash,
            )
        return event
