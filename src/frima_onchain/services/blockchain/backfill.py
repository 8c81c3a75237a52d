"""Backfill scanner for historical marketplace events.

Each ``scan`` call is independent: it resolves the block range, fetches all
contract logs in that range with a single eth_getLogs call, and yields the
decoded events in node order (block number, then log index).
"""

from dataclasses import dataclass
from typing import AsyncIterator

import structlog

from frima_onchain.models.events import ContractEvent
from frima_onchain.services.blockchain.decoder import EventDecoder
from frima_onchain.services.blockchain.node import NodeClient
from frima_onchain.services.exceptions import EventDecodeError

logger = structlog.get_logger()

DEFAULT_WINDOW_BLOCKS = 10000  # roughly 1.4 days on Sepolia


@dataclass
class ScanStats:
    """Counters for the most recent scan."""

    from_block: int = 0
    to_block: int = 0
    logs: int = 0
    events: int = 0
    skipped: int = 0


class BackfillScanner:
    """Enumerates historical events over a bounded block range."""

    def __init__(
        self,
        node: NodeClient,
        decoder: EventDecoder,
        window_blocks: int = DEFAULT_WINDOW_BLOCKS,
    ):
        self.node = node
        self.decoder = decoder
        self.window_blocks = window_blocks
        self.last_stats = ScanStats()

    async def resolve_range(self, from_block: int = 0, to_block: int | None = None) -> tuple[int, int]:
        """Resolve the inclusive block range for a scan.

        ``to_block=None`` means the current head; ``from_block=0`` means
        ``head - window`` (clamped to genesis) instead of a full-history scan.
        """
        head = None
        if to_block is None or from_block == 0:
            head = await self.node.get_latest_block_number()

        actual_to = head if to_block is None else to_block
        actual_from = from_block
        if from_block == 0:
            actual_from = max(head - self.window_blocks, 0)

        return actual_from, actual_to

    async def scan(self, from_block: int = 0, to_block: int | None = None) -> AsyncIterator[ContractEvent]:
        """Yield decoded events in the resolved range.

        Raises:
            BlockchainConnectionError: Head or log fetch failed
        """
        actual_from, actual_to = await self.resolve_range(from_block, to_block)
        stats = ScanStats(from_block=actual_from, to_block=actual_to)
        self.last_stats = stats

        if actual_from > actual_to:
            logger.info("backfill.empty_range", from_block=actual_from, to_block=actual_to)
            return

        logs = await self.node.get_logs(actual_from, actual_to)
        stats.logs = len(logs)

        logger.info(
            "backfill.logs_fetched",
            count=len(logs),
            from_block=actual_from,
            to_block=actual_to,
        )

        for log in logs:
            try:
                event = self.decoder.decode(log)
            except EventDecodeError as e:
                stats.skipped += 1
                logger.error(
                    "backfill.decode_failed",
                    error=str(e),
                    missing_fields=e.missing_fields,
                    tx_hash=log.tx_hash,
                    block_number=log.block_number,
                    log_index=log.log_index,
                )
                continue

            if event is None:
                stats.skipped += 1
                continue

            stats.events += 1
            logger.debug(
                "backfill.event",
                kind=event.kind.value,
                item_id=event.item_id,
                tx_hash=event.tx_hash,
            )
            yield event

        logger.info(
            "backfill.complete",
            events=stats.events,
            skipped=stats.skipped,
            from_block=actual_from,
            to_block=actual_to,
        )
