"""Ingestion orchestrator: backfill, then a supervised live subscription loop.

State machine:
    IDLE -> BACKFILLING -> SUBSCRIBING -> RECONNECTING -> SUBSCRIBING -> ... -> CANCELLED

Every decoded event is handed to the notifier one at a time, in the order the
scanner or subscriber produced it. A failed notification is logged and the
next event proceeds. The orchestrator owns its background task; ``stop()``
wakes any pending wait, cancels the task and waits for it to finish.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

from frima_onchain.models.events import ContractEvent
from frima_onchain.services.blockchain.backfill import BackfillScanner
from frima_onchain.services.blockchain.subscriber import LiveSubscriber
from frima_onchain.services.exceptions import NotificationError

logger = structlog.get_logger()

# Exponent cap; far beyond any realistic ceiling
_MAX_BACKOFF_EXPONENT = 32


class IngestionState(str, Enum):
    IDLE = "idle"
    BACKFILLING = "backfilling"
    SUBSCRIBING = "subscribing"
    RECONNECTING = "reconnecting"
    CANCELLED = "cancelled"


@dataclass
class Backoff:
    """Reconnect delay: floor * 2**failures, capped at ceiling."""

    floor: float = 5.0
    ceiling: float = 60.0
    failures: int = 0

    @property
    def delay(self) -> float:
        return min(self.floor * (2 ** min(self.failures, _MAX_BACKOFF_EXPONENT)), self.ceiling)

    def record_failure(self) -> float:
        """Return the delay to wait before the next attempt and count the failure."""
        delay = self.delay
        self.failures += 1
        return delay

    def reset(self) -> None:
        self.failures = 0


@dataclass
class IngestionStats:
    backfilled: int = 0
    delivered: int = 0
    failed: int = 0
    reconnects: int = 0
    last_error: str | None = field(default=None)


class EventSink(Protocol):
    async def notify(self, event: ContractEvent) -> Any: ...


class IngestionOrchestrator:
    """Drives backfill and the live subscription for one contract."""

    def __init__(
        self,
        scanner: BackfillScanner,
        subscriber: LiveSubscriber,
        notifier: EventSink,
        backoff: Backoff | None = None,
    ):
        self.scanner = scanner
        self.subscriber = subscriber
        self.notifier = notifier
        self.backoff = backoff or Backoff()
        self.state = IngestionState.IDLE
        self.stats = IngestionStats()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        """Start the ingestion loop as an owned background task."""
        if self._task is not None and not self._task.done():
            return self._task

        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="ingestion-orchestrator")
        self._task.add_done_callback(self._on_task_done)
        logger.info("ingestion.started")
        return self._task

    async def stop(self) -> None:
        """Signal shutdown, cancel the task and wait for it to finish."""
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self.state = IngestionState.CANCELLED
        logger.info("ingestion.stopped", **self.status())

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("ingestion.cancelled")
            return

        exc = task.exception()
        if exc:
            logger.error(
                "ingestion.crashed",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "mode": self.subscriber.mode,
            "backfilled": self.stats.backfilled,
            "delivered": self.stats.delivered,
            "failed": self.stats.failed,
            "reconnects": self.stats.reconnects,
            "next_backoff_seconds": self.backoff.delay,
        }

    async def run(self) -> None:
        try:
            await self.backfill()
            if not self._stop_event.is_set():
                await self.follow()
        finally:
            self.state = IngestionState.CANCELLED

    async def backfill(self) -> None:
        """Catch up over the lookback window. Failure does not block live ingestion."""
        self.state = IngestionState.BACKFILLING
        logger.info("ingestion.backfill_started", window_blocks=self.scanner.window_blocks)

        count = 0
        try:
            async for event in self.scanner.scan():
                if self._stop_event.is_set():
                    return
                await self.dispatch(event)
                count += 1
        except Exception as e:
            self.stats.last_error = str(e)
            logger.error(
                "ingestion.backfill_failed",
                error=str(e),
                error_type=type(e).__name__,
                processed=count,
                message="Backfill failed - continuing with live subscription",
            )
            return
        finally:
            self.stats.backfilled += count

        logger.info("ingestion.backfill_complete", processed=count)

    async def follow(self) -> None:
        """Subscribe, and reconnect with exponential backoff whenever the stream ends."""
        while not self._stop_event.is_set():
            self.state = IngestionState.SUBSCRIBING

            try:
                async for event in self.subscriber.subscribe(on_connected=self._on_connected):
                    await self.dispatch(event)
                logger.warning("ingestion.stream_ended")
            except Exception as e:
                self.stats.last_error = str(e)
                logger.error(
                    "ingestion.stream_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            if self._stop_event.is_set():
                break

            delay = self.backoff.record_failure()
            self.state = IngestionState.RECONNECTING
            self.stats.reconnects += 1
            logger.warning(
                "ingestion.reconnecting",
                retry_in_seconds=delay,
                consecutive_failures=self.backoff.failures,
            )

            if await self._wait_for_stop(delay):
                break

    def _on_connected(self) -> None:
        self.backoff.reset()
        logger.info("ingestion.connected", mode=self.subscriber.mode)

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; return True early if shutdown was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def dispatch(self, event: ContractEvent) -> bool:
        """Notify the backend about one event; never raises for delivery failures."""
        try:
            await self.notifier.notify(event)
        except NotificationError as e:
            self.stats.failed += 1
            logger.error(
                "ingestion.notify_failed",
                kind=event.kind.value,
                item_id=event.item_id,
                tx_hash=event.tx_hash,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self.stats.delivered += 1
        logger.info(
            "ingestion.event_relayed",
            kind=event.kind.value,
            item_id=event.item_id,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
        )
        return True
