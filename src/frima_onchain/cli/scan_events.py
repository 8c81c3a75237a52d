"""CLI command for replaying marketplace events from recent blockchain history.

Runs one backfill pass over a block range and relays every decoded event to
the backend, exactly like the service does at startup. Useful after downtime
longer than the startup lookback window.

Usage:
    python -m frima_onchain.cli.scan_events [OPTIONS]

Examples:
    # Replay the default lookback window (last BACKFILL_WINDOW_BLOCKS blocks)
    python -m frima_onchain.cli.scan_events

    # Specific block range
    python -m frima_onchain.cli.scan_events --from-block 7100000 --to-block 7105000

    # Dry run (decode and log, no notifications)
    python -m frima_onchain.cli.scan_events --from-block 7100000 --dry-run

    # Verbose logging
    python -m frima_onchain.cli.scan_events -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from frima_onchain.core.config import Settings, configure_logging
from frima_onchain.services.blockchain.backfill import BackfillScanner
from frima_onchain.services.blockchain.decoder import EventDecoder
from frima_onchain.services.blockchain.node import (
    NodeClient,
    Web3NodeClient,
    connect_node,
    disconnect_node,
)
from frima_onchain.services.exceptions import NotificationError
from frima_onchain.services.notifier import BackendNotifier

logger = structlog.get_logger()

DRY_RUN_PREVIEW = 10


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Replay FrimaMarketplace events to the backend")

    parser.add_argument(
        "--from-block",
        type=int,
        default=0,
        help="Starting block number (default: head minus the lookback window)",
    )

    parser.add_argument(
        "--to-block",
        default="latest",
        help='Ending block number or "latest" (default: latest)',
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and log events without notifying the backend",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def parse_to_block(value: str) -> int | None:
    """Return None for "latest", otherwise the block number.

    Raises:
        ValueError: If value is neither "latest" nor an integer
    """
    if value == "latest":
        return None
    return int(value)


async def run_scan(
    scanner: BackfillScanner,
    notifier: BackendNotifier | None,
    from_block: int = 0,
    to_block: int | None = None,
) -> int:
    """Scan once and relay events; ``notifier=None`` means dry run.

    Returns:
        Exit code: 0 (success), 2 (some notifications failed)
    """
    found = 0
    failed = 0

    async for event in scanner.scan(from_block, to_block):
        found += 1

        if notifier is None:
            if found <= DRY_RUN_PREVIEW:
                logger.info(
                    "scan_events.dry_run_event",
                    kind=event.kind.value,
                    item_id=event.item_id,
                    tx_hash=event.tx_hash,
                    block_number=event.block_number,
                )
            continue

        try:
            await notifier.notify(event)
        except NotificationError as e:
            failed += 1
            logger.error(
                "scan_events.notify_failed",
                kind=event.kind.value,
                item_id=event.item_id,
                tx_hash=event.tx_hash,
                error=str(e),
            )

    stats = scanner.last_stats
    if notifier is None:
        if found > DRY_RUN_PREVIEW:
            logger.info(
                "scan_events.dry_run_truncated",
                message=f"... and {found - DRY_RUN_PREVIEW} more events",
            )
        logger.info(
            "scan_events.dry_run_complete",
            events=found,
            from_block=stats.from_block,
            to_block=stats.to_block,
            message="DRY RUN COMPLETE - No notifications sent",
        )
        return 0

    logger.info(
        "scan_events.complete",
        events=found,
        relayed=found - failed,
        failed=failed,
        skipped=stats.skipped,
        from_block=stats.from_block,
        to_block=stats.to_block,
    )
    return 2 if failed else 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (interrupted or partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    try:
        to_block = parse_to_block(args.to_block)
    except ValueError:
        logger.error("scan_events.error", message=f"Invalid --to-block value: {args.to_block}")
        return 1

    if not settings.contract_enabled:
        logger.error("scan_events.error", message="MARKETPLACE_CONTRACT_ADDRESS is not set")
        return 1

    logger.info(
        "scan_events.start",
        network=settings.network,
        contract=settings.marketplace_contract_address,
        from_block=args.from_block,
        to_block=args.to_block,
        dry_run=args.dry_run,
    )

    w3 = await connect_node(settings)
    node: NodeClient = Web3NodeClient(
        w3,
        settings.marketplace_contract_address,
        request_timeout=settings.health_check_timeout_seconds,
    )
    scanner = BackfillScanner(
        node,
        EventDecoder(settings.marketplace_contract_address),
        window_blocks=settings.backfill_window_blocks,
    )
    notifier = None
    if not args.dry_run:
        notifier = BackendNotifier(
            base_url=settings.backend_base_url,
            api_prefix=settings.backend_api_prefix,
            max_attempts=settings.notify_max_attempts,
            retry_base_seconds=settings.notify_retry_base_seconds,
            timeout=settings.notify_timeout_seconds,
        )

    try:
        return await run_scan(scanner, notifier, args.from_block, to_block)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("scan_events.interrupted", message="Scan interrupted by user")
        return 2

    except Exception as e:
        logger.error("scan_events.fatal_error", error=str(e), exc_info=True)
        return 1

    finally:
        if notifier is not None:
            await notifier.aclose()
        await disconnect_node(w3)


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
