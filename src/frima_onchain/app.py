"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

from frima_onchain.api.routes import contract, payment
from frima_onchain.core.config import Settings, configure_logging
from frima_onchain.services.blockchain.backfill import BackfillScanner
from frima_onchain.services.blockchain.decoder import EventDecoder
from frima_onchain.services.blockchain.node import (
    NodeClient,
    Web3NodeClient,
    connect_node,
    disconnect_node,
)
from frima_onchain.services.blockchain.subscriber import LiveSubscriber
from frima_onchain.services.blockchain.verifier import TransactionVerifier
from frima_onchain.services.ingestion import Backoff, IngestionOrchestrator
from frima_onchain.services.notifier import BackendNotifier
from frima_onchain.services.payment import PaymentService

logger = structlog.get_logger()


def build_notifier(settings: Settings) -> BackendNotifier:
    return BackendNotifier(
        base_url=settings.backend_base_url,
        api_prefix=settings.backend_api_prefix,
        max_attempts=settings.notify_max_attempts,
        retry_base_seconds=settings.notify_retry_base_seconds,
        timeout=settings.notify_timeout_seconds,
    )


def build_orchestrator(
    settings: Settings, node: NodeClient, notifier: BackendNotifier
) -> IngestionOrchestrator:
    """Wire decoder, scanner and subscriber for the configured marketplace contract."""
    decoder = EventDecoder(settings.marketplace_contract_address)
    return IngestionOrchestrator(
        scanner=BackfillScanner(node, decoder, window_blocks=settings.backfill_window_blocks),
        subscriber=LiveSubscriber(
            node,
            decoder,
            poll_interval=settings.poll_interval_seconds,
            health_check_timeout=settings.health_check_timeout_seconds,
        ),
        notifier=notifier,
        backoff=Backoff(
            floor=settings.reconnect_floor_seconds,
            ceiling=settings.reconnect_ceiling_seconds,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, connect to the node, build services,
      start event ingestion when a marketplace contract is configured
    - Shutdown: Stop ingestion, close HTTP clients, disconnect from the node
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    w3 = await connect_node(settings)
    node = Web3NodeClient(
        w3,
        settings.marketplace_contract_address or None,
        request_timeout=settings.health_check_timeout_seconds,
    )
    verifier = TransactionVerifier(node, node.contract_address)
    payment_service = PaymentService(
        verifier,
        backend_base_url=settings.backend_base_url,
        collect_address=settings.app_collect_wallet_address,
        amount_wei=settings.payment_amount_wei,
        timeout=settings.notify_timeout_seconds,
    )

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.node = node
    app.state.verifier = verifier
    app.state.payment_service = payment_service
    app.state.orchestrator = None

    notifier = None
    if settings.contract_enabled:
        notifier = build_notifier(settings)
        orchestrator = build_orchestrator(settings, node, notifier)
        orchestrator.start()
        app.state.orchestrator = orchestrator
    else:
        logger.warning(
            "startup.listener_disabled",
            reason="MARKETPLACE_CONTRACT_ADDRESS not set",
        )

    logger.info(
        "application.startup",
        network=settings.network,
        contract_address=settings.marketplace_contract_address or None,
        payment_address=payment_service.collect_address,
    )

    yield

    logger.info("application.shutdown")

    if app.state.orchestrator is not None:
        await app.state.orchestrator.stop()
    if notifier is not None:
        await notifier.aclose()
    await payment_service.aclose()
    await disconnect_node(w3)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Frima On-chain API",
        description="Marketplace event relay, payment and transaction verification",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(payment.router)
    app.include_router(contract.router)

    @app.get("/")
    async def root():
        return {"status": "healthy"}

    # Health check endpoint with node connectivity validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with node connectivity test.

        Returns:
            200: {"status": "healthy", ...} if the node answers
            503: {"status": "unhealthy", "error": {...}} if the node is unreachable
        """
        orchestrator = getattr(app.state, "orchestrator", None)
        ingestion = orchestrator.status() if orchestrator is not None else None

        try:
            block_number = await app.state.node.get_latest_block_number()
        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
                "ingestion": ingestion,
            }

        logger.debug("health_check.success", block_number=block_number)
        return {"status": "healthy", "block_number": block_number, "ingestion": ingestion}

    return app


# Create app instance for uvicorn
app = create_app()
