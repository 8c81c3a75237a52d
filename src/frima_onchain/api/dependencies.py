"""FastAPI dependencies for services held in app.state and common error mapping.

Services are created once by the application lifespan and stored in
``app.state``; routes receive them through ``Depends``.
"""

from fastapi import HTTPException, Request, status

from frima_onchain.core.config import Settings
from frima_onchain.services.blockchain.node import NodeClient
from frima_onchain.services.blockchain.verifier import TransactionVerifier
from frima_onchain.services.exceptions import (
    InvalidTransactionHashError,
    TransactionNotFoundError,
    VerificationError,
)
from frima_onchain.services.ingestion import IngestionOrchestrator
from frima_onchain.services.payment import PaymentService


def get_settings(request: Request) -> Settings:
    """Get the settings instance the application was started with."""
    return request.app.state.settings


def get_verifier(request: Request) -> TransactionVerifier:
    return request.app.state.verifier


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_orchestrator(request: Request) -> IngestionOrchestrator | None:
    """Get the ingestion orchestrator, or None when no contract is configured."""
    return getattr(request.app.state, "orchestrator", None)


def get_contract_node(request: Request) -> NodeClient:
    """Get the node client for contract reads.

    Raises:
        HTTPException: 503 if no marketplace contract is configured
    """
    node = getattr(request.app.state, "node", None)
    if node is None or not node.contract_address:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Marketplace contract is not configured",
        )
    return node


def verification_http_error(error: VerificationError) -> HTTPException:
    """Translate a verification failure into an HTTP error.

    Malformed hashes are client errors (400), unknown transactions 404 and
    every other failure 422, all with ``{"reason", "message"}`` detail.
    """
    if isinstance(error, InvalidTransactionHashError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, TransactionNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    else:
        status_code = status.HTTP_422_UNPROCESSABLE_CONTENT

    return HTTPException(
        status_code=status_code,
        detail={"reason": error.reason, "message": str(error)},
    )
