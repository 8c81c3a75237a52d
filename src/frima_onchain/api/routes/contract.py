"""Marketplace contract API endpoints.

- GET /api/v1/contract/info - Contract address, network and ingestion state
- GET /api/v1/contract/item/{item_id} - Current on-chain item (price as wei string)
- POST /api/v1/contract/verify-tx - Point-in-time transaction verdict
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field

from frima_onchain.api.dependencies import (
    get_contract_node,
    get_orchestrator,
    get_settings,
    get_verifier,
    verification_http_error,
)
from frima_onchain.core.config import Settings
from frima_onchain.services.blockchain.node import NodeClient
from frima_onchain.services.blockchain.verifier import TransactionVerifier
from frima_onchain.services.exceptions import (
    BlockchainConnectionError,
    ContractCallError,
    VerificationError,
)
from frima_onchain.services.ingestion import IngestionOrchestrator

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/contract", tags=["contract"])


class VerifyTxRequest(BaseModel):
    tx_hash: str = Field(..., min_length=1, description="0x-prefixed transaction hash")


class VerifyTxResponse(BaseModel):
    tx_hash: str
    status: str = Field(..., description="pending, success or failed")
    block_number: int | None = None
    gas_used: int | None = None
    success: bool
    is_contract_call: bool


@router.get("/info")
async def contract_info(
    settings: Settings = Depends(get_settings),
    orchestrator: IngestionOrchestrator | None = Depends(get_orchestrator),
):
    """Return the tracked contract and the ingestion state."""
    return {
        "message": "Contract API is running",
        "contract_address": settings.marketplace_contract_address or None,
        "network": settings.network,
        "listener_enabled": orchestrator is not None,
        "ingestion": orchestrator.status() if orchestrator is not None else None,
    }


@router.get("/item/{item_id}")
async def get_item(
    item_id: int = Path(..., ge=0),
    node: NodeClient = Depends(get_contract_node),
):
    """Read an item directly from the marketplace contract.

    Raises:
        HTTPException 404: getItem reverted (unknown item)
        HTTPException 503: Node unreachable or contract not configured
    """
    try:
        item = await node.get_item(item_id)
    except ContractCallError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except BlockchainConnectionError as e:
        logger.error("contract.get_item_failed", item_id=item_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return item.to_dict()


@router.post("/verify-tx", response_model=VerifyTxResponse)
async def verify_transaction(
    request: VerifyTxRequest,
    verifier: TransactionVerifier = Depends(get_verifier),
):
    """Verify a transaction's current status."""
    try:
        result = await verifier.verify(request.tx_hash)
    except VerificationError as e:
        logger.info("contract.verify_rejected", tx_hash=request.tx_hash, reason=e.reason)
        raise verification_http_error(e)
    except BlockchainConnectionError as e:
        logger.error("contract.verify_failed", tx_hash=request.tx_hash, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return result.to_dict()
