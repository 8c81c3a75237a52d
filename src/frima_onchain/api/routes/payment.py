"""Payment API endpoints.

- POST /api/v1/payment/order - Create a PENDING ETH payment order for a product
- POST /api/v1/payment/confirm - Verify the payment transaction, return the PAID order
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from frima_onchain.api.dependencies import get_payment_service, verification_http_error
from frima_onchain.models.payment import PaymentOrder
from frima_onchain.services.exceptions import (
    BlockchainConnectionError,
    ProductLookupError,
    VerificationError,
)
from frima_onchain.services.payment import PaymentService

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/payment", tags=["payment"])


class CreateOrderRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    buyer_wallet: str = ""


class ConfirmPaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    tx_hash: str = Field(..., min_length=1)


@router.post("/order", response_model=PaymentOrder)
async def create_payment_order(
    request: CreateOrderRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Create a payment order for the fixed demo amount.

    Raises:
        HTTPException 502: Product lookup failed
    """
    try:
        return await payments.create_order(request.product_id, request.buyer_wallet)
    except ProductLookupError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/confirm", response_model=PaymentOrder)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Confirm a payment by verifying its transaction on-chain.

    Raises:
        HTTPException 400/404/422: Verification failed (see ``reason``)
        HTTPException 502: Product lookup failed
        HTTPException 503: Node unreachable
    """
    try:
        return await payments.confirm_payment(
            request.order_id, request.product_id, request.tx_hash
        )
    except VerificationError as e:
        logger.warning(
            "payment.verification_failed",
            order_id=request.order_id,
            tx_hash=request.tx_hash,
            reason=e.reason,
            error=str(e),
        )
        raise verification_http_error(e)
    except ProductLookupError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except BlockchainConnectionError as e:
        logger.error("payment.node_unavailable", tx_hash=request.tx_hash, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
