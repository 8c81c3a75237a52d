"""Payment service: demo ETH payment orders for backend products.

Orders are not persisted; ``confirm_payment`` rebuilds the order from the
product lookup and the on-chain verification.
"""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import structlog
from eth_utils import from_wei, to_checksum_address

from frima_onchain.models.payment import OrderStatus, PaymentOrder
from frima_onchain.services.blockchain.verifier import TransactionVerifier
from frima_onchain.services.exceptions import ProductLookupError

logger = structlog.get_logger()


def format_eth(amount_wei: int) -> str:
    """Render a wei amount as a plain decimal ETH string (10**15 -> "0.001")."""
    value = Decimal(from_wei(amount_wei, "ether"))
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class PaymentService:
    """Creates payment orders and confirms them against the chain."""

    def __init__(
        self,
        verifier: TransactionVerifier,
        backend_base_url: str,
        collect_address: str,
        amount_wei: int = 10**15,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize payment service.

        Args:
            verifier: Transaction verifier
            backend_base_url: Backend serving ``/getItems/{id}``
            collect_address: Wallet that receives payments
            amount_wei: Fixed payment amount in wei
            timeout: Product lookup timeout in seconds
            client: Injected httpx client (the service owns one otherwise)
        """
        self.verifier = verifier
        self.backend_base_url = backend_base_url.rstrip("/")
        self.collect_address = to_checksum_address(collect_address)
        self.amount_wei = amount_wei
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_product(self, product_id: str) -> tuple[str, int]:
        """Fetch (title, price in yen) for a backend product.

        Raises:
            ProductLookupError: Transport error, non-200 response or malformed body
        """
        url = f"{self.backend_base_url}/getItems/{product_id}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.error("payment.product_fetch_failed", product_id=product_id, error=str(e))
            raise ProductLookupError("failed to fetch product information") from e

        if response.status_code != 200:
            logger.warning(
                "payment.product_not_found",
                product_id=product_id,
                status_code=response.status_code,
            )
            raise ProductLookupError("product not found")

        try:
            item = response.json()
            title = str(item.get("title", ""))
            price = int(item["price"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("payment.product_parse_failed", product_id=product_id, error=str(e))
            raise ProductLookupError("failed to parse product information") from e

        logger.info("payment.product_fetched", product_id=product_id, title=title, price_yen=price)
        return title, price

    def _order(self, order_id: str, product_id: str, title: str, price_yen: int, **fields) -> PaymentOrder:
        return PaymentOrder(
            order_id=order_id,
            product_id=product_id,
            product_name=title,
            price_yen=price_yen,
            amount_eth=format_eth(self.amount_wei),
            amount_wei=str(self.amount_wei),
            payment_addr=self.collect_address,
            **fields,
        )

    async def create_order(self, product_id: str, buyer_wallet: str = "") -> PaymentOrder:
        """Create a PENDING order for the fixed payment amount."""
        title, price_yen = await self.get_product(product_id)

        now = datetime.now(timezone.utc)
        order = self._order(
            f"ORDER-{product_id}-{now.strftime('%Y%m%d%H%M%S')}",
            product_id,
            title,
            price_yen,
            buyer_wallet=buyer_wallet,
            status=OrderStatus.PENDING,
            created_at=now,
        )
        logger.info("payment.order_created", order_id=order.order_id, product_id=product_id)
        return order

    async def confirm_payment(self, order_id: str, product_id: str, tx_hash: str) -> PaymentOrder:
        """Verify the payment transaction and return the PAID order.

        Raises:
            ProductLookupError: Product no longer available
            VerificationError: Payment transaction did not verify
        """
        title, price_yen = await self.get_product(product_id)

        await self.verifier.verify_payment(tx_hash, self.collect_address, self.amount_wei)

        order = self._order(
            order_id,
            product_id,
            title,
            price_yen,
            tx_hash=tx_hash,
            status=OrderStatus.PAID,
        )
        logger.info("payment.confirmed", order_id=order_id, tx_hash=tx_hash)
        return order
