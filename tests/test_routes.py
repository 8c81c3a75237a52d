"""Integration tests for the HTTP API.

Services are injected into app.state directly; the lifespan (node connection,
background ingestion) is not started by ASGITransport.
"""

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import BUYER, COLLECT_ADDRESS, CONTRACT_ADDRESS, SELLER, FakeNode, tx_hash_for
from frima_onchain.app import app
from frima_onchain.core.config import Settings
from frima_onchain.models.chain import ContractItem, ReceiptInfo, TransactionInfo
from frima_onchain.services.blockchain.verifier import TransactionVerifier
from frima_onchain.services.exceptions import BlockchainConnectionError
from frima_onchain.services.payment import PaymentService

TX = tx_hash_for(0xF00D)


def product_backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/getItems/42":
        return httpx.Response(200, json={"id": 42, "title": "Vintage camera", "price": 12000})
    return httpx.Response(404)


def install_services(node: FakeNode, contract_address: str = CONTRACT_ADDRESS) -> None:
    verifier = TransactionVerifier(node, node.contract_address)
    app.state.settings = Settings(APP_ENV="test", MARKETPLACE_CONTRACT_ADDRESS=contract_address)
    app.state.node = node
    app.state.verifier = verifier
    app.state.payment_service = PaymentService(
        verifier,
        "http://backend.test",
        COLLECT_ADDRESS,
        client=httpx.AsyncClient(transport=httpx.MockTransport(product_backend)),
    )
    app.state.orchestrator = None


@pytest_asyncio.fixture
async def test_client(fake_node):
    """Provide AsyncClient for testing API endpoints against a fake node."""
    install_services(fake_node)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
class TestHealth:
    async def test_root(self, test_client):
        response = await test_client.get("/")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_health_reports_block_number(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["block_number"] == 100

    async def test_health_unhealthy_when_node_down(self, test_client, fake_node):
        fake_node.head_error = BlockchainConnectionError("refused")

        response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["error"]["type"] == "BlockchainConnectionError"


@pytest.mark.asyncio
class TestContractRoutes:
    async def test_info(self, test_client):
        response = await test_client.get("/api/v1/contract/info")

        assert response.status_code == 200
        body = response.json()
        assert body["contract_address"] == CONTRACT_ADDRESS
        assert body["network"] == "SEPOLIA"
        assert body["listener_enabled"] is False

    async def test_get_item(self, test_client, fake_node):
        fake_node.items[5] = ContractItem(
            item_id=5,
            token_id=9,
            title="Lamp",
            price=3 * 10**18,
            explanation="Bright",
            image_url="https://images.example.com/lamp.png",
            uid="user-5",
            created_at=1,
            updated_at=2,
            is_purchased=True,
            category="home",
            seller=SELLER,
            buyer=BUYER,
            status=1,
        )

        response = await test_client.get("/api/v1/contract/item/5")

        assert response.status_code == 200
        body = response.json()
        assert body["price_wei"] == "3000000000000000000"
        assert body["seller"] == SELLER
        assert body["status"] == 1

    async def test_get_unknown_item(self, test_client):
        response = await test_client.get("/api/v1/contract/item/999")

        assert response.status_code == 404

    async def test_get_item_rejects_non_numeric_id(self, test_client):
        response = await test_client.get("/api/v1/contract/item/abc")

        assert response.status_code == 422

    async def test_contract_routes_disabled_without_address(self):
        install_services(FakeNode(contract_address=None), contract_address="")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/contract/item/1")

        assert response.status_code == 503

    async def test_verify_success(self, test_client, fake_node):
        fake_node.transactions[TX] = TransactionInfo(TX, CONTRACT_ADDRESS, 0, 300)
        fake_node.receipts[TX] = ReceiptInfo(status=1, block_number=300, gas_used=90000)

        response = await test_client.post("/api/v1/contract/verify-tx", json={"tx_hash": TX})

        assert response.status_code == 200
        assert response.json() == {
            "tx_hash": TX,
            "status": "success",
            "block_number": 300,
            "gas_used": 90000,
            "success": True,
            "is_contract_call": True,
        }

    async def test_verify_pending(self, test_client, fake_node):
        fake_node.transactions[TX] = TransactionInfo(TX, CONTRACT_ADDRESS, 0, None)

        response = await test_client.post("/api/v1/contract/verify-tx", json={"tx_hash": TX})

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["success"] is False

    async def test_verify_invalid_hash(self, test_client):
        response = await test_client.post("/api/v1/contract/verify-tx", json={"tx_hash": "0x12"})

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_hash"

    async def test_verify_unknown_transaction(self, test_client):
        response = await test_client.post("/api/v1/contract/verify-tx", json={"tx_hash": TX})

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "not_found"

    async def test_verify_requires_tx_hash(self, test_client):
        response = await test_client.post("/api/v1/contract/verify-tx", json={})

        assert response.status_code == 422


@pytest.mark.asyncio
class TestPaymentRoutes:
    async def test_create_order(self, test_client):
        response = await test_client.post(
            "/api/v1/payment/order", json={"product_id": "42", "buyer_wallet": BUYER}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["order_id"].startswith("ORDER-42-")
        assert body["status"] == "PENDING"
        assert body["amount_wei"] == "1000000000000000"
        assert body["amount_eth"] == "0.001"
        assert body["payment_addr"] == COLLECT_ADDRESS

    async def test_create_order_unknown_product(self, test_client):
        response = await test_client.post("/api/v1/payment/order", json={"product_id": "7"})

        assert response.status_code == 502

    async def test_confirm_payment(self, test_client, fake_node):
        fake_node.transactions[TX] = TransactionInfo(TX, COLLECT_ADDRESS, 10**15, 310)
        fake_node.receipts[TX] = ReceiptInfo(status=1, block_number=310, gas_used=21000)

        response = await test_client.post(
            "/api/v1/payment/confirm",
            json={"order_id": "ORDER-42-1", "product_id": "42", "tx_hash": TX},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "PAID"
        assert response.json()["tx_hash"] == TX

    async def test_confirm_reverted_payment(self, test_client, fake_node):
        fake_node.transactions[TX] = TransactionInfo(TX, COLLECT_ADDRESS, 10**15, 310)
        fake_node.receipts[TX] = ReceiptInfo(status=0, block_number=310, gas_used=21000)

        response = await test_client.post(
            "/api/v1/payment/confirm",
            json={"order_id": "ORDER-42-1", "product_id": "42", "tx_hash": TX},
        )

        assert response.status_code == 422
        assert response.json()["detail"] == {
            "reason": "reverted",
            "message": "transaction failed on chain (reverted)",
        }

    async def test_confirm_wrong_recipient(self, test_client, fake_node):
        fake_node.transactions[TX] = TransactionInfo(TX, CONTRACT_ADDRESS, 10**15, 310)
        fake_node.receipts[TX] = ReceiptInfo(status=1, block_number=310, gas_used=21000)

        response = await test_client.post(
            "/api/v1/payment/confirm",
            json={"order_id": "ORDER-42-1", "product_id": "42", "tx_hash": TX},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "wrong_recipient"
