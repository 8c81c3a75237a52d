"""Backend notifier: relays ContractEvents to the application backend over HTTP.

Each event kind maps to a fixed path under the backend's blockchain API prefix
and a payload holding only the fields meaningful for that kind. Prices are
serialized as decimal strings so large wei amounts survive JSON.

Delivery policy:
- 2xx: delivered
- Redirects are followed
- 4xx or any other non-5xx status: rejected, no retry
- 5xx / transport error: retried with linearly increasing delay
"""

import asyncio
from typing import Any

import httpx
import structlog

from frima_onchain.models.events import ContractEvent, EventKind
from frima_onchain.services.exceptions import NotificationDeliveryError, NotificationRejectedError

logger = structlog.get_logger()

ENDPOINTS: dict[EventKind, str] = {
    EventKind.ITEM_LISTED: "/item-listed",
    EventKind.ITEM_PURCHASED: "/item-purchased",
    EventKind.ITEM_UPDATED: "/item-updated",
    EventKind.ITEM_CANCELLED: "/item-cancelled",
    EventKind.RECEIPT_CONFIRMED: "/receipt-confirmed",
}

MAX_LOGGED_BODY = 1024


def _price(event: ContractEvent) -> str:
    return str(event.price)


def build_notification(event: ContractEvent) -> tuple[str, dict[str, Any]]:
    """Return (path, JSON payload) for an event."""
    if event.kind is EventKind.ITEM_LISTED:
        if not event.uid:
            logger.warning("notifier.empty_uid", item_id=event.item_id, tx_hash=event.tx_hash)
        payload = {
            "chain_item_id": event.item_id,
            "token_id": event.token_id,
            "title": event.title,
            "price_wei": _price(event),
            "explanation": event.explanation,
            "image_url": event.image_url,
            "uid": event.uid,
            "category": event.category,
            "seller": event.seller,
            "created_at": event.created_at,
            "tx_hash": event.tx_hash,
        }
    elif event.kind is EventKind.ITEM_PURCHASED:
        payload = {
            "chain_item_id": event.item_id,
            "buyer": event.buyer,
            "price_wei": _price(event),
            "token_id": event.token_id,
            "tx_hash": event.tx_hash,
        }
    elif event.kind is EventKind.ITEM_UPDATED:
        payload = {
            "chain_item_id": event.item_id,
            "title": event.title,
            "price_wei": _price(event),
            "explanation": event.explanation,
            "image_url": event.image_url,
            "category": event.category,
            "updated_at": event.updated_at,
            "tx_hash": event.tx_hash,
        }
    elif event.kind is EventKind.ITEM_CANCELLED:
        payload = {
            "chain_item_id": event.item_id,
            "seller": event.seller,
            "tx_hash": event.tx_hash,
        }
    elif event.kind is EventKind.RECEIPT_CONFIRMED:
        payload = {
            "chain_item_id": event.item_id,
            "buyer": event.buyer,
            "seller": event.seller,
            "price_wei": _price(event),
            "tx_hash": event.tx_hash,
        }
    else:
        raise ValueError(f"Unknown event kind: {event.kind}")

    return ENDPOINTS[event.kind], payload


class BackendNotifier:
    """HTTP client for the backend's blockchain notification endpoints."""

    def __init__(
        self,
        base_url: str,
        api_prefix: str = "/api/v1/blockchain",
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize notifier.

        Args:
            base_url: Backend base URL (e.g. https://backend.example.com)
            api_prefix: Path prefix of the notification endpoints
            max_attempts: Total delivery attempts per event
            retry_base_seconds: Delay unit; attempt n waits (n - 1) units first
            timeout: Per-request timeout in seconds
            client: Injected httpx client (the notifier owns one otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    async def notify(self, event: ContractEvent) -> httpx.Response:
        """Deliver one event.

        Raises:
            NotificationRejectedError: Backend answered 4xx (or another non-retryable status)
            NotificationDeliveryError: All attempts failed with 5xx/network errors
        """
        path, payload = build_notification(event)
        logger.info(
            "notifier.sending",
            kind=event.kind.value,
            item_id=event.item_id,
            tx_hash=event.tx_hash,
            path=path,
        )
        return await self.post(path, payload)

    async def post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        url = self.url_for(path)
        last_error = ""

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                delay = (attempt - 1) * self.retry_base_seconds
                logger.warning(
                    "notifier.retrying",
                    url=url,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    retry_in_seconds=delay,
                )
                await asyncio.sleep(delay)

            try:
                response = await self._client.post(url, json=payload, follow_redirects=True)
            except httpx.TransportError as e:
                last_error = f"failed to send request: {e}"
                logger.warning("notifier.transport_error", url=url, attempt=attempt, error=str(e))
                continue

            if 200 <= response.status_code < 300:
                logger.info("notifier.delivered", url=url, attempt=attempt)
                return response

            body = response.text[:MAX_LOGGED_BODY]
            last_error = f"backend returned status {response.status_code}: {body}"

            if response.status_code < 500:
                logger.error(
                    "notifier.rejected",
                    url=url,
                    status_code=response.status_code,
                    body=body,
                )
                raise NotificationRejectedError(last_error, status_code=response.status_code)

            logger.warning(
                "notifier.server_error",
                url=url,
                attempt=attempt,
                status_code=response.status_code,
                body=body,
            )

        raise NotificationDeliveryError(
            f"failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        )
