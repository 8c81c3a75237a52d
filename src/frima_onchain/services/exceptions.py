"""Service error hierarchy for chain ingestion, notification and verification.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (node connectivity, 5xx, network)
- PermanentError: Non-retryable errors (malformed logs, 4xx, verification failures)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Node unreachable or timing out
    - Subscription refused or dropped
    - Backend returned 5xx
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Malformed log entry
    - Backend rejected the payload (4xx)
    - Transaction verification failure
    """

    pass


# Node connectivity errors
class BlockchainConnectionError(TransientError):
    """Failed to reach the blockchain RPC endpoint."""

    pass


class SubscriptionUnavailableError(TransientError):
    """The node transport cannot push log notifications (e.g. HTTP provider)."""

    pass


# Decode errors
class EventDecodeError(PermanentError):
    """A log matched a known event signature but could not be decoded.

    Attributes:
        event_name: Event the log was dispatched to
        missing_fields: Every indexed/data field that was absent or undecodable
    """

    def __init__(self, event_name: str, message: str, missing_fields: list[str] | None = None):
        self.event_name = event_name
        self.missing_fields = list(missing_fields or [])
        detail = f"{event_name}: {message}"
        if self.missing_fields:
            detail += f" (missing: {', '.join(self.missing_fields)})"
        super().__init__(detail)


# Downstream delivery errors
class NotificationError(ServiceError):
    """Base exception for backend notification errors."""

    pass


class NotificationDeliveryError(NotificationError, TransientError):
    """Retryable delivery failures (network, 5xx) exhausted every attempt."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class NotificationRejectedError(NotificationError, PermanentError):
    """Backend rejected the notification with a 4xx response."""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message)


# Verification errors
class VerificationError(PermanentError):
    """Base exception for transaction verification failures.

    Each subclass carries a stable ``reason`` code for API responses.
    """

    reason = "verification_failed"


class InvalidTransactionHashError(VerificationError):
    """Transaction hash is malformed or zero."""

    reason = "invalid_hash"


class TransactionNotFoundError(VerificationError):
    """Node does not know the transaction."""

    reason = "not_found"


class TransactionPendingError(VerificationError):
    """Transaction has not been mined yet."""

    reason = "pending"


class TransactionRevertedError(VerificationError):
    """Transaction was mined but reverted on-chain."""

    reason = "reverted"


class InsufficientPaymentError(VerificationError):
    """Transaction value is below the expected amount."""

    reason = "insufficient_amount"


class WrongRecipientError(VerificationError):
    """Transaction was sent to an address other than the expected recipient."""

    reason = "wrong_recipient"


class MissingRecipientError(VerificationError):
    """Transaction has no recipient (contract creation)."""

    reason = "no_recipient"


# Backend product lookup errors
class ProductLookupError(ServiceError):
    """Product could not be fetched from the backend."""

    pass


# Contract read errors
class ContractCallError(PermanentError):
    """A view call reverted or returned undecodable output."""

    pass
