"""Transaction verifier: point-in-time verdicts on submitted transactions.

Verification steps:
1. Hash format check (0x + 64 hex chars, non-zero) - no network call on failure
2. Transaction lookup; pending transactions stop here (no receipt lookup)
3. Receipt status (1 = success, anything else = failed)
4. Optional payment expectations on successful transactions:
   amount first, then recipient presence, then recipient identity

Results are never cached; the same hash may go pending -> success between calls.
"""

import re

import structlog
from eth_utils import to_checksum_address

from frima_onchain.models.chain import VerificationResult, VerificationStatus
from frima_onchain.services.blockchain.node import NodeClient
from frima_onchain.services.exceptions import (
    InsufficientPaymentError,
    InvalidTransactionHashError,
    MissingRecipientError,
    TransactionNotFoundError,
    TransactionPendingError,
    TransactionRevertedError,
    WrongRecipientError,
)

logger = structlog.get_logger()

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def validate_tx_hash(tx_hash: str) -> str:
    """Return the lower-cased hash, or raise InvalidTransactionHashError."""
    if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.match(tx_hash):
        raise InvalidTransactionHashError(f"invalid transaction hash format: {tx_hash!r}")
    if int(tx_hash, 16) == 0:
        raise InvalidTransactionHashError("transaction hash must not be zero")
    return tx_hash.lower()


class TransactionVerifier:
    """Checks transaction status and, optionally, payment expectations."""

    def __init__(self, node: NodeClient, contract_address: str | None = None):
        """
        Initialize verifier.

        Args:
            node: Node adapter used for transaction and receipt reads
            contract_address: Marketplace address; transactions sent to it
                are reported as contract calls
        """
        self.node = node
        self.contract_address = to_checksum_address(contract_address) if contract_address else None

    async def verify(
        self,
        tx_hash: str,
        expected_recipient: str | None = None,
        expected_amount: int | None = None,
    ) -> VerificationResult:
        """Verify a transaction.

        Args:
            tx_hash: 0x-prefixed 32-byte transaction hash
            expected_recipient: Address the transaction must be sent to
            expected_amount: Minimum value in wei

        Returns:
            VerificationResult with status pending, success or failed

        Raises:
            InvalidTransactionHashError: Malformed or zero hash
            TransactionNotFoundError: Unknown transaction
            InsufficientPaymentError: Value below expected_amount
            MissingRecipientError: Contract creation (no recipient)
            WrongRecipientError: Sent to another address
            BlockchainConnectionError: Node unreachable
        """
        tx_hash = validate_tx_hash(tx_hash)

        tx = await self.node.get_transaction(tx_hash)
        if tx is None:
            raise TransactionNotFoundError(f"transaction {tx_hash} not found")

        is_contract_call = (
            self.contract_address is not None
            and tx.to is not None
            and to_checksum_address(tx.to) == self.contract_address
        )

        if tx.is_pending:
            logger.info("verifier.pending", tx_hash=tx_hash)
            return VerificationResult(
                tx_hash=tx_hash,
                status=VerificationStatus.PENDING,
                success=False,
                is_contract_call=is_contract_call,
            )

        receipt = await self.node.get_transaction_receipt(tx_hash)
        if receipt is None:
            # Mined per the transaction lookup but the receipt is not served yet
            raise TransactionNotFoundError(f"receipt for transaction {tx_hash} not found")

        success = receipt.status == 1
        result = VerificationResult(
            tx_hash=tx_hash,
            status=VerificationStatus.SUCCESS if success else VerificationStatus.FAILED,
            success=success,
            is_contract_call=is_contract_call,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )

        if success:
            self._check_expectations(tx_hash, tx.to, tx.value, expected_recipient, expected_amount)

        logger.info(
            "verifier.verified",
            tx_hash=tx_hash,
            status=result.status.value,
            block_number=result.block_number,
            is_contract_call=is_contract_call,
        )
        return result

    def _check_expectations(
        self,
        tx_hash: str,
        to: str | None,
        value: int,
        expected_recipient: str | None,
        expected_amount: int | None,
    ) -> None:
        if expected_amount is not None and value < expected_amount:
            logger.warning(
                "verifier.insufficient_amount",
                tx_hash=tx_hash,
                value=str(value),
                expected=str(expected_amount),
            )
            raise InsufficientPaymentError(
                f"insufficient payment amount: got {value} wei, expected {expected_amount} wei"
            )

        if expected_recipient is None:
            return

        if to is None:
            raise MissingRecipientError("transaction is not a transfer to a valid address")

        if to_checksum_address(to) != to_checksum_address(expected_recipient):
            logger.warning(
                "verifier.wrong_recipient",
                tx_hash=tx_hash,
                to=to,
                expected=expected_recipient,
            )
            raise WrongRecipientError(f"transaction sent to wrong recipient address {to}")

    async def verify_payment(self, tx_hash: str, recipient: str, amount: int) -> VerificationResult:
        """Verify a completed payment of at least ``amount`` wei to ``recipient``.

        Raises:
            TransactionPendingError: Not mined yet
            TransactionRevertedError: Mined but failed
            VerificationError: Any other verification failure (see ``verify``)
        """
        result = await self.verify(tx_hash, expected_recipient=recipient, expected_amount=amount)

        if result.status is VerificationStatus.PENDING:
            raise TransactionPendingError("transaction is still pending")
        if result.status is VerificationStatus.FAILED:
            raise TransactionRevertedError("transaction failed on chain (reverted)")

        logger.info("verifier.payment_verified", tx_hash=result.tx_hash, recipient=recipient, amount=str(amount))
        return result
