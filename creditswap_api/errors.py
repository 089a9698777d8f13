"""
Error taxonomy for the swap service.

Errors fall into three groups:
- User-fixable (ValidationError, InsufficientCredits): no state was changed
- External leg failures (SettlementFailure, BridgeFailure): recorded on the
  swap record and raised once to the caller
- Integrity errors (InvalidTransition, DuplicateTransaction): indicate a bug
  or a concurrent-write race
"""

from typing import Any, Optional


class SwapServiceError(Exception):
    """Base class for all swap service errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SwapServiceError):
    """Bad input shape or bounds."""


class InsufficientCredits(SwapServiceError):
    """Balance does not cover the requested amount plus fees."""

    def __init__(self, available: int, required: int, fees: Optional[Any] = None):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}"
        )
        self.available = available
        self.required = required
        self.fees = fees


class Unauthorized(SwapServiceError):
    """Admin check failed."""


class TransactionNotFound(SwapServiceError):
    """Unknown transaction id."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class DuplicateTransaction(SwapServiceError):
    """A transaction with the same id already exists."""

    def __init__(self, transaction_id: str):
        super().__init__(f"Duplicate transaction id: {transaction_id}")
        self.transaction_id = transaction_id


class InvalidTransition(SwapServiceError):
    """State machine violation."""

    def __init__(self, transaction_id: str, current: str, requested: str):
        super().__init__(
            f"Invalid transition for {transaction_id}: {current} -> {requested}"
        )
        self.transaction_id = transaction_id
        self.current = current
        self.requested = requested


# ============================================================================
# Settlement leg
# ============================================================================


class SettlementFailure(SwapServiceError):
    """
    The on-chain transfer did not go through.

    `refunded` tells the caller whether the reserved credits were returned.
    It is False when the outcome of the transfer is unknown.
    """

    def __init__(
        self,
        reason: str,
        refunded: bool = True,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.refunded = refunded
        self.transaction_id = transaction_id


class SettlementOutcomeUnknown(SettlementFailure):
    """
    The transfer may have been broadcast (send transport error or
    confirmation timeout). Must never be auto-refunded.
    """

    def __init__(self, reason: str, reference: Optional[str] = None):
        super().__init__(reason, refunded=False)
        self.reference = reference


# ============================================================================
# Bridge leg
# ============================================================================


class BridgeFailure(SwapServiceError):
    """Bridge leg failed after the on-chain transfer settled. Never refunded."""

    def __init__(
        self,
        reason: str,
        settlement_ref: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.settlement_ref = settlement_ref
        self.transaction_id = transaction_id


class BridgeUnavailable(BridgeFailure):
    """Bridge not configured, unreachable, timed out or returned garbage."""


class BridgeRejected(BridgeFailure):
    """Bridge refused the request."""
