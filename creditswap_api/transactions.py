"""
Swap transaction records and their lifecycle.

    pending -> settled_on_chain -> bridging -> completed
    any non-terminal state -> failed

`completed` and `failed` are terminal. Records are frozen; every update
replaces the stored record in one step.
"""

import dataclasses
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .errors import DuplicateTransaction, InvalidTransition, TransactionNotFound
from .ledger import owner_key, utcnow


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SETTLED_ON_CHAIN = "settled_on_chain"
    BRIDGING = "bridging"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.SETTLED_ON_CHAIN, TransactionStatus.FAILED}
    ),
    TransactionStatus.SETTLED_ON_CHAIN: frozenset(
        {TransactionStatus.BRIDGING, TransactionStatus.FAILED}
    ),
    TransactionStatus.BRIDGING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}

MUTABLE_FIELDS = frozenset(
    {
        "status",
        "settlement_tx_ref",
        "bridge_ref",
        "bridge_estimated_seconds",
        "destination_tx_ref",
        "error_message",
    }
)

# Fields that may still be attached once a record is terminal
POST_TERMINAL_FIELDS = frozenset({"destination_tx_ref"})


@dataclass(frozen=True)
class SwapTransaction:
    """One swap attempt."""

    id: str
    owner_key: str
    credits_amount: int
    settlement_amount: Decimal
    destination_address: str
    status: TransactionStatus
    swap_fee: int
    network_fee: int
    total_fees: int
    total_credits_charged: int
    created_at: datetime
    updated_at: datetime
    settlement_tx_ref: Optional[str] = None
    bridge_ref: Optional[str] = None
    bridge_estimated_seconds: Optional[int] = None
    destination_tx_ref: Optional[str] = None
    error_message: Optional[str] = None


def apply_update(tx: SwapTransaction, changes: dict[str, Any]) -> SwapTransaction:
    """
    Validate `changes` against the state machine and return the merged record.

    Raises:
        ValueError: if an immutable field is touched
        InvalidTransition: if the status change is not allowed
    """
    immutable = set(changes) - MUTABLE_FIELDS
    if immutable:
        raise ValueError(f"Immutable fields cannot be updated: {sorted(immutable)}")

    requested = changes.get("status")
    if requested is not None:
        requested = TransactionStatus(requested)
        changes = {**changes, "status": requested}

    if requested is not None and requested != tx.status:
        if requested not in ALLOWED_TRANSITIONS[tx.status]:
            raise InvalidTransition(tx.id, tx.status.value, requested.value)
    elif tx.status.is_terminal and set(changes) - {"status"} - POST_TERMINAL_FIELDS:
        raise InvalidTransition(tx.id, tx.status.value, tx.status.value)

    return dataclasses.replace(tx, **changes, updated_at=utcnow())


class TransactionStore(ABC):
    """Authoritative record of every swap attempt."""

    @abstractmethod
    def create(self, tx: SwapTransaction) -> None:
        """Insert a new record; DuplicateTransaction if the id exists."""

    @abstractmethod
    def get(self, transaction_id: str) -> SwapTransaction:
        """TransactionNotFound if unknown."""

    @abstractmethod
    def list_by_owner(self, owner: str) -> list[SwapTransaction]:
        """Records for one wallet, in creation order."""

    @abstractmethod
    def list_all(self) -> list[SwapTransaction]:
        """All records, in creation order."""

    @abstractmethod
    def list_by_status(self, status: TransactionStatus) -> list[SwapTransaction]:
        """Records currently in `status`, in creation order."""

    @abstractmethod
    def update(self, transaction_id: str, **changes: Any) -> SwapTransaction:
        """Atomically merge mutable fields and stamp updated_at."""


class InMemoryTransactionStore(TransactionStore):
    """Process-local store. dict keeps creation order."""

    def __init__(self) -> None:
        self._records: dict[str, SwapTransaction] = {}
        self._lock = threading.Lock()

    def create(self, tx: SwapTransaction) -> None:
        with self._lock:
            if tx.id in self._records:
                raise DuplicateTransaction(tx.id)
            self._records[tx.id] = tx

    def get(self, transaction_id: str) -> SwapTransaction:
        try:
            return self._records[transaction_id]
        except KeyError:
            raise TransactionNotFound(transaction_id) from None

    def list_by_owner(self, owner: str) -> list[SwapTransaction]:
        key = owner_key(owner)
        with self._lock:
            return [tx for tx in self._records.values() if owner_key(tx.owner_key) == key]

    def list_all(self) -> list[SwapTransaction]:
        with self._lock:
            return list(self._records.values())

    def list_by_status(self, status: TransactionStatus) -> list[SwapTransaction]:
        with self._lock:
            return [tx for tx in self._records.values() if tx.status == status]

    def update(self, transaction_id: str, **changes: Any) -> SwapTransaction:
        with self._lock:
            current = self._records.get(transaction_id)
            if current is None:
                raise TransactionNotFound(transaction_id)
            updated = apply_update(current, changes)
            self._records[transaction_id] = updated
            return updated
