"""
Credit ledger.

Balances are keyed by lower-cased wallet address. `adjust` is atomic per
owner; it does not check for overdraft (callers reserve under their own
per-owner lock).
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

logger = structlog.get_logger()


def owner_key(wallet_address: str) -> str:
    """Normalise a wallet address into a ledger key."""
    return wallet_address.strip().lower()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CreditBalance:
    """Snapshot of one wallet's credits."""

    owner_key: str
    credits: int
    last_updated: datetime


class Ledger(ABC):
    """Per-wallet credit balances."""

    @abstractmethod
    def get_balance(self, owner: str) -> CreditBalance:
        """Return the balance, or a zero balance if the wallet is unknown."""

    @abstractmethod
    def adjust(self, owner: str, delta: int) -> CreditBalance:
        """Apply a signed delta and return the new balance."""

    @abstractmethod
    def list_balances(self) -> list[CreditBalance]:
        """All known balances."""


class InMemoryLedger(Ledger):
    """Process-local ledger."""

    def __init__(self) -> None:
        self._balances: dict[str, CreditBalance] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get_balance(self, owner: str) -> CreditBalance:
        key = owner_key(owner)
        balance = self._balances.get(key)
        if balance is None:
            return CreditBalance(owner_key=key, credits=0, last_updated=utcnow())
        return balance

    def adjust(self, owner: str, delta: int) -> CreditBalance:
        key = owner_key(owner)
        with self._lock_for(key):
            current = self._balances.get(key)
            credits = (current.credits if current else 0) + int(delta)
            balance = CreditBalance(owner_key=key, credits=credits, last_updated=utcnow())
            self._balances[key] = balance

        logger.debug("ledger_adjusted", owner=key, delta=delta, credits=credits)
        return balance

    def list_balances(self) -> list[CreditBalance]:
        return list(self._balances.values())
