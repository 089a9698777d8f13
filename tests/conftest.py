"""
Shared fixtures: settings, fake external legs and an in-memory orchestrator.
"""

import asyncio
from decimal import Decimal
from typing import Optional

import pytest

from creditswap_api.bridge import BridgeClient, BridgeHandle, BridgeState, BridgeStatus
from creditswap_api.config import Settings
from creditswap_api.ledger import InMemoryLedger
from creditswap_api.orchestrator import SwapOrchestrator
from creditswap_api.settlement import SettlementClient
from creditswap_api.transactions import InMemoryTransactionStore

ADMIN_WALLET = "AdminWa11et111111111111111111111111111111111"
OWNER = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
OTHER_OWNER = "7EYnhQoR9YM3N7UoaKRoA44Uy8JeaZV3qyouov87awMs"
BTC_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
SOL_SIGNATURE = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"


class FakeSettlement(SettlementClient):
    """Records transfers; optionally fails or stalls."""

    def __init__(
        self,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        reference: str = SOL_SIGNATURE,
    ):
        self.error = error
        self.delay = delay
        self.reference = reference
        self.calls: list[tuple[str, Decimal]] = []
        self.closed = False

    async def transfer(self, destination_owner_key: str, amount: Decimal) -> str:
        self.calls.append((destination_owner_key, amount))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reference

    async def close(self) -> None:
        self.closed = True


class FakeBridge(BridgeClient):
    """In-process bridge with a settable provider state."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.status_error: Optional[Exception] = None
        self.handle = BridgeHandle(bridge_ref="bridge_123", estimated_seconds=600)
        self.status = BridgeStatus(state=BridgeState.PROCESSING)
        self.initiate_calls: list[tuple] = []
        self.status_calls = 0
        self.closed = False

    async def initiate(self, source_chain, destination_chain, amount, destination_address, proof_ref):
        self.initiate_calls.append((source_chain, destination_chain, amount, destination_address, proof_ref))
        if self.error:
            raise self.error
        return self.handle

    async def check_status(self, bridge_ref: str) -> BridgeStatus:
        self.status_calls += 1
        if self.status_error:
            raise self.status_error
        return self.status

    async def close(self) -> None:
        self.closed = True


def make_settings(**overrides) -> Settings:
    values = {
        "admin_wallet_address": ADMIN_WALLET,
        "credit_to_sol_rate": "0.001",
        "min_withdrawal_amount": 10,
        "max_withdrawal_amount": 10000,
        "swap_fee_percentage": "15",
        "min_fee_credits": 5,
        "network_fee_credits": 2,
        "settlement_timeout_seconds": 5,
        "bridge_timeout_seconds": 5,
        "api_token": None,
        "database_url": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_orchestrator(
    settings: Optional[Settings] = None,
    settlement: Optional[SettlementClient] = None,
    bridge: Optional[BridgeClient] = None,
) -> SwapOrchestrator:
    return SwapOrchestrator(
        settings=settings or make_settings(),
        ledger=InMemoryLedger(),
        store=InMemoryTransactionStore(),
        settlement=settlement or FakeSettlement(),
        bridge=bridge or FakeBridge(),
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settlement():
    return FakeSettlement()


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def orchestrator(settings, settlement, bridge):
    return make_orchestrator(settings, settlement, bridge)
