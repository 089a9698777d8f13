"""
Background reconciliation of bridging swaps.

Polls the bridge for swaps stuck in `bridging` and advances them through the
orchestrator, so the orchestrator remains the only writer of swap records.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from .ledger import utcnow
from .orchestrator import SwapOrchestrator
from .transactions import SwapTransaction, TransactionStatus

logger = structlog.get_logger()


@dataclass
class ReconcilerState:
    """Current reconciler state."""

    is_running: bool = False
    last_poll_time: Optional[datetime] = None
    refreshed: int = 0
    completed: int = 0
    failed: int = 0


class StatusReconciler:
    """
    Advances stale `bridging` records:
    1. Lists records in `bridging` not updated for `stale_seconds`
    2. Refreshes each via SwapOrchestrator.refresh_status
    """

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        interval_seconds: float = 30.0,
        stale_seconds: float = 60.0,
    ):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.stale_seconds = stale_seconds
        self.state = ReconcilerState()

    async def stale_transactions(self, now: Optional[datetime] = None) -> list[SwapTransaction]:
        cutoff = (now or utcnow()) - timedelta(seconds=self.stale_seconds)
        bridging = await asyncio.to_thread(
            self.orchestrator.store.list_by_status, TransactionStatus.BRIDGING
        )
        return [tx for tx in bridging if tx.updated_at <= cutoff]

    async def run_once(self, now: Optional[datetime] = None) -> list[SwapTransaction]:
        """
        Run one reconciliation cycle.

        Returns the records whose status changed.
        """
        changed = []
        for tx in await self.stale_transactions(now):
            try:
                refreshed = await self.orchestrator.refresh_status(tx.id)
            except Exception as e:
                logger.error("reconcile_error", transaction_id=tx.id, error=str(e))
                continue

            self.state.refreshed += 1
            if refreshed.status != tx.status:
                changed.append(refreshed)
                if refreshed.status == TransactionStatus.COMPLETED:
                    self.state.completed += 1
                elif refreshed.status == TransactionStatus.FAILED:
                    self.state.failed += 1

        self.state.last_poll_time = utcnow()
        return changed

    async def run(self) -> None:
        """Run the reconciler continuously."""
        self.state.is_running = True
        logger.info("reconciler_starting", poll_interval=self.interval_seconds)

        while self.state.is_running:
            try:
                changed = await self.run_once()
                logger.info(
                    "reconcile_cycle_complete",
                    changed=len(changed),
                    completed=self.state.completed,
                    failed=self.state.failed,
                )
            except Exception as e:
                logger.error("reconcile_cycle_error", error=str(e))

            await asyncio.sleep(self.interval_seconds)

    def stop(self) -> None:
        """Stop the reconciler."""
        self.state.is_running = False
        logger.info("reconciler_stopping")
