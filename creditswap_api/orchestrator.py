"""
Swap orchestration: credits -> SOL (settlement leg) -> BTC (bridge leg).

Refund rule:
- The ONLY automatic refund is a settlement failure that provably moved no
  funds.
- Once the SOL transfer may have happened (success, ambiguous failure or
  timeout), a later failure marks the record `failed` and keeps the credits
  debited. Those records need operator reconciliation.
"""

import asyncio
import secrets
import weakref
from typing import Any, Optional

import structlog

from .auth import AdminCapability
from .bridge import BridgeClient, BridgeConfig, BridgeState, HttpBridgeClient
from .config import Settings
from .db import build_stores
from .errors import (
    BridgeFailure,
    InsufficientCredits,
    InvalidTransition,
    SettlementFailure,
    SettlementOutcomeUnknown,
    Unauthorized,
    ValidationError,
)
from .fees import FeeBreakdown, FeeSchedule, calculate_swap_fees
from .ledger import CreditBalance, Ledger, owner_key, utcnow
from .settlement import SettlementClient, SolanaSettlementClient
from .transactions import SwapTransaction, TransactionStatus, TransactionStore
from .validation import (
    validate_btc_address,
    validate_credits_amount,
    validate_solana_address,
    validate_transaction_value,
)

logger = structlog.get_logger()

SOURCE_CHAIN = "solana"
DESTINATION_CHAIN = "bitcoin"


def new_transaction_id() -> str:
    """128 random bits; a collision is a bug, not a runtime condition."""
    return f"swap_{secrets.token_hex(16)}"


class SwapOrchestrator:
    """
    Sole writer of swap records.

    Balance check, record creation and debit run under a per-owner lock so
    concurrent swaps for one wallet cannot both pass the check against the
    same balance. The lock is released before any network call.

    Ledger and store calls run in worker threads; the SQL backends are
    blocking.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: Ledger,
        store: TransactionStore,
        settlement: SettlementClient,
        bridge: BridgeClient,
    ):
        self.settings = settings
        self.schedule = FeeSchedule.from_settings(settings)
        self.ledger = ledger
        self.store = store
        self.settlement = settlement
        self.bridge = bridge

        # Entries vanish once no coroutine holds or waits on the lock
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._inflight: set[asyncio.Task[SwapTransaction]] = set()

    def _owner_lock(self, owner: str) -> asyncio.Lock:
        key = owner_key(owner)
        lock = self._owner_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, owner: str) -> CreditBalance:
        return await asyncio.to_thread(self.ledger.get_balance, owner)

    async def get_transaction(self, transaction_id: str) -> SwapTransaction:
        return await asyncio.to_thread(self.store.get, transaction_id)

    async def list_transactions(self, owner: str) -> list[SwapTransaction]:
        return await asyncio.to_thread(self.store.list_by_owner, owner)

    async def list_all_transactions(
        self,
        capability: AdminCapability,
        owner: Optional[str] = None,
    ) -> list[SwapTransaction]:
        """Admin view: every wallet, or one wallet when `owner` is given."""
        _require_admin(capability)
        if owner:
            return await asyncio.to_thread(self.store.list_by_owner, owner)
        return await asyncio.to_thread(self.store.list_all)

    def quote(self, credits_amount: Any) -> FeeBreakdown:
        """Fee breakdown for a prospective swap."""
        check = validate_credits_amount(
            credits_amount,
            self.settings.min_withdrawal_amount,
            self.settings.max_withdrawal_amount,
        )
        if not check.valid:
            raise ValidationError(check.error or "Invalid amount")
        return calculate_swap_fees(credits_amount, self.schedule)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def grant_credits(self, capability: AdminCapability, owner: str, amount: Any) -> CreditBalance:
        """Add (or, with a negative amount, remove) credits. Never below zero."""
        _require_admin(capability)

        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be a whole number")
        if not owner or not owner.strip():
            raise ValidationError("Wallet address is required")

        async with self._owner_lock(owner):
            current = await asyncio.to_thread(self.ledger.get_balance, owner)
            if current.credits + amount < 0:
                raise ValidationError(
                    f"Adjustment would make balance negative (balance {current.credits}, amount {amount})"
                )
            balance = await asyncio.to_thread(self.ledger.adjust, owner, amount)

        logger.info(
            "credits_granted",
            owner=balance.owner_key,
            amount=amount,
            credits=balance.credits,
            admin=capability.wallet_address,
        )
        return balance

    # ------------------------------------------------------------------
    # Swap pipeline
    # ------------------------------------------------------------------

    def _validate_request(self, owner: Any, credits_amount: Any, destination_address: Any) -> None:
        checks = (
            validate_solana_address(owner),
            validate_credits_amount(
                credits_amount,
                self.settings.min_withdrawal_amount,
                self.settings.max_withdrawal_amount,
            ),
            validate_btc_address(destination_address, self.settings.bitcoin_network),
        )
        for check in checks:
            if not check.valid:
                raise ValidationError(check.error or "Invalid request")

    async def submit(self, owner: str, credits_amount: int, destination_address: str) -> SwapTransaction:
        """
        Run a swap end to end.

        Returns the record in `bridging` state on success.

        Raises:
            ValidationError, InsufficientCredits: nothing was changed
            SettlementFailure: settlement leg failed; `refunded` says whether
                credits were returned
            BridgeFailure: bridge leg failed after settlement; not refunded
        """
        self._validate_request(owner, credits_amount, destination_address)

        async with self._owner_lock(owner):
            balance = await asyncio.to_thread(self.ledger.get_balance, owner)
            fees = calculate_swap_fees(credits_amount, self.schedule)
            if balance.credits < fees.total_required:
                raise InsufficientCredits(
                    available=balance.credits,
                    required=fees.total_required,
                    fees=fees,
                )

            value_check = validate_transaction_value(
                credits_amount,
                fees.settlement_amount,
                self.schedule.credit_to_settlement_rate,
            )
            if not value_check.valid:
                raise ValidationError(value_check.error or "Transaction value mismatch")

            now = utcnow()
            tx = SwapTransaction(
                id=new_transaction_id(),
                owner_key=owner,
                credits_amount=credits_amount,
                settlement_amount=fees.settlement_amount,
                destination_address=destination_address,
                status=TransactionStatus.PENDING,
                swap_fee=fees.swap_fee,
                network_fee=fees.network_fee,
                total_fees=fees.total_fees,
                total_credits_charged=fees.total_required,
                created_at=now,
                updated_at=now,
            )
            await asyncio.to_thread(self.store.create, tx)

            # Commit point: from here on every failure must be compensated or recorded
            try:
                await asyncio.to_thread(self.ledger.adjust, owner, -fees.total_required)
            except Exception as e:
                await self._mark_failed(tx.id, f"Failed to reserve credits: {e}")
                raise

        logger.info(
            "swap_submitted",
            transaction_id=tx.id,
            owner=owner,
            credits_amount=credits_amount,
            total_required=fees.total_required,
            settlement_amount=str(fees.settlement_amount),
        )

        # A disconnecting caller must not abort the legs
        task = asyncio.ensure_future(self._execute(tx))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _execute(self, tx: SwapTransaction) -> SwapTransaction:
        reference = await self._settle(tx)

        try:
            tx = await asyncio.to_thread(
                self.store.update,
                tx.id,
                status=TransactionStatus.SETTLED_ON_CHAIN,
                settlement_tx_ref=reference,
            )
        except Exception:
            logger.critical(
                "settlement_record_failed",
                transaction_id=tx.id,
                settlement_ref=reference,
            )
            raise

        logger.info("swap_settled_on_chain", transaction_id=tx.id, settlement_ref=reference)
        return await self._bridge(tx, reference)

    async def _settle(self, tx: SwapTransaction) -> str:
        timeout = self.settings.settlement_timeout_seconds
        refs: dict[str, str] = {}
        try:
            return await asyncio.wait_for(
                self.settlement.transfer(tx.owner_key, tx.settlement_amount),
                timeout=timeout,
            )
        except SettlementOutcomeUnknown as e:
            reason = f"Settlement outcome unknown, manual review required: {e.reason}"
            if e.reference:
                refs["settlement_tx_ref"] = e.reference
        except asyncio.TimeoutError:
            reason = f"Settlement timed out after {timeout:g}s, outcome unknown, manual review required"
        except SettlementFailure as e:
            await self._refund(tx, e.reason)
            raise SettlementFailure(e.reason, refunded=True, transaction_id=tx.id) from e
        except Exception as e:
            reason = f"Unexpected settlement error, manual review required: {e}"

        await self._mark_failed(tx.id, reason, **refs)
        logger.error(
            "settlement_outcome_unknown",
            transaction_id=tx.id,
            settlement_ref=refs.get("settlement_tx_ref"),
            reason=reason,
        )
        raise SettlementFailure(reason, refunded=False, transaction_id=tx.id)

    async def _refund(self, tx: SwapTransaction, reason: str) -> None:
        """Return the debited credits after a settlement that moved no funds."""
        try:
            await asyncio.to_thread(self.ledger.adjust, tx.owner_key, tx.total_credits_charged)
        except Exception as refund_error:
            reason = f"{reason}; refund failed, manual credit required: {refund_error}"
            logger.critical(
                "settlement_refund_failed",
                transaction_id=tx.id,
                owner=tx.owner_key,
                credits=tx.total_credits_charged,
                error=str(refund_error),
            )
            await self._mark_failed(tx.id, reason)
            raise SettlementFailure(reason, refunded=False, transaction_id=tx.id) from refund_error

        await self._mark_failed(tx.id, reason)
        logger.warning(
            "settlement_failed_refunded",
            transaction_id=tx.id,
            refunded=tx.total_credits_charged,
            reason=reason,
        )

    async def _bridge(self, tx: SwapTransaction, reference: str) -> SwapTransaction:
        timeout = self.settings.bridge_timeout_seconds
        try:
            handle = await asyncio.wait_for(
                self.bridge.initiate(
                    SOURCE_CHAIN,
                    DESTINATION_CHAIN,
                    tx.settlement_amount,
                    tx.destination_address,
                    reference,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            reason = f"Bridge request timed out after {timeout:g}s"
        except BridgeFailure as e:
            reason = e.reason
        except Exception as e:
            reason = f"Unexpected bridge error: {e}"
        else:
            try:
                tx = await asyncio.to_thread(
                    self.store.update,
                    tx.id,
                    status=TransactionStatus.BRIDGING,
                    bridge_ref=handle.bridge_ref,
                    bridge_estimated_seconds=handle.estimated_seconds,
                )
            except Exception:
                logger.critical(
                    "bridging_record_failed",
                    transaction_id=tx.id,
                    settlement_ref=reference,
                    bridge_ref=handle.bridge_ref,
                )
                raise
            logger.info(
                "swap_bridging",
                transaction_id=tx.id,
                bridge_ref=handle.bridge_ref,
                estimated_seconds=handle.estimated_seconds,
            )
            return tx

        # SOL already left the custodial wallet: record, do not refund
        await self._mark_failed(tx.id, reason)
        logger.error(
            "bridge_failed_needs_reconciliation",
            transaction_id=tx.id,
            settlement_ref=reference,
            reason=reason,
        )
        raise BridgeFailure(reason, settlement_ref=reference, transaction_id=tx.id)

    async def _mark_failed(self, transaction_id: str, reason: str, **refs: Any) -> None:
        await asyncio.to_thread(
            self.store.update,
            transaction_id,
            status=TransactionStatus.FAILED,
            error_message=reason,
            **refs,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def refresh_status(self, transaction_id: str) -> SwapTransaction:
        """
        Poll the bridge for a `bridging` record and advance it.

        Bridge errors are logged and swallowed; the stored record is returned
        unchanged.
        """
        tx = await asyncio.to_thread(self.store.get, transaction_id)
        if tx.status != TransactionStatus.BRIDGING or not tx.bridge_ref:
            return tx

        try:
            status = await asyncio.wait_for(
                self.bridge.check_status(tx.bridge_ref),
                timeout=self.settings.bridge_timeout_seconds,
            )
        except Exception as e:
            logger.warning(
                "bridge_status_check_failed",
                transaction_id=tx.id,
                bridge_ref=tx.bridge_ref,
                error=str(e) or type(e).__name__,
            )
            return tx

        changes: dict[str, Any] = {}
        if status.state == BridgeState.COMPLETED:
            changes["status"] = TransactionStatus.COMPLETED
        elif status.state == BridgeState.FAILED:
            changes["status"] = TransactionStatus.FAILED
            changes["error_message"] = status.reason or "Bridge reported failure"
        if status.destination_tx_ref and status.destination_tx_ref != tx.destination_tx_ref:
            changes["destination_tx_ref"] = status.destination_tx_ref

        if not changes:
            return tx

        try:
            tx = await asyncio.to_thread(self.store.update, tx.id, **changes)
        except InvalidTransition:
            # A concurrent refresh already moved the record on
            return await asyncio.to_thread(self.store.get, transaction_id)

        logger.info(
            "swap_status_refreshed",
            transaction_id=tx.id,
            status=tx.status.value,
            destination_tx_ref=tx.destination_tx_ref,
        )
        return tx

    async def close(self) -> None:
        """Wait for in-flight swaps, then close the external clients."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await self.settlement.close()
        await self.bridge.close()


def _require_admin(capability: Any) -> None:
    if not isinstance(capability, AdminCapability):
        raise Unauthorized("Unauthorized - admin only")


def build_orchestrator(settings: Settings) -> SwapOrchestrator:
    """Wire stores and external clients from settings."""
    ledger, store = build_stores(settings.database_url)
    settlement = SolanaSettlementClient(
        rpc_url=settings.solana_rpc_url,
        secret_key=settings.admin_secret_key,
    )
    bridge = HttpBridgeClient(
        BridgeConfig(
            url=settings.bridge_api_url,
            api_key=settings.bridge_api_key,
            timeout=settings.bridge_timeout_seconds,
        )
    )
    return SwapOrchestrator(
        settings=settings,
        ledger=ledger,
        store=store,
        settlement=settlement,
        bridge=bridge,
    )
