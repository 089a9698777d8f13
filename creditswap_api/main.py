"""
CreditSwap API - HTTP surface for the swap UI.

Provides REST endpoints for:
- Credit balances (GET/POST /credits)
- Fee quotes (GET /fees)
- Swaps (POST /swap)
- Swap status with bridge refresh (GET /status)
- Swap history (GET /transactions)
- Admin configuration view (GET /admin/config)
- Health checks (GET /health)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth import authorize_admin, verify_api_token
from .config import Settings, get_settings
from .errors import (
    BridgeFailure,
    InsufficientCredits,
    SettlementFailure,
    TransactionNotFound,
    Unauthorized,
    ValidationError,
)
from .fees import describe_fees
from .models import (
    AddCreditsRequest,
    AdminConfigResponse,
    AmountsPayload,
    CreditBalanceResponse,
    ErrorResponse,
    FeeQuoteResponse,
    FeesPayload,
    HealthResponse,
    SwapRequest,
    SwapResponse,
    TransactionListResponse,
    TransactionResponse,
)
from .orchestrator import SwapOrchestrator, build_orchestrator
from .reconciler import StatusReconciler

# Configure logging
_settings = get_settings()
logging.basicConfig(format="%(message)s", level=_settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# Global services (initialized at startup)
_orchestrator: Optional[SwapOrchestrator] = None
_reconciler: Optional[StatusReconciler] = None
_reconciler_task: Optional[asyncio.Task[None]] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    global _orchestrator, _reconciler, _reconciler_task

    settings = get_settings()
    _orchestrator = build_orchestrator(settings)

    _reconciler = StatusReconciler(
        _orchestrator,
        interval_seconds=settings.reconcile_interval_seconds,
        stale_seconds=settings.reconcile_stale_seconds,
    )
    _reconciler_task = asyncio.create_task(_reconciler.run())

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        solana_network=settings.solana_network,
        solana_rpc=settings.solana_rpc_url,
        bridge_configured=_orchestrator.bridge.is_configured,
    )

    yield

    # Cleanup
    if _reconciler:
        _reconciler.stop()
    if _reconciler_task:
        _reconciler_task.cancel()
        try:
            await _reconciler_task
        except asyncio.CancelledError:
            pass
    if _orchestrator:
        await _orchestrator.close()

    logger.info("API stopped")


# Create FastAPI app
app = FastAPI(
    title="CreditSwap API",
    description="Credit to BTC swaps via a SOL settlement leg and a SOL/BTC bridge",
    version=__version__,
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator() -> SwapOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Swap service not initialized")
    return _orchestrator


def _error(status_code: int, error: str, **fields: Any) -> JSONResponse:
    body = ErrorResponse(error=error, **fields)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies/queries are client errors with a readable message."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _error(400, message)


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: SwapOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """
    Check API health and connectivity.

    Returns service status, Solana RPC connectivity and bridge configuration.
    """
    solana_ok = await orchestrator.settlement.check_connectivity()
    bridge_ok = orchestrator.bridge.is_configured
    custodial_ok = orchestrator.settlement.is_configured

    return HealthResponse(
        status="ok" if (solana_ok and bridge_ok and custodial_ok) else "degraded",
        version=__version__,
        solana_rpc=solana_ok,
        bridge_configured=bridge_ok,
        custodial_key_configured=custodial_ok,
    )


# ============================================================================
# Credits
# ============================================================================


@app.get("/credits", response_model=CreditBalanceResponse)
async def get_credits(
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Get the credit balance of a wallet (zero if unknown)."""
    if not wallet_address:
        return _error(400, "Wallet address is required")

    balance = await orchestrator.get_balance(wallet_address)
    return CreditBalanceResponse(
        wallet_address=wallet_address,
        credits=balance.credits,
        last_updated=balance.last_updated,
    )


@app.post(
    "/credits",
    response_model=CreditBalanceResponse,
    dependencies=[Depends(verify_api_token)],
)
async def add_credits(
    request: AddCreditsRequest,
    settings: Settings = Depends(get_settings),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Add or remove credits (admin only).

    The admin is identified by exact match of `adminWallet` against
    ADMIN_WALLET_ADDRESS.
    """
    try:
        capability = authorize_admin(request.admin_wallet, settings)
        balance = await orchestrator.grant_credits(capability, request.wallet_address, request.amount)
    except Unauthorized as e:
        logger.warning("Admin check failed", wallet=request.admin_wallet)
        return _error(403, e.message)
    except ValidationError as e:
        return _error(400, e.message)
    except Exception as e:
        logger.error("Failed to update credits", error=str(e), wallet=request.wallet_address)
        return _error(500, "Internal server error", message=str(e))

    return CreditBalanceResponse(
        wallet_address=balance.owner_key,
        credits=balance.credits,
        last_updated=balance.last_updated,
    )


# ============================================================================
# Fees
# ============================================================================


@app.get("/fees", response_model=FeeQuoteResponse)
async def quote_fees(
    credits_amount: int = Query(..., alias="creditsAmount"),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Quote the fees and SOL amount for a prospective swap."""
    try:
        fees = orchestrator.quote(credits_amount)
    except ValidationError as e:
        return _error(400, e.message)

    return FeeQuoteResponse(
        fees=FeesPayload.from_breakdown(fees),
        amounts=AmountsPayload(
            credits_amount=fees.credits_amount,
            sol_amount=float(fees.settlement_amount),
            total_credits_charged=fees.total_required,
        ),
        description=describe_fees(fees, orchestrator.schedule),
    )


# ============================================================================
# Swap
# ============================================================================


@app.post("/swap", response_model=SwapResponse)
async def swap(
    request: SwapRequest,
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Swap credits to BTC.

    1) Debit credits (amount + fees)
    2) Transfer SOL from the custodial wallet to the user's wallet
    3) Bridge the SOL to the BTC address
    """
    try:
        tx = await orchestrator.submit(
            request.wallet_address,
            request.credits_amount,
            request.btc_address,
        )
    except ValidationError as e:
        return _error(400, e.message)
    except InsufficientCredits as e:
        return _error(
            400,
            "Insufficient credits",
            message=e.message,
            available=e.available,
            required=e.required,
            fees=FeesPayload.from_breakdown(e.fees) if e.fees else None,
        )
    except (SettlementFailure, BridgeFailure) as e:
        logger.error(
            "Swap failed",
            error=e.reason,
            transaction_id=e.transaction_id,
            wallet=request.wallet_address,
        )
        return _error(
            500,
            "Failed to process swap",
            message=e.reason,
            transaction_id=e.transaction_id,
        )
    except Exception as e:
        logger.error("Failed to process swap", error=str(e), wallet=request.wallet_address)
        return _error(500, "Failed to process swap", message=str(e))

    logger.info(
        "Swap initiated",
        transaction_id=tx.id,
        wallet=request.wallet_address,
        sol_signature=tx.settlement_tx_ref,
        bridge_ref=tx.bridge_ref,
    )
    return SwapResponse.from_transaction(tx)


# ============================================================================
# Status / History
# ============================================================================


@app.get("/status", response_model=TransactionResponse)
async def transaction_status(
    transaction_id: Optional[str] = Query(None, alias="transactionId"),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """Get a swap record, refreshing it from the bridge if it is bridging."""
    if not transaction_id:
        return _error(400, "Transaction ID is required")

    try:
        tx = await orchestrator.refresh_status(transaction_id)
    except TransactionNotFound:
        return _error(404, "Transaction not found")
    except Exception as e:
        logger.error("Failed to get transaction status", error=str(e), transaction_id=transaction_id)
        return _error(500, "Failed to get transaction status", message=str(e))

    return TransactionResponse.from_transaction(tx)


@app.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    admin_wallet: Optional[str] = Query(None, alias="adminWallet"),
    settings: Settings = Depends(get_settings),
    orchestrator: SwapOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    List swaps.

    Admin (adminWallet) sees every wallet, optionally filtered by
    walletAddress; everyone else only sees walletAddress's own swaps.
    """
    try:
        if admin_wallet:
            try:
                capability = authorize_admin(admin_wallet, settings)
            except Unauthorized:
                capability = None
            if capability is not None:
                transactions = await orchestrator.list_all_transactions(capability, owner=wallet_address)
                return TransactionListResponse(
                    transactions=[TransactionResponse.from_transaction(tx) for tx in transactions]
                )

        if not wallet_address:
            return _error(400, "Wallet address is required")

        transactions = await orchestrator.list_transactions(wallet_address)
    except Exception as e:
        logger.error("Failed to get transactions", error=str(e))
        return _error(500, "Failed to get transactions", message=str(e))

    return TransactionListResponse(
        transactions=[TransactionResponse.from_transaction(tx) for tx in transactions]
    )


# ============================================================================
# Admin
# ============================================================================


@app.get("/admin/config", response_model=AdminConfigResponse)
async def admin_config(
    admin_wallet: Optional[str] = Query(None, alias="adminWallet"),
    settings: Settings = Depends(get_settings),
) -> Any:
    """
    Current swap configuration (admin only).

    Configuration is set via environment variables and cannot be changed at
    runtime.
    """
    try:
        authorize_admin(admin_wallet, settings)
    except Unauthorized as e:
        return _error(403, e.message)

    return AdminConfigResponse(
        credit_to_sol_rate=float(settings.credit_to_sol_rate),
        min_withdrawal_amount=settings.min_withdrawal_amount,
        max_withdrawal_amount=settings.max_withdrawal_amount,
        swap_fee_percentage=float(settings.swap_fee_percentage),
        min_fee_credits=settings.min_fee_credits,
        network_fee_credits=settings.network_fee_credits,
        solana_network=settings.solana_network,
        bitcoin_network=settings.bitcoin_network,
    )


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "creditswap_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
