"""
Pydantic models for API requests and responses.

JSON uses camelCase keys; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .fees import FeeBreakdown
from .transactions import SwapTransaction


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Credits
# ============================================================================


class CreditBalanceResponse(ApiModel):
    """Credit balance of one wallet."""

    wallet_address: str = Field(..., description="Wallet address as requested")
    credits: int = Field(..., description="Available credits")
    last_updated: datetime = Field(..., description="Last balance change")


class AddCreditsRequest(ApiModel):
    """Admin request to add (or remove) credits."""

    wallet_address: str = Field(..., description="Wallet to credit")
    amount: int = Field(..., description="Signed credit adjustment")
    admin_wallet: str = Field(..., description="Admin wallet address")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "walletAddress": "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
                    "amount": 500,
                    "adminWallet": "AdminWa11et1111111111111111111111111111111",
                }
            ]
        },
    )


# ============================================================================
# Swap
# ============================================================================


class SwapRequest(ApiModel):
    """Request to swap credits to BTC."""

    wallet_address: str = Field(..., description="User Solana wallet (receives the SOL leg)")
    credits_amount: int = Field(..., description="Credits to convert (fees are added on top)")
    btc_address: str = Field(..., description="Destination Bitcoin address")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "walletAddress": "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
                    "creditsAmount": 100,
                    "btcAddress": "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",
                }
            ]
        },
    )


class FeesPayload(ApiModel):
    """Fee breakdown in credits."""

    swap_fee: int
    network_fee: int
    total_fees: int
    total_credits_charged: int
    fee_percentage: float

    @classmethod
    def from_breakdown(cls, fees: FeeBreakdown) -> "FeesPayload":
        return cls(
            swap_fee=fees.swap_fee,
            network_fee=fees.network_fee,
            total_fees=fees.total_fees,
            total_credits_charged=fees.total_required,
            fee_percentage=float(fees.fee_percentage),
        )


class AmountsPayload(ApiModel):
    """Amounts moved by a swap."""

    credits_amount: int
    sol_amount: float
    total_credits_charged: int


class SwapResponse(ApiModel):
    """Successful swap submission."""

    transaction_id: str
    status: str
    sol_signature: Optional[str] = None
    bridge_transaction_id: Optional[str] = None
    estimated_time: Optional[int] = None
    fees: FeesPayload
    amounts: AmountsPayload
    message: str = "Swap initiated successfully"

    @classmethod
    def from_transaction(cls, tx: SwapTransaction) -> "SwapResponse":
        return cls(
            transaction_id=tx.id,
            status=tx.status.value,
            sol_signature=tx.settlement_tx_ref,
            bridge_transaction_id=tx.bridge_ref,
            estimated_time=tx.bridge_estimated_seconds,
            fees=_fees_from_transaction(tx),
            amounts=AmountsPayload(
                credits_amount=tx.credits_amount,
                sol_amount=float(tx.settlement_amount),
                total_credits_charged=tx.total_credits_charged,
            ),
        )


class ErrorResponse(ApiModel):
    """Error body for 4xx/5xx responses."""

    error: str
    message: Optional[str] = None
    available: Optional[int] = None
    required: Optional[int] = None
    fees: Optional[FeesPayload] = None
    transaction_id: Optional[str] = None


class FeeQuoteResponse(ApiModel):
    """Fee quote for a prospective swap."""

    fees: FeesPayload
    amounts: AmountsPayload
    description: str


# ============================================================================
# Transactions
# ============================================================================


class TransactionResponse(ApiModel):
    """A swap record."""

    id: str
    owner_key: str
    credits_amount: int
    settlement_amount: float
    destination_address: str
    status: str
    swap_fee: int
    network_fee: int
    total_fees: int
    total_credits_charged: int
    settlement_tx_ref: Optional[str] = None
    bridge_ref: Optional[str] = None
    bridge_estimated_seconds: Optional[int] = None
    destination_tx_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    error_message: Optional[str] = None

    @classmethod
    def from_transaction(cls, tx: SwapTransaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            owner_key=tx.owner_key,
            credits_amount=tx.credits_amount,
            settlement_amount=float(tx.settlement_amount),
            destination_address=tx.destination_address,
            status=tx.status.value,
            swap_fee=tx.swap_fee,
            network_fee=tx.network_fee,
            total_fees=tx.total_fees,
            total_credits_charged=tx.total_credits_charged,
            settlement_tx_ref=tx.settlement_tx_ref,
            bridge_ref=tx.bridge_ref,
            bridge_estimated_seconds=tx.bridge_estimated_seconds,
            destination_tx_ref=tx.destination_tx_ref,
            created_at=tx.created_at,
            updated_at=tx.updated_at,
            error_message=tx.error_message,
        )


class TransactionListResponse(ApiModel):
    transactions: list[TransactionResponse]


# ============================================================================
# Admin / Health
# ============================================================================


class AdminConfigResponse(ApiModel):
    """Current swap configuration (read-only; set via environment)."""

    credit_to_sol_rate: float
    min_withdrawal_amount: int
    max_withdrawal_amount: int
    swap_fee_percentage: float
    min_fee_credits: int
    network_fee_credits: int
    solana_network: str
    bitcoin_network: str


class HealthResponse(ApiModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    solana_rpc: bool = Field(..., description="Solana RPC connectivity")
    bridge_configured: bool = Field(..., description="Bridge API URL and key are set")
    custodial_key_configured: bool = Field(..., description="Custodial signer is loaded")


def _fees_from_transaction(tx: SwapTransaction) -> FeesPayload:
    return FeesPayload(
        swap_fee=tx.swap_fee,
        network_fee=tx.network_fee,
        total_fees=tx.total_fees,
        total_credits_charged=tx.total_credits_charged,
        fee_percentage=round(tx.total_fees * 100 / tx.credits_amount, 2),
    )
