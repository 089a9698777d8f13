"""
Input validation predicates.

Structural checks only: no checksum verification, no network calls, no state.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

# Allowed drift between credits * rate and the settlement amount
VALUE_TOLERANCE = Decimal("0.0001")

SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

BTC_MAINNET_RE = re.compile(r"^(bc1|[13])[a-zA-HJ-NP-Z0-9]{25,62}$")
BTC_TESTNET_RE = re.compile(r"^(tb1|[mn2])[a-zA-HJ-NP-Z0-9]{25,62}$")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None


OK = ValidationResult(valid=True)


def _invalid(error: str) -> ValidationResult:
    return ValidationResult(valid=False, error=error)


def validate_credits_amount(amount: Any, min_amount: int, max_amount: int) -> ValidationResult:
    """Check the requested credits against the withdrawal bounds."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        return _invalid("Amount must be a whole number of credits")
    if amount <= 0:
        return _invalid("Amount must be greater than 0")
    if amount < min_amount:
        return _invalid(f"Minimum withdrawal amount is {min_amount} credits")
    if amount > max_amount:
        return _invalid(f"Maximum withdrawal amount is {max_amount} credits")
    return OK


def validate_solana_address(address: Any) -> ValidationResult:
    """Base58, 32-44 characters."""
    if not isinstance(address, str) or not SOLANA_ADDRESS_RE.match(address):
        return _invalid("Invalid Solana wallet address")
    return OK


def validate_btc_address(address: Any, network: str = "mainnet") -> ValidationResult:
    """
    Legacy, P2SH, segwit and taproot shapes.

    Testnet mode accepts mainnet shapes as well as tb1/m/n/2 prefixes.
    """
    if not isinstance(address, str) or not address:
        return _invalid("Invalid Bitcoin address")
    if BTC_MAINNET_RE.match(address):
        return OK
    if network.lower() == "testnet" and BTC_TESTNET_RE.match(address):
        return OK
    return _invalid("Invalid Bitcoin address")


def validate_transaction_value(
    credits_amount: int,
    settlement_amount: Decimal,
    expected_rate: Decimal,
) -> ValidationResult:
    """Reject if the settlement amount drifted from credits * rate."""
    expected = Decimal(credits_amount) * Decimal(expected_rate)
    if abs(expected - Decimal(settlement_amount)) > VALUE_TOLERANCE:
        return _invalid("Transaction value mismatch - amounts do not match expected rate")
    return OK
