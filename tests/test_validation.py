"""
Tests for input validation predicates.
"""

from decimal import Decimal

import pytest

from creditswap_api.validation import (
    validate_btc_address,
    validate_credits_amount,
    validate_solana_address,
    validate_transaction_value,
)


class TestCreditsAmount:
    def test_valid(self):
        assert validate_credits_amount(100, 10, 10000).valid

    @pytest.mark.parametrize(
        "amount,message",
        [
            (1.5, "Amount must be a whole number of credits"),
            ("100", "Amount must be a whole number of credits"),
            (None, "Amount must be a whole number of credits"),
            (0, "Amount must be greater than 0"),
            (-5, "Amount must be greater than 0"),
            (9, "Minimum withdrawal amount is 10 credits"),
            (10001, "Maximum withdrawal amount is 10000 credits"),
        ],
    )
    def test_invalid(self, amount, message):
        result = validate_credits_amount(amount, 10, 10000)
        assert not result.valid
        assert result.error == message

    def test_bounds_inclusive(self):
        assert validate_credits_amount(10, 10, 10000).valid
        assert validate_credits_amount(10000, 10, 10000).valid


class TestSolanaAddress:
    def test_valid(self):
        assert validate_solana_address("9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin").valid
        assert validate_solana_address("11111111111111111111111111111111").valid

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "short",
            # 0, O, I and l are not in the base58 alphabet
            "0xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
            "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFil",
            "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin9xQ",
            None,
        ],
    )
    def test_invalid(self, address):
        result = validate_solana_address(address)
        assert not result.valid
        assert result.error == "Invalid Solana wallet address"


class TestBtcAddress:
    @pytest.mark.parametrize(
        "address",
        [
            "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",
            "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2",
            "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy",
            "bc1p5d7rjq7g6rdk2yhzks9smlaqtedr4dekq08ge8ztwac72sfr9rusxg3297",
        ],
    )
    def test_mainnet_shapes(self, address):
        assert validate_btc_address(address).valid

    def test_testnet_rejected_on_mainnet(self):
        result = validate_btc_address("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
        assert not result.valid
        assert result.error == "Invalid Bitcoin address"

    def test_testnet_accepted_on_testnet(self):
        assert validate_btc_address("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx", "testnet").valid
        assert validate_btc_address("mipcBbFg9gMiCh81Kj8tqqdgoZub1ZJRfn", "testnet").valid

    @pytest.mark.parametrize("address", ["", "bc1", "not-an-address", None, "4J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"])
    def test_invalid(self, address):
        assert not validate_btc_address(address).valid


class TestTransactionValue:
    def test_matching(self):
        assert validate_transaction_value(100, Decimal("0.1"), Decimal("0.001")).valid

    def test_within_tolerance(self):
        assert validate_transaction_value(100, Decimal("0.10005"), Decimal("0.001")).valid

    def test_mismatch(self):
        result = validate_transaction_value(100, Decimal("0.2"), Decimal("0.001"))
        assert not result.valid
        assert result.error == "Transaction value mismatch - amounts do not match expected rate"
