"""
Settlement leg: SOL transfer from the custodial wallet.

Outcome classification matters more than anything else here. A failure is
only reported as SettlementFailure when the transfer provably did not reach
the network; anything that may have been broadcast is reported as
SettlementOutcomeUnknown and must be reconciled by an operator.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

import structlog
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .errors import SettlementFailure, SettlementOutcomeUnknown

logger = structlog.get_logger()

LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(amount: Decimal) -> int:
    """Convert SOL to lamports, rounding down."""
    return int((Decimal(amount) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_FLOOR))


class SettlementClient(ABC):
    """On-chain transfer to the user's wallet."""

    @abstractmethod
    async def transfer(self, destination_owner_key: str, amount: Decimal) -> str:
        """
        Transfer `amount` to `destination_owner_key`.

        Returns:
            Settlement reference (transaction signature)

        Raises:
            SettlementFailure: transfer definitely not executed
            SettlementOutcomeUnknown: transfer may have been executed
        """

    @property
    def is_configured(self) -> bool:
        return True

    async def check_connectivity(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class SolanaSettlementClient(SettlementClient):
    """
    Async Solana client sending system-program transfers.
    """

    def __init__(self, rpc_url: str, secret_key: Optional[str] = None):
        self.rpc_url = rpc_url
        self._client = AsyncClient(rpc_url, commitment=Confirmed)
        self._keypair: Optional[Keypair] = None
        if secret_key:
            try:
                self._keypair = Keypair.from_base58_string(secret_key)
            except Exception as e:
                logger.error("custodial_key_invalid", error=str(e))

    @property
    def custodial_address(self) -> Optional[str]:
        return str(self._keypair.pubkey()) if self._keypair else None

    @property
    def is_configured(self) -> bool:
        return self._keypair is not None

    async def check_connectivity(self) -> bool:
        """Check if Solana RPC is reachable."""
        try:
            return await self._client.is_connected()
        except Exception:
            return False

    async def close(self) -> None:
        await self._client.close()

    async def transfer(self, destination_owner_key: str, amount: Decimal) -> str:
        if self._keypair is None:
            raise SettlementFailure("Admin secret key not configured")

        try:
            destination = Pubkey.from_string(destination_owner_key)
        except Exception as e:
            raise SettlementFailure(f"Invalid destination wallet: {e}") from e

        lamports = sol_to_lamports(amount)
        if lamports <= 0:
            raise SettlementFailure(f"Transfer amount too small: {amount} SOL")

        # Nothing has been sent before this point
        try:
            latest = await self._client.get_latest_blockhash()
            blockhash = latest.value.blockhash
            last_valid_block_height = latest.value.last_valid_block_height

            instruction = transfer(
                TransferParams(
                    from_pubkey=self._keypair.pubkey(),
                    to_pubkey=destination,
                    lamports=lamports,
                )
            )
            message = Message.new_with_blockhash([instruction], self._keypair.pubkey(), blockhash)
            tx = Transaction([self._keypair], message, blockhash)
        except Exception as e:
            raise SettlementFailure(f"Failed to build transfer: {e}") from e

        try:
            response = await self._client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(preflight_commitment=Confirmed),
            )
        except RPCException as e:
            # Preflight simulation rejected the transaction
            raise SettlementFailure(f"Transfer rejected: {e}") from e
        except SolanaRpcException as e:
            raise SettlementOutcomeUnknown(f"Transport error while sending transfer: {e}") from e

        signature = response.value
        logger.info(
            "settlement_sent",
            signature=str(signature),
            destination=destination_owner_key,
            lamports=lamports,
        )

        try:
            confirmation = await self._client.confirm_transaction(
                signature,
                commitment=Confirmed,
                last_valid_block_height=last_valid_block_height,
            )
        except Exception as e:
            raise SettlementOutcomeUnknown(
                f"Transfer {signature} sent but not confirmed: {e}",
                reference=str(signature),
            ) from e

        statuses = confirmation.value
        if statuses and statuses[0] is not None and statuses[0].err is not None:
            # Landed but failed on-chain: no lamports moved
            raise SettlementFailure(f"Transfer {signature} failed on-chain: {statuses[0].err}")

        return str(signature)
