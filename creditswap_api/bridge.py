"""
Bridge leg: SOL -> BTC through an external bridge provider.

The provider is an opaque HTTP service:
- POST {url}/bridge            -> {bridgeTransactionId, status, estimatedTime}
- GET  {url}/bridge/{id}       -> {bridgeTransactionId, status, btcTxId?, reason?}
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

from .errors import BridgeRejected, BridgeUnavailable

logger = structlog.get_logger()


class BridgeState(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BridgeHandle:
    """Accepted bridge request."""

    bridge_ref: str
    estimated_seconds: int


@dataclass(frozen=True)
class BridgeStatus:
    """Provider-side state of a bridge request."""

    state: BridgeState
    destination_tx_ref: Optional[str] = None
    reason: Optional[str] = None


class BridgeClient(ABC):
    """Cross-chain bridge provider."""

    @abstractmethod
    async def initiate(
        self,
        source_chain: str,
        destination_chain: str,
        amount: Decimal,
        destination_address: str,
        proof_ref: str,
    ) -> BridgeHandle:
        """
        Start a bridge transfer backed by the settlement reference `proof_ref`.

        Raises:
            BridgeUnavailable: provider unreachable or misconfigured
            BridgeRejected: provider refused the request
        """

    @abstractmethod
    async def check_status(self, bridge_ref: str) -> BridgeStatus:
        """Query the provider for the current state of `bridge_ref`."""

    @property
    def is_configured(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class BridgeConfig:
    """Bridge provider configuration."""

    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 30.0


class HttpBridgeClient(BridgeClient):
    """
    Async HTTP bridge client.
    """

    def __init__(self, config: BridgeConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.url and self.config.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if not self.is_configured:
            raise BridgeUnavailable("Bridge API not configured. Please set BRIDGE_API_KEY and BRIDGE_API_URL")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.url or "",
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, json: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise BridgeUnavailable(f"Bridge request failed: {e}") from e

        if 400 <= response.status_code < 500:
            raise BridgeRejected(f"Bridge rejected request ({response.status_code}): {_error_text(response)}")
        if response.status_code >= 500:
            raise BridgeUnavailable(f"Bridge error ({response.status_code}): {_error_text(response)}")

        try:
            body = response.json()
        except ValueError as e:
            raise BridgeUnavailable("Bridge returned a non-JSON response") from e
        if not isinstance(body, dict):
            raise BridgeUnavailable("Bridge returned an unexpected payload")
        return body

    async def initiate(
        self,
        source_chain: str,
        destination_chain: str,
        amount: Decimal,
        destination_address: str,
        proof_ref: str,
    ) -> BridgeHandle:
        body = await self._request(
            "POST",
            "/bridge",
            json={
                "fromChain": source_chain,
                "toChain": destination_chain,
                "amount": format(Decimal(amount).normalize(), "f"),
                "destinationAddress": destination_address,
                "sourceSignature": proof_ref,
            },
        )

        bridge_ref = body.get("bridgeTransactionId")
        if not bridge_ref:
            raise BridgeUnavailable("Bridge response missing bridgeTransactionId")

        try:
            estimated = int(body.get("estimatedTime") or 0)
        except (TypeError, ValueError):
            estimated = 0

        logger.info("bridge_initiated", bridge_ref=bridge_ref, estimated_seconds=estimated)
        return BridgeHandle(bridge_ref=str(bridge_ref), estimated_seconds=max(estimated, 0))

    async def check_status(self, bridge_ref: str) -> BridgeStatus:
        body = await self._request("GET", f"/bridge/{bridge_ref}")

        try:
            state = BridgeState(str(body.get("status", "")).lower())
        except ValueError:
            raise BridgeUnavailable(f"Unknown bridge status: {body.get('status')!r}") from None

        return BridgeStatus(
            state=state,
            destination_tx_ref=body.get("btcTxId") or None,
            reason=body.get("reason") or body.get("error") or None,
        )


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)
