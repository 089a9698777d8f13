"""
Tests for CreditSwap API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import (
    ADMIN_WALLET,
    BTC_ADDRESS,
    OTHER_OWNER,
    OWNER,
    SOL_SIGNATURE,
    FakeBridge,
    FakeSettlement,
    make_orchestrator,
    make_settings,
)
from creditswap_api.bridge import BridgeState, BridgeStatus
from creditswap_api.config import get_settings
from creditswap_api.errors import BridgeRejected, SettlementFailure
from creditswap_api.main import app, get_orchestrator


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def services(settings):
    """Orchestrator wired with fakes, installed as the app's dependency."""
    bridge = FakeBridge()
    orchestrator = make_orchestrator(settings, FakeSettlement(), bridge)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_settings] = lambda: settings
    yield orchestrator, bridge
    app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def orchestrator(services):
    return services[0]


class TestHealthCheck:
    """Tests for /health endpoint."""

    def test_health_check_returns_status(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert data["solanaRpc"] is True
        assert data["bridgeConfigured"] is True
        assert data["custodialKeyConfigured"] is True

    def test_uninitialized_service(self):
        app.dependency_overrides.clear()
        response = TestClient(app).get("/health")
        assert response.status_code == 503


class TestCredits:
    """Tests for /credits endpoints."""

    def test_get_unknown_wallet(self, client):
        response = client.get("/credits", params={"walletAddress": OWNER})
        assert response.status_code == 200
        data = response.json()
        assert data["walletAddress"] == OWNER
        assert data["credits"] == 0
        assert "lastUpdated" in data

    def test_get_requires_wallet(self, client):
        response = client.get("/credits")
        assert response.status_code == 400
        assert response.json()["error"] == "Wallet address is required"

    def test_admin_adds_credits(self, client):
        response = client.post(
            "/credits",
            json={"walletAddress": OWNER, "amount": 500, "adminWallet": ADMIN_WALLET},
        )
        assert response.status_code == 200
        assert response.json()["credits"] == 500

        response = client.get("/credits", params={"walletAddress": OWNER})
        assert response.json()["credits"] == 500

    def test_non_admin_forbidden(self, client, orchestrator):
        response = client.post(
            "/credits",
            json={"walletAddress": OWNER, "amount": 500, "adminWallet": OWNER},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized - admin only"
        assert orchestrator.ledger.get_balance(OWNER).credits == 0

    def test_negative_result_rejected(self, client):
        response = client.post(
            "/credits",
            json={"walletAddress": OWNER, "amount": -5, "adminWallet": ADMIN_WALLET},
        )
        assert response.status_code == 400

    def test_malformed_body_is_bad_request(self, client):
        response = client.post(
            "/credits",
            json={"walletAddress": OWNER, "amount": "lots", "adminWallet": ADMIN_WALLET},
        )
        assert response.status_code == 400
        assert "amount" in response.json()["error"]

    def test_api_token_required_when_configured(self, services):
        token_settings = make_settings(api_token="secret-token")
        app.dependency_overrides[get_settings] = lambda: token_settings
        client = TestClient(app)
        body = {"walletAddress": OWNER, "amount": 500, "adminWallet": ADMIN_WALLET}

        assert client.post("/credits", json=body).status_code == 401
        assert client.post("/credits", json=body, headers={"X-API-Key": "wrong"}).status_code == 401

        response = client.post("/credits", json=body, headers={"X-API-Key": "secret-token"})
        assert response.status_code == 200


class TestFees:
    def test_quote(self, client):
        response = client.get("/fees", params={"creditsAmount": 100})
        assert response.status_code == 200
        data = response.json()
        assert data["fees"] == {
            "swapFee": 15,
            "networkFee": 2,
            "totalFees": 17,
            "totalCreditsCharged": 117,
            "feePercentage": 17.0,
        }
        assert data["amounts"]["solAmount"] == pytest.approx(0.1)
        assert data["description"].startswith("Swap Fee: 15 credits")

    def test_out_of_bounds(self, client):
        response = client.get("/fees", params={"creditsAmount": 5})
        assert response.status_code == 400
        assert response.json()["error"] == "Minimum withdrawal amount is 10 credits"

    def test_missing_amount(self, client):
        assert client.get("/fees").status_code == 400


class TestSwap:
    """Tests for POST /swap."""

    def test_successful_swap(self, client, orchestrator):
        orchestrator.ledger.adjust(OWNER, 200)

        response = client.post(
            "/swap",
            json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["transactionId"].startswith("swap_")
        assert data["status"] == "bridging"
        assert data["solSignature"] == SOL_SIGNATURE
        assert data["bridgeTransactionId"] == "bridge_123"
        assert data["estimatedTime"] == 600
        assert data["fees"]["totalCreditsCharged"] == 117
        assert data["amounts"]["creditsAmount"] == 100
        assert data["amounts"]["solAmount"] == pytest.approx(0.1)
        assert orchestrator.ledger.get_balance(OWNER).credits == 83

    def test_insufficient_credits(self, client, orchestrator):
        orchestrator.ledger.adjust(OWNER, 50)

        response = client.post(
            "/swap",
            json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Insufficient credits"
        assert data["available"] == 50
        assert data["required"] == 117
        assert data["fees"]["totalFees"] == 17

    def test_invalid_btc_address(self, client, orchestrator):
        orchestrator.ledger.adjust(OWNER, 200)
        response = client.post(
            "/swap",
            json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": "nope"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid Bitcoin address"}

    def test_missing_field(self, client):
        response = client.post("/swap", json={"walletAddress": OWNER, "creditsAmount": 100})
        assert response.status_code == 400
        assert "btcAddress" in response.json()["error"]

    def test_settlement_failure_is_server_error(self, settings):
        orchestrator = make_orchestrator(
            settings,
            settlement=FakeSettlement(error=SettlementFailure("Admin secret key not configured")),
        )
        orchestrator.ledger.adjust(OWNER, 200)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        app.dependency_overrides[get_settings] = lambda: settings
        try:
            response = TestClient(app).post(
                "/swap",
                json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Failed to process swap"
        assert data["message"] == "Admin secret key not configured"
        assert data["transactionId"].startswith("swap_")
        assert orchestrator.ledger.get_balance(OWNER).credits == 200

    def test_bridge_failure_is_server_error(self, settings):
        orchestrator = make_orchestrator(settings, bridge=FakeBridge(error=BridgeRejected("rejected")))
        orchestrator.ledger.adjust(OWNER, 200)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        try:
            response = TestClient(app).post(
                "/swap",
                json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["message"] == "rejected"
        assert orchestrator.ledger.get_balance(OWNER).credits == 83


class TestStatus:
    """Tests for GET /status."""

    def test_refreshes_from_bridge(self, client, services):
        orchestrator, bridge = services
        orchestrator.ledger.adjust(OWNER, 200)
        tx_id = client.post(
            "/swap",
            json={"walletAddress": OWNER, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
        ).json()["transactionId"]

        response = client.get("/status", params={"transactionId": tx_id})
        assert response.status_code == 200
        assert response.json()["status"] == "bridging"

        bridge.status = BridgeStatus(state=BridgeState.COMPLETED, destination_tx_ref="btc_tx_1")
        response = client.get("/status", params={"transactionId": tx_id})
        data = response.json()
        assert data["status"] == "completed"
        assert data["destinationTxRef"] == "btc_tx_1"
        assert data["settlementTxRef"] == SOL_SIGNATURE
        assert data["totalCreditsCharged"] == 117

    def test_unknown_transaction(self, client):
        response = client.get("/status", params={"transactionId": "swap_missing"})
        assert response.status_code == 404
        assert response.json()["error"] == "Transaction not found"

    def test_requires_id(self, client):
        assert client.get("/status").status_code == 400


class TestTransactions:
    """Tests for GET /transactions."""

    @pytest.fixture
    def two_swaps(self, client, orchestrator):
        for owner in (OWNER, OTHER_OWNER):
            orchestrator.ledger.adjust(owner, 200)
            response = client.post(
                "/swap",
                json={"walletAddress": owner, "creditsAmount": 100, "btcAddress": BTC_ADDRESS},
            )
            assert response.status_code == 200

    def test_own_transactions_only(self, client, two_swaps):
        response = client.get("/transactions", params={"walletAddress": OWNER})
        assert response.status_code == 200
        transactions = response.json()["transactions"]
        assert [tx["ownerKey"] for tx in transactions] == [OWNER]

    def test_admin_sees_all(self, client, two_swaps):
        response = client.get("/transactions", params={"adminWallet": ADMIN_WALLET})
        assert len(response.json()["transactions"]) == 2

    def test_admin_filters_by_wallet(self, client, two_swaps):
        response = client.get(
            "/transactions",
            params={"adminWallet": ADMIN_WALLET, "walletAddress": OTHER_OWNER},
        )
        assert [tx["ownerKey"] for tx in response.json()["transactions"]] == [OTHER_OWNER]

    def test_fake_admin_falls_back_to_own(self, client, two_swaps):
        response = client.get(
            "/transactions",
            params={"adminWallet": OWNER, "walletAddress": OWNER},
        )
        assert len(response.json()["transactions"]) == 1

    def test_requires_wallet(self, client):
        response = client.get("/transactions")
        assert response.status_code == 400


class TestAdminConfig:
    def test_admin(self, client):
        response = client.get("/admin/config", params={"adminWallet": ADMIN_WALLET})
        assert response.status_code == 200
        data = response.json()
        assert data["creditToSolRate"] == pytest.approx(0.001)
        assert data["swapFeePercentage"] == 15.0
        assert data["minFeeCredits"] == 5
        assert data["networkFeeCredits"] == 2
        assert data["minWithdrawalAmount"] == 10

    def test_non_admin(self, client):
        response = client.get("/admin/config", params={"adminWallet": OWNER})
        assert response.status_code == 403
