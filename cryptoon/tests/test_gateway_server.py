import pytest
from fastapi.testclient import TestClient

from cryptoon.gateway_server import create_app
from cryptoon.tests.conftest import AGENT_ADDRESS, FakeExecutor, READER, OTHER_READER


class FakeTreasury:
    """Records what the platform funding account would have sent."""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def _send(self, token, to_address, amount):
        if self.error:
            raise self.error
        self.sent.append((token, to_address, amount))
        return "0x" + f"{len(self.sent):064x}"

    def send_usdc(self, to_address, amount):
        return self._send("USDC", to_address, amount)

    def send_eth(self, to_address, amount):
        return self._send("ETH", to_address, amount)


@pytest.fixture
def treasury():
    return FakeTreasury()


@pytest.fixture
def client(settings, ledger, catalog, executor, treasury):
    return TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=executor, treasury=treasury))


@pytest.fixture
def unfunded_client(settings, ledger, catalog, executor):
    return TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=executor))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "agentRunning": False}


def test_series_listing(client):
    series = client.get("/api/series").json()["series"]

    assert [s["title"] for s in series] == ["Neon Ronin", "Moonlit Courier"]
    assert series[0]["chapters"][1] == {"id": "2", "title": "Steel", "price": "0.10", "free": False}


# --- Chapters ---

def test_free_chapter_is_readable_without_address(client):
    response = client.get("/api/chapters/1/1")

    assert response.status_code == 200
    assert response.json()["free"] is True
    assert response.json()["content"] == {"pages": ["/pages/1/1/01.png"]}


def test_premium_chapter_requires_payment(client):
    response = client.get("/api/chapters/1/2", params={"address": READER})

    assert response.status_code == 402
    assert response.json()["price"] == "0.10"


def test_owned_premium_chapter_is_readable(client, ledger):
    ledger.purchases.record_purchase(READER, "1", "2", "0xabc", "0.10")

    response = client.get("/api/chapters/1/2", params={"address": READER.lower()})

    assert response.status_code == 200
    assert response.json()["content"] == {"pages": ["/pages/1/2/01.png"]}


def test_unknown_chapter(client):
    assert client.get("/api/chapters/1/99").status_code == 404


# --- Favorites ---

def test_favorites_flow(client):
    added = client.post("/api/favorites", json={"address": READER, "seriesId": "1", "seriesTitle": "Neon Ronin"})
    duplicate = client.post("/api/favorites", json={"address": READER, "seriesId": "1"})

    assert added.json()["favorite"]["seriesTitle"] == "Neon Ronin"
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "Already in favorites"
    assert client.get(f"/api/favorites/{READER}/1").json()["isFavorite"] is True
    assert len(client.get(f"/api/favorites/{READER}").json()["favorites"]) == 1

    assert client.delete(f"/api/favorites/{READER}/1").status_code == 200
    assert client.delete(f"/api/favorites/{READER}/1").status_code == 404
    assert client.get(f"/api/favorites/{READER}/1").json()["isFavorite"] is False


def test_favorite_requires_fields(client):
    assert client.post("/api/favorites", json={"address": READER}).status_code == 400
    assert client.post("/api/favorites", content=b"not json").status_code == 400


# --- Agent ---

def test_agent_settings_default_then_update(client):
    defaults = client.get(f"/api/agent/settings/{READER}").json()["settings"]
    assert defaults["enabled"] is False
    assert defaults["monthlyLimit"] == 1.0

    updated = client.post("/api/agent/settings", json={"address": READER, "enabled": True, "monthlyLimit": 2.5})
    assert updated.json()["settings"]["monthlyLimit"] == 2.5

    stored = client.get(f"/api/agent/settings/{READER}").json()["settings"]
    assert stored["enabled"] is True
    assert stored["monthlyLimit"] == 2.5


def test_agent_settings_rejects_bad_limit(client):
    assert client.post("/api/agent/settings", json={"address": READER, "monthlyLimit": -1}).status_code == 400
    assert client.post("/api/agent/settings", json={"address": READER, "monthlyLimit": "lots"}).status_code == 400
    assert client.post("/api/agent/settings", json={"enabled": True}).status_code == 400


def test_agent_settings_enabled_must_be_a_boolean(client, ledger):
    client.post("/api/agent/settings", json={"address": READER, "enabled": False})

    response = client.post("/api/agent/settings", json={"address": READER, "enabled": "false"})

    assert response.status_code == 400
    assert ledger.agent.get_settings(READER).enabled is False
    assert ledger.agent.list_enabled_users() == []


def test_manual_run_and_history(client, executor):
    client.post("/api/agent/settings", json={"address": READER, "enabled": True, "monthlyLimit": 1})
    client.post("/api/favorites", json={"address": READER, "seriesId": "2"})

    run = client.post("/api/agent/run").json()
    history = client.get(f"/api/agent/history/{READER}").json()

    assert run["success"] is True
    assert run["report"]["purchased"] == 1
    assert len(executor.transfers) == 1
    assert history["history"][0]["success"] is True
    assert history["monthlySpent"] == pytest.approx(0.1)
    assert client.get("/api/chapters/2/2", params={"address": READER}).status_code == 200


def test_agent_wallet(client):
    body = client.get("/api/agent/wallet").json()

    assert body["address"] == AGENT_ADDRESS
    assert body["balance"] == "10"
    assert body["network"] == "base-sepolia"


def test_agent_wallet_rpc_error(settings, ledger, catalog):
    class Offline(FakeExecutor):
        def get_balance(self):
            raise ConnectionError("RPC unreachable")

    client = TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=Offline()))
    response = client.get("/api/agent/wallet")

    assert response.status_code == 502
    assert response.json()["error"] == "RPC unreachable"


def test_user_balance(client):
    assert client.get(f"/api/balance/{READER}").json()["balance"] == "2.5"


# --- Funding ---

def test_fund_agent_sends_usdc_from_the_treasury(client, treasury, settings):
    body = client.post("/api/agent/fund").json()

    assert body["success"] is True
    assert body["agentAddress"] == AGENT_ADDRESS
    assert body["balance"] == "10"
    assert body["transactionHash"] == "0x" + f"{1:064x}"
    assert treasury.sent == [("USDC", AGENT_ADDRESS, settings.fund_usdc_amount)]


def test_fund_agent_gas(client, treasury, settings):
    body = client.post("/api/agent/fund-eth").json()

    assert body["success"] is True
    assert treasury.sent == [("ETH", AGENT_ADDRESS, settings.fund_eth_amount)]


def test_faucet_drips_usdc_to_a_reader(client, treasury, settings):
    body = client.post("/api/faucet", json={"address": READER}).json()

    assert (body["success"], body["token"]) == (True, "USDC")
    assert body["amount"] == str(settings.faucet_usdc_amount)
    assert treasury.sent == [("USDC", READER, settings.faucet_usdc_amount)]


def test_faucet_requires_an_address(client, treasury):
    assert client.post("/api/faucet", json={}).status_code == 400
    assert treasury.sent == []


def test_funding_provider_error(settings, ledger, catalog, executor):
    treasury = FakeTreasury(error=ConnectionError("nonce too low"))
    client = TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=executor, treasury=treasury))

    response = client.post("/api/agent/fund")

    assert response.status_code == 502
    assert response.json()["error"] == "nonce too low"


def test_funding_without_treasury_is_unavailable(unfunded_client):
    assert unfunded_client.post("/api/agent/fund").status_code == 503
    assert unfunded_client.post("/api/agent/fund-eth").status_code == 503
    assert unfunded_client.post("/api/faucet", json={"address": READER}).status_code == 503


# --- Admin ---

def test_reset_clears_purchases_and_history_for_one_address(client, ledger):
    ledger.purchases.record_purchase(READER, "1", "2", "0x1", "0.10")
    ledger.purchases.record_purchase(OTHER_READER, "1", "2", "0x2", "0.10")
    ledger.agent.record_attempt(READER, "1", "3", "0.10", success=False, error="monthly limit exceeded")

    response = client.delete(f"/api/reset/{READER}")

    assert response.json()["deleted"] == {"purchases": 1, "history": 1, "total": 2}
    assert ledger.purchases.list_purchases(READER) == []
    assert len(ledger.purchases.list_purchases(OTHER_READER)) == 1
