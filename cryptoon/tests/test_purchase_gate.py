import base64
import dataclasses
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cryptoon.gateway_server import create_app
from cryptoon.purchase_gate import PurchaseGate, build_purchase_gate, settled_transaction
from cryptoon.tests.conftest import READER

SETTLED_TX = "0x" + "ab" * 32


def receipt(tx_hash, success=True):
    payload = {"success": success, "transaction": tx_hash, "network": "eip155:84532", "payer": READER}
    return base64.b64encode(json.dumps(payload).encode()).decode()


class FakeFacilitator:
    """Verifies nothing, settles after a 200 answer like the x402 middleware."""

    def __init__(self, settle=True):
        self.settle = settle
        self.settled = []

    async def __call__(self, request, call_next):
        response = await call_next(request)
        if response.status_code == 200 and self.settle:
            self.settled.append(request.url.path)
            response.headers["PAYMENT-RESPONSE"] = receipt(SETTLED_TX)
        return response


CATALOG_PRICES = {("1", "2"): Decimal("0.10"), ("1", "3"): Decimal("0.10"), ("2", "2"): Decimal("0.1")}


def gated_client(settings, ledger, catalog, executor, facilitator, prices=CATALOG_PRICES):
    gate = PurchaseGate(ledger, facilitator, dict(prices))
    return TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=executor, purchase_gate=gate))


@pytest.fixture
def facilitator():
    return FakeFacilitator()


@pytest.fixture
def client(settings, ledger, catalog, executor, facilitator):
    return gated_client(settings, ledger, catalog, executor, facilitator)


def test_settled_payment_unlocks_the_chapter(client, ledger, facilitator):
    response = client.post("/api/purchase/1/2", params={"address": READER}, json={"txHash": "0xforged"})

    assert response.status_code == 200
    purchase = response.json()["purchase"]
    assert purchase["txHash"] == SETTLED_TX
    assert purchase["amount"] == "0.10"
    assert response.json()["alreadyPurchased"] is False
    assert response.headers["PAYMENT-RESPONSE"] == receipt(SETTLED_TX)
    assert facilitator.settled == ["/api/purchase/1/2"]
    assert ledger.purchases.has_purchased(READER, "1", "2")
    assert client.get("/api/chapters/1/2", params={"address": READER}).status_code == 200


def test_owned_chapter_is_not_charged_again(client, ledger, facilitator):
    client.post("/api/purchase/1/2", params={"address": READER})

    response = client.post("/api/purchase/1/2", params={"address": READER})

    assert response.status_code == 409
    assert facilitator.settled == ["/api/purchase/1/2"]
    assert len(ledger.purchases.list_purchases(READER)) == 1


def test_chapter_priced_differently_from_the_gate_is_refused(settings, ledger, catalog, executor, facilitator):
    client = gated_client(settings, ledger, catalog, executor, facilitator,
                          prices={("1", "2"): Decimal("0.01")})

    response = client.post("/api/purchase/1/2", params={"address": READER})

    assert response.status_code == 409
    assert facilitator.settled == []
    assert not ledger.purchases.has_purchased(READER, "1", "2")


def test_chapter_without_a_paid_route_is_refused(settings, ledger, catalog, executor, facilitator):
    client = gated_client(settings, ledger, catalog, executor, facilitator, prices={})

    assert client.post("/api/purchase/1/3", params={"address": READER}).status_code == 409
    assert facilitator.settled == []


def test_unsettled_payment_does_not_unlock(settings, ledger, catalog, executor):
    client = gated_client(settings, ledger, catalog, executor, FakeFacilitator(settle=False))

    response = client.post("/api/purchase/1/2", params={"address": READER})

    assert response.status_code == 402
    assert ledger.purchases.list_purchases(READER) == []


def test_purchase_validation(client, facilitator):
    assert client.post("/api/purchase/1/2").status_code == 400
    assert client.post("/api/purchase/1/1", params={"address": READER}).json()["error"] == "Chapter is free"
    assert client.post("/api/purchase/7/1", params={"address": READER}).status_code == 404
    assert facilitator.settled == []


def test_purchase_without_a_gate_is_unavailable(settings, ledger, catalog, executor):
    client = TestClient(create_app(settings, ledger=ledger, catalog=catalog, wallet=executor))

    response = client.post("/api/purchase/1/2", params={"address": READER})

    assert response.status_code == 503
    assert ledger.purchases.list_purchases(READER) == []


def test_gate_is_off_without_x402(settings, ledger, catalog):
    assert build_purchase_gate(dataclasses.replace(settings, enable_x402=False), ledger, catalog) is None
    assert build_purchase_gate(dataclasses.replace(settings, receiver_wallet=""), ledger, catalog) is None


def test_settlement_receipt_parsing():
    assert settled_transaction(receipt(SETTLED_TX)) == SETTLED_TX
    assert settled_transaction(receipt(SETTLED_TX, success=False)) is None
    assert settled_transaction("not base64 json") is None
    assert settled_transaction(None) is None
