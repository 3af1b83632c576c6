"""
Shared fixtures: a temp data dir, a small catalog and a fake agent wallet.
"""

import dataclasses
import json
import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cryptoon.agent_wallet import to_units
from cryptoon.catalog import Catalog
from cryptoon.config import load_settings
from cryptoon.ledger import Ledger

READER = "0xAbC0000000000000000000000000000000000001"
OTHER_READER = "0xdef0000000000000000000000000000000000002"
RECEIVER = "0x6f21c2155bf93b49348a422a604310f8ccd6ec74"
AGENT_ADDRESS = "0x00000000000000000000000000000000000a6e17"

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

CATALOG = {
    "series": [
        {
            "id": 1,
            "title": "Neon Ronin",
            "cover": "/covers/neon.png",
            "chapters": [
                {"id": 1, "title": "Rain", "price": "0", "free": True},
                {"id": 2, "title": "Steel", "price": "0.10", "free": False},
                {"id": 3, "title": "Ash", "price": "0.10", "free": False},
            ],
        },
        {
            "id": 2,
            "title": "Moonlit Courier",
            "chapters": [
                {"id": 1, "title": "Departure", "free": True},
                {"id": 2, "title": "Crossing", "price": 0.10, "free": False},
            ],
        },
    ],
    "chapterContent": {
        "1": {
            "1": {"pages": ["/pages/1/1/01.png"]},
            "2": {"pages": ["/pages/1/2/01.png"]},
        },
        "2": {
            "2": {"pages": ["/pages/2/2/01.png"]},
        },
    },
}


class FakeExecutor:
    """In-memory PaymentExecutor."""

    network = "base-sepolia"

    def __init__(self, balance="10", configured=True, failures=None):
        self.balance = Decimal(balance)
        self.configured = configured
        self.failures = list(failures or [])
        self.transfers = []
        self.balance_calls = 0

    def is_configured(self):
        return self.configured

    def get_or_create_wallet_address(self):
        return AGENT_ADDRESS

    def get_balance(self):
        self.balance_calls += 1
        return self.balance

    def get_token_balance(self, address):
        return Decimal("2.5")

    def transfer(self, to_address, amount):
        to_units(amount)
        if self.failures:
            raise self.failures.pop(0)
        self.transfers.append((to_address, Decimal(amount)))
        self.balance -= Decimal(amount)
        return "0x" + f"{len(self.transfers):064x}"


class BlockingExecutor(FakeExecutor):
    """Transfer parks until the test releases it."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def transfer(self, to_address, amount):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().transfer(to_address, amount)


@pytest.fixture
def ledger(tmp_path):
    return Ledger(tmp_path / "data")


@pytest.fixture
def catalog_path(tmp_path):
    path = tmp_path / "db.json"
    path.write_text(json.dumps(CATALOG))
    return path


@pytest.fixture
def catalog(catalog_path):
    return Catalog(catalog_path)


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def settings(tmp_path, catalog_path):
    return dataclasses.replace(
        load_settings(),
        data_dir=tmp_path / "data",
        catalog_path=catalog_path,
        receiver_wallet=RECEIVER,
        funder_private_key=None,
    )
