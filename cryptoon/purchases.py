"""
Purchase ledger - which chapters each reader owns.

Storage: <data_dir>/purchases.json

A chapter is owned or not: recording the same (address, series, chapter)
twice leaves one row and reports "already recorded" instead of failing.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from .json_store import JsonCollection, utc_now, to_timestamp, to_decimal

logger = logging.getLogger("Purchases")


@dataclass
class Purchase:
    address: str
    series_id: str
    chapter_id: str
    tx_hash: str | None
    amount: Decimal
    created_at: str

    @classmethod
    def from_record(cls, record):
        return cls(
            address=record["address"].lower(),
            series_id=str(record["seriesId"]),
            chapter_id=str(record["chapterId"]),
            tx_hash=record.get("txHash"),
            amount=to_decimal(record.get("amount")),
            created_at=record.get("timestamp", ""),
        )

    def to_record(self):
        return {
            "address": self.address,
            "seriesId": self.series_id,
            "chapterId": self.chapter_id,
            "txHash": self.tx_hash,
            "amount": str(self.amount),
            "timestamp": self.created_at,
        }


@dataclass
class PurchaseResult:
    purchase: Purchase
    already_recorded: bool

    @property
    def recorded(self):
        return not self.already_recorded


def _owned_by(record, address):
    return record.get("address", "").lower() == address.lower()


def _is_chapter(record, address, series_id, chapter_id):
    return (
        _owned_by(record, address)
        and str(record.get("seriesId")) == str(series_id)
        and str(record.get("chapterId")) == str(chapter_id)
    )


class PurchaseStore:

    def __init__(self, path):
        self.collection = JsonCollection(path, "purchases")

    def has_purchased(self, address, series_id, chapter_id):
        return any(
            _is_chapter(r, address, series_id, chapter_id)
            for r in self.collection.load()
        )

    def record_purchase(self, address, series_id, chapter_id, tx_hash=None, amount="0.01"):
        """Record ownership of a chapter. Idempotent per (address, series, chapter)."""
        records = self.collection.load()

        for record in records:
            if _is_chapter(record, address, series_id, chapter_id):
                logger.info(f"ℹ️ Purchase already recorded: {address} -> Series {series_id}, Chapter {chapter_id}")
                return PurchaseResult(Purchase.from_record(record), already_recorded=True)

        purchase = Purchase(
            address=address.lower(),
            series_id=str(series_id),
            chapter_id=str(chapter_id),
            tx_hash=tx_hash,
            amount=to_decimal(amount),
            created_at=to_timestamp(utc_now()),
        )
        records.append(purchase.to_record())
        self.collection.save(records)

        logger.info(f"✅ Purchase recorded: {address} -> Series {series_id}, Chapter {chapter_id}")
        return PurchaseResult(purchase, already_recorded=False)

    def list_purchases(self, address):
        return [Purchase.from_record(r) for r in self.collection.load() if _owned_by(r, address)]

    def list_all(self):
        return [Purchase.from_record(r) for r in self.collection.load()]

    def reset_user(self, address):
        """Delete every purchase for an address. Returns the number removed."""
        records = self.collection.load()
        remaining = [r for r in records if not _owned_by(r, address)]
        deleted = len(records) - len(remaining)
        if deleted:
            self.collection.save(remaining)

        logger.info(f"🔄 Reset purchases for {address}: {deleted} purchase(s) deleted")
        return deleted
