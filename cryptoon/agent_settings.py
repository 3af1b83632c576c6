"""
Auto-purchase agent settings and purchase history.

Storage:
    <data_dir>/agentSettings.json - one row per reader (enabled, monthlyLimit)
    <data_dir>/agentHistory.json  - append-only, one row per purchase attempt

Monthly spend is the sum of successful attempts inside the current UTC
calendar month.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from .json_store import JsonCollection, utc_now, to_timestamp, to_decimal, parse_timestamp

logger = logging.getLogger("AgentSettings")

DEFAULT_MONTHLY_LIMIT = Decimal("1.0")


@dataclass
class AgentSettings:
    address: str
    enabled: bool
    monthly_limit: Decimal
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record):
        return cls(
            address=record["address"].lower(),
            enabled=record.get("enabled") is True,
            monthly_limit=to_decimal(record.get("monthlyLimit"), DEFAULT_MONTHLY_LIMIT),
            updated_at=record.get("lastUpdated"),
        )

    def to_record(self):
        return {
            "address": self.address,
            "enabled": self.enabled,
            "monthlyLimit": float(self.monthly_limit),
            "lastUpdated": self.updated_at,
        }


@dataclass
class AgentHistoryEntry:
    address: str
    series_id: str
    chapter_id: str
    amount: Decimal
    success: bool
    error: str | None
    timestamp: str
    tx_hash: str | None = None

    @classmethod
    def from_record(cls, record):
        return cls(
            address=record["address"].lower(),
            series_id=str(record["seriesId"]),
            chapter_id=str(record["chapterId"]),
            amount=to_decimal(record.get("amount")),
            success=record.get("success") is True,
            error=record.get("error"),
            timestamp=record["timestamp"],
            tx_hash=record.get("txHash"),
        )

    def to_record(self):
        return {
            "address": self.address,
            "seriesId": self.series_id,
            "chapterId": self.chapter_id,
            "amount": str(self.amount),
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp,
            "txHash": self.tx_hash,
        }


def month_window(now):
    """[start, end) of the UTC calendar month containing `now`."""
    now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class AgentSettingsStore:

    def __init__(self, settings_path, history_path, default_monthly_limit=DEFAULT_MONTHLY_LIMIT):
        self.settings = JsonCollection(settings_path, "settings")
        self.history = JsonCollection(history_path, "history")
        self.default_monthly_limit = Decimal(default_monthly_limit)

    # --- Settings ---

    def get_settings(self, address):
        """Stored settings for an address, or None if the reader never saved any."""
        for record in self.settings.load():
            if record.get("address", "").lower() == address.lower():
                return AgentSettings.from_record(record)
        return None

    def get_settings_or_default(self, address):
        return self.get_settings(address) or AgentSettings(
            address=address.lower(),
            enabled=False,
            monthly_limit=self.default_monthly_limit,
        )

    def update_settings(self, address, enabled=None, monthly_limit=None):
        """
        Create or replace a reader's settings. Fields left as None fall back
        to the defaults (disabled, default monthly limit).

        Raises:
            ValueError: missing address or negative monthly limit.
        """
        if not address:
            raise ValueError("Address is required")

        limit = self.default_monthly_limit if monthly_limit is None else to_decimal(monthly_limit)
        if limit < 0:
            raise ValueError("monthlyLimit must be >= 0")

        new_settings = AgentSettings(
            address=address.lower(),
            enabled=bool(enabled) if enabled is not None else False,
            monthly_limit=limit,
            updated_at=to_timestamp(utc_now()),
        )

        records = self.settings.load()
        for i, record in enumerate(records):
            if record.get("address", "").lower() == address.lower():
                records[i] = new_settings.to_record()
                break
        else:
            records.append(new_settings.to_record())

        self.settings.save(records)
        logger.info(f"✅ Agent settings updated for {address}: enabled={new_settings.enabled}, limit={limit}")
        return new_settings

    def list_enabled_users(self):
        return [
            AgentSettings.from_record(r)
            for r in self.settings.load()
            if r.get("enabled") is True
        ]

    # --- History ---

    def append_history(self, entry):
        records = self.history.load()
        records.append(entry.to_record())
        self.history.save(records)

        if entry.success:
            logger.info(f"🤖 Agent purchase recorded: {entry.address} -> Series {entry.series_id}, Chapter {entry.chapter_id} ({entry.amount} USDC)")
        else:
            logger.info(f"❌ Agent purchase failed: {entry.address} -> Series {entry.series_id}, Chapter {entry.chapter_id}: {entry.error}")
        return entry

    def record_attempt(self, address, series_id, chapter_id, amount, success, error=None, tx_hash=None, now=None):
        entry = AgentHistoryEntry(
            address=address.lower(),
            series_id=str(series_id),
            chapter_id=str(chapter_id),
            amount=to_decimal(amount),
            success=success,
            error=None if success else error,
            timestamp=to_timestamp(now or utc_now()),
            tx_hash=tx_hash,
        )
        return self.append_history(entry)

    def get_history(self, address):
        return [
            AgentHistoryEntry.from_record(r)
            for r in self.history.load()
            if r.get("address", "").lower() == address.lower()
        ]

    def get_monthly_spend(self, address, now=None):
        start, end = month_window(now or utc_now())
        total = Decimal("0")
        for entry in self.get_history(address):
            if not entry.success:
                continue
            try:
                attempted_at = parse_timestamp(entry.timestamp)
            except ValueError:
                logger.warning(f"⚠️ Unreadable history timestamp: {entry.timestamp!r}")
                continue
            if start <= attempted_at < end:
                total += entry.amount
        return total

    def reset_history(self, address):
        """Delete every history row for an address. Returns the number removed."""
        records = self.history.load()
        remaining = [r for r in records if r.get("address", "").lower() != address.lower()]
        deleted = len(records) - len(remaining)
        if deleted:
            self.history.save(remaining)

        logger.info(f"🔄 Reset agent history for {address}: {deleted} record(s) deleted")
        return deleted
