"""
Ledger - the four JSON record sets behind the platform, under one data dir.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .favorites import FavoritesStore
from .purchases import PurchaseStore
from .agent_settings import AgentSettingsStore, DEFAULT_MONTHLY_LIMIT

logger = logging.getLogger("Ledger")


@dataclass
class ResetResult:
    purchases_deleted: int
    history_deleted: int

    @property
    def total(self):
        return self.purchases_deleted + self.history_deleted


class Ledger:

    def __init__(self, data_dir, default_monthly_limit=DEFAULT_MONTHLY_LIMIT):
        self.data_dir = Path(data_dir)
        self.favorites = FavoritesStore(self.data_dir / "favorites.json")
        self.purchases = PurchaseStore(self.data_dir / "purchases.json")
        self.agent = AgentSettingsStore(
            self.data_dir / "agentSettings.json",
            self.data_dir / "agentHistory.json",
            default_monthly_limit=default_monthly_limit,
        )

    def reset_user(self, address):
        """
        Purge a reader's purchases and agent history together (admin/testing).
        Favorites and settings are left alone.
        """
        if not address:
            raise ValueError("Address is required")

        result = ResetResult(
            purchases_deleted=self.purchases.reset_user(address),
            history_deleted=self.agent.reset_history(address),
        )
        logger.info(f"🔄 Reset {address}: {result.total} record(s) deleted")
        return result
