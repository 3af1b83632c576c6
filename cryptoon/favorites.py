"""
Favorites - the series a reader follows.

Storage: <data_dir>/favorites.json
The agent loop only reads these; readers add and remove them from the UI.
"""

import logging
from dataclasses import dataclass

from .json_store import JsonCollection, utc_now, to_timestamp

logger = logging.getLogger("Favorites")


@dataclass
class Favorite:
    address: str
    series_id: str
    series_title: str
    series_cover: str
    created_at: str

    @classmethod
    def from_record(cls, record):
        return cls(
            address=record["address"].lower(),
            series_id=str(record["seriesId"]),
            series_title=record.get("seriesTitle") or f"Series {record['seriesId']}",
            series_cover=record.get("seriesCover") or "",
            created_at=record.get("timestamp", ""),
        )

    def to_record(self):
        return {
            "address": self.address,
            "seriesId": self.series_id,
            "seriesTitle": self.series_title,
            "seriesCover": self.series_cover,
            "timestamp": self.created_at,
        }


def _matches(record, address, series_id=None):
    if record.get("address", "").lower() != address.lower():
        return False
    return series_id is None or str(record.get("seriesId")) == str(series_id)


class FavoritesStore:

    def __init__(self, path):
        self.collection = JsonCollection(path, "favorites")

    def list_favorites(self, address):
        if not address:
            return []
        return [Favorite.from_record(r) for r in self.collection.load() if _matches(r, address)]

    def list_all(self):
        return [Favorite.from_record(r) for r in self.collection.load()]

    def is_favorited(self, address, series_id):
        if not address or not series_id:
            return False
        return any(_matches(r, address, series_id) for r in self.collection.load())

    def add_favorite(self, address, series_id, series_title=None, series_cover=None):
        """
        Add a series to a reader's favorites.

        Raises:
            ValueError: missing address/series, or the series is already a favorite.
        """
        if not address or not series_id:
            raise ValueError("Address and seriesId are required")

        records = self.collection.load()
        if any(_matches(r, address, series_id) for r in records):
            raise ValueError("Already in favorites")

        favorite = Favorite(
            address=address.lower(),
            series_id=str(series_id),
            series_title=series_title or f"Series {series_id}",
            series_cover=series_cover or "",
            created_at=to_timestamp(utc_now()),
        )
        records.append(favorite.to_record())
        self.collection.save(records)

        logger.info(f"⭐ Favorite added: {address} -> Series {series_id}")
        return favorite

    def remove_favorite(self, address, series_id):
        if not address or not series_id:
            raise ValueError("Address and seriesId are required")

        records = self.collection.load()
        remaining = [r for r in records if not _matches(r, address, series_id)]
        if len(remaining) == len(records):
            raise ValueError("Favorite not found")

        self.collection.save(remaining)
        logger.info(f"💔 Favorite removed: {address} -> Series {series_id}")

    def toggle_favorite(self, address, series_id, series_title=None, series_cover=None):
        """Add the favorite if absent, remove it if present. Returns the new state."""
        if self.is_favorited(address, series_id):
            self.remove_favorite(address, series_id)
            return False
        self.add_favorite(address, series_id, series_title, series_cover)
        return True
