"""
Series catalog - read-only reference data from the front end's db.json.

    {
      "series": [{"id": 1, "title": "...", "cover": "...",
                  "chapters": [{"id": 1, "title": "...", "price": "0.01", "free": false}]}],
      "chapterContent": {"1": {"1": {...}}}
    }
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from .json_store import to_decimal

logger = logging.getLogger("Catalog")

DEFAULT_CHAPTER_PRICE = Decimal("0.01")


class CatalogError(Exception):
    """The catalog file is missing or unreadable."""


@dataclass
class CatalogChapter:
    series_id: str
    chapter_id: str
    title: str
    price: Decimal
    is_free: bool


@dataclass
class CatalogSeries:
    series_id: str
    title: str
    cover: str = ""
    chapters: list = field(default_factory=list)

    def premium_chapters(self):
        return [c for c in self.chapters if not c.is_free]


def _chapter_price(raw, is_free):
    price = to_decimal(raw.get("price"), DEFAULT_CHAPTER_PRICE)
    # A premium chapter always costs something
    if not is_free and price <= 0:
        return DEFAULT_CHAPTER_PRICE
    return price


def _parse_series(raw):
    series_id = str(raw["id"])
    chapters = [
        CatalogChapter(
            series_id=series_id,
            chapter_id=str(ch["id"]),
            title=ch.get("title", ""),
            price=_chapter_price(ch, ch.get("free") is True),
            is_free=ch.get("free") is True,
        )
        for ch in raw.get("chapters", [])
    ]
    return CatalogSeries(
        series_id=series_id,
        title=raw.get("title", f"Series {series_id}"),
        cover=raw.get("cover") or raw.get("coverImage") or "",
        chapters=chapters,
    )


class Catalog:

    def __init__(self, path):
        self.path = Path(path)

    def _read(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Cannot read catalog {self.path}: {e}") from e

    def load_catalog(self):
        """
        Fresh snapshot of every series. Raises CatalogError if the file is
        unreadable or malformed.
        """
        db = self._read()
        try:
            return [_parse_series(raw) for raw in db.get("series", [])]
        except (KeyError, TypeError, AttributeError, ArithmeticError) as e:
            raise CatalogError(f"Malformed catalog {self.path}: {e}") from e

    def find_series(self, series_id, snapshot=None):
        for series in snapshot if snapshot is not None else self.load_catalog():
            if series.series_id == str(series_id):
                return series
        return None

    def find_chapter(self, series_id, chapter_id, snapshot=None):
        series = self.find_series(series_id, snapshot)
        if series is None:
            return None
        for chapter in series.chapters:
            if chapter.chapter_id == str(chapter_id):
                return chapter
        return None

    def get_chapter_content(self, series_id, chapter_id):
        content = (self._read().get("chapterContent") or {}).get(str(series_id), {}).get(str(chapter_id))
        if content is None:
            logger.info(f"❌ Chapter not found: Series {series_id}, Chapter {chapter_id}")
        return content
