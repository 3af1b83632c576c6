"""
Flat JSON collection files.

Each collection lives in its own file wrapped in a single top-level key,
e.g. purchases.json -> {"purchases": [...]}. Reads that fail return an
empty list and writes that fail are dropped; both are logged so the agent
loop keeps running on the next tick.
"""

import os
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

logger = logging.getLogger("JsonStore")


def utc_now():
    return datetime.now(timezone.utc)


def to_timestamp(dt):
    """ISO-8601 UTC string with a trailing Z, the format the web client reads."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_decimal(value, default="0"):
    """Amounts are stored as strings; older files may hold floats."""
    if value is None or value == "":
        value = default
    return Decimal(str(value))


def parse_timestamp(value):
    """Parse a stored timestamp. Naive values are taken as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class JsonCollection:

    def __init__(self, path, key):
        self.path = Path(path)
        self.key = key

    def _init_file(self):
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write([])
            logger.info(f"📁 {self.path.name} initialized")

    def _write(self, records):
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump({self.key: records}, f, indent=2, default=str)
        os.replace(tmp_path, self.path)

    def load(self):
        """Load every record in the collection."""
        try:
            self._init_file()
            with open(self.path, 'r') as f:
                data = json.load(f)
            return list(data.get(self.key) or [])
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.error(f"❌ Error loading {self.path.name}: {e}")
            return []

    def save(self, records):
        """Persist the whole collection. Returns False if the write was dropped."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write(records)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"❌ Error saving {self.path.name}: {e}")
            return False
