"""
Key/value string storage standing in for the browser's local and session
storage.

A ``Storage`` is bound to one scope (for example ``local:<client>`` or
``session:<sid>``). ``MemoryStorage`` keeps values in process, ``MongoStorage``
keeps one document per (scope, key) in the ``storage`` collection.
"""
from __future__ import annotations
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

CHECKOUT_STORAGE_KEY = "checkout_form_data"
ORDERS_KEY = "orders"
CART_ITEMS_KEY = "cart_items"
WISHLIST_ITEMS_KEY = "wishlist_items"
COUPON_CODE_KEY = "coupon_code"


def order_key(order_id: str) -> str:
    return f"order_{order_id}"


class Storage:
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value

    async def remove(self, key: str) -> None:
        self.values.pop(key, None)


class MongoStorage(Storage):
    collection_name = "storage"

    def __init__(self, scope: str):
        self.scope = scope

    async def _collection(self):
        from database import get_db
        db = await get_db()
        return db[self.collection_name]

    async def get(self, key: str) -> Optional[str]:
        col = await self._collection()
        doc = await col.find_one({"scope": self.scope, "key": key})
        return doc.get("value") if doc else None

    async def set(self, key: str, value: str) -> None:
        col = await self._collection()
        await col.update_one(
            {"scope": self.scope, "key": key},
            {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
            upsert=True,
        )

    async def remove(self, key: str) -> None:
        col = await self._collection()
        await col.delete_one({"scope": self.scope, "key": key})


async def load_json(storage: Storage, key: str, default: Any = None) -> Any:
    """Read a JSON value, falling back to ``default`` when missing or corrupt."""
    raw = await storage.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Could not parse stored value for %s, using default", key)
        return default


async def save_json(storage: Storage, key: str, value: Any) -> None:
    await storage.set(key, json.dumps(value))
