from __future__ import annotations
from typing import Any, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic_settings import BaseSettings
from datetime import datetime, timezone

class Settings(BaseSettings):
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "storefront"

    # Product sheet (rows) and order sheet (appends)
    SHEET_ID: Optional[str] = None
    SHEET_RANGE: str = "Sheet1!A1:Z1000"
    ORDERS_SHEET_ID: Optional[str] = None
    ORDERS_RANGE: str = "Sheet1!A1"
    GOOGLE_CLIENT_EMAIL: Optional[str] = None
    GOOGLE_PRIVATE_KEY: Optional[str] = None

    # when set, checkout posts orders here instead of writing the sheet itself
    ORDERS_ENDPOINT: Optional[str] = None
    BASE_URL: str = "http://localhost:3000"
    PRODUCT_CACHE_TTL: float = 300
    MAX_SESSIONS: int = 1000
    COUPON_POLICY: str = "clear"
    LOG_LEVEL: str = "INFO"

    @property
    def private_key(self) -> Optional[str]:
        # keys pasted into env files carry literal "\n"
        if self.GOOGLE_PRIVATE_KEY is None:
            return None
        return self.GOOGLE_PRIVATE_KEY.replace("\\n", "\n")

settings = Settings()

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

def database_configured() -> bool:
    return bool(settings.DATABASE_URL)

async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL or "mongodb://localhost:27017")
        _db = _client[settings.DATABASE_NAME]
    return _db

async def create_document(collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    db = await get_db()
    now = datetime.now(timezone.utc)
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    if inserted and "_id" in inserted:
        inserted["id"] = str(inserted.pop("_id"))
    return inserted or {}

async def get_documents(collection_name: str, filter_dict: dict[str, Any] | None = None, limit: int = 100) -> list[dict[str, Any]]:
    db = await get_db()
    cursor = db[collection_name].find(filter_dict or {}).limit(limit)
    docs = []
    async for d in cursor:
        d["id"] = str(d.pop("_id"))
        docs.append(d)
    return docs
