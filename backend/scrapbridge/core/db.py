# scrapbridge/core/db.py
from functools import lru_cache
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from scrapbridge.core.config import settings


@lru_cache(maxsize=4)
def get_client(uri: Optional[str] = None) -> AsyncIOMotorClient:
    # tz_aware so expiry comparisons never mix naive and aware datetimes
    return AsyncIOMotorClient(uri or settings.mongo_uri, tz_aware=True, uuidRepresentation="standard")


def get_db(uri: Optional[str] = None, name: Optional[str] = None) -> AsyncIOMotorDatabase:
    return get_client(uri)[name or settings.mongo_db]


async def ensure_indexes(db: AsyncIOMotorDatabase):
    # Pickups: sweep scans + status lists
    await db.pickups.create_index([("status", ASCENDING), ("assignment_expires_at", ASCENDING)])
    await db.pickups.create_index([("status", ASCENDING), ("updated_at", ASCENDING)])
    await db.pickups.create_index("assigned_vendor_ref")
    # Rejection ledger: one record per (pickup, round, vendor)
    await db.rejections.create_index(
        [("pickup_id", ASCENDING), ("round", ASCENDING), ("vendor_ref", ASCENDING)],
        unique=True,
    )
    # Vendor directory
    # preferred-shape records carry vendor_id only; keep them out of the unique index
    await db.vendors.create_index(
        "vendor_ref",
        unique=True,
        partialFilterExpression={"vendor_ref": {"$type": "string"}},
    )
    await db.vendors.create_index("vendor_id", sparse=True)
    await db.vendors.create_index("is_available")
