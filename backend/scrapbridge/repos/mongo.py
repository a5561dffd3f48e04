# scrapbridge/repos/mongo.py
import functools
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from scrapbridge.core.errors import PersistenceError


def _guard(fn):
    """Surface driver failures as PersistenceError; everything else passes through."""
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except DuplicateKeyError:
            raise
        except PyMongoError as ex:
            raise PersistenceError(f"store unavailable: {ex}") from ex
    return wrapper


class MongoRepo:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # Pickups
    @_guard
    async def insert_pickup(self, doc: dict) -> dict:
        await self.db.pickups.insert_one(doc)
        return doc

    @_guard
    async def get_pickup(self, pickup_id: str) -> Optional[dict]:
        return await self.db.pickups.find_one({"_id": pickup_id})

    @_guard
    async def list_pickups(self, status: Optional[str] = None) -> List[dict]:
        q = {"status": status} if status else {}
        cur = self.db.pickups.find(q).sort("created_at", DESCENDING)
        return [p async for p in cur]

    @_guard
    async def update_pickup_if(
        self,
        pickup_id: str,
        expect: Dict[str, Any],
        changes: Dict[str, Any],
        inc: Optional[Dict[str, int]] = None,
    ) -> Optional[dict]:
        # precondition and write in one round trip: the filter IS the lock
        return await self.db.pickups.find_one_and_update(
            {"_id": pickup_id, **expect},
            {"$set": changes, "$inc": {"version": 1, **(inc or {})}},
            return_document=ReturnDocument.AFTER,
        )

    @_guard
    async def find_expired_offers(self, now) -> List[dict]:
        cur = self.db.pickups.find({
            "status": "FINDING_VENDOR",
            "assignment_expires_at": {"$lte": now},
        })
        return [p async for p in cur]

    @_guard
    async def find_stalled_pickups(self, statuses: List[str], updated_before) -> List[dict]:
        cur = self.db.pickups.find({
            "status": {"$in": statuses},
            "assignment_expires_at": None,
            "updated_at": {"$lt": updated_before},
        })
        return [p async for p in cur]

    # Rejection ledger
    @_guard
    async def add_rejection(self, record: dict) -> bool:
        key = {k: record[k] for k in ("pickup_id", "round", "vendor_ref")}
        try:
            res = await self.db.rejections.update_one(key, {"$setOnInsert": record}, upsert=True)
        except DuplicateKeyError:
            # concurrent upsert of the same key; first writer already recorded it
            return False
        return res.upserted_id is not None

    @_guard
    async def list_rejections(self, pickup_id: str, round_: Optional[int] = None) -> List[dict]:
        q: Dict[str, Any] = {"pickup_id": pickup_id}
        if round_ is not None:
            q["round"] = round_
        return [r async for r in self.db.rejections.find(q).sort("created_at", 1)]

    # Vendors
    @_guard
    async def upsert_vendor(self, vendor_ref: str, fields: dict) -> dict:
        return await self.db.vendors.find_one_and_update(
            {"$or": [{"vendor_ref": vendor_ref}, {"vendor_id": vendor_ref}]},
            {"$set": fields, "$setOnInsert": {"vendor_ref": vendor_ref}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    @_guard
    async def list_vendors(self) -> List[dict]:
        return [v async for v in self.db.vendors.find({})]
