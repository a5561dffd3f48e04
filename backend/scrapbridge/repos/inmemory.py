# scrapbridge/repos/inmemory.py
import copy
from typing import Any, Dict, List, Optional


def _cmp(op: str, have: Any, want: Any) -> bool:
    if op == "$in":
        return have in want
    if op == "$nin":
        return have not in want
    if op == "$ne":
        return have != want
    # ordering operators never match a missing value (same as Mongo)
    if have is None:
        return False
    if op == "$gt":
        return have > want
    if op == "$gte":
        return have >= want
    if op == "$lt":
        return have < want
    if op == "$lte":
        return have <= want
    raise ValueError(f"unsupported operator {op}")


def matches(doc: dict, flt: Dict[str, Any]) -> bool:
    """Evaluate the small subset of Mongo filter syntax the engine uses."""
    for key, cond in flt.items():
        have = doc.get(key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_cmp(op, have, want) for op, want in cond.items()):
                return False
        elif have != cond:
            return False
    return True


class InMemoryRepo:
    """
    Process-local store with the same contract as MongoRepo.

    Conditional updates check and write without awaiting anything in between,
    so on one event loop they are as atomic as find_one_and_update.
    """

    def __init__(self):
        self.pickups: Dict[str, dict] = {}
        self.rejections: List[dict] = []
        self.vendors: Dict[str, dict] = {}

    # Pickups
    async def insert_pickup(self, doc: dict) -> dict:
        if doc["_id"] in self.pickups:
            raise ValueError("Pickup exists")
        self.pickups[doc["_id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def get_pickup(self, pickup_id: str) -> Optional[dict]:
        doc = self.pickups.get(pickup_id)
        return copy.deepcopy(doc) if doc else None

    async def list_pickups(self, status: Optional[str] = None) -> List[dict]:
        vals = [p for p in self.pickups.values() if status is None or p["status"] == status]
        vals.sort(key=lambda p: p.get("created_at"), reverse=True)
        return copy.deepcopy(vals)

    async def update_pickup_if(
        self,
        pickup_id: str,
        expect: Dict[str, Any],
        changes: Dict[str, Any],
        inc: Optional[Dict[str, int]] = None,
    ) -> Optional[dict]:
        doc = self.pickups.get(pickup_id)
        if doc is None or not matches(doc, expect):
            return None
        doc.update(copy.deepcopy(changes))
        for k, v in {"version": 1, **(inc or {})}.items():
            doc[k] = doc.get(k, 0) + v
        return copy.deepcopy(doc)

    async def find_expired_offers(self, now) -> List[dict]:
        flt = {"status": "FINDING_VENDOR", "assignment_expires_at": {"$lte": now}}
        return copy.deepcopy([p for p in self.pickups.values() if matches(p, flt)])

    async def find_stalled_pickups(self, statuses: List[str], updated_before) -> List[dict]:
        flt = {
            "status": {"$in": statuses},
            "assignment_expires_at": None,
            "updated_at": {"$lt": updated_before},
        }
        return copy.deepcopy([p for p in self.pickups.values() if matches(p, flt)])

    # Rejection ledger
    async def add_rejection(self, record: dict) -> bool:
        key = (record["pickup_id"], record["round"], record["vendor_ref"])
        if any((r["pickup_id"], r["round"], r["vendor_ref"]) == key for r in self.rejections):
            return False
        self.rejections.append(copy.deepcopy(record))
        return True

    async def list_rejections(self, pickup_id: str, round_: Optional[int] = None) -> List[dict]:
        return copy.deepcopy([
            r for r in self.rejections
            if r["pickup_id"] == pickup_id and (round_ is None or r["round"] == round_)
        ])

    # Vendors
    async def upsert_vendor(self, vendor_ref: str, fields: dict) -> dict:
        doc = next(
            (v for v in self.vendors.values() if vendor_ref in (v.get("vendor_ref"), v.get("vendor_id"))),
            None,
        )
        if doc is None:
            doc = self.vendors.setdefault(vendor_ref, {"_id": vendor_ref, "vendor_ref": vendor_ref})
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    async def list_vendors(self) -> List[dict]:
        return copy.deepcopy(list(self.vendors.values()))
