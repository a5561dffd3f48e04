"""
Vendor directory: where dispatch candidates come from.

Vendor records have been written in three shapes over time. They are folded
into one VendorCandidate here and nowhere else:

    canonical  {vendor_ref, location: {lat, lng}, offer_url, is_available, last_seen_at}
    preferred  {vendor_id, latitude, longitude, offer_url, is_available, updated_at}
    legacy     {vendor_ref, last_latitude, last_longitude, offer_url, active, updated_at}
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Collection, List, Optional

from scrapbridge.services.geo import distance_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VendorCandidate:
    vendor_ref: str
    offer_url: str
    location: Optional[dict] = None
    is_available: bool = True
    last_seen_at: Optional[datetime] = None
    distance_km: Optional[float] = None


def _coord(rec: dict, *names: str) -> Optional[float]:
    for n in names:
        v = rec.get(n)
        if v is not None:
            try:
                return float(v)
            except (TypeError, ValueError):
                return None
    return None


def candidate_from_record(rec: dict) -> Optional[VendorCandidate]:
    """Normalize one stored vendor record; None when it cannot be offered to at all."""
    ref = rec.get("vendor_ref") or rec.get("vendor_id")
    offer_url = rec.get("offer_url") or rec.get("offerUrl")
    if not ref or not offer_url:
        return None

    loc = rec.get("location")
    if isinstance(loc, dict) and loc.get("lat") is not None and loc.get("lng") is not None:
        location = {"lat": float(loc["lat"]), "lng": float(loc["lng"])}
    else:
        lat = _coord(rec, "latitude", "last_latitude")
        lng = _coord(rec, "longitude", "last_longitude")
        location = {"lat": lat, "lng": lng} if lat is not None and lng is not None else None

    if "is_available" in rec:
        available = bool(rec["is_available"])
    else:
        available = bool(rec.get("active", False))

    return VendorCandidate(
        vendor_ref=str(ref),
        offer_url=str(offer_url),
        location=location,
        is_available=available,
        last_seen_at=rec.get("last_seen_at") or rec.get("updated_at"),
    )


def rank_candidates(pickup_location: Optional[dict], candidates: List[VendorCandidate]) -> List[VendorCandidate]:
    """Nearest first; unknown distances last; vendor_ref breaks ties."""
    ranked = [replace(c, distance_km=distance_between(pickup_location, c.location)) for c in candidates]
    ranked.sort(key=lambda c: (c.distance_km is None, c.distance_km or 0.0, c.vendor_ref))
    return ranked


class VendorDirectory:
    def __init__(self, repo, clock: Callable[[], datetime], stale_after_seconds: int = 0):
        self._repo = repo
        self._clock = clock
        self._stale_after = timedelta(seconds=stale_after_seconds) if stale_after_seconds > 0 else None

    async def candidates_for(self, pickup: dict, exclude: Collection[str] = ()) -> List[VendorCandidate]:
        now = self._clock()
        pool: List[VendorCandidate] = []
        for rec in await self._repo.list_vendors():
            cand = candidate_from_record(rec)
            if cand is None or not cand.is_available or cand.vendor_ref in exclude:
                continue
            if self._stale_after and (cand.last_seen_at is None or now - cand.last_seen_at > self._stale_after):
                continue
            pool.append(cand)
        return rank_candidates(pickup.get("location"), pool)

    async def register_presence(
        self,
        vendor_ref: str,
        lat: float,
        lng: float,
        offer_url: Optional[str] = None,
        is_available: bool = True,
    ) -> dict:
        fields = {
            "location": {"lat": float(lat), "lng": float(lng)},
            "is_available": is_available,
            "last_seen_at": self._clock(),
        }
        if offer_url:
            fields["offer_url"] = offer_url
        doc = await self._repo.upsert_vendor(vendor_ref, fields)
        logger.debug("vendor_presence vendor=%s available=%s", vendor_ref, is_available)
        return doc
