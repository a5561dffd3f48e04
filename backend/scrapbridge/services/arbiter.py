"""
Acceptance arbiter.

Vendors race each other and the offer window. Exactly one confirm wins
because the whole precondition sits in the filter of a single conditional
write; losers never mutate the record.
"""

import logging
from datetime import datetime
from typing import Callable

from scrapbridge.core.errors import ConflictError, NotFoundError
from scrapbridge.core.states import PickupStatus, can_transition, sources_for
from scrapbridge.models.pickup import to_projection
from scrapbridge.services.coordinator import OfferCoordinator
from scrapbridge.services.ledger import RejectionLedger, RejectionReason

logger = logging.getLogger(__name__)

FINDING = PickupStatus.FINDING_VENDOR.value


def conflict_reason(pickup: dict, vendor_ref: str, now: datetime) -> str:
    """Why a confirm for `vendor_ref` did not match the record."""
    if pickup["status"] != FINDING:
        return "already-decided"
    if pickup.get("assigned_vendor_ref") != vendor_ref:
        return "wrong-vendor"
    expires_at = pickup.get("assignment_expires_at")
    if expires_at is None or expires_at <= now:
        return "expired"
    # matched on re-read: someone wrote in between
    return "already-decided"


class AcceptanceArbiter:
    def __init__(self, repo, coordinator: OfferCoordinator, ledger: RejectionLedger, clock: Callable[[], datetime]):
        self._repo = repo
        self._coordinator = coordinator
        self._ledger = ledger
        self._clock = clock

    async def _load(self, pickup_id: str) -> dict:
        pickup = await self._repo.get_pickup(pickup_id)
        if pickup is None:
            raise NotFoundError(f"pickup {pickup_id} not found")
        return pickup

    async def confirm_vendor_acceptance(self, pickup_id: str, vendor_ref: str):
        now = self._clock()
        updated = await self._repo.update_pickup_if(
            pickup_id,
            {
                "status": FINDING,
                "assigned_vendor_ref": vendor_ref,
                "assignment_expires_at": {"$gt": now},
            },
            {
                "status": PickupStatus.ASSIGNED.value,
                "assignment_expires_at": None,
                "accepted_at": now,
                "updated_at": now,
            },
        )
        if updated is None:
            pickup = await self._load(pickup_id)
            reason = conflict_reason(pickup, vendor_ref, now)
            logger.info("accept_conflict pickup=%s vendor=%s reason=%s", pickup_id, vendor_ref, reason)
            raise ConflictError(f"Offer for pickup {pickup_id} is not open to {vendor_ref} ({reason})", reason=reason)

        self._coordinator.settle(pickup_id)
        logger.info("offer_accepted pickup=%s vendor=%s", pickup_id, vendor_ref)
        return to_projection(updated)

    async def handle_vendor_rejection(self, pickup_id: str, vendor_ref: str) -> dict:
        """
        A vendor declines the offer it holds.

        Late or foreign rejections are not errors; they come back as
        {"outcome": "ignored"} with the pickup as it stands.
        """
        pickup = await self._load(pickup_id)
        if pickup["status"] != FINDING or pickup.get("assigned_vendor_ref") != vendor_ref:
            logger.info(
                "rejection_ignored pickup=%s vendor=%s status=%s holder=%s",
                pickup_id, vendor_ref, pickup["status"], pickup.get("assigned_vendor_ref"),
            )
            return {"outcome": "ignored", "pickup": to_projection(pickup)}

        await self._ledger.record(pickup_id, pickup.get("dispatch_round", 0), vendor_ref, RejectionReason.EXPLICIT_REJECT)
        self._coordinator.settle(pickup_id)
        after = await self._coordinator.dispatch(pickup_id)
        if after is None:
            after = await self._load(pickup_id)
        return {"outcome": "redispatched", "pickup": to_projection(after)}

    async def _advance(self, pickup_id: str, vendor_ref: str, dst: PickupStatus, stamp: str = None):
        now = self._clock()
        changes = {"status": dst.value, "updated_at": now}
        if stamp:
            changes[stamp] = now
        updated = await self._repo.update_pickup_if(
            pickup_id,
            {"status": {"$in": sources_for(dst.value, "vendor")}, "assigned_vendor_ref": vendor_ref},
            changes,
        )
        if updated is None:
            pickup = await self._load(pickup_id)
            if pickup.get("assigned_vendor_ref") != vendor_ref:
                reason = "wrong-vendor"
            elif not can_transition(pickup["status"], dst.value, "vendor"):
                reason = "invalid-transition"
            else:
                reason = "already-decided"
            raise ConflictError(f"Cannot move pickup {pickup_id} from {pickup['status']} to {dst.value}", reason=reason)

        logger.info("pickup_status pickup=%s vendor=%s status=%s", pickup_id, vendor_ref, dst.value)
        return to_projection(updated)

    async def mark_on_the_way(self, pickup_id: str, vendor_ref: str):
        return await self._advance(pickup_id, vendor_ref, PickupStatus.ON_THE_WAY)

    async def mark_completed(self, pickup_id: str, vendor_ref: str):
        return await self._advance(pickup_id, vendor_ref, PickupStatus.COMPLETED, stamp="completed_at")
