"""
Offer coordinator.

Sequential fanout for one pickup:
1. Pick the nearest vendor that has not passed on the pickup yet
2. Hold the pickup for it (conditional write) and arm a timer
3. POST the offer
4. On timeout / rejection / send failure, go back to 1
5. Stop when a vendor accepts or nobody is left (NO_VENDOR_AVAILABLE)

Every write is conditional on the record still looking the way this loop last
saw it. The DispatchTable only tells a resumed loop or a firing timer that it
has been superseded.
"""

import asyncio
import functools
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set

from scrapbridge.core.errors import ConflictError, NotFoundError, TransientVendorError, ValidationError
from scrapbridge.core.states import (
    CANCELLABLE,
    DISPATCH_TERMINAL,
    DISPATCHABLE,
    RETRY_BLOCKED,
    PickupStatus,
)
from scrapbridge.models.pickup import PickupCreate
from scrapbridge.services.directory import VendorCandidate, VendorDirectory
from scrapbridge.services.dispatch_table import DispatchTable
from scrapbridge.services.ledger import RejectionLedger, RejectionReason
from scrapbridge.services.notifier import VendorNotifier, build_offer_payload

logger = logging.getLogger(__name__)

FINDING = PickupStatus.FINDING_VENDOR.value


class OfferCoordinator:
    # last_failure() keeps at most this many pickups, oldest dropped first
    max_failures = 1024

    def __init__(
        self,
        repo,
        directory: VendorDirectory,
        ledger: RejectionLedger,
        notifier: VendorNotifier,
        clock: Callable[[], datetime],
        offer_window_seconds: float = 10.0,
    ):
        self._repo = repo
        self._directory = directory
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock
        self.offer_window = timedelta(seconds=offer_window_seconds)

        self.table = DispatchTable()
        self._tasks: Set[asyncio.Task] = set()
        self._timers: Set[asyncio.Task] = set()
        self._failures: Dict[str, BaseException] = {}

    # ===================== Supervised tasks =====================

    def _spawn(self, coro, pickup_id: str, kind: str, bucket: Set[asyncio.Task]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"{kind}:{pickup_id}")
        bucket.add(task)
        task.add_done_callback(functools.partial(self._reap, pickup_id, bucket))
        return task

    def _reap(self, pickup_id: str, bucket: Set[asyncio.Task], task: asyncio.Task):
        bucket.discard(task)
        if task.cancelled():
            return
        ex = task.exception()
        if ex is not None:
            self._failures.pop(pickup_id, None)
            self._failures[pickup_id] = ex
            while len(self._failures) > self.max_failures:
                self._failures.pop(next(iter(self._failures)))
            logger.error("dispatch_task_failed pickup=%s task=%s error=%r", pickup_id, task.get_name(), ex, exc_info=ex)

    def spawn_dispatch(self, pickup_id: str) -> asyncio.Task:
        """Fire-and-forget dispatch; failures land in last_failure() and the log."""
        self._failures.pop(pickup_id, None)
        return self._spawn(self.dispatch(pickup_id), pickup_id, "dispatch", self._tasks)

    def spawn_timeout(self, pickup_id: str, vendor_ref: str) -> asyncio.Task:
        """Run the timeout path as its own supervised task (used by the sweep)."""
        return self._spawn(self.handle_offer_timeout(pickup_id, vendor_ref), pickup_id, "timeout", self._tasks)

    def last_failure(self, pickup_id: str) -> Optional[BaseException]:
        return self._failures.get(pickup_id)

    async def drain(self):
        """Wait for spawned dispatches (not armed timers) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self):
        self.table.clear()
        pending = list(self._tasks | self._timers)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ===================== Pickup lifecycle =====================

    async def create_pickup(self, data: PickupCreate) -> dict:
        now = self._clock()
        doc = {
            "_id": uuid.uuid4().hex,
            "status": PickupStatus.REQUESTED.value,
            "address": data.address,
            "location": data.location(),
            "time_slot": data.time_slot,
            "items": [it.model_dump() for it in data.items],
            "assigned_vendor_ref": None,
            "assignment_expires_at": None,
            "accepted_at": None,
            "cancelled_at": None,
            "completed_at": None,
            "dispatch_round": 0,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        doc = await self._repo.insert_pickup(doc)
        logger.info("pickup_created pickup=%s items=%d", doc["_id"], len(doc["items"]))
        self.spawn_dispatch(doc["_id"])
        return doc

    async def dispatch(self, pickup_id: str) -> Optional[dict]:
        """
        Offer the pickup to the next eligible vendor.

        Returns the pickup as left by this call, or None when another actor
        took over while this call was suspended.
        """
        if not pickup_id:
            raise ValidationError("pickup_id is required")

        generation = self.table.advance(pickup_id)
        try:
            while True:
                pickup = await self._repo.get_pickup(pickup_id)
                if pickup is None:
                    self.table.discard(pickup_id, generation)
                    raise NotFoundError(f"pickup {pickup_id} not found")
                if pickup["status"] in DISPATCH_TERMINAL:
                    self.table.discard(pickup_id, generation)
                    self._failures.pop(pickup_id, None)
                    logger.debug("dispatch_noop pickup=%s status=%s", pickup_id, pickup["status"])
                    return pickup
                if not self.table.is_current(pickup_id, generation):
                    return None

                round_ = pickup.get("dispatch_round", 0)
                excluded = await self._ledger.excluded(pickup_id, round_)
                candidates = await self._directory.candidates_for(pickup, exclude=excluded)
                if not self.table.is_current(pickup_id, generation):
                    return None

                if not candidates:
                    return await self._give_up(pickup, generation, len(excluded))

                vendor = candidates[0]
                held = await self._hold(pickup, vendor)
                if held is None:
                    # a superseded attempt wrote first; re-read while this one is still current
                    if self.table.is_current(pickup_id, generation):
                        logger.info("dispatch_hold_retry pickup=%s vendor=%s", pickup_id, vendor.vendor_ref)
                        continue
                    return None
                # cancel/retry between the write and the send: do not issue the offer
                if not self.table.is_current(pickup_id, generation):
                    return held
                self._arm_timer(pickup_id, generation, vendor.vendor_ref, held["assignment_expires_at"])

                try:
                    await self._notifier.send_offer(vendor, build_offer_payload(held, vendor.vendor_ref))
                except TransientVendorError as ex:
                    logger.warning(
                        "offer_send_failed pickup=%s vendor=%s kind=%s status=%s",
                        pickup_id, vendor.vendor_ref, ex.kind, ex.response_status,
                    )
                    if not self.table.is_current(pickup_id, generation):
                        return None
                    await self._ledger.record(pickup_id, round_, vendor.vendor_ref, RejectionReason.SEND_FAILURE)
                    generation = self.table.advance(pickup_id)
                    continue

                logger.info(
                    "offer_sent pickup=%s vendor=%s distance_km=%s expires_at=%s",
                    pickup_id, vendor.vendor_ref,
                    None if vendor.distance_km is None else round(vendor.distance_km, 3),
                    held["assignment_expires_at"].isoformat(),
                )
                return held
        except BaseException:
            # a failed attempt must not stay in the table: the sweep skips tracked pickups
            self.table.discard(pickup_id, generation)
            raise

    async def handle_offer_timeout(self, pickup_id: str, vendor_ref: str, generation: Optional[int] = None) -> bool:
        """
        Expire the offer held by `vendor_ref` and move on.

        Timers pass their generation; the sweep passes None and relies on the
        record check alone. Returns False for stale or premature fires.
        """
        if generation is not None and not self.table.is_current(pickup_id, generation):
            logger.debug("timer_stale pickup=%s vendor=%s", pickup_id, vendor_ref)
            return False

        pickup = await self._repo.get_pickup(pickup_id)
        if pickup is None:
            return False
        expires_at = pickup.get("assignment_expires_at")
        if (
            pickup["status"] != FINDING
            or pickup.get("assigned_vendor_ref") != vendor_ref
            or expires_at is None
            or expires_at > self._clock()
        ):
            return False
        if generation is not None and not self.table.is_current(pickup_id, generation):
            return False

        await self._ledger.record(pickup_id, pickup.get("dispatch_round", 0), vendor_ref, RejectionReason.TIMEOUT)
        logger.info("offer_timed_out pickup=%s vendor=%s", pickup_id, vendor_ref)
        await self.dispatch(pickup_id)
        return True

    def settle(self, pickup_id: str):
        """Forget local dispatch state once the record no longer needs an offer loop."""
        self.table.invalidate(pickup_id)
        self._failures.pop(pickup_id, None)

    async def retry(self, pickup_id: str) -> dict:
        """Customer-initiated 'find vendor again'."""
        self.table.invalidate(pickup_id)
        pickup = await self._repo.get_pickup(pickup_id)
        if pickup is None:
            raise NotFoundError(f"pickup {pickup_id} not found")

        status = pickup["status"]
        if status in RETRY_BLOCKED:
            raise ConflictError(f"Cannot retry vendor assignment for status {status}", reason="terminal")

        # a retry after exhaustion starts a fresh round: earlier rejections no longer apply
        inc = {"dispatch_round": 1} if status == PickupStatus.NO_VENDOR_AVAILABLE.value else None
        updated = await self._repo.update_pickup_if(
            pickup_id,
            {"version": pickup["version"]},
            {
                "status": FINDING,
                "assigned_vendor_ref": None,
                "assignment_expires_at": None,
                "updated_at": self._clock(),
            },
            inc=inc,
        )
        if updated is None:
            raise ConflictError("Pickup changed while retrying; re-query it", reason="concurrent-update")

        logger.info("dispatch_retry pickup=%s from=%s round=%s", pickup_id, status, updated.get("dispatch_round", 0))
        self.spawn_dispatch(pickup_id)
        return updated

    async def cancel(self, pickup_id: str) -> dict:
        # invalidate first: nothing armed for this pickup may act after this point
        self.table.invalidate(pickup_id)
        now = self._clock()
        updated = await self._repo.update_pickup_if(
            pickup_id,
            {"status": {"$in": CANCELLABLE}},
            {
                "status": PickupStatus.CANCELLED.value,
                "cancelled_at": now,
                "assigned_vendor_ref": None,
                "assignment_expires_at": None,
                "updated_at": now,
            },
        )
        if updated is None:
            pickup = await self._repo.get_pickup(pickup_id)
            if pickup is None:
                raise NotFoundError(f"pickup {pickup_id} not found")
            raise ConflictError(f"Cannot cancel a pickup in status {pickup['status']}", reason="terminal")

        self._failures.pop(pickup_id, None)
        logger.info("pickup_cancelled pickup=%s", pickup_id)
        return updated

    # ===================== Helpers =====================

    async def _hold(self, pickup: dict, vendor: VendorCandidate) -> Optional[dict]:
        now = self._clock()
        return await self._repo.update_pickup_if(
            pickup["_id"],
            {"version": pickup["version"], "status": {"$in": DISPATCHABLE}},
            {
                "status": FINDING,
                "assigned_vendor_ref": vendor.vendor_ref,
                "assignment_expires_at": now + self.offer_window,
                "updated_at": now,
            },
        )

    async def _give_up(self, pickup: dict, generation: int, excluded: int) -> Optional[dict]:
        updated = await self._repo.update_pickup_if(
            pickup["_id"],
            {"version": pickup["version"], "status": {"$in": DISPATCHABLE}},
            {
                "status": PickupStatus.NO_VENDOR_AVAILABLE.value,
                "assigned_vendor_ref": None,
                "assignment_expires_at": None,
                "updated_at": self._clock(),
            },
        )
        self.table.discard(pickup["_id"], generation)
        if updated is not None:
            self._failures.pop(pickup["_id"], None)
            logger.info("no_vendor_available pickup=%s excluded=%d", pickup["_id"], excluded)
        return updated

    def _arm_timer(self, pickup_id: str, generation: int, vendor_ref: str, expires_at: datetime):
        self.table.arm(
            pickup_id,
            generation,
            vendor_ref,
            lambda: self._spawn(
                self._offer_timer(pickup_id, generation, vendor_ref, expires_at),
                pickup_id, "offer-timer", self._timers,
            ),
        )

    async def _offer_timer(self, pickup_id: str, generation: int, vendor_ref: str, expires_at: datetime):
        while True:
            remaining = (expires_at - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        self.table.release_timer(pickup_id, generation)
        await self.handle_offer_timeout(pickup_id, vendor_ref, generation=generation)
