import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Set

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    EXPLICIT_REJECT = "explicit-reject"
    TIMEOUT = "timeout"
    SEND_FAILURE = "send-failure"


class RejectionLedger:
    """Append-only record of vendors that already passed on a pickup, per dispatch round."""

    def __init__(self, repo, clock: Callable[[], datetime]):
        self._repo = repo
        self._clock = clock

    async def record(self, pickup_id: str, round_: int, vendor_ref: str, reason: RejectionReason) -> bool:
        reason = RejectionReason(reason)
        inserted = await self._repo.add_rejection({
            "pickup_id": pickup_id,
            "round": round_,
            "vendor_ref": vendor_ref,
            "reason": reason.value,
            "created_at": self._clock(),
        })
        if inserted:
            logger.info("rejection_recorded pickup=%s vendor=%s reason=%s", pickup_id, vendor_ref, reason.value)
        return inserted

    async def excluded(self, pickup_id: str, round_: int) -> Set[str]:
        return {r["vendor_ref"] for r in await self._repo.list_rejections(pickup_id, round_)}
