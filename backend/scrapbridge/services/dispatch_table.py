import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class DispatchState:
    generation: int
    vendor_ref: Optional[str] = None
    timer: Optional[asyncio.Task] = None


class DispatchTable:
    """
    Process-local bookkeeping of the offer each pickup is currently waiting on.

    Not authoritative: the pickup record decides who may transition what.
    Entries only tell a timer, or a dispatch loop resumed after an await,
    whether it has been superseded. Generations come from one counter, so a
    discarded and recreated entry never reuses a token.
    """

    def __init__(self):
        self._entries: Dict[str, DispatchState] = {}
        self._seq = itertools.count(1)

    def __contains__(self, pickup_id: str) -> bool:
        return pickup_id in self._entries

    def get(self, pickup_id: str) -> Optional[DispatchState]:
        return self._entries.get(pickup_id)

    def advance(self, pickup_id: str) -> int:
        """Start a new generation, cancelling whatever timer the old one armed."""
        old = self._entries.get(pickup_id)
        if old is not None:
            self._stop(old)
        state = DispatchState(generation=next(self._seq))
        self._entries[pickup_id] = state
        return state.generation

    def is_current(self, pickup_id: str, generation: int) -> bool:
        state = self._entries.get(pickup_id)
        return state is not None and state.generation == generation

    def arm(self, pickup_id: str, generation: int, vendor_ref: str, start_timer: Callable[[], asyncio.Task]) -> bool:
        state = self._entries.get(pickup_id)
        if state is None or state.generation != generation:
            return False
        self._stop(state)
        state.vendor_ref = vendor_ref
        state.timer = start_timer()
        return True

    def release_timer(self, pickup_id: str, generation: int):
        # a fired timer detaches itself so the redispatch it triggers cannot cancel it
        state = self._entries.get(pickup_id)
        if state is not None and state.generation == generation:
            state.timer = None

    def invalidate(self, pickup_id: str) -> Optional[DispatchState]:
        state = self._entries.pop(pickup_id, None)
        if state is not None:
            self._stop(state)
        return state

    def discard(self, pickup_id: str, generation: int) -> bool:
        if not self.is_current(pickup_id, generation):
            return False
        self.invalidate(pickup_id)
        return True

    def clear(self):
        for state in self._entries.values():
            self._stop(state)
        self._entries.clear()

    @staticmethod
    def _stop(state: DispatchState):
        if state.timer is not None and not state.timer.done():
            state.timer.cancel()
        state.timer = None
