import asyncio

import pytest

from scrapbridge.core.errors import ConflictError, DispatchError, NoVendorAvailable, TransientVendorError
from scrapbridge.core.states import can_transition, sources_for
from scrapbridge.services.dispatch_table import DispatchTable

pytestmark = pytest.mark.anyio


async def _sleeper():
    await asyncio.sleep(3600)


async def test_advance_supersedes_and_cancels_timer():
    table = DispatchTable()
    g1 = table.advance("p")
    timer = asyncio.get_running_loop().create_task(_sleeper())
    assert table.arm("p", g1, "v1", lambda: timer)

    g2 = table.advance("p")
    await asyncio.gather(timer, return_exceptions=True)

    assert g2 != g1
    assert not table.is_current("p", g1)
    assert table.is_current("p", g2)
    assert timer.cancelled()


async def test_arm_refuses_stale_generation():
    table = DispatchTable()
    g1 = table.advance("p")
    table.advance("p")
    started = []
    assert table.arm("p", g1, "v1", lambda: started.append(1)) is False
    assert started == []


async def test_generations_never_repeat_after_invalidate():
    table = DispatchTable()
    g1 = table.advance("p")
    table.invalidate("p")
    assert "p" not in table
    g2 = table.advance("p")
    assert g2 > g1
    assert not table.discard("p", g1)
    assert table.discard("p", g2)
    assert "p" not in table


def test_vendor_transitions():
    assert can_transition("FINDING_VENDOR", "ASSIGNED", "vendor")
    assert not can_transition("FINDING_VENDOR", "ASSIGNED", "customer")
    assert not can_transition("COMPLETED", "CANCELLED", "customer")
    assert sources_for("CANCELLED", "customer") == ["REQUESTED", "FINDING_VENDOR"]
    assert sources_for("COMPLETED", "vendor") == ["ON_THE_WAY"]


def test_error_taxonomy():
    err = TransientVendorError("v1", "status", status_code=500)
    assert isinstance(err, DispatchError)
    assert err.response_status == 500
    assert "v1" in err.message
    assert ConflictError("lost", reason="expired").status_code == 409
    assert NoVendorAvailable("nobody left").status_code == 200
