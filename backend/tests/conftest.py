# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from scrapbridge.core.config import Settings
from scrapbridge.core.errors import TransientVendorError
from scrapbridge.main import create_app
from scrapbridge.repos.inmemory import InMemoryRepo
from scrapbridge.services.arbiter import AcceptanceArbiter
from scrapbridge.services.coordinator import OfferCoordinator
from scrapbridge.services.directory import VendorDirectory
from scrapbridge.services.ledger import RejectionLedger
from scrapbridge.services.sweep import ReconciliationSweep

START = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

# pickup P1 and vendors due north of it (1 deg lat ~ 111.2 km)
P1 = {"lat": 14.5995, "lng": 120.9842}
KM = 1 / 111.195


class ManualClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)


class FakeNotifier:
    """Records offers instead of POSTing them; `fail` maps vendor_ref -> error kind."""

    def __init__(self):
        self.sent = []
        self.fail = {}
        self.crash = None
        # when set, sends block until the event fires
        self.gate = None

    @property
    def refs(self):
        return [v for v, _ in self.sent]

    async def send_offer(self, vendor, payload):
        if self.crash is not None:
            raise self.crash
        self.sent.append((vendor.vendor_ref, payload))
        if self.gate is not None:
            await self.gate.wait()
        kind = self.fail.get(vendor.vendor_ref)
        if kind:
            raise TransientVendorError(vendor.vendor_ref, kind, status_code=500 if kind == "status" else None)
        return 200

    async def aclose(self):
        pass


async def add_vendor(repo, ref, km_north=None, available=True, offer_url=None):
    fields = {
        "offer_url": offer_url or f"http://vendors.test/{ref}/offers",
        "is_available": available,
        "location": None if km_north is None else {"lat": P1["lat"] + km_north * KM, "lng": P1["lng"]},
        "last_seen_at": START,
    }
    return await repo.upsert_vendor(ref, fields)


def pickup_body(**overrides):
    body = {
        "address": "12 Mabini St, Manila",
        "time_slot": "09:00-11:00",
        "latitude": P1["lat"],
        "longitude": P1["lng"],
        "items": [{"scrap_type": "cardboard", "estimated_quantity": 12}],
    }
    body.update(overrides)
    return body


@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def repo():
    return InMemoryRepo()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def ledger(repo, clock):
    return RejectionLedger(repo, clock)


def build_coordinator(repo, notifier, clock, offer_window_seconds=10):
    return OfferCoordinator(
        repo, VendorDirectory(repo, clock), RejectionLedger(repo, clock), notifier, clock,
        offer_window_seconds=offer_window_seconds,
    )


@pytest.fixture
async def coordinator(repo, notifier, clock):
    coord = build_coordinator(repo, notifier, clock)
    yield coord
    await coord.aclose()


@pytest.fixture
def arbiter(repo, coordinator, ledger, clock):
    return AcceptanceArbiter(repo, coordinator, ledger, clock)


@pytest.fixture
def sweep(repo, coordinator, clock):
    return ReconciliationSweep(repo, coordinator, clock, interval_seconds=0.01, stall_after_seconds=30)


@pytest.fixture
async def app(repo, notifier, clock):
    application = create_app(
        settings=Settings(use_mongo=False, sweep_enabled=False, offer_window_seconds=10),
        repo=repo,
        notifier=notifier,
        clock=clock,
    )
    async with LifespanManager(application):
        yield application


@pytest.fixture
async def test_client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=True)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
