from typing import Optional

from fastapi import APIRouter, Depends

from scrapbridge.core.errors import NotFoundError
from scrapbridge.core.states import PickupStatus
from scrapbridge.deps import get_arbiter, get_coordinator, get_repo
from scrapbridge.models.pickup import PickupCreate, VendorCallback, to_projection
from scrapbridge.services.arbiter import AcceptanceArbiter
from scrapbridge.services.coordinator import OfferCoordinator

router = APIRouter(prefix="/api/pickups", tags=["pickups"])


@router.post("", status_code=201)
async def create_pickup(data: PickupCreate, coordinator: OfferCoordinator = Depends(get_coordinator)):
    doc = await coordinator.create_pickup(data)
    return {"ok": True, "pickup": to_projection(doc)}


@router.get("")
async def list_pickups(status: Optional[PickupStatus] = None, repo=Depends(get_repo)):
    docs = await repo.list_pickups(status.value if status else None)
    return {"ok": True, "pickups": [to_projection(d) for d in docs]}


@router.post("/accepted")
async def vendor_accepted(body: VendorCallback, arbiter: AcceptanceArbiter = Depends(get_arbiter)):
    """Acceptance notification sent by vendor backends."""
    pickup = await arbiter.confirm_vendor_acceptance(body.pickup_id, body.vendor_ref)
    return {"ok": True, "pickup": pickup}


@router.get("/{pickup_id}")
async def get_pickup(pickup_id: str, repo=Depends(get_repo)):
    doc = await repo.get_pickup(pickup_id)
    if not doc:
        raise NotFoundError(f"pickup {pickup_id} not found")
    return {"ok": True, "pickup": to_projection(doc)}


@router.post("/{pickup_id}/find-vendor")
async def find_vendor(pickup_id: str, coordinator: OfferCoordinator = Depends(get_coordinator)):
    doc = await coordinator.retry(pickup_id)
    return {"ok": True, "pickup": to_projection(doc)}


@router.post("/{pickup_id}/cancel")
async def cancel_pickup(pickup_id: str, coordinator: OfferCoordinator = Depends(get_coordinator)):
    doc = await coordinator.cancel(pickup_id)
    return {"ok": True, "pickup": to_projection(doc)}
