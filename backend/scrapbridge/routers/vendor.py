# scrapbridge/routers/vendor.py
from fastapi import APIRouter, Depends

from scrapbridge.deps import get_arbiter, get_directory
from scrapbridge.models.pickup import VendorCallback, VendorPresenceIn
from scrapbridge.services.arbiter import AcceptanceArbiter
from scrapbridge.services.directory import VendorDirectory

router = APIRouter(prefix="/api/vendor", tags=["vendor"])


@router.post("/accept")
async def accept(body: VendorCallback, arbiter: AcceptanceArbiter = Depends(get_arbiter)):
    pickup = await arbiter.confirm_vendor_acceptance(body.pickup_id, body.vendor_ref)
    return {"ok": True, "pickup": pickup}


@router.post("/reject")
async def reject(body: VendorCallback, arbiter: AcceptanceArbiter = Depends(get_arbiter)):
    result = await arbiter.handle_vendor_rejection(body.pickup_id, body.vendor_ref)
    return {"ok": True, **result}


@router.post("/on-the-way")
async def on_the_way(body: VendorCallback, arbiter: AcceptanceArbiter = Depends(get_arbiter)):
    pickup = await arbiter.mark_on_the_way(body.pickup_id, body.vendor_ref)
    return {"ok": True, "pickup": pickup}


@router.post("/pickup-done")
async def pickup_done(body: VendorCallback, arbiter: AcceptanceArbiter = Depends(get_arbiter)):
    pickup = await arbiter.mark_completed(body.pickup_id, body.vendor_ref)
    return {"ok": True, "pickup": pickup}


@router.post("/location")
async def update_location(body: VendorPresenceIn, directory: VendorDirectory = Depends(get_directory)):
    doc = await directory.register_presence(
        body.vendor_ref,
        body.latitude,
        body.longitude,
        offer_url=body.offer_url,
        is_available=body.is_available,
    )
    return {
        "ok": True,
        "vendor": {
            "vendor_ref": doc["vendor_ref"],
            "location": doc.get("location"),
            "is_available": doc.get("is_available"),
            "last_seen_at": doc.get("last_seen_at"),
        },
    }
