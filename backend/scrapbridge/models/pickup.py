from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from scrapbridge.core.states import PickupStatus


def _required_text(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# --------------------------
# Inbound (customer)
# --------------------------
class PickupItemIn(BaseModel):
    scrap_type: str = Field(
        validation_alias=AliasChoices("scrap_type", "scrapType", "scrapTypeId", "scrap_type_id", "name")
    )
    estimated_quantity: float = Field(
        0,
        ge=0,
        validation_alias=AliasChoices("estimated_quantity", "estimatedQuantity", "quantity", "qty"),
    )

    @field_validator("scrap_type", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        return _required_text(str(v) if v is not None else "")


class PickupCreate(BaseModel):
    address: str
    time_slot: str = Field(validation_alias=AliasChoices("time_slot", "timeSlot"))
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    items: List[PickupItemIn] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def lift_location(cls, data: Any) -> Any:
        # older clients send {"location": {"latitude": .., "longitude": ..}}
        if isinstance(data, dict) and isinstance(data.get("location"), dict):
            loc = data["location"]
            data = dict(data)
            data.setdefault("latitude", loc.get("latitude", loc.get("lat")))
            data.setdefault("longitude", loc.get("longitude", loc.get("lng")))
        return data

    @field_validator("address", "time_slot")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required_text(v)

    @model_validator(mode="after")
    def both_or_neither(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

    def location(self) -> Optional[dict]:
        if self.latitude is None:
            return None
        return {"lat": self.latitude, "lng": self.longitude}


# --------------------------
# Inbound (vendor backends)
# --------------------------
class VendorCallback(BaseModel):
    pickup_id: str = Field(
        validation_alias=AliasChoices("pickupId", "pickup_id", "request_id", "requestId")
    )
    vendor_ref: str = Field(
        validation_alias=AliasChoices("assignedVendorRef", "vendor_ref", "vendorRef", "vendor_id", "vendorId")
    )

    @field_validator("pickup_id", "vendor_ref", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        return _required_text(str(v) if v is not None else "")


class VendorPresenceIn(BaseModel):
    vendor_ref: str = Field(
        validation_alias=AliasChoices("vendor_ref", "vendorRef", "vendor_id", "vendorId")
    )
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    offer_url: Optional[str] = Field(None, validation_alias=AliasChoices("offer_url", "offerUrl"))
    is_available: bool = Field(True, validation_alias=AliasChoices("is_available", "isAvailable", "available"))

    @field_validator("vendor_ref", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        return _required_text(str(v) if v is not None else "")


# --------------------------
# Projection (outbound)
# --------------------------
class PickupItemOut(BaseModel):
    scrap_type: str
    estimated_quantity: float


class PickupOut(BaseModel):
    id: str
    status: PickupStatus
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    time_slot: str
    assigned_vendor_ref: Optional[str] = None
    assignment_expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[PickupItemOut] = []


def to_projection(doc: dict) -> PickupOut:
    loc = doc.get("location") or {}
    return PickupOut(
        id=str(doc["_id"]),
        status=doc["status"],
        address=doc.get("address", ""),
        latitude=loc.get("lat"),
        longitude=loc.get("lng"),
        time_slot=doc.get("time_slot", ""),
        assigned_vendor_ref=doc.get("assigned_vendor_ref"),
        assignment_expires_at=doc.get("assignment_expires_at"),
        accepted_at=doc.get("accepted_at"),
        cancelled_at=doc.get("cancelled_at"),
        completed_at=doc.get("completed_at"),
        created_at=doc.get("created_at"),
        items=[PickupItemOut(**it) for it in doc.get("items", [])],
    )
