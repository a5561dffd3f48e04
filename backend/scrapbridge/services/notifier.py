"""
Outbound offer delivery.

One signed POST per offer with a hard timeout. Anything other than a 2xx
answer raises TransientVendorError; acceptance itself arrives later through
the vendor callback endpoints.
"""

import logging
from typing import Optional

import httpx

from scrapbridge.core.errors import TransientVendorError
from scrapbridge.core.signing import SIGNATURE_HEADER, canonical_body, sign
from scrapbridge.services.directory import VendorCandidate

logger = logging.getLogger(__name__)


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def build_offer_payload(pickup: dict, vendor_ref: str) -> dict:
    loc = pickup.get("location") or {}
    return {
        "type": "pickup.offer",
        "pickup_id": str(pickup["_id"]),
        "vendor_ref": vendor_ref,
        "address": pickup.get("address"),
        "latitude": loc.get("lat"),
        "longitude": loc.get("lng"),
        "time_slot": pickup.get("time_slot"),
        "items": [
            {"scrap_type": it["scrap_type"], "estimated_quantity": it["estimated_quantity"]}
            for it in pickup.get("items", [])
        ],
        "offer_expires_at": _iso(pickup.get("assignment_expires_at")),
    }


class VendorNotifier:
    def __init__(
        self,
        secret: str,
        timeout_seconds: float = 10.0,
        connect_timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._secret = secret
        self._timeout = httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds)
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send_offer(self, vendor: VendorCandidate, payload: dict) -> int:
        """POST the offer; returns the 2xx status code or raises TransientVendorError."""
        raw = canonical_body(payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(raw, self._secret),
        }
        try:
            r = await self._http().post(vendor.offer_url, content=raw, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as ex:
            raise TransientVendorError(vendor.vendor_ref, "timeout", message=f"offer to {vendor.vendor_ref} timed out") from ex
        except (httpx.HTTPError, httpx.InvalidURL) as ex:
            raise TransientVendorError(vendor.vendor_ref, "transport", message=f"offer to {vendor.vendor_ref} failed: {ex}") from ex

        if not 200 <= r.status_code < 300:
            raise TransientVendorError(vendor.vendor_ref, "status", status_code=r.status_code)

        logger.debug("offer_delivered pickup=%s vendor=%s status=%s", payload.get("pickup_id"), vendor.vendor_ref, r.status_code)
        return r.status_code

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
