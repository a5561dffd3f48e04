"""Error taxonomy for the dispatch engine.

HTTP status codes live on the classes so the API layer maps them in one place.
"""
from typing import Optional


class DispatchError(Exception):
    """Base class for every error the engine raises on purpose."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    """Malformed caller input; rejected before any state is touched."""
    status_code = 400


class NotFoundError(DispatchError):
    """The referenced pickup does not exist."""
    status_code = 404


class ConflictError(DispatchError):
    """
    A state-transition precondition failed (lost an accept/reject/expiry race,
    wrong vendor, terminal pickup). Nothing was mutated; re-query the pickup.
    """
    status_code = 409

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class NoVendorAvailable(DispatchError):
    """Business outcome: nobody left to offer the pickup to."""
    status_code = 200


class TransientVendorError(DispatchError):
    """
    Network failure, timeout or non-2xx answer while offering to a vendor.
    Absorbed by the coordinator and turned into a rejection.
    """
    status_code = 502

    def __init__(self, vendor_ref: str, kind: str, status_code: Optional[int] = None, message: str = ""):
        super().__init__(message or f"vendor {vendor_ref} offer failed ({kind})")
        self.vendor_ref = vendor_ref
        self.kind = kind
        self.response_status = status_code


class PersistenceError(DispatchError):
    """The store could not be reached; the caller may retry the whole call."""
    status_code = 503
