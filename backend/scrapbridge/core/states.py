from enum import Enum


class PickupStatus(str, Enum):
    REQUESTED = "REQUESTED"
    FINDING_VENDOR = "FINDING_VENDOR"
    ASSIGNED = "ASSIGNED"
    ON_THE_WAY = "ON_THE_WAY"
    COMPLETED = "COMPLETED"
    NO_VENDOR_AVAILABLE = "NO_VENDOR_AVAILABLE"
    CANCELLED = "CANCELLED"


# no further offers are issued from these
DISPATCH_TERMINAL = {
    PickupStatus.ASSIGNED.value,
    PickupStatus.ON_THE_WAY.value,
    PickupStatus.COMPLETED.value,
    PickupStatus.CANCELLED.value,
    PickupStatus.NO_VENDOR_AVAILABLE.value,
}

DISPATCHABLE = [PickupStatus.REQUESTED.value, PickupStatus.FINDING_VENDOR.value]
CANCELLABLE = DISPATCHABLE
RETRY_BLOCKED = {
    PickupStatus.ASSIGNED.value,
    PickupStatus.ON_THE_WAY.value,
    PickupStatus.COMPLETED.value,
    PickupStatus.CANCELLED.value,
}

TRANSITIONS = {
    ("REQUESTED",           "FINDING_VENDOR"):      {"by": ["dispatcher"]},
    ("REQUESTED",           "NO_VENDOR_AVAILABLE"): {"by": ["dispatcher"]},
    ("FINDING_VENDOR",      "FINDING_VENDOR"):      {"by": ["dispatcher", "customer"]},
    ("FINDING_VENDOR",      "NO_VENDOR_AVAILABLE"): {"by": ["dispatcher"]},
    ("NO_VENDOR_AVAILABLE", "FINDING_VENDOR"):      {"by": ["customer"]},

    ("REQUESTED",           "CANCELLED"):           {"by": ["customer"]},
    ("FINDING_VENDOR",      "CANCELLED"):           {"by": ["customer"]},

    ("FINDING_VENDOR",      "ASSIGNED"):            {"by": ["vendor"]},
    ("ASSIGNED",            "ON_THE_WAY"):          {"by": ["vendor"]},
    ("ON_THE_WAY",          "COMPLETED"):           {"by": ["vendor"]},
}


def can_transition(src: str, dst: str, actor: str) -> bool:
    rule = TRANSITIONS.get((src, dst))
    if not rule:
        return False
    return actor in rule["by"]


def sources_for(dst: str, actor: str) -> list[str]:
    """Every status `actor` may move to `dst` from; used to build conditional filters."""
    return [src for (src, d), rule in TRANSITIONS.items() if d == dst and actor in rule["by"]]
