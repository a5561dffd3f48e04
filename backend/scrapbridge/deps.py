from fastapi import Request

from scrapbridge.services.arbiter import AcceptanceArbiter
from scrapbridge.services.coordinator import OfferCoordinator
from scrapbridge.services.directory import VendorDirectory


def get_repo(request: Request):
    return request.app.state.repo


def get_coordinator(request: Request) -> OfferCoordinator:
    return request.app.state.coordinator


def get_arbiter(request: Request) -> AcceptanceArbiter:
    return request.app.state.arbiter


def get_directory(request: Request) -> VendorDirectory:
    return request.app.state.directory
