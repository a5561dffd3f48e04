# scrapbridge/main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scrapbridge.core.config import Settings, settings as default_settings
from scrapbridge.core.errors import ConflictError, DispatchError
from scrapbridge.core.logging import configure_logging
from scrapbridge.routers import pickups as pickups_router
from scrapbridge.routers import vendor as vendor_router
from scrapbridge.services.arbiter import AcceptanceArbiter
from scrapbridge.services.coordinator import OfferCoordinator
from scrapbridge.services.directory import VendorDirectory
from scrapbridge.services.ledger import RejectionLedger
from scrapbridge.services.notifier import VendorNotifier
from scrapbridge.services.sweep import ReconciliationSweep

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


async def _open_repo(cfg: Settings):
    if not cfg.use_mongo:
        from scrapbridge.repos.inmemory import InMemoryRepo
        return InMemoryRepo()

    from scrapbridge.core.db import ensure_indexes, get_db
    from scrapbridge.repos.mongo import MongoRepo
    db = get_db(cfg.mongo_uri, cfg.mongo_db)
    await ensure_indexes(db)
    return MongoRepo(db)


def create_app(settings: Settings = None, repo=None, notifier=None, clock=None) -> FastAPI:
    """
    Build the API with its dispatch engine.

    `repo`, `notifier` and `clock` replace the configured collaborators
    (tests pass an in-memory store, a fake notifier and a manual clock).
    """
    cfg = settings or default_settings
    clock = clock or _utcnow

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level, cfg.log_file)

        store = repo if repo is not None else await _open_repo(cfg)
        outbound = notifier or VendorNotifier(
            cfg.vendor_signing_secret,
            timeout_seconds=cfg.vendor_send_timeout_seconds,
            connect_timeout_seconds=cfg.vendor_connect_timeout_seconds,
        )
        directory = VendorDirectory(store, clock, stale_after_seconds=cfg.vendor_stale_after_seconds)
        ledger = RejectionLedger(store, clock)
        coordinator = OfferCoordinator(
            store, directory, ledger, outbound, clock,
            offer_window_seconds=cfg.offer_window_seconds,
        )
        sweep = ReconciliationSweep(
            store, coordinator, clock,
            interval_seconds=cfg.sweep_interval_seconds,
            stall_after_seconds=cfg.stall_after_seconds,
        )

        app.state.repo = store
        app.state.directory = directory
        app.state.coordinator = coordinator
        app.state.arbiter = AcceptanceArbiter(store, coordinator, ledger, clock)
        app.state.sweep = sweep

        if cfg.sweep_enabled:
            sweep.start()
        logger.info("startup store=%s offer_window=%ss sweep=%s",
                    type(store).__name__, cfg.offer_window_seconds, cfg.sweep_enabled)
        try:
            yield
        finally:
            await sweep.stop()
            await coordinator.aclose()
            if notifier is None:
                await outbound.aclose()
            logger.info("shutdown")

    app = FastAPI(lifespan=lifespan, title="ScrapBridge Dispatch API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, ex: DispatchError):
        body = {"ok": False, "error": ex.message}
        if isinstance(ex, ConflictError) and ex.reason:
            body["reason"] = ex.reason
        if ex.status_code >= 500:
            logger.error("request_failed path=%s error=%s", request.url.path, ex.message)
        return JSONResponse(status_code=ex.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, ex: RequestValidationError):
        errors = ex.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = first.get("msg", "invalid request")
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": f"{where}: {msg}" if where else msg},
        )

    app.include_router(pickups_router.router)   # /api/pickups
    app.include_router(vendor_router.router)    # /api/vendor

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
