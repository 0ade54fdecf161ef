"""
FastAPI application for the reimbursement claim service.

Provides:
- Owner endpoints under /claims (create, listings, recall responses, receipts)
- Admin endpoints under /admin/claims (adjudication, recall, dashboards, export)
- Health check
"""

# Configure library log levels before they are imported
import logging

logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..claims.errors import ClaimError, ErrorKind
from ..claims.lifecycle import ClaimLifecycleEngine
from ..claims.listing import ListingService
from ..claims.owners import InMemoryOwnerDirectory, OwnerDirectory
from ..events.bus import ClaimEventBus
from ..events.notifier import EmailNotifier, MailSender, build_mail_sender
from ..storage.claim_store import ClaimStore
from ..storage.receipt_vault import ReceiptVault
from ..utils.config import Settings, get_settings
from .routes import admin, claims, export

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: runs the claim event worker."""
    logger.info("Starting reimbursement claim service...")
    logger.info(f"Database: {app.state.store.db_path}")
    app.state.events.start()
    yield
    logger.info("Shutting down reimbursement claim service...")
    app.state.events.stop()


# =============================================================================
# Error Handlers
# =============================================================================


async def claim_error_handler(request: Request, exc: ClaimError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.http_status} {exc.kind.label}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def _field_name(loc) -> str:
    """('body', 0, 'amountMinorUnits') -> '[0].amountMinorUnits'"""
    parts = []
    for item in loc:
        if item in ("body", "query", "path", "header"):
            continue
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else str(item))
    return "".join(parts) or "body"


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [{"field": _field_name(err.get("loc", ())), "message": err.get("msg", "")} for err in exc.errors()]
    message = details[0]["message"] if len(details) == 1 else "Validation failed"
    logger.warning(f"{request.method} {request.url.path} -> 400 validation: {details}")
    return JSONResponse(
        status_code=400,
        content={"error": message, "kind": ErrorKind.VALIDATION.label, "details": details},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ClaimStore] = None,
    event_bus: Optional[ClaimEventBus] = None,
    mail_sender: Optional[MailSender] = None,
    owners: Optional[OwnerDirectory] = None,
) -> FastAPI:
    """
    Build the application and wire its services onto app.state.

    Every collaborator can be injected (tests pass a temporary store and a
    recording mail sender); otherwise it is built from settings.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    store = store or ClaimStore(settings.database_path)
    vault = ReceiptVault(store, max_bytes=settings.max_receipt_bytes)
    events = event_bus or ClaimEventBus(maxsize=settings.event_queue_size)

    mail_sender = mail_sender or build_mail_sender(settings)
    if settings.notifications_enabled:
        notifier = EmailNotifier(mail_sender, settings.admin_email, settings.web_base_url)
        events.subscribe(notifier.handle)

    app = FastAPI(
        title="Reimbursement Claims",
        description="Claim submission, adjudication and recall workflow",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.events = events
    app.state.mail_sender = mail_sender
    app.state.engine = ClaimLifecycleEngine(
        store,
        vault,
        events=events,
        owners=owners or InMemoryOwnerDirectory(),
        zone=settings.zone,
    )
    app.state.listing = ListingService(
        store,
        zone=settings.zone,
        default_page_size=settings.default_page_size,
        admin_page_size=settings.admin_page_size,
    )

    app.add_exception_handler(ClaimError, claim_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Export first so /admin/claims/export is not taken for a dashboard bucket
    app.include_router(export.router, prefix="/admin/claims", tags=["Export"])
    app.include_router(admin.router, prefix="/admin/claims", tags=["Admin"])
    app.include_router(claims.router, prefix="/claims", tags=["Claims"])

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "eventWorker": events.running,
            "pendingEvents": events.pending,
            "droppedEvents": events.dropped,
        }

    return app


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the FastAPI server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
