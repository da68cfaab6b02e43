"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from carenotify.core.config import settings
from carenotify.core.exceptions import ConsentDeniedError, InvalidDefinitionError, NotFoundError
from carenotify.core.structured_logging import build_log_context
from carenotify.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Client data must never leave the practice
    )
    logging.info("Sentry initialized for error tracking")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="CareNotify API",
    description="Event-triggered notifications and consent gate for practice management",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Actor-Id"],
)


# ============================================================================
# Exception Handlers
# ============================================================================


@app.exception_handler(InvalidDefinitionError)
async def invalid_definition_handler(request: Request, exc: InvalidDefinitionError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ConsentDeniedError)
async def consent_denied_handler(request: Request, exc: ConsentDeniedError):
    logger.info(
        "Request refused by consent gate",
        extra=build_log_context(route=request.url.path, method=request.method),
    )
    return JSONResponse(
        status_code=403,
        content={"detail": str(exc), "category": exc.category, "reason": exc.reason},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ============================================================================
# Routers
# ============================================================================

from carenotify.routers import (  # noqa: E402
    admin_consents,
    admin_notifications,
    audit,
    consents,
    events,
    notifications,
)

app.include_router(events.router)
app.include_router(notifications.router)
app.include_router(consents.router)

# Admin (managers only)
app.include_router(admin_notifications.router)
app.include_router(admin_consents.router)
app.include_router(audit.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
