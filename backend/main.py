import time
import uuid
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db, init_db, close_db
from auth.dependencies import Principal, require_admin_or_auditor
from auth.roles import APPROVED_ROLES
from auth.setup import initialize_auth
from utils.logging_utils import setup_logging, get_logger
from utils.audit import audit

setup_logging(level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("=" * 60)
    logger.info(f"{settings.APP_NAME.upper()} STARTING UP")
    logger.info(f"App: {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    start = time.perf_counter()
    await init_db()
    logger.info(
        f"Database initialized in {(time.perf_counter() - start) * 1000:.1f}ms"
    )

    if not (settings.AZURE_TENANT_ID and settings.AZURE_CLIENT_ID and settings.AZURE_CLIENT_SECRET):
        logger.warning("Identity provider credentials are not fully configured")

    app.state.session_sweeper.start()

    logger.info("STARTUP COMPLETE - Ready to accept requests")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info(f"{settings.APP_NAME.upper()} SHUTTING DOWN")
    await app.state.session_sweeper.stop()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# ── Custom validation error handler ───────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Return user-friendly error messages when request validation fails,
    one entry per offending field.
    """
    errors = []
    for error in exc.errors():
        loc_parts = [str(x) for x in error.get("loc", [])]
        if loc_parts and loc_parts[0] in ("body", "query", "path"):
            loc_parts = loc_parts[1:]
        field = ".".join(loc_parts) if loc_parts else "unknown"

        msg = error.get("msg", "Validation error")
        # Pydantic wraps custom ValueError messages in "Value error, ..."
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]

        errors.append({
            "field": field,
            "message": msg,
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation failed",
            "error": "validation_failed",
            "errors": errors,
        },
    )


# ── Request ID + request logging middleware ───────────────────────────

@app.middleware("http")
async def request_lifecycle(request: Request, call_next):
    """Assign a request ID, log timing, and add the ID to response headers."""
    request_id = str(uuid.uuid4())
    audit.set_request_id(request_id)

    start_time = time.perf_counter()
    logger.debug(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    status_indicator = "+" if response.status_code < 400 else "!"
    logger.info(
        f"{status_indicator} {request.method} {request.url.path} "
        f"[{response.status_code}] {duration_ms:.1f}ms"
    )

    response.headers["X-Request-ID"] = request_id
    return response


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Auth routes, exception handlers and the session sweeper
auth = initialize_auth(app)


@app.get("/health", tags=["health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint with a database connectivity check."""
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        database = {"status": "ok"}
    except Exception as e:
        database = {"status": "error", "message": str(e)}
    database["response_time_ms"] = round((time.perf_counter() - start) * 1000, 1)

    healthy = database["status"] == "ok"
    return JSONResponse(
        content={
            "status": "healthy" if healthy else "unhealthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "checks": {"database": database},
        },
        status_code=200 if healthy else 503,
    )


@app.get("/dashboard", tags=["app"])
async def dashboard(principal: Principal = Depends(auth.require_role(*APPROVED_ROLES))):
    """Landing page for every approved role."""
    return {
        "page": "dashboard",
        "user": principal.display_name or principal.email,
        "role": principal.role.value,
        "assigned_stores": principal.assigned_stores,
    }


@app.get("/auditor/selection", tags=["app"])
async def auditor_selection(
    principal: Principal = Depends(require_admin_or_auditor),
):
    """Auditor landing page."""
    return {"page": "auditor-selection", "user": principal.email}


@app.get("/api", tags=["root"])
async def api_root():
    """API root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "openapi": "/openapi.json",
        "endpoints": {
            "auth": "/auth",
            "admin": "/api/admin",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.DEBUG,
    )
