"""
LeadCRM FastAPI Application - Main entry point.

Modules:

- Auth: login with lockout, revocable sessions, password reset
- Users: administration with role assignment and soft deletion
- Leads: staged sales pipeline with activity-driven scoring
- Contacts: people converted from leads or added directly
- Activities: read-only audit trail

All endpoints live under /api/v1/{module}/; /api/health is the health check.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from leadcrm import __version__
from leadcrm.api.v1 import api_router
from leadcrm.core.config import settings
from leadcrm.core.errors import AppError
from leadcrm.core.logging_config import setup_logging
from leadcrm.db.base import async_session_maker, init_db
from leadcrm.db.seed import seed_reference_data
from leadcrm.schemas.common import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    setup_logging()
    # Note: In production, use Alembic migrations instead
    await init_db()
    async with async_session_maker() as session:
        await seed_reference_data(session)
        await session.commit()
    logger.info("LeadCRM API %s started (%s)", __version__, settings.APP_ENV)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
    description="""
LeadCRM - sales pipeline and contact management.

- **Auth**: sessions backed by signed tokens, login lockout
- **Leads**: configurable stages, activity trail, scoring
- **Contacts**, **Users**, **Activities**
    """,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(code=200, message="API is healthy.")


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report the first offending field as a 400."""
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header"))
    if first.get("type") == "missing":
        message = f"Missing required field: {field}"
    else:
        message = f"Invalid value for field {field}: {first.get('msg')}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    return JSONResponse(
        status_code=409,
        content={"error": "Record was modified by another request, reload and retry"}
    )


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Storage error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
