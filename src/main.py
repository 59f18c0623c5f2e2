"""FastAPI application entry point with lifespan management."""

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.audit import router as audit_router
from src.api.calculations import router as calculations_router
from src.api.filings import router as filings_router
from src.api.health import router as health_router
from src.api.middleware import RequestContextMiddleware
from src.api.rules import router as rules_router
from src.api.submissions import router as submissions_router
from src.core.config import settings
from src.core.database import create_engine, create_session_factory
from src.core.exceptions import TaxFilingError
from src.core.logging import configure_logging, get_logger
from src.core.sentry import init_sentry
from src.services import AuditEmitter, DatabaseAuditSink

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle resources.

    Startup:
        - Configure structured logging
        - Initialize Sentry error tracking
        - Create database engine and session factory
        - Wire the audit emitter to its own sessions

    Shutdown:
        - Dispose database engine
    """
    # Configure logging first
    configure_logging()
    logger.info("Starting application", environment=settings.environment)

    # Initialize error tracking
    init_sentry()

    # Create database engine and session factory
    app.state.db_engine = create_engine()
    app.state.async_session = create_session_factory(app.state.db_engine)
    logger.info("Database engine created")

    app.state.audit = AuditEmitter(DatabaseAuditSink(app.state.async_session))

    yield

    # Shutdown
    logger.info("Shutting down application")

    await app.state.db_engine.dispose()
    logger.info("Database engine disposed")


app = FastAPI(
    title="Tax Filing Core",
    description="Progressive income tax filing: rules, filings, calculation and submission",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request context middleware
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(TaxFilingError)
async def tax_filing_error_handler(request: Request, exc: TaxFilingError) -> JSONResponse:
    """Render domain errors as ``{"code", "message"}`` with the kind's status."""
    logger.info(
        "request_rejected",
        code=exc.code,
        kind=exc.kind,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(health_router)
app.include_router(rules_router)
app.include_router(filings_router)
app.include_router(calculations_router)
app.include_router(submissions_router)
app.include_router(audit_router)
