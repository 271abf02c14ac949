"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ticketflow.core.config import settings
from ticketflow.core.structured_logging import configure_logging
from ticketflow.db.session import engine
from ticketflow.services.errors import (
    ApprovalNotPermittedError,
    DisallowedFieldError,
    TicketNotFoundError,
    TicketValidationError,
)

configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Ticketflow API",
    description="Ticket lifecycle and activity timeline engine",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Actor-Type", "X-Actor-Name"],
)


# ============================================================================
# Service error mapping
# ============================================================================

@app.exception_handler(DisallowedFieldError)
async def disallowed_field_handler(request: Request, exc: DisallowedFieldError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "fields": exc.fields},
    )


@app.exception_handler(TicketValidationError)
async def validation_error_handler(request: Request, exc: TicketValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(TicketNotFoundError)
async def not_found_handler(request: Request, exc: TicketNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ApprovalNotPermittedError)
async def approval_denied_handler(request: Request, exc: ApprovalNotPermittedError):
    logger.warning(f"Approval denied on {request.url.path}: {exc}")
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# ============================================================================
# Routers
# ============================================================================

from ticketflow.routers import tickets

app.include_router(tickets.router)


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
