"""
CRM Pipeline Service - API
==========================
FastAPI application: contacts, follow-up sessions, tracked emails and
per-employee Gmail sending for multi-tenant sales teams.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crm import __version__
from crm.api import auth, contacts, emails, sessions
from crm.config import get_settings
from crm.core.errors import CRMError
from crm.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    logger.info("CRM service %s starting", __version__)
    yield


app = FastAPI(
    title="CRM Pipeline Service",
    description="Lead pipeline, follow-up sessions and tracked Gmail outreach",
    version=__version__,
    lifespan=lifespan,
)


# ── Error handlers ────────────────────────────────────────────────────────────

@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "message": "Invalid request",
            "code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": "CRM Pipeline Service",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


app.include_router(auth.router)
app.include_router(contacts.router)
app.include_router(sessions.router)
app.include_router(emails.tracking_router)
app.include_router(emails.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
