import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoicer.config import settings
from invoicer.database import async_session_factory, init_db
from invoicer.exceptions import InvalidTransition, NotFound, StorageFailure, ValidationFailed
from invoicer.services.autosave import DraftSessionRegistry

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize resources on startup, clean up on shutdown."""
    logger.info("Starting Invoicer API...")

    # Create DB tables, data directories and counters
    await init_db()

    # Draft editing sessions live for the lifetime of the process
    app.state.drafts = DraftSessionRegistry(async_session_factory)

    logger.info("Invoicer API is ready.")
    yield

    logger.info("Shutting down Invoicer API; flushing open drafts.")
    await app.state.drafts.close_all()


app = FastAPI(
    title="Invoicer API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationFailed)
async def validation_handler(request: Request, exc: ValidationFailed) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    logger.warning("Rejected transition: %s", exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StorageFailure)
async def storage_handler(request: Request, exc: StorageFailure) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# Routers
from invoicer.api import admin, clients, drafts, invoices, receipts, reports  # noqa: E402
from invoicer.api import settings as settings_api  # noqa: E402

app.include_router(invoices.router)
app.include_router(drafts.router)
app.include_router(receipts.router)
app.include_router(clients.router)
app.include_router(settings_api.router)
app.include_router(reports.router)
app.include_router(admin.router)
