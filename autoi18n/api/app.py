"""
FastAPI application for batch translation.

A thin HTTP layer over BatchService: every route maps to one operation and
the engine's error taxonomy maps to status codes. The lifespan owns the
background poller.

Run with:
    uvicorn autoi18n.api.app:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import anthropic
import openai
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from autoi18n import __version__
from autoi18n.config import Settings
from autoi18n.core.errors import (
    BatchNotFoundError,
    BatchStateError,
    BatchValidationError,
    ConfigurationError,
    DataIntegrityError,
    UnsupportedOperationError,
)
from autoi18n.core.models import (
    CheckBatchStatusResult,
    CreateBatchOptions,
    CreateBatchResult,
    CreateDeltaBatchOptions,
    CreateRetryBatchResult,
    ProcessCompletedBatchResult,
    SubmitBatchResult,
)
from autoi18n.services.batch.service import BatchService, ProviderAvailability
from autoi18n.services.polling import BatchPoller
from autoi18n.storage import create_local_storage

logger = logging.getLogger(__name__)


# =============================================================================
# App State
# =============================================================================


class AppState:
    """Application state - initialized at startup."""

    settings: Settings
    service: BatchService
    poller: BatchPoller


# =============================================================================
# Request/Response Models
# =============================================================================


class SubmitBatchRequest(BaseModel):
    sender_id: str
    metadata: dict[str, str] | None = None


class SenderRequest(BaseModel):
    sender_id: str


class RetryBatchRequest(BaseModel):
    sender_id: str
    original_batch_id: str
    error_artifact_name: str | None = None
    model: str | None = None


class ProcessBatchRequest(BaseModel):
    sender_id: str
    save: bool = True


class PollResponse(BaseModel):
    skipped: bool
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    changed: list[str] = []


# =============================================================================
# Error mapping
# =============================================================================


ERROR_STATUS_CODES: dict[type[Exception], int] = {
    BatchValidationError: 400,
    BatchNotFoundError: 404,
    BatchStateError: 409,
    DataIntegrityError: 422,
    UnsupportedOperationError: 501,
    openai.APIError: 502,
    anthropic.APIError: 502,
    ConfigurationError: 503,
}


def _register_error_handlers(app: FastAPI) -> None:
    for error_type, status_code in ERROR_STATUS_CODES.items():

        async def handler(request: Request, exc: Exception, status_code: int = status_code) -> JSONResponse:
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        app.add_exception_handler(error_type, handler)


# =============================================================================
# App Setup
# =============================================================================


def create_app(settings: Settings | None = None, service: BatchService | None = None) -> FastAPI:
    """
    Build the API.

    Args:
        settings: Settings to use; read from the environment if omitted
        service: Prebuilt service (tests); built from settings if omitted
    """
    settings = settings or Settings()
    state = AppState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        state.settings = settings
        state.service = service or BatchService(settings, create_local_storage(settings.data_dir))
        state.poller = BatchPoller(
            state.service,
            interval=settings.batch_poll_interval_seconds,
            concurrency=settings.batch_poll_concurrency,
        )
        if settings.batch_polling_enabled:
            state.poller.start()

        logger.info(f"autoi18n API starting in {settings.environment} mode")
        yield

        await state.poller.stop()
        logger.info("autoi18n API shutting down")

    app = FastAPI(
        title="autoi18n API",
        description="Batch translation of markdown and JSON content through LLM batch APIs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.batch = state
    _register_error_handlers(app)

    # =========================================================================
    # Dependencies
    # =========================================================================

    def get_service() -> BatchService:
        return state.service

    def get_poller() -> BatchPoller:
        return state.poller

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "autoi18n-api"}

    # =========================================================================
    # Batches
    # =========================================================================

    @app.get("/batches/providers", response_model=ProviderAvailability)
    async def batch_providers(service: BatchService = Depends(get_service)):
        """Which batch providers are usable with the current configuration."""
        return service.is_batch_processing_available()

    @app.post("/batches", response_model=CreateBatchResult)
    async def create_batch(
        request: CreateBatchOptions,
        service: BatchService = Depends(get_service),
    ):
        """Plan a batch from the sender's uploads and save it as a draft."""
        return await service.create_batch(request)

    @app.post("/batches/delta", response_model=CreateBatchResult)
    async def create_delta_batch(
        request: CreateDeltaBatchOptions,
        service: BatchService = Depends(get_service),
    ):
        """Plan a batch that only translates what changed."""
        return await service.create_delta_batch(request)

    @app.post("/batches/retry", response_model=CreateRetryBatchResult)
    async def create_retry_batch(
        request: RetryBatchRequest,
        service: BatchService = Depends(get_service),
    ):
        """Draft a batch with only the failed requests of an earlier one."""
        return await service.create_retry_batch(
            request.sender_id,
            request.original_batch_id,
            request.error_artifact_name,
            request.model,
        )

    @app.post("/batches/poll", response_model=PollResponse)
    async def poll_batches(poller: BatchPoller = Depends(get_poller)):
        """Run a poll tick now."""
        summary = await poller.poll_once()
        if summary is None:
            return PollResponse(skipped=True)
        return PollResponse(
            skipped=False,
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            changed=summary.changed,
        )

    @app.post("/batches/{batch_id}/submit", response_model=SubmitBatchResult)
    async def submit_batch(
        batch_id: str,
        request: SubmitBatchRequest,
        service: BatchService = Depends(get_service),
        poller: BatchPoller = Depends(get_poller),
    ):
        """Send a draft batch to its provider."""
        result = await service.submit_batch(request.sender_id, batch_id, request.metadata)
        if poller.is_running:
            poller.trigger()
        return result

    @app.get("/batches/{batch_id}/status", response_model=CheckBatchStatusResult)
    async def batch_status(
        batch_id: str,
        sender_id: str,
        service: BatchService = Depends(get_service),
    ):
        """Check a batch with its provider."""
        return await service.check_batch_status(sender_id, batch_id)

    @app.post("/batches/{batch_id}/cancel", response_model=CheckBatchStatusResult)
    async def cancel_batch(
        batch_id: str,
        request: SenderRequest,
        service: BatchService = Depends(get_service),
    ):
        """Ask the provider to stop a running batch."""
        return await service.cancel_batch(request.sender_id, batch_id)

    @app.post("/batches/{batch_id}/process", response_model=ProcessCompletedBatchResult)
    async def process_batch(
        batch_id: str,
        request: ProcessBatchRequest,
        service: BatchService = Depends(get_service),
    ):
        """Turn a finished batch's results into translations."""
        return await service.process_completed_batch(request.sender_id, batch_id, save=request.save)

    return app


app = create_app()
