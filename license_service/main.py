"""
main.py - FastAPI Entry Point for the License Service

This module provides the REST API interface for license orders. It validates
the order payload, runs the order workflow and maps its outcome to HTTP.

Responsibilities:
    • Accept license orders via HTTP API
    • Tag every request with a correlation id (x-correlation-id header)
    • Map business rule violations, provider failures and cancellations to responses
    • Create and close the license provider client with the application
    • Provide system health information
"""

import asyncio
import uuid
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .clients import LicenseProviderClient
from .config import load_settings
from .exceptions import DomainError, ExternalApiError
from .logging_config import correlation_id_var, get_logger, setup_logging
from .models import OrderRequestBody
from .workflow import OrderOrchestrator

CORRELATION_HEADER = "x-correlation-id"

# Initialization
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="License Order Service")


@app.on_event("startup")
async def on_startup():
    """
    Loads the provider settings and opens the shared provider client.

    Raises:
        ConfigurationError: If the provider settings are invalid; the service does not start.
    """
    log.info("License service starting...")
    settings = load_settings()
    app.state.settings = settings
    app.state.provider = LicenseProviderClient(settings)
    log.info(f"License provider client created for {settings.base_url}")


@app.on_event("shutdown")
async def on_shutdown():
    provider = getattr(app.state, "provider", None)
    if provider is not None:
        await provider.aclose()
    log.info("License service stopped.")


def get_orchestrator(request: Request) -> OrderOrchestrator:
    return OrderOrchestrator(request.app.state.provider)


def get_order_timeout(request: Request) -> float:
    settings = getattr(request.app.state, "settings", None)
    return settings.order_timeout_seconds if settings is not None else 300


# --- Middleware ---

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Reads or generates the correlation id and binds it to the logging context."""
    correlation_id = request.headers.get(CORRELATION_HEADER, "").strip() or str(uuid.uuid4())
    token = correlation_id_var.set(correlation_id)
    request.state.correlation_id = correlation_id
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token)
    if CORRELATION_HEADER not in response.headers:
        response.headers[CORRELATION_HEADER] = correlation_id
    return response


# --- Responses ---

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(request: Request, status_code: int, error: str, **extra) -> JSONResponse:
    body = {
        "success": False,
        "error": error,
        "statusCode": status_code,
        "requestId": getattr(request.state, "correlation_id", None),
        "timestamp": _timestamp(),
    }
    body.update(extra)
    # The catch-all handler runs outside the correlation middleware.
    headers = {CORRELATION_HEADER: body["requestId"]} if body["requestId"] else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    log.warning(f"Request: Validation failed - {errors}")
    return error_response(request, 400, f"Validation failed: {errors}", validationErrors=errors)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    log.warning(f"Domain error in {request.url.path}: {exc.message}")
    return error_response(request, 400, exc.message)


@app.exception_handler(ExternalApiError)
async def external_api_error_handler(request: Request, exc: ExternalApiError):
    log.error(f"External API failure in {request.url.path}: {exc.message}", exc_info=exc)
    return error_response(request, 502, "External service error. Please try again later.")


@app.exception_handler(asyncio.TimeoutError)
async def timeout_handler(request: Request, exc: asyncio.TimeoutError):
    log.warning(f"Request cancelled in {request.url.path}")
    return error_response(request, 408, "Request was cancelled")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.critical(f"Unhandled exception in {request.url.path}: {exc}", exc_info=exc)
    return error_response(request, 500, "An unexpected error occurred. Please contact support.")


# --- API Endpoints ---

@app.post("/api/submit-licenses")
async def submit_licenses(
        body: OrderRequestBody,
        orchestrator: OrderOrchestrator = Depends(get_orchestrator),
        order_timeout: float = Depends(get_order_timeout),
):
    """
    Receives a license order, processes it and returns the provider's answer.

    Args:
        body (OrderRequestBody): Validated order payload.

    Returns:
        dict: JSON response containing:
            - success (bool): Always True here; failures go through the exception handlers.
            - message (str): Human-readable summary.
            - data (dict): companyName, result (raw provider answer), processedAt.
            - requestId (str): Correlation id of the request.
            - timestamp (str): UTC timestamp.
    """
    log.info(f"Processing request for company: {body.company}")

    # Exceeding the order timeout cancels every outstanding provider call.
    result = await asyncio.wait_for(orchestrator.process_order(body.to_order()), timeout=order_timeout)

    log.info(f"Request completed successfully for company: {body.company}")
    return {
        "success": True,
        "message": f"Order processed successfully for {body.company}",
        "data": {
            "companyName": body.company,
            "result": result.raw,
            "processedAt": _timestamp(),
        },
        "requestId": correlation_id_var.get(),
        "timestamp": _timestamp(),
    }


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
