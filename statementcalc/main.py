"""
FastAPI application entry point.

Configures the application with routes, middleware, and settings.
"""
import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

# Initialize Sentry for error tracking (must be done early)
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from slowapi.errors import RateLimitExceeded

from statementcalc.api.routes import monitoring, process
from statementcalc.config import get_settings
from statementcalc.exceptions import StatementCalcError
from statementcalc.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    configure_logging,
    redact_sensitive_data,
)
from statementcalc.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from statementcalc.middleware.security import SecurityHeadersMiddleware, get_cors_origins

settings = get_settings()


def _filter_sensitive_data(event: dict, hint: dict) -> dict:
    """Strip credentials and image payloads from Sentry events before sending."""
    request = event.get("request")
    if isinstance(request, dict) and isinstance(request.get("data"), dict):
        request["data"] = redact_sensitive_data(request["data"])
    if isinstance(event.get("extra"), dict):
        event["extra"] = redact_sensitive_data(event["extra"])
    return event


sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=settings.app_version,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=None, event_level="ERROR"),
        ],
        send_default_pii=False,
        before_send=_filter_sensitive_data,
    )

configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="StatementCalc API",
    description="""
## Financial Statement Calculation Reconciliation API

StatementCalc checks the arithmetic of a financial statement image.

### Key Features

- **Table Extraction**: AWS Textract locates every table cell and word on the statement
- **Calculation Proposals**: A multimodal language model lists the statement's calculations as JSON
- **Reconciliation**: Each proposed formula is recomputed and matched to the OCR cell holding its result
- **Overlay**: Matched cells are drawn green (verified) or red (mismatched) on the image

### Statement Types Supported

| Type | Description |
|------|-------------|
| Balance Sheet | Assets, liabilities, equity |
| Profit and Loss | Revenue, expenses, profit |
| Cash Flow | Operating, investing, financing activities |
| Changes in Equity | Movements in equity reserves |
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Processing", "description": "Statement relay and reconciliation"},
        {"name": "Monitoring", "description": "Health checks"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.add_middleware(SecurityHeadersMiddleware)

# Order matters: correlation ID first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

# Overlays and OCR block lists compress well
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(process.router, tags=["Processing"])
app.include_router(monitoring.router, tags=["Monitoring"])


@app.exception_handler(StatementCalcError)
async def statementcalc_exception_handler(request: Request, exc: StatementCalcError):
    """Handle all StatementCalc custom exceptions."""
    logger.error(
        "statementcalc_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    sentry_sdk.capture_exception(exc)

    logger.exception(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "SC-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Log configuration on startup."""
    logger.info(
        "Starting StatementCalc API",
        debug=settings.debug,
        llm_provider=settings.llm_provider,
        llm_model=settings.llm_model,
        aws_region=settings.aws_region,
    )

    if sentry_dsn:
        logger.info("Sentry error tracking enabled", environment=os.getenv("ENVIRONMENT", "development"))
    else:
        logger.warning("Sentry error tracking not configured (SENTRY_DSN not set)")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on application shutdown."""
    logger.info("Shutting down StatementCalc API")
