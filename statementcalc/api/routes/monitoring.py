"""
Monitoring endpoints.

Provides the health check used by container probes and the UI.
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from statementcalc.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str


@router.get("/health", response_model=HealthResponse, tags=["Monitoring"])
@router.get("/api/health", response_model=HealthResponse, include_in_schema=False)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the server is running. Does not contact Textract or
    the model provider.
    """
    return HealthResponse(
        status="healthy",
        version=get_settings().app_version,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
