# engagement_crm/api/routes/health.py
from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel, Field

from engagement_crm.core.config import get_settings

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(..., examples=["ok"])
    app_name: str = Field(..., examples=["Engagement CRM"])
    environment: str = Field(
        ...,
        description="Current deployment environment (local/test/dev/stage/prod).",
        examples=["local"],
    )
    webhook_secret_configured: bool = Field(
        ...,
        description="Whether lifecycle webhooks can be authenticated at all.",
        examples=[True],
    )
    messaging_configured: bool = Field(..., examples=[False])
    timestamp_utc: datetime = Field(..., examples=["2026-01-08T10:30:00Z"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description=(
        "Liveness probe. Does not touch the database or any collaborator; "
        "only reports which collaborators are configured."
    ),
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(
        status="ok",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        webhook_secret_configured=bool(settings.ZOOM_WEBHOOK_SECRET_TOKEN),
        messaging_configured=bool(settings.MESSAGING_API_URL),
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
