"""
Shared FastAPI dependencies for the v1 routers.
"""

from fastapi import Request

from hive.config import Settings, get_settings
from hive.errors import ValidationError


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def check_audience(audience: str, settings: Settings) -> str:
    """Reject path/body audiences that are not one of the two configured."""
    if audience not in settings.audiences:
        raise ValidationError(
            f"Invalid application type: {audience}",
            {"allowed": list(settings.audiences)}
        )
    return audience
