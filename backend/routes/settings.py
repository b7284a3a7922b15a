"""Health check, login and per-user API settings endpoints."""

import logging
import re

from fastapi import APIRouter, HTTPException

from backend import storage
from story_weaver.llm import coerce_provider
from story_weaver.models import ApiSettings, User
from story_weaver.preferences import default_preferences

from .models import LoginBody, UpdateSettingsBody, ok

logger = logging.getLogger(__name__)

router = APIRouter()

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@router.get("/health")
async def health():
    """Health check."""
    return ok({"status": "ok"})


@router.post("/auth/login")
async def login(body: LoginBody):
    """Log in by email, creating the user on first visit."""
    email = body.email.strip()
    if not _EMAIL_RE.match(email):
        raise HTTPException(400, "Please provide a valid email address")
    user = storage.get_user(email)
    if user is None:
        user = User(email=email, preferences=default_preferences())
        storage.save_user(user)
        logger.info("created user %s", email)
    return ok(user.to_json())


@router.post("/auth/updateSettings")
async def update_settings(body: UpdateSettingsBody):
    """Set the user's LLM provider. Unknown providers fall back to the default."""
    user = storage.get_user(body.email)
    if user is None:
        raise HTTPException(404, "User not found")
    provider = coerce_provider(body.api_settings.provider)
    user.api_settings = ApiSettings(provider=provider.value)
    storage.save_user(user)
    logger.info("user %s now uses provider %s", body.email, provider.value)
    return ok({"provider": provider.value})
