"""FastAPI API endpoints under /api.

Endpoint groups: health + settings, auth (login, characters), stories
(create, options, continue, delete), preferences (direct + feedback), share.

Every endpoint answers with {"success": bool, "data"?: ..., "error"?: str}.
Errors are raised as HTTPException / NarrativeError / LLMError and turned
into that envelope by the handlers registered in backend.app.
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .preferences import router as preferences_router
from .settings import router as settings_router
from .share import router as share_router
from .stories import router as stories_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(characters_router)
router.include_router(stories_router)
router.include_router(preferences_router)
router.include_router(share_router)

