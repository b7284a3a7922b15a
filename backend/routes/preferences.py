"""Reader preference endpoints: read, set directly, adjust from feedback."""

from fastapi import APIRouter

from backend import narrative
from story_weaver.context import GenerationContext

from .models import FeedbackBody, PreferenceBody, ok

router = APIRouter()


@router.get("/story/preferences")
async def get_preferences(email: str):
    user = narrative.load_user(email)
    prefs = GenerationContext.for_user(user).preferences.all()
    return ok({"preferences": [p.to_json() for p in prefs]})


@router.post("/story/preferences")
async def set_preference(body: PreferenceBody):
    user = narrative.update_preference(body.email, body.preference_name, body.preference_value)
    prefs = GenerationContext.for_user(user).preferences.all()
    return ok({"preferences": [p.to_json() for p in prefs]})


@router.post("/story/feedback")
async def submit_feedback(body: FeedbackBody):
    """Ask the model to infer preference changes from free-text feedback."""
    result = await narrative.submit_feedback(body.email, body.story_id, body.feedback, body.rating)
    return ok(result)
