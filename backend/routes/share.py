"""Story sharing: snapshot a story under a public id and read it back."""

from fastapi import APIRouter, HTTPException

from backend import narrative, storage

from .models import StoryRef, ok

router = APIRouter()


@router.post("/story/share")
async def share_story(body: StoryRef):
    """Snapshot a story. The copy survives edits and deletion of the original."""
    user = narrative.load_user(body.email)
    character, story = narrative.find_story(user, body.character_id, body.story_id)
    shared = storage.save_shared_story(story, character.name)
    return ok(shared.to_json())


@router.get("/story/share/{share_id}")
async def get_shared_story(share_id: str):
    shared = storage.get_shared_story(share_id)
    if shared is None:
        raise HTTPException(404, "Shared story not found")
    return ok(shared.to_json())
