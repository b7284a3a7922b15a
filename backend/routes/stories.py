"""Story endpoints: create, options, continue, delete."""

from fastapi import APIRouter

from backend import narrative, storage

from .models import ContinueStoryBody, CreateStoryBody, StoryRef, ok

router = APIRouter()


@router.post("/story/create")
async def create_story(body: CreateStoryBody):
    """Generate a story opening from 2–10 keywords."""
    story = await narrative.create_story(body.email, body.character_id, body.keywords)
    return ok(story.to_json())


@router.post("/story/options")
async def story_options(body: StoryRef):
    """Propose up to five next moves for a story."""
    options = await narrative.generate_options(body.email, body.character_id, body.story_id)
    return ok(options)


@router.post("/story/continue")
async def continue_story(body: ContinueStoryBody):
    """Record a choice and append the continuation."""
    story = await narrative.continue_story(
        body.email, body.character_id, body.story_id, body.choice, body.word_count
    )
    return ok({"story": story.to_json()})


@router.post("/story/delete")
async def delete_story(body: StoryRef):
    """Delete one story; siblings and the character stay."""
    user = narrative.load_user(body.email)
    character, _ = narrative.find_story(user, body.character_id, body.story_id)
    character.stories = [s for s in character.stories if s.id != body.story_id]
    storage.save_user(user)
    return ok({"id": body.story_id})
