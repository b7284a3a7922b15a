"""Character CRUD endpoints. Deleting a character deletes its stories."""

from fastapi import APIRouter, HTTPException

from backend import storage
from story_weaver.models import Character

from .models import CreateCharacterBody, DeleteCharacterBody, ok

router = APIRouter()

MAX_CHARACTERS = 2


@router.post("/auth/character")
async def create_character(body: CreateCharacterBody):
    """Create a character. Attributes may be a list or a space-separated string."""
    name = body.name.strip()
    if not name:
        raise HTTPException(400, "Character name is required")
    user = storage.get_user(body.email)
    if user is None:
        raise HTTPException(404, "User not found")
    if len(user.characters) >= MAX_CHARACTERS:
        raise HTTPException(400, f"A user can have at most {MAX_CHARACTERS} characters")

    raw = body.attributes.split() if isinstance(body.attributes, str) else body.attributes
    attributes = [a.strip() for a in raw if a.strip()]
    char = Character(name=name, attributes=attributes)
    user.characters.append(char)
    storage.save_user(user)
    return ok(char.to_json())


def _delete_character(email: str, character_id: str) -> dict:
    user = storage.get_user(email)
    if user is None:
        raise HTTPException(404, "User not found")
    remaining = [c for c in user.characters if c.id != character_id]
    if len(remaining) == len(user.characters):
        raise HTTPException(404, "Character not found")
    user.characters = remaining
    storage.save_user(user)
    return ok({"id": character_id})


@router.post("/auth/character/delete")
async def delete_character(body: DeleteCharacterBody):
    """Remove a character and all of its stories."""
    return _delete_character(body.email, body.character_id)


@router.delete("/auth/character")
async def delete_character_by_query(id: str, email: str):
    """Same as POST /auth/character/delete, addressed by query parameters."""
    return _delete_character(email, id)
