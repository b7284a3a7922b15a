"""Pydantic request models and the response envelope. JSON bodies use camelCase keys."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginBody(_Body):
    email: str


class ApiSettingsBody(_Body):
    provider: str


class UpdateSettingsBody(_Body):
    email: str
    api_settings: ApiSettingsBody


class CreateCharacterBody(_Body):
    email: str
    name: str
    attributes: list[str] | str = []


class DeleteCharacterBody(_Body):
    email: str
    character_id: str


class CreateStoryBody(_Body):
    email: str
    character_id: str
    keywords: list[str]


class StoryRef(_Body):
    email: str
    character_id: str
    story_id: str


class ContinueStoryBody(StoryRef):
    choice: str
    word_count: int


class PreferenceBody(_Body):
    email: str
    preference_name: str
    preference_value: str


class FeedbackBody(_Body):
    email: str
    story_id: str
    feedback: str
    rating: int | None = None


def ok(data: Any = None) -> dict[str, Any]:
    """Success envelope."""
    return {"success": True, "data": data}
