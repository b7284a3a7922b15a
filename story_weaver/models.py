"""Core domain models.

All storage functions and route handlers operate on these types. Fields are
snake_case in Python and camelCase on disk and over the wire.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def count_words(text: str) -> int:
    """Count semantic words: each CJK character plus each whitespace-delimited word."""
    cjk = len(_CJK_RE.findall(text))
    rest = _CJK_RE.sub(" ", text).split()
    return cjk + len(rest)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Story content (append-only, immutable entries)
# ---------------------------------------------------------------------------

class AIContent(_Model):
    """Generated narrative text."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: Literal["ai"] = "ai"
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    word_count: int | None = None


class ChoiceContent(_Model):
    """A recorded player choice."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: Literal["player-choice"] = "player-choice"
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    selected_choice: str


StoryContent = Annotated[Union[AIContent, ChoiceContent], Field(discriminator="type")]


class Story(_Model):
    id: str = Field(default_factory=new_id)
    title: str
    keywords: list[str]
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    content: list[StoryContent] = Field(default_factory=list)

    def append(self, *entries: AIContent | ChoiceContent) -> None:
        """Append entries in order and bump updated_at."""
        self.content.extend(entries)
        self.touch()

    def touch(self) -> None:
        # Strictly monotonic even when two turns land in the same clock tick
        now = utcnow()
        if now <= self.updated_at:
            now = self.updated_at + timedelta(microseconds=1)
        self.updated_at = now


class Character(_Model):
    id: str = Field(default_factory=new_id)
    name: str
    attributes: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    stories: list[Story] = Field(default_factory=list)

    def find_story(self, story_id: str) -> Story | None:
        for story in self.stories:
            if story.id == story_id:
                return story
        return None


class UserPreference(_Model):
    id: str = Field(default_factory=new_id)
    name: str
    value: str
    description: str = ""


class ApiSettings(_Model):
    provider: str = "deepseek"


class User(_Model):
    email: str
    characters: list[Character] = Field(default_factory=list)
    api_settings: ApiSettings | None = None
    preferences: list[UserPreference] = Field(default_factory=list)

    def find_character(self, character_id: str) -> Character | None:
        for char in self.characters:
            if char.id == character_id:
                return char
        return None


class SharedStory(_Model):
    """A frozen snapshot of a story; outlives the story it was copied from."""

    id: str = Field(default_factory=new_id)
    story: Story
    author_name: str
    created_at: datetime = Field(default_factory=utcnow)
