"""Narrative operations: create a story, propose options, continue a story.

Each operation runs validate → look up → build prompt → generate → append →
persist. Generation works on a snapshot of the user. Appending reloads the
user and resolves the story again, then saves without awaiting in between,
so a character or story deleted while the model was busy is reported as not
found instead of being resurrected, and concurrent edits are not clobbered.

Any exception before the final save leaves stored state untouched.
"""

import logging
from collections.abc import Sequence
from typing import Any

from backend import storage
from story_weaver import llm
from story_weaver.context import GenerationContext
from story_weaver.models import AIContent, Character, ChoiceContent, Story, User, count_words
from story_weaver.parsers import parse_options
from story_weaver.preferences import PreferenceError, analyze_feedback
from story_weaver.prompts import (
    build_beginning,
    build_continuation,
    build_options,
    format_story_text,
    to_messages,
)

logger = logging.getLogger(__name__)

MIN_KEYWORDS = 2
MAX_KEYWORDS = 10
MAX_WORD_COUNT = 5000


class NarrativeError(Exception):
    status_code = 500


class StoryValidationError(NarrativeError):
    status_code = 400


class NotFoundError(NarrativeError):
    status_code = 404


class UnusableReplyError(NarrativeError):
    status_code = 502


# ── Lookup ───────────────────────────────────────────────


def load_user(email: str) -> User:
    user = storage.get_user(email)
    if user is None:
        raise NotFoundError("User not found")
    return user


def find_character(user: User, character_id: str) -> Character:
    character = user.find_character(character_id)
    if character is None:
        raise NotFoundError("Character not found")
    return character


def find_story(user: User, character_id: str, story_id: str) -> tuple[Character, Story]:
    character = find_character(user, character_id)
    story = character.find_story(story_id)
    if story is None:
        raise NotFoundError("Story not found")
    return character, story


# ── Validation ───────────────────────────────────────────


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise StoryValidationError(f"{field} must be a non-empty string")
    return value.strip()


def validate_keywords(keywords: Any) -> list[str]:
    if not isinstance(keywords, list):
        raise StoryValidationError("keywords must be a list")
    if not MIN_KEYWORDS <= len(keywords) <= MAX_KEYWORDS:
        raise StoryValidationError(
            f"Provide between {MIN_KEYWORDS} and {MAX_KEYWORDS} keywords"
        )
    return [_require_text(k, "keyword") for k in keywords]


def validate_word_count(word_count: Any) -> int:
    if isinstance(word_count, bool) or not isinstance(word_count, int):
        raise StoryValidationError("wordCount must be an integer")
    if not 0 < word_count <= MAX_WORD_COUNT:
        raise StoryValidationError(f"wordCount must be between 1 and {MAX_WORD_COUNT}")
    return word_count


def _require_content(story: Story) -> None:
    if not story.content:
        raise StoryValidationError("Story has no content yet")


# ── Operations ───────────────────────────────────────────


async def create_story(email: str, character_id: str, keywords: Sequence[str]) -> Story:
    """Generate an opening and add a new story to the character."""
    keywords = validate_keywords(keywords)
    user = load_user(email)
    character = find_character(user, character_id)
    ctx = GenerationContext.for_user(user)

    pair = build_beginning(keywords, character.name, character.attributes, ctx.preferences.all())
    text = await llm.generate("beginning", to_messages(pair), ctx.selector)

    story = Story(title=f"A story of {', '.join(keywords)}", keywords=keywords)
    story.append(AIContent(text=text, word_count=count_words(llm.strip_provenance(text))))

    user = load_user(email)
    find_character(user, character_id).stories.append(story)
    storage.save_user(user)
    logger.info("created story %s for character %s", story.id, character_id)
    return story


async def generate_options(email: str, character_id: str, story_id: str) -> list[str]:
    """Propose up to five next moves. The story itself is not modified."""
    user = load_user(email)
    character, story = find_story(user, character_id, story_id)
    _require_content(story)
    ctx = GenerationContext.for_user(user)

    pair = build_options(
        format_story_text(story.content), character.name, character.attributes,
        ctx.preferences.all(),
    )
    reply = await llm.generate("options", to_messages(pair), ctx.selector)
    result = parse_options(reply)
    if not result.ok:
        raise UnusableReplyError("The AI reply contained no usable options")
    return result.options


async def continue_story(
    email: str, character_id: str, story_id: str, choice: str, word_count: int
) -> Story:
    """Record the player's choice and append the generated continuation."""
    choice = _require_text(choice, "choice")
    word_count = validate_word_count(word_count)
    user = load_user(email)
    character, story = find_story(user, character_id, story_id)
    _require_content(story)
    ctx = GenerationContext.for_user(user)

    pair = build_continuation(
        format_story_text(story.content), choice, word_count,
        character.name, character.attributes, ctx.preferences.all(),
    )
    text = await llm.generate("continuation", to_messages(pair), ctx.selector)

    user = load_user(email)
    _, story = find_story(user, character_id, story_id)
    story.append(
        ChoiceContent(text=choice, selected_choice=choice),
        AIContent(text=text, word_count=count_words(llm.strip_provenance(text))),
    )
    storage.save_user(user)
    logger.info("continued story %s (%d entries)", story_id, len(story.content))
    return story


# ── Preferences ──────────────────────────────────────────


def update_preference(email: str, name: str, value: str) -> User:
    user = load_user(email)
    ctx = GenerationContext.for_user(user)
    try:
        ctx.preferences.set(_require_text(name, "preferenceName"), _require_text(value, "preferenceValue"))
    except PreferenceError as e:
        raise StoryValidationError(str(e)) from e
    user.preferences = ctx.preferences.all()
    storage.save_user(user)
    return user


async def submit_feedback(
    email: str, story_id: str, feedback: str, rating: int | None = None
) -> dict[str, Any]:
    """Let the model adjust the user's preferences from feedback on one of their stories."""
    feedback = _require_text(feedback, "feedback")
    story_id = _require_text(story_id, "storyId")
    if rating is not None and not 1 <= rating <= 5:
        raise StoryValidationError("rating must be between 1 and 5")
    user = load_user(email)
    if not any(c.find_story(story_id) for c in user.characters):
        raise NotFoundError("Story not found")
    ctx = GenerationContext.for_user(user)
    before = {p.name: p.value for p in ctx.preferences.all()}

    delta = await analyze_feedback(feedback, ctx.preferences, ctx.selector, rating)

    changed = sorted(p.name for p in ctx.preferences.all() if p.value != before[p.name])
    if changed:
        user = load_user(email)
        user.preferences = ctx.preferences.all()
        storage.save_user(user)
    return {
        "changed": changed,
        "noChange": delta.no_change,
        "rejected": delta.rejected,
        "preferences": [p.to_json() for p in ctx.preferences.all()],
    }
