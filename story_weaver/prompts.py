"""Handlebars prompt templates for the three narrative operations and feedback.

Each builder returns a PromptPair(system, user). Nothing provider-specific
happens here; adapters in story_weaver.llm handle wire formats.

Values are rendered with triple-stash ({{{x}}}) so quotes and ampersands in
user input reach the model unescaped.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, NamedTuple

import pybars

from story_weaver.llm import ChatMessage, strip_provenance
from story_weaver.models import AIContent, ChoiceContent, UserPreference

BEGINNING_WORDS = 1000
OPTION_COUNT = 5
NO_CHANGE = "NO_CHANGE"

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


class PromptPair(NamedTuple):
    system: str
    user: str


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def to_messages(pair: PromptPair) -> list[ChatMessage]:
    return [
        ChatMessage(role="system", content=pair.system),
        ChatMessage(role="user", content=pair.user),
    ]


def format_story_text(content: Sequence[AIContent | ChoiceContent]) -> str:
    """Flatten story entries into prompt text, dropping provenance markers."""
    parts: list[str] = []
    for entry in content:
        if entry.type == "ai":
            parts.append(strip_provenance(entry.text))
        elif entry.type == "player-choice":
            parts.append(f"[Choice: {entry.selected_choice}]")
    return "\n\n".join(parts)


# ── Templates ────────────────────────────────────────────


_PREFERENCE_BLOCK = """{{#if preferences}}
Reader preferences:
{{#each preferences}}- {{{name}}}: {{{value}}}
{{/each}}{{/if}}"""

_CHARACTER_SYSTEM = (
    'Make "{{{character}}}" the protagonist.'
    "{{#if attributes}} The protagonist has these attributes: {{{attributes}}}."
    " Keep their personality and actions consistent with them.{{/if}}"
)

BEGINNING_SYSTEM = (
    "You are a professional fiction writer who turns a handful of keywords "
    "into a gripping story opening. " + _CHARACTER_SYSTEM
)

BEGINNING_USER = """Write the opening of a story (about {{words}} words) starring "{{{character}}}".

Core keywords: {{{core}}}
{{#if auxiliary}}Supporting keywords: {{{auxiliary}}}
{{/if}}{{#if attributes}}Character attributes: {{{attributes}}}
{{/if}}""" + _PREFERENCE_BLOCK + """
Requirements:
1. Hook the reader so they want to keep going.
2. Aim for roughly {{words}} words.
3. Build the story around "{{{character}}}".
4. The core keywords must drive the premise; weave the supporting keywords in where they fit.
5. Introduce the setting and situation, with vivid description and dialogue.
6. Leave open threads and suspense for later choices.
7. Follow the reader preferences above.
8. Output only the story text, no commentary.
"""

OPTIONS_SYSTEM = (
    "You are a professional fiction writer who proposes varied directions "
    "for an interactive story. " + _CHARACTER_SYSTEM
)

OPTIONS_USER = """Based on the story below, propose {{count}} possible next moves for "{{{character}}}".

{{{story}}}

{{#if attributes}}Character attributes: {{{attributes}}}
{{/if}}""" + _PREFERENCE_BLOCK + """
Requirements:
1. Each option is short: 15 to 30 characters.
2. The options differ clearly from each other.
3. Each option follows plausibly from the current story and suits the protagonist.
4. List exactly {{count}} options, one per line, with no numbering, bullets or brackets.
"""

CONTINUATION_SYSTEM = (
    "You are a professional fiction writer who continues an interactive story "
    "according to the reader's choice. " + _CHARACTER_SYSTEM
)

CONTINUATION_USER = """Continue the story below following the player's choice. The protagonist is "{{{character}}}".

Story so far:
{{{story}}}

Player choice:
{{{choice}}}

{{#if attributes}}Character attributes: {{{attributes}}}
{{/if}}""" + _PREFERENCE_BLOCK + """
Requirements:
1. Continue naturally from the player's choice.
2. Aim for roughly {{words}} words.
3. Keep "{{{character}}}" at the center of the story.
4. Advance the plot; do not repeat or summarize what already happened.
5. Leave room for further choices.
6. Use vivid description and dialogue.
7. Output only the story text, no commentary.
"""

FEEDBACK_SYSTEM = (
    "You tune story-generation preferences from reader feedback. "
    "You answer only with preference lines."
)

FEEDBACK_USER = """Current preferences:
{{#each preferences}}- {{{name}}}: {{{value}}} ({{{description}}})
{{/each}}
Reader feedback{{#if rating}} (rating {{rating}}/5){{/if}}:
{{{feedback}}}

Decide which preferences should change. Reply with one line per change in the form
name: new value
using only the preference names listed above. If nothing should change, reply with exactly {{no_change}}.
"""


# ── Builders ─────────────────────────────────────────────


def _base_context(
    character_name: str,
    attributes: Sequence[str],
    preferences: Sequence[UserPreference],
) -> dict[str, Any]:
    return {
        "character": character_name,
        "attributes": ", ".join(attributes),
        "preferences": [{"name": p.name, "value": p.value} for p in preferences],
    }


def build_beginning(
    keywords: Sequence[str],
    character_name: str,
    attributes: Sequence[str] = (),
    preferences: Sequence[UserPreference] = (),
) -> PromptPair:
    """Prompt for a ~1000-word opening. The first two keywords are the core."""
    ctx = _base_context(character_name, attributes, preferences)
    ctx.update(
        core=", ".join(keywords[:2]),
        auxiliary=", ".join(keywords[2:]),
        words=BEGINNING_WORDS,
    )
    return PromptPair(render_prompt(BEGINNING_SYSTEM, ctx), render_prompt(BEGINNING_USER, ctx))


def build_options(
    story_text: str,
    character_name: str,
    attributes: Sequence[str] = (),
    preferences: Sequence[UserPreference] = (),
) -> PromptPair:
    ctx = _base_context(character_name, attributes, preferences)
    ctx.update(story=story_text, count=OPTION_COUNT)
    return PromptPair(render_prompt(OPTIONS_SYSTEM, ctx), render_prompt(OPTIONS_USER, ctx))


def build_continuation(
    story_text: str,
    choice: str,
    word_count: int,
    character_name: str,
    attributes: Sequence[str] = (),
    preferences: Sequence[UserPreference] = (),
) -> PromptPair:
    ctx = _base_context(character_name, attributes, preferences)
    ctx.update(story=story_text, choice=choice, words=word_count)
    return PromptPair(
        render_prompt(CONTINUATION_SYSTEM, ctx), render_prompt(CONTINUATION_USER, ctx)
    )


def build_feedback(
    preferences: Sequence[UserPreference],
    feedback: str,
    rating: int | None = None,
) -> PromptPair:
    ctx = {
        "preferences": [p.model_dump() for p in preferences],
        "feedback": feedback,
        "rating": rating,
        "no_change": NO_CHANGE,
    }
    return PromptPair(render_prompt(FEEDBACK_SYSTEM, ctx), render_prompt(FEEDBACK_USER, ctx))
