"""Reader preferences — named knobs folded into every prompt.

A PreferenceStore is built per request from the user's saved preferences,
so updates from one user never leak into another user's generations.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from story_weaver import llm
from story_weaver.models import UserPreference
from story_weaver.parsers import PreferenceDelta, parse_preference_delta
from story_weaver.prompts import build_feedback, to_messages

logger = logging.getLogger(__name__)

# name -> (default value, description)
DEFAULT_PREFERENCES: dict[str, tuple[str, str]] = {
    "storyStyle": ("adventure", "Genre or overall style of the story"),
    "tone": ("lighthearted", "Emotional tone of the narration"),
    "complexity": ("medium", "Plot and language complexity"),
    "theme": ("growth", "Underlying theme the story explores"),
}


class PreferenceError(ValueError):
    """Raised for unknown preference names or empty values."""


def default_preferences() -> list[UserPreference]:
    return [
        UserPreference(name=name, value=value, description=desc)
        for name, (value, desc) in DEFAULT_PREFERENCES.items()
    ]


class PreferenceStore:
    """Ordered name -> UserPreference mapping for one user."""

    def __init__(self, preferences: Iterable[UserPreference] = ()) -> None:
        self._prefs: dict[str, UserPreference] = {p.name: p for p in default_preferences()}
        for pref in preferences:
            if pref.name in self._prefs:
                self._prefs[pref.name] = pref

    def all(self) -> list[UserPreference]:
        return list(self._prefs.values())

    def get(self, name: str) -> UserPreference | None:
        return self._prefs.get(name)

    def names(self) -> list[str]:
        return list(self._prefs)

    def set(self, name: str, value: str) -> UserPreference:
        current = self._prefs.get(name)
        if current is None:
            raise PreferenceError(f"Unknown preference: {name}")
        value = value.strip()
        if not value:
            raise PreferenceError(f"Preference {name} needs a value")
        updated = current.model_copy(update={"value": value})
        self._prefs[name] = updated
        return updated

    def apply(self, updates: Mapping[str, str]) -> list[UserPreference]:
        """Apply several updates; returns the preferences that changed."""
        for name, value in updates.items():
            if name not in self._prefs or not value.strip():
                raise PreferenceError(f"Invalid preference update: {name}={value!r}")
        changed = []
        for name, value in updates.items():
            before = self._prefs[name].value
            pref = self.set(name, value)
            if pref.value != before:
                changed.append(pref)
        return changed


async def analyze_feedback(
    feedback: str,
    store: PreferenceStore,
    selector: llm.ProviderSelector,
    rating: int | None = None,
) -> PreferenceDelta:
    """Ask the model how preferences should shift and apply its answer to `store`.

    A reply that cannot be parsed leaves the store unchanged.
    """
    pair = build_feedback(store.all(), feedback, rating)
    reply = await llm.generate("feedback", to_messages(pair), selector)
    delta = parse_preference_delta(reply, store.names())
    if delta.updates:
        try:
            store.apply(delta.updates)
        except PreferenceError as e:
            logger.warning("Feedback produced an invalid preference update: %s", e)
    elif not delta.no_change:
        logger.warning("Feedback analysis returned no usable preference lines")
    return delta
