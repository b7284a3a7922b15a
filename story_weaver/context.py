"""Per-request generation context: which provider to call and which preferences apply."""

from __future__ import annotations

from story_weaver.llm import ProviderSelector
from story_weaver.models import User
from story_weaver.preferences import PreferenceStore


class GenerationContext:
    def __init__(self, selector: ProviderSelector, preferences: PreferenceStore) -> None:
        self.selector = selector
        self.preferences = preferences

    @classmethod
    def for_user(cls, user: User) -> GenerationContext:
        provider = user.api_settings.provider if user.api_settings else None
        return cls(ProviderSelector(provider), PreferenceStore(user.preferences))
