"""Shared story snapshots, one JSON file per share id."""

from pathlib import Path

from story_weaver.models import SharedStory, Story

from .core import shared_dir


def _share_path(share_id: str) -> Path:
    return shared_dir() / f"{share_id}.json"


def get_shared_story(share_id: str) -> SharedStory | None:
    path = _share_path(share_id)
    # ids are generated hex strings; anything else cannot name a file we wrote
    if not share_id.isalnum() or not path.is_file():
        return None
    return SharedStory.model_validate_json(path.read_text(encoding="utf-8"))


def save_shared_story(story: Story, author_name: str) -> SharedStory:
    """Snapshot a story. Later edits or deletion of the story do not touch the copy."""
    shared = SharedStory(story=story.model_copy(deep=True), author_name=author_name)
    _share_path(shared.id).write_text(
        shared.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
    )
    return shared
