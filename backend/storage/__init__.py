"""File-based JSON storage for users and shared stories.

Data layout:
  data/
    users.json          {"users": [User, ...]} — each User embeds its
                        characters, their stories, API settings and
                        preferences
    shared/
      <id>.json         SharedStory snapshot (independent of the source story)

Field names on disk are camelCase (createdAt, selectedChoice, apiSettings).
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    shared_dir,
    users_path,
)

from .users import (  # noqa: F401
    get_all_users,
    get_user,
    save_user,
)

from .shares import (  # noqa: F401
    get_shared_story,
    save_shared_story,
)
