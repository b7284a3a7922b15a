"""User aggregate storage — one JSON document holding every user.

Each save is a full read-modify-write of users.json. Callers that await
between loading and saving a user must reload before mutating.
"""

import json
from typing import Any

from story_weaver.models import User

from .core import users_path


def _read_all() -> list[dict[str, Any]]:
    path = users_path()
    if not path.is_file():
        return []
    return json.loads(path.read_text(encoding="utf-8")).get("users", [])


def _write_all(users: list[dict[str, Any]]) -> None:
    users_path().write_text(
        json.dumps({"users": users}, indent=2, ensure_ascii=False), encoding="utf-8"
    )


def get_all_users() -> list[User]:
    return [User.model_validate(u) for u in _read_all()]


def get_user(email: str) -> User | None:
    """Find a user by email. Returns None if missing."""
    for raw in _read_all():
        if raw.get("email") == email:
            return User.model_validate(raw)
    return None


def save_user(user: User) -> None:
    """Upsert a user by email."""
    users = _read_all()
    data = user.to_json()
    for i, raw in enumerate(users):
        if raw.get("email") == user.email:
            users[i] = data
            break
    else:
        users.append(data)
    _write_all(users)
