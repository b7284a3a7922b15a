"""End-to-end tests for the /api endpoints with a mocked LLM."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app import AI_UNAVAILABLE, app
from backend import storage
from story_weaver.llm import LLMError

EMAIL = "a@x.com"


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _login(client: TestClient, email: str = EMAIL) -> dict:
    resp = client.post("/api/auth/login", json={"email": email})
    assert resp.status_code == 200
    return resp.json()["data"]


def _character(client: TestClient, name: str = "Mira", attributes="brave curious") -> dict:
    resp = client.post("/api/auth/character", json={"email": EMAIL, "name": name, "attributes": attributes})
    assert resp.status_code == 200, resp.json()
    return resp.json()["data"]


def _story(client: TestClient, character_id: str, keywords=("forest", "treasure")) -> dict:
    with patch("backend.narrative.llm.generate", new_callable=AsyncMock) as mock_gen:
        mock_gen.return_value = "It began in the forest."
        resp = client.post("/api/story/create", json={
            "email": EMAIL, "characterId": character_id, "keywords": list(keywords),
        })
    assert resp.status_code == 200, resp.json()
    return resp.json()["data"]


# ── Health / login / settings ────────────────────────────────


def test_health(client):
    assert client.get("/api/health").json() == {"success": True, "data": {"status": "ok"}}


def test_login_creates_user_once(client):
    first = _login(client)
    assert first["email"] == EMAIL
    assert first["characters"] == []
    assert {p["name"] for p in first["preferences"]} == {"storyStyle", "tone", "complexity", "theme"}
    _login(client)
    assert len(storage.get_all_users()) == 1


def test_login_rejects_bad_email(client):
    resp = client.post("/api/auth/login", json={"email": "not-an-email"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["error"]


def test_missing_field_is_client_error(client):
    resp = client.post("/api/auth/login", json={})
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert "email" in resp.json()["error"]


def test_update_settings_switches_provider(client):
    _login(client)
    resp = client.post("/api/auth/updateSettings", json={"email": EMAIL, "apiSettings": {"provider": "google"}})
    assert resp.json()["data"] == {"provider": "google"}
    assert storage.get_user(EMAIL).api_settings.provider == "google"


def test_update_settings_invalid_provider_falls_back(client):
    _login(client)
    resp = client.post("/api/auth/updateSettings", json={"email": EMAIL, "apiSettings": {"provider": "nope"}})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"provider": "deepseek"}


def test_provider_switch_reaches_adapter(client):
    _login(client)
    char = _character(client)
    client.post("/api/auth/updateSettings", json={"email": EMAIL, "apiSettings": {"provider": "google"}})
    resp_body = {"candidates": [{"content": {"parts": [{"text": "Gemini opening."}]}}]}
    mock_resp = httpx.Response(200, json=resp_body, request=httpx.Request("POST", "https://x"))
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=mock_resp)):
        resp = client.post("/api/story/create", json={
            "email": EMAIL, "characterId": char["id"], "keywords": ["a", "b"],
        })
    text = resp.json()["data"]["content"][0]["text"]
    assert text.endswith("[generated by google]")


# ── Characters ───────────────────────────────────────────────


def test_create_character_splits_attribute_string(client):
    _login(client)
    char = _character(client, attributes="  brave   curious ")
    assert char["attributes"] == ["brave", "curious"]
    assert char["stories"] == []


def test_create_character_accepts_attribute_list(client):
    _login(client)
    assert _character(client, attributes=["brave"])["attributes"] == ["brave"]


def test_character_limit(client):
    _login(client)
    _character(client, "One")
    _character(client, "Two")
    resp = client.post("/api/auth/character", json={"email": EMAIL, "name": "Three"})
    assert resp.status_code == 400
    assert len(storage.get_user(EMAIL).characters) == 2


def test_create_character_unknown_user(client):
    resp = client.post("/api/auth/character", json={"email": "b@x.com", "name": "X"})
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "User not found"}


def test_delete_character_cascades_stories(client):
    _login(client)
    keep = _character(client, "Keep")
    gone = _character(client, "Gone")
    _story(client, gone["id"])
    _story(client, keep["id"])
    resp = client.post("/api/auth/character/delete", json={"email": EMAIL, "characterId": gone["id"]})
    assert resp.json() == {"success": True, "data": {"id": gone["id"]}}
    user = storage.get_user(EMAIL)
    assert [c.id for c in user.characters] == [keep["id"]]
    assert len(user.characters[0].stories) == 1


def test_delete_character_by_query(client):
    _login(client)
    char = _character(client)
    resp = client.delete("/api/auth/character", params={"id": char["id"], "email": EMAIL})
    assert resp.status_code == 200
    assert storage.get_user(EMAIL).characters == []


def test_delete_missing_character(client):
    _login(client)
    resp = client.post("/api/auth/character/delete", json={"email": EMAIL, "characterId": "nope"})
    assert resp.status_code == 404


# ── Stories ──────────────────────────────────────────────────


def test_create_story(client):
    _login(client)
    char = _character(client)
    story = _story(client, char["id"])
    assert story["keywords"] == ["forest", "treasure"]
    assert len(story["content"]) == 1
    assert story["content"][0]["type"] == "ai"
    assert "createdAt" in story and "updatedAt" in story


@pytest.mark.parametrize("keywords", [["solo"], [f"k{i}" for i in range(11)]])
def test_create_story_keyword_bounds(client, keywords):
    _login(client)
    char = _character(client)
    resp = client.post("/api/story/create", json={"email": EMAIL, "characterId": char["id"], "keywords": keywords})
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert storage.get_user(EMAIL).characters[0].stories == []


def test_create_story_llm_failure_is_generic(client):
    _login(client)
    char = _character(client)
    with patch("backend.narrative.llm.generate", new_callable=AsyncMock) as mock_gen:
        mock_gen.side_effect = LLMError("HTTP 401 from deepseek")
        resp = client.post("/api/story/create", json={"email": EMAIL, "characterId": char["id"], "keywords": ["a", "b"]})
    assert resp.status_code == 502
    assert resp.json() == {"success": False, "error": AI_UNAVAILABLE}
    assert storage.get_user(EMAIL).characters[0].stories == []


def test_missing_credentials_is_generic(client, monkeypatch):
    monkeypatch.delenv("DEEPSEEK_API_KEY")
    _login(client)
    char = _character(client)
    resp = client.post("/api/story/create", json={"email": EMAIL, "characterId": char["id"], "keywords": ["a", "b"]})
    assert resp.status_code == 502
    assert resp.json()["error"] == AI_UNAVAILABLE


@pytest.mark.parametrize("upstream", [
    httpx.Response(200, text="<html>Bad gateway</html>", request=httpx.Request("POST", "https://x")),
    httpx.Response(200, json={"choices": [{"message": {"content": None}}]}, request=httpx.Request("POST", "https://x")),
])
def test_malformed_upstream_reply_is_generic(client, upstream):
    _login(client)
    char = _character(client)
    with patch("httpx.AsyncClient.post", AsyncMock(return_value=upstream)):
        resp = client.post("/api/story/create", json={"email": EMAIL, "characterId": char["id"], "keywords": ["a", "b"]})
    assert resp.status_code == 502
    assert resp.json() == {"success": False, "error": AI_UNAVAILABLE}


def test_continue_story(client):
    _login(client)
    char = _character(client)
    story = _story(client, char["id"])
    with patch("backend.narrative.llm.generate", new_callable=AsyncMock) as mock_gen:
        mock_gen.return_value = "North they went."
        resp = client.post("/api/story/continue", json={
            "email": EMAIL, "characterId": char["id"], "storyId": story["id"],
            "choice": "head north", "wordCount": 500,
        })
    data = resp.json()["data"]["story"]
    assert len(data["content"]) == 3
    assert data["content"][1] | {"id": None, "timestamp": None} == {
        "id": None, "timestamp": None, "type": "player-choice",
        "text": "head north", "selectedChoice": "head north",
    }
    assert data["content"][-1]["type"] == "ai"
    assert datetime.fromisoformat(data["updatedAt"]) > datetime.fromisoformat(story["updatedAt"])


def test_continue_story_bad_word_count(client):
    _login(client)
    char = _character(client)
    story = _story(client, char["id"])
    resp = client.post("/api/story/continue", json={
        "email": EMAIL, "characterId": char["id"], "storyId": story["id"],
        "choice": "go", "wordCount": 0,
    })
    assert resp.status_code == 400


def test_story_options(client):
    _login(client)
    char = _character(client)
    story = _story(client, char["id"])
    with patch("backend.narrative.llm.generate", new_callable=AsyncMock) as mock_gen:
        mock_gen.return_value = "1. Head north\n2. Hide\n[Run]"
        resp = client.post("/api/story/options", json={
            "email": EMAIL, "characterId": char["id"], "storyId": story["id"],
        })
    assert resp.json() == {"success": True, "data": ["Head north", "Hide", "Run"]}


def test_story_not_found(client):
    _login(client)
    char = _character(client)
    resp = client.post("/api/story/options", json={"email": EMAIL, "characterId": char["id"], "storyId": "nope"})
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Story not found"}


def test_delete_story_leaves_siblings(client):
    _login(client)
    char = _character(client)
    first = _story(client, char["id"])
    second = _story(client, char["id"])
    resp = client.post("/api/story/delete", json={"email": EMAIL, "characterId": char["id"], "storyId": first["id"]})
    assert resp.json() == {"success": True, "data": {"id": first["id"]}}
    user = storage.get_user(EMAIL)
    assert len(user.characters) == 1
    assert [s.id for s in user.characters[0].stories] == [second["id"]]


# ── Preferences ──────────────────────────────────────────────


def test_set_and_get_preferences(client):
    _login(client)
    resp = client.post("/api/story/preferences", json={
        "email": EMAIL, "preferenceName": "storyStyle", "preferenceValue": "科幻",
    })
    assert resp.status_code == 200
    prefs = client.get("/api/story/preferences", params={"email": EMAIL}).json()["data"]["preferences"]
    assert {p["name"]: p["value"] for p in prefs}["storyStyle"] == "科幻"


def test_set_unknown_preference(client):
    _login(client)
    resp = client.post("/api/story/preferences", json={
        "email": EMAIL, "preferenceName": "font", "preferenceValue": "serif",
    })
    assert resp.status_code == 400


def test_feedback(client):
    _login(client)
    story = _story(client, _character(client)["id"])
    with patch("story_weaver.preferences.llm.generate", new_callable=AsyncMock) as mock_gen:
        mock_gen.return_value = "complexity: simple"
        resp = client.post("/api/story/feedback", json={
            "email": EMAIL, "storyId": story["id"], "feedback": "Too hard to follow", "rating": 3,
        })
    data = resp.json()["data"]
    assert data["changed"] == ["complexity"]
    assert {p["name"]: p["value"] for p in data["preferences"]}["complexity"] == "simple"


def test_feedback_unknown_story(client):
    _login(client)
    resp = client.post("/api/story/feedback", json={
        "email": EMAIL, "storyId": "s1", "feedback": "Too hard to follow",
    })
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Story not found"}


# ── Share ────────────────────────────────────────────────────


def test_share_survives_story_deletion(client):
    _login(client)
    char = _character(client)
    story = _story(client, char["id"])
    ref = {"email": EMAIL, "characterId": char["id"], "storyId": story["id"]}
    shared = client.post("/api/story/share", json=ref).json()["data"]
    assert shared["authorName"] == "Mira"
    client.post("/api/story/delete", json=ref)

    resp = client.get(f"/api/story/share/{shared['id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["story"]["id"] == story["id"]


def test_share_missing(client):
    resp = client.get("/api/story/share/abc123")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
