"""LLM provider layer — two heterogeneous backends behind one callable.

Every provider implementation matches the protocol:

    async def __call__(self, stage: str, messages: list[ChatMessage]) -> str: ...

`stage` identifies which narrative operation is calling ("beginning",
"options", "continuation", "feedback"). It is only used for logging.

Implementations:

    ChatCompletionLLM     — chat-completion API (role/content message array,
                            bearer auth). Used for Provider.DEEPSEEK.
    GenerativeContentLLM  — generative-content API ({role, parts:[{text}]}
                            contents, no system role). Used for Provider.GOOGLE.
    EchoLLM               — returns the last message back. No network.

Which provider runs is decided per request by a ProviderSelector, passed into
generate() together with the messages. Nothing here is module-global state.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_OUTPUT_TOKENS = 4000
PLACEHOLDER_USER_TEXT = "Please begin."

_RETRY_STATUSES = {429, 500, 502, 503, 504}


# ---------------------------------------------------------------------------
# Providers and the per-request selector
# ---------------------------------------------------------------------------

class Provider(str, Enum):
    DEEPSEEK = "deepseek"
    GOOGLE = "google"


DEFAULT_PROVIDER = Provider.DEEPSEEK


def coerce_provider(value: Any) -> Provider:
    """Map a raw value to a Provider. Unknown values fall back to the default."""
    if isinstance(value, Provider):
        return value
    try:
        return Provider(value)
    except ValueError:
        logger.warning("Unknown LLM provider %r, using %s", value, DEFAULT_PROVIDER.value)
        return DEFAULT_PROVIDER


class ProviderSelector:
    """Holds the active provider for one request or session."""

    def __init__(self, provider: Any = None) -> None:
        self._provider = DEFAULT_PROVIDER
        if provider is not None:
            self.set(provider)

    def set(self, provider: Any) -> Provider:
        self._provider = coerce_provider(provider)
        return self._provider

    def get(self) -> Provider:
        return self._provider


# ---------------------------------------------------------------------------
# Messages and protocol
# ---------------------------------------------------------------------------

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    role: Role
    content: str


class LLM(Protocol):
    async def __call__(self, stage: str, messages: Sequence[ChatMessage]) -> str: ...


# ---------------------------------------------------------------------------
# Provenance marker
# ---------------------------------------------------------------------------

_PROVENANCE_RE = re.compile(r"\s*\[generated by [a-z]+\]\s*$")


def provenance_marker(provider: Provider) -> str:
    return f"[generated by {provider.value}]"


def is_provenance_line(line: str) -> bool:
    return bool(_PROVENANCE_RE.fullmatch(line))


def strip_provenance(text: str) -> str:
    return _PROVENANCE_RE.sub("", text)


# ---------------------------------------------------------------------------
# Shared HTTP plumbing
# ---------------------------------------------------------------------------

class _HttpLLM:
    """Common request/retry/extract cycle for both HTTP providers.

    Args:
        api_key_env: Environment variable holding the API key. Read on every
                     call so rotated keys apply without a restart.
        timeout:     HTTP timeout in seconds.
        retries:     Extra attempts on transient failures (connect errors,
                     timeouts, 429 and 5xx).
        provenance:  Append the provenance marker line to returned text.
    """

    provider: Provider

    def __init__(
        self,
        api_key_env: str,
        timeout: float = 60.0,
        retries: int = 1,
        provenance: bool = True,
    ) -> None:
        self._api_key_env = api_key_env
        self._timeout = timeout
        self._retries = max(0, retries)
        self._provenance = provenance

    def _api_key(self) -> str:
        key = os.getenv(self._api_key_env, "")
        if not key:
            raise ProviderConfigError(f"{self._api_key_env} is not set")
        return key

    def _build_request(self, messages: Sequence[ChatMessage], api_key: str) -> tuple[str, dict, dict]:
        raise NotImplementedError

    def _parse_response(self, data: dict) -> str:
        raise NotImplementedError

    async def _post(self, url: str, body: dict, headers: dict[str, str]) -> dict:
        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(url, json=body, headers=headers)
                    resp.raise_for_status()
                try:
                    return resp.json()
                except ValueError as e:
                    raise LLMError(f"{self.provider.value} returned a non-JSON body") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in _RETRY_STATUSES and attempt < self._retries:
                    attempt += 1
                    logger.warning("%s returned HTTP %d, retrying (%d/%d)",
                                   self.provider.value, status, attempt, self._retries)
                    await asyncio.sleep(0.5 * attempt)
                    continue
                raise LLMError(f"{self.provider.value} returned HTTP {status}") from e
            except httpx.TimeoutException as e:
                if attempt < self._retries:
                    attempt += 1
                    logger.warning("%s timed out, retrying (%d/%d)",
                                   self.provider.value, attempt, self._retries)
                    continue
                raise LLMError(f"{self.provider.value} timed out after {self._timeout}s") from e
            except httpx.TransportError as e:
                if attempt < self._retries:
                    attempt += 1
                    logger.warning("%s transport error %s, retrying (%d/%d)",
                                   self.provider.value, e, attempt, self._retries)
                    await asyncio.sleep(0.5 * attempt)
                    continue
                raise LLMError(f"Cannot connect to {self.provider.value}: {e}") from e

    async def __call__(self, stage: str, messages: Sequence[ChatMessage]) -> str:
        url, body, headers = self._build_request(messages, self._api_key())
        logger.debug("llm call stage=%s provider=%s messages=%d prompt_len=%d",
                     stage, self.provider.value, len(messages),
                     sum(len(m.content) for m in messages))

        data = await self._post(url, body, headers)
        try:
            text = self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LLMError(f"Unexpected response format from {self.provider.value}") from e
        if not isinstance(text, str):
            raise LLMError(f"Unexpected response format from {self.provider.value}")
        text = text.strip()
        if not text:
            raise LLMError(f"Empty completion from {self.provider.value}")

        logger.debug("llm response stage=%s provider=%s len=%d", stage, self.provider.value, len(text))
        if self._provenance:
            text = f"{text}\n\n{provenance_marker(self.provider)}"
        return text


# ---------------------------------------------------------------------------
# Chat-completion adapter
# ---------------------------------------------------------------------------

class ChatCompletionLLM(_HttpLLM):
    """POST {url}  {"model", "messages", "temperature", "max_tokens"}
    Response: {"choices": [{"message": {"content": "..."}}]}
    """

    provider = Provider.DEEPSEEK

    def __init__(
        self,
        url: str = "https://api.deepseek.com/v1/chat/completions",
        model: str = "deepseek-chat",
        api_key_env: str = "DEEPSEEK_API_KEY",
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key_env, **kwargs)
        self._url = url
        self._model = model

    def _build_request(self, messages: Sequence[ChatMessage], api_key: str) -> tuple[str, dict, dict]:
        body = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        return self._url, body, headers

    def _parse_response(self, data: dict) -> str:
        return data["choices"][0]["message"]["content"]


# ---------------------------------------------------------------------------
# Generative-content adapter
# ---------------------------------------------------------------------------

def to_generative_contents(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Translate role-tagged messages into a generative-content `contents` array.

    Leading system messages are joined and prepended to the first non-system
    message. assistant becomes "model", every other role becomes "user". The
    result always starts with a user turn.
    """
    leading: list[str] = []
    idx = 0
    while idx < len(messages) and messages[idx].role == "system":
        leading.append(messages[idx].content)
        idx += 1
    rest = list(messages[idx:])
    system_text = "\n\n".join(t for t in leading if t)

    contents: list[dict[str, Any]] = []
    for pos, msg in enumerate(rest):
        text = msg.content
        if pos == 0 and system_text:
            text = f"{system_text}\n\n{text}"
        role = "model" if msg.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": text}]})

    if not contents:
        contents.append({"role": "user", "parts": [{"text": system_text or PLACEHOLDER_USER_TEXT}]})
    elif contents[0]["role"] != "user":
        contents.insert(0, {"role": "user", "parts": [{"text": PLACEHOLDER_USER_TEXT}]})
    return contents


class GenerativeContentLLM(_HttpLLM):
    """POST {base}/models/{model}:generateContent  {"contents", "generationConfig"}
    Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
    """

    provider = Provider.GOOGLE

    def __init__(
        self,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-1.5-flash",
        api_key_env: str = "GOOGLE_API_KEY",
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key_env, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._model = model

    def _build_request(self, messages: Sequence[ChatMessage], api_key: str) -> tuple[str, dict, dict]:
        url = f"{self._base_url}/models/{self._model}:generateContent"
        body = {
            "contents": to_generative_contents(messages),
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
            },
        }
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }
        return url, body, headers

    def _parse_response(self, data: dict) -> str:
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(p.get("text", "") for p in parts)


# ---------------------------------------------------------------------------
# EchoLLM: no network, for smoke-testing the wiring
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the content of the last message unchanged."""

    async def __call__(self, stage: str, messages: Sequence[ChatMessage]) -> str:
        logger.debug("EchoLLM stage=%s messages=%d", stage, len(messages))
        return messages[-1].content if messages else ""


# ---------------------------------------------------------------------------
# Construction and dispatch
# ---------------------------------------------------------------------------

def build_adapter(provider: Provider) -> LLM:
    """Construct the adapter for a provider from environment configuration."""
    common: dict[str, Any] = {
        "timeout": float(os.getenv("LLM_TIMEOUT", "60")),
        "retries": int(os.getenv("LLM_RETRIES", "1")),
        "provenance": os.getenv("STORY_PROVENANCE", "1") not in ("0", "false", "no"),
    }
    if provider is Provider.GOOGLE:
        return GenerativeContentLLM(
            base_url=os.getenv("GOOGLE_API_URL", "https://generativelanguage.googleapis.com/v1beta"),
            model=os.getenv("GOOGLE_MODEL", "gemini-1.5-flash"),
            **common,
        )
    return ChatCompletionLLM(
        url=os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com/v1/chat/completions"),
        model=os.getenv("DEEPSEEK_MODEL", "deepseek-chat"),
        **common,
    )


async def generate(
    stage: str,
    messages: Sequence[ChatMessage],
    selector: ProviderSelector,
    adapters: Mapping[Provider, LLM] | None = None,
) -> str:
    """Send messages to the provider chosen by `selector` and return its text."""
    provider = selector.get()
    adapter = adapters[provider] if adapters is not None else build_adapter(provider)
    return await adapter(stage, messages)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when a provider cannot be reached or returns an unusable reply."""


class ProviderConfigError(LLMError):
    """Raised when a provider's credentials are missing."""
