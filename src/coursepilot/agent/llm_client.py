"""
LLM transport for coursepilot.

This module is the only place that *directly* calls a language model.  Everything else (the loop,
tools, actions) stays model-agnostic and sees a single call::

    text = await client.complete(system_prompt, messages)

``messages`` are ``{"role": "user" | "assistant", "content": str}`` dicts; a user message may also
carry ``"attachments"`` (``[{"mimeType", "data", "name"}]`` with base64 data) for documents the
model reads inline.  Each back-end maps attachments to its own content-part format.

Back-ends shipped:

1. **OpenAI** and **Anthropic** via their async SDKs (requires env keys).
2. **Gemini** via its REST API over httpx.
3. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.

Additional providers can be added by subclassing :class:`BaseLLMClient` and registering via
:func:`register_llm_client`.
"""

import asyncio
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Sequence,
    Type,
)

import httpx

from coursepilot.config import settings

logger = logging.getLogger(__name__)

ChatMessage = Mapping[str, Any]


class LLMRequestError(RuntimeError):
    """Raised when the model could not be reached after all retries."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_CLIENT_REGISTRY: dict[str, Type["BaseLLMClient"]] = {}


def register_llm_client(name: str) -> Callable:
    """Decorator to register an LLM client class under *name*."""

    def wrapper(cls: Type["BaseLLMClient"]) -> Type["BaseLLMClient"]:
        _CLIENT_REGISTRY[name] = cls
        return cls

    return wrapper


def load_llm_client(name: str | None = None) -> "BaseLLMClient":
    """
    Factory that returns an instantiated client.

    Fallback order:
    1. *name* arg
    2. ``settings.LLM_PROVIDER`` env option
    """
    target = name or settings.LLM_PROVIDER
    cls = _CLIENT_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"LLM provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseLLMClient(ABC):
    """One opaque request/response call, retried with linear backoff."""

    def __init__(
        self,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
    ):
        self.max_retries = max(1, max_retries if max_retries is not None else settings.LLM_MAX_RETRIES)
        self.retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY_SEC
        self.temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SEC

    async def complete(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        """
        Return the model's reply text.

        Raises
        ------
        LLMRequestError
            If every attempt failed or came back empty.
        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                text = await self._request(system_prompt, messages)
                if text and text.strip():
                    logger.debug("%s reply: %.500s", type(self).__name__, text)
                    return text
                last_error = LLMRequestError("empty response")
            except Exception as exc:  # pylint: disable=broad-except
                last_error = exc
            logger.warning(
                "%s attempt %d/%d failed: %s", type(self).__name__, attempt, self.max_retries, last_error
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)
        raise LLMRequestError(
            f"Model request failed after {self.max_retries} attempts: {last_error}"
        ) from last_error

    @abstractmethod
    async def _request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        """Perform a single model call and return its text."""


def _attachments(msg: ChatMessage) -> List[Mapping[str, Any]]:
    return [a for a in msg.get("attachments") or [] if a.get("data") and a.get("mimeType")]


# ---------------------------------------------------------------------------
# Concrete clients
# ---------------------------------------------------------------------------
@register_llm_client("openai")
class OpenAIClient(BaseLLMClient):
    """OpenAI chat completions in JSON mode."""

    def __init__(self, model: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        import openai  # pylint: disable=import-outside-toplevel

        self.model = model or settings.OPENAI_MODEL
        self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout)

    @staticmethod
    def _content(msg: ChatMessage) -> Any:
        attachments = _attachments(msg)
        if not attachments:
            return msg["content"]
        parts: List[Dict[str, Any]] = [{"type": "text", "text": msg["content"]}]
        for att in attachments:
            data_url = f"data:{att['mimeType']};base64,{att['data']}"
            if att["mimeType"].startswith("image/"):
                parts.append({"type": "image_url", "image_url": {"url": data_url}})
            else:
                parts.append(
                    {"type": "file", "file": {"filename": att.get("name") or "document", "file_data": data_url}}
                )
        return parts

    async def _request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system_prompt}]
            + [{"role": m["role"], "content": self._content(m)} for m in messages],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        return resp.choices[0].message.content or ""


@register_llm_client("anthropic")
class AnthropicClient(BaseLLMClient):
    """Anthropic Claude messages API."""

    def __init__(self, model: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        import anthropic  # pylint: disable=import-outside-toplevel

        self.model = model or settings.ANTHROPIC_MODEL
        self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=self.timeout)

    @staticmethod
    def _blocks(msg: ChatMessage) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for att in _attachments(msg):
            kind = "image" if att["mimeType"].startswith("image/") else "document"
            blocks.append(
                {
                    "type": kind,
                    "source": {"type": "base64", "media_type": att["mimeType"], "data": att["data"]},
                }
            )
        blocks.append({"type": "text", "text": msg["content"] or "(empty)"})
        return blocks

    @classmethod
    def _alternating(cls, messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        """The API wants user/assistant alternation starting with a user turn."""
        out: List[Dict[str, Any]] = []
        for msg in messages:
            if not out and msg["role"] != "user":
                continue
            blocks = cls._blocks(msg)
            if out and out[-1]["role"] == msg["role"]:
                out[-1]["content"].extend(blocks)
            else:
                out.append({"role": msg["role"], "content": blocks})
        return out

    async def _request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=4096,
            system=system_prompt,
            messages=self._alternating(messages),
            temperature=self.temperature,
        )
        return "".join(block.text for block in response.content if block.type == "text")


@register_llm_client("gemini")
class GeminiClient(BaseLLMClient):
    """Google Gemini ``generateContent`` REST endpoint via httpx."""

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(self, model: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.model = model or settings.GEMINI_MODEL

    @staticmethod
    def _contents(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        contents = []
        for msg in messages:
            parts: List[Dict[str, Any]] = [{"text": msg["content"]}]
            parts += [
                {"inlineData": {"mimeType": att["mimeType"], "data": att["data"]}}
                for att in _attachments(msg)
            ]
            contents.append({"role": "model" if msg["role"] == "assistant" else "user", "parts": parts})
        return contents

    async def _request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": self._contents(messages),
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": "application/json",
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{self.BASE_URL}/{self.model}:generateContent",
                params={"key": settings.GEMINI_API_KEY or ""},
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)


@register_llm_client("tgi")
class TGIClient(BaseLLMClient):
    """Text-Generation-Inference endpoint; attachments are not supported and are dropped."""

    def __init__(self, endpoint: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.endpoint = endpoint or settings.TGI_ENDPOINT

    @staticmethod
    def _render(system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        lines = [system_prompt, ""]
        for msg in messages:
            speaker = "User" if msg["role"] == "user" else "Assistant"
            lines.append(f"{speaker}: {msg['content']}")
        lines.append("Assistant:")
        return "\n".join(lines)

    async def _request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> str:
        payload = {
            "inputs": self._render(system_prompt, messages),
            "parameters": {
                "max_new_tokens": 1024,
                "temperature": max(self.temperature, 0.01),
                "stop": ["User:", "</s>"],
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            return resp.json()["generated_text"]
