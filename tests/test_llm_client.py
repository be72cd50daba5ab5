"""Retry behaviour of the model client base class and provider message mapping."""

import pytest

from coursepilot.agent.llm_client import (
    AnthropicClient,
    BaseLLMClient,
    GeminiClient,
    LLMRequestError,
    TGIClient,
    load_llm_client,
)


class FlakyClient(BaseLLMClient):
    def __init__(self, outcomes, **kwargs):
        super().__init__(retry_delay=0, **kwargs)
        self.outcomes = list(outcomes)
        self.attempts = 0

    async def _request(self, system_prompt, messages):
        self.attempts += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_retries_until_success() -> None:
    client = FlakyClient([ConnectionError("down"), "", '{"type": "answer", "text": "ok"}'], max_retries=3)
    assert await client.complete("sys", [{"role": "user", "content": "hi"}]) == '{"type": "answer", "text": "ok"}'
    assert client.attempts == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries() -> None:
    client = FlakyClient([TimeoutError("slow")] * 5, max_retries=2)
    with pytest.raises(LLMRequestError) as exc_info:
        await client.complete("sys", [])
    assert client.attempts == 2
    assert "slow" in str(exc_info.value)


@pytest.mark.asyncio
async def test_blank_reply_counts_as_failure() -> None:
    client = FlakyClient(["   "], max_retries=1)
    with pytest.raises(LLMRequestError):
        await client.complete("sys", [])


def test_unknown_provider() -> None:
    with pytest.raises(ValueError):
        load_llm_client("carrier-pigeon")


def test_anthropic_messages_alternate_and_start_with_user() -> None:
    messages = [
        {"role": "assistant", "content": "stray"},
        {"role": "user", "content": "one"},
        {"role": "user", "content": "two", "attachments": [{"mimeType": "application/pdf", "data": "AAA", "name": "a.pdf"}]},
        {"role": "assistant", "content": "reply"},
    ]
    out = AnthropicClient._alternating(messages)
    assert [m["role"] for m in out] == ["user", "assistant"]
    kinds = [block["type"] for block in out[0]["content"]]
    assert kinds == ["text", "document", "text"]


def test_gemini_roles_and_inline_data() -> None:
    contents = GeminiClient._contents(
        [
            {"role": "user", "content": "read this", "attachments": [{"mimeType": "image/png", "data": "BBB"}]},
            {"role": "assistant", "content": "done"},
        ]
    )
    assert [c["role"] for c in contents] == ["user", "model"]
    assert contents[0]["parts"][1] == {"inlineData": {"mimeType": "image/png", "data": "BBB"}}


def test_tgi_prompt_rendering() -> None:
    text = TGIClient._render("SYSTEM", [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "yo"}])
    assert text == "SYSTEM\n\nUser: hi\nAssistant: yo\nAssistant:"
