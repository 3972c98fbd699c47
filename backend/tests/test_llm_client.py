"""
test_llm_client.py — Unit tests for the vision provider chain.

litellm.acompletion is replaced with a fake so no network call is made.
Provider keys are set per test through monkeypatch.
"""

import asyncio
from types import SimpleNamespace

import pytest

from app.services import llm_client
from app.services.llm_client import (
    VisionError,
    VisionUnavailable,
    available_providers,
    complete_with_pdf,
    complete_with_vision,
    provider_label,
    resolve_provider_chain,
)


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class _FakeCompletion:
    """Records calls; replies per model prefix (Exception instances are raised)."""

    def __init__(self, replies):
        self.replies = replies
        self.calls = []

    async def __call__(self, model, messages, **kwargs):
        self.calls.append({"model": model, "messages": messages, **kwargs})
        reply = self.replies[model.split("/")[0]]
        if isinstance(reply, Exception):
            raise reply
        return _reply(reply)


@pytest.fixture
def fake_completion(monkeypatch):
    def install(replies):
        fake = _FakeCompletion(replies)
        monkeypatch.setattr(llm_client.litellm, "acompletion", fake)
        return fake
    return install


# ===========================================================================
# Provider resolution
# ===========================================================================

class TestProviderResolution:

    def test_no_keys(self, no_vision_keys):
        assert available_providers() == []
        assert resolve_provider_chain("gemini", ("gemini", "openai")) == []

    def test_google_key_is_gemini_alias(self, no_vision_keys):
        no_vision_keys.setenv("GOOGLE_API_KEY", "g")
        assert available_providers() == ["gemini"]

    def test_selected_first_then_fallbacks(self, no_vision_keys):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        no_vision_keys.setenv("OPENAI_API_KEY", "o")
        no_vision_keys.setenv("XAI_API_KEY", "x")
        assert resolve_provider_chain("grok", ("gemini", "openai")) == ["grok", "gemini", "openai"]
        assert resolve_provider_chain("openai", ("gemini", "openai")) == ["openai", "gemini"]

    def test_unconfigured_selection_skipped(self, no_vision_keys):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        assert resolve_provider_chain("groq", ("gemini",)) == ["gemini"]
        assert resolve_provider_chain(None, ("gemini",)) == ["gemini"]

    def test_labels(self):
        assert provider_label("gemini") == "Gemini 2.0 Flash"
        assert provider_label("mystery") == "mystery"


# ===========================================================================
# Completion chain
# ===========================================================================

class TestCompleteWithVision:

    def test_raises_unavailable_without_keys(self, no_vision_keys, fake_completion):
        fake = fake_completion({})
        with pytest.raises(VisionUnavailable):
            asyncio.run(complete_with_vision("prompt", "aW1n"))
        assert fake.calls == []

    def test_message_shape(self, no_vision_keys, fake_completion):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        fake = fake_completion({"gemini": '{"lots": []}'})
        result = asyncio.run(complete_with_vision("read this", "aW1n", mime_type="image/jpeg", max_tokens=123))

        assert result.content == '{"lots": []}'
        assert result.provider == "gemini"
        assert result.model_label == "Gemini 2.0 Flash"
        call = fake.calls[0]
        assert call["max_tokens"] == 123
        assert call["api_key"] == "g"
        parts = call["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "read this"}
        assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,aW1n"

    def test_falls_back_after_error_and_empty_reply(self, no_vision_keys, fake_completion):
        no_vision_keys.setenv("XAI_API_KEY", "x")
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        no_vision_keys.setenv("OPENAI_API_KEY", "o")
        fake = fake_completion({"xai": RuntimeError("boom"), "gemini": "   ", "openai": "ok"})
        result = asyncio.run(complete_with_vision("p", "aW1n", provider="grok", fallbacks=("gemini", "openai")))
        assert result.provider == "openai"
        assert [c["model"].split("/")[0] for c in fake.calls] == ["xai", "gemini", "openai"]

    def test_all_failed_raises_vision_error(self, no_vision_keys, fake_completion):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        fake_completion({"gemini": RuntimeError("quota")})
        with pytest.raises(VisionError) as exc:
            asyncio.run(complete_with_vision("p", "aW1n"))
        assert "quota" in str(exc.value)


class TestCompleteWithPdf:

    def test_sends_pdf_part_to_gemini_only(self, no_vision_keys, fake_completion):
        no_vision_keys.setenv("GEMINI_API_KEY", "g")
        no_vision_keys.setenv("OPENAI_API_KEY", "o")
        fake = fake_completion({"gemini": '{"lots": []}', "openai": "unused"})
        asyncio.run(complete_with_pdf("p", "JVBERi0="))
        assert len(fake.calls) == 1
        part = fake.calls[0]["messages"][0]["content"][1]
        assert part == {"type": "file", "file": {"file_data": "data:application/pdf;base64,JVBERi0="}}

    def test_requires_gemini(self, no_vision_keys, fake_completion):
        no_vision_keys.setenv("OPENAI_API_KEY", "o")
        fake_completion({})
        with pytest.raises(VisionUnavailable):
            asyncio.run(complete_with_pdf("p", "JVBERi0="))
