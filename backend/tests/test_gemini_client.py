"""Tests for the Gemini detection client."""
from types import SimpleNamespace

import pytest
from google.genai import types

from reelmaker.errors import DetectionError
from reelmaker.services import gemini_client
from reelmaker.services.gemini_client import GeminiDetectionClient


class _FakeModels:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents):
        self.calls.append((model, contents))
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


def fake_genai_client(text="", error=None):
    models = _FakeModels(text=text, error=error)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


class TestConstruction:
    """Tests for client construction."""

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(gemini_client.settings, "gemini_api_key", None)
        with pytest.raises(DetectionError, match="API key"):
            GeminiDetectionClient()

    def test_explicit_key_builds_sdk_client(self, monkeypatch):
        created = []

        class _Client:
            def __init__(self, api_key):
                created.append(api_key)

        monkeypatch.setattr(gemini_client.genai, "Client", _Client)
        client = GeminiDetectionClient(api_key="secret", model="gemini-test")
        assert created == ["secret"]
        assert client.model == "gemini-test"

    def test_injected_client_needs_no_key(self, monkeypatch):
        monkeypatch.setattr(gemini_client.settings, "gemini_api_key", None)
        sdk, _ = fake_genai_client()
        client = GeminiDetectionClient(client=sdk)
        assert client.client is sdk
        assert client.model == gemini_client.settings.gemini_model


class TestGenerate:
    """Tests for GeminiDetectionClient.generate."""

    @pytest.mark.asyncio
    async def test_sends_prompt_and_inline_video(self):
        sdk, models = fake_genai_client(text="[[1, 3]]")
        client = GeminiDetectionClient(model="gemini-test", client=sdk)

        answer = await client.generate("find moments", b"\x00\x01video", "video/webm")

        assert answer == "[[1, 3]]"
        model, contents = models.calls[0]
        assert model == "gemini-test"
        assert isinstance(contents, types.Content)
        assert contents.role == "user"
        text_part, video_part = contents.parts
        assert text_part.text == "find moments"
        assert video_part.inline_data.data == b"\x00\x01video"
        assert video_part.inline_data.mime_type == "video/webm"

    @pytest.mark.asyncio
    async def test_empty_answer(self):
        sdk, _ = fake_genai_client(text=None)
        client = GeminiDetectionClient(client=sdk)
        assert await client.generate("prompt", b"v") == ""

    @pytest.mark.asyncio
    async def test_sdk_failure_becomes_detection_error(self):
        sdk, _ = fake_genai_client(error=RuntimeError("429 quota exhausted"))
        client = GeminiDetectionClient(client=sdk)

        with pytest.raises(DetectionError, match="quota exhausted") as exc_info:
            await client.generate("prompt", b"v")

        assert isinstance(exc_info.value.__cause__, RuntimeError)
