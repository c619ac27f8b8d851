"""Tests for the OpenAI provider's prompt building and response parsing.

No network calls; the SDK client is replaced with a mock.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from mindnote.providers.openai import (
    OpenAIProvider,
    OpenAIProviderError,
    build_prompt,
    normalize_confidence,
    parse_actions,
)


class TestNormalizeConfidence:
    @pytest.mark.parametrize(
        "raw,expected",
        [(0.9, 0.9), (90, 0.9), ("85", 0.85), (150, 1.0), (-3, 0.0), (None, 0.0), ("high", 0.0)],
    )
    def test_values(self, raw, expected):
        assert normalize_confidence(raw) == pytest.approx(expected)


class TestParseActions:
    def test_parses_and_normalizes(self):
        content = json.dumps(
            {"actions": [{"type": "addTag", "confidence": 92, "data": {"tag": "social"}}]}
        )
        actions = parse_actions(content)
        assert actions == [{"type": "addTag", "confidence": 0.92, "data": {"tag": "social"}}]

    def test_skips_entries_without_type(self):
        content = json.dumps({"actions": [{"confidence": 0.9}, "junk", {"type": "addTag"}]})
        assert [a["type"] for a in parse_actions(content)] == ["addTag"]

    def test_missing_actions_key(self):
        assert parse_actions('{"other": 1}') == []
        assert parse_actions("") == []

    def test_invalid_json(self):
        with pytest.raises(OpenAIProviderError) as exc_info:
            parse_actions("{nope")
        assert exc_info.value.error_class == "parse"


class TestBuildPrompt:
    def test_sections(self):
        prompt = build_prompt("had coffee", {"goals": []}, "Tool: X")
        assert prompt.index("## Tools") < prompt.index("## User context") < prompt.index("## Thought")
        assert prompt.endswith("had coffee")

    def test_empty_guidance(self):
        assert "(none)" in build_prompt("x", {}, "")


class TestOpenAIProvider:
    def test_requires_api_key(self, monkeypatch):
        pytest.importorskip("openai")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key"):
            OpenAIProvider()

    @pytest.mark.asyncio
    async def test_propose_with_mocked_client(self):
        pytest.importorskip("openai")
        provider = OpenAIProvider(api_key="sk-test")
        response = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(
                        content=json.dumps({"actions": [{"type": "addTag", "confidence": 0.9, "data": {"tag": "x"}}]})
                    )
                )
            ],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15),
        )
        provider._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(return_value=response)))
        )

        result = await provider.propose("had coffee", {}, "Tool: X")

        assert result.actions[0]["type"] == "addTag"
        assert result.usage.total_tokens == 15
        assert "had coffee" in result.raw_prompt
        kwargs = provider._client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_sdk_errors_are_wrapped(self):
        pytest.importorskip("openai")
        provider = OpenAIProvider(api_key="sk-test")
        provider._client = SimpleNamespace(
            chat=SimpleNamespace(
                completions=SimpleNamespace(create=AsyncMock(side_effect=RuntimeError("boom")))
            )
        )
        with pytest.raises(OpenAIProviderError) as exc_info:
            await provider.propose("x", {}, "")
        assert exc_info.value.error_class == "unknown"
