"""OpenAIProvider: AI provider backed by OpenAI chat completions.

The ``openai`` SDK is imported lazily; the module imports without it and
only instantiation fails.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

from mindnote.protocols import InternalError
from mindnote.types import ProviderResult, TokenUsage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You help organize personal thoughts. Respond with a JSON object of the form "
    '{"actions": [{"type": ..., "confidence": 0-100, "data": {...}, "reasoning": ...}]}. '
    "Allowed types: enhanceThought (data.improvedText, data.changes), addTag (data.tag), "
    "linkToGoal (data.goalId), linkToProject (data.projectId), linkToPerson (data.personId)."
)


class OpenAIProviderError(InternalError):
    """Raised when the OpenAI SDK reports an error."""

    def __init__(self, error_class: str, message: str) -> None:
        super().__init__(message)
        self.error_class = error_class


def normalize_confidence(value: Any) -> float:
    """Accept 0-1 or 0-100 confidences; values above 1 are percentages."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence > 1.0:
        confidence /= 100.0
    return max(0.0, min(confidence, 1.0))


def parse_actions(content: str) -> List[Dict[str, Any]]:
    """Extract the action list from a JSON response body."""
    try:
        payload = json.loads(content or "{}")
    except json.JSONDecodeError as exc:
        raise OpenAIProviderError("parse", f"Provider returned invalid JSON: {exc}") from exc
    raw_actions = payload.get("actions") if isinstance(payload, dict) else None
    if not isinstance(raw_actions, list):
        return []
    actions = []
    for raw in raw_actions:
        if not isinstance(raw, dict) or not raw.get("type"):
            continue
        action = dict(raw)
        action["confidence"] = normalize_confidence(raw.get("confidence"))
        actions.append(action)
    return actions


def build_prompt(thought_text: str, context: Dict[str, Any], tool_guidance: str) -> str:
    sections = [
        "## Tools",
        tool_guidance or "(none)",
        "## User context",
        json.dumps(context, default=str, sort_keys=True),
        "## Thought",
        thought_text,
    ]
    return "\n\n".join(sections)


class OpenAIProvider:
    """AIProvider implementation using the async OpenAI client.

    Usage::

        provider = OpenAIProvider()  # uses OPENAI_API_KEY env var
        result = await provider.propose("had coffee w/ sar", {}, guidance)
    """

    def __init__(
        self,
        model_id: str = "gpt-4o-mini",
        *,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
    ) -> None:
        try:
            import openai as _openai
        except ImportError:
            raise ImportError(
                "The 'openai' package is required for OpenAIProvider. "
                "Install it with: pip install mindnote[openai]"
            ) from None

        resolved_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not resolved_key:
            raise ValueError("An API key is required. Pass api_key= or set OPENAI_API_KEY.")

        self.model_id = model_id
        self.temperature = temperature
        self._client = _openai.AsyncOpenAI(api_key=resolved_key)

    async def propose(
        self,
        thought_text: str,
        context: Dict[str, Any],
        tool_guidance: str,
    ) -> ProviderResult:
        prompt = build_prompt(thought_text, context, tool_guidance)
        try:
            response = await self._client.chat.completions.create(
                model=self.model_id,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except Exception as exc:
            logger.debug("OpenAI request failed: %s", exc, exc_info=True)
            raise self._classify_error(exc) from exc

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        return ProviderResult(
            actions=parse_actions(content),
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
            raw_prompt=prompt,
            raw_response=content,
        )

    @staticmethod
    def _classify_error(exc: Exception) -> OpenAIProviderError:
        import openai as _openai

        checks = [
            ("RateLimitError", "rate_limit", "rate limited"),
            ("AuthenticationError", "auth", "auth failed"),
            ("APITimeoutError", "timeout", "timeout"),
        ]
        for attr, error_class, label in checks:
            exc_type = getattr(_openai, attr, None)
            if exc_type is not None and isinstance(exc, exc_type):
                return OpenAIProviderError(error_class, f"OpenAI API error: {label}: {exc}")

        api_status = getattr(_openai, "APIStatusError", None)
        if api_status is not None and isinstance(exc, api_status):
            code = getattr(exc, "status_code", "?")
            return OpenAIProviderError("server", f"OpenAI API error ({code}): {exc}")

        return OpenAIProviderError("unknown", f"OpenAI API error: {exc}")
