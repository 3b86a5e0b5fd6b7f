# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable Reasoning Backend
# =============================================================================
#
# Common interface for LLM calls, with concrete implementations for
# Anthropic (Claude) and OpenAI-compatible APIs (OpenAI, DeepSeek, Qwen...).
#
# Two entry points:
#   complete()  — plain text completion (compatibility judge)
#   generate()  — one reasoning turn with native tool calling
#                 (agent orchestrator)
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Same pattern as the similarity index, profile store and match cache.
# Tests drive the orchestrator with scripted fakes that only implement
# generate().
#
# DESIGN DECISION: Native SDKs over LangChain wrappers, and a provider-
# neutral conversation history. The orchestrator appends messages shaped
#   {"role": "user", "content": str}
#   {"role": "assistant", "content": str, "tool_calls": [ToolCall...]}
#   {"role": "tool", "tool_call_id": str, "name": str, "content": str}
# and each provider converts that history to its own wire format on every
# call. Anthropic wants tool results as `tool_result` blocks inside a user
# message; OpenAI wants one `role: tool` message per result.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude via native Anthropic SDK
#   ├── OpenAICompatibleProvider — any OpenAI-compatible API
#   └── get_llm_provider()       — singleton factory, reads from config
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from netmatch.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised text completion from any LLM provider.

    Normalises the different response formats (Anthropic vs OpenAI)
    into a single structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


@dataclass
class ToolSpec:
    """A tool the model may call. `parameters` is a JSON Schema object."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReasoningOutput:
    """
    One reasoning turn: free text plus zero or more tool calls.

    An empty `tool_calls` list means the model considers itself done.
    """

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """LLM provider interface used by the judge tool and the orchestrator."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a text completion.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (no "system" — use the system param).
            system: System prompt for the LLM.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...

    async def generate(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
    ) -> ReasoningOutput:
        """
        Run one reasoning turn over a provider-neutral history.

        Args:
            messages: History in the neutral format described above.
            system: System prompt.
            tools: Tools the model may call this turn.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system", and tool results
    travel back as content blocks of a *user* message.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def generate(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
    ) -> ReasoningOutput:
        """One reasoning turn with Claude's native tool use."""
        kwargs: dict = {
            "model": self._model,
            "messages": to_anthropic_messages(messages),
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in tools
            ]

        response = await self._client.messages.create(**kwargs)

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input or {}),
                ))

        return ReasoningOutput(
            text="\n".join(texts),
            tool_calls=calls,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenAI, DeepSeek, Qwen, etc.)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI chat-completions format.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat

    The backend must support function calling for generate() to be useful.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content or ""

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def generate(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
    ) -> ReasoningOutput:
        """One reasoning turn with OpenAI function calling."""
        all_messages: list[dict[str, Any]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(to_openai_messages(messages))

        kwargs: dict = {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]

        response = await self._client.chat.completions.create(**kwargs)
        message = response.choices[0].message

        calls: list[ToolCall] = []
        for tc in message.tool_calls or []:
            calls.append(ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
            ))

        usage = response.usage
        return ReasoningOutput(
            text=message.content or "",
            tool_calls=calls,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# History Conversion
# ---------------------------------------------------------------------------


def to_anthropic_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Convert neutral history to Anthropic's content-block format.

    Consecutive tool results are merged into a single user message, since
    Anthropic requires all results for one assistant turn to arrive together.
    """
    converted: list[dict[str, Any]] = []

    for msg in messages:
        role = msg["role"]

        if role == "assistant":
            blocks: list[dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": msg["content"]})
            for call in msg.get("tool_calls") or []:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            converted.append({"role": "assistant", "content": blocks or ""})

        elif role == "tool":
            result_block = {
                "type": "tool_result",
                "tool_use_id": msg["tool_call_id"],
                "content": msg["content"],
            }
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(result_block)
            else:
                converted.append({"role": "user", "content": [result_block]})

        else:
            converted.append({"role": "user", "content": msg["content"]})

    return converted


def to_openai_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert neutral history to OpenAI chat-completions messages."""
    converted: list[dict[str, Any]] = []

    for msg in messages:
        role = msg["role"]

        if role == "assistant":
            out: dict[str, Any] = {"role": "assistant", "content": msg.get("content") or None}
            calls = msg.get("tool_calls") or []
            if calls:
                out["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in calls
                ]
            converted.append(out)

        elif role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": msg["tool_call_id"],
                "content": msg["content"],
            })

        else:
            converted.append({"role": "user", "content": msg["content"]})

    return converted


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    # Malformed arguments become an empty dict; the tool then falls back
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Could not decode tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton — avoid re-creating client on every request
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider

    Raises:
        ValueError: If no API key is configured for the chosen provider.
    """
    global _provider
    if _provider is None:
        _provider = create_llm_provider()
    return _provider


def create_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Fresh, non-singleton provider from settings.

    Celery tasks use this: each task runs its own event loop, and an async
    SDK client must not outlive the loop it was first used on.
    """
    if settings.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider()
    return AnthropicProvider()
