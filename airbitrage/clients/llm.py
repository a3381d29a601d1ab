"""LLM message clients with tool use, normalized to one content-block response shape.

The conversation history is kept in Messages API form (``role`` plus a string or a
list of ``text`` / ``tool_use`` / ``tool_result`` blocks). The OpenAI client translates
that history to Chat Completions messages on the way out and back on the way in.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
import openai

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Base exception raised by LLM clients."""

    def __init__(self, message: str, code: str = "LLM_ERROR") -> None:
        super().__init__(message)
        self.code = code


class LLMProviderError(LLMError):
    """Raised when the upstream provider call fails."""


class LLMConfigurationError(LLMError):
    """Raised when a client cannot be built from the current configuration."""


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_param(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_param(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


ContentBlock = TextBlock | ToolUseBlock


@dataclass(frozen=True)
class LLMUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMResponse:
    content: list[ContentBlock]
    stop_reason: str | None
    usage: LLMUsage

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def wants_tool_use(self) -> bool:
        return self.stop_reason == "tool_use" and bool(self.tool_uses)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]


class LLMClient(Protocol):
    """Minimal contract for one request/response model call."""

    async def create_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> LLMResponse:
        ...


class AnthropicMessagesClient:
    """Thin wrapper around the Anthropic Messages API."""

    def __init__(self, api_key: str, *, timeout: float = 60.0) -> None:
        if not api_key:
            raise LLMConfigurationError(
                "ANTHROPIC_API_KEY is required for the snipe phase.",
                code="400_MISSING_LLM_KEY",
            )
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)

    async def create_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            request["tools"] = [
                {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
                for tool in tools
            ]
        try:
            response = await self._client.messages.create(**request)
        except anthropic.APIStatusError as exc:
            code = "429_RATE_LIMIT" if exc.status_code == 429 else "502_LLM_UPSTREAM"
            raise LLMProviderError(f"Anthropic API error {exc.status_code}: {exc.message}", code=code) from exc
        except anthropic.APIError as exc:
            raise LLMProviderError(f"Anthropic request failed: {exc}", code="502_LLM_UPSTREAM") from exc

        blocks: list[ContentBlock] = []
        for block in response.content:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                blocks.append(TextBlock(text=block.text))
            elif block_type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))
        usage = LLMUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return LLMResponse(content=blocks, stop_reason=response.stop_reason, usage=usage)


class OpenAIToolClient:
    """Chat Completions with function tools, mapped onto Messages-style blocks."""

    def __init__(self, api_key: str, *, timeout: float = 60.0) -> None:
        if not api_key:
            raise LLMConfigurationError(
                "OPENAI_API_KEY is required when LLM_PROVIDER=openai.",
                code="400_MISSING_LLM_KEY",
            )
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def create_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "system", "content": system}, *_to_chat_messages(messages)],
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in tools
            ]
        try:
            response = await self._client.chat.completions.create(**request)
        except openai.APIStatusError as exc:
            code = "429_RATE_LIMIT" if exc.status_code == 429 else "502_LLM_UPSTREAM"
            raise LLMProviderError(f"OpenAI API error {exc.status_code}: {exc.message}", code=code) from exc
        except openai.OpenAIError as exc:
            raise LLMProviderError(f"OpenAI request failed: {exc}", code="502_LLM_UPSTREAM") from exc

        if not response.choices:
            raise LLMProviderError("OpenAI response contained no choices.", code="502_LLM_UPSTREAM")
        choice = response.choices[0]
        blocks: list[ContentBlock] = []
        if choice.message.content:
            blocks.append(TextBlock(text=choice.message.content))
        for call in choice.message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except ValueError:
                logger.warning("llm.tool_arguments_invalid", extra={"tool": call.function.name})
                arguments = {}
            blocks.append(
                ToolUseBlock(
                    id=call.id,
                    name=call.function.name,
                    input=arguments if isinstance(arguments, dict) else {},
                )
            )
        stop_reason = "tool_use" if choice.finish_reason == "tool_calls" else "end_turn"
        usage = LLMUsage(
            input_tokens=getattr(response.usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(response.usage, "completion_tokens", 0) or 0,
        )
        return LLMResponse(content=blocks, stop_reason=stop_reason, usage=usage)


def _to_chat_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        role = message["role"]
        content = message["content"]
        if isinstance(content, str):
            converted.append({"role": role, "content": content})
            continue
        if role == "assistant":
            text = "\n".join(block["text"] for block in content if block.get("type") == "text")
            tool_calls = [
                {
                    "id": block["id"],
                    "type": "function",
                    "function": {"name": block["name"], "arguments": json.dumps(block.get("input", {}))},
                }
                for block in content
                if block.get("type") == "tool_use"
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            converted.append(entry)
            continue
        for block in content:
            if block.get("type") == "tool_result":
                converted.append(
                    {"role": "tool", "tool_call_id": block["tool_use_id"], "content": block.get("content", "")}
                )
            elif block.get("type") == "text":
                converted.append({"role": "user", "content": block["text"]})
    return converted


def build_llm_client(provider: str, api_key: str) -> LLMClient:
    """Select the provider client named by ``LLM_PROVIDER``."""
    normalized = (provider or "anthropic").lower()
    if normalized == "anthropic":
        return AnthropicMessagesClient(api_key)
    if normalized == "openai":
        return OpenAIToolClient(api_key)
    raise LLMConfigurationError(f"Unsupported LLM provider: {provider}", code="400_UNKNOWN_PROVIDER")
