"""Streaming primitives for provider responses.

Providers yield :class:`StreamChunk` objects.  The
:class:`ToolCallAccumulator` reassembles tool calls whose arguments
arrive in fragments across multiple chunks.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    def to_dict(self) -> dict:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
        }


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None
    usage: Usage | None = None


@dataclass
class ToolCall:
    """A resolved tool call ready for the transcript."""

    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class Completion:
    """A whole (non-streamed) model response."""

    content: str = ""
    tool_calls: list[ToolCall] | None = None
    finish_reason: str = "stop"
    usage: Usage | None = None


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = ToolCall()
        tc = self._pending[fragment.index]
        if fragment.call_id is not None:
            tc.id = fragment.call_id
        if fragment.name is not None:
            tc.name = fragment.name
        if fragment.arguments_delta is not None:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]
