"""Events emitted onto the client stream.

Each event renders to a ``{"type": ..., "content": ...}`` record through
:meth:`StreamEvent.to_record`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from finchat.streaming import Usage


@dataclass
class StreamEvent:
    """Base for all streaming events."""

    type: ClassVar[str] = ""

    def payload(self) -> Any:
        return None

    def to_record(self) -> dict:
        return {"type": self.type, "content": self.payload()}


@dataclass
class UserMessageIdEvent(StreamEvent):
    type: ClassVar[str] = "user-message-id"

    message_id: str = ""

    def payload(self) -> Any:
        return self.message_id


@dataclass
class QueryLoadingEvent(StreamEvent):
    type: ClassVar[str] = "query-loading"

    is_loading: bool = False
    task_names: list[str] = field(default_factory=list)

    def payload(self) -> Any:
        return {"isLoading": self.is_loading, "taskNames": self.task_names}


@dataclass
class TextDeltaEvent(StreamEvent):
    """Token-level delta of the assistant's answer."""

    type: ClassVar[str] = "text-delta"

    content: str = ""

    def payload(self) -> Any:
        return self.content


@dataclass
class ToolResultEvent(StreamEvent):
    """Output of one executed tool call."""

    type: ClassVar[str] = "tool-result"

    tool_name: str = ""
    arguments: dict = field(default_factory=dict)
    result: Any = None
    is_error: bool = False

    def payload(self) -> Any:
        return {
            "toolName": self.tool_name,
            "arguments": self.arguments,
            "result": self.result,
            "isError": self.is_error,
        }


@dataclass
class MessageAnnotationEvent(StreamEvent):
    type: ClassVar[str] = "message-annotation"

    server_message_id: str = ""

    def payload(self) -> Any:
        return {"serverMessageId": self.server_message_id}


@dataclass
class FinishEvent(StreamEvent):
    """Final event, always the last one yielded."""

    type: ClassVar[str] = "finish"

    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    error: str | None = None

    def payload(self) -> Any:
        content = {"finishReason": self.finish_reason, "usage": self.usage.to_dict()}
        if self.error is not None:
            content["error"] = self.error
        return content
