import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass

from openai import AsyncOpenAI, OpenAIError

from finchat.streaming import (
    Completion,
    StreamChunk,
    ToolCall,
    ToolCallFragment,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_INFERENCE_URL = "https://us.inference.heroku.com"

_FINISH_REASONS = {
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def normalize_finish_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    return _FINISH_REASONS.get(reason, reason)


def _usage(raw) -> Usage | None:
    if raw is None:
        return None
    return Usage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


class ModelProvider:
    """Language-model endpoint consumed by the runners.

    Subclasses implement :meth:`complete`. :meth:`stream_complete`
    defaults to replaying a whole completion as a single chunk, which is
    enough for endpoints without streaming support.
    """

    async def complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> Completion:
        raise NotImplementedError

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        completion = await self.complete(model, messages, tools=tools)
        fragments = [
            ToolCallFragment(
                index=i, call_id=tc.id, name=tc.name,
                arguments_delta=tc.arguments,
            )
            for i, tc in enumerate(completion.tool_calls or [])
        ]
        yield StreamChunk(
            content_delta=completion.content or None,
            tool_call_fragments=fragments or None,
            finish_reason=completion.finish_reason,
            usage=completion.usage,
        )


class OpenAICompatibleProvider(ModelProvider):
    """Any endpoint speaking the OpenAI chat-completions protocol.

    The hosted inference endpoint and OpenAI itself are both reached
    through this class; only ``base_url`` and the key differ. Retries
    are disabled: a failed model call ends the request.

    Args:
        base_url: Endpoint root including ``/v1``.
        api_key: Key for the endpoint, defaults to ``INFERENCE_KEY``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
            self,
            base_url: str | None = None,
            api_key: str | None = None,
            timeout: float = 60.0,
    ):
        if base_url is None:
            base_url = os.getenv("INFERENCE_URL", DEFAULT_INFERENCE_URL) + "/v1"
        if not api_key:
            api_key = os.getenv("INFERENCE_KEY") or "DUMMY"
        self.base_url = base_url.rstrip("/")
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key,
            max_retries=0,
            timeout=timeout,
        )

    def _request(self, model, messages, tools) -> dict:
        kwargs = {"model": model, "messages": messages}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> Completion:
        response = await self.client.chat.completions.create(
            **self._request(model, messages, tools),
        )
        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
            )
            for tc in (choice.message.tool_calls or [])
        ]
        return Completion(
            content=choice.message.content or "",
            tool_calls=tool_calls or None,
            finish_reason=normalize_finish_reason(choice.finish_reason) or "stop",
            usage=_usage(getattr(response, "usage", None)),
        )

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        stream = await self.client.chat.completions.create(
            **self._request(model, messages, tools),
            stream=True,
            stream_options={"include_usage": True},
        )
        async for chunk in stream:
            usage = _usage(getattr(chunk, "usage", None))
            if not chunk.choices:
                if usage is not None:
                    yield StreamChunk(usage=usage)
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            fragments = [
                ToolCallFragment(
                    index=tc.index,
                    call_id=tc.id,
                    name=tc.function.name if tc.function else None,
                    arguments_delta=tc.function.arguments if tc.function else None,
                )
                for tc in (delta.tool_calls or [])
            ]
            yield StreamChunk(
                content_delta=delta.content,
                tool_call_fragments=fragments or None,
                finish_reason=normalize_finish_reason(choice.finish_reason),
                usage=usage,
            )


@dataclass
class KeyValidation:
    is_valid: bool
    error: str | None = None


async def validate_api_key(api_key: str, inference_url: str | None = None) -> KeyValidation:
    """Check a model API key by listing the endpoint's models.

    Keys starting with ``inf-`` belong to the hosted inference endpoint;
    anything else is tried against OpenAI.
    """
    base_url = None
    if api_key.startswith("inf-"):
        base_url = (inference_url or os.getenv("INFERENCE_URL", DEFAULT_INFERENCE_URL)) + "/v1"
    client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
    try:
        page = await client.models.list()
    except OpenAIError as e:
        logger.info(f"API key validation failed: {e}")
        return KeyValidation(
            is_valid=False,
            error="Invalid API key. Please check your key and try again.",
        )
    if page.data:
        return KeyValidation(is_valid=True)
    return KeyValidation(is_valid=False, error="Invalid API key")
