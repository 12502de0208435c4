import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from openai import APIConnectionError, APIStatusError, APITimeoutError

from finchat import parser
from finchat.events import (
    FinishEvent,
    QueryLoadingEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolResultEvent,
)
from finchat.instrumentation import (
    completion_span,
    record_error,
    record_usage,
    run_span,
    tool_span,
)
from finchat.message import (
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from finchat.prompts import (
    FOLLOW_UP_REQUEST,
    LOADING_TASK,
    SYSTEM_PROMPT,
    follow_up_system_prompt,
    prompt_tools_system_prompt,
)
from finchat.provider import ModelProvider
from finchat.session import Session
from finchat.streaming import ToolCall, ToolCallAccumulator, Usage
from finchat.tools import ToolCallRequest, ToolExecutionResult, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation."""

    text: str
    finish_reason: str
    usage: Usage
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    error: str | None = None


def _safe_error(exc: BaseException) -> str:
    """Describe a model-endpoint failure without leaking request details."""
    if isinstance(exc, APITimeoutError):
        return "The model endpoint timed out"
    if isinstance(exc, APIConnectionError):
        return "Could not reach the model endpoint"
    if isinstance(exc, APIStatusError):
        return f"The model endpoint returned an error (status {exc.status_code})"
    return "An unexpected error occurred while generating the response"


class Runner(ABC):
    """Drives one tool-calling strategy to completion.

    ``iter()`` is the streaming entry point and ``run()`` drains it.
    Both take a fresh :class:`Session` per request. The event stream
    always opens with ``query-loading{true}``, turns loading off no later
    than the first text delta, and ends with exactly one ``finish``.

    Args:
        provider: Language-model endpoint.
        model: Model name sent to the endpoint.
        system_prompt: Base system prompt, injected at call time and never
            stored in the transcript.
        max_steps: Ceiling on model generations per request.
    """

    strategy = ""

    def __init__(
        self,
        provider: ModelProvider,
        model: str,
        system_prompt: str = SYSTEM_PROMPT,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self.provider = provider
        self.model = model
        self.system_prompt = system_prompt
        self.max_steps = max_steps

    async def run(self, session: Session, tools: ToolRegistry) -> RunResult:
        """Run to completion and collect the streamed events."""
        text = ""
        tool_results: list[ToolExecutionResult] = []
        finish: FinishEvent | None = None
        async for event in self.iter(session, tools):
            if isinstance(event, TextDeltaEvent):
                text += event.content
            elif isinstance(event, ToolResultEvent):
                tool_results.append(ToolExecutionResult(
                    tool_name=event.tool_name,
                    arguments=event.arguments,
                    payload=None if event.is_error else event.result,
                    error=event.result["error"] if event.is_error else None,
                ))
            elif isinstance(event, FinishEvent):
                finish = event
        if finish is None:
            raise RuntimeError("iter() ended without emitting FinishEvent")
        return RunResult(
            text=text,
            finish_reason=finish.finish_reason,
            usage=finish.usage,
            tool_results=tool_results,
            error=finish.error,
        )

    async def iter(
        self, session: Session, tools: ToolRegistry,
    ) -> AsyncIterator[StreamEvent]:
        """Run the strategy, yielding events as execution proceeds."""
        yield QueryLoadingEvent(is_loading=True, task_names=[LOADING_TASK])
        loading = True
        usage = Usage()

        async with run_span(self.strategy, self.model) as span:
            try:
                async for event in self._iter(session, tools):
                    if isinstance(event, FinishEvent):
                        usage = event.usage
                        if loading:
                            yield QueryLoadingEvent(is_loading=False)
                        record_usage(span, usage)
                        yield event
                        return
                    if loading and isinstance(event, TextDeltaEvent):
                        yield QueryLoadingEvent(is_loading=False)
                        loading = False
                    yield event
            except Exception as e:
                logger.error(f"{self.strategy} run failed: {e!r}")
                record_error(span, e)
                if loading:
                    yield QueryLoadingEvent(is_loading=False)
                yield FinishEvent(
                    finish_reason="error", usage=usage, error=_safe_error(e),
                )
                return

        # _iter returned without a finish event
        if loading:
            yield QueryLoadingEvent(is_loading=False)
        yield FinishEvent(finish_reason="stop", usage=usage)

    @abstractmethod
    def _iter(
        self, session: Session, tools: ToolRegistry,
    ) -> AsyncIterator[StreamEvent]:
        """Strategy body. Yields text, tool results and one finish."""

    def _messages(self, session: Session, system_prompt: str) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt},
            *[m.model_dump() for m in session.transcript],
        ]

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_calls(
        self, session: Session, tools: ToolRegistry,
        requests: list[ToolCallRequest],
    ) -> list[ToolExecutionResult | None]:
        """Execute a round of calls concurrently.

        Returns one entry per request, ``None`` where the call duplicated
        an earlier one in this session and was skipped.
        """
        scheduled: list[int] = []
        for i, req in enumerate(requests):
            arguments = tools.normalize(req.tool_name, req.arguments)
            if session.dedup.should_execute(req.tool_name, arguments):
                scheduled.append(i)

        results = await asyncio.gather(
            *(self._execute_one(tools, requests[i]) for i in scheduled)
        )
        aligned: list[ToolExecutionResult | None] = [None] * len(requests)
        for i, result in zip(scheduled, results):
            aligned[i] = result
        return aligned

    async def _execute_one(
        self, tools: ToolRegistry, req: ToolCallRequest,
    ) -> ToolExecutionResult:
        async with tool_span(req.tool_name, req.call_id) as span:
            result = await tools.execute(req.tool_name, req.arguments)
            if result.is_error and span is not None:
                span.set_attribute("error.type", "ToolError")
            return result


def _to_request(tc: ToolCall) -> ToolCallRequest | ToolExecutionResult:
    try:
        arguments = json.loads(tc.arguments) if tc.arguments else {}
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in arguments for {tc.name}: {e}")
        return ToolExecutionResult(
            tool_name=tc.name, error=f"Invalid JSON arguments for {tc.name}: {e}",
        )
    if not isinstance(arguments, dict):
        return ToolExecutionResult(
            tool_name=tc.name, error=f"Arguments for {tc.name} must be a JSON object",
        )
    return ToolCallRequest(tool_name=tc.name, arguments=arguments, call_id=tc.id)


class NativeToolRunner(Runner):
    """The endpoint emits structured tool calls; results are fed back.

    Loops ``generate -> execute tools -> generate`` until a generation
    requests no tools or ``max_steps`` generations have run. Reaching the
    ceiling is not an error: the streamed text stands and the finish
    event carries the last round's reason.
    """

    strategy = "native"

    async def _iter(self, session, tools):
        schemas = tools.schemas() or None
        usage = Usage()
        finish_reason = "stop"

        while session.steps < self.max_steps:
            session.steps += 1
            messages = self._messages(session, self.system_prompt)

            acc = ToolCallAccumulator()
            full_content = ""
            finish_reason = "stop"
            async with completion_span(self.model) as span:
                async for chunk in self.provider.stream_complete(
                    self.model, messages, tools=schemas,
                ):
                    if chunk.content_delta:
                        full_content += chunk.content_delta
                        yield TextDeltaEvent(content=chunk.content_delta)
                    if chunk.tool_call_fragments:
                        for frag in chunk.tool_call_fragments:
                            acc.feed(frag)
                    if chunk.finish_reason:
                        finish_reason = chunk.finish_reason
                    if chunk.usage:
                        usage = usage + chunk.usage
                        record_usage(span, chunk.usage)

            completed_calls = acc.finalize()
            if not completed_calls:
                session.transcript.append(
                    Message(role=MessageRole.ASSISTANT, content=full_content)
                )
                yield FinishEvent(finish_reason=finish_reason, usage=usage)
                return

            logger.debug(f"Step {session.steps}: {len(completed_calls)} tool calls")
            session.transcript.append(ToolCallRequestMessage(
                role=MessageRole.ASSISTANT, content=full_content,
                tool_calls=completed_calls,
            ))
            async for event in self._execute_round(session, tools, completed_calls):
                yield event

        logger.info(f"Step ceiling of {self.max_steps} reached")
        yield FinishEvent(finish_reason=finish_reason, usage=usage)

    async def _execute_round(self, session, tools, calls: list[ToolCall]):
        parsed = [_to_request(tc) for tc in calls]
        requests = [p for p in parsed if isinstance(p, ToolCallRequest)]
        executed = iter(await self._execute_calls(session, tools, requests))

        for tc, item in zip(calls, parsed):
            result = item if isinstance(item, ToolExecutionResult) else next(executed)
            if result is None:
                # Every call id needs an answer in the transcript.
                content = json.dumps({"skipped": "Duplicate call, see the earlier result"})
            else:
                content = json.dumps(result.output, default=str)
            session.transcript.append(ToolCallResultMessage(
                role=MessageRole.TOOL, content=content, tool_call_id=tc.id,
            ))
            if result is not None:
                yield ToolResultEvent(
                    tool_name=result.tool_name, arguments=result.arguments,
                    result=result.output, is_error=result.is_error,
                )


class PromptToolRunner(Runner):
    """Tool calls are written as text markers and parsed out.

    Two phases, never more: one whole generation, then, if it contained
    markers, a single streamed follow-up generation that sees the tool
    results. Markers in the follow-up are not executed.
    """

    strategy = "prompt"

    async def _iter(self, session, tools):
        usage = Usage()
        session.steps += 1
        system_prompt = prompt_tools_system_prompt(self.system_prompt, tools)
        async with completion_span(self.model) as span:
            completion = await self.provider.complete(
                self.model, self._messages(session, system_prompt),
            )
            record_usage(span, completion.usage)
        if completion.usage:
            usage = usage + completion.usage

        calls = parser.parse(completion.content)
        if not calls:
            session.transcript.append(
                Message(role=MessageRole.ASSISTANT, content=completion.content)
            )
            if completion.content:
                yield TextDeltaEvent(content=completion.content)
            yield FinishEvent(finish_reason=completion.finish_reason, usage=usage)
            return

        logger.info(f"Found {len(calls)} tool calls in response")
        results = [
            r for r in await self._execute_calls(session, tools, calls)
            if r is not None
        ]
        for result in results:
            yield ToolResultEvent(
                tool_name=result.tool_name, arguments=result.arguments,
                result=result.output, is_error=result.is_error,
            )

        session.steps += 1
        messages = [
            {"role": "system", "content": follow_up_system_prompt(results)},
            *[m.model_dump() for m in session.transcript],
            {"role": "user", "content": FOLLOW_UP_REQUEST},
        ]
        full_content = ""
        finish_reason = "stop"
        async with completion_span(self.model) as span:
            async for chunk in self.provider.stream_complete(self.model, messages):
                if chunk.content_delta:
                    full_content += chunk.content_delta
                    yield TextDeltaEvent(content=chunk.content_delta)
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
                if chunk.usage:
                    usage = usage + chunk.usage
                    record_usage(span, chunk.usage)

        session.transcript.append(
            Message(role=MessageRole.ASSISTANT, content=full_content)
        )
        yield FinishEvent(finish_reason=finish_reason, usage=usage)


STRATEGIES: dict[str, type[Runner]] = {
    NativeToolRunner.strategy: NativeToolRunner,
    PromptToolRunner.strategy: PromptToolRunner,
}


def create_runner(strategy: str, provider: ModelProvider, model: str, **kwargs) -> Runner:
    try:
        runner_cls = STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"Unknown tool strategy: '{strategy}'") from None
    return runner_cls(provider, model, **kwargs)
