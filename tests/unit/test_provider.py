from dataclasses import dataclass, field
from unittest.mock import AsyncMock

import httpx
import pytest
from openai import AuthenticationError

from finchat import provider as provider_module
from finchat.provider import (
    ModelProvider,
    OpenAICompatibleProvider,
    normalize_finish_reason,
    validate_api_key,
)
from finchat.streaming import Completion, ToolCall, Usage


# ---------------------------------------------------------------------------
# Fake OpenAI client response objects
# ---------------------------------------------------------------------------

@dataclass
class FakeFunction:
    name: str | None = None
    arguments: str | None = None


@dataclass
class FakeToolCall:
    id: str | None
    function: FakeFunction
    index: int = 0
    type: str = "function"


@dataclass
class FakeMessage:
    content: str | None = None
    tool_calls: list | None = None


@dataclass
class FakeChoice:
    message: FakeMessage
    finish_reason: str | None = "stop"


@dataclass
class FakeUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class FakeCompletion:
    choices: list[FakeChoice] = field(default_factory=list)
    usage: FakeUsage | None = None


@dataclass
class FakeDelta:
    content: str | None = None
    tool_calls: list | None = None


@dataclass
class FakeStreamChoice:
    delta: FakeDelta
    finish_reason: str | None = None


@dataclass
class FakeStreamChunk:
    choices: list[FakeStreamChoice] = field(default_factory=list)
    usage: FakeUsage | None = None


def _fake_completion(content="hi", tool_calls=None, finish_reason="stop", usage=None):
    return FakeCompletion(
        choices=[FakeChoice(
            message=FakeMessage(content=content, tool_calls=tool_calls),
            finish_reason=finish_reason,
        )],
        usage=usage,
    )


async def _fake_stream(chunks):
    for chunk in chunks:
        yield chunk


def _provider_with(monkeypatch, mock_create):
    provider = OpenAICompatibleProvider(
        base_url="https://inference.test/v1", api_key="test-key",
    )
    monkeypatch.setattr(provider.client.chat.completions, "create", mock_create)
    return provider


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def test_reads_inference_env(monkeypatch):
    monkeypatch.setenv("INFERENCE_URL", "https://inference.example")
    monkeypatch.setenv("INFERENCE_KEY", "inf-from-env")
    p = OpenAICompatibleProvider()
    assert p.base_url == "https://inference.example/v1"
    assert p.client.api_key == "inf-from-env"


def test_strips_trailing_slash():
    p = OpenAICompatibleProvider(base_url="https://api.openai.com/v1/", api_key="k")
    assert p.base_url == "https://api.openai.com/v1"


def test_retries_disabled():
    p = OpenAICompatibleProvider(base_url="https://api.openai.com/v1", api_key="k")
    assert p.client.max_retries == 0


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("stop", "stop"),
        ("tool_calls", "tool-calls"),
        ("function_call", "tool-calls"),
        ("content_filter", "content-filter"),
        ("length", "length"),
        (None, None),
    ],
)
def test_normalize_finish_reason(raw, expected):
    assert normalize_finish_reason(raw) == expected


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------

class TestComplete:
    @pytest.mark.asyncio
    async def test_forwards_tools_with_tool_choice(self, monkeypatch):
        """complete() passes tools and tool_choice='auto' together."""
        mock_create = AsyncMock(return_value=_fake_completion("hello"))
        provider = _provider_with(monkeypatch, mock_create)

        messages = [{"role": "user", "content": "hi"}]
        tools = [{"type": "function", "function": {"name": "getNews"}}]
        result = await provider.complete("claude-4-sonnet", messages, tools=tools)

        mock_create.assert_called_once_with(
            model="claude-4-sonnet", messages=messages,
            tools=tools, tool_choice="auto",
        )
        assert result.content == "hello"

    @pytest.mark.asyncio
    async def test_omits_tools_when_none(self, monkeypatch):
        mock_create = AsyncMock(return_value=_fake_completion("hi"))
        provider = _provider_with(monkeypatch, mock_create)

        await provider.complete("gpt-4o", [{"role": "user", "content": "hi"}])

        kwargs = mock_create.call_args.kwargs
        assert "tools" not in kwargs
        assert "tool_choice" not in kwargs

    @pytest.mark.asyncio
    async def test_converts_tool_calls_and_usage(self, monkeypatch):
        tool_calls = [FakeToolCall(
            id="call_1",
            function=FakeFunction(name="getNews", arguments='{"ticker": "AAPL"}'),
        )]
        mock_create = AsyncMock(return_value=_fake_completion(
            content=None, tool_calls=tool_calls, finish_reason="tool_calls",
            usage=FakeUsage(prompt_tokens=12, completion_tokens=4),
        ))
        provider = _provider_with(monkeypatch, mock_create)

        result = await provider.complete("gpt-4o", [])

        assert result.content == ""
        assert result.tool_calls == [
            ToolCall(id="call_1", name="getNews", arguments='{"ticker": "AAPL"}')
        ]
        assert result.finish_reason == "tool-calls"
        assert result.usage == Usage(prompt_tokens=12, completion_tokens=4)


# ---------------------------------------------------------------------------
# stream_complete()
# ---------------------------------------------------------------------------

class TestStreamComplete:
    @pytest.mark.asyncio
    async def test_yields_normalized_chunks(self, monkeypatch):
        chunks = [
            FakeStreamChunk(choices=[FakeStreamChoice(delta=FakeDelta(content="Hel"))]),
            FakeStreamChunk(choices=[FakeStreamChoice(delta=FakeDelta(tool_calls=[
                FakeToolCall(
                    id="call_1", index=0,
                    function=FakeFunction(name="getNews", arguments='{"ticker"'),
                ),
            ]))]),
            FakeStreamChunk(choices=[FakeStreamChoice(
                delta=FakeDelta(), finish_reason="tool_calls",
            )]),
            FakeStreamChunk(choices=[], usage=FakeUsage(5, 7)),
        ]
        mock_create = AsyncMock(return_value=_fake_stream(chunks))
        provider = _provider_with(monkeypatch, mock_create)

        out = [c async for c in provider.stream_complete("gpt-4o", [])]

        assert mock_create.call_args.kwargs["stream"] is True
        assert mock_create.call_args.kwargs["stream_options"] == {"include_usage": True}
        assert out[0].content_delta == "Hel"
        frag = out[1].tool_call_fragments[0]
        assert (frag.index, frag.call_id, frag.name, frag.arguments_delta) == (
            0, "call_1", "getNews", '{"ticker"',
        )
        assert out[2].finish_reason == "tool-calls"
        assert out[3].usage == Usage(prompt_tokens=5, completion_tokens=7)

    @pytest.mark.asyncio
    async def test_base_provider_replays_completion(self):
        class OneShot(ModelProvider):
            async def complete(self, model, messages, tools=None):
                return Completion(
                    content="done",
                    tool_calls=[ToolCall(id="c1", name="getNews", arguments="{}")],
                    finish_reason="tool-calls",
                )

        out = [c async for c in OneShot().stream_complete("m", [])]

        assert len(out) == 1
        assert out[0].content_delta == "done"
        assert out[0].tool_call_fragments[0].call_id == "c1"
        assert out[0].finish_reason == "tool-calls"


# ---------------------------------------------------------------------------
# validate_api_key()
# ---------------------------------------------------------------------------

@dataclass
class FakePage:
    data: list


class FakeModels:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    async def list(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeClient:
    instances: list["FakeClient"] = []
    models_impl: FakeModels = FakeModels()

    def __init__(self, api_key, base_url=None, max_retries=2):
        self.api_key = api_key
        self.base_url = base_url
        self.models = FakeClient.models_impl
        FakeClient.instances.append(self)


@pytest.fixture
def fake_openai(monkeypatch):
    FakeClient.instances = []
    monkeypatch.setattr(provider_module, "AsyncOpenAI", FakeClient)
    return FakeClient


class TestValidateApiKey:
    @pytest.mark.asyncio
    async def test_inference_key_uses_inference_url(self, fake_openai):
        fake_openai.models_impl = FakeModels(result=FakePage(data=["claude-4-sonnet"]))

        result = await validate_api_key("inf-abc", "https://inference.test")

        assert result.is_valid
        assert fake_openai.instances[0].base_url == "https://inference.test/v1"

    @pytest.mark.asyncio
    async def test_openai_key_uses_default_url(self, fake_openai):
        fake_openai.models_impl = FakeModels(result=FakePage(data=[]))

        result = await validate_api_key("sk-abc")

        assert fake_openai.instances[0].base_url is None
        assert not result.is_valid
        assert result.error == "Invalid API key"

    @pytest.mark.asyncio
    async def test_rejected_key(self, fake_openai):
        request = httpx.Request("GET", "https://api.openai.com/v1/models")
        error = AuthenticationError(
            "bad key", response=httpx.Response(401, request=request), body=None,
        )
        fake_openai.models_impl = FakeModels(error=error)

        result = await validate_api_key("sk-bad")

        assert not result.is_valid
        assert "Invalid API key" in result.error
