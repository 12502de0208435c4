import json

import httpx
import pytest
import pytest_asyncio

from finchat.fetch import FetchClient
from finchat.message import Message, MessageRole
from finchat.provider import ModelProvider
from finchat.session import Session
from finchat.streaming import Completion, StreamChunk, ToolCall, Usage
from finchat.tools import ToolRegistry, tool


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that returns pre-queued responses. No network calls.

    Queue :class:`Completion` objects on ``responses``; streamed calls
    replay them as a single chunk unless a chunk list is queued on
    ``streams``.
    """

    def __init__(self):
        self.responses: list[Completion] = []
        self.streams: list[list[StreamChunk]] = []
        self.call_log: list[dict] = []

    async def complete(self, model, messages, tools=None):
        self.call_log.append(
            {"model": model, "messages": messages, "tools": tools, "stream": False}
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def stream_complete(self, model, messages, tools=None):
        if not self.streams:
            async for chunk in super().stream_complete(model, messages, tools=tools):
                self.call_log[-1]["stream"] = True
                yield chunk
            return
        self.call_log.append(
            {"model": model, "messages": messages, "tools": tools, "stream": True}
        )
        for chunk in self.streams.pop(0):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


# ---------------------------------------------------------------------------
# Response builder helpers
# ---------------------------------------------------------------------------

def make_text_response(content: str, usage: Usage | None = None) -> Completion:
    """Fake provider response with text only (no tool calls)."""
    return Completion(content=content, usage=usage)


def make_tool_call_response(
    name: str,
    args: dict,
    call_id: str = "call_1",
    content: str = "",
) -> Completion:
    """Fake provider response containing a single tool call."""
    return Completion(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(args))],
        finish_reason="tool-calls",
    )


def make_multi_tool_call_response(
    calls: list[tuple[str, dict, str]],
    content: str = "",
) -> Completion:
    """Fake provider response containing multiple tool calls.

    Each item in *calls* is ``(func_name, args_dict, call_id)``.
    """
    return Completion(
        content=content,
        tool_calls=[
            ToolCall(id=call_id, name=name, arguments=json.dumps(args))
            for name, args, call_id in calls
        ],
        finish_reason="tool-calls",
    )


# ---------------------------------------------------------------------------
# Financial data API stub
# ---------------------------------------------------------------------------

class FinancialAPIStub:
    """``httpx.MockTransport`` handler recording every request.

    Routes map a path to a JSON body or to an ``httpx.Response``.
    Unrouted paths answer 404.
    """

    def __init__(self, routes: dict | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


PRICE_SNAPSHOT = {"snapshot": {"ticker": "AAPL", "price": 189.5, "market_cap": 2.9e12}}
PRICES = {"prices": [{"time": "2024-05-01", "close": 170.1}]}
NEWS = {"news": [{"title": "Apple beats estimates", "date": "2024-05-02"}]}


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def api_stub():
    return FinancialAPIStub({
        "/prices/snapshot/": PRICE_SNAPSHOT,
        "/prices/": PRICES,
        "/news/": NEWS,
    })


@pytest_asyncio.fixture
async def fetch_client(api_stub):
    client = FetchClient(
        "fd-test-key",
        base_url="https://api.financialdatasets.test",
        transport=api_stub.transport,
    )
    yield client
    await client.aclose()


@pytest.fixture
def sample_tool():
    @tool
    def greet(name: str):
        """Say hello.

        Args:
            name: Who to greet.
        """
        return f"Hello {name}"
    return greet


@pytest.fixture
def sample_async_tool():
    @tool
    async def async_greet(name: str):
        """Async greeting."""
        return f"Hello async {name}"
    return async_greet


@pytest.fixture
def registry(sample_tool, sample_async_tool):
    return ToolRegistry([sample_tool, sample_async_tool])


@pytest.fixture
def make_session():
    def _make(*contents: str, session_id: str = "chat-1"):
        return Session(
            session_id=session_id,
            transcript=[
                Message(role=MessageRole.USER, content=c) for c in contents
            ],
        )
    return _make
