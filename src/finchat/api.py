"""HTTP surface: the streaming chat endpoint and its housekeeping routes.

Run with ``uvicorn finchat.api:create_app --factory``.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Callable, Literal

import httpx
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field

from finchat.config import VERSION, Settings, configure_logging
from finchat.errors import ConfigurationError
from finchat.events import (
    FinishEvent,
    MessageAnnotationEvent,
    StreamEvent,
    TextDeltaEvent,
    UserMessageIdEvent,
)
from finchat.fetch import FetchClient
from finchat.financial_tools import build_financial_registry
from finchat.message import Message, MessageRole, most_recent_user_message
from finchat.models import ModelSpec, get_model
from finchat.multiplexer import MEDIA_TYPE, multiplex
from finchat.persistence import (
    ChatStore,
    InMemoryChatStore,
    StoredMessage,
    guarded,
    run_in_background,
)
from finchat.provider import ModelProvider, OpenAICompatibleProvider, validate_api_key
from finchat.runner import STRATEGIES, Runner, create_runner
from finchat.session import Session

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = "00000000-0000-0000-0000-000000000000"
OPENAI_BASE_URL = "https://api.openai.com/v1"

AuthProvider = Callable[[Request], str | None]
ProviderFactory = Callable[[ModelSpec, str], ModelProvider]


def header_auth(request: Request) -> str | None:
    """Default auth provider: trust the ``X-User-Id`` header."""
    return request.headers.get("X-User-Id") or None


class ClientMessage(BaseModel):
    id: str | None = None
    role: Literal["user", "assistant", "system"]
    content: str = ""


class ChatRequest(BaseModel):
    id: str
    messages: list[ClientMessage]
    model_id: str = Field(alias="modelId")
    tool_strategy: str | None = Field(None, alias="toolStrategy")
    financial_datasets_api_key: str | None = Field(None, alias="financialDatasetsApiKey")
    model_api_key: str | None = Field(None, alias="modelApiKey")

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class KeyValidationRequest(BaseModel):
    api_key: str = Field(alias="apiKey")

    model_config = {"populate_by_name": True}


@dataclass
class AppContext:
    settings: Settings
    store: ChatStore
    auth: AuthProvider
    provider_factory: ProviderFactory
    fetch_transport: httpx.AsyncBaseTransport | None = None


def default_provider_factory(settings: Settings) -> ProviderFactory:
    def factory(model: ModelSpec, api_key: str) -> ModelProvider:
        if model.uses_inference_endpoint:
            base_url = f"{settings.inference_url.rstrip('/')}/v1"
        else:
            base_url = OPENAI_BASE_URL
        return OpenAICompatibleProvider(base_url=base_url, api_key=api_key)
    return factory


def _model_key(ctx: AppContext, model: ModelSpec, body: ChatRequest) -> str:
    if model.uses_inference_endpoint:
        if not ctx.settings.inference_key:
            raise ConfigurationError(
                "Heroku Inference API key is required for Claude models"
            )
        return ctx.settings.inference_key
    key = body.model_api_key or ctx.settings.openai_api_key
    if not key:
        raise ConfigurationError("OpenAI API key is required for GPT models")
    return key


def _title_from(message: Message) -> str:
    title = " ".join(message.content.split())
    return title[:80] or "New chat"


async def _chat_events(
    ctx: AppContext,
    runner: Runner,
    session: Session,
    financial_key: str,
    user_message_id: str,
) -> AsyncIterator[StreamEvent]:
    # Created on first iteration; a generator that never starts owns nothing.
    fetch_client = FetchClient(
        financial_key,
        base_url=ctx.settings.financial_datasets_base_url,
        timeout=ctx.settings.fetch_timeout,
        transport=ctx.fetch_transport,
    )
    text = ""
    try:
        yield UserMessageIdEvent(message_id=user_message_id)
        tools = build_financial_registry(fetch_client)
        async for event in runner.iter(session, tools):
            if isinstance(event, TextDeltaEvent):
                text += event.content
            elif isinstance(event, FinishEvent) and text:
                assistant_id = str(uuid.uuid4())
                run_in_background(
                    ctx.store.save_messages([StoredMessage(
                        id=assistant_id, chat_id=session.session_id,
                        role=MessageRole.ASSISTANT.value, content=text,
                    )]),
                    "save_messages",
                )
                yield MessageAnnotationEvent(server_message_id=assistant_id)
            yield event
    finally:
        await fetch_client.aclose()


router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat")
async def post_chat(body: ChatRequest, request: Request):
    ctx: AppContext = request.app.state.finchat
    model = get_model(body.model_id)
    if model is None:
        return PlainTextResponse("Model not found", status_code=404)

    try:
        model_key = _model_key(ctx, model, body)
    except ConfigurationError as e:
        return PlainTextResponse(str(e), status_code=400)

    transcript = [
        Message(role=MessageRole(m.role), content=m.content)
        for m in body.messages
    ]
    user_message = most_recent_user_message(transcript)
    if user_message is None:
        return PlainTextResponse("No user message found", status_code=400)

    financial_key = (
        body.financial_datasets_api_key or ctx.settings.financial_datasets_api_key
    )
    if not financial_key:
        return PlainTextResponse(
            "Financial Datasets API key is required", status_code=400
        )

    strategy = body.tool_strategy or model.strategy
    if strategy not in STRATEGIES:
        return PlainTextResponse(f"Unknown tool strategy: {strategy}", status_code=400)

    user_id = ctx.auth(request) or ANONYMOUS_USER_ID
    logger.info(f"Chat {body.id}: model={model.id} strategy={strategy} user={user_id}")
    try:
        runner = create_runner(
            strategy,
            ctx.provider_factory(model, model_key),
            model.api_identifier,
            max_steps=ctx.settings.max_steps,
        )
    except Exception as e:
        logger.error(f"Failed to set up chat {body.id}: {e!r}")
        return PlainTextResponse(
            "An error occurred while processing your request", status_code=500
        )

    chat = await guarded(ctx.store.get_chat(body.id), "get_chat")
    if chat is None:
        await guarded(
            ctx.store.save_chat(body.id, user_id, _title_from(user_message)),
            "save_chat",
        )
    user_message_id = str(uuid.uuid4())
    await guarded(
        ctx.store.save_messages([StoredMessage(
            id=user_message_id, chat_id=body.id,
            role=MessageRole.USER.value, content=user_message.content,
        )]),
        "save_messages",
    )

    session = Session(session_id=body.id, transcript=transcript)
    return StreamingResponse(
        multiplex(_chat_events(ctx, runner, session, financial_key, user_message_id)),
        media_type=MEDIA_TYPE,
    )


@router.delete("/chat")
async def delete_chat(request: Request, id: str | None = Query(None)):
    ctx: AppContext = request.app.state.finchat
    if not id:
        return PlainTextResponse("Not Found", status_code=404)

    user_id = ctx.auth(request)
    if user_id is None:
        return PlainTextResponse("Unauthorized", status_code=401)

    try:
        chat = await ctx.store.get_chat(id)
        if chat is None:
            return PlainTextResponse("Not Found", status_code=404)
        if chat.user_id != user_id:
            return PlainTextResponse("Unauthorized", status_code=401)
        await ctx.store.delete_chat(id)
    except Exception as e:
        logger.error(f"Failed to delete chat {id}: {e!r}")
        return PlainTextResponse(
            "An error occurred while processing your request", status_code=500
        )
    return PlainTextResponse("Chat deleted", status_code=200)


@router.get("/keys")
async def get_keys(request: Request):
    """Report which keys the server holds, never the keys themselves."""
    settings: Settings = request.app.state.finchat.settings

    def masked(value: str | None) -> str | None:
        return "***configured***" if value else None

    return {
        "hasInferenceKey": bool(settings.inference_key),
        "hasOpenAIKey": bool(settings.openai_api_key),
        "hasFinancialKey": bool(settings.financial_datasets_api_key),
        "inferenceKey": masked(settings.inference_key),
        "openaiKey": masked(settings.openai_api_key),
        "financialKey": masked(settings.financial_datasets_api_key),
    }


@router.post("/keys/validate")
async def post_validate_key(body: KeyValidationRequest, request: Request):
    settings: Settings = request.app.state.finchat.settings
    result = await validate_api_key(body.api_key, settings.inference_url)
    return {"isValid": result.is_valid, "error": result.error}


def create_app(
    settings: Settings | None = None,
    store: ChatStore | None = None,
    auth: AuthProvider | None = None,
    provider_factory: ProviderFactory | None = None,
    fetch_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application.

    Every collaborator can be replaced: tests pass a stub provider
    factory and an ``httpx.MockTransport`` for the financial data API.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)

    app = FastAPI(title="finchat", version=VERSION)
    app.state.finchat = AppContext(
        settings=settings,
        store=store if store is not None else InMemoryChatStore(),
        auth=auth or header_auth,
        provider_factory=provider_factory or default_provider_factory(settings),
        fetch_transport=fetch_transport,
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": app.title, "version": app.version}

    app.include_router(router)
    return app
