"""Serialize stream events onto one newline-delimited channel.

Each record is a single JSON object on its own line, so a consumer can
split on ``\\n`` and decode every record independently.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import aclosing

from finchat.events import FinishEvent, StreamEvent

MEDIA_TYPE = "application/x-ndjson"


def encode_event(event: StreamEvent) -> str:
    # json.dumps escapes newlines inside strings, so one event is one line.
    return json.dumps(event.to_record(), default=str, ensure_ascii=False) + "\n"


async def multiplex(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Write *events* in emission order, closing after the first finish.

    No buffering and no reordering. Once a ``finish`` record is written
    the source is closed and nothing else is emitted.
    """
    async with aclosing(events) as source:
        async for event in source:
            yield encode_event(event)
            if isinstance(event, FinishEvent):
                break
