"""Extract prompt-based tool calls from free-form model text.

A call is written inline as::

    🔧 CALL_TOOL:getNews:{"ticker": "AAPL", "limit": 5}

The arguments are read with :meth:`json.JSONDecoder.raw_decode` starting
at the opening brace, so nested objects and arrays parse correctly and
parsing stops exactly where the JSON value ends.
"""

import json
import logging
import re

from finchat.errors import ParseError
from finchat.tools import ToolCallRequest

logger = logging.getLogger(__name__)

SENTINEL = "🔧 CALL_TOOL:"

_MARKER = re.compile(re.escape(SENTINEL) + r"(\w+):")
_decoder = json.JSONDecoder()


def format_marker(tool_name: str, arguments: dict) -> str:
    """Render a call the way the model is asked to write it."""
    return f"{SENTINEL}{tool_name}:{json.dumps(arguments)}"


def _parse_at(text: str, match: re.Match) -> tuple[ToolCallRequest, int]:
    start = match.end()
    if not text.startswith("{", start):
        raise ParseError(f"Expected '{{' after {match.group(0)!r}")
    try:
        arguments, end = _decoder.raw_decode(text, start)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON arguments for {match.group(1)}: {e}") from e
    if not isinstance(arguments, dict):
        raise ParseError(f"Arguments for {match.group(1)} must be a JSON object")
    call = ToolCallRequest(
        tool_name=match.group(1),
        arguments=arguments,
        raw_source_text=text[match.start():end],
    )
    return call, end


def parse(response_text: str) -> list[ToolCallRequest]:
    """Return every well-formed call marker in *response_text*, in order.

    Malformed markers are logged and skipped; they never stop the scan.
    """
    calls: list[ToolCallRequest] = []
    consumed = 0
    for match in _MARKER.finditer(response_text):
        # A marker quoted inside a previous call's JSON is not a call.
        if match.start() < consumed:
            continue
        try:
            call, consumed = _parse_at(response_text, match)
        except ParseError as e:
            logger.warning(f"Failed to parse tool call marker: {e}")
            continue
        calls.append(call)
    return calls

