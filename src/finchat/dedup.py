import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def canonical_key(tool_name: str, arguments: dict[str, Any]) -> str:
    """Serialize a call so that key order in *arguments* does not matter."""
    return json.dumps(
        {"toolName": tool_name, "arguments": arguments},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


class CallDeduplicator:
    """Remembers which ``(tool, arguments)`` pairs already ran.

    One instance lives on each :class:`~finchat.session.Session`. It is
    not a cache: a fresh session starts with an empty record set.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def should_execute(self, tool_name: str, arguments: dict[str, Any]) -> bool:
        """Return ``True`` and record the call the first time it is seen."""
        key = canonical_key(tool_name, arguments)
        if key in self._seen:
            logger.warning(f"Skipping duplicate {tool_name} call: {arguments}")
            return False
        self._seen.add(key)
        return True

    def __len__(self) -> int:
        return len(self._seen)
