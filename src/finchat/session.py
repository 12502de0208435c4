from pydantic import BaseModel, Field

from finchat.dedup import CallDeduplicator
from finchat.message import Message


class Session(BaseModel):
    """State for a single chat request.

    Built fresh for every request and discarded when it completes, so
    the duplicate-call record never leaks into another conversation.
    """

    session_id: str
    transcript: list[Message] = Field(default_factory=list)
    dedup: CallDeduplicator = Field(default_factory=CallDeduplicator, exclude=True)
    steps: int = 0

    model_config = {"arbitrary_types_allowed": True}
