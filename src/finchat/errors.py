class FinchatError(Exception):
    """Base for all errors raised inside ``finchat``."""


class ConfigurationError(FinchatError):
    """A required API key or setting is missing or invalid.

    Raised before streaming starts; the HTTP layer turns it into a 4xx.
    """


class UpstreamError(FinchatError):
    """A data or model endpoint answered with a non-success status."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"HTTP error! status: {status}")
        self.status = status


class FetchTimeout(FinchatError):
    """An outbound call exceeded its time budget and was cancelled."""


class DecodeError(FinchatError):
    """An upstream response body was not valid JSON."""


class SchemaUnsupported(FinchatError):
    """A parameter schema uses a construct the endpoint cannot accept."""


class ParseError(FinchatError):
    """An embedded tool-call marker could not be parsed."""


class PersistenceError(FinchatError):
    """The chat store failed. Logged and never surfaced to the client."""


class ToolNotFoundError(FinchatError, LookupError):
    """No tool is registered under the requested name."""
