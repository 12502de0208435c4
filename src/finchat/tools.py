from __future__ import annotations

import inspect
import logging
import re
from typing import Any, Callable, Iterable, get_type_hints

from pydantic import BaseModel, Field, ValidationError, create_model

from finchat.errors import ToolNotFoundError
from finchat.schema import convert

logger = logging.getLogger(__name__)


class ToolCallRequest(BaseModel):
    """A call the model asked for, either natively or through a text marker.

    ``raw_source_text`` holds the marker text for prompt-based calls and
    ``call_id`` the provider id for native ones.
    """

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    raw_source_text: str = ""
    call_id: str = ""
    model_config = {"frozen": True}


class ToolExecutionResult(BaseModel):
    """Outcome of one executed tool call.

    Exactly one of ``payload`` / ``error`` is meaningful: a failed call
    keeps ``payload`` as ``None`` and describes the failure in ``error``.
    """

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    payload: Any = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def output(self) -> Any:
        """What the model sees: the payload, or ``{"error": ...}``."""
        if self.error is not None:
            return {"error": self.error}
        return self.payload


class ToolDefinition(BaseModel):
    """A named operation the model may call.

    Args:
        func: Sync or async callable receiving validated keyword arguments.
        name: Unique tool name sent to the model.
        description: Description shown to the model.
        parameters: Pydantic model declaring the tool's parameters.
        error_message: Description reported when ``func`` raises. Falls
            back to ``"Error calling <name>: <exception>"``.
    """

    func: Callable = Field(exclude=True)
    name: str
    description: str
    parameters: type[BaseModel] = Field(exclude=True)
    error_message: str | None = None
    model_config = {"arbitrary_types_allowed": True, "frozen": True}

    @property
    def parameters_schema(self) -> dict:
        return convert(self.parameters)

    def model_dump(self, **kwargs):
        """Return the OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def normalize(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Apply defaults and coercion; unparseable input comes back as-is."""
        try:
            return self.parameters.model_validate(arguments).model_dump(mode="json")
        except ValidationError:
            return dict(arguments)

    async def execute(self, arguments: dict[str, Any] | None = None) -> ToolExecutionResult:
        """Validate *arguments*, run the tool and capture any failure."""
        arguments = arguments or {}
        try:
            params = self.parameters.model_validate(arguments)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {self.name}: {e}")
            return ToolExecutionResult(
                tool_name=self.name,
                arguments=arguments,
                error=f"Invalid arguments for {self.name}: {_summarize(e)}",
            )

        kwargs = params.model_dump(mode="json")
        logger.info(f"Calling {self.name} with {kwargs}")
        try:
            output = self.func(**kwargs)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            logger.error(f"Tool {self.name} raised: {e}")
            return ToolExecutionResult(
                tool_name=self.name,
                arguments=kwargs,
                error=self.error_message or f"Error calling {self.name}: {e}",
            )
        return ToolExecutionResult(tool_name=self.name, arguments=kwargs, payload=output)


def _summarize(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in item['loc']) or 'arguments'}: {item['msg']}"
        for item in error.errors()
    )


_ARGS_HEADER = re.compile(r"^\s*(Args|Arguments|Parameters):\s*$")
_ARG_LINE = re.compile(r"^\s+(\w+)(?:\s*\([^)]*\))?:\s*(.*)$")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read Google-style ``Args:`` descriptions from a docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    descriptions: dict[str, str] = {}
    in_args = False
    current = None
    for line in doc.splitlines():
        if _ARGS_HEADER.match(line):
            in_args = True
            continue
        if not in_args:
            continue
        if line and not line[0].isspace():
            break
        match = _ARG_LINE.match(line)
        if match and line.startswith("    ") and not line.startswith("        "):
            current = match.group(1)
            descriptions[current] = match.group(2).strip()
        elif current and line.strip():
            descriptions[current] += " " + line.strip()
    return descriptions


def _model_from_signature(func: Callable) -> type[BaseModel]:
    """Build a parameters model from *func*'s signature and docstring."""
    descriptions = _parse_param_descriptions(func)
    hints = get_type_hints(func)
    fields = {}
    for name, param in inspect.signature(func).parameters.items():
        annotation = hints.get(name, str)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[name] = (
            annotation,
            Field(default, description=descriptions.get(name, "")),
        )
    return create_model(f"{func.__name__}_params", **fields)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: type[BaseModel] | None = None,
    error_message: str | None = None,
):
    """Turn a function into a :class:`ToolDefinition`.

    Works bare (``@tool``) or with arguments. Without ``parameters`` the
    schema is derived from the signature, with descriptions taken from a
    Google-style ``Args:`` section.
    """

    def wrap(f: Callable) -> ToolDefinition:
        doc = inspect.getdoc(f) or ""
        return ToolDefinition(
            func=f,
            name=name or f.__name__,
            description=description or " ".join(doc.split("\n\n")[0].split()),
            parameters=parameters or _model_from_signature(f),
            error_message=error_message,
        )

    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """Catalog of tools, looked up by name.

    Registration is the only way to add an operation; the orchestration
    loop never branches on tool names.
    """

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        for t in tools:
            self.register(t)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Duplicate tool name: '{definition.name}'")
        self._tools[definition.name] = definition

    def list(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def get(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    def normalize(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        if name not in self._tools:
            return dict(arguments)
        return self._tools[name].normalize(arguments)

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolExecutionResult:
        """Run *name*; unknown names become an error result."""
        if name not in self._tools:
            logger.warning(f"Tool not found: {name}")
            return ToolExecutionResult(
                tool_name=name, arguments=arguments, error=f"Unknown tool: {name}",
            )
        return await self._tools[name].execute(arguments)
