from dataclasses import dataclass


@dataclass(frozen=True)
class ModelSpec:
    """A selectable chat model.

    Args:
        id: Identifier sent by the client as ``modelId``.
        label: Human-readable name.
        api_identifier: Model name sent to the inference endpoint.
        description: Short description for the model picker.
        strategy: Default tool-calling strategy, ``native`` or ``prompt``.
    """

    id: str
    label: str
    api_identifier: str
    description: str
    strategy: str = "native"

    @property
    def uses_inference_endpoint(self) -> bool:
        return self.api_identifier.startswith("claude-")


MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        id="claude-4-sonnet",
        label="Claude 4 Sonnet",
        api_identifier="claude-4-sonnet",
        description="Anthropic Claude 4 Sonnet via Heroku Inference API",
    ),
    ModelSpec(
        id="claude-4-sonnet-prompt-tools",
        label="Claude 4 Sonnet (prompt tools)",
        api_identifier="claude-4-sonnet",
        description="Claude 4 Sonnet with tool calls embedded in the response text",
        strategy="prompt",
    ),
    ModelSpec(
        id="gpt-4o",
        label="GPT 4o",
        api_identifier="gpt-4o",
        description="OpenAI GPT-4o, requires your own OpenAI API key",
    ),
)

DEFAULT_MODEL_NAME = "claude-4-sonnet"


def get_model(model_id: str) -> ModelSpec | None:
    for model in MODELS:
        if model.id == model_id:
            return model
    return None
