import logging
import os
from dataclasses import dataclass

from finchat.financial_tools import DEFAULT_BASE_URL
from finchat.provider import DEFAULT_INFERENCE_URL

VERSION = "0.1.0"

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class Settings:
    """Runtime configuration, read from the environment by default.

    Args:
        inference_key: Key for the hosted inference endpoint (``INFERENCE_KEY``).
        inference_url: Inference endpoint root, without ``/v1``.
        openai_api_key: Server-side OpenAI key, if any.
        financial_datasets_api_key: Server-side financial data key.
        financial_datasets_base_url: Financial data API root.
        fetch_timeout: Budget in seconds for each financial data call.
        max_steps: Ceiling on model generations per request.
        log_level: Root log level name.
        log_file: Optional path for a log file next to the console output.
    """

    inference_key: str | None = None
    inference_url: str = DEFAULT_INFERENCE_URL
    openai_api_key: str | None = None
    financial_datasets_api_key: str | None = None
    financial_datasets_base_url: str = DEFAULT_BASE_URL
    fetch_timeout: float = 10.0
    max_steps: int = 10
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        values = dict(
            inference_key=os.getenv("INFERENCE_KEY"),
            inference_url=os.getenv("INFERENCE_URL", DEFAULT_INFERENCE_URL),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            financial_datasets_api_key=os.getenv("FINANCIAL_DATASETS_API_KEY"),
            financial_datasets_base_url=os.getenv(
                "FINANCIAL_DATASETS_BASE_URL", DEFAULT_BASE_URL
            ),
            fetch_timeout=_env_float("FETCH_TIMEOUT_SECONDS", 10.0),
            max_steps=_env_int("MAX_STEPS", 10),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )
        values.update(overrides)
        return cls(**values)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )
