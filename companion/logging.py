"""structlog setup for the companion packages, with secret redaction on every event."""

import json
import logging
import re
import sys
from typing import Any

import structlog

from companion.config.schema import LoggingConfig

# Credential shapes that must never reach log output.
_SECRET_PATTERNS = (
    re.compile(r"AIza[A-Za-z0-9_-]{10,}"),           # Gemini / Google API keys
    re.compile(r"ya29\.[A-Za-z0-9_-]{10,}"),         # Google OAuth access tokens
    re.compile(r"sk-[A-Za-z0-9_-]{10,}"),            # OpenAI / Anthropic keys
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),             # GitHub tokens
    re.compile(r"Bearer\s+[A-Za-z0-9_\-.]{10,}"),    # Authorization headers
)


def mask_secret(value: str) -> str:
    """Show only the first and last four characters of *value*.

    >>> mask_secret("sk-abc123456789xyz")
    'sk-a****9xyz'
    """
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}****{value[-4:]}"


def _redact_value(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(lambda m: mask_secret(m.group(0)), value)
    return value


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return _redact_value(value)
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v) for v in value)
    return value


def _redact_event(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor: mask secrets in string fields, including nested tool arguments."""
    return {key: _redact(value) for key, value in event_dict.items()}


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Route structlog through stdlib logging under the ``companion`` logger.

    ``config.json_output`` picks JSON lines over coloured console output and
    ``config.level`` sets the level of the ``companion`` logger hierarchy.
    """
    config = config or LoggingConfig()
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_event,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if config.json_output:
        renderer: Any = structlog.processors.JSONRenderer(
            serializer=lambda obj, **kw: json.dumps(obj, ensure_ascii=False, **kw)
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    package_logger = logging.getLogger("companion")
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, config.level.upper()))


def get_logger(name: str = "companion") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
