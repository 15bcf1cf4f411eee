"""structlog wiring shared by the agent, the stream client and the alert pipeline.

Every line, deskmon's own events and records from aiohttp/httpx alike, goes
through one stdlib handler on the root logger so both kinds render the same
way (JSON lines in production, key=value text on a terminal).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from structlog.types import Processor

from src.core.config import get_settings

LOG_FORMATS = ("json", "console")

# One line per HTTP request at INFO.
_CHATTY_LOGGERS = ("aiohttp.access", "httpx", "httpcore")

# Bearer tokens, plugin API keys and chat webhook URLs.
_SECRET_KEYS = frozenset({"auth_token", "authorization", "api_key", "credential", "webhook_url"})
REDACTED = "***"


class _DeskmonHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Root handler installed by :func:`setup_logging`; replaced on reconfigure."""


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]


def _render_chain(fmt: str) -> list[Processor]:
    if fmt == "console":
        # ConsoleRenderer prints exc_info itself.
        return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def _install_handler(formatter: logging.Formatter, level: int) -> None:
    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _DeskmonHandler)]:
        root.removeHandler(existing)
    handler = _DeskmonHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level)


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    component: str | None = None,
) -> None:
    """Route structlog and stdlib logging through a single stderr handler.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: "json" or "console". Uses config if None.
        component: Bound into every line as ``component`` (e.g. "agent").

    Raises:
        ValueError: If the format is not one of :data:`LOG_FORMATS`.
    """
    settings = get_settings().logging
    log_format = fmt or settings.format
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format {log_format!r}; expected one of {LOG_FORMATS}")
    log_level = logging.getLevelName((level or settings.level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_render_chain(log_format),
        ],
    )
    _install_handler(formatter, log_level)

    chatty_level = logging.WARNING if log_level > logging.DEBUG else logging.NOTSET
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)

    structlog.contextvars.unbind_contextvars("component")
    if component:
        structlog.contextvars.bind_contextvars(component=component)
