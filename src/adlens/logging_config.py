# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. Terminal: ConsoleRenderer, supervised watch: JSONRenderer.

Leaf module, no adlens imports. Safe to call early in startup.

Modules keep using ``logging.getLogger(__name__)``; records are rendered
through structlog's ProcessorFormatter so the page bound with
``page_context()`` shows up on every line of a scan.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# httpx logs every request at INFO; media downloads would flood the console.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

_PAGE_KEYS = ("page_url", "locale")


def _drop_unset_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove page context keys bound as None (offline scans have no locale hint)."""
    for key in _PAGE_KEYS:
        if key in event_dict and event_dict[key] is None:
            del event_dict[key]
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _drop_unset_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _quiet_third_party(root_level: int) -> None:
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Install the bridge on the root logger.

    Args:
        json_output: True for JSON lines (``adlens watch`` under a supervisor),
            False for human-readable console output.
        level: Root logger level (default INFO); unknown names fall back to INFO.
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(root_level)
    _quiet_third_party(root_level)


def bind_page(url: str, *, locale: str = "") -> None:
    """Attach the page being scanned to every subsequent log line."""
    structlog.contextvars.bind_contextvars(page_url=url, locale=locale or None)


def unbind_page() -> None:
    structlog.contextvars.unbind_contextvars(*_PAGE_KEYS)


@contextmanager
def page_context(url: str, *, locale: str = "") -> Iterator[None]:
    """``bind_page`` for the duration of a block."""
    bind_page(url, locale=locale)
    try:
        yield
    finally:
        unbind_page()
