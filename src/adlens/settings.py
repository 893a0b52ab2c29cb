# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Persistent settings store abstraction.

Writable keys: ``topicFilter`` (bool), ``minActiveCount`` (int).
Read-only from the page's point of view: ``accessToken``, ``userEmail``
(written by the login flow, outside this package).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from . import FilterState

logger = logging.getLogger(__name__)

TOPIC_FILTER = "topicFilter"
MIN_ACTIVE_COUNT = "minActiveCount"
ACCESS_TOKEN = "accessToken"
USER_EMAIL = "userEmail"

ALL_KEYS = (TOPIC_FILTER, MIN_ACTIVE_COUNT, ACCESS_TOKEN, USER_EMAIL)


class SettingsStore(Protocol):
    async def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, values: Mapping[str, Any]) -> None: ...


class MemorySettingsStore:
    """Dict-backed store; missing keys are simply absent from ``get()``."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: self._data[k] for k in keys if k in self._data}

    async def set(self, values: Mapping[str, Any]) -> None:
        self._data.update(values)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)


def filter_from_settings(values: Mapping[str, Any], base: FilterState) -> FilterState:
    """Apply stored filter keys onto *base*; malformed values are ignored."""
    topic_only = base.topic_only
    min_active = base.min_active_count
    if TOPIC_FILTER in values:
        topic_only = bool(values[TOPIC_FILTER])
    if MIN_ACTIVE_COUNT in values:
        try:
            min_active = max(int(values[MIN_ACTIVE_COUNT]), 0)
        except (TypeError, ValueError):
            logger.warning("Ignoring stored %s=%r", MIN_ACTIVE_COUNT, values[MIN_ACTIVE_COUNT])
    return FilterState(topic_only=topic_only, min_active_count=min_active, visible_limit=base.visible_limit)
