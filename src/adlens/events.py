# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DOM mutation event source abstraction.

The scheduler only needs ``on_change(callback)``. The live page feeds it
from a MutationObserver binding; tests use ``SyntheticMutationSource``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

# Added nodes shorter than this are ignored (spinners, tooltips, badges).
NEW_CONTENT_MIN_HEIGHT = 100


@dataclass(frozen=True, slots=True)
class MutationRecord:
    """One observed childList mutation, reduced to what the scheduler needs."""

    added_heights: tuple[float, ...] = ()

    @property
    def has_new_content(self) -> bool:
        return any(h > NEW_CONTENT_MIN_HEIGHT for h in self.added_heights)


MutationCallback = Callable[[Sequence[MutationRecord]], object]


class MutationSource(Protocol):
    def on_change(self, callback: MutationCallback) -> None: ...


class SyntheticMutationSource:
    """In-process event feed for tests and offline runs."""

    def __init__(self) -> None:
        self._callbacks: list[MutationCallback] = []

    def on_change(self, callback: MutationCallback) -> None:
        self._callbacks.append(callback)

    def emit(self, *records: MutationRecord) -> list[object]:
        """Deliver one batch to every subscriber; returns their results."""
        batch = tuple(records) or (MutationRecord(),)
        return [cb(batch) for cb in self._callbacks]

    def emit_added(self, height: float = 400.0) -> list[object]:
        return self.emit(MutationRecord(added_heights=(height,)))
