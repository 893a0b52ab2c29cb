# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AdLens: ad card detection and control injection for ad-library pages.

Reconciliation loop over a host page that mutates without warning:
- detect: heuristic ascent from short localized labels to the card container
- classify: topic match (messaging-app ads by default) + active ad count
- mark: processed stamp + registry, controls injected exactly once
- project: filter/visibility over every processed card
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Card:
    """One detected ad container and its derived metadata."""

    unique_id: str
    processed: bool = True
    is_topic_match: bool = False
    active_count: int = 1
    selected: bool = False
    container: Any = field(default=None, compare=False, repr=False)  # lxml element, rebound per snapshot


@dataclass(frozen=True, slots=True)
class FilterState:
    """User filter settings; ``visible_limit`` only ever grows."""

    topic_only: bool = False
    min_active_count: int = 0
    visible_limit: int = 50


@dataclass(frozen=True, slots=True)
class Stats:
    """Derived counters, recomputed on every projection."""

    total: int = 0
    topic_matches: int = 0
    selected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "topicMatches": self.topic_matches, "selected": self.selected}
