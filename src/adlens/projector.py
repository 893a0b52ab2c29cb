# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Filter & visibility projection over the processed-card registry.

``project()`` is pure and idempotent: topic-only, then minimum active
count, then truncation at ``visible_limit``. Cards past the cap stay
mounted with their controls; only their visibility flips.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from . import Card, FilterState, Stats
from .dom import PageDocument, is_hidden

logger = logging.getLogger(__name__)

DEFAULT_VISIBLE_LIMIT = 50
LOAD_MORE_STEP = 30


@dataclass(frozen=True, slots=True)
class Projection:
    """Result of one projection pass."""

    visible_ids: tuple[str, ...]
    hidden_ids: tuple[str, ...]
    available: int  # cards passing the filters, before the cap
    stats: Stats

    @property
    def shown(self) -> int:
        return len(self.visible_ids)

    @property
    def remaining(self) -> int:
        return self.available - self.shown


def _passes(card: Card, filter_state: FilterState) -> bool:
    if filter_state.topic_only and not card.is_topic_match:
        return False
    return not (filter_state.min_active_count > 0 and card.active_count < filter_state.min_active_count)


def project(cards: Iterable[Card], filter_state: FilterState, *, selected: int = 0) -> Projection:
    """Compute visible/hidden ids and stats for *cards* in their given order."""
    hidden: list[str] = []
    qualifying: list[str] = []
    total = 0
    topic_matches = 0
    for card in cards:
        if not card.processed:
            hidden.append(card.unique_id)
            continue
        total += 1
        if not _passes(card, filter_state):
            hidden.append(card.unique_id)
            continue
        qualifying.append(card.unique_id)
        if card.is_topic_match:
            topic_matches += 1

    limit = max(filter_state.visible_limit, 0)
    visible = qualifying[:limit]
    hidden.extend(qualifying[limit:])
    return Projection(
        visible_ids=tuple(visible),
        hidden_ids=tuple(hidden),
        available=len(qualifying),
        stats=Stats(total=total, topic_matches=topic_matches, selected=selected),
    )


def load_more(filter_state: FilterState, step: int = LOAD_MORE_STEP) -> FilterState:
    """Raise the visible cap by one step. Never lowers it."""
    return dataclasses.replace(filter_state, visible_limit=filter_state.visible_limit + max(step, 0))


def apply_projection(document: PageDocument, cards: Iterable[Card], projection: Projection) -> int:
    """Flip container visibility to match *projection*; returns the number of flips."""
    visible = set(projection.visible_ids)
    flips = 0
    for card in cards:
        if card.container is None:
            continue
        want_visible = card.unique_id in visible
        if is_hidden(card.container) != (not want_visible):
            document.set_visible(card.container, want_visible)
            flips += 1
    if flips:
        logger.debug("Visibility changed on %d cards", flips)
    return flips
