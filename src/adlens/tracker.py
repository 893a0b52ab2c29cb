# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Idempotency & dedup tracking for processed card containers.

Two-phase mark: a persistent ``data-adlens-processed`` stamp on the
container plus an entry in the in-process registry. Stamping and control
injection are not atomic across overlapping scan triggers, so "already
handled" means stamp OR existing control subtree, and
``cleanup_duplicates()`` trims any container that still ended up with more
than one control subtree. The cleanup pass is the safety net, not an
optional optimisation.

NOTE: single cooperative thread; this class is NOT thread-safe.
"""

from __future__ import annotations

import logging
import uuid

from lxml.html import HtmlElement

from . import Card
from .dom import (
    ACTIVE_ATTR,
    CARD_ID_ATTR,
    PROCESSED_ATTR,
    TOPIC_ATTR,
    PageDocument,
    control_subtrees,
    is_stamped,
    owned_controls,
)

logger = logging.getLogger(__name__)


def new_card_id() -> str:
    return f"adlens-card-{uuid.uuid4().hex[:12]}"


class DedupTracker:
    """Registry of processed cards keyed by ``unique_id``, in document order."""

    def __init__(self) -> None:
        self._cards: dict[str, Card] = {}

    def __len__(self) -> int:
        return len(self._cards)

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._cards

    def get(self, card_id: str) -> Card | None:
        return self._cards.get(card_id)

    def cards(self) -> list[Card]:
        return list(self._cards.values())

    def reset(self) -> None:
        self._cards.clear()

    # -- scan phases ------------------------------------------------------

    @staticmethod
    def is_new(container: HtmlElement) -> bool:
        return not is_stamped(container) and not control_subtrees(container)

    def mark_processed(self, document: PageDocument, container: HtmlElement, card: Card) -> None:
        """Stamp *container* and register *card* (controls are injected by the caller)."""
        document.stamp(
            container,
            {
                PROCESSED_ATTR: "true",
                CARD_ID_ATTR: card.unique_id,
                TOPIC_ATTR: "true" if card.is_topic_match else "false",
                ACTIVE_ATTR: str(card.active_count),
            },
        )
        card.processed = True
        card.container = container
        self._cards[card.unique_id] = card

    def cleanup_duplicates(self, document: PageDocument) -> int:
        """Keep only the first control subtree (document order) in every stamped container."""
        removed = 0
        stamped = [el for el in document.root.iter() if isinstance(el.tag, str) and is_stamped(el)]
        for container in stamped:
            extra = owned_controls(container)[1:]
            for control in extra:
                document.remove(control)
                removed += 1
        if removed:
            logger.info("Cleaned up %d duplicate control containers", removed)
        return removed

    def rebind(self, root: HtmlElement) -> list[str]:
        """Re-resolve containers from stamped ids; drop cards whose container vanished.

        Rebuilds the registry in document order. Returns the vanished ids.
        """
        rebound: dict[str, Card] = {}
        for el in root.iterdescendants():
            card_id = el.get(CARD_ID_ATTR)
            if card_id is None or card_id in rebound:
                continue
            card = self._cards.get(card_id)
            if card is None:
                card = _card_from_stamp(el, card_id)
            card.container = el
            rebound[card_id] = card
        vanished = [cid for cid in self._cards if cid not in rebound]
        if vanished:
            logger.debug("%d cards vanished from the page", len(vanished))
        self._cards = rebound
        return vanished


def _card_from_stamp(el: HtmlElement, card_id: str) -> Card:
    """Rebuild a Card from container attributes (e.g. after a context reset)."""
    try:
        active = int(el.get(ACTIVE_ATTR) or "1")
    except ValueError:
        active = 1
    return Card(
        unique_id=card_id,
        processed=is_stamped(el),
        is_topic_match=el.get(TOPIC_ATTR) == "true",
        active_count=active,
    )
