# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Heuristic ad card detection: marker labels + structural ascent.

The host page has no stable class names or ids. Cards are found by
anchoring on short localized UI labels ("See ad details", "Sponsored")
and walking up to the first ancestor that looks like a card:

  width > 250px, height > 300px, an <img>/<video> descendant,
  more than 50 characters of text, not inside an injected control.

Two passes (detail/summary labels, then sponsored labels) feed one
identity-deduplicated result, capped at ``MAX_CARDS_PER_BATCH``.
Pure functions over lxml; no exceptions escape.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from lxml.html import HtmlElement

from .dom import control_subtrees, has_media, inside_control, is_stamped, measure, visible_text
from .i18n import MARKERS, MarkerVocabulary, normalize_label

logger = logging.getLogger(__name__)

MAX_CARDS_PER_BATCH = 200
MAX_ASCENT = 12
MIN_CARD_WIDTH = 250
MIN_CARD_HEIGHT = 300
MIN_CARD_TEXT = 50

_MARKER_TAGS = ("span", "a")
# Marker labels are a few words; skip long text runs without normalizing them.
_MAX_MARKER_CHARS = 256


def iter_markers(root: HtmlElement, labels: frozenset[str]) -> Iterator[HtmlElement]:
    """Yield span/a elements whose normalized text equals one of *labels*."""
    for el in root.iter(*_MARKER_TAGS):
        text = visible_text(el)
        if not text or len(text) > _MAX_MARKER_CHARS:
            continue
        if normalize_label(text) in labels:
            yield el


def looks_like_card(el: HtmlElement) -> bool:
    width, height = measure(el)
    if width <= MIN_CARD_WIDTH or height <= MIN_CARD_HEIGHT:
        return False
    if not has_media(el):
        return False
    if len(visible_text(el)) <= MIN_CARD_TEXT:
        return False
    return not inside_control(el)


def find_card_container(marker: HtmlElement) -> HtmlElement | None:
    """Ascend at most MAX_ASCENT levels from *marker* to the first card-shaped ancestor."""
    parent = marker.getparent()
    for _ in range(MAX_ASCENT):
        if parent is None:
            return None
        if looks_like_card(parent):
            return parent
        parent = parent.getparent()
    return None


def detect(
    root: HtmlElement,
    *,
    limit: int = MAX_CARDS_PER_BATCH,
    vocabulary: MarkerVocabulary = MARKERS,
    accept: Callable[[HtmlElement], bool] | None = None,
) -> list[HtmlElement]:
    """Return candidate card containers under *root* (document order per pass).

    Containers rejected by *accept* are skipped before they count toward
    *limit*, so the ceiling bounds new cards per batch, not page coverage.
    """
    found: dict[HtmlElement, None] = {}
    rejected: set[HtmlElement] = set()
    try:
        for labels in vocabulary.passes:
            for marker in iter_markers(root, labels):
                if len(found) >= limit:
                    break
                card = find_card_container(marker)
                if card is None or card in found or card in rejected:
                    continue
                if accept is not None and not accept(card):
                    rejected.add(card)
                    continue
                found[card] = None
            if len(found) >= limit:
                logger.debug("Card batch ceiling reached (%d)", limit)
                break
    except Exception:
        logger.warning("Card detection aborted; returning partial result", exc_info=True)
    logger.debug("Found %d ad cards", len(found))
    return list(found)


def count_unprocessed(root: HtmlElement, *, vocabulary: MarkerVocabulary = MARKERS) -> int:
    """Count detail/summary-anchored cards that carry neither stamp nor controls.

    Used by the periodic reconciliation sweep; deliberately skips the
    sponsored pass to stay cheap.
    """
    seen: set[HtmlElement] = set()
    count = 0
    try:
        for marker in iter_markers(root, vocabulary.primary):
            card = find_card_container(marker)
            if card is None or card in seen:
                continue
            seen.add(card)
            if not is_stamped(card) and not control_subtrees(card):
                count += 1
    except Exception:
        logger.warning("Unprocessed-card count failed", exc_info=True)
    return count
