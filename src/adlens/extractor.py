# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Best-effort external reference (ad library link) for a card.

Ordered fallback chain, first success wins:
  1. "copy link" control whose address carries a 10–20 digit ``id`` param
  2. "Library ID" label followed by 10–20 digits
  3. any outbound link with a 10–20 digit ``id`` param
  4. "Library ID" label followed (loosely) by 13–20 digits
  5. first standalone 16-digit number in the visible text
  6. unique labeled id in an ancestor (label sometimes sits above the media)
  7. the page address itself, with a warning

Total: never raises, always returns a usable string. Only runs on user
action (save offer), never during a scan.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from urllib.parse import unquote

from lxml.html import HtmlElement

from .config import LIBRARY_BASE_URL
from .dom import element_label, inside_control, visible_text
from .i18n import COPY_LINK_LABELS, LIBRARY_ID_LABEL_PATTERNS, normalize_label

logger = logging.getLogger(__name__)

_ID_PARAM_RE = re.compile(r"[?&]id=(\d{10,20})(?!\d)")
_LABEL = "(?:" + "|".join(LIBRARY_ID_LABEL_PATTERNS) + ")"
_LABEL_STRICT_RE = re.compile(_LABEL + r"\s*[:：]?\s*(\d{10,20})(?!\d)", re.IGNORECASE)
_LABEL_LOOSE_RE = re.compile(_LABEL + r"\D{0,24}?(\d{13,20})(?!\d)", re.IGNORECASE)
_BARE_ID_RE = re.compile(r"(?<!\d)(\d{16})(?!\d)")

_ADDRESS_ATTRS = ("href", "data-href", "data-url", "data-clipboard-text", "data-link")
_COPY_LINK_XPATH = ".//a | .//button | .//*[@role='button'] | .//*[@role='menuitem']"
_COPY_LABELS = frozenset(COPY_LINK_LABELS)
_MAX_ANCESTOR_HOPS = 12


def build_reference(ad_id: str, base_url: str = LIBRARY_BASE_URL) -> str:
    return f"{base_url}?id={ad_id}"


def _id_from_address(address: str) -> str | None:
    for candidate in (address, unquote(address)):
        m = _ID_PARAM_RE.search(candidate)
        if m:
            return m.group(1)
    return None


def _from_copy_link(container: HtmlElement, text: str) -> str | None:
    for el in container.xpath(_COPY_LINK_XPATH):
        if inside_control(el) or normalize_label(element_label(el)) not in _COPY_LABELS:
            continue
        for attr in _ADDRESS_ATTRS:
            address = el.get(attr)
            if address and (ad_id := _id_from_address(address)):
                return ad_id
    return None


def _from_label(container: HtmlElement, text: str) -> str | None:
    m = _LABEL_STRICT_RE.search(text)
    return m.group(1) if m else None


def _from_outbound_link(container: HtmlElement, text: str) -> str | None:
    for link in container.iterdescendants("a"):
        href = link.get("href")
        if href and not inside_control(link) and (ad_id := _id_from_address(href)):
            return ad_id
    return None


def _from_loose_label(container: HtmlElement, text: str) -> str | None:
    m = _LABEL_LOOSE_RE.search(text)
    return m.group(1) if m else None


def _from_bare_number(container: HtmlElement, text: str) -> str | None:
    m = _BARE_ID_RE.search(text)
    return m.group(1) if m else None


def _from_ancestors(container: HtmlElement, text: str) -> str | None:
    """Walk up; accept only when the ancestor holds exactly one labeled id."""
    el = container.getparent()
    for _ in range(_MAX_ANCESTOR_HOPS):
        if el is None:
            return None
        ids = {m.group(1) for m in _LABEL_STRICT_RE.finditer(visible_text(el))}
        if len(ids) == 1:
            return ids.pop()
        if len(ids) > 1:
            return None  # ambiguous: the ancestor already spans several cards
        el = el.getparent()
    return None


_STRATEGIES: tuple[tuple[str, Callable[[HtmlElement, str], str | None]], ...] = (
    ("copy_link", _from_copy_link),
    ("label", _from_label),
    ("outbound_link", _from_outbound_link),
    ("loose_label", _from_loose_label),
    ("bare_number", _from_bare_number),
    ("ancestor_label", _from_ancestors),
)


def resolve_ad_id(container: HtmlElement) -> tuple[str, str] | None:
    """Return ``(ad_id, strategy)`` for the first strategy that succeeds."""
    try:
        text = visible_text(container)
    except Exception:
        logger.debug("Could not read card text", exc_info=True)
        text = ""
    for name, strategy in _STRATEGIES:
        try:
            ad_id = strategy(container, text)
        except Exception:
            logger.debug("Reference strategy %s failed", name, exc_info=True)
            continue
        if ad_id:
            return ad_id, name
    return None


def extract_reference(container: HtmlElement, page_url: str, *, base_url: str = LIBRARY_BASE_URL) -> str:
    """Canonical ad library link for *container*, or *page_url* as a last resort."""
    resolved = resolve_ad_id(container)
    if resolved is None:
        logger.warning("Could not extract a library id for this card; falling back to page URL")
        return page_url
    ad_id, strategy = resolved
    logger.debug("Library id %s found via %s", ad_id, strategy)
    return build_reference(ad_id, base_url)
