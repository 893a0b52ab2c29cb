# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DOM layer over lxml: layout reads, visible text, injected control markup.

``PageDocument`` wraps a parsed page and records every mutation a scan makes
as a ``DomPatch``. Offline the lxml tree *is* the page and patches are just
drained; live, ``browser_bridge.LivePage.commit()`` replays them on the real
elements via the ``data-adlens-ref`` index written at snapshot time.
"""

from __future__ import annotations

import html as _html
import logging
import re
from dataclasses import dataclass, field
from itertools import chain
from typing import Any

import lxml.html
from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Attribute / class names shared with the live bridge JS
# ---------------------------------------------------------------------------

PROCESSED_ATTR = "data-adlens-processed"
CARD_ID_ATTR = "data-adlens-id"
TOPIC_ATTR = "data-adlens-topic"
ACTIVE_ATTR = "data-adlens-active"
REF_ATTR = "data-adlens-ref"
WIDTH_ATTR = "data-adlens-w"
HEIGHT_ATTR = "data-adlens-h"
NATURAL_WIDTH_ATTR = "data-adlens-nw"
NATURAL_HEIGHT_ATTR = "data-adlens-nh"
RESOLVED_SRC_ATTR = "data-adlens-src"

CONTROL_CLASS = "adlens-actions"
HIDDEN_CLASS = "adlens-hidden"
TOPIC_CLASS = "adlens-topic-highlight"

_SKIP_TEXT_TAGS = frozenset({"script", "style", "noscript", "template"})
_STYLE_PX_RE = re.compile(r"(?<![-\w])(width|height)\s*:\s*([\d.]+)px", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Read helpers (pure)
# ---------------------------------------------------------------------------


def has_class(el: HtmlElement, name: str) -> bool:
    return name in (el.get("class") or "").split()


def is_control(el: HtmlElement) -> bool:
    """True for the root of an injected control subtree."""
    return isinstance(el.tag, str) and has_class(el, CONTROL_CLASS)


def inside_control(el: HtmlElement) -> bool:
    """True if *el* is, or is nested inside, an injected control subtree."""
    return any(is_control(a) for a in chain((el,), el.iterancestors()))


def control_subtrees(el: HtmlElement) -> list[HtmlElement]:
    """Injected control roots below *el*, in document order."""
    return [d for d in el.iterdescendants() if is_control(d)]


def is_stamped(el: HtmlElement) -> bool:
    return el.get(PROCESSED_ATTR) == "true"


def owned_controls(container: HtmlElement) -> list[HtmlElement]:
    """Control roots whose nearest stamped ancestor is *container* (nested cards excluded)."""
    owned = []
    for control in control_subtrees(container):
        owner = next((a for a in control.iterancestors() if is_stamped(a)), None)
        if owner is container or owner is None:
            owned.append(control)
    return owned


def is_hidden(el: HtmlElement) -> bool:
    return has_class(el, HIDDEN_CLASS)


def has_media(el: HtmlElement) -> bool:
    return next(el.iterdescendants("img", "video"), None) is not None


def _attr_float(el: HtmlElement, name: str) -> float | None:
    raw = el.get(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def measure(el: HtmlElement) -> tuple[float, float]:
    """Rendered (width, height) in px.

    Live snapshots carry ``data-adlens-w/h`` (offsetWidth/offsetHeight).
    Static documents fall back to inline ``style`` px values; anything
    else measures as 0x0 and never qualifies as a card.
    """
    width = _attr_float(el, WIDTH_ATTR)
    height = _attr_float(el, HEIGHT_ATTR)
    if width is not None and height is not None:
        return width, height
    style = el.get("style") or ""
    dims = {k.lower(): float(v) for k, v in _STYLE_PX_RE.findall(style)}
    return (
        width if width is not None else dims.get("width", 0.0),
        height if height is not None else dims.get("height", 0.0),
    )


def natural_size(img: HtmlElement) -> tuple[float, float]:
    """Intrinsic image size: snapshot attributes, then width/height attributes."""
    w = _attr_float(img, NATURAL_WIDTH_ATTR)
    h = _attr_float(img, NATURAL_HEIGHT_ATTR)
    if w is None:
        w = _attr_float(img, "width") or 0.0
    if h is None:
        h = _attr_float(img, "height") or 0.0
    return w, h


def visible_text(el: HtmlElement) -> str:
    """textContent minus script/style and injected controls.

    Iterative walk; host feeds nest deeper than the recursion limit.
    """
    if not isinstance(el.tag, str) or el.tag in _SKIP_TEXT_TAGS or is_control(el):
        return ""
    parts: list[str] = []
    stack: list[Any] = [el]
    while stack:
        node = stack.pop()
        if isinstance(node, str):
            parts.append(node)
            continue
        if not isinstance(node.tag, str) or node.tag in _SKIP_TEXT_TAGS or is_control(node):
            continue
        if node.text:
            parts.append(node.text)
        for child in reversed(node):
            if child.tail:
                stack.append(child.tail)
            stack.append(child)
    return "".join(parts)


def element_label(el: HtmlElement) -> str:
    """Accessible-ish label: aria-label, else visible text."""
    return el.get("aria-label") or visible_text(el)


def find_control_button(container: HtmlElement, action: str) -> HtmlElement | None:
    for control in owned_controls(container):
        for btn in control.iterdescendants():
            if btn.get("data-action") == action:
                return btn
    return None


# ---------------------------------------------------------------------------
# Control subtree markup
# ---------------------------------------------------------------------------


def build_controls(
    card_id: str,
    *,
    topic_match: bool,
    label_download: str,
    label_save: str,
    label_select: str,
    label_badge: str,
) -> HtmlElement:
    """Build the per-card control subtree (download, save, select, badge)."""
    cid = _html.escape(card_id, quote=True)
    badge = f'<span class="adlens-topic-badge">{_html.escape(label_badge)}</span>' if topic_match else ""
    markup = (
        f'<div class="{CONTROL_CLASS}">'
        f'<button type="button" class="adlens-btn adlens-btn-download" data-action="download" '
        f'data-card-id="{cid}">{_html.escape(label_download)}</button>'
        f'<button type="button" class="adlens-btn adlens-btn-save" data-action="save" '
        f'data-card-id="{cid}">{_html.escape(label_save)}</button>'
        f'<label class="adlens-checkbox-label"><input type="checkbox" class="adlens-checkbox" '
        f'data-action="select" data-card-id="{cid}">{_html.escape(label_select)}</label>'
        f"{badge}"
        "</div>"
    )
    return lxml.html.fragment_fromstring(markup)


# ---------------------------------------------------------------------------
# PageDocument + patch log
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DomPatch:
    """One mutation to replay on the live page."""

    op: str  # "stamp" | "add_class" | "inject" | "remove" | "visibility" | "busy" | "checked"
    ref: str | None  # data-adlens-ref of the target; None for offline-only trees
    data: dict = field(default_factory=dict)

    def to_wire(self) -> dict:
        return {"op": self.op, "ref": int(self.ref) if self.ref is not None else None, **self.data}


class PageDocument:
    """A parsed page plus the patch log of everything the scan changed."""

    def __init__(self, root: HtmlElement, url: str = "") -> None:
        self.root = root
        self.url = url
        self._patches: list[DomPatch] = []

    @property
    def lang(self) -> str:
        return self.root.get("lang") or ""

    @property
    def patches(self) -> tuple[DomPatch, ...]:
        return tuple(self._patches)

    def drain_patches(self) -> list[DomPatch]:
        patches, self._patches = self._patches, []
        return patches

    def _record(self, op: str, el: HtmlElement, **data: Any) -> None:
        self._patches.append(DomPatch(op=op, ref=el.get(REF_ATTR), data=data))

    def stamp(self, el: HtmlElement, attrs: dict[str, str]) -> None:
        for key, value in attrs.items():
            el.set(key, value)
        self._record("stamp", el, attrs=dict(attrs))

    def add_class(self, el: HtmlElement, name: str) -> None:
        if not has_class(el, name):
            el.set("class", f"{el.get('class') or ''} {name}".strip())
        self._record("add_class", el, name=name)

    def inject(self, container: HtmlElement, subtree: HtmlElement) -> None:
        container.append(subtree)
        self._record("inject", container, html=lxml.html.tostring(subtree, encoding="unicode"))

    def remove(self, el: HtmlElement) -> None:
        self._record("remove", el)
        el.drop_tree()  # keeps tail text attached to the previous node

    def set_visible(self, el: HtmlElement, visible: bool) -> None:
        classes = [c for c in (el.get("class") or "").split() if c != HIDDEN_CLASS]
        if not visible:
            classes.append(HIDDEN_CLASS)
        if classes:
            el.set("class", " ".join(classes))
        elif "class" in el.attrib:
            del el.attrib["class"]
        self._record("visibility", el, visible=visible)

    # Control elements are addressed by card id + action as well: controls
    # injected after the last snapshot have no ref yet.

    def set_busy(self, el: HtmlElement, busy: bool) -> None:
        if busy:
            el.set("disabled", "disabled")
        elif "disabled" in el.attrib:
            del el.attrib["disabled"]
        self._record("busy", el, busy=busy, card_id=el.get("data-card-id"), action=el.get("data-action"))

    def set_checked(self, el: HtmlElement, checked: bool) -> None:
        if checked:
            el.set("checked", "checked")
        elif "checked" in el.attrib:
            del el.attrib["checked"]
        self._record("checked", el, checked=checked, card_id=el.get("data-card-id"), action=el.get("data-action"))


def parse_document(html: str, url: str = "") -> PageDocument:
    """Parse a full HTML document into a PageDocument."""
    root = lxml.html.document_fromstring(html)
    return PageDocument(root, url=url)
