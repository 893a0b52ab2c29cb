# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Topic classifier: OR across four independent signal classes.

  1. keyword   – literal substring of the lowercased visible text
  2. link      – outbound href matches a known redirect shape
  3. phone     – keyword token followed closely by a local phone number
  4. cta       – call-to-action phrase in links/buttons only

Any signal ⇒ match. There are no negative rules: classification is
monotonic in evidence. Evaluated once per card; the caller caches the
result on the Card and the container stamp.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote

from lxml.html import HtmlElement

from .dom import inside_control, visible_text
from .i18n import ACTIVE_COUNT_PATTERNS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TopicProfile:
    """Evidence vocabulary for one topic."""

    name: str
    keywords: tuple[str, ...]  # lowercase literals
    url_patterns: tuple[re.Pattern[str], ...]
    phone_pattern: re.Pattern[str]
    cta_phrases: tuple[str, ...]  # lowercase literals


WHATSAPP = TopicProfile(
    name="whatsapp",
    keywords=(
        "whatsapp",
        "whats app",
        "wpp:",
        "zap:",
        "pelo zap",
        "no zap",
        "chama no zap",
    ),
    url_patterns=(
        re.compile(r"wa\.me/", re.IGNORECASE),
        re.compile(r"api\.whatsapp\.com", re.IGNORECASE),
        re.compile(r"wa\.link/", re.IGNORECASE),
        re.compile(r"whatsapp\.com/send", re.IGNORECASE),
        re.compile(r"l\.wl\.co/", re.IGNORECASE),
    ),
    # keyword, up to 3 separators, then (DD) DDDD[D]-DDDD
    phone_pattern=re.compile(
        r"(?:whatsapp|wpp|zap|whats)[\s:]{0,3}\(?\d{2}\)?[\s.-]?\d{4,5}[\s.-]?\d{4}",
        re.IGNORECASE,
    ),
    cta_phrases=(
        "enviar mensagem no whatsapp",
        "falar no whatsapp",
        "chamar no whatsapp",
        "contato whatsapp",
        "fale pelo whatsapp",
        "chame no whatsapp",
        "whatsapp",
    ),
)

_INTERACTIVE_XPATH = ".//a | .//button | .//*[@role='button']"
_ACTIVE_COUNT_RES = tuple(re.compile(p, re.IGNORECASE) for p in ACTIVE_COUNT_PATTERNS)


def _interactive(container: HtmlElement) -> list[HtmlElement]:
    return [el for el in container.xpath(_INTERACTIVE_XPATH) if not inside_control(el)]


def _keyword_signal(text: str, profile: TopicProfile) -> bool:
    return any(k in text for k in profile.keywords)


def _link_signal(container: HtmlElement, profile: TopicProfile) -> bool:
    for link in container.iterdescendants("a"):
        href = link.get("href")
        if not href or inside_control(link):
            continue
        # Host wraps outbound links in a redirector with the target percent-encoded.
        candidates = (href, unquote(href))
        if any(p.search(c) for p in profile.url_patterns for c in candidates):
            return True
    return False


def _phone_signal(text: str, profile: TopicProfile) -> bool:
    return profile.phone_pattern.search(text) is not None


def _cta_signal(container: HtmlElement, profile: TopicProfile) -> bool:
    for el in _interactive(container):
        label = visible_text(el).strip().lower()
        if label and any(phrase in label for phrase in profile.cta_phrases):
            return True
    return False


def matched_signal(container: HtmlElement, profile: TopicProfile = WHATSAPP) -> str | None:
    """Name of the first signal class that fires, or None."""
    try:
        text = visible_text(container).lower()
        if _keyword_signal(text, profile):
            return "keyword"
        if _link_signal(container, profile):
            return "link"
        if _phone_signal(text, profile):
            return "phone"
        if _cta_signal(container, profile):
            return "cta"
    except Exception:
        logger.debug("Classification failed; treating as no match", exc_info=True)
    return None


def classify(container: HtmlElement, profile: TopicProfile = WHATSAPP) -> bool:
    signal = matched_signal(container, profile)
    if signal is not None:
        logger.debug("Topic %s matched via %s signal", profile.name, signal)
    return signal is not None


def active_ads_count(container: HtmlElement) -> int:
    """Number of ads sharing this creative ("3 anúncios usam…"); defaults to 1."""
    try:
        text = visible_text(container)
    except Exception:
        return 1
    for pattern in _ACTIVE_COUNT_RES:
        m = pattern.search(text)
        if m:
            return int(m.group(1)) or 1
    return 1
