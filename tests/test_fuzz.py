# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Property-based fuzz tests using Hypothesis.

Verifies invariants hold for arbitrary inputs across the projector,
classifier, extractor and label normalization.
"""

from __future__ import annotations

import html

import lxml.html
import pytest
from hypothesis import HealthCheck, example, given, settings
from hypothesis import strategies as st

from adlens import Card, FilterState
from adlens.classifier import active_ads_count, classify
from adlens.config import LIBRARY_BASE_URL
from adlens.extractor import extract_reference
from adlens.i18n import normalize_label
from adlens.projector import load_more, project

# ---------------------------------------------------------------------------
# Module-level strategies
# ---------------------------------------------------------------------------

# lxml rejects control characters and surrogates in text nodes.
CARD_TEXT = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc", "Cn")),
    min_size=0,
    max_size=800,
)

CARDS = st.lists(
    st.builds(
        Card,
        unique_id=st.uuids().map(str),
        processed=st.booleans(),
        is_topic_match=st.booleans(),
        active_count=st.integers(0, 50),
    ),
    max_size=150,
    unique_by=lambda c: c.unique_id,
)

FILTERS = st.builds(
    FilterState,
    topic_only=st.booleans(),
    min_active_count=st.integers(0, 20),
    visible_limit=st.integers(1, 200),
)

PAGE_URL = "https://www.facebook.com/ads/library/?q=curso"

# ---------------------------------------------------------------------------
# Shared settings
# ---------------------------------------------------------------------------

_fuzz_settings = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)


def _container(text: str) -> lxml.html.HtmlElement:
    return lxml.html.fragment_fromstring(f"<div><p>{html.escape(text)}</p></div>")


# ---------------------------------------------------------------------------
# TestFuzzProjector
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzProjector:
    """Property-based tests for the filter/visibility projector."""

    @_fuzz_settings
    @given(cards=CARDS, filter_state=FILTERS)
    def test_partition_and_cap(self, cards: list[Card], filter_state: FilterState) -> None:
        result = project(cards, filter_state)
        assert result.shown <= filter_state.visible_limit
        assert set(result.visible_ids) | set(result.hidden_ids) == {c.unique_id for c in cards}
        assert not set(result.visible_ids) & set(result.hidden_ids)
        assert result.available >= result.shown
        assert result.stats.total == sum(1 for c in cards if c.processed)

    @_fuzz_settings
    @given(cards=CARDS, filter_state=FILTERS)
    def test_visible_keeps_document_order(self, cards: list[Card], filter_state: FilterState) -> None:
        order = [c.unique_id for c in cards]
        visible = list(project(cards, filter_state).visible_ids)
        assert visible == [cid for cid in order if cid in set(visible)]

    @_fuzz_settings
    @given(filter_state=FILTERS, step=st.integers(-100, 100))
    def test_load_more_never_lowers_limit(self, filter_state: FilterState, step: int) -> None:
        assert load_more(filter_state, step=step).visible_limit >= filter_state.visible_limit


# ---------------------------------------------------------------------------
# TestFuzzCardReaders
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzCardReaders:
    """Classifier and extractor are total over arbitrary card text."""

    @_fuzz_settings
    @given(text=CARD_TEXT)
    @example("WhatsApp: (11) 98765-4321")
    @example("12 anúncios usam esse criativo")
    def test_classifier_total(self, text: str) -> None:
        container = _container(text)
        assert isinstance(classify(container), bool)
        assert active_ads_count(container) >= 0

    @_fuzz_settings
    @given(text=CARD_TEXT)
    @example("Identificação da biblioteca: 1234567890123")
    @example("1234567890123456")
    def test_reference_always_usable(self, text: str) -> None:
        reference = extract_reference(_container(text), PAGE_URL)
        assert reference == PAGE_URL or reference.startswith(f"{LIBRARY_BASE_URL}?id=")


# ---------------------------------------------------------------------------
# TestFuzzLabels
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzLabels:
    @_fuzz_settings
    @given(text=st.text(max_size=300))
    def test_normalize_idempotent(self, text: str) -> None:
        once = normalize_label(text)
        assert normalize_label(once) == once
        assert once == once.strip()
