# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.context."""

from __future__ import annotations

from adlens.config import ScannerConfig
from adlens.context import ScanContext, get_context, init_context, reset_context


class TestScanContext:
    def test_get_creates_default(self):
        ctx = get_context()
        assert isinstance(ctx, ScanContext)
        assert get_context() is ctx

    def test_init_replaces_and_applies_visible_limit(self):
        first = get_context()
        ctx = init_context(ScannerConfig(visible_limit=20))
        assert ctx is not first
        assert ctx.filter_state.visible_limit == 20
        assert get_context() is ctx

    def test_reset(self):
        ctx = get_context()
        reset_context()
        assert get_context() is not ctx

    def test_logged_in_and_token_hidden_from_repr(self):
        ctx = ScanContext(access_token="secret-token", user_email="a@b.c")
        assert ctx.logged_in
        assert "secret-token" not in repr(ctx)
        assert not ScanContext().logged_in

    def test_independent_collections(self):
        a, b = ScanContext(), ScanContext()
        a.selection.add("c1")
        assert b.selection == set()
        assert a.tracker is not b.tracker
