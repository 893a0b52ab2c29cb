# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.events."""

from __future__ import annotations

from adlens.events import NEW_CONTENT_MIN_HEIGHT, MutationRecord, SyntheticMutationSource


class TestMutationRecord:
    def test_new_content_threshold(self):
        assert not MutationRecord(added_heights=(NEW_CONTENT_MIN_HEIGHT,)).has_new_content
        assert MutationRecord(added_heights=(20.0, NEW_CONTENT_MIN_HEIGHT + 1)).has_new_content
        assert not MutationRecord().has_new_content


class TestSyntheticSource:
    def test_fan_out(self):
        source = SyntheticMutationSource()
        seen: list = []
        source.on_change(lambda batch: seen.append(batch) or "a")
        source.on_change(lambda batch: "b")
        assert source.emit_added(250.0) == ["a", "b"]
        assert seen == [(MutationRecord(added_heights=(250.0,)),)]

    def test_empty_emit_sends_blank_record(self):
        source = SyntheticMutationSource()
        seen: list = []
        source.on_change(seen.append)
        source.emit()
        assert seen == [(MutationRecord(),)]

    def test_no_subscribers(self):
        assert SyntheticMutationSource().emit_added() == []
