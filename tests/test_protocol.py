# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.protocol wire models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from adlens.protocol import (
    Action,
    ActionResponse,
    DownloadRequest,
    SaveOfferRequest,
    StatsPayload,
    UpdateFilterRequest,
    envelope,
    parse_response,
)


class TestStatsPayload:
    def test_wire_keys_are_camel_case(self):
        payload = StatsPayload(total=5, topic_matches=2, selected=1)
        assert payload.to_wire() == {"total": 5, "topicMatches": 2, "selected": 1}

    def test_accepts_wire_keys(self):
        assert StatsPayload.model_validate({"total": 1, "topicMatches": 1}).topic_matches == 1

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            StatsPayload(total=-1)


class TestRequests:
    @pytest.mark.parametrize("value", [True, False, 0, 5])
    def test_update_filter_values(self, value):
        assert UpdateFilterRequest.model_validate({"filter": "minActive", "value": value}).value == value

    def test_update_filter_unknown_filter(self):
        with pytest.raises(ValidationError):
            UpdateFilterRequest.model_validate({"filter": "whatever", "value": True})

    def test_save_offer_requires_name(self):
        with pytest.raises(ValidationError):
            SaveOfferRequest(offer_name="", external_reference="https://x")

    def test_save_offer_wire(self):
        req = SaveOfferRequest.model_validate({"offerName": "X", "externalReference": "R", "action": "saveOffer"})
        assert req.to_wire() == {"offerName": "X", "externalReference": "R"}

    def test_download_requires_url(self):
        with pytest.raises(ValidationError):
            DownloadRequest(url="", filename="a.jpg")


class TestEnvelope:
    def test_merges_payload(self):
        message = envelope(Action.DOWNLOAD, DownloadRequest(url="u", filename="f"))
        assert message == {"action": "download", "url": "u", "filename": "f"}

    def test_without_payload(self):
        assert envelope(Action.GET_STATS) == {"action": "getStats"}


class TestParseResponse:
    def test_missing_reply_is_failure(self):
        assert parse_response(None) == ActionResponse(success=False, error="no response")

    def test_success(self):
        assert parse_response({"success": True}).success is True

    def test_error_kept(self):
        assert parse_response({"success": False, "error": "x"}).error == "x"

    def test_reply_without_success_is_failure(self):
        assert parse_response({"ok": True}) == ActionResponse(success=False, error="malformed response")

    def test_non_mapping_reply_is_failure(self):
        assert parse_response("done").success is False
