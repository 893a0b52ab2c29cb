# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Message protocol between the page controller and its collaborators.

Wire keys are camelCase (``topicMatches``, ``offerName``); Python attributes
are snake_case. Every request carries an ``action``; responses from the
background channel are ``{"success": bool, "error"?: str}``.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Action(StrEnum):
    # popup -> page
    GET_STATS = "getStats"
    UPDATE_FILTER = "updateFilter"
    SELECT_ALL = "selectAll"
    USER_LOGGED_IN = "userLoggedIn"
    USER_LOGGED_OUT = "userLoggedOut"
    FORCE_INJECT = "forceInject"
    # page -> background
    SAVE_OFFER = "saveOffer"
    DOWNLOAD = "download"
    # page -> popup (fire-and-forget)
    UPDATE_STATS = "updateStats"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class StatsPayload(_WireModel):
    """Counters reported to the popup."""

    total: int = Field(0, ge=0)
    topic_matches: int = Field(0, ge=0, alias="topicMatches")
    selected: int = Field(0, ge=0)


class UpdateFilterRequest(_WireModel):
    filter: Literal["topic", "minActive"]
    value: bool | int


class UserLoggedInRequest(_WireModel):
    email: str = ""


class SaveOfferRequest(_WireModel):
    """Save one card as an offer under *offer_name*."""

    offer_name: str = Field(min_length=1, alias="offerName")
    external_reference: str = Field(min_length=1, alias="externalReference")


class DownloadRequest(_WireModel):
    url: str = Field(min_length=1)
    filename: str = Field(min_length=1)


class ActionResponse(_WireModel):
    success: bool
    error: str | None = None


def envelope(action: Action, payload: BaseModel | None = None) -> dict[str, Any]:
    """Merge *payload* into a ``{"action": ...}`` message."""
    message: dict[str, Any] = {"action": str(action)}
    if payload is not None:
        data = payload.to_wire() if isinstance(payload, _WireModel) else payload.model_dump()
        message.update(data)
    return message


def parse_response(raw: Any) -> ActionResponse:
    """Normalize a channel reply; a missing or malformed reply counts as failure."""
    if raw is None:
        return ActionResponse(success=False, error="no response")
    try:
        return ActionResponse.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Malformed channel reply %r: %s", raw, exc.errors())
        return ActionResponse(success=False, error="malformed response")
