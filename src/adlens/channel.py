# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Background channel: the privileged side that downloads files and talks
to the offers API.

``send(action, payload)`` returns the reply dict (``{"success": ...}``) or
raises ``ChannelError`` when the transport itself is unavailable. Nothing
here retries; the caller surfaces the failure and re-enables the control.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

import httpx

from .errors import ChannelError
from .protocol import Action, DownloadRequest, SaveOfferRequest
from .settings import ACCESS_TOKEN, SettingsStore

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]

DEFAULT_TIMEOUT_S = 30.0


class BackgroundChannel(Protocol):
    async def send(self, action: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any] | None: ...


class LoopbackChannel:
    """In-process channel dispatching to registered async handlers.

    Handler exceptions become ``{"success": False, "error": str(exc)}``;
    unknown actions answer ``None`` (no listener). After ``close()`` every
    send raises ``ChannelError``, like a disconnected extension port.
    """

    def __init__(self, handlers: Mapping[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self._closed = False
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def register(self, action: str, handler: Handler) -> None:
        self._handlers[action] = handler

    def close(self) -> None:
        self._closed = True

    async def send(self, action: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        if self._closed:
            raise ChannelError(f"channel closed (action={action})")
        message = dict(payload or {})
        self.sent.append((action, message))
        handler = self._handlers.get(action)
        if handler is None:
            return None
        try:
            return await handler(message)
        except Exception as exc:
            logger.warning("Handler for %s failed: %s", action, exc)
            return {"success": False, "error": str(exc)}


class HttpBackgroundChannel:
    """httpx-backed channel.

    - ``download``: stream the media URL into ``download_dir``.
    - ``saveOffer``: POST ``{action, access_token, offer_name, ad_library_link}``
      to ``api_url`` with the stored access token.
    - ``updateStats``: no remote side; acknowledged locally.
    """

    def __init__(
        self,
        *,
        api_url: str = "",
        download_dir: str | Path = "FB_Ads",
        settings: SettingsStore | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._api_url = api_url
        self._download_dir = Path(download_dir)
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._closed = False

    async def aclose(self) -> None:
        self._closed = True
        if self._owns_client:
            await self._client.aclose()

    async def send(self, action: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        if self._closed:
            raise ChannelError(f"channel closed (action={action})")
        data = dict(payload or {})
        if action == Action.DOWNLOAD:
            return await self._download(DownloadRequest.model_validate(data))
        if action == Action.SAVE_OFFER:
            return await self._save_offer(SaveOfferRequest.model_validate(data))
        if action == Action.UPDATE_STATS:
            return {"success": True}
        logger.debug("No background handler for %s", action)
        return None

    async def _download(self, request: DownloadRequest) -> dict[str, Any]:
        target = self._download_dir / Path(request.filename).name
        try:
            async with self._client.stream("GET", request.url) as response:
                if response.status_code >= 400:
                    return {"success": False, "error": f"HTTP {response.status_code}"}
                written = await self._stream_to(response, target)
        except httpx.RequestError as exc:
            raise ChannelError(f"download request failed: {exc}") from exc
        except OSError as exc:
            return {"success": False, "error": str(exc)}
        logger.info("Downloaded %s (%d bytes)", target, written)
        return {"success": True}

    @staticmethod
    async def _stream_to(response: httpx.Response, target: Path) -> int:
        """Write the body chunk by chunk; a partial file is removed on failure."""
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        written = 0
        try:
            with target.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    await asyncio.to_thread(fh.write, chunk)
                    written += len(chunk)
        except BaseException:
            target.unlink(missing_ok=True)
            raise
        return written

    async def _save_offer(self, request: SaveOfferRequest) -> dict[str, Any]:
        if not self._api_url:
            return {"success": False, "error": "offers API not configured"}
        token = ""
        if self._settings is not None:
            token = (await self._settings.get([ACCESS_TOKEN])).get(ACCESS_TOKEN, "")
        if not token:
            return {"success": False, "error": "not logged in"}
        body = {
            "action": "save_offer",
            "access_token": token,
            "offer_name": request.offer_name,
            "ad_library_link": request.external_reference,
        }
        try:
            response = await self._client.post(self._api_url, json=body)
        except httpx.RequestError as exc:
            raise ChannelError(f"save offer request failed: {exc}") from exc
        try:
            reply = response.json()
        except ValueError:
            reply = None
        if not isinstance(reply, dict):
            return {"success": False, "error": f"HTTP {response.status_code}"}
        result: dict[str, Any] = {"success": bool(reply.get("success")) and response.status_code < 400}
        if reply.get("error"):
            result["error"] = str(reply["error"])
        elif not result["success"]:
            result["error"] = f"HTTP {response.status_code}"
        return result
