# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page controller: wires detection, dedup, classification, injection and
projection into one scan, and serves the message protocol.

Scan pipeline (``run_scan``)::

    snapshot -> cleanup duplicates -> detect -> for each new container:
    classify + mark + inject -> rebind registry -> repair bare cards ->
    project -> apply visibility -> commit -> publish stats

Every snapshot-to-commit span holds ``_dom_lock``: the live bridge re-numbers
element refs on each snapshot, so two interleaved spans would replay patches
onto the wrong elements.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError

from . import Card, FilterState
from .channel import BackgroundChannel
from .classifier import WHATSAPP, TopicProfile, active_ads_count, classify
from .context import ScanContext, get_context
from .detector import count_unprocessed as _count_unprocessed
from .detector import detect
from .dom import TOPIC_CLASS, DomPatch, PageDocument, build_controls, find_control_button, owned_controls
from .errors import ChannelError
from .events import MutationSource
from .extractor import extract_reference
from .i18n import LocaleConfig, get_locale
from .media import find_media, media_filename
from .projector import Projection, apply_projection, load_more, project
from .protocol import (
    Action,
    DownloadRequest,
    SaveOfferRequest,
    StatsPayload,
    UpdateFilterRequest,
    UserLoggedInRequest,
    parse_response,
)
from .scheduler import ScanScheduler
from .settings import (
    ACCESS_TOKEN,
    ALL_KEYS,
    MIN_ACTIVE_COUNT,
    TOPIC_FILTER,
    USER_EMAIL,
    MemorySettingsStore,
    SettingsStore,
    filter_from_settings,
)
from .tracker import DedupTracker, new_card_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], object]


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class PageSource(Protocol):
    async def snapshot(self) -> PageDocument: ...

    async def commit(self, patches: list[DomPatch]) -> None: ...


class Notifier(Protocol):
    def notify(self, message: str, level: str = "info") -> None: ...


class StaticPage:
    """Offline page: the lxml tree is the page, commits are only recorded."""

    def __init__(self, document: PageDocument) -> None:
        self.document = document
        self.committed: list[DomPatch] = []

    async def snapshot(self) -> PageDocument:
        return self.document

    async def commit(self, patches: list[DomPatch]) -> None:
        self.committed.extend(patches)


class LogNotifier:
    """Toast stand-in: logs every message and keeps the history."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((level, message))
        log = logger.warning if level == "error" else logger.info
        log("[%s] %s", level, message)


@dataclasses.dataclass(frozen=True, slots=True)
class ScanReport:
    """Outcome of one ``run_scan``."""

    detected: int  # new containers found by this scan
    injected: int
    repaired: int
    duplicates_removed: int
    vanished: int
    projection: Projection

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected": self.detected,
            "injected": self.injected,
            "repaired": self.repaired,
            "duplicatesRemoved": self.duplicates_removed,
            "vanished": self.vanished,
            "visible": self.projection.shown,
            "available": self.projection.available,
            "stats": self.projection.stats.to_dict(),
        }


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class AdLensController:
    """Owns one page session: scans, selection, filters and user actions."""

    def __init__(
        self,
        source: PageSource,
        *,
        channel: BackgroundChannel,
        settings: SettingsStore | None = None,
        notifier: Notifier | None = None,
        context: ScanContext | None = None,
        profile: TopicProfile = WHATSAPP,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.channel = channel
        self.settings = settings if settings is not None else MemorySettingsStore()
        self.notifier = notifier if notifier is not None else LogNotifier()
        self.ctx = context if context is not None else get_context()
        self.profile = profile
        self.locale: LocaleConfig = get_locale(self.ctx.config.locale)
        self._wall_clock = wall_clock
        self._dom_lock = asyncio.Lock()
        self._document: PageDocument | None = None
        self._background: set[asyncio.Task] = set()
        self.scheduler = ScanScheduler(
            self.run_scan,
            count_unprocessed=self.count_unprocessed,
            cleanup=self.cleanup,
            config=self.ctx.config,
            state=self.ctx.scan_state,
            budget=self.ctx.budget,
            clock=clock,
        )

    @property
    def tracker(self) -> DedupTracker:
        return self.ctx.tracker

    @property
    def document(self) -> PageDocument | None:
        return self._document

    # -- lifecycle --------------------------------------------------------

    async def load_settings(self) -> None:
        """Restore persisted filters and login state."""
        values = await self.settings.get(ALL_KEYS)
        self.ctx.filter_state = filter_from_settings(values, self.ctx.filter_state)
        self.ctx.access_token = str(values.get(ACCESS_TOKEN) or "")
        self.ctx.user_email = str(values.get(USER_EMAIL) or "")
        logger.debug(
            "Settings loaded (topic_only=%s, min_active=%d, logged_in=%s)",
            self.ctx.filter_state.topic_only,
            self.ctx.filter_state.min_active_count,
            self.ctx.logged_in,
        )

    async def start(self, events: MutationSource | None = None) -> None:
        await self.load_settings()
        if events is not None:
            events.on_change(self.scheduler.on_mutation)
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

    # -- scan -------------------------------------------------------------

    async def run_scan(self) -> ScanReport:
        """One full reconciliation pass. Called through the scheduler gate."""
        async with self._dom_lock:
            document = await self.source.snapshot()
            self._document = document
            removed = self.tracker.cleanup_duplicates(document)
            containers = detect(
                document.root,
                limit=self.ctx.config.max_cards_per_batch,
                accept=DedupTracker.is_new,
            )
            injected = 0
            for container in containers:
                card = Card(
                    unique_id=new_card_id(),
                    is_topic_match=classify(container, self.profile),
                    active_count=active_ads_count(container),
                )
                self.tracker.mark_processed(document, container, card)
                if card.is_topic_match:
                    document.add_class(container, TOPIC_CLASS)
                document.inject(container, self._controls_for(card))
                injected += 1
            vanished = self.tracker.rebind(document.root)
            self._sync_selection(vanished)
            repaired = self._repair_bare_cards(document)
            projection = self._project(document)
            await self.source.commit(document.drain_patches())
        if injected or vanished:
            logger.info(
                "Scan: %d detected, %d injected, %d vanished, %d visible",
                len(containers),
                injected,
                len(vanished),
                projection.shown,
            )
        self._publish_stats()
        return ScanReport(
            detected=len(containers),
            injected=injected,
            repaired=repaired,
            duplicates_removed=removed,
            vanished=len(vanished),
            projection=projection,
        )

    async def refilter(self) -> Projection:
        """Re-project the registry without detecting anything new."""
        async with self._dom_lock:
            document = await self.source.snapshot()
            self._document = document
            vanished = self.tracker.rebind(document.root)
            self._sync_selection(vanished)
            projection = self._project(document)
            await self.source.commit(document.drain_patches())
        self._publish_stats()
        return projection

    async def count_unprocessed(self) -> int:
        async with self._dom_lock:
            document = await self.source.snapshot()
            self._document = document
            return _count_unprocessed(document.root)

    async def cleanup(self) -> int:
        async with self._dom_lock:
            document = await self.source.snapshot()
            self._document = document
            removed = self.tracker.cleanup_duplicates(document)
            await self.source.commit(document.drain_patches())
        return removed

    def _controls_for(self, card: Card):
        return build_controls(
            card.unique_id,
            topic_match=card.is_topic_match,
            label_download=self.locale.label_download,
            label_save=self.locale.label_save,
            label_select=self.locale.label_select,
            label_badge=self.locale.label_topic_badge,
        )

    def _repair_bare_cards(self, document: PageDocument) -> int:
        """Re-inject controls into stamped cards whose control subtree vanished."""
        repaired = 0
        for card in self.tracker.cards():
            if card.container is None or owned_controls(card.container):
                continue
            document.inject(card.container, self._controls_for(card))
            repaired += 1
        if repaired:
            logger.info("Re-injected controls into %d cards", repaired)
        return repaired

    def _sync_selection(self, vanished: list[str]) -> None:
        for card_id in vanished:
            self.ctx.selection.discard(card_id)
        for card in self.tracker.cards():
            card.selected = card.unique_id in self.ctx.selection

    def _project(self, document: PageDocument) -> Projection:
        cards = self.tracker.cards()
        projection = project(cards, self.ctx.filter_state, selected=len(self.ctx.selection))
        apply_projection(document, cards, projection)
        self.ctx.stats = projection.stats
        self.ctx.last_projection = projection
        return projection

    # -- stats ------------------------------------------------------------

    def stats_payload(self) -> StatsPayload:
        stats = dataclasses.replace(self.ctx.stats, selected=len(self.ctx.selection))
        return StatsPayload(total=stats.total, topic_matches=stats.topic_matches, selected=stats.selected)

    def _publish_stats(self) -> None:
        """Fire-and-forget ``updateStats``; nobody listening is fine."""
        payload = self.stats_payload().to_wire()
        try:
            task = asyncio.get_running_loop().create_task(self._send_stats(payload))
        except RuntimeError:
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_stats(self, payload: dict[str, Any]) -> None:
        try:
            await self.channel.send(Action.UPDATE_STATS, payload)
        except Exception:
            logger.debug("updateStats not delivered", exc_info=True)

    # -- message protocol -------------------------------------------------

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """Serve one popup message. Unknown actions are ignored (None)."""
        action = message.get("action")
        try:
            if action == Action.GET_STATS:
                return self.stats_payload().to_wire()
            if action == Action.UPDATE_FILTER:
                request = UpdateFilterRequest.model_validate(message)
                await self.update_filter(request.filter, request.value)
                return None
            if action == Action.SELECT_ALL:
                await self.select_all()
                return None
            if action == Action.USER_LOGGED_IN:
                await self.on_logged_in(UserLoggedInRequest.model_validate(message).email)
                return None
            if action == Action.USER_LOGGED_OUT:
                self.on_logged_out()
                return None
            if action == Action.FORCE_INJECT:
                self.scheduler.force_scan()
                return {"success": True}
        except ValidationError as exc:
            logger.warning("Malformed %s message: %s", action, exc.errors())
            return None
        logger.debug("Ignoring unknown action %r", action)
        return None

    async def on_logged_in(self, email: str) -> None:
        values = await self.settings.get([ACCESS_TOKEN])
        self.ctx.access_token = str(values.get(ACCESS_TOKEN) or self.ctx.access_token)
        self.ctx.user_email = email
        self.notifier.notify(self.locale.msg_logged_in, "success")

    def on_logged_out(self) -> None:
        self.ctx.access_token = ""
        self.ctx.user_email = ""
        self.notifier.notify(self.locale.msg_logged_out, "info")

    async def handle_action(self, event: dict[str, Any]) -> bool:
        """Clicks on injected controls: ``{"action", "cardId", "checked"?, "offerName"?}``."""
        action = event.get("action")
        card_id = str(event.get("cardId") or "")
        if action == "select":
            return self.toggle_selection(card_id, bool(event.get("checked")))
        if action == "download":
            return await self.download_card(card_id)
        if action == "save":
            return await self.save_offer(card_id, str(event.get("offerName") or ""))
        logger.debug("Ignoring control action %r", action)
        return False

    # -- selection & filters ----------------------------------------------

    def toggle_selection(self, card_id: str, selected: bool | None = None) -> bool:
        card = self.tracker.get(card_id)
        if card is None:
            return False
        card.selected = (not card.selected) if selected is None else selected
        if card.selected:
            self.ctx.selection.add(card_id)
        else:
            self.ctx.selection.discard(card_id)
        self.ctx.stats = dataclasses.replace(self.ctx.stats, selected=len(self.ctx.selection))
        self._publish_stats()
        return card.selected

    async def select_all(self) -> int:
        """Select every processed card and tick its checkbox."""
        async with self._dom_lock:
            document = self._document
            for card in self.tracker.cards():
                card.selected = True
                self.ctx.selection.add(card.unique_id)
                if document is None or card.container is None:
                    continue
                checkbox = find_control_button(card.container, "select")
                if checkbox is not None:
                    document.set_checked(checkbox, True)
            if document is not None:
                await self.source.commit(document.drain_patches())
        self.ctx.stats = dataclasses.replace(self.ctx.stats, selected=len(self.ctx.selection))
        self._publish_stats()
        return len(self.ctx.selection)

    async def update_filter(self, name: str, value: bool | int) -> FilterState:
        fs = self.ctx.filter_state
        if name == "topic":
            fs = dataclasses.replace(fs, topic_only=bool(value))
            await self.settings.set({TOPIC_FILTER: fs.topic_only})
        elif name == "minActive":
            fs = dataclasses.replace(fs, min_active_count=max(int(value), 0))
            await self.settings.set({MIN_ACTIVE_COUNT: fs.min_active_count})
        else:
            raise ValueError(f"unknown filter {name!r}")
        self.ctx.filter_state = fs
        await self.refilter()
        return fs

    async def load_more(self) -> Projection:
        self.ctx.filter_state = load_more(self.ctx.filter_state, self.ctx.config.load_more_step)
        projection = await self.refilter()
        if projection.remaining > 0:
            message = self.locale.showing_template.format(shown=projection.shown, available=projection.available)
        else:
            message = self.locale.showing_all_template.format(shown=projection.shown)
        self.notifier.notify(message, "info")
        return projection

    # -- user actions -----------------------------------------------------

    async def _set_busy(self, card: Card, action: str, busy: bool) -> None:
        async with self._dom_lock:
            document = self._document
            if document is None or card.container is None:
                return
            button = find_control_button(card.container, action)
            if button is None:
                return
            document.set_busy(button, busy)
            await self.source.commit(document.drain_patches())

    async def download_card(self, card_id: str, *, quiet: bool = False) -> bool:
        """Resolve the card's media and ask the channel to download it."""
        card = self.tracker.get(card_id)
        media = find_media(card.container) if card is not None and card.container is not None else None
        if card is None or media is None:
            if not quiet:
                self.notifier.notify(self.locale.msg_media_not_found, "error")
            return False
        request = DownloadRequest(url=media.url, filename=media_filename(media, int(self._wall_clock() * 1000)))
        await self._set_busy(card, "download", True)
        try:
            reply = await self.channel.send(Action.DOWNLOAD, request.to_wire())
        except ChannelError as exc:
            logger.warning("Download of %s failed: %s", card_id, exc)
            if not quiet:
                self.notifier.notify(self.locale.msg_connection_error, "error")
            return False
        finally:
            await self._set_busy(card, "download", False)
        response = parse_response(reply)
        if not response.success:
            if not quiet:
                self.notifier.notify(self.locale.msg_download_failed.format(error=response.error), "error")
            return False
        logger.info("Downloaded %s as %s", card_id, request.filename)
        return True

    async def download_selected(self, progress: ProgressCallback | None = None) -> int:
        """Download every selected card one at a time; failures do not stop the batch."""
        ids = [c.unique_id for c in self.tracker.cards() if c.unique_id in self.ctx.selection]
        downloaded = 0
        for index, card_id in enumerate(ids, start=1):
            try:
                if await self.download_card(card_id, quiet=True):
                    downloaded += 1
            except Exception:
                logger.exception("Download of %s failed", card_id)
            if progress is not None:
                progress(index, len(ids))
        self.notifier.notify(self.locale.downloaded_template.format(n=downloaded), "success")
        return downloaded

    async def save_offer(self, card_id: str, offer_name: str) -> bool:
        """Send the card's library reference to the offers API under *offer_name*."""
        if not self.ctx.logged_in:
            self.notifier.notify(self.locale.msg_login_required, "error")
            return False
        name = offer_name.strip()
        if not name:
            self.notifier.notify(self.locale.msg_offer_name_required, "error")
            return False
        card = self.tracker.get(card_id)
        if card is None or card.container is None:
            logger.warning("save_offer: unknown card %s", card_id)
            return False
        page_url = (self._document.url if self._document is not None else "") or self.ctx.config.library_base_url
        reference = extract_reference(card.container, page_url, base_url=self.ctx.config.library_base_url)
        request = SaveOfferRequest(offer_name=name, external_reference=reference)
        await self._set_busy(card, "save", True)
        try:
            reply = await self.channel.send(Action.SAVE_OFFER, request.to_wire())
        except ChannelError as exc:
            logger.warning("Save offer for %s failed: %s", card_id, exc)
            self.notifier.notify(self.locale.msg_connection_error, "error")
            return False
        finally:
            await self._set_busy(card, "save", False)
        response = parse_response(reply)
        if not response.success:
            error = response.error or ""
            self.notifier.notify(f"{self.locale.msg_save_failed}: {error}".rstrip(": "), "error")
            return False
        self.notifier.notify(self.locale.msg_offer_saved, "success")
        return True
