# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Live page bridge: Playwright page <-> lxml PageDocument.

- ``snapshot()`` numbers every element (``data-adlens-ref``), records layout
  (offset size, image natural size, resolved media src) as attributes,
  serializes, then strips the temporary attributes again. The ref -> element
  index stays in ``window.__adlensRefs`` until the next snapshot.
- ``commit(patches)`` replays recorded ``DomPatch`` ops on the live
  elements through that index.
- ``install()`` exposes three bindings (mutation batches, settled scroll,
  control clicks) and starts a MutationObserver on the feed root.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from .dom import DomPatch, PageDocument, parse_document
from .errors import BrowserError
from .events import MutationCallback, MutationRecord

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 900}
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

_HIDDEN_CSS = ".adlens-hidden { display: none !important; }"

# Snapshot: ref index + layout attributes, serialize, clean up.
_SNAPSHOT_JS = r"""() => {
  const root = document.documentElement;
  const els = [root, ...root.querySelectorAll('*')];
  const tmp = ['data-adlens-ref', 'data-adlens-w', 'data-adlens-h',
               'data-adlens-nw', 'data-adlens-nh', 'data-adlens-src'];
  window.__adlensRefs = els;
  els.forEach((el, i) => {
    el.setAttribute('data-adlens-ref', String(i));
    if (el instanceof HTMLElement) {
      el.setAttribute('data-adlens-w', String(el.offsetWidth));
      el.setAttribute('data-adlens-h', String(el.offsetHeight));
    }
    if (el.tagName === 'IMG') {
      el.setAttribute('data-adlens-nw', String(el.naturalWidth || 0));
      el.setAttribute('data-adlens-nh', String(el.naturalHeight || 0));
      if (el.currentSrc) el.setAttribute('data-adlens-src', el.currentSrc);
    } else if (el.tagName === 'VIDEO' || el.tagName === 'SOURCE') {
      const src = el.currentSrc || el.src;
      if (src) el.setAttribute('data-adlens-src', src);
    }
  });
  const html = '<!DOCTYPE html>' + root.outerHTML;
  els.forEach(el => tmp.forEach(a => el.removeAttribute(a)));
  return html;
}"""

_COMMIT_JS = r"""(patches) => {
  const refs = window.__adlensRefs || [];
  let applied = 0;
  for (const p of patches) {
    let el = null;
    if (p.card_id && p.action) {
      el = document.querySelector(
        `.adlens-actions [data-action="${p.action}"][data-card-id="${p.card_id}"]`);
    }
    if (!el && p.ref !== null && p.ref !== undefined) el = refs[p.ref];
    if (!el || !el.isConnected) continue;
    switch (p.op) {
      case 'stamp':
        for (const [k, v] of Object.entries(p.attrs)) el.setAttribute(k, v);
        break;
      case 'add_class': el.classList.add(p.name); break;
      case 'inject': el.insertAdjacentHTML('beforeend', p.html); break;
      case 'remove': el.remove(); break;
      case 'visibility': el.classList.toggle('adlens-hidden', !p.visible); break;
      case 'busy': el.disabled = !!p.busy; break;
      case 'checked': el.checked = !!p.checked; break;
      default: continue;
    }
    applied++;
  }
  return applied;
}"""

# Observer + scroll + delegated clicks. Idempotent per document.
_OBSERVER_JS = r"""() => {
  if (window.__adlensObserver) return false;
  const root = document.querySelector('[role="main"]') || document.body;
  const obs = new MutationObserver(mutations => {
    const records = [];
    for (const m of mutations) {
      if (m.type !== 'childList' || !m.addedNodes.length) continue;
      const heights = [];
      m.addedNodes.forEach(n => { if (n.nodeType === 1) heights.push(n.offsetHeight || 0); });
      if (heights.length) records.push({addedHeights: heights});
    }
    if (records.length) window.__adlensMutation(records);
  });
  obs.observe(root, {childList: true, subtree: true});
  window.__adlensObserver = obs;

  let ticking = false;
  window.addEventListener('scroll', () => {
    if (ticking) return;
    ticking = true;
    requestAnimationFrame(() => { ticking = false; window.__adlensScroll(); });
  }, {passive: true});

  document.addEventListener('click', ev => {
    const el = ev.target.closest && ev.target.closest('.adlens-actions [data-action]');
    if (!el) return;
    if (el.tagName === 'BUTTON') { ev.preventDefault(); ev.stopPropagation(); }
    window.__adlensAction({
      action: el.dataset.action,
      cardId: el.dataset.cardId,
      checked: el.type === 'checkbox' ? el.checked : undefined,
    });
  }, true);
  return true;
}"""


@dataclass(frozen=True, slots=True)
class LiveConfig:
    """Chromium launch settings for ``open_live_page``."""

    headless: bool = True
    locale: str = "pt-BR"
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30000
    wait_until: str = "domcontentloaded"


def records_from_wire(raw: Any) -> list[MutationRecord]:
    """Convert the observer's ``[{addedHeights: [...]}, ...]`` payload."""
    records: list[MutationRecord] = []
    if not isinstance(raw, list):
        return records
    for item in raw:
        heights = item.get("addedHeights", []) if isinstance(item, dict) else []
        try:
            records.append(MutationRecord(added_heights=tuple(float(h) for h in heights)))
        except (TypeError, ValueError):
            continue
    return records


class LivePage:
    """Playwright page implementing the controller's page source and event feeds."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self._mutation_callbacks: list[MutationCallback] = []
        self._scroll_callbacks: list[Callable[[], object]] = []
        self._action_callbacks: list[Callable[[dict[str, Any]], object]] = []
        self._installed = False

    @property
    def page(self) -> Page:
        return self._page

    # -- event feeds ------------------------------------------------------

    def on_change(self, callback: MutationCallback) -> None:
        self._mutation_callbacks.append(callback)

    def on_scroll(self, callback: Callable[[], object]) -> None:
        self._scroll_callbacks.append(callback)

    def on_action(self, callback: Callable[[dict[str, Any]], object]) -> None:
        self._action_callbacks.append(callback)

    async def _dispatch_mutation(self, raw: Any) -> None:
        records = records_from_wire(raw)
        if not records:
            return
        for cb in self._mutation_callbacks:
            cb(records)

    async def _dispatch_scroll(self) -> None:
        for cb in self._scroll_callbacks:
            cb()

    async def _dispatch_action(self, event: Any) -> None:
        if not isinstance(event, dict):
            return
        for cb in self._action_callbacks:
            try:
                result = cb(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Control action %s failed", event.get("action"))

    async def install(self) -> None:
        """Expose bindings, add the hidden-card style and start observing."""
        try:
            if not self._installed:
                await self._page.expose_function("__adlensMutation", self._dispatch_mutation)
                await self._page.expose_function("__adlensScroll", self._dispatch_scroll)
                await self._page.expose_function("__adlensAction", self._dispatch_action)
                self._installed = True
            await self._page.add_style_tag(content=_HIDDEN_CSS)
            await self._page.evaluate(_OBSERVER_JS)
        except PlaywrightError as exc:
            raise BrowserError(f"failed to install page bindings: {exc}") from exc
        logger.info("Live page bindings installed on %s", self._page.url)

    # -- page source ------------------------------------------------------

    async def snapshot(self) -> PageDocument:
        try:
            html = await self._page.evaluate(_SNAPSHOT_JS)
        except PlaywrightError as exc:
            raise BrowserError(f"snapshot failed: {exc}") from exc
        return parse_document(html, url=self._page.url)

    async def commit(self, patches: Sequence[DomPatch]) -> int:
        if not patches:
            return 0
        try:
            applied = await self._page.evaluate(_COMMIT_JS, [p.to_wire() for p in patches])
        except PlaywrightError as exc:
            raise BrowserError(f"commit failed: {exc}") from exc
        if applied != len(patches):
            logger.debug("Applied %s of %d patches (targets detached)", applied, len(patches))
        return int(applied or 0)


@asynccontextmanager
async def open_live_page(url: str, config: LiveConfig | None = None) -> AsyncGenerator[LivePage, None]:
    """Launch Chromium, open *url* and yield an installed ``LivePage``."""
    cfg = config or LiveConfig()
    playwright = await async_playwright().start()
    browser = None
    try:
        browser = await playwright.chromium.launch(headless=cfg.headless)
        context = await browser.new_context(viewport=DEFAULT_VIEWPORT, locale=cfg.locale, user_agent=cfg.user_agent)
        page = await context.new_page()
        page.set_default_timeout(cfg.timeout_ms)
        try:
            await page.goto(url, wait_until=cfg.wait_until)
        except PlaywrightError as exc:
            raise BrowserError(f"navigation to {url} failed: {exc}") from exc
        live = LivePage(page)
        await live.install()
        logger.info("Live page opened (headless=%s)", cfg.headless)
        yield live
    finally:
        if browser is not None:
            with suppress(Exception):
                await browser.close()
        with suppress(Exception):
            await playwright.stop()
