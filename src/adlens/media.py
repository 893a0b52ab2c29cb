# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Media resolution for card downloads.

Priority: non-blob <video> source, then the largest CDN image (natural size
above 100px on both axes), then a CDN ``background-image`` in inline style.
Pure; returns None when the card has nothing downloadable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from lxml.html import HtmlElement

from .dom import RESOLVED_SRC_ATTR, inside_control, natural_size

_CDN_MARKERS = ("scontent", "fbcdn")
_MIN_NATURAL_PX = 100
_BG_URL_RE = re.compile(r"url\(\s*[\"']?([^\"')]+)[\"']?\s*\)", re.IGNORECASE)

_EXTENSIONS = {"video": "mp4", "image": "jpg"}


@dataclass(frozen=True, slots=True)
class MediaRef:
    url: str
    kind: str  # "video" | "image"


def _src(el: HtmlElement) -> str:
    return el.get(RESOLVED_SRC_ATTR) or el.get("src") or ""


def _is_cdn(url: str) -> bool:
    return any(m in url for m in _CDN_MARKERS)


def _video_url(container: HtmlElement) -> str | None:
    for video in container.iterdescendants("video"):
        source = next(video.iterdescendants("source"), None)
        url = (_src(source) if source is not None else "") or _src(video)
        if url and not url.startswith("blob:"):
            return url
    return None


def _best_image_url(container: HtmlElement) -> str | None:
    best: tuple[float, str] | None = None
    for img in container.iterdescendants("img"):
        if inside_control(img):
            continue
        url = _src(img)
        if not url or not _is_cdn(url):
            continue
        width, height = natural_size(img)
        if width <= _MIN_NATURAL_PX or height <= _MIN_NATURAL_PX:
            continue
        area = width * height
        if best is None or area > best[0]:
            best = (area, url)
    return best[1] if best else None


def _background_url(container: HtmlElement) -> str | None:
    for el in container.iterdescendants():
        style = el.get("style") or ""
        if "background" not in style:
            continue
        m = _BG_URL_RE.search(style)
        if m and _is_cdn(m.group(1)):
            return m.group(1)
    return None


def find_media(container: HtmlElement) -> MediaRef | None:
    if url := _video_url(container):
        return MediaRef(url=url, kind="video")
    if url := _best_image_url(container):
        return MediaRef(url=url, kind="image")
    if url := _background_url(container):
        return MediaRef(url=url, kind="image")
    return None


def media_filename(ref: MediaRef, timestamp_ms: int) -> str:
    return f"fb_ad_{timestamp_ms}.{_EXTENSIONS.get(ref.kind, 'bin')}"
