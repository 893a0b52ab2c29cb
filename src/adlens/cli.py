# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AdLens CLI: scan, reference, watch commands.

Usage:
    adlens scan FILE [--url URL] [--topic-only] [--min-active N] [-o OUT.json] [--annotated OUT.html]
    adlens reference FILE [--url URL]
    adlens watch URL [--duration S] [--headed] [--api-url URL] [--download-dir DIR] [--offer-name NAME]
                 [--access-token TOKEN] [--user-email EMAIL]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import json
import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import lxml.html

from .channel import HttpBackgroundChannel, LoopbackChannel
from .config import ScannerConfig
from .context import init_context
from .controller import AdLensController, StaticPage
from .dom import PageDocument, parse_document
from .errors import AdLensError
from .extractor import build_reference, resolve_ad_id
from .i18n import locale_from_lang
from .logging_config import configure, page_context
from .settings import ACCESS_TOKEN, MIN_ACTIVE_COUNT, TOPIC_FILTER, USER_EMAIL, MemorySettingsStore

logger = logging.getLogger(__name__)


def _load_document(path_str: str, url: str) -> PageDocument:
    path = Path(path_str)
    if not path.is_file():
        raise AdLensError(f"no such file: {path}")
    return parse_document(path.read_text(encoding="utf-8", errors="replace"), url=url or path.resolve().as_uri())


def _config_for(document: PageDocument | None, args: argparse.Namespace) -> ScannerConfig:
    config = ScannerConfig.from_env()
    locale = getattr(args, "locale", None)
    if not locale and document is not None and document.lang:
        locale = locale_from_lang(document.lang)
    if locale:
        config = dataclasses.replace(config, locale=locale)
    return config


def _write_json(data: Any, output: str | None) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"Output: {output}", file=sys.stderr)
    else:
        print(text)


async def _scan_offline(args: argparse.Namespace) -> dict[str, Any]:
    document = _load_document(args.file, args.url)
    ctx = init_context(_config_for(document, args))
    settings = MemorySettingsStore({TOPIC_FILTER: args.topic_only, MIN_ACTIVE_COUNT: args.min_active})
    controller = AdLensController(StaticPage(document), channel=LoopbackChannel(), settings=settings, context=ctx)
    with page_context(document.url, locale=ctx.config.locale):
        await controller.load_settings()
        report = await controller.run_scan()
        await controller.stop()
    visible = set(report.projection.visible_ids)
    cards = [
        {
            "id": card.unique_id,
            "topicMatch": card.is_topic_match,
            "activeCount": card.active_count,
            "visible": card.unique_id in visible,
        }
        for card in controller.tracker.cards()
    ]
    if getattr(args, "annotated", None):
        Path(args.annotated).write_text(lxml.html.tostring(document.root, encoding="unicode"), encoding="utf-8")
    return {**report.to_dict(), "cards": cards}


def cmd_scan(args: argparse.Namespace) -> None:
    """Offline scan of a saved page: JSON report on stdout or --output."""
    result = asyncio.run(_scan_offline(args))
    _write_json(result, args.output)


async def _references(args: argparse.Namespace) -> list[dict[str, Any]]:
    document = _load_document(args.file, args.url)
    ctx = init_context(_config_for(document, args))
    controller = AdLensController(StaticPage(document), channel=LoopbackChannel(), context=ctx)
    await controller.run_scan()
    await controller.stop()
    rows = []
    for card in controller.tracker.cards():
        resolved = resolve_ad_id(card.container)
        if resolved is None:
            rows.append({"id": card.unique_id, "reference": document.url, "strategy": "page_url"})
            continue
        ad_id, strategy = resolved
        rows.append(
            {
                "id": card.unique_id,
                "reference": build_reference(ad_id, ctx.config.library_base_url),
                "strategy": strategy,
            }
        )
    return rows


def cmd_reference(args: argparse.Namespace) -> None:
    """Print the ad library reference resolved for every detected card."""
    _write_json(asyncio.run(_references(args)), args.output)


def _watch_settings(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> MemorySettingsStore:
    """Login state for a watch session: flags first, then ADLENS_ACCESS_TOKEN / ADLENS_USER_EMAIL."""
    env = os.environ if environ is None else environ
    token = args.access_token or env.get("ADLENS_ACCESS_TOKEN", "")
    email = args.user_email or env.get("ADLENS_USER_EMAIL", "")
    values = {key: value for key, value in ((ACCESS_TOKEN, token), (USER_EMAIL, email)) if value}
    if not token:
        logger.info("No access token given; saving offers needs --access-token or ADLENS_ACCESS_TOKEN")
    return MemorySettingsStore(values)


async def _watch(args: argparse.Namespace) -> None:
    from .browser_bridge import LiveConfig, open_live_page

    config = _config_for(None, args)
    if args.api_url:
        config = dataclasses.replace(config, api_url=args.api_url)
    if args.download_dir:
        config = dataclasses.replace(config, download_dir=args.download_dir)
    ctx = init_context(config)
    settings = _watch_settings(args)
    channel = HttpBackgroundChannel(api_url=config.api_url, download_dir=config.download_dir, settings=settings)
    live_config = LiveConfig(headless=not args.headed)
    try:
        async with open_live_page(args.url, live_config) as live:
            with page_context(live.page.url, locale=config.locale):
                controller = AdLensController(live, channel=channel, settings=settings, context=ctx)

                async def _on_action(event: dict[str, Any]) -> None:
                    if event.get("action") == "save" and not event.get("offerName"):
                        event = {**event, "offerName": args.offer_name or ""}
                    await controller.handle_action(event)

                live.on_scroll(controller.scheduler.on_scroll)
                live.on_action(_on_action)
                await controller.start(live)
                try:
                    if args.duration > 0:
                        await asyncio.sleep(args.duration)
                    else:
                        await asyncio.Event().wait()
                finally:
                    await controller.stop()
                    logger.info("Watch finished: %s", controller.stats_payload().to_wire())
    finally:
        await channel.aclose()


def cmd_watch(args: argparse.Namespace) -> None:
    """Attach to a live ad-library page until --duration elapses or Ctrl-C."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_watch(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AdLens CLI", prog="adlens")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_scan = subparsers.add_parser("scan", help="Scan a saved ad-library page")
    p_scan.add_argument("file", metavar="FILE")
    p_scan.add_argument("--url", type=str, default="", help="Original page URL (reference fallback)")
    p_scan.add_argument("--locale", type=str, choices=["pt", "en"], default=None)
    p_scan.add_argument("--topic-only", action="store_true", help="Show only topic matches")
    p_scan.add_argument("--min-active", type=int, default=0, metavar="N", help="Minimum active ads per creative")
    p_scan.add_argument("-o", "--output", type=str, metavar="PATH", help="Write the JSON report to PATH")
    p_scan.add_argument("--annotated", type=str, metavar="PATH", help="Write the annotated HTML to PATH")

    p_ref = subparsers.add_parser("reference", help="Resolve library references for every card")
    p_ref.add_argument("file", metavar="FILE")
    p_ref.add_argument("--url", type=str, default="")
    p_ref.add_argument("--locale", type=str, choices=["pt", "en"], default=None)
    p_ref.add_argument("-o", "--output", type=str, metavar="PATH")

    p_watch = subparsers.add_parser("watch", help="Attach to a live page with Chromium")
    p_watch.add_argument("url", metavar="URL")
    p_watch.add_argument("--duration", type=float, default=0.0, help="Seconds to watch (0 = until Ctrl-C)")
    p_watch.add_argument("--headed", action="store_true", help="Show the browser window")
    p_watch.add_argument("--locale", type=str, choices=["pt", "en"], default=None)
    p_watch.add_argument("--api-url", type=str, default="", help="Offers API endpoint")
    p_watch.add_argument("--download-dir", type=str, default="", help="Media download directory")
    p_watch.add_argument("--offer-name", type=str, default="", help="Offer name used by the save control")
    p_watch.add_argument("--access-token", type=str, default="", help="API token (default: $ADLENS_ACCESS_TOKEN)")
    p_watch.add_argument("--user-email", type=str, default="", help="Logged-in user (default: $ADLENS_USER_EMAIL)")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure(json_output=args.json_logs, level="DEBUG" if args.verbose else "INFO")

    commands = {"scan": cmd_scan, "reference": cmd_reference, "watch": cmd_watch}
    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except AdLensError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
