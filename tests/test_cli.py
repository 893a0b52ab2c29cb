# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.cli: offline scan and reference commands."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from _html_fixtures import PAGE_URL, card_html, make_document, page_html

from adlens.channel import LoopbackChannel
from adlens.cli import _watch_settings, build_parser, main
from adlens.controller import AdLensController, StaticPage
from adlens.settings import ACCESS_TOKEN, USER_EMAIL

TOPIC_CARD = card_html("Chama no WhatsApp e garanta sua vaga no curso completo de vendas online.")


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture()
def saved_page(tmp_path):
    def _write(*cards: str, name: str = "page.html"):
        path = tmp_path / name
        path.write_text(page_html(*cards), encoding="utf-8")
        return path

    return _write


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_watch_defaults(self):
        args = build_parser().parse_args(["watch", PAGE_URL])
        assert args.duration == 0.0
        assert args.headed is False
        assert args.api_url == ""
        assert args.access_token == ""


# ── Watch login state ───────────────────────────────────────────


class TestWatchSettings:
    @pytest.mark.asyncio
    async def test_token_from_environment(self):
        args = build_parser().parse_args(["watch", PAGE_URL])
        settings = _watch_settings(args, {"ADLENS_ACCESS_TOKEN": "env-tok", "ADLENS_USER_EMAIL": "a@b.test"})
        assert await settings.get([ACCESS_TOKEN, USER_EMAIL]) == {ACCESS_TOKEN: "env-tok", USER_EMAIL: "a@b.test"}

    @pytest.mark.asyncio
    async def test_flag_wins_over_environment(self):
        args = build_parser().parse_args(["watch", PAGE_URL, "--access-token", "flag-tok"])
        settings = _watch_settings(args, {"ADLENS_ACCESS_TOKEN": "env-tok"})
        assert await settings.get([ACCESS_TOKEN]) == {ACCESS_TOKEN: "flag-tok"}

    @pytest.mark.asyncio
    async def test_without_token_store_is_empty(self):
        args = build_parser().parse_args(["watch", PAGE_URL])
        settings = _watch_settings(args, {})
        assert await settings.get([ACCESS_TOKEN, USER_EMAIL]) == {}

    @pytest.mark.asyncio
    async def test_seeded_token_logs_in(self):
        args = build_parser().parse_args(["watch", PAGE_URL, "--access-token", "tok"])
        settings = _watch_settings(args, {})
        page = StaticPage(make_document(card_html()))
        controller = AdLensController(page, channel=LoopbackChannel(), settings=settings)
        await controller.load_settings()
        assert controller.ctx.logged_in is True


class TestScan:
    def test_writes_report(self, saved_page, tmp_path):
        page = saved_page(card_html(), TOPIC_CARD, card_html())
        out = tmp_path / "report.json"

        main(["scan", str(page), "--url", PAGE_URL, "-o", str(out)])

        report = json.loads(out.read_text(encoding="utf-8"))
        assert report["detected"] == 3
        assert report["injected"] == 3
        assert report["stats"] == {"total": 3, "topicMatches": 1, "selected": 0}
        assert [c["topicMatch"] for c in report["cards"]] == [False, True, False]
        assert all(c["visible"] for c in report["cards"])

    def test_topic_only(self, saved_page, capsys):
        page = saved_page(card_html(), TOPIC_CARD)

        main(["scan", str(page), "--topic-only"])

        report = json.loads(capsys.readouterr().out)
        assert report["visible"] == 1
        assert [c["visible"] for c in report["cards"]] == [False, True]

    def test_annotated_html(self, saved_page, tmp_path):
        page = saved_page(card_html())
        annotated = tmp_path / "annotated.html"

        main(["scan", str(page), "-o", str(tmp_path / "r.json"), "--annotated", str(annotated)])

        html = annotated.read_text(encoding="utf-8")
        assert 'data-adlens-processed="true"' in html
        assert "adlens-actions" in html

    def test_missing_file_exits_1(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["scan", str(tmp_path / "nope.html")])
        assert exc_info.value.code == 1
        assert "no such file" in capsys.readouterr().err


class TestReference:
    def test_resolves_per_card(self, saved_page, capsys):
        page = saved_page(
            card_html("Identificação da biblioteca: 1234567890123 e muito conteúdo sobre o produto."),
            card_html("Identificação da biblioteca: 9876543210987 com outro texto longo sobre a oferta."),
            card_html(),
        )

        main(["reference", str(page), "--url", PAGE_URL])

        rows = json.loads(capsys.readouterr().out)
        assert [r["strategy"] for r in rows] == ["label", "label", "page_url"]
        assert rows[0]["reference"] == "https://www.facebook.com/ads/library/?id=1234567890123"
        assert rows[2]["reference"] == PAGE_URL

    def test_file_uri_fallback(self, saved_page, capsys):
        page = saved_page(card_html())

        main(["reference", str(page)])

        rows = json.loads(capsys.readouterr().out)
        assert rows[0]["reference"].startswith("file://")
