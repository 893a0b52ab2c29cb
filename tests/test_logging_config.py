# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for adlens.logging_config: structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from adlens.logging_config import bind_page, configure, page_context, unbind_page


@pytest.fixture(autouse=True)
def _reset_logging():
    """Ensure clean logging state before/after each test."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestConsoleRenderer:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("test.console").info("scan complete")
        err = capsys.readouterr().err
        assert "scan complete" in err
        assert not err.strip().startswith("{")


class TestJSONRenderer:
    def test_valid_json(self, capsys):
        configure(json_output=True)
        logging.getLogger("test.json").warning("cards vanished")
        line = capsys.readouterr().err.strip().splitlines()[-1]
        data = json.loads(line)
        assert data["event"] == "cards vanished"
        assert data["level"] == "warning"
        assert data["logger"] == "test.json"
        assert "timestamp" in data

    def test_exception_rendered(self, capsys):
        configure(json_output=True)
        try:
            raise ValueError("bad card")
        except ValueError:
            logging.getLogger("test.exc").exception("scan failed")
        data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert "ValueError" in data["exception"]


class TestLevels:
    def test_level_applied(self):
        configure(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_defaults_to_info(self):
        configure(level="LOUD")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_quieted(self):
        configure(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestPageBinding:
    def test_bind_adds_page_url(self, capsys):
        configure(json_output=True)
        bind_page("https://www.facebook.com/ads/library/", locale="pt")
        logging.getLogger("test.bind").info("scanning")
        data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert data["page_url"] == "https://www.facebook.com/ads/library/"
        assert data["locale"] == "pt"

    def test_unbind(self, capsys):
        configure(json_output=True)
        bind_page("https://x.test/")
        unbind_page()
        logging.getLogger("test.unbind").info("idle")
        data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert "page_url" not in data

    def test_missing_locale_not_rendered(self, capsys):
        configure(json_output=True)
        bind_page("https://x.test/")
        logging.getLogger("test.nolocale").info("scanning")
        data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert data["page_url"] == "https://x.test/"
        assert "locale" not in data

    def test_page_context_scopes_binding(self, capsys):
        configure(json_output=True)
        with page_context("https://x.test/", locale="en"):
            logging.getLogger("test.ctx").info("inside")
        logging.getLogger("test.ctx").info("outside")
        inside, outside = (json.loads(line) for line in capsys.readouterr().err.strip().splitlines()[-2:])
        assert inside["page_url"] == "https://x.test/"
        assert "page_url" not in outside
