# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import adlens  # noqa: F401
except ImportError:
    raise ImportError("adlens is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _reset_context():
    """Fresh process-wide ScanContext before and after each test."""
    from adlens.context import reset_context

    reset_context()
    yield
    reset_context()
