# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ScanContext: the single owner of mutable per-page state.

Leaf module apart from data types. The controller and scheduler receive the
context (or pieces of it) explicitly; ``get_context()`` exists for the CLI
and for tests that want the process-wide instance.
"""

from __future__ import annotations

import dataclasses
import logging

from . import FilterState, Stats
from .config import ScannerConfig
from .projector import Projection
from .scheduler import MutationBudget, ScanState
from .tracker import DedupTracker

logger = logging.getLogger(__name__)


@dataclasses.dataclass(kw_only=True)
class ScanContext:
    """Everything a running page session mutates."""

    config: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    scan_state: ScanState = dataclasses.field(default_factory=ScanState)
    budget: MutationBudget = dataclasses.field(default_factory=MutationBudget)
    tracker: DedupTracker = dataclasses.field(default_factory=DedupTracker)
    filter_state: FilterState = dataclasses.field(default_factory=FilterState)
    selection: set[str] = dataclasses.field(default_factory=set)
    stats: Stats = dataclasses.field(default_factory=Stats)
    access_token: str = dataclasses.field(default="", repr=False)
    user_email: str = ""
    last_projection: Projection | None = None

    @property
    def logged_in(self) -> bool:
        return bool(self.access_token)


_context: ScanContext | None = None


def init_context(config: ScannerConfig | None = None) -> ScanContext:
    """Create (replacing any previous) the process-wide context."""
    global _context
    cfg = config or ScannerConfig()
    _context = ScanContext(config=cfg, filter_state=FilterState(visible_limit=cfg.visible_limit))
    logger.debug("Scan context initialized")
    return _context


def get_context() -> ScanContext:
    """Return the process-wide context, creating a default one on first use."""
    if _context is None:
        return init_context()
    return _context


def reset_context() -> None:
    global _context
    _context = None
