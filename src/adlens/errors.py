# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AdLens exception hierarchy.

All AdLens-specific errors inherit from AdLensError. Scan-phase functions
(detector, classifier, extractor, projector) never raise; these errors
belong to the edges: the background channel, the live browser bridge and
the CLI's input handling.
"""

from __future__ import annotations


class AdLensError(Exception):
    """Base exception for all AdLens errors."""


class ChannelError(AdLensError):
    """Background channel unavailable (transport failure, closed port)."""


class BrowserError(AdLensError):
    """Live page snapshot, commit, or binding failure."""
