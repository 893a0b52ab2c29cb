# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Scanner configuration: timing constants, batch ceilings, endpoints.

Defaults match the production content script. Every field can be
overridden through ``ADLENS_*`` environment variables via ``from_env()``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

LIBRARY_BASE_URL = "https://www.facebook.com/ads/library/"


@dataclass(frozen=True, slots=True)
class ScannerConfig:
    """Immutable configuration for the scan loop and its collaborators."""

    debounce_s: float = 0.5
    throttle_s: float = 0.8
    max_cards_per_batch: int = 200
    reconcile_interval_s: float = 2.0
    scroll_settle_s: float = 0.15
    scroll_rescan_delay_s: float = 0.3
    max_mutations_per_window: int = 10
    mutation_window_s: float = 1.0
    warmup_delays_s: tuple[float, ...] = (0.5, 1.5, 3.0)
    visible_limit: int = 50
    load_more_step: int = 30
    locale: str = "pt"
    library_base_url: str = LIBRARY_BASE_URL
    api_url: str = ""  # save-offer endpoint; empty = saveOffer unavailable
    download_dir: str = "FB_Ads"

    def __post_init__(self) -> None:
        for name in ("debounce_s", "throttle_s", "scroll_settle_s", "scroll_rescan_delay_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.reconcile_interval_s <= 0:
            raise ValueError(f"reconcile_interval_s must be > 0, got {self.reconcile_interval_s}")
        if self.mutation_window_s <= 0:
            raise ValueError(f"mutation_window_s must be > 0, got {self.mutation_window_s}")
        if self.max_cards_per_batch <= 0:
            raise ValueError(f"max_cards_per_batch must be > 0, got {self.max_cards_per_batch}")
        if self.max_mutations_per_window <= 0:
            raise ValueError(f"max_mutations_per_window must be > 0, got {self.max_mutations_per_window}")
        if self.visible_limit <= 0:
            raise ValueError(f"visible_limit must be > 0, got {self.visible_limit}")
        if self.load_more_step <= 0:
            raise ValueError(f"load_more_step must be > 0, got {self.load_more_step}")
        if any(d < 0 for d in self.warmup_delays_s):
            raise ValueError(f"warmup_delays_s must be >= 0, got {self.warmup_delays_s}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ScannerConfig:
        """Build a config from ``ADLENS_<FIELD>`` variables (e.g. ``ADLENS_THROTTLE_S``).

        Unparseable values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"ADLENS_{f.name.upper()}", "").strip()
            if not raw:
                continue
            default = f.default
            try:
                if isinstance(default, tuple):
                    overrides[f.name] = tuple(float(p) for p in raw.split(",") if p.strip())
                elif isinstance(default, bool):
                    overrides[f.name] = raw.lower() in ("1", "true", "yes")
                elif isinstance(default, int):
                    overrides[f.name] = int(raw)
                elif isinstance(default, float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError:
                logger.warning("Ignoring invalid ADLENS_%s=%r", f.name.upper(), raw)
        return cls(**overrides)
