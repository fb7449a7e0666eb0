"""Reconciliation configuration: the matching thresholds in one place.

The defaults reproduce the behaviour the mapping screen was tuned against.
Every threshold can be overridden per call (pass a ``ReconcileConfig``) or
process-wide through ``ANALYSIS_APP_*`` environment variables.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileConfig:
    """Tunable thresholds for catalogue filtering, mapping and merge detection."""

    # Variable mapping
    resolve_threshold: float = 0.95
    candidate_min_score: float = 0.75
    max_candidates: int = 5

    # Counterbalance-pair heuristic
    counterbalance_tolerance: float = 0.08
    counterbalance_window: int = 4
    merge_candidate_min_score: float = 0.70

    # Targeted QSF parse
    token_filter_threshold: float = 0.55

    # Label map
    label_max_length: int = 200

    @classmethod
    def from_env(cls) -> "ReconcileConfig":
        """Build config from environment variables with safe defaults."""
        defaults = cls()

        def _float(name: str, default: float) -> float:
            raw = os.environ.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                value = float(raw)
            except ValueError:
                logger.warning("Ignoring non-numeric %s=%r", name, raw)
                return default
            if not 0.0 <= value <= 1.0:
                logger.warning("Ignoring out-of-range %s=%r (expected 0..1)", name, raw)
                return default
            return value

        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Ignoring non-integer %s=%r", name, raw)
                return default
            if value < 1:
                logger.warning("Ignoring non-positive %s=%r", name, raw)
                return default
            return value

        return cls(
            resolve_threshold=_float("ANALYSIS_APP_RESOLVE_THRESHOLD", defaults.resolve_threshold),
            candidate_min_score=_float("ANALYSIS_APP_CANDIDATE_MIN_SCORE", defaults.candidate_min_score),
            max_candidates=_int("ANALYSIS_APP_MAX_CANDIDATES", defaults.max_candidates),
            counterbalance_tolerance=_float(
                "ANALYSIS_APP_COUNTERBALANCE_TOLERANCE", defaults.counterbalance_tolerance
            ),
            counterbalance_window=_int("ANALYSIS_APP_COUNTERBALANCE_WINDOW", defaults.counterbalance_window),
            merge_candidate_min_score=_float(
                "ANALYSIS_APP_MERGE_CANDIDATE_MIN_SCORE", defaults.merge_candidate_min_score
            ),
            token_filter_threshold=_float(
                "ANALYSIS_APP_TOKEN_FILTER_THRESHOLD", defaults.token_filter_threshold
            ),
            label_max_length=_int("ANALYSIS_APP_LABEL_MAX_LENGTH", defaults.label_max_length),
        )

    def with_overrides(self, **overrides: Any) -> "ReconcileConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    def to_manifest_dict(self) -> Dict[str, Any]:
        """Produce a dict suitable for logging or run manifests."""
        return asdict(self)


# Singleton default config
_default_config: Optional[ReconcileConfig] = None


def get_config() -> ReconcileConfig:
    """Return the current global config (lazily initialised from env)."""
    global _default_config
    if _default_config is None:
        _default_config = ReconcileConfig.from_env()
    return _default_config


def set_config(cfg: Optional[ReconcileConfig]) -> None:
    """Override the global config (mainly for tests). ``None`` re-reads env."""
    global _default_config
    _default_config = cfg
