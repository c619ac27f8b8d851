"""Processing configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

ENV_PREFIX = "MINDNOTE_"


@dataclass(frozen=True)
class ProcessingConfig:
    """Thresholds and limits for the thought processing pipeline.

    Attributes:
        auto_apply_threshold: Confidence at or above which actions apply immediately.
        suggest_threshold: Confidence at or above which actions become suggestions.
        max_processing_per_day: Per-user daily cap on completed jobs.
        min_processing_interval_seconds: Minimum gap between explicit triggers.
        max_reprocess_count: How many times one thought may be reprocessed.
        entitlement_cache_ttl_seconds: How long subscription decisions are reused.
        provider_timeout_seconds: Deadline around a single provider call.
        anonymous_override_key: Session key that lets a guest session use AI (CI only).
    """

    auto_apply_threshold: float = 0.8
    suggest_threshold: float = 0.5
    max_processing_per_day: int = 50
    min_processing_interval_seconds: float = 10.0
    max_reprocess_count: int = 3
    entitlement_cache_ttl_seconds: float = 60.0
    provider_timeout_seconds: float = 60.0
    anonymous_override_key: Optional[str] = None

    def __post_init__(self):
        for name in ("auto_apply_threshold", "suggest_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.suggest_threshold > self.auto_apply_threshold:
            raise ValueError("suggest_threshold cannot exceed auto_apply_threshold")
        if self.max_processing_per_day < 0:
            raise ValueError("max_processing_per_day cannot be negative")
        if self.max_reprocess_count < 0:
            raise ValueError("max_reprocess_count cannot be negative")
        if self.min_processing_interval_seconds < 0:
            raise ValueError("min_processing_interval_seconds cannot be negative")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProcessingConfig":
        """Build a config from MINDNOTE_* environment variables.

        Unset variables keep their defaults. Values that do not parse raise ValueError.
        """
        env = os.environ if environ is None else environ
        kwargs = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.name == "anonymous_override_key":
                kwargs[f.name] = raw
            elif f.name in ("max_processing_per_day", "max_reprocess_count"):
                kwargs[f.name] = int(raw)
            else:
                kwargs[f.name] = float(raw)
        return cls(**kwargs)
