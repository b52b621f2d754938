"""
reiminfer/config.py
═══════════════════

Explicit analysis configuration.

A single immutable :class:`AnalysisConfig` value is passed to the analysis
entry point and threaded into every component that needs it; there is no
process-wide preference state.

Defaults
────────
    enable_analysis      True    (the caller asked for a run)
    mode                 INFERENCE
    generate_summaries   False
    load_summaries       False
    run_sanity_checks    True
    log_general          True
    log_inference_rules  False
    log_debug            False
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple


class AnalysisMode(enum.Enum):
    """How call sites are associated with methods for re-checking.

    ``INFERENCE``  call sites of a method include those resolved to any
                   method it overrides (class-hierarchy widening).
    ``POINTS_TO``  only call sites whose resolution targets the method
                   itself (the frontend's points-to call resolution).
    """
    INFERENCE = "inference"
    POINTS_TO = "points-to"


# Types whose instances are readonly for all practical purposes.
DEFAULT_READONLY_TYPES: Tuple[str, ...] = (
    "java.lang.Integer",
    "java.lang.Long",
    "java.lang.Short",
    "java.lang.Boolean",
    "java.lang.Byte",
    "java.lang.Double",
    "java.lang.Float",
    "java.lang.Character",
    "java.lang.String",
    "java.lang.Number",
    "java.util.concurrent.atomic.AtomicInteger",
    "java.util.concurrent.atomic.AtomicLong",
    "java.math.BigDecimal",
    "java.math.BigInteger",
)

# Signatures that are pure by convention.
DEFAULT_PURE_PATTERNS: Tuple[str, ...] = (
    r".*\.equals\((java\.lang\.)?Object\)$",
    r".*\.hashCode\(\)$",
    r".*\.toString\(\)$",
    r".*\.compareTo\(.*\)$",
)


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration for one analysis run.

    Attributes
    ----------
    enable_analysis : bool
        When false, :class:`~reiminfer.analysis.ImmutabilityAnalysis` returns
        an empty result without touching the graph.
    mode : AnalysisMode
        Call-site association mode for the TCALL re-check.
    generate_summaries : bool
        Persist the final qualifier sets to ``summary_path``.
    load_summaries : bool
        Seed the qualifier store from ``summary_path`` before the run.
    run_sanity_checks : bool
        Verify non-empty sets and idempotence after the fixed point.
    log_general, log_inference_rules, log_debug : bool
        Gate progress, per-rule and per-removal log messages.
    summary_path : str or None
        Location of the summary document.
    max_passes : int
        Safety bound on worklist passes.
    default_readonly_types : tuple of str
        Qualified class names defaulted as readonly-compatible.
    default_pure_patterns : tuple of str
        Regular expressions over method signatures treated as pure.
    """
    enable_analysis: bool = True
    mode: AnalysisMode = AnalysisMode.INFERENCE
    generate_summaries: bool = False
    load_summaries: bool = False
    run_sanity_checks: bool = True
    log_general: bool = True
    log_inference_rules: bool = False
    log_debug: bool = False
    summary_path: Optional[str] = None
    max_passes: int = 10_000
    default_readonly_types: Tuple[str, ...] = field(
        default=DEFAULT_READONLY_TYPES)
    default_pure_patterns: Tuple[str, ...] = field(
        default=DEFAULT_PURE_PATTERNS)

    def __post_init__(self) -> None:
        if self.max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        if (self.generate_summaries or self.load_summaries) and not self.summary_path:
            raise ValueError(
                "summary_path is required when summaries are generated or loaded")

    @property
    def points_to_mode(self) -> bool:
        return self.mode is AnalysisMode.POINTS_TO

    def with_overrides(self, **changes: Any) -> "AnalysisConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from a plain mapping (e.g. parsed JSON).

        Keys may use ``snake_case`` or ``camelCase``; unknown keys raise
        ``ValueError``.
        """
        names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _snake(key)
            if name not in names:
                raise ValueError(f"unknown configuration key {key!r}")
            if name == "mode" and not isinstance(value, AnalysisMode):
                value = _parse_mode(value)
            elif name in ("default_readonly_types", "default_pure_patterns"):
                value = tuple(value)
            kwargs[name] = value
        return cls(**kwargs)


def _snake(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).replace("-", "_")


def _parse_mode(value: Any) -> AnalysisMode:
    text = str(value).strip().lower().replace("_", "-")
    if text in ("pointsto", "points-to"):
        return AnalysisMode.POINTS_TO
    if text == "inference":
        return AnalysisMode.INFERENCE
    raise ValueError(f"unknown analysis mode {value!r}")


__all__ = [
    "AnalysisConfig",
    "AnalysisMode",
    "DEFAULT_READONLY_TYPES",
    "DEFAULT_PURE_PATTERNS",
]
