"""
reiminfer/errors.py
═══════════════════

Exception hierarchy and non-fatal diagnostics for the inference engine.

Error Hierarchy
───────────────

    ReimError (base)
    ├── MalformedGraphError       - an edge pattern the engine relies on is missing
    ├── UnexpectedNodeKindError   - a node kind with no default qualifier set
    ├── SummaryError              - unreadable / inconsistent summary file
    ├── GraphFormatError          - textual graph description failed to parse
    ├── AnalysisCancelled         - cooperative cancellation between passes
    └── FixedPointNotReached      - pass limit exhausted before stabilising

Fatal conditions raise.  Conditions the analysis can survive (an emptied
qualifier set, a failed sanity check) are recorded as
:class:`QualifierDiagnostic` entries instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — EXCEPTIONS
# ═════════════════════════════════════════════════════════════════════════

class ReimError(Exception):
    """Base class for every error raised by :mod:`reiminfer`."""


class MalformedGraphError(ReimError):
    """An exactly-one edge lookup found no match.

    Raised when the program graph lacks a structural edge the inference
    rules depend on (e.g. the field behind a field-write node).  This is a
    frontend defect; the engine refuses to continue with a missing node.
    """

    def __init__(self, message: str, node_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class UnexpectedNodeKindError(ReimError):
    """A node whose kind has no default qualifier set was asked for one."""

    def __init__(self, node_id: str, kind: Any) -> None:
        super().__init__(
            f"Unexpected graph element {node_id!r} of kind {kind}: "
            f"no default immutability qualifiers apply"
        )
        self.node_id = node_id
        self.kind = kind


class SummaryError(ReimError):
    """A summary document could not be read or applied."""


class GraphFormatError(ReimError):
    """A textual program-graph description is invalid."""

    def __init__(self, message: str, line: int = 0, column: int = 0) -> None:
        loc = f" (line {line}, column {column})" if line else ""
        super().__init__(f"{message}{loc}")
        self.line = line
        self.column = column


class AnalysisCancelled(ReimError):
    """The caller requested cancellation between worklist passes."""


class FixedPointNotReached(ReimError):
    """The worklist did not stabilise within the configured pass limit."""


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — DIAGNOSTICS
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticKind(Enum):
    UNSATISFIABLE_CONSTRAINT = "unsatisfiableConstraint"
    UNSTABLE_FIXED_POINT = "unstableFixedPoint"
    MISSING_RULE_OPERAND = "missingRuleOperand"


@dataclass(frozen=True)
class QualifierDiagnostic:
    """A non-fatal finding produced while inferring qualifiers."""
    severity: DiagnosticSeverity
    kind: DiagnosticKind
    message: str
    node_id: str = ""
    node_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "kind": self.kind.value,
            "message": self.message,
            "node": self.node_id,
            "name": self.node_name,
        }

    def __str__(self) -> str:
        where = self.node_name or self.node_id or "?"
        return f"[{self.severity.value}] {self.message} ({where})"


__all__ = [
    "ReimError",
    "MalformedGraphError",
    "UnexpectedNodeKindError",
    "SummaryError",
    "GraphFormatError",
    "AnalysisCancelled",
    "FixedPointNotReached",
    "DiagnosticSeverity",
    "DiagnosticKind",
    "QualifierDiagnostic",
]
