"""
reiminfer.qualifiers
======================

The reference-immutability qualifier lattice and viewpoint adaptation.

Theory
------
The three qualifiers form a chain::

    MUTABLE  <:  POLYREAD  <:  READONLY

``<:`` is the subtype relation: MUTABLE is the most specific qualifier and
READONLY the most general one.  A reference typed READONLY cannot be used to
mutate its referent; a POLYREAD reference takes its mutability from the
context it is observed through.

Viewpoint adaptation (from Universe Types) combines a *context* qualifier
with a *declared* qualifier::

    q  |> READONLY  = READONLY
    q  |> MUTABLE   = MUTABLE
    q  |> POLYREAD  = q

Fields and methods share the same adaptation formula.

Public API
----------
    ImmutabilityType        - the qualifier enum
    is_subtype              - ``a <: b``
    adapt_method            - method viewpoint adaptation
    adapt_field             - field viewpoint adaptation
    maximal_type            - the most general qualifier of a set
    least_common_ancestor   - most general qualifier common to two sets
"""

from __future__ import annotations

import enum
from typing import FrozenSet, Iterable, Optional


class ImmutabilityType(enum.Enum):
    """Reference-immutability qualifier."""

    MUTABLE = "MUTABLE"
    POLYREAD = "POLYREAD"
    READONLY = "READONLY"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __lt__(self, other: "ImmutabilityType") -> bool:
        if not isinstance(other, ImmutabilityType):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "ImmutabilityType") -> bool:
        if not isinstance(other, ImmutabilityType):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "ImmutabilityType") -> bool:
        if not isinstance(other, ImmutabilityType):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "ImmutabilityType") -> bool:
        if not isinstance(other, ImmutabilityType):
            return NotImplemented
        return self.rank >= other.rank

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> Optional["ImmutabilityType"]:
        """Parse a qualifier name; returns ``None`` for unknown names."""
        try:
            return cls(name.strip().upper())
        except ValueError:
            return None


_RANKS = {
    ImmutabilityType.MUTABLE: 0,
    ImmutabilityType.POLYREAD: 1,
    ImmutabilityType.READONLY: 2,
}

ALL_TYPES: FrozenSet[ImmutabilityType] = frozenset(ImmutabilityType)


def is_subtype(a: ImmutabilityType, b: ImmutabilityType) -> bool:
    """``a <: b``."""
    return a.rank <= b.rank


def adapt_method(context: ImmutabilityType,
                 declared: ImmutabilityType) -> ImmutabilityType:
    """Method viewpoint adaptation ``context |> declared``."""
    if declared is ImmutabilityType.READONLY:
        return ImmutabilityType.READONLY
    if declared is ImmutabilityType.MUTABLE:
        return ImmutabilityType.MUTABLE
    # declared is POLYREAD
    return context


def adapt_field(context: ImmutabilityType,
                declared: ImmutabilityType) -> ImmutabilityType:
    """Field viewpoint adaptation; identical to :func:`adapt_method`."""
    return adapt_method(context, declared)


def maximal_type(types: Iterable[ImmutabilityType]) -> Optional[ImmutabilityType]:
    """The most general qualifier of *types*, or ``None`` if empty.

    This is the qualifier reported for a reference once the fixed point is
    reached: READONLY is preferred over POLYREAD over MUTABLE.
    """
    best: Optional[ImmutabilityType] = None
    for t in types:
        if best is None or t.rank > best.rank:
            best = t
    return best


def least_common_ancestor(
    a: Iterable[ImmutabilityType], b: Iterable[ImmutabilityType],
) -> Optional[ImmutabilityType]:
    """Most general qualifier present in both *a* and *b*."""
    return maximal_type(set(a) & set(b))


def format_types(types: Iterable[ImmutabilityType]) -> str:
    """Stable ``{READONLY, POLYREAD}``-style rendering (most general first)."""
    ordered = sorted(types, key=lambda t: -t.rank)
    return "{" + ", ".join(t.value for t in ordered) + "}"


__all__ = [
    "ImmutabilityType",
    "ALL_TYPES",
    "is_subtype",
    "adapt_method",
    "adapt_field",
    "maximal_type",
    "least_common_ancestor",
    "format_types",
]
