"""
reiminfer.constraint_solver
=============================

Existential pruning of qualifier sets.

Every inference rule reduces to constraints of the shape
``P(q_1, ..., q_k)`` over the qualifiers of ``k`` graph nodes.  A qualifier
``v`` survives in ``S(n_i)`` iff some choice of qualifiers from the other
sets makes ``P`` true with ``q_i = v``.  Sets are processed in order and
each one is pruned against the *current* contents of the others, so a
removal made for ``n_1`` is already visible when ``n_2`` is pruned.

Removal is monotone, so repeated application reaches a fixed point; the
worklist engine drives that iteration.
"""

from __future__ import annotations

import itertools
from typing import Callable, Sequence, Set

from reiminfer.program_graph import GraphNode
from reiminfer.qualifier_store import QualifierStore
from reiminfer.qualifiers import ImmutabilityType, adapt_method

Predicate = Callable[..., bool]
Adaptation = Callable[[ImmutabilityType, ImmutabilityType], ImmutabilityType]


def prune(store: QualifierStore, nodes: Sequence[GraphNode],
          predicate: Predicate) -> bool:
    """Prune each node's set against ``predicate(*qualifiers)``.

    Returns ``True`` if any set changed.
    """
    changed = False
    for i, node in enumerate(nodes):
        own = store.types(node)
        others = [store.types(n) for j, n in enumerate(nodes) if j != i]
        doomed: Set[ImmutabilityType] = set()
        for value in own:
            if not _satisfiable(i, value, others, predicate):
                doomed.add(value)
        if doomed and store.remove(node, doomed):
            changed = True
    return changed


def _satisfiable(position: int, value: ImmutabilityType,
                 others: Sequence[Set[ImmutabilityType]],
                 predicate: Predicate) -> bool:
    for combo in itertools.product(*others):
        args = list(combo)
        args.insert(position, value)
        if predicate(*args):
            return True
    return False


# ---------------------------------------------------------------------------
# Constraint shapes used by the rules
# ---------------------------------------------------------------------------

def satisfy_subtype(store: QualifierStore, sub: GraphNode,
                    sup: GraphNode) -> bool:
    """``sub <: sup``."""
    return prune(store, (sub, sup), lambda s, t: s.rank <= t.rank)


def satisfy_adapted_subtype(store: QualifierStore, sub: GraphNode,
                            context: GraphNode, declared: GraphNode,
                            adapt: Adaptation = adapt_method) -> bool:
    """``sub <: context |> declared``."""
    return prune(
        store, (sub, context, declared),
        lambda s, c, d: s.rank <= adapt(c, d).rank,
    )


def satisfy_adapted_supertype(store: QualifierStore, context: GraphNode,
                              declared: GraphNode, sup: GraphNode,
                              adapt: Adaptation = adapt_method) -> bool:
    """``context |> declared <: sup``."""
    return prune(
        store, (sup, context, declared),
        lambda s, c, d: adapt(c, d).rank <= s.rank,
    )


def satisfy_fixed_context(store: QualifierStore, sub: GraphNode,
                          context: ImmutabilityType, declared: GraphNode,
                          adapt: Adaptation = adapt_method) -> bool:
    """``sub <: context |> declared`` with a known context qualifier."""
    return prune(
        store, (sub, declared),
        lambda s, d: s.rank <= adapt(context, d).rank,
    )


def satisfy_self_adapted(store: QualifierStore, x: GraphNode,
                         declared: GraphNode,
                         adapt: Adaptation = adapt_method) -> bool:
    """``x |> declared <: x``, the TCALL return constraint."""
    return prune(
        store, (x, declared),
        lambda q, d: adapt(q, d).rank <= q.rank,
    )


__all__ = [
    "prune",
    "satisfy_subtype",
    "satisfy_adapted_subtype",
    "satisfy_adapted_supertype",
    "satisfy_fixed_context",
    "satisfy_self_adapted",
]
