"""
reiminfer.qualifier_store
===========================

Side table mapping graph nodes to their candidate qualifier sets.

Each set is created on first access from the node's kind (see
:func:`default_types`), then only ever shrinks: rule handlers remove
qualifiers that cannot satisfy a constraint.  The single exception is
:meth:`QualifierStore.force`, which pins a set to one qualifier when a
mutation is proven.

A set that becomes empty means the constraints at that node are
unsatisfiable.  The store keeps going but records a
:class:`~reiminfer.errors.QualifierDiagnostic` for it.

Default qualifiers
------------------
====================================================  ===============================
node                                                  S(n)
====================================================  ===============================
null, literal, reference of a default-readonly type   {READONLY, POLYREAD, MUTABLE}
object / array instantiation (TNEW)                   {MUTABLE}
method return                                         {READONLY, POLYREAD}
instance field                                        {READONLY, POLYREAD}
static field                                          {READONLY, MUTABLE}
parameter, this, local, assignment, operator, method  {READONLY, POLYREAD, MUTABLE}
call site (the value of the call)                     {READONLY, POLYREAD, MUTABLE}
====================================================  ===============================
"""

from __future__ import annotations

import logging
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from reiminfer.config import AnalysisConfig
from reiminfer.errors import (
    DiagnosticKind,
    DiagnosticSeverity,
    QualifierDiagnostic,
    UnexpectedNodeKindError,
)
from reiminfer.program_graph import GraphNode, NodeKind, ProgramGraph
from reiminfer.qualifiers import ImmutabilityType, format_types

logger = logging.getLogger(__name__)

_R = ImmutabilityType.READONLY
_P = ImmutabilityType.POLYREAD
_M = ImmutabilityType.MUTABLE

_MAXIMAL: FrozenSet[ImmutabilityType] = frozenset({_R, _P, _M})

_KIND_DEFAULTS: Dict[NodeKind, FrozenSet[ImmutabilityType]] = {
    NodeKind.NULL_LITERAL: _MAXIMAL,
    NodeKind.LITERAL: _MAXIMAL,
    NodeKind.INSTANTIATION: frozenset({_M}),
    NodeKind.METHOD_RETURN: frozenset({_R, _P}),
    NodeKind.INSTANCE_FIELD: frozenset({_R, _P}),
    NodeKind.STATIC_FIELD: frozenset({_R, _M}),
    NodeKind.PARAMETER: _MAXIMAL,
    NodeKind.IDENTITY: _MAXIMAL,
    NodeKind.METHOD: _MAXIMAL,
    NodeKind.OPERATOR: _MAXIMAL,
    NodeKind.ASSIGNMENT: _MAXIMAL,
    NodeKind.LOCAL_VARIABLE: _MAXIMAL,
    NodeKind.PARAMETER_PASS: _MAXIMAL,
    NodeKind.CALL_SITE: _MAXIMAL,
}


def is_default_readonly_type(cls: Optional[GraphNode],
                             readonly_types: Iterable[str]) -> bool:
    """Primitive types and the configured library types are readonly."""
    if cls is None:
        return False
    if cls.is_primitive:
        return True
    for qualified in readonly_types:
        if cls.name == qualified or cls.name == qualified.rsplit(".", 1)[-1]:
            return True
    return False


def default_types(graph: ProgramGraph, node: GraphNode,
                  config: AnalysisConfig) -> Set[ImmutabilityType]:
    """Return a fresh default qualifier set for *node*.

    Raises
    ------
    UnexpectedNodeKindError
        If *node*'s kind cannot carry a qualifier.
    """
    if node.kind not in _KIND_DEFAULTS:
        raise UnexpectedNodeKindError(node.id, node.kind)
    if node.kind in (NodeKind.NULL_LITERAL, NodeKind.LITERAL):
        # readonly in principle, but all three keep downstream sites satisfiable
        return set(_MAXIMAL)
    if is_default_readonly_type(graph.type_of(node),
                                config.default_readonly_types):
        return set(_MAXIMAL)
    return set(_KIND_DEFAULTS[node.kind])


class QualifierStore:
    """Owner of every qualifier set for one analysis run.

    Parameters
    ----------
    graph : ProgramGraph
        The graph whose nodes are typed.
    config : AnalysisConfig
        Supplies the readonly-type list and the logging gates.
    """

    def __init__(self, graph: ProgramGraph,
                 config: Optional[AnalysisConfig] = None) -> None:
        self.graph = graph
        self.config = config or AnalysisConfig()
        self._types: Dict[str, Set[ImmutabilityType]] = {}
        self._seeded: Set[str] = set()
        self.removal_count: int = 0
        self.insertion_count: int = 0
        self.diagnostics: List[QualifierDiagnostic] = []

    # ----- access -----------------------------------------------------------

    def types(self, node) -> Set[ImmutabilityType]:
        """The live qualifier set of *node*, defaulted on first access."""
        n = self.graph.node(node)
        current = self._types.get(n.id)
        if current is None:
            current = default_types(self.graph, n, self.config)
            self._types[n.id] = current
        return current

    def is_tracked(self, node) -> bool:
        return self.graph.node(node).id in self._types

    def is_exactly(self, node, qualifier: ImmutabilityType) -> bool:
        t = self.types(node)
        return len(t) == 1 and qualifier in t

    def tracked_ids(self) -> List[str]:
        return list(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __iter__(self) -> Iterator[Tuple[str, Set[ImmutabilityType]]]:
        return iter(self._types.items())

    # ----- mutation ---------------------------------------------------------

    def remove(self, node, to_remove: Iterable[ImmutabilityType]) -> bool:
        """Remove *to_remove* from *node*'s set.  Returns ``True`` on change."""
        n = self.graph.node(node)
        current = self.types(n)
        doomed = current.intersection(to_remove)
        if not doomed:
            return False
        before = format_types(current) if self.config.log_debug else ""
        current.difference_update(doomed)
        self.removal_count += len(doomed)
        if self.config.log_debug:
            logger.debug("Remove: %s from %s for %s",
                         format_types(doomed), before, n.name)
        if not current:
            self._report_empty(n)
        return True

    def force(self, node, qualifier: ImmutabilityType) -> bool:
        """Pin *node*'s set to ``{qualifier}``.  Returns ``True`` on change.

        An emptied set is left empty; it has already been reported.
        """
        n = self.graph.node(node)
        current = self.types(n)
        if not current or current == {qualifier}:
            return False
        if self.config.log_debug:
            logger.debug("Set: %s to {%s} for %s",
                         format_types(current), qualifier, n.name)
        self.removal_count += len(current - {qualifier})
        if qualifier not in current:
            self.insertion_count += 1
        current.clear()
        current.add(qualifier)
        return True

    def seed(self, node_id: str, types: Iterable[ImmutabilityType]) -> None:
        """Install a summary-provided set in place of the kind default."""
        self._types[node_id] = set(types)
        self._seeded.add(node_id)

    def is_seeded(self, node_id: str) -> bool:
        return node_id in self._seeded

    # ----- read-out ---------------------------------------------------------

    def snapshot(self) -> Dict[str, FrozenSet[ImmutabilityType]]:
        return {nid: frozenset(t) for nid, t in self._types.items()}

    def empty_nodes(self) -> List[str]:
        return [nid for nid, t in self._types.items() if not t]

    def _report_empty(self, node: GraphNode) -> None:
        logger.warning("Qualifier set of %s (%s) is empty: "
                       "constraints are unsatisfiable", node.name, node.id)
        self.diagnostics.append(QualifierDiagnostic(
            severity=DiagnosticSeverity.ERROR,
            kind=DiagnosticKind.UNSATISFIABLE_CONSTRAINT,
            message="qualifier set pruned to empty",
            node_id=node.id,
            node_name=node.name,
        ))


def initialize_tracked_items(store: QualifierStore) -> int:
    """Default every parameter, method return, field and ``this`` up front.

    Local references are only tracked when a rule touches them.  Returns the
    number of nodes initialised.
    """
    graph = store.graph
    count = 0
    for node in graph.nodes_of_kind(
            NodeKind.PARAMETER, NodeKind.METHOD_RETURN,
            NodeKind.INSTANCE_FIELD, NodeKind.STATIC_FIELD,
            NodeKind.IDENTITY):
        store.types(node)
        count += 1
    return count


def seed_from_mapping(
    store: QualifierStore, mapping: Mapping[str, Iterable[ImmutabilityType]],
) -> int:
    """Seed every id of *mapping* present in the store's graph."""
    applied = 0
    for node_id, types in mapping.items():
        if node_id not in store.graph:
            logger.debug("Summary entry %s has no node in the graph", node_id)
            continue
        store.seed(node_id, types)
        applied += 1
    return applied


__all__ = [
    "QualifierStore",
    "default_types",
    "is_default_readonly_type",
    "initialize_tracked_items",
    "seed_from_mapping",
]
