"""
reiminfer/worklist.py
═════════════════════

Fixed-point driver for the inference rules.

The engine is a two-state machine (``RUNNING`` → ``FIXED``).  The worklist
holds every assignment-like node with incoming local flow.  One *pass*
visits each of them, classifies each incoming ``LOCAL_FLOW`` edge into
exactly one rule and ORs the handlers' "changed" results.  A pass with no
change ends the run.

Rule selection per edge ``source -> target``
────────────────────────────────────────────
    target is a field write              TWRITE   (TSWRITE for static fields)
    source is a field read               TREAD    (TSREAD for static fields)
    source is a call site                TCALL
    otherwise                            TASSIGN

A call site whose value is discarded or reaches anything but a TCALL target,
such as a field write or the receiver of a chained call, is *unbound*.  Each
pass applies TCALL to it with the call site itself as the target.

Termination: handlers only remove qualifiers, apart from ``force``, which
pins a set to one qualifier and never revives an empty set.  Every node
therefore changes a bounded number of times.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from reiminfer.config import AnalysisConfig
from reiminfer.errors import AnalysisCancelled, FixedPointNotReached
from reiminfer.inference_rules import InferenceRules
from reiminfer.program_graph import (
    ASSIGNMENT_LIKE_KINDS,
    STATIC_FIELD_ACCESS,
    STATIC_FIELD_ASSIGNMENT,
    STATIC_FIELD_VALUE,
    EdgeKind,
    GraphEdge,
    GraphNode,
    NodeKind,
    ProgramGraph,
    iter_field_accesses,
)
from reiminfer.qualifier_store import QualifierStore

logger = logging.getLogger(__name__)

_STATIC_TAGS = (STATIC_FIELD_ASSIGNMENT, STATIC_FIELD_VALUE, STATIC_FIELD_ACCESS)


class EngineState(enum.Enum):
    RUNNING = "running"
    FIXED = "fixed"


@dataclass
class WorklistResult:
    """Outcome of one fixed-point run.

    Attributes
    ----------
    passes : int
        Number of full passes over the worklist, including the final
        unchanged one.
    rule_applications : Counter
        Handler invocations keyed by rule name.
    removals : int
        Qualifiers removed during the run.
    insertions : int
        Qualifiers inserted by ``force`` during the run.
    state : EngineState
        ``FIXED`` once the run has converged.
    elapsed_seconds : float
        Wall-clock time.
    """
    passes: int = 0
    rule_applications: Counter = field(default_factory=Counter)
    removals: int = 0
    insertions: int = 0
    state: EngineState = EngineState.RUNNING
    elapsed_seconds: float = 0.0


class WorklistEngine:
    """Drive :class:`~reiminfer.inference_rules.InferenceRules` to a fixed point.

    Parameters
    ----------
    graph : ProgramGraph
    store : QualifierStore
    config : AnalysisConfig, optional
        Defaults to the store's configuration.
    should_cancel : callable, optional
        Polled between passes; returning ``True`` aborts the run with
        :class:`~reiminfer.errors.AnalysisCancelled`.
    """

    def __init__(
        self,
        graph: ProgramGraph,
        store: QualifierStore,
        config: Optional[AnalysisConfig] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.graph = graph
        self.store = store
        self.config = config or store.config
        self.should_cancel = should_cancel
        self.rules = InferenceRules(graph, store, self.config)
        self.state = EngineState.RUNNING

    # ----- worklist ---------------------------------------------------------

    def worklist(self) -> List[GraphNode]:
        """Assignment-like nodes with incoming local flow, ordered by id."""
        items = [
            n for n in self.graph.nodes_of_kind(*ASSIGNMENT_LIKE_KINDS)
            if self.graph.in_edges(n, EdgeKind.LOCAL_FLOW)
        ]
        return sorted(items)

    def unbound_calls(self) -> List[GraphNode]:
        """Call sites no TCALL handles as the source of an edge, ordered by id."""
        return sorted(
            c for c in self.graph.nodes_of_kind(NodeKind.CALL_SITE)
            if not self._bound_to_assignments(c)
        )

    def _bound_to_assignments(self, callsite: GraphNode) -> bool:
        targets = self.graph.successors(callsite, EdgeKind.LOCAL_FLOW)
        return bool(targets) and all(
            t.kind in ASSIGNMENT_LIKE_KINDS and t.kind is not NodeKind.FIELD_WRITE
            for t in targets
        )

    # ----- static field tagging ---------------------------------------------

    def tag_static_accesses(self) -> int:
        count = 0
        for access in iter_field_accesses(self.graph):
            if access.kind is NodeKind.FIELD_WRITE:
                fld = self.graph.first_successor(access, EdgeKind.INTERPROCEDURAL_FLOW)
                tag = STATIC_FIELD_ASSIGNMENT
            else:
                fld = self.graph.first_predecessor(access, EdgeKind.INTERPROCEDURAL_FLOW)
                tag = STATIC_FIELD_VALUE
            if fld is not None and fld.kind is NodeKind.STATIC_FIELD:
                access.tags.add(tag)
                access.tags.add(STATIC_FIELD_ACCESS)
                count += 1
        return count

    def untag_static_accesses(self) -> None:
        for access in iter_field_accesses(self.graph):
            access.tags.difference_update(_STATIC_TAGS)

    # ----- driving ----------------------------------------------------------

    def run(self) -> WorklistResult:
        """Iterate until a pass changes nothing.

        Raises
        ------
        AnalysisCancelled
            If ``should_cancel`` returned ``True`` between two passes.
        FixedPointNotReached
            If ``config.max_passes`` passes did not converge.
        """
        t0 = time.monotonic()
        removals_before = self.store.removal_count
        insertions_before = self.store.insertion_count
        result = WorklistResult()
        self.state = EngineState.RUNNING
        self.tag_static_accesses()
        try:
            items = self.worklist()
            calls = self.unbound_calls()
            if self.config.log_general:
                logger.info("Worklist holds %d assignment nodes", len(items))
            while self.state is EngineState.RUNNING:
                if self.should_cancel is not None and self.should_cancel():
                    raise AnalysisCancelled(
                        f"analysis cancelled after {result.passes} passes")
                if result.passes >= self.config.max_passes:
                    raise FixedPointNotReached(
                        f"no fixed point after {result.passes} passes")
                result.passes += 1
                changed = self.run_pass(items, calls)
                if self.config.log_general:
                    logger.info("Pass %d: %s", result.passes,
                                "changed" if changed else "no change")
                if not changed:
                    self.state = EngineState.FIXED
        finally:
            self.untag_static_accesses()

        result.state = self.state
        result.rule_applications = Counter(self.rules.fired)
        result.removals = self.store.removal_count - removals_before
        result.insertions = self.store.insertion_count - insertions_before
        result.elapsed_seconds = time.monotonic() - t0
        if self.config.log_general:
            logger.info("Fixed point reached after %d passes (%d removals, %.3fs)",
                        result.passes, result.removals, result.elapsed_seconds)
        return result

    def run_pass(self, items: List[GraphNode],
                 calls: Sequence[GraphNode] = ()) -> bool:
        changed = False
        for target in items:
            for edge in self.graph.in_edges(target, EdgeKind.LOCAL_FLOW):
                if self.apply(edge):
                    changed = True
        for callsite in calls:
            if self.rules.handle_unbound_call(callsite):
                changed = True
        return changed

    def verify_stable(self) -> int:
        """Run one extra pass and return how many qualifiers it removed.

        A converged store yields zero.
        """
        before = self.store.removal_count
        self.tag_static_accesses()
        try:
            self.run_pass(self.worklist(), self.unbound_calls())
        finally:
            self.untag_static_accesses()
        return self.store.removal_count - before

    # ----- dispatch ---------------------------------------------------------

    def apply(self, edge: GraphEdge) -> bool:
        """Apply the single rule selected by *edge*."""
        source, target = edge.source, edge.target
        rules = self.rules
        graph = self.graph

        if target.kind is NodeKind.FIELD_WRITE:
            fld = graph.the_successor(target, EdgeKind.INTERPROCEDURAL_FLOW)
            y = rules.resolve_reference(source)
            if target.tagged(STATIC_FIELD_ASSIGNMENT):
                return rules.handle_static_field_write(
                    fld, y, graph.containing_method(target))
            x = self._receiver_of_access(target)
            return rules.handle_field_write(x, fld, y)

        if source.kind is NodeKind.FIELD_READ:
            fld = graph.the_predecessor(source, EdgeKind.INTERPROCEDURAL_FLOW)
            if source.tagged(STATIC_FIELD_VALUE):
                return rules.handle_static_field_read(
                    target, fld, graph.containing_method(source))
            y = self._receiver_of_access(source)
            return rules.handle_field_read(target, y, fld)

        if source.kind is NodeKind.CALL_SITE:
            return rules.handle_call(target, source)

        return rules.handle_assignment(target, source)

    def _receiver_of_access(self, access: GraphNode) -> Optional[GraphNode]:
        receiver = self.graph.first_predecessor(access, EdgeKind.FIELD_ACCESS)
        if receiver is None:
            return None
        return self.rules.resolve_reference(receiver)


__all__ = ["EngineState", "WorklistResult", "WorklistEngine"]
