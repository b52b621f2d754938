"""
reiminfer/purity.py
═══════════════════

Method purity classification over a converged qualifier store.

A method is *pure* when it has no externally observable side effect through
its receiver, its parameters or static state.  Two layers decide this:

1. an allow-list of signatures that are pure by convention
   (``AnalysisConfig.default_pure_patterns``, regular expressions matched
   against :attr:`GraphNode.signature`, falling back to the node name);
2. a pluggable :class:`PurityPolicy` for every other method.  The shipped
   :class:`MutationEvidencePolicy` looks for mutation evidence in the
   inferred qualifiers and propagates impurity along the call graph.

Usage::

    verdicts = PurityClassifier(graph, store, config).classify()
    impure = [mid for mid, v in verdicts.items() if not v.pure]
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Protocol, Set, runtime_checkable

from reiminfer.config import AnalysisConfig
from reiminfer.program_graph import EdgeKind, GraphNode, NodeKind, ProgramGraph
from reiminfer.qualifier_store import QualifierStore
from reiminfer.qualifiers import ImmutabilityType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurityVerdict:
    """Classification of one method."""
    pure: bool
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return {"pure": self.pure, "reason": self.reason}


@runtime_checkable
class PurityPolicy(Protocol):
    """Decides purity for methods outside the allow-list."""

    def evaluate(self, classifier: "PurityClassifier",
                 methods: List[GraphNode]) -> Dict[str, PurityVerdict]:
        ...


class MutationEvidencePolicy:
    """Impure on direct mutation evidence, or on calling an impure method.

    Direct evidence is a receiver, a parameter or the method's own static
    qualifier resolved to exactly ``{MUTABLE}``.  Impurity then flows from
    callee to caller until nothing changes.
    """

    def evaluate(self, classifier: "PurityClassifier",
                 methods: List[GraphNode]) -> Dict[str, PurityVerdict]:
        verdicts: Dict[str, PurityVerdict] = {}
        for m in methods:
            reason = classifier.mutation_evidence(m)
            if reason is None:
                verdicts[m.id] = PurityVerdict(True, "no mutation evidence")
            else:
                verdicts[m.id] = PurityVerdict(False, reason)

        callees = classifier.call_graph()
        changed = True
        while changed:
            changed = False
            for m in methods:
                if not verdicts[m.id].pure:
                    continue
                for callee in callees.get(m.id, ()):
                    verdict = verdicts.get(callee.id)
                    if verdict is None:
                        verdict = classifier.allow_listed_verdict(callee)
                    if verdict is not None and not verdict.pure:
                        verdicts[m.id] = PurityVerdict(
                            False, f"calls impure method {callee.name}")
                        changed = True
                        break
        return verdicts


class PurityClassifier:
    """Label every method node of *graph* pure or impure.

    Parameters
    ----------
    graph : ProgramGraph
    store : QualifierStore
        A store that has reached its fixed point.
    config : AnalysisConfig, optional
    policy : PurityPolicy, optional
        Defaults to :class:`MutationEvidencePolicy`.
    """

    def __init__(self, graph: ProgramGraph, store: QualifierStore,
                 config: Optional[AnalysisConfig] = None,
                 policy: Optional[PurityPolicy] = None) -> None:
        self.graph = graph
        self.store = store
        self.config = config or store.config
        self.policy: PurityPolicy = policy or MutationEvidencePolicy()
        self._patterns: List[Pattern[str]] = [
            re.compile(p) for p in self.config.default_pure_patterns
        ]

    def is_default_pure(self, method: GraphNode) -> bool:
        text = method.signature or method.name
        return any(p.match(text) for p in self._patterns)

    def allow_listed_verdict(self, method: GraphNode) -> Optional[PurityVerdict]:
        if self.is_default_pure(method):
            return PurityVerdict(True, "default pure signature")
        return None

    def mutation_evidence(self, method: GraphNode) -> Optional[str]:
        """Describe why *method* mutates observable state, or ``None``."""
        sig = self.graph.method_signature(method)
        if sig.identity is not None and self._is_mutable(sig.identity):
            return "receiver is mutable"
        for p in sig.parameters:
            if self._is_mutable(p):
                return f"parameter {p.name} is mutable"
        if self.store.is_tracked(method) and self._is_mutable(method):
            return "writes static state"
        return None

    def _is_mutable(self, node: GraphNode) -> bool:
        return self.store.is_exactly(node, ImmutabilityType.MUTABLE)

    def call_graph(self) -> Dict[str, List[GraphNode]]:
        """Caller id to the methods its call sites may dispatch to."""
        edges: Dict[str, List[GraphNode]] = defaultdict(list)
        for callsite in self.graph.nodes_of_kind(NodeKind.CALL_SITE):
            caller = self.graph.containing_method(callsite)
            target = self.graph.first_successor(callsite, EdgeKind.INVOKES)
            if caller is None or target is None:
                continue
            for callee in self._dispatch_targets(target):
                if callee not in edges[caller.id]:
                    edges[caller.id].append(callee)
        return edges

    def _dispatch_targets(self, method: GraphNode) -> List[GraphNode]:
        targets = [method]
        if self.config.points_to_mode:
            return targets
        seen: Set[str] = {method.id}
        i = 0
        while i < len(targets):
            for sub in self.graph.overriding_methods(targets[i]):
                if sub.id not in seen:
                    seen.add(sub.id)
                    targets.append(sub)
            i += 1
        return targets

    def classify(self) -> Dict[str, PurityVerdict]:
        methods = sorted(self.graph.nodes_of_kind(NodeKind.METHOD))
        verdicts: Dict[str, PurityVerdict] = {}
        undecided: List[GraphNode] = []
        for m in methods:
            listed = self.allow_listed_verdict(m)
            if listed is not None:
                verdicts[m.id] = listed
            else:
                undecided.append(m)
        verdicts.update(self.policy.evaluate(self, undecided))
        if self.config.log_general:
            impure = sum(1 for v in verdicts.values() if not v.pure)
            logger.info("Purity: %d methods, %d impure", len(verdicts), impure)
        return verdicts


__all__ = [
    "PurityVerdict",
    "PurityPolicy",
    "MutationEvidencePolicy",
    "PurityClassifier",
]
