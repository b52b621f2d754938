"""
reiminfer/analysis.py
═════════════════════

Top-level entry point: reference immutability and method purity for one
program graph.

Pipeline
────────
1. Build a :class:`~reiminfer.qualifier_store.QualifierStore`; seed it from
   a summary when ``load_summaries`` is set.
2. Default every parameter, return, field and receiver.
3. Run the :class:`~reiminfer.worklist.WorklistEngine` to its fixed point.
4. Sanity checks (``run_sanity_checks``): every tracked set is non-empty
   and one more pass removes nothing.
5. Classify methods with :class:`~reiminfer.purity.PurityClassifier`.
6. Write the summary when ``generate_summaries`` is set.

Usage::

    from reiminfer import AnalysisConfig, ImmutabilityAnalysis, load_graph

    results = ImmutabilityAnalysis(load_graph("box.rg")).run()
    for node_id, q in results.resolved.items():
        print(node_id, q)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional

from reiminfer.config import AnalysisConfig
from reiminfer.errors import DiagnosticKind, DiagnosticSeverity, QualifierDiagnostic
from reiminfer.program_graph import ProgramGraph
from reiminfer.purity import PurityClassifier, PurityPolicy, PurityVerdict
from reiminfer.qualifier_store import QualifierStore, initialize_tracked_items
from reiminfer.qualifiers import ImmutabilityType, format_types, maximal_type
from reiminfer.summaries import apply_summary, load_summary, save_summary
from reiminfer.worklist import WorklistEngine, WorklistResult

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResults:
    """Everything one run produces.

    Attributes
    ----------
    qualifiers : dict
        Node id to its final qualifier set.
    resolved : dict
        Node id to its most general remaining qualifier.
    purity : dict
        Method id to :class:`~reiminfer.purity.PurityVerdict`.
    diagnostics : list
        Non-fatal findings.
    worklist : WorklistResult or None
        Fixed-point statistics; ``None`` when the analysis was disabled.
    """
    qualifiers: Dict[str, FrozenSet[ImmutabilityType]] = field(default_factory=dict)
    resolved: Dict[str, ImmutabilityType] = field(default_factory=dict)
    purity: Dict[str, PurityVerdict] = field(default_factory=dict)
    diagnostics: List[QualifierDiagnostic] = field(default_factory=list)
    worklist: Optional[WorklistResult] = None

    @property
    def has_errors(self) -> bool:
        return any(d.severity is DiagnosticSeverity.ERROR for d in self.diagnostics)

    def to_dict(self) -> Dict[str, object]:
        return {
            "qualifiers": {
                nid: [t.name for t in sorted(ts, key=lambda t: -t.rank)]
                for nid, ts in sorted(self.qualifiers.items())
            },
            "resolved": {nid: q.name for nid, q in sorted(self.resolved.items())},
            "purity": {mid: v.to_dict() for mid, v in sorted(self.purity.items())},
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "passes": self.worklist.passes if self.worklist else 0,
        }


class ImmutabilityAnalysis:
    """Run the inference over *graph* with *config*.

    Parameters
    ----------
    graph : ProgramGraph
    config : AnalysisConfig, optional
    purity_policy : PurityPolicy, optional
        Replaces the default mutation-evidence policy.
    should_cancel : callable, optional
        Cooperative cancellation hook, polled between worklist passes.
    """

    def __init__(
        self,
        graph: ProgramGraph,
        config: Optional[AnalysisConfig] = None,
        purity_policy: Optional[PurityPolicy] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.graph = graph
        self.config = config or AnalysisConfig()
        self.purity_policy = purity_policy
        self.should_cancel = should_cancel
        self.store = QualifierStore(graph, self.config)

    def run(self) -> AnalysisResults:
        cfg = self.config
        if not cfg.enable_analysis:
            logger.info("Immutability analysis is disabled")
            return AnalysisResults()

        if cfg.log_general:
            logger.info("Starting immutability analysis (%s mode) on %r",
                        cfg.mode.value, self.graph)

        if cfg.load_summaries:
            apply_summary(self.store, load_summary(cfg.summary_path))
        tracked = initialize_tracked_items(self.store)
        if cfg.log_general:
            logger.info("Initialized %d tracked items", tracked)

        engine = WorklistEngine(self.graph, self.store, cfg,
                                should_cancel=self.should_cancel)
        worklist = engine.run()

        if cfg.run_sanity_checks:
            self._sanity_checks(engine)

        purity = PurityClassifier(self.graph, self.store, cfg,
                                  policy=self.purity_policy).classify()

        if cfg.generate_summaries:
            save_summary(self.store, cfg.summary_path)

        qualifiers = self.store.snapshot()
        resolved = {}
        for nid, types in qualifiers.items():
            best = maximal_type(types)
            if best is not None:
                resolved[nid] = best
        return AnalysisResults(
            qualifiers=qualifiers,
            resolved=resolved,
            purity=purity,
            diagnostics=list(self.store.diagnostics),
            worklist=worklist,
        )

    def _sanity_checks(self, engine: WorklistEngine) -> None:
        empty = self.store.empty_nodes()
        if empty and self.config.log_general:
            logger.warning("Sanity check: %d nodes have empty qualifier sets",
                           len(empty))
        removed = engine.verify_stable()
        if removed:
            logger.warning("Sanity check: verification pass removed %d qualifiers",
                           removed)
            self.store.diagnostics.append(QualifierDiagnostic(
                severity=DiagnosticSeverity.ERROR,
                kind=DiagnosticKind.UNSTABLE_FIXED_POINT,
                message=f"verification pass removed {removed} qualifiers",
            ))
        elif self.config.log_general:
            logger.info("Sanity checks passed")
        if self.config.log_debug:
            for nid, types in sorted(self.store.snapshot().items()):
                logger.debug("%s: %s", nid, format_types(types))


__all__ = ["AnalysisResults", "ImmutabilityAnalysis"]
