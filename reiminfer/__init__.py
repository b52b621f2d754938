"""
reiminfer — Reference Immutability and Method Purity Inference
==============================================================

Infers ReIm reference-immutability qualifiers (``mutable``, ``polyread``,
``readonly``) for every reference of a program dependence graph, and from
them classifies methods as pure or impure.

Core modules
------------
program_graph
    Node / edge model of the program, built by an external frontend.
qualifiers
    The qualifier chain and viewpoint adaptation.
qualifier_store
    Candidate qualifier sets per node, with kind-based defaults.
constraint_solver
    Existential pruning of qualifier sets.
container_fields
    Fields that must turn mutable together.
inference_rules
    TASSIGN / TWRITE / TREAD / TSWRITE / TSREAD / TCALL handlers.
worklist
    Fixed-point driver.
purity
    Pure / impure classification.
summaries
    JSON persistence of final qualifier sets.
graph_format
    Textual graph description (parsimonious grammar).
analysis
    :class:`ImmutabilityAnalysis`, the entry point.

Quick start
-----------
>>> from reiminfer import ImmutabilityAnalysis, parse_graph
>>> graph = parse_graph('''
... node m : method
... node m.a : local
... node m.b : local
... edge m.a -> m.b : local_flow
... ''')
>>> results = ImmutabilityAnalysis(graph).run()
>>> str(results.resolved["m.b"])
'READONLY'
"""

from __future__ import annotations

__version__ = "0.3.0"

from reiminfer.analysis import AnalysisResults, ImmutabilityAnalysis
from reiminfer.config import AnalysisConfig, AnalysisMode
from reiminfer.errors import (
    AnalysisCancelled,
    FixedPointNotReached,
    GraphFormatError,
    MalformedGraphError,
    QualifierDiagnostic,
    ReimError,
    SummaryError,
    UnexpectedNodeKindError,
)
from reiminfer.graph_format import load_graph, parse_graph
from reiminfer.program_graph import EdgeKind, GraphNode, NodeKind, ProgramGraph
from reiminfer.purity import PurityClassifier, PurityVerdict
from reiminfer.qualifier_store import QualifierStore
from reiminfer.qualifiers import ImmutabilityType
from reiminfer.worklist import WorklistEngine, WorklistResult

__all__ = [
    "__version__",
    "AnalysisResults",
    "ImmutabilityAnalysis",
    "AnalysisConfig",
    "AnalysisMode",
    "AnalysisCancelled",
    "FixedPointNotReached",
    "GraphFormatError",
    "MalformedGraphError",
    "QualifierDiagnostic",
    "ReimError",
    "SummaryError",
    "UnexpectedNodeKindError",
    "load_graph",
    "parse_graph",
    "EdgeKind",
    "GraphNode",
    "NodeKind",
    "ProgramGraph",
    "PurityClassifier",
    "PurityVerdict",
    "QualifierStore",
    "ImmutabilityType",
    "WorklistEngine",
    "WorklistResult",
]
