"""
reiminfer/inference_rules.py
════════════════════════════

Type-rule handlers of the ReIm reference-immutability inference.

Theory
──────
Each handler solves the constraints of one typing rule by pruning the
candidate qualifier sets of the nodes involved (see
:mod:`reiminfer.constraint_solver`).  ``|>`` is viewpoint adaptation.

    TASSIGN   x = y              q_y <: q_x
    TWRITE    x.f = y            q_x = mutable,  q_y <: q_x |> q_f
    TREAD     x = y.f            q_y |> q_f <: q_x
    TSWRITE   sf = y  (in m)     q_m = mutable,  q_y <: q_sf
    TSREAD    x = sf  (in m)     q_m |> q_sf <: q_x
    TCALL     x = y.m(z)         q_x |> q_ret <: q_x
                                 q_y <: q_x |> q_this
                                 q_z <: q_x |> q_p

For static fields ``q_m`` is the method's own qualifier: a method whose
qualifier is pinned to mutable writes static state.

Overriding (``m`` overrides ``m'``) adds ``q_ret <: q_ret'``,
``q_this' <: q_this`` and ``q_p' <: q_p``.  When a TCALL changes a method's
qualifiers, every call site bound to it is re-checked with
``q_this <: q_receiver`` and ``q_actual <: q_formal``.

A call whose value no assignment receives is typed with the call site
itself as ``x``.

Every handler returns ``True`` iff some qualifier set changed.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional, Set, Tuple

from reiminfer.config import AnalysisConfig
from reiminfer.constraint_solver import (
    satisfy_adapted_subtype,
    satisfy_adapted_supertype,
    satisfy_fixed_context,
    satisfy_self_adapted,
    satisfy_subtype,
)
from reiminfer.container_fields import accessed_containers, container_fields
from reiminfer.errors import DiagnosticKind, DiagnosticSeverity, QualifierDiagnostic
from reiminfer.program_graph import (
    EdgeKind,
    GraphNode,
    MethodSignature,
    NodeKind,
    ProgramGraph,
)
from reiminfer.qualifier_store import QualifierStore
from reiminfer.qualifiers import ImmutabilityType, adapt_field

logger = logging.getLogger(__name__)

_M = ImmutabilityType.MUTABLE
_P = ImmutabilityType.POLYREAD
_R = ImmutabilityType.READONLY


class InferenceRules:
    """The rule handlers, bound to one graph, store and configuration.

    Attributes
    ----------
    fired : Counter
        Number of applications per rule name.
    """

    def __init__(self, graph: ProgramGraph, store: QualifierStore,
                 config: Optional[AnalysisConfig] = None) -> None:
        self.graph = graph
        self.store = store
        self.config = config or store.config
        self.fired: Counter = Counter()

    # ----- helpers ----------------------------------------------------------

    def _log_rule(self, text: str, *args) -> None:
        if self.config.log_inference_rules:
            logger.info(text, *args)

    def _missing(self, rule: str, operand: str) -> bool:
        logger.warning("%s: %s is missing, constraint skipped", rule, operand)
        self.store.diagnostics.append(QualifierDiagnostic(
            severity=DiagnosticSeverity.WARNING,
            kind=DiagnosticKind.MISSING_RULE_OPERAND,
            message=f"{rule}: {operand} is missing",
        ))
        return False

    def _force_containers(self, field: GraphNode) -> bool:
        changed = False
        for container in sorted(container_fields(self.graph, field)):
            if self.store.force(container, _M):
                changed = True
        return changed

    def _force_static_mutation(self, method: Optional[GraphNode]) -> bool:
        if method is None:
            return False
        return self.store.force(method, _M)

    # ----- TASSIGN ----------------------------------------------------------

    def handle_assignment(self, x: Optional[GraphNode],
                          y: Optional[GraphNode]) -> bool:
        """TASSIGN: ``x = y``."""
        if x is None:
            return self._missing("TASSIGN", "x")
        if y is None:
            return self._missing("TASSIGN", "y")
        self.fired["TASSIGN"] += 1
        self._log_rule("TASSIGN (x=y, x=%s, y=%s)", x.name, y.name)
        return satisfy_subtype(self.store, y, x)

    # ----- TWRITE -----------------------------------------------------------

    def handle_field_write(self, x: Optional[GraphNode], f: Optional[GraphNode],
                           y: Optional[GraphNode]) -> bool:
        """TWRITE: ``x.f = y``."""
        if x is None:
            return self._missing("TWRITE", "x")
        if f is None:
            return self._missing("TWRITE", "f")
        if y is None:
            return self._missing("TWRITE", "y")
        self.fired["TWRITE"] += 1
        self._log_rule("TWRITE (x.f=y, x=%s, f=%s, y=%s)", x.name, f.name, y.name)

        changed = self.store.force(x, _M)
        # mutating a field of x mutates every object that holds x
        if x.kind.is_field:
            if self._force_containers(x):
                changed = True
        if satisfy_fixed_context(self.store, y, _M, f, adapt_field):
            changed = True
        return changed

    # ----- TREAD ------------------------------------------------------------

    def handle_field_read(self, x: Optional[GraphNode], y: Optional[GraphNode],
                          f: Optional[GraphNode]) -> bool:
        """TREAD: ``x = y.f``."""
        if x is None:
            return self._missing("TREAD", "x")
        if y is None:
            return self._missing("TREAD", "y")
        if f is None:
            return self._missing("TREAD", "f")
        self.fired["TREAD"] += 1
        self._log_rule("TREAD (x=y.f, x=%s, y=%s, f=%s)", x.name, y.name, f.name)

        changed = False
        # a mutable alias of f means f and its containers are mutable
        if self.store.is_exactly(x, _M):
            if self._force_containers(f):
                changed = True
        if satisfy_adapted_supertype(self.store, y, f, x, adapt_field):
            changed = True
        return changed

    # ----- TSWRITE / TSREAD -------------------------------------------------

    def handle_static_field_write(self, sf: Optional[GraphNode],
                                  y: Optional[GraphNode],
                                  method: Optional[GraphNode]) -> bool:
        """TSWRITE: ``sf = y`` inside *method*."""
        if sf is None:
            return self._missing("TSWRITE", "sf")
        if y is None:
            return self._missing("TSWRITE", "y")
        self.fired["TSWRITE"] += 1
        self._log_rule("TSWRITE (sf=y, sf=%s, y=%s)", sf.name, y.name)

        changed = self._force_static_mutation(method)
        if satisfy_subtype(self.store, y, sf):
            changed = True
        return changed

    def handle_static_field_read(self, x: Optional[GraphNode],
                                 sf: Optional[GraphNode],
                                 method: Optional[GraphNode]) -> bool:
        """TSREAD: ``x = sf`` inside *method*."""
        if x is None:
            return self._missing("TSREAD", "x")
        if sf is None:
            return self._missing("TSREAD", "sf")
        self.fired["TSREAD"] += 1
        self._log_rule("TSREAD (x=sf, x=%s, sf=%s)", x.name, sf.name)
        if method is None:
            # class initialisers have no method context
            return satisfy_subtype(self.store, sf, x)
        return satisfy_adapted_supertype(self.store, method, sf, x, adapt_field)

    # ----- TCALL ------------------------------------------------------------

    def handle_call(self, x: Optional[GraphNode], callsite: GraphNode) -> bool:
        """TCALL: ``x = y.m(z1, ..., zn)`` at *callsite*."""
        sig = self.graph.method_signature(self.graph.invoked_method(callsite))
        y = self._receiver(callsite)
        if x is None:
            return self._missing("TCALL", "x")
        if sig.return_value is None:
            return self._missing("TCALL", "return")
        if sig.is_instance_method and y is None:
            return self._missing("TCALL", "y")
        return self._apply_call(x, y, callsite, sig)

    def handle_unbound_call(self, callsite: GraphNode) -> bool:
        """TCALL for a call whose value no assignment receives.

        The call site itself is ``x``.  A discarded result leaves it free, so
        only the callee's declared qualifiers constrain the receiver and the
        arguments.  A result written to a field or used as the receiver of
        another call constrains it through those uses.
        """
        sig = self.graph.method_signature(self.graph.invoked_method(callsite))
        y = self._receiver(callsite)
        if sig.is_instance_method and y is None:
            return self._missing("TCALL", "y")
        return self._apply_call(callsite, y, callsite, sig)

    def _apply_call(self, x: GraphNode, y: Optional[GraphNode],
                    callsite: GraphNode, sig: MethodSignature) -> bool:
        method = sig.method
        ret = sig.return_value
        self.fired["TCALL"] += 1
        self._log_rule("TCALL (x=y.m(z), x=%s, y=%s, m=%s)", x.name,
                       y.name if y is not None else "<static>",
                       method.signature or method.name)

        changed = False
        if ret is not None:
            changed = self._alias_side_effect(x, ret)
            # q_x |> q_ret <: q_x
            if satisfy_self_adapted(self.store, x, ret):
                changed = True
        # q_y <: q_x |> q_this
        if sig.identity is not None and y is not None:
            if satisfy_adapted_subtype(self.store, y, x, sig.identity):
                changed = True
        # q_z <: q_x |> q_p
        for z, p in self.graph.argument_bindings(callsite, sig):
            if satisfy_adapted_subtype(self.store, z, x, p):
                changed = True

        if sig.overridden is not None:
            if self.handle_override(sig):
                changed = True

        if changed:
            self.recheck_callsites(method)
            if sig.overridden is not None:
                self.recheck_callsites(sig.overridden)
        return changed

    def _receiver(self, callsite: GraphNode) -> Optional[GraphNode]:
        receiver = self.graph.receiver_of(callsite)
        if receiver is None:
            return None
        return self.resolve_reference(receiver)

    def resolve_reference(self, node: GraphNode) -> GraphNode:
        """A field read used as a reference stands for its field.

        Any other node, a call site included, stands for itself.
        """
        if node.kind is NodeKind.FIELD_READ:
            return self.graph.the_predecessor(node, EdgeKind.INTERPROCEDURAL_FLOW)
        return node

    def _alias_side_effect(self, x: GraphNode, ret: GraphNode) -> bool:
        """The call result may alias internal state reachable from x.

        A polyread field or a mutable reference receiving the result means
        ``ret`` is not readonly, and neither is any field the method returns.
        """
        is_polyread_field = x.kind.is_field and self.store.is_exactly(x, _P)
        is_mutable_reference = (not x.kind.is_field
                                and self.store.is_exactly(x, _M))
        if not (is_polyread_field or is_mutable_reference):
            return False

        changed = self.store.remove(ret, {_R})
        containing_method = self.graph.containing_method(x)
        for value in self._returned_field_values(ret):
            field = self.graph.the_predecessor(value, EdgeKind.INTERPROCEDURAL_FLOW)
            containers: List[GraphNode] = accessed_containers(self.graph, value)
            for c in sorted(container_fields(self.graph, field)):
                if c not in containers:
                    containers.append(c)
            for container in containers:
                if self.store.remove(container, {_R}):
                    changed = True
                if container.kind is NodeKind.STATIC_FIELD and containing_method is not None:
                    if self.store.remove(containing_method, {_R, _P}):
                        changed = True
        return changed

    def _returned_field_values(self, ret: GraphNode) -> List[GraphNode]:
        values: List[GraphNode] = []
        for returned in self.graph.predecessors(ret, EdgeKind.LOCAL_FLOW):
            candidates = [returned]
            candidates.extend(self.graph.predecessors(returned, EdgeKind.LOCAL_FLOW))
            for v in candidates:
                if v.kind is NodeKind.FIELD_READ and v not in values:
                    values.append(v)
        return values

    # ----- overriding -------------------------------------------------------

    def handle_override(self, sig: MethodSignature) -> bool:
        """Covariant return, contravariant receiver and parameters."""
        overridden = self.graph.method_signature(sig.overridden)
        self._log_rule("TCALL (overridden method %s)",
                       overridden.method.signature or overridden.method.name)
        changed = False
        if sig.return_value is not None and overridden.return_value is not None:
            if satisfy_subtype(self.store, sig.return_value,
                               overridden.return_value):
                changed = True
        if sig.identity is not None and overridden.identity is not None:
            if satisfy_subtype(self.store, overridden.identity, sig.identity):
                changed = True
        for p in sig.parameters:
            if p.parameter_index is None:
                continue
            p_overridden = overridden.parameter_at(p.parameter_index)
            if p_overridden is None:
                continue
            if satisfy_subtype(self.store, p_overridden, p):
                changed = True
        return changed

    # ----- call-site re-check -----------------------------------------------

    def callsites_for(self, method: GraphNode) -> List[GraphNode]:
        callsites = list(self.graph.callsites_of(method))
        if not self.config.points_to_mode:
            # call sites resolved to a super-method may dispatch here
            seen: Set[str] = {c.id for c in callsites}
            current = self.graph.first_successor(method, EdgeKind.OVERRIDES)
            visited: Set[str] = {method.id}
            while current is not None and current.id not in visited:
                visited.add(current.id)
                for c in self.graph.callsites_of(current):
                    if c.id not in seen:
                        seen.add(c.id)
                        callsites.append(c)
                current = self.graph.first_successor(current, EdgeKind.OVERRIDES)
        return sorted(callsites)

    def recheck_callsites(self, method: GraphNode) -> bool:
        """Re-enforce receiver and argument constraints at every call site."""
        sig = self.graph.method_signature(method)
        changed = False
        for callsite in self.callsites_for(method):
            if self.check_callsite(callsite, sig):
                changed = True
        return changed

    def check_callsite(self, callsite: GraphNode,
                       sig: Optional[MethodSignature] = None) -> bool:
        """``q_this <: q_receiver`` and ``q_actual <: q_formal`` at *callsite*."""
        if sig is None:
            sig = self.graph.method_signature(self.graph.invoked_method(callsite))
        self.fired["CALLSITE"] += 1
        changed = False
        if sig.identity is not None:
            receiver = self._receiver(callsite)
            if receiver is not None:
                if satisfy_subtype(self.store, sig.identity, receiver):
                    changed = True
        for z, p in self._bindings_into(callsite, sig):
            if satisfy_subtype(self.store, z, p):
                changed = True
        return changed

    def _bindings_into(self, callsite: GraphNode,
                       sig: MethodSignature) -> List[Tuple[GraphNode, GraphNode]]:
        pairs = self.graph.argument_bindings(callsite, sig)
        if pairs:
            return pairs
        # the call was bound to another signature: align by parameter index
        for z in self.graph.actuals_of(callsite):
            if z.parameter_index is None:
                continue
            p = sig.parameter_at(z.parameter_index)
            if p is not None:
                pairs.append((z, p))
        return pairs


__all__ = ["InferenceRules"]
