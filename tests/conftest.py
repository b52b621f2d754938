# tests/conftest.py
"""
Shared graph builders and fixtures for the reiminfer test suite.

The builders mirror the shapes an extraction frontend produces: methods
with their receiver / parameter / return slots, field reads and writes
through ``FIELD_ACCESS``, and call sites with ``.this`` and argument
passing nodes.
"""

import pytest

from reiminfer.config import AnalysisConfig
from reiminfer.inference_rules import InferenceRules
from reiminfer.program_graph import EdgeKind, NodeKind, ProgramGraph
from reiminfer.qualifier_store import QualifierStore


# ── Textual graphs ───────────────────────────────────────────────

BOX_GRAPH = """\
# A box with a setter and a getter, and two clients.
class Object
class Box
field Box.item : Object

node Box.set        : method signature="Box.set(Object)"
node Box.set.this   : this type=Box
node Box.set.p0     : parameter index=0 type=Object
node Box.set.w      : field_write
edge Box.set -> Box.set.this : contains
edge Box.set -> Box.set.p0   : contains
edge Box.set -> Box.set.w    : contains
edge Box.set.this -> Box.set.w : field_access
edge Box.set.p0 -> Box.set.w   : local_flow
edge Box.set.w -> Box.item     : interprocedural_flow

node Box.get        : method signature="Box.get()"
node Box.get.this   : this type=Box
node Box.get.ret    : return type=Object
node Box.get.r      : field_read
edge Box.get -> Box.get.this : contains
edge Box.get -> Box.get.ret  : contains
edge Box.get -> Box.get.r    : contains
edge Box.get.this -> Box.get.r : field_access
edge Box.item -> Box.get.r     : interprocedural_flow
edge Box.get.r -> Box.get.ret  : local_flow

node Main.run         : method signature="Main.run(Box)"
node Main.run.p0      : parameter index=0 type=Box
node Main.run.c1      : callsite
node Main.run.c1.this : identity_pass
edge Main.run -> Main.run.p0 : contains
edge Main.run -> Main.run.c1 : contains
edge Main.run.c1 -> Box.set  : invokes
edge Main.run.p0 -> Main.run.c1.this : local_flow
edge Main.run.c1.this -> Main.run.c1 : identity_passed_to

node Main.peek         : method signature="Main.peek(Box)"
node Main.peek.p0      : parameter index=0 type=Box
node Main.peek.c1      : callsite
node Main.peek.c1.this : identity_pass
node Main.peek.v       : local
edge Main.peek -> Main.peek.p0 : contains
edge Main.peek -> Main.peek.c1 : contains
edge Main.peek -> Main.peek.v  : contains
edge Main.peek.c1 -> Box.get   : invokes
edge Main.peek.p0 -> Main.peek.c1.this : local_flow
edge Main.peek.c1.this -> Main.peek.c1 : identity_passed_to
edge Main.peek.c1 -> Main.peek.v : local_flow
"""


# ── Builders ─────────────────────────────────────────────────────

def add_method(graph, mid, params=0, instance=True, returns=True,
               signature=""):
    """Method node plus its ``this`` / ``p<i>`` / ``ret`` children."""
    m = graph.add_node(mid, NodeKind.METHOD, signature=signature)
    if instance:
        graph.add_edge(m, graph.add_node(f"{mid}.this", NodeKind.IDENTITY),
                       EdgeKind.CONTAINS)
    for i in range(params):
        p = graph.add_node(f"{mid}.p{i}", NodeKind.PARAMETER, parameter_index=i)
        graph.add_edge(m, p, EdgeKind.CONTAINS)
    if returns:
        graph.add_edge(m, graph.add_node(f"{mid}.ret", NodeKind.METHOD_RETURN),
                       EdgeKind.CONTAINS)
    return m


def add_local(graph, method, lid, kind=NodeKind.LOCAL_VARIABLE):
    node = graph.add_node(lid, kind)
    graph.add_edge(method, node, EdgeKind.CONTAINS)
    return node


def add_class(graph, cid, supertype=None):
    cls = graph.add_node(cid, NodeKind.CLASS)
    if supertype is not None:
        graph.add_edge(cls, supertype, EdgeKind.SUPERTYPE)
    return cls


def add_field(graph, cls, name, type_cls=None, private=False, static=False):
    kind = NodeKind.STATIC_FIELD if static else NodeKind.INSTANCE_FIELD
    fld = graph.add_node(f"{cls.id}.{name}", kind, name=name, is_private=private)
    graph.add_edge(cls, fld, EdgeKind.CONTAINS)
    if type_cls is not None:
        graph.add_edge(fld, type_cls, EdgeKind.TYPE_OF)
    return fld


def add_field_write(graph, method, wid, receiver, fld, value):
    """``receiver.fld = value`` inside *method*."""
    w = add_local(graph, method, wid, NodeKind.FIELD_WRITE)
    if receiver is not None:
        graph.add_edge(receiver, w, EdgeKind.FIELD_ACCESS)
    graph.add_edge(value, w, EdgeKind.LOCAL_FLOW)
    graph.add_edge(w, fld, EdgeKind.INTERPROCEDURAL_FLOW)
    return w


def add_field_read(graph, method, rid, receiver, fld, target):
    """``target = receiver.fld`` inside *method*."""
    r = add_local(graph, method, rid, NodeKind.FIELD_READ)
    if receiver is not None:
        graph.add_edge(receiver, r, EdgeKind.FIELD_ACCESS)
    graph.add_edge(fld, r, EdgeKind.INTERPROCEDURAL_FLOW)
    graph.add_edge(r, target, EdgeKind.LOCAL_FLOW)
    return r


def add_call(graph, caller, cid, callee, receiver=None, args=(), result=None):
    """``result = receiver.callee(args...)`` inside *caller*."""
    c = add_local(graph, caller, cid, NodeKind.CALL_SITE)
    graph.add_edge(c, callee, EdgeKind.INVOKES)
    if receiver is not None:
        ipass = graph.add_node(f"{cid}.this", NodeKind.IDENTITY_PASS)
        graph.add_edge(receiver, ipass, EdgeKind.LOCAL_FLOW)
        graph.add_edge(ipass, c, EdgeKind.IDENTITY_PASSED_TO)
    sig = graph.method_signature(callee)
    for i, value in enumerate(args):
        z = graph.add_node(f"{cid}.a{i}", NodeKind.PARAMETER_PASS,
                           parameter_index=i)
        graph.add_edge(c, z, EdgeKind.CONTAINS)
        graph.add_edge(value, z, EdgeKind.LOCAL_FLOW)
        formal = sig.parameter_at(i)
        if formal is not None:
            graph.add_edge(z, formal, EdgeKind.PARAMETER_PASS)
    if result is not None:
        graph.add_edge(c, result, EdgeKind.LOCAL_FLOW)
    return c


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def graph():
    return ProgramGraph()


@pytest.fixture
def quiet_config():
    """Configuration with progress logging switched off."""
    return AnalysisConfig(log_general=False)


@pytest.fixture
def store(graph, quiet_config):
    return QualifierStore(graph, quiet_config)


@pytest.fixture
def rules(graph, store, quiet_config):
    return InferenceRules(graph, store, quiet_config)


@pytest.fixture
def box_graph_text():
    return BOX_GRAPH


@pytest.fixture
def box_graph_file(tmp_path):
    path = tmp_path / "box.rg"
    path.write_text(BOX_GRAPH, encoding="utf-8")
    return path
