# tests/test_summaries.py
"""
Tests for summary persistence and for the analysis entry point that
loads and writes summaries.
"""

import json

import pytest

from reiminfer.analysis import ImmutabilityAnalysis
from reiminfer.config import AnalysisConfig
from reiminfer.errors import SummaryError
from reiminfer.graph_format import parse_graph
from reiminfer.program_graph import NodeKind
from reiminfer.qualifiers import ImmutabilityType
from reiminfer.summaries import (
    SUMMARY_FORMAT,
    SUMMARY_VERSION,
    apply_summary,
    load_summary,
    parse_summary,
    save_summary,
    summary_document,
)
from tests.conftest import BOX_GRAPH

M = ImmutabilityType.MUTABLE
P = ImmutabilityType.POLYREAD
R = ImmutabilityType.READONLY


def _doc(qualifiers):
    return {"format": SUMMARY_FORMAT, "version": SUMMARY_VERSION,
            "qualifiers": qualifiers}


class TestDocument:

    def test_lists_are_most_general_first(self, graph, store):
        graph.add_node("x", NodeKind.LOCAL_VARIABLE)
        store.types("x")
        doc = summary_document(store)
        assert doc["qualifiers"] == {"x": ["READONLY", "POLYREAD", "MUTABLE"]}

    def test_save_and_load(self, tmp_path):
        graph = parse_graph(BOX_GRAPH)
        analysis = ImmutabilityAnalysis(graph, AnalysisConfig(log_general=False))
        analysis.run()
        path = tmp_path / "out" / "box.json"
        count = save_summary(analysis.store, str(path))
        assert count == len(analysis.store)
        loaded = load_summary(str(path))
        assert loaded["Box.set.this"] == frozenset({M})
        assert loaded["Box.item"] == frozenset({R, P})


class TestValidation:

    def test_unknown_qualifier(self):
        with pytest.raises(SummaryError, match="unknown qualifier"):
            parse_summary(_doc({"x": ["IMMUTABLE"]}))

    @pytest.mark.parametrize("doc", [
        [],
        {"format": "other", "version": 1, "qualifiers": {}},
        {"format": SUMMARY_FORMAT, "version": 99, "qualifiers": {}},
        {"format": SUMMARY_FORMAT, "version": SUMMARY_VERSION},
        _doc({"x": "MUTABLE"}),
    ])
    def test_rejected_documents(self, doc):
        with pytest.raises(SummaryError):
            parse_summary(doc)

    def test_names_are_case_insensitive(self):
        assert parse_summary(_doc({"x": ["mutable"]})) == {"x": frozenset({M})}

    def test_missing_file(self, tmp_path):
        with pytest.raises(SummaryError, match="cannot read"):
            load_summary(str(tmp_path / "absent.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SummaryError, match="not valid JSON"):
            load_summary(str(path))


class TestSeeding:

    def test_unknown_ids_are_skipped(self, graph, store):
        graph.add_node("p", NodeKind.PARAMETER)
        applied = apply_summary(store, {"p": {M}, "elsewhere.q": {R}})
        assert applied == 1
        assert store.types("p") == {M}


class TestAnalysisWithSummaries:

    def test_generate_then_load(self, tmp_path):
        path = str(tmp_path / "box.json")
        first = AnalysisConfig(log_general=False, generate_summaries=True,
                               summary_path=path)
        ImmutabilityAnalysis(parse_graph(BOX_GRAPH), first).run()
        with open(path, encoding="utf-8") as fh:
            assert json.load(fh)["format"] == SUMMARY_FORMAT

        second = AnalysisConfig(log_general=False, load_summaries=True,
                                summary_path=path)
        analysis = ImmutabilityAnalysis(parse_graph(BOX_GRAPH), second)
        results = analysis.run()
        assert analysis.store.is_seeded("Box.set.this")
        assert results.worklist.passes == 1
        assert results.qualifiers["Main.run.p0"] == frozenset({M})

    def test_summary_path_is_required(self):
        with pytest.raises(ValueError):
            AnalysisConfig(generate_summaries=True)

    def test_proven_mutation_overrides_seed(self, tmp_path):
        path = tmp_path / "conflict.json"
        path.write_text(json.dumps(_doc({"Box.set.this": ["READONLY"]})),
                        encoding="utf-8")
        config = AnalysisConfig(log_general=False, load_summaries=True,
                                summary_path=str(path))
        results = ImmutabilityAnalysis(parse_graph(BOX_GRAPH), config).run()
        assert results.qualifiers["Box.set.this"] == frozenset({M})
        assert not results.has_errors

    def test_disabled_analysis(self):
        config = AnalysisConfig(enable_analysis=False)
        results = ImmutabilityAnalysis(parse_graph(BOX_GRAPH), config).run()
        assert results.qualifiers == {}
        assert results.worklist is None
        assert results.to_dict()["passes"] == 0
