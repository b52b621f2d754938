"""
reiminfer/summaries.py
══════════════════════

Persisted qualifier summaries.

A summary records the final qualifier set of every node that took part in
a run, so that a later run (for instance over a program that links against
an already analysed library) can start from those sets instead of the
kind-based defaults.

Format
──────
A JSON document::

    {
      "format": "reiminfer-summary",
      "version": 1,
      "qualifiers": {
        "Box.item": ["READONLY", "POLYREAD"],
        "Box.set.this": ["MUTABLE"]
      }
    }

Qualifier lists are written most general first.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Dict, FrozenSet, Iterable, Mapping

from reiminfer.errors import SummaryError
from reiminfer.qualifier_store import QualifierStore, seed_from_mapping
from reiminfer.qualifiers import ImmutabilityType

logger = logging.getLogger(__name__)

SUMMARY_FORMAT = "reiminfer-summary"
SUMMARY_VERSION = 1


def _ordered(types: Iterable[ImmutabilityType]):
    return [t.name for t in sorted(types, key=lambda t: t.rank, reverse=True)]


def summary_document(store: QualifierStore) -> Dict[str, object]:
    """Build the JSON-serialisable summary of *store*."""
    return {
        "format": SUMMARY_FORMAT,
        "version": SUMMARY_VERSION,
        "qualifiers": {
            node_id: _ordered(types)
            for node_id, types in sorted(store.snapshot().items())
        },
    }


def save_summary(store: QualifierStore, path: str) -> int:
    """Write *store* to *path*.  Returns the number of nodes written."""
    doc = summary_document(store)
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(doc, fh, indent=2, sort_keys=False)
        fh.write("\n")
    count = len(doc["qualifiers"])
    logger.info("Wrote summary for %d nodes to %s", count, path)
    return count


def parse_summary(doc: object) -> Dict[str, FrozenSet[ImmutabilityType]]:
    """Validate a decoded summary document and return its qualifier map.

    Raises
    ------
    SummaryError
        On a wrong format tag, an unsupported version, or an unknown
        qualifier name.
    """
    if not isinstance(doc, dict):
        raise SummaryError("summary must be a JSON object")
    if doc.get("format") != SUMMARY_FORMAT:
        raise SummaryError(f"not a {SUMMARY_FORMAT} document")
    if doc.get("version") != SUMMARY_VERSION:
        raise SummaryError(f"unsupported summary version {doc.get('version')!r}")
    raw = doc.get("qualifiers")
    if not isinstance(raw, dict):
        raise SummaryError("summary has no 'qualifiers' object")

    result: Dict[str, FrozenSet[ImmutabilityType]] = {}
    for node_id, names in raw.items():
        if not isinstance(names, list):
            raise SummaryError(f"qualifiers of {node_id!r} must be a list")
        types = set()
        for name in names:
            q = ImmutabilityType.from_name(str(name))
            if q is None:
                raise SummaryError(
                    f"unknown qualifier {name!r} for node {node_id!r}")
            types.add(q)
        result[node_id] = frozenset(types)
    return result


def load_summary(path: str) -> Dict[str, FrozenSet[ImmutabilityType]]:
    """Read and validate the summary stored at *path*."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            doc = json.load(fh)
    except OSError as exc:
        raise SummaryError(f"cannot read summary {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SummaryError(
            f"summary {path} is not valid JSON: {exc.msg} "
            f"(line {exc.lineno}, column {exc.colno})") from exc
    return parse_summary(doc)


def apply_summary(store: QualifierStore,
                  mapping: Mapping[str, Iterable[ImmutabilityType]]) -> int:
    """Seed *store* from *mapping*; ids unknown to the graph are skipped."""
    applied = seed_from_mapping(store, mapping)
    logger.info("Seeded %d of %d summary entries", applied, len(mapping))
    return applied


__all__ = [
    "SUMMARY_FORMAT",
    "SUMMARY_VERSION",
    "summary_document",
    "save_summary",
    "parse_summary",
    "load_summary",
    "apply_summary",
]
