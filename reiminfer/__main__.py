#!/usr/bin/env python3
"""reiminfer/__main__.py — command line for the immutability inference.

Usage examples
--------------
    # Infer qualifiers for a textual program graph
    python -m reiminfer infer box.rg

    # Same, as JSON, saving a summary for a later run
    python -m reiminfer infer box.rg --format json --summary box.json --save-summary

    # Classify methods as pure / impure
    python -m reiminfer purity box.rg

    # Render the graph (optionally annotated with inferred qualifiers)
    python -m reiminfer dot box.rg --annotate -o box.dot

Exit codes
----------
    0   Success.
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (bad graph file, bad summary, bad config).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO

from reiminfer import __version__
from reiminfer.analysis import AnalysisResults, ImmutabilityAnalysis
from reiminfer.config import AnalysisConfig, AnalysisMode
from reiminfer.errors import ReimError
from reiminfer.graph_format import load_graph
from reiminfer.qualifiers import format_types

_log = logging.getLogger("reiminfer")

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``reiminfer`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("reiminfer")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """*dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path."""
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _close_output(stream: TextIO) -> None:
    if stream is not sys.stdout:
        stream.close()


def _build_config(args: argparse.Namespace) -> AnalysisConfig:
    """Merge ``--config`` (JSON) with the command-line flags."""
    base: Dict[str, Any] = {}
    if getattr(args, "config", None):
        with open(args.config, "r", encoding="utf-8") as fh:
            base = json.load(fh)
    config = AnalysisConfig.from_mapping(base)

    overrides: Dict[str, Any] = {}
    if getattr(args, "points_to", False):
        overrides["mode"] = AnalysisMode.POINTS_TO
    if getattr(args, "no_sanity_checks", False):
        overrides["run_sanity_checks"] = False
    if getattr(args, "log_rules", False):
        overrides["log_inference_rules"] = True
    if getattr(args, "verbose", 0) >= 2:
        overrides["log_debug"] = True
    if getattr(args, "summary", None):
        overrides["summary_path"] = args.summary
    if getattr(args, "load_summary", False):
        overrides["load_summaries"] = True
    if getattr(args, "save_summary", False):
        overrides["generate_summaries"] = True
    return config.with_overrides(**overrides) if overrides else config


def _analyse(args: argparse.Namespace) -> AnalysisResults:
    graph = load_graph(args.graph)
    _log.info("Loaded %r from %s", graph, args.graph)
    return ImmutabilityAnalysis(graph, _build_config(args)).run()


def _emit_diagnostics(results: AnalysisResults, stream: TextIO) -> int:
    """Write diagnostics as text lines; returns the ERROR count."""
    errors = 0
    for diag in results.diagnostics:
        if diag.severity.value == "error":
            errors += 1
        stream.write(str(diag) + "\n")
    return errors


def _exit_code(results: AnalysisResults) -> int:
    return EXIT_ERROR if results.has_errors else EXIT_OK


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_infer(args: argparse.Namespace) -> int:
    """Infer qualifiers and print one line per tracked node."""
    results = _analyse(args)
    out = _open_output(args.output)
    try:
        if args.format == "json":
            json.dump(results.to_dict(), out, indent=2)
            out.write("\n")
        else:
            for node_id, types in sorted(results.qualifiers.items()):
                resolved = results.resolved.get(node_id)
                out.write(f"{node_id}: {format_types(types)}"
                          f" -> {resolved.value if resolved else '?'}\n")
            _emit_diagnostics(results, out)
    finally:
        _close_output(out)
    return _exit_code(results)


def cmd_purity(args: argparse.Namespace) -> int:
    """Classify every method of the graph."""
    results = _analyse(args)
    out = _open_output(args.output)
    try:
        if args.format == "json":
            payload = {mid: v.to_dict() for mid, v in sorted(results.purity.items())}
            json.dump(payload, out, indent=2)
            out.write("\n")
        else:
            for method_id, verdict in sorted(results.purity.items()):
                label = "pure" if verdict.pure else "impure"
                out.write(f"{method_id}: {label} ({verdict.reason})\n")
            _emit_diagnostics(results, out)
    finally:
        _close_output(out)
    return _exit_code(results)


def cmd_dot(args: argparse.Namespace) -> int:
    """Write the graph in Graphviz DOT form."""
    graph = load_graph(args.graph)
    labels: Optional[Dict[str, str]] = None
    code = EXIT_OK
    if args.annotate:
        results = ImmutabilityAnalysis(graph, _build_config(args)).run()
        labels = {nid: format_types(ts) for nid, ts in results.qualifiers.items()}
        code = _exit_code(results)
    out = _open_output(args.output)
    try:
        out.write(graph.to_dot(title=Path(args.graph).name, labels=labels))
        out.write("\n")
    finally:
        _close_output(out)
    return code


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="reiminfer",
        description=(
            "Reference immutability (ReIm) and method purity inference\n"
            "over a program dependence graph."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              reiminfer infer box.rg
              reiminfer purity box.rg --format json
              reiminfer dot box.rg --annotate -o box.dot
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_common_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("graph", metavar="GRAPH",
                       help="Program graph in the textual format.")
        p.add_argument("-o", "--output", default=None, metavar="FILE",
                       help='Output file ("-" or omit for stdout).')
        p.add_argument("--config", default=None, metavar="FILE",
                       help="JSON file with analysis configuration keys.")
        p.add_argument("--points-to", action="store_true",
                       help="Re-check only call sites resolved to the method itself.")
        p.add_argument("--no-sanity-checks", action="store_true",
                       help="Skip the post fixed-point verification.")
        p.add_argument("--log-rules", action="store_true",
                       help="Log every inference rule application.")
        p.add_argument("--summary", default=None, metavar="PATH",
                       help="Summary file used by --load-summary / --save-summary.")
        p.add_argument("--load-summary", action="store_true",
                       help="Seed qualifiers from the summary file.")
        p.add_argument("--save-summary", action="store_true",
                       help="Write the final qualifiers to the summary file.")

    # --- infer -------------------------------------------------------------
    p_infer = subparsers.add_parser(
        "infer",
        help="Infer reference immutability qualifiers.",
    )
    _add_common_args(p_infer)
    p_infer.add_argument("-f", "--format", choices=["text", "json"],
                         default="text", help="Output format (default: text).")
    p_infer.set_defaults(func=cmd_infer)

    # --- purity ------------------------------------------------------------
    p_purity = subparsers.add_parser(
        "purity",
        help="Classify methods as pure or impure.",
    )
    _add_common_args(p_purity)
    p_purity.add_argument("-f", "--format", choices=["text", "json"],
                          default="text", help="Output format (default: text).")
    p_purity.set_defaults(func=cmd_purity)

    # --- dot ---------------------------------------------------------------
    p_dot = subparsers.add_parser(
        "dot",
        help="Render the program graph as Graphviz DOT.",
    )
    _add_common_args(p_dot)
    p_dot.add_argument("--annotate", action="store_true",
                       help="Run the analysis and label nodes with qualifiers.")
    p_dot.set_defaults(func=cmd_dot)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the ``reiminfer`` CLI and return its exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except (ReimError, OSError, ValueError) as exc:
        _log.error("%s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
