"""CLI for inspecting status transition graphs.

Usage::

    python -m scripts.status_graph <command> [options]

Commands:
    show        Print a graph as YAML or Mermaid
    next        List statuses reachable from a status
    check       Validate a single transition (exit code 1 if rejected)
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from pathlib import Path

from fieldservice_core.errors import TransitionError
from fieldservice_core.transitions import (
    EntityKind,
    StatusTransitionEngine,
    TransitionGraph,
    dump_transition_graphs,
    load_transition_graphs,
)
from fieldservice_core.transitions.graph import DEFAULT_GRAPH_PATH


def to_mermaid(graph: TransitionGraph) -> str:
    """Render a graph as a Mermaid state diagram."""
    lines = ["stateDiagram-v2"]
    for status, targets in graph.edges.items():
        if not targets:
            lines.append(f"    {status} --> [*]")
        for target in targets:
            lines.append(f"    {status} --> {target}")
    return "\n".join(lines)


def _engine(args: argparse.Namespace) -> StatusTransitionEngine:
    return StatusTransitionEngine(load_transition_graphs(args.graphs))


def show(args: argparse.Namespace) -> None:
    """Print one graph (or all graphs as YAML)."""
    graphs = load_transition_graphs(args.graphs)
    if args.format == "mermaid":
        if args.kind is None:
            print("--kind is required for mermaid output", file=sys.stderr)
            sys.exit(2)
        print(to_mermaid(graphs[EntityKind(args.kind)]))
        return

    if args.kind is not None:
        graphs = {EntityKind(args.kind): graphs[EntityKind(args.kind)]}
    print(dump_transition_graphs(graphs), end="")


def next_statuses(args: argparse.Namespace) -> None:
    """List the statuses reachable from --status."""
    try:
        allowed = _engine(args).allowed_transitions(args.kind, args.status)
    except TransitionError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    if not allowed:
        print(f"{args.status}: terminal")
        return
    print(f"{args.status} -> {', '.join(allowed)}")


def check(args: argparse.Namespace) -> None:
    """Validate --from -> --to for --kind."""
    try:
        _engine(args).assert_transition(args.kind, args.from_status, args.to_status)
    except TransitionError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    print(f"ok: {args.kind} {args.from_status} -> {args.to_status}")


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Status transition graph CLI")
    parser.add_argument(
        "--graphs",
        type=Path,
        default=DEFAULT_GRAPH_PATH,
        help="Path to the transition graph YAML",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    kinds = [kind.value for kind in EntityKind]

    # show
    p = sub.add_parser("show", help="Print a graph")
    p.add_argument("--kind", choices=kinds, default=None)
    p.add_argument("--format", choices=["yaml", "mermaid"], default="yaml")

    # next
    p = sub.add_parser("next", help="List next statuses")
    p.add_argument("--kind", choices=kinds, required=True)
    p.add_argument("--status", required=True)

    # check
    p = sub.add_parser("check", help="Validate a transition")
    p.add_argument("--kind", choices=kinds, required=True)
    p.add_argument("--from", dest="from_status", required=True)
    p.add_argument("--to", dest="to_status", required=True)

    args = parser.parse_args(argv)
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "show": show,
        "next": next_statuses,
        "check": check,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
