"""Declarative status transition graphs.

Loaded from ``status_graphs.yaml`` at startup and validated by Pydantic.
Adding a status or an edge is a YAML edit, no code changes.

The YAML document maps entity kind -> status -> list of next statuses.
Once compiled into :class:`TransitionGraph` objects the adjacency data is
read-only for the lifetime of the process.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType

import yaml
from pydantic import BaseModel, RootModel, model_validator

DEFAULT_GRAPH_PATH = Path(__file__).with_name("status_graphs.yaml")


class EntityKind(StrEnum):
    """Business entities whose status field is governed by a graph."""

    JOB = "job"
    INVOICE = "invoice"


class StatusGraphConfig(RootModel[dict[str, list[str]]]):
    """Adjacency lists of one entity kind, as written in YAML.

    Validates that:
    - the graph declares at least one status
    - every target is itself a declared status
    - no status lists itself (re-applying a status is implicit)
    - no status lists the same target twice
    """

    @model_validator(mode="after")
    def validate_edges(self) -> StatusGraphConfig:
        """Check edge targets against the declared statuses."""
        if not self.root:
            raise ValueError("Transition graph must declare at least one status")

        errors: list[str] = []
        for status, targets in self.root.items():
            if len(set(targets)) != len(targets):
                errors.append(f"Status '{status}' lists a target more than once")
            for target in targets:
                if target == status:
                    errors.append(f"Status '{status}' lists itself as a target")
                elif target not in self.root:
                    errors.append(
                        f"Status '{status}' targets undeclared status '{target}'"
                    )

        if errors:
            raise ValueError("; ".join(errors))
        return self


class TransitionGraphsConfig(BaseModel):
    """Top-level document: one graph per entity kind."""

    graphs: dict[EntityKind, StatusGraphConfig]

    @model_validator(mode="after")
    def require_all_kinds(self) -> TransitionGraphsConfig:
        missing = [kind.value for kind in EntityKind if kind not in self.graphs]
        if missing:
            raise ValueError(f"Missing transition graphs for: {', '.join(missing)}")
        return self


@dataclass(frozen=True)
class TransitionGraph:
    """Immutable directed graph over the statuses of one entity kind."""

    kind: EntityKind
    edges: Mapping[str, tuple[str, ...]]

    @classmethod
    def from_config(
        cls, kind: EntityKind, config: StatusGraphConfig
    ) -> TransitionGraph:
        edges = {status: tuple(targets) for status, targets in config.root.items()}
        return cls(kind=kind, edges=MappingProxyType(edges))

    @property
    def statuses(self) -> tuple[str, ...]:
        """All statuses in declaration order."""
        return tuple(self.edges)

    @property
    def terminal_statuses(self) -> frozenset[str]:
        """Statuses with no outgoing edges."""
        return frozenset(s for s, targets in self.edges.items() if not targets)

    def __contains__(self, status: object) -> bool:
        return status in self.edges

    def to_dict(self) -> dict[str, list[str]]:
        """Plain adjacency lists, suitable for YAML or JSON output."""
        return {status: list(targets) for status, targets in self.edges.items()}


def parse_transition_graphs(text: str) -> Mapping[EntityKind, TransitionGraph]:
    """Parse and validate a YAML document of transition graphs.

    Raises:
        ValidationError: If the document is malformed or an edge
            references an undeclared status.
    """
    raw = yaml.safe_load(text) or {}
    config = TransitionGraphsConfig.model_validate({"graphs": raw})
    graphs = {
        kind: TransitionGraph.from_config(kind, graph)
        for kind, graph in config.graphs.items()
    }
    return MappingProxyType(graphs)


def load_transition_graphs(
    path: str | Path = DEFAULT_GRAPH_PATH,
) -> Mapping[EntityKind, TransitionGraph]:
    """Load transition graphs from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the document fails validation.
    """
    graph_path = Path(path)
    if not graph_path.exists():
        raise FileNotFoundError(f"Transition graph file not found: {graph_path}")
    return parse_transition_graphs(graph_path.read_text(encoding="utf-8"))


def dump_transition_graphs(graphs: Mapping[EntityKind, TransitionGraph]) -> str:
    """Serialize graphs back to YAML, preserving status order."""
    document = {kind.value: graph.to_dict() for kind, graph in graphs.items()}
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=None)
