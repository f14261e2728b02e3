"""Closure graphs of store paths and their ordering by popularity."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Storepath:
    """A store path and the store paths it references."""

    path: str
    references: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Storepath:
        return cls(path=data.get("path", ""), references=list(data.get("references") or []))


@dataclass(frozen=True)
class ScoredNode:
    """A graph node with its popularity score."""

    id: int
    score: int


def read_closure_graph_file(filename: str) -> list[Storepath]:
    """Read a JSON closure graph file."""
    with open(filename, encoding="utf-8") as handle:
        data = json.load(handle)
    return [Storepath.from_dict(item) for item in data or []]


def _build_graph(storepaths: Iterable[Storepath]) -> tuple[dict[str, int], dict[int, set[int]]]:
    ids: dict[str, int] = {}
    edges: dict[int, set[int]] = {}

    def node(path: str) -> int:
        if path not in ids:
            ids[path] = len(ids)
            edges[ids[path]] = set()
        return ids[path]

    for storepath in storepaths:
        source = node(storepath.path)
        for reference in storepath.references:
            target = node(reference)
            if source != target:
                edges[source].add(target)
    return ids, edges


def score(graph: Mapping[int, Iterable[int]]) -> list[ScoredNode]:
    """Score the nodes of a directed acyclic graph by popularity.

    The graph maps each node id to the ids it points to. The result is
    sorted by descending score, ties broken by descending id.
    """
    successors = {node: set(targets) for node, targets in graph.items()}
    sorter: TopologicalSorter[int] = TopologicalSorter()
    for node, targets in successors.items():
        sorter.add(node)
        for target in targets:
            sorter.add(target, node)
    try:
        order = list(sorter.static_order())
    except CycleError as exc:
        raise ValueError(f"graph is not acyclic: {exc.args[1]}") from exc

    popularity = dict.fromkeys(order, 1)
    for node in order:
        for target in successors.get(node, ()):
            popularity[target] += popularity[node]

    scored = [ScoredNode(node, popularity[node]) for node in order]
    scored.sort(key=lambda s: (s.score, s.id), reverse=True)
    return scored


def sorted_paths_by_popularity(storepaths: Iterable[Storepath]) -> list[str]:
    """Sort store paths by popularity, most popular first."""
    ids, graph = _build_graph(storepaths)
    paths_by_id = {node: path for path, node in ids.items()}
    result = []
    for scored in score(graph):
        path = paths_by_id[scored.id]
        logger.debug("Score: %d (%s)", scored.score, path)
        result.append(path)
    return result