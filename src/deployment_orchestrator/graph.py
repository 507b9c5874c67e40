"""Dependency graph construction for deployment-orchestrator library."""

import heapq
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .constants import OUTPUT_FIELDS
from .exceptions import (
    CyclicDependency,
    DefinitionError,
    DuplicateNode,
    UnresolvedReference,
)
from .paths import is_safe_path_component
from .types import DeployNode, NodeOutputRef


class DeploymentGraph:
    """DAG of deploy nodes in a fixed topological order."""

    def __init__(self, nodes: Dict[str, DeployNode], order: Sequence[str]):
        self._nodes = nodes
        self._order: Tuple[str, ...] = tuple(order)
        self._dependents: Dict[str, List[str]] = {name: [] for name in self._order}
        for name in self._order:
            for dep in nodes[name].depends_on:
                self._dependents[dep].append(name)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    @property
    def order(self) -> Tuple[str, ...]:
        return self._order

    def node(self, name: str) -> DeployNode:
        return self._nodes[name]

    def nodes(self) -> List[DeployNode]:
        return [self._nodes[name] for name in self._order]

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self._nodes[name].depends_on

    def dependents(self, name: str) -> List[str]:
        return list(self._dependents[name])

    def transitive_dependents(self, name: str) -> List[str]:
        """
        All nodes that depend on name directly or indirectly.

        Returns:
            Node names in topological order
        """
        found: Set[str] = set()
        stack = [name]
        while stack:
            for dependent in self._dependents[stack.pop()]:
                if dependent not in found:
                    found.add(dependent)
                    stack.append(dependent)
        return [n for n in self._order if n in found]

    def select(self, tags: Iterable[str]) -> "DeploymentGraph":
        """
        Subgraph of nodes carrying any of the tags, plus everything they need.

        Args:
            tags: Tag names, e.g. ["fee-controller"]

        Returns:
            New DeploymentGraph with the same relative order
        """
        if isinstance(tags, str):
            tags = [tags]
        wanted = set(tags)
        keep: Set[str] = set()
        stack = [n for n in self._order if wanted & set(self._nodes[n].tags)]
        while stack:
            name = stack.pop()
            if name in keep:
                continue
            keep.add(name)
            stack.extend(self._nodes[name].depends_on)

        order = [n for n in self._order if n in keep]
        return DeploymentGraph({n: self._nodes[n] for n in order}, order)


def _validate_references(nodes: Dict[str, DeployNode]) -> None:
    for node in nodes.values():
        for spec in node.all_specs():
            if not isinstance(spec, NodeOutputRef):
                continue
            if spec.node not in nodes:
                raise UnresolvedReference(
                    f"Node '{node.name}' references unknown node '{spec.node}'",
                    node=node.name,
                    missing=spec.node,
                )
            if spec.field not in OUTPUT_FIELDS:
                raise UnresolvedReference(
                    f"Node '{node.name}' references unknown output field "
                    f"'{spec.node}.{spec.field}'",
                    node=node.name,
                    missing=f"{spec.node}.{spec.field}",
                )


def build_graph(nodes: Iterable[DeployNode]) -> DeploymentGraph:
    """
    Build a DeploymentGraph from node definitions.

    Uses Kahn's algorithm; among nodes that are ready at the same time the
    one declared first goes first, so the order is stable for a fixed input.

    Args:
        nodes: Deploy nodes in declaration order

    Returns:
        DeploymentGraph

    Raises:
        DefinitionError: If a node name cannot be used as a registry key
        DuplicateNode: If two nodes share a name
        UnresolvedReference: If a node references a missing node or field
        CyclicDependency: If the references form a cycle
    """
    by_name: Dict[str, DeployNode] = {}
    for node in nodes:
        if not is_safe_path_component(node.name):
            raise DefinitionError(f"Node name '{node.name}' cannot be used as a registry key")
        if node.name in by_name:
            raise DuplicateNode(f"Node '{node.name}' is defined more than once")
        by_name[node.name] = node

    _validate_references(by_name)

    position = {name: i for i, name in enumerate(by_name)}
    in_degree = {name: len(node.depends_on) for name, node in by_name.items()}
    dependents: Dict[str, List[str]] = {name: [] for name in by_name}
    for name, node in by_name.items():
        for dep in node.depends_on:
            dependents[dep].append(name)

    ready = [(position[name], name) for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: List[str] = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    if len(order) != len(by_name):
        unresolved = [name for name in by_name if name not in set(order)]
        raise CyclicDependency(
            f"Dependency cycle among nodes: {', '.join(sorted(unresolved))}",
            nodes=unresolved,
        )

    return DeploymentGraph(by_name, order)
