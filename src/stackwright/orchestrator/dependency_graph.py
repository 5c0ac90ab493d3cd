"""Dependency graph builder for resource ordering."""

import heapq
from typing import Any, Dict, Iterable, List, Set, Optional
from dataclasses import dataclass, field
from collections import defaultdict, deque

from stackwright.config.models import DeclarationSet, ResourceDeclaration
from stackwright.utils.errors import CycleError, DanglingReferenceError, PlanningError


@dataclass
class DependencyNode:
    """Node in the dependency graph."""

    resource_id: str
    order: int  # Position in declaration order, used to break ties
    dependencies: Set[str]  # Resource IDs this node depends on
    dependents: Set[str] = field(default_factory=set)  # Resource IDs that depend on this node
    payload: Any = None


class DependencyGraph:
    """Directed acyclic graph (DAG) of resource dependencies."""

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, DependencyNode] = {}
        self._adjacency_list: Dict[str, Set[str]] = defaultdict(set)

    @classmethod
    def from_declarations(cls, declarations: DeclarationSet) -> "DependencyGraph":
        """Build and validate a graph from a declaration set.

        Explicit ``depends_on`` edges are merged with edges inferred from
        ``${id}`` references in attributes.

        Raises:
            DanglingReferenceError: If an edge points to an undeclared resource
            CycleError: If the dependencies contain a cycle
        """
        graph = cls()
        for resource in declarations.resources:
            graph.add_resource(resource)
        graph.validate()
        return graph

    def add_resource(self, resource: ResourceDeclaration) -> None:
        """Add a declared resource to the graph.

        Args:
            resource: Declaration to add
        """
        self.add_node(resource.id, resource.all_dependencies(), payload=resource)

    def add_node(self, node_id: str, dependencies: Iterable[str], payload: Any = None) -> None:
        """Add a node with its dependency edges.

        Nodes added later sort after earlier ones when otherwise unordered.

        Args:
            node_id: Node id
            dependencies: Ids this node depends on
            payload: Arbitrary object carried by the node
        """
        if node_id in self.nodes:
            raise PlanningError(f"Node '{node_id}' added to the dependency graph twice")

        dependencies = set(dependencies)
        self.nodes[node_id] = DependencyNode(
            resource_id=node_id,
            order=len(self.nodes),
            dependencies=dependencies,
            payload=payload
        )

        for dep_id in dependencies:
            self._adjacency_list[dep_id].add(node_id)
            if dep_id in self.nodes:
                self.nodes[dep_id].dependents.add(node_id)

        # Nodes added earlier may already depend on this one
        self.nodes[node_id].dependents.update(self._adjacency_list[node_id])

    def get_dependencies(self, resource_id: str) -> Set[str]:
        """Get direct dependencies of a resource."""
        if resource_id not in self.nodes:
            return set()
        return self.nodes[resource_id].dependencies.copy()

    def get_dependents(self, resource_id: str) -> Set[str]:
        """Get direct dependents of a resource."""
        return {dep for dep in self._adjacency_list.get(resource_id, set()) if dep in self.nodes}

    def get_all_dependencies(self, resource_id: str) -> Set[str]:
        """Get all transitive dependencies of a resource.

        Args:
            resource_id: ID of resource

        Returns:
            Set of all resource IDs in the dependency chain
        """
        visited = set()
        queue = deque([resource_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)

            if current_id in self.nodes:
                for dep_id in self.nodes[current_id].dependencies:
                    if dep_id not in visited:
                        queue.append(dep_id)

        visited.discard(resource_id)
        return visited

    def get_all_dependents(self, resource_id: str) -> Set[str]:
        """Get all transitive dependents of a resource.

        Args:
            resource_id: ID of resource

        Returns:
            Set of all resource IDs that depend on this resource
        """
        visited = set()
        queue = deque([resource_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)

            for dependent_id in self.get_dependents(current_id):
                if dependent_id not in visited:
                    queue.append(dependent_id)

        visited.discard(resource_id)
        return visited

    def find_dangling_references(self) -> List[tuple]:
        """List edges whose target is not a node.

        Returns:
            ``(resource_id, missing_id)`` tuples in declaration order
        """
        missing = []
        for node in sorted(self.nodes.values(), key=lambda n: n.order):
            for dep_id in sorted(node.dependencies):
                if dep_id not in self.nodes:
                    missing.append((node.resource_id, dep_id))
        return missing

    def detect_circular_dependencies(self) -> Optional[List[str]]:
        """Detect circular dependencies in the graph.

        Returns:
            Resource IDs forming a cycle (first id repeated at the end), or
            None if no cycle exists
        """
        # White (0): unvisited, Gray (1): on the DFS stack, Black (2): done
        color = {node_id: 0 for node_id in self.nodes}

        for root in sorted(self.nodes, key=lambda n: self.nodes[n].order):
            if color[root] != 0:
                continue

            path = [root]
            color[root] = 1
            stack = [iter(sorted(self.get_dependents(root)))]

            while stack:
                advanced = False
                for dependent_id in stack[-1]:
                    if color[dependent_id] == 1:
                        start = path.index(dependent_id)
                        return path[start:] + [dependent_id]
                    if color[dependent_id] == 0:
                        color[dependent_id] = 1
                        path.append(dependent_id)
                        stack.append(iter(sorted(self.get_dependents(dependent_id))))
                        advanced = True
                        break

                if not advanced:
                    color[path.pop()] = 2
                    stack.pop()

        return None

    def validate(self) -> None:
        """Validate the dependency graph.

        Raises:
            DanglingReferenceError: If an edge points to a missing node
            CycleError: If the graph contains a cycle
        """
        missing = self.find_dangling_references()
        if missing:
            resource_id, missing_id = missing[0]
            raise DanglingReferenceError(resource_id, missing_id)

        cycle = self.detect_circular_dependencies()
        if cycle:
            raise CycleError(cycle)

    def topological_sort(self, ignore_missing: bool = False) -> List[str]:
        """Order nodes so that dependencies come before dependents.

        Kahn's algorithm; among nodes that are ready at the same time the one
        added first wins, which makes the order deterministic.

        Args:
            ignore_missing: Treat edges to unknown nodes as already satisfied

        Returns:
            List of resource IDs in dependency order

        Raises:
            PlanningError: If the graph still contains a cycle
        """
        in_degree = {}
        for node_id, node in self.nodes.items():
            deps = node.dependencies
            if ignore_missing:
                deps = {d for d in deps if d in self.nodes}
            elif any(d not in self.nodes for d in deps):
                raise PlanningError(f"Resource '{node_id}' has unresolved dependencies")
            in_degree[node_id] = len(deps)

        ready = [(self.nodes[n].order, n) for n, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        result = []

        while ready:
            _, node_id = heapq.heappop(ready)
            result.append(node_id)

            for dependent_id in self.get_dependents(node_id):
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    heapq.heappush(ready, (self.nodes[dependent_id].order, dependent_id))

        if len(result) != len(self.nodes):
            remaining = sorted(set(self.nodes) - set(result))
            raise PlanningError(
                f"Cannot order resources, unresolved cycle among: {', '.join(remaining)}"
            )

        return result

    def reverse_order(self, ignore_missing: bool = False) -> List[str]:
        """Order for removal: dependents before their dependencies."""
        return list(reversed(self.topological_sort(ignore_missing=ignore_missing)))

    def get_deployment_waves(self) -> List[List[str]]:
        """Group resources into levels that could run in parallel.

        Returns:
            List of waves; each wave only depends on earlier waves
        """
        order = self.topological_sort()
        level: Dict[str, int] = {}
        for node_id in order:
            deps = self.nodes[node_id].dependencies
            level[node_id] = max((level[d] + 1 for d in deps), default=0)

        waves: List[List[str]] = []
        for node_id in order:
            while len(waves) <= level[node_id]:
                waves.append([])
            waves[level[node_id]].append(node_id)
        return waves

    def get_payload(self, resource_id: str) -> Any:
        """Get the object stored with a node."""
        node = self.nodes.get(resource_id)
        return node.payload if node else None

    def has_resource(self, resource_id: str) -> bool:
        """Check if a resource exists in the graph."""
        return resource_id in self.nodes

    def size(self) -> int:
        """Get the number of resources in the graph."""
        return len(self.nodes)

    def is_empty(self) -> bool:
        """Check if the graph is empty."""
        return len(self.nodes) == 0
