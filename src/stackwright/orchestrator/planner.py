"""Planner that diffs declarations against the state snapshot."""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from stackwright.config.models import DeclarationSet, ResourceDeclaration, ResourceType
from stackwright.orchestrator.dependency_graph import DependencyGraph
from stackwright.state.models import StateEntry, StateSnapshot
from stackwright.utils.errors import ErrorContext, PlanningError, ValidationError
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


def config_hash(resource: ResourceDeclaration) -> str:
    """Hash of a declaration's type and attributes.

    References are hashed unresolved, so a dependency changing its external
    id does not by itself change the hash. ``depends_on`` is excluded.
    """
    canonical = json.dumps(
        {'type': resource.type.value, 'attributes': resource.attributes},
        sort_keys=True,
        separators=(',', ':'),
        default=str
    )
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class PlanAction(str, Enum):
    """Action the executor takes for a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


@dataclass
class PlanEntry:
    """One resource's action within a plan."""

    resource_id: str
    action: PlanAction
    resource_type: ResourceType
    desired: Optional[ResourceDeclaration] = None
    prior: Optional[StateEntry] = None
    config_hash: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)  # Declared dependencies, recorded in state
    prerequisites: List[str] = field(default_factory=list)  # Plan entries that must succeed first
    reason: Optional[str] = None

    @property
    def is_change(self) -> bool:
        return self.action != PlanAction.NOOP

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_id': self.resource_id,
            'action': self.action.value,
            'resource_type': self.resource_type.value,
            'external_id': self.prior.external_id if self.prior else None,
            'config_hash': self.config_hash,
            'prerequisites': list(self.prerequisites),
            'reason': self.reason,
        }


@dataclass
class Plan:
    """Ordered list of plan entries.

    Entries are in execution order: creates, updates and no-ops in
    topological order, followed by deletes with dependents first.
    """

    entries: List[PlanEntry] = field(default_factory=list)
    graph: Optional[DependencyGraph] = None

    def get(self, resource_id: str) -> Optional[PlanEntry]:
        for entry in self.entries:
            if entry.resource_id == resource_id:
                return entry
        return None

    def ids(self) -> List[str]:
        return [entry.resource_id for entry in self.entries]

    def by_action(self, action: PlanAction) -> List[PlanEntry]:
        return [entry for entry in self.entries if entry.action == action]

    def has_changes(self) -> bool:
        """Check if executing the plan would call any adapter."""
        return any(entry.is_change for entry in self.entries)

    def summary(self) -> Dict[str, int]:
        """Count of entries per action."""
        summary = {action.value: 0 for action in PlanAction}
        for entry in self.entries:
            summary[entry.action.value] += 1
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary(),
            'entries': [entry.to_dict() for entry in self.entries],
        }

    def __len__(self) -> int:
        return len(self.entries)


class Planner:
    """Computes plans from declarations and a state snapshot."""

    def create_plan(self, declarations: DeclarationSet, snapshot: StateSnapshot) -> Plan:
        """Create a plan.

        Args:
            declarations: Desired resources
            snapshot: Recorded state

        Returns:
            Plan in execution order

        Raises:
            ValidationError: If the graph is invalid or a resource changed type
            PlanningError: If the recorded state cannot be ordered
        """
        graph = DependencyGraph.from_declarations(declarations)
        entries: List[PlanEntry] = []

        for resource_id in graph.topological_sort():
            resource: ResourceDeclaration = graph.get_payload(resource_id)
            entries.append(self._plan_resource(resource, snapshot.get(resource_id), graph))

        entries.extend(self._plan_deletes(declarations, snapshot))

        plan = Plan(entries=entries, graph=graph)
        logger.info(
            "Plan: " + ", ".join(f"{count} {action}" for action, count in plan.summary().items())
        )
        return plan

    def create_destruction_plan(self, snapshot: StateSnapshot) -> Plan:
        """Plan that deletes everything recorded in state."""
        return self.create_plan(DeclarationSet.empty(), snapshot)

    def _plan_resource(
        self,
        resource: ResourceDeclaration,
        prior: Optional[StateEntry],
        graph: DependencyGraph
    ) -> PlanEntry:
        """Decide the action for a declared resource."""
        digest = config_hash(resource)
        depends_on = resource.all_dependencies()

        if prior is not None and prior.resource_type != resource.type:
            raise ValidationError(
                f"Resource '{resource.id}' changed type from {prior.resource_type.value} "
                f"to {resource.type.value}",
                context=ErrorContext(resource_id=resource.id, resource_type=resource.type.value),
                suggestions=[
                    'Declare the new resource under a different id to replace it'
                ]
            )

        if prior is None:
            action, reason = PlanAction.CREATE, 'not in state'
        elif prior.pending:
            action, reason = PlanAction.UPDATE, 'creation not confirmed'
        elif prior.config_hash != digest:
            action, reason = PlanAction.UPDATE, 'configuration changed'
        else:
            action, reason = PlanAction.NOOP, None

        return PlanEntry(
            resource_id=resource.id,
            action=action,
            resource_type=resource.type,
            desired=resource,
            prior=prior,
            config_hash=digest,
            depends_on=depends_on,
            prerequisites=sorted(graph.get_dependencies(resource.id)),
            reason=reason
        )

    def _plan_deletes(self, declarations: DeclarationSet, snapshot: StateSnapshot) -> List[PlanEntry]:
        """Delete entries in reverse order of the recorded dependency graph."""
        declared = set(declarations.ids())
        deleted = [rid for rid in snapshot.ids() if rid not in declared]
        if not deleted:
            return []

        recorded = DependencyGraph()
        for resource_id in snapshot.ids():
            recorded.add_node(resource_id, snapshot.get(resource_id).depends_on)

        cycle = recorded.detect_circular_dependencies()
        if cycle:
            raise PlanningError(f"Recorded state contains a dependency cycle: {' -> '.join(cycle)}")

        deleted_set = set(deleted)
        entries = []
        for resource_id in recorded.reverse_order(ignore_missing=True):
            if resource_id not in deleted_set:
                continue
            prior = snapshot.get(resource_id)
            # Anything that still referenced this resource at apply time goes first
            prerequisites = sorted(recorded.get_dependents(resource_id))
            entries.append(PlanEntry(
                resource_id=resource_id,
                action=PlanAction.DELETE,
                resource_type=prior.resource_type,
                prior=prior,
                depends_on=list(prior.depends_on),
                prerequisites=prerequisites,
                reason='no longer declared'
            ))
        return entries
