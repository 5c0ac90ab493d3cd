"""Compensating plans for runs that ended with failures."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from stackwright.config.models import ResourceDeclaration
from stackwright.orchestrator.executor import Executor, RunResult
from stackwright.orchestrator.planner import Plan, PlanAction, PlanEntry
from stackwright.state.store import StateStore
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RollbackPlan:
    """Plan for undoing the changes a failed run made."""

    plan: Plan
    irreversible: List[str] = field(default_factory=list)  # Deleted in the run, cannot be restored

    def get_total_operations(self) -> int:
        return len(self.plan.entries)

    def is_empty(self) -> bool:
        return not self.plan.entries


@dataclass
class RollbackResult:
    """Result of executing a rollback plan."""

    run: Optional[RunResult]
    irreversible: List[str] = field(default_factory=list)

    @property
    def destroyed_resources(self) -> List[str]:
        if self.run is None:
            return []
        return [r.resource_id for r in self.run.succeeded() if r.action == PlanAction.DELETE]

    @property
    def restored_resources(self) -> List[str]:
        if self.run is None:
            return []
        return [r.resource_id for r in self.run.succeeded() if r.action == PlanAction.UPDATE]

    @property
    def failed_operations(self) -> Dict[str, str]:
        if self.run is None:
            return {}
        return {
            r.resource_id: (r.error.message if r.error else r.reason or 'skipped')
            for r in self.run.results if not r.is_success()
        }

    def is_success(self) -> bool:
        return self.run is None or self.run.is_success()


class RollbackManager:
    """Builds and executes compensating plans.

    Resources created by the run are deleted, dependents first. Resources
    updated by the run are updated back to the attributes recorded before
    the run. Deletions cannot be undone and are only reported.
    """

    def __init__(self, executor: Executor, state_store: StateStore):
        """Initialize rollback manager.

        Args:
            executor: Executor used to run the compensating plan
            state_store: State store holding what the run recorded
        """
        self.executor = executor
        self.state_store = state_store

    def create_rollback_plan(self, plan: Plan, run: RunResult) -> RollbackPlan:
        """Create a plan undoing the successful changes of a run.

        Args:
            plan: Plan that was executed
            run: Result of executing it

        Returns:
            RollbackPlan
        """
        # A create whose wait failed still left a recorded resource behind
        touched = {r.resource_id for r in run.succeeded()} | {
            r.resource_id for r in run.failed()
            if r.action == PlanAction.CREATE and r.external_id
        }
        changed = [e for e in plan.entries if e.resource_id in touched and e.is_change]

        irreversible = [e.resource_id for e in changed if e.action == PlanAction.DELETE]
        restores: List[PlanEntry] = []
        removals: List[PlanEntry] = []

        for entry in reversed(changed):
            current = self.state_store.get(entry.resource_id)
            if current is None:
                continue

            if entry.action == PlanAction.UPDATE:
                prior = entry.prior
                restores.append(PlanEntry(
                    resource_id=entry.resource_id,
                    action=PlanAction.UPDATE,
                    resource_type=entry.resource_type,
                    desired=ResourceDeclaration(
                        id=entry.resource_id,
                        type=prior.resource_type,
                        attributes=prior.attributes,
                        depends_on=prior.depends_on
                    ),
                    prior=current,
                    config_hash=prior.config_hash,
                    depends_on=list(prior.depends_on),
                    reason='restore attributes recorded before the run'
                ))
            elif entry.action == PlanAction.CREATE:
                removals.append(PlanEntry(
                    resource_id=entry.resource_id,
                    action=PlanAction.DELETE,
                    resource_type=entry.resource_type,
                    prior=current,
                    depends_on=list(current.depends_on),
                    reason='created by the failed run'
                ))

        # A created resource is removed only after everything that used it in
        # this run has been removed or restored
        rollback_ids = {e.resource_id for e in restores + removals}
        for removal in removals:
            removal.prerequisites = sorted(
                e.resource_id for e in changed
                if e.resource_id in rollback_ids
                and e.resource_id != removal.resource_id
                and removal.resource_id in e.depends_on
            )

        if irreversible:
            logger.warning(f"Deleted resources cannot be rolled back: {', '.join(irreversible)}")

        return RollbackPlan(plan=Plan(entries=restores + removals), irreversible=irreversible)

    def execute_rollback(self, rollback_plan: RollbackPlan) -> RollbackResult:
        """Execute a rollback plan."""
        if rollback_plan.is_empty():
            logger.info("Nothing to roll back")
            return RollbackResult(run=None, irreversible=rollback_plan.irreversible)

        logger.info(f"Rolling back {rollback_plan.get_total_operations()} changes")
        run = self.executor.execute(rollback_plan.plan)

        if run.is_success():
            logger.info("Rollback completed")
        else:
            logger.error(f"Rollback left {len(run.failed()) + len(run.skipped())} changes in place")
        return RollbackResult(run=run, irreversible=rollback_plan.irreversible)

    def rollback(self, plan: Plan, run: RunResult) -> RollbackResult:
        """Create and execute the rollback plan for a run."""
        return self.execute_rollback(self.create_rollback_plan(plan, run))
