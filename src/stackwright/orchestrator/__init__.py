"""Orchestration: dependency graph, planning, execution and rollback."""

from stackwright.orchestrator.dependency_graph import DependencyGraph, DependencyNode
from stackwright.orchestrator.planner import (
    Plan,
    PlanAction,
    PlanEntry,
    Planner,
    config_hash,
)
from stackwright.orchestrator.executor import (
    ExecutionResult,
    Executor,
    Outcome,
    ProgressCallback,
    RunResult,
)
from stackwright.orchestrator.rollback import RollbackManager, RollbackPlan, RollbackResult
from stackwright.orchestrator.orchestrator import (
    ApplyOutcome,
    DriftReport,
    DriftStatus,
    Orchestrator,
)

__all__ = [
    'DependencyGraph',
    'DependencyNode',
    'Plan',
    'PlanAction',
    'PlanEntry',
    'Planner',
    'config_hash',
    'ExecutionResult',
    'Executor',
    'Outcome',
    'ProgressCallback',
    'RunResult',
    'RollbackManager',
    'RollbackPlan',
    'RollbackResult',
    'ApplyOutcome',
    'DriftReport',
    'DriftStatus',
    'Orchestrator',
]
