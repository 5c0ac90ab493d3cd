"""Main orchestrator that coordinates planning, execution and rollback."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from stackwright.adapters.registry import AdapterRegistry
from stackwright.config.models import DeclarationSet, RollbackMode, RunSettings
from stackwright.orchestrator.executor import Executor, ProgressCallback, RunResult
from stackwright.orchestrator.planner import Plan, Planner
from stackwright.orchestrator.rollback import RollbackManager, RollbackResult
from stackwright.state.lock import RunLock
from stackwright.state.store import FileStateStore, StateStore
from stackwright.utils.errors import APIError, ErrorContext
from stackwright.utils.logging import LogContext, get_logger
from stackwright.utils.retry import RetryPolicy

logger = get_logger(__name__)


@dataclass
class ApplyOutcome:
    """Result of an apply or destroy."""

    plan: Plan
    run: RunResult
    rollback: Optional[RollbackResult] = None

    def is_success(self) -> bool:
        return self.run.is_success()


class DriftStatus:
    IN_SYNC = "in-sync"
    MODIFIED = "modified"
    MISSING = "missing"
    ERROR = "error"


@dataclass
class DriftReport:
    """Difference between recorded and live attributes of one resource."""

    resource_id: str
    resource_type: str
    external_id: str
    status: str
    differences: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)  # key -> (recorded, live)
    error: Optional[str] = None

    @property
    def has_drift(self) -> bool:
        return self.status != DriftStatus.IN_SYNC

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_id': self.resource_id,
            'resource_type': self.resource_type,
            'external_id': self.external_id,
            'status': self.status,
            'differences': {
                key: {'recorded': recorded, 'live': live}
                for key, (recorded, live) in self.differences.items()
            },
            'error': self.error,
        }


class Orchestrator:
    """Coordinates planning, execution and rollback for one declaration set."""

    def __init__(
        self,
        declarations: DeclarationSet,
        state_store: StateStore,
        adapters: AdapterRegistry,
        settings: Optional[RunSettings] = None,
        lock: Optional[RunLock] = None,
        retry_policy: Optional[RetryPolicy] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """Initialize orchestrator.

        Args:
            declarations: Desired resources
            state_store: Recorded state
            adapters: Adapter registry
            settings: Run settings, defaults to the declaration file's
            lock: Run lock, defaults to a lock file beside a FileStateStore
            retry_policy: Retry policy, defaults to one built from settings
            progress_callback: Progress callback passed to the executor
        """
        self.declarations = declarations
        self.state_store = state_store
        self.adapters = adapters
        self.settings = settings or declarations.settings

        if lock is None:
            if not isinstance(state_store, FileStateStore):
                raise ValueError("A RunLock is required for state stores without a lock file")
            lock = RunLock(str(state_store.lock_path), timeout=self.settings.lock_timeout)
        self.lock = lock

        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings.retry)
        self.planner = Planner()
        self.executor = Executor(
            adapters=adapters,
            state_store=state_store,
            retry_policy=self.retry_policy,
            concurrency=self.settings.concurrency,
            timeout=self.settings.timeout,
            progress_callback=progress_callback
        )
        self.rollback_manager = RollbackManager(self.executor, state_store)

    def plan(self) -> Plan:
        """Validate declarations and compute a plan. No side effects.

        Raises:
            ValidationError: If the declarations are invalid
        """
        logger.info(f"Planning {len(self.declarations.resources)} declared resources "
                    f"for environment '{self.declarations.environment}'")
        return self.planner.create_plan(self.declarations, self.state_store.all())

    def apply(self, plan: Optional[Plan] = None) -> ApplyOutcome:
        """Apply declarations under the run lock.

        Args:
            plan: Precomputed plan; recomputed under the lock when omitted

        Returns:
            ApplyOutcome with the run result and the rollback result, if any
        """
        with self.lock, LogContext(logger, operation='apply'):
            if plan is None:
                plan = self.plan()

            if not plan.has_changes():
                logger.info("No changes to apply")

            run = self.executor.execute(plan)

            rollback = None
            if not run.is_success() and self.settings.rollback == RollbackMode.AUTOMATIC:
                logger.warning("Run had failures, rolling back changes made in this run")
                rollback = self.rollback_manager.rollback(plan, run)

            return ApplyOutcome(plan=plan, run=run, rollback=rollback)

    def plan_destruction(self) -> Plan:
        """Plan deleting everything recorded in state."""
        return self.planner.create_destruction_plan(self.state_store.all())

    def destroy(self) -> ApplyOutcome:
        """Delete every recorded resource, dependents first."""
        with self.lock, LogContext(logger, operation='destroy'):
            plan = self.plan_destruction()
            logger.info(f"Destroying {len(plan)} recorded resources")
            run = self.executor.execute(plan)
            return ApplyOutcome(plan=plan, run=run)

    def detect_drift(self) -> List[DriftReport]:
        """Compare recorded attributes with what adapters read back.

        Only keys present in both the recorded attributes and the live read
        are compared; adapters do not report write-only parameters.
        """
        snapshot = self.state_store.all()
        reports = []

        for resource_id in snapshot.ids():
            entry = snapshot.get(resource_id)
            context = ErrorContext(
                resource_id=resource_id,
                resource_type=entry.resource_type.value,
                operation='read'
            )
            report = DriftReport(
                resource_id=resource_id,
                resource_type=entry.resource_type.value,
                external_id=entry.external_id,
                status=DriftStatus.IN_SYNC
            )

            try:
                adapter = self.adapters.get(entry.resource_type)
                live, _ = self.retry_policy.call(adapter.read, entry.external_id, context=context)
            except APIError as e:
                report.status = DriftStatus.ERROR
                report.error = e.message
                reports.append(report)
                continue

            if live is None:
                report.status = DriftStatus.MISSING
            else:
                for key, recorded in entry.attributes.items():
                    if key in live and not _same(recorded, live[key]):
                        report.differences[key] = (recorded, live[key])
                if report.differences:
                    report.status = DriftStatus.MODIFIED

            if report.has_drift:
                logger.warning(f"Drift detected on {resource_id}: {report.status}")
            reports.append(report)

        return reports


def _same(recorded: Any, live: Any) -> bool:
    """Compare values, ignoring list order and int/str spelling differences."""
    if isinstance(recorded, list) and isinstance(live, list):
        try:
            return sorted(map(str, recorded)) == sorted(map(str, live))
        except TypeError:
            return recorded == live
    if isinstance(recorded, dict) and isinstance(live, dict):
        return all(key in live and _same(value, live[key]) for key, value in recorded.items())
    if isinstance(recorded, (int, float, str)) and isinstance(live, (int, float, str)) \
            and not isinstance(recorded, bool) and not isinstance(live, bool):
        return str(recorded) == str(live)
    return recorded == live
