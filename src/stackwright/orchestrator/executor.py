"""Plan executor with bounded parallelism and failure isolation."""

import hashlib
import heapq
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from stackwright.adapters.base import ResourceAdapter
from stackwright.adapters.registry import AdapterRegistry
from stackwright.config.models import REFERENCE_PATTERN
from stackwright.orchestrator.planner import Plan, PlanAction, PlanEntry
from stackwright.state.models import StateEntry
from stackwright.state.store import StateStore
from stackwright.utils.errors import (
    ErrorContext,
    OrchestratorError,
    StateError,
    error_handler,
)
from stackwright.utils.logging import get_logger
from stackwright.utils.retry import RetryPolicy

logger = get_logger(__name__)


class Outcome(str, Enum):
    """Final outcome of a plan entry."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExecutionResult:
    """Result of executing a single plan entry."""

    resource_id: str
    action: PlanAction
    outcome: Outcome
    external_id: Optional[str] = None
    error: Optional[OrchestratorError] = None
    attempts: int = 0
    duration: float = 0.0  # seconds
    reason: Optional[str] = None

    def is_success(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    def is_failed(self) -> bool:
        return self.outcome == Outcome.FAILED

    def is_skipped(self) -> bool:
        return self.outcome == Outcome.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_id': self.resource_id,
            'action': self.action.value,
            'outcome': self.outcome.value,
            'external_id': self.external_id,
            'error': self.error.to_dict() if self.error else None,
            'attempts': self.attempts,
            'duration': round(self.duration, 3),
            'reason': self.reason,
        }


@dataclass
class RunResult:
    """Results of one executor run, in plan order."""

    results: List[ExecutionResult] = field(default_factory=list)
    timed_out: bool = False
    duration: float = 0.0  # seconds

    def get(self, resource_id: str) -> Optional[ExecutionResult]:
        for result in self.results:
            if result.resource_id == resource_id:
                return result
        return None

    def succeeded(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.is_success()]

    def failed(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.is_failed()]

    def skipped(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.is_skipped()]

    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in Outcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts

    def is_success(self) -> bool:
        """True if every entry succeeded."""
        return all(r.is_success() for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.is_success(),
            'timed_out': self.timed_out,
            'duration': round(self.duration, 3),
            'counts': self.counts(),
            'results': [r.to_dict() for r in self.results],
        }


# (resource_id, outcome or None when starting, message)
ProgressCallback = Callable[[str, Optional[Outcome], str], None]


class Executor:
    """Executes a plan through the adapter registry.

    Entries start as soon as all their prerequisites have succeeded, up to
    ``concurrency`` at a time. A failed entry causes every entry that
    transitively requires it to be skipped; unrelated entries keep running.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        state_store: StateStore,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = 4,
        timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """Initialize executor.

        Args:
            adapters: Adapter registry
            state_store: Store updated after every confirmed success
            retry_policy: Retry policy for adapter calls
            concurrency: Maximum number of concurrent adapter calls
            timeout: Run-level timeout in seconds
            progress_callback: Called when an entry starts and finishes
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.adapters = adapters
        self.state_store = state_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency
        self.timeout = timeout
        self.progress_callback = progress_callback
        self.run_id: Optional[str] = None

    def execute(self, plan: Plan) -> RunResult:
        """Execute a plan.

        Args:
            plan: Plan to execute

        Returns:
            RunResult with one result per plan entry
        """
        start = time.monotonic()
        deadline = start + self.timeout if self.timeout else None
        self.run_id = uuid.uuid4().hex

        entries: Dict[str, PlanEntry] = {e.resource_id: e for e in plan.entries}
        position = {rid: i for i, rid in enumerate(entries)}
        results: Dict[str, ExecutionResult] = {}

        waiting: Dict[str, Set[str]] = {}
        dependents: Dict[str, Set[str]] = {rid: set() for rid in entries}
        for rid, entry in entries.items():
            prereqs = {p for p in entry.prerequisites if p in entries}
            waiting[rid] = prereqs
            for prereq in prereqs:
                dependents[prereq].add(rid)

        ready = [(position[rid], rid) for rid, prereqs in waiting.items() if not prereqs]
        heapq.heapify(ready)
        in_flight: Dict[Future, str] = {}
        timed_out = False

        def release(rid: str) -> None:
            for dependent in dependents[rid]:
                waiting[dependent].discard(rid)
                if not waiting[dependent] and dependent not in results:
                    heapq.heappush(ready, (position[dependent], dependent))

        def skip_dependents(rid: str) -> None:
            queue = list(dependents[rid])
            while queue:
                dependent = queue.pop()
                if dependent in results:
                    continue
                self._finish(results, ExecutionResult(
                    resource_id=dependent,
                    action=entries[dependent].action,
                    outcome=Outcome.SKIPPED,
                    reason=f"requires '{rid}' which did not succeed"
                ))
                queue.extend(dependents[dependent])

        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix='stackwright')
        try:
            while ready or in_flight:
                while ready:
                    _, rid = heapq.heappop(ready)
                    if rid in results:
                        continue
                    entry = entries[rid]

                    if entry.action == PlanAction.NOOP:
                        result = self._unchanged(entry)
                        self._finish(results, result)
                        if result.is_success():
                            release(rid)
                        else:
                            skip_dependents(rid)
                        continue

                    self._notify(rid, None, f"{entry.action.value} {entry.resource_type.value}")
                    in_flight[pool.submit(self._run_entry, entry)] = rid

                if not in_flight:
                    break

                remaining = None
                if deadline is not None:
                    remaining = max(0.0, deadline - time.monotonic())

                done, _ = wait(list(in_flight), timeout=remaining, return_when=FIRST_COMPLETED)
                if not done:
                    timed_out = True
                    break

                for future in done:
                    rid = in_flight.pop(future)
                    result = future.result()
                    self._finish(results, result)
                    if result.is_success():
                        release(rid)
                    else:
                        skip_dependents(rid)
        finally:
            if timed_out:
                logger.warning(f"Run timed out after {self.timeout}s; waiting for "
                               f"{len(in_flight)} running entries to finish")
            # Queued entries are cancelled; running ones finish and record state
            # before the caller can release the run lock
            pool.shutdown(wait=True, cancel_futures=timed_out)

        if timed_out:
            for future, rid in in_flight.items():
                if not future.cancelled():
                    self._finish(results, future.result())
            logger.error(f"Run timed out after {self.timeout}s; "
                         f"{len(entries) - len(results)} entries left unfinished")
            for rid, entry in entries.items():
                if rid not in results:
                    self._finish(results, ExecutionResult(
                        resource_id=rid,
                        action=entry.action,
                        outcome=Outcome.SKIPPED,
                        reason='run timed out'
                    ))

        run = RunResult(
            results=[results[rid] for rid in entries],
            timed_out=timed_out,
            duration=time.monotonic() - start
        )
        counts = run.counts()
        logger.info(
            f"Run finished in {run.duration:.1f}s: {counts['succeeded']} succeeded, "
            f"{counts['failed']} failed, {counts['skipped']} skipped"
        )
        return run

    def _run_entry(self, entry: PlanEntry) -> ExecutionResult:
        """Apply one entry and record its state. Runs on a worker thread."""
        start = time.monotonic()
        log_extra = {
            'resource_id': entry.resource_id,
            'resource_type': entry.resource_type.value,
            'operation': entry.action.value,
        }
        context = ErrorContext(
            resource_id=entry.resource_id,
            resource_type=entry.resource_type.value,
            operation=entry.action.value
        )
        external_id = entry.prior.external_id if entry.prior else None
        attempts = 0

        try:
            adapter = self.adapters.get(entry.resource_type)

            if entry.action == PlanAction.DELETE:
                _, attempts = self.retry_policy.call(adapter.delete, external_id, context=context)
                self.state_store.delete(entry.resource_id)
            else:
                attributes = self.resolve_references(entry.desired.attributes)
                if entry.action == PlanAction.CREATE:
                    external_id, attempts = self._create(entry, adapter, attributes, context)
                    # A failed settle leaves this pending entry behind
                    self._record(entry, external_id, attributes, pending=True)
                    self.retry_policy.call(adapter.settle, external_id, attributes, context=context)
                else:
                    if entry.prior.pending:
                        self.retry_policy.call(adapter.settle, external_id, attributes, context=context)
                    _, attempts = self.retry_policy.call(
                        adapter.update, external_id, attributes, context=context
                    )

                self._record(entry, external_id, attributes)

        except OrchestratorError as e:
            attempts = attempts or (e.context.additional_info or {}).get('attempts', 1)
            return self._failure(entry, e, attempts, start, log_extra, external_id)
        except Exception as e:
            error = error_handler.classify(e, context)
            return self._failure(entry, error, attempts or 1, start, log_extra, external_id)

        duration = time.monotonic() - start
        logger.info(
            f"{entry.action.value} {entry.resource_id} succeeded ({external_id})",
            extra={**log_extra, 'attempt': attempts, 'duration': duration}
        )
        return ExecutionResult(
            resource_id=entry.resource_id,
            action=entry.action,
            outcome=Outcome.SUCCEEDED,
            external_id=external_id,
            attempts=attempts,
            duration=duration
        )

    def _create(
        self,
        entry: PlanEntry,
        adapter: ResourceAdapter,
        attributes: Dict[str, Any],
        context: ErrorContext
    ):
        """Create through the retry policy without duplicating the resource.

        Every attempt carries the same idempotency token. When a name-keyed
        create collides with an existing resource after an earlier attempt may
        have reached the service, that resource is the one this run created and
        is adopted.

        Returns:
            Tuple of (external id, number of attempts made)
        """
        token = self.client_token(entry)
        earlier_failures: List[Exception] = []

        def attempt() -> str:
            try:
                return adapter.create(attributes, token=token)
            except ClientError as e:
                if not adapter.is_already_exists(e):
                    earlier_failures.append(e)
                    raise
                existing = adapter.find_existing(attributes) if earlier_failures else None
                if existing is None:
                    raise
                logger.warning(
                    f"{entry.resource_id} already exists as {existing} after a failed attempt; adopting it",
                    extra={'resource_id': entry.resource_id, 'operation': entry.action.value}
                )
                return existing
            except Exception as e:
                earlier_failures.append(e)
                raise

        return self.retry_policy.call(attempt, context=context)

    def client_token(self, entry: PlanEntry) -> str:
        """Idempotency token shared by every attempt to create ``entry`` in this run."""
        seed = f"{self.run_id}:{entry.resource_id}:{entry.config_hash}"
        return hashlib.sha256(seed.encode('utf-8')).hexdigest()

    def _record(
        self,
        entry: PlanEntry,
        external_id: str,
        attributes: Dict[str, Any],
        pending: bool = False
    ) -> None:
        self.state_store.put(entry.resource_id, StateEntry(
            config_hash=entry.config_hash,
            external_id=external_id,
            resource_type=entry.resource_type,
            depends_on=entry.depends_on,
            attributes=attributes,
            pending=pending
        ))

    def _unchanged(self, entry: PlanEntry) -> ExecutionResult:
        """Succeed a no-op entry, refreshing its recorded dependencies if they changed."""
        prior = entry.prior
        result = ExecutionResult(
            resource_id=entry.resource_id,
            action=entry.action,
            outcome=Outcome.SUCCEEDED,
            external_id=prior.external_id if prior else None
        )
        if prior is None or sorted(prior.depends_on) == sorted(entry.depends_on):
            return result

        # depends_on is not part of the config hash but orders later deletes
        try:
            self.state_store.put(
                entry.resource_id,
                prior.model_copy(update={'depends_on': list(entry.depends_on)})
            )
        except StateError as e:
            return self._failure(entry, e, 0, time.monotonic(), {}, prior.external_id)
        logger.debug(f"Recorded dependencies of {entry.resource_id}: {entry.depends_on}")
        return result

    def _failure(
        self,
        entry: PlanEntry,
        error: OrchestratorError,
        attempts: int,
        start: float,
        log_extra: Dict[str, Any],
        external_id: Optional[str] = None
    ) -> ExecutionResult:
        duration = time.monotonic() - start
        logger.error(
            f"{entry.action.value} {entry.resource_id} failed: {error.message}",
            extra={**log_extra, 'attempt': attempts, 'duration': duration}
        )
        if entry.action == PlanAction.CREATE and external_id:
            logger.warning(f"{entry.resource_id} was created as {external_id} but is not confirmed "
                           f"usable; the next apply resumes waiting instead of creating it again")
        return ExecutionResult(
            resource_id=entry.resource_id,
            action=entry.action,
            outcome=Outcome.FAILED,
            external_id=external_id,
            error=error,
            attempts=attempts,
            duration=duration
        )

    def resolve_references(self, value: Any) -> Any:
        """Replace ``${id}`` references with the external ids from state.

        A value that is exactly one reference becomes the external id;
        embedded references are substituted into the string.

        Raises:
            StateError: If a referenced resource has no recorded state
        """
        if isinstance(value, dict):
            return {k: self.resolve_references(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_references(v) for v in value]
        if not isinstance(value, str):
            return value

        full = REFERENCE_PATTERN.fullmatch(value)
        if full:
            return self._external_id(full.group(1))
        return REFERENCE_PATTERN.sub(lambda m: self._external_id(m.group(1)), value)

    def _external_id(self, resource_id: str) -> str:
        entry = self.state_store.get(resource_id)
        if entry is None:
            raise StateError(
                f"Referenced resource '{resource_id}' has no recorded external id",
                context=ErrorContext(resource_id=resource_id),
                suggestions=[f"Apply '{resource_id}' before the resources that reference it"]
            )
        return entry.external_id

    def _finish(self, results: Dict[str, ExecutionResult], result: ExecutionResult) -> None:
        results[result.resource_id] = result
        if result.is_success():
            message = result.external_id or ''
        elif result.is_failed():
            message = result.error.message if result.error else 'failed'
        else:
            message = result.reason or 'skipped'
        self._notify(result.resource_id, result.outcome, message)

    def _notify(self, resource_id: str, outcome: Optional[Outcome], message: str) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(resource_id, outcome, message)
        except Exception as e:
            logger.warning(f"Progress callback failed for {resource_id}: {e}")
