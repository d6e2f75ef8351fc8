"""Parallel execution of an operation graph.

Ready operations run on a thread pool; an operation becomes ready once every
operation it depends on has committed successfully. Commits, state writes and
progress callbacks all happen on the calling (driver) thread.

A failed or timed-out operation blocks its transitive dependents, while
independent branches keep going. The barrier between creates and deletes is
the exception: it waits for its dependencies to finish, not to succeed, so
unrelated deletes still run after a failed create.

Dependents of an operation aborted by cancellation are never started and are
reported as canceled, like every other operation that had not started.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Literal

from stack_provisioner.engine.operations import Execution
from stack_provisioner.engine.types import OperationOutcome, OutcomeStatus

if TYPE_CHECKING:
    from stack_provisioner.core.state import State
    from stack_provisioner.engine.operations import Operation, Runtime
    from stack_provisioner.engine.types import ResourceChange

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["ResourceChange", Literal["start", "done"]], None]

# How often the driver wakes up to notice Ctrl-C while workers are busy.
_WAKE_INTERVAL = 0.2

_SUCCESS = (OutcomeStatus.APPLIED, OutcomeStatus.UNCHANGED)


class PlanExecutor:
    """Runs an operation graph with at most ``options.max_workers`` in flight."""

    def __init__(
        self,
        ops: dict[str, Operation],
        runtime: Runtime,
        state: State,
        *,
        persist: Callable[[], None],
        progress: ProgressCallback | None = None,
    ) -> None:
        self._ops = ops
        self._runtime = runtime
        self._state = state
        self._persist = persist
        self._progress = progress

        self._waiting: dict[str, set[str]] = {k: set(op.deps) & set(ops) for k, op in ops.items()}
        self._dependents: dict[str, set[str]] = {k: set() for k in ops}
        for k, deps in self._waiting.items():
            for d in deps:
                self._dependents[d].add(k)

        self._ready: list[str] = [k for k, deps in self._waiting.items() if not deps]
        heapq.heapify(self._ready)
        self._outcomes: dict[str, OperationOutcome] = {}
        self._applied: list[ResourceChange] = []
        self._canceled = False

    @property
    def canceled(self) -> bool:
        return self._canceled

    @property
    def applied(self) -> list[ResourceChange]:
        return list(self._applied)

    def outcomes(self) -> list[OperationOutcome]:
        """Outcomes of resource operations, in plan order."""
        order = {
            op.change.name: i
            for i, op in enumerate(self._ops.values())
            if op.change is not None
        }
        return sorted(self._outcomes.values(), key=lambda o: order.get(o.name, len(order)))

    def run(self) -> list[OperationOutcome]:
        cancel_event = self._runtime.cancel_event
        max_workers = self._runtime.options.max_workers
        in_flight: dict[Future[Execution], str] = {}

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="apply") as pool:
            while True:
                while self._ready and len(in_flight) < max_workers and not cancel_event.is_set():
                    key = heapq.heappop(self._ready)
                    op = self._ops[key]
                    if op.change is None:
                        # Barrier: nothing to run.
                        self._release(key)
                        continue
                    logger.debug("Starting %s %s", op.change.action.value, key)
                    if self._progress is not None:
                        self._progress(op.change, "start")
                    in_flight[pool.submit(op.execute, self._runtime)] = key

                if not in_flight:
                    break

                try:
                    done, _ = wait(in_flight, timeout=_WAKE_INTERVAL, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.info("Interrupted, waiting for in-flight operations")
                    cancel_event.set()
                    continue

                for future in sorted(done, key=lambda f: in_flight[f]):
                    key = in_flight.pop(future)
                    self._finish(key, future.result())

        if cancel_event.is_set():
            self._canceled = True
            for key, op in self._ops.items():
                if op.change is not None and key not in self._outcomes:
                    self._outcomes[key] = OperationOutcome(
                        name=key,
                        resource_type=op.change.resource_type,
                        action=op.change.action,
                        status=OutcomeStatus.CANCELED,
                    )
        return self.outcomes()

    def _finish(self, key: str, execution: Execution) -> None:
        op = self._ops[key]
        assert op.change is not None
        if op.commit(self._state, self._runtime, execution):
            self._persist()

        self._outcomes[key] = OperationOutcome(
            name=key,
            resource_type=op.change.resource_type,
            action=op.change.action,
            status=execution.status,
            error=execution.error,
            duration_seconds=round(execution.duration_seconds, 3),
        )
        logger.debug("Finished %s %s: %s", op.change.action.value, key, execution.status.value)

        if execution.status in _SUCCESS:
            if execution.status == OutcomeStatus.APPLIED:
                self._applied.append(op.change)
            if self._progress is not None:
                self._progress(op.change, "done")
            self._release(key)
        elif execution.status != OutcomeStatus.CANCELED:
            self._block_dependents(key, root=key)

    def _release(self, key: str) -> None:
        for child in sorted(self._dependents[key]):
            waiting = self._waiting[child]
            waiting.discard(key)
            if not waiting and child not in self._outcomes:
                heapq.heappush(self._ready, child)

    def _block_dependents(self, key: str, *, root: str) -> None:
        for child in sorted(self._dependents[key]):
            child_op = self._ops[child]
            if child_op.change is None:
                # Barriers wait for completion, not success.
                self._waiting[child].discard(key)
                if not self._waiting[child]:
                    heapq.heappush(self._ready, child)
                continue
            if child in self._outcomes:
                continue
            self._outcomes[child] = OperationOutcome(
                name=child,
                resource_type=child_op.change.resource_type,
                action=child_op.change.action,
                status=OutcomeStatus.BLOCKED,
                blocked_by=[root],
            )
            logger.info("Skipping %s: depends on failed %s", child, root)
            self._block_dependents(child, root=root)
