"""Group-by-group task scheduling with bounded concurrency and fail-fast abort."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from mob_build.errors import AbortError, ExecutionError, SchedulerStateError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from mob_build.tasks.executor import TaskExecutor
    from mob_build.tasks.planner import ExecutionPlan, TaskHandle

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.RUNNING, TaskState.ABORTED}),
    TaskState.RUNNING: frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.ABORTED}),
    TaskState.SUCCEEDED: frozenset(),
    TaskState.FAILED: frozenset(),
    TaskState.ABORTED: frozenset(),
}


@dataclass(slots=True)
class TaskRun:
    """Scheduler-owned state of one task during a run."""

    name: str
    group: int
    state: TaskState = TaskState.PENDING
    reason: str = ""
    started_at: float | None = None
    finished_at: float | None = None

    def transition(self, state: TaskState, *, at: float, reason: str = "") -> None:
        if state not in _TRANSITIONS[self.state]:
            raise SchedulerStateError(
                f"{self.name}: invalid transition {self.state.value} -> {state.value}",
            )
        self.state = state
        if state is TaskState.RUNNING:
            self.started_at = at
        else:
            self.finished_at = at
            self.reason = reason

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]


class CancellationToken:
    """Broadcast abort signal shared by every task of a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one run; every name list is sorted."""

    succeeded: tuple[str, ...]
    failed: tuple[tuple[str, str], ...]
    aborted: tuple[str, ...]
    runs: Mapping[str, TaskRun]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.aborted

    @classmethod
    def from_runs(cls, runs: dict[str, TaskRun]) -> RunResult:
        ordered = dict(sorted(runs.items()))
        pending = [name for name, run in ordered.items() if not run.terminal]
        if pending:
            raise SchedulerStateError(f"run finished with non-terminal tasks: {', '.join(pending)}")
        by_state: dict[TaskState, list[TaskRun]] = {}
        for run in ordered.values():
            by_state.setdefault(run.state, []).append(run)
        return cls(
            succeeded=tuple(run.name for run in by_state.get(TaskState.SUCCEEDED, [])),
            failed=tuple((run.name, run.reason) for run in by_state.get(TaskState.FAILED, [])),
            aborted=tuple(run.name for run in by_state.get(TaskState.ABORTED, [])),
            runs=MappingProxyType({name: replace(run) for name, run in ordered.items()}),
        )


class Scheduler:
    """Walks a plan group by group and dispatches tasks to an executor.

    Group k+1 starts only after every task of group k is terminal. Inside a
    group non-exclusive tasks run concurrently under a semaphore, then each
    exclusive task runs alone. The first failure cancels the shared token:
    running tasks are expected to stop, and everything not yet dispatched is
    marked aborted.
    """

    def __init__(
        self,
        max_concurrency: int = 0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {max_concurrency}")
        self.max_concurrency = max_concurrency or os.cpu_count() or 1
        self._clock = clock

    def run(
        self,
        plan: ExecutionPlan,
        executor: TaskExecutor,
        token: CancellationToken | None = None,
    ) -> RunResult:
        return asyncio.run(self.run_async(plan, executor, token))

    async def run_async(
        self,
        plan: ExecutionPlan,
        executor: TaskExecutor,
        token: CancellationToken | None = None,
    ) -> RunResult:
        """Run `plan`; Ctrl+C cancels `token` so running tasks end as aborted."""

        plan.validate()
        runs = {
            task.name: TaskRun(name=task.name, group=group.index)
            for group in plan
            for task in group.tasks
        }
        if token is None:
            token = CancellationToken()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def dispatch(handle: TaskHandle) -> None:
            async with semaphore:
                await self._execute(handle, runs[handle.name], executor, token)

        with _interrupt_cancels(token):
            for group in plan:
                if token.is_cancelled:
                    self._abort_pending(group.names(), runs, token)
                    continue

                logger.info("Starting group %d: %s", group.index, ", ".join(group.names()))
                concurrent = [task for task in group.tasks if not task.exclusive]
                exclusive = [task for task in group.tasks if task.exclusive]

                await asyncio.gather(*(dispatch(task) for task in concurrent))
                for task in exclusive:
                    await self._execute(task, runs[task.name], executor, token)

        result = RunResult.from_runs(runs)
        logger.info(
            "Run finished: %d succeeded, %d failed, %d aborted",
            len(result.succeeded),
            len(result.failed),
            len(result.aborted),
        )
        return result

    async def _execute(
        self,
        handle: TaskHandle,
        run: TaskRun,
        executor: TaskExecutor,
        token: CancellationToken,
    ) -> None:
        if token.is_cancelled:
            run.transition(TaskState.ABORTED, at=self._clock(), reason=token.reason)
            return

        run.transition(TaskState.RUNNING, at=self._clock())
        logger.info("Running %s", handle.name)
        try:
            await executor.execute(handle.descriptor, handle.config, token)
        except AbortError as error:
            run.transition(TaskState.ABORTED, at=self._clock(), reason=error.reason)
            logger.warning("%s aborted: %s", handle.name, error.reason)
        except asyncio.CancelledError:
            run.transition(TaskState.ABORTED, at=self._clock(), reason="cancelled")
            logger.warning("%s cancelled", handle.name)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except ExecutionError as error:
            run.transition(TaskState.FAILED, at=self._clock(), reason=error.reason)
            logger.error("%s failed: %s", handle.name, error.reason)
            token.cancel(f"aborted after {handle.name} failed")
        except Exception as error:
            reason = f"{type(error).__name__}: {error}"
            run.transition(TaskState.FAILED, at=self._clock(), reason=reason)
            logger.exception("Executor raised an unexpected error for %s", handle.name)
            token.cancel(f"aborted after {handle.name} failed")
        else:
            run.transition(TaskState.SUCCEEDED, at=self._clock())
            logger.info("%s done", handle.name)

    def _abort_pending(
        self,
        names: tuple[str, ...],
        runs: dict[str, TaskRun],
        token: CancellationToken,
    ) -> None:
        now = self._clock()
        for name in names:
            runs[name].transition(TaskState.ABORTED, at=now, reason=token.reason)


@contextmanager
def _interrupt_cancels(token: CancellationToken) -> Iterator[None]:
    """Route SIGINT to `token` while a run is in progress."""

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except NotImplementedError:
        # no loop signal support on Windows; a plain handler hands over to the loop
        yield from _plain_interrupt_handler(loop, token)
        return
    except RuntimeError as error:
        logger.debug("Ctrl+C stays with the default handler: %s", error)
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _plain_interrupt_handler(
    loop: asyncio.AbstractEventLoop,
    token: CancellationToken,
) -> Iterator[None]:
    def interrupted(signum: int, frame: object) -> None:
        loop.call_soon_threadsafe(token.cancel, "interrupted")

    try:
        previous = signal.signal(signal.SIGINT, interrupted)
    except ValueError as error:
        logger.debug("Ctrl+C stays with the default handler: %s", error)
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
