"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from pathlib import Path

import pytest

from mob_build.config.resolver import ResolvedConfig
from mob_build.errors import AbortError, ExecutionError
from mob_build.tasks.catalog import build_registry
from mob_build.tasks.patterns import TaskUniverse
from mob_build.tasks.planner import ExecutionPlan, Group, TaskHandle
from mob_build.tasks.registry import TaskDescriptor
from mob_build.tasks.scheduler import CancellationToken


class RecordingExecutor:
    """Executor double that records start/end order instead of running commands."""

    def __init__(
        self,
        *,
        delay: float = 0.01,
        fail: Iterable[str] = (),
        crash: Iterable[str] = (),
        wait_for_cancel: Iterable[str] = (),
    ) -> None:
        self.delay = delay
        self.fail = set(fail)
        self.crash = set(crash)
        self.wait_for_cancel = set(wait_for_cancel)
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def execute(
        self,
        task: TaskDescriptor,
        config: ResolvedConfig,
        cancel: CancellationToken,
    ) -> None:
        name = task.canonical_name
        self.events.append(("start", name))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if name in self.wait_for_cancel:
                await cancel.wait()
                raise AbortError(name, cancel.reason)
            await asyncio.sleep(self.delay)
            if name in self.fail:
                raise ExecutionError(name, "exit code 1")
            if name in self.crash:
                raise RuntimeError("kaput")
        finally:
            self.active -= 1
            self.events.append(("end", name))

    def started(self) -> list[str]:
        return [name for kind, name in self.events if kind == "start"]

    def position(self, kind: str, name: str) -> int:
        return self.events.index((kind, name))


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop handlers installed by `setup_logging` so tests do not leak them."""

    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.WARNING)
    logging.captureWarnings(False)


@pytest.fixture()
def universe() -> TaskUniverse:
    return TaskUniverse.create(build_registry())


@pytest.fixture()
def write_toml(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


def make_plan(
    groups: Mapping[int, Iterable[str]],
    *,
    exclusive: Iterable[str] = (),
) -> ExecutionPlan:
    """Plan of bare descriptors with empty configs, for scheduler tests."""

    exclusive_names = set(exclusive)
    planned = []
    for index in sorted(groups):
        handles = tuple(
            TaskHandle(
                descriptor=TaskDescriptor(canonical_name=name, group=index),
                config=ResolvedConfig(task=name, values={}, origins={}),
                enabled=True,
                exclusive=name in exclusive_names,
            )
            for name in sorted(groups[index])
        )
        planned.append(Group(index=index, tasks=handles))
    return ExecutionPlan(groups=tuple(planned))
