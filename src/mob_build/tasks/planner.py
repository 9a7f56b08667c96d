"""Turn resolved configurations and a task selection into grouped execution plans."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass

from mob_build.config.resolver import ResolvedConfig
from mob_build.errors import PlanError, TaskNotFoundError
from mob_build.tasks.patterns import TaskUniverse, resolve_text
from mob_build.tasks.registry import TaskDescriptor, TaskKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskHandle:
    """A task paired with its resolved configuration for one run."""

    descriptor: TaskDescriptor
    config: ResolvedConfig
    enabled: bool
    exclusive: bool

    @property
    def name(self) -> str:
        return self.descriptor.canonical_name


@dataclass(frozen=True, slots=True)
class Group:
    """Tasks that may run concurrently; groups run strictly in order."""

    index: int
    tasks: tuple[TaskHandle, ...]

    def names(self) -> tuple[str, ...]:
        return tuple(task.name for task in self.tasks)


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    groups: tuple[Group, ...] = ()

    def __iter__(self) -> Iterator[Group]:
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)

    def task_names(self) -> tuple[str, ...]:
        return tuple(name for group in self.groups for name in group.names())

    def validate(self) -> None:
        """Raise PlanError for out-of-order groups or tasks planned twice."""

        seen: set[str] = set()
        previous = 0
        for group in self.groups:
            if group.index <= previous:
                raise PlanError(f"group {group.index} follows group {previous}")
            previous = group.index
            for task in group.tasks:
                if task.name in seen:
                    raise PlanError(f"task {task.name!r} is planned more than once")
                if task.descriptor.group != group.index:
                    raise PlanError(
                        f"task {task.name!r} belongs to group {task.descriptor.group}, "
                        f"not {group.index}",
                    )
                seen.add(task.name)

    def render_tree(self) -> list[str]:
        """One line per group, tasks indented below, exclusive tasks marked."""

        lines: list[str] = []
        for group in self.groups:
            lines.append(f"group {group.index}")
            for task in group.tasks:
                marker = " (exclusive)" if task.exclusive else ""
                lines.append(f"  {task.name}{marker}")
        return lines


def plan(
    universe: TaskUniverse,
    resolved: Mapping[str, ResolvedConfig],
    explicit_selection: Iterable[str] = (),
) -> ExecutionPlan:
    """Build the plan for one run.

    Without a selection every enabled task is a candidate. With a selection
    only the selected tasks that are enabled run; nothing else is pulled in.
    """

    selectors = tuple(explicit_selection)
    enabled = {
        descriptor.canonical_name
        for descriptor in universe.registry
        if task_enabled(descriptor, resolved[descriptor.canonical_name])
    }
    candidates = enabled
    if selectors:
        selected = _select(selectors, universe)
        for name in sorted(selected - enabled):
            logger.info("Skipping disabled task %s", name)
        candidates = selected & enabled

    grouped: dict[int, list[TaskHandle]] = {}
    for descriptor in universe.registry:
        if descriptor.canonical_name not in candidates:
            continue
        config = resolved[descriptor.canonical_name]
        handle = TaskHandle(
            descriptor=descriptor,
            config=config,
            enabled=descriptor.canonical_name in enabled,
            exclusive=descriptor.exclusive or bool(config["task.exclusive"]),
        )
        grouped.setdefault(descriptor.group, []).append(handle)

    execution_plan = ExecutionPlan(
        groups=tuple(
            Group(index=index, tasks=tuple(sorted(grouped[index], key=lambda handle: handle.name)))
            for index in sorted(grouped)
        ),
    )
    logger.debug(
        "Planned %d task(s) in %d group(s)",
        len(execution_plan.task_names()),
        len(execution_plan),
    )
    return execution_plan


def _select(selectors: tuple[str, ...], universe: TaskUniverse) -> set[str]:
    selected: set[str] = set()
    missing: list[str] = []
    for selector in selectors:
        matches = resolve_text(selector, universe)
        if not matches:
            missing.append(selector)
        selected.update(matches)
    if missing:
        raise TaskNotFoundError(missing)
    return selected


def task_enabled(descriptor: TaskDescriptor, config: ResolvedConfig) -> bool:
    """Resolved `task.enabled`; translations also need `transifex.enabled`."""

    if descriptor.kind is TaskKind.TRANSLATIONS and not config["transifex.enabled"]:
        return False
    return config.enabled
