"""Error taxonomy shared by configuration, planning and scheduling."""

from __future__ import annotations

from collections.abc import Iterable


class MobError(Exception):
    """Base class for orchestrator errors."""


class ConfigError(MobError):
    """Malformed configuration layer or a value of the wrong type."""

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        key: str | None = None,
    ) -> None:
        self.message = message
        self.source_id = source_id
        self.key = key
        location = ""
        if source_id and key:
            location = f"{source_id}: {key}: "
        elif source_id:
            location = f"{source_id}: "
        elif key:
            location = f"{key}: "
        super().__init__(f"{location}{message}")


class RegistryError(MobError):
    """Task catalog violates name uniqueness or group bounds."""


class TaskNotFoundError(MobError):
    """Explicit task selection references a name, alias or glob matching nothing."""

    def __init__(self, selectors: Iterable[str]) -> None:
        self.selectors = tuple(selectors)
        joined = ", ".join(repr(selector) for selector in self.selectors)
        super().__init__(f"No task matches: {joined}")


class PlanError(MobError):
    """Execution plan is structurally invalid."""


class SchedulerStateError(MobError):
    """A task run attempted a non-monotonic state transition."""


class ExecutionError(MobError):
    """A task's executor operation failed."""

    def __init__(self, task: str, reason: str, *, exit_code: int | None = None) -> None:
        self.task = task
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(f"{task}: {reason}")


class AbortError(MobError):
    """A task stopped because a sibling task failed."""

    def __init__(self, task: str, reason: str = "aborted after sibling failure") -> None:
        self.task = task
        self.reason = reason
        super().__init__(f"{task}: {reason}")
