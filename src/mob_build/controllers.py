"""Controllers for `mob` CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from mob_build.config.layers import RESERVED_ALIAS, ConfigLayerStore
from mob_build.config.loader import ConfigSources, build_store
from mob_build.config.resolver import (
    ResolvedConfig,
    resolve_all,
    resolve_global,
    universe_from_store,
)
from mob_build.errors import ConfigError
from mob_build.logging_setup import setup_logging
from mob_build.tasks.commands import cmake_prefix_path, cmake_variables
from mob_build.tasks.executor import PhaseExecutor, TaskExecutor
from mob_build.tasks.patterns import TaskUniverse, resolve_text
from mob_build.tasks.planner import plan, task_enabled
from mob_build.tasks.scheduler import RunResult, Scheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConfigCommand:
    """Configuration inputs shared by every command."""

    ini_files: tuple[Path, ...] = ()
    assignments: tuple[str, ...] = ()
    use_default_inis: bool = True

    def with_assignments(self, extra: list[str]) -> ConfigCommand:
        return ConfigCommand(
            ini_files=self.ini_files,
            assignments=(*self.assignments, *extra),
            use_default_inis=self.use_default_inis,
        )


@dataclass(slots=True)
class BuildCommand:
    """CLI input for a build run."""

    config: ConfigCommand
    selectors: tuple[str, ...] = ()


@dataclass(slots=True)
class BuildResult:
    lines: list[str]
    success: bool


@dataclass(slots=True)
class ListCommand:
    """CLI input for task listing."""

    config: ConfigCommand
    patterns: tuple[str, ...] = ()
    show_all: bool = False
    aliases: bool = False
    tree: bool = False


@dataclass(slots=True)
class CmakeConfigCommand:
    """CLI input for `cmake-config`; no variable prints every `-D` definition."""

    config: ConfigCommand
    variable: str | None = None


@dataclass(slots=True)
class LoadedConfig:
    store: ConfigLayerStore
    universe: TaskUniverse
    resolved: dict[str, ResolvedConfig] = field(default_factory=dict)
    global_config: ResolvedConfig | None = None


class MobCliController:
    """Loads configuration, plans and runs builds, and renders listings."""

    def __init__(
        self,
        *,
        executor_factory: Callable[[], TaskExecutor] = PhaseExecutor,
        sources_factory: Callable[..., ConfigSources] = ConfigSources.from_env,
    ) -> None:
        self._executor_factory = executor_factory
        self._sources_factory = sources_factory

    def build(self, command: BuildCommand) -> BuildResult:
        loaded = self._load(command.config)
        global_config = loaded.global_config
        setup_logging(
            console_verbosity=global_config["global.output_log_level"],
            file_verbosity=global_config["global.file_log_level"],
            log_file=global_config["global.log_file"] or None,
        )
        for line in loaded.store.describe_sources():
            logger.debug("Config source %s", line)

        execution_plan = plan(loaded.universe, loaded.resolved, command.selectors)
        if not execution_plan.groups:
            return BuildResult(lines=["Nothing to build."], success=True)
        for line in execution_plan.render_tree():
            logger.info("%s", line)

        scheduler = Scheduler(max_concurrency=global_config["global.max_jobs"])
        result = scheduler.run(execution_plan, self._executor_factory())
        return BuildResult(lines=render_report(result), success=result.ok)

    def list_tasks(self, command: ListCommand) -> list[str]:
        loaded = self._load(command.config)
        if command.tree:
            return plan(loaded.universe, loaded.resolved, command.patterns).render_tree()
        if command.aliases:
            return _alias_lines(loaded.universe)

        registry = loaded.universe.registry
        names = set(registry.canonical_names())
        if command.patterns:
            names = {
                name
                for pattern in command.patterns
                for name in resolve_text(pattern, loaded.universe)
            }

        lines: list[str] = []
        for descriptor in registry:
            if descriptor.canonical_name not in names:
                continue
            enabled = task_enabled(descriptor, loaded.resolved[descriptor.canonical_name])
            if not enabled and not command.show_all:
                continue
            line = descriptor.canonical_name
            if descriptor.alternate_names:
                line = f"{line} ({', '.join(sorted(descriptor.alternate_names))})"
            if not enabled:
                line = f"{line} [disabled]"
            lines.append(line)
        return lines

    def options(self, command: ConfigCommand) -> list[str]:
        """Every run-wide option, secrets masked, aligned on `=`."""

        items = self._load(command).global_config.display_items()
        width = max(len(key) for key, _ in items)
        return [f"{key:<{width}} = {value}" for key, value in items]

    def cmake_config(self, command: CmakeConfigCommand) -> list[str]:
        config = self._load(command.config).global_config
        if command.variable == "prefix-path":
            return [cmake_prefix_path(config)]
        if not config["paths.install"]:
            raise ConfigError("is not configured", key="paths.install")
        variables = cmake_variables(Path(config["paths.install"]), config)
        if command.variable == "install-prefix":
            return [variables["CMAKE_INSTALL_PREFIX"]]
        return [f"-D{name}={value}" for name, value in variables.items()]

    def inis(self, command: ConfigCommand) -> list[str]:
        store = build_store(self._sources(command))
        return store.describe_sources() or ["No configuration sources loaded."]

    def _load(self, command: ConfigCommand) -> LoadedConfig:
        store = build_store(self._sources(command))
        universe = universe_from_store(store)
        return LoadedConfig(
            store=store,
            universe=universe,
            resolved=resolve_all(store, universe),
            global_config=resolve_global(store),
        )

    def _sources(self, command: ConfigCommand) -> ConfigSources:
        return self._sources_factory(
            explicit_files=command.ini_files,
            assignments=command.assignments,
            use_default_files=command.use_default_inis,
        )


def render_report(result: RunResult) -> list[str]:
    """Every task by outcome bucket, then the overall verdict."""

    lines = [f"succeeded ({len(result.succeeded)})"]
    lines.extend(f"  {name}" for name in result.succeeded)
    lines.append(f"failed ({len(result.failed)})")
    lines.extend(f"  {name}: {reason}" for name, reason in result.failed)
    lines.append(f"aborted ({len(result.aborted)})")
    lines.extend(f"  {name}" for name in result.aborted)
    lines.append("Build succeeded." if result.ok else "Build failed.")
    return lines


def _alias_lines(universe: TaskUniverse) -> list[str]:
    lines = [f"{RESERVED_ALIAS}: {', '.join(universe.registry.builtin_names())}"]
    for name in universe.aliases:
        lines.append(f"{name}: {', '.join(universe.expand_alias(name))}")
    return lines
