"""Build configuration layers from TOML files, environment variables and CLI assignments."""

from __future__ import annotations

import logging
import os
import sys
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from mob_build.config.layers import (
    RESERVED_ALIAS,
    AllTasksScope,
    ConfigEntry,
    ConfigLayer,
    ConfigLayerStore,
    GlobalScope,
    LayerScope,
    NamedScope,
    ProjectDeclaration,
)
from mob_build.config.schema import SECTIONS, TASK_SECTION, lookup
from mob_build.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "mob.toml"
ENV_PREFIX = "MOB_"
ENV_INI_LIST = "MOBINI"
ENV_ROOT = "MOBROOT"
COMMAND_LINE_SOURCE = "<command line>"

_PROJECT_KEYS = frozenset({"group", "alternate_names", "exclusive"})

# Priority bands, ascending. Index within a band is added to the band base.
PRIORITY_PRIMARY = 100
PRIORITY_ENV_FILES = 200
PRIORITY_CWD = 300
PRIORITY_EXPLICIT = 400
PRIORITY_ENVIRONMENT = 500
PRIORITY_ASSIGNMENTS = 600


@dataclass(slots=True)
class ConfigSources:
    """Where configuration comes from for one invocation."""

    root_dir: Path | None = None
    cwd: Path | None = None
    env_ini_list: str | None = None
    explicit_files: tuple[Path, ...] = ()
    environ: Mapping[str, str] | None = None
    assignments: tuple[str, ...] = ()
    use_default_files: bool = True

    @classmethod
    def from_env(
        cls,
        *,
        explicit_files: Sequence[Path] = (),
        assignments: Sequence[str] = (),
        use_default_files: bool = True,
    ) -> ConfigSources:
        """Sources for a CLI invocation: MOBROOT/MOBINI from the process environment."""

        root_raw = os.getenv(ENV_ROOT, "").strip()
        root_dir = Path(root_raw) if root_raw else Path(sys.argv[0]).resolve().parent
        return cls(
            root_dir=root_dir,
            cwd=Path.cwd(),
            env_ini_list=os.getenv(ENV_INI_LIST),
            explicit_files=tuple(explicit_files),
            environ=dict(os.environ),
            assignments=tuple(assignments),
            use_default_files=use_default_files,
        )


def build_store(sources: ConfigSources) -> ConfigLayerStore:
    """Load every layer in ascending priority and return the store."""

    store = ConfigLayerStore()

    if sources.use_default_files:
        primary = (sources.root_dir or Path.cwd()) / CONFIG_FILENAME
        store.add(load_toml_layer(primary, priority=PRIORITY_PRIMARY, origin="primary"))

        for index, path in enumerate(_split_ini_list(sources.env_ini_list)):
            layer = load_toml_layer(path, priority=PRIORITY_ENV_FILES + index, origin=ENV_INI_LIST)
            store.add(layer)

        cwd_file = (sources.cwd or Path.cwd()) / CONFIG_FILENAME
        if cwd_file.is_file() and not _same_file(cwd_file, primary):
            store.add(load_toml_layer(cwd_file, priority=PRIORITY_CWD, origin="cwd"))

    for index, path in enumerate(sources.explicit_files):
        store.add(load_toml_layer(path, priority=PRIORITY_EXPLICIT + index, origin="ini"))

    if sources.environ is not None:
        env = env_layer(sources.environ, priority=PRIORITY_ENVIRONMENT)
        if env.entries:
            store.add(env)

    if sources.assignments:
        store.add(assignment_layer(sources.assignments, priority=PRIORITY_ASSIGNMENTS))

    logger.debug("Loaded %d configuration layer(s)", len(store))
    return store


def load_toml_layer(path: Path, *, priority: int, origin: str = "file") -> ConfigLayer:
    """Parse one required TOML file into a layer."""

    source_id = str(path)
    if not path.is_file():
        raise ConfigError("configuration file not found", source_id=source_id)
    try:
        document = tomllib.loads(path.read_text("utf-8"))
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(f"invalid TOML: {error}", source_id=source_id) from error
    return layer_from_document(document, source_id=source_id, priority=priority, origin=origin)


def layer_from_document(
    document: Mapping[str, Any],
    *,
    source_id: str,
    priority: int,
    origin: str = "file",
) -> ConfigLayer:
    """Turn a parsed document into a layer, validating values against the schema."""

    builder = _LayerBuilder(source_id=source_id)
    for section, body in document.items():
        if section == "tasks":
            builder.add_scoped_tables(body)
        elif section == "aliases":
            builder.add_aliases(body)
        elif section == "projects":
            builder.add_projects(body)
        elif section in SECTIONS:
            if not isinstance(body, Mapping):
                raise ConfigError("section must be a table", source_id=source_id, key=section)
            for name, value in body.items():
                builder.add(GlobalScope(), section, name, value)
        else:
            logger.warning("%s: ignoring unknown section [%s]", source_id, section)
    return builder.build(priority=priority, origin=origin)


def env_layer(environ: Mapping[str, str], *, priority: int) -> ConfigLayer:
    """Map `MOB_<SECTION>_<OPTION>` variables onto global-scoped entries."""

    builder = _LayerBuilder(source_id="<environment>")
    for variable in sorted(environ):
        if not variable.startswith(ENV_PREFIX):
            continue
        section, _, option = variable[len(ENV_PREFIX) :].partition("_")
        section = section.lower()
        option = option.lower()
        if section not in SECTIONS or not option:
            logger.warning("Ignoring environment variable %s (unknown section)", variable)
            continue
        builder.source_id = f"<environment:{variable}>"
        builder.add(GlobalScope(), section, option, environ[variable])
    builder.source_id = "<environment>"
    return builder.build(priority=priority, origin="env")


def assignment_layer(assignments: Sequence[str], *, priority: int) -> ConfigLayer:
    """Parse `[scope:]section/key=value` assignments from the command line."""

    builder = _LayerBuilder(source_id=COMMAND_LINE_SOURCE)
    for raw in assignments:
        scope, section, option, value = parse_assignment(raw)
        builder.add(scope, section, option, value)
    return builder.build(priority=priority, origin="cli")


def parse_assignment(raw: str) -> tuple[LayerScope, str, str, str]:
    """Split one `[scope:]section/key=value` string."""

    target, separator, value = raw.partition("=")
    if not separator:
        raise _malformed_assignment(raw)

    scope: LayerScope = GlobalScope()
    if ":" in target:
        scope_text, _, target = target.partition(":")
        scope = _scope_from_text(scope_text.strip(), source_id=COMMAND_LINE_SOURCE)

    section, slash, option = target.strip().partition("/")
    if not slash or not section or not option:
        raise _malformed_assignment(raw)
    return scope, section, option, value


class _LayerBuilder:
    def __init__(self, *, source_id: str) -> None:
        self.source_id = source_id
        self._entries: list[ConfigEntry] = []
        self._aliases: dict[str, tuple[str, ...]] = {}
        self._projects: dict[str, ProjectDeclaration] = {}

    def add(self, scope: LayerScope, section: str, option: str, value: Any) -> None:
        key = f"{section}.{option}"
        if not isinstance(scope, GlobalScope) and section != TASK_SECTION:
            raise self._error(
                f"only [{TASK_SECTION}] options can be scoped to tasks "
                f"(scope {scope.describe()!r})",
                key,
            )
        spec = lookup(section, option)
        if spec is None:
            logger.warning("%s: ignoring unknown option %s", self.source_id, key)
            return
        coerced = spec.coerce(value, source_id=self.source_id)
        self._entries.append(
            ConfigEntry(scope=scope, key=key, value=coerced, index=len(self._entries)),
        )

    def add_scoped_tables(self, body: Any) -> None:
        if not isinstance(body, Mapping):
            raise self._error("section must be a table of task scopes", "tasks")
        for scope_text, options in body.items():
            if not isinstance(options, Mapping):
                raise self._error("task scope must be a table of options", f"tasks.{scope_text}")
            scope = _scope_from_text(scope_text, source_id=self.source_id)
            for option, value in options.items():
                self.add(scope, TASK_SECTION, option, value)

    def add_aliases(self, body: Any) -> None:
        if not isinstance(body, Mapping):
            raise self._error("section must be a table", "aliases")
        for name, targets in body.items():
            if isinstance(targets, str):
                targets = [targets]
            if not _is_string_list(targets):
                raise self._error("alias must be a string or a list of strings", f"aliases.{name}")
            if name == RESERVED_ALIAS:
                raise self._error(f"{RESERVED_ALIAS!r} is a reserved alias", f"aliases.{name}")
            self._aliases[name] = tuple(targets)

    def add_projects(self, body: Any) -> None:
        if not isinstance(body, Mapping):
            raise self._error("section must be a table", "projects")
        for name, table in body.items():
            key = f"projects.{name}"
            if not isinstance(table, Mapping):
                raise self._error("project must be a table", key)
            group = table.get("group")
            if isinstance(group, bool) or not isinstance(group, int):
                raise self._error("group must be an integer", f"{key}.group")
            alternates = table.get("alternate_names", [])
            if not _is_string_list(alternates):
                raise self._error(
                    "alternate_names must be a list of strings",
                    f"{key}.alternate_names",
                )
            exclusive = table.get("exclusive", False)
            if not isinstance(exclusive, bool):
                raise self._error("exclusive must be a boolean", f"{key}.exclusive")
            for unknown in sorted(set(table) - _PROJECT_KEYS):
                logger.warning("%s: ignoring unknown option %s.%s", self.source_id, key, unknown)
            self._projects[name] = ProjectDeclaration(
                name=name,
                group=group,
                alternate_names=tuple(alternates),
                exclusive=exclusive,
            )

    def build(self, *, priority: int, origin: str) -> ConfigLayer:
        return ConfigLayer(
            source_id=self.source_id,
            priority=priority,
            entries=tuple(self._entries),
            aliases=MappingProxyType(dict(self._aliases)),
            projects=MappingProxyType(dict(self._projects)),
            origin=origin,
        )

    def _error(self, message: str, key: str) -> ConfigError:
        return ConfigError(message, source_id=self.source_id, key=key)


def _scope_from_text(text: str, *, source_id: str) -> LayerScope:
    if not text:
        raise ConfigError("empty task scope", source_id=source_id)
    if text == RESERVED_ALIAS:
        return AllTasksScope()
    return NamedScope(text)


def _malformed_assignment(raw: str) -> ConfigError:
    return ConfigError(
        f"expected [task:]section/key=value, got {raw!r}",
        source_id=COMMAND_LINE_SOURCE,
    )


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _split_ini_list(raw: str | None) -> list[Path]:
    if not raw:
        return []
    return [Path(part.strip()) for part in raw.split(os.pathsep) if part.strip()]


def _same_file(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return False
