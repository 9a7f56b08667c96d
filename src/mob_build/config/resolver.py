"""Merge configuration layers into one read-only configuration per task."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from mob_build.config.layers import ConfigEntry, ConfigLayerStore, GlobalScope
from mob_build.config.paths import derive_paths
from mob_build.config.schema import OPTIONS, default_values
from mob_build.tasks.catalog import build_registry
from mob_build.tasks.patterns import TaskUniverse, parse_scope, resolve_scope

logger = logging.getLogger(__name__)

DEFAULTS_SOURCE = "<defaults>"
DERIVED_SOURCE = "<derived>"
GLOBAL_TARGET = "<global>"


@dataclass(frozen=True, slots=True)
class ResolvedConfig:
    """Final settings for one task (or the run), sorted by key."""

    task: str
    values: Mapping[str, Any]
    origins: Mapping[str, str]

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def section(self, name: str) -> dict[str, Any]:
        """Options of one section without the section prefix."""

        prefix = f"{name}."
        return {
            key[len(prefix) :]: value
            for key, value in self.values.items()
            if key.startswith(prefix)
        }

    @property
    def enabled(self) -> bool:
        return bool(self.values["task.enabled"])

    def display_items(self) -> list[tuple[str, str]]:
        """`(key, value)` pairs with secret options masked."""

        items: list[tuple[str, str]] = []
        for key, value in self.values.items():
            spec = OPTIONS.get(key)
            if spec is not None and spec.secret and value:
                items.append((key, "********"))
            else:
                items.append((key, _format_value(value)))
        return items


def universe_from_store(store: ConfigLayerStore) -> TaskUniverse:
    """Registry (built-ins plus `[projects]`) and aliases merged across all layers."""

    registry = build_registry(store.merged_projects())
    return TaskUniverse.create(registry, store.merged_aliases())


def resolve_all(store: ConfigLayerStore, universe: TaskUniverse) -> dict[str, ResolvedConfig]:
    """Resolve every task's configuration; a pure function of layers and universe.

    Layers apply in ascending priority. Inside one layer entries apply by
    (scope specificity, declaration index), so an exact-name entry beats a
    glob, a glob beats an alias, an alias beats a global entry, and equal
    specificity falls back to declaration order. Last write wins.
    """

    names = universe.registry.canonical_names()
    values: dict[str, dict[str, Any]] = {name: default_values() for name in names}
    origins: dict[str, dict[str, str]] = {
        name: dict.fromkeys(values[name], DEFAULTS_SOURCE) for name in names
    }

    for layer in store:
        for entry, targets in _ordered_matches(layer.entries, universe, names):
            for name in targets:
                values[name][entry.key] = entry.value
                origins[name][entry.key] = layer.source_id

    return {name: _freeze(name, values[name], origins[name]) for name in names}


def resolve_global(store: ConfigLayerStore) -> ResolvedConfig:
    """Run-wide settings: defaults plus every global-scoped entry, no task overrides."""

    values = default_values()
    origins = dict.fromkeys(values, DEFAULTS_SOURCE)
    for layer in store:
        for entry in layer.entries:
            if isinstance(entry.scope, GlobalScope):
                values[entry.key] = entry.value
                origins[entry.key] = layer.source_id
    return _freeze(GLOBAL_TARGET, values, origins)


def _ordered_matches(
    entries: tuple[ConfigEntry, ...],
    universe: TaskUniverse,
    names: tuple[str, ...],
) -> list[tuple[ConfigEntry, tuple[str, ...]]]:
    matched: list[tuple[int, int, ConfigEntry, tuple[str, ...]]] = []
    for entry in entries:
        scope = parse_scope(entry.scope, universe)
        targets = names if isinstance(scope, GlobalScope) else resolve_scope(scope, universe)
        if not targets:
            logger.debug("Scope %r matches no task; %s ignored", scope.describe(), entry.key)
            continue
        matched.append((scope.specificity, entry.index, entry, targets))
    matched.sort(key=lambda item: (item[0], item[1]))
    return [(entry, targets) for _, _, entry, targets in matched]


def _freeze(task: str, values: dict[str, Any], origins: dict[str, str]) -> ResolvedConfig:
    derived = derive_paths(values)
    for key, value in derived.items():
        if values.get(key) != value:
            origins[key] = DERIVED_SOURCE
    return ResolvedConfig(
        task=task,
        values=MappingProxyType(dict(sorted(derived.items()))),
        origins=MappingProxyType(dict(sorted(origins.items()))),
    )


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
