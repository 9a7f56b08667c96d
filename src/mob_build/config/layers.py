"""Configuration layers, scoped entries and the priority-ordered store."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar

RESERVED_ALIAS = "builtin"


@dataclass(frozen=True, slots=True)
class GlobalScope:
    """Applies to the whole run and to every task's base bucket."""

    specificity: ClassVar[int] = 0

    def describe(self) -> str:
        return "<global>"


@dataclass(frozen=True, slots=True)
class AllTasksScope:
    """The reserved alias: every built-in task."""

    specificity: ClassVar[int] = 1

    def describe(self) -> str:
        return RESERVED_ALIAS


@dataclass(frozen=True, slots=True)
class NamedScope:
    """Scope text as written in a source; classified once the task universe is known."""

    text: str
    specificity: ClassVar[int] = -1

    def describe(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class AliasScope:
    name: str
    specificity: ClassVar[int] = 1

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class GlobScope:
    pattern: str
    specificity: ClassVar[int] = 2

    def describe(self) -> str:
        return self.pattern


@dataclass(frozen=True, slots=True)
class ExactScope:
    name: str
    specificity: ClassVar[int] = 3

    def describe(self) -> str:
        return self.name


LayerScope = GlobalScope | AllTasksScope | NamedScope
ResolvedScope = GlobalScope | AllTasksScope | AliasScope | GlobScope | ExactScope


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    """One `(scope, key, value)` assignment in declaration order."""

    scope: LayerScope
    key: str
    value: Any
    index: int


@dataclass(frozen=True, slots=True)
class ProjectDeclaration:
    """A user-declared, non-builtin git project task."""

    name: str
    group: int
    alternate_names: tuple[str, ...] = ()
    exclusive: bool = False


@dataclass(frozen=True, slots=True)
class ConfigLayer:
    """One configuration source with a fixed priority rank."""

    source_id: str
    priority: int
    entries: tuple[ConfigEntry, ...] = ()
    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    projects: Mapping[str, ProjectDeclaration] = field(default_factory=lambda: MappingProxyType({}))
    origin: str = "file"


class ConfigLayerStore:
    """Owns loaded layers and exposes them in ascending priority order."""

    def __init__(self, layers: list[ConfigLayer] | tuple[ConfigLayer, ...] = ()) -> None:
        self._layers: list[ConfigLayer] = []
        for layer in layers:
            self.add(layer)

    def add(self, layer: ConfigLayer) -> None:
        self._layers.append(layer)

    def __iter__(self) -> Iterator[ConfigLayer]:
        # sorted() is stable: equal priorities keep insertion order
        return iter(sorted(self._layers, key=lambda layer: layer.priority))

    def __len__(self) -> int:
        return len(self._layers)

    def merged_aliases(self) -> dict[str, tuple[str, ...]]:
        """User aliases merged across layers, later layer wins per alias name."""

        merged: dict[str, tuple[str, ...]] = {}
        for layer in self:
            merged.update(layer.aliases)
        return dict(sorted(merged.items()))

    def merged_projects(self) -> dict[str, ProjectDeclaration]:
        merged: dict[str, ProjectDeclaration] = {}
        for layer in self:
            merged.update(layer.projects)
        return dict(sorted(merged.items()))

    def describe_sources(self) -> list[str]:
        """Numbered `[origin] source` lines in the order layers are applied."""

        return [
            f"{position}. [{layer.origin}] {layer.source_id}"
            for position, layer in enumerate(self, start=1)
        ]
