"""Turn scope strings (names, aliases, globs) into sorted sets of canonical task names."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from types import MappingProxyType

from mob_build.config.layers import (
    RESERVED_ALIAS,
    AliasScope,
    AllTasksScope,
    ExactScope,
    GlobalScope,
    GlobScope,
    LayerScope,
    NamedScope,
    ResolvedScope,
)
from mob_build.errors import ConfigError
from mob_build.tasks.registry import TaskRegistry

_GLOB_CHARS = frozenset("*?")


@dataclass(frozen=True, slots=True)
class TaskUniverse:
    """Registry plus the merged user alias table."""

    registry: TaskRegistry
    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        registry: TaskRegistry,
        aliases: Mapping[str, tuple[str, ...]] | None = None,
    ) -> TaskUniverse:
        """Validate aliases against the registry and expand each once to reject cycles."""

        table = dict(sorted((aliases or {}).items()))
        if RESERVED_ALIAS in table:
            raise ConfigError(
                f"{RESERVED_ALIAS!r} is a reserved alias",
                key=f"aliases.{RESERVED_ALIAS}",
            )
        for name in table:
            if name in registry:
                raise ConfigError(
                    f"alias {name!r} collides with a task name",
                    key=f"aliases.{name}",
                )
        universe = cls(registry=registry, aliases=MappingProxyType(table))
        for name in table:
            universe.expand_alias(name)
        return universe

    def expand_alias(self, name: str) -> tuple[str, ...]:
        """Canonical names an alias denotes, following nested aliases."""

        return tuple(sorted(self._expand(name, ())))

    def _expand(self, name: str, trail: tuple[str, ...]) -> set[str]:
        if name == RESERVED_ALIAS:
            return set(self.registry.builtin_names())
        if name in trail:
            cycle = " -> ".join((*trail, name))
            raise ConfigError(f"alias cycle: {cycle}", key=f"aliases.{trail[0]}")

        matched: set[str] = set()
        for target in self.aliases[name]:
            scope = parse_scope(target, self)
            if isinstance(scope, AliasScope):
                matched |= self._expand(scope.name, (*trail, name))
            else:
                matched.update(resolve_scope(scope, self))
        return matched


def parse_scope(scope: LayerScope | str, universe: TaskUniverse) -> ResolvedScope:
    """Decide once whether scope text is an alias, an exact name or a glob.

    Aliases win over task names; task names win over glob interpretation, so
    a literal name containing `*` stays literal. Anything else is an exact
    name, which may match nothing.
    """

    if isinstance(scope, (GlobalScope, AllTasksScope)):
        return scope
    text = scope.text if isinstance(scope, NamedScope) else scope

    if text == RESERVED_ALIAS:
        return AllTasksScope()
    if text in universe.aliases:
        return AliasScope(text)
    if text in universe.registry:
        return ExactScope(text)
    if _GLOB_CHARS.intersection(text):
        return GlobScope(text)
    return ExactScope(text)


def resolve_scope(scope: ResolvedScope, universe: TaskUniverse) -> tuple[str, ...]:
    """Sorted canonical names denoted by `scope`; empty when nothing matches."""

    registry = universe.registry
    if isinstance(scope, GlobalScope):
        return ()
    if isinstance(scope, AllTasksScope):
        return registry.builtin_names()
    if isinstance(scope, AliasScope):
        return universe.expand_alias(scope.name)
    if isinstance(scope, ExactScope):
        descriptor = registry.get(scope.name)
        return (descriptor.canonical_name,) if descriptor is not None else ()
    if isinstance(scope, GlobScope):
        matched = {
            canonical
            for name, canonical in registry.all_names().items()
            if fnmatchcase(name, _literal_brackets(scope.pattern))
        }
        return tuple(sorted(matched))
    raise TypeError(f"unexpected scope {scope!r}")


def resolve_text(text: str, universe: TaskUniverse) -> tuple[str, ...]:
    """Shortcut for command-line selectors and alias listings."""

    return resolve_scope(parse_scope(text, universe), universe)


def _literal_brackets(pattern: str) -> str:
    """Only `*` and `?` are wildcards; `[` matches itself."""

    return pattern.replace("[", "[[]")
