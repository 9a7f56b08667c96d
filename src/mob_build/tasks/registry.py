"""Task descriptors and the name-indexed registry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from mob_build.errors import RegistryError


class TaskKind(str, Enum):
    """Closed set of task variants; each has one handler in `commands.py`."""

    PROJECT = "project"
    USVFS = "usvfs"
    STYLESHEETS = "stylesheets"
    EXPLORERPP = "explorerpp"
    LICENSES = "licenses"
    TRANSLATIONS = "translations"
    INSTALLER = "installer"


@dataclass(frozen=True, slots=True)
class TaskDescriptor:
    """Immutable identity of one task."""

    canonical_name: str
    group: int
    alternate_names: frozenset[str] = frozenset()
    builtin: bool = True
    kind: TaskKind = TaskKind.PROJECT
    exclusive: bool = False

    @property
    def names(self) -> tuple[str, ...]:
        """Canonical name first, then alternates sorted."""

        return (self.canonical_name, *sorted(self.alternate_names))


class TaskRegistry:
    """Catalog of tasks, looked up by canonical or alternate name."""

    def __init__(self, descriptors: Iterable[TaskDescriptor], *, group_count: int) -> None:
        if group_count < 1:
            raise RegistryError(f"group count must be positive, got {group_count}")
        self.group_count = group_count
        self._by_canonical: dict[str, TaskDescriptor] = {}
        self._by_name: dict[str, TaskDescriptor] = {}

        for descriptor in descriptors:
            if not 1 <= descriptor.group <= group_count:
                raise RegistryError(
                    f"task {descriptor.canonical_name!r} has group {descriptor.group}, "
                    f"expected 1..{group_count}",
                )
            for name in descriptor.names:
                if not name:
                    raise RegistryError(f"task {descriptor.canonical_name!r} has an empty name")
                owner = self._by_name.get(name)
                if owner is not None:
                    raise RegistryError(
                        f"name {name!r} of task {descriptor.canonical_name!r} "
                        f"is already used by task {owner.canonical_name!r}",
                    )
                self._by_name[name] = descriptor
            self._by_canonical[descriptor.canonical_name] = descriptor

        self._by_canonical = dict(sorted(self._by_canonical.items()))

    def __iter__(self) -> Iterator[TaskDescriptor]:
        return iter(self._by_canonical.values())

    def __len__(self) -> int:
        return len(self._by_canonical)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> TaskDescriptor | None:
        """Find a task by canonical or alternate name."""

        return self._by_name.get(name)

    def canonical_names(self) -> tuple[str, ...]:
        return tuple(self._by_canonical)

    def all_names(self) -> dict[str, str]:
        """Every known name mapped to its canonical name, sorted by name."""

        return {name: self._by_name[name].canonical_name for name in sorted(self._by_name)}

    def builtin_names(self) -> tuple[str, ...]:
        return tuple(name for name, descriptor in self._by_canonical.items() if descriptor.builtin)

    def by_group(self) -> dict[int, tuple[TaskDescriptor, ...]]:
        """Descriptors per non-empty group, ascending group order."""

        groups: dict[int, list[TaskDescriptor]] = {}
        for descriptor in self._by_canonical.values():
            groups.setdefault(descriptor.group, []).append(descriptor)
        return {group: tuple(groups[group]) for group in sorted(groups)}
