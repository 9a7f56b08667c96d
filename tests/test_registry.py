from __future__ import annotations

import allure
import pytest

from mob_build.config.layers import ProjectDeclaration
from mob_build.errors import RegistryError
from mob_build.tasks.catalog import GROUP_COUNT, build_registry, repository_name, short_name
from mob_build.tasks.registry import TaskDescriptor, TaskKind, TaskRegistry

pytestmark = [
    allure.epic("Tasks"),
    allure.feature("Registry"),
]


def test_duplicate_names_are_rejected_across_tasks() -> None:
    descriptors = [
        TaskDescriptor(canonical_name="a", group=1, alternate_names=frozenset({"shared"})),
        TaskDescriptor(canonical_name="b", group=1, alternate_names=frozenset({"shared"})),
    ]

    with pytest.raises(RegistryError, match="'shared'"):
        TaskRegistry(descriptors, group_count=2)


def test_group_out_of_range_is_rejected() -> None:
    with pytest.raises(RegistryError, match="expected 1..2"):
        TaskRegistry([TaskDescriptor(canonical_name="a", group=3)], group_count=2)


def test_lookup_by_any_name() -> None:
    registry = TaskRegistry(
        [
            TaskDescriptor(canonical_name="b", group=2),
            TaskDescriptor(canonical_name="a", group=1, alternate_names=frozenset({"alpha"})),
        ],
        group_count=2,
    )

    assert registry.get("alpha").canonical_name == "a"
    assert "alpha" in registry
    assert registry.get("missing") is None
    assert registry.canonical_names() == ("a", "b")
    assert registry.all_names() == {"a": "a", "alpha": "a", "b": "b"}
    assert list(registry.by_group()) == [1, 2]


def test_builtin_catalog_is_consistent() -> None:
    registry = build_registry()

    assert registry.group_count == GROUP_COUNT
    assert set(registry.by_group()) == set(range(1, GROUP_COUNT + 1))
    assert registry.get("organizer").canonical_name == "modorganizer"
    assert registry.get("archive").canonical_name == "modorganizer-archive"
    assert registry.get("ss").kind is TaskKind.STYLESHEETS
    assert registry.get("installer").kind is TaskKind.INSTALLER
    assert registry.get("usvfs").group == 1
    assert registry.get("translations").group == 6
    assert registry.builtin_names() == registry.canonical_names()


def test_declared_projects_join_the_registry_as_non_builtin() -> None:
    registry = build_registry(
        {"extra": ProjectDeclaration(name="extra", group=4, alternate_names=("ex",))},
    )

    descriptor = registry.get("ex")
    assert descriptor.canonical_name == "extra"
    assert not descriptor.builtin
    assert "extra" not in registry.builtin_names()


def test_declared_project_cannot_reuse_a_builtin_name() -> None:
    with pytest.raises(RegistryError, match="'archive'"):
        build_registry({"archive": ProjectDeclaration(name="archive", group=3)})


def test_project_names() -> None:
    assert short_name("modorganizer-uibase") == "uibase"
    assert short_name("usvfs") == "usvfs"
    assert repository_name("modorganizer") == "modorganizer"
    assert repository_name("modorganizer-uibase") == "modorganizer-uibase"
    assert repository_name("extra") == "modorganizer-extra"
