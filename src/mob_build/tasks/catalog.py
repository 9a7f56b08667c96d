"""Built-in task catalog and registry construction."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from mob_build.config.layers import ProjectDeclaration
from mob_build.tasks.registry import TaskDescriptor, TaskKind, TaskRegistry

GROUP_COUNT = 7
PROJECT_PREFIX = "modorganizer-"

# (group, canonical name, extra alternate names) for git-hosted CMake projects.
_PROJECTS: tuple[tuple[int, str, tuple[str, ...]], ...] = (
    (1, "cmake_common", ()),
    (2, "modorganizer-uibase", ()),
    (3, "modorganizer-archive", ()),
    (3, "modorganizer-lootcli", ()),
    (3, "modorganizer-esptk", ()),
    (3, "modorganizer-bsatk", ()),
    (3, "modorganizer-nxmhandler", ()),
    (3, "modorganizer-helper", ()),
    (3, "modorganizer-game_bethesda", ()),
    (4, "modorganizer-bsapacker", ("bsa_packer",)),
    (4, "modorganizer-tool_inieditor", ("inieditor",)),
    (4, "modorganizer-tool_inibakery", ("inibakery",)),
    (4, "modorganizer-preview_bsa", ()),
    (4, "modorganizer-preview_base", ()),
    (4, "modorganizer-diagnose_basic", ()),
    (4, "modorganizer-check_fnis", ()),
    (4, "modorganizer-installer_bain", ()),
    (4, "modorganizer-installer_manual", ()),
    (4, "modorganizer-installer_bundle", ()),
    (4, "modorganizer-installer_quick", ()),
    (4, "modorganizer-installer_fomod", ()),
    (4, "modorganizer-installer_fomod_csharp", ()),
    (4, "modorganizer-installer_omod", ()),
    (4, "modorganizer-installer_wizard", ()),
    (4, "modorganizer-bsa_extractor", ()),
    (4, "modorganizer-plugin_python", ()),
    (5, "modorganizer-tool_configurator", ("pycfg",)),
    (5, "modorganizer-fnistool", ()),
    (5, "modorganizer-basic_games", ()),
    (5, "modorganizer-script_extender_plugin_checker", ("scriptextenderpluginchecker",)),
    (5, "modorganizer-form43_checker", ("form43checker",)),
    (5, "modorganizer-preview_dds", ("ddspreview",)),
    (5, "modorganizer", ("organizer",)),
)

# (group, canonical name, kind, alternate names) for tasks with dedicated handlers.
_SPECIAL: tuple[tuple[int, str, TaskKind, tuple[str, ...]], ...] = (
    (1, "usvfs", TaskKind.USVFS, ()),
    (5, "stylesheets", TaskKind.STYLESHEETS, ("ss",)),
    (5, "licenses", TaskKind.LICENSES, ()),
    (5, "explorerpp", TaskKind.EXPLORERPP, ("explorer++",)),
    (6, "translations", TaskKind.TRANSLATIONS, ()),
    (7, "installer", TaskKind.INSTALLER, ()),
)


def short_name(canonical_name: str) -> str:
    """`modorganizer-archive` -> `archive`; other names are returned unchanged."""

    if canonical_name.startswith(PROJECT_PREFIX):
        return canonical_name[len(PROJECT_PREFIX) :]
    return canonical_name


def repository_name(canonical_name: str) -> str:
    """Git repository name for a project task."""

    if canonical_name == "modorganizer" or canonical_name.startswith(PROJECT_PREFIX):
        return canonical_name
    return f"{PROJECT_PREFIX}{canonical_name}"


def builtin_descriptors() -> list[TaskDescriptor]:
    descriptors = [
        TaskDescriptor(
            canonical_name=name,
            group=group,
            kind=kind,
            alternate_names=frozenset(alternates),
        )
        for group, name, kind, alternates in _SPECIAL
    ]
    for group, name, alternates in _PROJECTS:
        names = set(alternates)
        if short_name(name) != name:
            names.add(short_name(name))
        descriptors.append(
            TaskDescriptor(
                canonical_name=name,
                group=group,
                kind=TaskKind.PROJECT,
                alternate_names=frozenset(names),
            ),
        )
    return descriptors


def project_descriptors(projects: Iterable[ProjectDeclaration]) -> list[TaskDescriptor]:
    """User-declared git projects; never part of the `builtin` alias."""

    return [
        TaskDescriptor(
            canonical_name=project.name,
            group=project.group,
            alternate_names=frozenset(project.alternate_names),
            builtin=False,
            kind=TaskKind.PROJECT,
            exclusive=project.exclusive,
        )
        for project in projects
    ]


def build_registry(projects: Mapping[str, ProjectDeclaration] | None = None) -> TaskRegistry:
    """Registry of the built-in catalog plus any `[projects.*]` declarations."""

    descriptors = builtin_descriptors()
    if projects:
        descriptors.extend(project_descriptors(projects.values()))
    return TaskRegistry(descriptors, group_count=GROUP_COUNT)
