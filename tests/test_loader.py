from __future__ import annotations

import logging
import os
from pathlib import Path

import allure
import pytest

from mob_build.config.layers import AllTasksScope, GlobalScope, NamedScope
from mob_build.config.loader import (
    COMMAND_LINE_SOURCE,
    PRIORITY_ASSIGNMENTS,
    ConfigSources,
    assignment_layer,
    build_store,
    env_layer,
    layer_from_document,
    load_toml_layer,
    parse_assignment,
)
from mob_build.errors import ConfigError

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Layer Loading"),
]

_PRIMARY = """
[global]
dry = true
max_jobs = 4

[task]
mo_branch = "dev"

[tasks."installer_*"]
enabled = false

[tasks.builtin]
no_pull = true

[aliases]
plugins = ["installer_*", "bsapacker"]

[projects.extra_plugin]
group = 4
alternate_names = ["xp"]
"""


def test_toml_layer_keeps_declaration_order_and_scopes(write_toml) -> None:
    layer = load_toml_layer(write_toml("mob.toml", _PRIMARY), priority=100)

    assert [(entry.key, entry.index) for entry in layer.entries] == [
        ("global.dry", 0),
        ("global.max_jobs", 1),
        ("task.mo_branch", 2),
        ("task.enabled", 3),
        ("task.no_pull", 4),
    ]
    assert layer.entries[2].scope == GlobalScope()
    assert layer.entries[3].scope == NamedScope("installer_*")
    assert layer.entries[4].scope == AllTasksScope()
    assert layer.aliases["plugins"] == ("installer_*", "bsapacker")
    assert layer.projects["extra_plugin"].group == 4
    assert layer.projects["extra_plugin"].alternate_names == ("xp",)


def test_missing_file_is_a_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found") as error:
        load_toml_layer(tmp_path / "absent.toml", priority=1)

    assert error.value.source_id == str(tmp_path / "absent.toml")


def test_invalid_toml_is_a_config_error(write_toml) -> None:
    with pytest.raises(ConfigError, match="invalid TOML"):
        load_toml_layer(write_toml("bad.toml", "[global\n"), priority=1)


def test_wrong_value_type_names_source_and_key() -> None:
    with pytest.raises(ConfigError) as error:
        layer_from_document({"global": {"max_jobs": "many"}}, source_id="x.toml", priority=1)

    assert error.value.source_id == "x.toml"
    assert error.value.key == "global.max_jobs"


def test_non_task_options_cannot_be_scoped() -> None:
    with pytest.raises(ConfigError, match="only \\[task\\] options"):
        assignment_layer(["usvfs:global/dry=true"], priority=1)


def test_reserved_alias_cannot_be_declared() -> None:
    with pytest.raises(ConfigError, match="reserved alias"):
        layer_from_document({"aliases": {"builtin": ["usvfs"]}}, source_id="x", priority=1)


def test_project_group_must_be_an_integer() -> None:
    with pytest.raises(ConfigError, match="group must be an integer"):
        layer_from_document({"projects": {"p": {"group": "4"}}}, source_id="x", priority=1)


def test_unknown_keys_are_warned_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="mob_build.config.loader"):
        layer = layer_from_document(
            {"global": {"dry": True, "colour": "blue"}, "weird": {}},
            source_id="x.toml",
            priority=1,
        )

    assert [entry.key for entry in layer.entries] == ["global.dry"]
    assert "ignoring unknown option global.colour" in caplog.text
    assert "ignoring unknown section [weird]" in caplog.text


def test_parse_assignment_with_and_without_scope() -> None:
    scope, section, option, value = parse_assignment("global/dry=true")
    assert (scope, section, option, value) == (GlobalScope(), "global", "dry", "true")

    scope, section, option, value = parse_assignment("usvfs:task/mo_branch=feature=x")
    assert scope == NamedScope("usvfs")
    assert (section, option, value) == ("task", "mo_branch", "feature=x")

    scope, *_ = parse_assignment("builtin:task/no_pull=1")
    assert scope == AllTasksScope()


@pytest.mark.parametrize("raw", ["global/dry", "dry=true", "/dry=true", "global/=1", ":task/x=1"])
def test_malformed_assignments_are_rejected(raw: str) -> None:
    with pytest.raises(ConfigError):
        parse_assignment(raw)


def test_assignment_layer_coerces_values() -> None:
    layer = assignment_layer(["global/max_jobs=3", "task/no_pull=yes"], priority=600)

    assert layer.source_id == COMMAND_LINE_SOURCE
    assert [entry.value for entry in layer.entries] == [3, True]


def test_env_layer_maps_prefixed_variables_in_sorted_order(
    caplog: pytest.LogCaptureFixture,
) -> None:
    environ = {
        "MOB_TASK_MO_BRANCH": "stable",
        "MOB_GLOBAL_DRY": "true",
        "MOB_NOPE_THING": "1",
        "PATH": "/usr/bin",
    }
    with caplog.at_level(logging.WARNING, logger="mob_build.config.loader"):
        layer = env_layer(environ, priority=500)

    assert [(entry.key, entry.value) for entry in layer.entries] == [
        ("global.dry", True),
        ("task.mo_branch", "stable"),
    ]
    assert "MOB_NOPE_THING" in caplog.text


def test_build_store_orders_every_source(tmp_path: Path, write_toml) -> None:
    root = tmp_path / "root"
    work = tmp_path / "work"
    write_toml("root/mob.toml", "[global]\nmax_jobs = 1\n")
    env_file = write_toml("env.toml", "[global]\nmax_jobs = 2\n")
    write_toml("work/mob.toml", "[global]\nmax_jobs = 3\n")
    explicit = write_toml("explicit.toml", "[global]\nmax_jobs = 4\n")

    store = build_store(
        ConfigSources(
            root_dir=root,
            cwd=work,
            env_ini_list=str(env_file),
            explicit_files=(explicit,),
            environ={"MOB_GLOBAL_MAX_JOBS": "5"},
            assignments=("global/max_jobs=6",),
        ),
    )

    assert [layer.origin for layer in store] == ["primary", "MOBINI", "cwd", "ini", "env", "cli"]
    assert [layer.entries[0].value for layer in store] == [1, 2, 3, 4, 5, 6]
    assert list(store)[-1].priority == PRIORITY_ASSIGNMENTS


def test_build_store_requires_primary_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        build_store(ConfigSources(root_dir=tmp_path, cwd=tmp_path, environ={}))


def test_cwd_file_is_not_loaded_twice(tmp_path: Path, write_toml) -> None:
    write_toml("mob.toml", "[global]\ndry = true\n")

    store = build_store(ConfigSources(root_dir=tmp_path, cwd=tmp_path, environ={}))

    assert [layer.origin for layer in store] == ["primary"]


def test_mobini_list_splits_on_path_separator(tmp_path: Path, write_toml) -> None:
    write_toml("mob.toml", "")
    first = write_toml("a.toml", "")
    second = write_toml("b.toml", "")

    store = build_store(
        ConfigSources(
            root_dir=tmp_path,
            cwd=tmp_path,
            env_ini_list=f"{first}{os.pathsep}{second}",
            environ={},
        ),
    )

    assert store.describe_sources() == [
        f"1. [primary] {tmp_path / 'mob.toml'}",
        f"2. [MOBINI] {first}",
        f"3. [MOBINI] {second}",
    ]


def test_default_files_can_be_skipped(write_toml) -> None:
    explicit = write_toml("only.toml", "[global]\ndry = true\n")

    store = build_store(
        ConfigSources(explicit_files=(explicit,), environ={}, use_default_files=False),
    )

    assert [layer.source_id for layer in store] == [str(explicit)]
