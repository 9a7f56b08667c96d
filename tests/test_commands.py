from __future__ import annotations

from pathlib import Path

import allure
import pytest

from mob_build.config.layers import ConfigLayerStore
from mob_build.config.loader import assignment_layer
from mob_build.config.resolver import resolve_all, universe_from_store
from mob_build.errors import ExecutionError
from mob_build.tasks.commands import (
    STYLESHEET_RELEASES,
    CommandStep,
    CopyStep,
    DownloadStep,
    Phase,
    RemoveStep,
    platform_toolset,
    steps_for,
)

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Phase Steps"),
]


def _steps(phase: Phase, name: str, *assignments: str):
    store = ConfigLayerStore([assignment_layer(list(assignments), priority=1)])
    universe = universe_from_store(store)
    task = universe.registry.get(name)
    return steps_for(phase, task, resolve_all(store, universe)[task.canonical_name])


def test_fresh_project_is_shallow_cloned(tmp_path: Path) -> None:
    steps = _steps(Phase.FETCH, "uibase", f"paths/prefix={tmp_path}")

    source = tmp_path / "build" / "modorganizer-uibase"
    clone, submodules = steps
    assert clone.argv == (
        "git",
        "clone",
        "--quiet",
        "--depth",
        "1",
        "--branch",
        "master",
        "https://github.com/ModOrganizer2/modorganizer-uibase.git",
        str(source),
    )
    assert clone.fallback == ()
    assert submodules.when == source / ".gitmodules"


def test_clone_falls_back_to_secondary_branch(tmp_path: Path) -> None:
    clone, *_ = _steps(
        Phase.FETCH,
        "uibase",
        f"paths/prefix={tmp_path}",
        "task/mo_branch=feature",
        "task/mo_fallback=master",
        "task/git_shallow=false",
    )

    assert "--depth" not in clone.argv
    assert clone.argv[clone.argv.index("--branch") + 1] == "feature"
    assert clone.fallback[clone.fallback.index("--branch") + 1] == "master"


def test_existing_checkout_is_pulled_unless_no_pull(tmp_path: Path) -> None:
    (tmp_path / "build" / "modorganizer-uibase").mkdir(parents=True)

    pull, _ = _steps(Phase.FETCH, "uibase", f"paths/prefix={tmp_path}")
    assert pull.argv[-4:] == ("pull", "--ff-only", "origin", "master")

    assert _steps(Phase.FETCH, "uibase", f"paths/prefix={tmp_path}", "task/no_pull=true") == []


def test_fork_remote_is_added_after_clone(tmp_path: Path) -> None:
    steps = _steps(
        Phase.FETCH,
        "uibase",
        f"paths/prefix={tmp_path}",
        "task/remote_org=me",
        "task/remote_no_push_upstream=true",
    )

    assert [step.argv[3:5] for step in steps[2:]] == [
        ("remote", "add"),
        ("remote", "set-url"),
    ]
    assert steps[2].argv[-1] == "https://github.com/me/modorganizer-uibase.git"


def test_project_without_cmakelists_has_nothing_to_build(tmp_path: Path) -> None:
    assert _steps(Phase.BUILD_AND_INSTALL, "uibase", f"paths/prefix={tmp_path}") == []


def test_project_build_configures_builds_and_installs(tmp_path: Path) -> None:
    source = tmp_path / "build" / "modorganizer-uibase"
    source.mkdir(parents=True)
    (source / "CMakeLists.txt").write_text("", encoding="utf-8")

    steps = _steps(
        Phase.BUILD_AND_INSTALL,
        "uibase",
        f"paths/prefix={tmp_path}",
        "task/configuration=Release",
    )

    configure, build, install = steps
    assert f"-DCMAKE_INSTALL_PREFIX={tmp_path / 'install'}" in configure.argv
    assert build.argv[1:] == ("--build", str(source), "--config", "Release")
    assert install.argv[1] == "--install"


def test_reextract_removes_sources_after_uncommitted_check(tmp_path: Path) -> None:
    source = tmp_path / "build" / "modorganizer-uibase"

    check, remove = _steps(
        Phase.CLEAN,
        "uibase",
        f"paths/prefix={tmp_path}",
        "global/reextract=true",
    )

    assert "diff-index" in check.argv
    assert check.when == source / ".git"
    assert remove == RemoveStep(source)


def test_stylesheets_download_every_release(tmp_path: Path) -> None:
    steps = _steps(Phase.FETCH, "ss", f"paths/prefix={tmp_path}")

    downloads = [step for step in steps if isinstance(step, DownloadStep)]
    assert len(downloads) == len(STYLESHEET_RELEASES)
    assert downloads[0].url == (
        "https://github.com/6788-00/paper-light-and-dark"
        "/releases/download/7.2/paper-light-and-dark.7z"
    )
    assert all(isinstance(step, CommandStep) for step in steps[1::2])


def test_stylesheets_install_copies_extracted_folders(tmp_path: Path) -> None:
    steps = _steps(Phase.BUILD_AND_INSTALL, "ss", f"paths/prefix={tmp_path}")

    assert all(isinstance(step, CopyStep) for step in steps)
    assert {step.destination for step in steps} == {
        tmp_path / "install" / "bin" / "stylesheets",
    }


def test_translations_compile_every_ts_file(tmp_path: Path) -> None:
    root = tmp_path / "build" / "transifex-translations" / "translations"
    (root / "mod-organizer-2.organizer").mkdir(parents=True)
    (root / "mod-organizer-2.organizer" / "de.ts").write_text("", encoding="utf-8")
    (root / "mod-organizer-2.uibase").mkdir()
    (root / "mod-organizer-2.uibase" / "fr.ts").write_text("", encoding="utf-8")

    steps = _steps(Phase.BUILD_AND_INSTALL, "translations", f"paths/prefix={tmp_path}")

    output = tmp_path / "install" / "bin" / "translations"
    assert [step.argv[-1] for step in steps] == [
        str(output / "organizer_de.qm"),
        str(output / "uibase_fr.qm"),
    ]


def test_transifex_pull_passes_token_through_environment(tmp_path: Path) -> None:
    steps = _steps(
        Phase.FETCH,
        "translations",
        f"paths/prefix={tmp_path}",
        "transifex/key=s3cret",
        "transifex/pull=true",
        "transifex/force=true",
    )

    init, pull = steps
    assert init.creates == tmp_path / "build" / "transifex-translations" / ".tx"
    assert pull.argv == ("tx", "pull", "--all", "--minimum-perc=60", "--force")
    assert pull.env == {"TX_TOKEN": "s3cret"}
    assert "s3cret" not in pull.describe()


def test_usvfs_fetches_configured_branch(tmp_path: Path) -> None:
    clone, _ = _steps(Phase.FETCH, "usvfs", f"paths/prefix={tmp_path}", "versions/usvfs=v0.5")

    assert clone.argv[clone.argv.index("--branch") + 1] == "v0.5"
    assert clone.argv[-2] == "https://github.com/ModOrganizer2/usvfs.git"


def test_unconfigured_prefix_fails_with_the_missing_key() -> None:
    with pytest.raises(ExecutionError, match="paths.build is not configured"):
        _steps(Phase.FETCH, "uibase")


def test_usvfs_msbuild_targets_configured_toolset_and_sdk(tmp_path: Path) -> None:
    steps = _steps(
        Phase.BUILD_AND_INSTALL,
        "usvfs",
        f"paths/prefix={tmp_path}",
        "versions/vs_toolset=14.2",
        "versions/sdk=10.0.22621.0",
    )

    msbuild = [step for step in steps if step.argv[0] == "msbuild"]
    assert len(msbuild) == 2
    for step in msbuild:
        assert "/p:PlatformToolset=v142" in step.argv
        assert "/p:WindowsTargetPlatformVersion=10.0.22621.0" in step.argv


def test_empty_toolset_and_sdk_are_left_to_msbuild(tmp_path: Path) -> None:
    steps = _steps(
        Phase.BUILD_AND_INSTALL,
        "usvfs",
        f"paths/prefix={tmp_path}",
        "versions/vs_toolset=",
        "versions/sdk=",
    )

    assert not any(arg.startswith("/p:PlatformToolset") for step in steps for arg in step.argv)


@pytest.mark.parametrize(
    ("version", "expected"),
    [("14.3", "v143"), ("14", "v140"), ("14.38.33130", "v1438"), ("v143", "v143")],
)
def test_platform_toolset(version: str, expected: str) -> None:
    assert platform_toolset(version) == expected


def test_translations_use_qt_lrelease_and_copy_builtin_qt_files(tmp_path: Path) -> None:
    root = tmp_path / "build" / "transifex-translations" / "translations"
    organizer = root / "mod-organizer-2.organizer"
    organizer.mkdir(parents=True)
    (organizer / "de.ts").write_text("", encoding="utf-8")
    (organizer / "zh_CN.ts").write_text("", encoding="utf-8")
    qt = tmp_path / "qt"
    (qt / "bin").mkdir(parents=True)
    (qt / "bin" / "lrelease").write_text("", encoding="utf-8")
    (qt / "translations").mkdir()
    for name in ("qt_de.qm", "qtbase_de.qm", "qt_zh.qm"):
        (qt / "translations" / name).write_text("", encoding="utf-8")

    steps = _steps(
        Phase.BUILD_AND_INSTALL,
        "translations",
        f"paths/prefix={tmp_path}",
        f"paths/qt_install={qt}",
    )

    output = tmp_path / "install" / "bin" / "translations"
    compiles = [step for step in steps if isinstance(step, CommandStep)]
    assert {step.argv[0] for step in compiles} == {str(qt / "bin" / "lrelease")}
    copies = [step for step in steps if isinstance(step, CopyStep)]
    assert [step.source.name for step in copies] == ["qt_de.qm", "qt_zh.qm", "qtbase_de.qm"]
    assert {step.destination for step in copies} == {output}
