"""Per-kind handlers that describe what each build phase does as a list of steps.

Handlers are called lazily, right before their phase runs, so they can look
at what earlier phases left on disk (a fresh clone, extracted archives,
translation files).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from mob_build.config.resolver import ResolvedConfig
from mob_build.errors import ExecutionError
from mob_build.tasks.catalog import repository_name
from mob_build.tasks.registry import TaskDescriptor, TaskKind

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    CLEAN = "clean"
    FETCH = "fetch"
    BUILD_AND_INSTALL = "build_and_install"


@dataclass(frozen=True, slots=True)
class CommandStep:
    """Run an external program.

    `when` skips the step unless that path exists; `creates` skips it if that
    path already exists. `fallback` is tried once if the command fails.
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    when: Path | None = None
    creates: Path | None = None
    fallback: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()

    def describe(self) -> str:
        text = " ".join(self.argv)
        for secret in self.secrets:
            if secret:
                text = text.replace(secret, "********")
        return text


@dataclass(frozen=True, slots=True)
class DownloadStep:
    url: str
    destination: Path

    def describe(self) -> str:
        return f"download {self.url} -> {self.destination}"


@dataclass(frozen=True, slots=True)
class RemoveStep:
    path: Path

    def describe(self) -> str:
        return f"remove {self.path}"


@dataclass(frozen=True, slots=True)
class CopyStep:
    source: Path
    destination: Path

    def describe(self) -> str:
        return f"copy {self.source} -> {self.destination}"


Step = CommandStep | DownloadStep | RemoveStep | CopyStep
Handler = Callable[[Phase, TaskDescriptor, ResolvedConfig], list[Step]]


@dataclass(frozen=True, slots=True)
class StylesheetRelease:
    user: str
    repo: str
    version_key: str
    file: str


STYLESHEET_RELEASES: tuple[StylesheetRelease, ...] = (
    StylesheetRelease(
        "6788-00",
        "paper-light-and-dark",
        "ss_paper_lad_6788",
        "paper-light-and-dark",
    ),
    StylesheetRelease("6788-00", "paper-automata", "ss_paper_automata_6788", "paper-automata"),
    StylesheetRelease("6788-00", "paper-mono", "ss_paper_mono_6788", "paper-mono"),
    StylesheetRelease("6788-00", "1809-dark-mode", "ss_dark_mode_1809_6788", "1809"),
    StylesheetRelease(
        "Trosski",
        "ModOrganizer_Style_Morrowind",
        "ss_morrowind_trosski",
        "Morrowind-MO2-Stylesheet",
    ),
    StylesheetRelease(
        "Trosski",
        "Mod-Organizer-2-Skyrim-Stylesheet",
        "ss_skyrim_trosski",
        "Skyrim-MO2-Stylesheet",
    ),
    StylesheetRelease(
        "Trosski",
        "ModOrganizer_Style_Fallout3",
        "ss_fallout3_trosski",
        "Fallout3-MO2-Stylesheet",
    ),
    StylesheetRelease(
        "Trosski",
        "Mod-Organizer2-Fallout-4-Stylesheet",
        "ss_fallout4_trosski",
        "Fallout4-MO2-Stylesheet",
    ),
    StylesheetRelease(
        "Trosski",
        "Starfield_MO2_Stylesheet",
        "ss_starfield_trosski",
        "Starfield.MO2.Stylsheet",
    ),
)

USVFS_ARCHITECTURES = (("x64", "vsbuild64"), ("x86", "vsbuild32"))

_CLEAN_KEYS = (
    "global.clean_task",
    "global.redownload",
    "global.reextract",
    "global.reconfigure",
    "global.rebuild",
)


def steps_for(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    """Dispatch to the handler of the task's kind."""

    return HANDLERS[task.kind](phase, task, config)


def clean_requested(config: ResolvedConfig) -> bool:
    return any(config[key] for key in _CLEAN_KEYS)


def project_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    repo = repository_name(task.canonical_name)
    source = _required_path(task, config, "paths.build") / repo
    url = f"{config['task.git_url_prefix']}{config['task.mo_org']}/{repo}.git"

    if phase is Phase.CLEAN:
        return _source_clean_steps(source, config) + _cmake_clean_steps(source, config)
    if phase is Phase.FETCH:
        return _git_fetch_steps(source, url, config)

    if not (source / "CMakeLists.txt").is_file():
        logger.debug("%s has no CMakeLists.txt, nothing to build", repo)
        return []
    install = _required_path(task, config, "paths.install")
    cmake = config["tools.cmake"]
    configuration = config["task.configuration"]
    steps: list[Step] = [
        CommandStep(argv=_cmake_configure(source, install, config), cwd=source),
        CommandStep(argv=(cmake, "--build", str(source), "--config", configuration), cwd=source),
        CommandStep(argv=(cmake, "--install", str(source), "--config", configuration), cwd=source),
    ]
    return steps + _revert_ts_steps(source, config)


def usvfs_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    source = _required_path(task, config, "paths.build") / "usvfs"
    url = f"{config['task.git_url_prefix']}{config['task.mo_org']}/usvfs.git"

    if phase is Phase.CLEAN:
        steps = _source_clean_steps(source, config)
        if config["global.reconfigure"] or config["global.rebuild"]:
            steps.extend(RemoveStep(source / build_dir) for _, build_dir in USVFS_ARCHITECTURES)
        return steps
    if phase is Phase.FETCH:
        return _git_fetch_steps(source, url, config, branch=config["versions.usvfs"])

    install = _required_path(task, config, "paths.install")
    configuration = config["task.configuration"]
    steps: list[Step] = []
    for arch, build_dir in USVFS_ARCHITECTURES:
        steps.append(
            CommandStep(
                argv=(
                    config["tools.cmake"],
                    "--preset",
                    f"vs2022-windows-{arch}",
                    f"-DCMAKE_INSTALL_PREFIX={install}",
                ),
                cwd=source,
            ),
        )
        steps.append(
            CommandStep(
                argv=(
                    config["tools.msbuild"],
                    str(source / build_dir / "usvfs.sln"),
                    f"/p:Configuration={configuration}",
                    f"/p:Platform={arch}",
                    *_msbuild_properties(config),
                    "/m",
                ),
                cwd=source,
            ),
        )
    return steps


def stylesheets_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    cache = _required_path(task, config, "paths.cache")
    build = _required_path(task, config, "paths.build") / "stylesheets"
    steps: list[Step] = []

    for release in STYLESHEET_RELEASES:
        version = config.get(f"versions.{release.version_key}") or "latest"
        archive = cache / f"{release.repo}.7z"
        extracted = build / f"{release.repo}-{version}"
        if phase is Phase.CLEAN:
            if config["global.redownload"]:
                steps.append(RemoveStep(archive))
            if config["global.reextract"] or config["global.redownload"]:
                steps.append(RemoveStep(extracted))
        elif phase is Phase.FETCH:
            url = (
                f"https://github.com/{release.user}/{release.repo}"
                f"/releases/download/{version}/{release.file}.7z"
            )
            steps.append(DownloadStep(url=url, destination=archive))
            steps.append(_extract(config, archive, extracted))
        else:
            install = _required_path(task, config, "paths.install_stylesheets")
            steps.append(CopyStep(source=extracted, destination=install))
    return steps


def explorerpp_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    version = config["versions.explorerpp"]
    archive = _required_path(task, config, "paths.cache") / "explorerpp_x64.zip"
    extracted = _required_path(task, config, "paths.build") / "explorer++"

    if phase is Phase.CLEAN:
        steps: list[Step] = []
        if config["global.redownload"]:
            steps.append(RemoveStep(archive))
        if config["global.reextract"] or config["global.redownload"]:
            steps.append(RemoveStep(extracted))
        return steps
    if phase is Phase.FETCH:
        url = f"https://download.explorerplusplus.com/stable/{version}/explorerpp_x64.zip"
        return [DownloadStep(url=url, destination=archive), _extract(config, archive, extracted)]
    install = _required_path(task, config, "paths.install_bin") / "explorer++"
    return [CopyStep(source=extracted, destination=install)]


def licenses_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    if phase is not Phase.BUILD_AND_INSTALL:
        return []
    return [
        CopyStep(
            source=_required_path(task, config, "paths.licenses"),
            destination=_required_path(task, config, "paths.install_licenses"),
        ),
    ]


def translations_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    source = _required_path(task, config, "paths.build") / "transifex-translations"

    if phase is Phase.CLEAN:
        return [RemoveStep(source)] if config["global.reextract"] else []

    if phase is Phase.FETCH:
        key = config["transifex.key"]
        tx = config["tools.tx"]
        env = {"TX_TOKEN": key} if key else {}
        url = "/".join(
            (
                config["transifex.url"],
                config["transifex.team"],
                config["transifex.project"],
                "dashboard",
            ),
        )
        steps: list[Step] = [
            CommandStep(argv=(tx, "init"), cwd=source, creates=source / ".tx"),
        ]
        if config["transifex.configure"]:
            steps.append(
                CommandStep(argv=(tx, "add", "remote", url), cwd=source, env=env, secrets=(key,)),
            )
        if config["transifex.pull"]:
            pull = [tx, "pull", "--all", f"--minimum-perc={config['transifex.minimum']}"]
            if config["transifex.force"]:
                pull.append("--force")
            steps.append(CommandStep(argv=tuple(pull), cwd=source, env=env, secrets=(key,)))
        return steps

    output = _required_path(task, config, "paths.install_translations")
    lrelease = _lrelease(config)
    steps: list[Step] = [
        CommandStep(argv=(lrelease, str(ts_file), "-qm", str(output / qm_name)), cwd=source)
        for ts_file, qm_name in _translation_files(source / "translations")
    ]
    return steps + _qt_translation_steps(source / "translations", output, config)


def installer_steps(phase: Phase, task: TaskDescriptor, config: ResolvedConfig) -> list[Step]:
    source = _required_path(task, config, "paths.build") / "installer"
    url = f"{config['task.git_url_prefix']}{config['task.mo_org']}/modorganizer-Installer.git"

    if phase is Phase.CLEAN:
        steps = _source_clean_steps(source, config)
        if config["global.rebuild"]:
            steps.append(RemoveStep(_required_path(task, config, "paths.install_installer")))
        return steps
    if phase is Phase.FETCH:
        return _git_fetch_steps(source, url, config)

    output = _required_path(task, config, "paths.install_installer")
    return [
        CommandStep(
            argv=(config["tools.iscc"], f"/O{output}", str(source / "dist" / "MO2-Installer.iss")),
            cwd=source,
        ),
    ]


HANDLERS: Mapping[TaskKind, Handler] = {
    TaskKind.PROJECT: project_steps,
    TaskKind.USVFS: usvfs_steps,
    TaskKind.STYLESHEETS: stylesheets_steps,
    TaskKind.EXPLORERPP: explorerpp_steps,
    TaskKind.LICENSES: licenses_steps,
    TaskKind.TRANSLATIONS: translations_steps,
    TaskKind.INSTALLER: installer_steps,
}


def _required_path(task: TaskDescriptor, config: ResolvedConfig, key: str) -> Path:
    value = config.get(key)
    if not value:
        raise ExecutionError(task.canonical_name, f"{key} is not configured")
    return Path(value)


def _source_clean_steps(source: Path, config: ResolvedConfig) -> list[Step]:
    if not config["global.reextract"]:
        return []
    steps: list[Step] = []
    if not config["global.ignore_uncommitted"]:
        # fails on uncommitted changes, which stops the removal below
        steps.append(
            CommandStep(
                argv=(
                    config["tools.git"],
                    "-C",
                    str(source),
                    "diff-index",
                    "--quiet",
                    "HEAD",
                    "--",
                ),
                when=source / ".git",
            ),
        )
    steps.append(RemoveStep(source))
    return steps


def _cmake_clean_steps(source: Path, config: ResolvedConfig) -> list[Step]:
    steps: list[Step] = []
    if config["global.reconfigure"]:
        steps.extend([RemoveStep(source / "CMakeCache.txt"), RemoveStep(source / "CMakeFiles")])
    if config["global.rebuild"]:
        steps.append(
            CommandStep(
                argv=(
                    config["tools.cmake"],
                    "--build",
                    str(source),
                    "--config",
                    config["task.configuration"],
                    "--target",
                    "clean",
                ),
                when=source / "CMakeCache.txt",
            ),
        )
    return steps


def _git_fetch_steps(
    source: Path,
    url: str,
    config: ResolvedConfig,
    *,
    branch: str | None = None,
) -> list[Step]:
    git = config["tools.git"]
    branch = branch or config["task.mo_branch"]
    submodules = CommandStep(
        argv=(git, "-C", str(source), "submodule", "update", "--init", "--recursive"),
        when=source / ".gitmodules",
    )

    if source.exists():
        if config["task.no_pull"]:
            logger.debug("Skipping pull of %s (no_pull)", source)
            return []
        return [
            CommandStep(argv=(git, "-C", str(source), "pull", "--ff-only", "origin", branch)),
            submodules,
        ]

    clone = [git, "clone", "--quiet"]
    if config["task.git_shallow"]:
        clone.extend(["--depth", "1"])
    fallback: tuple[str, ...] = ()
    fallback_branch = config["task.mo_fallback"]
    if fallback_branch and fallback_branch != branch:
        fallback = (*clone, "--branch", fallback_branch, url, str(source))
    steps: list[Step] = [
        CommandStep(argv=(*clone, "--branch", branch, url, str(source)), fallback=fallback),
        submodules,
    ]
    steps.extend(_remote_steps(source, config))
    return steps


def _remote_steps(source: Path, config: ResolvedConfig) -> list[Step]:
    org = config["task.remote_org"]
    if not org:
        return []
    git = (config["tools.git"], "-C", str(source))
    fork_url = f"{config['task.git_url_prefix']}{org}/{source.name}.git"
    steps: list[Step] = [CommandStep(argv=(*git, "remote", "add", "fork", fork_url))]
    if config["task.remote_no_push_upstream"]:
        steps.append(
            CommandStep(argv=(*git, "remote", "set-url", "--push", "origin", "nopushurl")),
        )
    if config["task.remote_push_default_origin"]:
        steps.append(CommandStep(argv=(*git, "config", "remote.pushdefault", "fork")))
    return steps


def cmake_prefix_path(config: ResolvedConfig) -> str:
    prefixes = (config["paths.qt_install"], config["paths.install_libs"], config["paths.vcpkg"])
    return ";".join(value for value in prefixes if value)


def cmake_variables(install: Path, config: ResolvedConfig) -> dict[str, str]:
    """Cache variables passed as `-D` when configuring a project."""

    variables = {
        "CMAKE_INSTALL_PREFIX": str(install),
        "CMAKE_INSTALL_MESSAGE": config["cmake.install_message"],
    }
    prefix_path = cmake_prefix_path(config)
    if prefix_path:
        variables["CMAKE_PREFIX_PATH"] = prefix_path
    return variables


def _cmake_configure(source: Path, install: Path, config: ResolvedConfig) -> tuple[str, ...]:
    argv = [config["tools.cmake"], "-S", str(source), "-B", str(source), "-A", "x64"]
    argv.extend(f"-D{name}={value}" for name, value in cmake_variables(install, config).items())
    if config["cmake.host"]:
        argv.extend(["-T", f"host={config['cmake.host']}"])
    return tuple(argv)


def _msbuild_properties(config: ResolvedConfig) -> list[str]:
    properties: list[str] = []
    if config["versions.vs_toolset"]:
        properties.append(f"/p:PlatformToolset={platform_toolset(config['versions.vs_toolset'])}")
    if config["versions.sdk"]:
        properties.append(f"/p:WindowsTargetPlatformVersion={config['versions.sdk']}")
    return properties


def platform_toolset(version: str) -> str:
    """MSVC version to MSBuild toolset: `14.3` -> `v143`. Other text passes through."""

    major, _, rest = version.partition(".")
    if not major.isdigit():
        return version
    minor = rest.split(".", 1)[0]
    return f"v{int(major)}{int(minor) if minor.isdigit() else 0}"


def _revert_ts_steps(source: Path, config: ResolvedConfig) -> list[Step]:
    if not config["task.revert_ts"]:
        return []
    return [
        CommandStep(
            argv=(config["tools.git"], "-C", str(source), "checkout", "--", "*.ts"),
            when=source / ".git",
        ),
    ]


def _extract(config: ResolvedConfig, archive: Path, destination: Path) -> CommandStep:
    return CommandStep(
        argv=(config["tools.7z"], "x", str(archive), f"-o{destination}", "-y", "-bso0"),
        creates=destination,
    )


def _translation_files(root: Path) -> list[tuple[Path, str]]:
    """`(.ts file, .qm name)` pairs; `mod-organizer-2.organizer/de.ts` -> `organizer_de.qm`."""

    if not root.is_dir():
        return []
    files: list[tuple[Path, str]] = []
    for project_dir in sorted(path for path in root.iterdir() if path.is_dir()):
        prefix = project_dir.name.rsplit(".", 1)[-1]
        for ts_file in sorted(project_dir.glob("*.ts")):
            files.append((ts_file, f"{prefix}_{ts_file.stem}.qm"))
    return files


def _lrelease(config: ResolvedConfig) -> str:
    """An absolute `tools.lrelease` if it exists, else the one in `paths.qt_bin`, else as set."""

    configured = config["tools.lrelease"]
    if Path(configured).is_absolute() and Path(configured).exists():
        return configured
    if config["paths.qt_bin"]:
        for name in ("lrelease.exe", "lrelease"):
            candidate = Path(config["paths.qt_bin"]) / name
            if candidate.is_file():
                return str(candidate)
    return configured


def _qt_translation_steps(root: Path, output: Path, config: ResolvedConfig) -> list[Step]:
    """Copy Qt's own `qt_<lang>.qm` and `qtbase_<lang>.qm` for every organizer language.

    `zh_CN` falls back to `zh` when Qt ships no file for the full code.
    """

    languages = sorted(path.stem for path in (root / "mod-organizer-2.organizer").glob("*.ts"))
    if not languages:
        return []
    qt_translations = config["paths.qt_translations"]
    if not qt_translations or not Path(qt_translations).is_dir():
        logger.warning("Qt translations directory not found, skipping builtin Qt translations")
        return []

    steps: list[Step] = []
    for prefix in ("qt", "qtbase"):
        for language in languages:
            for code in dict.fromkeys((language, language.split("_", 1)[0])):
                source = Path(qt_translations) / f"{prefix}_{code}.qm"
                if source.is_file():
                    steps.append(CopyStep(source=source, destination=output))
                    break
            else:
                logger.debug("No builtin Qt translation %s_%s", prefix, language)
    return steps
