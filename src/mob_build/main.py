"""CLI entrypoint for mob."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from mob_build import __version__
from mob_build.controllers import (
    BuildCommand,
    CmakeConfigCommand,
    ConfigCommand,
    ListCommand,
    MobCliController,
)
from mob_build.errors import MobError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = MobCliController()

_LOG_LEVEL = click.IntRange(min=0, max=6)


@click.group()
@click.version_option(version=__version__, prog_name="mob")
@click.option(
    "-i",
    "--ini",
    "ini_files",
    type=click.Path(path_type=Path),
    multiple=True,
    help="Extra TOML configuration file. Can be repeated; later files win.",
)
@click.option("--dry", is_flag=True, default=False, help="Log commands instead of running them.")
@click.option(
    "-l",
    "--log-level",
    type=_LOG_LEVEL,
    default=None,
    help="Console verbosity, 0 (off) to 6 (dump).",
)
@click.option(
    "--file-log-level",
    type=_LOG_LEVEL,
    default=None,
    help="Log file verbosity; defaults to `--log-level`.",
)
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Log file path.")
@click.option(
    "-d",
    "--destination",
    type=click.Path(path_type=Path),
    default=None,
    help="Build prefix; sets `paths.prefix`.",
)
@click.option(
    "-s",
    "--set",
    "assignments",
    multiple=True,
    help="Override an option: `[task:]section/key=value`. Can be repeated.",
)
@click.option(
    "--no-default-inis",
    is_flag=True,
    default=False,
    help="Skip `mob.toml` discovery; only `--ini` files are loaded.",
)
@click.pass_context
def mob(  # noqa: PLR0913
    ctx: click.Context,
    ini_files: tuple[Path, ...],
    dry: bool,
    log_level: int | None,
    file_log_level: int | None,
    log_file: Path | None,
    destination: Path | None,
    assignments: tuple[str, ...],
    no_default_inis: bool,
) -> None:
    """Build Mod Organizer 2 and its projects from source."""

    if file_log_level is None:
        file_log_level = log_level

    derived: list[str] = []
    if dry:
        derived.append("global/dry=true")
    if log_level is not None:
        derived.append(f"global/output_log_level={log_level}")
    if file_log_level is not None:
        derived.append(f"global/file_log_level={file_log_level}")
    if log_file is not None:
        derived.append(f"global/log_file={log_file}")
    if destination is not None:
        derived.append(f"paths/prefix={destination}")

    ctx.obj = ConfigCommand(
        ini_files=ini_files,
        assignments=(*assignments, *derived),
        use_default_inis=not no_default_inis,
    )


@mob.command("build")
@click.argument("tasks", nargs=-1)
@click.option("-g", "--redownload", is_flag=True, default=False, help="Download archives again.")
@click.option(
    "-e",
    "--reextract",
    is_flag=True,
    default=False,
    help="Delete sources and extract/clone again.",
)
@click.option(
    "-c",
    "--reconfigure",
    is_flag=True,
    default=False,
    help="Run the configure step again.",
)
@click.option("-b", "--rebuild", is_flag=True, default=False, help="Clean and rebuild.")
@click.option("-n", "--new", is_flag=True, default=False, help="Same as `-gecb`.")
@click.option("--clean-task/--no-clean-task", default=None, help="Run the clean phase.")
@click.option("--fetch-task/--no-fetch-task", default=None, help="Run the fetch phase.")
@click.option("--build-task/--no-build-task", default=None, help="Run the build and install phase.")
@click.option("--pull/--no-pull", default=None, help="Pull repositories that are already cloned.")
@click.option("--revert-ts/--no-revert-ts", default=None, help="Revert `.ts` files after building.")
@click.option(
    "--ignore-uncommitted-changes",
    is_flag=True,
    default=False,
    help="Delete sources even with uncommitted changes.",
)
@click.option(
    "-j",
    "--jobs",
    type=click.IntRange(min=0),
    default=None,
    help="Concurrent tasks; 0 uses every CPU.",
)
@click.pass_obj
def build(  # noqa: PLR0913
    config: ConfigCommand,
    tasks: tuple[str, ...],
    redownload: bool,
    reextract: bool,
    reconfigure: bool,
    rebuild: bool,
    new: bool,
    clean_task: bool | None,
    fetch_task: bool | None,
    build_task: bool | None,
    pull: bool | None,
    revert_ts: bool | None,
    ignore_uncommitted_changes: bool,
    jobs: int | None,
) -> None:
    """Build tasks by name, alias or glob; all enabled tasks when none are given."""

    flags: list[str] = []
    for key, value in (
        ("redownload", redownload or new),
        ("reextract", reextract or new),
        ("reconfigure", reconfigure or new),
        ("rebuild", rebuild or new),
        ("ignore_uncommitted", ignore_uncommitted_changes),
    ):
        if value:
            flags.append(f"global/{key}=true")
    for key, toggle in (
        ("global/clean_task", clean_task),
        ("global/fetch_task", fetch_task),
        ("global/build_task", build_task),
        ("task/no_pull", None if pull is None else not pull),
        ("task/revert_ts", revert_ts),
    ):
        if toggle is not None:
            flags.append(f"{key}={str(toggle).lower()}")
    if jobs is not None:
        flags.append(f"global/max_jobs={jobs}")

    command = BuildCommand(config=config.with_assignments(flags), selectors=tasks)
    with _cli_errors():
        result = CONTROLLER.build(command)
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Build failed.")


@mob.command("list")
@click.argument("patterns", nargs=-1)
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    default=False,
    help="Include disabled tasks.",
)
@click.option("--aliases", is_flag=True, default=False, help="Show aliases and their tasks.")
@click.option("-t", "--tree", is_flag=True, default=False, help="Show the execution groups.")
@click.pass_obj
def list_tasks(
    config: ConfigCommand,
    patterns: tuple[str, ...],
    show_all: bool,
    aliases: bool,
    tree: bool,
) -> None:
    """List tasks, optionally filtered by name, alias or glob."""

    command = ListCommand(
        config=config,
        patterns=patterns,
        show_all=show_all,
        aliases=aliases,
        tree=tree,
    )
    with _cli_errors():
        lines = CONTROLLER.list_tasks(command)
    _emit_lines(lines)


@mob.command("options")
@click.pass_obj
def options(config: ConfigCommand) -> None:
    """Show every resolved run-wide option."""

    with _cli_errors():
        _emit_lines(CONTROLLER.options(config))


@mob.command("inis")
@click.pass_obj
def inis(config: ConfigCommand) -> None:
    """Show loaded configuration sources in the order they apply."""

    with _cli_errors():
        _emit_lines(CONTROLLER.inis(config))


@mob.command("cmake-config")
@click.argument(
    "variable",
    required=False,
    type=click.Choice(["prefix-path", "install-prefix"]),
)
@click.pass_obj
def cmake_config(config: ConfigCommand, variable: str | None) -> None:
    """Show the CMake variables projects are configured with."""

    with _cli_errors():
        _emit_lines(CONTROLLER.cmake_config(CmakeConfigCommand(config=config, variable=variable)))


@mob.command("version")
def version() -> None:
    """Show the mob version."""

    click.echo(f"mob {__version__}")


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except MobError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mob()
