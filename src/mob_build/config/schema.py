"""Declared configuration options, their types and defaults."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from mob_build.errors import ConfigError

TASK_SECTION = "task"

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


class OptionType(str, Enum):
    """Value types an option may declare."""

    BOOL = "bool"
    INT = "int"
    STR = "str"
    PATH = "path"
    CHOICE = "choice"


@dataclass(frozen=True, slots=True)
class OptionSpec:
    """One declared `section.name` option."""

    section: str
    name: str
    type: OptionType
    default: Any
    choices: tuple[str, ...] = ()
    minimum: int | None = None
    maximum: int | None = None
    secret: bool = False

    @property
    def key(self) -> str:
        return f"{self.section}.{self.name}"

    def coerce(self, value: Any, *, source_id: str) -> Any:
        """Validate `value` against the declared type, parsing strings from env/CLI."""

        if self.type is OptionType.BOOL:
            return self._coerce_bool(value, source_id=source_id)
        if self.type is OptionType.INT:
            return self._coerce_int(value, source_id=source_id)
        if self.type is OptionType.CHOICE:
            return self._coerce_choice(value, source_id=source_id)
        if not isinstance(value, str):
            raise ConfigError(
                f"expected a string, got {type(value).__name__} {value!r}",
                source_id=source_id,
                key=self.key,
            )
        return value

    def _coerce_bool(self, value: Any, *, source_id: str) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in _TRUE_STRINGS:
                return True
            if normalized in _FALSE_STRINGS:
                return False
        raise self._error(f"expected a boolean, got {value!r}", source_id)

    def _coerce_int(self, value: Any, *, source_id: str) -> int:
        if isinstance(value, bool):
            raise self._error(f"expected an integer, got {value!r}", source_id)
        if isinstance(value, int):
            number = value
        elif isinstance(value, str):
            try:
                number = int(value.strip())
            except ValueError as error:
                raise self._error(f"expected an integer, got {value!r}", source_id) from error
        else:
            raise self._error(f"expected an integer, got {value!r}", source_id)

        if self.minimum is not None and number < self.minimum:
            raise self._error(f"must be >= {self.minimum}, got {number}", source_id)
        if self.maximum is not None and number > self.maximum:
            raise self._error(f"must be <= {self.maximum}, got {number}", source_id)
        return number

    def _coerce_choice(self, value: Any, *, source_id: str) -> str:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for choice in self.choices:
                if choice.lower() == lowered:
                    return choice
        expected = ", ".join(repr(choice) for choice in self.choices)
        raise self._error(f"expected one of {expected}, got {value!r}", source_id)

    def _error(self, message: str, source_id: str) -> ConfigError:
        return ConfigError(message, source_id=source_id, key=self.key)


def _bool(section: str, name: str, default: bool) -> OptionSpec:
    return OptionSpec(section=section, name=name, type=OptionType.BOOL, default=default)


def _str(section: str, name: str, default: str, *, secret: bool = False) -> OptionSpec:
    return OptionSpec(
        section=section,
        name=name,
        type=OptionType.STR,
        default=default,
        secret=secret,
    )


def _path(section: str, name: str, default: str = "") -> OptionSpec:
    return OptionSpec(section=section, name=name, type=OptionType.PATH, default=default)


def _int(
    section: str,
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> OptionSpec:
    return OptionSpec(
        section=section,
        name=name,
        type=OptionType.INT,
        default=default,
        minimum=minimum,
        maximum=maximum,
    )


_PATH_OPTIONS = (
    "prefix",
    "cache",
    "build",
    "install",
    "install_bin",
    "install_installer",
    "install_libs",
    "install_stylesheets",
    "install_licenses",
    "install_translations",
    "licenses",
    "vcpkg",
    "qt_install",
    "qt_bin",
    "qt_translations",
)

_STYLESHEET_VERSIONS = (
    ("ss_paper_lad_6788", "7.2"),
    ("ss_paper_automata_6788", "3.2"),
    ("ss_paper_mono_6788", "3.2"),
    ("ss_dark_mode_1809_6788", "3.0"),
    ("ss_morrowind_trosski", "1.1"),
    ("ss_skyrim_trosski", "v1.1"),
    ("ss_starfield_trosski", "V1.11"),
    ("ss_fallout3_trosski", "v1.11"),
    ("ss_fallout4_trosski", "v1.11"),
)

_SPECS: tuple[OptionSpec, ...] = (
    # global: whole-run switches
    _bool("global", "dry", False),
    _bool("global", "redownload", False),
    _bool("global", "reextract", False),
    _bool("global", "reconfigure", False),
    _bool("global", "rebuild", False),
    _bool("global", "clean_task", False),
    _bool("global", "fetch_task", True),
    _bool("global", "build_task", True),
    _bool("global", "ignore_uncommitted", False),
    _int("global", "output_log_level", 3, minimum=0, maximum=6),
    _int("global", "file_log_level", 5, minimum=0, maximum=6),
    _path("global", "log_file", "mob.log"),
    _int("global", "max_jobs", 0, minimum=0),
    _int("global", "command_timeout", 0, minimum=0),
    _int("global", "shutdown_grace", 5, minimum=0),
    # task: defaults for every task, overridable per scope
    _bool(TASK_SECTION, "enabled", True),
    _bool(TASK_SECTION, "exclusive", False),
    _str(TASK_SECTION, "mo_org", "ModOrganizer2"),
    _str(TASK_SECTION, "mo_branch", "master"),
    _str(TASK_SECTION, "mo_fallback", ""),
    _bool(TASK_SECTION, "no_pull", False),
    _bool(TASK_SECTION, "revert_ts", False),
    OptionSpec(
        section=TASK_SECTION,
        name="configuration",
        type=OptionType.CHOICE,
        default="RelWithDebInfo",
        choices=("Debug", "Release", "RelWithDebInfo"),
    ),
    _str(TASK_SECTION, "git_url_prefix", "https://github.com/"),
    _bool(TASK_SECTION, "git_shallow", True),
    _str(TASK_SECTION, "remote_org", ""),
    _bool(TASK_SECTION, "remote_no_push_upstream", False),
    _bool(TASK_SECTION, "remote_push_default_origin", False),
    # cmake
    OptionSpec(
        section="cmake",
        name="install_message",
        type=OptionType.CHOICE,
        default="NEVER",
        choices=("ALWAYS", "LAZY", "NEVER"),
    ),
    _str("cmake", "host", ""),
    # tools
    _path("tools", "7z", "7z"),
    _path("tools", "cmake", "cmake"),
    _path("tools", "git", "git"),
    _path("tools", "msbuild", "msbuild"),
    _path("tools", "tx", "tx"),
    _path("tools", "lrelease", "lrelease"),
    _path("tools", "iscc", "ISCC"),
    # transifex
    _bool("transifex", "enabled", True),
    _str("transifex", "key", "", secret=True),
    _str("transifex", "team", "mod-organizer-2-team"),
    _str("transifex", "project", "mod-organizer-2"),
    _str("transifex", "url", "https://app.transifex.com"),
    _int("transifex", "minimum", 60, minimum=0, maximum=100),
    _bool("transifex", "force", False),
    _bool("transifex", "configure", False),
    _bool("transifex", "pull", False),
    # versions of downloaded third-party artifacts
    _str("versions", "vs_toolset", "14.3"),
    _str("versions", "sdk", "10.0.26100.0"),
    _str("versions", "usvfs", "master"),
    _str("versions", "explorerpp", "1.4.0"),
    *(_str("versions", name, default) for name, default in _STYLESHEET_VERSIONS),
    # paths (derived defaults filled after merge)
    *(_path("paths", name) for name in _PATH_OPTIONS),
)

OPTIONS: MappingProxyType[str, OptionSpec] = MappingProxyType({spec.key: spec for spec in _SPECS})
SECTIONS: frozenset[str] = frozenset(spec.section for spec in _SPECS)


def lookup(section: str, name: str) -> OptionSpec | None:
    """Return the declared option, or None for unknown keys."""

    return OPTIONS.get(f"{section}.{name}")


def default_values() -> dict[str, Any]:
    """Schema defaults keyed by `section.name`, sorted by key."""

    return {key: OPTIONS[key].default for key in sorted(OPTIONS)}
