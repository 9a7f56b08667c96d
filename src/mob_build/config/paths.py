"""Derived defaults for the `paths` section."""

from __future__ import annotations

from pathlib import Path
from typing import Any

# (option, parent option, default leaf) applied in order; parents resolve first.
_DERIVED: tuple[tuple[str, str, str], ...] = (
    ("cache", "prefix", "downloads"),
    ("build", "prefix", "build"),
    ("install", "prefix", "install"),
    ("install_installer", "install", "installer"),
    ("install_bin", "install", "bin"),
    ("install_libs", "install", "lib"),
    ("install_stylesheets", "install_bin", "stylesheets"),
    ("install_licenses", "install_bin", "licenses"),
    ("install_translations", "install_bin", "translations"),
)

_QT_DERIVED: tuple[tuple[str, str], ...] = (
    ("qt_bin", "bin"),
    ("qt_translations", "translations"),
)


def derive_paths(values: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `values` with relative/missing `paths.*` resolved.

    Nothing is derived until `paths.prefix` is set. Relative values are joined
    onto their parent directory, missing values get the default leaf name.
    """

    derived = dict(values)
    prefix = derived.get("paths.prefix") or ""
    if prefix:
        for option, parent, leaf in _DERIVED:
            derived[f"paths.{option}"] = _resolve(
                derived.get(f"paths.{option}") or "",
                Path(derived[f"paths.{parent}"]),
                leaf,
            )

    qt_install = derived.get("paths.qt_install") or ""
    if qt_install:
        for option, leaf in _QT_DERIVED:
            derived[f"paths.{option}"] = _resolve(
                derived.get(f"paths.{option}") or "",
                Path(qt_install),
                leaf,
            )
    return derived


def _resolve(raw: str, parent: Path, leaf: str) -> str:
    if not raw:
        return str(parent / leaf)
    path = Path(raw)
    if path.is_absolute():
        return str(path)
    return str(parent / path)
