"""Xcode build environment helpers.

When run as a build phase, Xcode exports build settings as environment
variables; ``DWARF_DSYM_FOLDER_PATH`` points at the freshly built ``.dSYM``
bundles and ``PROJECT_DIR``/``INFOPLIST_FILE`` locate the app's Info.plist.
"""

from __future__ import annotations

import logging
import os
import plistlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

DERIVED_DATA = Path("Library/Developer/Xcode/DerivedData")
_VAR_RE = re.compile(r"\$(?:\(([A-Za-z0-9_]+)\)|\{([A-Za-z0-9_]+)\})")


def expand_vars(value: str, env: Mapping[str, str]) -> str:
    """Expand ``$(VAR)`` and ``${VAR}`` build settings; unknown ones become empty."""
    return _VAR_RE.sub(lambda m: env.get(m.group(1) or m.group(2), ""), value)


@dataclass(slots=True)
class InfoPlist:
    name: str
    bundle_id: str
    version: str
    build: str

    def __str__(self) -> str:
        return f"{self.name} ({self.bundle_id}; version {self.version}, build {self.build})"

    @classmethod
    def from_path(cls, path: str | Path, env: Mapping[str, str] | None = None) -> InfoPlist:
        env = os.environ if env is None else env
        path = Path(path)
        try:
            with path.open("rb") as handle:
                payload = plistlib.load(handle)
        except (OSError, plistlib.InvalidFileException) as exc:
            raise ConfigError(f"Could not read Info.plist {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Info.plist {path} is not a dictionary")

        def _get(*keys: str) -> str | None:
            for key in keys:
                value = payload.get(key)
                if value:
                    return expand_vars(str(value), env)
            return None

        bundle_id = _get("CFBundleIdentifier")
        version = _get("CFBundleShortVersionString")
        build = _get("CFBundleVersion")
        missing = [
            key
            for key, value in (
                ("CFBundleIdentifier", bundle_id),
                ("CFBundleShortVersionString", version),
                ("CFBundleVersion", build),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Info.plist {path} is missing {', '.join(missing)}")
        return cls(
            name=_get("CFBundleName", "CFBundleExecutable") or bundle_id,
            bundle_id=bundle_id,
            version=version,
            build=build,
        )

    @classmethod
    def discover_from_env(cls, env: Mapping[str, str] | None = None) -> InfoPlist | None:
        env = os.environ if env is None else env
        plist_file = env.get("INFOPLIST_FILE")
        project_dir = env.get("PROJECT_DIR")
        if not plist_file or not project_dir:
            return None
        path = Path(project_dir) / expand_vars(plist_file, env)
        if not path.is_file():
            LOGGER.debug("Info.plist from build environment not found at %s", path)
            return None
        LOGGER.debug("Using Info.plist from build environment: %s", path)
        return cls.from_path(path, env)


def get_paths_from_env(env: Mapping[str, str] | None = None) -> list[Path]:
    env = os.environ if env is None else env
    base_path = env.get("DWARF_DSYM_FOLDER_PATH")
    if not base_path:
        return []
    LOGGER.debug("Getting path from DWARF_DSYM_FOLDER_PATH: %s", base_path)
    base = Path(base_path)
    if base.suffix == ".dSYM" and base.is_dir():
        return [base]

    paths: list[Path] = []

    def _onerror(exc: OSError) -> None:
        raise exc

    for dirpath, dirnames, _filenames in os.walk(base, onerror=_onerror):
        kept = []
        for name in dirnames:
            if name.endswith(".dSYM"):
                paths.append(Path(dirpath) / name)
            else:
                kept.append(name)
        dirnames[:] = kept
    return paths


def derived_data_path(home: Path | None = None) -> Path | None:
    home = Path.home() if home is None else home
    path = home / DERIVED_DATA
    return path if path.is_dir() else None
