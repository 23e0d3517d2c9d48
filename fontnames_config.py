import json
import logging
import os
import platform
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

# Environment variables holding the managed font search path and the OS font
# directory override (kpathsea names).
OPENTYPE_FONTS_VAR = "OPENTYPEFONTS"
TRUETYPE_FONTS_VAR = "TTFONTS"
OS_FONT_DIR_VAR = "OSFONTDIR"
SYSTEM_OVERRIDE_VAR = "FONTNAMES_SYSTEM"


class SystemKind(Enum):
    """Path conventions of the host system."""

    UNIX = "unix"
    WINDOWS = "windows"
    CYGWIN = "cygwin"

    @property
    def path_separator(self) -> str:
        """Separator used between entries of a search path list."""
        return ";" if self is SystemKind.WINDOWS else ":"


def detect_system(uname: Optional[str] = None) -> SystemKind:
    """Classify the host from ``platform.system()`` (or the given name).

    ``CYGWIN_NT-10.0`` and ``MSYS_NT-10.0`` style names are cygwin-like,
    ``Windows`` is windows, everything else is treated as unix.
    """
    if uname is None:
        uname = os.environ.get(SYSTEM_OVERRIDE_VAR) or platform.system()
    name = uname.strip()
    lowered = name.lower()
    if lowered.startswith(("cygwin", "msys")):
        system = SystemKind.CYGWIN
    elif lowered.startswith("windows"):
        system = SystemKind.WINDOWS
    else:
        system = SystemKind.UNIX
    logger.info("Detecting system: %s", system.value)
    return system


def split_path_list(value: Optional[str], system: SystemKind) -> list[str]:
    """Split a kpathsea-style directory list.

    Empty entries and the current directory (``.``) are dropped, ``!!``
    prefixes are stripped and the order is kept.
    """
    if not value:
        return []
    dirs = []
    for entry in value.split(system.path_separator):
        entry = entry.strip()
        if entry.startswith("!!"):
            entry = entry[2:]
        if not entry or entry == ".":
            continue
        dirs.append(entry)
    return dirs


@dataclass
class IndexConfig:
    """Environment-derived settings threaded through every scan."""

    system: SystemKind = SystemKind.UNIX
    font_dirs: list[str] = field(default_factory=list)
    os_font_dir: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        system: Optional[SystemKind] = None,
    ) -> "IndexConfig":
        if environ is None:
            environ = os.environ
        if system is None:
            system = detect_system(environ.get(SYSTEM_OVERRIDE_VAR))
        font_dirs = split_path_list(environ.get(OPENTYPE_FONTS_VAR), system)
        font_dirs += split_path_list(environ.get(TRUETYPE_FONTS_VAR), system)
        os_font_dir = (environ.get(OS_FONT_DIR_VAR) or "").strip() or None
        return cls(system=system, font_dirs=font_dirs, os_font_dir=os_font_dir)

    @property
    def scans_os_fonts(self) -> bool:
        return self.os_font_dir is None


class AppConfig:
    """Unified interface for application configuration management."""

    APP_NAME = "fontnames"
    APP_AUTHOR = "fontnames"

    DB_NAME = "fontnames.db"

    DEFAULT_SETTINGS = {
        "database_path": None,
        "log_level": 1,
    }

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(user_config_dir(self.APP_NAME, self.APP_AUTHOR))
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "settings.json"
        self._settings = self._load_settings()

    def _load_settings(self) -> dict:
        """Load settings from file or create defaults."""
        if self.config_file.exists():
            try:
                with self.config_file.open("r", encoding="utf-8") as f:
                    return {**self.DEFAULT_SETTINGS, **json.load(f)}
            except Exception:
                logger.warning("Failed to load settings, using defaults")

        return self.DEFAULT_SETTINGS.copy()

    def _save_settings(self):
        """Persist settings to disk."""
        try:
            with self.config_file.open("w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=4)
        except Exception as e:
            logger.exception("Failed to save settings: %s", e)

    def get(self, key: str, default=None):
        """Get a configuration value."""
        return self._settings.get(key, default)

    def set(self, key: str, value):
        """Set a configuration value and save."""
        self._settings[key] = value
        self._save_settings()

    def get_db_path(self) -> Path:
        """Get the database file path."""
        configured = self._settings.get("database_path")
        if configured:
            return Path(configured)
        return self.config_dir / self.DB_NAME

    def set_db_path(self, path: Path):
        self.set("database_path", str(path))

    def get_log_level(self) -> int:
        try:
            return int(self._settings.get("log_level", 1))
        except (TypeError, ValueError):
            return 1

    def clear(self):
        """Clear all settings"""
        self._settings = self.DEFAULT_SETTINGS.copy()
        self._save_settings()
