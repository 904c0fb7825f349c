"""User settings for dotpreset.

Settings layers (later overrides earlier):
1. Built-in defaults
2. User config file: platformdirs user_config_dir("dotpreset")/config.yaml,
   or the file named by DOTPRESET_CONFIG (optional)
3. Environment variables: DOTPRESET_BACKUP_DIR, DOTPRESET_JOURNAL
4. CLI flags (applied by the caller with Settings.override())

Example config.yaml:

    backup_dir: ~/dotfile-backups
    journal: ~/.local/state/dotpreset
    profiles_dir: ~/dotpreset-profiles
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

import yaml
from platformdirs import user_config_dir

logger = logging.getLogger(__name__)

CONFIG_ENV = "DOTPRESET_CONFIG"
BACKUP_DIR_ENV = "DOTPRESET_BACKUP_DIR"
JOURNAL_ENV = "DOTPRESET_JOURNAL"

CONFIG_KEYS = ("backup_dir", "journal", "profiles_dir")


def get_config_path() -> Path:
    """Return the user config file path (DOTPRESET_CONFIG wins)."""
    configured = os.environ.get(CONFIG_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path(user_config_dir("dotpreset", appauthor=False)) / "config.yaml"


def get_profiles_dir() -> Path:
    """Return the default directory for user profiles."""
    return Path(user_config_dir("dotpreset", appauthor=False)) / "profiles"


@dataclass(frozen=True)
class Settings:
    """Resolved settings for one invocation.

    Attributes:
        backup_dir: Backup root (None: <home>/.dotpreset-backup)
        journal: Journal file or directory (None: platform data dir)
        profiles_dir: Directory searched for profiles before the built-ins
    """

    backup_dir: Optional[Path] = None
    journal: Optional[str] = None
    profiles_dir: Optional[Path] = None

    def override(self, **values: Any) -> "Settings":
        """Return a copy with every non-None value applied."""
        return replace(self, **{key: value for key, value in values.items() if value is not None})


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read the config file. Missing or invalid files yield an empty mapping."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        # Config is optional; fall back to defaults
        logger.warning(f"Failed to load config from {path}: {e}. Using defaults.")
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Config root must be a mapping: {path}. Using defaults.")
        return {}

    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {', '.join(unknown)}")
    return {key: data[key] for key in CONFIG_KEYS if data.get(key) is not None}


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Resolve settings from defaults, the config file and the environment.

    Args:
        config_path: Config file to read (default: get_config_path())

    Returns:
        Settings with layers 1-3 applied
    """
    path = config_path or get_config_path()
    data = _read_config_file(path)
    if data:
        logger.debug(f"Loaded config from {path}: {data}")

    backup_dir = os.environ.get(BACKUP_DIR_ENV) or data.get("backup_dir")
    journal = os.environ.get(JOURNAL_ENV) or data.get("journal")
    profiles_dir = data.get("profiles_dir")

    return Settings(
        backup_dir=Path(str(backup_dir)).expanduser() if backup_dir else None,
        journal=str(journal) if journal else None,
        profiles_dir=Path(str(profiles_dir)).expanduser() if profiles_dir else get_profiles_dir(),
    )
