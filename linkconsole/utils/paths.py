"""File path resolution using platformdirs.

The database and config live in the platform user-data directory unless
LINKCONSOLE_HOME points somewhere else:
  macOS: ~/Library/Application Support/linkconsole/
  Linux: ~/.local/share/linkconsole/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "linkconsole"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB)."""
    override = os.environ.get("LINKCONSOLE_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "linkconsole.db"
