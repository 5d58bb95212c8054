import os
from typing import Optional

from .logging import get_logger

log = get_logger("paths")

CREDENTIAL_FILENAME = "etsy_oauth.json"
APPLIANCE_DATA_DIR = "/data"
APP_DIR_NAME = "order-tracker"


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def find_project_root(start_dir: Optional[str] = None) -> str:
    """Find the repository root by walking upward from start_dir.

    Looks for common markers: .git/, pyproject.toml, .env, README.md.
    Falls back to absolute(start_dir) if nothing found.
    """
    start = os.path.abspath(start_dir or os.getcwd() or ".")
    d = start
    while True:
        if os.path.isdir(os.path.join(d, ".git")):
            return d
        for marker in ("pyproject.toml", ".env", "README.md"):
            if os.path.isfile(os.path.join(d, marker)):
                return d
        parent = os.path.dirname(d)
        if parent == d:
            return start
        d = parent


def var_dir(root_dir: str) -> str:
    """Return the absolute var directory under the project root."""
    return os.path.join(os.path.abspath(root_dir), "var")


def default_catalog_path(root_dir: str) -> str:
    return os.path.join(var_dir(root_dir), "catalog", "catalog.sqlite3")


def user_config_dir() -> str:
    """Per-user config directory (XDG layout, ~/.config fallback)."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(expand_abs(base), APP_DIR_NAME)


def credential_path(config_dir: Optional[str] = None) -> str:
    """Where the marketplace OAuth state lives.

    Explicit override first, then the appliance data volume when mounted,
    then the per-user config directory.
    """
    if config_dir:
        return os.path.join(expand_abs(config_dir), CREDENTIAL_FILENAME)
    if os.path.isdir(APPLIANCE_DATA_DIR):
        log.debug(f"Using appliance data dir for credentials: {APPLIANCE_DATA_DIR}")
        return os.path.join(APPLIANCE_DATA_DIR, CREDENTIAL_FILENAME)
    return os.path.join(user_config_dir(), CREDENTIAL_FILENAME)
