import os
from pathlib import Path

from dockhand.internal.constants import APP_NAME


# ---------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------

def get_app_data_dir() -> Path:
    """
    Returns the application data directory.

    - DOCKHAND_HOME, when set
    - Windows: %APPDATA%\\dockhand
    - Linux/macOS: ~/.dockhand
    """
    override = os.environ.get("DOCKHAND_HOME")
    if override:
        path = Path(override).expanduser()
    elif os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", str(Path.home()))
        path = Path(base) / APP_NAME
    else:  # Linux / macOS
        path = Path.home() / f".{APP_NAME}"

    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_root() -> Path:
    path = get_app_data_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_services_cache_dir() -> Path:
    """
    Directory holding one fetched artifact per service identifier.
    """
    path = get_cache_root() / "services"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_providers_cache_dir() -> Path:
    """
    Directory holding one fetched artifact per provider identifier.
    """
    path = get_cache_root() / "providers"
    path.mkdir(parents=True, exist_ok=True)
    return path


# ---------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------

def get_log_dir() -> Path:
    path = get_app_data_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_log_file() -> Path:
    return get_log_dir() / f"{APP_NAME}.log.json"


# ---------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------

def env_float(name: str, default: float) -> float:
    """Reads a float from the environment, ignoring unparsable values."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    return raw.strip() if raw and raw.strip() else default


# ---------------------------------------------------------------------
# Debug
# ---------------------------------------------------------------------

if __name__ == "__main__":
    print("App Data Dir:", get_app_data_dir())
    print("Cache Root:", get_cache_root())
    print("Services Cache:", get_services_cache_dir())
    print("Providers Cache:", get_providers_cache_dir())
    print("Log File:", get_log_file())
