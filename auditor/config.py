"""Runtime settings and ``.env`` loading.

Settings are read from the environment at call time (``AuditSettings.from_env``)
so that tests can monkeypatch variables freely and late ``.env`` loading works.

Supported variables:
    AUDIT_HEADLESS: Run the browser headless (default: true).
    AUDIT_USER_AGENT: User agent sent by the browser session.
    AUDIT_NAVIGATION_TIMEOUT_MS: Page navigation timeout (default: 30000).
    AUDIT_PAGE_DELAY: Seconds to pause between page evaluations (default: 1).
    AXE_CORE_PATH: Local axe.min.js to inject instead of downloading it.
    AXE_CORE_URL: Where to download axe.min.js from.
    AXE_CACHE_DIR: Directory for the downloaded axe.min.js.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

# Configuration directory for global CLI / server usage
CONFIG_DIR = Path.home() / ".config" / "section508-audit"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_AXE_CORE_URL = "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.9.1/axe.min.js"
DEFAULT_AXE_CACHE_DIR = Path.home() / ".cache" / "section508-audit"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class SettingsError(ValueError):
    """Raised when an environment variable holds an unusable value."""


@dataclass(frozen=True)
class AuditSettings:
    """Browser and rule-engine settings shared by one audit run."""

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    navigation_timeout_ms: int = 30000
    page_delay: float = 1.0
    axe_core_path: Optional[str] = None
    axe_core_url: str = DEFAULT_AXE_CORE_URL
    axe_cache_dir: Path = DEFAULT_AXE_CACHE_DIR

    @classmethod
    def from_env(cls) -> "AuditSettings":
        """Build settings from ``AUDIT_*`` / ``AXE_*`` environment variables."""
        cache_dir = os.getenv("AXE_CACHE_DIR")
        return cls(
            headless=_env_bool("AUDIT_HEADLESS", True),
            user_agent=os.getenv("AUDIT_USER_AGENT") or DEFAULT_USER_AGENT,
            navigation_timeout_ms=_env_int("AUDIT_NAVIGATION_TIMEOUT_MS", 30000),
            page_delay=_env_float("AUDIT_PAGE_DELAY", 1.0),
            axe_core_path=os.getenv("AXE_CORE_PATH") or None,
            axe_core_url=os.getenv("AXE_CORE_URL") or DEFAULT_AXE_CORE_URL,
            axe_cache_dir=Path(cache_dir).expanduser() if cache_dir else DEFAULT_AXE_CACHE_DIR,
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise SettingsError(f"{name} must be a boolean, got '{raw}'")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise SettingsError(f"{name} must be an integer, got '{raw}'") from exc
    if value <= 0:
        raise SettingsError(f"{name} must be greater than 0")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise SettingsError(f"{name} must be a number, got '{raw}'") from exc
    if value < 0:
        raise SettingsError(f"{name} must not be negative")
    return value


def load_config(
    *,
    load_env: Callable[[Path], bool],
    copy_file: Callable[[Path, Path], object],
    cwd: Optional[Path] = None,
    config_dir: Path = CONFIG_DIR,
    config_env_file: Path = CONFIG_ENV_FILE,
    example_file: Optional[Path] = None,
) -> Optional[Path]:
    """Load .env configuration with fallback to the user config directory.

    Search order:
    1. .env in the current working directory
    2. ~/.config/section508-audit/.env

    If neither exists and .env.example ships next to the package, it is
    copied to the user config directory as a starting point.

    Returns:
        The path of the loaded file, or None if nothing was loaded.
    """
    local_env = (cwd or Path.cwd()) / ".env"
    if local_env.is_file():
        load_env(local_env)
        return local_env

    if config_env_file.is_file():
        load_env(config_env_file)
        return config_env_file

    if example_file is None:
        example_file = Path(__file__).parent.parent / ".env.example"

    if example_file.is_file():
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            copy_file(example_file, config_env_file)
            LOGGER.info(
                "Created config file at %s from .env.example. "
                "Edit it to set credentials and browser options.",
                config_env_file,
            )
            load_env(config_env_file)
            return config_env_file
        except OSError as exc:
            LOGGER.debug("Could not seed %s: %s", config_env_file, exc)
    return None
