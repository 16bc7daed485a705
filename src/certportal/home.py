from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

APP_DIR_NAME = "CertPortal"


@dataclass(frozen=True)
class PortalPaths:
    home: Path
    logs_dir: Path
    uploads_dir: Path

    @property
    def log_file(self) -> Path:
        return self.logs_dir / "portal.log"


def _platform_state_dir(env: Mapping[str, str]) -> Path:
    """Per-user state directory for this platform, taken from `env` where it says so."""

    if sys.platform.startswith("win"):
        base = env.get("LOCALAPPDATA") or env.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
        return root / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME

    xdg_state = (env.get("XDG_STATE_HOME") or "").strip()
    base = Path(xdg_state) if xdg_state else Path.home() / ".local" / "state"
    return base / APP_DIR_NAME.lower()


def resolve_portal_home(environ: Mapping[str, str] | None = None) -> Path:
    """Runtime directory for logs and the upload spool.

    `CERTPORTAL_HOME` wins; a relative value is taken relative to the user's
    home directory rather than the working directory. Without it the platform
    state directory is used. Every variable is read from `environ`, which
    defaults to the process environment.
    """

    env = os.environ if environ is None else environ

    override = (env.get("CERTPORTAL_HOME") or "").strip()
    if not override:
        return _platform_state_dir(env).resolve()

    home = Path(override).expanduser()
    if not home.is_absolute():
        home = Path.home() / home
    return home.resolve()


def ensure_portal_layout(home: Path) -> PortalPaths:
    paths = PortalPaths(home=home, logs_dir=home / "logs", uploads_dir=home / "uploads")
    for directory in (paths.home, paths.logs_dir, paths.uploads_dir):
        directory.mkdir(parents=True, exist_ok=True)
    return paths
