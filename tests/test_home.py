from __future__ import annotations

import sys
from pathlib import Path

import pytest

from certportal.home import ensure_portal_layout, resolve_portal_home


def test_resolve_portal_home_from_env(tmp_path: Path) -> None:
    home = resolve_portal_home({"CERTPORTAL_HOME": str(tmp_path)})
    assert home == tmp_path.resolve()


def test_resolve_portal_home_relative_is_under_user_home() -> None:
    home = resolve_portal_home({"CERTPORTAL_HOME": "portal-data"})
    assert home == (Path.home() / "portal-data").resolve()


def test_ensure_portal_layout_creates_required_dirs(tmp_path: Path) -> None:
    paths = ensure_portal_layout(tmp_path)

    assert paths.home.exists()
    assert paths.logs_dir.is_dir()
    assert paths.uploads_dir.is_dir()
    assert paths.log_file == paths.logs_dir / "portal.log"


@pytest.mark.skipif(
    sys.platform.startswith("win") or sys.platform == "darwin",
    reason="XDG_STATE_HOME only applies on Linux and other Unix systems",
)
def test_resolve_portal_home_uses_xdg_state_home_from_given_environ(tmp_path: Path) -> None:
    state = tmp_path / "state"
    home = resolve_portal_home({"XDG_STATE_HOME": str(state)})
    assert home == (state / "certportal").resolve()


@pytest.mark.skipif(
    sys.platform.startswith("win") or sys.platform == "darwin",
    reason="XDG_STATE_HOME only applies on Linux and other Unix systems",
)
def test_resolve_portal_home_ignores_process_environment_when_environ_given(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "process-state"))
    monkeypatch.setenv("CERTPORTAL_HOME", str(tmp_path / "process-home"))

    home = resolve_portal_home({})
    assert home == (Path.home() / ".local" / "state" / "certportal").resolve()
