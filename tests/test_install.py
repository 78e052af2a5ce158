"""Tests for the pnpm install step."""

from __future__ import annotations

import logging
import typing as typ

import pytest

from pnpm_dep_source.errors import InstallFailedError
from pnpm_dep_source.install import (
    DEFAULT_INSTALL_TIMEOUT_SECS,
    run_global_install,
    run_global_uninstall,
    run_install,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .conftest import FakeLocal, RunCallable


def _reply(return_code: int, stdout: str = "", stderr: str = "") -> RunCallable:
    def run(argv: list[str], timeout: int | None) -> tuple[int, str, str]:
        return return_code, stdout, stderr

    return run


def test_install_runs_in_root(
    tmp_path: Path,
    patch_local_runner: typ.Callable[[RunCallable], FakeLocal],
    capsys: pytest.CaptureFixture[str],
) -> None:
    """``pnpm install`` streams its output from the given root."""
    fake_local = patch_local_runner(_reply(0, "Done\n"))

    assert run_install(tmp_path)

    assert fake_local.invocations == [
        (["pnpm", "install"], DEFAULT_INSTALL_TIMEOUT_SECS)
    ]
    assert fake_local.streamed == [["pnpm", "install"]]
    assert fake_local.cwd_calls == [tmp_path]
    assert capsys.readouterr().out == f"Running pnpm install in {tmp_path}...\nDone\n"


def test_explicit_timeout_applies_to_installs(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    patch_local_runner: typ.Callable[[RunCallable], FakeLocal],
) -> None:
    """``PDS_TIMEOUT_SECS`` overrides the install default."""
    monkeypatch.setenv("PDS_TIMEOUT_SECS", "12")
    fake_local = patch_local_runner(_reply(0))

    run_install(tmp_path)

    assert fake_local.invocations[0][1] == 12


def test_failed_install_keeps_changes(
    tmp_path: Path,
    patch_local_runner: typ.Callable[[RunCallable], FakeLocal],
    caplog: pytest.LogCaptureFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """A failing install only warns, after its errors were shown once."""
    patch_local_runner(_reply(1, stderr="ERR_PNPM\n"))

    with caplog.at_level(logging.WARNING):
        assert not run_install(tmp_path)
    assert "configuration changes were kept" in caplog.text
    assert capsys.readouterr().err.count("ERR_PNPM") == 1


def test_global_install_failure_raises(
    patch_local_runner: typ.Callable[[RunCallable], FakeLocal],
) -> None:
    """Global installs abort when pnpm fails."""
    fake_local = patch_local_runner(_reply(1, stderr="404 Not Found"))

    with pytest.raises(InstallFailedError, match="pnpm add -g y@1.0.0 failed"):
        run_global_install("y@1.0.0")

    assert fake_local.commands == [["pnpm", "add", "-g", "y@1.0.0"]]


def test_global_uninstall(
    patch_local_runner: typ.Callable[[RunCallable], FakeLocal],
) -> None:
    """Global removal goes through ``pnpm rm -g``."""
    fake_local = patch_local_runner(_reply(0))

    run_global_uninstall("@me/tool")

    assert fake_local.commands == [["pnpm", "rm", "-g", "@me/tool"]]
