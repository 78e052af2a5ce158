"""Run ``pnpm`` after a switch so ``node_modules`` follows the manifest."""

from __future__ import annotations

import logging
import os
import typing as typ

from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from pnpm_dep_source.errors import InstallFailedError
from pnpm_dep_source.remote import run_command

if typ.TYPE_CHECKING:
    from pathlib import Path

__all__ = [
    "DEFAULT_INSTALL_TIMEOUT_SECS",
    "run_global_install",
    "run_global_uninstall",
    "run_install",
]

LOGGER = logging.getLogger(__name__)

# Installs download packages, so they get a longer budget than API lookups.
DEFAULT_INSTALL_TIMEOUT_SECS: typ.Final = 600


def _install_timeout() -> int | None:
    # An explicit PDS_TIMEOUT_SECS applies to installs too.
    return None if "PDS_TIMEOUT_SECS" in os.environ else DEFAULT_INSTALL_TIMEOUT_SECS


def run_install(root: Path) -> bool:
    """Run ``pnpm install`` in ``root``.

    A failed install is reported as a warning and ``False``; the manifest and
    workspace edits that preceded it are kept.
    """
    print(f"Running pnpm install in {root}...")
    try:
        result = run_command(
            ["pnpm", "install"],
            timeout_secs=_install_timeout(),
            cwd=root,
            stream=True,
        )
    except CommandNotFound:
        LOGGER.warning("pnpm not found on PATH; run pnpm install manually")
        return False
    except ProcessTimedOut:
        LOGGER.warning("pnpm install timed out; run it manually")
        return False

    if result.return_code != 0:
        LOGGER.warning(
            "pnpm install failed with exit code %s; configuration changes were kept",
            result.return_code,
        )
        return False
    return True


def _run_global(command: list[str], target: str) -> None:
    try:
        result = run_command(command, timeout_secs=_install_timeout(), stream=True)
    except CommandNotFound as error:
        message = "pnpm not found on PATH"
        raise InstallFailedError(message) from error
    except ProcessTimedOut as error:
        message = f"{' '.join(command)} timed out"
        raise InstallFailedError(message) from error

    if result.return_code != 0:
        detail = result.diagnostics
        suffix = f": {detail}" if detail else ""
        message = (
            f"{' '.join(command[:3])} {target} failed with exit code "
            f"{result.return_code}{suffix}"
        )
        raise InstallFailedError(message)


def run_global_install(target: str) -> None:
    """Install ``target`` globally with ``pnpm add -g``.

    ``target`` is a ``file:`` path, a git specifier, or ``name@version``.

    Raises
    ------
    InstallFailedError
        Raised when ``pnpm`` is missing, times out or exits non-zero.
    """
    print(f"Installing globally: {target}")
    _run_global(["pnpm", "add", "-g", target], target)


def run_global_uninstall(package: str) -> None:
    """Remove a globally installed ``package`` with ``pnpm rm -g``."""
    print(f"Removing {package} globally...")
    _run_global(["pnpm", "rm", "-g", package], package)
