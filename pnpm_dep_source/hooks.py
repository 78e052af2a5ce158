"""Guard commits and pushes against dependencies left on their local checkout.

``pds hooks install`` points git's global ``core.hooksPath`` at a directory
under the pds config dir holding ``pre-commit`` and ``pre-push`` scripts.
Each script runs ``pds check --hook <type>``, then chains to any hooks path
configured before pds took over (remembered in ``hooks.json``) and to the
repository's own ``.git/hooks``, which git skips while ``core.hooksPath`` is
set.

Which hook actually enforces the check is chosen per project by ``checkOn``.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import sys
import typing as typ
from pathlib import Path

from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from pnpm_dep_source.config import (
    CheckPolicy,
    ConfigDocument,
    global_config_dir,
    load_config,
    resolve_config_path,
)
from pnpm_dep_source.errors import DepSourceError, NotFoundError
from pnpm_dep_source.manifest import LOCAL_SPECIFIER, get_specifier, load_manifest
from pnpm_dep_source.project import find_project_root
from pnpm_dep_source.remote import run_command
from pnpm_dep_source.serialise import _read_json_document, _write_json_with_newline

__all__ = [
    "HOOK_TYPES",
    "HooksStatus",
    "generate_hook",
    "hooks_config_path",
    "hooks_dir",
    "hooks_status",
    "install_hooks",
    "local_dependencies",
    "run_check",
    "should_check",
    "uninstall_hooks",
]

LOGGER = logging.getLogger(__name__)

HOOK_TYPES: typ.Final[tuple[str, ...]] = (
    CheckPolicy.PRE_COMMIT.value,
    CheckPolicy.PRE_PUSH.value,
)

_PREVIOUS_KEY: typ.Final = "previousHooksPath"


def hooks_dir() -> Path:
    """Return the directory installed as the global ``core.hooksPath``."""
    return global_config_dir() / "hooks"


def hooks_config_path() -> Path:
    """Return the file remembering the hooks path pds replaced."""
    return global_config_dir() / "hooks.json"


def _load_previous_hooks_path() -> str | None:
    path = hooks_config_path()
    if not path.exists():
        return None
    previous = _read_json_document(path).get(_PREVIOUS_KEY)
    return previous if isinstance(previous, str) and previous else None


def _save_previous_hooks_path(previous: str | None) -> None:
    path = hooks_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {_PREVIOUS_KEY: previous} if previous else {}
    _write_json_with_newline(document, path)


def _git_config(*args: str) -> tuple[int, str]:
    command = ["git", "config", "--global", *args]
    try:
        result = run_command(command)
    except CommandNotFound as error:
        message = "git not found on PATH; unable to manage hooks"
        raise SystemExit(message) from error
    except ProcessTimedOut as error:
        message = f"{' '.join(command)} timed out"
        raise SystemExit(message) from error
    return result.return_code, result.stdout.strip()


def _current_hooks_path() -> str | None:
    # git exits 1 when the key is unset.
    return_code, value = _git_config("core.hooksPath")
    return value if return_code == 0 and value else None


def _set_hooks_path(value: str) -> None:
    return_code, _ = _git_config("core.hooksPath", value)
    if return_code != 0:
        message = f"failed to set core.hooksPath to {value}"
        raise SystemExit(message)


def _unset_hooks_path() -> None:
    return_code, _ = _git_config("--unset", "core.hooksPath")
    if return_code not in {0, 5}:
        message = "failed to unset core.hooksPath"
        raise SystemExit(message)


def generate_hook(hook_type: str, previous_hooks_path: str | None = None) -> str:
    """Return the shell script installed as the ``hook_type`` hook."""
    if previous_hooks_path:
        previous_section = (
            f'if [ -x "{previous_hooks_path}/{hook_type}" ]; then\n'
            f'  "{previous_hooks_path}/{hook_type}" "$@" || exit 1\n'
            "fi"
        )
    else:
        previous_section = "# (no previous core.hooksPath)"

    return f"""#!/bin/sh
# pds {hook_type} hook - checks for local dependencies
# Installed by: pds hooks install

# 1. Run pds check (honours the project's checkOn setting)
if command -v pds >/dev/null 2>&1; then
  pds check --hook {hook_type} || exit 1
else
  echo "Warning: pds not found in PATH, skipping local dependency check"
fi

# 2. Chain to previous global hooks (if any were configured before pds)
{previous_section}

# 3. Chain to local .git/hooks (which Git ignores when core.hooksPath is set)
if [ -x .git/hooks/{hook_type} ]; then
  .git/hooks/{hook_type} "$@" || exit 1
fi
"""


def install_hooks(*, force: bool = False) -> Path:
    """Install the global hooks and return their directory.

    Raises
    ------
    DepSourceError
        Raised when ``core.hooksPath`` already points elsewhere and ``force``
        is not set.
    """
    directory = hooks_dir()
    current = _current_hooks_path()
    previous: str | None = None

    if current and Path(current) != directory:
        if not force:
            message = (
                f"core.hooksPath is already set to: {current}\n"
                "Use --force to chain to existing hooks."
            )
            raise DepSourceError(message)
        previous = current
        print(f"Chaining to existing hooks: {current}")
    elif current:
        previous = _load_previous_hooks_path()

    directory.mkdir(parents=True, exist_ok=True)
    _save_previous_hooks_path(previous)
    for hook_type in HOOK_TYPES:
        hook_path = directory / hook_type
        hook_path.write_text(generate_hook(hook_type, previous), encoding="utf-8")
        hook_path.chmod(0o755)
    _set_hooks_path(str(directory))

    print("Installed global pre-commit and pre-push hooks.")
    print(f"  Hooks directory: {directory}")
    if previous:
        print(f"  Chaining to: {previous}")
    print("  Also chains to local .git/hooks if present")
    return directory


def uninstall_hooks() -> bool:
    """Remove the global hooks, restoring any hooks path they replaced.

    Returns ``False`` without changing anything when pds does not own the
    current ``core.hooksPath``.
    """
    directory = hooks_dir()
    current = _current_hooks_path()
    if current is None or Path(current) != directory:
        if current:
            print(f"core.hooksPath is set to a different directory: {current}")
            print("Not modifying.")
        else:
            print("No global hooks path configured.")
        return False

    previous = _load_previous_hooks_path()
    if previous:
        _set_hooks_path(previous)
        print(f"Restored previous core.hooksPath: {previous}")
    else:
        _unset_hooks_path()
        print("Unset core.hooksPath")

    for hook_type in HOOK_TYPES:
        (directory / hook_type).unlink(missing_ok=True)
    hooks_config_path().unlink(missing_ok=True)
    print("Removed pds hooks.")
    return True


@dc.dataclass(frozen=True)
class HooksStatus:
    """Installation state of the global hooks."""

    hooks_path: str | None
    managed: bool
    present: tuple[str, ...] = ()
    previous: str | None = None

    def describe(self) -> list[str]:
        """Return the report printed by ``pds hooks status``."""
        if self.hooks_path is None:
            return ["Status: Not installed", "  No global core.hooksPath configured"]
        if not self.managed:
            return [
                "Status: Different hooks path configured",
                f"  core.hooksPath: {self.hooks_path}",
                "  (not managed by pds)",
            ]
        lines = ["Status: Installed", f"  core.hooksPath: {self.hooks_path}"]
        for hook_type in HOOK_TYPES:
            state = "present" if hook_type in self.present else "missing"
            lines.append(f"  {hook_type} hook: {state}")
        if self.previous:
            lines.append(f"  chaining to: {self.previous}")
        lines.append("  chains to local .git/hooks if present")
        return lines


def hooks_status() -> HooksStatus:
    """Inspect the global ``core.hooksPath`` and the installed scripts."""
    directory = hooks_dir()
    current = _current_hooks_path()
    if current is None:
        return HooksStatus(hooks_path=None, managed=False)
    if Path(current) != directory:
        return HooksStatus(hooks_path=current, managed=False)
    present = tuple(name for name in HOOK_TYPES if (directory / name).exists())
    return HooksStatus(
        hooks_path=current,
        managed=True,
        present=present,
        previous=_load_previous_hooks_path(),
    )


def should_check(document: ConfigDocument, hook: str | None = None) -> bool:
    """Return ``True`` when the check applies.

    A manual check (``hook`` is ``None``) always runs unless the project
    disabled checking. A hook-triggered check runs only for the hook named by
    the project's policy.

    Examples
    --------
    >>> should_check(ConfigDocument(), "pre-push")
    True
    >>> should_check(ConfigDocument(), "pre-commit")
    False
    >>> should_check(ConfigDocument(skip_check=True))
    False
    """
    policy = document.check_policy
    if policy is CheckPolicy.NONE:
        return False
    return hook is None or hook == policy.value


def local_dependencies(project_root: Path, document: ConfigDocument) -> list[str]:
    """Return configured dependencies currently set to ``workspace:*``."""
    manifest = load_manifest(project_root)
    return [
        name
        for name in document.dependencies
        if get_specifier(manifest, name) == LOCAL_SPECIFIER
    ]


def run_check(
    start: Path | None = None, *, hook: str | None = None, quiet: bool = False
) -> int:
    """Check the project at ``start`` and return the process exit code."""

    def say(text: str) -> None:
        if not quiet:
            print(text)

    try:
        project_root = find_project_root(start)
    except NotFoundError:
        say("Not in a JS project, skipping check.")
        return 0

    if not resolve_config_path(project_root).exists():
        return 0

    document = load_config(project_root)
    if not should_check(document, hook):
        if document.check_policy is CheckPolicy.NONE:
            say("Check disabled for this project (checkOn: none).")
        else:
            say(f"Check runs on {document.check_policy.value}; skipping for {hook}.")
        return 0

    names = local_dependencies(project_root, document)
    if not names:
        say("No local dependencies found.")
        return 0

    if not quiet:
        report = [
            "Error: The following dependencies are set to local:",
            *(f"  - {name}" for name in names),
            "",
            "Switch them before committing:",
            "  pds gh <dep>   # Switch to GitHub",
            "  pds gl <dep>   # Switch to GitLab",
            "  pds npm <dep>  # Switch to NPM",
            "",
            "Or bypass with: git commit --no-verify",
        ]
        print("\n".join(report), file=sys.stderr)
    LOGGER.debug("local dependencies found: %s", ", ".join(names))
    return 1
