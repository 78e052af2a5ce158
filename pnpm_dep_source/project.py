"""Locate the project and workspace roots a command operates on."""

from __future__ import annotations

import dataclasses as dc
import os
import typing as typ
from pathlib import Path

from pnpm_dep_source.errors import NotFoundError
from pnpm_dep_source.manifest import MANIFEST_FILE
from pnpm_dep_source.workspace import WORKSPACE_FILE

__all__ = [
    "JS_PROJECT_SUBDIRS",
    "ProjectContext",
    "find_project_root",
    "find_workspace_root",
    "load_project_context",
    "suggest_project_dirs",
    "workspace_member_path",
]

# Conventional locations of a JS project inside a mixed-language repository.
JS_PROJECT_SUBDIRS: typ.Final[tuple[str, ...]] = (
    "www",
    "web",
    "app",
    "frontend",
    "client",
    "packages",
    "src",
)


@dc.dataclass(frozen=True)
class ProjectContext:
    """Roots of the project being edited.

    ``workspace_root`` is set when an ancestor directory already holds a
    ``pnpm-workspace.yaml`` (a monorepo); membership edits then happen there
    instead of in the project root.
    """

    project_root: Path
    workspace_root: Path | None = None

    @property
    def membership_root(self) -> Path:
        """Return the directory whose workspace file lists local members."""
        return self.workspace_root or self.project_root

    @property
    def at_project_root(self) -> bool:
        """Return ``True`` when membership is managed in the project itself."""
        return self.workspace_root is None

    def member_path(self, local_path: str) -> str:
        """Return ``local_path`` relative to :attr:`membership_root`."""
        return workspace_member_path(
            self.project_root, local_path, self.workspace_root
        )


def suggest_project_dirs(base: Path) -> list[str]:
    """List sub-directories of ``base`` that hold a ``package.json``."""
    base = Path(base)
    suggestions = [
        name for name in JS_PROJECT_SUBDIRS if (base / name / MANIFEST_FILE).exists()
    ]
    if base.is_dir():
        for entry in sorted(base.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            if entry.name in suggestions:
                continue
            if (entry / MANIFEST_FILE).exists():
                suggestions.append(entry.name)
    return suggestions


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from ``start`` to the nearest directory with a ``package.json``.

    The walk stops at the boundary of the git repository it started in, so a
    nested checkout never resolves to the manifest of an enclosing repo.

    Raises
    ------
    NotFoundError
        Raised when no manifest is found. The message lists sub-directories of
        ``start`` that contain JS projects.
    """
    origin = Path(start or Path.cwd()).resolve()
    directory = origin
    found_git = False
    while directory != directory.parent:
        if (directory / ".git").exists():
            found_git = True
        if (directory / MANIFEST_FILE).exists():
            return directory
        parent = directory.parent
        if found_git and (parent / ".git").exists():
            break
        directory = parent

    message = f"No {MANIFEST_FILE} found in current directory or any parent."
    if suggestions := suggest_project_dirs(origin):
        hints = "\n".join(f"  cd {name}" for name in suggestions)
        message = f"{message}\n\nFound JS projects in subdirectories:\n{hints}"
    raise NotFoundError(message)


def find_workspace_root(project_root: Path) -> Path | None:
    """Return the nearest strict ancestor holding ``pnpm-workspace.yaml``."""
    directory = Path(project_root).resolve().parent
    while directory != directory.parent:
        if (directory / WORKSPACE_FILE).exists():
            return directory
        directory = directory.parent
    return None


def workspace_member_path(
    project_root: Path, local_path: str, workspace_root: Path | None = None
) -> str:
    """Return the workspace-file entry for a dependency checked out at ``local_path``.

    Examples
    --------
    >>> workspace_member_path(Path("/repo/app"), "../lib", Path("/repo"))
    'lib'
    >>> workspace_member_path(Path("/repo/app"), "../lib")
    '../lib'
    """
    root = Path(workspace_root or project_root)
    target = Path(os.path.normpath(Path(project_root) / local_path))
    return Path(os.path.relpath(target, os.path.normpath(root))).as_posix()


def load_project_context(start: Path | None = None) -> ProjectContext:
    """Resolve the project root and any enclosing workspace root."""
    project_root = find_project_root(start)
    return ProjectContext(
        project_root=project_root,
        workspace_root=find_workspace_root(project_root),
    )
