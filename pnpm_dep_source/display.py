"""Describe configured dependencies for the listing and status commands.

Everything here is presentational. :func:`classify` derives the active source
from a specifier string for display only; switching never consults it.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import re
import sys
import typing as typ
from pathlib import Path

from pnpm_dep_source.errors import RemoteResolutionFailedError
from pnpm_dep_source.manifest import (
    DEPENDENCY_GROUPS,
    LOCAL_SPECIFIER,
    get_specifier,
    installed_version,
)
from pnpm_dep_source.remote import (
    GITHUB,
    GITLAB,
    NPM,
    SHORT_SHA_LENGTH,
    local_git_info,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from pnpm_dep_source.config import DependencyConfig
    from pnpm_dep_source.remote import GitInfo, GlobalSource, RemoteResolver

__all__ = [
    "LOCAL",
    "NOT_FOUND",
    "NOT_INSTALLED",
    "UNKNOWN",
    "DependencyView",
    "Palette",
    "RemoteVersions",
    "build_global_view",
    "build_project_view",
    "classify",
    "fetch_remote_versions",
    "render_dependency",
    "status_line",
]

LOGGER = logging.getLogger(__name__)

LOCAL: typ.Final = "local"
UNKNOWN: typ.Final = "unknown"
NOT_FOUND: typ.Final = "(not found)"
NOT_INSTALLED: typ.Final = "(not installed)"

_NPM_SPECIFIER = re.compile(r"^\^?\d|^latest")
_GITHUB_REF = re.compile(r"#([0-9a-f]+)(?:&|$)")
_GITLAB_REF = re.compile(r"/-/archive/([^/]+)/")


def classify(specifier: str) -> str:
    """Return the source kind a specifier points at.

    Examples
    --------
    >>> classify("workspace:*")
    'local'
    >>> classify("https://github.com/org/y#abc1234")
    'github'
    >>> classify("github:org/y#abc1234")
    'github'
    >>> classify("https://gitlab.com/g/r/-/archive/abc/r-abc.tar.gz")
    'gitlab'
    >>> classify("^2.3.1")
    'npm'
    >>> classify("link:../y")
    'unknown'
    """
    if specifier in {LOCAL_SPECIFIER, LOCAL}:
        return LOCAL
    if specifier.startswith("github:") or "github.com/" in specifier:
        return GITHUB
    if "gitlab.com" in specifier and "/-/archive/" in specifier:
        return GITLAB
    if _NPM_SPECIFIER.match(specifier):
        return NPM
    return UNKNOWN


@dc.dataclass(frozen=True)
class Palette:
    """ANSI escape codes, empty when output is not a terminal."""

    reset: str = ""
    bold: str = ""
    cyan: str = ""
    green: str = ""
    yellow: str = ""
    blue: str = ""
    red: str = ""

    @classmethod
    def for_stream(cls, stream: typ.TextIO | None = None) -> Palette:
        """Return a coloured palette when ``stream`` is a TTY."""
        stream = stream or sys.stdout
        if not stream.isatty():
            return cls()
        return cls(
            reset="\x1b[0m",
            bold="\x1b[1m",
            cyan="\x1b[36m",
            green="\x1b[32m",
            yellow="\x1b[33m",
            blue="\x1b[34m",
            red="\x1b[31m",
        )


@dc.dataclass(frozen=True)
class RemoteVersions:
    """Latest versions available from each configured source."""

    npm: str | None = None
    github: str | None = None
    github_version: str | None = None
    gitlab: str | None = None
    gitlab_version: str | None = None


@dc.dataclass(frozen=True)
class DependencyView:
    """Everything the listing shows about one dependency."""

    name: str
    config: DependencyConfig
    current: str
    kind: str
    is_dev: bool = False
    is_global: bool = False
    version: str | None = None
    git_info: GitInfo | None = None
    global_specifier: str | None = None


def build_project_view(
    name: str,
    dep: DependencyConfig,
    project_root: Path,
    manifest: cabc.Mapping[str, typ.Any],
) -> DependencyView:
    """Describe ``name`` as declared in the project manifest."""
    specifier = get_specifier(dict(manifest), name)
    current = specifier if specifier is not None else NOT_FOUND
    kind = classify(specifier) if specifier is not None else UNKNOWN
    dev_group = manifest.get(DEPENDENCY_GROUPS[1])
    is_dev = isinstance(dev_group, dict) and name in dev_group
    version = installed_version(project_root, name) if kind != LOCAL else None
    git_info = (
        local_git_info(Path(project_root) / dep.local_path) if dep.local_path else None
    )
    return DependencyView(
        name=name,
        config=dep,
        current=current,
        kind=kind,
        is_dev=is_dev,
        version=version,
        git_info=git_info,
    )


def build_global_view(
    name: str,
    dep: DependencyConfig,
    sources: cabc.Mapping[str, GlobalSource],
) -> DependencyView:
    """Describe ``name`` from the globally installed package sources.

    ``sources`` comes from :func:`~pnpm_dep_source.remote.fetch_global_install_sources`,
    fetched once per command.
    """
    source = sources.get(dep.npm_name(name)) or sources.get(name)
    git_info = local_git_info(Path(dep.local_path)) if dep.local_path else None
    return DependencyView(
        name=name,
        config=dep,
        current=source.source if source else NOT_INSTALLED,
        kind=source.source if source else UNKNOWN,
        is_global=True,
        git_info=git_info,
        global_specifier=source.specifier if source else None,
    )


def _attempt(lookup: typ.Callable[[], str]) -> str | None:
    try:
        return lookup()
    except RemoteResolutionFailedError as error:
        LOGGER.debug("remote lookup skipped: %s", error)
        return None


def _short(sha: str | None) -> str | None:
    return sha[:SHORT_SHA_LENGTH] if sha else None


def _manifest_version(
    resolver: RemoteResolver, platform: str, repo: str, ref: str
) -> str | None:
    def lookup() -> str:
        version = resolver.fetch_manifest(platform, repo, ref).get("version")
        if not isinstance(version, str):
            raise RemoteResolutionFailedError(platform, repo, ref, "no version")
        return version

    return _attempt(lookup)


def fetch_remote_versions(
    dep: DependencyConfig, name: str, resolver: RemoteResolver
) -> RemoteVersions:
    """Look up the latest npm release and dist-branch heads of ``name``.

    Each lookup that fails is reported as ``None`` instead of aborting.
    """
    branch = dep.branch
    npm_version = _attempt(lambda: resolver.latest_version(dep.npm_name(name)))

    github = github_version = None
    if repo := dep.github:
        github = _short(_attempt(lambda: resolver.resolve_ref(GITHUB, repo, branch)))
        github_version = _manifest_version(resolver, GITHUB, repo, branch)

    gitlab = gitlab_version = None
    if group_repo := dep.gitlab:
        gitlab = _short(
            _attempt(lambda: resolver.resolve_ref(GITLAB, group_repo, branch))
        )
        gitlab_version = _manifest_version(resolver, GITLAB, group_repo, branch)

    return RemoteVersions(
        npm=npm_version,
        github=github,
        github_version=github_version,
        gitlab=gitlab,
        gitlab_version=gitlab_version,
    )


def _git_suffix(info: GitInfo | None, palette: Palette) -> str:
    if info is None:
        return ""
    dirty = f" {palette.red}dirty{palette.reset}" if info.dirty else ""
    return f" {palette.blue}({info.sha}{dirty}{palette.blue}){palette.reset}"


def _active_suffix(view: DependencyView, palette: Palette) -> str:
    if view.kind == LOCAL:
        return ""
    parts: list[str] = []
    if view.is_global and view.global_specifier:
        parts.append(view.global_specifier)
    else:
        pattern = {GITHUB: _GITHUB_REF, GITLAB: _GITLAB_REF}.get(view.kind)
        if pattern is not None and (match := pattern.search(view.current)):
            parts.append(match.group(1)[:SHORT_SHA_LENGTH])
        if view.version:
            parts.append(view.version)
    if not parts:
        return ""
    return f" {palette.blue}({'; '.join(parts)}){palette.reset}"


def _dist_parts(versions: RemoteVersions | None, kind: str) -> list[str]:
    if versions is None:
        return []
    if kind == GITHUB:
        parts = (versions.github, versions.github_version)
    else:
        parts = (versions.gitlab, versions.gitlab_version)
    return [part for part in parts if part]


def render_dependency(
    view: DependencyView,
    versions: RemoteVersions | None = None,
    *,
    palette: Palette | None = None,
) -> list[str]:
    """Render ``view`` as listing lines, marking the active source with ``*``.

    Passing ``versions`` switches to the verbose form, which adds the latest
    available release of every source.
    """
    palette = palette or Palette()
    dep = view.config
    if view.is_global:
        tag = f" {palette.yellow}[global]{palette.reset}"
    elif view.is_dev:
        tag = f" {palette.yellow}[dev]{palette.reset}"
    else:
        tag = ""
    lines = [f"{palette.bold}{palette.cyan}{view.name}{palette.reset}{tag}:"]

    def line(label: str, active: bool, value: str, suffix: str = "") -> None:
        prefix = f"{palette.green}*{palette.reset} " if active else "  "
        shown = f"{palette.green}{label}{palette.reset}" if active else label
        lines.append(f"{prefix}{shown}: {value}{suffix}")

    if dep.local_path:
        git_suffix = _git_suffix(view.git_info, palette)
        line("Local", view.kind == LOCAL, dep.local_path, git_suffix)

    hosts = (
        ("GitHub", GITHUB, dep.github, _dist_parts(versions, GITHUB)),
        ("GitLab", GITLAB, dep.gitlab, _dist_parts(versions, GITLAB)),
    )
    for label, kind, repo, dist_parts in hosts:
        if not repo:
            continue
        active = view.kind == kind
        suffix = _active_suffix(view, palette) if active else ""
        value = repo
        if kind == GITHUB and dep.subdir:
            value = f"{repo} {palette.cyan}[{dep.subdir}]{palette.reset}"
        dist_text = f"dist@{'; '.join(dist_parts)}"
        if active and dist_parts and not all(part in suffix for part in dist_parts):
            line(label, True, value, suffix)
            lines.append(f"      {palette.blue}{dist_text}{palette.reset}")
            continue
        if not active and dist_parts:
            suffix = f"{suffix} {palette.blue}({dist_text}){palette.reset}"
        line(label, active, value, suffix)

    active = view.kind == NPM
    latest = versions.npm if versions else None
    # Verbose listings hide an inactive npm source with nothing published.
    if (dep.npm or active) and (versions is None or active or latest):
        suffix = _active_suffix(view, palette) if active else ""
        if latest:
            suffix = f"{suffix} {palette.blue}(latest: {latest}){palette.reset}"
        line("NPM", active, dep.npm_name(view.name), suffix)
    return lines


def status_line(view: DependencyView) -> str:
    """Return the one-line summary printed by ``status``."""
    if view.is_global:
        if view.global_specifier is None:
            return f"{view.name}: {NOT_INSTALLED}"
        return f"{view.name}: {view.current} ({view.global_specifier})"
    return f"{view.name}: {view.kind} ({view.current})"
