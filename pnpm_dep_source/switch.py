"""Switch a dependency between local, GitHub, GitLab and npm sources.

Deciding what a switch does is separate from doing it. The ``plan_*``
functions are pure: given a dependency's configuration (and, for remote
sources, an already resolved ref or version) they return a
:class:`SwitchPlan`. :func:`apply_plan` then performs the plan in a fixed
order:

1. the manifest specifier (and, leaving local, the ``pnpm.overrides`` entry);
2. the workspace membership list;
3. the bundler exclusion list.

The manifest write comes first so the new source is established before any
trace of the previous one is cleaned up. Each later step is idempotent, so an
interrupted switch can simply be repeated.

Switching to local adds the dependency to the workspace and bundler
exclusions; every other switch removes it. A round trip therefore leaves
``package.json``, ``pnpm-workspace.yaml`` and the Vite config as they were.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import logging
import typing as typ

from pnpm_dep_source.bundler import toggle_exclusion
from pnpm_dep_source.errors import (
    AmbiguousSelectionError,
    ConflictingFlagsError,
    MissingSourceConfigError,
)
from pnpm_dep_source.manifest import (
    LOCAL_SPECIFIER,
    get_specifier,
    load_manifest,
    remove_override,
    save_manifest,
    set_specifier,
)
from pnpm_dep_source.remote import GITHUB, GITLAB
from pnpm_dep_source.workspace import (
    SELF_MEMBER,
    holds_other_content,
    load_members,
    save_members,
)

if typ.TYPE_CHECKING:
    from pnpm_dep_source.config import DependencyConfig
    from pnpm_dep_source.project import ProjectContext
    from pnpm_dep_source.remote import RemoteResolver

__all__ = [
    "Membership",
    "Source",
    "SwitchPlan",
    "add_member",
    "apply_plan",
    "cleanup_references",
    "git_platform",
    "github_specifier",
    "gitlab_specifier",
    "global_target",
    "npm_specifier",
    "plan_github",
    "plan_gitlab",
    "plan_local",
    "plan_npm",
    "prepare_git",
    "prepare_github",
    "prepare_gitlab",
    "prepare_npm",
    "remove_member",
    "resolve_remote_ref",
    "switch_to_git",
    "switch_to_github",
    "switch_to_gitlab",
    "switch_to_local",
    "switch_to_npm",
]

LOGGER = logging.getLogger(__name__)


class Source(enum.StrEnum):
    """Where a dependency is fetched from."""

    LOCAL = "local"
    GITHUB = "github"
    GITLAB = "gitlab"
    NPM = "npm"


class Membership(enum.Enum):
    """Change to the workspace member list."""

    ADD = "add"
    REMOVE = "remove"


@dc.dataclass(frozen=True)
class SwitchPlan:
    """Every file change a switch will make.

    Attributes
    ----------
    name : str
        Manifest key of the dependency.
    source : Source
        Target source.
    specifier : str
        New manifest specifier.
    membership : Membership | None
        Workspace member change; ``None`` when no local path is configured.
    remove_override : bool
        Drop the dependency from ``pnpm.overrides``.
    exclude : bool
        ``True`` adds the dependency to the bundler exclusions, ``False``
        removes it.
    ref : str | None
        Resolved git ref or npm version, for messages and global installs.
    """

    name: str
    source: Source
    specifier: str
    membership: Membership | None
    remove_override: bool
    exclude: bool
    ref: str | None = None


def github_specifier(repo: str, ref: str, subdir: str | None = None) -> str:
    """Return a pnpm specifier pinning ``repo`` at ``ref`` on GitHub.

    Examples
    --------
    >>> github_specifier("org/y", "main")
    'https://github.com/org/y#main'
    >>> github_specifier("org/mono", "abc1234", "/packages/y")
    'https://github.com/org/mono#abc1234&path:/packages/y'
    """
    specifier = f"https://github.com/{repo}#{ref}"
    if subdir:
        specifier = f"{specifier}&path:{subdir}"
    return specifier


def gitlab_specifier(repo: str, ref: str) -> str:
    """Return a tarball URL for ``repo`` at ``ref`` on GitLab.

    pnpm has no GitLab protocol, so the archive download URL is used. The
    archive name repeats the last path segment of the repository.

    Examples
    --------
    >>> gitlab_specifier("group/sub/repo-name", "abc1234")
    'https://gitlab.com/group/sub/repo-name/-/archive/abc1234/repo-name-abc1234.tar.gz'
    """
    basename = repo.rstrip("/").rsplit("/", 1)[-1]
    return f"https://gitlab.com/{repo}/-/archive/{ref}/{basename}-{ref}.tar.gz"


def npm_specifier(version: str) -> str:
    """Return a caret range for ``version``."""
    return f"^{version}"


def _cleanup_membership(dep: DependencyConfig) -> Membership | None:
    return Membership.REMOVE if dep.local_path else None


def plan_local(name: str, dep: DependencyConfig) -> SwitchPlan:
    """Plan a switch to the local checkout.

    Raises
    ------
    MissingSourceConfigError
        Raised when no local path is configured.
    """
    if not dep.local_path:
        message = (
            f"No local path configured for {name}. "
            f'Use "pds set {name} -l <path>" to set one.'
        )
        raise MissingSourceConfigError(message)
    return SwitchPlan(
        name=name,
        source=Source.LOCAL,
        specifier=LOCAL_SPECIFIER,
        membership=Membership.ADD,
        remove_override=False,
        exclude=True,
    )


def _require_repo(name: str, dep: DependencyConfig, platform: str) -> str:
    repo = dep.github if platform == GITHUB else dep.gitlab
    if not repo:
        label = "GitHub" if platform == GITHUB else "GitLab"
        flag = "-H" if platform == GITHUB else "-L"
        message = (
            f"No {label} repo configured for {name}. "
            f'Use "pds set {name} {flag} <repo>" to set one.'
        )
        raise MissingSourceConfigError(message)
    return repo


def plan_github(name: str, dep: DependencyConfig, ref: str) -> SwitchPlan:
    """Plan a switch to GitHub pinned at the already resolved ``ref``."""
    repo = _require_repo(name, dep, GITHUB)
    return SwitchPlan(
        name=name,
        source=Source.GITHUB,
        specifier=github_specifier(repo, ref, dep.subdir),
        membership=_cleanup_membership(dep),
        remove_override=True,
        exclude=False,
        ref=ref,
    )


def plan_gitlab(name: str, dep: DependencyConfig, ref: str) -> SwitchPlan:
    """Plan a switch to a GitLab archive at the already resolved ``ref``."""
    repo = _require_repo(name, dep, GITLAB)
    return SwitchPlan(
        name=name,
        source=Source.GITLAB,
        specifier=gitlab_specifier(repo, ref),
        membership=_cleanup_membership(dep),
        remove_override=True,
        exclude=False,
        ref=ref,
    )


def plan_npm(name: str, dep: DependencyConfig, version: str) -> SwitchPlan:
    """Plan a switch to the published ``version``."""
    return SwitchPlan(
        name=name,
        source=Source.NPM,
        specifier=npm_specifier(version),
        membership=_cleanup_membership(dep),
        remove_override=True,
        exclude=False,
        ref=version,
    )


def resolve_remote_ref(
    platform: str,
    repo: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> str:
    """Pick the ref a remote switch pins to.

    A raw ref is used verbatim. Otherwise ``ref`` (or the dist branch when it
    is omitted) is resolved to a commit SHA through ``resolver``.

    Raises
    ------
    ConflictingFlagsError
        Raised when both ``ref`` and ``raw_ref`` are given.
    RemoteResolutionFailedError
        Propagated from ``resolver`` when the lookup fails.
    """
    if ref and raw_ref:
        message = "Cannot use both -r/--ref and -R/--raw-ref"
        raise ConflictingFlagsError(message)
    if raw_ref:
        return raw_ref
    return resolver.resolve_ref(platform, repo, ref or dep.branch)


def prepare_github(
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Resolve the ref and plan a GitHub switch without touching any file."""
    repo = _require_repo(name, dep, GITHUB)
    resolved = resolve_remote_ref(GITHUB, repo, dep, resolver, ref=ref, raw_ref=raw_ref)
    return plan_github(name, dep, resolved)


def prepare_gitlab(
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Resolve the ref and plan a GitLab switch without touching any file."""
    repo = _require_repo(name, dep, GITLAB)
    resolved = resolve_remote_ref(GITLAB, repo, dep, resolver, ref=ref, raw_ref=raw_ref)
    return plan_gitlab(name, dep, resolved)


def git_platform(name: str, dep: DependencyConfig) -> str:
    """Return the only configured git host for ``name``.

    Raises
    ------
    MissingSourceConfigError
        Raised when neither GitHub nor GitLab is configured.
    AmbiguousSelectionError
        Raised when both are configured.
    """
    if dep.github and dep.gitlab:
        message = (
            f"Both GitHub and GitLab configured for {name}. "
            'Use "pds gh" or "pds gl" explicitly'
        )
        raise AmbiguousSelectionError(message, [GITHUB, GITLAB])
    if dep.github:
        return GITHUB
    if dep.gitlab:
        return GITLAB
    message = (
        f"No GitHub or GitLab repo configured for {name}. "
        'Use "pds set" with -H or -L'
    )
    raise MissingSourceConfigError(message)


def prepare_git(
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Plan a switch to whichever git host is configured."""
    if ref and raw_ref:
        message = "Cannot use both -r/--ref and -R/--raw-ref"
        raise ConflictingFlagsError(message)
    if git_platform(name, dep) == GITHUB:
        return prepare_github(name, dep, resolver, ref=ref, raw_ref=raw_ref)
    return prepare_gitlab(name, dep, resolver, ref=ref, raw_ref=raw_ref)


def prepare_npm(
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    version: str | None = None,
) -> SwitchPlan:
    """Plan a switch to ``version``, or to the latest published release."""
    resolved = version or resolver.latest_version(dep.npm_name(name))
    return plan_npm(name, dep, resolved)


def _member_candidates(context: ProjectContext, local_path: str) -> set[str]:
    return {context.member_path(local_path), local_path}


def add_member(context: ProjectContext, local_path: str) -> None:
    """List ``local_path`` in the workspace file of ``context``.

    At the project's own root the self entry ``.`` is kept first. An
    ancestor (monorepo) workspace never gets ``.`` added, since it would
    point at the monorepo root.
    """
    root = context.membership_root
    member = context.member_path(local_path)
    current = load_members(root) or []
    updated = list(current)
    if context.at_project_root and SELF_MEMBER not in updated:
        updated.insert(0, SELF_MEMBER)
    if not _member_candidates(context, local_path) & set(updated):
        updated.append(member)
    if updated != current:
        save_members(root, updated)
        LOGGER.debug("added %s to workspace at %s", member, root)


def remove_member(context: ProjectContext, local_path: str) -> None:
    """Drop ``local_path`` from the workspace file of ``context``.

    At the project's own root the file is deleted once only ``.`` would be
    left. When the file also holds other keys, the block is kept with just
    ``.`` so a later member lands back in the same place.
    An ancestor workspace file is never deleted.
    """
    root = context.membership_root
    current = load_members(root)
    if not current:
        return
    candidates = _member_candidates(context, local_path)
    remaining = [member for member in current if member not in candidates]
    if remaining == current:
        return

    only_self = all(member == SELF_MEMBER for member in remaining)
    if context.at_project_root and only_self and not holds_other_content(root):
        save_members(root, None)
    else:
        save_members(root, remaining, allow_delete=False)
    LOGGER.debug("removed %s from workspace at %s", local_path, root)


def apply_plan(
    context: ProjectContext, plan: SwitchPlan, dep: DependencyConfig
) -> SwitchPlan:
    """Write ``plan`` to the project files and return it.

    Raises
    ------
    DependencyNotDeclaredError
        Raised when ``package.json`` does not declare the dependency.
    """
    manifest = load_manifest(context.project_root)
    changed = get_specifier(manifest, plan.name) != plan.specifier
    set_specifier(manifest, plan.name, plan.specifier)
    if plan.remove_override and remove_override(manifest, plan.name):
        changed = True
    if changed:
        save_manifest(context.project_root, manifest)

    if dep.local_path and plan.membership is Membership.ADD:
        add_member(context, dep.local_path)
    elif dep.local_path and plan.membership is Membership.REMOVE:
        remove_member(context, dep.local_path)

    toggle_exclusion(context.project_root, plan.name, exclude=plan.exclude)
    return plan


def cleanup_references(
    context: ProjectContext, name: str, dep: DependencyConfig
) -> None:
    """Remove workspace and bundler traces of a local ``name``."""
    if dep.local_path:
        remove_member(context, dep.local_path)
    toggle_exclusion(context.project_root, name, exclude=False)


def switch_to_local(
    context: ProjectContext, name: str, dep: DependencyConfig
) -> SwitchPlan:
    """Point ``name`` at its local checkout."""
    return apply_plan(context, plan_local(name, dep), dep)


def switch_to_github(
    context: ProjectContext,
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Pin ``name`` to a GitHub commit."""
    plan = prepare_github(name, dep, resolver, ref=ref, raw_ref=raw_ref)
    return apply_plan(context, plan, dep)


def switch_to_gitlab(
    context: ProjectContext,
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Pin ``name`` to a GitLab archive."""
    plan = prepare_gitlab(name, dep, resolver, ref=ref, raw_ref=raw_ref)
    return apply_plan(context, plan, dep)


def switch_to_git(
    context: ProjectContext,
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    ref: str | None = None,
    raw_ref: str | None = None,
) -> SwitchPlan:
    """Pin ``name`` to whichever git host is configured."""
    plan = prepare_git(name, dep, resolver, ref=ref, raw_ref=raw_ref)
    return apply_plan(context, plan, dep)


def switch_to_npm(
    context: ProjectContext,
    name: str,
    dep: DependencyConfig,
    resolver: RemoteResolver,
    *,
    version: str | None = None,
) -> SwitchPlan:
    """Point ``name`` at a published npm release."""
    plan = prepare_npm(name, dep, resolver, version=version)
    return apply_plan(context, plan, dep)


def global_target(plan: SwitchPlan, dep: DependencyConfig) -> str:
    """Return the ``pnpm add -g`` argument for ``plan``.

    Examples
    --------
    >>> from pnpm_dep_source.config import DependencyConfig
    >>> dep = DependencyConfig(npm="use-kbd")
    >>> global_target(plan_npm("use-kbd", dep, "1.2.0"), dep)
    'use-kbd@1.2.0'
    """
    if plan.source is Source.LOCAL:
        return f"file:{dep.local_path}"
    if plan.source is Source.NPM:
        return f"{dep.npm_name(plan.name)}@{plan.ref}"
    return plan.specifier
