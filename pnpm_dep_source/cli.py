"""Command-line interface for switching pnpm dependency sources.

Examples
--------
Track a sibling checkout and point the project at it::

    pds init ../use-kbd

Flip back to the dist branch on GitHub, then to the latest npm release::

    pds gh
    pds npm

Project mode edits ``package.json``, ``pnpm-workspace.yaml`` and the Vite
config of the enclosing project. With ``-g/--global`` the user-global config
is used instead and each switch becomes a ``pnpm add -g``.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import os
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from pnpm_dep_source import __version__
from pnpm_dep_source.config import (
    DEFAULT_DIST_BRANCH,
    ConfigDocument,
    DependencyConfig,
    find_dependency,
    load_config,
    load_global_config,
    save_config,
    save_global_config,
    split_query,
)
from pnpm_dep_source.display import (
    Palette,
    build_global_view,
    build_project_view,
    fetch_remote_versions,
    render_dependency,
    status_line,
)
from pnpm_dep_source.errors import ConflictingFlagsError, NotFoundError
from pnpm_dep_source.hooks import (
    hooks_status,
    install_hooks,
    run_check,
    uninstall_hooks,
)
from pnpm_dep_source.install import (
    run_global_install,
    run_global_uninstall,
    run_install,
)
from pnpm_dep_source.manifest import (
    add_dependency,
    has_dependency,
    load_manifest,
    remove_dependency,
    remove_override,
    save_manifest,
)
from pnpm_dep_source.project import load_project_context
from pnpm_dep_source.remote import (
    CliRemoteResolver,
    fetch_global_install_sources,
    is_repo_url,
    local_package_info,
    remote_package_info,
)
from pnpm_dep_source.switch import (
    Source,
    SwitchPlan,
    apply_plan,
    cleanup_references,
    global_target,
    plan_local,
    prepare_git,
    prepare_github,
    prepare_gitlab,
    prepare_npm,
)

if typ.TYPE_CHECKING:
    from pnpm_dep_source.display import DependencyView
    from pnpm_dep_source.project import ProjectContext
    from pnpm_dep_source.remote import PackageInfo, RemoteResolver

LOGGER = logging.getLogger(__name__)

PACKAGE_NAME: typ.Final = "pnpm-dep-source"

CHECKOUT_DIR: typ.Final = Path(__file__).resolve().parent.parent

SHELL_ALIASES: typ.Final = """\
# pds shell aliases
# Add to your shell rc file: eval "$(pds shell-integration)"

alias pdsg='pds g'        # git (auto-detect GitHub/GitLab)
alias pdi='pds init'      # init
alias pdgi='pds init -g'  # global init
alias pdl='pds l'         # local
alias pdgh='pds gh'       # github
alias pdgl='pds gl'       # gitlab
alias pdsn='pds n'        # npm
alias pdsv='pds v'        # versions
alias pdss='pds s'        # status
alias pdsc='pds check'    # check for local deps
alias pddi='pds di'       # deinit (stop tracking, keep in package.json)
alias pdr='pds rm'        # remove (from pds config and package.json)
alias pdgls='pds ls -g'   # global list
alias pdgr='pds rm -g'    # global remove
"""

_SOURCE_LABELS: typ.Final[dict[Source, str]] = {
    Source.LOCAL: "local",
    Source.GITHUB: "GitHub",
    Source.GITLAB: "GitLab",
    Source.NPM: "NPM",
}

GlobalFlag = typ.Annotated[
    bool,
    Parameter(
        name=["--global", "-g"],
        negative=(),
        help="Use the global config for CLI tools installed with pnpm add -g.",
    ),
]
InstallFlag = typ.Annotated[
    bool,
    Parameter(
        env_var="PDS_INSTALL",
        help="Run pnpm install after changing package.json.",
    ),
]
DryRunFlag = typ.Annotated[
    bool,
    Parameter(
        name=["--dry-run", "-n"],
        negative=(),
        help="Show what would be installed without making changes.",
    ),
]
RefOption = typ.Annotated[
    str | None,
    Parameter(name=["--ref", "-r"], help="Git ref, resolved to a commit SHA."),
]
RawRefOption = typ.Annotated[
    str | None,
    Parameter(
        name=["--raw-ref", "-R"],
        help="Git ref used as-is (pin to a branch or tag name).",
    ),
]

app = App(
    name="pds",
    help="Switch pnpm dependencies between local, GitHub, GitLab and npm sources.",
    version=__version__,
)
hooks_app = App(name="hooks", help="Manage global git hooks that block local deps.")
app.command(hooks_app)


def make_resolver() -> RemoteResolver:
    """Return the resolver used for remote lookups."""
    return CliRemoteResolver()


def _load(global_: bool) -> tuple[ProjectContext | None, ConfigDocument]:
    if global_:
        return None, load_global_config()
    context = load_project_context()
    return context, load_config(context.project_root)


def _save(context: ProjectContext | None, document: ConfigDocument) -> None:
    if context is None:
        save_global_config(document)
    else:
        save_config(context.project_root, document)


def _describe(context: ProjectContext, plan: SwitchPlan, dep: DependencyConfig) -> str:
    label = _SOURCE_LABELS[plan.source]
    if plan.source is Source.LOCAL:
        target = (context.project_root / typ.cast("str", dep.local_path)).resolve()
        return f"{label}: {target}"
    if plan.source is Source.GITHUB:
        return f"{label}: {dep.github}#{plan.ref}"
    if plan.source is Source.GITLAB:
        return f"{label}: {dep.gitlab}@{plan.ref}"
    return f"{label}: {plan.specifier}"


def _execute(
    context: ProjectContext | None,
    plan: SwitchPlan,
    dep: DependencyConfig,
    *,
    dry_run: bool = False,
    install: bool = True,
) -> None:
    """Apply ``plan`` to the project, or install its target globally."""
    if dry_run:
        print(f"Would switch {plan.name} to: {plan.specifier}")
        return

    if context is None:
        target = global_target(plan, dep)
        run_global_install(target)
        label = _SOURCE_LABELS[plan.source]
        print(f"Installed {plan.name} globally from {label}: {target}")
        return

    apply_plan(context, plan, dep)
    print(f"Switched {plan.name} to {_describe(context, plan, dep)}")
    if install:
        run_install(context.membership_root)


def _positional_ref(raw_ref: str | None, positional: str | None) -> str | None:
    # A positional REF is pinned verbatim, exactly like -R/--raw-ref.
    if positional and raw_ref:
        message = "Cannot combine a positional REF with -R/--raw-ref"
        raise ConflictingFlagsError(message)
    return raw_ref or positional


def _views(
    context: ProjectContext | None,
    entries: list[tuple[str, DependencyConfig]],
) -> list[DependencyView]:
    if context is None:
        sources = fetch_global_install_sources()
        return [build_global_view(name, dep, sources) for name, dep in entries]
    manifest = load_manifest(context.project_root)
    return [
        build_project_view(name, dep, context.project_root, manifest)
        for name, dep in entries
    ]


def _print_listing(*, verbose: bool, global_: bool) -> None:
    context, document = _load(global_)
    if not document.dependencies:
        hint = "pds init -g <path>" if global_ else "pds init <path>"
        print(f'No dependencies configured. Use "{hint}" to add one.')
        return

    palette = Palette.for_stream()
    resolver = make_resolver() if verbose else None
    for view in _views(context, list(document.dependencies.items())):
        versions = (
            fetch_remote_versions(view.config, view.name, resolver)
            if resolver is not None
            else None
        )
        print("\n".join(render_dependency(view, versions, palette=palette)))


@app.default
def default(*, global_: GlobalFlag = False) -> None:
    """List configured dependencies, or show help when none are configured."""
    try:
        _, document = _load(global_)
    except NotFoundError:
        app.help_print()
        return
    if document.dependencies:
        _print_listing(verbose=False, global_=global_)
    else:
        app.help_print()


def _warn_mismatches(
    info: PackageInfo,
    *,
    github: str | None,
    gitlab: str | None,
    npm: str | None,
) -> None:
    if github and info.github and github != info.github:
        LOGGER.warning(
            "GitHub %r differs from package.json %r", github, info.github
        )
    if gitlab and info.gitlab and gitlab != info.gitlab:
        LOGGER.warning(
            "GitLab %r differs from package.json %r", gitlab, info.gitlab
        )
    if npm and npm != info.name:
        LOGGER.warning("NPM name %r differs from package.json %r", npm, info.name)


def _print_summary(name: str, dep: DependencyConfig, *, global_: bool) -> None:
    print(f"Initialized {name}{' (global)' if global_ else ''}:")
    if dep.local_path:
        print(f"  Local path: {dep.local_path}")
    if dep.github:
        suffix = f" [{dep.subdir}]" if dep.subdir else ""
        print(f"  GitHub: {dep.github}{suffix}")
    if dep.gitlab:
        print(f"  GitLab: {dep.gitlab}")
    print(f"  NPM: {dep.npm_name(name)}")
    print(f"  Dist branch: {dep.branch}")


@app.command
def init(  # noqa: PLR0913
    path_or_url: str,
    /,
    *,
    dist_branch: typ.Annotated[
        str, Parameter(name=["--dist-branch", "-b"])
    ] = DEFAULT_DIST_BRANCH,
    dev: typ.Annotated[bool, Parameter(name=["--dev", "-D"], negative=())] = False,
    force: typ.Annotated[
        bool, Parameter(name=["--force", "-f"], negative=())
    ] = False,
    github: typ.Annotated[str | None, Parameter(name=["--github", "-H"])] = None,
    gitlab: typ.Annotated[str | None, Parameter(name=["--gitlab", "-L"])] = None,
    local: typ.Annotated[str | None, Parameter(name=["--local", "-l"])] = None,
    npm: typ.Annotated[str | None, Parameter(name=["--npm", "-n"])] = None,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Track a dependency from a local path or repository URL and activate it.

    Parameters
    ----------
    path_or_url : str
        Local checkout of the dependency, or its GitHub/GitLab URL.
    dist_branch : str, optional
        Git branch holding dist builds.
    dev : bool, optional
        Add to devDependencies when package.json does not declare it yet.
    force : bool, optional
        Suppress mismatch warnings.
    github : str | None, optional
        GitHub repo (e.g. "user/repo").
    gitlab : str | None, optional
        GitLab repo (e.g. "group/sub/repo").
    local : str | None, optional
        Local path, when initialising from a URL.
    npm : str | None, optional
        NPM package name; defaults to the name in package.json.
    install : bool, optional
        Run pnpm install afterwards.
    global_ : bool, optional
        Track a globally installed CLI tool instead.
    """
    resolver = make_resolver()
    local_path: Path | None
    if is_repo_url(path_or_url):
        info = remote_package_info(path_or_url, resolver)
        local_path = Path(local).resolve() if local else None
    else:
        local_path = Path(path_or_url).resolve()
        info = local_package_info(local_path)

    if not force:
        _warn_mismatches(info, github=github, gitlab=gitlab, npm=npm)

    name = info.name
    dep = DependencyConfig(
        local_path=str(local_path) if local_path else None,
        github=github or info.github,
        gitlab=gitlab or info.gitlab,
        npm=npm or name,
        dist_branch=dist_branch,
        subdir=info.subdir,
    )

    if global_:
        document = load_global_config()
        document.dependencies[name] = dep
        save_global_config(document)
        _print_summary(name, dep, global_=True)
        if local_path:
            _execute(None, plan_local(name, dep), dep)
        return

    context = load_project_context()
    if local_path:
        dep = dc.replace(
            dep, local_path=os.path.relpath(local_path, context.project_root)
        )
    document = load_config(context.project_root)
    document.dependencies[name] = dep
    save_config(context.project_root, document)
    _print_summary(name, dep, global_=False)

    manifest = load_manifest(context.project_root)
    needs_add = not has_dependency(manifest, name)
    if needs_add:
        # Placeholder until the activating switch below rewrites it.
        group = add_dependency(manifest, name, "*", dev=dev)
        save_manifest(context.project_root, manifest)
        print(f"Added {name} to {group}")

    plan: SwitchPlan | None = None
    if local_path:
        plan = plan_local(name, dep)
    elif dep.github:
        plan = prepare_github(name, dep, resolver)
    elif dep.gitlab:
        plan = prepare_gitlab(name, dep, resolver)
    elif needs_add:
        plan = prepare_npm(name, dep, resolver)

    if plan is not None:
        _execute(context, plan, dep, install=install)


def _updated_field(label: str, value: str) -> str | None:
    if value == "":
        print(f"  Removed {label}")
        return None
    print(f"  {label[0].upper()}{label[1:]}: {value}")
    return value


@app.command(name="set")
def set_(  # noqa: PLR0913
    dep: str | None = None,
    /,
    *,
    dist_branch: typ.Annotated[
        str | None, Parameter(name=["--dist-branch", "-b"])
    ] = None,
    github: typ.Annotated[str | None, Parameter(name=["--github", "-H"])] = None,
    gitlab: typ.Annotated[str | None, Parameter(name=["--gitlab", "-L"])] = None,
    local: typ.Annotated[str | None, Parameter(name=["--local", "-l"])] = None,
    npm: typ.Annotated[str | None, Parameter(name=["--npm", "-n"])] = None,
    global_: GlobalFlag = False,
) -> None:
    """Update fields of a tracked dependency; an empty value removes the field.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment; optional with one dependency configured.
    dist_branch : str | None, optional
        Dist branch.
    github : str | None, optional
        GitHub repo.
    gitlab : str | None, optional
        GitLab repo.
    local : str | None, optional
        Local path.
    npm : str | None, optional
        NPM package name.
    global_ : bool, optional
        Edit the global config.
    """
    context, document = _load(global_)
    name, config = find_dependency(document, dep)

    changes: dict[str, str | None] = {}
    if local is not None:
        resolved: str | None = local
        if local:
            absolute = Path(local).resolve()
            resolved = (
                str(absolute)
                if context is None
                else os.path.relpath(absolute, context.project_root)
            )
        changes["local_path"] = _updated_field("local path", resolved or "")
    if github is not None:
        changes["github"] = _updated_field("GitHub", github)
    if gitlab is not None:
        changes["gitlab"] = _updated_field("GitLab", gitlab)
    if npm is not None:
        changes["npm"] = _updated_field("NPM", npm)
    if dist_branch is not None:
        changes["dist_branch"] = _updated_field("dist branch", dist_branch)

    if not changes:
        print("No changes specified. Use -l, -H, -L, -n, or -b to update fields.")
        return

    document.dependencies[name] = dc.replace(config, **changes)
    _save(context, document)
    print(f"Updated {name}")


@app.command(name=["deinit", "di"])
def deinit(dep: str | None = None, /, *, global_: GlobalFlag = False) -> None:
    """Stop tracking a dependency, keeping it in package.json.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    global_ : bool, optional
        Edit the global config.
    """
    context, document = _load(global_)
    name, config = find_dependency(document, dep)
    del document.dependencies[name]
    if context is not None:
        cleanup_references(context, name, config)
    _save(context, document)
    print(f"Stopped tracking {name}{' (global)' if context is None else ''}")


@app.command(name=["rm", "remove", "r"])
def rm(
    dep: str | None = None,
    /,
    *,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Remove a dependency from the pds config and from package.json.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    install : bool, optional
        Run pnpm install afterwards.
    global_ : bool, optional
        Uninstall a global CLI tool instead.
    """
    context, document = _load(global_)
    name, config = find_dependency(document, dep)
    del document.dependencies[name]

    if context is None:
        save_global_config(document)
        run_global_uninstall(config.npm_name(name))
        print(f"Removed {name} (global)")
        return

    cleanup_references(context, name, config)
    save_config(context.project_root, document)

    manifest = load_manifest(context.project_root)
    removed = remove_dependency(manifest, name)
    if remove_override(manifest, name) or removed:
        save_manifest(context.project_root, manifest)
    if removed:
        print(f"Removed {name} from package.json")
    if install:
        run_install(context.membership_root)


@app.command(name=["list", "ls"])
def list_(
    *,
    verbose: typ.Annotated[
        bool, Parameter(name=["--verbose", "-v"], negative=())
    ] = False,
    global_: GlobalFlag = False,
) -> None:
    """List tracked dependencies and their current sources.

    Parameters
    ----------
    verbose : bool, optional
        Also show the latest version available from each source.
    global_ : bool, optional
        List globally tracked CLI tools.
    """
    _print_listing(verbose=verbose, global_=global_)


@app.command(name=["versions", "v"])
def versions(*, global_: GlobalFlag = False) -> None:
    """List tracked dependencies with their available remote versions."""
    _print_listing(verbose=True, global_=global_)


@app.command(name=["local", "l"])
def local(
    dep: str | None = None,
    /,
    *,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Switch a dependency to its local checkout.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    install : bool, optional
        Run pnpm install afterwards.
    global_ : bool, optional
        Install the checkout globally instead.
    """
    context, document = _load(global_)
    name, config = find_dependency(document, dep)
    _execute(context, plan_local(name, config), config, install=install)


def _switch_git(
    prepare: typ.Callable[..., SwitchPlan],
    dep: str | None,
    pinned_ref: str | None,
    *,
    ref: str | None,
    raw_ref: str | None,
    dry_run: bool,
    install: bool,
    global_: bool,
) -> None:
    context, document = _load(global_)
    query, positional = split_query(document, dep, pinned_ref)
    name, config = find_dependency(document, query)
    plan = prepare(
        name,
        config,
        make_resolver(),
        ref=ref,
        raw_ref=_positional_ref(raw_ref, positional),
    )
    _execute(context, plan, config, dry_run=dry_run, install=install)


@app.command(name=["github", "gh"])
def github(  # noqa: PLR0913
    dep: str | None = None,
    pinned_ref: str | None = None,
    /,
    *,
    ref: RefOption = None,
    raw_ref: RawRefOption = None,
    dry_run: DryRunFlag = False,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Switch a dependency to a GitHub ref (defaults to the dist branch HEAD).

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    pinned_ref : str | None, optional
        Git ref used as-is.
    """
    _switch_git(
        prepare_github,
        dep,
        pinned_ref,
        ref=ref,
        raw_ref=raw_ref,
        dry_run=dry_run,
        install=install,
        global_=global_,
    )


@app.command(name=["gitlab", "gl"])
def gitlab(  # noqa: PLR0913
    dep: str | None = None,
    pinned_ref: str | None = None,
    /,
    *,
    ref: RefOption = None,
    raw_ref: RawRefOption = None,
    dry_run: DryRunFlag = False,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Switch a dependency to a GitLab ref (defaults to the dist branch HEAD).

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    pinned_ref : str | None, optional
        Git ref used as-is.
    """
    _switch_git(
        prepare_gitlab,
        dep,
        pinned_ref,
        ref=ref,
        raw_ref=raw_ref,
        dry_run=dry_run,
        install=install,
        global_=global_,
    )


@app.command(name=["git", "g"])
def git(  # noqa: PLR0913
    dep: str | None = None,
    pinned_ref: str | None = None,
    /,
    *,
    ref: RefOption = None,
    raw_ref: RawRefOption = None,
    dry_run: DryRunFlag = False,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Switch a dependency to whichever of GitHub or GitLab is configured.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    pinned_ref : str | None, optional
        Git ref used as-is.
    """
    _switch_git(
        prepare_git,
        dep,
        pinned_ref,
        ref=ref,
        raw_ref=raw_ref,
        dry_run=dry_run,
        install=install,
        global_=global_,
    )


@app.command(name=["npm", "n"])
def npm(
    dep: str | None = None,
    version: str | None = None,
    /,
    *,
    dry_run: DryRunFlag = False,
    install: InstallFlag = True,
    global_: GlobalFlag = False,
) -> None:
    """Switch a dependency to a published npm version (defaults to latest).

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment, or the version when only one dependency
        is configured.
    version : str | None, optional
        Version to pin with a caret range.
    """
    context, document = _load(global_)
    query, requested = split_query(document, dep, version)
    name, config = find_dependency(document, query)
    plan = prepare_npm(name, config, make_resolver(), version=requested)
    _execute(context, plan, config, dry_run=dry_run, install=install)


@app.command(name=["status", "s"])
def status(dep: str | None = None, /, *, global_: GlobalFlag = False) -> None:
    """Show the current source of one dependency, or of all of them.

    Parameters
    ----------
    dep : str | None, optional
        Dependency name or fragment.
    global_ : bool, optional
        Report globally installed CLI tools.
    """
    context, document = _load(global_)
    entries = (
        [find_dependency(document, dep)] if dep else list(document.dependencies.items())
    )
    for view in _views(context, entries):
        print(status_line(view))


@app.command
def check(
    *,
    quiet: typ.Annotated[bool, Parameter(name=["--quiet", "-q"], negative=())] = False,
    hook: typ.Literal["pre-commit", "pre-push"] | None = None,
) -> None:
    """Fail when any tracked dependency is set to its local checkout.

    Parameters
    ----------
    quiet : bool, optional
        Exit with a status code only.
    hook : str | None, optional
        Git hook running the check; honours the project's checkOn setting.
    """
    exit_code = run_check(hook=hook, quiet=quiet)
    if exit_code:
        raise SystemExit(exit_code)


@hooks_app.command(name="install")
def hooks_install(
    *,
    force: typ.Annotated[
        bool, Parameter(name=["--force", "-f"], negative=())
    ] = False,
) -> None:
    """Install global pre-commit and pre-push hooks.

    Parameters
    ----------
    force : bool, optional
        Chain to an existing core.hooksPath instead of refusing.
    """
    install_hooks(force=force)


@hooks_app.command(name="uninstall")
def hooks_uninstall() -> None:
    """Remove the global hooks and restore the previous hooks path."""
    uninstall_hooks()


@hooks_app.command(name="status")
def hooks_status_command() -> None:
    """Show whether the global hooks are installed."""
    print("\n".join(hooks_status().describe()))


@app.command(name=["shell-integration", "shell"])
def shell_integration() -> None:
    """Print shell aliases for eval in .bashrc or .zshrc."""
    print(SHELL_ALIASES, end="")


def describe_install_source(checkout: Path) -> str:
    """Describe where the running ``pds`` was installed from.

    A source checkout (``.git`` next to ``pyproject.toml``) reads as local
    development and an interpreter's ``site-packages`` as an installed
    release. Anything else falls back to the packages listed by
    ``pnpm list -g``.
    """
    if (checkout / ".git").exists() and (checkout / "pyproject.toml").exists():
        return "local development"
    if checkout.name in {"site-packages", "dist-packages"}:
        return f"{checkout.name} ({__version__})"
    if installed := fetch_global_install_sources().get(PACKAGE_NAME):
        return f"{installed.source} ({installed.specifier})"
    return "unknown"


@app.command(name=["info", "i"])
def info() -> None:
    """Show the pds version, binary path and install source."""
    binary = sys.argv[0]
    real = os.path.realpath(binary)
    print(f"{PACKAGE_NAME} v{__version__}")
    if real != binary:
        print(f"  binary: {binary} -> {real}")
    else:
        print(f"  binary: {binary}")
    print(f"  source: {describe_install_source(CHECKOUT_DIR)}")


def main() -> None:
    """Run the ``pds`` command-line interface."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    app()


if __name__ == "__main__":
    main()
