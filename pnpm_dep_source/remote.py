"""Remote lookups through the ``gh``, ``glab``, ``npm``, ``git`` and ``pnpm`` CLIs.

All external commands run through plumbum's ``local`` so tests can swap in a
fake. Lookups that drive a switch raise :class:`RemoteResolutionFailedError`;
lookups that only inform a listing (git status of a checkout, globally
installed packages) degrade to ``None`` or an empty mapping.

The per-command timeout honours ``PDS_TIMEOUT_SECS`` and defaults to
:data:`DEFAULT_TIMEOUT_SECS`.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses as dc
import json
import logging
import os
import re
import shlex
import typing as typ
from pathlib import Path
from urllib.parse import quote

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from pnpm_dep_source.errors import NotFoundError, RemoteResolutionFailedError
from pnpm_dep_source.manifest import MANIFEST_FILE
from pnpm_dep_source.serialise import _read_json_document

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "DEFAULT_TIMEOUT_SECS",
    "GITHUB",
    "GITLAB",
    "NPM",
    "CliRemoteResolver",
    "CommandResult",
    "GitInfo",
    "GlobalSource",
    "PackageInfo",
    "RemoteResolver",
    "RepoRef",
    "detect_git_repo",
    "fetch_global_install_sources",
    "is_repo_url",
    "local_git_info",
    "local_package_info",
    "package_info",
    "parse_global_source",
    "parse_repo_url",
    "remote_package_info",
    "resolve_timeout",
    "run_command",
]

LOGGER = logging.getLogger(__name__)

GITHUB: typ.Final = "github"
GITLAB: typ.Final = "gitlab"
NPM: typ.Final = "npm"

DEFAULT_TIMEOUT_SECS: typ.Final = 60

TIMEOUT_ENV_VAR: typ.Final = "PDS_TIMEOUT_SECS"

_GITHUB_PATTERNS: typ.Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"github\.com[/:]([\w.-]+/[\w.-]+?)(?:\.git)?$"),
    re.compile(r"^github:([\w.-]+/[\w.-]+)$"),
)
_GITLAB_PATTERNS: typ.Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"gitlab\.com[/:]([\w./-]+?)(?:\.git)?$"),
    re.compile(r"^gitlab:([\w./-]+)$"),
)
_REPO_URL_PREFIXES: typ.Final[tuple[str, ...]] = (
    "http://",
    "https://",
    "github:",
    "gitlab:",
    "git@",
)
_FETCH_REMOTE = re.compile(r"^\S+\s+(\S+)\s+\(fetch\)$")
_FULL_SHA = re.compile(r"([0-9a-f]{40})")
_ARCHIVE_REF = re.compile(r"/-/archive/([^/]+)/")

SHORT_SHA_LENGTH: typ.Final = 7


class RemoteResolver(typ.Protocol):
    """Capabilities needed from a code host or package registry."""

    def resolve_ref(self, platform: str, repo: str, ref: str) -> str:
        """Return the commit SHA that ``ref`` points at in ``repo``."""
        ...

    def fetch_manifest(
        self, platform: str, repo: str, ref: str = "HEAD"
    ) -> dict[str, typ.Any]:
        """Return the ``package.json`` of ``repo`` at ``ref``."""
        ...

    def latest_version(self, package: str) -> str:
        """Return the latest version of ``package`` published to npm."""
        ...


@dc.dataclass(frozen=True)
class CommandResult:
    """Result of an external command execution."""

    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def diagnostics(self) -> str:
        """Return stripped stderr, falling back to stdout."""
        return (self.stderr or self.stdout or "").strip()


@dc.dataclass(frozen=True)
class RepoRef:
    """Repository identifiers detected from a URL or git remote."""

    github: str | None = None
    gitlab: str | None = None
    subdir: str | None = None

    def __bool__(self) -> bool:
        return bool(self.github or self.gitlab)


@dc.dataclass(frozen=True)
class PackageInfo:
    """Identity of a package read from its manifest."""

    name: str
    github: str | None = None
    gitlab: str | None = None
    private: bool = False
    subdir: str | None = None


@dc.dataclass(frozen=True)
class GitInfo:
    """Short HEAD SHA of a checkout and whether its worktree is dirty."""

    sha: str
    dirty: bool


@dc.dataclass(frozen=True)
class GlobalSource:
    """Where a globally installed package came from."""

    source: str
    specifier: str


def resolve_timeout(timeout_secs: int | None = None) -> int:
    """Return the timeout for external commands.

    The explicit ``timeout_secs`` wins; otherwise ``PDS_TIMEOUT_SECS`` is
    consulted before falling back to :data:`DEFAULT_TIMEOUT_SECS`.
    """
    if timeout_secs is not None:
        return timeout_secs

    env_value = os.environ.get(TIMEOUT_ENV_VAR)
    if env_value is None:
        return DEFAULT_TIMEOUT_SECS

    try:
        return int(env_value)
    except ValueError as err:
        LOGGER.exception("%s must be an integer", TIMEOUT_ENV_VAR)
        message = f"{TIMEOUT_ENV_VAR} must be an integer"
        raise SystemExit(message) from err


def run_command(
    command: cabc.Sequence[str],
    *,
    timeout_secs: int | None = None,
    cwd: Path | None = None,
    stream: bool = False,
) -> CommandResult:
    """Run ``command`` and capture its output without raising on failure.

    With ``stream`` the output is also echoed to the terminal as it arrives,
    for long-running commands such as installs.

    Raises
    ------
    plumbum.commands.processes.CommandNotFound
        Raised when the executable is missing from ``PATH``.
    plumbum.commands.processes.ProcessTimedOut
        Raised when the command exceeds the timeout. The timeout is logged
        before the exception propagates.
    """
    timeout = resolve_timeout(timeout_secs)
    LOGGER.debug("running %s", shlex.join(command))
    invocation = local[command[0]][list(command[1:])]
    execute = invocation.run_tee if stream else invocation.run
    try:
        if cwd is None:
            return_code, stdout, stderr = execute(retcode=None, timeout=timeout)
        else:
            with local.cwd(cwd):
                return_code, stdout, stderr = execute(retcode=None, timeout=timeout)
    except ProcessTimedOut:
        LOGGER.exception(
            "command timed out after %s seconds: %s", timeout, shlex.join(command)
        )
        raise
    return CommandResult(
        command=list(command),
        return_code=return_code,
        stdout=stdout,
        stderr=stderr,
    )


def parse_repo_url(url: str) -> RepoRef:
    """Extract GitHub and GitLab identifiers from a repository URL.

    Examples
    --------
    >>> parse_repo_url("git+https://github.com/runsascoded/use-kbd.git").github
    'runsascoded/use-kbd'
    >>> parse_repo_url("https://gitlab.com/group/sub/repo").gitlab
    'group/sub/repo'
    """
    github = next(
        (m.group(1) for p in _GITHUB_PATTERNS if (m := p.search(url))), None
    )
    gitlab = next(
        (m.group(1) for p in _GITLAB_PATTERNS if (m := p.search(url))), None
    )
    return RepoRef(github=github, gitlab=gitlab)


def is_repo_url(value: str) -> bool:
    """Return ``True`` when ``value`` looks like a repository URL, not a path."""
    return value.startswith(_REPO_URL_PREFIXES)


def package_info(manifest: cabc.Mapping[str, typ.Any]) -> PackageInfo:
    """Build :class:`PackageInfo` from a parsed ``package.json``."""
    name = manifest.get("name")
    if not isinstance(name, str) or not name:
        message = f"{MANIFEST_FILE} has no package name"
        raise NotFoundError(message)

    repository = manifest.get("repository")
    url: str | None = None
    if isinstance(repository, str):
        url = repository
    elif isinstance(repository, dict) and isinstance(repository.get("url"), str):
        url = repository["url"]

    repo = parse_repo_url(url) if url else RepoRef()
    return PackageInfo(
        name=name,
        github=repo.github,
        gitlab=repo.gitlab,
        private=manifest.get("private") is True,
    )


def _git_root(start: Path) -> Path | None:
    directory = Path(start).resolve()
    while directory != directory.parent:
        if (directory / ".git").exists():
            return directory
        directory = directory.parent
    return None


def detect_git_repo(path: Path) -> RepoRef | None:
    """Detect the hosted repository containing ``path`` from its git remotes.

    ``subdir`` is set to ``/<relative path>`` when ``path`` is a package
    nested inside the repository (a monorepo member).
    """
    path = Path(path).resolve()
    root = _git_root(path)
    if root is None:
        return None

    try:
        result = run_command(["git", "-C", str(root), "remote", "-v"])
    except (CommandNotFound, ProcessTimedOut):
        LOGGER.debug("git unavailable; cannot inspect remotes of %s", root)
        return None
    if result.return_code != 0:
        return None

    relative = path.relative_to(root).as_posix()
    subdir = f"/{relative}" if relative != "." else None
    for line in result.stdout.splitlines():
        match = _FETCH_REMOTE.match(line.strip())
        if match is None:
            continue
        repo = parse_repo_url(match.group(1))
        if repo:
            return dc.replace(repo, subdir=subdir)
    return None


def local_package_info(path: Path) -> PackageInfo:
    """Read package identity from a local checkout.

    Repository identifiers come from the manifest's ``repository`` field and
    fall back to the checkout's git remotes. The monorepo ``subdir`` always
    comes from git.
    """
    manifest_file = Path(path) / MANIFEST_FILE
    if not manifest_file.exists():
        message = f"No {MANIFEST_FILE} found at {path}"
        raise NotFoundError(message)

    info = package_info(_read_json_document(manifest_file))
    detected = detect_git_repo(Path(path))
    if detected is None:
        return info
    if not (info.github or info.gitlab):
        info = dc.replace(info, github=detected.github, gitlab=detected.gitlab)
    return dc.replace(info, subdir=detected.subdir)


def remote_package_info(url: str, resolver: RemoteResolver) -> PackageInfo:
    """Read package identity from the manifest of a hosted repository.

    The identifiers parsed from ``url`` take precedence over the manifest's
    own ``repository`` field.
    """
    repo = parse_repo_url(url)
    if repo.github:
        manifest = resolver.fetch_manifest(GITHUB, repo.github)
    elif repo.gitlab:
        manifest = resolver.fetch_manifest(GITLAB, repo.gitlab)
    else:
        message = f"Cannot parse repository from URL: {url}"
        raise NotFoundError(message)

    info = package_info(manifest)
    return dc.replace(
        info,
        github=repo.github or info.github,
        gitlab=repo.gitlab or info.gitlab,
    )


def local_git_info(path: Path) -> GitInfo | None:
    """Return the short HEAD SHA and dirty flag of a checkout, if available."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        head = run_command(["git", "-C", str(path), "rev-parse", "--short", "HEAD"])
        if head.return_code != 0:
            return None
        status = run_command(["git", "-C", str(path), "status", "--porcelain"])
    except (CommandNotFound, ProcessTimedOut):
        LOGGER.debug("git unavailable; no status for %s", path)
        return None
    dirty = status.return_code == 0 and bool(status.stdout.strip())
    return GitInfo(sha=head.stdout.strip(), dirty=dirty)


def parse_global_source(
    entry: cabc.Mapping[str, typ.Any], global_dir: str = ""
) -> GlobalSource | None:
    """Classify one dependency entry of ``pnpm list -g --json``.

    Examples
    --------
    >>> parse_global_source({"version": "1.2.0"})
    GlobalSource(source='npm', specifier='1.2.0')
    >>> parse_global_source({"version": "file:../x"}, "/g")
    GlobalSource(source='local', specifier='/x')
    """
    version = str(entry.get("version") or "")
    resolved = str(entry.get("resolved") or "")
    install_path = str(entry.get("path") or "")

    if version.startswith("file:"):
        file_path = version.removeprefix("file:")
        if global_dir:
            file_path = os.path.normpath(os.path.join(global_dir, file_path))
        return GlobalSource(source="local", specifier=file_path)

    location = resolved or install_path
    if "codeload.github.com" in location or "github.com" in location:
        sha = _FULL_SHA.search(location)
        short = sha.group(1)[:SHORT_SHA_LENGTH] if sha else ""
        return GlobalSource(source=GITHUB, specifier=f"{short}; {version}")
    if "gitlab.com" in location and (
        "/-/archive/" in resolved or "gitlab.com" in install_path
    ):
        ref = _ARCHIVE_REF.search(location) or _FULL_SHA.search(location)
        short = ref.group(1)[:SHORT_SHA_LENGTH] if ref else ""
        return GlobalSource(source=GITLAB, specifier=f"{short}; {version}")
    if version:
        return GlobalSource(source=NPM, specifier=version)
    return None


def fetch_global_install_sources() -> dict[str, GlobalSource]:
    """Return the sources of every globally installed package.

    Fetched once per invocation and passed explicitly to the listing code.
    Failures degrade to an empty mapping.
    """
    try:
        result = run_command(["pnpm", "list", "-g", "--json"])
    except (CommandNotFound, ProcessTimedOut):
        LOGGER.warning("pnpm unavailable; global install sources unknown")
        return {}
    if result.return_code != 0:
        LOGGER.warning("pnpm list -g failed: %s", result.diagnostics)
        return {}

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        LOGGER.warning("unparseable output from pnpm list -g")
        return {}
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return {}

    global_dir = str(data[0].get("path") or "")
    dependencies = data[0].get("dependencies") or {}
    sources: dict[str, GlobalSource] = {}
    for name, entry in dependencies.items():
        if not isinstance(entry, dict):
            continue
        if source := parse_global_source(entry, global_dir):
            sources[name] = source
    return sources


@dc.dataclass
class CliRemoteResolver:
    """:class:`RemoteResolver` backed by the ``gh``, ``glab`` and ``npm`` CLIs."""

    timeout_secs: int | None = None

    def _run(
        self, platform: str, repo: str, ref: str | None, command: list[str]
    ) -> str:
        try:
            result = run_command(command, timeout_secs=self.timeout_secs)
        except CommandNotFound as error:
            detail = f"{command[0]} not found on PATH"
            raise RemoteResolutionFailedError(platform, repo, ref, detail) from error
        except ProcessTimedOut as error:
            detail = f"{command[0]} timed out"
            raise RemoteResolutionFailedError(platform, repo, ref, detail) from error
        if result.return_code != 0:
            raise RemoteResolutionFailedError(platform, repo, ref, result.diagnostics)
        return result.stdout.strip()

    def resolve_ref(self, platform: str, repo: str, ref: str) -> str:
        """Resolve ``ref`` to a full commit SHA through the platform API."""
        if platform == GITHUB:
            command = ["gh", "api", f"repos/{repo}/commits/{ref}", "--jq", ".sha"]
            sha = self._run(platform, repo, ref, command)
        elif platform == GITLAB:
            endpoint = f"projects/{quote(repo, safe='')}/repository/commits/{ref}"
            output = self._run(platform, repo, ref, ["glab", "api", endpoint])
            sha = _json_field(platform, repo, ref, output, "id")
        else:
            message = f"unsupported platform: {platform!r}"
            raise ValueError(message)
        if not sha:
            raise RemoteResolutionFailedError(platform, repo, ref, "empty response")
        return sha

    def fetch_manifest(
        self, platform: str, repo: str, ref: str = "HEAD"
    ) -> dict[str, typ.Any]:
        """Fetch ``package.json`` from ``repo`` at ``ref``."""
        if platform == GITHUB:
            endpoint = f"repos/{repo}/contents/{MANIFEST_FILE}?ref={ref}"
            output = self._run(
                platform, repo, ref, ["gh", "api", endpoint, "--jq", ".content"]
            )
            try:
                text = base64.b64decode(output).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as error:
                raise RemoteResolutionFailedError(
                    platform, repo, ref, "undecodable manifest content"
                ) from error
        elif platform == GITLAB:
            endpoint = (
                f"projects/{quote(repo, safe='')}/repository/files/"
                f"{MANIFEST_FILE}/raw?ref={ref}"
            )
            text = self._run(platform, repo, ref, ["glab", "api", endpoint])
        else:
            message = f"unsupported platform: {platform!r}"
            raise ValueError(message)
        return _json_object(platform, repo, ref, text)

    def latest_version(self, package: str) -> str:
        """Return the latest published version of ``package``."""
        version = self._run(NPM, package, None, ["npm", "view", package, "version"])
        if not version:
            raise RemoteResolutionFailedError(NPM, package, None, "no version found")
        return version


def _json_object(
    platform: str, repo: str, ref: str | None, text: str
) -> dict[str, typ.Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise RemoteResolutionFailedError(
            platform, repo, ref, f"unparseable response: {error.msg}"
        ) from error
    if not isinstance(data, dict):
        raise RemoteResolutionFailedError(
            platform, repo, ref, "expected a JSON object"
        )
    return data


def _json_field(
    platform: str, repo: str, ref: str | None, text: str, field: str
) -> str:
    value = _json_object(platform, repo, ref, text).get(field)
    if not isinstance(value, str):
        raise RemoteResolutionFailedError(
            platform, repo, ref, f"response has no {field!r}"
        )
    return value
