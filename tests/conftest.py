"""Shared fixtures and helper fakes for dependency source tests."""

from __future__ import annotations

import contextlib
import dataclasses as dc
import json
import sys
import typing as typ
from pathlib import Path

import pytest

from pnpm_dep_source import remote
from pnpm_dep_source.config import ConfigDocument, DependencyConfig, save_config
from pnpm_dep_source.errors import RemoteResolutionFailedError
from pnpm_dep_source.project import ProjectContext

RunCallable = typ.Callable[[list[str], int | None], tuple[int, str, str]]

VITE_CONFIG: typ.Final = """\
import { defineConfig } from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({
  plugins: [react()],
  server: { port: 5173 },
})
"""


def write_json(path: Path, document: typ.Mapping[str, typ.Any]) -> None:
    """Write ``document`` the way the stores serialise JSON."""
    rendered = json.dumps(document, indent=2, ensure_ascii=False)
    path.write_text(f"{rendered}\n", encoding="utf-8")


def read_json(path: Path) -> dict[str, typ.Any]:
    """Parse the JSON document at ``path``."""
    return json.loads(path.read_text(encoding="utf-8"))


class FakeInvocation:
    """Record a command invocation and proxy execution to the fake runner."""

    def __init__(self, local: FakeLocal, argv: list[str]) -> None:
        """Store the invocation context for later assertions."""
        self._local = local
        self._argv = argv

    def run(
        self, *, retcode: object | None, timeout: int | None
    ) -> tuple[int, str, str]:
        """Record an invocation and delegate to the configured callable."""
        self._local.invocations.append((self._argv, timeout))
        return self._local.run_callable(self._argv, timeout)

    def run_tee(
        self, *, retcode: object | None, timeout: int | None
    ) -> tuple[int, str, str]:
        """Record a streamed invocation and echo its output like ``TEE``."""
        self._local.streamed.append(self._argv)
        return_code, stdout, stderr = self.run(retcode=retcode, timeout=timeout)
        sys.stdout.write(stdout)
        sys.stderr.write(stderr)
        return return_code, stdout, stderr


class FakeProgram:
    """Proxy indexing calls into ``FakeInvocation`` instances."""

    def __init__(self, local: FakeLocal, name: str) -> None:
        """Initialise the proxy for ``name``."""
        self._local = local
        self._name = name

    def __getitem__(self, args: object) -> FakeInvocation:
        """Return an invocation wrapper for the provided command arguments."""
        extras = list(args) if isinstance(args, (list, tuple)) else [str(args)]
        return FakeInvocation(self._local, [self._name, *extras])


class FakeLocal:
    """Mimic plumbum's ``local`` object for external command tests."""

    def __init__(self, run_callable: RunCallable) -> None:
        """Store the callable that will service fake local invocations."""
        self.run_callable = run_callable
        self.cwd_calls: list[Path] = []
        self.invocations: list[tuple[list[str], int | None]] = []
        self.streamed: list[list[str]] = []

    def __getitem__(self, command: str) -> FakeProgram:
        """Return a proxy for ``command``."""
        return FakeProgram(self, command)

    def cwd(self, path: Path) -> contextlib.AbstractContextManager[None]:
        """Record the working directory change for later assertions."""
        self.cwd_calls.append(Path(path))
        return contextlib.nullcontext()

    @property
    def commands(self) -> list[list[str]]:
        """Return the argv of every recorded invocation."""
        return [argv for argv, _ in self.invocations]


def _unavailable(argv: list[str], timeout: int | None) -> tuple[int, str, str]:
    return 1, "", f"{argv[0]} is unavailable in tests"


@pytest.fixture(autouse=True)
def no_external_commands(monkeypatch: pytest.MonkeyPatch) -> FakeLocal:
    """Ensure no test ever spawns git, gh, glab, npm or pnpm."""
    fake_local = FakeLocal(_unavailable)
    monkeypatch.setattr(remote, "local", fake_local)
    return fake_local


@pytest.fixture
def patch_local_runner(
    monkeypatch: pytest.MonkeyPatch,
) -> typ.Callable[[RunCallable], FakeLocal]:
    """Install a ``FakeLocal`` around the provided callable."""

    def _install(run_callable: RunCallable) -> FakeLocal:
        fake_local = FakeLocal(run_callable)
        monkeypatch.setattr(remote, "local", fake_local)
        return fake_local

    return _install


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the global config directory at a temporary location."""
    config_dir = tmp_path / "pds-config"
    monkeypatch.setenv("PDS_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("PDS_TIMEOUT_SECS", raising=False)
    monkeypatch.delenv("PDS_INSTALL", raising=False)
    return config_dir


@dc.dataclass
class FakeResolver:
    """In-memory :class:`~pnpm_dep_source.remote.RemoteResolver`."""

    refs: dict[tuple[str, str, str], str] = dc.field(default_factory=dict)
    manifests: dict[tuple[str, str], dict[str, typ.Any]] = dc.field(
        default_factory=dict
    )
    versions: dict[str, str] = dc.field(default_factory=dict)
    calls: list[tuple[str, ...]] = dc.field(default_factory=list)

    def resolve_ref(self, platform: str, repo: str, ref: str) -> str:
        """Return the SHA registered for ``ref``."""
        self.calls.append(("resolve_ref", platform, repo, ref))
        try:
            return self.refs[platform, repo, ref]
        except KeyError as error:
            raise RemoteResolutionFailedError(platform, repo, ref, "unknown") from error

    def fetch_manifest(
        self, platform: str, repo: str, ref: str = "HEAD"
    ) -> dict[str, typ.Any]:
        """Return the manifest registered for ``repo``."""
        self.calls.append(("fetch_manifest", platform, repo, ref))
        try:
            return dict(self.manifests[platform, repo])
        except KeyError as error:
            raise RemoteResolutionFailedError(platform, repo, ref, "unknown") from error

    def latest_version(self, package: str) -> str:
        """Return the version registered for ``package``."""
        self.calls.append(("latest_version", package))
        try:
            return self.versions[package]
        except KeyError as error:
            raise RemoteResolutionFailedError("npm", package, None, "404") from error


@pytest.fixture
def resolver() -> FakeResolver:
    """Provide an empty fake resolver."""
    return FakeResolver()


@dc.dataclass(frozen=True)
class ProjectLayout:
    """A project at ``root/app`` depending on a checkout at ``root/y``."""

    root: Path
    project: Path
    dependency: Path

    @property
    def context(self) -> ProjectContext:
        """Return the context for the project (no enclosing workspace)."""
        return ProjectContext(project_root=self.project)

    @property
    def manifest(self) -> Path:
        """Return the project's ``package.json``."""
        return self.project / "package.json"

    @property
    def workspace(self) -> Path:
        """Return the project's ``pnpm-workspace.yaml``."""
        return self.project / "pnpm-workspace.yaml"

    @property
    def vite_config(self) -> Path:
        """Return the project's Vite config."""
        return self.project / "vite.config.ts"


@pytest.fixture
def layout(tmp_path: Path) -> ProjectLayout:
    """Provision a project tracking ``y`` with local and GitHub sources."""
    root = tmp_path / "src"
    project = root / "app"
    dependency = root / "y"
    (project / ".git").mkdir(parents=True)
    dependency.mkdir()

    write_json(
        project / "package.json",
        {
            "name": "app",
            "version": "0.0.0",
            "private": True,
            "dependencies": {"react": "^18.3.1", "y": "^1.0.0"},
            "devDependencies": {"vite": "^5.4.0"},
        },
    )
    (project / "vite.config.ts").write_text(VITE_CONFIG, encoding="utf-8")
    write_json(
        dependency / "package.json",
        {
            "name": "y",
            "version": "1.0.0",
            "repository": {"type": "git", "url": "git+https://github.com/org/y.git"},
        },
    )
    save_config(
        project,
        ConfigDocument(
            {"y": DependencyConfig(local_path="../y", github="org/y")}
        ),
    )
    return ProjectLayout(root=root, project=project, dependency=dependency)
