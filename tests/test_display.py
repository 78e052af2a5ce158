"""Tests for dependency listings."""

from __future__ import annotations

import io
import typing as typ

import pytest

from pnpm_dep_source.config import DependencyConfig
from pnpm_dep_source.display import (
    DependencyView,
    Palette,
    RemoteVersions,
    build_global_view,
    build_project_view,
    fetch_remote_versions,
    render_dependency,
    status_line,
)
from pnpm_dep_source.manifest import load_manifest
from pnpm_dep_source.remote import GitInfo, GlobalSource

from .conftest import read_json, write_json

if typ.TYPE_CHECKING:
    from .conftest import FakeResolver, ProjectLayout

DEP: typ.Final = DependencyConfig(local_path="../y", github="org/y")


def _view(current: str, kind: str, **kwargs: typ.Any) -> DependencyView:
    return DependencyView(name="y", config=DEP, current=current, kind=kind, **kwargs)


class TestRenderDependency:
    """Listing lines for a project dependency."""

    def test_marks_active_local_source(self) -> None:
        """The active source carries the ``*`` marker."""
        lines = render_dependency(
            _view("workspace:*", "local", git_info=GitInfo(sha="abc1234", dirty=True))
        )

        assert lines == ["y:", "* Local: ../y (abc1234 dirty)", "  GitHub: org/y"]

    def test_active_github_shows_sha_and_version(self) -> None:
        """A pinned GitHub source shows its short SHA and installed version."""
        view = _view(
            "https://github.com/org/y#abc1234def5678", "github", version="1.1.0"
        )

        assert render_dependency(view)[2] == "* GitHub: org/y (abc1234; 1.1.0)"

    def test_active_npm_without_configured_name(self) -> None:
        """An npm source is listed when active even without a configured name."""
        lines = render_dependency(_view("^1.0.0", "npm", is_dev=True))

        assert lines == ["y [dev]:", "  Local: ../y", "  GitHub: org/y", "* NPM: y"]

    def test_verbose_lists_dist_heads(self) -> None:
        """Verbose listings show the dist head of inactive hosts."""
        versions = RemoteVersions(
            npm="2.0.0", github="def5678", github_version="1.2.0"
        )

        lines = render_dependency(_view("workspace:*", "local"), versions)

        assert lines[2] == "  GitHub: org/y (dist@def5678; 1.2.0)"
        assert len(lines) == 3

    def test_verbose_active_host_shows_newer_dist(self) -> None:
        """A dist head differing from the pinned commit gets its own line."""
        view = _view("https://github.com/org/y#abc1234", "github")
        versions = RemoteVersions(github="def5678")

        lines = render_dependency(view, versions)

        assert lines[2:] == ["* GitHub: org/y (abc1234)", "      dist@def5678"]

    def test_tty_palette_adds_colour(self) -> None:
        """A coloured palette wraps the name in escape codes."""
        palette = Palette(reset="<r>", bold="<b>", cyan="<c>", green="<g>")

        lines = render_dependency(_view("workspace:*", "local"), palette=palette)

        assert lines[0] == "<b><c>y<r>:"
        assert lines[1] == "<g>*<r> <g>Local<r>: ../y"


def test_plain_palette_for_non_tty() -> None:
    """Output that is not a terminal gets no escape codes."""
    assert Palette.for_stream(io.StringIO()) == Palette()


class TestViews:
    """Views built from the manifest or the global install list."""

    def test_project_view(self, layout: ProjectLayout) -> None:
        """The manifest specifier and installed version are reported."""
        installed = layout.project / "node_modules" / "y"
        installed.mkdir(parents=True)
        write_json(installed / "package.json", {"name": "y", "version": "1.0.3"})

        view = build_project_view(
            "y", DEP, layout.project, load_manifest(layout.project)
        )

        assert (view.current, view.kind, view.version) == ("^1.0.0", "npm", "1.0.3")
        assert render_dependency(view)[-1] == "* NPM: y (1.0.3)"
        assert status_line(view) == "y: npm (^1.0.0)"

    def test_project_view_of_undeclared_dependency(
        self, layout: ProjectLayout
    ) -> None:
        """A configured dependency missing from the manifest is not found."""
        manifest = read_json(layout.manifest)

        view = build_project_view("z", DependencyConfig(), layout.project, manifest)

        assert status_line(view) == "z: unknown ((not found))"

    def test_global_view_not_installed(self) -> None:
        """Packages absent from the global list are reported as such."""
        dep = DependencyConfig(npm="@me/tool")

        view = build_global_view("tool", dep, {})

        assert status_line(view) == "tool: (not installed)"
        assert render_dependency(view) == ["tool [global]:", "  NPM: @me/tool"]

    def test_global_view_by_registry_name(self) -> None:
        """Global sources are looked up by registry name first."""
        dep = DependencyConfig(npm="@me/tool")
        sources = {"@me/tool": GlobalSource(source="npm", specifier="1.2.0")}

        view = build_global_view("tool", dep, sources)

        assert status_line(view) == "tool: npm (1.2.0)"
        assert render_dependency(view)[-1] == "* NPM: @me/tool (1.2.0)"


class TestRemoteVersions:
    """Best-effort lookups for verbose listings."""

    def test_collects_available_versions(self, resolver: FakeResolver) -> None:
        """Each source is looked up independently."""
        resolver.versions["y"] = "2.0.0"
        resolver.refs["github", "org/y", "dist"] = "def5678abcdef"
        resolver.manifests["github", "org/y"] = {"name": "y", "version": "1.2.0"}

        versions = fetch_remote_versions(DEP, "y", resolver)

        assert versions == RemoteVersions(
            npm="2.0.0", github="def5678", github_version="1.2.0"
        )

    @pytest.mark.parametrize("missing", ["npm", "github"])
    def test_failures_degrade_to_none(
        self, resolver: FakeResolver, missing: str
    ) -> None:
        """A failed lookup leaves only its own field empty."""
        if missing != "npm":
            resolver.versions["y"] = "2.0.0"
        if missing != "github":
            resolver.refs["github", "org/y", "dist"] = "def5678"

        versions = fetch_remote_versions(DEP, "y", resolver)

        assert (versions.npm is None) is (missing == "npm")
        assert (versions.github is None) is (missing == "github")
        assert versions.github_version is None
