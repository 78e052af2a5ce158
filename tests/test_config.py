"""Tests for the dependency configuration documents."""

from __future__ import annotations

import typing as typ

import pytest

from pnpm_dep_source.config import (
    CheckPolicy,
    ConfigDocument,
    DependencyConfig,
    find_dependency,
    global_config_dir,
    load_config,
    load_global_config,
    resolve_config_path,
    save_config,
    save_global_config,
    split_query,
)
from pnpm_dep_source.errors import AmbiguousSelectionError, NotFoundError

from .conftest import read_json, write_json

if typ.TYPE_CHECKING:
    from pathlib import Path


def _document(*names: str) -> ConfigDocument:
    return ConfigDocument({name: DependencyConfig() for name in names})


class TestDocuments:
    """Loading and saving configuration documents."""

    def test_missing_file_loads_empty_document(self, tmp_path: Path) -> None:
        """An absent config yields no dependencies and the default policy."""
        document = load_config(tmp_path)

        assert document.dependencies == {}
        assert document.check_policy is CheckPolicy.PRE_PUSH

    def test_writes_fields_in_canonical_order(self, tmp_path: Path) -> None:
        """Dependency keys are written in a fixed order with absent keys omitted."""
        entry = DependencyConfig(
            subdir="/packages/y",
            dist_branch="main",
            github="org/mono",
            local_path="../y",
        )
        save_config(tmp_path, ConfigDocument({"y": entry}))

        text = (tmp_path / ".pds.json").read_text(encoding="utf-8")
        assert text.endswith("}\n")
        assert list(read_json(tmp_path / ".pds.json")["dependencies"]["y"]) == [
            "localPath",
            "github",
            "distBranch",
            "subdir",
        ]
        assert load_config(tmp_path).dependencies["y"] == entry

    def test_prefers_existing_legacy_file(self, tmp_path: Path) -> None:
        """The legacy file name is used when only it exists."""
        legacy = tmp_path / ".pnpm-dep-source.json"
        write_json(legacy, {"dependencies": {"y": {"github": "org/y"}}})

        assert resolve_config_path(tmp_path) == legacy
        assert load_config(tmp_path).dependencies["y"].github == "org/y"

    def test_legacy_skip_check_round_trips(self, tmp_path: Path) -> None:
        """``skipCheck`` disables checking and is written back unchanged."""
        write_json(tmp_path / ".pds.json", {"dependencies": {}, "skipCheck": True})

        document = load_config(tmp_path)
        save_config(tmp_path, document)

        assert document.check_policy is CheckPolicy.NONE
        assert read_json(tmp_path / ".pds.json") == {
            "dependencies": {},
            "skipCheck": True,
        }

    def test_check_on_overrides_skip_check(self) -> None:
        """An explicit ``checkOn`` wins over the legacy flag."""
        document = ConfigDocument.from_json(
            {"skipCheck": True, "checkOn": "pre-commit"}
        )

        assert document.check_policy is CheckPolicy.PRE_COMMIT

    def test_rejects_unknown_check_policy(self, tmp_path: Path) -> None:
        """An invalid ``checkOn`` aborts with the offending path."""
        write_json(tmp_path / ".pds.json", {"checkOn": "sometimes"})

        with pytest.raises(SystemExit, match="invalid configuration"):
            load_config(tmp_path)

    def test_global_document_round_trips(self, isolated_config: Path) -> None:
        """The global document lives under ``PDS_CONFIG_DIR``."""
        save_global_config(
            ConfigDocument({"tool": DependencyConfig(local_path="/src/tool")})
        )

        assert (isolated_config / "config.json").exists()
        assert load_global_config().dependencies["tool"].local_path == "/src/tool"

    def test_global_dir_falls_back_to_xdg(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """Without an override the XDG config home is used."""
        monkeypatch.delenv("PDS_CONFIG_DIR")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert global_config_dir() == tmp_path / "pnpm-dep-source"


class TestDependencyConfig:
    """Defaults derived from a dependency entry."""

    def test_branch_defaults_to_dist(self) -> None:
        """The dist branch falls back to ``dist``."""
        assert DependencyConfig().branch == "dist"
        assert DependencyConfig(dist_branch="release").branch == "release"

    def test_npm_name_defaults_to_key(self) -> None:
        """The registry name falls back to the manifest key."""
        assert DependencyConfig().npm_name("y") == "y"
        assert DependencyConfig(npm="@scope/y").npm_name("y") == "@scope/y"

    def test_ignores_non_string_fields(self) -> None:
        """Malformed values are dropped rather than propagated."""
        entry = DependencyConfig.from_json({"github": 7, "gitlab": "g/r"})

        assert entry == DependencyConfig(gitlab="g/r")


class TestFindDependency:
    """Selecting a configured dependency by query."""

    def test_exact_match_beats_substring(self) -> None:
        """A case-insensitive exact match wins over substring matches."""
        document = _document("use-kbd-extra", "use-kbd")

        assert find_dependency(document, "USE-KBD")[0] == "use-kbd"

    def test_unique_substring_match(self) -> None:
        """A fragment matching one name selects it."""
        assert find_dependency(_document("react", "use-kbd"), "kbd")[0] == "use-kbd"

    def test_ambiguous_substring_lists_candidates(self) -> None:
        """A fragment matching several names reports all of them."""
        with pytest.raises(AmbiguousSelectionError) as excinfo:
            find_dependency(_document("use-kbd", "use-hotkeys"), "use")

        assert excinfo.value.candidates == ("use-kbd", "use-hotkeys")

    def test_no_match(self) -> None:
        """A fragment matching nothing is reported as not found."""
        with pytest.raises(NotFoundError, match="no dependency matching"):
            find_dependency(_document("use-kbd"), "react")

    def test_lone_dependency_is_default(self) -> None:
        """Without a query the single configured dependency is selected."""
        assert find_dependency(_document("use-kbd"))[0] == "use-kbd"

    def test_missing_query_with_several_dependencies(self) -> None:
        """Without a query several dependencies are ambiguous."""
        with pytest.raises(AmbiguousSelectionError):
            find_dependency(_document("a", "b"))

    def test_missing_query_with_no_dependencies(self) -> None:
        """Without a query and nothing configured the lookup fails."""
        with pytest.raises(NotFoundError, match="no dependencies configured"):
            find_dependency(ConfigDocument())


@pytest.mark.parametrize(
    ("names", "args", "expected"),
    [
        (("y",), ("v1.0.0", None), (None, "v1.0.0")),
        (("y", "z"), ("y", None), ("y", None)),
        (("y",), ("y", "v1.0.0"), ("y", "v1.0.0")),
        (("y",), (None, None), (None, None)),
    ],
    ids=["lone-dep-arg-is-ref", "several-deps", "both-given", "none-given"],
)
def test_split_query(
    names: tuple[str, ...],
    args: tuple[str | None, str | None],
    expected: tuple[str | None, str | None],
) -> None:
    """A lone positional names the ref only when one dependency exists."""
    assert split_query(_document(*names), *args) == expected
