"""Tests for the Vite ``optimizeDeps.exclude`` toggle."""

from __future__ import annotations

import logging
import typing as typ

import pytest

from pnpm_dep_source.bundler import (
    add_exclusion,
    find_bundler_config,
    remove_exclusion,
    toggle_exclusion,
)

from .conftest import VITE_CONFIG

if typ.TYPE_CHECKING:
    from pathlib import Path

ROUND_TRIP_CONFIGS: typ.Final[dict[str, str]] = {
    "no-optimize-deps": VITE_CONFIG,
    "inline-exclude": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    exclude: ['a'],\n"
        "  },\n"
        "})\n"
    ),
    "multiline-exclude": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    exclude: [\n"
        "      'a',\n"
        "    ],\n"
        "  },\n"
        "})\n"
    ),
    "multiline-exclude-no-trailing-comma": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    exclude: [\n"
        "      'a'\n"
        "    ],\n"
        "  },\n"
        "})\n"
    ),
    "padded-inline-exclude": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    exclude: [ 'a' ],\n"
        "  },\n"
        "})\n"
    ),
    "commented-last-entry": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    exclude: [\n"
        "      'a' // don't pre-bundle\n"
        "    ],\n"
        "  },\n"
        "})\n"
    ),
    "optimize-deps-without-exclude": (
        "export default defineConfig({\n"
        "  optimizeDeps: {\n"
        "    include: ['b'],\n"
        "  },\n"
        "})\n"
    ),
    "plain-object": "export default {\n    plugins: [],\n}\n",
}


@pytest.mark.parametrize(
    "text", list(ROUND_TRIP_CONFIGS.values()), ids=list(ROUND_TRIP_CONFIGS)
)
def test_add_then_remove_is_byte_identical(text: str) -> None:
    """Excluding and then including a name restores the original config."""
    added = add_exclusion(text, "@scope/y")

    assert "'@scope/y'" in added
    assert remove_exclusion(added, "@scope/y") == text


def test_add_creates_optimize_deps_block() -> None:
    """A config without ``optimizeDeps`` gains one using its own indent."""
    added = add_exclusion(VITE_CONFIG, "y")

    assert "export default defineConfig({\n  optimizeDeps: {\n" in added
    assert "    exclude: ['y'],\n  },\n  plugins: [react()],\n" in added


def test_add_appends_to_existing_array() -> None:
    """An existing single-line array gets the name appended."""
    text = ROUND_TRIP_CONFIGS["inline-exclude"]

    assert "exclude: ['a', 'y']," in add_exclusion(text, "y")


def test_add_keeps_comment_after_comma() -> None:
    """The separating comma goes before a trailing line comment."""
    text = ROUND_TRIP_CONFIGS["commented-last-entry"]

    added = add_exclusion(text, "y")

    assert "      'a', // don't pre-bundle\n      'y'\n    ],\n" in added


def test_add_keeps_inline_padding() -> None:
    """Spaces inside a single-line array are preserved."""
    text = ROUND_TRIP_CONFIGS["padded-inline-exclude"]

    assert "exclude: [ 'a', 'y' ]," in add_exclusion(text, "y")


def test_add_is_idempotent() -> None:
    """Adding an excluded name again changes nothing."""
    once = add_exclusion(VITE_CONFIG, "y")

    assert add_exclusion(once, "y") == once


def test_add_follows_double_quote_style() -> None:
    """Files quoting with double quotes get a double-quoted entry."""
    text = (
        'import { defineConfig } from "vite"\n'
        "\n"
        "export default defineConfig({\n"
        '  resolve: { alias: { "@": "/src" } },\n'
        "})\n"
    )

    assert 'exclude: ["y"],' in add_exclusion(text, "y")


def test_remove_keeps_other_names() -> None:
    """Removing one name leaves the rest of the array alone."""
    text = ROUND_TRIP_CONFIGS["inline-exclude"].replace("['a']", "['a', 'y']")

    assert remove_exclusion(text, "y") == ROUND_TRIP_CONFIGS["inline-exclude"]


def test_remove_absent_name_is_noop() -> None:
    """Removing a name that is not excluded returns the text unchanged."""
    text = ROUND_TRIP_CONFIGS["inline-exclude"]

    assert remove_exclusion(text, "y") == text
    assert remove_exclusion(VITE_CONFIG, "y") == VITE_CONFIG


def test_remove_does_not_match_prefixes() -> None:
    """Only the exact quoted name is removed."""
    text = ROUND_TRIP_CONFIGS["inline-exclude"].replace("['a']", "['y-extra']")

    assert remove_exclusion(text, "y") == text


class TestToggleExclusion:
    """File-level toggling."""

    def test_without_config_is_noop(self, tmp_path: Path) -> None:
        """Projects without a Vite config are left alone."""
        assert toggle_exclusion(tmp_path, "y", exclude=True) is False
        assert find_bundler_config(tmp_path) is None

    def test_prefers_first_config_name(self, tmp_path: Path) -> None:
        """The first existing config file is the one edited."""
        (tmp_path / "vite.config.mts").write_text(VITE_CONFIG, encoding="utf-8")
        (tmp_path / "vite.config.js").write_text(VITE_CONFIG, encoding="utf-8")

        assert toggle_exclusion(tmp_path, "y", exclude=True) is True

        assert "'y'" in (tmp_path / "vite.config.mts").read_text(encoding="utf-8")
        assert (tmp_path / "vite.config.js").read_text(encoding="utf-8") == VITE_CONFIG

    def test_round_trip_on_disk(self, tmp_path: Path) -> None:
        """Toggling on and off restores the file and reports each change."""
        path = tmp_path / "vite.config.ts"
        path.write_text(VITE_CONFIG, encoding="utf-8")

        assert toggle_exclusion(tmp_path, "y", exclude=True) is True
        assert toggle_exclusion(tmp_path, "y", exclude=True) is False
        assert toggle_exclusion(tmp_path, "y", exclude=False) is True
        assert path.read_text(encoding="utf-8") == VITE_CONFIG

    def test_unparseable_config_is_left_alone(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An unbalanced config logs a warning instead of failing the switch."""
        path = tmp_path / "vite.config.ts"
        broken = "export default defineConfig({\n  optimizeDeps: {\n"
        path.write_text(broken, encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            assert toggle_exclusion(tmp_path, "y", exclude=True) is False

        assert "could not parse vite.config.ts" in caplog.text
        assert path.read_text(encoding="utf-8") == broken
