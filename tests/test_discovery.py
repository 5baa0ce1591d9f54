"""Tests for target discovery and ordering."""

from __future__ import annotations

import json
import os

import pytest

from conftest import write_target
from parbuild.core.errors import InvalidConfigError, MissingConfigError
from parbuild.discovery import discover_packages, read_package_list, resolve_path, resolve_targets


@pytest.fixture
def workspace(tmp_path):
    """Root with two buildable packages and one without configuration."""
    write_target(tmp_path / "packages" / "core", ["true"])
    write_target(tmp_path / "packages" / "ui", ["true"])
    (tmp_path / "packages" / "docs").mkdir(parents=True)
    (tmp_path / "packages.json").write_text(
        json.dumps(["packages/ui", "packages/docs", "packages/core"])
    )
    return tmp_path


class TestPackageList:
    def test_reads_array(self, workspace):
        assert read_package_list(workspace, "packages.json") == [
            "packages/ui", "packages/docs", "packages/core",
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(MissingConfigError):
            read_package_list(tmp_path, "packages.json")

    @pytest.mark.parametrize("content", ['{"packages": []}', "[1, 2]", "not json"])
    def test_invalid_content(self, tmp_path, content):
        (tmp_path / "packages.json").write_text(content)
        with pytest.raises(InvalidConfigError):
            read_package_list(tmp_path, "packages.json")


class TestDiscoverPackages:
    def test_keeps_listed_order_and_skips_unconfigured(self, workspace):
        found = discover_packages(workspace)
        assert found == [
            os.path.realpath(workspace / "packages" / "ui"),
            os.path.realpath(workspace / "packages" / "core"),
        ]


class TestResolveTargets:
    def test_root_only_by_default(self, workspace):
        assert resolve_targets(workspace) == [str(workspace)]

    def test_packages_then_with_then_root(self, workspace):
        targets = resolve_targets(
            workspace,
            with_paths=["../shared"],
            with_packages=True,
        )
        assert targets == [
            os.path.realpath(workspace / "packages" / "ui"),
            os.path.realpath(workspace / "packages" / "core"),
            resolve_path(workspace, "../shared"),
            str(workspace),
        ]

    def test_defaults_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_targets() == [os.getcwd()]

    def test_with_packages_requires_list(self, tmp_path):
        with pytest.raises(MissingConfigError):
            resolve_targets(tmp_path, with_packages=True)
