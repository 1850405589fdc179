"""
Tests for the crepo command line.
"""

import json

import pytest
from pathlib import Path
from typer.testing import CliRunner

from crepo import Repository
from crepo.cli import app
from crepo.config import CONFIG_ENV_VAR
from crepo.items import Node
from crepo.types import PropertyType


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep the user's configuration out of every test."""
    monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "config" / "config.json"))


@pytest.fixture
def repo_path(tmp_path):
    """An initialized repository with a /page node."""
    path = tmp_path / "repo"
    result = runner.invoke(app, ["init", str(path)])
    assert result.exit_code == 0
    result = runner.invoke(app, ["mkdir", str(path), "/page"])
    assert result.exit_code == 0
    return path


@pytest.fixture
def linked_repo(repo_path):
    """/target referenced by /holder/link."""
    repo = Repository.open(repo_path)
    try:
        repo.login()
        target = Node("/target")
        target.add_mixin("mix:referenceable")
        repo.store_node(target)
        holder = Node("/holder")
        holder.add_mixin("mix:referenceable")
        holder.set_property("link", target.identifier, PropertyType.REFERENCE)
        repo.store_node(holder)
    finally:
        repo.close()
    return repo_path


def node_exists(repo_path: Path, path: str, workspace=None) -> bool:
    repo = Repository.open(repo_path)
    try:
        repo.login(workspace_name=workspace)
        return repo.nodes.path_exists(path)
    finally:
        repo.close()


class TestInit:

    def test_init_creates_repository(self, tmp_path):
        path = tmp_path / "new"
        result = runner.invoke(app, ["init", str(path)])
        assert result.exit_code == 0
        assert "Repository initialized" in result.stdout
        assert (path / "repository.db").exists()

    def test_init_without_path_or_default(self):
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1
        assert "No repository path" in result.stdout

    def test_init_uses_configured_path(self, tmp_path):
        path = tmp_path / "configured"
        assert runner.invoke(app, ["config", "set", "--storage-path", str(path)]).exit_code == 0

        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert (path / "repository.db").exists()

    def test_missing_repository(self, tmp_path):
        result = runner.invoke(app, ["ls", str(tmp_path / "nowhere")])
        assert result.exit_code == 1
        assert "Repository not found" in result.stdout


class TestNodeCommands:

    def test_ls_root(self, repo_path):
        result = runner.invoke(app, ["ls", str(repo_path)])
        assert result.exit_code == 0
        assert "page" in result.stdout

    def test_ls_leaf(self, repo_path):
        result = runner.invoke(app, ["ls", str(repo_path), "/page"])
        assert result.exit_code == 0
        assert "no child nodes" in result.stdout

    def test_mkdir_requires_parent(self, repo_path):
        result = runner.invoke(app, ["mkdir", str(repo_path), "/missing/child"])
        assert result.exit_code == 1
        assert not node_exists(repo_path, "/missing/child")

    def test_set_and_show(self, repo_path):
        result = runner.invoke(app, ["set", str(repo_path), "/page", "count", "42", "--type", "Long"])
        assert result.exit_code == 0
        assert "/page/count" in result.stdout

        result = runner.invoke(app, ["show", str(repo_path), "/page"])
        assert result.exit_code == 0
        assert "count" in result.stdout
        assert "Long" in result.stdout
        assert "42" in result.stdout

    def test_set_multi(self, repo_path):
        result = runner.invoke(app, ["set", str(repo_path), "/page", "tags", "a", "b", "--multi"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["show", str(repo_path), "/page"])
        assert "tags[]" in result.stdout
        assert "a, b" in result.stdout

    def test_set_several_values_needs_multi(self, repo_path):
        result = runner.invoke(app, ["set", str(repo_path), "/page", "tags", "a", "b"])
        assert result.exit_code == 1

    def test_set_invalid_value(self, repo_path):
        result = runner.invoke(app, ["set", str(repo_path), "/page", "count", "many", "--type", "Long"])
        assert result.exit_code == 1

    def test_show_missing_node(self, repo_path):
        result = runner.invoke(app, ["show", str(repo_path), "/missing"])
        assert result.exit_code == 1
        assert "Not found" in result.stdout

    def test_cp_and_mv(self, repo_path):
        result = runner.invoke(app, ["cp", str(repo_path), "/page", "/copy"])
        assert result.exit_code == 0
        assert "Copied 1 node(s)" in result.stdout

        result = runner.invoke(app, ["mv", str(repo_path), "/copy", "/moved"])
        assert result.exit_code == 0
        assert node_exists(repo_path, "/moved")
        assert not node_exists(repo_path, "/copy")

    def test_cp_onto_existing(self, repo_path):
        runner.invoke(app, ["mkdir", str(repo_path), "/other"])
        result = runner.invoke(app, ["cp", str(repo_path), "/page", "/other"])
        assert result.exit_code == 1
        assert "Already exists" in result.stdout

    def test_rm_force(self, repo_path):
        result = runner.invoke(app, ["rm", str(repo_path), "/page", "-f"])
        assert result.exit_code == 0
        assert not node_exists(repo_path, "/page")

    def test_rm_cancelled(self, repo_path):
        result = runner.invoke(app, ["rm", str(repo_path), "/page"], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.stdout
        assert node_exists(repo_path, "/page")

    def test_put_and_cat(self, repo_path, tmp_path):
        payload = tmp_path / "payload.bin"
        payload.write_bytes(b"\x00binary\xff")

        result = runner.invoke(app, ["put", str(repo_path), "/page", "data", str(payload)])
        assert result.exit_code == 0

        result = runner.invoke(app, ["cat", str(repo_path), "/page/data"])
        assert result.exit_code == 0
        assert result.stdout_bytes == b"\x00binary\xff"


class TestReferenceCommands:

    def test_refs(self, linked_repo):
        result = runner.invoke(app, ["refs", str(linked_repo), "/target"])
        assert result.exit_code == 0
        assert "/holder/link" in result.stdout

    def test_weak_refs_empty(self, linked_repo):
        result = runner.invoke(app, ["refs", str(linked_repo), "/target", "--weak"])
        assert result.exit_code == 0
        assert "No weak references" in result.stdout

    def test_rm_referenced_node_refused(self, linked_repo):
        result = runner.invoke(app, ["rm", str(linked_repo), "/target", "-f"])
        assert result.exit_code == 1
        assert node_exists(linked_repo, "/target")


class TestWorkspaceCommands:

    def test_create_list_delete(self, repo_path):
        result = runner.invoke(app, ["workspace", "create", str(repo_path), "scratch"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["workspace", "list", str(repo_path)])
        assert "default" in result.stdout
        assert "scratch" in result.stdout

        result = runner.invoke(app, ["workspace", "delete", str(repo_path), "scratch", "-f"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["workspace", "list", str(repo_path)])
        assert "scratch" not in result.stdout

    def test_workspace_option(self, repo_path):
        runner.invoke(app, ["workspace", "create", str(repo_path), "scratch"])

        result = runner.invoke(app, ["-w", "scratch", "ls", str(repo_path)])
        assert result.exit_code == 0
        assert "no child nodes" in result.stdout

    def test_unknown_workspace(self, repo_path):
        result = runner.invoke(app, ["-w", "ghost", "ls", str(repo_path)])
        assert result.exit_code == 1

    def test_delete_missing_workspace(self, repo_path):
        result = runner.invoke(app, ["workspace", "delete", str(repo_path), "ghost", "-f"])
        assert result.exit_code == 1
        assert "does not exist" in result.stdout


class TestNamespaceCommands:

    def test_register_list_unregister(self, repo_path):
        result = runner.invoke(app, ["ns", "register", str(repo_path), "app", "http://example.com/app"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["ns", "list", str(repo_path)])
        assert "app" in result.stdout
        assert "http://example.com/app" in result.stdout

        result = runner.invoke(app, ["ns", "unregister", str(repo_path), "app"])
        assert result.exit_code == 0

    def test_reserved_prefix(self, repo_path):
        result = runner.invoke(app, ["ns", "register", str(repo_path), "jcr", "http://example.com"])
        assert result.exit_code == 1
        assert "Namespace" in result.stdout


class TestMiscCommands:

    def test_info(self, repo_path):
        result = runner.invoke(app, ["info", str(repo_path)])
        assert result.exit_code == 0
        assert "Repository Descriptors" in result.stdout

    def test_about(self):
        result = runner.invoke(app, ["about"])
        assert result.exit_code == 0
        assert "crepo" in result.stdout

    def test_config_set_and_show(self):
        result = runner.invoke(app, ["config", "set", "--default-workspace", "main", "--no-transactions"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "default_workspace: main" in result.stdout
        assert "transactions: False" in result.stdout

    def test_types(self):
        result = runner.invoke(app, ["types"])
        assert result.exit_code == 0
        assert "mix:referenceable" in result.stdout
        assert "nt:unstructured" in result.stdout


class TestShowJson:

    def test_show_json(self, repo_path):
        runner.invoke(app, ["set", str(repo_path), "/page", "title", "Hello"])

        result = runner.invoke(app, ["show", str(repo_path), "/page", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {"jcr:primaryType": "nt:unstructured", "title": "Hello"}
