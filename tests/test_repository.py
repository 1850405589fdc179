"""
Tests for the Repository facade: login, descriptors and the save cycle.
"""

import pytest
import tempfile
import shutil
from pathlib import Path

from crepo import Repository, __version__
from crepo.config import CrepoConfig
from crepo.descriptors import (
    IDENTIFIER_STABILITY_INDEFINITE_DURATION, TRANSACTIONS, WORKSPACE_MANAGEMENT,
    build_descriptors, supports,
)
from crepo.exceptions import ItemNotFoundError, NoSuchWorkspaceError, RepositoryError
from crepo.items import Node


@pytest.fixture
def temp_dir():
    path = tempfile.mkdtemp()
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def temp_repo(temp_dir):
    repo = Repository.open(temp_dir)

    yield repo

    repo.close()


class TestOpen:

    def test_open_creates_storage(self, temp_dir, temp_repo):
        assert (temp_dir / "repository.db").exists()
        assert (temp_dir / "blobs").is_dir()

    def test_reopen_keeps_content(self, temp_dir):
        repo = Repository.open(temp_dir)
        repo.login()
        repo.store_node(Node("/kept"))
        repo.close()

        repo = Repository.open(temp_dir)
        repo.login()
        assert repo.get_node("/").child_names == ["kept"]
        repo.close()


class TestLogin:

    def test_default_workspace_created_lazily(self, temp_repo):
        assert temp_repo.get_accessible_workspace_names() == []
        assert temp_repo.login() == "default"
        assert temp_repo.get_accessible_workspace_names() == ["default"]
        assert temp_repo.is_logged_in

    def test_second_login_reuses_default(self, temp_repo):
        temp_repo.login()
        temp_repo.login(credentials={"user": "anyone"})
        assert temp_repo.get_accessible_workspace_names() == ["default"]

    def test_unknown_workspace(self, temp_repo):
        with pytest.raises(NoSuchWorkspaceError):
            temp_repo.login(workspace_name="missing")
        assert not temp_repo.is_logged_in

    def test_configured_default_workspace(self, temp_dir):
        config = CrepoConfig()
        config.session.default_workspace = "main"
        repo = Repository.open(temp_dir, config=config)
        try:
            assert repo.login() == "main"
        finally:
            repo.close()

    def test_operations_require_login(self, temp_repo):
        with pytest.raises(RepositoryError, match="Not logged in"):
            temp_repo.get_node("/")

    def test_logout(self, temp_repo):
        temp_repo.login()
        temp_repo.logout()
        assert not temp_repo.is_logged_in
        with pytest.raises(RepositoryError):
            temp_repo.get_node("/")

    def test_permissions_are_constant(self, temp_repo):
        temp_repo.login()
        assert temp_repo.get_permissions("/anything") == {"add_node", "read", "remove", "set_property"}


class TestDescriptors:

    def test_descriptor_values(self, temp_repo):
        descriptors = temp_repo.get_repository_descriptors()
        assert descriptors["identifier.stability"] == IDENTIFIER_STABILITY_INDEFINITE_DURATION
        assert descriptors["jcr.repository.version"] == __version__
        assert supports(descriptors, WORKSPACE_MANAGEMENT)
        assert supports(descriptors, TRANSACTIONS)
        assert not supports(descriptors, "option.versioning.supported")
        assert not supports(descriptors, "not.a.descriptor")

    def test_descriptors_are_read_only(self, temp_repo):
        with pytest.raises(TypeError):
            temp_repo.get_repository_descriptors()["write.supported"] = False

    def test_transactions_flag_follows_config(self):
        assert build_descriptors(False)[TRANSACTIONS] is False
        assert build_descriptors(True)[TRANSACTIONS] is True

    def test_string_valued_descriptor_is_not_support(self):
        assert not supports({"query.languages": ""}, "query.languages")
        assert not supports({"x": "true"}, "x")


class TestSaveCycle:
    """prepare_save / finish_save / rollback_save."""

    def test_finish_save_commits(self, temp_repo):
        temp_repo.login()
        temp_repo.prepare_save()
        temp_repo.store_node(Node("/saved"))
        temp_repo.finish_save()

        temp_repo.session.rollback()
        assert temp_repo.get_node("/saved").path == "/saved"

    def test_rollback_save_discards_writes(self, temp_repo):
        temp_repo.login()
        temp_repo.store_node(Node("/before"))

        temp_repo.prepare_save()
        node = Node("/during")
        node.set_property("data", b"blob")
        temp_repo.store_node(node)
        temp_repo.delete_node("/before")
        temp_repo.rollback_save()

        with pytest.raises(ItemNotFoundError):
            temp_repo.get_node("/during")
        assert temp_repo.get_node("/before").path == "/before"

    def test_rollback_forgets_identifiers(self, temp_repo):
        temp_repo.login()
        temp_repo.prepare_save()
        first = Node("/again")
        temp_repo.store_node(first)
        temp_repo.rollback_save()

        second = Node("/again")
        temp_repo.store_node(second)
        assert second.identifier != first.identifier
        assert temp_repo.get_node("/again").identifier == second.identifier

    def test_without_transactions_writes_are_immediate(self, temp_dir):
        config = CrepoConfig()
        config.session.transactions = False
        repo = Repository.open(temp_dir, config=config)
        try:
            assert repo.get_repository_descriptors()[TRANSACTIONS] is False
            repo.login()
            repo.prepare_save()
            repo.store_node(Node("/kept"))
            repo.rollback_save()
            assert repo.get_node("/kept").path == "/kept"
        finally:
            repo.close()

    def test_close_rolls_back_unfinished_save(self, temp_dir):
        repo = Repository.open(temp_dir)
        repo.login()
        repo.prepare_save()
        repo.store_node(Node("/pending"))
        repo.close()

        repo = Repository.open(temp_dir)
        repo.login()
        try:
            with pytest.raises(ItemNotFoundError):
                repo.get_node("/pending")
        finally:
            repo.close()
