"""
Tests for workspace and namespace registries.
"""

import pytest
import tempfile
import shutil
from pathlib import Path

from crepo import Repository
from crepo.db.models import Namespace, NodeDocument
from crepo.descriptors import WORKSPACE_MANAGEMENT
from crepo.exceptions import (
    NamespaceError, NoSuchWorkspaceError, NotImplementedCapability, RepositoryError,
    UnsupportedRepositoryOperationError, ValueFormatError,
)
from crepo.items import Node
from crepo.services.namespace_service import BUILTIN_NAMESPACES
from crepo.services.workspace_service import WorkspaceService
from crepo.types import PropertyType


@pytest.fixture
def temp_repo():
    temp_dir = tempfile.mkdtemp()
    repo = Repository.open(Path(temp_dir))

    yield repo

    repo.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


class TestCreateWorkspace:

    def test_create_seeds_root(self, temp_repo):
        temp_repo.create_workspace("default")
        temp_repo.login()

        root = temp_repo.get_node("/")
        assert root.primary_type == "nt:unstructured"
        assert root.properties == []
        assert root.child_names == []

    def test_create_lists_names(self, temp_repo):
        temp_repo.create_workspace("one")
        temp_repo.create_workspace("two")
        assert temp_repo.get_accessible_workspace_names() == ["one", "two"]

    def test_duplicate_name(self, temp_repo):
        temp_repo.create_workspace("one")
        with pytest.raises(RepositoryError, match="already exists"):
            temp_repo.create_workspace("one")

    def test_copy_on_create_not_implemented(self, temp_repo):
        temp_repo.create_workspace("one")
        with pytest.raises(NotImplementedCapability):
            temp_repo.create_workspace("two", src_workspace="one")
        assert temp_repo.get_accessible_workspace_names() == ["one"]

    def test_workspaces_are_isolated(self, temp_repo):
        temp_repo.create_workspace("other")
        temp_repo.login()
        temp_repo.store_node(Node("/only-here"))

        temp_repo.login(workspace_name="other")
        assert temp_repo.get_node("/").child_names == []


class TestDeleteWorkspace:

    def test_delete_removes_nodes_then_workspace(self, temp_repo):
        temp_repo.create_workspace("scratch")
        temp_repo.login(workspace_name="scratch")
        node = Node("/file")
        node.set_property("data", b"bytes")
        temp_repo.store_node(node)
        workspace_id = temp_repo.workspace_id

        temp_repo.delete_workspace("scratch")

        assert "scratch" not in temp_repo.get_accessible_workspace_names()
        assert temp_repo.session.query(NodeDocument).filter_by(workspace_id=workspace_id).count() == 0
        assert list(temp_repo.blobs.blob_dir.glob("*/*")) == []

    def test_logged_in_workspace_deleted(self, temp_repo):
        temp_repo.create_workspace("scratch")
        temp_repo.login(workspace_name="scratch")
        temp_repo.delete_workspace("scratch")

        with pytest.raises(NoSuchWorkspaceError):
            temp_repo.get_node("/")

    def test_delete_missing_workspace(self, temp_repo):
        with pytest.raises(RepositoryError, match="does not exist"):
            temp_repo.delete_workspace("nope")

    def test_delete_requires_capability(self, temp_repo):
        temp_repo.create_workspace("scratch")
        descriptors = dict(temp_repo.descriptors)
        descriptors[WORKSPACE_MANAGEMENT] = False
        service = WorkspaceService(temp_repo.session, descriptors, temp_repo.blobs)

        with pytest.raises(UnsupportedRepositoryOperationError):
            service.delete_workspace("scratch")
        assert "scratch" in temp_repo.get_accessible_workspace_names()


class TestNamespaces:

    def test_builtins_present(self, temp_repo):
        namespaces = temp_repo.get_namespaces()
        assert namespaces["jcr"] == "http://www.jcp.org/jcr/1.0"
        assert namespaces["mix"] == "http://www.jcp.org/jcr/mix/1.0"
        assert namespaces[""] == ""

    def test_register_and_unregister(self, temp_repo):
        temp_repo.register_namespace("app", "http://example.com/app")
        assert temp_repo.get_namespaces()["app"] == "http://example.com/app"
        assert temp_repo.namespaces.get_prefix("http://example.com/app") == "app"

        temp_repo.unregister_namespace("app")
        assert "app" not in temp_repo.get_namespaces()

    def test_register_replaces_uri(self, temp_repo):
        temp_repo.register_namespace("app", "http://example.com/v1")
        temp_repo.register_namespace("app", "http://example.com/v2")
        assert temp_repo.namespaces.get_uri("app") == "http://example.com/v2"
        assert temp_repo.session.query(Namespace).count() == 1

    @pytest.mark.parametrize("prefix", sorted(BUILTIN_NAMESPACES))
    def test_reserved_prefixes(self, temp_repo, prefix):
        with pytest.raises(NamespaceError):
            temp_repo.register_namespace(prefix, "http://example.com/override")
        with pytest.raises(NamespaceError):
            temp_repo.unregister_namespace(prefix)

    def test_invalid_prefix(self, temp_repo):
        with pytest.raises(NamespaceError):
            temp_repo.register_namespace("a:b", "http://example.com")

    def test_unregister_unknown(self, temp_repo):
        with pytest.raises(NamespaceError):
            temp_repo.unregister_namespace("ghost")

    def test_stored_override_of_reserved_prefix_ignored(self, temp_repo):
        temp_repo.session.add(Namespace(prefix="jcr", uri="http://example.com/evil"))
        temp_repo.session.commit()
        temp_repo.namespaces.invalidate()

        assert temp_repo.get_namespaces()["jcr"] == "http://www.jcp.org/jcr/1.0"

    def test_registered_prefix_usable_in_names(self, temp_repo):
        temp_repo.login()
        node = Node("/typed")
        node.set_property("kind", "app:article", PropertyType.NAME)
        with pytest.raises(ValueFormatError):
            temp_repo.store_node(node)

        temp_repo.register_namespace("app", "http://example.com/app")
        temp_repo.store_node(node)
        assert temp_repo.get_property("/typed/kind").value == "app:article"
