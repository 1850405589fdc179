"""
Repository facade for crepo.

Ties the node store, blob store, reference lookup and the workspace and
namespace registries to one SQLAlchemy session, and adds the session-level
surface a client works against: login, descriptors and the save cycle.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import CrepoConfig
from .db.session import close_db, get_session, init_db
from .descriptors import build_descriptors
from .exceptions import NoSuchWorkspaceError, NotImplementedCapability, RepositoryError
from .nodetypes import NodeTypeManager
from .services.blob_service import BlobService
from .services.namespace_service import NamespaceRegistry
from .services.node_service import NodeService
from .services.property_codec import PropertyCodec
from .services.workspace_service import WorkspaceService
from .types import PropertyRecord, StoredNode

logger = logging.getLogger(__name__)

PERMISSIONS = frozenset({"add_node", "read", "remove", "set_property"})


class Repository:
    """
    Content repository backed by SQLAlchemy + SQLite.

    Usage:
        repo = Repository.open("/path/to/repo")
        repo.login()
        root = Node("/", is_new=False)
        page = root.add_node("page")
        page.set_property("title", "Hello")
        repo.store_node(page)
        repo.get_node("/page")
        repo.close()
    """

    def __init__(self, repository_path: Path, session: Session,
                 config: Optional[CrepoConfig] = None,
                 node_types: Optional[NodeTypeManager] = None):
        self.repository_path = Path(repository_path)
        self.session = session
        self.config = config or CrepoConfig()
        self.transactions = self.config.session.transactions
        self.descriptors = build_descriptors(self.transactions)
        self.node_types = node_types or NodeTypeManager()
        self.blobs = BlobService(repository_path, session)
        self.namespaces = NamespaceRegistry(session)
        self.workspaces = WorkspaceService(session, self.descriptors, self.blobs)
        self.codec = PropertyCodec(self.namespaces.get_namespaces)
        self.validator = None

        self.workspace_name: Optional[str] = None
        self.workspace_id: Optional[int] = None
        self._nodes: Optional[NodeService] = None

    @classmethod
    def open(cls, repository_path: Union[str, Path], echo: bool = False,
             config: Optional[CrepoConfig] = None) -> 'Repository':
        """
        Open or create a repository.

        Args:
            repository_path: Path to repository directory
            echo: If True, log all SQL statements
            config: Configuration; defaults are used if omitted

        Returns:
            Repository instance
        """
        repository_path = Path(repository_path)
        config = config or CrepoConfig()
        init_db(repository_path, echo=echo or config.storage.echo_sql)
        session = get_session()

        logger.info(f"Opened repository at {repository_path}")
        return cls(repository_path, session, config)

    def close(self):
        """Close repository and cleanup database connection."""
        if self._nodes is not None and self._nodes.defer_commit:
            logger.warning("Closing with an unfinished save; rolling back")
            self.rollback_save()
        if self.session:
            self.session.close()
        close_db()
        logger.info("Closed repository")

    # ---------------- Session ----------------

    def login(self, credentials: Any = None, workspace_name: Optional[str] = None) -> str:
        """
        Bind this repository to a workspace.

        Credentials are accepted and ignored. The default workspace is
        created on first login; any other workspace must already exist.

        Returns:
            Name of the workspace logged into

        Raises:
            NoSuchWorkspaceError: if the workspace does not exist
        """
        default_name = self.config.session.default_workspace
        name = workspace_name or default_name

        workspace_id = self.workspaces.get_workspace_id(name)
        if workspace_id is None:
            if name != default_name:
                raise NoSuchWorkspaceError(f"Workspace '{name}' does not exist", workspace=name)
            workspace_id = self.workspaces.create_workspace(name).id

        self.workspace_name = name
        self.workspace_id = workspace_id
        self._nodes = NodeService(
            self.session, workspace_id, self.codec, self.blobs, self.node_types,
            workspace_name=name, validator=self.validator,
        )
        logger.info(f"Logged into workspace '{name}'")
        return name

    def logout(self) -> None:
        if self._nodes is not None and self._nodes.defer_commit:
            self.rollback_save()
        self.workspace_name = None
        self.workspace_id = None
        self._nodes = None

    @property
    def is_logged_in(self) -> bool:
        return self._nodes is not None

    @property
    def nodes(self) -> NodeService:
        """Node store of the current workspace.

        Raises:
            RepositoryError: when not logged in
            NoSuchWorkspaceError: the workspace was deleted after login
        """
        if self._nodes is None:
            raise RepositoryError("Not logged in")
        if not self.workspaces.exists(self.workspace_id):
            raise NoSuchWorkspaceError(
                f"Workspace '{self.workspace_name}' no longer exists", workspace=self.workspace_name,
            )
        return self._nodes

    def get_repository_descriptors(self) -> Mapping[str, Any]:
        return self.descriptors

    def get_accessible_workspace_names(self) -> List[str]:
        return self.workspaces.get_names()

    def get_permissions(self, path: str) -> Set[str]:
        """Every session has full access."""
        return set(PERMISSIONS)

    # ---------------- Node store ----------------

    def get_node(self, path: str) -> StoredNode:
        return self.nodes.get_node(path)

    def get_nodes(self, paths: Iterable[str]) -> Dict[str, StoredNode]:
        return self.nodes.get_nodes(paths)

    def get_node_by_identifier(self, identifier: str) -> StoredNode:
        return self.nodes.get_node_by_identifier(identifier)

    def get_nodes_by_identifier(self, identifiers: Iterable[str]) -> Dict[str, StoredNode]:
        return self.nodes.get_nodes_by_identifier(identifiers)

    def get_node_path_for_identifier(self, identifier: str) -> str:
        return self.nodes.get_node_path_for_identifier(identifier)

    def get_property(self, path: str) -> PropertyRecord:
        return self.nodes.get_property(path)

    def get_binary_stream(self, path: str, index: int = 0):
        return self.nodes.get_binary_stream(path, index)

    def store_node(self, node) -> bool:
        return self.nodes.store_node(node)

    def store_property(self, prop) -> bool:
        return self.nodes.store_property(prop)

    def delete_node(self, path: str) -> int:
        return self.nodes.delete_node(path)

    def delete_property(self, path: str) -> bool:
        return self.nodes.delete_property(path)

    def copy_node(self, src_path: str, dst_path: str, src_workspace: Optional[str] = None) -> int:
        """
        Copy a subtree into the current workspace.

        Args:
            src_workspace: Workspace to copy from; the current one if omitted

        Raises:
            NoSuchWorkspaceError: if ``src_workspace`` does not exist
        """
        src_workspace_id = None
        if src_workspace is not None:
            src_workspace_id = self.workspaces.get_workspace_id(src_workspace)
            if src_workspace_id is None:
                raise NoSuchWorkspaceError(f"Workspace '{src_workspace}' does not exist",
                                           workspace=src_workspace)
        return self.nodes.copy_node(src_path, dst_path, src_workspace_id)

    def move_node(self, src_path: str, dst_path: str) -> int:
        return self.nodes.move_node(src_path, dst_path)

    def reorder_children(self, node):
        return self.nodes.reorder_children(node)

    def update_node(self, node, src_workspace: str):
        return self.nodes.update_node(node, src_workspace)

    def clone_from(self, src_workspace: str, src_path: str, dst_path: str, remove_existing: bool = False):
        return self.nodes.clone_from(src_workspace, src_path, dst_path, remove_existing)

    def move_nodes(self, operations):
        return self.nodes.move_nodes(operations)

    def delete_nodes(self, operations):
        return self.nodes.delete_nodes(operations)

    def delete_properties(self, operations):
        return self.nodes.delete_properties(operations)

    def store_nodes(self, operations):
        return self.nodes.store_nodes(operations)

    def update_properties(self, node):
        return self.nodes.update_properties(node)

    def move_node_immediately(self, src_path: str, dst_path: str):
        return self.nodes.move_node_immediately(src_path, dst_path)

    def delete_node_immediately(self, path: str):
        return self.nodes.delete_node_immediately(path)

    def delete_property_immediately(self, path: str):
        return self.nodes.delete_property_immediately(path)

    def register_node_types(self, definitions, allow_update: bool = False):
        raise NotImplementedCapability("Registering node types through the repository is not implemented.")

    def query(self, statement: str, language: str = "sql"):
        raise NotImplementedCapability("Queries are not implemented.")

    # ---------------- References ----------------

    def get_references(self, path: str, name: Optional[str] = None) -> List[str]:
        return self.nodes.references.find_references(path, name=name, weak=False)

    def get_weak_references(self, path: str, name: Optional[str] = None) -> List[str]:
        return self.nodes.references.find_references(path, name=name, weak=True)

    # ---------------- Registries ----------------

    def create_workspace(self, name: str, src_workspace: Optional[str] = None) -> None:
        self.workspaces.create_workspace(name, src_workspace)

    def delete_workspace(self, name: str) -> None:
        self.workspaces.delete_workspace(name)

    def get_namespaces(self) -> Dict[str, str]:
        return self.namespaces.get_namespaces()

    def register_namespace(self, prefix: str, uri: str) -> None:
        self.namespaces.register_namespace(prefix, uri)

    def unregister_namespace(self, prefix: str) -> None:
        self.namespaces.unregister_namespace(prefix)

    # ---------------- Save cycle ----------------

    def prepare_save(self) -> None:
        """Start a save: writes are flushed but held until :meth:`finish_save`."""
        nodes = self.nodes
        if not self.transactions:
            return
        self.session.commit()
        nodes.defer_commit = True
        logger.debug("Save started")

    def finish_save(self) -> None:
        nodes = self.nodes
        if not nodes.defer_commit:
            return
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Committing save failed: {e}", workspace=self.workspace_name) from e
        finally:
            nodes.defer_commit = False
        self.blobs.collect_garbage()
        logger.debug("Save finished")

    def rollback_save(self) -> None:
        nodes = self._nodes
        if nodes is None or not nodes.defer_commit:
            return
        self.session.rollback()
        nodes.defer_commit = False
        nodes.forget_identifiers()
        logger.info("Save rolled back")
