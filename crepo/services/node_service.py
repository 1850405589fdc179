"""Service for reading and writing node documents.

Each node is one ``nodes`` row keyed by (workspace, path). Whole subtrees
are selected by path prefix, so copy, move and delete touch every row
whose path lies under the subtree root. These multi-row operations read
first and write afterwards without any locking; a concurrent writer on an
overlapping subtree can interleave with them.
"""

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import paths
from ..db.models import NodeDocument
from ..exceptions import (
    ItemExistsError, ItemNotFoundError, NotImplementedCapability, PathNotFoundError,
    ReferentialIntegrityError, RepositoryError, ValueFormatError,
)
from ..nodetypes import NodeTypeManager
from ..types import (
    DEFAULT_PRIMARY_TYPE, REFERENCEABLE, UUID_PROPERTY, PropertyRecord, PropertyType,
    StoredNode,
)
from .blob_service import BlobService
from .property_codec import PropertyCodec
from .reference_service import ReferenceService

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def normalize_uuid(value, path: Optional[str] = None) -> str:
    """Canonical lower-case form of an identifier supplied by the caller.

    Raises:
        ValueFormatError: if ``value`` is not a UUID
    """
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise ValueFormatError(f"Identifier {value!r} is not a UUID.", path=path) from None


class NodeService:
    """CRUD over the node documents of one workspace.

    Args:
        session: SQLAlchemy session
        workspace_id: Workspace all reads and writes are scoped to
        codec: Property codec
        blobs: Blob store for binary values
        node_types: Capability lookup for referenceable checks
        workspace_name: Used in error messages only
        validator: Optional callable run on every node before it is stored
    """

    def __init__(self, session: Session, workspace_id: int, codec: PropertyCodec,
                 blobs: BlobService, node_types: NodeTypeManager,
                 workspace_name: Optional[str] = None,
                 validator: Optional[Callable] = None):
        self.session = session
        self.workspace_id = workspace_id
        self.workspace_name = workspace_name
        self.codec = codec
        self.blobs = blobs
        self.node_types = node_types
        self.references = ReferenceService(session, workspace_id)
        self.validator = validator
        # When set, writes are flushed and the caller commits
        self.defer_commit = False
        # Identifiers assigned during this session, by path
        self._identifiers: Dict[str, str] = {}

    # ---------------- Helpers ----------------

    def _query(self, workspace_id: Optional[int] = None):
        ws = self.workspace_id if workspace_id is None else workspace_id
        return self.session.query(NodeDocument).filter(NodeDocument.workspace_id == ws)

    def _document(self, path: str, workspace_id: Optional[int] = None) -> Optional[NodeDocument]:
        return self._query(workspace_id).filter(NodeDocument.path == path).first()

    def path_exists(self, path: str, workspace_id: Optional[int] = None) -> bool:
        return self._query(workspace_id).filter(NodeDocument.path == path).count() > 0

    def _subtree_documents(self, root: str, workspace_id: Optional[int] = None) -> List[NodeDocument]:
        """Documents at or below ``root``, parents before children."""
        query = self._query(workspace_id)
        if root != paths.ROOT_PATH:
            query = query.filter(or_(
                NodeDocument.path == root,
                NodeDocument.path.like(paths.like_pattern(root), escape='\\'),
            ))
        documents = query.all()
        documents = [d for d in documents if paths.is_under_subtree(d.path, root)]
        documents.sort(key=lambda d: paths.depth(d.path))
        return documents

    def _commit(self, collect_garbage: bool = False) -> None:
        if self.defer_commit:
            self.session.flush()
            return
        self.session.commit()
        if collect_garbage:
            self.blobs.collect_garbage()

    def forget_identifiers(self) -> None:
        """Drop identifiers remembered from writes that were rolled back."""
        self._identifiers.clear()

    def _fail(self, message: str, path: str, error: Exception):
        self.session.rollback()
        logger.error(f"{message}: {error}", exc_info=True)
        raise RepositoryError(f"{message}: {error}", path=path, workspace=self.workspace_name) from error

    def _to_stored(self, document: NodeDocument) -> StoredNode:
        properties = self.codec.decode_all(document.props)
        node = StoredNode(
            identifier=document.uuid,
            path=document.path,
            parent_path=document.parent,
            workspace_id=document.workspace_id,
            primary_type=document.type,
            properties=properties,
        )
        if self.node_types.grants([node.primary_type] + node.mixin_types, REFERENCEABLE):
            node.properties.append(PropertyRecord(UUID_PROPERTY, PropertyType.STRING, False, document.uuid))

        children = self._query(document.workspace_id).filter(
            NodeDocument.parent == document.path
        ).order_by(NodeDocument.id).all()
        for child in children:
            node.children[paths.name_of(child.path)] = {}
        return node

    # ---------------- Reads ----------------

    def get_node(self, path: str) -> StoredNode:
        """Fetch a node with the names of its immediate children.

        Raises:
            ItemNotFoundError: if no node exists at ``path``
        """
        path = paths.validate(path)
        document = self._document(path)
        if document is None:
            raise ItemNotFoundError(f"Item {path} not found.", path=path, workspace=self.workspace_name)
        self._identifiers.setdefault(path, document.uuid)
        return self._to_stored(document)

    def get_nodes(self, node_paths: Iterable[str]) -> Dict[str, StoredNode]:
        """Fetch several nodes; missing paths are left out of the result."""
        nodes: Dict[str, StoredNode] = {}
        for path in node_paths:
            try:
                nodes[path] = self.get_node(path)
            except ItemNotFoundError:
                logger.debug(f"Skipping missing node {path}")
        return nodes

    def get_node_by_identifier(self, identifier: str) -> StoredNode:
        document = self._query().filter(NodeDocument.uuid == str(identifier)).first()
        if document is None:
            raise ItemNotFoundError(f"No item found with uuid {identifier}.", workspace=self.workspace_name)
        return self._to_stored(document)

    def get_nodes_by_identifier(self, identifiers: Iterable[str]) -> Dict[str, StoredNode]:
        """Fetch nodes by identifier in one query, keyed by path."""
        wanted = [str(i) for i in identifiers]
        if not wanted:
            return {}
        documents = self._query().filter(NodeDocument.uuid.in_(wanted)).all()
        return {document.path: self._to_stored(document) for document in documents}

    def get_node_path_for_identifier(self, identifier: str) -> str:
        row = self.session.query(NodeDocument.path).filter(
            NodeDocument.workspace_id == self.workspace_id,
            NodeDocument.uuid == str(identifier),
        ).first()
        if row is None:
            raise ItemNotFoundError(f"No item found with uuid {identifier}.", workspace=self.workspace_name)
        return row[0]

    def get_property(self, path: str) -> PropertyRecord:
        """Fetch one property by its full path."""
        path = paths.validate(path)
        parent_path = paths.parent_of(path)
        name = paths.name_of(path)
        node = self.get_node(parent_path)
        record = node.get_property(name)
        if record is None:
            raise ItemNotFoundError(f"Property {path} not found.", path=path, workspace=self.workspace_name)
        return record

    def get_binary_stream(self, path: str, index: int = 0):
        path = paths.validate(path)
        return self.blobs.get_stream(path, self.workspace_id, index)

    # ---------------- Writes ----------------

    def _identifier_for(self, node) -> str:
        path = node.path
        if path in self._identifiers:
            return self._identifiers[path]
        if getattr(node, 'identifier', None):
            return normalize_uuid(node.identifier, path)
        properties = node.get_properties()
        if UUID_PROPERTY in properties and properties[UUID_PROPERTY].value:
            return normalize_uuid(properties[UUID_PROPERTY].value, path)
        existing = self.session.query(NodeDocument.uuid).filter(
            NodeDocument.workspace_id == self.workspace_id,
            NodeDocument.path == path,
        ).first()
        if existing is not None:
            return existing[0]
        # Every node gets an identifier, referenceable or not
        return generate_uuid()

    def store_node(self, node, save_children: bool = True) -> bool:
        """Insert or fully replace the document of ``node``.

        Only new or modified properties are encoded, so the stored document
        holds exactly those; existing nodes should be updated through
        :meth:`store_property`. New children are stored recursively when
        ``save_children`` is set; existing children are assumed persisted.

        Raises:
            InvalidPathError: malformed node path
            PathNotFoundError: the parent node does not exist
            ValueFormatError: a property value fails validation
            RepositoryError: the write failed
        """
        path = paths.validate(node.path)
        if self.validator is not None:
            self.validator(node)

        if path != paths.ROOT_PATH and not self.path_exists(paths.parent_of(path)):
            raise PathNotFoundError(
                f"Parent of {path} does not exist.", path=path, workspace=self.workspace_name,
            )

        identifier = self._identifier_for(node)
        primary_type = getattr(node, 'primary_type', None) or DEFAULT_PRIMARY_TYPE

        props = []
        binaries = []
        for prop in node.get_properties().values():
            encoded = self.codec.encode(prop)
            if encoded is None:
                continue
            props.append(encoded.record)
            if encoded.binaries:
                binaries.append((prop.path, encoded.binaries))

        try:
            document = self._document(path)
            if document is None:
                document = NodeDocument(path=path, workspace_id=self.workspace_id)
                self.session.add(document)
            document.uuid = identifier
            document.parent = paths.stored_parent_of(path)
            document.type = primary_type
            document.props = props
            for prop_path, payloads in binaries:
                self.blobs.put_all(prop_path, self.workspace_id, payloads)
            self._commit()
        except SQLAlchemyError as e:
            self._fail(f"Storing node {path} failed", path, e)

        self._identifiers[path] = identifier
        if hasattr(node, 'identifier'):
            node.identifier = identifier
        logger.debug(f"Stored node {path} ({len(props)} properties)")

        if not save_children:
            return True

        for child in node:
            if child.is_new():
                self.store_node(child)
            # else this is an existing node moved to this location
        return True

    def store_property(self, prop) -> bool:
        """Write one property into its parent's document.

        Replaces the stored record of the same name if there is one,
        otherwise appends a new record.

        Returns:
            False if the property is clean and nothing was written
        """
        path = paths.validate(prop.path)
        parent_path = paths.validate(prop.get_node().path)

        encoded = self.codec.encode(prop)
        if encoded is None:
            return False

        document = self._document(parent_path)
        if document is None:
            raise PathNotFoundError(
                f"Node {parent_path} not found while storing {path}.",
                path=path, workspace=self.workspace_name,
            )

        try:
            props = list(document.props or [])
            for i, record in enumerate(props):
                if record.get('name') == prop.name:
                    props[i] = encoded.record
                    break
            else:
                props.append(encoded.record)
            document.props = props
            if encoded.binaries:
                self.blobs.put_all(path, self.workspace_id, encoded.binaries)
            elif prop.type != PropertyType.BINARY:
                self.blobs.delete(path, self.workspace_id)
            self._commit(collect_garbage=True)
        except SQLAlchemyError as e:
            self._fail(f"Storing property {path} failed", path, e)

        logger.debug(f"Stored property {path}")
        return True

    def delete_property(self, path: str) -> bool:
        """Remove one property record from its parent document.

        Raises:
            ItemNotFoundError: if the parent or the property does not exist
        """
        path = paths.validate(path)
        parent_path = paths.parent_of(path)
        name = paths.name_of(path)

        document = self._document(parent_path)
        if document is None or not any(r.get('name') == name for r in document.props or []):
            raise ItemNotFoundError(f"Property {path} not found.", path=path, workspace=self.workspace_name)

        try:
            document.props = [r for r in document.props if r.get('name') != name]
            self.blobs.delete(path, self.workspace_id)
            self._commit(collect_garbage=True)
        except SQLAlchemyError as e:
            self._fail(f"Deleting property {path} failed", path, e)

        logger.debug(f"Deleted property {path}")
        return True

    def delete_node(self, path: str) -> int:
        """Delete the subtree at ``path``, or the property if ``path`` names one.

        Returns:
            Number of node documents removed (1 for a property delete)

        Raises:
            ReferentialIntegrityError: a strong reference points into the subtree
        """
        path = paths.validate(path)

        if not self.path_exists(path):
            self.delete_property(path)
            return 1

        if path == paths.ROOT_PATH:
            raise RepositoryError("The root node cannot be deleted.", path=path, workspace=self.workspace_name)

        blocking = self.references.find_blocking_references(path)
        if blocking:
            raise ReferentialIntegrityError(
                f'Cannot delete item at path "{path}", there is at least one item with a '
                f'reference to this or a subnode of the path: {", ".join(blocking)}',
                path=path, workspace=self.workspace_name,
            )

        try:
            documents = self._subtree_documents(path)
            ids = [d.id for d in documents]
            self.blobs.delete_subtree(path, self.workspace_id)
            self.session.flush()
            self._query().filter(NodeDocument.id.in_(ids)).delete(synchronize_session="fetch")
            self._commit(collect_garbage=True)
        except SQLAlchemyError as e:
            self._fail(f"Deleting subtree {path} failed", path, e)

        for known in list(self._identifiers):
            if paths.is_under_subtree(known, path):
                del self._identifiers[known]
        logger.info(f"Deleted {len(ids)} node(s) under {path}")
        return len(ids)

    def _check_destination(self, src_path: str, dst_path: str,
                           src_workspace_id: Optional[int] = None) -> None:
        if not self.path_exists(src_path, src_workspace_id):
            raise PathNotFoundError(f'Source path "{src_path}" not found', path=src_path,
                                    workspace=self.workspace_name)
        if self.path_exists(dst_path):
            raise ItemExistsError(f'Destination path "{dst_path}" already exists.', path=dst_path,
                                  workspace=self.workspace_name)
        dst_parent = paths.parent_of(dst_path)
        if not self.path_exists(dst_parent):
            raise PathNotFoundError(f'Parent of the destination path "{dst_parent}" has to exist.',
                                    path=dst_path, workspace=self.workspace_name)

    def copy_node(self, src_path: str, dst_path: str,
                  src_workspace_id: Optional[int] = None) -> int:
        """Copy the subtree at ``src_path`` to ``dst_path`` in this workspace.

        Every copy gets a fresh identifier. ``src_workspace_id`` selects
        the workspace to copy from; the copy always lands here.

        Returns:
            Number of documents copied
        """
        src_path = paths.validate(src_path)
        dst_path = paths.validate(dst_path)
        source_ws = self.workspace_id if src_workspace_id is None else src_workspace_id

        if dst_path.endswith(']'):
            raise RepositoryError('Invalid destination path', path=dst_path, workspace=self.workspace_name)
        self._check_destination(src_path, dst_path, source_ws)

        try:
            documents = self._subtree_documents(src_path, source_ws)
            for document in documents:
                new_path = paths.rebase(document.path, src_path, dst_path)
                self.session.add(NodeDocument(
                    uuid=generate_uuid(),
                    path=new_path,
                    parent=paths.stored_parent_of(new_path),
                    workspace_id=self.workspace_id,
                    type=document.type,
                    props=list(document.props or []),
                ))
            self.blobs.copy_subtree(src_path, dst_path, source_ws, self.workspace_id)
            self._commit()
        except SQLAlchemyError as e:
            self._fail(f"Copying {src_path} to {dst_path} failed", dst_path, e)

        logger.info(f"Copied {len(documents)} node(s) from {src_path} to {dst_path}")
        return len(documents)

    def move_node(self, src_path: str, dst_path: str) -> int:
        """Move the subtree at ``src_path`` to ``dst_path``, keeping identifiers.

        Returns:
            Number of documents moved
        """
        src_path = paths.validate(src_path)
        dst_path = paths.validate(dst_path)

        if dst_path.endswith(']'):
            raise RepositoryError('Invalid destination path', path=dst_path, workspace=self.workspace_name)
        self._check_destination(src_path, dst_path)
        if paths.is_under_subtree(dst_path, src_path):
            raise RepositoryError(f'Cannot move "{src_path}" into its own subtree.', path=dst_path,
                                  workspace=self.workspace_name)

        try:
            documents = self._subtree_documents(src_path)
            for document in documents:
                new_path = paths.rebase(document.path, src_path, dst_path)
                document.path = new_path
                document.parent = paths.stored_parent_of(new_path)
            self.blobs.move_subtree(src_path, dst_path, self.workspace_id)
            self._commit()
        except SQLAlchemyError as e:
            self._fail(f"Moving {src_path} to {dst_path} failed", dst_path, e)

        for known in list(self._identifiers):
            if paths.is_under_subtree(known, src_path):
                self._identifiers[paths.rebase(known, src_path, dst_path)] = self._identifiers.pop(known)
        logger.info(f"Moved {len(documents)} node(s) from {src_path} to {dst_path}")
        return len(documents)

    # ---------------- Declared, not implemented ----------------

    def _not_implemented(self, operation: str):
        raise NotImplementedCapability(f"{operation} is not implemented.", workspace=self.workspace_name)

    def reorder_children(self, node):
        self._not_implemented("Reordering child nodes")

    def update_node(self, node, src_workspace: str):
        self._not_implemented("Updating a node from another workspace")

    def clone_from(self, src_workspace: str, src_path: str, dst_path: str, remove_existing: bool):
        self._not_implemented("Cloning from another workspace")

    def move_nodes(self, operations):
        self._not_implemented("Batch move")

    def delete_nodes(self, operations):
        self._not_implemented("Batch node delete")

    def delete_properties(self, operations):
        self._not_implemented("Batch property delete")

    def store_nodes(self, operations):
        self._not_implemented("Batch store")

    def update_properties(self, node):
        self._not_implemented("Batch property update")

    def move_node_immediately(self, src_path: str, dst_path: str):
        self._not_implemented("Moving outside a save cycle")

    def delete_node_immediately(self, path: str):
        self._not_implemented("Deleting a node outside a save cycle")

    def delete_property_immediately(self, path: str):
        self._not_implemented("Deleting a property outside a save cycle")
