"""Service for creating, listing and deleting workspaces."""

import logging
from typing import List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import paths
from ..db.models import NodeDocument, Workspace
from ..descriptors import WORKSPACE_MANAGEMENT, supports
from ..exceptions import (
    NotImplementedCapability, RepositoryError, UnsupportedRepositoryOperationError,
)
from ..types import DEFAULT_PRIMARY_TYPE
from .blob_service import BlobService
from .node_service import generate_uuid

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Service for CRUD operations on workspaces."""

    def __init__(self, session: Session, descriptors: Mapping, blobs: BlobService):
        """Initialize workspace service.

        Args:
            session: SQLAlchemy session
            descriptors: Repository descriptors; workspace deletion needs
                ``option.workspace.management.supported``
            blobs: Blob store whose keys are dropped with the workspace
        """
        self.session = session
        self.descriptors = descriptors
        self.blobs = blobs

    def get_workspace_id(self, name: str) -> Optional[int]:
        """Id of the workspace called ``name``, or None."""
        row = self.session.query(Workspace.id).filter_by(name=name).first()
        return row[0] if row else None

    def exists(self, workspace_id: int) -> bool:
        return self.session.query(Workspace.id).filter_by(id=workspace_id).first() is not None

    def get_names(self) -> List[str]:
        """Names of all workspaces, oldest first."""
        return [name for (name,) in self.session.query(Workspace.name).order_by(Workspace.id)]

    def create_workspace(self, name: str, src_workspace: Optional[str] = None) -> Workspace:
        """Create a workspace holding just a root node.

        Raises:
            NotImplementedCapability: if ``src_workspace`` is given
            RepositoryError: if the name is taken or the write fails
        """
        if src_workspace is not None:
            raise NotImplementedCapability("Creating a workspace as a copy of another is not implemented.",
                                           workspace=name)

        if self.get_workspace_id(name) is not None:
            raise RepositoryError(f"Workspace '{name}' already exists", workspace=name)

        try:
            workspace = Workspace(name=name)
            self.session.add(workspace)
            self.session.flush()  # Get workspace.id

            self.session.add(NodeDocument(
                uuid=generate_uuid(),
                path=paths.ROOT_PATH,
                parent=paths.NO_PARENT,
                workspace_id=workspace.id,
                type=DEFAULT_PRIMARY_TYPE,
                props=[],
            ))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Could not create workspace '{name}': {e}", workspace=name) from e

        logger.info(f"Created workspace '{name}'")
        return workspace

    def delete_workspace(self, name: str) -> None:
        """Delete a workspace and everything in it.

        Nodes (and their blob keys) go first, then the workspace row, so a
        failure never leaves a workspace row that can't be deleted.

        Raises:
            UnsupportedRepositoryOperationError: descriptors say no
            RepositoryError: missing workspace, or either bulk delete failed
        """
        if not supports(self.descriptors, WORKSPACE_MANAGEMENT):
            raise UnsupportedRepositoryOperationError("Workspace management is not supported.", workspace=name)

        workspace_id = self.get_workspace_id(name)
        if workspace_id is None:
            raise RepositoryError(f'Workspace "{name}" cannot be deleted as it does not exist', workspace=name)

        try:
            self.blobs.delete_workspace(workspace_id)
            removed = self.session.query(NodeDocument).filter_by(
                workspace_id=workspace_id
            ).delete(synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(
                f'Could not delete nodes in workspace "{name}": "{e}"', workspace=name,
            ) from e

        try:
            self.session.query(Workspace).filter_by(name=name).delete(synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(
                f'Could not delete already empty workspace "{name}": "{e}"', workspace=name,
            ) from e

        self.session.expire_all()
        self.blobs.collect_garbage()
        logger.info(f"Deleted workspace '{name}' ({removed} nodes)")
