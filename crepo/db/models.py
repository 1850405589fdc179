"""
SQLAlchemy models for the crepo document store.

Each node is one document row addressed by its path within a workspace;
its properties are kept as a JSON list on the row, not as child tables.
"""

from datetime import datetime
import hashlib

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Workspace(Base):
    """An isolated, named tree partition."""
    __tablename__ = 'workspaces'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    nodes = relationship('NodeDocument', back_populates='workspace', passive_deletes=True)

    def __repr__(self):
        return f"<Workspace(id={self.id}, name='{self.name}')>"


class Namespace(Base):
    """Persisted namespace prefix registration."""
    __tablename__ = 'namespaces'

    id = Column(Integer, primary_key=True)
    prefix = Column(String(100), nullable=False, unique=True, index=True)
    uri = Column(String(500), nullable=False)

    def __repr__(self):
        return f"<Namespace(prefix='{self.prefix}', uri='{self.uri}')>"


class NodeDocument(Base):
    """One node of the content tree.

    ``props`` holds the ordered property records:
    ``[{"name": ..., "type": ..., "multi": ..., "value": ...}, ...]``.
    JSON columns are not mutation-tracked, so callers assign a new list
    rather than editing in place.
    """
    __tablename__ = 'nodes'

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, index=True)
    path = Column(String(1000), nullable=False, index=True)
    parent = Column(String(1000), nullable=False, index=True)  # '-1' for the root
    workspace_id = Column(Integer, ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False)
    type = Column(String(200), nullable=False, default='nt:unstructured')
    props = Column(JSON, nullable=False, default=list)

    workspace = relationship('Workspace', back_populates='nodes')

    __table_args__ = (
        UniqueConstraint('workspace_id', 'path', name='uix_node_path'),
        UniqueConstraint('workspace_id', 'uuid', name='uix_node_uuid'),
        Index('idx_node_parent', 'workspace_id', 'parent'),
    )

    def __repr__(self):
        return f"<NodeDocument(path='{self.path}', uuid='{self.uuid}')>"


class BlobRecord(Base):
    """Metadata of an externalized binary value.

    Keyed by (workspace, property path, value index); the bytes live in
    a content-addressed file named by ``content_hash``.
    """
    __tablename__ = 'blobs'

    id = Column(Integer, primary_key=True)
    path = Column(String(1000), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False)
    idx = Column(Integer, nullable=False, default=0)
    content_hash = Column(String(64), nullable=False, index=True)  # SHA256
    length = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('workspace_id', 'path', 'idx', name='uix_blob_key'),
    )

    @staticmethod
    def compute_hash(data: bytes) -> str:
        """Compute SHA256 hash of a payload."""
        return hashlib.sha256(data).hexdigest()

    def __repr__(self):
        return f"<BlobRecord(path='{self.path}', idx={self.idx}, length={self.length})>"
