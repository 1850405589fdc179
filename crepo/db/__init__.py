"""
Database module for crepo.

Provides SQLAlchemy session management and initialization.
"""

from .models import Base, Workspace, Namespace, NodeDocument, BlobRecord
from .session import get_session, init_db, close_db

__all__ = [
    'Base',
    'Workspace',
    'Namespace',
    'NodeDocument',
    'BlobRecord',
    'get_session',
    'init_db',
    'close_db',
]
