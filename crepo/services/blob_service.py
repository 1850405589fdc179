"""
Blob store for externalized binary property values.

Payloads are written once per content hash under ``<root>/blobs/ab/abcd...``;
a ``blobs`` row maps each (workspace, property path, value index) key to
its payload. Writing a key again replaces the mapping.
"""

import io
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from .. import paths
from ..db.models import BlobRecord
from ..exceptions import ItemNotFoundError

logger = logging.getLogger(__name__)


class BlobService:
    """Service for storing and reading binary payloads."""

    def __init__(self, repository_root: Path, session: Session):
        self.repository_root = Path(repository_root)
        self.session = session
        self.blob_dir = self.repository_root / 'blobs'
        self.blob_dir.mkdir(parents=True, exist_ok=True)

    def _get_blob_path(self, content_hash: str, create: bool = False) -> Path:
        """Get storage path for a payload based on hash prefix."""
        dir_path = self.blob_dir / content_hash[:2]
        if create:
            dir_path.mkdir(parents=True, exist_ok=True)
        return dir_path / content_hash

    def _query(self, workspace_id: int):
        return self.session.query(BlobRecord).filter(BlobRecord.workspace_id == workspace_id)

    def put(self, path: str, workspace_id: int, idx: int, data: bytes) -> BlobRecord:
        """Store one payload under (path, workspace, idx)."""
        content_hash = BlobRecord.compute_hash(data)
        blob_path = self._get_blob_path(content_hash, create=True)
        if not blob_path.exists():
            tmp_path = blob_path.with_suffix('.tmp')
            tmp_path.write_bytes(data)
            tmp_path.replace(blob_path)

        record = self._query(workspace_id).filter_by(path=path, idx=idx).first()
        if record is None:
            record = BlobRecord(path=path, workspace_id=workspace_id, idx=idx)
            self.session.add(record)
        record.content_hash = content_hash
        record.length = len(data)
        logger.debug(f"Stored blob {path}[{idx}] ({len(data)} bytes)")
        return record

    def put_all(self, path: str, workspace_id: int, payloads: Sequence[bytes]) -> List[BlobRecord]:
        """Store every value of a binary property, dropping stale indexes."""
        records = [self.put(path, workspace_id, idx, data) for idx, data in enumerate(payloads)]
        stale = self._query(workspace_id).filter(
            BlobRecord.path == path, BlobRecord.idx >= len(payloads)
        ).all()
        for record in stale:
            self.session.delete(record)
        return records

    def get_record(self, path: str, workspace_id: int, idx: int = 0) -> Optional[BlobRecord]:
        return self._query(workspace_id).filter_by(path=path, idx=idx).first()

    def get(self, path: str, workspace_id: int, idx: int = 0) -> bytes:
        """Read one payload.

        Raises:
            ItemNotFoundError: if no blob is stored under the key
        """
        record = self.get_record(path, workspace_id, idx)
        if record is None:
            raise ItemNotFoundError(f"Binary {path} not found.", path=path)
        blob_path = self._get_blob_path(record.content_hash)
        if not blob_path.exists():
            raise ItemNotFoundError(f"Binary payload for {path} is missing from the blob store.", path=path)
        return blob_path.read_bytes()

    def get_stream(self, path: str, workspace_id: int, idx: int = 0) -> io.BytesIO:
        return io.BytesIO(self.get(path, workspace_id, idx))

    def get_all(self, path: str, workspace_id: int) -> List[bytes]:
        records = self._query(workspace_id).filter_by(path=path).order_by(BlobRecord.idx).all()
        return [self._get_blob_path(r.content_hash).read_bytes() for r in records]

    def delete(self, path: str, workspace_id: int) -> int:
        """Remove all blob keys of one property."""
        records = self._query(workspace_id).filter_by(path=path).all()
        for record in records:
            self.session.delete(record)
        return len(records)

    def _subtree_records(self, root: str, workspace_id: int) -> List[BlobRecord]:
        # Property paths sit strictly below their node's path
        candidates = self._query(workspace_id).filter(
            BlobRecord.path.like(paths.like_pattern(root), escape='\\')
        ).all()
        return [r for r in candidates if r.path != root and paths.is_under_subtree(r.path, root)]

    def delete_subtree(self, root: str, workspace_id: int) -> int:
        """Remove blob keys of every property under the node subtree ``root``."""
        records = self._subtree_records(root, workspace_id)
        for record in records:
            self.session.delete(record)
        return len(records)

    def copy_subtree(self, src_root: str, dst_root: str,
                     src_workspace_id: int, dst_workspace_id: int) -> int:
        """Duplicate blob keys for a copied subtree; payload files are shared."""
        records = self._subtree_records(src_root, src_workspace_id)
        for record in records:
            self.session.add(BlobRecord(
                path=paths.rebase(record.path, src_root, dst_root),
                workspace_id=dst_workspace_id,
                idx=record.idx,
                content_hash=record.content_hash,
                length=record.length,
            ))
        return len(records)

    def move_subtree(self, src_root: str, dst_root: str, workspace_id: int) -> int:
        """Rewrite blob keys of a moved subtree in place."""
        records = self._subtree_records(src_root, workspace_id)
        for record in records:
            record.path = paths.rebase(record.path, src_root, dst_root)
        return len(records)

    def delete_workspace(self, workspace_id: int) -> int:
        return self._query(workspace_id).delete(synchronize_session=False)

    def collect_garbage(self) -> int:
        """Delete payload files no blob key refers to any more.

        Returns:
            Number of files removed
        """
        referenced = {h for (h,) in self.session.query(BlobRecord.content_hash).distinct()}
        removed = 0
        for blob_path in self.blob_dir.glob('*/*'):
            if blob_path.is_file() and blob_path.name not in referenced:
                blob_path.unlink()
                removed += 1
        if removed:
            logger.info(f"Removed {removed} unreferenced blob payload(s)")
        return removed
