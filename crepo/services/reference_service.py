"""Lookup of REFERENCE / WEAKREFERENCE properties pointing at a node."""

import json
import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from .. import paths
from ..db.models import NodeDocument
from ..exceptions import ItemNotFoundError
from ..types import PropertyType

logger = logging.getLogger(__name__)

# Above this many targets, narrow by type name instead of by identifier
_MAX_TEXT_FILTERS = 50


def _stored_text(value: str) -> str:
    """LIKE operand matching ``value`` as it appears inside the serialized props."""
    text = json.dumps(value)[1:-1]
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ReferenceService:
    """Finds properties in a workspace that reference given nodes.

    There is no reverse index: documents are narrowed with a text match on
    the serialized property list and then checked record by record.
    """

    def __init__(self, session: Session, workspace_id: int):
        self.session = session
        self.workspace_id = workspace_id

    def _identifier_for(self, path: str) -> str:
        path = paths.validate(path)
        row = self.session.query(NodeDocument.uuid).filter(
            NodeDocument.workspace_id == self.workspace_id,
            NodeDocument.path == path,
        ).first()
        if row is None:
            raise ItemNotFoundError(f"Item {path} not found.", path=path)
        return row[0]

    def find_references(self, path: str, name: Optional[str] = None,
                        weak: bool = False) -> List[str]:
        """Paths of the properties referencing the node at ``path``.

        Args:
            path: Target node path
            name: Only return properties with this name
            weak: WEAKREFERENCE properties if True, REFERENCE otherwise

        Raises:
            ItemNotFoundError: if there is no node at ``path``
        """
        identifier = self._identifier_for(path)
        return [
            paths.join(holder, prop_name)
            for holder, prop_name, _ in self.find_referrers([identifier], weak=weak, name=name)
        ]

    def find_referrers(self, identifiers: Iterable[str], weak: bool = False,
                       name: Optional[str] = None) -> List[Tuple[str, str, str]]:
        """(holder path, property name, target identifier) for each match."""
        targets: Set[str] = set(identifiers)
        if not targets:
            return []
        wanted = PropertyType.WEAKREFERENCE if weak else PropertyType.REFERENCE

        props_text = cast(NodeDocument.props, String)
        if len(targets) <= _MAX_TEXT_FILTERS:
            text_filter = or_(*[
                props_text.like(f"%{_stored_text(identifier)}%", escape='\\') for identifier in targets
            ])
        else:
            text_filter = props_text.like(f"%{wanted.value}%")
        query = self.session.query(NodeDocument).filter(
            NodeDocument.workspace_id == self.workspace_id,
            text_filter,
        )

        matches: List[Tuple[str, str, str]] = []
        for document in query.order_by(NodeDocument.path):
            for record in document.props or []:
                if record.get('type') != wanted.value:
                    continue
                if name is not None and record.get('name') != name:
                    continue
                values = record.get('value')
                if not isinstance(values, list):
                    values = [values]
                for value in values:
                    if value in targets:
                        matches.append((document.path, record['name'], value))
        logger.debug(f"{len(matches)} {wanted.value} value(s) point at {len(targets)} node(s)")
        return matches

    def find_blocking_references(self, root: str) -> List[str]:
        """Strong references that forbid deleting the subtree at ``root``.

        Any strong reference to ``root`` itself blocks. References to
        descendants block only when held outside the subtree.
        """
        root_id = self._identifier_for(root)
        subtree = {
            row.uuid: row.path for row in self.session.query(NodeDocument.uuid, NodeDocument.path).filter(
                NodeDocument.workspace_id == self.workspace_id,
                or_(NodeDocument.path == root,
                    NodeDocument.path.like(paths.like_pattern(root), escape='\\')),
            )
            if paths.is_under_subtree(row.path, root)
        }
        blocking = []
        for holder, prop_name, target in self.find_referrers(subtree.keys()):
            if target == root_id or not paths.is_under_subtree(holder, root):
                blocking.append(paths.join(holder, prop_name))
        return blocking
