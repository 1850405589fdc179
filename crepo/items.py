"""Minimal in-memory object model for nodes and properties.

The node store only needs the surface defined here: paths, types, the
property collection, child iteration, dirty flags and a capability check.
Session-level features (item caching, change logs, versioning) are not
part of this model.

Usage:
    root = Node("/", is_new=False)
    page = root.add_node("page")
    page.set_property("title", "Hello")
    page.add_mixin("mix:referenceable")
    repo.store_node(page)
"""

import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from . import paths
from .nodetypes import NodeTypeManager
from .services.property_codec import to_boolean
from .types import (
    DEFAULT_PRIMARY_TYPE, MIXIN_TYPES_PROPERTY, PRIMARY_TYPE_PROPERTY,
    UUID_PROPERTY, PropertyType, StoredNode,
)

_default_node_types: Optional[NodeTypeManager] = None


def default_node_types() -> NodeTypeManager:
    """Shared manager holding only the standard node types."""
    global _default_node_types
    if _default_node_types is None:
        _default_node_types = NodeTypeManager()
    return _default_node_types


def infer_type(value: Any) -> PropertyType:
    """Guess a property type from a Python value."""
    if isinstance(value, (list, tuple)):
        if not value:
            return PropertyType.STRING
        return infer_type(value[0])
    if isinstance(value, bool):
        return PropertyType.BOOLEAN
    if isinstance(value, int):
        return PropertyType.LONG
    if isinstance(value, float):
        return PropertyType.DOUBLE
    if isinstance(value, Decimal):
        return PropertyType.DECIMAL
    if isinstance(value, datetime):
        return PropertyType.DATE
    if isinstance(value, (bytes, bytearray)) or hasattr(value, "read"):
        return PropertyType.BINARY
    return PropertyType.STRING


def _read_binary(value: Any) -> bytes:
    if hasattr(value, "read"):
        data = value.read()
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


class Property:
    """A named, typed value owned by a node."""

    def __init__(self, node: 'Node', name: str, value: Any,
                 type: Optional[PropertyType] = None,
                 multiple: Optional[bool] = None, is_new: bool = True):
        self.node = node
        self.name = name
        self.type = type or infer_type(value)
        self.multiple = isinstance(value, (list, tuple)) if multiple is None else multiple
        self._value = self._normalize(value)
        self._new = is_new
        self._modified = False

    def _normalize(self, value: Any) -> Any:
        if self.multiple:
            items = list(value) if isinstance(value, (list, tuple)) else [value]
            if self.type == PropertyType.BINARY:
                return [_read_binary(v) for v in items]
            return items
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if self.type == PropertyType.BINARY and value is not None:
            return _read_binary(value)
        return value

    @property
    def path(self) -> str:
        return paths.join(self.node.path, self.name)

    @property
    def value(self) -> Any:
        return self._value

    def set_value(self, value: Any) -> None:
        self._value = self._normalize(value)
        self._modified = True

    def get_node(self) -> 'Node':
        return self.node

    def is_multiple(self) -> bool:
        return self.multiple

    def is_new(self) -> bool:
        return self._new

    def is_modified(self) -> bool:
        return self._modified

    def mark_clean(self) -> None:
        self._new = False
        self._modified = False

    def _map(self, convert):
        if self.multiple:
            return [convert(v) for v in self._value]
        return convert(self._value)

    def get_string(self):
        return self._map(lambda v: v if isinstance(v, str) else str(v))

    def get_long(self):
        return self._map(int)

    def get_double(self):
        return self._map(float)

    def get_boolean(self):
        return self._map(to_boolean)

    def get_decimal(self):
        return self._map(lambda v: v if isinstance(v, Decimal) else Decimal(str(v)))

    def get_date(self):
        return self._map(_to_datetime)

    def get_binary(self):
        """Binary value(s) as fresh byte streams."""
        return self._map(lambda v: io.BytesIO(v))

    def __repr__(self):
        return f"<Property(path='{self.path}', type={self.type.value})>"


class Node:
    """A node in a transient tree.

    New nodes are stored in full; a node read back from the store is clean
    and only its modified properties are written again.
    """

    def __init__(self, path: str, primary_type: str = DEFAULT_PRIMARY_TYPE,
                 identifier: Optional[str] = None,
                 node_types: Optional[NodeTypeManager] = None,
                 is_new: bool = True):
        self.path = path
        self.identifier = identifier
        self.node_types = node_types or default_node_types()
        self.properties: Dict[str, Property] = {}
        self.children: Dict[str, 'Node'] = {}
        self._new = is_new
        self._modified = False
        self.properties[PRIMARY_TYPE_PROPERTY] = Property(
            self, PRIMARY_TYPE_PROPERTY, primary_type, PropertyType.NAME, False, is_new=is_new,
        )

    @property
    def name(self) -> str:
        return paths.name_of(self.path)

    @property
    def primary_type(self) -> str:
        return self.properties[PRIMARY_TYPE_PROPERTY].value

    @property
    def mixin_types(self) -> List[str]:
        prop = self.properties.get(MIXIN_TYPES_PROPERTY)
        if prop is None:
            return []
        return list(prop.value)

    def get_properties(self) -> Dict[str, Property]:
        return self.properties

    def get_property(self, name: str) -> Property:
        return self.properties[name]

    def has_property(self, name: str) -> bool:
        return name in self.properties

    def set_property(self, name: str, value: Any,
                     type: Optional[PropertyType] = None,
                     multiple: Optional[bool] = None) -> Property:
        """Create or update a property and mark the node modified."""
        existing = self.properties.get(name)
        if existing is not None and (type is None or type == existing.type):
            existing.set_value(value)
            prop = existing
        else:
            prop = Property(self, name, value, type, multiple)
            self.properties[name] = prop
        self._modified = True
        return prop

    def remove_property(self, name: str) -> None:
        del self.properties[name]
        self._modified = True

    def add_mixin(self, mixin: str) -> None:
        mixins = self.mixin_types
        if mixin not in mixins:
            self.set_property(MIXIN_TYPES_PROPERTY, mixins + [mixin], PropertyType.NAME, True)

    def add_node(self, name: str, primary_type: str = DEFAULT_PRIMARY_TYPE) -> 'Node':
        child = Node(paths.join(self.path, name), primary_type, node_types=self.node_types)
        self.children[name] = child
        return child

    def get_node(self, name: str) -> 'Node':
        return self.children[name]

    def has_node(self, name: str) -> bool:
        return name in self.children

    def __iter__(self) -> Iterator['Node']:
        return iter(list(self.children.values()))

    def is_new(self) -> bool:
        return self._new

    def is_modified(self) -> bool:
        return self._modified

    def is_node_type(self, name: str) -> bool:
        """Does the primary type or any mixin grant ``name``?"""
        return self.node_types.grants([self.primary_type] + self.mixin_types, name)

    def mark_clean(self, recursive: bool = True) -> None:
        """Forget dirty state, as after a successful save."""
        self._new = False
        self._modified = False
        for prop in self.properties.values():
            prop.mark_clean()
        if recursive:
            for child in self.children.values():
                child.mark_clean()

    @classmethod
    def from_stored(cls, stored: StoredNode,
                    node_types: Optional[NodeTypeManager] = None) -> 'Node':
        """Rebuild a clean node from a stored document.

        Binary properties come back as their lengths, so they are left
        out; read the payload through the repository instead.
        """
        node = cls(stored.path, stored.primary_type, stored.identifier,
                   node_types=node_types, is_new=False)
        for record in stored.properties:
            if record.type == PropertyType.BINARY or record.name == UUID_PROPERTY:
                continue
            node.properties[record.name] = Property(
                node, record.name, record.value, record.type, record.multi, is_new=False,
            )
        return node

    def __repr__(self):
        return f"<Node(path='{self.path}', type='{self.primary_type}')>"
