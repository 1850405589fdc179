"""Value types shared by the codec and the node store."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PropertyType(Enum):
    """JCR property types; the value is the name stored in documents."""
    STRING = "String"
    BINARY = "Binary"
    LONG = "Long"
    DOUBLE = "Double"
    DATE = "Date"
    BOOLEAN = "Boolean"
    NAME = "Name"
    PATH = "Path"
    REFERENCE = "Reference"
    WEAKREFERENCE = "WeakReference"
    URI = "URI"
    DECIMAL = "Decimal"

    @classmethod
    def from_name(cls, name: str) -> 'PropertyType':
        """Look up a type by its stored name, case-insensitively."""
        for member in cls:
            if member.value.lower() == str(name).lower():
                return member
        raise ValueError(f"Unknown property type: {name}")

    @property
    def is_reference(self) -> bool:
        return self in (PropertyType.REFERENCE, PropertyType.WEAKREFERENCE)


# Never stored as property records; they live on the document itself
UUID_PROPERTY = "jcr:uuid"
PRIMARY_TYPE_PROPERTY = "jcr:primaryType"
MIXIN_TYPES_PROPERTY = "jcr:mixinTypes"
SYSTEM_PROPERTIES = frozenset([UUID_PROPERTY, PRIMARY_TYPE_PROPERTY])

DEFAULT_PRIMARY_TYPE = "nt:unstructured"
REFERENCEABLE = "mix:referenceable"


@dataclass(frozen=True)
class DateValue:
    """Stored form of a DATE scalar."""
    epoch_seconds: int
    timezone: str

    def to_document(self) -> Dict[str, Any]:
        return {"date": self.epoch_seconds, "timezone": self.timezone}

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'DateValue':
        return cls(int(data["date"]), str(data["timezone"]))


@dataclass(frozen=True)
class PropertyRecord:
    """One typed property of a node.

    ``value`` holds the decoded Python value: a scalar, or a list of
    scalars when ``multi`` is set. For BINARY the scalar is the payload
    length; the bytes live in the blob store.
    """
    name: str
    type: PropertyType
    multi: bool
    value: Any

    def values(self) -> List[Any]:
        """Value as a list, whether multi-valued or not."""
        if self.multi:
            return list(self.value)
        return [self.value]


@dataclass
class StoredNode:
    """A node document as read back from the store.

    ``children`` maps each immediate child name to an empty placeholder;
    children are not loaded.
    """
    identifier: str
    path: str
    parent_path: str
    workspace_id: int
    primary_type: str
    properties: List[PropertyRecord] = field(default_factory=list)
    children: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def name(self) -> str:
        if self.path == "/":
            return ""
        return self.path.rsplit("/", 1)[-1]

    @property
    def child_names(self) -> List[str]:
        return list(self.children)

    def get_property(self, name: str) -> Optional[PropertyRecord]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def has_property(self, name: str) -> bool:
        return self.get_property(name) is not None

    @property
    def mixin_types(self) -> List[str]:
        prop = self.get_property(MIXIN_TYPES_PROPERTY)
        if prop is None:
            return []
        return [str(v) for v in prop.values()]

    def to_dict(self) -> Dict[str, Any]:
        """Flat name -> value view, with the primary type included."""
        data: Dict[str, Any] = {PRIMARY_TYPE_PROPERTY: self.primary_type}
        for prop in self.properties:
            data[prop.name] = prop.value
        return data
