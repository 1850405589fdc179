"""Node type capability lookup.

Answers two questions for the store: does node type X grant a capability
such as ``mix:referenceable``, and which child/property definitions does X
declare. Only the standard types the store relies on are built in;
applications can register their own.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .types import PropertyType, REFERENCEABLE


@dataclass(frozen=True)
class PropertyDefinition:
    """Declared property of a node type."""
    name: str
    required_type: PropertyType = PropertyType.STRING
    mandatory: bool = False
    autocreated: bool = False
    multiple: bool = False
    default_values: Tuple = ()


@dataclass(frozen=True)
class ChildDefinition:
    """Declared child node of a node type."""
    name: str
    default_primary_type: Optional[str] = None
    mandatory: bool = False
    autocreated: bool = False


@dataclass
class NodeTypeDefinition:
    """A node type: its supertypes and declared items."""
    name: str
    supertypes: List[str] = field(default_factory=list)
    is_mixin: bool = False
    properties: List[PropertyDefinition] = field(default_factory=list)
    children: List[ChildDefinition] = field(default_factory=list)


def _standard_types() -> List[NodeTypeDefinition]:
    date = PropertyType.DATE
    return [
        NodeTypeDefinition("nt:base", properties=[
            PropertyDefinition("jcr:primaryType", PropertyType.NAME, mandatory=True, autocreated=True),
            PropertyDefinition("jcr:mixinTypes", PropertyType.NAME, multiple=True),
        ]),
        NodeTypeDefinition("nt:unstructured", ["nt:base"], properties=[
            PropertyDefinition("*", PropertyType.STRING),
        ], children=[ChildDefinition("*", "nt:unstructured")]),
        NodeTypeDefinition("nt:hierarchyNode", ["nt:base", "mix:created"]),
        NodeTypeDefinition("nt:folder", ["nt:hierarchyNode"], children=[
            ChildDefinition("*", "nt:hierarchyNode"),
        ]),
        NodeTypeDefinition("nt:file", ["nt:hierarchyNode"], children=[
            ChildDefinition("jcr:content", None, mandatory=True),
        ]),
        NodeTypeDefinition("nt:resource", ["nt:base", "mix:lastModified", "mix:referenceable"], properties=[
            PropertyDefinition("jcr:data", PropertyType.BINARY, mandatory=True),
            PropertyDefinition("jcr:mimeType", PropertyType.STRING),
            PropertyDefinition("jcr:encoding", PropertyType.STRING),
        ]),
        NodeTypeDefinition(REFERENCEABLE, is_mixin=True, properties=[
            PropertyDefinition("jcr:uuid", PropertyType.STRING, mandatory=True, autocreated=True),
        ]),
        NodeTypeDefinition("mix:created", is_mixin=True, properties=[
            PropertyDefinition("jcr:created", date, autocreated=True),
            PropertyDefinition("jcr:createdBy", PropertyType.STRING, autocreated=True),
        ]),
        NodeTypeDefinition("mix:lastModified", is_mixin=True, properties=[
            PropertyDefinition("jcr:lastModified", date, autocreated=True),
            PropertyDefinition("jcr:lastModifiedBy", PropertyType.STRING, autocreated=True),
        ]),
        NodeTypeDefinition("mix:title", is_mixin=True, properties=[
            PropertyDefinition("jcr:title", PropertyType.STRING),
            PropertyDefinition("jcr:description", PropertyType.STRING),
        ]),
        NodeTypeDefinition("mix:simpleVersionable", is_mixin=True, properties=[
            PropertyDefinition("jcr:isCheckedOut", PropertyType.BOOLEAN, mandatory=True,
                               autocreated=True, default_values=(True,)),
        ]),
        NodeTypeDefinition("mix:versionable", ["mix:simpleVersionable", REFERENCEABLE], is_mixin=True),
    ]


class NodeTypeManager:
    """Registry of node type definitions with supertype resolution."""

    def __init__(self, definitions: Optional[Iterable[NodeTypeDefinition]] = None):
        self._types: Dict[str, NodeTypeDefinition] = {}
        for definition in _standard_types():
            self._types[definition.name] = definition
        for definition in definitions or ():
            self.register(definition)

    def register(self, definition: NodeTypeDefinition) -> None:
        self._types[definition.name] = definition

    def has_node_type(self, name: str) -> bool:
        return name in self._types

    def get_node_type(self, name: str) -> NodeTypeDefinition:
        try:
            return self._types[name]
        except KeyError:
            raise KeyError(f"Unknown node type: {name}") from None

    def all_node_types(self) -> List[NodeTypeDefinition]:
        return list(self._types.values())

    def supertypes(self, name: str) -> Set[str]:
        """All transitive supertypes of ``name`` (not including itself)."""
        seen: Set[str] = set()
        pending = list(self._types[name].supertypes) if name in self._types else []
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            if current in self._types:
                pending.extend(self._types[current].supertypes)
        return seen

    def is_node_type(self, name: str, capability: str) -> bool:
        """Does type ``name`` equal or inherit from ``capability``?"""
        return name == capability or capability in self.supertypes(name)

    def grants(self, type_names: Iterable[str], capability: str) -> bool:
        """True if any of ``type_names`` grants ``capability``."""
        return any(self.is_node_type(name, capability) for name in type_names)

    def property_definitions(self, name: str) -> List[PropertyDefinition]:
        """Declared property definitions of ``name`` and its supertypes."""
        result: List[PropertyDefinition] = []
        for type_name in [name] + sorted(self.supertypes(name)):
            if type_name in self._types:
                result.extend(self._types[type_name].properties)
        return result

    def child_definitions(self, name: str) -> List[ChildDefinition]:
        result: List[ChildDefinition] = []
        for type_name in [name] + sorted(self.supertypes(name)):
            if type_name in self._types:
                result.extend(self._types[type_name].children)
        return result
