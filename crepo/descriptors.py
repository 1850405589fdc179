"""Repository descriptors.

A fixed table of capability flags reported to clients. The table is built
once per transactions setting and handed out read-only.
"""

from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Union

from . import __version__

DescriptorValue = Union[bool, str]

IDENTIFIER_STABILITY_INDEFINITE_DURATION = "identifier.stability.indefinite.duration"

WORKSPACE_MANAGEMENT = "option.workspace.management.supported"
TRANSACTIONS = "option.transactions.supported"

_BASE_DESCRIPTORS = {
    "identifier.stability": IDENTIFIER_STABILITY_INDEFINITE_DURATION,
    "jcr.repository.name": "crepo",
    "jcr.repository.vendor": "crepo",
    "jcr.repository.version": __version__,
    "jcr.specification.name": "Content Repository API",
    "jcr.specification.version": False,
    "level.1.supported": False,
    "level.2.supported": False,
    "node.type.management.autocreated.definitions.supported": True,
    "node.type.management.inheritance": True,
    "node.type.management.multiple.binary.properties.supported": True,
    "node.type.management.multivalued.properties.supported": True,
    "node.type.management.orderable.child.nodes.supported": False,
    "node.type.management.overrides.supported": False,
    "node.type.management.primary.item.name.supported": True,
    "node.type.management.property.types": True,
    "node.type.management.residual.definitions.supported": False,
    "node.type.management.same.name.siblings.supported": False,
    "node.type.management.update.in.use.supported": False,
    "node.type.management.value.constraints.supported": False,
    "option.access.control.supported": False,
    "option.activities.supported": False,
    "option.baselines.supported": False,
    "option.journaled.observation.supported": False,
    "option.lifecycle.supported": False,
    "option.locking.supported": False,
    "option.node.and.property.with.same.name.supported": False,
    "option.node.type.management.supported": True,
    "option.observation.supported": False,
    "option.query.sql.supported": False,
    "option.retention.supported": False,
    "option.shareable.nodes.supported": False,
    "option.simple.versioning.supported": False,
    TRANSACTIONS: True,
    "option.unfiled.content.supported": True,
    "option.update.mixin.node.types.supported": True,
    "option.update.primary.node.type.supported": True,
    "option.versioning.supported": False,
    WORKSPACE_MANAGEMENT: True,
    "option.xml.export.supported": False,
    "option.xml.import.supported": False,
    "query.full.text.search.supported": False,
    "query.joins": False,
    "query.languages": "",
    "query.stored.queries.supported": False,
    "query.xpath.doc.order": False,
    "query.xpath.pos.index": False,
    "write.supported": True,
}


@lru_cache(maxsize=None)
def build_descriptors(transactions: bool = True) -> Mapping[str, DescriptorValue]:
    """Return the read-only descriptor table.

    Args:
        transactions: Whether save cycles are backed by a database
            transaction (see :meth:`crepo.repository.Repository.prepare_save`)
    """
    table = dict(_BASE_DESCRIPTORS)
    table[TRANSACTIONS] = bool(transactions)
    return MappingProxyType(table)


def supports(descriptors: Mapping[str, DescriptorValue], key: str) -> bool:
    """True only if the flag is present and exactly ``True``."""
    return descriptors.get(key) is True
