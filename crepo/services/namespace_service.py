"""Namespace registry: prefix -> URI table over a fixed built-in set."""

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from sqlalchemy.orm import Session

from ..db.models import Namespace
from ..exceptions import NamespaceError

logger = logging.getLogger(__name__)

BUILTIN_NAMESPACES: Mapping[str, str] = MappingProxyType({
    "": "",
    "jcr": "http://www.jcp.org/jcr/1.0",
    "nt": "http://www.jcp.org/jcr/nt/1.0",
    "mix": "http://www.jcp.org/jcr/mix/1.0",
    "xml": "http://www.w3.org/XML/1998/namespace",
    "sv": "http://www.jcp.org/jcr/sv/1.0",
    "crepo": "https://github.com/crepo/crepo",
})


class NamespaceRegistry:
    """Persisted namespaces merged over :data:`BUILTIN_NAMESPACES`.

    The merged table is loaded on first use and cached; registering or
    unregistering a prefix invalidates the cache. Built-in prefixes can't
    be overridden or removed.
    """

    def __init__(self, session: Session):
        self.session = session
        self._cache: Optional[Dict[str, str]] = None

    def invalidate(self) -> None:
        self._cache = None

    def get_namespaces(self) -> Dict[str, str]:
        if self._cache is None:
            namespaces = dict(BUILTIN_NAMESPACES)
            for entry in self.session.query(Namespace).order_by(Namespace.id):
                if entry.prefix in BUILTIN_NAMESPACES:
                    logger.warning(f"Ignoring stored namespace '{entry.prefix}': the prefix is reserved")
                    continue
                namespaces[entry.prefix] = entry.uri
            self._cache = namespaces
        return dict(self._cache)

    def get_uri(self, prefix: str) -> str:
        namespaces = self.get_namespaces()
        if prefix not in namespaces:
            raise NamespaceError(f"Namespace prefix '{prefix}' is not registered")
        return namespaces[prefix]

    def get_prefix(self, uri: str) -> str:
        for prefix, known in self.get_namespaces().items():
            if known == uri:
                return prefix
        raise NamespaceError(f"Namespace URI '{uri}' is not registered")

    def register_namespace(self, prefix: str, uri: str) -> None:
        """Register ``prefix`` or point an existing one at a new URI."""
        if prefix in BUILTIN_NAMESPACES:
            raise NamespaceError(f"Namespace prefix '{prefix}' is reserved")
        if not prefix or ":" in prefix:
            raise NamespaceError(f"Invalid namespace prefix '{prefix}'")

        entry = self.session.query(Namespace).filter_by(prefix=prefix).first()
        if entry is None:
            self.session.add(Namespace(prefix=prefix, uri=uri))
        else:
            entry.uri = uri
        self.session.commit()
        self.invalidate()
        logger.info(f"Registered namespace {prefix} -> {uri}")

    def unregister_namespace(self, prefix: str) -> None:
        if prefix in BUILTIN_NAMESPACES:
            raise NamespaceError(f"Namespace prefix '{prefix}' is reserved")
        removed = self.session.query(Namespace).filter_by(prefix=prefix).delete()
        if not removed:
            raise NamespaceError(f"Namespace prefix '{prefix}' is not registered")
        self.session.commit()
        self.invalidate()
        logger.info(f"Unregistered namespace {prefix}")
