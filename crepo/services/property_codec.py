"""Conversion between typed properties and their stored document form.

A stored property record looks like::

    {"name": "title", "type": "String", "multi": False, "value": "Hello"}

Most types store their native scalar. DATE stores
``{"date": <epoch seconds>, "timezone": <zone>}``, DECIMAL its canonical
string, BINARY the payload length (the bytes go to the blob store).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import math
import re
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ValueFormatError
from ..types import (
    DateValue, PropertyRecord, PropertyType, REFERENCEABLE, SYSTEM_PROPERTIES,
)

logger = logging.getLogger(__name__)

_PATH_SEGMENT = r"(?:\.{1,2}|[-a-zA-Z0-9:_]+(?:\[[0-9]+\])?)"
VALIDATE_PATH = re.compile(rf"^(?:/|/?{_PATH_SEGMENT}(?:/{_PATH_SEGMENT})*/?)$")

# RFC 3986 URI-reference
_UNRESERVED = r"A-Za-z0-9\-._~"
_SUB_DELIMS = r"!$&'()*+,;="
_PCT_ENCODED = r"%[0-9A-Fa-f]{2}"
_PCHAR = rf"(?:[{_UNRESERVED}{_SUB_DELIMS}:@]|{_PCT_ENCODED})"
_SCHEME = r"[A-Za-z][A-Za-z0-9+\-.]*"
_USERINFO = rf"(?:[{_UNRESERVED}{_SUB_DELIMS}:]|{_PCT_ENCODED})*"
_HOST = rf"(?:\[[0-9A-Fa-f:.vV]+\]|(?:[{_UNRESERVED}{_SUB_DELIMS}]|{_PCT_ENCODED})*)"
_AUTHORITY = rf"(?:{_USERINFO}@)?{_HOST}(?::[0-9]*)?"
_HIER_PART = rf"(?://{_AUTHORITY}(?:/{_PCHAR}*)*|/?(?:{_PCHAR}+(?:/{_PCHAR}*)*)?)"
_QUERY = rf"(?:{_PCHAR}|[/?])*"
VALIDATE_URI_RFC3986 = re.compile(
    rf"^(?:{_SCHEME}:)?{_HIER_PART}(?:\?{_QUERY})?(?:#{_QUERY})?$"
)

_OFFSET_NAME = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


class EncodedProperty(NamedTuple):
    """A property ready for storage plus the binary payloads it references."""
    record: Dict[str, Any]
    binaries: List[bytes]


def to_boolean(value: Any) -> bool:
    """Lenient boolean decoding.

    Native booleans pass through. A string is true only if it reads
    "true" once trimmed, ignoring case. Every other value is False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def timezone_name(value: datetime) -> str:
    """Name of the timezone attached to ``value``.

    Naive datetimes are taken as UTC. Fixed offsets are written as
    ``+HH:MM``.
    """
    tz = value.tzinfo
    if tz is None or tz is timezone.utc:
        return "UTC"
    key = getattr(tz, "key", None)
    if key:
        return key
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0) and tz.tzname(value) in ("UTC", "GMT", "Z"):
        return "UTC"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def resolve_timezone(name: str):
    """tzinfo for a stored timezone name."""
    match = _OFFSET_NAME.match(name)
    if match:
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-delta if sign == "-" else delta)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}' in stored date, using UTC")
        return timezone.utc


def encode_date(value: Optional[datetime]) -> DateValue:
    """Stored pair for a date; a missing value means now."""
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        epoch = value.replace(tzinfo=timezone.utc).timestamp()
    else:
        epoch = value.timestamp()
    return DateValue(math.floor(epoch), timezone_name(value))


def decode_date(value: Any) -> str:
    """ISO-8601 string with the stored timezone reapplied."""
    date_value = value if isinstance(value, DateValue) else DateValue.from_document(value)
    moment = datetime.fromtimestamp(date_value.epoch_seconds, tz=resolve_timezone(date_value.timezone))
    return moment.isoformat()


def _decode_scalar(prop_type: PropertyType, value: Any) -> Any:
    if prop_type == PropertyType.BOOLEAN:
        return to_boolean(value)
    if prop_type == PropertyType.DATE:
        return decode_date(value)
    if prop_type == PropertyType.DECIMAL:
        return Decimal(str(value))
    if prop_type in (PropertyType.LONG, PropertyType.BINARY):
        return int(value)
    if prop_type == PropertyType.DOUBLE:
        return float(value)
    return value


def decode_record(document: Mapping[str, Any]) -> PropertyRecord:
    """Rebuild a typed property record from its stored form."""
    prop_type = PropertyType.from_name(document["type"])
    multi = bool(document.get("multi", False))
    raw = document.get("value")
    if multi:
        items = raw if isinstance(raw, list) else [raw]
        value: Any = [_decode_scalar(prop_type, item) for item in items]
    else:
        value = _decode_scalar(prop_type, raw)
    return PropertyRecord(document["name"], prop_type, multi, value)


class PropertyCodec:
    """Encodes properties for storage and decodes stored records.

    Args:
        namespaces: Callable returning the prefix -> URI map used to
            check NAME values
    """

    def __init__(self, namespaces: Callable[[], Mapping[str, str]]):
        self._namespaces = namespaces

    def encode(self, prop) -> Optional[EncodedProperty]:
        """Encode one property, or return None if it must not be written.

        System properties (``jcr:uuid``, ``jcr:primaryType``) and clean
        properties (neither new nor modified) are skipped.

        Raises:
            ValueFormatError: if a value fails its type's grammar, or a
                reference property sits on a non-referenceable node
        """
        name = prop.name
        path = prop.path
        if name in SYSTEM_PROPERTIES:
            return None
        if not prop.is_modified() and not prop.is_new():
            return None

        prop_type = prop.type
        node = prop.get_node()
        if prop_type.is_reference and node is not None and not node.is_node_type(REFERENCEABLE):
            raise ValueFormatError(f"Node {node.path} is not referenceable.", path=path)

        multi = prop.is_multiple()
        binaries: List[bytes] = []

        if prop_type == PropertyType.BINARY:
            streams = prop.get_binary()
            for stream in (streams if multi else [streams]):
                binaries.append(stream.read())
            values: Any = [len(data) for data in binaries]
            if not multi:
                values = values[0]
        elif prop_type == PropertyType.DATE:
            dates = prop.get_date()
            if multi:
                dates = [None] if dates is None else dates
                values = [encode_date(d).to_document() for d in dates]
            else:
                values = encode_date(dates).to_document()
        else:
            values = self._accessor(prop, prop_type)

        if multi:
            values = list(values)
            for value in values:
                self.validate_value(prop_type, value, path)
        else:
            self.validate_value(prop_type, values, path)

        record = {
            "name": name,
            "type": prop_type.value,
            "multi": multi,
            "value": values,
        }
        return EncodedProperty(record, binaries)

    @staticmethod
    def _accessor(prop, prop_type: PropertyType) -> Any:
        if prop_type == PropertyType.BOOLEAN:
            return prop.get_boolean()
        if prop_type == PropertyType.LONG:
            return prop.get_long()
        if prop_type == PropertyType.DOUBLE:
            return prop.get_double()
        if prop_type == PropertyType.DECIMAL:
            decimals = prop.get_decimal()
            if prop.is_multiple():
                return [str(d) for d in decimals]
            return str(decimals)
        # STRING, NAME, PATH, URI, REFERENCE, WEAKREFERENCE
        return prop.get_string()

    def validate_value(self, prop_type: PropertyType, value: Any, path: str) -> None:
        """Check one encoded scalar against its type's grammar."""
        if prop_type == PropertyType.NAME:
            if ":" in str(value):
                prefix = str(value).split(":", 1)[0]
                if prefix not in self._namespaces():
                    raise ValueFormatError(
                        f"Invalid JCR NAME at {path}: The namespace prefix {prefix} does not exist.",
                        path=path,
                    )
        elif prop_type == PropertyType.PATH:
            if not VALIDATE_PATH.match(str(value)):
                raise ValueFormatError(
                    f"Invalid PATH at {path}: Segments are separated by / and allowed chars are a-zA-Z0-9:_-",
                    path=path,
                )
        elif prop_type == PropertyType.URI:
            if not VALIDATE_URI_RFC3986.match(str(value)):
                raise ValueFormatError(f"Invalid URI at {path}: Has to follow RFC 3986.", path=path)

    def decode(self, document: Mapping[str, Any]) -> PropertyRecord:
        return decode_record(document)

    def decode_all(self, documents: List[Mapping[str, Any]]) -> List[PropertyRecord]:
        return [decode_record(doc) for doc in documents or []]
