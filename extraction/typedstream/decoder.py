#!/usr/bin/env python3
"""
Typedstream Decoder

Decodes the NeXTSTEP/Apple "streamtyped" archive format used by the
attributedBody column and by edit-history snapshots.

Layout of a stream:
- Header: unsigned version (4), length-prefixed signature "streamtyped",
  unsigned system version (usually 1000)
- Entries: a type-encoding string (e.g. "@", "iI", "[12c]") followed by one
  value per type. Objects carry their class chain and a list of typed value
  groups up to an end-of-object tag.

Integers are a single byte, or a tag (0x81 / 0x82) followed by a 2 or 4 byte
little-endian value. Objects, classes and shared strings are written once and
then referred to by index; a reference is an integer offset by -110 (the
first reference byte is 0x92).

Two tables are kept while decoding: shared strings (type encodings, class
names, C strings) and objects (objects and classes, in the order they start).
Both are plain lists addressed by index. Every lookup is bounds checked.
"""

import logging
import struct
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.errors import MalformedStream
from extraction.typedstream.models import (
    ArchivedArray,
    ArchivedAttributedString,
    ArchivedClass,
    ArchivedData,
    ArchivedDictionary,
    ArchivedNumber,
    ArchivedString,
    ArchivedURL,
    AttributeRun,
    DecodedPayload,
    UnknownObject,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Format Constants
# =============================================================================

STREAMER_VERSION = 4
SIGNATURE_LITTLE_ENDIAN = b"streamtyped"
SIGNATURE_BIG_ENDIAN = b"typedstream"

TAG_INTEGER_2 = 0x81
TAG_INTEGER_4 = 0x82
TAG_FLOATING_POINT = 0x83
TAG_NEW = 0x84
TAG_NIL = 0x85
TAG_END_OF_OBJECT = 0x86

# Signed value of the first reference byte (0x92)
FIRST_REFERENCE = -110

MAX_NESTING = 100

SIGNED_TYPES = "cislq"
UNSIGNED_TYPES = "CISLQB"
SIMPLE_TYPES = set("@#:*+fd" + SIGNED_TYPES + UNSIGNED_TYPES)
TYPE_QUALIFIERS = set("rnNoORV")
DIGITS = frozenset("0123456789")


class _Truncated(Exception):
    """The buffer ended while reading a tag or fixed-width value."""

    def __init__(self, offset: int, expected: str):
        self.offset = offset
        self.expected = expected
        super().__init__(f"stream ended at offset {offset} reading {expected}")


class _Pending:
    """Object-table placeholder for an object whose contents are being read."""

    def __repr__(self) -> str:
        return "<pending>"


_PENDING = _Pending()


def _signed_byte(value: int) -> int:
    return value - 0x100 if value >= 0x80 else value


# =============================================================================
# Type Encodings
# =============================================================================


def _type_end(encoding: str, index: int, depth: int = 0) -> Tuple[int, int]:
    """Return (start, end) of the type that begins at index, skipping qualifiers."""
    if depth > MAX_NESTING:
        raise ValueError(f"type encoding nested deeper than {MAX_NESTING}")
    while index < len(encoding) and encoding[index] in TYPE_QUALIFIERS:
        index += 1
    if index >= len(encoding):
        raise ValueError(f"type encoding ends after qualifier: {encoding!r}")

    start = index
    char = encoding[index]
    if char in SIMPLE_TYPES:
        return start, index + 1

    if char == "[":
        index += 1
        while index < len(encoding) and encoding[index] in DIGITS:
            index += 1
        _, elem_end = _type_end(encoding, index, depth + 1)
        if elem_end >= len(encoding) or encoding[elem_end] != "]":
            raise ValueError(f"unterminated array in type encoding: {encoding!r}")
        return start, elem_end + 1

    if char == "{":
        level = depth
        while index < len(encoding):
            if encoding[index] == "{":
                level += 1
                if level > MAX_NESTING:
                    raise ValueError(f"type encoding nested deeper than {MAX_NESTING}")
            elif encoding[index] == "}":
                level -= 1
                if level == depth:
                    return start, index + 1
            index += 1
        raise ValueError(f"unterminated struct in type encoding: {encoding!r}")

    raise ValueError(f"unsupported type {char!r} in encoding {encoding!r}")


def parse_type_encoding(encoding: str) -> List[str]:
    """Split a type-encoding string into one type code per value.

    Example:
        >>> parse_type_encoding("iI")
        ['i', 'I']
        >>> parse_type_encoding("[12c]@")
        ['[12c]', '@']
    """
    type_codes = []
    index = 0
    while index < len(encoding):
        start, end = _type_end(encoding, index)
        type_codes.append(encoding[start:end])
        index = end
    return type_codes


def _array_type(type_code: str) -> Tuple[int, str]:
    digits = ""
    index = 1
    while type_code[index] in DIGITS:
        digits += type_code[index]
        index += 1
    return int(digits or "0"), type_code[index:-1]


def _struct_fields(type_code: str) -> List[str]:
    inner = type_code[1:-1]
    if "=" in inner:
        inner = inner.split("=", 1)[1]
    return parse_type_encoding(inner)


# =============================================================================
# Class Interpretation
# =============================================================================


def _first(fields: List[Any], kind) -> Any:
    for value in fields:
        if isinstance(value, kind):
            return value
    return None


def _unarchive_string(class_name: str, fields: List[Any], offset: int) -> ArchivedString:
    raw = _first(fields, bytes)
    if raw is None:
        raise MalformedStream(offset, f"{class_name} contents", detail="no string bytes")
    try:
        return ArchivedString(class_name, raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise MalformedStream(offset, "UTF-8 string", detail=str(e)) from e


def _unarchive_number(class_name: str, fields: List[Any], offset: int) -> ArchivedNumber:
    numbers = [value for value in fields if isinstance(value, (int, float))]
    if not numbers:
        raise MalformedStream(offset, f"{class_name} value")
    objc_type = _first(fields, bytes)
    return ArchivedNumber(
        class_name,
        numbers[-1],
        objc_type.decode("ascii", errors="replace") if objc_type else None,
    )


def _unarchive_data(class_name: str, fields: List[Any], offset: int) -> ArchivedData:
    raw = _first(fields, bytes)
    if raw is None:
        if fields and fields[0] == 0:
            return ArchivedData(class_name, b"")
        raise MalformedStream(offset, f"{class_name} bytes")
    return ArchivedData(class_name, raw)


def _unarchive_url(class_name: str, fields: List[Any], offset: int) -> ArchivedURL:
    parts = [
        value.value
        for value in fields
        if isinstance(value, (ArchivedString, ArchivedURL))
    ]
    if not parts:
        raise MalformedStream(offset, "URL string")
    base = parts[0] if len(parts) > 1 else None
    return ArchivedURL(class_name, parts[-1], base)


def _counted(class_name: str, fields: List[Any], offset: int) -> Tuple[int, List[Any]]:
    if not fields or not isinstance(fields[0], int):
        raise MalformedStream(offset, f"{class_name} element count")
    return fields[0], fields[1:]


def _unarchive_array(class_name: str, fields: List[Any], offset: int) -> ArchivedArray:
    count, items = _counted(class_name, fields, offset)
    if len(items) != count:
        raise MalformedStream(
            offset, f"{count} array elements", detail=f"found {len(items)}"
        )
    return ArchivedArray(class_name, tuple(items))


def _unarchive_dictionary(
    class_name: str, fields: List[Any], offset: int
) -> ArchivedDictionary:
    count, rest = _counted(class_name, fields, offset)
    if len(rest) != count * 2:
        raise MalformedStream(
            offset, f"{count} dictionary entries", detail=f"found {len(rest)} values"
        )
    return ArchivedDictionary(class_name, tuple(zip(rest[0::2], rest[1::2])))


def _unarchive_attributed_string(
    class_name: str, fields: List[Any], offset: int
) -> ArchivedAttributedString:
    """Interpret attributed-string contents.

    Contents are the backing string followed by (index, length) pairs. An
    index one past the dictionaries seen so far is followed by a new
    attribute dictionary; a lower index reuses an earlier one.
    """
    if not fields:
        raise MalformedStream(offset, f"{class_name} string")

    backing = fields[0]
    if backing is None:
        text = ""
    elif isinstance(backing, ArchivedString):
        text = backing.value
    else:
        raise MalformedStream(
            offset, f"{class_name} string", detail=f"got {type(backing).__name__}"
        )

    dictionaries: List[ArchivedDictionary] = []
    runs = []
    position = 1
    while position < len(fields):
        if position + 1 >= len(fields):
            raise MalformedStream(offset, "attribute run length")
        index, length = fields[position], fields[position + 1]
        position += 2
        if not isinstance(index, int) or not isinstance(length, int) or length < 0:
            raise MalformedStream(offset, "attribute run index and length")

        if index == len(dictionaries) + 1:
            attributes = fields[position] if position < len(fields) else None
            if not isinstance(attributes, ArchivedDictionary):
                raise MalformedStream(
                    offset, f"attribute dictionary {index}", detail="missing dictionary"
                )
            dictionaries.append(attributes)
            position += 1
        elif 1 <= index <= len(dictionaries):
            attributes = dictionaries[index - 1]
        else:
            raise MalformedStream(
                offset,
                "attribute dictionary index",
                detail=f"index {index} with {len(dictionaries)} dictionaries seen",
            )
        runs.append(AttributeRun(length, attributes, index))

    return ArchivedAttributedString(class_name, text, tuple(runs))


UNARCHIVERS: Dict[str, Callable[[str, List[Any], int], Any]] = {
    "NSString": _unarchive_string,
    "NSMutableString": _unarchive_string,
    "NSAttributedString": _unarchive_attributed_string,
    "NSMutableAttributedString": _unarchive_attributed_string,
    "NSDictionary": _unarchive_dictionary,
    "NSMutableDictionary": _unarchive_dictionary,
    "NSArray": _unarchive_array,
    "NSMutableArray": _unarchive_array,
    "NSNumber": _unarchive_number,
    "NSValue": _unarchive_number,
    "NSData": _unarchive_data,
    "NSMutableData": _unarchive_data,
    "NSURL": _unarchive_url,
}


# =============================================================================
# Decoder
# =============================================================================


class TypedStreamDecoder:
    """Single-use decoder for one typedstream buffer.

    Example:
        >>> payload = TypedStreamDecoder(blob).decode()  # doctest: +SKIP
        >>> payload.text()  # doctest: +SKIP
        'Hello'
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0
        self.shared_strings: List[bytes] = []
        self.objects: List[Any] = []
        self.depth = 0

    def decode(self) -> DecodedPayload:
        """Decode the header and every top-level entry.

        Raises:
            MalformedStream: If the header is invalid or the structure is corrupt
        """
        system_version = self._read_header()
        tokens: List[Any] = []
        truncated = False

        while self.pos < len(self.data):
            if self.data[self.pos] == TAG_END_OF_OBJECT:
                self.pos += 1
                continue
            try:
                type_codes = self._read_type_encoding()
                values = [self._read_value(type_code) for type_code in type_codes]
            except _Truncated as e:
                logger.debug(f"Typedstream truncated: {e}; keeping {len(tokens)} tokens")
                truncated = True
                break
            tokens.extend(values)

        return DecodedPayload(tuple(tokens), truncated, system_version)

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    def _next(self, expected: str) -> int:
        if self.pos >= len(self.data):
            raise _Truncated(self.pos, expected)
        value = self.data[self.pos]
        self.pos += 1
        return value

    def _read_fixed(self, size: int, expected: str) -> bytes:
        if self.pos + size > len(self.data):
            raise _Truncated(self.pos, expected)
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def _read_declared(self, size: int, expected: str) -> bytes:
        """Read bytes whose count came from a length field."""
        remaining = len(self.data) - self.pos
        if size < 0 or size > remaining:
            raise MalformedStream(
                self.pos,
                expected,
                detail=f"declared length {size} exceeds remaining {remaining} bytes",
            )
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def _read_int_after(self, head: int, signed: bool) -> int:
        if head == TAG_INTEGER_2:
            return int.from_bytes(self._read_fixed(2, "int16"), "little", signed=signed)
        if head == TAG_INTEGER_4:
            return int.from_bytes(self._read_fixed(4, "int32"), "little", signed=signed)
        if TAG_FLOATING_POINT <= head < TAG_FLOATING_POINT + 15:
            raise MalformedStream(
                self.pos - 1, "integer", detail=f"found tag 0x{head:02x}"
            )
        return _signed_byte(head) if signed else head

    def _read_int(self, signed: bool = True) -> int:
        return self._read_int_after(self._next("integer"), signed)

    def _read_float(self, size: int) -> float:
        head = self._next("floating point value")
        if head == TAG_FLOATING_POINT:
            raw = self._read_fixed(size, "floating point value")
            return struct.unpack("<f" if size == 4 else "<d", raw)[0]
        return float(self._read_int_after(head, signed=True))

    def _reference(self, head: int) -> int:
        start = self.pos - 1
        if head in (TAG_INTEGER_2, TAG_INTEGER_4):
            value = self._read_int_after(head, signed=True)
        else:
            value = _signed_byte(head)
        index = value - FIRST_REFERENCE
        if index < 0:
            raise MalformedStream(start, "reference", detail=f"found byte 0x{head:02x}")
        return index

    # -------------------------------------------------------------------------
    # Header, strings and type encodings
    # -------------------------------------------------------------------------

    def _read_header(self) -> int:
        try:
            version = self._read_int(signed=False)
            signature = self._read_declared(self._read_int(signed=False), "signature")
            system_version = self._read_int(signed=False)
        except _Truncated as e:
            raise MalformedStream(e.offset, "stream header", detail="buffer too short") from None

        if signature == SIGNATURE_BIG_ENDIAN:
            raise MalformedStream(
                0, "'streamtyped' signature", detail="big-endian streams are not supported"
            )
        if version != STREAMER_VERSION or signature != SIGNATURE_LITTLE_ENDIAN:
            raise MalformedStream(
                0,
                "'streamtyped' header",
                detail=f"version {version}, signature {signature[:16]!r}",
            )
        return system_version

    def _read_shared_string(self) -> Optional[bytes]:
        start = self.pos
        head = self._next("shared string")
        if head == TAG_NIL:
            return None
        if head == TAG_NEW:
            value = self._read_declared(self._read_int(signed=False), "shared string")
            self.shared_strings.append(value)
            return value

        index = self._reference(head)
        if index >= len(self.shared_strings):
            raise MalformedStream(
                start,
                "shared string reference",
                detail=f"index {index} >= table size {len(self.shared_strings)}",
            )
        return self.shared_strings[index]

    def _read_type_encoding(self) -> List[str]:
        start = self.pos
        raw = self._read_shared_string()
        if not raw:
            raise MalformedStream(start, "type encoding")
        try:
            return parse_type_encoding(raw.decode("ascii"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedStream(start, "type encoding", detail=str(e)) from e

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _read_value(self, type_code: str) -> Any:
        kind = type_code[0]
        if kind == "@":
            return self._read_object()
        if kind == "#":
            return self._read_class()
        if kind in ":*":
            return self._read_shared_string()
        if kind == "+":
            return self._read_declared(self._read_int(signed=False), "string bytes")
        if kind in SIGNED_TYPES:
            return self._read_int(signed=True)
        if kind in UNSIGNED_TYPES:
            return self._read_int(signed=False)
        if kind == "f":
            return self._read_float(4)
        if kind == "d":
            return self._read_float(8)
        if kind == "[":
            count, element = _array_type(type_code)
            if element in ("c", "C"):
                return self._read_declared(count, "byte array")
            if count > len(self.data) - self.pos:
                raise MalformedStream(
                    self.pos, f"array of {count} elements", detail="exceeds buffer"
                )
            return self._read_nested([element] * count)
        if kind == "{":
            try:
                fields = _struct_fields(type_code)
            except ValueError as e:
                raise MalformedStream(self.pos, "type encoding", detail=str(e)) from e
            return self._read_nested(fields)
        raise MalformedStream(self.pos, "value", detail=f"unsupported type {type_code!r}")

    def _read_nested(self, type_codes: List[str]) -> Tuple[Any, ...]:
        """Read array elements or struct fields; they count toward the nesting limit."""
        self._enter(self.pos)
        try:
            return tuple(self._read_value(type_code) for type_code in type_codes)
        finally:
            self.depth -= 1

    def _enter(self, offset: int) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise MalformedStream(offset, "nested value", detail=f"nesting deeper than {MAX_NESTING}")

    def _lookup_object(self, index: int, offset: int) -> Any:
        if index >= len(self.objects):
            raise MalformedStream(
                offset,
                "object reference",
                detail=f"index {index} >= table size {len(self.objects)}",
            )
        entry = self.objects[index]
        if entry is _PENDING:
            raise MalformedStream(
                offset,
                "object reference",
                detail=f"index {index} refers to an object still being decoded",
            )
        return entry

    def _read_class(self) -> Optional[ArchivedClass]:
        start = self.pos
        head = self._next("class")
        if head == TAG_NIL:
            return None
        if head != TAG_NEW:
            entry = self._lookup_object(self._reference(head), start)
            if not isinstance(entry, ArchivedClass):
                raise MalformedStream(start, "class reference", detail="entry is not a class")
            return entry

        name = self._read_shared_string()
        if not name:
            raise MalformedStream(start, "class name")
        version = self._read_int(signed=False)

        slot = len(self.objects)
        self.objects.append(_PENDING)
        self._enter(start)
        try:
            superclass = self._read_class()
        finally:
            self.depth -= 1

        archived_class = ArchivedClass(name.decode("utf-8", errors="replace"), version, superclass)
        self.objects[slot] = archived_class
        return archived_class

    def _read_object(self) -> Any:
        start = self.pos
        head = self._next("object")
        if head == TAG_NIL:
            return None
        if head != TAG_NEW:
            return self._lookup_object(self._reference(head), start)

        slot = len(self.objects)
        self.objects.append(_PENDING)
        self._enter(start)
        try:
            archived_class = self._read_class()
            if archived_class is None:
                raise MalformedStream(start, "object class", detail="class is nil")

            contents_start = self.pos
            fields: List[Any] = []
            while True:
                if self._peek("object contents") == TAG_END_OF_OBJECT:
                    contents_end = self.pos
                    self.pos += 1
                    break
                for type_code in self._read_type_encoding():
                    fields.append(self._read_value(type_code))
        finally:
            self.depth -= 1

        unarchive = UNARCHIVERS.get(archived_class.name)
        if unarchive is None:
            logger.debug(f"Passing through unknown class {archived_class.name} at offset {start}")
            value = UnknownObject(
                archived_class.name,
                archived_class.chain(),
                tuple(fields),
                self.data[contents_start:contents_end],
            )
        else:
            value = unarchive(archived_class.name, fields, start)

        self.objects[slot] = value
        return value

    def _peek(self, expected: str) -> int:
        if self.pos >= len(self.data):
            raise _Truncated(self.pos, expected)
        return self.data[self.pos]
