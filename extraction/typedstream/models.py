#!/usr/bin/env python3
"""
Decoded typedstream values.

Primitive values decode to plain Python types (int, float, bytes, str, None).
Archived objects decode to the frozen records below, one per Foundation class
family the message payloads use. Any other class becomes an UnknownObject so
callers can pass it through untouched.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union


@dataclass(frozen=True)
class ArchivedClass:
    """A class entry from the object table, with its superclass chain."""

    name: str
    version: int
    superclass: Optional["ArchivedClass"] = None

    def chain(self) -> Tuple[str, ...]:
        """Class names from this class up to the root.

        Example:
            >>> ArchivedClass("NSMutableString", 1, ArchivedClass("NSString", 1)).chain()
            ('NSMutableString', 'NSString')
        """
        names = []
        current: Optional[ArchivedClass] = self
        while current is not None:
            names.append(current.name)
            current = current.superclass
        return tuple(names)


@dataclass(frozen=True)
class ArchivedString:
    class_name: str
    value: str


@dataclass(frozen=True)
class ArchivedNumber:
    class_name: str
    value: Union[int, float]
    objc_type: Optional[str] = None


@dataclass(frozen=True)
class ArchivedData:
    class_name: str
    value: bytes


@dataclass(frozen=True)
class ArchivedURL:
    class_name: str
    value: str
    base: Optional[str] = None


@dataclass(frozen=True)
class ArchivedArray:
    class_name: str
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class ArchivedDictionary:
    """An NSDictionary with its entries in archive order."""

    class_name: str
    entries: Tuple[Tuple[Any, Any], ...]

    def keys(self) -> Tuple[str, ...]:
        return tuple(key_text(key) for key, _ in self.entries)

    def get(self, key: str, default: Any = None) -> Any:
        for entry_key, value in self.entries:
            if key_text(entry_key) == key:
                return value
        return default

    def __contains__(self, key: str) -> bool:
        return key in self.keys()

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class AttributeRun:
    """A run of `length` UTF-16 code units sharing one attribute dictionary.

    `dictionary_index` is the 1-based index the archive gives the dictionary;
    runs that repeat an index share the same dictionary.
    """

    length: int
    attributes: ArchivedDictionary
    dictionary_index: int


@dataclass(frozen=True)
class ArchivedAttributedString:
    class_name: str
    text: str
    runs: Tuple[AttributeRun, ...]


@dataclass(frozen=True)
class UnknownObject:
    """An object of a class the decoder does not interpret.

    `fields` holds the generically decoded contents and `raw` the bytes
    between the class reference and the end-of-object tag.
    """

    class_name: str
    class_chain: Tuple[str, ...]
    fields: Tuple[Any, ...]
    raw: bytes


ArchivedObject = Union[
    ArchivedString,
    ArchivedNumber,
    ArchivedData,
    ArchivedURL,
    ArchivedArray,
    ArchivedDictionary,
    ArchivedAttributedString,
    UnknownObject,
]

TypedStreamToken = Union[None, int, float, bytes, str, ArchivedClass, ArchivedObject]


@dataclass(frozen=True)
class DecodedPayload:
    """Result of decoding one typedstream blob.

    Attributes:
        tokens: Top-level values in archive order
        truncated: True when the buffer ended inside an entry; the
            incomplete entry is dropped and earlier tokens are kept
        system_version: System version recorded in the header
    """

    tokens: Tuple[TypedStreamToken, ...]
    truncated: bool = False
    system_version: Optional[int] = None

    def attributed_string(self) -> Optional[ArchivedAttributedString]:
        """First attributed string among the top-level tokens."""
        for token in self.tokens:
            if isinstance(token, ArchivedAttributedString):
                return token
        return None

    def text(self) -> Optional[str]:
        """Text of the first attributed string or string token."""
        for token in self.tokens:
            if isinstance(token, ArchivedAttributedString):
                return token.text
            if isinstance(token, ArchivedString):
                return token.value
        return None


def key_text(key: Any) -> Any:
    """Dictionary keys are usually archived strings; compare them by value."""
    if isinstance(key, ArchivedString):
        return key.value
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return key
