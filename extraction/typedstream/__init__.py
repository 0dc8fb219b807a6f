"""
Typedstream (NSArchiver "streamtyped") decoding.

Example:
    >>> from extraction.typedstream import decode
    >>> payload = decode(row["attributedBody"])  # doctest: +SKIP
    >>> payload.attributed_string().runs  # doctest: +SKIP
"""

from extraction.typedstream.decoder import TypedStreamDecoder, parse_type_encoding
from extraction.typedstream.legacy import recover_text
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
    TypedStreamToken,
    UnknownObject,
)


def decode(data: bytes) -> DecodedPayload:
    """Decode one typedstream buffer.

    Raises:
        MalformedStream: If the buffer is structurally corrupt
    """
    return TypedStreamDecoder(data).decode()


__all__ = [
    "ArchivedArray",
    "ArchivedAttributedString",
    "ArchivedClass",
    "ArchivedData",
    "ArchivedDictionary",
    "ArchivedNumber",
    "ArchivedString",
    "ArchivedURL",
    "AttributeRun",
    "DecodedPayload",
    "TypedStreamDecoder",
    "TypedStreamToken",
    "UnknownObject",
    "decode",
    "parse_type_encoding",
    "recover_text",
]
