#!/usr/bin/env python3
"""
Byte-scanning text recovery for payloads the structured decoder rejects.

Looks for the "+" type encoding that precedes an archived string's bytes
and reads the length that follows it. Attribute runs are not recovered,
so any message using this path is lossy.
"""

from typing import Optional

# 0x84 0x01 "+": a new one-character type encoding for unshared string bytes
TEXT_MARKER = b"\x01+"


def recover_text(blob: bytes) -> Optional[str]:
    """Recover the first archived string from a typedstream blob.

    Args:
        blob: Raw bytes from the attributedBody column

    Returns:
        Decoded text, empty string for empty messages, or None if no
        string could be located

    Example:
        >>> recover_text(b"\\x04\\x0bstreamtyped\\x81\\xe8\\x03\\x84\\x01+\\x02hi")
        'hi'
    """
    if not blob or len(blob) < 10:
        return None

    idx = blob.find(TEXT_MARKER)
    if idx == -1:
        return None

    length_start = idx + len(TEXT_MARKER)
    if length_start >= len(blob):
        return None

    first_byte = blob[length_start]
    if first_byte == 0x81:
        # 0x81 + 2 byte little-endian length
        if length_start + 3 > len(blob):
            return None
        text_length = int.from_bytes(blob[length_start + 1 : length_start + 3], "little")
        text_start = length_start + 3
    elif first_byte == 0x82:
        # 0x82 + 4 byte little-endian length
        if length_start + 5 > len(blob):
            return None
        text_length = int.from_bytes(blob[length_start + 1 : length_start + 5], "little")
        text_start = length_start + 5
    elif first_byte < 0x80:
        text_length = first_byte
        text_start = length_start + 1
    else:
        return None

    # Keep whatever text survived in a cut-off blob
    text_end = min(text_start + text_length, len(blob))
    return blob[text_start:text_end].decode("utf-8", errors="replace")
