#!/usr/bin/env python3
"""
Edit history extraction from message_summary_info.

The column holds a binary property list. The keys used here:
- "ec": part index (as a string) -> list of edit events, each a dict with
  "d" (seconds since 2001), "t" (typedstream payload of that version) and
  optionally "bcg" (GUID of the edit)
- "rp": list of part indexes the sender unsent
- "otr": part index (as a string) -> metadata for every part of the message

Each part's events include the original text first and the current text
last.
"""

import logging
import plistlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from common.errors import MalformedStream
from common.utils import convert_apple_seconds
from extraction.models import EditSnapshot
from extraction.typedstream import decode, recover_text

logger = logging.getLogger(__name__)


class EditHistoryError(ValueError):
    """message_summary_info could not be read as an edit history."""


@dataclass(frozen=True)
class EditHistory:
    snapshots: Tuple[EditSnapshot, ...] = ()
    unsent_parts: Tuple[int, ...] = ()
    parts: Tuple[int, ...] = ()
    lossy: bool = False

    @property
    def is_edited(self) -> bool:
        parts = [snapshot.part for snapshot in self.snapshots]
        return len(parts) != len(set(parts))

    @property
    def fully_unsent(self) -> bool:
        """True when the sender unsent every part of the message."""
        return bool(self.unsent_parts) and set(self.parts) <= set(self.unsent_parts)

    @property
    def latest_text(self) -> Optional[str]:
        """Current text of the message: each part's latest snapshot, in part order."""
        if not self.snapshots:
            return None
        latest: Dict[int, str] = {}
        for snapshot in self.snapshots:
            latest[snapshot.part] = snapshot.text
        return "".join(latest[part] for part in sorted(latest))


def _snapshot_text(payload: Any) -> Tuple[str, bool]:
    """Decode one event payload, returning (text, lossy)."""
    if not isinstance(payload, (bytes, bytearray)):
        return "", True
    try:
        text = decode(bytes(payload)).text()
        if text is not None:
            return text, False
    except MalformedStream as e:
        logger.debug(f"Edit snapshot payload is malformed: {e}")
    recovered = recover_text(bytes(payload))
    return recovered or "", True


def _part_index(key: Any) -> int:
    try:
        return int(key)
    except (TypeError, ValueError):
        raise EditHistoryError(f"invalid part index {key!r}") from None


def _seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_edit_history(blob: Optional[bytes]) -> EditHistory:
    """Parse edit snapshots and unsent parts from message_summary_info.

    Snapshots across all parts are returned in chronological order.

    Args:
        blob: Raw message_summary_info bytes

    Returns:
        EditHistory, empty when the blob is empty or records no edits

    Raises:
        EditHistoryError: If the blob is not a readable property list
    """
    if not blob:
        return EditHistory()

    try:
        root = plistlib.loads(bytes(blob))
    except Exception as e:
        raise EditHistoryError(f"unreadable property list: {e}") from e

    if not isinstance(root, dict):
        raise EditHistoryError(f"expected a dictionary, got {type(root).__name__}")

    events = root.get("ec") or {}
    if not isinstance(events, dict):
        raise EditHistoryError("'ec' is not a dictionary")

    snapshots: List[Tuple[float, int, int, EditSnapshot]] = []
    lossy = False
    order = 0
    for key, part_events in events.items():
        part = _part_index(key)
        if not isinstance(part_events, list):
            raise EditHistoryError(f"events for part {part} are not a list")

        for event in part_events:
            if not isinstance(event, dict):
                raise EditHistoryError(f"event for part {part} is not a dictionary")
            text, event_lossy = _snapshot_text(event.get("t"))
            lossy = lossy or event_lossy
            seconds = _seconds(event.get("d"))
            snapshot = EditSnapshot(
                part=part,
                text=text,
                timestamp=convert_apple_seconds(seconds),
                guid=event.get("bcg"),
            )
            snapshots.append((seconds or 0.0, part, order, snapshot))
            order += 1

    snapshots.sort(key=lambda item: item[:3])

    unsent = root.get("rp") or []
    if not isinstance(unsent, list):
        raise EditHistoryError("'rp' is not a list")
    try:
        unsent_parts = tuple(sorted(int(index) for index in unsent))
    except (TypeError, ValueError, OverflowError):
        raise EditHistoryError(f"invalid unsent part indexes {unsent!r}") from None

    part_info = root.get("otr") or {}
    if not isinstance(part_info, dict):
        raise EditHistoryError("'otr' is not a dictionary")
    parts = {_part_index(key) for key in part_info}
    parts.update(_part_index(key) for key in events)
    parts.update(unsent_parts)

    return EditHistory(
        snapshots=tuple(item[3] for item in snapshots),
        unsent_parts=unsent_parts,
        parts=tuple(sorted(parts)),
        lossy=lossy,
    )
