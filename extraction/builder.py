#!/usr/bin/env python3
"""
Payload Model Builder

Turns message rows into Message entities in two passes:

1. build_message() runs per row (in worker threads): decodes the
   attributedBody payload, converts attribute runs into ranges, reads the
   edit history, and records reply/reaction targets by GUID.
2. link_references() runs once every message is built: resolves those GUIDs,
   attaches reactions to their targets and ties attachment placeholders to
   attachment rows. Targets that are not found stay marked unresolved.

A payload that fails to decode never fails the row: the message falls back
to the plain text column and is marked lossy.
"""

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from common.errors import MalformedStream
from common.utils import convert_apple_timestamp, utf16_length
from extraction.edits import EditHistory, EditHistoryError, parse_edit_history
from extraction.models import (
    Announcement,
    AnnouncementKind,
    AttributeKind,
    AttributeRange,
    Message,
    MessageReference,
    MessageVariant,
    Reaction,
    ReactionLink,
    app_balloon_name,
    reaction_from_code,
    text_effect_name,
)
from extraction.typedstream import (
    ArchivedAttributedString,
    ArchivedDictionary,
    ArchivedNumber,
    ArchivedString,
    ArchivedURL,
    decode,
    recover_text,
)
from extraction.typedstream.models import key_text

logger = logging.getLogger(__name__)

# =============================================================================
# Attribute Keys
# =============================================================================

MENTION_KEY = "__kIMMentionConfirmedMention"
LINK_KEY = "__kIMLinkAttributeName"
ATTACHMENT_KEY = "__kIMFileTransferGUIDAttributeName"
EFFECT_KEY = "__kIMTextEffectAttributeName"
OTP_KEY = "__kIMOneTimeCodeAttributeName"

STYLE_KEYS = {
    "__kIMTextBoldAttributeName": "bold",
    "__kIMTextItalicAttributeName": "italic",
    "__kIMTextStrikethroughAttributeName": "strikethrough",
    "__kIMTextUnderlineAttributeName": "underline",
}

# Keys describing message structure rather than content; they yield no range
STRUCTURAL_KEYS = {
    "__kIMMessagePartAttributeName",
    "__kIMBaseWritingDirectionAttributeName",
    "__kIMFilenameAttributeName",
    "__kIMInlineMediaWidthAttributeName",
    "__kIMInlineMediaHeightAttributeName",
    "__kIMDataDetectedAttributeName",
}

ASSOCIATED_GUID_PATTERN = re.compile(r"^(?:p:(\d+)/|bp:)?(.+)$")

# Row values that decide a message's variant
SHAREPLAY_ITEM_TYPE = 6
STICKER_ASSOCIATION = 1000
PLAIN_ASSOCIATIONS = (0, 2, 3)
PHOTO_CHANGE_ACTION = 1


# =============================================================================
# Attribute Ranges
# =============================================================================


def _text_value(value: Any) -> Optional[str]:
    if isinstance(value, (ArchivedString, ArchivedURL)):
        return value.value
    if isinstance(value, ArchivedNumber):
        return str(value.value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _effect_id(value: Any) -> Optional[int]:
    """Integral effect id of an NSNumber, or None for anything else."""
    if not isinstance(value, ArchivedNumber):
        return None
    number = value.value
    if isinstance(number, float) and not (math.isfinite(number) and number.is_integer()):
        return None
    return int(number)


def _is_enabled(value: Any) -> bool:
    if isinstance(value, ArchivedNumber):
        return bool(value.value)
    return value is not None


def _run_ranges(attributes: ArchivedDictionary, start: int, end: int) -> List[AttributeRange]:
    """Ranges for one run: at most one per kind."""
    found: Dict[AttributeKind, AttributeRange] = {}
    styles: List[str] = []
    unknown: List[str] = []

    for key, value in attributes.entries:
        name = key_text(key)
        if name == MENTION_KEY:
            found.setdefault(
                AttributeKind.MENTION,
                AttributeRange(start, end, AttributeKind.MENTION, _text_value(value)),
            )
        elif name == LINK_KEY:
            found.setdefault(
                AttributeKind.LINK,
                AttributeRange(start, end, AttributeKind.LINK, _text_value(value)),
            )
        elif name == ATTACHMENT_KEY:
            found.setdefault(
                AttributeKind.ATTACHMENT,
                AttributeRange(start, end, AttributeKind.ATTACHMENT, _text_value(value)),
            )
        elif name == EFFECT_KEY:
            effect_id = _effect_id(value)
            effect = text_effect_name(effect_id) if effect_id is not None else None
            found.setdefault(
                AttributeKind.EFFECT,
                AttributeRange(start, end, AttributeKind.EFFECT, effect),
            )
        elif name == OTP_KEY:
            found.setdefault(
                AttributeKind.OTP,
                AttributeRange(start, end, AttributeKind.OTP, _text_value(value)),
            )
        elif name in STYLE_KEYS:
            if _is_enabled(value) and STYLE_KEYS[name] not in styles:
                styles.append(STYLE_KEYS[name])
        elif name in STRUCTURAL_KEYS:
            continue
        else:
            unknown.append(str(name))

    if styles:
        found[AttributeKind.STYLE] = AttributeRange(
            start, end, AttributeKind.STYLE, ",".join(styles)
        )
    if unknown:
        found[AttributeKind.UNKNOWN] = AttributeRange(
            start, end, AttributeKind.UNKNOWN, ",".join(sorted(unknown))
        )

    return list(found.values())


def ranges_from_runs(
    attributed: ArchivedAttributedString,
) -> Tuple[Tuple[AttributeRange, ...], bool]:
    """Convert attribute runs into ranges over the attributed string's text.

    Runs are consecutive: each starts where the previous ended. Ranges are
    clamped to the text length.

    Returns:
        (ranges, clamped) where clamped is True if any run reached past the
        end of the text

    Example:
        >>> ranges, clamped = ranges_from_runs(payload.attributed_string())  # doctest: +SKIP
        >>> [(r.start, r.end, r.kind.value) for r in ranges]  # doctest: +SKIP
        [(5, 12, 'link'), (20, 25, 'mention')]
    """
    text_length = utf16_length(attributed.text)
    ranges: List[AttributeRange] = []
    clamped = False
    cursor = 0

    for run in attributed.runs:
        start = cursor
        end = cursor + run.length
        cursor = end
        if run.length == 0:
            continue
        if start >= text_length:
            clamped = True
            continue
        if end > text_length:
            end = text_length
            clamped = True
        ranges.extend(_run_ranges(run.attributes, start, end))

    return tuple(ranges), clamped


# =============================================================================
# Row Helpers
# =============================================================================


def parse_associated_guid(raw: str) -> Tuple[str, Optional[int]]:
    """Split an associated_message_guid into (guid, part).

    Example:
        >>> parse_associated_guid("p:1/AAAA-BBBB")
        ('AAAA-BBBB', 1)
        >>> parse_associated_guid("bp:AAAA-BBBB")
        ('AAAA-BBBB', None)
    """
    match = ASSOCIATED_GUID_PATTERN.match(raw.strip())
    if not match:
        return raw, None
    part = int(match.group(1)) if match.group(1) is not None else None
    return match.group(2), part


def parse_thread_part(raw: Optional[str]) -> Optional[int]:
    """First component of thread_originator_part ("0:0:12" -> 0)."""
    if not raw:
        return None
    head = str(raw).split(":", 1)[0]
    return int(head) if head.isascii() and head.isdigit() else None


def message_announcement(row: Mapping[str, Any], history: EditHistory) -> Optional[Announcement]:
    """The conversation event a row records, or None for an ordinary message."""
    if row.get("group_title") is not None:
        return Announcement(AnnouncementKind.NAME_CHANGE, row["group_title"])
    if history.fully_unsent:
        return Announcement(AnnouncementKind.FULLY_UNSENT)
    action = row.get("group_action_type") or 0
    if action == 0:
        return None
    if action == PHOTO_CHANGE_ACTION:
        return Announcement(AnnouncementKind.PHOTO_CHANGE)
    return Announcement(AnnouncementKind.UNKNOWN, str(action))


def message_variant(
    row: Mapping[str, Any],
    history: EditHistory,
    announcement: Optional[Announcement],
) -> Tuple[MessageVariant, Optional[str]]:
    """Classify a row.

    Returns:
        (variant, app balloon name), the name set only for APP
    """
    if announcement is not None:
        return MessageVariant.ANNOUNCEMENT, None
    if history.is_edited:
        return MessageVariant.EDITED, None

    code = row.get("associated_message_type") or 0
    if code in PLAIN_ASSOCIATIONS:
        if row.get("item_type") == SHAREPLAY_ITEM_TYPE:
            return MessageVariant.SHAREPLAY, None
        if row.get("balloon_bundle_id"):
            return MessageVariant.APP, app_balloon_name(row["balloon_bundle_id"])
        return MessageVariant.NORMAL, None
    if code == STICKER_ASSOCIATION:
        return MessageVariant.STICKER, None
    if reaction_from_code(code) is not None:
        return MessageVariant.REACTION, None
    return MessageVariant.UNKNOWN, None


def _decode_body(row: Mapping[str, Any]) -> Tuple[str, Tuple[AttributeRange, ...], List[str], bool]:
    """Decode the message body.

    Returns:
        (text, ranges, lossy reasons, fell_back) where fell_back is True when
        the text did not come from a decoded payload
    """
    text_column = row.get("text")
    payload = row.get("attributedBody")
    if not payload:
        return text_column or "", (), [], text_column is None

    try:
        decoded = decode(payload)
    except MalformedStream as e:
        logger.debug(f"Message {row.get('ROWID')}: {e}")
        reasons = [f"malformed attributedBody: {e}"]
        if text_column is not None:
            return text_column, (), reasons, True
        return recover_text(payload) or "", (), reasons, True

    reasons = []
    if decoded.truncated:
        reasons.append("attributedBody truncated")

    attributed = decoded.attributed_string()
    if attributed is not None:
        ranges, clamped = ranges_from_runs(attributed)
        if clamped:
            reasons.append("attribute runs extend past message text")
        return attributed.text, ranges, reasons, False

    text = decoded.text()
    if text is not None:
        return text, (), reasons, False

    if not reasons:
        reasons.append("attributedBody contains no text")
    return text_column or "", (), reasons, True


# =============================================================================
# Pass 1: Build
# =============================================================================


def build_message(
    row: Mapping[str, Any],
    conversation_ids: Sequence[int] = (),
    attachment_ids: Sequence[int] = (),
) -> Message:
    """Build a Message from one message row.

    Args:
        row: Message row as a mapping of column name to value
        conversation_ids: Conversations the message belongs to
        attachment_ids: Attachments joined to the message

    Returns:
        Message with reply/reaction targets not yet resolved
    """
    message_id = row["ROWID"]
    text, ranges, reasons, fell_back = _decode_body(row)

    history = EditHistory()
    if row.get("message_summary_info"):
        try:
            history = parse_edit_history(row["message_summary_info"])
        except EditHistoryError as e:
            reasons.append(f"edit history: {e}")
        else:
            if history.lossy:
                reasons.append("edit snapshot payload could not be fully decoded")
            if fell_back and history.latest_text is not None:
                text = history.latest_text
                ranges = ()

    is_from_me = bool(row.get("is_from_me"))
    handle_id = row.get("handle_id")

    reply_to = None
    if row.get("thread_originator_guid"):
        reply_to = MessageReference(
            guid=row["thread_originator_guid"],
            part=parse_thread_part(row.get("thread_originator_part")),
        )

    reaction = None
    mapped = reaction_from_code(row.get("associated_message_type"))
    if mapped and row.get("associated_message_guid"):
        kind, active = mapped
        target_guid, part = parse_associated_guid(row["associated_message_guid"])
        reaction = ReactionLink(
            target=MessageReference(guid=target_guid, part=part),
            kind=kind,
            active=active,
            emoji=row.get("associated_message_emoji"),
        )

    announcement = message_announcement(row, history)
    variant, app_balloon = message_variant(row, history, announcement)

    if reasons:
        logger.debug(f"Message {message_id} is lossy: {'; '.join(reasons)}")

    return Message(
        id=message_id,
        guid=row.get("guid") or "",
        sender_handle_id=None if is_from_me or not handle_id else handle_id,
        is_from_me=is_from_me,
        timestamp=convert_apple_timestamp(row.get("date")),
        text=text,
        ranges=ranges,
        service=row.get("service"),
        reply_to=reply_to,
        reaction=reaction,
        edit_history=history.snapshots,
        unsent_parts=history.unsent_parts,
        conversation_ids=tuple(conversation_ids),
        attachment_ids=tuple(attachment_ids),
        lossy=bool(reasons),
        lossy_reason="; ".join(reasons) if reasons else None,
        variant=variant,
        announcement=announcement,
        app_balloon=app_balloon,
    )


# =============================================================================
# Pass 2: Link
# =============================================================================


@dataclass(frozen=True)
class LinkResult:
    messages: Tuple[Message, ...]
    unresolved_replies: Tuple[int, ...] = ()
    unresolved_reactions: Tuple[int, ...] = ()

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved_replies) + len(self.unresolved_reactions)


def _reaction_sort_key(reaction: Reaction) -> Tuple[float, int]:
    timestamp = reaction.timestamp.timestamp() if reaction.timestamp else 0.0
    return (timestamp, reaction.message_id)


def link_references(
    messages: Sequence[Message],
    attachment_ids_by_guid: Optional[Mapping[str, int]] = None,
) -> LinkResult:
    """Resolve replies, reactions and attachment placeholders.

    Must run after every message of the run has been built, since a
    reference may point at any message regardless of order.

    Args:
        messages: All messages built in pass 1
        attachment_ids_by_guid: Attachment GUID to attachment row id

    Returns:
        LinkResult with new Message objects and the ids of messages whose
        reply or reaction target could not be found
    """
    attachment_ids_by_guid = attachment_ids_by_guid or {}

    by_guid: Dict[str, Message] = {}
    for message in messages:
        if not message.guid:
            continue
        if message.guid in by_guid:
            logger.warning(
                f"Duplicate message GUID {message.guid} (rows {by_guid[message.guid].id} "
                f"and {message.id}); keeping the first"
            )
            continue
        by_guid[message.guid] = message

    reactions_by_target: Dict[int, List[Reaction]] = defaultdict(list)
    unresolved_replies: List[int] = []
    unresolved_reactions: List[int] = []
    changes: Dict[int, Dict[str, Any]] = defaultdict(dict)

    for message in messages:
        if message.reply_to is not None:
            target = by_guid.get(message.reply_to.guid)
            if target is None:
                unresolved_replies.append(message.id)
            else:
                changes[message.id]["reply_to"] = replace(
                    message.reply_to, resolved=True, message_id=target.id
                )

        if message.reaction is not None:
            link = message.reaction
            target = by_guid.get(link.target.guid)
            if target is None:
                unresolved_reactions.append(message.id)
            else:
                changes[message.id]["reaction"] = replace(
                    link,
                    target=replace(link.target, resolved=True, message_id=target.id),
                )
                reactions_by_target[target.id].append(
                    Reaction(
                        message_id=message.id,
                        reactor_handle_id=message.sender_handle_id,
                        is_from_me=message.is_from_me,
                        kind=link.kind,
                        timestamp=message.timestamp,
                        active=link.active,
                        part=link.target.part,
                        emoji=link.emoji,
                    )
                )

        if any(r.kind is AttributeKind.ATTACHMENT for r in message.ranges):
            changes[message.id]["ranges"] = tuple(
                replace(r, attachment_id=attachment_ids_by_guid[r.value])
                if r.kind is AttributeKind.ATTACHMENT and r.value in attachment_ids_by_guid
                else r
                for r in message.ranges
            )

    for target_id, reactions in reactions_by_target.items():
        changes[target_id]["reactions"] = tuple(sorted(reactions, key=_reaction_sort_key))

    linked = tuple(
        replace(message, **changes[message.id]) if message.id in changes else message
        for message in messages
    )

    if unresolved_replies or unresolved_reactions:
        logger.info(
            f"Unresolved references: {len(unresolved_replies)} replies, "
            f"{len(unresolved_reactions)} reactions"
        )

    return LinkResult(linked, tuple(unresolved_replies), tuple(unresolved_reactions))
