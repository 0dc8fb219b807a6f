#!/usr/bin/env python3
"""
Entities produced by an extraction run.

Messages, handles, attachments and the pieces hanging off a message are
frozen once built. Contact.handle_ids and Conversation.message_ids are the
only collections that grow, and only while the pipeline assembles them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from common.utils import utf16_length, utf16_slice


# =============================================================================
# Attribute Ranges
# =============================================================================


class AttributeKind(Enum):
    MENTION = "mention"
    LINK = "link"
    ATTACHMENT = "attachment"
    EFFECT = "effect"
    STYLE = "style"
    OTP = "otp"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AttributeRange:
    """A half-open [start, end) span of message text, in UTF-16 code units.

    `value` depends on the kind: the mentioned handle, the link URL, the
    attachment GUID, the effect name, the comma-joined style names, or the
    unrecognized attribute keys.
    """

    start: int
    end: int
    kind: AttributeKind
    value: Optional[str] = None
    attachment_id: Optional[int] = None

    @property
    def length(self) -> int:
        return self.end - self.start


# Text effect animation ids recorded by the sender's client
TEXT_EFFECTS = {
    4: "ripple",
    5: "big",
    6: "bloom",
    8: "nod",
    9: "shake",
    10: "jitter",
    11: "small",
    12: "explode",
}


def text_effect_name(effect_id: int) -> str:
    """Name of a text effect animation id.

    Example:
        >>> text_effect_name(12)
        'explode'
        >>> text_effect_name(99)
        'unknown(99)'
    """
    return TEXT_EFFECTS.get(effect_id, f"unknown({effect_id})")


# =============================================================================
# Replies, Reactions, Edits
# =============================================================================


class ReactionKind(Enum):
    LOVED = "loved"
    LIKED = "liked"
    DISLIKED = "disliked"
    LAUGHED = "laughed"
    EMPHASIZED = "emphasized"
    QUESTIONED = "questioned"
    EMOJI = "emoji"
    STICKER = "sticker"


# associated_message_type offsets from 2000 (added) and 3000 (removed)
REACTION_CODES = {
    0: ReactionKind.LOVED,
    1: ReactionKind.LIKED,
    2: ReactionKind.DISLIKED,
    3: ReactionKind.LAUGHED,
    4: ReactionKind.EMPHASIZED,
    5: ReactionKind.QUESTIONED,
    6: ReactionKind.EMOJI,
    7: ReactionKind.STICKER,
}


def reaction_from_code(code: Optional[int]) -> Optional[Tuple[ReactionKind, bool]]:
    """Map an associated_message_type to (kind, active).

    Returns None for codes that are not reactions (0 for plain messages,
    1000 for sticker placements, 3 for app payloads).

    Example:
        >>> reaction_from_code(2001)
        (<ReactionKind.LIKED: 'liked'>, True)
        >>> reaction_from_code(3000)
        (<ReactionKind.LOVED: 'loved'>, False)
    """
    if code is None:
        return None
    if 2000 <= code <= 2007:
        return REACTION_CODES[code - 2000], True
    if 3000 <= code <= 3007:
        return REACTION_CODES[code - 3000], False
    return None


@dataclass(frozen=True)
class MessageReference:
    """A pointer from one message to another by GUID.

    `resolved` stays False when the target is not present in the source;
    the referring message is kept either way.
    """

    guid: str
    part: Optional[int] = None
    resolved: bool = False
    message_id: Optional[int] = None


@dataclass(frozen=True)
class ReactionLink:
    """Carried by a reaction message: what it reacts to and how."""

    target: MessageReference
    kind: ReactionKind
    active: bool
    emoji: Optional[str] = None


@dataclass(frozen=True)
class Reaction:
    """A reaction attached to its target message."""

    message_id: int
    reactor_handle_id: Optional[int]
    is_from_me: bool
    kind: ReactionKind
    timestamp: Optional[datetime]
    active: bool
    part: Optional[int] = None
    emoji: Optional[str] = None


@dataclass(frozen=True)
class EditSnapshot:
    """One recorded version of a message part."""

    part: int
    text: str
    timestamp: Optional[datetime]
    guid: Optional[str] = None


# =============================================================================
# Messages
# =============================================================================


class MessageVariant(Enum):
    NORMAL = "normal"
    EDITED = "edited"
    REACTION = "reaction"
    STICKER = "sticker"
    APP = "app"
    SHAREPLAY = "shareplay"
    ANNOUNCEMENT = "announcement"
    UNKNOWN = "unknown"


class AnnouncementKind(Enum):
    NAME_CHANGE = "name-change"
    PHOTO_CHANGE = "photo-change"
    FULLY_UNSENT = "fully-unsent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Announcement:
    """A conversation event shown in place of a message body.

    `value` is the new conversation name for NAME_CHANGE and the raw
    group_action_type for UNKNOWN.
    """

    kind: AnnouncementKind
    value: Optional[str] = None


# balloon_bundle_id suffix -> app balloon name; anything else is a third-party app
APP_BALLOONS = {
    "com.apple.messages.URLBalloonProvider": "url",
    "com.apple.Handwriting.HandwritingProvider": "handwriting",
    "com.apple.DigitalTouchBalloonProvider": "digital-touch",
    "com.apple.PassbookUIService.PeerPaymentMessagesExtension": "apple-pay",
    "com.apple.ActivityMessagesApp.MessagesExtension": "fitness",
    "com.apple.mobileslideshow.PhotosMessagesApp": "slideshow",
    "com.apple.SafetyMonitorApp.SafetyMonitorMessages": "check-in",
    "com.apple.findmy.FindMyMessagesApp": "find-my",
}


def app_balloon_name(bundle_id: str) -> str:
    """Name of the app that produced a balloon message.

    Extension balloons are stored as "<plugin>:<team id>:<bundle id>"; only
    the last component identifies the app.

    Example:
        >>> app_balloon_name("com.apple.messages.URLBalloonProvider")
        'url'
        >>> app_balloon_name("com.apple.messages.MSMessageExtensionBalloonPlugin:0000000000:com.example.game")
        'com.example.game'
    """
    app = bundle_id.rsplit(":", 1)[-1]
    return APP_BALLOONS.get(app, app)


@dataclass(frozen=True)
class Message:
    id: int
    guid: str
    sender_handle_id: Optional[int]
    is_from_me: bool
    timestamp: Optional[datetime]
    text: str
    ranges: Tuple[AttributeRange, ...] = ()
    service: Optional[str] = None
    reply_to: Optional[MessageReference] = None
    reaction: Optional[ReactionLink] = None
    reactions: Tuple[Reaction, ...] = ()
    edit_history: Tuple[EditSnapshot, ...] = ()
    unsent_parts: Tuple[int, ...] = ()
    conversation_ids: Tuple[int, ...] = ()
    attachment_ids: Tuple[int, ...] = ()
    lossy: bool = False
    lossy_reason: Optional[str] = None
    variant: MessageVariant = MessageVariant.NORMAL
    announcement: Optional[Announcement] = None
    app_balloon: Optional[str] = None

    @property
    def is_orphaned(self) -> bool:
        return not self.conversation_ids

    @property
    def is_reaction(self) -> bool:
        return self.reaction is not None

    @property
    def is_announcement(self) -> bool:
        return self.announcement is not None

    @property
    def is_edited(self) -> bool:
        """True when some part has more than one recorded version."""
        parts = [snapshot.part for snapshot in self.edit_history]
        return len(parts) != len(set(parts))

    @property
    def text_length(self) -> int:
        return utf16_length(self.text)

    def text_for(self, attribute_range: AttributeRange) -> str:
        """Text covered by a range.

        Example:
            >>> msg.text_for(msg.ranges[0])  # doctest: +SKIP
            'https://example.com'
        """
        return utf16_slice(self.text, attribute_range.start, attribute_range.end)

    def ranges_of(self, kind: AttributeKind) -> Tuple[AttributeRange, ...]:
        return tuple(r for r in self.ranges if r.kind is kind)

    def sort_key(self) -> Tuple[float, int]:
        """Chronological order, undated messages first, ties by row id."""
        return (self.timestamp.timestamp() if self.timestamp else float("-inf"), self.id)


# =============================================================================
# Identities
# =============================================================================


@dataclass(frozen=True)
class Handle:
    """A raw sender/recipient address as stored in the source."""

    id: int
    identifier: str
    group_hint: Optional[str] = None
    service: Optional[str] = None
    contact_id: Optional[int] = None


@dataclass
class Contact:
    """A logical person: every handle believed to belong to them."""

    id: int
    handle_ids: List[int] = field(default_factory=list)
    identifiers: List[str] = field(default_factory=list)

    def add_handle(self, handle: Handle) -> None:
        if handle.id not in self.handle_ids:
            self.handle_ids.append(handle.id)
        if handle.identifier and handle.identifier not in self.identifiers:
            self.identifiers.append(handle.identifier)

    @property
    def is_duplicated(self) -> bool:
        return len(self.handle_ids) > 1


@dataclass
class Conversation:
    id: int
    guid: Optional[str] = None
    identifier: Optional[str] = None
    display_name: Optional[str] = None
    service: Optional[str] = None
    participant_handle_ids: Tuple[int, ...] = ()
    message_ids: List[int] = field(default_factory=list)

    def add_message(self, message_id: int) -> None:
        self.message_ids.append(message_id)


# =============================================================================
# Attachments
# =============================================================================


class AttachmentStatus(Enum):
    PRESENT = "present"
    MISSING_NO_PATH = "missing-no-path"
    MISSING_NO_FILE = "missing-no-file"


@dataclass(frozen=True)
class Attachment:
    """An attachment row plus what the filesystem check found.

    `exists` and `on_disk_size` are filled in by the integrity scan; they
    are never read from the source.
    """

    id: int
    guid: Optional[str]
    declared_path: Optional[str]
    declared_size: int = 0
    mime_type: Optional[str] = None
    transfer_name: Optional[str] = None
    resolved_path: Optional[str] = None
    exists: bool = False
    on_disk_size: int = 0

    @property
    def status(self) -> AttachmentStatus:
        if not self.declared_path:
            return AttachmentStatus.MISSING_NO_PATH
        if not self.exists:
            return AttachmentStatus.MISSING_NO_FILE
        return AttachmentStatus.PRESENT
