#!/usr/bin/env python3
"""
Integrity Scanner

Finds structural problems in the source without changing anything:
- Messages that belong to no conversation (orphaned)
- Messages that belong to more than one conversation
- Membership rows pointing at messages or conversations that do not exist
- Attachments with no recorded path, or whose file is not on disk

Membership in several conversations is legitimate (the same message can
be filed under a merged chat); it is counted, not rejected.
"""

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from common.errors import ExtractionCancelled
from common.progress import PHASE_SCAN, futures_progress
from extraction.filesystem import AttachmentFilesystem
from extraction.models import Attachment, AttachmentStatus, Message

logger = logging.getLogger(__name__)


# =============================================================================
# Memberships
# =============================================================================


@dataclass(frozen=True)
class Memberships:
    """Validated message-to-conversation membership.

    Attributes:
        conversations_by_message: Message id to its conversation ids, sorted
        dangling: Membership rows naming an unknown message or conversation
    """

    conversations_by_message: Mapping[int, Tuple[int, ...]]
    dangling: int = 0

    def for_message(self, message_id: int) -> Tuple[int, ...]:
        return self.conversations_by_message.get(message_id, ())


def resolve_memberships(
    rows: Iterable[Mapping[str, Any]],
    message_ids: Iterable[int],
    conversation_ids: Iterable[int],
) -> Memberships:
    """Index chat_message_join rows, dropping rows that point nowhere.

    Args:
        rows: Membership rows with chat_id and message_id
        message_ids: Ids of every message in the source
        conversation_ids: Ids of every conversation in the source

    Returns:
        Memberships keyed by message id
    """
    known_messages = set(message_ids)
    known_conversations = set(conversation_ids)
    by_message: Dict[int, set] = defaultdict(set)
    dangling = 0

    for row in rows:
        message_id, chat_id = row["message_id"], row["chat_id"]
        if message_id not in known_messages or chat_id not in known_conversations:
            dangling += 1
            logger.debug(f"Dangling membership: message {message_id} in chat {chat_id}")
            continue
        by_message[message_id].add(chat_id)

    if dangling:
        logger.warning(f"Ignored {dangling} membership rows referencing missing rows")

    return Memberships(
        {message_id: tuple(sorted(chats)) for message_id, chats in by_message.items()},
        dangling,
    )


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class MessageIntegrity:
    total: int
    orphaned_ids: Tuple[int, ...] = ()
    multi_conversation_ids: Tuple[int, ...] = ()

    @property
    def with_membership(self) -> int:
        return self.total - len(self.orphaned_ids)


def scan_messages(messages: Sequence[Message]) -> MessageIntegrity:
    """Count orphaned and multi-conversation messages.

    Every message is counted exactly once as either orphaned or having at
    least one conversation.
    """
    orphaned = []
    multi = []
    for message in messages:
        if message.is_orphaned:
            orphaned.append(message.id)
        elif len(message.conversation_ids) > 1:
            multi.append(message.id)

    if orphaned:
        logger.warning(f"{len(orphaned)} messages are not in any conversation")
    if multi:
        logger.info(f"{len(multi)} messages belong to more than one conversation")

    return MessageIntegrity(len(messages), tuple(sorted(orphaned)), tuple(sorted(multi)))


# =============================================================================
# Attachments
# =============================================================================


def attachment_from_row(row: Mapping[str, Any]) -> Attachment:
    """Build an unchecked Attachment from an attachment row."""
    return Attachment(
        id=row["ROWID"],
        guid=row.get("guid"),
        declared_path=row.get("filename") or None,
        declared_size=row.get("total_bytes") or 0,
        mime_type=row.get("mime_type"),
        transfer_name=row.get("transfer_name"),
    )


def classify_attachment(attachment: Attachment) -> AttachmentStatus:
    """Classify a checked attachment as present, missing-no-path or missing-no-file."""
    return attachment.status


def inspect_attachment(attachment: Attachment, filesystem: AttachmentFilesystem) -> Attachment:
    """Fill in resolved path, existence and on-disk size."""
    resolved = filesystem.resolve(attachment.declared_path)
    if resolved is None:
        return attachment

    size = filesystem.size_of(resolved)
    return replace(
        attachment,
        resolved_path=str(resolved),
        exists=size is not None,
        on_disk_size=size or 0,
    )


def check_attachments(
    attachments: Sequence[Attachment],
    filesystem: AttachmentFilesystem,
    workers: int = 8,
    show_progress: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> List[Attachment]:
    """Check every attachment in parallel.

    Uses ThreadPoolExecutor since each check is a filesystem stat.

    Args:
        attachments: Unchecked attachments
        filesystem: Filesystem collaborator
        workers: Number of parallel workers
        show_progress: Display a progress bar
        cancel_event: Set to abandon the scan

    Returns:
        Checked attachments ordered by id

    Raises:
        ExtractionCancelled: If cancel_event is set during the scan
    """
    results: List[Attachment] = []
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(inspect_attachment, attachment, filesystem): attachment.id
            for attachment in attachments
        }
        for future in futures_progress(
            futures, PHASE_SCAN, "Checking attachments", unit="file", disable=not show_progress
        ):
            if cancel_event is not None and cancel_event.is_set():
                executor.shutdown(wait=True, cancel_futures=True)
                raise ExtractionCancelled("cancelled during attachment scan")
            results.append(future.result())

    results.sort(key=lambda attachment: attachment.id)
    return results


@dataclass(frozen=True)
class AttachmentIntegrity:
    attachments: Tuple[Attachment, ...] = ()
    checked: bool = True

    def count(self, status: AttachmentStatus) -> int:
        return sum(1 for attachment in self.attachments if attachment.status is status)

    @property
    def total(self) -> int:
        return len(self.attachments)

    @property
    def present(self) -> int:
        return self.count(AttachmentStatus.PRESENT)

    @property
    def missing_no_path(self) -> int:
        return self.count(AttachmentStatus.MISSING_NO_PATH)

    @property
    def missing_no_file(self) -> int:
        return self.count(AttachmentStatus.MISSING_NO_FILE)

    @property
    def missing(self) -> int:
        return self.missing_no_path + self.missing_no_file

    @property
    def declared_bytes(self) -> int:
        return sum(attachment.declared_size for attachment in self.attachments)

    @property
    def on_disk_bytes(self) -> int:
        return sum(attachment.on_disk_size for attachment in self.attachments)


@dataclass(frozen=True)
class IntegrityReport:
    messages: MessageIntegrity
    attachments: AttachmentIntegrity
    dangling_memberships: int = 0
