#!/usr/bin/env python3
"""
Diagnostics Aggregator

Collects the counts produced by the other phases into one immutable
report. Percentages are computed only when formatting for display.
"""

import logging
from dataclasses import asdict, dataclass
from collections import Counter
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from common.utils import format_bytes, percent
from extraction.builder import LinkResult
from extraction.dedupe import IdentityIndex
from extraction.integrity import IntegrityReport
from extraction.models import Conversation, Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticsReport:
    # Handles
    total_handles: int
    total_contacts: int
    duplicate_contacts: int

    # Messages
    total_messages: int
    orphaned_messages: int
    multi_conversation_messages: int
    lossy_messages: int
    unresolved_references: int
    edited_messages: int
    reaction_messages: int
    announcement_messages: int
    variant_counts: Tuple[Tuple[str, int], ...]

    # Attachments
    attachments_checked: bool
    total_attachments: int
    present_attachments: int
    missing_no_path: int
    missing_no_file: int
    declared_bytes: int
    on_disk_bytes: int

    # Conversations
    total_conversations: int
    conversations_without_participants: int
    duplicate_conversations: int
    duplicate_conversation_groups: Tuple[Tuple[int, ...], ...]
    dangling_memberships: int

    # Source
    database_size: int
    table_counts: Tuple[Tuple[str, int], ...]

    @property
    def missing_attachments(self) -> int:
        return self.missing_no_path + self.missing_no_file

    @property
    def messages_with_membership(self) -> int:
        return self.total_messages - self.orphaned_messages

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["table_counts"] = dict(self.table_counts)
        data["variant_counts"] = dict(self.variant_counts)
        data["duplicate_conversation_groups"] = [
            list(group) for group in self.duplicate_conversation_groups
        ]
        data["missing_attachments"] = self.missing_attachments
        return data


def build_report(
    identity: IdentityIndex,
    messages: Sequence[Message],
    link_result: LinkResult,
    integrity: IntegrityReport,
    conversations: Sequence[Conversation],
    duplicate_groups: Sequence[Tuple[int, ...]],
    table_counts: Mapping[str, int],
    database_size: int,
) -> DiagnosticsReport:
    """Aggregate every phase's findings into a DiagnosticsReport.

    Args:
        identity: Result of contact grouping
        messages: Linked messages
        link_result: Result of the reference-linking pass
        integrity: Result of the integrity scan
        conversations: Conversations with participants and messages
        duplicate_groups: Groups of conversation ids sharing participants
        table_counts: Row count per source table
        database_size: Size of the database file in bytes

    Returns:
        Frozen DiagnosticsReport
    """
    attachments = integrity.attachments
    variants = Counter(message.variant.value for message in messages)
    no_participants = sum(
        1
        for conversation in conversations
        if conversation.message_ids and not conversation.participant_handle_ids
    )

    report = DiagnosticsReport(
        total_handles=len(identity.handles),
        total_contacts=len(identity.contacts),
        duplicate_contacts=identity.duplicate_contact_count,
        total_messages=integrity.messages.total,
        orphaned_messages=len(integrity.messages.orphaned_ids),
        multi_conversation_messages=len(integrity.messages.multi_conversation_ids),
        lossy_messages=sum(1 for message in messages if message.lossy),
        unresolved_references=link_result.unresolved_count,
        edited_messages=sum(1 for message in messages if message.is_edited),
        reaction_messages=sum(1 for message in messages if message.is_reaction),
        announcement_messages=sum(1 for message in messages if message.is_announcement),
        variant_counts=tuple(sorted(variants.items())),
        attachments_checked=attachments.checked,
        total_attachments=attachments.total,
        present_attachments=attachments.present if attachments.checked else 0,
        missing_no_path=attachments.missing_no_path,
        missing_no_file=attachments.missing_no_file if attachments.checked else 0,
        declared_bytes=attachments.declared_bytes,
        on_disk_bytes=attachments.on_disk_bytes,
        total_conversations=len(conversations),
        conversations_without_participants=no_participants,
        duplicate_conversations=sum(len(group) - 1 for group in duplicate_groups),
        duplicate_conversation_groups=tuple(tuple(group) for group in duplicate_groups),
        dangling_memberships=integrity.dangling_memberships,
        database_size=database_size,
        table_counts=tuple(sorted(table_counts.items())),
    )
    logger.debug(f"Diagnostics: {report.to_dict()}")
    return report


def format_report(report: DiagnosticsReport) -> List[str]:
    """Render a report as display lines.

    Example:
        >>> print("\\n".join(format_report(report)))  # doctest: +SKIP
    """
    lines = ["=" * 60, "DIAGNOSTICS", "=" * 60]

    lines.append("Handle diagnostic data:")
    lines.append(f"    Total handles:                        {report.total_handles:>8}")
    lines.append(f"    Contacts:                             {report.total_contacts:>8}")
    lines.append(f"    Contacts with more than one ID:       {report.duplicate_contacts:>8}")

    total = report.total_messages
    lines.append("Message diagnostic data:")
    lines.append(f"    Total messages:                       {total:>8}")
    lines.append(
        f"    Messages not associated with a chat:  {report.orphaned_messages:>8}"
        f" ({percent(report.orphaned_messages, total):.2f}%)"
    )
    lines.append(
        f"    Messages belonging to >1 chat:        {report.multi_conversation_messages:>8}"
        f" ({percent(report.multi_conversation_messages, total):.2f}%)"
    )
    lines.append(
        f"    Lossy messages:                       {report.lossy_messages:>8}"
        f" ({percent(report.lossy_messages, total):.2f}%)"
    )
    lines.append(f"    Unresolved replies/reactions:         {report.unresolved_references:>8}")
    lines.append(f"    Edited messages:                      {report.edited_messages:>8}")
    lines.append(f"    Reactions:                            {report.reaction_messages:>8}")
    lines.append(f"    Announcements:                        {report.announcement_messages:>8}")
    for variant, count in report.variant_counts:
        lines.append(f"    Kind {variant + ':':<33}{count:>8}")

    attachments = report.total_attachments
    lines.append("Attachment diagnostic data:")
    lines.append(f"    Total attachments:                    {attachments:>8}")
    lines.append(f"    Data referenced in table:             {format_bytes(report.declared_bytes):>12}")
    if report.attachments_checked:
        lines.append(f"    Data present on disk:                 {format_bytes(report.on_disk_bytes):>12}")
        lines.append(
            f"    Missing files:                        {report.missing_attachments:>8}"
            f" ({percent(report.missing_attachments, attachments):.2f}%)"
        )
        lines.append(f"        No path provided:                 {report.missing_no_path:>8}")
        lines.append(f"        No file located:                  {report.missing_no_file:>8}")
    else:
        lines.append("    Files on disk:                        not checked")
        lines.append(f"    No path provided:                     {report.missing_no_path:>8}")

    lines.append("Thread diagnostic data:")
    lines.append(f"    Total chats:                          {report.total_conversations:>8}")
    lines.append(f"    Chats with no handles:                {report.conversations_without_participants:>8}")
    lines.append(f"    Membership rows pointing nowhere:     {report.dangling_memberships:>8}")

    lines.append("Global diagnostic data:")
    lines.append(f"    Total database size:                  {format_bytes(report.database_size):>12}")
    lines.append(f"    Duplicated contacts:                  {report.duplicate_contacts:>8}")
    lines.append(f"    Duplicated chats:                     {report.duplicate_conversations:>8}")
    for table, count in report.table_counts:
        lines.append(f"    Rows in {table + ':':<30}{count:>8}")

    lines.append("=" * 60)
    return lines
