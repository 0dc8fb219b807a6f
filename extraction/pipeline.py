#!/usr/bin/env python3
"""
Extraction Pipeline

Wires the phases together:

1. Read: every table is read through the single source connection
2. Decode: message rows are built into Messages in batches on a bounded
   thread pool; batches are independent and touch no shared state
3. Barrier: all batches complete before anything references across messages
4. Link: replies, reactions and attachment placeholders are resolved
5. Deduplicate: handles are grouped into contacts, duplicate conversations found
6. Scan: orphaned/multi-conversation messages and attachment files are checked
7. Aggregate: the diagnostics report is built

Cancelling (setting the cancel event) abandons the run with
ExtractionCancelled; no partial result or report is returned.
"""

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from common.config import ExtractionConfig
from common.errors import ExtractionCancelled
from common.failure_tracker import FailureTracker
from common.progress import PHASE_DECODE, PHASE_READ, chunked, futures_progress, progress_bar
from extraction.builder import LinkResult, build_message, link_references
from extraction.dedupe import IdentityIndex, build_contacts, find_duplicate_conversations
from extraction.diagnostics import DiagnosticsReport, build_report
from extraction.filesystem import AttachmentFilesystem
from extraction.integrity import (
    AttachmentIntegrity,
    IntegrityReport,
    Memberships,
    attachment_from_row,
    check_attachments,
    resolve_memberships,
    scan_messages,
)
from extraction.models import Attachment, Contact, Conversation, Handle, Message
from extraction.source import SQLiteSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionResult:
    """Everything one run produced.

    Messages are ordered by timestamp.
    """

    messages: Tuple[Message, ...]
    handles: Tuple[Handle, ...]
    contacts: Tuple[Contact, ...]
    conversations: Tuple[Conversation, ...]
    attachments: Tuple[Attachment, ...]
    integrity: IntegrityReport
    report: DiagnosticsReport

    def iter_messages(self) -> Iterator[Message]:
        """Iterate messages in timestamp order; may be called repeatedly."""
        return iter(self.messages)

    def message(self, message_id: int) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


def _build_batch(
    rows: Sequence[Mapping[str, Any]],
    memberships: Memberships,
    attachments_by_message: Mapping[int, Tuple[int, ...]],
    cancel_event: threading.Event,
) -> List[Message]:
    messages = []
    for row in rows:
        if cancel_event.is_set():
            break
        message_id = row["ROWID"]
        messages.append(
            build_message(
                row,
                conversation_ids=memberships.for_message(message_id),
                attachment_ids=attachments_by_message.get(message_id, ()),
            )
        )
    return messages


class ExtractionPipeline:
    """Runs a full extraction over one source.

    Args:
        source: Open (or openable) SQLiteSource
        filesystem: Attachment filesystem check
        config: Run settings
        tracker: Collects soft failures; created if not given

    Example:
        >>> with SQLiteSource("chat.db") as source:  # doctest: +SKIP
        ...     result = ExtractionPipeline(source, AttachmentFilesystem()).run()
        ...     print(result.report.total_messages)
    """

    def __init__(
        self,
        source: SQLiteSource,
        filesystem: Optional[AttachmentFilesystem] = None,
        config: Optional[ExtractionConfig] = None,
        tracker: Optional[FailureTracker] = None,
    ):
        self.source = source
        self.config = config or ExtractionConfig()
        self.filesystem = filesystem or AttachmentFilesystem(self.config.attachment_root)
        self.tracker = tracker or FailureTracker(str(source.db_path))

    def _check_cancelled(self, cancel_event: threading.Event, phase: str) -> None:
        if cancel_event.is_set():
            logger.info(f"Extraction cancelled during {phase}")
            raise ExtractionCancelled(f"cancelled during {phase}")

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _read_all(self) -> Dict[str, List[Dict[str, Any]]]:
        tables = {
            "handles": self.source.iter_handles,
            "conversations": self.source.iter_conversations,
            "participants": self.source.iter_participants,
            "memberships": self.source.iter_memberships,
            "attachments": self.source.iter_attachments,
            "message_attachments": self.source.iter_message_attachments,
            "messages": self.source.iter_messages,
        }
        rows = {}
        for name, reader in progress_bar(
            tables.items(),
            PHASE_READ,
            "Reading tables",
            total=len(tables),
            unit="table",
            disable=not self.config.show_progress,
        ):
            rows[name] = list(reader())
            logger.debug(f"Read {len(rows[name])} {name} rows")
        return rows

    def _decode_messages(
        self,
        rows: List[Dict[str, Any]],
        memberships: Memberships,
        attachments_by_message: Mapping[int, Tuple[int, ...]],
        cancel_event: threading.Event,
    ) -> List[Message]:
        batches = chunked(rows, self.config.batch_size)
        messages: List[Message] = []

        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            futures = {
                executor.submit(
                    _build_batch, batch, memberships, attachments_by_message, cancel_event
                ): index
                for index, batch in enumerate(batches)
            }
            for future in futures_progress(
                futures,
                PHASE_DECODE,
                "Decoding messages",
                unit="batch",
                disable=not self.config.show_progress,
            ):
                if cancel_event.is_set():
                    executor.shutdown(wait=True, cancel_futures=True)
                    self._check_cancelled(cancel_event, "decoding")
                messages.extend(future.result())

        # Barrier: every batch has finished before linking starts
        self._check_cancelled(cancel_event, "decoding")
        return messages

    def _build_conversations(
        self,
        rows: List[Dict[str, Any]],
        participants: Mapping[int, List[int]],
        messages: Sequence[Message],
    ) -> List[Conversation]:
        conversations = {
            row["ROWID"]: Conversation(
                id=row["ROWID"],
                guid=row.get("guid"),
                identifier=row.get("chat_identifier"),
                display_name=row.get("display_name"),
                service=row.get("service_name"),
                participant_handle_ids=tuple(sorted(set(participants.get(row["ROWID"], ())))),
            )
            for row in rows
        }
        for message in messages:
            for conversation_id in message.conversation_ids:
                conversations[conversation_id].add_message(message.id)
        return [conversations[key] for key in sorted(conversations)]

    def _record_failures(
        self,
        messages: Sequence[Message],
        link_result: LinkResult,
        integrity: IntegrityReport,
    ) -> None:
        by_id = {message.id: message for message in messages}
        for message in messages:
            if message.lossy:
                self.tracker.add_lossy_message(message.id, message.guid, message.lossy_reason)
        for message_id in integrity.messages.orphaned_ids:
            self.tracker.add_orphaned_message(message_id, by_id[message_id].guid)
        for message_id in link_result.unresolved_replies:
            self.tracker.add_unresolved_reference(
                message_id, "reply", by_id[message_id].reply_to.guid
            )
        for message_id in link_result.unresolved_reactions:
            self.tracker.add_unresolved_reference(
                message_id, "reaction", by_id[message_id].reaction.target.guid
            )
        if integrity.attachments.checked:
            for attachment in integrity.attachments.attachments:
                if not attachment.exists:
                    self.tracker.add_missing_attachment(
                        attachment.id,
                        attachment.status.value,
                        {
                            "declared_path": attachment.declared_path,
                            "resolved_path": attachment.resolved_path,
                        },
                    )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, cancel_event: Optional[threading.Event] = None) -> ExtractionResult:
        """Run every phase and return the result.

        Args:
            cancel_event: Set from another thread to cancel the run

        Returns:
            ExtractionResult with the diagnostics report

        Raises:
            SourceReadFailure: If the database cannot be read
            ExtractionCancelled: If cancel_event is set before the report is built
        """
        cancel_event = cancel_event or threading.Event()
        self._check_cancelled(cancel_event, "startup")

        logger.info(f"Starting extraction of {self.source.db_path}")
        rows = self._read_all()
        table_counts = self.source.table_row_counts()
        database_size = self.source.database_size()
        self._check_cancelled(cancel_event, "reading")

        participants: Dict[int, List[int]] = defaultdict(list)
        for row in rows["participants"]:
            participants[row["chat_id"]].append(row["handle_id"])

        attachments_by_message: Dict[int, List[int]] = defaultdict(list)
        for row in rows["message_attachments"]:
            attachments_by_message[row["message_id"]].append(row["attachment_id"])

        memberships = resolve_memberships(
            rows["memberships"],
            (row["ROWID"] for row in rows["messages"]),
            (row["ROWID"] for row in rows["conversations"]),
        )

        logger.info(
            f"Decoding {len(rows['messages'])} messages with {self.config.workers} workers"
        )
        built = self._decode_messages(
            rows["messages"],
            memberships,
            {key: tuple(value) for key, value in attachments_by_message.items()},
            cancel_event,
        )

        attachments = [attachment_from_row(row) for row in rows["attachments"]]
        link_result = link_references(
            built,
            {attachment.guid: attachment.id for attachment in attachments if attachment.guid},
        )
        messages = sorted(link_result.messages, key=Message.sort_key)
        self._check_cancelled(cancel_event, "linking")

        identity: IdentityIndex = build_contacts(
            [
                Handle(
                    id=row["ROWID"],
                    identifier=row.get("id") or "",
                    group_hint=row.get("person_centric_id"),
                    service=row.get("service"),
                )
                for row in rows["handles"]
            ]
        )
        conversations = self._build_conversations(rows["conversations"], participants, messages)
        duplicate_groups = find_duplicate_conversations(
            {conversation.id: conversation.participant_handle_ids for conversation in conversations},
            identity,
        )
        self._check_cancelled(cancel_event, "deduplication")

        if self.config.check_attachments:
            attachments = check_attachments(
                attachments,
                self.filesystem,
                workers=self.config.workers,
                show_progress=self.config.show_progress,
                cancel_event=cancel_event,
            )
        integrity = IntegrityReport(
            messages=scan_messages(messages),
            attachments=AttachmentIntegrity(tuple(attachments), self.config.check_attachments),
            dangling_memberships=memberships.dangling,
        )
        self._check_cancelled(cancel_event, "integrity scan")

        report = build_report(
            identity,
            messages,
            link_result,
            integrity,
            conversations,
            duplicate_groups,
            table_counts,
            database_size,
        )
        self._record_failures(messages, link_result, integrity)

        logger.info(
            f"Extraction complete: {report.total_messages} messages, "
            f"{report.total_contacts} contacts, {report.total_conversations} chats, "
            f"{report.lossy_messages} lossy"
        )

        return ExtractionResult(
            messages=tuple(messages),
            handles=tuple(identity.handles[key] for key in sorted(identity.handles)),
            contacts=tuple(identity.contacts[key] for key in sorted(identity.contacts)),
            conversations=tuple(conversations),
            attachments=tuple(attachments),
            integrity=integrity,
            report=report,
        )
