"""
Processing tests for the integrity scanner.

Tests cover:
- Membership rows pointing at missing messages or chats
- Orphaned and multi-conversation message counts
- Attachment classification and filesystem probing
- Cancelling an attachment scan
"""

import threading
from pathlib import Path

import pytest

from common.errors import ExtractionCancelled
from extraction.filesystem import AttachmentFilesystem
from extraction.integrity import (
    AttachmentIntegrity,
    attachment_from_row,
    check_attachments,
    classify_attachment,
    inspect_attachment,
    resolve_memberships,
    scan_messages,
)
from extraction.models import Attachment, AttachmentStatus, Message


def message(message_id, conversation_ids=()):
    return Message(
        id=message_id,
        guid=f"GUID-{message_id}",
        sender_handle_id=1,
        is_from_me=False,
        timestamp=None,
        text="",
        conversation_ids=tuple(conversation_ids),
    )


class TestResolveMemberships:
    """Tests for resolve_memberships()."""

    def test_groups_by_message(self):
        """Should collect every conversation of a message, sorted."""
        rows = [
            {"chat_id": 2, "message_id": 10},
            {"chat_id": 1, "message_id": 10},
            {"chat_id": 1, "message_id": 11},
        ]
        memberships = resolve_memberships(rows, [10, 11, 12], [1, 2])

        assert memberships.for_message(10) == (1, 2)
        assert memberships.for_message(11) == (1,)
        assert memberships.for_message(12) == ()
        assert memberships.dangling == 0

    def test_dangling_rows(self):
        """Should drop and count rows naming a missing message or chat."""
        rows = [
            {"chat_id": 1, "message_id": 10},
            {"chat_id": 99, "message_id": 10},
            {"chat_id": 1, "message_id": 404},
        ]
        memberships = resolve_memberships(rows, [10], [1])

        assert memberships.for_message(10) == (1,)
        assert memberships.dangling == 2

    def test_repeated_row(self):
        """Should count a repeated membership row once."""
        rows = [{"chat_id": 1, "message_id": 10}, {"chat_id": 1, "message_id": 10}]
        assert resolve_memberships(rows, [10], [1]).for_message(10) == (1,)


class TestScanMessages:
    """Tests for scan_messages()."""

    def test_counts(self):
        """Should count orphaned and multi-conversation messages."""
        result = scan_messages(
            [message(1, [1]), message(2), message(3, [1, 2]), message(4), message(5, [3])]
        )

        assert result.total == 5
        assert result.orphaned_ids == (2, 4)
        assert result.multi_conversation_ids == (3,)
        assert result.with_membership == 3

    def test_partition(self):
        """Should count each message once as orphaned or with a conversation."""
        messages = [message(i, [1, 2][: i % 3]) for i in range(1, 31)]
        result = scan_messages(messages)

        with_chat = sum(1 for m in messages if m.conversation_ids)
        assert result.with_membership == with_chat
        assert len(result.orphaned_ids) + result.with_membership == result.total

    def test_empty(self):
        """Should handle no messages."""
        result = scan_messages([])
        assert result.total == 0
        assert result.with_membership == 0


class TestAttachmentFilesystem:
    """Tests for AttachmentFilesystem.resolve()."""

    @pytest.mark.parametrize(
        "declared,expected",
        [
            ("~/Library/Messages/Attachments/00/00/a.jpg", "Attachments/00/00/a.jpg"),
            ("~/Library/SMS/Attachments/0a/10/b.heic", "SMS/Attachments/0a/10/b.heic"),
            ("~/Documents/c.pdf", "Documents/c.pdf"),
        ],
    )
    def test_resolve_under_root(self, tmp_path, declared, expected):
        """Should map device paths under the attachment root."""
        filesystem = AttachmentFilesystem(tmp_path)
        assert filesystem.resolve(declared) == tmp_path / expected

    def test_absolute_path(self, tmp_path):
        """Should keep absolute paths unchanged."""
        filesystem = AttachmentFilesystem(tmp_path)
        assert filesystem.resolve("/var/tmp/x.png") == Path("/var/tmp/x.png")

    def test_no_root(self):
        """Should expand against the home directory without a root."""
        filesystem = AttachmentFilesystem()
        resolved = filesystem.resolve("~/Library/Messages/Attachments/a.jpg")
        assert resolved == Path.home() / "Library/Messages/Attachments/a.jpg"

    @pytest.mark.parametrize("declared", [None, ""])
    def test_no_path(self, tmp_path, declared):
        """Should return None when nothing is declared."""
        assert AttachmentFilesystem(tmp_path).resolve(declared) is None

    def test_size_of(self, tmp_path):
        """Should stat regular files only."""
        path = tmp_path / "f.bin"
        path.write_bytes(b"12345")
        filesystem = AttachmentFilesystem(tmp_path)

        assert filesystem.size_of(path) == 5
        assert filesystem.size_of(tmp_path) is None
        assert filesystem.size_of(tmp_path / "missing") is None


class TestClassification:
    """Tests for attachment probing and classification."""

    @pytest.fixture
    def export(self, tmp_path):
        target = tmp_path / "Attachments" / "00" / "00" / "GUID-A"
        target.mkdir(parents=True)
        (target / "photo.jpg").write_bytes(b"\xff\xd8\xff\xe0" * 4)
        return tmp_path

    def rows(self):
        return [
            {"ROWID": 1, "guid": "A", "filename": "~/Library/Messages/Attachments/00/00/GUID-A/photo.jpg",
             "total_bytes": 16, "mime_type": "image/jpeg", "transfer_name": "photo.jpg"},
            {"ROWID": 2, "guid": "B", "filename": "~/Library/Messages/Attachments/00/00/GUID-B/gone.mov",
             "total_bytes": 1000},
            {"ROWID": 3, "guid": "C", "filename": None, "total_bytes": None},
            {"ROWID": 4, "guid": "D", "filename": "", "total_bytes": 5},
        ]

    def test_attachment_from_row(self):
        """Should read declared fields and leave check results empty."""
        attachment = attachment_from_row(self.rows()[0])

        assert attachment.id == 1
        assert attachment.declared_size == 16
        assert attachment.mime_type == "image/jpeg"
        assert attachment.exists is False
        assert attachment.resolved_path is None

    def test_missing_columns(self):
        """Should default absent size and path."""
        attachment = attachment_from_row(self.rows()[2])
        assert attachment.declared_path is None
        assert attachment.declared_size == 0

    def test_each_status(self, export):
        """Should classify present, missing-no-file and missing-no-path."""
        filesystem = AttachmentFilesystem(export)
        checked = [inspect_attachment(attachment_from_row(row), filesystem) for row in self.rows()]

        assert [classify_attachment(a) for a in checked] == [
            AttachmentStatus.PRESENT,
            AttachmentStatus.MISSING_NO_FILE,
            AttachmentStatus.MISSING_NO_PATH,
            AttachmentStatus.MISSING_NO_PATH,
        ]
        assert checked[0].on_disk_size == 16
        assert checked[1].resolved_path is not None
        assert checked[1].on_disk_size == 0

    def test_exhaustive_and_exclusive(self, export):
        """Should put every attachment in exactly one category."""
        checked = check_attachments(
            [attachment_from_row(row) for row in self.rows()],
            AttachmentFilesystem(export),
            workers=2,
        )
        integrity = AttachmentIntegrity(tuple(checked))

        assert integrity.present + integrity.missing_no_path + integrity.missing_no_file == 4
        assert integrity.missing == 3
        assert integrity.declared_bytes == 1021
        assert integrity.on_disk_bytes == 16

    def test_results_ordered_by_id(self, export):
        """Should return checked attachments in id order."""
        rows = list(reversed(self.rows()))
        checked = check_attachments(
            [attachment_from_row(row) for row in rows], AttachmentFilesystem(export), workers=4
        )
        assert [a.id for a in checked] == [1, 2, 3, 4]

    def test_cancelled(self, export):
        """Should raise ExtractionCancelled when cancelled."""
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ExtractionCancelled):
            check_attachments(
                [attachment_from_row(row) for row in self.rows()],
                AttachmentFilesystem(export),
                workers=2,
                cancel_event=cancel,
            )

    def test_unchecked_is_missing(self):
        """Should not report an unchecked attachment as present."""
        attachment = Attachment(id=1, guid=None, declared_path="/somewhere")
        assert classify_attachment(attachment) is AttachmentStatus.MISSING_NO_FILE
