#!/usr/bin/env python3
"""
Failure Tracker Module

Tracks soft failures found during an extraction run:
- Lossy messages (payloads that could not be fully decoded)
- Orphaned messages (messages in no conversation)
- Missing attachments (no recorded path, or no file on disk)
- Unresolved references (replies/reactions whose target is absent)

None of these stop the run. They are collected here and written out as a
JSON report next to the diagnostics.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class FailureTracker:
    """
    Tracks soft failures during an extraction run.

    Entries are plain dicts so the report serializes directly to JSON.
    """

    def __init__(self, source_path: str):
        """
        Initialize failure tracker.

        Args:
            source_path: Path to the database being extracted
        """
        self.source_path = source_path
        self.timestamp = datetime.now().isoformat()

        self.lossy_messages: List[Dict[str, Any]] = []
        self.orphaned_messages: List[Dict[str, Any]] = []
        self.missing_attachments: List[Dict[str, Any]] = []
        self.unresolved_references: List[Dict[str, Any]] = []

    def add_lossy_message(self, message_id: int, guid: str, reason: str) -> None:
        """
        Track a message whose payload was only partially recovered.

        Args:
            message_id: Row id of the message
            guid: Message GUID
            reason: Every problem found, including the decoder error text
        """
        self.lossy_messages.append({"message_id": message_id, "guid": guid, "reason": reason})
        logger.debug(f"Tracked lossy message {message_id}: {reason}")

    def add_orphaned_message(self, message_id: int, guid: str) -> None:
        """Track a message that belongs to no conversation."""
        self.orphaned_messages.append({"message_id": message_id, "guid": guid})
        logger.debug(f"Tracked orphaned message: {message_id}")

    def add_missing_attachment(
        self,
        attachment_id: int,
        status: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Track an attachment whose file could not be found.

        Args:
            attachment_id: Row id of the attachment
            status: Classification (missing-no-path or missing-no-file)
            context: Additional context (declared path, resolved path)
        """
        entry = {
            "attachment_id": attachment_id,
            "status": status,
            "context": context or {},
        }
        self.missing_attachments.append(entry)
        logger.debug(f"Tracked missing attachment {attachment_id}: {status}")

    def add_unresolved_reference(
        self, message_id: int, relation: str, target_guid: str
    ) -> None:
        """
        Track a reply or reaction whose target message is absent.

        Args:
            message_id: Row id of the referring message
            relation: "reply" or "reaction"
            target_guid: GUID that could not be resolved
        """
        self.unresolved_references.append(
            {
                "message_id": message_id,
                "relation": relation,
                "target_guid": target_guid,
            }
        )
        logger.debug(f"Tracked unresolved {relation} from {message_id} to {target_guid}")

    def has_failures(self) -> bool:
        """Check if any failures have been tracked."""
        return bool(
            self.lossy_messages
            or self.orphaned_messages
            or self.missing_attachments
            or self.unresolved_references
        )

    def get_summary(self) -> Dict[str, int]:
        """
        Get summary statistics of tracked failures.

        Returns:
            Dict with counts of each failure type
        """
        counts = {
            "lossy_messages": len(self.lossy_messages),
            "orphaned_messages": len(self.orphaned_messages),
            "missing_attachments": len(self.missing_attachments),
            "unresolved_references": len(self.unresolved_references),
        }
        counts["total_failures"] = sum(counts.values())
        return counts

    def generate_report(self) -> Dict[str, Any]:
        """
        Generate a comprehensive failure report.

        Returns:
            Dict containing all failure information
        """
        return {
            "source_path": self.source_path,
            "timestamp": self.timestamp,
            "summary": self.get_summary(),
            "lossy_messages": self.lossy_messages,
            "orphaned_messages": self.orphaned_messages,
            "missing_attachments": self.missing_attachments,
            "unresolved_references": self.unresolved_references,
        }

    def save_report(self, output_dir: Path) -> Optional[Path]:
        """
        Save the failure report to a JSON file.

        Args:
            output_dir: Directory that receives issues/failure-report.json

        Returns:
            Path of the written report, or None if nothing was written
        """
        if not self.has_failures():
            logger.info("No failures to report")
            return None

        issues_dir = Path(output_dir) / "issues"
        issues_dir.mkdir(parents=True, exist_ok=True)

        report_path = issues_dir / "failure-report.json"

        try:
            report = self.generate_report()
            with open(report_path, "w", encoding="utf-8") as f:
                json.dump(report, f, indent=2, ensure_ascii=False)
            logger.info(f"Failure report saved to: {report_path}")
        except OSError as e:
            logger.error(f"Failed to save failure report to {report_path}: {e}")
            return None

        return report_path
