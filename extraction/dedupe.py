#!/usr/bin/env python3
"""
Identity Deduplicator

Groups handles into contacts and finds conversations that share the same
set of participants.

Handles are grouped in two phases over a union-find structure:
1. Handles sharing a group hint (person_centric_id) are merged
2. Handles whose normalized identifiers are equal are merged

A contact's id is the smallest handle id in its group, so ids are stable
across runs and feeding contacts back in as handles reproduces the same
grouping.

Conversations are never merged; duplicates are only reported.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from extraction.models import Contact, Handle

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]+$")


def normalize_identifier(identifier: Optional[str]) -> str:
    """Normalize a handle identifier for comparison.

    Email addresses are lower-cased. Phone numbers keep only digits and a
    leading "+". Anything else (business ids, chat names) is stripped and
    lower-cased.

    Example:
        >>> normalize_identifier("+1 (555) 123-4567")
        '+15551234567'
        >>> normalize_identifier(" Foo@Example.COM ")
        'foo@example.com'
    """
    if not identifier:
        return ""

    value = identifier.strip()
    if "@" in value:
        return value.lower()

    if PHONE_PATTERN.match(value):
        has_plus = value.startswith("+")
        digits = re.sub(r"\D", "", value)
        if not digits:
            return ""
        return f"+{digits}" if has_plus else digits

    return value.lower()


class _DisjointSet:
    """Union-find over handle ids; the root is always the smallest id."""

    def __init__(self, ids: Iterable[int]):
        self.parent = {item: item for item in ids}

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if root_a < root_b:
            self.parent[root_b] = root_a
        else:
            self.parent[root_a] = root_b


@dataclass(frozen=True)
class IdentityIndex:
    """The handle/contact table threaded through deduplication.

    Attributes:
        handles: Handles with contact_id filled in, by handle id
        contacts: Contacts by contact id
        contact_by_handle: Handle id to contact id
    """

    handles: Mapping[int, Handle]
    contacts: Mapping[int, Contact]
    contact_by_handle: Mapping[int, int]

    def contact_for(self, handle_id: int) -> Optional[Contact]:
        contact_id = self.contact_by_handle.get(handle_id)
        if contact_id is None:
            return None
        return self.contacts[contact_id]

    @property
    def duplicate_contact_count(self) -> int:
        """Contacts that own more than one handle."""
        return sum(1 for contact in self.contacts.values() if contact.is_duplicated)


def _merge_by_key(disjoint: _DisjointSet, keyed: Mapping[str, List[int]]) -> None:
    for ids in keyed.values():
        first = ids[0]
        for other in ids[1:]:
            disjoint.union(first, other)


def build_contacts(handles: Sequence[Handle]) -> IdentityIndex:
    """Group handles into contacts.

    Args:
        handles: Handles from the source

    Returns:
        IdentityIndex in which every handle belongs to exactly one contact
    """
    ordered = sorted(handles, key=lambda handle: handle.id)
    disjoint = _DisjointSet(handle.id for handle in ordered)

    # Phase 1: shared group hint
    by_hint: Dict[str, List[int]] = defaultdict(list)
    for handle in ordered:
        if handle.group_hint:
            by_hint[handle.group_hint].append(handle.id)
    _merge_by_key(disjoint, by_hint)

    # Phase 2: equal normalized identifier
    by_identifier: Dict[str, List[int]] = defaultdict(list)
    for handle in ordered:
        normalized = normalize_identifier(handle.identifier)
        if normalized:
            by_identifier[normalized].append(handle.id)
    _merge_by_key(disjoint, by_identifier)

    contacts: Dict[int, Contact] = {}
    contact_by_handle: Dict[int, int] = {}
    assigned: Dict[int, Handle] = {}
    for handle in ordered:
        contact_id = disjoint.find(handle.id)
        contact = contacts.setdefault(contact_id, Contact(id=contact_id))
        contact.add_handle(handle)
        contact_by_handle[handle.id] = contact_id
        assigned[handle.id] = replace(handle, contact_id=contact_id)

    index = IdentityIndex(assigned, contacts, contact_by_handle)
    logger.info(
        f"Grouped {len(ordered)} handles into {len(contacts)} contacts "
        f"({index.duplicate_contact_count} with more than one handle)"
    )
    return index


def canonical_participants(
    handle_ids: Iterable[int], index: IdentityIndex
) -> Tuple[int, ...]:
    """Sorted, de-duplicated contact ids for a set of participant handles.

    Handles missing from the handle table keep their own id, which cannot
    collide with a contact id because contact ids are existing handle ids.
    """
    contact_ids = set()
    for handle_id in handle_ids:
        contact_id = index.contact_by_handle.get(handle_id)
        if contact_id is None:
            logger.debug(f"Participant handle {handle_id} is not in the handle table")
            contact_id = handle_id
        contact_ids.add(contact_id)
    return tuple(sorted(contact_ids))


def find_duplicate_conversations(
    participants_by_conversation: Mapping[int, Sequence[int]],
    index: IdentityIndex,
) -> List[Tuple[int, ...]]:
    """Find conversations whose participants resolve to the same contacts.

    Conversations without participants are not grouped.

    Args:
        participants_by_conversation: Conversation id to participant handle ids
        index: Identity index from build_contacts()

    Returns:
        Groups of conversation ids (each sorted, size > 1), ordered by their
        first conversation id
    """
    by_key: Dict[Tuple[int, ...], List[int]] = defaultdict(list)
    for conversation_id in sorted(participants_by_conversation):
        key = canonical_participants(participants_by_conversation[conversation_id], index)
        if key:
            by_key[key].append(conversation_id)

    groups = [tuple(ids) for ids in by_key.values() if len(ids) > 1]
    groups.sort(key=lambda group: group[0])
    return groups
