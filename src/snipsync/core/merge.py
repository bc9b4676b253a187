"""Merge engine for SnipSync.

Applies the items of a validated push to the entity store:

- New items get a permanent ID from the IdentityAssigner and are inserted.
- Updates are resolved last-writer-wins on updated_at: the incoming record
  replaces the stored one only if its updated_at is strictly greater.
  Updates to records the server does not have are dropped, never recreated.
- Snippet-tag associations are inserted if absent. Linking a pair again
  after an unlink clears the pair's tombstone.
- Deletions remove the record and its dependents and append one tombstone.

Every per-item function returns an outcome string. The caller owns the
transaction; any StoreError raised here must abort the whole push.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .database import Database
from .identity import IdentityAssigner, new_id
from .models import (
    FOLDERS,
    SNIPPET_CONTENTS,
    SNIPPET_TAGS,
    SNIPPETS,
    TAGS,
    Folder,
    Snippet,
    SnippetContent,
    SnippetTag,
    Tag,
    Tombstone,
)
from .payloads import (
    ChangeItem,
    DeletionItem,
    FolderData,
    PushRequest,
    SnippetContentData,
    SnippetData,
    SnippetTagItem,
    TagData,
)

logger = logging.getLogger(__name__)

__all__ = [
    "INSERTED",
    "UPDATED",
    "STALE",
    "MISSING",
    "ORPHANED",
    "LINKED",
    "UNCHANGED",
    "DELETED",
    "MergeStats",
    "apply_folder_change",
    "apply_snippet_change",
    "apply_snippet_content_change",
    "apply_tag_change",
    "apply_snippet_tag",
    "apply_deletion",
    "apply_push",
]

# Outcomes
INSERTED = "inserted"
UPDATED = "updated"
STALE = "stale"  # incoming updated_at not newer than stored
MISSING = "missing"  # target (or a referenced parent) does not exist
ORPHANED = "orphaned"  # snippet content whose snippet does not exist
LINKED = "linked"
UNCHANGED = "unchanged"
DELETED = "deleted"


@dataclass
class MergeStats:
    """Per-table outcome counts of one push."""

    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def record(self, table_name: str, outcome: str) -> None:
        table_counts = self.counts.setdefault(table_name, {})
        table_counts[outcome] = table_counts.get(outcome, 0) + 1

    def get(self, table_name: str, outcome: str) -> int:
        return self.counts.get(table_name, {}).get(outcome, 0)

    def total(self, outcome: str) -> int:
        return sum(c.get(outcome, 0) for c in self.counts.values())

    def summary(self) -> str:
        """One-line description for logging, e.g. 'folders: 2 inserted, 1 stale'."""
        if not self.counts:
            return "no changes"
        parts = []
        for table_name, table_counts in self.counts.items():
            outcomes = ", ".join(f"{n} {outcome}" for outcome, n in table_counts.items())
            parts.append(f"{table_name}: {outcomes}")
        return "; ".join(parts)


def _timestamps(
    created_at: Optional[int], updated_at: Optional[int], server_time: int
) -> Tuple[int, int]:
    # Clients that omit timestamps on a new record get the exchange time
    return (
        created_at if created_at is not None else server_time,
        updated_at if updated_at is not None else server_time,
    )


def _apply_entity_change(
    db: Database,
    table_name: str,
    item: ChangeItem,
    assigner: IdentityAssigner,
    server_time: int,
    build: Callable[[str, int, int], Any],
    get: Callable[[str], Optional[Any]],
    insert: Callable[[Any], None],
    update: Callable[[Any], bool],
) -> str:
    """Shared create/update logic for the four entity kinds."""
    data = item.data

    if item.is_new:
        record_id = assigner.assign(table_name, item.local_id)
        created_at, updated_at = _timestamps(data.created_at, data.updated_at, server_time)
        insert(build(record_id, created_at, updated_at))
        return INSERTED

    existing = get(item.server_id)
    if existing is None:
        logger.debug(f"Dropping update to unknown {table_name} {item.server_id}")
        return MISSING

    if data.updated_at <= existing.updated_at:
        logger.debug(
            f"Stale update to {table_name} {item.server_id}: "
            f"{data.updated_at} <= {existing.updated_at}"
        )
        return STALE

    update(build(item.server_id, existing.created_at, data.updated_at))
    return UPDATED


def apply_folder_change(
    db: Database, item: ChangeItem, assigner: IdentityAssigner, server_time: int
) -> str:
    """Apply a folder create or update.

    Returns: "inserted", "updated", "stale" or "missing"
    """
    data: FolderData = item.data

    def build(record_id: str, created_at: int, updated_at: int) -> Folder:
        return Folder(
            id=record_id,
            name=data.name,
            default_language=data.default_language,
            parent_id=data.parent_id,
            is_open=data.is_open,
            order_index=data.order_index,
            icon=data.icon,
            created_at=created_at,
            updated_at=updated_at,
        )

    return _apply_entity_change(
        db, FOLDERS, item, assigner, server_time,
        build, db.get_folder, db.insert_folder, db.update_folder,
    )


def apply_snippet_change(
    db: Database, item: ChangeItem, assigner: IdentityAssigner, server_time: int
) -> str:
    """Apply a snippet create or update.

    Returns: "inserted", "updated", "stale" or "missing"
    """
    data: SnippetData = item.data

    def build(record_id: str, created_at: int, updated_at: int) -> Snippet:
        return Snippet(
            id=record_id,
            name=data.name,
            description=data.description,
            folder_id=data.folder_id,
            is_deleted=data.is_deleted,
            is_favorites=data.is_favorites,
            created_at=created_at,
            updated_at=updated_at,
        )

    return _apply_entity_change(
        db, SNIPPETS, item, assigner, server_time,
        build, db.get_snippet, db.insert_snippet, db.update_snippet,
    )


def apply_snippet_content_change(
    db: Database, item: ChangeItem, assigner: IdentityAssigner, server_time: int
) -> str:
    """Apply a snippet content create or update.

    A content must not outlive its snippet. If the owning snippet does not
    exist (typically deleted by another device) nothing is written. A new
    item still gets its identity mapping so the client can settle its local
    copy; it will drop it once it pulls the snippet's tombstone.

    Returns: "inserted", "updated", "stale", "missing" or "orphaned"
    """
    data: SnippetContentData = item.data

    if db.get_snippet(data.snippet_id) is None:
        if item.is_new:
            assigner.assign(SNIPPET_CONTENTS, item.local_id)
        logger.debug(
            f"Orphaned snippet content for missing snippet {data.snippet_id}"
        )
        return ORPHANED

    def build(record_id: str, created_at: int, updated_at: int) -> SnippetContent:
        return SnippetContent(
            id=record_id,
            snippet_id=data.snippet_id,
            label=data.label,
            value=data.value,
            language=data.language,
            created_at=created_at,
            updated_at=updated_at,
        )

    return _apply_entity_change(
        db, SNIPPET_CONTENTS, item, assigner, server_time,
        build, db.get_snippet_content, db.insert_snippet_content, db.update_snippet_content,
    )


def apply_tag_change(
    db: Database, item: ChangeItem, assigner: IdentityAssigner, server_time: int
) -> str:
    """Apply a tag create or update.

    Returns: "inserted", "updated", "stale" or "missing"
    """
    data: TagData = item.data

    def build(record_id: str, created_at: int, updated_at: int) -> Tag:
        return Tag(id=record_id, name=data.name, created_at=created_at, updated_at=updated_at)

    return _apply_entity_change(
        db, TAGS, item, assigner, server_time,
        build, db.get_tag, db.insert_tag, db.update_tag,
    )


def apply_snippet_tag(db: Database, item: SnippetTagItem, server_time: int) -> str:
    """Link a snippet to a tag.

    Associations have no mutable fields, so only new items do anything.

    Returns: "linked", "unchanged" or "missing"
    """
    if not item.is_new:
        return UNCHANGED

    if db.get_snippet(item.snippet_server_id) is None or db.get_tag(item.tag_server_id) is None:
        logger.debug(
            f"Dangling snippet tag {item.snippet_server_id}:{item.tag_server_id}"
        )
        return MISSING

    created_at = item.created_at if item.created_at is not None else server_time
    snippet_tag = SnippetTag(item.snippet_server_id, item.tag_server_id, created_at)
    if not db.insert_snippet_tag(snippet_tag):
        return UNCHANGED

    # A pair can be linked again after an unlink; its old tombstone no longer applies
    if db.delete_tombstone(SNIPPET_TAGS, snippet_tag.record_id):
        logger.debug(f"Snippet tag {snippet_tag.record_id} linked again after deletion")
    return LINKED


def _delete_record(db: Database, table_name: str, record_id: str) -> bool:
    if table_name == FOLDERS:
        return db.delete_folder(record_id)
    if table_name == SNIPPETS:
        return db.delete_snippet(record_id)
    if table_name == SNIPPET_CONTENTS:
        return db.delete_snippet_content(record_id)
    if table_name == TAGS:
        return db.delete_tag(record_id)
    if table_name == SNIPPET_TAGS:
        snippet_id, sep, tag_id = record_id.partition(":")
        if not sep:
            return False
        return db.delete_snippet_tag(snippet_id, tag_id)
    raise ValueError(f"Unknown table: {table_name}")


def apply_deletion(
    db: Database, item: DeletionItem, id_factory: Callable[[], str] = new_id
) -> str:
    """Hard-delete a record and log its tombstone.

    Deleting a snippet also removes its contents and tag associations;
    deleting a tag removes its associations. Only the named record gets a
    tombstone.

    A live record is always deleted, even if an earlier tombstone exists for
    its ID. Entity IDs are never reused, but a snippet-tag pair can be linked
    again after an unlink.

    Returns: "deleted", "unchanged" (already tombstoned) or "missing"
    """
    if not _delete_record(db, item.table_name, item.record_id):
        if db.get_tombstone(item.table_name, item.record_id) is not None:
            return UNCHANGED
        logger.debug(f"Deletion of unknown {item.table_name} {item.record_id} ignored")
        return MISSING

    db.add_tombstone(
        Tombstone(
            id=id_factory(),
            table_name=item.table_name,
            record_id=item.record_id,
            deleted_at=item.deleted_at,
        )
    )
    return DELETED


def apply_push(
    db: Database, request: PushRequest, assigner: IdentityAssigner, server_time: int
) -> MergeStats:
    """Apply every item of a push.

    Parents go before children (folders, tags, snippets, snippet contents,
    snippet tags) and deletions go last, so a batch may create a record and
    reference it, or create and delete it, in one exchange.

    Args:
        db: Database instance, inside a transaction owned by the caller
        request: Validated push request
        assigner: IdentityAssigner for this exchange
        server_time: Server clock reading (ms) for this exchange

    Returns:
        MergeStats with per-table outcome counts
    """
    stats = MergeStats()

    for item in request.folders:
        stats.record(FOLDERS, apply_folder_change(db, item, assigner, server_time))
    for item in request.tags:
        stats.record(TAGS, apply_tag_change(db, item, assigner, server_time))
    for item in request.snippets:
        stats.record(SNIPPETS, apply_snippet_change(db, item, assigner, server_time))
    for item in request.snippet_contents:
        stats.record(
            SNIPPET_CONTENTS, apply_snippet_content_change(db, item, assigner, server_time)
        )
    for snippet_tag in request.snippet_tags:
        stats.record(SNIPPET_TAGS, apply_snippet_tag(db, snippet_tag, server_time))
    for deletion in request.deletions:
        stats.record(deletion.table_name, apply_deletion(db, deletion))

    return stats
