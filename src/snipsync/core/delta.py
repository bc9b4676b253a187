"""Delta extraction for the pull side of the protocol.

A client sends the watermark of its previous pull (lastSyncAt, ms) and gets
every record whose timestamp is strictly greater, plus the tombstones logged
since then. Entity records are compared on updated_at, snippet-tag
associations on created_at and tombstones on deleted_at.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .database import Database
from .models import Folder, Snippet, SnippetContent, SnippetTag, Tag, Tombstone

__all__ = ["ChangeSet", "get_changes_since", "get_full_dataset"]


@dataclass
class ChangeSet:
    """Records and tombstones sent to a client in one pull."""

    folders: List[Folder] = field(default_factory=list)
    snippets: List[Snippet] = field(default_factory=list)
    snippet_contents: List[SnippetContent] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)
    snippet_tags: List[SnippetTag] = field(default_factory=list)
    deletions: List[Tombstone] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return (
            len(self.folders) + len(self.snippets) + len(self.snippet_contents)
            + len(self.tags) + len(self.snippet_tags)
        )

    def changes_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        """Serialize the entity lists. Every key is present, even when empty."""
        return {
            "folders": [f.to_dict() for f in self.folders],
            "snippets": [s.to_dict() for s in self.snippets],
            "snippetContents": [c.to_dict() for c in self.snippet_contents],
            "tags": [t.to_dict() for t in self.tags],
            "snippetTags": [st.to_dict() for st in self.snippet_tags],
        }

    def deletions_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.deletions]


def _collect(db: Database, since: Optional[int], with_deletions: bool) -> ChangeSet:
    # Read every table inside one transaction so the pull is a consistent snapshot
    with db.transaction(immediate=False):
        return ChangeSet(
            folders=db.get_folders(since),
            snippets=db.get_snippets(since),
            snippet_contents=db.get_snippet_contents(since),
            tags=db.get_tags(since),
            snippet_tags=db.get_snippet_tags(since),
            deletions=db.get_tombstones(since) if with_deletions else [],
        )


def get_changes_since(db: Database, since: int = 0) -> ChangeSet:
    """Get records and tombstones newer than a watermark.

    Args:
        db: Database instance
        since: lastSyncAt of the client (ms). 0 means the client has nothing,
            so every record and every tombstone is returned.

    Returns:
        ChangeSet with all six lists filled
    """
    return _collect(db, since if since > 0 else None, with_deletions=True)


def get_full_dataset(db: Database) -> ChangeSet:
    """Get every live record for an initial sync.

    A client that starts from scratch has nothing to delete, so deletions
    are always empty.
    """
    return _collect(db, None, with_deletions=False)
