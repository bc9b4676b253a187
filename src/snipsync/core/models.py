"""Data models for SnipSync.

This module defines immutable dataclasses representing the synchronized
entities: Folder, Snippet, SnippetContent, Tag, the Snippet-Tag association
and the Tombstone log.

All IDs are UUID7 strings minted by the server. All timestamps are integer
milliseconds since the epoch, supplied by the client that made the change.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Canonical table names, as they appear in idMappings, deletions and tombstones
FOLDERS = "folders"
SNIPPETS = "snippets"
SNIPPET_CONTENTS = "snippet_contents"
TAGS = "tags"
SNIPPET_TAGS = "snippet_tags"

ENTITY_TABLES = (FOLDERS, SNIPPETS, SNIPPET_CONTENTS, TAGS)
DELETABLE_TABLES = ENTITY_TABLES + (SNIPPET_TAGS,)

# Inbound spellings accepted for deletion table names
TABLE_ALIASES = {
    "snippetContents": SNIPPET_CONTENTS,
    "snippetTags": SNIPPET_TAGS,
}


def snippet_tag_record_id(snippet_id: str, tag_id: str) -> str:
    """Build the composite record ID of a snippet-tag association."""
    return f"{snippet_id}:{tag_id}"


@dataclass(frozen=True)
class Folder:
    """Represents a folder.

    Folders form a tree through parent_id. A folder with parent_id=None is a
    root folder.

    Attributes:
        id: Permanent server ID
        name: Display name
        default_language: Language preselected for new snippets in the folder
        parent_id: ID of the parent folder (None for root folders)
        is_open: 1 if the folder is expanded in the client sidebar
        order_index: Position among siblings
        icon: Optional icon name
        created_at: Creation time (ms)
        updated_at: Last modification time (ms), the LWW comparison key
    """

    id: str
    name: str
    default_language: str
    parent_id: Optional[str]
    is_open: int
    order_index: int
    icon: Optional[str]
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Folder":
        return cls(
            id=row["id"],
            name=row["name"],
            default_language=row["default_language"],
            parent_id=row["parent_id"],
            is_open=row["is_open"],
            order_index=row["order_index"],
            icon=row["icon"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "defaultLanguage": self.default_language,
            "parentId": self.parent_id,
            "isOpen": self.is_open,
            "orderIndex": self.order_index,
            "icon": self.icon,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Snippet:
    """Represents a snippet.

    is_deleted is the client's trash flag, not a sync deletion. A snippet
    removed for good is hard-deleted and leaves a Tombstone.

    Attributes:
        id: Permanent server ID
        name: Display name
        description: Optional free-text description
        folder_id: ID of the containing folder (None for the inbox)
        is_deleted: 1 if the snippet is in the client's trash
        is_favorites: 1 if the snippet is marked as favorite
        created_at: Creation time (ms)
        updated_at: Last modification time (ms)
    """

    id: str
    name: str
    description: Optional[str]
    folder_id: Optional[str]
    is_deleted: int
    is_favorites: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Snippet":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            folder_id=row["folder_id"],
            is_deleted=row["is_deleted"],
            is_favorites=row["is_favorites"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "folderId": self.folder_id,
            "isDeleted": self.is_deleted,
            "isFavorites": self.is_favorites,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class SnippetContent:
    """Represents one fragment (tab) of a snippet.

    Attributes:
        id: Permanent server ID
        snippet_id: ID of the owning snippet
        label: Fragment label
        value: Body text
        language: Syntax highlighting language
        created_at: Creation time (ms)
        updated_at: Last modification time (ms)
    """

    id: str
    snippet_id: str
    label: Optional[str]
    value: Optional[str]
    language: Optional[str]
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SnippetContent":
        return cls(
            id=row["id"],
            snippet_id=row["snippet_id"],
            label=row["label"],
            value=row["value"],
            language=row["language"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "snippetId": self.snippet_id,
            "label": self.label,
            "value": self.value,
            "language": self.language,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Tag:
    """Represents a tag."""

    id: str
    name: str
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Tag":
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class SnippetTag:
    """Represents the association between a snippet and a tag.

    Associations are never updated, only created and deleted, so created_at
    is the only timestamp.
    """

    snippet_id: str
    tag_id: str
    created_at: int

    @property
    def record_id(self) -> str:
        return snippet_tag_record_id(self.snippet_id, self.tag_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SnippetTag":
        return cls(
            snippet_id=row["snippet_id"],
            tag_id=row["tag_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snippetId": self.snippet_id,
            "tagId": self.tag_id,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Tombstone:
    """Immutable record of a hard deletion.

    Tombstones are never updated or removed. They are the only way other
    devices learn that a record is gone.

    Attributes:
        id: Permanent server ID of the tombstone itself
        table_name: Canonical table name of the deleted record
        record_id: ID of the deleted record
        deleted_at: Deletion time (ms) as reported by the deleting device
    """

    id: str
    table_name: str
    record_id: str
    deleted_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Tombstone":
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            deleted_at=row["deleted_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableName": self.table_name,
            "recordId": self.record_id,
            "deletedAt": self.deleted_at,
        }
