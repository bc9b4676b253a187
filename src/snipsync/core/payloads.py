"""Typed request payloads for the push/pull protocol.

Incoming JSON is parsed into these dataclasses at the HTTP boundary, so the
merge engine only ever sees validated, typed values. Every from_dict raises
ValidationError naming the offending field, with its position in the
request (e.g. "changes.folders[2].data.name").

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from .models import DELETABLE_TABLES, TABLE_ALIASES
from .validation import (
    ValidationError,
    optional_flag,
    optional_int,
    optional_str,
    optional_timestamp,
    require_bool,
    require_list,
    require_local_id,
    require_object,
    require_str,
    require_timestamp,
    validate_record_id,
)

LocalId = Union[int, str]

T = TypeVar("T")


@dataclass
class FolderData:
    """Mutable fields of a folder as sent by a client."""

    name: str
    default_language: str = ""
    parent_id: Optional[str] = None
    is_open: int = 0
    order_index: int = 0
    icon: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "data") -> "FolderData":
        return cls(
            name=require_str(data.get("name"), f"{path}.name"),
            default_language=optional_str(
                data.get("defaultLanguage"), f"{path}.defaultLanguage", 50
            ) or "",
            parent_id=optional_str(data.get("parentId"), f"{path}.parentId", 129),
            is_open=optional_flag(data.get("isOpen"), f"{path}.isOpen"),
            order_index=optional_int(data.get("orderIndex"), f"{path}.orderIndex"),
            icon=optional_str(data.get("icon"), f"{path}.icon", 100),
            created_at=optional_timestamp(data.get("createdAt"), f"{path}.createdAt"),
            updated_at=optional_timestamp(data.get("updatedAt"), f"{path}.updatedAt"),
        )


@dataclass
class SnippetData:
    """Mutable fields of a snippet as sent by a client."""

    name: str
    description: Optional[str] = None
    folder_id: Optional[str] = None
    is_deleted: int = 0
    is_favorites: int = 0
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "data") -> "SnippetData":
        return cls(
            name=require_str(data.get("name"), f"{path}.name"),
            description=optional_str(data.get("description"), f"{path}.description"),
            folder_id=optional_str(data.get("folderId"), f"{path}.folderId", 129),
            is_deleted=optional_flag(data.get("isDeleted"), f"{path}.isDeleted"),
            is_favorites=optional_flag(data.get("isFavorites"), f"{path}.isFavorites"),
            created_at=optional_timestamp(data.get("createdAt"), f"{path}.createdAt"),
            updated_at=optional_timestamp(data.get("updatedAt"), f"{path}.updatedAt"),
        )


@dataclass
class SnippetContentData:
    """Mutable fields of a snippet content (fragment) as sent by a client."""

    snippet_id: str
    label: Optional[str] = None
    value: Optional[str] = None
    language: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "data") -> "SnippetContentData":
        return cls(
            snippet_id=validate_record_id(data.get("snippetId"), f"{path}.snippetId"),
            label=optional_str(data.get("label"), f"{path}.label", 255),
            value=optional_str(data.get("value"), f"{path}.value"),
            language=optional_str(data.get("language"), f"{path}.language", 50),
            created_at=optional_timestamp(data.get("createdAt"), f"{path}.createdAt"),
            updated_at=optional_timestamp(data.get("updatedAt"), f"{path}.updatedAt"),
        )


@dataclass
class TagData:
    """Mutable fields of a tag as sent by a client."""

    name: str
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "data") -> "TagData":
        return cls(
            name=require_str(data.get("name"), f"{path}.name", 100),
            created_at=optional_timestamp(data.get("createdAt"), f"{path}.createdAt"),
            updated_at=optional_timestamp(data.get("updatedAt"), f"{path}.updatedAt"),
        )


EntityData = Union[FolderData, SnippetData, SnippetContentData, TagData]


@dataclass
class ChangeItem:
    """One create or update of an entity.

    A new item (is_new=True) carries the client's local_id and no server_id.
    An update carries the server_id learned from an earlier exchange.
    """

    is_new: bool
    data: EntityData
    local_id: Optional[LocalId] = None
    server_id: Optional[str] = None

    @classmethod
    def from_dict(
        cls,
        item: Any,
        data_parser: Callable[[Dict[str, Any], str], EntityData],
        path: str,
    ) -> "ChangeItem":
        item = require_object(item, path)
        is_new = require_bool(item.get("isNew", False), f"{path}.isNew")
        data = data_parser(require_object(item.get("data"), f"{path}.data"), f"{path}.data")

        if is_new:
            raw_local_id = item.get("localId", item.get("localRef"))
            local_id = require_local_id(raw_local_id, f"{path}.localId")
            return cls(is_new=True, data=data, local_id=local_id)

        server_id = validate_record_id(item.get("serverId"), f"{path}.serverId")
        if data.updated_at is None:
            raise ValidationError(f"{path}.data.updatedAt", "is required for updates")
        return cls(is_new=False, data=data, server_id=server_id)


@dataclass
class SnippetTagItem:
    """A snippet-tag association sent by a client."""

    snippet_server_id: str
    tag_server_id: str
    is_new: bool = True
    created_at: Optional[int] = None

    @classmethod
    def from_dict(cls, item: Any, path: str) -> "SnippetTagItem":
        item = require_object(item, path)
        return cls(
            snippet_server_id=validate_record_id(
                item.get("snippetServerId"), f"{path}.snippetServerId"
            ),
            tag_server_id=validate_record_id(item.get("tagServerId"), f"{path}.tagServerId"),
            is_new=require_bool(item.get("isNew", True), f"{path}.isNew"),
            created_at=optional_timestamp(item.get("createdAt"), f"{path}.createdAt"),
        )


@dataclass
class DeletionItem:
    """A hard deletion reported by a client."""

    table_name: str
    record_id: str
    deleted_at: int

    @classmethod
    def from_dict(cls, item: Any, path: str) -> "DeletionItem":
        item = require_object(item, path)
        table_name = require_str(item.get("tableName"), f"{path}.tableName", 50)
        table_name = TABLE_ALIASES.get(table_name, table_name)
        if table_name not in DELETABLE_TABLES:
            raise ValidationError(
                f"{path}.tableName",
                f"unknown table '{table_name}' (expected one of {', '.join(DELETABLE_TABLES)})",
            )
        return cls(
            table_name=table_name,
            record_id=validate_record_id(item.get("recordId"), f"{path}.recordId"),
            deleted_at=require_timestamp(item.get("deletedAt"), f"{path}.deletedAt"),
        )


def _parse_list(raw: Any, path: str, parser: Callable[[Any, str], T]) -> List[T]:
    return [parser(item, f"{path}[{i}]") for i, item in enumerate(require_list(raw, path))]


def _change_parser(
    data_parser: Callable[[Dict[str, Any], str], EntityData]
) -> Callable[[Any, str], ChangeItem]:
    return lambda item, path: ChangeItem.from_dict(item, data_parser, path)


@dataclass
class PushRequest:
    """A client's outbound changes and deletions for one exchange."""

    folders: List[ChangeItem] = field(default_factory=list)
    snippets: List[ChangeItem] = field(default_factory=list)
    snippet_contents: List[ChangeItem] = field(default_factory=list)
    tags: List[ChangeItem] = field(default_factory=list)
    snippet_tags: List[SnippetTagItem] = field(default_factory=list)
    deletions: List[DeletionItem] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return (
            len(self.folders) + len(self.snippets) + len(self.snippet_contents)
            + len(self.tags) + len(self.snippet_tags) + len(self.deletions)
        )

    @classmethod
    def from_dict(cls, body: Any) -> "PushRequest":
        body = require_object(body, "body")
        changes = body.get("changes")
        changes = {} if changes is None else require_object(changes, "changes")

        return cls(
            folders=_parse_list(
                changes.get("folders"), "changes.folders", _change_parser(FolderData.from_dict)
            ),
            snippets=_parse_list(
                changes.get("snippets"), "changes.snippets", _change_parser(SnippetData.from_dict)
            ),
            snippet_contents=_parse_list(
                changes.get("snippetContents"),
                "changes.snippetContents",
                _change_parser(SnippetContentData.from_dict),
            ),
            tags=_parse_list(
                changes.get("tags"), "changes.tags", _change_parser(TagData.from_dict)
            ),
            snippet_tags=_parse_list(
                changes.get("snippetTags"), "changes.snippetTags", SnippetTagItem.from_dict
            ),
            deletions=_parse_list(body.get("deletions"), "deletions", DeletionItem.from_dict),
        )


@dataclass
class PullRequest:
    """Watermark of a client's previous successful pull."""

    last_sync_at: int = 0

    @classmethod
    def from_dict(cls, body: Any) -> "PullRequest":
        body = require_object(body, "body")
        raw = body.get("lastSyncAt")
        if raw is None:
            return cls()
        return cls(last_sync_at=require_timestamp(raw, "lastSyncAt"))
