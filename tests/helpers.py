"""Test helper functions for SnipSync tests.

This module provides pre-defined record IDs for the populated database and
builders for push/pull request bodies.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

# Base timestamp for test data (2023-11-14 22:13:20 UTC)
T0 = 1_700_000_000_000

# Pre-generated IDs for consistent test data
FOLDER_IDS = {
    "Work": "018bcfe5-6800-7000-8000-000000000101",
    "Scripts": "018bcfe5-6800-7000-8000-000000000102",
}

SNIPPET_IDS = {
    "Deploy": "018bcfe5-6800-7000-8000-000000000201",
    "Backup": "018bcfe5-6800-7000-8000-000000000202",
}

CONTENT_IDS = {
    "Deploy/main": "018bcfe5-6800-7000-8000-000000000301",
    "Deploy/rollback": "018bcfe5-6800-7000-8000-000000000302",
    "Backup/main": "018bcfe5-6800-7000-8000-000000000303",
}

TAG_IDS = {
    "bash": "018bcfe5-6800-7000-8000-000000000401",
    "ops": "018bcfe5-6800-7000-8000-000000000402",
}


class FixedClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def new_item(local_id: Union[int, str], **data: Any) -> Dict[str, Any]:
    """Build a change item for a record created offline."""
    return {"isNew": True, "localId": local_id, "data": data}


def update_item(server_id: str, **data: Any) -> Dict[str, Any]:
    """Build a change item for an existing record."""
    return {"isNew": False, "serverId": server_id, "data": data}


def link_item(
    snippet_id: str, tag_id: str, created_at: Optional[int] = None, is_new: bool = True
) -> Dict[str, Any]:
    """Build a snippet-tag relationship item."""
    item: Dict[str, Any] = {
        "snippetServerId": snippet_id,
        "tagServerId": tag_id,
        "isNew": is_new,
    }
    if created_at is not None:
        item["createdAt"] = created_at
    return item


def deletion(table_name: str, record_id: str, deleted_at: int) -> Dict[str, Any]:
    """Build a deletion item."""
    return {"tableName": table_name, "recordId": record_id, "deletedAt": deleted_at}


def push_body(
    folders: Optional[List[Dict[str, Any]]] = None,
    snippets: Optional[List[Dict[str, Any]]] = None,
    snippet_contents: Optional[List[Dict[str, Any]]] = None,
    tags: Optional[List[Dict[str, Any]]] = None,
    snippet_tags: Optional[List[Dict[str, Any]]] = None,
    deletions: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build a push request body with every list present."""
    return {
        "changes": {
            "folders": folders or [],
            "snippets": snippets or [],
            "snippetContents": snippet_contents or [],
            "tags": tags or [],
            "snippetTags": snippet_tags or [],
        },
        "deletions": deletions or [],
    }


def server_id_for(
    push_response: Dict[str, Any], table_name: str, local_id: Union[int, str]
) -> str:
    """Find the server ID assigned to a local reference in a push response."""
    for mapping in push_response["idMappings"]:
        if mapping["tableName"] == table_name and mapping["localId"] == local_id:
            return mapping["serverId"]
    raise AssertionError(f"No mapping for {table_name} local {local_id!r}")
