"""Sync server implementation for SnipSync.

This module provides the exchange coordinator and the Flask blueprint that
exposes it. Clients keep a local replica and talk to one central server:

Sync Protocol:
1. Push: Send local creates, updates and deletions. The server applies them
   in one transaction and returns permanent IDs for newly created records.
2. Pull: Request everything changed since the last pull (lastSyncAt).
3. Full: Request the complete current dataset for an initial sync.

Clients should use the serverTime returned by a pull as their next
lastSyncAt.

CRITICAL: Only create_sync_blueprint and its helpers touch Flask.
"""

from __future__ import annotations

import functools
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Blueprint, jsonify, request

from .database import Database, StoreError
from .delta import ChangeSet, get_changes_since, get_full_dataset
from .identity import IdentityAssigner, IdMapping
from .merge import MergeStats, apply_push
from .payloads import PullRequest, PushRequest
from .timestamp_utils import current_timestamp_ms
from .validation import ValidationError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0"

Clock = Callable[[], int]


@dataclass
class PushResult:
    """Outcome of one push."""

    server_time: int
    mappings: List[IdMapping] = field(default_factory=list)
    stats: MergeStats = field(default_factory=MergeStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serverTime": self.server_time,
            "idMappings": [m.to_dict() for m in self.mappings],
        }


@dataclass
class PullResult:
    """Outcome of one pull or full sync."""

    server_time: int
    changes: ChangeSet = field(default_factory=ChangeSet)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serverTime": self.server_time,
            "changes": self.changes.changes_dict(),
            "deletions": self.changes.deletions_list(),
        }


# ============================================================================
# Exchange coordinator
# ============================================================================


def push_changes(
    db: Database,
    push: PushRequest,
    assigner: Optional[IdentityAssigner] = None,
    clock: Clock = current_timestamp_ms,
) -> PushResult:
    """Apply a client's push atomically.

    All items are applied inside one transaction. If anything fails, nothing
    is committed and the error propagates, so the client never receives
    mappings for records that were not stored.

    Args:
        db: Database instance
        push: Validated push request
        assigner: IdentityAssigner to use (a fresh one per push by default)
        clock: Millisecond clock for serverTime and missing timestamps

    Returns:
        PushResult with the identity mappings in assignment order

    Raises:
        ValidationError: If the push reuses a local reference
        StoreError: If the store fails; the push was rolled back
    """
    if assigner is None:
        assigner = IdentityAssigner()
    server_time = clock()

    try:
        with db.transaction():
            stats = apply_push(db, push, assigner, server_time)
    except StoreError as e:
        logger.error(f"Push of {push.item_count} items rolled back: {e}")
        raise

    logger.info(
        f"Push applied: {push.item_count} items, {len(assigner)} IDs assigned "
        f"({stats.summary()})"
    )
    return PushResult(server_time=server_time, mappings=assigner.mappings, stats=stats)


def pull_changes(
    db: Database, last_sync_at: int = 0, clock: Clock = current_timestamp_ms
) -> PullResult:
    """Get everything that changed after a client's watermark.

    Args:
        db: Database instance
        last_sync_at: serverTime of the client's previous pull (0 for none)
        clock: Millisecond clock for serverTime

    Returns:
        PullResult with changes and deletions
    """
    server_time = clock()
    changes = get_changes_since(db, last_sync_at)
    logger.info(
        f"Pull since {last_sync_at}: {changes.record_count} records, "
        f"{len(changes.deletions)} deletions"
    )
    return PullResult(server_time=server_time, changes=changes)


def full_sync(db: Database, clock: Clock = current_timestamp_ms) -> PullResult:
    """Get the complete current dataset.

    Args:
        db: Database instance
        clock: Millisecond clock for serverTime

    Returns:
        PullResult with every live record and no deletions
    """
    server_time = clock()
    changes = get_full_dataset(db)
    logger.info(f"Full sync requested: returning {changes.record_count} records")
    return PullResult(server_time=server_time, changes=changes)


# ============================================================================
# HTTP layer
# ============================================================================


def _request_api_key() -> Optional[str]:
    key = request.headers.get("X-API-Key")
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip() or None
    return None


def _key_matches(key: str, api_keys: List[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for candidate in api_keys:
        if hmac.compare_digest(key.encode("utf-8"), candidate.encode("utf-8")):
            matched = True
    return matched


def sync_endpoint(func: Callable) -> Callable:
    """Decorator for consistent sync error handling.

    ValidationError becomes 400 and StoreError or anything unexpected
    becomes 500, all with a JSON error body.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"{func.__name__} rejected: {e.field} - {e.message}")
            return jsonify({"error": f"Invalid {e.field}: {e.message}"}), 400
        except StoreError as e:
            logger.error(f"Store failure in {func.__name__}: {e}")
            return jsonify({"error": f"Store failure: {e}"}), 500
        except Exception as e:
            logger.exception(f"Internal server error in {func.__name__}: {e}")
            return jsonify({"error": f"Internal server error: {e}"}), 500
    return wrapper


def _json_body() -> Any:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("body", "missing or malformed JSON request body")
    return data


def create_sync_blueprint(
    db: Database,
    api_keys: Optional[List[str]] = None,
    clock: Clock = current_timestamp_ms,
) -> Blueprint:
    """Create Flask blueprint for sync endpoints.

    Args:
        db: Database instance
        api_keys: Accepted API keys. None or empty disables authentication.
        clock: Millisecond clock for serverTime

    Returns:
        Flask Blueprint with sync routes under /api/sync
    """
    sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")
    keys = list(api_keys or [])

    @sync_bp.before_request
    def require_api_key() -> Optional[Tuple[Any, int]]:
        """Reject requests without a valid API key when keys are configured."""
        if not keys or request.method == "OPTIONS":
            return None
        key = _request_api_key()
        if key is None:
            logger.warning(f"Unauthenticated request to {request.path} from {request.remote_addr}")
            return jsonify({"error": "Missing API key"}), 401
        if not _key_matches(key, keys):
            logger.warning(f"Invalid API key for {request.path} from {request.remote_addr}")
            return jsonify({"error": "Invalid API key"}), 401
        return None

    @sync_bp.route("/ping", methods=["GET", "POST"])
    def ping() -> Tuple[Any, int]:
        """Check connectivity and read the server clock.

        Response:
            {"serverTime": 1700000000000}
        """
        return jsonify({"serverTime": clock()}), 200

    @sync_bp.route("/push", methods=["POST"])
    @sync_endpoint
    def push() -> Tuple[Any, int]:
        """Apply local changes from a client.

        Request body:
            {
                "changes": {
                    "folders": [{"isNew": true, "localId": 1, "data": {...}}, ...],
                    "snippets": [...],
                    "snippetContents": [...],
                    "tags": [...],
                    "snippetTags": [{"snippetServerId": "...", "tagServerId": "...",
                                     "isNew": true, "createdAt": 0}, ...]
                },
                "deletions": [{"tableName": "...", "recordId": "...", "deletedAt": 0}, ...]
            }

        Response:
            {
                "serverTime": 1700000000000,
                "idMappings": [{"tableName": "folders", "localId": 1, "localRef": 1,
                                "serverId": "..."}, ...]
            }
        """
        push_request = PushRequest.from_dict(_json_body())
        result = push_changes(db, push_request, clock=clock)
        return jsonify(result.to_dict()), 200

    @sync_bp.route("/pull", methods=["POST"])
    @sync_endpoint
    def pull() -> Tuple[Any, int]:
        """Get changes since the client's last pull.

        Request body:
            {"lastSyncAt": 1700000000000}

        Response:
            {
                "serverTime": ...,
                "changes": {"folders": [...], "snippets": [...], "snippetContents": [...],
                            "tags": [...], "snippetTags": [...]},
                "deletions": [{"tableName": "...", "recordId": "...", "deletedAt": ...}]
            }
        """
        pull_request = PullRequest.from_dict(_json_body())
        result = pull_changes(db, pull_request.last_sync_at, clock=clock)
        return jsonify(result.to_dict()), 200

    @sync_bp.route("/full", methods=["GET", "POST"])
    @sync_endpoint
    def full() -> Tuple[Any, int]:
        """Get the full dataset for an initial sync (same shape as pull)."""
        result = full_sync(db, clock=clock)
        return jsonify(result.to_dict()), 200

    @sync_bp.route("/status", methods=["GET"])
    @sync_endpoint
    def status() -> Tuple[Any, int]:
        """Get sync server status.

        Response:
            {
                "status": "ok",
                "protocolVersion": "1.0",
                "serverTime": ...,
                "counts": {"folders": 3, ...}
            }
        """
        return jsonify({
            "status": "ok",
            "protocolVersion": PROTOCOL_VERSION,
            "serverTime": clock(),
            "counts": db.get_counts(),
        }), 200

    return sync_bp

