"""Sync client for the SnipSync push/pull protocol.

This module provides the client side of the protocol, allowing a device to:
- Check connectivity and read the server clock
- Push local creates, updates and deletions
- Pull changes since its last pull, or the full dataset

The client holds no replica of its own. Callers build push payloads from
their local store and apply the pulled changes and ID mappings themselves.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["SyncClient", "SyncClientError", "SyncResult"]


class SyncClientError(Exception):
    """Raised when a request fails in transport or the server rejects it.

    Attributes:
        status_code: HTTP status, or None if the server was not reached
        message: Error message (the server's "error" field when available)
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class SyncResult:
    """Result of one push-then-pull exchange."""

    success: bool
    id_mappings: List[Dict[str, Any]] = field(default_factory=list)
    changes: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    deletions: List[Dict[str, Any]] = field(default_factory=list)
    server_time: Optional[int] = None
    errors: List[str] = field(default_factory=list)

    @property
    def pulled(self) -> int:
        return sum(len(records) for records in self.changes.values())


class SyncClient:
    """Client for a SnipSync server.

    Attributes:
        server_url: Base URL of the server, e.g. http://127.0.0.1:8384
        api_key: API key sent as X-API-Key (None if the server needs none)
        timeout: Request timeout in seconds
    """

    def __init__(
        self, server_url: str, api_key: Optional[str] = None, timeout: int = 30
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def ping(self) -> int:
        """Check connectivity.

        Returns:
            The server clock (ms)
        """
        return self._make_request("/api/sync/ping", method="POST", data={})["serverTime"]

    def push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Push local changes.

        Args:
            payload: {"changes": {...}, "deletions": [...]}

        Returns:
            {"serverTime": ..., "idMappings": [...]}
        """
        return self._make_request("/api/sync/push", method="POST", data=payload)

    def pull(self, last_sync_at: int = 0) -> Dict[str, Any]:
        """Pull changes since a watermark.

        Args:
            last_sync_at: serverTime of the previous pull (0 for everything)

        Returns:
            {"serverTime": ..., "changes": {...}, "deletions": [...]}
        """
        return self._make_request(
            "/api/sync/pull", method="POST", data={"lastSyncAt": last_sync_at}
        )

    def full(self) -> Dict[str, Any]:
        """Get the complete dataset for an initial sync."""
        return self._make_request("/api/sync/full", method="POST", data={})

    def status(self) -> Dict[str, Any]:
        """Get server status and row counts."""
        return self._make_request("/api/sync/status", method="GET")

    def sync(self, payload: Optional[Dict[str, Any]], last_sync_at: int = 0) -> SyncResult:
        """Push local changes, then pull remote ones.

        Pushing first means the pull already reflects this device's own
        changes merged with everyone else's. If the push fails the pull is
        skipped, so the caller retries the whole exchange with the same
        watermark.

        Args:
            payload: Push body, or None if there is nothing to push
            last_sync_at: serverTime of the previous successful pull

        Returns:
            SyncResult; use result.server_time as the next last_sync_at
            only if result.success is True
        """
        result = SyncResult(success=True)

        if payload is not None:
            try:
                push_response = self.push(payload)
                result.id_mappings = push_response.get("idMappings", [])
            except SyncClientError as e:
                logger.error(f"Push to {self.server_url} failed: {e.message}")
                result.success = False
                result.errors.append(f"Push failed: {e.message}")
                return result

        try:
            pull_response = self.pull(last_sync_at)
        except SyncClientError as e:
            logger.error(f"Pull from {self.server_url} failed: {e.message}")
            result.success = False
            result.errors.append(f"Pull failed: {e.message}")
            return result

        result.changes = pull_response.get("changes", {})
        result.deletions = pull_response.get("deletions", [])
        result.server_time = pull_response.get("serverTime")
        logger.info(
            f"Sync with {self.server_url}: {len(result.id_mappings)} IDs assigned, "
            f"{result.pulled} records and {len(result.deletions)} deletions pulled"
        )
        return result

    def _make_request(
        self, path: str, method: str = "GET", data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Make an HTTP request to the server.

        Args:
            path: URL path starting with /
            method: HTTP method
            data: JSON body to send

        Returns:
            Decoded JSON response

        Raises:
            SyncClientError: On connection failure, non-2xx status or a
                body that is not a JSON object
        """
        url = f"{self.server_url}{path}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        body = None
        if data is not None:
            body = json.dumps(data).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = urllib.request.Request(url, data=body, method=method, headers=headers)

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_msg = f"HTTP {e.code}: {e.reason}"
            try:
                error_data = json.loads(e.read().decode("utf-8"))
                if isinstance(error_data, dict) and error_data.get("error"):
                    error_msg = error_data["error"]
            except (ValueError, UnicodeDecodeError):
                pass
            logger.error(f"Request to {url} failed: {error_msg}")
            raise SyncClientError(error_msg, status_code=e.code) from e
        except urllib.error.URLError as e:
            error_msg = f"Connection failed to {url}: {e.reason}"
            logger.error(error_msg)
            raise SyncClientError(error_msg) from e
        except OSError as e:
            error_msg = f"Request to {url} failed: {e}"
            logger.error(error_msg)
            raise SyncClientError(error_msg) from e

        try:
            response_data = json.loads(raw)
        except ValueError as e:
            raise SyncClientError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(response_data, dict):
            raise SyncClientError(f"Unexpected response from {url}: expected a JSON object")
        return response_data
