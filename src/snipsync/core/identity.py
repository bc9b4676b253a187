"""Server identity assignment for records created offline.

A client creates records under local references that mean nothing outside
that device. During a push the server mints a permanent ID for each new
record and reports the (table, local reference) -> ID pairs back so the
client can rewrite its local copies.

An IdentityAssigner lives for exactly one push. It never writes entities;
the merge engine inserts the record under the ID it was given.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Set, Tuple, Union

from uuid6 import uuid7

from .validation import ValidationError

logger = logging.getLogger(__name__)

LocalId = Union[int, str]


def new_id() -> str:
    """Mint a new permanent ID (time-ordered UUID7 string)."""
    return str(uuid7())


@dataclass(frozen=True)
class IdMapping:
    """Pairs a client's local reference with the permanent ID it became."""

    table_name: str
    local_id: LocalId
    server_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableName": self.table_name,
            "localId": self.local_id,
            "localRef": self.local_id,
            "serverId": self.server_id,
        }


class IdentityAssigner:
    """Mints permanent IDs and records the mappings of one exchange."""

    def __init__(self, id_factory: Callable[[], str] = new_id) -> None:
        self._id_factory = id_factory
        self._mappings: List[IdMapping] = []
        self._seen: Set[Tuple[str, LocalId]] = set()

    def assign(self, table_name: str, local_id: LocalId) -> str:
        """Mint a permanent ID for a new record.

        Args:
            table_name: Canonical table name of the new record
            local_id: The client's local reference

        Returns:
            The new permanent ID

        Raises:
            ValidationError: If the local reference was already used for the
                same table in this exchange
        """
        key = (table_name, local_id)
        if key in self._seen:
            raise ValidationError(
                f"{table_name}.localId",
                f"duplicate local reference {local_id!r} in one push",
            )
        self._seen.add(key)

        server_id = self._id_factory()
        self._mappings.append(IdMapping(table_name, local_id, server_id))
        logger.debug(f"Assigned {server_id} to {table_name} local {local_id!r}")
        return server_id

    @property
    def mappings(self) -> List[IdMapping]:
        """Mappings in the order they were assigned."""
        return list(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)
