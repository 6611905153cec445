"""Frozen results of bulk operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class InsertManyResult:
    """Ids in the order chunks completed (rows as tuples for tables)."""

    inserted_ids: tuple[Any, ...] = ()

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int = 0


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Any = None


__all__ = ["InsertManyResult", "DeleteResult", "UpdateResult"]
