from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")

CacheKey = tuple[str, str]  # (resource, session_id)


@dataclass(slots=True)
class _Entry(Generic[T]):
    value: T
    stale: bool = False


class QueryCache:
    """Client-side read cache keyed by (resource, session_id).

    Invalidation only marks an entry stale; the next `get` re-fetches.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, _Entry[Any]] = {}

    async def get(self, resource: str, session_id: str, fetch: Callable[[], Awaitable[T]]) -> T:
        key = (resource, session_id)
        entry = self._entries.get(key)
        if entry is not None and not entry.stale:
            return entry.value

        value = await fetch()
        self._entries[key] = _Entry(value=value)
        return value

    def invalidate(self, resource: str, session_id: str) -> None:
        entry = self._entries.get((resource, session_id))
        if entry is not None:
            entry.stale = True

    def is_fresh(self, resource: str, session_id: str) -> bool:
        entry = self._entries.get((resource, session_id))
        return entry is not None and not entry.stale


@dataclass(slots=True)
class _Patch:
    fields: dict[str, Any]
    # Overlay sequence number at confirmation; None while the write is in flight.
    confirmed_at: int | None = None


@dataclass(slots=True)
class PendingOverlay:
    """Optimistic local edits layered over authoritative rows, keyed by entity id.

    Lifecycle of a patch: `apply` before the write is sent, then `confirm` when
    the store accepted it or `rollback` when it failed. Confirmed patches are
    dropped by `reconcile` once an authoritative read that started after the
    confirmation lands; take a `mark()` before fetching and pass it along.
    """

    key_field: str = "id"
    _patches: dict[str, _Patch] = field(default_factory=dict)
    _seq: int = 0

    def apply(self, entity_id: str, fields: dict[str, Any]) -> None:
        patch = self._patches.get(entity_id)
        if patch is None:
            self._patches[entity_id] = _Patch(fields=dict(fields))
        else:
            patch.fields.update(fields)
            patch.confirmed_at = None

    def confirm(self, entity_id: str) -> None:
        patch = self._patches.get(entity_id)
        if patch is not None:
            self._seq += 1
            patch.confirmed_at = self._seq

    def rollback(self, entity_id: str) -> None:
        self._patches.pop(entity_id, None)

    def pending(self, entity_id: str) -> bool:
        return entity_id in self._patches

    def mark(self) -> int:
        return self._seq

    def reconcile(self, *, fetched_after: int) -> None:
        """Forget patches confirmed at or before `fetched_after` (a `mark()` taken before the read)."""

        stale = [
            k for k, p in self._patches.items() if p.confirmed_at is not None and p.confirmed_at <= fetched_after
        ]
        for entity_id in stale:
            del self._patches[entity_id]

    def view(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for row in rows:
            patch = self._patches.get(str(row.get(self.key_field)))
            out.append({**row, **patch.fields} if patch is not None else row)
        return out
