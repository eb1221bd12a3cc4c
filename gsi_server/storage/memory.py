"""In-memory per-client baselines.

One slot per client id, each with its own lock, so pushes from one client are
serialized while different clients never wait on each other.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from gsi_server.game.snapshot import Snapshot


class StoreContention(Exception):
    """A commit raced another commit for the same client."""

    def __init__(self, client_id: str, expected: int, actual: int):
        super().__init__(f"client {client_id!r}: baseline generation {actual}, expected {expected}")
        self.client_id = client_id
        self.expected = expected
        self.actual = actual


class ClientBusy(Exception):
    def __init__(self, client_id: str, pending: int):
        super().__init__(f"client {client_id!r} has {pending} pushes pending")
        self.client_id = client_id
        self.pending = pending


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    baseline: Snapshot | None = None
    generation: int = 0
    pending: int = 0
    updated_at: float = 0.0


@dataclass(frozen=True)
class Lease:
    client_id: str
    baseline: Snapshot | None
    generation: int


class SnapshotStore:
    def __init__(self, max_pending: int = 8):
        self.max_pending = int(max_pending)
        self._slots: dict[str, _Slot] = {}

    def __len__(self) -> int:
        return sum(1 for s in self._slots.values() if s.baseline is not None)

    def _slot(self, client_id: str) -> _Slot:
        slot = self._slots.get(client_id)
        if slot is None:
            slot = _Slot()
            self._slots[client_id] = slot
        return slot

    def get_baseline(self, client_id: str) -> Snapshot | None:
        slot = self._slots.get(client_id)
        return slot.baseline if slot else None

    def commit(self, client_id: str, snapshot: Snapshot, *, generation: int | None = None) -> int:
        slot = self._slot(client_id)
        if generation is not None and generation != slot.generation:
            raise StoreContention(client_id, expected=generation, actual=slot.generation)
        slot.baseline = snapshot
        slot.generation += 1
        slot.updated_at = time.time()
        return slot.generation

    @asynccontextmanager
    async def lease(self, client_id: str) -> AsyncIterator[Lease]:
        """Hold the client's lock; yields the baseline to diff against."""
        slot = self._slot(client_id)
        if self.max_pending > 0 and slot.pending >= self.max_pending:
            raise ClientBusy(client_id, slot.pending)
        slot.pending += 1
        try:
            async with slot.lock:
                yield Lease(client_id=client_id, baseline=slot.baseline, generation=slot.generation)
        finally:
            slot.pending -= 1

    def forget(self, client_id: str) -> None:
        slot = self._slots.get(client_id)
        # A client mid-push keeps its slot; dropping it would split the lock.
        if slot and slot.pending == 0:
            self._slots.pop(client_id, None)

    def clients(self) -> list[str]:
        return [cid for cid, s in self._slots.items() if s.baseline is not None]

    def stats(self) -> dict[str, dict]:
        return {
            cid: {"generation": s.generation, "pending": s.pending, "updatedAt": s.updated_at}
            for cid, s in self._slots.items()
        }
