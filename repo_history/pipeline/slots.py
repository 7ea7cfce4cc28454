from __future__ import annotations

import queue


class SlotTracker:
    """Hands out worker slot numbers ``0..max_slots-1``.

    A slot is held for the duration of one repository scan so that its
    progress line belongs to exactly one worker at a time. ``acquire`` blocks
    while every slot is taken.
    """

    def __init__(self, max_slots: int) -> None:
        if max_slots < 1:
            raise ValueError(f"max_slots must be positive, got {max_slots}")
        self.max_slots = max_slots
        self._available: queue.LifoQueue[int] = queue.LifoQueue()
        for slot in reversed(range(max_slots)):
            self._available.put(slot)

    def acquire(self) -> int:
        return self._available.get()

    def release(self, slot: int) -> None:
        self._available.put(slot)
