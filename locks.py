import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class ListingLocks:
    """
    One mutex per listing id.

    Entries are reference counted and dropped once nobody holds or waits
    for them, so the table only ever contains listings currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _acquire_entry(self, listing_id: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(listing_id)
            if entry is None:
                entry = self._entries[listing_id] = _Entry()
            entry.holders += 1
            return entry

    def _release_entry(self, listing_id: str, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[listing_id]

    @contextmanager
    def hold(self, listing_id: str) -> Iterator[None]:
        entry = self._acquire_entry(listing_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(listing_id, entry)

    @contextmanager
    def hold_many(self, listing_ids: Iterable[str]) -> Iterator[None]:
        """Lock several listings at once, always in sorted order."""
        ordered = sorted(set(listing_ids))
        taken = []
        try:
            for listing_id in ordered:
                entry = self._acquire_entry(listing_id)
                taken.append((listing_id, entry))
                entry.lock.acquire()
            yield
        finally:
            for listing_id, entry in reversed(taken):
                entry.lock.release()
                self._release_entry(listing_id, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
