import logging
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import NEWEST_FIRST, WATCHLIST, from_storage_time, to_storage_time, utcnow
from errors import NotFoundError
from listings import ListingRepository
from locks import ListingLocks
from schemas import WatchlistItem

log = logging.getLogger(__name__)


def _to_item(doc: Dict[str, Any]) -> WatchlistItem:
    return WatchlistItem(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        listing_id=doc["listing_id"],
        created_at=from_storage_time(doc["created_at"]),
    )


class WatchlistRepository:
    """
    Listings a user follows, one row per (user, listing).

    Adding takes the listing lock so a row is never written for a listing
    that is being deleted.
    """

    def __init__(self, db: Database, listings: ListingRepository, locks: ListingLocks, clock=utcnow):
        self._watchlist = db[WATCHLIST]
        self._listings = listings
        self._locks = locks
        self._clock = clock

    def add(self, user_id: str, listing_id: str) -> WatchlistItem:
        """Follow a listing; following it twice returns the existing row."""
        key = {"user_id": user_id, "listing_id": listing_id}
        with self._locks.hold(listing_id):
            if self._listings.get(listing_id) is None:
                raise NotFoundError("listing", listing_id)
            try:
                doc = self._watchlist.find_one_and_update(
                    key,
                    {"$setOnInsert": {"created_at": to_storage_time(self._clock())}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # concurrent add of the same pair won the insert
                doc = self._watchlist.find_one(key)
        log.info("User %s watching listing %s", user_id, listing_id)
        return _to_item(doc)

    def remove(self, user_id: str, listing_id: str) -> bool:
        return self._watchlist.delete_one({"user_id": user_id, "listing_id": listing_id}).deleted_count == 1

    def list_for_user(self, user_id: str) -> List[WatchlistItem]:
        return [_to_item(doc) for doc in self._watchlist.find({"user_id": user_id}).sort(NEWEST_FIRST)]

    def delete_for_user(self, user_id: str) -> int:
        return self._watchlist.delete_many({"user_id": user_id}).deleted_count

    def delete_for_listing(self, listing_id: str) -> int:
        return self._watchlist.delete_many({"listing_id": listing_id}).deleted_count
