import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import (
    BIDS,
    NEWEST_FIRST,
    USERS,
    from_storage_time,
    parse_object_id,
    to_storage_time,
    user_summaries,
    utcnow,
)
from errors import ValidationError
from money import as_cents
from schemas import Bid

log = logging.getLogger(__name__)

_COMMITTED = {"committed": True}


class BidRepository:
    """
    Append-only storage of bids.

    No price policy lives here: whether a bid may be placed is decided by
    the bid acceptance protocol before ``append`` is called. A provisional
    bid is stored but hidden from every read and count until ``confirm``.
    """

    def __init__(self, db: Database, clock=utcnow):
        self._bids = db[BIDS]
        self._users = db[USERS]
        self._clock = clock

    def append(self, listing_id: str, bidder_id: str, amount, session=None, provisional: bool = False) -> Bid:
        if not listing_id or not bidder_id:
            raise ValidationError("Bid needs a listing and a bidder")
        cents = as_cents(amount)
        if cents <= 0:
            raise ValidationError("Bid amount must be greater than zero", field="amount")
        stamp = to_storage_time(self._clock())
        doc = {
            "listing_id": listing_id,
            "bidder_id": bidder_id,
            "amount_cents": cents,
            "created_at": stamp,
            "committed": not provisional,
        }
        self._bids.insert_one(doc, session=session)
        return self._to_bid(doc)

    def list_for_listing(self, listing_id: str) -> List[Bid]:
        """Bids on a listing in commit order, newest first, with bidder details."""
        return self._with_bidders(self._bids.find({"listing_id": listing_id, **_COMMITTED}).sort(NEWEST_FIRST))

    def list_for_bidder(self, bidder_id: str) -> List[Bid]:
        cursor = self._bids.find({"bidder_id": bidder_id, **_COMMITTED}).sort(NEWEST_FIRST)
        return [self._to_bid(doc) for doc in cursor]

    def list_all(self) -> List[Bid]:
        return self._with_bidders(self._bids.find(_COMMITTED).sort(NEWEST_FIRST))

    def count_for_listing(self, listing_id: str) -> int:
        return self._bids.count_documents({"listing_id": listing_id, **_COMMITTED})

    def confirm(self, bid_id: str, session=None) -> bool:
        """Make a provisional bid visible."""
        oid = parse_object_id(bid_id)
        if oid is None:
            return False
        result = self._bids.update_one({"_id": oid}, {"$set": {"committed": True}}, session=session)
        return result.matched_count == 1

    def remove(self, bid_id: str) -> bool:
        """Drop a single bid; only used to undo an uncommitted bid."""
        oid = parse_object_id(bid_id)
        if oid is None:
            return False
        return self._bids.delete_one({"_id": oid}).deleted_count == 1

    def delete_for_listing(self, listing_id: str) -> int:
        deleted = self._bids.delete_many({"listing_id": listing_id}).deleted_count
        if deleted:
            log.info("Deleted %d bid(s) on listing %s", deleted, listing_id)
        return deleted

    def delete_for_bidder(self, bidder_id: str) -> int:
        deleted = self._bids.delete_many({"bidder_id": bidder_id}).deleted_count
        if deleted:
            log.info("Deleted %d bid(s) placed by %s", deleted, bidder_id)
        return deleted

    # Statistics

    def count(self) -> int:
        return self._bids.count_documents(_COMMITTED)

    def total_volume_cents(self) -> int:
        rows = list(self._bids.aggregate([
            {"$match": _COMMITTED},
            {"$group": {"_id": None, "total": {"$sum": "$amount_cents"}}},
        ]))
        return rows[0]["total"] if rows else 0

    def distinct_bidders(self) -> int:
        return len(self._bids.distinct("bidder_id", _COMMITTED))

    # ------------------------------------------------------------------

    def _with_bidders(self, docs) -> List[Bid]:
        docs = list(docs)
        bidders = user_summaries(self._users, (d["bidder_id"] for d in docs))
        return [self._to_bid(d, bidders.get(d["bidder_id"])) for d in docs]

    @staticmethod
    def _to_bid(doc: Dict[str, Any], bidder: Optional[Dict[str, Any]] = None) -> Bid:
        return Bid(
            id=str(doc["_id"]),
            listing_id=doc["listing_id"],
            bidder_id=doc["bidder_id"],
            amount_cents=doc["amount_cents"],
            created_at=from_storage_time(doc["created_at"]),
            bidder=bidder,
        )
