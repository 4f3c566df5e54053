import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from assets import AssetStore
from database import (
    LISTINGS,
    NEWEST_FIRST,
    USERS,
    create_document,
    from_storage_time,
    parse_object_id,
    to_storage_time,
    user_summaries,
    utcnow,
)
from errors import InvalidTransitionError, NotFoundError, ValidationError
from money import as_cents, from_cents, to_cents
from schemas import Listing, ListingStatus, TRANSITIONS

log = logging.getLogger(__name__)


def _required_text(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name.capitalize()} is required", field=name)
    return str(value).strip()


class ListingRepository:
    """
    Source of truth for listings and their stored current price.

    Reads return what is stored; the price is never recomputed from bids.
    """

    def __init__(self, db: Database, assets: Optional[AssetStore] = None, clock=utcnow):
        self._db = db
        self._listings = db[LISTINGS]
        self._users = db[USERS]
        self._assets = assets
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        title: str,
        description: str,
        category: str,
        starting_price,
        end_time: datetime,
        image_ref: str,
        image_external_id: Optional[str] = None,
        auction_start: Optional[datetime] = None,
    ) -> Listing:
        """Insert a new ACTIVE listing whose current price equals its starting price."""
        title = _required_text("title", title)
        description = _required_text("description", description)
        category = _required_text("category", category)
        image_ref = _required_text("image", image_ref)

        cents = to_cents(starting_price)
        if cents <= 0:
            raise ValidationError("Starting price must be greater than zero", field="starting_price")

        now = self._clock()
        if end_time is None:
            raise ValidationError("End time is required", field="end_time")
        if to_storage_time(end_time) <= to_storage_time(now):
            raise ValidationError("End time must be in the future", field="end_time")

        stamp = to_storage_time(now)
        doc = {
            "title": title,
            "description": description,
            "category": category,
            "image_ref": image_ref,
            "image_external_id": image_external_id,
            "starting_price_cents": cents,
            "current_price_cents": cents,
            "status": ListingStatus.ACTIVE.value,
            "auction_start": to_storage_time(auction_start) or stamp,
            "end_time": to_storage_time(end_time),
            "is_active": True,
            "owner_id": owner_id,
            "created_at": stamp,
            "updated_at": stamp,
        }
        doc["_id"] = parse_object_id(create_document(self._db, LISTINGS, doc))
        log.info("Listing %s created by %s starting at %s", doc["_id"], owner_id, from_cents(cents))
        return self._to_listing(doc)

    def update_price(self, listing_id: str, new_price, expected_price=None, session=None) -> bool:
        """
        Set the current price in one atomic document update.

        The price never drops below the starting price. With
        ``expected_price`` the write only lands if the stored price still
        equals it and the listing is still ACTIVE (compare-and-swap). Returns
        whether the document changed.
        """
        oid = parse_object_id(listing_id)
        if oid is None:
            return False
        new_cents = as_cents(new_price)
        query: Dict[str, Any] = {"_id": oid, "starting_price_cents": {"$lte": new_cents}}
        if expected_price is not None:
            query["current_price_cents"] = as_cents(expected_price)
            query["status"] = ListingStatus.ACTIVE.value
        result = self._listings.update_one(
            query,
            {"$set": {
                "current_price_cents": new_cents,
                "updated_at": to_storage_time(self._clock()),
            }},
            session=session,
        )
        return result.modified_count == 1

    def update_status(self, listing_id: str, new_status) -> Listing:
        """Move a listing forward through its lifecycle; anything else is rejected."""
        new_status = ListingStatus(new_status)
        allowed_from = [s.value for s, nxt in TRANSITIONS.items() if new_status in nxt]
        oid = parse_object_id(listing_id)
        doc = None
        if oid is not None and allowed_from:
            doc = self._listings.find_one_and_update(
                {"_id": oid, "status": {"$in": allowed_from}},
                {"$set": {"status": new_status.value, "updated_at": to_storage_time(self._clock())}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is not None:
            log.info("Listing %s -> %s", listing_id, new_status.value)
            return self._to_listing(doc)

        current = self._listings.find_one({"_id": oid}, {"status": 1}) if oid is not None else None
        if current is None:
            raise NotFoundError("listing", listing_id)
        log.warning("Refusing %s -> %s for listing %s", current["status"], new_status.value, listing_id)
        raise InvalidTransitionError(listing_id, current["status"], new_status.value)

    def set_visibility(self, listing_id: str, is_active: bool) -> Listing:
        oid = parse_object_id(listing_id)
        doc = None
        if oid is not None:
            doc = self._listings.find_one_and_update(
                {"_id": oid},
                {"$set": {"is_active": bool(is_active), "updated_at": to_storage_time(self._clock())}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("listing", listing_id)
        return self._with_owners([doc])[0]

    def delete(self, listing_id: str) -> bool:
        """
        Remove the listing document, then release its image.

        Releasing the image is best effort: a failure is logged for manual
        cleanup and the deletion stands.
        """
        oid = parse_object_id(listing_id)
        if oid is None:
            return False
        doc = self._listings.find_one_and_delete({"_id": oid})
        if doc is None:
            return False
        log.info("Listing %s deleted", listing_id)

        external_id = doc.get("image_external_id")
        if external_id and self._assets is not None:
            try:
                self._assets.release(external_id)
            except Exception:
                log.exception(
                    "Could not release image %s of deleted listing %s; clean up manually",
                    external_id,
                    listing_id,
                )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, listing_id: str) -> Optional[Listing]:
        oid = parse_object_id(listing_id)
        if oid is None:
            return None
        doc = self._listings.find_one({"_id": oid})
        if doc is None:
            return None
        return self._with_owners([doc])[0]

    def list(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Listing]:
        """Visible listings, optionally by category and title/description text, newest first."""
        query: Dict[str, Any] = {"is_active": True}
        if category:
            query["category"] = category
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"description": pattern}]
        return self._with_owners(self._listings.find(query).sort(NEWEST_FIRST))

    def list_by_owner(self, owner_id: str) -> List[Listing]:
        return self._with_owners(self._listings.find({"owner_id": owner_id}).sort(NEWEST_FIRST))

    def list_all(self) -> List[Listing]:
        return self._with_owners(self._listings.find().sort(NEWEST_FIRST))

    def find_expired(self, now: datetime) -> List[Listing]:
        cursor = self._listings.find({
            "status": ListingStatus.ACTIVE.value,
            "end_time": {"$lt": to_storage_time(now)},
        }).sort("end_time", 1)
        return [self._to_listing(doc) for doc in cursor]

    def count(self) -> int:
        return self._listings.count_documents({})

    def sold_revenue_cents(self) -> int:
        rows = list(self._listings.aggregate([
            {"$match": {"status": ListingStatus.SOLD.value}},
            {"$group": {"_id": None, "total": {"$sum": "$current_price_cents"}}},
        ]))
        return rows[0]["total"] if rows else 0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _with_owners(self, docs) -> List[Listing]:
        docs = list(docs)
        owners = user_summaries(self._users, (d["owner_id"] for d in docs))
        return [self._to_listing(d, owners.get(d["owner_id"])) for d in docs]

    @staticmethod
    def _to_listing(doc: Dict[str, Any], owner: Optional[Dict[str, Any]] = None) -> Listing:
        return Listing(
            id=str(doc["_id"]),
            title=doc["title"],
            description=doc["description"],
            category=doc.get("category"),
            image_ref=doc["image_ref"],
            image_external_id=doc.get("image_external_id"),
            starting_price_cents=doc["starting_price_cents"],
            current_price_cents=doc["current_price_cents"],
            status=doc["status"],
            auction_start=from_storage_time(doc.get("auction_start")),
            end_time=from_storage_time(doc["end_time"]),
            is_active=doc.get("is_active", True),
            owner_id=doc["owner_id"],
            created_at=from_storage_time(doc["created_at"]),
            updated_at=from_storage_time(doc["updated_at"]),
            owner=owner,
        )
