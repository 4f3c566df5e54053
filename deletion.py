"""
Listing removal and account teardown.

Deletion always runs children first: watchlist rows and bids, then the
listings they point at, then the owning user. Stopping at any point leaves
nothing that refers to a record that is already gone.
"""

import logging
from typing import Any, Dict, List

from bids import BidRepository
from database import utcnow
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from listings import ListingRepository
from locks import ListingLocks
from schemas import Listing, ListingStatus, Role, User
from users import UserRepository
from watchlist import WatchlistRepository

log = logging.getLogger(__name__)


class DeletionService:
    def __init__(
        self,
        users: UserRepository,
        listings: ListingRepository,
        bids: BidRepository,
        locks: ListingLocks,
        watchlist: WatchlistRepository,
        clock=utcnow,
    ):
        self._users = users
        self._listings = listings
        self._bids = bids
        self._watchlist = watchlist
        self._locks = locks
        self._clock = clock

    def _blocks_deletion(self, listing: Listing, bid_count: int) -> bool:
        """An open auction with bids cannot be pulled out from under its bidders."""
        return (
            listing.status == ListingStatus.ACTIVE
            and self._clock() < listing.end_time
            and bid_count > 0
        )

    # ------------------------------------------------------------------
    # Single listing
    # ------------------------------------------------------------------

    def delete_listing(self, listing_id: str, actor: User) -> None:
        """
        Owners may delete a live, bid-free listing; admins may delete anything.

        Runs under the listing lock, so no bid can land between the
        eligibility check and the delete.
        """
        with self._locks.hold(listing_id):
            listing = self._listings.get(listing_id)
            if listing is None:
                raise NotFoundError("listing", listing_id)

            if actor.role == Role.ADMIN:
                log.info("Admin %s force-deleting listing %s", actor.id, listing_id)
            elif listing.owner_id != actor.id:
                raise ForbiddenError("You can only delete your own listings")
            else:
                self._check_owner_may_delete(listing)

            self._watchlist.delete_for_listing(listing_id)
            self._bids.delete_for_listing(listing_id)
            self._listings.delete(listing_id)

    def _check_owner_may_delete(self, listing: Listing) -> None:
        if listing.status != ListingStatus.ACTIVE:
            raise ConflictError(f"Cannot delete a listing that is {listing.status.value}")
        if self._clock() >= listing.end_time:
            raise ConflictError("Cannot delete a listing after its auction has ended")
        bid_count = self._bids.count_for_listing(listing.id)
        if bid_count > 0:
            raise ConflictError(
                "Cannot delete a listing with existing bids",
                blocking=[{"id": listing.id, "title": listing.title, "bids_count": bid_count}],
            )

    # ------------------------------------------------------------------
    # Whole account
    # ------------------------------------------------------------------

    def delete_account(self, user_id: str, force: bool = False) -> Dict[str, int]:
        """
        Remove a user together with their bids and listings.

        Without ``force`` the whole operation is refused, before anything is
        deleted, if any owned listing is an open auction with bids.
        """
        log.info("Starting account deletion for user %s (force: %s)", user_id, force)
        owned = self._listings.list_by_owner(user_id)

        with self._locks.hold_many(listing.id for listing in owned):
            # re-read under the locks; a listing may have been created or removed meanwhile
            owned = self._listings.list_by_owner(user_id)
            if not force:
                blocking = self._blocking_listings(owned)
                if blocking:
                    log.info("Refusing to delete user %s: %d active listing(s) with bids", user_id, len(blocking))
                    raise ConflictError(
                        "Cannot delete account while active listings have bids",
                        blocking=blocking,
                    )
            counts = self._cascade(user_id, owned)

        log.info("Deleted account %s: %s", user_id, counts)
        return counts

    def admin_delete_account(self, admin: User, user_id: str) -> Dict[str, int]:
        if admin.role != Role.ADMIN:
            raise ForbiddenError("Admin access required")
        if admin.id == user_id:
            raise ValidationError("Admins cannot delete their own account through the admin route")
        if self._users.get(user_id) is None:
            raise NotFoundError("user", user_id)
        return self.delete_account(user_id, force=True)

    def _blocking_listings(self, owned: List[Listing]) -> List[Dict[str, Any]]:
        blocking = []
        for listing in owned:
            bid_count = self._bids.count_for_listing(listing.id)
            if self._blocks_deletion(listing, bid_count):
                blocking.append({"id": listing.id, "title": listing.title, "bids_count": bid_count})
        return blocking

    def _cascade(self, user_id: str, owned: List[Listing]) -> Dict[str, int]:
        counts = {"watchlist": 0, "bids_placed": 0, "bids_received": 0, "listings": 0, "users": 0}
        counts["watchlist"] = self._watchlist.delete_for_user(user_id)
        for listing in owned:
            counts["watchlist"] += self._watchlist.delete_for_listing(listing.id)
        counts["bids_placed"] = self._bids.delete_for_bidder(user_id)
        for listing in owned:
            counts["bids_received"] += self._bids.delete_for_listing(listing.id)
        for listing in owned:
            if self._listings.delete(listing.id):
                counts["listings"] += 1
        counts["users"] = int(self._users.delete(user_id))
        return counts
