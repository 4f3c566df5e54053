"""
Bid acceptance.

Every bid runs read-validate-commit while holding its listing's lock, so
two bids in this process never judge themselves against the same price.
The price write is also a compare-and-swap on the value that was read,
which keeps separate processes honest: the loser sees no change, rolls
its bid back and is re-validated against the fresh price.
"""

import logging
from typing import Optional

from pymongo.database import Database

from bids import BidRepository
from database import unit_of_work, utcnow
from errors import (
    AuctionClosedError,
    BidTooLowError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from listings import ListingRepository
from locks import ListingLocks
from money import to_cents
from notifications import NotificationSink
from schemas import Bid, BidEvent, Listing, ListingStatus

log = logging.getLogger(__name__)

# Attempts against a price that keeps moving under us from another process
_MAX_COMMIT_ATTEMPTS = 3


class _PriceMoved(Exception):
    """The stored price no longer matches the snapshot the bid was validated against."""


class BidAcceptance:
    def __init__(
        self,
        db: Database,
        listings: ListingRepository,
        bids: BidRepository,
        locks: ListingLocks,
        sink: Optional[NotificationSink] = None,
        clock=utcnow,
        transactions: bool = False,
    ):
        self._db = db
        self._listings = listings
        self._bids = bids
        self._locks = locks
        self._sink = sink
        self._clock = clock
        self._transactions = transactions

    def place_bid(self, listing_id: str, bidder_id: str, amount) -> Bid:
        """
        Validate and commit one bid.

        Raises NotFoundError, AuctionClosedError or BidTooLowError without
        side effects; a rejected bid can simply be retried with a new amount.
        """
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            raise ValidationError("Bid amount must be greater than zero", field="amount")

        with self._locks.hold(listing_id):
            bid = self._accept(listing_id, bidder_id, amount_cents)

        log.info("Bid %s of %s accepted on listing %s from %s", bid.id, bid.amount, listing_id, bidder_id)
        self._notify(bid)
        return bid

    def _accept(self, listing_id: str, bidder_id: str, amount_cents: int) -> Bid:
        for attempt in range(1, _MAX_COMMIT_ATTEMPTS + 1):
            listing = self._listings.get(listing_id)
            self._validate(listing_id, listing, amount_cents)
            try:
                return self._commit(listing, bidder_id, amount_cents)
            except _PriceMoved:
                log.warning(
                    "Listing %s changed during commit (attempt %d/%d), re-validating",
                    listing_id,
                    attempt,
                    _MAX_COMMIT_ATTEMPTS,
                )
        raise ConflictError(f"Listing {listing_id} is changing too quickly, try again")

    def _validate(self, listing_id: str, listing: Optional[Listing], amount_cents: int) -> None:
        if listing is None:
            raise NotFoundError("listing", listing_id)
        # status alone lags by up to one reconciler interval, so check the clock too
        if listing.status != ListingStatus.ACTIVE or self._clock() >= listing.end_time:
            raise AuctionClosedError(listing_id, listing.status.value)
        if amount_cents <= listing.current_price_cents:
            raise BidTooLowError(listing_id, listing.current_price)

    def _commit(self, listing: Listing, bidder_id: str, amount_cents: int) -> Bid:
        # the bid stays invisible to readers until the price swap has landed
        with unit_of_work(self._db, self._transactions) as uow:
            bid = self._bids.append(listing.id, bidder_id, amount_cents, session=uow.session, provisional=True)
            uow.on_rollback(lambda: self._bids.remove(bid.id))
            swapped = self._listings.update_price(
                listing.id,
                amount_cents,
                expected_price=listing.current_price_cents,
                session=uow.session,
            )
            if not swapped:
                raise _PriceMoved()
            uow.on_rollback(lambda: self._listings.update_price(
                listing.id,
                listing.current_price_cents,
                expected_price=amount_cents,
            ))
            self._bids.confirm(bid.id, session=uow.session)
        return bid

    def _notify(self, bid: Bid) -> None:
        if self._sink is None:
            return
        try:
            self._sink.publish(BidEvent(listing_id=bid.listing_id, bid=bid))
        except Exception:
            log.exception("Could not publish bid %s on listing %s", bid.id, bid.listing_id)
