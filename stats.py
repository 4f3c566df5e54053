from bids import BidRepository
from listings import ListingRepository
from money import from_cents
from schemas import AdminStats, PublicStats, Role
from users import UserRepository


class StatsService:
    """
    Marketplace counters.

    Revenue only counts listings that actually sold, at their final price.
    The sum of every bid is reported separately as bid volume.
    """

    def __init__(self, users: UserRepository, listings: ListingRepository, bids: BidRepository):
        self._users = users
        self._listings = listings
        self._bids = bids

    def public(self) -> PublicStats:
        return PublicStats(
            total_listings=self._listings.count(),
            total_artists=self._users.count(Role.ARTIST),
            total_sales=from_cents(self._listings.sold_revenue_cents()),
            total_collectors=self._bids.distinct_bidders(),
        )

    def admin(self) -> AdminStats:
        return AdminStats(
            total_users=self._users.count(),
            total_listings=self._listings.count(),
            total_bids=self._bids.count(),
            total_revenue=from_cents(self._listings.sold_revenue_cents()),
            total_bid_volume=from_cents(self._bids.total_volume_cents()),
        )
