from typing import Optional

from pymongo.database import Database

from assets import AssetStore, GridFSAssetStore
from bidding import BidAcceptance
from bids import BidRepository
from config import Settings
from database import utcnow
from deletion import DeletionService
from identity import GatewayIdentityProvider, IdentityProvider
from listings import ListingRepository
from locks import ListingLocks
from notifications import NotificationHub
from publishing import ListingPublisher
from reconciler import ExpirationReconciler
from stats import StatsService
from users import UserRepository
from watchlist import WatchlistRepository


class Marketplace:
    """Repositories and services sharing one database, one lock table and one clock."""

    def __init__(
        self,
        db: Database,
        settings: Optional[Settings] = None,
        assets: Optional[AssetStore] = None,
        identity: Optional[IdentityProvider] = None,
        clock=utcnow,
    ):
        settings = settings or Settings()
        self.db = db
        self.settings = settings
        self.clock = clock

        self.assets = assets if assets is not None else GridFSAssetStore(db, base_url=settings.asset_base_url)
        self.identity = identity if identity is not None else GatewayIdentityProvider()
        self.notifications = NotificationHub()
        self.locks = ListingLocks()

        self.users = UserRepository(db, clock=clock)
        self.listings = ListingRepository(db, assets=self.assets, clock=clock)
        self.bids = BidRepository(db, clock=clock)
        self.watchlist = WatchlistRepository(db, self.listings, self.locks, clock=clock)

        self.bidding = BidAcceptance(
            db,
            self.listings,
            self.bids,
            self.locks,
            sink=self.notifications,
            clock=clock,
            transactions=settings.mongo_transactions,
        )
        self.reconciler = ExpirationReconciler(
            self.listings,
            self.bids,
            self.locks,
            interval=settings.reconcile_interval_seconds,
            clock=clock,
        )
        self.deletion = DeletionService(
            self.users, self.listings, self.bids, self.locks, self.watchlist, clock=clock
        )
        self.publisher = ListingPublisher(self.listings, self.assets, max_image_bytes=settings.max_image_bytes)
        self.stats = StatsService(self.users, self.listings, self.bids)
