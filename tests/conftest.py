"""
Shared fixtures. mongomock stands in for the MongoDB server; the clock is
frozen and moved by hand so expiry is deterministic.

Run with:  pytest tests/ -v
"""
from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from assets import StoredAsset
from config import Settings
from errors import AssetStoreError, NotFoundError
from marketplace import Marketplace
from schemas import Role


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAssetStore:
    def __init__(self):
        self.files = {}
        self.released = []
        self.fail_store = False
        self.fail_release = False
        self._next = 0

    def store(self, raw, filename=None, content_type=None):
        if self.fail_store:
            raise AssetStoreError("image store unreachable")
        self._next += 1
        external_id = f"img-{self._next}"
        self.files[external_id] = (raw, content_type or "application/octet-stream")
        return StoredAsset(reference=f"/assets/{external_id}", external_id=external_id)

    def release(self, external_id):
        if self.fail_release:
            raise AssetStoreError("image store unreachable")
        self.files.pop(external_id, None)
        self.released.append(external_id)

    def open(self, external_id):
        if external_id not in self.files:
            raise NotFoundError("asset", external_id)
        return self.files[external_id]


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db():
    return mongomock.MongoClient().auction


@pytest.fixture
def assets():
    return FakeAssetStore()


@pytest.fixture
def settings():
    return Settings(reconciler_enabled=False)


@pytest.fixture
def market(db, settings, assets, clock):
    return Marketplace(db, settings, assets=assets, clock=clock)


@pytest.fixture
def artist(market):
    return market.users.upsert("artist-1", "ada@example.com", "Ada", role=Role.ARTIST)


@pytest.fixture
def other_artist(market):
    return market.users.upsert("artist-2", "otto@example.com", "Otto", role=Role.ARTIST)


@pytest.fixture
def bidder(market):
    return market.users.upsert("bidder-1", "bea@example.com", "Bea")


@pytest.fixture
def other_bidder(market):
    return market.users.upsert("bidder-2", "cal@example.com", "Cal")


@pytest.fixture
def admin(market):
    return market.users.upsert("admin-1", "root@example.com", "Root", role=Role.ADMIN)


@pytest.fixture
def make_listing(market, artist, clock):
    counter = {"n": 0}

    def _make(starting_price="100.00", hours=1, owner=None, title=None, **overrides):
        counter["n"] += 1
        fields = dict(
            owner_id=(owner or artist).id,
            title=title or f"Sunset {counter['n']}",
            description="Oil on canvas",
            category="painting",
            starting_price=starting_price,
            end_time=clock() + timedelta(hours=hours),
            image_ref=f"/assets/img-{counter['n']}",
            image_external_id=f"img-{counter['n']}",
        )
        fields.update(overrides)
        return market.listings.create(**fields)

    return _make
