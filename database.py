"""
MongoDB access helpers.

Collections follow the schemas convention: lowercase model name ("user",
"listing", "bid"). Timestamps are written as naive UTC because that is what
MongoDB hands back; ``from_storage_time`` restores the timezone on the way
out.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import Settings

log = logging.getLogger(__name__)

USERS = "user"
LISTINGS = "listing"
BIDS = "bid"
WATCHLIST = "watchlist"

# newest first, ObjectId breaks ties inside the same millisecond
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_storage_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def user_summaries(users: Collection, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Display fields (id, name, email) for a batch of users, keyed by id."""
    ids = list({uid for uid in user_ids if uid})
    if not ids:
        return {}
    return {
        doc["_id"]: {"id": doc["_id"], "name": doc.get("name"), "email": doc.get("email")}
        for doc in users.find({"_id": {"$in": ids}}, {"name": 1, "email": 1})
    }


def parse_object_id(value: str) -> Optional[ObjectId]:
    """ObjectId for a public id, or None when it cannot be one."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url) if settings.database_url else MongoClient()
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[LISTINGS].create_index([("status", ASCENDING), ("end_time", ASCENDING)])
    db[LISTINGS].create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
    db[LISTINGS].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])
    db[BIDS].create_index([("listing_id", ASCENDING), ("created_at", DESCENDING)])
    db[BIDS].create_index([("bidder_id", ASCENDING), ("created_at", DESCENDING)])
    db[WATCHLIST].create_index([("user_id", ASCENDING), ("listing_id", ASCENDING)], unique=True)
    db[WATCHLIST].create_index([("listing_id", ASCENDING)])
    log.info("Indexes ensured on %s", db.name)


def create_document(db: Database, collection_name: str, data, session=None) -> str:
    """Insert a model or dict, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = to_storage_time(utcnow())
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    result = db[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort=None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class UnitOfWork:
    """
    A group of writes that become visible together or not at all.

    With transactions enabled every write passes ``session`` and MongoDB
    does the rollback. Without them (standalone servers) each write
    registers an undo step through ``on_rollback`` which runs in reverse
    order if the block raises.
    """

    def __init__(self, session=None):
        self.session = session
        self._undo: List[Callable[[], Any]] = []

    def on_rollback(self, step: Callable[[], Any]) -> None:
        if self.session is None:
            self._undo.append(step)

    def rollback(self) -> None:
        for step in reversed(self._undo):
            try:
                step()
            except Exception:
                log.exception("Rollback step %r failed", step)
        self._undo.clear()


@contextmanager
def unit_of_work(db: Database, transactions: bool = False) -> Iterator[UnitOfWork]:
    if transactions:
        with db.client.start_session() as session:
            with session.start_transaction():
                yield UnitOfWork(session)
        return

    uow = UnitOfWork()
    try:
        yield uow
    except BaseException:
        uow.rollback()
        raise
