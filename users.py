import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import USERS, from_storage_time, get_documents, to_storage_time, utcnow
from errors import NotFoundError, ValidationError
from identity import Identity
from schemas import Role, User

log = logging.getLogger(__name__)


def _to_user(doc: Dict[str, Any]) -> User:
    return User(
        id=doc["_id"],
        email=doc.get("email") or "",
        name=doc.get("name"),
        role=doc.get("role", Role.BIDDER.value),
        created_at=from_storage_time(doc.get("created_at")),
        updated_at=from_storage_time(doc.get("updated_at")),
    )


class UserRepository:
    """Local copy of users known to the identity provider, keyed by provider id."""

    def __init__(self, db: Database, clock=utcnow):
        self._db = db
        self._users = db[USERS]
        self._clock = clock

    def get(self, user_id: str) -> Optional[User]:
        doc = self._users.find_one({"_id": user_id})
        return _to_user(doc) if doc else None

    def upsert(self, user_id: str, email: str, name: Optional[str] = None, role: Optional[Role] = None) -> User:
        now = to_storage_time(self._clock())
        fields: Dict[str, Any] = {"email": email, "name": name, "updated_at": now}
        on_insert: Dict[str, Any] = {"created_at": now}
        if role is not None:
            fields["role"] = Role(role).value
        else:
            on_insert["role"] = Role.BIDDER.value
        doc = self._users.find_one_and_update(
            {"_id": user_id},
            {"$set": fields, "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _to_user(doc)

    def ensure(self, identity: Identity) -> User:
        """Return the cached user for an identity, creating a BIDDER on first sight."""
        user = self.get(identity.id)
        if user is not None:
            return user
        log.info("First sighting of user %s, caching with role BIDDER", identity.id)
        return self.upsert(identity.id, identity.email, identity.display_name)

    def update_role(self, user_id: str, role) -> User:
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Invalid role: {role!r}", field="role")
        doc = self._users.find_one_and_update(
            {"_id": user_id},
            {"$set": {"role": role.value, "updated_at": to_storage_time(self._clock())}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("user", user_id)
        log.info("User %s role set to %s", user_id, role.value)
        return _to_user(doc)

    def list_all(self) -> List[User]:
        return [_to_user(doc) for doc in get_documents(self._db, USERS, sort=[("created_at", -1)])]

    def count(self, role: Optional[Role] = None) -> int:
        query = {"role": Role(role).value} if role is not None else {}
        return self._users.count_documents(query)

    def delete(self, user_id: str) -> bool:
        return self._users.delete_one({"_id": user_id}).deleted_count == 1
