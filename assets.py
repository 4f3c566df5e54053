"""
Image storage.

Listings only keep the public reference and the store's identifier; the
bytes live in GridFS next to the rest of the data.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

import gridfs
from gridfs.errors import NoFile
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import parse_object_id
from errors import AssetStoreError, NotFoundError

log = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")


@dataclass(frozen=True)
class StoredAsset:
    reference: str
    external_id: str


class AssetStore(Protocol):
    def store(self, raw: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> StoredAsset:
        ...

    def release(self, external_id: str) -> None:
        ...


class GridFSAssetStore:
    def __init__(self, db: Database, base_url: str = "/assets", bucket: str = "asset"):
        self._fs = gridfs.GridFS(db, collection=bucket)
        self._base_url = base_url.rstrip("/")

    def store(self, raw: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> StoredAsset:
        try:
            file_id = self._fs.put(raw, filename=filename, content_type=content_type)
        except PyMongoError as exc:
            raise AssetStoreError(f"Failed to store image: {exc}")
        external_id = str(file_id)
        log.info("Stored image %s (%d bytes)", external_id, len(raw))
        return StoredAsset(reference=f"{self._base_url}/{external_id}", external_id=external_id)

    def release(self, external_id: str) -> None:
        file_id = parse_object_id(external_id)
        if file_id is None:
            log.warning("Ignoring release of malformed asset id %r", external_id)
            return
        try:
            self._fs.delete(file_id)
        except PyMongoError as exc:
            raise AssetStoreError(f"Failed to release image {external_id}: {exc}")
        log.info("Released image %s", external_id)

    def open(self, external_id: str) -> Tuple[bytes, str]:
        """Image bytes and content type for serving over HTTP."""
        file_id = parse_object_id(external_id)
        if file_id is None:
            raise NotFoundError("asset", external_id)
        try:
            grid_out = self._fs.get(file_id)
        except NoFile:
            raise NotFoundError("asset", external_id)
        return grid_out.read(), grid_out.content_type or "application/octet-stream"
