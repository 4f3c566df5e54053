import logging
from datetime import datetime
from typing import Optional

from assets import ALLOWED_CONTENT_TYPES, AssetStore
from errors import ForbiddenError, MarketplaceError, ValidationError
from listings import ListingRepository
from schemas import Listing, Role, User

log = logging.getLogger(__name__)


class ListingPublisher:
    """Stores the artwork image, then creates the listing that points at it."""

    def __init__(self, listings: ListingRepository, assets: AssetStore, max_image_bytes: int = 5 * 1024 * 1024):
        self._listings = listings
        self._assets = assets
        self._max_image_bytes = max_image_bytes

    @property
    def max_image_bytes(self) -> int:
        return self._max_image_bytes

    def publish(
        self,
        owner: User,
        title: str,
        description: str,
        category: str,
        starting_price,
        end_time: datetime,
        image: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Listing:
        if owner.role not in (Role.ARTIST, Role.ADMIN):
            raise ForbiddenError("Artist access required")
        self._check_image(image, content_type)

        # no image, no listing: a store failure propagates untouched
        stored = self._assets.store(image, filename=filename, content_type=content_type)
        try:
            listing = self._listings.create(
                owner_id=owner.id,
                title=title,
                description=description,
                category=category,
                starting_price=starting_price,
                end_time=end_time,
                image_ref=stored.reference,
                image_external_id=stored.external_id,
            )
        except MarketplaceError:
            self._release_quietly(stored.external_id)
            raise
        log.info("Published listing %s for %s", listing.id, owner.id)
        return listing

    def _check_image(self, image: bytes, content_type: Optional[str]) -> None:
        if not image:
            raise ValidationError("Image file is required", field="image")
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(
                "Invalid file type. Only JPEG, PNG and WebP images are allowed.",
                field="image",
            )
        if len(image) > self._max_image_bytes:
            raise ValidationError(
                f"Image exceeds the {self._max_image_bytes} byte limit",
                field="image",
            )

    def _release_quietly(self, external_id: str) -> None:
        try:
            self._assets.release(external_id)
        except Exception:
            log.exception("Could not release orphaned image %s", external_id)
