"""
Database Schemas for the Artwork Auction API

Each stored model maps to a MongoDB collection named by the lowercase of the
class name (e.g., Listing -> "listing"). Money is stored as integer cents and
exposed as two-decimal strings.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, computed_field

from money import from_cents


class ListingStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    EXPIRED = "EXPIRED"


class Role(str, Enum):
    BIDDER = "BIDDER"
    ARTIST = "ARTIST"
    ADMIN = "ADMIN"


# Allowed next states; SOLD and EXPIRED are terminal
TRANSITIONS = {
    ListingStatus.PENDING: frozenset({ListingStatus.ACTIVE}),
    ListingStatus.ACTIVE: frozenset({ListingStatus.SOLD, ListingStatus.EXPIRED}),
    ListingStatus.SOLD: frozenset(),
    ListingStatus.EXPIRED: frozenset(),
}


class UserSummary(BaseModel):
    """Display fields joined onto listings and bids"""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class User(BaseModel):
    """Locally cached user; identity is owned by the external provider"""
    id: str = Field(..., description="Identity provider user id")
    email: str = Field(..., description="Email address")
    name: Optional[str] = Field(None, description="Display name")
    role: Role = Field(Role.BIDDER, description="BIDDER | ARTIST | ADMIN")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Listing(BaseModel):
    """An artwork up for auction"""
    id: str
    title: str = Field(..., description="Artwork title")
    description: str = Field(..., description="Artwork description")
    category: Optional[str] = Field(None, description="Category name")
    image_ref: str = Field(..., description="Public reference to the stored image")
    image_external_id: Optional[str] = Field(None, description="Asset store identifier")
    starting_price_cents: int = Field(..., gt=0, exclude=True)
    current_price_cents: int = Field(..., gt=0, exclude=True)
    status: ListingStatus = ListingStatus.ACTIVE
    auction_start: Optional[datetime] = None
    end_time: datetime
    is_active: bool = Field(True, description="Visibility switch, independent of status")
    owner_id: str
    created_at: datetime
    updated_at: datetime
    owner: Optional[UserSummary] = None

    @computed_field
    @property
    def starting_price(self) -> str:
        return from_cents(self.starting_price_cents)

    @computed_field
    @property
    def current_price(self) -> str:
        return from_cents(self.current_price_cents)


class Bid(BaseModel):
    """An immutable offer against a listing"""
    id: str
    listing_id: str
    bidder_id: str
    amount_cents: int = Field(..., gt=0, exclude=True)
    created_at: datetime
    bidder: Optional[UserSummary] = None

    @computed_field
    @property
    def amount(self) -> str:
        return from_cents(self.amount_cents)


class WatchlistItem(BaseModel):
    """A listing a user is following"""
    id: str
    user_id: str
    listing_id: str
    created_at: datetime


class BidEvent(BaseModel):
    """Published to subscribers after a bid commits"""
    type: str = "NEW_BID"
    listing_id: str
    bid: Bid

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# --- Request payloads ---

class PlaceBidRequest(BaseModel):
    listing_id: str
    amount: str = Field(..., description="Bid amount, e.g. '150.00'")


class WatchRequest(BaseModel):
    listing_id: str


class RoleUpdateRequest(BaseModel):
    role: Role


class VisibilityRequest(BaseModel):
    is_active: bool


# --- Statistics ---

class PublicStats(BaseModel):
    total_listings: int
    total_artists: int
    total_sales: str
    total_collectors: int


class AdminStats(BaseModel):
    total_users: int
    total_listings: int
    total_bids: int
    total_revenue: str = Field(..., description="Final price of SOLD listings")
    total_bid_volume: str = Field(..., description="Sum of every bid ever placed")
