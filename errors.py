"""
Domain errors raised by the marketplace core.

The HTTP layer maps these to status codes; everything else lets them
propagate. ``to_dict`` gives callers enough context to refresh their view
(current status, current price, blocking listings).
"""

from typing import Any, Dict, List, Optional


class MarketplaceError(Exception):
    code = "marketplace_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class ValidationError(MarketplaceError):
    code = "validation_error"


class UnauthorizedError(MarketplaceError):
    code = "unauthorized"


class ForbiddenError(MarketplaceError):
    code = "forbidden"


class NotFoundError(MarketplaceError):
    code = "not_found"

    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind.capitalize()} not found", kind=kind, id=ident)


class AuctionClosedError(MarketplaceError):
    code = "auction_closed"

    def __init__(self, listing_id: str, status: str):
        super().__init__(
            "Auction is not accepting bids", listing_id=listing_id, status=status
        )
        self.status = status


class BidTooLowError(MarketplaceError):
    code = "bid_too_low"

    def __init__(self, listing_id: str, current_price: str):
        super().__init__(
            f"Bid must be higher than the current price of {current_price}",
            listing_id=listing_id,
            current_price=current_price,
        )
        self.current_price = current_price


class InvalidTransitionError(MarketplaceError):
    code = "invalid_transition"

    def __init__(self, listing_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot move listing from {current} to {requested}",
            listing_id=listing_id,
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class ConflictError(MarketplaceError):
    code = "conflict"

    def __init__(self, message: str, blocking: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, blocking=blocking or [])
        self.blocking = blocking or []


class AssetStoreError(MarketplaceError):
    """The image store could not be reached or rejected the request."""

    code = "asset_store_unavailable"
