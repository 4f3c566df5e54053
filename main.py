import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings
from database import connect, ensure_indexes
from errors import (
    AssetStoreError,
    AuctionClosedError,
    BidTooLowError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from logging_config import setup_logging
from marketplace import Marketplace
from schemas import (
    AdminStats,
    PlaceBidRequest,
    PublicStats,
    Role,
    RoleUpdateRequest,
    User,
    VisibilityRequest,
    WatchlistItem,
    WatchRequest,
)

log = logging.getLogger(__name__)

# most specific first; first match wins
_ERROR_STATUS = [
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (AuctionClosedError, 409),
    (BidTooLowError, 409),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (AssetStoreError, 502),
]


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_marketplace(request: Request) -> Marketplace:
    return request.app.state.marketplace


def current_user(
    authorization: Optional[str] = Header(None),
    market: Marketplace = Depends(get_marketplace),
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Authentication required")
    identity = market.identity.resolve(authorization[len("bearer "):].strip())
    return market.users.ensure(identity)


def require_role(role: Role):
    def checker(user: User = Depends(current_user)) -> User:
        if role == Role.ADMIN and user.role != Role.ADMIN:
            raise ForbiddenError("Admin access required")
        if role == Role.ARTIST and user.role not in (Role.ARTIST, Role.ADMIN):
            raise ForbiddenError("Artist access required")
        return user
    return checker


router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/health")
def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/auth/user", response_model=User)
def get_current_user(user: User = Depends(current_user)):
    return user


@router.get("/user/role")
def get_role(user: User = Depends(current_user)):
    return user.role


@router.put("/user/role", response_model=User)
def update_own_role(
    payload: RoleUpdateRequest,
    user: User = Depends(current_user),
    market: Marketplace = Depends(get_marketplace),
):
    """Switch between bidder and artist; admin is granted by another admin only"""
    if payload.role == Role.ADMIN and user.role != Role.ADMIN:
        raise ForbiddenError("Admin role can only be assigned by an admin")
    return market.users.update_role(user.id, payload.role)


@router.delete("/user/account", status_code=204)
def delete_own_account(user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    market.deletion.delete_account(user.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

@router.get("/listings")
def list_listings(
    category: Optional[str] = None,
    search: Optional[str] = None,
    market: Marketplace = Depends(get_marketplace),
):
    """List visible listings, optionally by category and search text"""
    return market.listings.list(category=category, search=search)


@router.get("/listings/{listing_id}")
def get_listing(listing_id: str, market: Marketplace = Depends(get_marketplace)):
    listing = market.listings.get(listing_id)
    if listing is None:
        raise NotFoundError("listing", listing_id)
    return listing


@router.post("/listings", status_code=201)
def create_listing(
    title: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    starting_price: str = Form(...),
    end_time: datetime = Form(...),
    image: UploadFile = File(...),
    user: User = Depends(require_role(Role.ARTIST)),
    market: Marketplace = Depends(get_marketplace),
):
    """Upload the artwork image and open its auction"""
    # one byte past the limit is enough to reject an oversized upload
    raw = image.file.read(market.publisher.max_image_bytes + 1)
    return market.publisher.publish(
        owner=user,
        title=title,
        description=description,
        category=category,
        starting_price=starting_price,
        end_time=end_time,
        image=raw,
        filename=image.filename,
        content_type=image.content_type,
    )


@router.get("/user/listings")
def my_listings(user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    return market.listings.list_by_owner(user.id)


@router.patch("/listings/{listing_id}/visibility")
def set_visibility(
    listing_id: str,
    payload: VisibilityRequest,
    user: User = Depends(current_user),
    market: Marketplace = Depends(get_marketplace),
):
    listing = market.listings.get(listing_id)
    if listing is None:
        raise NotFoundError("listing", listing_id)
    if listing.owner_id != user.id and user.role != Role.ADMIN:
        raise ForbiddenError("You can only change your own listings")
    return market.listings.set_visibility(listing_id, payload.is_active)


@router.delete("/listings/{listing_id}", status_code=204)
def delete_listing(listing_id: str, user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    """Owner delete: only while the auction is live and nobody has bid"""
    market.deletion.delete_listing(listing_id, user)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Bids
# ---------------------------------------------------------------------------

@router.get("/listings/{listing_id}/bids")
def listing_bids(listing_id: str, market: Marketplace = Depends(get_marketplace)):
    return market.bids.list_for_listing(listing_id)


@router.post("/bids", status_code=201)
def place_bid(
    payload: PlaceBidRequest,
    user: User = Depends(current_user),
    market: Marketplace = Depends(get_marketplace),
):
    """Place a bid if the auction is open and the amount beats the current price"""
    return market.bidding.place_bid(payload.listing_id, user.id, payload.amount)


@router.get("/user/bids")
def my_bids(user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    return market.bids.list_for_bidder(user.id)


# ---------------------------------------------------------------------------
# Watchlist
# ---------------------------------------------------------------------------

@router.get("/user/watchlist", response_model=List[WatchlistItem])
def my_watchlist(user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    return market.watchlist.list_for_user(user.id)


@router.post("/watchlist", response_model=WatchlistItem, status_code=201)
def watch_listing(
    payload: WatchRequest,
    user: User = Depends(current_user),
    market: Marketplace = Depends(get_marketplace),
):
    return market.watchlist.add(user.id, payload.listing_id)


@router.delete("/watchlist/{listing_id}", status_code=204)
def unwatch_listing(listing_id: str, user: User = Depends(current_user), market: Marketplace = Depends(get_marketplace)):
    market.watchlist.remove(user.id, listing_id)
    return Response(status_code=204)


@router.get("/stats", response_model=PublicStats)
def public_stats(market: Marketplace = Depends(get_marketplace)):
    return market.stats.public()


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

admin = require_role(Role.ADMIN)


@router.get("/admin/stats", response_model=AdminStats)
def admin_stats(user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    return market.stats.admin()


@router.get("/admin/users", response_model=List[User])
def admin_users(user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    return market.users.list_all()


@router.get("/admin/listings")
def admin_listings(user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    return market.listings.list_all()


@router.get("/admin/bids")
def admin_bids(user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    return market.bids.list_all()


@router.put("/admin/users/{user_id}/role", response_model=User)
def admin_set_role(
    user_id: str,
    payload: RoleUpdateRequest,
    user: User = Depends(admin),
    market: Marketplace = Depends(get_marketplace),
):
    return market.users.update_role(user_id, payload.role)


@router.delete("/admin/listings/{listing_id}", status_code=204)
def admin_delete_listing(listing_id: str, user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    market.deletion.delete_listing(listing_id, user)
    return Response(status_code=204)


@router.delete("/admin/users/{user_id}", status_code=204)
def admin_delete_user(user_id: str, user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    market.deletion.admin_delete_account(user, user_id)
    return Response(status_code=204)


@router.post("/admin/process-expired")
def process_expired(user: User = Depends(admin), market: Marketplace = Depends(get_marketplace)):
    """Run the expiration sweep now instead of waiting for the next interval"""
    return market.reconciler.sweep().to_dict()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

async def _forward_events(queue: asyncio.Queue, websocket: WebSocket) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _stop_sender(sender: asyncio.Task) -> None:
    """Cancel the forwarding task and collect how it ended."""
    sender.cancel()
    await asyncio.wait([sender])
    if not sender.cancelled() and sender.exception() is not None:
        log.error("WebSocket sender failed", exc_info=sender.exception())


def create_app(settings: Optional[Settings] = None, marketplace: Optional[Marketplace] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    owns_marketplace = marketplace is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_marketplace:
            setup_logging(settings.log_level)
            app.state.marketplace = Marketplace(connect(settings), settings)
        market: Marketplace = app.state.marketplace
        ensure_indexes(market.db)
        if settings.reconciler_enabled:
            market.reconciler.start()
        try:
            yield
        finally:
            market.reconciler.stop()

    app = FastAPI(title="Artwork Auction API", lifespan=lifespan)
    app.state.marketplace = marketplace

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
        if isinstance(exc, InvalidTransitionError):
            log.warning("Invalid transition on %s %s: %s", request.method, request.url.path, exc.message)
        elif status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"detail": exc.message, **exc.to_dict()})

    @app.get("/")
    def read_root():
        return {"message": "Artwork Auction API is running"}

    @app.get("/assets/{external_id}")
    def get_asset(external_id: str):
        market: Marketplace = app.state.marketplace
        content, content_type = market.assets.open(external_id)
        return Response(content=content, media_type=content_type)

    @app.websocket("/ws")
    async def bid_feed(websocket: WebSocket):
        """Push NEW_BID events; clients re-read listings after reconnecting"""
        market: Marketplace = app.state.marketplace
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = market.notifications.subscribe(
            lambda event: loop.call_soon_threadsafe(queue.put_nowait, event.to_message())
        )
        sender = None
        try:
            await websocket.accept()
            sender = asyncio.create_task(_forward_events(queue, websocket))
            log.info("WebSocket subscriber connected")
            while True:
                data = await websocket.receive_text()
                log.debug("Ignoring client message: %s", data)
        except WebSocketDisconnect:
            log.info("WebSocket subscriber disconnected")
        finally:
            unsubscribe()
            if sender is not None:
                await _stop_sender(sender)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Settings.from_env().port)
