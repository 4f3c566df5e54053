import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bids import BidRepository
from database import utcnow
from errors import InvalidTransitionError, NotFoundError
from listings import ListingRepository
from locks import ListingLocks
from schemas import ListingStatus

log = logging.getLogger(__name__)


@dataclass
class SweepResult:
    sold: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def transitioned(self) -> int:
        return len(self.sold) + len(self.expired)

    def to_dict(self) -> Dict[str, Any]:
        return {"sold": self.sold, "expired": self.expired, "failed": self.failed}


class ExpirationReconciler:
    """
    Closes out ACTIVE listings whose end time has passed.

    A listing with at least one bid becomes SOLD at its current price,
    otherwise EXPIRED. ``sweep`` can be called on demand; ``start`` runs it
    immediately and then every ``interval`` seconds on a daemon thread until
    ``stop``.
    """

    def __init__(
        self,
        listings: ListingRepository,
        bids: BidRepository,
        locks: ListingLocks,
        interval: int = 60,
        clock=utcnow,
    ):
        self._listings = listings
        self._bids = bids
        self._locks = locks
        self._interval = interval
        self._clock = clock
        self._sweep_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweep_count = 0

    def sweep(self) -> SweepResult:
        """Run one pass. Failures are per listing: logged, counted, and the pass goes on."""
        with self._sweep_lock:
            result = SweepResult()
            start = time.monotonic()
            due = self._listings.find_expired(self._clock())
            for listing in due:
                try:
                    outcome = self._close(listing.id)
                except Exception:
                    log.exception("Failed to close listing %s", listing.id)
                    result.failed.append(listing.id)
                    continue
                if outcome == ListingStatus.SOLD:
                    result.sold.append(listing.id)
                elif outcome == ListingStatus.EXPIRED:
                    result.expired.append(listing.id)

            self._sweep_count += 1
            if due:
                log.info(
                    "Sweep %d closed %d listing(s) in %.2fs | sold=%d expired=%d failed=%d",
                    self._sweep_count,
                    result.transitioned,
                    time.monotonic() - start,
                    len(result.sold),
                    len(result.expired),
                    len(result.failed),
                )
            return result

    def _close(self, listing_id: str) -> Optional[ListingStatus]:
        with self._locks.hold(listing_id):
            outcome = ListingStatus.SOLD if self._bids.count_for_listing(listing_id) > 0 else ListingStatus.EXPIRED
            try:
                listing = self._listings.update_status(listing_id, outcome)
            except (InvalidTransitionError, NotFoundError) as exc:
                # someone else closed or removed it between query and lock
                log.warning("Skipping listing %s: %s", listing_id, exc.message)
                return None
        log.info("Listing %s (%s) marked %s at %s", listing.id, listing.title, outcome.value, listing.current_price)
        return outcome

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            log.info("Expiration reconciler is already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="expiration-reconciler", daemon=True)
        self._thread.start()
        log.info("Expiration reconciler started, interval %ds", self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        log.info("Expiration reconciler stopped after %d sweep(s)", self._sweep_count)

    def _run(self) -> None:
        while True:
            try:
                self.sweep()
            except Exception:
                log.exception("Expiration sweep failed")
            if self._stop.wait(self._interval):
                break
