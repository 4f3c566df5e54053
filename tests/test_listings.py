from datetime import timedelta

import pytest

from errors import InvalidTransitionError, NotFoundError, ValidationError
from schemas import ListingStatus


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

class TestCreate:
    def test_new_listing_defaults(self, make_listing, artist, clock):
        listing = make_listing(starting_price="100")
        assert listing.status == ListingStatus.ACTIVE
        assert listing.is_active is True
        assert listing.starting_price == "100.00"
        assert listing.current_price == "100.00"
        assert listing.owner_id == artist.id
        assert listing.created_at == clock()

    def test_prices_never_leak_cents(self, make_listing):
        dumped = make_listing().model_dump()
        assert "current_price_cents" not in dumped
        assert dumped["current_price"] == "100.00"

    @pytest.mark.parametrize("price", ["0", "-5", "abc", "0.001"])
    def test_rejects_non_positive_or_garbage_price(self, make_listing, price):
        with pytest.raises(ValidationError):
            make_listing(starting_price=price)

    def test_rejects_past_end_time(self, make_listing):
        with pytest.raises(ValidationError) as exc_info:
            make_listing(hours=-1)
        assert exc_info.value.details["field"] == "end_time"

    @pytest.mark.parametrize("field", ["title", "description", "category", "image_ref"])
    def test_rejects_blank_text(self, make_listing, field):
        with pytest.raises(ValidationError):
            make_listing(**{field: "  "})

    def test_naive_end_time_is_read_as_utc(self, make_listing, clock):
        naive_end = (clock() + timedelta(hours=2)).replace(tzinfo=None)
        listing = make_listing(end_time=naive_end)
        assert listing.end_time == clock() + timedelta(hours=2)


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------

class TestReads:
    def test_get_joins_owner(self, market, make_listing, artist):
        listing = market.listings.get(make_listing().id)
        assert listing.owner.name == artist.name
        assert listing.owner.email == artist.email

    @pytest.mark.parametrize("listing_id", ["nope", "", "0" * 24])
    def test_get_unknown_is_none(self, market, listing_id):
        assert market.listings.get(listing_id) is None

    def test_list_newest_first(self, market, make_listing, clock):
        first = make_listing()
        clock.advance(minutes=1)
        second = make_listing()
        assert [l.id for l in market.listings.list()] == [second.id, first.id]

    def test_list_hides_invisible(self, market, make_listing):
        shown = make_listing()
        hidden = make_listing()
        market.listings.set_visibility(hidden.id, False)
        assert [l.id for l in market.listings.list()] == [shown.id]

    def test_list_filters_category_and_search(self, market, make_listing):
        make_listing(title="Blue harbour", category="painting")
        make_listing(title="Red figure", category="sculpture")
        make_listing(title="Harbour lights", category="photography", description="Night shot")

        assert [l.title for l in market.listings.list(category="sculpture")] == ["Red figure"]
        found = {l.title for l in market.listings.list(search="HARBOUR")}
        assert found == {"Blue harbour", "Harbour lights"}
        assert [l.title for l in market.listings.list(search="night")] == ["Harbour lights"]

    def test_search_is_literal(self, market, make_listing):
        make_listing(title="Study (no. 2)")
        make_listing(title="Study 2")
        assert [l.title for l in market.listings.list(search="(no.")] == ["Study (no. 2)"]

    def test_owner_sees_hidden_listings(self, market, make_listing, artist, other_artist):
        mine = make_listing()
        market.listings.set_visibility(mine.id, False)
        make_listing(owner=other_artist)
        assert [l.id for l in market.listings.list_by_owner(artist.id)] == [mine.id]

    def test_find_expired_only_active_and_past(self, market, make_listing, clock):
        soon = make_listing(hours=1)
        later = make_listing(hours=5)
        closed = make_listing(hours=1)
        market.listings.update_status(closed.id, ListingStatus.EXPIRED)
        clock.advance(hours=2)
        assert [l.id for l in market.listings.find_expired(clock())] == [soon.id]
        assert later.id not in [l.id for l in market.listings.find_expired(clock())]


# ---------------------------------------------------------------------------
# writes
# ---------------------------------------------------------------------------

class TestUpdatePrice:
    def test_unconditional(self, market, make_listing):
        listing = make_listing()
        assert market.listings.update_price(listing.id, "120.50") is True
        assert market.listings.get(listing.id).current_price == "120.50"

    def test_compare_and_swap(self, market, make_listing):
        listing = make_listing()
        assert market.listings.update_price(listing.id, 15000, expected_price=10000) is True
        # stale expectation loses
        assert market.listings.update_price(listing.id, 16000, expected_price=10000) is False
        assert market.listings.get(listing.id).current_price == "150.00"

    def test_swap_refused_once_closed(self, market, make_listing):
        listing = make_listing()
        market.listings.update_status(listing.id, ListingStatus.EXPIRED)
        assert market.listings.update_price(listing.id, 15000, expected_price=10000) is False

    def test_never_below_starting_price(self, market, make_listing):
        listing = make_listing(starting_price="100.00")
        assert market.listings.update_price(listing.id, "99.99") is False
        assert market.listings.update_price(listing.id, 9000, expected_price=10000) is False
        assert market.listings.get(listing.id).current_price == "100.00"
        # equal to the start is still allowed
        assert market.listings.update_price(listing.id, "150") is True
        assert market.listings.update_price(listing.id, "100.00") is True

    def test_unknown_listing(self, market):
        assert market.listings.update_price("missing", 100) is False


class TestUpdateStatus:
    def test_forward_transitions(self, market, make_listing):
        listing = make_listing()
        updated = market.listings.update_status(listing.id, "SOLD")
        assert updated.status == ListingStatus.SOLD

    @pytest.mark.parametrize("terminal", [ListingStatus.SOLD, ListingStatus.EXPIRED])
    def test_terminal_states_stay_put(self, market, make_listing, terminal):
        listing = make_listing()
        market.listings.update_status(listing.id, terminal)
        for target in ListingStatus:
            with pytest.raises(InvalidTransitionError) as exc_info:
                market.listings.update_status(listing.id, target)
            assert exc_info.value.current == terminal.value
        assert market.listings.get(listing.id).status == terminal

    def test_cannot_go_back_to_pending(self, market, make_listing):
        listing = make_listing()
        with pytest.raises(InvalidTransitionError):
            market.listings.update_status(listing.id, ListingStatus.PENDING)

    def test_unknown_listing(self, market):
        with pytest.raises(NotFoundError):
            market.listings.update_status("0" * 24, ListingStatus.SOLD)


class TestDelete:
    def test_delete_releases_image(self, market, make_listing, assets):
        listing = make_listing()
        assert market.listings.delete(listing.id) is True
        assert market.listings.get(listing.id) is None
        assert assets.released == [listing.image_external_id]

    def test_image_release_failure_keeps_deletion(self, market, make_listing, assets, caplog):
        listing = make_listing()
        assets.fail_release = True
        assert market.listings.delete(listing.id) is True
        assert market.listings.get(listing.id) is None
        assert "clean up manually" in caplog.text

    def test_delete_unknown(self, market):
        assert market.listings.delete("0" * 24) is False
        assert market.listings.delete("junk") is False
