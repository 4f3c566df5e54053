import pytest

from errors import ValidationError


class TestBidRepository:
    def test_append_and_list_newest_first(self, market, make_listing, bidder, other_bidder, clock):
        listing = make_listing()
        first = market.bids.append(listing.id, bidder.id, "110.00")
        clock.advance(seconds=5)
        second = market.bids.append(listing.id, other_bidder.id, 12000)

        bids = market.bids.list_for_listing(listing.id)
        assert [b.id for b in bids] == [second.id, first.id]
        assert [b.amount for b in bids] == ["120.00", "110.00"]
        assert bids[0].bidder.name == other_bidder.name
        assert bids[1].bidder.email == bidder.email

    def test_same_instant_keeps_commit_order(self, market, make_listing, bidder):
        listing = make_listing()
        ids = [market.bids.append(listing.id, bidder.id, 10100 + i).id for i in range(3)]
        assert [b.id for b in market.bids.list_for_listing(listing.id)] == ids[::-1]

    def test_append_does_not_touch_listing_price(self, market, make_listing, bidder):
        listing = make_listing()
        market.bids.append(listing.id, bidder.id, "500.00")
        assert market.listings.get(listing.id).current_price == "100.00"

    @pytest.mark.parametrize("amount", ["0", "-1", "abc"])
    def test_append_rejects_bad_amounts(self, market, make_listing, bidder, amount):
        with pytest.raises(ValidationError):
            market.bids.append(make_listing().id, bidder.id, amount)

    def test_count_matches_list(self, market, make_listing, bidder):
        listing = make_listing()
        other = make_listing()
        for cents in (10100, 10200, 10300):
            market.bids.append(listing.id, bidder.id, cents)
        market.bids.append(other.id, bidder.id, 10100)
        assert market.bids.count_for_listing(listing.id) == 3
        assert len(market.bids.list_for_listing(listing.id)) == 3
        assert market.bids.count_for_listing("nothing-here") == 0

    def test_list_for_bidder(self, market, make_listing, bidder, other_bidder):
        listing = make_listing()
        market.bids.append(listing.id, bidder.id, 10100)
        market.bids.append(listing.id, other_bidder.id, 10200)
        assert [b.amount for b in market.bids.list_for_bidder(bidder.id)] == ["101.00"]

    def test_cascade_helpers(self, market, make_listing, bidder, other_bidder):
        a = make_listing()
        b = make_listing()
        market.bids.append(a.id, bidder.id, 10100)
        market.bids.append(a.id, other_bidder.id, 10200)
        market.bids.append(b.id, bidder.id, 10100)

        assert market.bids.delete_for_listing(a.id) == 2
        assert market.bids.delete_for_bidder(bidder.id) == 1
        assert market.bids.count() == 0

    def test_remove_single_bid(self, market, make_listing, bidder):
        bid = market.bids.append(make_listing().id, bidder.id, 10100)
        assert market.bids.remove(bid.id) is True
        assert market.bids.remove(bid.id) is False
        assert market.bids.remove("junk") is False

    def test_statistics(self, market, make_listing, bidder, other_bidder):
        listing = make_listing()
        market.bids.append(listing.id, bidder.id, 10100)
        market.bids.append(listing.id, bidder.id, 10300)
        market.bids.append(listing.id, other_bidder.id, 10200)
        assert market.bids.count() == 3
        assert market.bids.total_volume_cents() == 30600
        assert market.bids.distinct_bidders() == 2
