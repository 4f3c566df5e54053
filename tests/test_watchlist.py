import pytest

from errors import NotFoundError


class TestWatchlistRepository:
    def test_add_and_list_newest_first(self, market, make_listing, bidder, clock):
        first = make_listing()
        clock.advance(minutes=1)
        second = make_listing()

        market.watchlist.add(bidder.id, first.id)
        clock.advance(minutes=1)
        item = market.watchlist.add(bidder.id, second.id)

        assert item.user_id == bidder.id
        assert item.created_at == clock()
        assert [i.listing_id for i in market.watchlist.list_for_user(bidder.id)] == [second.id, first.id]

    def test_adding_twice_keeps_one_row(self, market, make_listing, bidder, clock):
        listing = make_listing()
        first = market.watchlist.add(bidder.id, listing.id)
        clock.advance(minutes=5)
        again = market.watchlist.add(bidder.id, listing.id)

        assert again.id == first.id
        assert again.created_at == first.created_at
        assert len(market.watchlist.list_for_user(bidder.id)) == 1

    @pytest.mark.parametrize("listing_id", ["0" * 24, "junk"])
    def test_unknown_listing(self, market, bidder, listing_id):
        with pytest.raises(NotFoundError):
            market.watchlist.add(bidder.id, listing_id)
        assert market.watchlist.list_for_user(bidder.id) == []

    def test_remove(self, market, make_listing, bidder, other_bidder):
        listing = make_listing()
        market.watchlist.add(bidder.id, listing.id)
        market.watchlist.add(other_bidder.id, listing.id)

        assert market.watchlist.remove(bidder.id, listing.id) is True
        assert market.watchlist.remove(bidder.id, listing.id) is False
        assert market.watchlist.list_for_user(bidder.id) == []
        assert len(market.watchlist.list_for_user(other_bidder.id)) == 1


class TestWatchlistCascade:
    def test_listing_delete_drops_its_rows(self, market, make_listing, artist, bidder, other_bidder):
        listing = make_listing()
        kept = make_listing()
        market.watchlist.add(bidder.id, listing.id)
        market.watchlist.add(other_bidder.id, listing.id)
        market.watchlist.add(bidder.id, kept.id)

        market.deletion.delete_listing(listing.id, artist)

        assert [i.listing_id for i in market.watchlist.list_for_user(bidder.id)] == [kept.id]
        assert market.watchlist.list_for_user(other_bidder.id) == []

    def test_account_delete_leaves_no_dangling_rows(self, market, make_listing, artist, admin, bidder):
        owned = make_listing()
        market.watchlist.add(bidder.id, owned.id)
        market.watchlist.add(artist.id, owned.id)

        counts = market.deletion.admin_delete_account(admin, artist.id)

        assert counts["watchlist"] == 2
        assert market.watchlist.list_for_user(bidder.id) == []
        assert market.watchlist.list_for_user(artist.id) == []

    def test_watcher_account_delete_drops_their_rows(self, market, make_listing, bidder, other_bidder):
        listing = make_listing()
        market.watchlist.add(bidder.id, listing.id)
        market.watchlist.add(other_bidder.id, listing.id)

        counts = market.deletion.delete_account(bidder.id)

        assert counts["watchlist"] == 1
        assert len(market.watchlist.list_for_user(other_bidder.id)) == 1
