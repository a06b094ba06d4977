from decimal import Decimal

import pytest

from balances import deltas_for_owner, reconcile, select_trade_legs
from config import USDC_MINT, WSOL_MINT
from models import BalanceDelta, Direction

from tests.factories import POOL, TOKA_MINT, WALLET, snapshot, usdc_to_toka_balances


def delta(mint, raw, index=0, owner=WALLET, decimals=6):
    return BalanceDelta(
        token_identifier=mint,
        owner=owner,
        raw_amount_delta=raw,
        decimals=decimals,
        account_index=index
    )


class TestReconcile:
    def test_unchanged_balances_produce_no_deltas(self):
        pre = [snapshot(1, USDC_MINT, 500), snapshot(2, TOKA_MINT, 7)]
        post = [snapshot(1, USDC_MINT, 500), snapshot(2, TOKA_MINT, 7)]

        assert reconcile(pre, post) == []

    def test_zero_deltas_are_dropped_and_order_kept(self):
        pre, post = usdc_to_toka_balances()
        pre.append(snapshot(5, WSOL_MINT, 1_000, decimals=9))
        post.append(snapshot(5, WSOL_MINT, 1_000, decimals=9))

        deltas = reconcile(pre, post)

        assert [d.account_index for d in deltas] == [1, 2, 3, 4]
        assert all(d.raw_amount_delta != 0 for d in deltas)

    def test_signed_deltas(self):
        pre, post = usdc_to_toka_balances()

        deltas = {d.account_index: d for d in reconcile(pre, post)}

        assert deltas[1].raw_amount_delta == -10_000_000
        assert deltas[2].raw_amount_delta == 50_000_000
        assert deltas[3].owner == POOL

    def test_matches_on_account_index_and_mint(self):
        # Same index reassigned to a different mint is not a delta
        pre = [snapshot(1, USDC_MINT, 100)]
        post = [snapshot(1, TOKA_MINT, 100)]

        assert reconcile(pre, post) == []

    def test_closed_account_is_ignored(self):
        pre = [snapshot(1, USDC_MINT, 100), snapshot(2, TOKA_MINT, 5)]
        post = [snapshot(2, TOKA_MINT, 9)]

        deltas = reconcile(pre, post)

        assert len(deltas) == 1
        assert deltas[0].token_identifier == TOKA_MINT

    def test_new_account_ignored_by_default(self):
        pre = [snapshot(1, USDC_MINT, 100)]
        post = [snapshot(1, USDC_MINT, 40), snapshot(2, TOKA_MINT, 3)]

        deltas = reconcile(pre, post)

        assert [d.token_identifier for d in deltas] == [USDC_MINT]

    def test_new_account_counted_from_zero_when_enabled(self):
        pre = [snapshot(1, USDC_MINT, 100)]
        post = [snapshot(1, USDC_MINT, 40), snapshot(2, TOKA_MINT, 3), snapshot(3, WSOL_MINT, 0)]

        deltas = reconcile(pre, post, include_new_accounts=True)

        assert [(d.token_identifier, d.raw_amount_delta) for d in deltas] == [
            (USDC_MINT, -60),
            (TOKA_MINT, 3),
        ]

    def test_owner_taken_from_post_snapshot(self):
        pre = [snapshot(1, USDC_MINT, 100, owner=None)]
        post = [snapshot(1, USDC_MINT, 50, owner=WALLET)]

        assert reconcile(pre, post)[0].owner == WALLET


class TestBalanceDelta:
    @pytest.mark.parametrize("raw, direction", [(1, Direction.IN), (-1, Direction.OUT), (10 ** 12, Direction.IN)])
    def test_direction_follows_sign(self, raw, direction):
        assert delta(USDC_MINT, raw).direction == direction

    def test_amount_is_scaled_absolute_value(self):
        assert delta(TOKA_MINT, -50_000_000, decimals=9).amount == Decimal("0.05")
        assert delta(USDC_MINT, 10_000_000).amount == Decimal("10")

    def test_amount_keeps_full_precision(self):
        assert delta(TOKA_MINT, 1, decimals=9).amount == Decimal("0.000000001")


class TestDeltasForOwner:
    def test_filters_by_owner(self):
        pre, post = usdc_to_toka_balances()

        owned = deltas_for_owner(reconcile(pre, post), WALLET)

        assert [d.account_index for d in owned] == [1, 2]

    def test_unknown_owner_gets_nothing(self):
        pre, post = usdc_to_toka_balances()

        assert deltas_for_owner(reconcile(pre, post), "nobody") == []


class TestSelectTradeLegs:
    def test_fewer_than_two_deltas(self):
        assert select_trade_legs([]) is None
        assert select_trade_legs([delta(USDC_MINT, -5)]) is None

    def test_returns_out_then_in(self):
        sold = delta(USDC_MINT, -10, index=1)
        bought = delta(TOKA_MINT, 3, index=2)

        assert select_trade_legs([bought, sold]) == (sold, bought)

    def test_same_direction_is_not_a_swap(self):
        assert select_trade_legs([delta(USDC_MINT, 10, 1), delta(TOKA_MINT, 3, 2)]) is None
        assert select_trade_legs([delta(USDC_MINT, -10, 1), delta(TOKA_MINT, -3, 2)]) is None

    def test_multi_hop_keeps_two_largest(self):
        sold = delta(USDC_MINT, -1_000, index=1)
        dust = delta(WSOL_MINT, 2, index=2)
        bought = delta(TOKA_MINT, 900, index=3)

        assert select_trade_legs([sold, dust, bought]) == (sold, bought)

    def test_multi_hop_tie_goes_to_earlier_snapshot(self):
        sold = delta(USDC_MINT, -500, index=1)
        first_in = delta(TOKA_MINT, 500, index=2)
        second_in = delta(WSOL_MINT, 500, index=3)

        assert select_trade_legs([sold, first_in, second_in]) == (sold, first_in)

    def test_multi_hop_without_opposite_legs(self):
        deltas = [delta(USDC_MINT, 900, 1), delta(TOKA_MINT, 800, 2), delta(WSOL_MINT, -1, 3)]

        assert select_trade_legs(deltas) is None
