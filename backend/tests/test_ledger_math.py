from __future__ import annotations
import pytest
from hubba.services.ledger import compute_expiry_refund, compute_payout


def test_payout_split_with_confirmed_filmer():
    split = compute_payout(1000, platform_fee_bps=1000, filmer_cut_bps=2000, filmer_confirmed=True)
    assert split.platform_fee == 100
    assert split.net_reward == 900
    assert split.filmer_amount == 180
    assert split.claimer_amount == 720


def test_payout_split_without_filmer_goes_to_claimer():
    split = compute_payout(1000, platform_fee_bps=1000, filmer_cut_bps=2000, filmer_confirmed=False)
    assert split.filmer_amount == 0
    assert split.claimer_amount == 900


def test_payout_rounding_remainder_stays_with_claimer():
    # 777 * 10% = 77.7 -> 77; net 700; filmer 20% = 140
    split = compute_payout(777, platform_fee_bps=1000, filmer_cut_bps=2000, filmer_confirmed=True)
    assert (split.platform_fee, split.net_reward, split.filmer_amount, split.claimer_amount) == (77, 700, 140, 560)
    assert split.platform_fee + split.filmer_amount + split.claimer_amount == 777


@pytest.mark.parametrize("reward", [500, 501, 999, 12345])
def test_payout_parts_always_sum_to_reward(reward):
    split = compute_payout(reward, platform_fee_bps=1000, filmer_cut_bps=2000, filmer_confirmed=True)
    assert split.platform_fee + split.filmer_amount + split.claimer_amount == reward


def test_payout_rejects_non_positive_reward():
    with pytest.raises(ValueError):
        compute_payout(0, platform_fee_bps=1000, filmer_cut_bps=2000, filmer_confirmed=False)


def test_expiry_refund_keeps_twenty_percent():
    assert compute_expiry_refund(1000, 8000) == (800, 200)
    assert compute_expiry_refund(501, 8000) == (400, 101)
