from decimal import Decimal

from models import BetMarket
from services.payoff_service import (
    calculate_bet_payout,
    compute_settlement,
    determine_winner,
    empty_totals,
    is_tied,
    is_valid_selection,
    quantize,
)


def _totals(outer=(0, 0), middle=(0, 0), inner=(0, 0), indecision=0):
    totals = empty_totals()
    totals[BetMarket.OUTER].update(BUY=Decimal(str(outer[0])), SELL=Decimal(str(outer[1])))
    totals[BetMarket.MIDDLE].update(BLUE=Decimal(str(middle[0])), RED=Decimal(str(middle[1])))
    totals[BetMarket.INNER].update(HIGH_VOL=Decimal(str(inner[0])), LOW_VOL=Decimal(str(inner[1])))
    totals[BetMarket.GLOBAL]["INDECISION"] = Decimal(str(indecision))
    return totals


def test_quantize_rounds_half_up_to_cents():
    assert quantize("1.005") == Decimal("1.01")
    assert quantize(2) == Decimal("2.00")


def test_valid_selections_per_market():
    assert is_valid_selection(BetMarket.OUTER, "BUY")
    assert is_valid_selection(BetMarket.GLOBAL, "INDECISION")
    assert not is_valid_selection(BetMarket.OUTER, "RED")
    assert not is_valid_selection(BetMarket.INNER, "INDECISION")


def test_tie_compares_at_cent_precision():
    assert is_tied(0, 0)
    assert is_tied(Decimal("10"), Decimal("10.004"))
    assert not is_tied(10, 12)


def test_minority_side_wins():
    assert determine_winner("BUY", 100, "SELL", 50) == "SELL"
    assert determine_winner("BLUE", 5, "RED", 30) == "BLUE"
    assert determine_winner("BUY", 7, "SELL", 7) is None


def test_no_tie_minority_wins_every_layer():
    outcome = compute_settlement(_totals(outer=(100, 50), middle=(20, 30), inner=(5, 1)), fee_bps=200)

    assert not outcome.indecision_triggered
    assert outcome.winner_of(BetMarket.OUTER) == "SELL"
    assert outcome.winner_of(BetMarket.MIDDLE) == "BLUE"
    assert outcome.winner_of(BetMarket.INNER) == "LOW_VOL"
    assert outcome.is_winning_bet(BetMarket.OUTER, "SELL")
    assert not outcome.is_winning_bet(BetMarket.OUTER, "BUY")
    assert not outcome.is_winning_bet(BetMarket.GLOBAL, "INDECISION")
    # 2% of each losers pool: 100 + 30 + 5
    assert outcome.house_fee == Decimal("2.70")


def test_any_tied_layer_triggers_indecision():
    outcome = compute_settlement(_totals(outer=(100, 50), middle=(30, 30), inner=(5, 1), indecision=10), fee_bps=200)

    assert outcome.indecision_triggered
    assert outcome.layers[BetMarket.MIDDLE].tied
    assert outcome.winner_of(BetMarket.OUTER) is None
    assert not outcome.is_winning_bet(BetMarket.OUTER, "SELL")
    assert outcome.is_winning_bet(BetMarket.GLOBAL, "INDECISION")
    # 2% of all layer volume: 150 + 60 + 6
    assert outcome.house_fee == Decimal("4.32")


def test_empty_layer_counts_as_tie():
    outcome = compute_settlement(_totals(outer=(10, 20)), fee_bps=200)
    assert outcome.indecision_triggered
    assert outcome.layers[BetMarket.MIDDLE].tied
    assert outcome.layers[BetMarket.INNER].tied
    assert not outcome.layers[BetMarket.OUTER].tied


def test_bet_payout_is_double_stake_or_nothing():
    assert calculate_bet_payout(Decimal("25"), True) == (Decimal("50.00"), Decimal("25.00"))
    assert calculate_bet_payout(Decimal("25"), False) == (Decimal("0.00"), Decimal("-25.00"))
