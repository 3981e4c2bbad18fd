from datetime import datetime, timedelta

from models import BetMarket, Round, RoundState
from services.fairness_service import (
    commitment_for,
    generate_commitment,
    generate_secret,
    to_epoch_ms,
    verify_commitment,
)
from services.round_phase_service import (
    calculate_clock_state,
    due_checkpoint,
    duration_remaining_seconds,
    get_bet_cutoff_time,
    is_accepting_bets,
)
from services.seeding_service import get_seed_rotation

T0 = datetime(2025, 1, 1, 12, 0, 0)


def _round(duration=1200, offset=60, premium_cutoff=5, regular_cutoff=10, checkpoints=None):
    return Round(
        round_number=1,
        state=RoundState.OPEN,
        opened_at=T0,
        freeze_at=T0 + timedelta(seconds=duration - offset),
        settle_at=T0 + timedelta(seconds=duration),
        round_duration=duration,
        freeze_offset=offset,
        premium_cutoff=premium_cutoff,
        regular_cutoff=regular_cutoff,
        checkpoints=checkpoints or {},
    )


def test_cutoff_boundary_is_rejected():
    round_obj = _round()
    cutoff = get_bet_cutoff_time(round_obj, is_premium=False)
    assert cutoff == round_obj.freeze_at - timedelta(seconds=10)

    assert is_accepting_bets(round_obj, False, cutoff - timedelta(milliseconds=1))
    assert not is_accepting_bets(round_obj, False, cutoff)
    assert not is_accepting_bets(round_obj, False, cutoff + timedelta(seconds=1))


def test_premium_cutoff_is_separate():
    round_obj = _round()
    moment = round_obj.freeze_at - timedelta(seconds=7)
    assert is_accepting_bets(round_obj, True, moment)
    assert not is_accepting_bets(round_obj, False, moment)


def test_clock_state_phases():
    round_obj = _round()
    active = calculate_clock_state(round_obj, T0 + timedelta(minutes=5))
    assert active["remainingSeconds"] == 900
    assert active["secondsUntilFreeze"] == 840
    assert active["phase"] == "ACTIVE"

    final = calculate_clock_state(round_obj, round_obj.settle_at - timedelta(seconds=30))
    assert final["phase"] == "FINAL_MINUTE"

    after = calculate_clock_state(round_obj, round_obj.settle_at + timedelta(seconds=30))
    assert after["remainingSeconds"] == 0


def test_duration_windows():
    assert duration_remaining_seconds(17 * 60, 5) == 120
    assert duration_remaining_seconds(12 * 60, 5) == 120
    assert duration_remaining_seconds(12 * 60, 10) == 120
    assert duration_remaining_seconds(8 * 60, 10) == 480
    assert duration_remaining_seconds(12 * 60, 20) == 720
    assert duration_remaining_seconds(0, 5) == 0


def test_due_checkpoint_in_order_and_not_repeated():
    round_obj = _round()
    assert due_checkpoint(round_obj, T0 + timedelta(minutes=4)) is None
    assert due_checkpoint(round_obj, T0 + timedelta(minutes=5)) == 15

    round_obj.checkpoints = {"15": {}}
    assert due_checkpoint(round_obj, T0 + timedelta(minutes=6)) is None
    assert due_checkpoint(round_obj, T0 + timedelta(minutes=11)) == 10


def test_due_checkpoint_skips_marks_longer_than_round():
    round_obj = _round(duration=300, offset=30)
    assert due_checkpoint(round_obj, T0) is None
    assert due_checkpoint(round_obj, T0 + timedelta(seconds=200)) is None


def test_seed_rotation_bits():
    assert get_seed_rotation(0) == {
        BetMarket.OUTER: "BUY", BetMarket.INNER: "HIGH_VOL", BetMarket.MIDDLE: "BLUE",
    }
    assert get_seed_rotation(5) == {
        BetMarket.OUTER: "SELL", BetMarket.INNER: "HIGH_VOL", BetMarket.MIDDLE: "RED",
    }
    assert get_seed_rotation(7) == get_seed_rotation(15)


def test_commitment_round_trip():
    secret = generate_secret()
    assert len(secret) == 64
    commit = generate_commitment(T0, secret)
    assert commit == commitment_for(to_epoch_ms(T0), secret)
    assert verify_commitment(commit, to_epoch_ms(T0), secret)
    assert not verify_commitment(commit, to_epoch_ms(T0) + 1, secret)


def test_epoch_ms_treats_naive_as_utc():
    assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000
