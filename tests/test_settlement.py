from datetime import timedelta
from decimal import Decimal

from models import Bet, BetMarket, BetStatus, RoundState, Transaction, TransactionStatus, TransactionType
from core.bet_manager import BetManager
from core.events import event_bus, ROUND_SETTLED
from core.round_manager import RoundManager
from core.settlement import SettlementManager
from core.wallet_manager import WalletManager
from tests.conftest import T0

BEFORE_CUTOFF = T0 + timedelta(minutes=10)


def _freeze(db, round_obj):
    return RoundManager.freeze_round(db, round_obj.id, now=round_obj.freeze_at)


def test_minority_side_is_paid_double(db, open_round, make_user):
    alice = make_user(balance="500")
    bob = make_user(balance="500")
    round_obj = open_round()

    # OUTER: BUY 100 vs SELL 40 -> SELL wins
    BetManager.place_bet(db, alice.id, BetMarket.OUTER, "BUY", "100", now=BEFORE_CUTOFF)
    BetManager.place_bet(db, bob.id, BetMarket.OUTER, "SELL", "40", now=BEFORE_CUTOFF)
    # MIDDLE: BLUE 10 vs RED 20 -> BLUE wins
    BetManager.place_bet(db, alice.id, BetMarket.MIDDLE, "BLUE", "10", now=BEFORE_CUTOFF)
    BetManager.place_bet(db, bob.id, BetMarket.MIDDLE, "RED", "20", now=BEFORE_CUTOFF)
    # INNER: HIGH_VOL 5 vs LOW_VOL 3 -> LOW_VOL wins
    BetManager.place_bet(db, alice.id, BetMarket.INNER, "HIGH_VOL", "5", now=BEFORE_CUTOFF)
    BetManager.place_bet(db, bob.id, BetMarket.INNER, "LOW_VOL", "3", now=BEFORE_CUTOFF)

    _freeze(db, round_obj)
    settled = SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at)

    assert settled.state == RoundState.SETTLED
    assert settled.outer_winner == "SELL"
    assert settled.middle_winner == "BLUE"
    assert settled.inner_winner == "LOW_VOL"
    assert not settled.indecision_triggered
    # 2% of 100 + 20 + 5
    assert settled.total_house_fee == Decimal("2.50")

    alice_wallet = WalletManager.get_wallet(db, alice.id)
    bob_wallet = WalletManager.get_wallet(db, bob.id)
    # alice: 500 - 115 staked + 20 (BLUE)
    assert alice_wallet.available == Decimal("405.00")
    assert alice_wallet.held == Decimal("0.00")
    # bob: 500 - 63 staked + 80 (SELL) + 6 (LOW_VOL)
    assert bob_wallet.available == Decimal("523.00")
    assert bob_wallet.held == Decimal("0.00")
    assert bob_wallet.total_won == Decimal("43.00")
    assert bob_wallet.total_lost == Decimal("20.00")

    wins = db.query(Transaction).filter(Transaction.type == TransactionType.SPIN_WIN).count()
    losses = db.query(Transaction).filter(Transaction.type == TransactionType.SPIN_LOSS).count()
    assert (wins, losses) == (3, 3)
    pending = db.query(Transaction).filter(Transaction.status == TransactionStatus.PENDING).count()
    assert pending == 0


def test_tied_layer_pays_indecision(db, open_round, make_user):
    alice = make_user(balance="500")
    bob = make_user(balance="500")
    carol = make_user(balance="500")
    round_obj = open_round()

    BetManager.place_bet(db, alice.id, BetMarket.OUTER, "BUY", "50", now=BEFORE_CUTOFF)
    BetManager.place_bet(db, bob.id, BetMarket.OUTER, "SELL", "50", now=BEFORE_CUTOFF)
    BetManager.place_bet(db, carol.id, BetMarket.GLOBAL, "INDECISION", "25", now=BEFORE_CUTOFF)

    _freeze(db, round_obj)
    settled = SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at)

    assert settled.indecision_triggered
    assert settled.outer_tied
    assert settled.outer_winner is None
    assert WalletManager.get_wallet(db, alice.id).available == Decimal("450.00")
    assert WalletManager.get_wallet(db, bob.id).available == Decimal("450.00")
    assert WalletManager.get_wallet(db, carol.id).available == Decimal("525.00")

    statuses = {b.user_id: b.status for b in db.query(Bet).filter(Bet.user_id.isnot(None)).all()}
    assert statuses == {alice.id: BetStatus.LOST, bob.id: BetStatus.LOST, carol.id: BetStatus.WON}


def test_seeds_settle_without_touching_wallets(db, open_round, make_user):
    user = make_user(balance="100")
    round_obj = open_round()
    # round 1 seeds MIDDLE BLUE and INNER HIGH_VOL
    BetManager.place_bet(db, user.id, BetMarket.OUTER, "BUY", "10", now=BEFORE_CUTOFF)

    _freeze(db, round_obj)
    settled = SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at)

    # OUTER: BUY 10 vs SELL 0 -> SELL wins, seeded layers are 0.01 vs 0 -> empty side wins
    assert settled.outer_winner == "SELL"
    assert settled.middle_winner == "RED"
    assert settled.inner_winner == "LOW_VOL"
    assert not settled.indecision_triggered
    assert WalletManager.get_wallet(db, user.id).available == Decimal("90.00")

    seeds = db.query(Bet).filter(Bet.is_system_seed == True).all()  # noqa: E712
    assert len(seeds) == 2
    assert all(s.status == BetStatus.LOST for s in seeds)


def test_demo_winnings_return_to_demo_balance(db, open_round, make_user):
    user = make_user(balance="0")
    round_obj = open_round()
    BetManager.place_bet(db, user.id, BetMarket.GLOBAL, "INDECISION", "100", is_demo=True, now=BEFORE_CUTOFF)

    # demo bets do not count, so every layer is seeded and nothing ties
    _freeze(db, round_obj)
    settled = SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at)

    assert not settled.indecision_triggered
    wallet = WalletManager.get_wallet(db, user.id)
    assert wallet.available == Decimal("0.00")
    assert wallet.demo_available == Decimal("9900.00")
    assert db.query(Transaction).count() == 0


def test_second_settle_returns_none(db, open_round):
    round_obj = open_round()
    _freeze(db, round_obj)

    assert SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at) is not None
    assert SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at) is None
    assert len(event_bus.recent(ROUND_SETTLED)) == 1


def test_open_round_cannot_be_settled(db, open_round):
    round_obj = open_round()
    assert SettlementManager.settle_round(db, round_obj.id) is None
    db.refresh(round_obj)
    assert round_obj.state == RoundState.OPEN


def test_settle_due_rounds_waits_for_settle_time(db, open_round):
    round_obj = open_round()
    _freeze(db, round_obj)
    assert SettlementManager.settle_due_rounds(db, now=round_obj.settle_at - timedelta(seconds=1)) == []
    settled = SettlementManager.settle_due_rounds(db, now=round_obj.settle_at)
    assert [r.id for r in settled] == [round_obj.id]


def test_settled_round_reveals_verifiable_secret(client, db, open_round):
    round_obj = open_round()
    _freeze(db, round_obj)
    SettlementManager.settle_round(db, round_obj.id, now=round_obj.settle_at)

    response = client.get(f"/rounds/{round_obj.round_number}/verify")
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["computedHash"] == data["commitHash"]

    detail = client.get(f"/rounds/{round_obj.id}").json()
    assert detail["artifact"]["secret"] == data["secret"]
    assert detail["artifact"]["data"]["betCount"] == 3


def test_verify_before_settlement_is_rejected(client, db, open_round):
    round_obj = open_round()
    response = client.get(f"/rounds/{round_obj.round_number}/verify")
    assert response.status_code == 400
    assert client.get(f"/rounds/{round_obj.id}").json()["artifact"]["secret"] is None
