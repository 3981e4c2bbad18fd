from decimal import Decimal

import pytest

from models import AffiliateEarning, AffiliateTier, Transaction, TransactionStatus, TransactionType, UserRole
from core import wallet_manager
from core.events import event_bus, WALLET_UPDATED
from core.exceptions import BadRequest, InsufficientFunds
from core.wallet_manager import WalletManager, calculate_withdrawal_fee


@pytest.mark.parametrize("amount, fee", [
    ("20", "1.00"),
    ("50", "2.00"),
    ("150", "3.00"),
    ("1999.99", "6.00"),
    ("5000", "50.00"),
])
def test_withdrawal_fee_tiers(amount, fee):
    assert calculate_withdrawal_fee(Decimal(amount)) == Decimal(fee)


def test_deposit_credits_wallet_once_per_key(db, make_user):
    user = make_user()
    first = WalletManager.deposit(db, user.id, "120", method="card", idempotency_key="dep-1")
    second = WalletManager.deposit(db, user.id, "120", method="card", idempotency_key="dep-1")

    assert first.id == second.id
    assert first.status == TransactionStatus.COMPLETED
    wallet = WalletManager.get_wallet(db, user.id)
    assert wallet.available == Decimal("120.00")
    assert wallet.total_deposited == Decimal("120.00")


def test_deposit_rejects_non_positive_amount(db, make_user):
    user = make_user()
    with pytest.raises(BadRequest):
        WalletManager.deposit(db, user.id, "0")


def test_referral_deposit_pays_affiliate_commission(db, make_user):
    referrer = make_user()
    referred = make_user(referred_by=referrer.id)

    WalletManager.deposit(db, referred.id, "250")

    earning = db.query(AffiliateEarning).one()
    assert earning.user_id == referrer.id
    assert earning.tier == AffiliateTier.TIER_3
    assert earning.amount == Decimal("2.00")
    assert WalletManager.get_wallet(db, referrer.id).available == Decimal("2.00")


def test_small_referral_deposit_pays_nothing(db, make_user):
    referrer = make_user()
    referred = make_user(referred_by=referrer.id)
    WalletManager.deposit(db, referred.id, "20")
    assert db.query(AffiliateEarning).count() == 0


def test_withdraw_holds_amount_and_records_fee(db, make_user):
    user = make_user(balance="300")
    tx = WalletManager.withdraw(db, user.id, "150")

    assert tx.status == TransactionStatus.PENDING
    assert tx.fee == Decimal("3.00")
    wallet = WalletManager.get_wallet(db, user.id)
    assert wallet.available == Decimal("150.00")
    assert wallet.held == Decimal("150.00")

    with pytest.raises(InsufficientFunds):
        WalletManager.withdraw(db, user.id, "200")


def test_process_withdrawal_approve_and_reject(db, make_user):
    user = make_user(balance="300")
    approved = WalletManager.withdraw(db, user.id, "100")
    rejected = WalletManager.withdraw(db, user.id, "50")

    WalletManager.process_withdrawal(db, approved.id, True)
    WalletManager.process_withdrawal(db, rejected.id, False)

    wallet = WalletManager.get_wallet(db, user.id)
    assert wallet.available == Decimal("200.00")
    assert wallet.held == Decimal("0.00")
    assert wallet.total_withdrawn == Decimal("100.00")

    with pytest.raises(BadRequest):
        WalletManager.process_withdrawal(db, approved.id, True)


def test_transactions_endpoint_filters_by_type(client, db, make_user, auth_headers):
    user = make_user(balance="100")
    WalletManager.deposit(db, user.id, "10")
    WalletManager.withdraw(db, user.id, "5")

    response = client.get("/wallet/transactions", params={"type": "deposit"}, headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["total"] == 1
    assert body["data"][0]["type"] == "DEPOSIT"

    bad = client.get("/wallet/transactions", params={"type": "nope"}, headers=auth_headers(user))
    assert bad.status_code == 400


def test_balance_and_deposit_endpoints(client, make_user, auth_headers):
    user = make_user()
    response = client.post("/wallet/deposit", json={"amount": "75.5"}, headers=auth_headers(user))
    assert response.status_code == 201
    assert response.json()["amount"] == "75.50"

    balance = client.get("/wallet/balance", headers=auth_headers(user)).json()
    assert balance["available"] == "75.50"
    assert balance["held"] == "0.00"
    assert balance["total"] == "75.50"


def test_transfer_is_disabled(client, make_user, auth_headers):
    user = make_user(balance="100")
    response = client.post("/wallet/transfer", json={"toUserId": "x", "amount": "5"}, headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json()["statusCode"] == 403


def test_admin_processes_withdrawal_endpoint(client, db, make_user, auth_headers):
    user = make_user(balance="100")
    admin = make_user(role=UserRole.ADMIN)
    tx = WalletManager.withdraw(db, user.id, "40")

    forbidden = client.post(f"/wallet/admin/withdrawals/{tx.id}", json={"approved": True}, headers=auth_headers(user))
    assert forbidden.status_code == 403

    response = client.post(f"/wallet/admin/withdrawals/{tx.id}", json={"approved": True}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"
    assert db.query(Transaction).filter(Transaction.type == TransactionType.WITHDRAWAL).one().status == TransactionStatus.COMPLETED


def test_referral_deposit_locks_wallets_in_user_id_order(db, make_user, monkeypatch):
    referrer = make_user()
    referred = make_user(referred_by=referrer.id)
    locked = []
    original_lock = wallet_manager.with_wallet_lock

    def recording_lock(user_id, session):
        locked.append(user_id)
        return original_lock(user_id, session)

    monkeypatch.setattr(wallet_manager, "with_wallet_lock", recording_lock)
    WalletManager.deposit(db, referred.id, "150")

    assert locked == sorted([referrer.id, referred.id])


def test_referral_deposit_publishes_both_wallets(db, make_user):
    referrer = make_user()
    referred = make_user(referred_by=referrer.id)
    event_bus.clear_history()

    WalletManager.deposit(db, referred.id, "75")

    updates = {evt.user_id: evt.data for evt in event_bus.recent(WALLET_UPDATED)}
    assert updates[referred.id]["available"] == "75.00"
    assert updates[referrer.id] == {
        "available": "1.00",
        "held": "0.00",
        "total": "1.00",
        "demoAvailable": "10000.00",
    }


def _miss_first_lookup(monkeypatch):
    # the first lookup misses, as if two requests passed the check together
    original = WalletManager._find_by_idempotency_key
    calls = {"n": 0}

    def lookup(db, user_id, key):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return original(db, user_id, key)

    monkeypatch.setattr(WalletManager, "_find_by_idempotency_key", staticmethod(lookup))


def test_withdraw_idempotency_race_returns_stored_transaction(db, make_user, monkeypatch):
    user = make_user(balance="100")
    first = WalletManager.withdraw(db, user.id, "30", idempotency_key="wd-1")

    _miss_first_lookup(monkeypatch)
    second = WalletManager.withdraw(db, user.id, "30", idempotency_key="wd-1")

    assert second.id == first.id
    wallet = WalletManager.get_wallet(db, user.id)
    assert wallet.available == Decimal("70.00")
    assert wallet.held == Decimal("30.00")
    assert db.query(Transaction).filter(Transaction.type == TransactionType.WITHDRAWAL).count() == 1


def test_deposit_idempotency_race_returns_stored_transaction(db, make_user, monkeypatch):
    user = make_user()
    first = WalletManager.deposit(db, user.id, "20", idempotency_key="dep-race")

    _miss_first_lookup(monkeypatch)
    second = WalletManager.deposit(db, user.id, "20", idempotency_key="dep-race")

    assert second.id == first.id
    assert WalletManager.get_wallet(db, user.id).available == Decimal("20.00")
