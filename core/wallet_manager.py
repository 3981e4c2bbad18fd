"""
Wallet Manager：管理使用者錢包與資金流水

職責：
1. 查詢餘額、交易紀錄
2. 存款（含推薦佣金）
3. 提款申請與管理員審核
4. 注單退款（取消注單、取消回合共用）

餘額欄位：
- available: 可用餘額
- held: 下注中或提款審核中被凍結的金額
- demo_available: Demo 模式的虛擬餘額，不產生任何交易紀錄
"""
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Bet,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from core.events import event_bus, WALLET_UPDATED
from core.exceptions import (
    BadRequest,
    InsufficientFunds,
    TransactionNotFound,
    WalletNotFound,
)
from core.locks import with_wallet_lock
from database import transactional, utcnow
from services.affiliate_service import get_referrer_id, process_affiliate_commission
from services.history_service import paginate
from services.payoff_service import quantize

logger = logging.getLogger(__name__)

# (上限, 固定手續費)；超過最後一級改收 1%
WITHDRAWAL_FEE_TIERS = (
    (Decimal("50"), Decimal("1")),
    (Decimal("100"), Decimal("2")),
    (Decimal("500"), Decimal("3")),
    (Decimal("2000"), Decimal("6")),
)
WITHDRAWAL_FEE_RATE = Decimal("0.01")


def calculate_withdrawal_fee(amount) -> Decimal:
    """
    提款手續費

    範例：
        calculate_withdrawal_fee(20) -> 1
        calculate_withdrawal_fee(150) -> 3
        calculate_withdrawal_fee(5000) -> 50（1%）
    """
    amount = quantize(amount)
    for upper, fee in WITHDRAWAL_FEE_TIERS:
        if amount < upper:
            return quantize(fee)
    return quantize(amount * WITHDRAWAL_FEE_RATE)


def create_wallet(db: Session, user_id: str) -> Wallet:
    """新使用者的錢包（送 demo 餘額）；只 flush，不 commit"""
    wallet = Wallet(
        user_id=user_id,
        demo_available=quantize(get_settings().demo_starting_balance),
    )
    db.add(wallet)
    db.flush()
    return wallet


def lock_wallet(db: Session, user_id: str) -> Wallet:
    wallet = with_wallet_lock(user_id, db).first()
    if not wallet:
        raise WalletNotFound()
    return wallet


def serialize_balance(wallet: Wallet) -> Dict[str, Any]:
    return {
        "available": str(quantize(wallet.available)),
        "held": str(quantize(wallet.held)),
        "total": str(quantize(wallet.available + wallet.held)),
        "demoAvailable": str(quantize(wallet.demo_available)),
    }


def serialize_wallet(wallet: Wallet) -> Dict[str, Any]:
    data = serialize_balance(wallet)
    data.update({
        "id": wallet.id,
        "userId": wallet.user_id,
        "totalDeposited": str(quantize(wallet.total_deposited)),
        "totalWithdrawn": str(quantize(wallet.total_withdrawn)),
        "totalWon": str(quantize(wallet.total_won)),
        "totalLost": str(quantize(wallet.total_lost)),
    })
    return data


def serialize_transaction(tx: Transaction) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "userId": tx.user_id,
        "type": tx.type.value,
        "amount": str(quantize(tx.amount)),
        "fee": str(quantize(tx.fee)),
        "status": tx.status.value,
        "method": tx.method,
        "reference": tx.reference,
        "description": tx.description,
        "betId": tx.bet_id,
        "createdAt": tx.created_at.isoformat() if tx.created_at else None,
        "processedAt": tx.processed_at.isoformat() if tx.processed_at else None,
    }


def publish_wallet(db: Session, wallet: Wallet) -> None:
    event_bus.publish(WALLET_UPDATED, serialize_balance(wallet), user_id=wallet.user_id, db=db)


def refund_bet_stake(db: Session, bet: Bet, description: str, now=None) -> Optional[Wallet]:
    """
    把一張 ACCEPTED 注單的本金退回

    - live 注單：held -> available，寫一筆 REFUND，原本的 BET 交易標成 FAILED
    - demo 注單：退回 demo_available
    - 系統種子：沒有錢包

    只 flush，不 commit（由外層 transaction 處理）
    """
    if bet.is_system_seed or not bet.user_id:
        return None

    now = now or utcnow()
    wallet = lock_wallet(db, bet.user_id)
    stake = quantize(bet.amount_usd)

    if bet.is_demo:
        wallet.demo_available = quantize(wallet.demo_available + stake)
    else:
        wallet.held = quantize(wallet.held - stake)
        wallet.available = quantize(wallet.available + stake)
        db.add(Transaction(
            user_id=bet.user_id,
            type=TransactionType.REFUND,
            amount=stake,
            status=TransactionStatus.COMPLETED,
            description=description,
            bet_id=bet.id,
            processed_at=now,
        ))
        db.query(Transaction).filter(
            Transaction.bet_id == bet.id,
            Transaction.type == TransactionType.BET,
            Transaction.status == TransactionStatus.PENDING,
        ).update({"status": TransactionStatus.FAILED, "processed_at": now}, synchronize_session=False)

    db.flush()
    return wallet


class WalletManager:
    """錢包管理器"""

    @staticmethod
    def get_wallet(db: Session, user_id: str) -> Wallet:
        wallet = db.query(Wallet).filter(Wallet.user_id == user_id).first()
        if not wallet:
            raise WalletNotFound()
        return wallet

    @staticmethod
    def _find_by_idempotency_key(db: Session, user_id: str, key: Optional[str]) -> Optional[Transaction]:
        if not key:
            return None
        existing = db.query(Transaction).filter(Transaction.idempotency_key == key).first()
        if existing and existing.user_id != user_id:
            raise BadRequest("Idempotency key already used")
        return existing

    @staticmethod
    @transactional
    def deposit(
        db: Session,
        user_id: str,
        amount,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now=None,
    ) -> Transaction:
        """
        存款（直接入帳）

        流程：
        1. 驗證金額
        2. 冪等檢查：同一個 idempotency_key 直接回傳原交易
        3. 依 user_id 排序鎖定存款人與推薦人的錢包（與結算相同的鎖順序），入帳
        4. 發放推薦佣金給推薦人

        異常：
            BadRequest: 金額 <= 0
            WalletNotFound: 使用者沒有錢包
        """
        now = now or utcnow()
        amount = quantize(amount)
        if amount <= 0:
            raise BadRequest("Amount must be greater than 0")

        # 1. 冪等
        existing = WalletManager._find_by_idempotency_key(db, user_id, idempotency_key)
        if existing:
            logger.warning(f"Duplicate deposit {idempotency_key} for user {user_id}, returning original")
            return existing

        # 2. 入帳
        referrer_id = get_referrer_id(db, user_id)
        locked = {
            locked_id: with_wallet_lock(locked_id, db).first()
            for locked_id in sorted({user_id, referrer_id} - {None})
        }
        wallet = locked[user_id]
        if not wallet:
            raise WalletNotFound()
        wallet.available = quantize(wallet.available + amount)
        wallet.total_deposited = quantize(wallet.total_deposited + amount)

        tx = Transaction(
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            method=method,
            reference=reference,
            description="Deposit",
            idempotency_key=idempotency_key,
            processed_at=now,
        )
        db.add(tx)
        try:
            db.flush()
        except IntegrityError:
            # 另一個請求用同一個 key 搶先寫入
            db.rollback()
            logger.warning(f"Deposit idempotency race on {idempotency_key}, returning stored transaction")
            return WalletManager._find_by_idempotency_key(db, user_id, idempotency_key)

        # 3. 推薦佣金
        earning = process_affiliate_commission(db, user_id, amount, now=now)

        logger.info(f"Deposit {amount} credited to user {user_id}")
        publish_wallet(db, wallet)
        if earning is not None:
            publish_wallet(db, WalletManager.get_wallet(db, earning.user_id))
        return tx

    @staticmethod
    @transactional
    def withdraw(
        db: Session,
        user_id: str,
        amount,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now=None,
    ) -> Transaction:
        """
        提款申請：金額從 available 移到 held，等管理員審核

        異常：
            BadRequest: 金額 <= 0
            InsufficientFunds: 可用餘額不足
        """
        amount = quantize(amount)
        if amount <= 0:
            raise BadRequest("Amount must be greater than 0")

        existing = WalletManager._find_by_idempotency_key(db, user_id, idempotency_key)
        if existing:
            logger.warning(f"Duplicate withdrawal {idempotency_key} for user {user_id}, returning original")
            return existing

        wallet = lock_wallet(db, user_id)
        if wallet.available < amount:
            raise InsufficientFunds()

        fee = calculate_withdrawal_fee(amount)
        wallet.available = quantize(wallet.available - amount)
        wallet.held = quantize(wallet.held + amount)

        tx = Transaction(
            user_id=user_id,
            type=TransactionType.WITHDRAWAL,
            amount=amount,
            fee=fee,
            status=TransactionStatus.PENDING,
            method=method,
            reference=reference,
            description=f"Withdrawal (fee {fee})",
            idempotency_key=idempotency_key,
        )
        db.add(tx)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Withdrawal idempotency race on {idempotency_key}, returning stored transaction")
            return WalletManager._find_by_idempotency_key(db, user_id, idempotency_key)

        logger.info(f"Withdrawal {amount} requested by user {user_id} (fee {fee})")
        publish_wallet(db, wallet)
        return tx

    @staticmethod
    @transactional
    def process_withdrawal(db: Session, transaction_id: str, approved: bool, now=None) -> Transaction:
        """
        管理員審核提款

        - approved: held 扣掉，累計 total_withdrawn，交易 COMPLETED
        - rejected: 金額退回 available，交易 FAILED

        異常：
            TransactionNotFound: 不存在或不是 PENDING 的提款
        """
        now = now or utcnow()
        tx = db.query(Transaction).filter(
            Transaction.id == transaction_id,
            Transaction.type == TransactionType.WITHDRAWAL,
        ).with_for_update(nowait=False).first()
        if not tx:
            raise TransactionNotFound()
        if tx.status != TransactionStatus.PENDING:
            raise BadRequest("Only pending withdrawals can be processed")

        wallet = lock_wallet(db, tx.user_id)
        amount = quantize(tx.amount)
        wallet.held = quantize(wallet.held - amount)

        if approved:
            wallet.total_withdrawn = quantize(wallet.total_withdrawn + amount)
            tx.status = TransactionStatus.COMPLETED
        else:
            wallet.available = quantize(wallet.available + amount)
            tx.status = TransactionStatus.FAILED
        tx.processed_at = now
        db.flush()

        logger.info(f"Withdrawal {tx.id} {'approved' if approved else 'rejected'}")
        publish_wallet(db, wallet)
        return tx

    @staticmethod
    def list_transactions(
        db: Session,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        tx_type: Optional[TransactionType] = None,
    ) -> Dict[str, Any]:
        query = db.query(Transaction).filter(Transaction.user_id == user_id)
        if tx_type is not None:
            query = query.filter(Transaction.type == tx_type)
        query = query.order_by(Transaction.created_at.desc())
        return paginate(query, page, limit, serialize_transaction)

