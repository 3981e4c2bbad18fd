"""
Bet Manager：下注與取消注單

重點：
1. place_bet 冪等：同一個 idempotency_key 只會產生一張注單
2. Admission control：now >= freeze_at - cutoff 一律拒絕
3. 錢包與 Round 在同一個 transaction 內鎖定，避免超額扣款
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Bet,
    BetMarket,
    BetStatus,
    Round,
    RoundState,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from core.events import event_bus, BET_PLACED, BET_CANCELLED
from core.exceptions import (
    BadRequest,
    BetLimitExceeded,
    BetNotCancellable,
    BetNotFound,
    Forbidden,
    InsufficientFunds,
    InvalidSelection,
    MarketClosed,
    MarketNotOpen,
    NoActiveRound,
    PremiumRequired,
    UserNotFound,
)
from core.locks import with_bet_lock, with_round_lock
from core.round_manager import RoundManager
from core.wallet_manager import lock_wallet, publish_wallet, refund_bet_stake
from database import transactional, utcnow
from services.history_service import paginate, serialize_bet
from services.payoff_service import is_valid_selection, quantize
from services.preferences_service import ALLOWED_ROUND_DURATIONS, get_preferred_round_duration
from services.premium_service import is_premium_active
from services.round_phase_service import is_accepting_bets

logger = logging.getLogger(__name__)


def _parse_market(market) -> BetMarket:
    try:
        return market if isinstance(market, BetMarket) else BetMarket(str(market).upper())
    except ValueError:
        raise InvalidSelection(f"Unknown market {market}")


def _parse_amount(amount) -> Decimal:
    try:
        value = quantize(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequest("Amount must be a number")
    if value <= 0:
        raise BadRequest("Amount must be greater than 0")
    return value


class BetManager:
    """注單管理器"""

    @staticmethod
    def _find_existing(db: Session, user_id: str, idempotency_key: Optional[str]) -> Optional[Bet]:
        if not idempotency_key:
            return None
        existing = db.query(Bet).filter(Bet.idempotency_key == idempotency_key).first()
        if existing and existing.user_id != user_id:
            raise BadRequest("Idempotency key already used")
        return existing

    @staticmethod
    @transactional
    def place_bet(
        db: Session,
        user_id: str,
        market,
        selection: str,
        amount_usd,
        idempotency_key: Optional[str] = None,
        is_demo: bool = False,
        user_round_duration: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Bet:
        """
        下注（冪等）

        流程：
        1. 驗證金額與選項
        2. 冪等檢查：同一個 key 直接回傳原注單，沒有任何副作用
        3. 鎖定目前的回合，必須是 OPEN
        4. Admission control（premium / regular 各自的 cutoff）
        5. 鎖定錢包，檢查餘額與下注上下限
        6. 扣款（available -> held，demo 扣 demo_available）並建立注單

        異常：
            BadRequest / InvalidSelection: 參數不合法
            NoActiveRound: 目前沒有回合
            MarketNotOpen: 回合不是 OPEN
            MarketClosed: 已過 cutoff
            InsufficientFunds: 餘額不足
            BetLimitExceeded: 超出上下限
        """
        settings = get_settings()
        now = now or utcnow()

        # 1. 驗證
        amount = _parse_amount(amount_usd)
        market = _parse_market(market)
        selection = str(selection or "").upper()
        if not is_valid_selection(market, selection):
            raise InvalidSelection(f"Invalid selection {selection} for market {market.value}")
        if user_round_duration is not None and user_round_duration not in ALLOWED_ROUND_DURATIONS:
            raise BadRequest("userRoundDuration must be 5, 10 or 20")

        # 2. 冪等
        existing = BetManager._find_existing(db, user_id, idempotency_key)
        if existing:
            logger.warning(f"Duplicate bet {idempotency_key} from user {user_id}, returning original")
            return existing

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFound()
        if user_round_duration is None:
            user_round_duration = get_preferred_round_duration(db, user, now)

        # 3. 回合
        active = RoundManager.get_active_round(db)
        if not active:
            raise NoActiveRound()
        round_obj = with_round_lock(active.id, db).first()
        if round_obj.state != RoundState.OPEN:
            raise MarketNotOpen()

        # 4. Admission control
        premium = is_premium_active(user, now)
        if not is_accepting_bets(round_obj, premium, now):
            logger.warning(f"Rejected late bet from user {user_id} on round {round_obj.round_number}")
            raise MarketClosed()

        # 5. 錢包與上下限
        is_demo = bool(is_demo or user.is_demo)
        wallet = lock_wallet(db, user_id)
        balance = wallet.demo_available if is_demo else wallet.available
        if balance < amount:
            raise InsufficientFunds()

        max_bet = settings.max_bet_premium_usd if premium else settings.max_bet_regular_usd
        if amount < settings.min_bet_usd or amount > max_bet:
            raise BetLimitExceeded(f"Bet amount must be between {settings.min_bet_usd} and {max_bet}")

        # 6. 扣款並建立注單
        if is_demo:
            wallet.demo_available = quantize(wallet.demo_available - amount)
        else:
            wallet.available = quantize(wallet.available - amount)
            wallet.held = quantize(wallet.held + amount)

        bet = Bet(
            round_id=round_obj.id,
            user_id=user_id,
            market=market,
            selection=selection,
            amount_usd=amount,
            status=BetStatus.ACCEPTED,
            is_premium_user=premium,
            is_demo=is_demo,
            user_round_duration=user_round_duration,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        db.add(bet)
        try:
            db.flush()
        except IntegrityError:
            # 同一個 key 的另一個請求搶先寫入：回傳已存在的注單
            db.rollback()
            logger.warning(f"Bet idempotency race on {idempotency_key}, returning stored bet")
            return db.query(Bet).filter(Bet.idempotency_key == idempotency_key).one()

        if not is_demo:
            db.add(Transaction(
                user_id=user_id,
                type=TransactionType.BET,
                amount=amount,
                status=TransactionStatus.PENDING,
                description=f"Bet {market.value} {selection} on round {round_obj.round_number}",
                bet_id=bet.id,
            ))
            db.flush()

        logger.info(
            f"Bet {bet.id} accepted: user {user_id} {market.value}/{selection} {amount}"
            f"{' (demo)' if is_demo else ''} on round {round_obj.round_number}"
        )
        event_bus.publish(BET_PLACED, serialize_bet(bet), db=db)
        if not is_demo:
            RoundManager.publish_totals(db, round_obj)
        publish_wallet(db, wallet)
        return bet

    @staticmethod
    @transactional
    def cancel_bet(db: Session, user_id: str, bet_id: str, now: Optional[datetime] = None) -> Bet:
        """
        取消注單（Premium 專屬）

        前置條件：
        1. 注單存在且屬於自己
        2. 使用者是 Premium
        3. 注單仍是 ACCEPTED
        4. 回合仍是 OPEN 且未過 cutoff

        異常：
            BetNotFound / Forbidden / PremiumRequired / BetNotCancellable /
            MarketNotOpen / MarketClosed
        """
        now = now or utcnow()
        bet = with_bet_lock(bet_id, db).first()
        if not bet:
            raise BetNotFound(bet_id)
        if bet.user_id != user_id:
            raise Forbidden("You can only cancel your own bets")

        user = db.query(User).filter(User.id == user_id).first()
        if not is_premium_active(user, now):
            raise PremiumRequired("Bet cancellation is available to premium users only")
        if bet.status != BetStatus.ACCEPTED:
            raise BetNotCancellable(f"Bet is {bet.status.value} and cannot be cancelled")

        round_obj = with_round_lock(bet.round_id, db).first()
        if round_obj.state != RoundState.OPEN:
            raise MarketNotOpen()
        if not is_accepting_bets(round_obj, True, now):
            raise MarketClosed()

        wallet = refund_bet_stake(db, bet, f"Refund: bet cancelled on round {round_obj.round_number}", now=now)
        bet.status = BetStatus.CANCELLED
        bet.settled_at = now
        db.flush()

        logger.info(f"Bet {bet.id} cancelled by user {user_id}")
        event_bus.publish(BET_CANCELLED, serialize_bet(bet), db=db)
        if not bet.is_demo:
            RoundManager.publish_totals(db, round_obj)
        if wallet is not None:
            publish_wallet(db, wallet)
        return bet

    # ---------- 查詢 ----------

    @staticmethod
    def get_user_bets(db: Session, user_id: str, round_id: Optional[str] = None) -> List[Bet]:
        """使用者在某回合（預設為目前回合）的注單"""
        if round_id is None:
            current = RoundManager.get_current_round(db)
            if not current:
                return []
            round_id = current.id
        else:
            round_id = RoundManager.get_round(db, round_id).id
        return (
            db.query(Bet)
            .filter(Bet.user_id == user_id, Bet.round_id == round_id)
            .order_by(Bet.created_at.desc())
            .all()
        )

    @staticmethod
    def get_admin_round_bets(db: Session, round_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        round_obj: Round = RoundManager.get_round(db, round_id)
        query = db.query(Bet).filter(Bet.round_id == round_obj.id).order_by(Bet.created_at)
        return paginate(query, page, limit, serialize_bet)
