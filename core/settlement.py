"""
Settlement Manager：回合結算

「任何人都可以嘗試結算」：排程器、管理員手動觸發都走同一個入口，
FROZEN -> SETTLING 的條件式更新保證只有一個呼叫者真的執行派彩，
其他人拿到 None。
"""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import logging

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
)
from core.events import event_bus, ROUND_SETTLED
from core.locks import lock_round_bets
from core.round_manager import RoundManager, round_totals, serialize_round
from core.state_machine import RoundStateMachine
from core.wallet_manager import lock_wallet, publish_wallet
from database import transactional, utcnow
from services.payoff_service import (
    SettlementOutcome,
    calculate_bet_payout,
    compute_settlement,
    quantize,
)

logger = logging.getLogger(__name__)


class SettlementManager:
    """結算管理器"""

    @staticmethod
    @transactional
    def settle_round(db: Session, round_id: str, now: Optional[datetime] = None) -> Optional[Round]:
        """
        結算一個 FROZEN 回合

        流程：
        1. FROZEN -> SETTLING（條件式更新，搶輸的人直接回傳 None）
        2. 用 Freeze 時的總額計算結果（平手 / 少數方）
        3. 逐張注單派彩並更新錢包
        4. 寫入結果，SETTLING -> SETTLED，公開 fairness secret

        返回：
            結算完成的 Round；若這次呼叫沒有拿到結算權則為 None

        注意：
            - 使用 @transactional，任何一步失敗整個結算 rollback，回合回到 FROZEN
        """
        now = now or utcnow()

        # 1. 取得結算權
        if not RoundStateMachine.compare_and_set(db, round_id, RoundState.FROZEN, RoundState.SETTLING):
            logger.info(f"Round {round_id} is not FROZEN or is already being settled, skipping")
            return None
        round_obj = db.get(Round, round_id)

        # 2. 計算結果
        outcome = compute_settlement(round_totals(round_obj), get_settings().house_fee_bps)

        # 3. 派彩
        bets = lock_round_bets(round_id, db).filter(Bet.status == BetStatus.ACCEPTED).all()
        total_paid = SettlementManager._apply_payouts(db, bets, outcome, now)

        # 4. 寫入結果
        round_obj.outer_winner = outcome.winner_of(BetMarket.OUTER)
        round_obj.middle_winner = outcome.winner_of(BetMarket.MIDDLE)
        round_obj.inner_winner = outcome.winner_of(BetMarket.INNER)
        round_obj.outer_tied = outcome.layers[BetMarket.OUTER].tied
        round_obj.middle_tied = outcome.layers[BetMarket.MIDDLE].tied
        round_obj.inner_tied = outcome.layers[BetMarket.INNER].tied
        round_obj.indecision_triggered = outcome.indecision_triggered
        round_obj.total_house_fee = outcome.house_fee
        round_obj.settled_at = now
        RoundStateMachine.transition(db, round_obj, RoundState.SETTLED)

        SettlementManager._reveal_artifact(round_obj, outcome, total_paid, len(bets), now)
        db.flush()

        logger.info(
            f"Settled round {round_obj.round_number}: "
            f"outer={round_obj.outer_winner} middle={round_obj.middle_winner} inner={round_obj.inner_winner} "
            f"indecision={outcome.indecision_triggered} fee={outcome.house_fee} paid={total_paid}"
        )
        event_bus.publish(ROUND_SETTLED, serialize_round(round_obj), db=db)
        return round_obj

    @staticmethod
    def _apply_payouts(db: Session, bets: List[Bet], outcome: SettlementOutcome, now: datetime) -> Decimal:
        """
        逐張注單派彩

        - live 注單：held 扣本金；贏的 available += 2 倍本金，寫 SPIN_WIN；輸的寫 SPIN_LOSS
        - demo 注單：贏的只加回 demo_available
        - 系統種子：只改狀態
        """
        total_paid = Decimal("0")
        by_user: Dict[str, List[Bet]] = defaultdict(list)

        for bet in bets:
            won = outcome.is_winning_bet(bet.market, bet.selection)
            payout, profit = calculate_bet_payout(bet.amount_usd, won)
            bet.status = BetStatus.WON if won else BetStatus.LOST
            bet.is_winner = won
            bet.payout_amount = payout
            bet.profit_amount = profit
            bet.settled_at = now
            if bet.user_id and not bet.is_system_seed:
                by_user[bet.user_id].append(bet)

        # 依 user_id 排序鎖錢包，避免 deadlock
        for user_id in sorted(by_user):
            wallet = lock_wallet(db, user_id)
            for bet in by_user[user_id]:
                stake = quantize(bet.amount_usd)
                payout = quantize(bet.payout_amount)

                if bet.is_demo:
                    if bet.is_winner:
                        wallet.demo_available = quantize(wallet.demo_available + payout)
                    continue

                wallet.held = quantize(wallet.held - stake)
                if bet.is_winner:
                    wallet.available = quantize(wallet.available + payout)
                    wallet.total_won = quantize(wallet.total_won + bet.profit_amount)
                    total_paid += payout
                    db.add(Transaction(
                        user_id=user_id,
                        type=TransactionType.SPIN_WIN,
                        amount=payout,
                        status=TransactionStatus.COMPLETED,
                        description=f"Won {bet.market.value} {bet.selection}",
                        bet_id=bet.id,
                        processed_at=now,
                    ))
                else:
                    wallet.total_lost = quantize(wallet.total_lost + stake)
                    db.add(Transaction(
                        user_id=user_id,
                        type=TransactionType.SPIN_LOSS,
                        amount=stake,
                        status=TransactionStatus.COMPLETED,
                        description=f"Lost {bet.market.value} {bet.selection}",
                        bet_id=bet.id,
                        processed_at=now,
                    ))

                db.query(Transaction).filter(
                    Transaction.bet_id == bet.id,
                    Transaction.type == TransactionType.BET,
                    Transaction.status == TransactionStatus.PENDING,
                ).update({"status": TransactionStatus.COMPLETED, "processed_at": now}, synchronize_session=False)

            db.flush()
            publish_wallet(db, wallet)

        return quantize(total_paid)

    @staticmethod
    def _reveal_artifact(round_obj: Round, outcome: SettlementOutcome, total_paid: Decimal,
                         bet_count: int, now: datetime) -> None:
        artifact = round_obj.artifact
        if artifact is None:
            return
        artifact.revealed_at = now
        artifact.artifact_data = {
            **(artifact.artifact_data or {}),
            "totals": {
                market.value: {selection: str(amount) for selection, amount in sides.items()}
                for market, sides in outcome.totals.items()
            },
            "winners": {
                "outer": round_obj.outer_winner,
                "middle": round_obj.middle_winner,
                "inner": round_obj.inner_winner,
            },
            "indecisionTriggered": outcome.indecision_triggered,
            "houseFee": str(outcome.house_fee),
            "totalPaid": str(total_paid),
            "betCount": bet_count,
            "revealedAt": now.isoformat(),
        }

    @staticmethod
    def settle_due_rounds(db: Session, now: Optional[datetime] = None) -> List[Round]:
        """結算所有已到 settle_at 的 FROZEN 回合；單一回合失敗只記 log"""
        now = now or utcnow()
        settled = []
        for round_id in [r.id for r in RoundManager.get_rounds_to_settle(db, now)]:
            try:
                result = SettlementManager.settle_round(db, round_id, now=now)
                if result is not None:
                    settled.append(result)
            except Exception as e:
                logger.error(f"Failed to settle round {round_id}: {e}", exc_info=True)
        return settled
