"""
Round Manager：管理 Round 的完整生命週期

職責：
1. 開新回合（含 fairness commit）
2. Freeze（含系統種子、鎖定最終總額）
3. 查詢回合、即時總額、歷史、統計
4. 管理員強制 Freeze / 取消回合（全額退款）
5. 倒數 checkpoint 快照

原則：
- 單一職責：只管 Round，結算交給 SettlementManager
- 所有狀態變更經過 RoundStateMachine
- 資料結構優先：先檢查資料是否符合要求，再執行操作
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Bet,
    BetMarket,
    BetStatus,
    FairnessArtifact,
    Round,
    RoundState,
)
from core.events import event_bus, ROUND_OPENED, ROUND_SETTLED, TOTALS_UPDATED
from core.exceptions import (
    InvalidRoundTiming,
    InvalidStateTransition,
    RoundNotFound,
)
from core.locks import lock_round_bets, with_round_lock
from core.state_machine import RoundStateMachine
from core.wallet_manager import publish_wallet, refund_bet_stake
from database import transactional, utcnow
from services.fairness_service import generate_commitment, generate_secret, to_epoch_ms
from services.history_service import paginate
from services.payoff_service import (
    LAYER_SIDES,
    MARKET_SELECTIONS,
    TOTAL_COLUMNS,
    empty_totals,
    quantize,
)
from services.seeding_service import get_seed_rotation

logger = logging.getLogger(__name__)

ACTIVE_STATES = (RoundState.OPEN, RoundState.FROZEN)


# ============ 總額轉換 ============

def totals_to_json(totals: Dict[BetMarket, Dict[str, Decimal]]) -> Dict[str, Dict[str, str]]:
    """{BetMarket.OUTER: {"BUY": 1}} -> {"outer": {"BUY": "1.00"}}"""
    return {
        market.value.lower(): {
            selection: str(quantize(totals.get(market, {}).get(selection, 0)))
            for selection in selections
        }
        for market, selections in MARKET_SELECTIONS.items()
    }


def round_totals(round_obj: Round) -> Dict[BetMarket, Dict[str, Decimal]]:
    """Freeze 時寫在 Round 上的最終總額"""
    totals = empty_totals()
    for (market, selection), column in TOTAL_COLUMNS.items():
        totals[market][selection] = quantize(getattr(round_obj, column) or 0)
    return totals


def _sum_bets(db: Session, round_id: str, include_seeds: bool, statuses) -> Dict[BetMarket, Dict[str, Decimal]]:
    query = db.query(Bet.market, Bet.selection, func.sum(Bet.amount_usd)).filter(
        Bet.round_id == round_id,
        Bet.is_demo == False,  # noqa: E712
        Bet.status.in_(statuses),
    )
    if not include_seeds:
        query = query.filter(Bet.is_system_seed == False)  # noqa: E712

    totals = empty_totals()
    for market, selection, amount in query.group_by(Bet.market, Bet.selection).all():
        if selection in totals.get(market, {}):
            totals[market][selection] = quantize(amount or 0)
    return totals


def serialize_round(round_obj: Round) -> Dict[str, Any]:
    """
    Round 的對外格式

    secret 只有在 SETTLED 之後才會出現
    """
    artifact = round_obj.artifact
    revealed = round_obj.state == RoundState.SETTLED
    return {
        "id": round_obj.id,
        "roundNumber": round_obj.round_number,
        "state": round_obj.state.value,
        "openedAt": round_obj.opened_at.isoformat(),
        "freezeAt": round_obj.freeze_at.isoformat(),
        "settleAt": round_obj.settle_at.isoformat(),
        "settledAt": round_obj.settled_at.isoformat() if round_obj.settled_at else None,
        "roundDuration": round_obj.round_duration,
        "freezeOffset": round_obj.freeze_offset,
        "premiumCutoff": round_obj.premium_cutoff,
        "regularCutoff": round_obj.regular_cutoff,
        "totals": totals_to_json(round_totals(round_obj)),
        "totalVolume": str(quantize(round_obj.total_volume or 0)),
        "outerWinner": round_obj.outer_winner,
        "middleWinner": round_obj.middle_winner,
        "innerWinner": round_obj.inner_winner,
        "outerTied": round_obj.outer_tied,
        "middleTied": round_obj.middle_tied,
        "innerTied": round_obj.inner_tied,
        "indecisionTriggered": round_obj.indecision_triggered,
        "totalHouseFee": str(quantize(round_obj.total_house_fee or 0)),
        "checkpoints": round_obj.checkpoints or {},
        "isCancelled": round_obj.is_cancelled,
        "cancelReason": round_obj.cancel_reason,
        "artifact": {
            "commitHash": artifact.commit_hash,
            "secret": artifact.secret if revealed else None,
            "revealedAt": artifact.revealed_at.isoformat() if artifact.revealed_at else None,
            "data": artifact.artifact_data if revealed else {},
        } if artifact else None,
    }


class RoundManager:
    """Round 生命週期管理器"""

    # ---------- 開局 ----------

    @staticmethod
    @transactional
    def open_new_round(
        db: Session,
        round_duration: Optional[int] = None,
        freeze_offset: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Round:
        """
        開一個新回合

        流程：
        1. 決定回合長度與 freeze offset，並驗證
        2. 計算 freeze_at / settle_at
        3. 建立 Round（編號 = 上一回合 + 1）
        4. 建立 fairness commit（secret 結算後才公開）

        參數：
            round_duration: 回合秒數，預設 ROUND_DURATION_MINUTES * 60
            freeze_offset: settle 前幾秒 freeze，預設 60

        異常：
            InvalidRoundTiming: 秒數 <= 0 或 freeze_offset >= round_duration
        """
        settings = get_settings()
        now = now or utcnow()
        duration = round_duration if round_duration is not None else settings.default_round_duration_seconds
        offset = freeze_offset if freeze_offset is not None else settings.freeze_offset_seconds

        # 1. 驗證
        if duration <= 0 or offset <= 0:
            raise InvalidRoundTiming("Round duration and freeze offset must be positive")
        if offset >= duration:
            raise InvalidRoundTiming(
                f"Freeze offset ({offset}s) must be shorter than the round duration ({duration}s)"
            )

        # 2. 建立 Round
        last_number = db.query(func.max(Round.round_number)).scalar() or 0
        round_obj = Round(
            round_number=last_number + 1,
            state=RoundState.OPEN,
            opened_at=now,
            freeze_at=now + timedelta(seconds=duration - offset),
            settle_at=now + timedelta(seconds=duration),
            round_duration=duration,
            freeze_offset=offset,
            premium_cutoff=settings.premium_cutoff_seconds,
            regular_cutoff=settings.regular_cutoff_seconds,
            checkpoints={},
        )
        db.add(round_obj)
        db.flush()  # 取得 round.id

        # 3. Fairness commit
        secret = generate_secret()
        db.add(FairnessArtifact(
            round_id=round_obj.id,
            commit_hash=generate_commitment(now, secret),
            secret=secret,
            artifact_data={"timestamp": to_epoch_ms(now)},
        ))
        db.flush()
        db.refresh(round_obj)

        logger.info(
            f"Opened round {round_obj.round_number} ({duration}s, freeze at {round_obj.freeze_at.isoformat()})"
        )
        event_bus.publish(ROUND_OPENED, serialize_round(round_obj), db=db)
        return round_obj

    # ---------- 查詢 ----------

    @staticmethod
    def get_current_round(db: Session) -> Optional[Round]:
        """最新的一個回合（不論狀態）"""
        return db.query(Round).order_by(Round.round_number.desc()).first()

    @staticmethod
    def get_active_round(db: Session) -> Optional[Round]:
        """最新的 OPEN 或 FROZEN 回合"""
        return (
            db.query(Round)
            .filter(Round.state.in_(ACTIVE_STATES))
            .order_by(Round.round_number.desc())
            .first()
        )

    @staticmethod
    def get_round(db: Session, identifier) -> Round:
        """
        取得 Round：純數字視為回合編號，其他視為 ID

        異常：
            RoundNotFound: Round 不存在
        """
        text = str(identifier)
        if text.isdigit():
            round_obj = db.query(Round).filter(Round.round_number == int(text)).first()
        else:
            round_obj = db.query(Round).filter(Round.id == text).first()
        if not round_obj:
            raise RoundNotFound(identifier)
        return round_obj

    @staticmethod
    def get_rounds_to_settle(db: Session, now: Optional[datetime] = None) -> List[Round]:
        now = now or utcnow()
        return (
            db.query(Round)
            .filter(Round.state == RoundState.FROZEN, Round.settle_at <= now)
            .order_by(Round.settle_at)
            .all()
        )

    @staticmethod
    def compute_user_only_totals(db: Session, round_id: str) -> Dict[BetMarket, Dict[str, Decimal]]:
        """真人下注總額（不含系統種子、不含 demo），給能量條顯示用"""
        return _sum_bets(
            db, round_id, include_seeds=False,
            statuses=(BetStatus.ACCEPTED, BetStatus.WON, BetStatus.LOST),
        )

    @staticmethod
    def live_totals(db: Session, round_id: str) -> Dict[str, Dict[str, str]]:
        return totals_to_json(RoundManager.compute_user_only_totals(db, round_id))

    @staticmethod
    def publish_totals(db: Session, round_obj: Round) -> None:
        event_bus.publish(TOTALS_UPDATED, {
            "roundId": round_obj.id,
            "roundNumber": round_obj.round_number,
            "totals": RoundManager.live_totals(db, round_obj.id),
        }, db=db)

    @staticmethod
    def get_round_history(db: Session, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        query = (
            db.query(Round)
            .filter(Round.state == RoundState.SETTLED)
            .order_by(Round.round_number.desc())
        )
        return paginate(query, page, limit, serialize_round)

    @staticmethod
    def get_round_stats(db: Session) -> Dict[str, Any]:
        active = RoundManager.get_active_round(db)
        average_volume = (
            db.query(func.avg(Round.total_volume))
            .filter(Round.state == RoundState.SETTLED, Round.is_cancelled == False)  # noqa: E712
            .scalar()
        )
        return {
            "totalRounds": db.query(Round).count(),
            "settledRounds": db.query(Round).filter(Round.state == RoundState.SETTLED).count(),
            "activeRound": {
                "id": active.id,
                "roundNumber": active.round_number,
                "state": active.state.value,
                "settleAt": active.settle_at.isoformat(),
            } if active else None,
            "averageVolume": str(quantize(average_volume or 0)),
            "totalBets": db.query(Bet).filter(Bet.is_system_seed == False).count(),  # noqa: E712
        }

    # ---------- Freeze ----------

    @staticmethod
    def _apply_seeds(db: Session, round_obj: Round) -> List[Bet]:
        """
        沒有真人下注的分層放一張系統種子注單

        方向依 round_number 輪替；種子不碰任何錢包。
        """
        amount = quantize(get_settings().seed_amount_usd)
        rotation = get_seed_rotation(round_obj.round_number)
        seeds = []

        for market in LAYER_SIDES:
            has_bets = db.query(Bet).filter(
                Bet.round_id == round_obj.id,
                Bet.market == market,
                Bet.status == BetStatus.ACCEPTED,
                Bet.is_demo == False,  # noqa: E712
            ).first()
            if has_bets:
                continue

            seed = Bet(
                round_id=round_obj.id,
                user_id=None,
                market=market,
                selection=rotation[market],
                amount_usd=amount,
                status=BetStatus.ACCEPTED,
                is_system_seed=True,
            )
            db.add(seed)
            seeds.append(seed)

        if seeds:
            db.flush()
            logger.info(
                f"Seeded round {round_obj.round_number}: "
                + ", ".join(f"{s.market.value}={s.selection}" for s in seeds)
            )
        return seeds

    @staticmethod
    @transactional
    def freeze_round(db: Session, round_id: str, now: Optional[datetime] = None) -> Round:
        """
        Freeze 一個回合（狀態轉換 OPEN -> FROZEN）

        流程：
        1. 條件式轉換（兩個 worker 同時 freeze 只有一個成功）
        2. 放系統種子（SEEDING_ENABLED）
        3. 計算並寫入最終總額（含種子、不含 demo）

        異常：
            RoundNotFound: Round 不存在
            InvalidStateTransition: Round 不是 OPEN
        """
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.state != RoundState.OPEN:
            raise InvalidStateTransition(
                f"Round {round_obj.round_number} is {round_obj.state.value}, only OPEN rounds can be frozen"
            )

        # 1. 狀態轉換
        if not RoundStateMachine.compare_and_set(db, round_id, RoundState.OPEN, RoundState.FROZEN):
            raise InvalidStateTransition(f"Round {round_obj.round_number} was frozen concurrently")

        # 2. 系統種子
        if get_settings().seeding_enabled:
            RoundManager._apply_seeds(db, round_obj)

        # 3. 最終總額
        totals = _sum_bets(db, round_id, include_seeds=True, statuses=(BetStatus.ACCEPTED,))
        volume = Decimal("0")
        for (market, selection), column in TOTAL_COLUMNS.items():
            amount = totals[market][selection]
            setattr(round_obj, column, amount)
            volume += amount
        round_obj.total_volume = quantize(volume)
        db.flush()

        logger.info(f"Froze round {round_obj.round_number} with volume {round_obj.total_volume}")
        return round_obj

    @staticmethod
    def freeze_expired_rounds(db: Session, now: Optional[datetime] = None) -> List[Round]:
        """
        Freeze 所有已到 freeze_at 的 OPEN 回合

        單一回合失敗只記 log，不影響其他回合
        """
        now = now or utcnow()
        due_ids = [
            r.id for r in db.query(Round.id).filter(
                Round.state == RoundState.OPEN,
                Round.freeze_at <= now,
            ).order_by(Round.freeze_at).all()
        ]

        frozen = []
        for round_id in due_ids:
            try:
                frozen.append(RoundManager.freeze_round(db, round_id, now=now))
            except Exception as e:
                logger.error(f"Failed to freeze round {round_id}: {e}", exc_info=True)
        return frozen

    # ---------- Checkpoint ----------

    @staticmethod
    @transactional
    def capture_checkpoint(db: Session, round_id: str, minute_mark: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        拍下倒數 N 分鐘時的即時總額與暫定贏家

        暫定贏家：金額較多的一方（相等視為平手）；INDECISION 只記錄是否有人下注
        """
        now = now or utcnow()
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)

        totals = RoundManager.compute_user_only_totals(db, round_id)
        winners = {}
        tied = {}
        for market, (side_a, side_b) in LAYER_SIDES.items():
            a, b = totals[market][side_a], totals[market][side_b]
            key = market.value.lower()
            tied[key] = a == b
            winners[key] = None if a == b else (side_a if a > b else side_b)

        snapshot = {
            "minuteMark": minute_mark,
            "capturedAt": now.isoformat(),
            "totals": totals_to_json(totals),
            "winners": winners,
            "tied": tied,
            "hasIndecision": totals[BetMarket.GLOBAL]["INDECISION"] > 0,
        }

        # JSON 欄位要整個重新指派才會被偵測到變更
        checkpoints = dict(round_obj.checkpoints or {})
        checkpoints[str(minute_mark)] = snapshot
        round_obj.checkpoints = checkpoints
        db.flush()

        logger.info(f"Captured {minute_mark}-minute checkpoint for round {round_obj.round_number}")
        return snapshot

    # ---------- Admin ----------

    @staticmethod
    def admin_force_freeze(db: Session, round_id: str, now: Optional[datetime] = None) -> Round:
        """管理員強制 Freeze（只允許 OPEN 回合）"""
        logger.warning(f"Admin force freeze requested for round {round_id}")
        return RoundManager.freeze_round(db, round_id, now=now)

    @staticmethod
    @transactional
    def admin_cancel_round(db: Session, round_id: str, reason: str, now: Optional[datetime] = None) -> Round:
        """
        管理員取消回合（全額退款）

        流程：
        1. 鎖定 Round，已 SETTLED 的不能取消
        2. 所有 ACCEPTED 注單退款並標成 CANCELLED
        3. Round 標記 is_cancelled 並直接轉到 SETTLED，公開 secret

        異常：
            RoundNotFound: Round 不存在
            InvalidStateTransition: Round 已經 SETTLED
        """
        now = now or utcnow()
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.state == RoundState.SETTLED:
            raise InvalidStateTransition(f"Round {round_obj.round_number} is already settled")

        # 1. 退款
        bets = lock_round_bets(round_id, db).filter(Bet.status == BetStatus.ACCEPTED).all()
        wallets = {}
        for bet in bets:
            wallet = refund_bet_stake(db, bet, f"Refund: round {round_obj.round_number} cancelled", now=now)
            if wallet is not None:
                wallets[wallet.user_id] = wallet
            bet.status = BetStatus.CANCELLED
            bet.settled_at = now

        # 2. 回合狀態
        round_obj.is_cancelled = True
        round_obj.cancel_reason = reason
        round_obj.settled_at = now
        RoundStateMachine.transition(db, round_obj, RoundState.SETTLED)

        if round_obj.artifact:
            round_obj.artifact.revealed_at = now
            round_obj.artifact.artifact_data = {
                **(round_obj.artifact.artifact_data or {}),
                "cancelled": True,
                "reason": reason,
                "refundedBets": len(bets),
            }
        db.flush()

        logger.warning(f"Round {round_obj.round_number} cancelled ({reason}), refunded {len(bets)} bets")
        event_bus.publish(ROUND_SETTLED, serialize_round(round_obj), db=db)
        for wallet in wallets.values():
            publish_wallet(db, wallet)
        return round_obj
