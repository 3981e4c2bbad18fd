"""
Round 狀態機：集中管理所有狀態轉換

合法路徑：
    OPEN -> FROZEN -> SETTLING -> SETTLED
    OPEN / FROZEN -> SETTLED（管理員取消回合）

所有狀態變更都必須經過這裡，避免散落在各處的 `round.state = ...`。
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import Round, RoundState
from core.exceptions import InvalidStateTransition
from core.events import event_bus, ROUND_STATE_CHANGED
from database import utcnow

logger = logging.getLogger(__name__)


class RoundStateMachine:
    """Round 狀態機"""

    TRANSITIONS = {
        RoundState.OPEN: {RoundState.FROZEN, RoundState.SETTLED},
        RoundState.FROZEN: {RoundState.SETTLING, RoundState.SETTLED},
        RoundState.SETTLING: {RoundState.SETTLED},
        RoundState.SETTLED: set(),
    }

    @classmethod
    def can_transition(cls, current: RoundState, target: RoundState) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, db: Session, round_obj: Round, target: RoundState) -> Round:
        """
        對已鎖定的 Round 做狀態轉換

        參數：
            db: SQLAlchemy Session
            round_obj: 已經透過 with_round_lock 取得的 Round
            target: 目標狀態

        返回：
            更新後的 Round

        異常：
            InvalidStateTransition: 目前狀態不允許轉到 target
        """
        current = round_obj.state
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Round {round_obj.round_number} cannot move from {current.value} to {target.value}"
            )

        round_obj.state = target
        round_obj.updated_at = utcnow()
        db.flush()

        logger.info(f"Round {round_obj.round_number} state {current.value} -> {target.value}")
        cls._publish(db, round_obj, current)
        return round_obj

    @classmethod
    def compare_and_set(cls, db: Session, round_id: str, expected: RoundState, target: RoundState) -> bool:
        """
        條件式更新：只有在目前狀態仍是 expected 時才會轉換

        這是「任何人都可以嘗試結算」的基礎：兩個 worker 同時呼叫時
        只有一個會拿到 rowcount == 1。

        返回：
            True 表示這次呼叫完成了轉換
        """
        if not cls.can_transition(expected, target):
            raise InvalidStateTransition(f"Cannot move from {expected.value} to {target.value}")

        result = db.execute(
            update(Round)
            .where(Round.id == round_id, Round.state == expected)
            .values(state=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        round_obj = db.get(Round, round_id)
        db.refresh(round_obj)
        logger.info(f"Round {round_obj.round_number} state {expected.value} -> {target.value}")
        cls._publish(db, round_obj, expected)
        return True

    @staticmethod
    def _publish(db: Session, round_obj: Round, previous: RoundState) -> None:
        event_bus.publish(ROUND_STATE_CHANGED, {
            "roundId": round_obj.id,
            "roundNumber": round_obj.round_number,
            "previousState": previous.value,
            "state": round_obj.state.value,
        }, db=db)
