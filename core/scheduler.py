"""
回合排程器（Master Clock）

用 APScheduler 的 BackgroundScheduler 驅動回合時鐘：

- 每 SCHEDULER_INTERVAL_SECONDS 秒：freeze 到期回合 -> 拍 checkpoint ->
  結算到期回合 -> 確保有一個進行中的回合
- 每分鐘：記錄回合統計
- 每 5 分鐘：處理過期的 Premium 訂閱

同一時間只會有一個 tick 在跑；上一個還沒跑完，下一個直接跳過。
"""
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Optional
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from models import Round, RoundState
from core.round_manager import RoundManager
from core.settlement import SettlementManager
from database import SessionLocal, utcnow
from services.premium_service import check_expired_subscriptions
from services.round_phase_service import due_checkpoint

logger = logging.getLogger(__name__)


def run_round_transitions(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    執行一次回合時鐘檢查

    流程：
    1. Freeze 所有到期的 OPEN 回合（freeze 內會先放系統種子）
    2. 為 OPEN 回合拍下到期的 checkpoint
    3. 結算所有到期的 FROZEN 回合
    4. 沒有進行中的回合就開一個新的

    返回：
        本次 tick 的摘要 {frozen, checkpoints, settled, opened}
    """
    now = now or utcnow()
    summary: Dict[str, Any] = {"frozen": [], "checkpoints": [], "settled": [], "opened": None}

    # 1. Freeze
    summary["frozen"] = [r.round_number for r in RoundManager.freeze_expired_rounds(db, now)]

    # 2. Checkpoints
    for round_obj in db.query(Round).filter(Round.state == RoundState.OPEN).all():
        minute = due_checkpoint(round_obj, now)
        if minute is None:
            continue
        try:
            RoundManager.capture_checkpoint(db, round_obj.id, minute, now=now)
            summary["checkpoints"].append((round_obj.round_number, minute))
        except Exception as e:
            logger.error(f"Failed to capture checkpoint for round {round_obj.id}: {e}", exc_info=True)

    # 3. Settle
    summary["settled"] = [r.round_number for r in SettlementManager.settle_due_rounds(db, now)]

    # 4. 確保有進行中的回合
    if RoundManager.get_active_round(db) is None:
        round_obj = RoundManager.open_new_round(db, now=now)
        summary["opened"] = round_obj.round_number

    return summary


class RoundScheduler:
    """包裝 BackgroundScheduler 的回合排程器"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory
        self._scheduler: Optional[BackgroundScheduler] = None
        self._tick_lock = Lock()
        self.last_tick_at: Optional[datetime] = None
        self.last_summary: Optional[Dict[str, Any]] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        settings = get_settings()
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.check_round_transitions,
            IntervalTrigger(seconds=settings.scheduler_interval_seconds),
            id="round_transitions",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self._scheduler.add_job(
            self.log_round_stats,
            IntervalTrigger(minutes=1),
            id="round_stats",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.expire_premium,
            IntervalTrigger(minutes=5),
            id="premium_expiry",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Round scheduler started (every {settings.scheduler_interval_seconds}s)")

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Round scheduler stopped")

    def check_round_transitions(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        排程器的 tick；也給管理員手動觸發用

        返回：
            摘要；上一個 tick 還在跑時回傳 None
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous round check still running, skipping this tick")
            return None

        db = self.session_factory()
        try:
            summary = run_round_transitions(db, now)
            self.last_tick_at = now or utcnow()
            self.last_summary = summary
            if summary["frozen"] or summary["settled"] or summary["opened"]:
                logger.info(f"Round check: {summary}")
            return summary
        except Exception as e:
            logger.error(f"Round check failed: {e}", exc_info=True)
            raise
        finally:
            db.close()
            self._tick_lock.release()

    def manual_trigger(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        summary = self.check_round_transitions(now)
        if summary is None:
            return {"triggered": False, "reason": "A round check is already running"}
        return {"triggered": True, **summary}

    def log_round_stats(self) -> None:
        db = self.session_factory()
        try:
            stats = RoundManager.get_round_stats(db)
            logger.info(
                f"Round stats: total={stats['totalRounds']} settled={stats['settledRounds']} "
                f"active={stats['activeRound']['roundNumber'] if stats['activeRound'] else None} "
                f"avgVolume={stats['averageVolume']}"
            )
        finally:
            db.close()

    def expire_premium(self) -> None:
        db = self.session_factory()
        try:
            check_expired_subscriptions(db)
        finally:
            db.close()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "lastTickAt": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "lastSummary": self.last_summary,
        }


round_scheduler = RoundScheduler()
