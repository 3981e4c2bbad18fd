"""
Round API Endpoints

重點：
1. 查詢類 endpoint 不需要登入（前端首頁就會顯示倒數與能量條）
2. 所有業務邏輯集中在 RoundManager / SettlementManager
3. 管理員 endpoint 可以手動開局、Freeze、結算、取消，與觸發一次時鐘檢查
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import logging

from database import get_db, utcnow
from models import RoundState, User
from schemas import CancelRoundRequest, OpenRoundRequest
from api.deps import require_admin
from core.exceptions import BadRequest, InvalidStateTransition, NotFound
from core.round_manager import RoundManager, serialize_round
from core.scheduler import round_scheduler
from core.settlement import SettlementManager
from services.fairness_service import commitment_for, to_epoch_ms, verify_commitment
from services.round_phase_service import (
    DURATION_WINDOW_ENDS,
    calculate_clock_state,
    duration_remaining_seconds,
)

router = APIRouter(prefix="/rounds", tags=["rounds"])
logger = logging.getLogger(__name__)


def _with_live_totals(db: Session, round_obj):
    data = serialize_round(round_obj)
    data["liveTotals"] = RoundManager.live_totals(db, round_obj.id)
    if round_obj.state in (RoundState.OPEN, RoundState.FROZEN):
        data["clock"] = calculate_clock_state(round_obj, utcnow())
    return data


@router.get("/current")
def get_current_round(db: Session = Depends(get_db)):
    """
    取得目前回合

    返回：
        - Round 資訊（secret 在結算前不會出現）
        - liveTotals: 真人下注總額（不含系統種子與 demo）
        - clock: 倒數資訊（OPEN / FROZEN 才有）
    """
    round_obj = RoundManager.get_current_round(db)
    if not round_obj:
        raise NotFound("No round available")
    return _with_live_totals(db, round_obj)


@router.get("/active")
def get_active_round(db: Session = Depends(get_db)):
    round_obj = RoundManager.get_active_round(db)
    if not round_obj:
        raise NotFound("No active round")
    return _with_live_totals(db, round_obj)


@router.get("/clock")
def get_clock(db: Session = Depends(get_db)):
    """
    Master clock 狀態，加上 5 / 10 / 20 分鐘視窗各自的剩餘秒數
    """
    round_obj = RoundManager.get_active_round(db)
    if not round_obj:
        raise NotFound("No active round")
    clock = calculate_clock_state(round_obj, utcnow())
    clock["durations"] = {
        str(minutes): duration_remaining_seconds(clock["remainingSeconds"], minutes)
        for minutes in DURATION_WINDOW_ENDS
    }
    return clock


@router.get("/history")
def get_round_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """已結算回合，最新的在前，secret 已公開"""
    return RoundManager.get_round_history(db, page, limit)


@router.get("/stats")
def get_round_stats(db: Session = Depends(get_db)):
    return RoundManager.get_round_stats(db)


# ============ Admin ============

@router.post("/admin/open", status_code=201)
def admin_open_round(
    payload: OpenRoundRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """管理員手動開局（已有進行中的回合時拒絕）"""
    if RoundManager.get_active_round(db) is not None:
        raise InvalidStateTransition("An active round already exists")
    round_obj = RoundManager.open_new_round(
        db, round_duration=payload.round_duration, freeze_offset=payload.freeze_offset
    )
    logger.info(f"Admin {admin.id} opened round {round_obj.round_number}")
    return serialize_round(round_obj)


@router.post("/admin/trigger")
def admin_trigger_clock(admin: User = Depends(require_admin)):
    """手動執行一次時鐘檢查（freeze / checkpoint / settle / 開新局）"""
    logger.info(f"Admin {admin.id} triggered a round check")
    return round_scheduler.manual_trigger()


@router.get("/admin/scheduler")
def admin_scheduler_status(admin: User = Depends(require_admin)):
    return round_scheduler.status()


@router.post("/admin/{round_id}/freeze")
def admin_force_freeze(
    round_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    round_obj = RoundManager.get_round(db, round_id)
    frozen = RoundManager.admin_force_freeze(db, round_obj.id)
    return serialize_round(frozen)


@router.post("/admin/{round_id}/settle")
def admin_settle_round(
    round_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    手動結算（只能結算 FROZEN 回合）

    異常：
        409: 回合不是 FROZEN，或正在被其他人結算
    """
    round_obj = RoundManager.get_round(db, round_id)
    settled = SettlementManager.settle_round(db, round_obj.id)
    if settled is None:
        raise InvalidStateTransition("Round is not FROZEN or is already being settled")
    return serialize_round(settled)


@router.post("/admin/{round_id}/cancel")
def admin_cancel_round(
    round_id: str,
    payload: CancelRoundRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    round_obj = RoundManager.get_round(db, round_id)
    cancelled = RoundManager.admin_cancel_round(db, round_obj.id, payload.reason)
    return serialize_round(cancelled)


# ============ 單一回合 ============

@router.get("/{identifier}")
def get_round(identifier: str, db: Session = Depends(get_db)):
    """identifier 可以是回合編號或 ID"""
    return _with_live_totals(db, RoundManager.get_round(db, identifier))


@router.get("/{identifier}/totals")
def get_round_totals(identifier: str, db: Session = Depends(get_db)):
    round_obj = RoundManager.get_round(db, identifier)
    return {
        "roundId": round_obj.id,
        "roundNumber": round_obj.round_number,
        "totals": RoundManager.live_totals(db, round_obj.id),
    }


@router.get("/{identifier}/verify")
def verify_round(identifier: str, db: Session = Depends(get_db)):
    """
    驗證 fairness commit

    重新計算 sha256(f"{epoch_ms}||{secret}") 並和開局時公開的 hash 比對
    """
    round_obj = RoundManager.get_round(db, identifier)
    if round_obj.state != RoundState.SETTLED:
        raise BadRequest("Round is not settled yet")
    artifact = round_obj.artifact
    if artifact is None:
        raise NotFound("Fairness artifact not found")

    timestamp = (artifact.artifact_data or {}).get("timestamp") or to_epoch_ms(round_obj.opened_at)
    return {
        "roundId": round_obj.id,
        "roundNumber": round_obj.round_number,
        "commitHash": artifact.commit_hash,
        "secret": artifact.secret,
        "timestamp": timestamp,
        "computedHash": commitment_for(timestamp, artifact.secret),
        "valid": verify_commitment(artifact.commit_hash, timestamp, artifact.secret),
    }
