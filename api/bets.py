"""
Bet API Endpoints

重點：
1. 下注冪等（idempotencyKey），重送同一個請求不會重複扣款
2. 下注前必須完成年齡確認與條款接受
3. 取消注單只開放給 Premium
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import logging

from database import get_db
from models import User
from schemas import PlaceBetDto
from api.deps import get_current_user, require_admin, require_legal_compliance
from core.bet_manager import BetManager
from services.history_service import get_user_bet_history, get_user_bet_stats, serialize_bet

router = APIRouter(prefix="/bets", tags=["bets"])
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
def place_bet(
    payload: PlaceBetDto,
    user: User = Depends(require_legal_compliance),
    db: Session = Depends(get_db),
):
    """
    下注

    參數（PlaceBetDto）：
        market: OUTER / MIDDLE / INNER / GLOBAL
        selection: BUY / SELL / BLUE / RED / HIGH_VOL / LOW_VOL / INDECISION
        amountUsd: 金額
        idempotencyKey: 選填，重送時回傳原注單
        isDemo: 用 demo 餘額下注
        userRoundDuration: 5 / 10 / 20

    異常：
        400: 市場未開放、已過 cutoff、餘額不足、超出上下限
    """
    bet = BetManager.place_bet(
        db,
        user.id,
        market=payload.market,
        selection=payload.selection,
        amount_usd=payload.amount_usd,
        idempotency_key=payload.idempotency_key,
        is_demo=payload.is_demo,
        user_round_duration=payload.user_round_duration,
    )
    return serialize_bet(bet)


@router.post("/{bet_id}/cancel")
def cancel_bet(
    bet_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return serialize_bet(BetManager.cancel_bet(db, user.id, bet_id))


@router.get("/my")
def get_my_bets(
    round_id: Optional[str] = Query(None, alias="roundId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """自己在某回合的注單（預設為目前回合）"""
    return [serialize_bet(b) for b in BetManager.get_user_bets(db, user.id, round_id)]


@router.get("/history")
def get_bet_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_user_bet_history(user.id, db, page, limit)


@router.get("/stats")
def get_bet_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_user_bet_stats(user.id, db)


@router.get("/admin/rounds/{round_id}")
def get_round_bets(
    round_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return BetManager.get_admin_round_bets(db, round_id, page, limit)
