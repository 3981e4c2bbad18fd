"""
History service.

Pagination helpers plus per-user bet history / stats, so the frontend can
render authoritative results directly from the server.
"""
import math
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Query, Session

from models import Bet, BetStatus, Round


def clamp_paging(page: int, limit: int, max_limit: int = 100):
    page = max(1, int(page or 1))
    limit = min(max(1, int(limit or 20)), max_limit)
    return page, limit


def paginate(query: Query, page: int, limit: int, serializer) -> Dict[str, Any]:
    """
    Run a paginated query and wrap it as {data, meta}.

    meta = {total, page, limit, totalPages}
    """
    page, limit = clamp_paging(page, limit)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serializer(row) for row in rows],
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


def serialize_bet(bet: Bet) -> Dict[str, Any]:
    return {
        "id": bet.id,
        "roundId": bet.round_id,
        "roundNumber": bet.round.round_number if bet.round else None,
        "userId": bet.user_id,
        "market": bet.market.value,
        "selection": bet.selection,
        "amountUsd": str(bet.amount_usd),
        "status": bet.status.value,
        "isPremiumUser": bet.is_premium_user,
        "isDemo": bet.is_demo,
        "userRoundDuration": bet.user_round_duration,
        "idempotencyKey": bet.idempotency_key,
        "isWinner": bet.is_winner,
        "payoutAmount": str(bet.payout_amount) if bet.payout_amount is not None else None,
        "profitAmount": str(bet.profit_amount) if bet.profit_amount is not None else None,
        "createdAt": bet.created_at.isoformat() if bet.created_at else None,
        "settledAt": bet.settled_at.isoformat() if bet.settled_at else None,
    }


def get_user_bet_history(user_id: str, db: Session, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """Newest first, across every round the user played."""
    query = (
        db.query(Bet)
        .join(Round, Bet.round_id == Round.id)
        .filter(Bet.user_id == user_id)
        .order_by(Bet.created_at.desc())
    )
    return paginate(query, page, limit, serialize_bet)


def get_user_bet_stats(user_id: str, db: Session) -> Dict[str, Any]:
    """
    Aggregate a user's settled live bets.

    Demo bets are excluded; cancelled bets count toward neither wins nor losses.
    """
    bets: List[Bet] = (
        db.query(Bet)
        .filter(Bet.user_id == user_id, Bet.is_demo == False)  # noqa: E712
        .all()
    )

    won = [b for b in bets if b.status == BetStatus.WON]
    lost = [b for b in bets if b.status == BetStatus.LOST]
    decided = len(won) + len(lost)

    wagered = sum((b.amount_usd for b in bets if b.status != BetStatus.CANCELLED), Decimal("0"))
    profit_won = sum((b.profit_amount or Decimal("0") for b in won), Decimal("0"))
    amount_lost = sum((b.amount_usd for b in lost), Decimal("0"))

    return {
        "totalBets": len(bets),
        "wonBets": len(won),
        "lostBets": len(lost),
        "winRate": round(len(won) / decided * 100, 2) if decided else 0.0,
        "totalWagered": str(wagered),
        "totalWon": str(profit_won),
        "profitLoss": str(profit_won - amount_lost),
    }
