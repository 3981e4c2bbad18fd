"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

PostgreSQL 上使用 SELECT ... FOR UPDATE 悲觀鎖；SQLite 會忽略 FOR UPDATE，
所以狀態轉換另外搭配 RoundStateMachine.compare_and_set。
"""
from sqlalchemy.orm import Session, Query

from models import Bet, Round, Wallet


def with_round_lock(round_id: str, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 下注時確認 Round 仍是 OPEN，並在同一個 transaction 內寫入注單
    - Freeze / 取消回合時

    範例：
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)

    參數：
        round_id: Round ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Round).filter(
        Round.id == round_id
    ).with_for_update(nowait=False)


def with_wallet_lock(user_id: str, db: Session) -> Query:
    """
    鎖定使用者的 Wallet（行級鎖）

    所有改動餘額的操作（下注、取消、結算、存提款）都必須先拿這把鎖，
    避免兩個請求同時讀到同一個 available 而超額扣款。
    """
    return db.query(Wallet).filter(
        Wallet.user_id == user_id
    ).with_for_update(nowait=False)


def with_bet_lock(bet_id: str, db: Session) -> Query:
    """鎖定一張注單（取消注單用）"""
    return db.query(Bet).filter(
        Bet.id == bet_id
    ).with_for_update(nowait=False)


def lock_round_bets(round_id: str, db: Session) -> Query:
    """
    鎖定一個回合內的所有注單（結算、取消回合用）

    返回：
        Query object（呼叫 .all() 取得所有結果）
    """
    return db.query(Bet).filter(
        Bet.round_id == round_id
    ).order_by(Bet.created_at).with_for_update(nowait=False)
