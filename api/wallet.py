"""
Wallet API Endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import logging

from database import get_db
from models import TransactionType, User
from schemas import DepositRequest, ProcessWithdrawalRequest, TransferRequest, WithdrawRequest
from api.deps import get_current_user, require_admin
from core.exceptions import BadRequest, TransfersDisabled
from core.wallet_manager import (
    WalletManager,
    calculate_withdrawal_fee,
    serialize_balance,
    serialize_transaction,
    serialize_wallet,
)

router = APIRouter(prefix="/wallet", tags=["wallet"])
logger = logging.getLogger(__name__)


@router.get("")
def get_wallet(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_wallet(WalletManager.get_wallet(db, user.id))


@router.get("/balance")
def get_balance(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    返回：
        available / held / total / demoAvailable
    """
    return serialize_balance(WalletManager.get_wallet(db, user.id))


@router.get("/transactions")
def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tx_type = None
    if type:
        try:
            tx_type = TransactionType(type.upper())
        except ValueError:
            raise BadRequest(f"Unknown transaction type {type}")
    return WalletManager.list_transactions(db, user.id, page, limit, tx_type)


@router.get("/withdrawal-fee")
def get_withdrawal_fee(amount: float = Query(..., gt=0)):
    return {"amount": str(amount), "fee": str(calculate_withdrawal_fee(amount))}


@router.post("/deposit", status_code=201)
def deposit(
    payload: DepositRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tx = WalletManager.deposit(
        db,
        user.id,
        payload.amount,
        method=payload.method,
        reference=payload.reference,
        idempotency_key=payload.idempotency_key,
    )
    return serialize_transaction(tx)


@router.post("/withdraw", status_code=201)
def withdraw(
    payload: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """提款申請，等管理員審核"""
    tx = WalletManager.withdraw(
        db,
        user.id,
        payload.amount,
        method=payload.method,
        reference=payload.reference,
        idempotency_key=payload.idempotency_key,
    )
    return serialize_transaction(tx)


@router.post("/transfer")
def transfer(payload: TransferRequest, user: User = Depends(get_current_user)):
    """站內轉帳已停用"""
    logger.warning(f"User {user.id} attempted an internal transfer")
    raise TransfersDisabled()


@router.post("/admin/withdrawals/{transaction_id}")
def process_withdrawal(
    transaction_id: str,
    payload: ProcessWithdrawalRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    tx = WalletManager.process_withdrawal(db, transaction_id, payload.approved)
    logger.info(f"Admin {admin.id} processed withdrawal {transaction_id}")
    return serialize_transaction(tx)
