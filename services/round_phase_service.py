"""
回合階段服務：判斷回合時鐘的各種時間點

Forex Spin 的回合設計（以 20 分鐘為例）：
- opened_at ~ freeze_at - cutoff: 可以下注
- freeze_at - cutoff ~ freeze_at: 停止收單（admission control）
- freeze_at: FROZEN，總額鎖定
- settle_at: 結算
- 剩下 60 秒以內: FINAL_MINUTE 階段（前端顯示倒數）
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from models import Round

FINAL_MINUTE_SECONDS = 60
CHECKPOINT_MINUTES = (15, 10, 5)

# 玩家自選回合長度 -> 在 master clock 剩下幾分鐘時，該玩家的視窗結束
DURATION_WINDOW_ENDS = {
    5: (15, 10, 5, 0),
    10: (10, 0),
    20: (0,),
}


def get_cutoff_seconds(round_obj: Round, is_premium: bool) -> int:
    return round_obj.premium_cutoff if is_premium else round_obj.regular_cutoff


def get_bet_cutoff_time(round_obj: Round, is_premium: bool) -> datetime:
    """最後可下注時間 = freeze_at - cutoff"""
    return round_obj.freeze_at - timedelta(seconds=get_cutoff_seconds(round_obj, is_premium))


def is_accepting_bets(round_obj: Round, is_premium: bool, now: datetime) -> bool:
    """
    檢查此時間點是否仍可下注

    規則：
        now >= freeze_at - cutoff 就拒絕（邊界本身也拒絕）
    """
    return now < get_bet_cutoff_time(round_obj, is_premium)


def seconds_remaining(round_obj: Round, now: datetime) -> int:
    """距離結算還剩幾秒（不會小於 0）"""
    remaining = (round_obj.settle_at - now).total_seconds()
    return max(0, int(remaining))


def get_clock_phase(remaining: int) -> str:
    return "FINAL_MINUTE" if remaining <= FINAL_MINUTE_SECONDS else "ACTIVE"


def calculate_clock_state(round_obj: Round, now: datetime) -> Dict[str, Any]:
    """
    計算目前的時鐘狀態（給前端倒數用）

    返回：
        {"roundId", "roundNumber", "state", "remainingSeconds",
         "secondsUntilFreeze", "phase", "serverTime"}
    """
    remaining = seconds_remaining(round_obj, now)
    until_freeze = max(0, int((round_obj.freeze_at - now).total_seconds()))
    return {
        "roundId": round_obj.id,
        "roundNumber": round_obj.round_number,
        "state": round_obj.state.value,
        "remainingSeconds": remaining,
        "secondsUntilFreeze": until_freeze,
        "phase": get_clock_phase(remaining),
        "serverTime": now.isoformat(),
    }


def duration_remaining_seconds(master_remaining: int, duration_minutes: int) -> int:
    """
    玩家自選回合長度下，目前視窗還剩幾秒

    參數：
        master_remaining: master clock 剩餘秒數
        duration_minutes: 5 / 10 / 20

    範例（master 20 分鐘）：
        duration_remaining_seconds(17 * 60, 5) -> 120（視窗在剩 15 分鐘時結束）
        duration_remaining_seconds(12 * 60, 10) -> 120（視窗在剩 10 分鐘時結束）
        duration_remaining_seconds(12 * 60, 20) -> 720
    """
    ends = DURATION_WINDOW_ENDS.get(duration_minutes, DURATION_WINDOW_ENDS[20])
    for end_minute in ends:
        end_seconds = end_minute * 60
        if master_remaining > end_seconds:
            return master_remaining - end_seconds
    return 0


def due_checkpoint(round_obj: Round, now: datetime) -> Optional[int]:
    """
    找出目前應該拍下、但還沒拍的 checkpoint 分鐘標記

    只在 OPEN 狀態有意義；已經拍過的標記不會重複回傳。
    比回合長度還長的標記（例如 5 分鐘回合的 15 分鐘標記）會被略過。
    """
    remaining = seconds_remaining(round_obj, now)
    captured = round_obj.checkpoints or {}
    for minute in CHECKPOINT_MINUTES:
        if minute * 60 >= round_obj.round_duration:
            continue
        if str(minute) in captured:
            continue
        if remaining <= minute * 60:
            return minute
    return None
