"""
種子服務：系統流動性種子

沒有任何真人下注的分層，在 Freeze 前會放一張很小的系統注單，
避免 0 對 0 直接觸發 INDECISION。方向依回合編號輪替：

    round_number % 8 的 bit0 -> OUTER  (0: BUY,      1: SELL)
                       bit1 -> INNER  (0: HIGH_VOL, 1: LOW_VOL)
                       bit2 -> MIDDLE (0: BLUE,     1: RED)
"""
from typing import Dict

from models import BetMarket


def get_seed_rotation(round_number: int) -> Dict[BetMarket, str]:
    """
    計算本回合的種子方向

    範例：
        get_seed_rotation(0) -> {OUTER: BUY, MIDDLE: BLUE, INNER: HIGH_VOL}
        get_seed_rotation(5) -> {OUTER: SELL, MIDDLE: RED, INNER: HIGH_VOL}
    """
    bits = round_number % 8
    return {
        BetMarket.OUTER: "SELL" if bits & 1 else "BUY",
        BetMarket.INNER: "LOW_VOL" if bits & 2 else "HIGH_VOL",
        BetMarket.MIDDLE: "RED" if bits & 4 else "BLUE",
    }
