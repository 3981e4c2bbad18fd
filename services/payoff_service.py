"""
結算服務：Forex Spin 的 Payoff 計算邏輯

純計算邏輯，不碰資料庫也不改狀態（狀態由 SettlementManager 負責）

規則：
┌──────────────┬────────────────────────────────────────────┐
│ 任一層平手    │ 所有分層注單皆輸，GLOBAL INDECISION 贏 2 倍   │
│ 沒有平手      │ 每一層「少數方」贏 2 倍，INDECISION 全輸      │
└──────────────┴────────────────────────────────────────────┘

平手：雙方金額到分位都相等（包含 0 對 0）。
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Tuple

from models import BetMarket

CENT = Decimal("0.01")
PAYOUT_MULTIPLIER = Decimal("2")

# 三個分層市場（順序即為前端顯示順序）
LAYER_SIDES: Dict[BetMarket, Tuple[str, str]] = {
    BetMarket.OUTER: ("BUY", "SELL"),
    BetMarket.MIDDLE: ("BLUE", "RED"),
    BetMarket.INNER: ("HIGH_VOL", "LOW_VOL"),
}

MARKET_SELECTIONS: Dict[BetMarket, Tuple[str, ...]] = {
    **LAYER_SIDES,
    BetMarket.GLOBAL: ("INDECISION",),
}

# (market, selection) -> Round 上對應的總額欄位
TOTAL_COLUMNS: Dict[Tuple[BetMarket, str], str] = {
    (BetMarket.OUTER, "BUY"): "outer_buy",
    (BetMarket.OUTER, "SELL"): "outer_sell",
    (BetMarket.MIDDLE, "BLUE"): "middle_blue",
    (BetMarket.MIDDLE, "RED"): "middle_red",
    (BetMarket.INNER, "HIGH_VOL"): "inner_high_vol",
    (BetMarket.INNER, "LOW_VOL"): "inner_low_vol",
    (BetMarket.GLOBAL, "INDECISION"): "global_indecision",
}


def quantize(amount) -> Decimal:
    """金額四捨五入到分"""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def is_valid_selection(market: BetMarket, selection: str) -> bool:
    return selection in MARKET_SELECTIONS.get(market, ())


def empty_totals() -> Dict[BetMarket, Dict[str, Decimal]]:
    """{market: {selection: 0}}，所有市場、所有選項都有 key"""
    return {
        market: {selection: Decimal("0.00") for selection in selections}
        for market, selections in MARKET_SELECTIONS.items()
    }


@dataclass
class LayerResult:
    market: BetMarket
    winner: Optional[str]
    tied: bool
    losers_pool: Decimal = Decimal("0.00")


@dataclass
class SettlementOutcome:
    layers: Dict[BetMarket, LayerResult]
    indecision_triggered: bool
    house_fee: Decimal
    totals: Dict[BetMarket, Dict[str, Decimal]] = field(default_factory=dict)

    def is_winning_bet(self, market: BetMarket, selection: str) -> bool:
        """判斷某個 (market, selection) 在這次結算是否贏"""
        if market == BetMarket.GLOBAL:
            return self.indecision_triggered and selection == "INDECISION"
        if self.indecision_triggered:
            return False
        return self.layers[market].winner == selection

    def winner_of(self, market: BetMarket) -> Optional[str]:
        if self.indecision_triggered:
            return None
        return self.layers[market].winner


def is_tied(total_a, total_b) -> bool:
    """
    判斷一層是否平手

    範例：
        is_tied(0, 0) -> True
        is_tied(10, 10.004) -> True（到分位相等）
        is_tied(10, 12) -> False
    """
    return quantize(total_a) == quantize(total_b)


def determine_winner(side_a: str, total_a, side_b: str, total_b) -> Optional[str]:
    """
    少數方規則：金額較少的一方獲勝

    返回：
        獲勝的選項；平手時回傳 None
    """
    if is_tied(total_a, total_b):
        return None
    return side_a if quantize(total_a) < quantize(total_b) else side_b


def settle_layer(market: BetMarket, totals: Dict[str, Decimal]) -> LayerResult:
    side_a, side_b = LAYER_SIDES[market]
    total_a = quantize(totals.get(side_a, 0))
    total_b = quantize(totals.get(side_b, 0))

    winner = determine_winner(side_a, total_a, side_b, total_b)
    if winner is None:
        return LayerResult(market=market, winner=None, tied=True)

    losers_pool = total_b if winner == side_a else total_a
    return LayerResult(market=market, winner=winner, tied=False, losers_pool=losers_pool)


def compute_settlement(totals: Dict[BetMarket, Dict[str, Decimal]], fee_bps: int) -> SettlementOutcome:
    """
    計算整個回合的結算結果

    參數：
        totals: {market: {selection: amount}}，Freeze 時的最終總額
        fee_bps: 抽成（basis points，200 = 2%）

    返回：
        SettlementOutcome

    範例：
        OUTER BUY 100 / SELL 50 -> SELL 贏（少數方），抽成 2% * 100 = 2
        MIDDLE BLUE 30 / RED 30 -> 平手，觸發 INDECISION
    """
    fee_rate = Decimal(fee_bps) / Decimal(10000)
    layers = {market: settle_layer(market, totals.get(market, {})) for market in LAYER_SIDES}
    indecision = any(layer.tied for layer in layers.values())

    if indecision:
        # 所有分層的下注全部算輸，抽成以全部分層總額計算
        layer_volume = sum(
            (quantize(totals.get(market, {}).get(side, 0))
             for market, sides in LAYER_SIDES.items() for side in sides),
            Decimal("0"),
        )
        house_fee = quantize(layer_volume * fee_rate)
    else:
        house_fee = quantize(sum(
            (layer.losers_pool * fee_rate for layer in layers.values()),
            Decimal("0"),
        ))

    return SettlementOutcome(
        layers=layers,
        indecision_triggered=indecision,
        house_fee=house_fee,
        totals=totals,
    )


def calculate_bet_payout(amount, won: bool) -> Tuple[Decimal, Decimal]:
    """
    單張注單的派彩

    返回：
        (payout, profit)；贏：(2 * 本金, 本金)，輸：(0, -本金)
    """
    stake = quantize(amount)
    if won:
        return quantize(stake * PAYOUT_MULTIPLIER), stake
    return Decimal("0.00"), -stake
