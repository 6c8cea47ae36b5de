# classroom-bazaar/app/services/luck.py
"""
ラック補正（LuckAdjustor）

プレイヤーのラックとボックスの倍率から、レア度が高いほど多く上乗せした排出率を
計算し、合計 100% に正規化する。副作用なしの純粋関数。
"""

from dataclasses import dataclass
from typing import List, Sequence

from app.services.reward_pool import MAX_RARITY_RANK, RewardCandidate


# 上乗せのスケール: luck_bonus 1.0 で legendary は +10%
LUCK_SCALE = 10.0
NEUTRAL_LUCK = 1.0


@dataclass(frozen=True)
class AdjustedOdds:
    candidate: RewardCandidate
    pre_normalized: float
    final: float


def luck_bonus(player_luck: float, luck_multiplier: float) -> float:
    """luck_bonus = max(0, (luck - 1) * multiplier)"""
    player_luck = max(0.0, float(player_luck or 0.0))
    luck_multiplier = max(0.0, float(luck_multiplier or 0.0))
    return max(0.0, (player_luck - NEUTRAL_LUCK) * luck_multiplier)


def rarity_weight(candidate: RewardCandidate) -> float:
    """common=0.2 ... legendary=1.0"""
    return candidate.rarity.rank / MAX_RARITY_RANK


def adjust_odds(
    pool: Sequence[RewardCandidate],
    player_luck: float,
    luck_multiplier: float,
) -> List[AdjustedOdds]:
    """
    ラック補正後の排出率を返す（プールの順序を維持）。

    1. bonus = max(0, (luck - 1) * multiplier)
    2. pre = min(100, base + bonus * rarity_weight * 10)
    3. final = pre / sum(pre) * 100
    """
    if not pool:
        return []

    bonus = luck_bonus(player_luck, luck_multiplier)
    pre = [
        min(100.0, c.base_chance + bonus * rarity_weight(c) * LUCK_SCALE)
        for c in pool
    ]

    total = sum(pre)
    if total <= 0:
        # 全候補 0% の場合は均等にする
        even = 100.0 / len(pool)
        return [AdjustedOdds(c, p, even) for c, p in zip(pool, pre)]

    return [AdjustedOdds(c, p, p / total * 100.0) for c, p in zip(pool, pre)]
