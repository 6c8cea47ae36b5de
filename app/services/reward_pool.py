# classroom-bazaar/app/services/reward_pool.py
"""
排出テーブル（RewardPool）の定義と検証

- レア度は common < uncommon < rare < epic < legendary の順序付き
- 同じ賞品の重複は禁止
- 排出率の合計は 100% (誤差 0.01 まで)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from app.core.errors import DuplicateCandidate, PoolMisconfigured, WeightSumInvalid
from app.db import models


WEIGHT_SUM_TOTAL = 100.0
WEIGHT_SUM_EPSILON = 0.01


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return RARITY_RANKS[self]

    def __ge__(self, other):
        if isinstance(other, Rarity):
            return self.rank >= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Rarity):
            return self.rank > other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Rarity):
            return self.rank <= other.rank
        return NotImplemented

    def __lt__(self, other):
        if isinstance(other, Rarity):
            return self.rank < other.rank
        return NotImplemented


RARITY_RANKS = {
    Rarity.COMMON: 1,
    Rarity.UNCOMMON: 2,
    Rarity.RARE: 3,
    Rarity.EPIC: 4,
    Rarity.LEGENDARY: 5,
}
MAX_RARITY_RANK = max(RARITY_RANKS.values())

# 天井の最低保証に指定できるレア度（common は保証にならない）
PITY_RARITIES = [Rarity.UNCOMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY]


def parse_rarity(value) -> Optional[Rarity]:
    """文字列からレア度を取得。不明な値は None"""
    if isinstance(value, Rarity):
        return value
    if not value:
        return None
    try:
        return Rarity(str(value).strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class RewardCandidate:
    prize_id: int
    rarity: Rarity
    base_chance: float
    name: str = ""


@dataclass(frozen=True)
class DrawResult:
    """1回の開封結果。作成後は変更しない"""

    chosen_prize_id: int
    rarity: Rarity
    pity_triggered: bool
    prize_name: str = ""


def pool_from_box(box: models.MysteryBox) -> List[RewardCandidate]:
    """
    DBのボックスから排出テーブルを組み立てる（position順）

    Raises:
        PoolMisconfigured: 保存されているレア度が読み取れない
    """
    pool = []
    for c in box.candidates:
        rarity = parse_rarity(c.rarity)
        if rarity is None:
            raise PoolMisconfigured(
                "The mystery box has a prize with an unknown rarity.",
                {"prize_id": c.item_id, "rarity": c.rarity},
            )
        pool.append(
            RewardCandidate(
                prize_id=c.item_id,
                rarity=rarity,
                base_chance=float(c.base_chance),
                name=c.item.name if c.item is not None else "",
            )
        )
    return pool


def validate_pool(pool: Sequence[RewardCandidate]) -> None:
    """
    排出テーブルを検証する。問題があれば例外を投げる（自動修正はしない）。

    Raises:
        DuplicateCandidate: 同じ prize_id が複数ある
        WeightSumInvalid: 排出率が範囲外、または合計が 100% にならない
    """
    seen = set()
    duplicates = []
    for c in pool:
        if c.prize_id in seen:
            duplicates.append(c.prize_id)
        seen.add(c.prize_id)
    if duplicates:
        raise DuplicateCandidate(
            "Each prize can only be added once to the mystery box.",
            {"prize_ids": sorted(set(duplicates))},
        )

    out_of_range = [c.prize_id for c in pool if not 0 <= c.base_chance <= 100]
    if out_of_range:
        raise WeightSumInvalid(
            "Drop chances must be between 0 and 100.",
            {"prize_ids": out_of_range},
        )

    total = sum(c.base_chance for c in pool)
    if abs(total - WEIGHT_SUM_TOTAL) > WEIGHT_SUM_EPSILON:
        raise WeightSumInvalid(
            f"Drop chances must sum to 100% (currently {total:.2f}%)",
            {"total": round(total, 4)},
        )


def eligible_for_pity(
    pool: Iterable[RewardCandidate], minimum: Rarity
) -> List[RewardCandidate]:
    """最低保証レア度以上の候補だけを返す（順序は維持）"""
    return [c for c in pool if c.rarity >= minimum]
