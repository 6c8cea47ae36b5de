# classroom-bazaar/app/services/draw_engine.py
"""
ミステリーボックスの抽選エンジン

状態遷移: Idle → Validating → (PityDraw | WeightedDraw) → Committing → (Done | Failed)
- Validating: ボックス存在・排出テーブル再検証・残高・開封回数上限
- PityDraw: 最低保証レア度以上の候補から均等に1つ
- WeightedDraw: ラック補正後の排出率で累積分布を引く
- Committing: Ledger に委譲（アトミック）
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    BoxNotFound,
    DrawError,
    InsufficientBalance,
    MaxOpensReached,
    PoolMisconfigured,
)
from app.db import models
from app.services.ledger import Ledger
from app.services.luck import AdjustedOdds, adjust_odds, luck_bonus
from app.services.notifier import DbNotifier, DrawEvent, emit_safely
from app.services.pity import PityTracker, should_trigger_pity
from app.services.reward_pool import (
    DrawResult,
    Rarity,
    RewardCandidate,
    eligible_for_pity,
    parse_rarity,
    pool_from_box,
    validate_pool,
)

logger = logging.getLogger(__name__)


class DrawState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PITY_DRAW = "pity_draw"
    WEIGHTED_DRAW = "weighted_draw"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    DrawState.IDLE: {DrawState.VALIDATING},
    DrawState.VALIDATING: {DrawState.PITY_DRAW, DrawState.WEIGHTED_DRAW, DrawState.FAILED},
    DrawState.PITY_DRAW: {DrawState.COMMITTING, DrawState.FAILED},
    DrawState.WEIGHTED_DRAW: {DrawState.COMMITTING, DrawState.FAILED},
    DrawState.COMMITTING: {DrawState.DONE, DrawState.FAILED},
    DrawState.DONE: set(),
    DrawState.FAILED: set(),
}


@dataclass
class DrawContext:
    """呼び出し側から渡せるオプション"""

    timeout_s: Optional[float] = None
    rng: Optional[random.Random] = None


@dataclass
class DrawAttempt:
    user_id: int
    box_id: int
    state: DrawState = DrawState.IDLE
    error: Optional[DrawError] = None
    history: List[DrawState] = field(default_factory=list)

    def transition(self, state: DrawState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid draw transition {self.state.value} -> {state.value}")
        self.history.append(self.state)
        self.state = state
        logger.debug("draw user=%s box=%s -> %s", self.user_id, self.box_id, state.value)

    def fail(self, error: DrawError) -> None:
        self.error = error
        if self.state not in (DrawState.DONE, DrawState.FAILED):
            self.history.append(self.state)
            self.state = DrawState.FAILED


@dataclass(frozen=True)
class OpenOutcome:
    result: DrawResult
    transaction_id: str
    owned_item_id: int
    balance: int
    price: int
    player_luck: float
    luck_bonus: float


@dataclass(frozen=True)
class OddsPreview:
    box: models.MysteryBox
    odds: List[AdjustedOdds]
    player_luck: float
    luck_bonus: float
    consecutive_misses: int
    pity_ready: bool


def weighted_pick(odds: Sequence[AdjustedOdds], rng: random.Random) -> RewardCandidate:
    """[0,100) の乱数で累積分布をたどる。丸め誤差で外れたら最後の候補"""
    if not odds:
        raise PoolMisconfigured("The mystery box has no prizes.")
    roll = rng.random() * 100.0
    cumulative = 0.0
    for entry in odds:
        cumulative += entry.final
        if cumulative > roll:
            return entry.candidate
    return odds[-1].candidate


def pity_pick(
    pool: Sequence[RewardCandidate], minimum: Rarity, rng: random.Random
) -> RewardCandidate:
    eligible = eligible_for_pity(pool, minimum)
    if not eligible:
        raise PoolMisconfigured(
            "Pity system misconfigured - no eligible items",
            {"pity_minimum_rarity": minimum.value},
        )
    return eligible[rng.randrange(len(eligible))]


class DrawEngine:
    def __init__(
        self,
        db: Session,
        rng: Optional[random.Random] = None,
        notifier=None,
        ledger: Optional[Ledger] = None,
    ):
        self.db = db
        self.rng = rng or random.Random()
        self.notifier = notifier if notifier is not None else DbNotifier(db)
        self.ledger = ledger or Ledger(db)
        self.pity = PityTracker(db)

    def load_box(self, box_id: int) -> models.MysteryBox:
        box = self.db.get(models.MysteryBox, box_id)
        if box is None or not box.active:
            raise BoxNotFound("Mystery box not found", {"box_id": box_id})
        return box

    def player_luck(self, user_id: int) -> float:
        user = self.db.get(models.User, user_id)
        if user is None or user.luck is None:
            return 1.0
        return float(user.luck)

    def preview(self, user_id: int, box_id: int) -> OddsPreview:
        """開封前に見せる補正後の排出率と天井の状況"""
        box = self.load_box(box_id)
        pool = pool_from_box(box)
        luck = self.player_luck(user_id)
        minimum = parse_rarity(box.pity_minimum_rarity) or Rarity.RARE
        misses = self.pity.consecutive_misses(user_id, box.id, minimum)
        return OddsPreview(
            box=box,
            odds=adjust_odds(pool, luck, box.luck_multiplier),
            player_luck=luck,
            luck_bonus=luck_bonus(luck, box.luck_multiplier),
            consecutive_misses=misses,
            pity_ready=should_trigger_pity(misses, box.pity_threshold, bool(box.pity_enabled)),
        )

    def open_box(
        self, user_id: int, box_id: int, context: Optional[DrawContext] = None
    ) -> OpenOutcome:
        """
        ボックスを開封する。

        Raises:
            BoxNotFound, WeightSumInvalid, DuplicateCandidate, InsufficientBalance,
            MaxOpensReached, PoolMisconfigured, LedgerConflict, DrawTimeout
        """
        context = context or DrawContext()
        rng = context.rng or self.rng
        timeout_s = context.timeout_s
        if timeout_s is None:
            timeout_s = settings.DRAW_TIMEOUT_SECONDS
        deadline = time.monotonic() + timeout_s if timeout_s and timeout_s > 0 else None

        attempt = DrawAttempt(user_id=user_id, box_id=box_id)
        try:
            attempt.transition(DrawState.VALIDATING)
            box = self.load_box(box_id)
            pool = pool_from_box(box)
            validate_pool(pool)

            price = int(box.price or 0)
            balance = self.ledger.get_balance(user_id, box.classroom_id)
            if balance < price:
                raise InsufficientBalance(
                    "Insufficient balance", {"balance": balance, "price": price}
                )

            if box.max_opens_per_player:
                opened = self.ledger.count_opens(user_id, box.id)
                if opened >= box.max_opens_per_player:
                    raise MaxOpensReached(
                        "Maximum opens reached for this mystery box",
                        {"max_opens": box.max_opens_per_player, "opened": opened},
                    )

            luck = self.player_luck(user_id)
            bonus = luck_bonus(luck, box.luck_multiplier)
            minimum = parse_rarity(box.pity_minimum_rarity) or Rarity.RARE

            pity_triggered = False
            if box.pity_enabled:
                misses = self.pity.consecutive_misses(user_id, box.id, minimum)
                pity_triggered = should_trigger_pity(misses, box.pity_threshold)
                if pity_triggered:
                    logger.info(
                        "pity triggered user=%s box=%s after %s misses",
                        user_id,
                        box.id,
                        misses,
                    )

            if pity_triggered:
                attempt.transition(DrawState.PITY_DRAW)
                chosen = pity_pick(pool, minimum, rng)
            else:
                attempt.transition(DrawState.WEIGHTED_DRAW)
                chosen = weighted_pick(adjust_odds(pool, luck, box.luck_multiplier), rng)

            result = DrawResult(
                chosen_prize_id=chosen.prize_id,
                rarity=chosen.rarity,
                pity_triggered=pity_triggered,
                prize_name=chosen.name,
            )

            attempt.transition(DrawState.COMMITTING)
            record = self.ledger.commit(user_id, box, result, deadline=deadline)
        except DrawError as e:
            attempt.fail(e)
            self.db.rollback()
            logger.info(
                "draw failed user=%s box=%s state=%s code=%s",
                user_id,
                box_id,
                attempt.history[-1].value if attempt.history else attempt.state.value,
                e.code,
            )
            raise

        attempt.transition(DrawState.DONE)
        outcome = OpenOutcome(
            result=result,
            transaction_id=record.transaction_id,
            owned_item_id=record.owned_item_id,
            balance=self.ledger.get_balance(user_id, box.classroom_id),
            price=price,
            player_luck=luck,
            luck_bonus=bonus,
        )

        emit_safely(
            self.notifier,
            DrawEvent(
                player_id=user_id,
                box_id=box.id,
                prize_id=result.chosen_prize_id,
                rarity=result.rarity.value,
                pity_triggered=result.pity_triggered,
                prize_name=result.prize_name,
                box_name=box.name,
            ),
        )
        return outcome
