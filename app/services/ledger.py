# classroom-bazaar/app/services/ledger.py
"""
台帳（Ledger）: ミステリーボックス開封のアトミックなコミット

1つのトランザクション内で以下を行う。途中の状態が外から見えることはない。
  (a) 残高を FOR UPDATE で読み直して再チェック（開封回数の上限も数え直す）
  (b) 価格分を引き落とし
  (c) 当たった賞品の所持コピーを作成
  (d) 天井カウンターを更新し、台帳レコードを追記

同一プロセス内ではプレイヤー×クラス単位のロックで直列化し、
複数インスタンス間はウォレットの行ロックとバージョン列（楽観ロック）で守る。
一時的な競合は LEDGER_MAX_RETRIES 回までリトライし、それでもダメなら LedgerConflict。
"""

import logging
import time
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, Iterator, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import (
    DrawTimeout,
    InsufficientBalance,
    LedgerConflict,
    MaxOpensReached,
    PoolMisconfigured,
)
from app.db import models
from app.services.pity import MYSTERY_BOX_TX_TYPE, PityTracker
from app.services.reward_pool import DrawResult, Rarity, parse_rarity
from app.utils.time_utils import get_now

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# プレイヤー×クラス単位のプロセス内ロック
# -------------------------------------------------------------------------
_PLAYER_LOCKS: Dict[Tuple[int, str], RLock] = {}
_REGISTRY_LOCK = Lock()


def _lock_for(user_id: int, classroom_id: str) -> RLock:
    key = (user_id, str(classroom_id))
    with _REGISTRY_LOCK:
        lock = _PLAYER_LOCKS.get(key)
        if lock is None:
            lock = RLock()
            _PLAYER_LOCKS[key] = lock
        return lock


@contextmanager
def player_lock(
    user_id: int, classroom_id: str, timeout_s: Optional[float] = None
) -> Iterator[None]:
    """
    同じプレイヤー×クラスの残高を触る処理を直列化する。

    Raises:
        DrawTimeout: timeout_s 内にロックを取得できなかった場合
    """
    lock = _lock_for(user_id, classroom_id)
    if timeout_s is None:
        acquired = lock.acquire()
    else:
        acquired = lock.acquire(timeout=max(0.0, timeout_s))
    if not acquired:
        raise DrawTimeout(
            "The mystery box is busy. Please try again.",
            {"user_id": user_id, "classroom_id": classroom_id},
        )
    try:
        yield
    finally:
        lock.release()


def remaining_seconds(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def check_deadline(deadline: Optional[float]) -> None:
    remaining = remaining_seconds(deadline)
    if remaining is not None and remaining <= 0:
        raise DrawTimeout("Opening the mystery box timed out. Nothing was charged.")


def result_summary(box_name: str, result: DrawResult) -> str:
    """台帳の表示用テキスト（旧フォーマットと互換）"""
    text = f"Opened {box_name} - Won {result.prize_name} ({result.rarity.value})"
    if result.pity_triggered:
        text += " [PITY]"
    return text


class Ledger:
    def __init__(self, db: Session, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max(
            1, max_retries if max_retries is not None else settings.LEDGER_MAX_RETRIES
        )

    def get_wallet(self, user_id: int, classroom_id: str) -> Optional[models.Wallet]:
        return (
            self.db.query(models.Wallet)
            .filter(
                models.Wallet.user_id == user_id,
                models.Wallet.classroom_id == classroom_id,
            )
            .first()
        )

    def get_balance(self, user_id: int, classroom_id: str) -> int:
        wallet = self.get_wallet(user_id, classroom_id)
        return wallet.balance if wallet else 0

    def count_opens(self, user_id: int, box_id: int) -> int:
        return (
            self.db.query(models.LedgerTransaction)
            .filter(
                models.LedgerTransaction.user_id == user_id,
                models.LedgerTransaction.box_id == box_id,
                models.LedgerTransaction.type == MYSTERY_BOX_TX_TYPE,
            )
            .count()
        )

    def commit(
        self,
        user_id: int,
        box: models.MysteryBox,
        result: DrawResult,
        deadline: Optional[float] = None,
    ) -> models.LedgerTransaction:
        """
        開封結果をアトミックに確定する。

        Raises:
            InsufficientBalance: ロック取得後の再チェックで残高不足
            LedgerConflict: 一時的な競合がリトライ上限を超えた
            DrawTimeout: 締め切りまでにコミットできなかった
        """
        classroom_id = box.classroom_id
        with player_lock(user_id, classroom_id, timeout_s=remaining_seconds(deadline)):
            for attempt in range(1, self.max_retries + 1):
                try:
                    check_deadline(deadline)
                    record = self._apply(user_id, box, result)
                    check_deadline(deadline)
                    self.db.commit()
                except (StaleDataError, OperationalError, IntegrityError) as e:
                    # 一時的な競合。天井カウンターの同時作成による一意制約違反もここに来る
                    self.db.rollback()
                    logger.warning(
                        "ledger commit conflict user=%s box=%s attempt=%s/%s: %s",
                        user_id,
                        box.id,
                        attempt,
                        self.max_retries,
                        e,
                    )
                    continue
                except Exception:
                    self.db.rollback()
                    raise

                logger.info(
                    "ledger commit user=%s box=%s tx=%s amount=%s",
                    user_id,
                    box.id,
                    record.transaction_id,
                    record.amount,
                )
                return record

        raise LedgerConflict(
            "Could not open the mystery box right now. Please try again.",
            {"attempts": self.max_retries},
        )

    def _apply(
        self, user_id: int, box: models.MysteryBox, result: DrawResult
    ) -> models.LedgerTransaction:
        price = int(box.price or 0)

        # (a) 最新の残高をロック付きで読み直す
        wallet = (
            self.db.query(models.Wallet)
            .filter(
                models.Wallet.user_id == user_id,
                models.Wallet.classroom_id == box.classroom_id,
            )
            .populate_existing()
            .with_for_update()
            .first()
        )
        balance = wallet.balance if wallet else 0
        if balance < price:
            raise InsufficientBalance(
                "Insufficient balance",
                {"balance": balance, "price": price},
            )

        # 開封回数の上限もロック下で数え直す
        if box.max_opens_per_player:
            opened = self.count_opens(user_id, box.id)
            if opened >= box.max_opens_per_player:
                raise MaxOpensReached(
                    "Maximum opens reached for this mystery box",
                    {"max_opens": box.max_opens_per_player, "opened": opened},
                )

        # (b) 引き落とし
        if wallet is not None and price > 0:
            wallet.balance = balance - price

        # (c) 賞品テンプレートを複製して所持品にする
        prize = self.db.get(models.Item, result.chosen_prize_id)
        if prize is None or not prize.is_template:
            raise PoolMisconfigured(
                "The prize for this mystery box no longer exists.",
                {"prize_id": result.chosen_prize_id},
            )
        owned = models.Item(
            classroom_id=box.classroom_id,
            name=prize.name,
            description=prize.description,
            price=prize.price,
            category=prize.category,
            image_url=prize.image_url,
            owner_id=user_id,
            source_item_id=prize.id,
        )
        self.db.add(owned)

        # (d) 天井カウンター（今回分を追記する前に数える）と台帳レコード
        minimum = parse_rarity(box.pity_minimum_rarity) or Rarity.RARE
        PityTracker(self.db).record_draw(user_id, box.id, minimum, result.rarity)

        self.db.flush()

        record = models.LedgerTransaction(
            user_id=user_id,
            classroom_id=box.classroom_id,
            box_id=box.id,
            type=MYSTERY_BOX_TX_TYPE,
            amount=-price,
            description=result_summary(box.name, result),
            prize_item_id=prize.id,
            owned_item_id=owned.id,
            rarity=result.rarity.value,
            pity_triggered=result.pity_triggered,
            created_at=get_now(),
        )
        self.db.add(record)
        # バージョン不一致はここで StaleDataError になる
        self.db.flush()
        return record
