# classroom-bazaar/app/services/pity.py
"""
天井（ピティ）判定

「最低保証レア度」に届かなかった連続回数を数え、しきい値以上なら次の開封を保証枠にする。
カウントは pity_counters テーブルに保持し、台帳コミットと同じトランザクションで更新する。
カウンターが無い（旧データ）か、ボックス編集で最低保証レア度が変わった場合は
台帳の履歴から数え直す。
"""

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from app.db import models
from app.services.reward_pool import Rarity, parse_rarity
from app.utils.time_utils import get_now

logger = logging.getLogger(__name__)

MYSTERY_BOX_TX_TYPE = "mystery_box"

# 旧フォーマット: "Opened <box> - Won <prize> (<rarity>) [PITY]"
_LEGACY_RARITY_RE = re.compile(r"\((\w+)\)(?:\s*\[PITY\])?$")


def should_trigger_pity(count: int, threshold: int, enabled: bool = True) -> bool:
    """天井が有効で、連続ハズレ数がしきい値以上なら True"""
    if not enabled:
        return False
    return count >= max(1, int(threshold or 1))


def rarity_of_record(tx: models.LedgerTransaction) -> Optional[Rarity]:
    """台帳レコードのレア度。カラムが無ければ説明文から読み取る"""
    rarity = parse_rarity(tx.rarity)
    if rarity is not None:
        return rarity
    match = _LEGACY_RARITY_RE.search((tx.description or "").strip())
    if not match:
        return None
    return parse_rarity(match.group(1))


def next_miss_count(current: int, won: Rarity, minimum: Rarity) -> int:
    if won >= minimum:
        return 0
    return current + 1


class PityTracker:
    def __init__(self, db: Session):
        self.db = db

    def history(self, user_id: int, box_id: int):
        """プレイヤー×ボックスの開封履歴（新しい順）"""
        return (
            self.db.query(models.LedgerTransaction)
            .filter(
                models.LedgerTransaction.user_id == user_id,
                models.LedgerTransaction.box_id == box_id,
                models.LedgerTransaction.type == MYSTERY_BOX_TX_TYPE,
            )
            .order_by(
                models.LedgerTransaction.created_at.desc(),
                models.LedgerTransaction.id.desc(),
            )
        )

    def misses_from_history(self, user_id: int, box_id: int, minimum: Rarity) -> int:
        """
        履歴を新しい順にたどり、最低保証レア度未満の連続回数を数える。
        レア度が読み取れない記録はハズレ扱い（天井が早めに発動する側に倒す）。
        """
        count = 0
        for tx in self.history(user_id, box_id):
            rarity = rarity_of_record(tx)
            if rarity is None:
                count += 1
                continue
            if rarity >= minimum:
                break
            count += 1
        return count

    def _counter(
        self, user_id: int, box_id: int, for_update: bool = False
    ) -> Optional[models.PityCounter]:
        query = self.db.query(models.PityCounter).filter(
            models.PityCounter.user_id == user_id,
            models.PityCounter.box_id == box_id,
        )
        if for_update:
            # セッションに古い値が残っていても最新の行を読む
            query = query.populate_existing().with_for_update()
        return query.first()

    def _misses(
        self,
        counter: Optional[models.PityCounter],
        user_id: int,
        box_id: int,
        minimum: Rarity,
    ) -> int:
        if counter is not None and counter.minimum_rarity == minimum.value:
            return counter.consecutive_misses
        return self.misses_from_history(user_id, box_id, minimum)

    def consecutive_misses(self, user_id: int, box_id: int, minimum: Rarity) -> int:
        return self._misses(self._counter(user_id, box_id), user_id, box_id, minimum)

    def record_draw(
        self, user_id: int, box_id: int, minimum: Rarity, won: Rarity
    ) -> models.PityCounter:
        """
        開封結果をカウンターに反映する。
        台帳への追記より前に呼ぶこと（履歴から数え直す場合に今回分を含めないため）。
        コミットは呼び出し側（Ledger）が行う。
        """
        counter = self._counter(user_id, box_id, for_update=True)
        current = self._misses(counter, user_id, box_id, minimum)
        if counter is None:
            counter = models.PityCounter(user_id=user_id, box_id=box_id)
            self.db.add(counter)
        counter.minimum_rarity = minimum.value
        counter.consecutive_misses = next_miss_count(current, won, minimum)
        counter.updated_at = get_now()
        logger.debug(
            "pity counter user=%s box=%s won=%s misses=%s",
            user_id,
            box_id,
            won.value,
            counter.consecutive_misses,
        )
        return counter
