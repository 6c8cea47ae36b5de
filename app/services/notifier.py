# classroom-bazaar/app/services/notifier.py
"""
開封結果の通知（コミット後に送る。失敗しても開封結果には影響させない）
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.db import models

logger = logging.getLogger(__name__)

RARITY_EMOJI = {
    "common": "⚪",
    "uncommon": "🟢",
    "rare": "🔵",
    "epic": "🟣",
    "legendary": "🌟",
}


@dataclass(frozen=True)
class DrawEvent:
    player_id: int
    box_id: int
    prize_id: int
    rarity: str
    pity_triggered: bool
    prize_name: str = ""
    box_name: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class DbNotifier:
    """プレイヤーの通知一覧に1件追加する"""

    def __init__(self, db: Session):
        self.db = db

    def emit(self, event: DrawEvent) -> Optional[models.Notification]:
        title = f"{RARITY_EMOJI.get(event.rarity, '🎁')} {event.box_name or 'Mystery box'} opened!"
        message = f"You won {event.prize_name or 'a prize'} ({event.rarity})."
        if event.pity_triggered:
            message += " Pity guarantee applied."

        notification = models.Notification(
            user_id=event.player_id,
            type="mystery_box_opened",
            title=title,
            message=message,
            link="/inventory",
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return notification


def emit_safely(notifier, event: DrawEvent) -> bool:
    """通知を送る。失敗はログに残して握りつぶす"""
    if notifier is None:
        return False
    try:
        notifier.emit(event)
    except Exception:
        logger.exception("draw notification failed: %s", event.to_dict())
        return False
    return True
