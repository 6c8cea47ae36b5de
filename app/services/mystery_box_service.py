# classroom-bazaar/app/services/mystery_box_service.py
"""
ミステリーボックスの設定（作成・編集・削除）

保存前に必ず validate_pool を呼ぶ。DB のフックには頼らない。
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.errors import BoxNotFound, UnknownPrize
from app.db import models
from app.schemas.mystery_box import (
    CandidateIn,
    CandidateOut,
    MysteryBoxCreate,
    MysteryBoxOut,
    MysteryBoxUpdate,
)
from app.services.reward_pool import RewardCandidate, pool_from_box, validate_pool

logger = logging.getLogger(__name__)


def _check_pool(db: Session, classroom_id: str, item_pool: List[CandidateIn]) -> None:
    """排出テーブルの検証と、賞品がこのクラスのテンプレートとして存在するかの確認"""
    validate_pool(
        [
            RewardCandidate(prize_id=c.item_id, rarity=c.rarity, base_chance=c.base_chance)
            for c in item_pool
        ]
    )

    item_ids = [c.item_id for c in item_pool]
    found = {
        row.id
        for row in db.query(models.Item.id).filter(
            models.Item.id.in_(item_ids),
            models.Item.classroom_id == classroom_id,
            models.Item.owner_id.is_(None),
        )
    }
    missing = [i for i in item_ids if i not in found]
    if missing:
        raise UnknownPrize(
            "One or more items do not exist in this bazaar",
            {"item_ids": missing},
        )


def _build_candidates(item_pool: List[CandidateIn]) -> List[models.MysteryBoxCandidate]:
    return [
        models.MysteryBoxCandidate(
            item_id=c.item_id,
            rarity=c.rarity.value,
            base_chance=c.base_chance,
            position=i,
        )
        for i, c in enumerate(item_pool)
    ]


def create_box(
    db: Session, data: MysteryBoxCreate, created_by: Optional[int] = None
) -> models.MysteryBox:
    _check_pool(db, data.classroom_id, data.item_pool)

    box = models.MysteryBox(
        classroom_id=data.classroom_id,
        name=data.name,
        description=data.description,
        price=data.price,
        image_url=data.image_url,
        luck_multiplier=data.luck_multiplier,
        pity_enabled=data.pity_enabled,
        pity_threshold=data.pity_threshold,
        pity_minimum_rarity=data.pity_minimum_rarity.value,
        max_opens_per_player=data.max_opens_per_player,
        active=True,
        created_by=created_by,
    )
    box.candidates = _build_candidates(data.item_pool)
    db.add(box)
    db.commit()
    db.refresh(box)
    logger.info("mystery box created id=%s classroom=%s", box.id, box.classroom_id)
    return box


def get_box(db: Session, box_id: int) -> models.MysteryBox:
    box = db.get(models.MysteryBox, box_id)
    if box is None or not box.active:
        raise BoxNotFound("Mystery box not found", {"box_id": box_id})
    return box


def list_boxes(db: Session, classroom_id: str) -> List[models.MysteryBox]:
    return (
        db.query(models.MysteryBox)
        .filter(
            models.MysteryBox.classroom_id == classroom_id,
            models.MysteryBox.active == True,  # noqa: E712
        )
        .order_by(models.MysteryBox.created_at.desc(), models.MysteryBox.id.desc())
        .all()
    )


def update_box(db: Session, box_id: int, data: MysteryBoxUpdate) -> models.MysteryBox:
    box = get_box(db, box_id)
    changes = data.model_dump(exclude_unset=True, exclude={"item_pool"})

    if data.item_pool is not None:
        item_pool = data.item_pool
    else:
        # 既存の排出テーブルも再検証する
        item_pool = [
            CandidateIn(item_id=c.prize_id, rarity=c.rarity, base_chance=c.base_chance)
            for c in pool_from_box(box)
        ]
    _check_pool(db, box.classroom_id, item_pool)

    for key, value in changes.items():
        if key == "pity_minimum_rarity" and value is not None:
            value = value.value
        setattr(box, key, value)

    if data.item_pool is not None:
        # 一意制約 (box_id, item_id) に当たらないよう、先に古い行を消す
        box.candidates.clear()
        db.flush()
        box.candidates.extend(_build_candidates(item_pool))

    db.commit()
    db.refresh(box)
    logger.info("mystery box updated id=%s fields=%s", box.id, sorted(changes))
    return box


def deactivate_box(db: Session, box_id: int) -> models.MysteryBox:
    """論理削除。台帳（天井の履歴）から参照されるため行は残す"""
    box = get_box(db, box_id)
    box.active = False
    db.commit()
    logger.info("mystery box deactivated id=%s", box.id)
    return box


def to_box_out(box: models.MysteryBox) -> MysteryBoxOut:
    return MysteryBoxOut(
        id=box.id,
        classroom_id=box.classroom_id,
        name=box.name,
        description=box.description,
        price=box.price,
        image_url=box.image_url,
        luck_multiplier=box.luck_multiplier,
        pity_enabled=bool(box.pity_enabled),
        pity_threshold=box.pity_threshold,
        pity_minimum_rarity=box.pity_minimum_rarity,
        max_opens_per_player=box.max_opens_per_player,
        active=bool(box.active),
        item_pool=[
            CandidateOut(
                item_id=c.item_id,
                item_name=c.item.name if c.item is not None else None,
                rarity=c.rarity,
                base_chance=c.base_chance,
            )
            for c in box.candidates
        ],
    )
