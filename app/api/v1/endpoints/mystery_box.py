# classroom-bazaar/app/api/v1/endpoints/mystery_box.py
"""
ミステリーボックス API エンドポイント
- 作成 / 一覧 / 詳細 / 編集 / 削除（先生）
- 補正後の排出率プレビュー
- 開封
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.api.v1.endpoints.users import get_current_user, get_current_teacher
from app.db import models
from app.schemas.mystery_box import (
    MysteryBoxCreate,
    MysteryBoxListResponse,
    MysteryBoxOut,
    MysteryBoxUpdate,
    OddsEntry,
    OddsResponse,
    OpenResponse,
    WonItem,
)
from app.services import mystery_box_service
from app.services.draw_engine import DrawEngine


router = APIRouter()


def get_draw_engine(db: Session = Depends(get_db)) -> DrawEngine:
    return DrawEngine(db)


@router.post("", response_model=MysteryBoxOut, status_code=status.HTTP_201_CREATED)
def create_mystery_box(
    data: MysteryBoxCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_teacher),
):
    """ミステリーボックスを作成（排出テーブルは合計100%・重複なし）"""
    box = mystery_box_service.create_box(db, data, created_by=current_user.id)
    return mystery_box_service.to_box_out(box)


@router.get("", response_model=MysteryBoxListResponse)
def list_mystery_boxes(
    classroom_id: str = Query(..., description="クラスID"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """販売中のミステリーボックス一覧"""
    boxes = mystery_box_service.list_boxes(db, classroom_id)
    return {"mystery_boxes": [mystery_box_service.to_box_out(b) for b in boxes]}


@router.get("/{box_id}", response_model=MysteryBoxOut)
def read_mystery_box(
    box_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    box = mystery_box_service.get_box(db, box_id)
    return mystery_box_service.to_box_out(box)


@router.put("/{box_id}", response_model=MysteryBoxOut)
def update_mystery_box(
    box_id: int,
    data: MysteryBoxUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_teacher),
):
    """設定を編集（排出テーブルは再検証される）"""
    box = mystery_box_service.update_box(db, box_id, data)
    return mystery_box_service.to_box_out(box)


@router.delete("/{box_id}")
def delete_mystery_box(
    box_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_teacher),
):
    mystery_box_service.deactivate_box(db, box_id)
    return {"message": "Mystery box deleted"}


@router.get("/{box_id}/odds", response_model=OddsResponse)
def read_mystery_box_odds(
    box_id: int,
    engine: DrawEngine = Depends(get_draw_engine),
    current_user: models.User = Depends(get_current_user),
):
    """自分のラックで補正した排出率と天井の進み具合"""
    preview = engine.preview(current_user.id, box_id)
    box = preview.box
    return OddsResponse(
        box_id=box.id,
        player_luck=preview.player_luck,
        luck_multiplier=box.luck_multiplier,
        luck_bonus=round(preview.luck_bonus, 4),
        pity_enabled=bool(box.pity_enabled),
        pity_threshold=box.pity_threshold,
        pity_minimum_rarity=box.pity_minimum_rarity,
        consecutive_misses=preview.consecutive_misses,
        pity_ready=preview.pity_ready,
        odds=[
            OddsEntry(
                item_id=o.candidate.prize_id,
                item_name=o.candidate.name,
                rarity=o.candidate.rarity.value,
                base_chance=o.candidate.base_chance,
                adjusted_chance=round(o.final, 4),
            )
            for o in preview.odds
        ],
    )


@router.post("/{box_id}/open", response_model=OpenResponse)
def open_mystery_box(
    box_id: int,
    engine: DrawEngine = Depends(get_draw_engine),
    current_user: models.User = Depends(get_current_user),
):
    """ミステリーボックスを開封する"""
    outcome = engine.open_box(current_user.id, box_id)
    result = outcome.result

    message = "Mystery box opened!"
    if result.pity_triggered:
        message = "Mystery box opened! Pity guarantee applied."

    return OpenResponse(
        message=message,
        won_item=WonItem(
            id=outcome.owned_item_id,
            prize_id=result.chosen_prize_id,
            name=result.prize_name,
            rarity=result.rarity.value,
        ),
        pity_triggered=result.pity_triggered,
        player_luck=outcome.player_luck,
        luck_bonus=round(outcome.luck_bonus, 2),
        cost=outcome.price,
        balance=outcome.balance,
        transaction_id=outcome.transaction_id,
    )
