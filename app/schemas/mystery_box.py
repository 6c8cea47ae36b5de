# classroom-bazaar/app/schemas/mystery_box.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import settings
from app.services.reward_pool import PITY_RARITIES, Rarity
from app.utils.time_utils import to_app_tz


class CandidateIn(BaseModel):
    """排出テーブルの1行（作成・編集リクエスト用）"""

    item_id: int
    rarity: Rarity = Rarity.COMMON
    base_chance: float = Field(..., ge=0, le=100, description="排出率（%）")


def _check_pity_rarity(v: Optional[Rarity]) -> Optional[Rarity]:
    if v is not None and v not in PITY_RARITIES:
        raise ValueError("pity_minimum_rarity must be uncommon or better")
    return v


class MysteryBoxCreate(BaseModel):
    classroom_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    image_url: Optional[str] = None
    item_pool: List[CandidateIn] = Field(..., min_length=1)

    luck_multiplier: float = Field(settings.DEFAULT_LUCK_MULTIPLIER, ge=0)
    pity_enabled: bool = False
    pity_threshold: int = Field(settings.DEFAULT_PITY_THRESHOLD, ge=1)
    pity_minimum_rarity: Rarity = Rarity(settings.DEFAULT_PITY_MINIMUM_RARITY)
    max_opens_per_player: Optional[int] = Field(None, ge=1)

    @field_validator("pity_minimum_rarity")
    @classmethod
    def check_pity_rarity(cls, v):
        return _check_pity_rarity(v)


# 編集時に null を許さない項目（description など以外）
_REQUIRED_ON_UPDATE = (
    "name",
    "price",
    "item_pool",
    "luck_multiplier",
    "pity_enabled",
    "pity_threshold",
    "pity_minimum_rarity",
)


class MysteryBoxUpdate(BaseModel):
    """編集リクエスト。指定した項目だけ更新し、排出テーブルは必ず再検証する"""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    item_pool: Optional[List[CandidateIn]] = Field(None, min_length=1)

    luck_multiplier: Optional[float] = Field(None, ge=0)
    pity_enabled: Optional[bool] = None
    pity_threshold: Optional[int] = Field(None, ge=1)
    pity_minimum_rarity: Optional[Rarity] = None
    max_opens_per_player: Optional[int] = Field(None, ge=1)  # null で無制限に戻す

    @field_validator(*_REQUIRED_ON_UPDATE, mode="before")
    @classmethod
    def reject_null(cls, v):
        # 省略は「変更なし」。null は NOT NULL のカラムに入れられない
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

    @field_validator("pity_minimum_rarity")
    @classmethod
    def check_pity_rarity(cls, v):
        return _check_pity_rarity(v)


class CandidateOut(BaseModel):
    item_id: int
    item_name: Optional[str] = None
    rarity: str
    base_chance: float


class MysteryBoxOut(BaseModel):
    id: int
    classroom_id: str
    name: str
    description: Optional[str] = None
    price: int
    image_url: Optional[str] = None
    luck_multiplier: float
    pity_enabled: bool
    pity_threshold: int
    pity_minimum_rarity: str
    max_opens_per_player: Optional[int] = None
    active: bool
    item_pool: List[CandidateOut] = []


class MysteryBoxListResponse(BaseModel):
    mystery_boxes: List[MysteryBoxOut]


class OddsEntry(BaseModel):
    item_id: int
    item_name: Optional[str] = None
    rarity: str
    base_chance: float
    adjusted_chance: float


class OddsResponse(BaseModel):
    box_id: int
    player_luck: float
    luck_multiplier: float
    luck_bonus: float
    pity_enabled: bool
    pity_threshold: int
    pity_minimum_rarity: str
    consecutive_misses: int
    pity_ready: bool
    odds: List[OddsEntry]


class WonItem(BaseModel):
    id: int  # 所持品としてのID
    prize_id: int  # テンプレートのID
    name: str
    rarity: str


class OpenResponse(BaseModel):
    message: str
    won_item: WonItem
    pity_triggered: bool
    player_luck: float
    luck_bonus: float
    cost: int
    balance: int
    transaction_id: str


class LedgerTransactionOut(BaseModel):
    transaction_id: str
    classroom_id: Optional[str] = None
    box_id: Optional[int] = None
    type: str
    amount: int
    description: Optional[str] = None
    rarity: Optional[str] = None
    pity_triggered: bool = False
    owned_item_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    @classmethod
    def localize_created_at(cls, v):
        return to_app_tz(v)
