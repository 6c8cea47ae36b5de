import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.database import Base
from app.utils.time_utils import get_now


# --- 1. User Model ---
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # MySQLではStringに長さ指定が必須 (特にindex/uniqueをつける場合)
    firebase_uid = Column(String(255), unique=True, index=True)
    username = Column(String(255))
    email = Column(String(255), nullable=True)

    # 'student' | 'teacher'
    role = Column(String(32), default="student")

    # ラック（1.0 が基準値）。ミステリーボックスの確率補正に使う
    luck = Column(Float, default=1.0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # リレーション
    wallets = relationship("Wallet", back_populates="user")
    items = relationship("Item", back_populates="owner", foreign_keys="Item.owner_id")
    transactions = relationship("LedgerTransaction", back_populates="user")
    notifications = relationship("Notification", back_populates="user")


# --- 2. Wallet Model (クラスごとの残高) ---
class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "classroom_id", name="uq_wallet_user_classroom"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    classroom_id = Column(String(64), index=True, nullable=False)
    balance = Column(Integer, default=0, nullable=False)

    # 楽観ロック用のバージョン（UPDATE時に自動チェックされる）
    version = Column(Integer, nullable=False)

    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="wallets")

    __mapper_args__ = {"version_id_col": version}


# --- 3. Item Model (賞品テンプレート / 所持アイテム) ---
class Item(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    classroom_id = Column(String(64), index=True)

    name = Column(String(255))
    description = Column(Text, nullable=True)
    price = Column(Integer, default=0)
    category = Column(String(255), nullable=True)
    image_url = Column(String(512), nullable=True)

    # NULL ならバザーのテンプレート、値があればそのユーザーの所持品
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    # 所持品の場合、複製元のテンプレート
    source_item_id = Column(Integer, ForeignKey("items.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="items", foreign_keys=[owner_id])
    source_item = relationship("Item", remote_side=[id])

    @property
    def is_template(self) -> bool:
        return self.owner_id is None


# --- 4. MysteryBox Model ---
class MysteryBox(Base):
    __tablename__ = "mystery_boxes"

    id = Column(Integer, primary_key=True, index=True)
    classroom_id = Column(String(64), index=True)

    name = Column(String(255))
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)
    image_url = Column(String(512), nullable=True)

    # ラック補正の倍率
    luck_multiplier = Column(Float, default=1.5)

    # 天井（ピティ）設定
    pity_enabled = Column(Boolean, default=False)
    pity_threshold = Column(Integer, default=10)
    pity_minimum_rarity = Column(String(16), default="rare")

    # NULL なら無制限
    max_opens_per_player = Column(Integer, nullable=True)

    active = Column(Boolean, default=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    candidates = relationship(
        "MysteryBoxCandidate",
        back_populates="box",
        order_by="MysteryBoxCandidate.position",
        cascade="all, delete-orphan",
    )


# --- 5. MysteryBoxCandidate Model (排出テーブル) ---
class MysteryBoxCandidate(Base):
    __tablename__ = "mystery_box_candidates"
    __table_args__ = (
        UniqueConstraint("box_id", "item_id", name="uq_candidate_box_item"),
    )

    id = Column(Integer, primary_key=True, index=True)
    box_id = Column(Integer, ForeignKey("mystery_boxes.id"), index=True, nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    rarity = Column(String(16), default="common")
    base_chance = Column(Float, nullable=False)  # パーセント
    position = Column(Integer, default=0)

    box = relationship("MysteryBox", back_populates="candidates")
    item = relationship("Item")


# --- 6. LedgerTransaction Model (取引台帳: 追記のみ) ---
class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(
        String(255), unique=True, index=True, default=lambda: str(uuid.uuid4())
    )

    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    classroom_id = Column(String(64), index=True)
    box_id = Column(Integer, ForeignKey("mystery_boxes.id"), index=True, nullable=True)

    type = Column(String(32), default="mystery_box", index=True)
    amount = Column(Integer, nullable=False)  # 残高の増減（開封はマイナス）
    # 表示用: "Opened <box> - Won <prize> (<rarity>) [PITY]"
    description = Column(Text)

    prize_item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    owned_item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    rarity = Column(String(16), nullable=True)
    pity_triggered = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=get_now, index=True)

    user = relationship("User", back_populates="transactions")
    box = relationship("MysteryBox")
    owned_item = relationship("Item", foreign_keys=[owned_item_id])


# --- 7. PityCounter Model (天井カウンター) ---
class PityCounter(Base):
    __tablename__ = "pity_counters"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    box_id = Column(Integer, ForeignKey("mystery_boxes.id"), primary_key=True)

    # 最低保証レア度に届かなかった連続回数
    consecutive_misses = Column(Integer, default=0, nullable=False)
    # どの最低保証レア度で数えたか（ボックス編集で変わったら再計算）
    minimum_rarity = Column(String(16), nullable=False)

    updated_at = Column(DateTime(timezone=True), default=get_now, onupdate=get_now)


# --- 8. Notification Model (通知) ---
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)  # 通知を受け取るユーザー

    # 通知タイプ: "mystery_box_opened" など
    type = Column(String(50), index=True)
    title = Column(String(255))
    message = Column(Text)
    link = Column(String(512), nullable=True)  # クリック時の遷移先

    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="notifications")
