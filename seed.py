# classroom-bazaar/seed.py

from dotenv import load_dotenv
from sqlalchemy.orm import Session

load_dotenv()

from app.db.database import SessionLocal, engine, Base  # noqa: E402
from app.db.models import User, Wallet, Item  # noqa: E402
from app.db.data.prizes import (  # noqa: E402
    DEMO_CLASSROOM_ID,
    DEMO_POOL,
    DEMO_PRIZES,
    DEMO_USERS,
)
from app.schemas.mystery_box import CandidateIn, MysteryBoxCreate  # noqa: E402
from app.services.mystery_box_service import create_box  # noqa: E402


def seed_demo(db: Session, classroom_id: str = DEMO_CLASSROOM_ID):
    """デモ用のユーザー・残高・賞品・ミステリーボックスを投入し、ボックスを返す"""
    # ---------------------------
    # 1. ユーザーと残高
    # ---------------------------
    print("Creating Users...")
    teacher = None
    for u_data in DEMO_USERS:
        data = dict(u_data)
        balance = data.pop("balance", None)
        user = User(email=f"{data['firebase_uid']}@example.com", **data)
        db.add(user)
        db.flush()
        if user.role == "teacher":
            teacher = user
        if balance is not None:
            db.add(Wallet(user_id=user.id, classroom_id=classroom_id, balance=balance))
    db.commit()

    # ---------------------------
    # 2. 賞品テンプレート
    # ---------------------------
    print("Creating Prizes...")
    prize_ids = {}
    for p_data in DEMO_PRIZES:
        data = dict(p_data)
        key = data.pop("key")
        item = Item(classroom_id=classroom_id, **data)
        db.add(item)
        db.flush()
        prize_ids[key] = item.id
    db.commit()

    # ---------------------------
    # 3. ミステリーボックス（排出テーブルは保存前に検証される）
    # ---------------------------
    print("Creating Mystery Box...")
    box = create_box(
        db,
        MysteryBoxCreate(
            classroom_id=classroom_id,
            name="Starter Mystery Box",
            description="Try your luck! Guaranteed rare after 5 unlucky opens.",
            price=50,
            item_pool=[
                CandidateIn(item_id=prize_ids[key], rarity=rarity, base_chance=chance)
                for key, rarity, chance in DEMO_POOL
            ],
            luck_multiplier=1.5,
            pity_enabled=True,
            pity_threshold=5,
            pity_minimum_rarity="rare",
        ),
        created_by=teacher.id if teacher else None,
    )
    return box


def seed_data():
    print("Seeding database...")
    db: Session = SessionLocal()

    try:
        # テーブル再作成（既存データはリセットされます）
        print("Dropping & Creating tables...")
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)

        seed_demo(db)
        print("Seeding complete! ✅")

    except Exception as e:
        print(f"Error: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    seed_data()
