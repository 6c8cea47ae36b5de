import os

# app を import する前に、テスト用の DB 設定にしておく
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DRAW_TIMEOUT_SECONDS", "10")

import random  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.db import models  # noqa: E402
from app.db.database import Base, create_db_engine, get_db  # noqa: E402
from app.main import app  # noqa: E402


CLASSROOM_ID = "class-1"

# 検証用の標準的な排出テーブル
STANDARD_POOL = [
    ("Sticker", "common", 40),
    ("Homework Pass", "uncommon", 30),
    ("Seat Swap", "rare", 20),
    ("Double XP", "epic", 8),
    ("Golden Ticket", "legendary", 2),
]


class FixedRandom(random.Random):
    """random() が常に同じ値を返す乱数（抽選結果を固定するため）"""

    def __init__(self, value: float = 0.0):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(uid, role="student", luck=1.0, balance=None, classroom_id=CLASSROOM_ID):
        user = models.User(firebase_uid=uid, username=uid, role=role, luck=luck)
        db.add(user)
        db.flush()
        if balance is not None:
            db.add(models.Wallet(user_id=user.id, classroom_id=classroom_id, balance=balance))
        db.commit()
        return user

    return _make


@pytest.fixture
def make_box(db):
    def _make(pool=STANDARD_POOL, classroom_id=CLASSROOM_ID, price=50, **config):
        box = models.MysteryBox(
            classroom_id=classroom_id,
            name=config.pop("name", "Test Box"),
            price=price,
            luck_multiplier=config.pop("luck_multiplier", 1.5),
            pity_enabled=config.pop("pity_enabled", False),
            pity_threshold=config.pop("pity_threshold", 10),
            pity_minimum_rarity=config.pop("pity_minimum_rarity", "rare"),
            max_opens_per_player=config.pop("max_opens_per_player", None),
            active=config.pop("active", True),
        )
        for position, (name, rarity, chance) in enumerate(pool):
            item = models.Item(classroom_id=classroom_id, name=name, price=10)
            db.add(item)
            db.flush()
            box.candidates.append(
                models.MysteryBoxCandidate(
                    item_id=item.id, rarity=rarity, base_chance=chance, position=position
                )
            )
        db.add(box)
        db.commit()
        db.refresh(box)
        return box

    return _make


@pytest.fixture
def student(make_user):
    return make_user("uid_student", balance=500)


@pytest.fixture
def teacher(make_user):
    return make_user("uid_teacher", role="teacher")


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
