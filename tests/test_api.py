import pytest

from app.api.v1.endpoints.mystery_box import get_draw_engine
from app.db import models
from app.main import app
from app.services.draw_engine import DrawEngine
from conftest import CLASSROOM_ID, STANDARD_POOL, FixedRandom


BASE = "/api/v1/mystery-boxes"


def _headers(user):
    return {"X-Firebase-Uid": user.firebase_uid}


@pytest.fixture
def prizes(db):
    items = []
    for name, _, _ in STANDARD_POOL:
        item = models.Item(classroom_id=CLASSROOM_ID, name=name, price=10)
        db.add(item)
        items.append(item)
    db.commit()
    return [i.id for i in items]


@pytest.fixture
def box_payload(prizes):
    return {
        "classroom_id": CLASSROOM_ID,
        "name": "Friday Box",
        "price": 50,
        "pity_enabled": True,
        "pity_threshold": 5,
        "item_pool": [
            {"item_id": item_id, "rarity": rarity, "base_chance": chance}
            for item_id, (_, rarity, chance) in zip(prizes, STANDARD_POOL)
        ],
    }


@pytest.fixture
def fixed_engine(session_factory):
    """抽選結果を固定したエンジンに差し替える"""

    def _install(value):
        def override():
            session = session_factory()
            try:
                yield DrawEngine(session, rng=FixedRandom(value))
            finally:
                session.close()

        app.dependency_overrides[get_draw_engine] = override

    return _install


class TestCreate:
    def test_teacher_creates_box(self, client, teacher, box_payload):
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 201
        body = res.json()
        assert body["name"] == "Friday Box"
        assert body["luck_multiplier"] == 1.5
        assert body["pity_minimum_rarity"] == "rare"
        assert [c["item_name"] for c in body["item_pool"]] == [p[0] for p in STANDARD_POOL]

    def test_student_is_forbidden(self, client, student, box_payload):
        res = client.post(BASE, json=box_payload, headers=_headers(student))
        assert res.status_code == 403

    def test_missing_header(self, client, box_payload):
        res = client.post(BASE, json=box_payload)
        assert res.status_code == 401

    def test_weights_must_sum_to_100(self, client, teacher, box_payload):
        box_payload["item_pool"][3]["base_chance"] = 5
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 400
        error = res.json()["error"]
        assert error["code"] == "WEIGHT_SUM_INVALID"
        assert error["details"]["total"] == pytest.approx(97)
        assert res.json()["ok"] is False

    def test_duplicate_candidate(self, client, teacher, box_payload):
        box_payload["item_pool"][1]["item_id"] = box_payload["item_pool"][0]["item_id"]
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "DUPLICATE_CANDIDATE"

    def test_unknown_prize(self, client, teacher, box_payload):
        box_payload["item_pool"][0]["item_id"] = 9999
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "UNKNOWN_PRIZE"
        assert res.json()["error"]["details"]["item_ids"] == [9999]

    def test_common_is_not_a_pity_rarity(self, client, teacher, box_payload):
        box_payload["pity_minimum_rarity"] = "common"
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 422


class TestManage:
    @pytest.fixture
    def created(self, client, teacher, box_payload):
        res = client.post(BASE, json=box_payload, headers=_headers(teacher))
        assert res.status_code == 201
        return res.json()

    def test_list_and_get(self, client, student, created):
        res = client.get(BASE, params={"classroom_id": CLASSROOM_ID}, headers=_headers(student))
        assert res.status_code == 200
        assert [b["id"] for b in res.json()["mystery_boxes"]] == [created["id"]]

        res = client.get(f"{BASE}/{created['id']}", headers=_headers(student))
        assert res.json()["price"] == 50

    def test_update(self, client, teacher, created):
        res = client.put(
            f"{BASE}/{created['id']}",
            json={"price": 80, "pity_minimum_rarity": "epic"},
            headers=_headers(teacher),
        )
        assert res.status_code == 200
        assert res.json()["price"] == 80
        assert res.json()["pity_minimum_rarity"] == "epic"
        assert len(res.json()["item_pool"]) == 5

    def test_replace_pool(self, client, teacher, created):
        pool = created["item_pool"]
        new_pool = [
            {"item_id": pool[0]["item_id"], "rarity": "common", "base_chance": 70},
            {"item_id": pool[4]["item_id"], "rarity": "legendary", "base_chance": 30},
        ]
        res = client.put(
            f"{BASE}/{created['id']}", json={"item_pool": new_pool}, headers=_headers(teacher)
        )
        assert res.status_code == 200
        assert [c["base_chance"] for c in res.json()["item_pool"]] == [70, 30]

    def test_invalid_update_leaves_box_unchanged(self, client, teacher, created):
        pool = created["item_pool"]
        bad_pool = [{"item_id": pool[0]["item_id"], "rarity": "common", "base_chance": 90}]
        res = client.put(
            f"{BASE}/{created['id']}",
            json={"price": 10, "item_pool": bad_pool},
            headers=_headers(teacher),
        )
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "WEIGHT_SUM_INVALID"

        res = client.get(f"{BASE}/{created['id']}", headers=_headers(teacher))
        assert res.json()["price"] == 50
        assert len(res.json()["item_pool"]) == 5

    @pytest.mark.parametrize(
        "field", ["price", "name", "luck_multiplier", "pity_threshold", "pity_enabled"]
    )
    def test_null_is_rejected_for_required_fields(self, client, teacher, created, field):
        res = client.put(
            f"{BASE}/{created['id']}", json={field: None}, headers=_headers(teacher)
        )
        assert res.status_code == 422

        res = client.get(f"{BASE}/{created['id']}", headers=_headers(teacher))
        assert res.json()[field] == created[field]

    def test_max_opens_can_be_cleared_with_null(self, client, teacher, created):
        url = f"{BASE}/{created['id']}"
        client.put(url, json={"max_opens_per_player": 3}, headers=_headers(teacher))

        res = client.put(url, json={"max_opens_per_player": None}, headers=_headers(teacher))
        assert res.status_code == 200
        assert res.json()["max_opens_per_player"] is None

    def test_delete_hides_box(self, client, teacher, student, created):
        res = client.delete(f"{BASE}/{created['id']}", headers=_headers(teacher))
        assert res.json() == {"message": "Mystery box deleted"}

        res = client.post(f"{BASE}/{created['id']}/open", headers=_headers(student))
        assert res.status_code == 404
        assert res.json()["error"]["code"] == "BOX_NOT_FOUND"

        res = client.get(BASE, params={"classroom_id": CLASSROOM_ID}, headers=_headers(student))
        assert res.json()["mystery_boxes"] == []


def test_odds_reflect_player_luck(client, make_user, make_box):
    lucky = make_user("uid_lucky", luck=3.0, balance=100)
    box = make_box()

    res = client.get(f"{BASE}/{box.id}/odds", headers=_headers(lucky))
    assert res.status_code == 200
    body = res.json()
    assert body["player_luck"] == 3.0
    assert body["luck_bonus"] == pytest.approx(3.0)
    assert [o["adjusted_chance"] for o in body["odds"]] == pytest.approx(
        [24.21, 22.11, 20.0, 16.84, 16.84], abs=0.01
    )
    assert body["consecutive_misses"] == 0
    assert body["pity_ready"] is False


class TestOpen:
    def test_open_box(self, client, student, make_box, fixed_engine):
        box = make_box(price=50)
        fixed_engine(0.0)

        res = client.post(f"{BASE}/{box.id}/open", headers=_headers(student))
        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "Mystery box opened!"
        assert body["won_item"]["name"] == "Sticker"
        assert body["won_item"]["rarity"] == "common"
        assert body["won_item"]["id"] != body["won_item"]["prize_id"]
        assert body["cost"] == 50
        assert body["balance"] == 450
        assert body["pity_triggered"] is False
        assert body["player_luck"] == 1.0

        res = client.get("/api/v1/users/me/wallets", headers=_headers(student))
        assert res.json()["wallets"] == [{"classroom_id": CLASSROOM_ID, "balance": 450}]

    def test_pity_message(self, client, student, make_box, fixed_engine):
        box = make_box(pity_enabled=True, pity_threshold=1)
        fixed_engine(0.0)

        client.post(f"{BASE}/{box.id}/open", headers=_headers(student))
        res = client.post(f"{BASE}/{box.id}/open", headers=_headers(student))
        assert res.json()["pity_triggered"] is True
        assert res.json()["message"] == "Mystery box opened! Pity guarantee applied."
        assert res.json()["won_item"]["rarity"] in ("rare", "epic", "legendary")

    def test_insufficient_balance(self, client, make_user, make_box):
        poor = make_user("uid_poor", balance=10)
        box = make_box(price=50)

        res = client.post(f"{BASE}/{box.id}/open", headers=_headers(poor))
        assert res.status_code == 400
        error = res.json()["error"]
        assert error["code"] == "INSUFFICIENT_BALANCE"
        assert error["details"] == {"balance": 10, "price": 50}

    def test_max_opens(self, client, student, make_box, fixed_engine):
        box = make_box(max_opens_per_player=1)
        fixed_engine(0.5)

        assert client.post(f"{BASE}/{box.id}/open", headers=_headers(student)).status_code == 200
        res = client.post(f"{BASE}/{box.id}/open", headers=_headers(student))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "MAX_OPENS_REACHED"


def test_history_and_notifications(client, student, make_box, fixed_engine):
    box = make_box(name="Lucky Dip")
    other = make_box(name="Other")
    fixed_engine(0.99)

    client.post(f"{BASE}/{box.id}/open", headers=_headers(student))
    client.post(f"{BASE}/{other.id}/open", headers=_headers(student))

    res = client.get("/api/v1/transactions", headers=_headers(student))
    assert res.status_code == 200
    assert [t["box_id"] for t in res.json()] == [other.id, box.id]

    res = client.get(
        "/api/v1/transactions", params={"box_id": box.id}, headers=_headers(student)
    )
    [tx] = res.json()
    assert tx["amount"] == -50
    assert tx["rarity"] == "legendary"
    assert tx["description"] == "Opened Lucky Dip - Won Golden Ticket (legendary)"

    res = client.get("/api/v1/notifications", headers=_headers(student))
    body = res.json()
    assert body["unread_count"] == 2
    assert {n["type"] for n in body["notifications"]} == {"mystery_box_opened"}

    first = body["notifications"][0]["id"]
    res = client.post(f"/api/v1/notifications/{first}/read", headers=_headers(student))
    assert res.json() == {"id": first, "unread_count": 1}

    res = client.get(
        "/api/v1/notifications",
        params={"include_read": True, "type": "mystery_box_opened"},
        headers=_headers(student),
    )
    assert len(res.json()["notifications"]) == 2
    assert res.json()["unread_count"] == 1
