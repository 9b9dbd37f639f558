from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from uuid6 import uuid7

from battle_server.dependencies import get_battle_service, get_duet_service
from battle_server.models.schemas import Base
from battle_server.routers import battle, duet
from battle_server.services.duet_service import DuetService

from tests.conftest import FakeLedger, fixed_clock

BATTLE = {
    "title": "Friday night duel",
    "duration": 60,
    "creator1": {"id": "c1", "username": "alice", "display_name": "Alice"},
    "creator2": {"id": "c2", "username": "bob", "display_name": "Bob"},
    "entry_fee": "10",
}
GRANTED = {"c1": "granted", "c2": "granted"}


@pytest.fixture
def duet_service(tmp_path):
    path = tmp_path / "duets.sqlite3"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    Session = async_sessionmaker(
        autocommit=False, class_=AsyncSession, autoflush=True, bind=engine, expire_on_commit=False
    )
    return DuetService(Session, FakeLedger(), clock=fixed_clock)


@pytest.fixture
def client(battle_service, duet_service):
    app = FastAPI()
    app.include_router(battle.battle_router)
    app.include_router(duet.duet_router)
    app.dependency_overrides[get_battle_service] = lambda: battle_service
    app.dependency_overrides[get_duet_service] = lambda: duet_service
    with TestClient(app) as client:
        yield client


def live_battle(client) -> str:
    response = client.post("/battles", json=BATTLE)
    assert response.status_code == 201
    battle_id = response.json()["battle_id"]
    response = client.post(
        f"/battles/{battle_id}/start", json={"requested_by": "c1", "media_status": GRANTED}
    )
    assert response.status_code == 200
    return battle_id


class TestBattleAPI:
    def test_create_battle(self, client):
        response = client.post("/battles", json=BATTLE)

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["prize_pot"]) == Decimal("200")
        assert body["creator1"]["is_host"] is True

    def test_invalid_duration(self, client):
        response = client.post("/battles", json={**BATTLE, "duration": 900})

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_config"

    def test_start_with_denied_camera(self, client):
        battle_id = client.post("/battles", json=BATTLE).json()["battle_id"]

        response = client.post(
            f"/battles/{battle_id}/start",
            json={"requested_by": "c1", "media_status": {"c1": "granted", "c2": "permission_denied"}},
        )

        assert response.status_code == 424
        assert response.json()["detail"]["reason"] == "permission_denied"
        assert client.get(f"/battles/{battle_id}").json()["status"] == "waiting"

    def test_full_battle(self, client, battle_service):
        battle_id = live_battle(client)

        gift = client.post(
            f"/battles/{battle_id}/gifts",
            json={"sender_id": "v1", "gift_id": "dragon", "recipient_creator_id": "c2", "quantity": 2},
        )
        assert gift.status_code == 200
        assert gift.json()["total_value"] == 1000

        vote = client.post(f"/battles/{battle_id}/votes", json={"voter_id": "v2", "creator_id": "c1"})
        assert vote.status_code == 200
        again = client.post(f"/battles/{battle_id}/votes", json={"voter_id": "v2", "creator_id": "c1"})
        assert again.status_code == 409
        assert again.json()["detail"] == {
            "reason": "already_voted",
            "message": "You already voted in this battle.",
        }

        state = client.get(f"/battles/{battle_id}").json()
        assert state["creator1"]["score"] == 10
        assert state["creator2"]["score"] == 1000

        end = client.post(f"/battles/{battle_id}/end", json={"requested_by": "c2"})
        assert end.status_code == 200
        assert end.json()["winner_id"] == "c2"
        assert Decimal(end.json()["winner_share"]) == Decimal("120")

        late = client.post(
            f"/battles/{battle_id}/gifts",
            json={"sender_id": "v3", "gift_id": "rose", "recipient_creator_id": "c1"},
        )
        assert late.status_code == 409
        assert late.json()["detail"]["reason"] == "battle_ended"

        settle = client.post(f"/battles/{battle_id}/settle")
        assert settle.status_code == 200
        assert settle.json()["settled"] is True
        assert battle_service.ledger.balance("c2") == Decimal("210")

    def test_invalid_gift(self, client):
        battle_id = live_battle(client)

        response = client.post(
            f"/battles/{battle_id}/gifts",
            json={"sender_id": "v1", "gift_id": "unicorn", "recipient_creator_id": "c1"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "unknown_gift"

    def test_events_and_audit(self, client):
        battle_id = live_battle(client)
        client.post(
            f"/battles/{battle_id}/gifts",
            json={"sender_id": "v1", "gift_id": "heart", "recipient_creator_id": "c1", "quantity": 3},
        )
        client.post(f"/battles/{battle_id}/chat", json={"sender_id": "v1", "message": "go alice"})

        events = client.get(f"/battles/{battle_id}/events", params={"after": 1}).json()
        assert [event["kind"] for event in events] == ["gift", "chat"]

        audit = client.get(f"/battles/{battle_id}/audit").json()
        assert audit["consistent"] is True
        assert audit["reconstructed_scores"] == {"c1": 15, "c2": 0}

    def test_tick_pause_and_viewers(self, client):
        battle_id = live_battle(client)

        assert client.post(f"/battles/{battle_id}/tick").json()["time_remaining"] == 59
        forbidden = client.post(f"/battles/{battle_id}/pause", json={"requested_by": "v1"})
        assert forbidden.status_code == 403
        assert client.post(f"/battles/{battle_id}/pause", json={"requested_by": "c1"}).json()["is_paused"]
        assert client.post(f"/battles/{battle_id}/tick").status_code == 409

        viewers = client.post(f"/battles/{battle_id}/viewers", json={"viewer_count": 250})
        assert viewers.json()["peak_viewers"] == 250

    def test_unknown_battle(self, client):
        response = client.get(f"/battles/{uuid7()}")

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "battle_not_found"

    def test_invite_and_accept(self, client, battle_service):
        invited = client.post("/battles/invitations", json={**BATTLE, "requested_by": "c1"})
        assert invited.status_code == 201
        invitation_id = invited.json()["invitation_id"]
        assert invited.json()["status"] == "pending"

        wrong = client.post(f"/battles/invitations/{invitation_id}/accept", json={"requested_by": "v1"})
        assert wrong.status_code == 403

        accepted = client.post(f"/battles/invitations/{invitation_id}/accept", json={"requested_by": "c2"})
        assert accepted.status_code == 201
        battle_id = accepted.json()["battle_id"]
        assert client.get(f"/battles/{battle_id}").json()["status"] == "waiting"
        assert client.get(f"/battles/invitations/{invitation_id}").json()["status"] == "accepted"
        assert battle_service.ledger.balance("c2") == Decimal("90")

        again = client.post(f"/battles/invitations/{invitation_id}/accept", json={"requested_by": "c2"})
        assert again.status_code == 409
        assert again.json()["detail"]["reason"] == "invitation_not_pending"

    def test_unknown_invitation(self, client):
        response = client.post(f"/battles/invitations/{uuid7()}/accept", json={"requested_by": "c2"})

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "invitation_not_found"

    def test_insufficient_balance(self, client, battle_service):
        battle_service.ledger.funds["c2"] = Decimal("1")

        response = client.post("/battles", json=BATTLE)

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "insufficient_balance"

    def test_creator_stats(self, client):
        response = client.get("/battles/stats/c1")

        assert response.status_code == 200
        assert response.json()["total_battles"] == 0
        assert response.json()["win_rate"] == 0.0

    def test_gift_catalog(self, client):
        gifts = client.get("/gifts").json()

        assert {gift["id"]: gift["point_value"] for gift in gifts}["dragon"] == 500

    def test_chat_socket(self, client):
        battle_id = live_battle(client)

        with client.websocket_connect(f"/battles/{battle_id}/ws") as websocket:
            assert websocket.receive_json()["kind"] == "state"

            websocket.send_json({"sender_id": "v1", "message": "hello"})
            entry = websocket.receive_json()
            assert entry["kind"] == "chat"
            assert entry["message"] == "hello"

            websocket.send_json({"sender_id": "v1", "message": "   "})
            assert websocket.receive_json() == {
                "kind": "error",
                "reason": "empty_message",
                "message": "Message is empty.",
            }


class TestDuetAPI:
    def test_split_preview(self, client):
        response = client.get("/duets/split", params={"tip_amount": "100", "revenue_share_percentage": "50"})

        assert response.status_code == 200
        assert {key: Decimal(value) for key, value in response.json().items()} == {
            "platform_fee": Decimal("5"),
            "original_creator_share": Decimal("47.5"),
            "duet_creator_share": Decimal("47.5"),
        }

    def test_split_rejects_bad_share(self, client):
        response = client.get("/duets/split", params={"tip_amount": "100", "revenue_share_percentage": "150"})

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_share"

    def test_duet_tip(self, client, duet_service):
        created = client.post(
            "/duets",
            json={
                "original_creator_id": "orig",
                "duet_creator_id": "duet",
                "title": "Dance along",
                "config": {"duet_type": "side_by_side", "revenue_share_percentage": "50"},
            },
        )
        assert created.status_code == 201
        duet_id = created.json()["duet_id"]

        tip = client.post(f"/duets/{duet_id}/tips", json={"tipper_id": "viewer", "amount": "100"})
        assert tip.status_code == 201
        assert Decimal(tip.json()["duet_creator_share"]) == Decimal("47.50")
        assert duet_service.ledger.balance("orig") == Decimal("47.50")

        self_tip = client.post(f"/duets/{duet_id}/tips", json={"tipper_id": "orig", "amount": "10"})
        assert self_tip.status_code == 400

        stored = client.get(f"/duets/{duet_id}").json()
        assert stored["tip_count"] == 1
        assert len(client.get(f"/duets/{duet_id}/tips").json()) == 1

    def test_unknown_duet(self, client):
        response = client.get(f"/duets/{uuid7()}")

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "duet_not_found"

    def test_tips_of_unknown_duet(self, client):
        response = client.get(f"/duets/{uuid7()}/tips")

        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "duet_not_found"
