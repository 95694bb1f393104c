"""
Judging WebSocket tests

Driven through Starlette's TestClient so the socket, the REST calls and the
broadcast relay share one running app.
"""
import asyncio
from decimal import Decimal

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from judging.database import Database
from judging.main import create_app
from judging.orm.catalog import Song
from judging.orm.judge import Judge, JudgeStatus
from judging.security import Identity

JUDGE = Identity("11", "listener")
TRADER = Identity("21", "listener")


async def _seed(database_url):
    database = Database(database_url)
    await database.init()
    async with database.session() as db:
        song = Song(title="Lantern", artist="Northbound")
        db.add(song)
        db.add(Judge(
            user_id=JUDGE.user_id,
            user_role=JUDGE.role,
            status=JudgeStatus.ACTIVE,
            accuracy_score=Decimal("80.00"),
        ))
        await db.commit()
        song_id = song.id
    await database.close()
    return song_id


@pytest.fixture
def song_id(settings):
    return asyncio.run(_seed(settings.database_url))


@pytest.fixture
def client(settings, song_id):
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def tokens(verifier):
    return {
        "judge": verifier.create_access_token(JUDGE.user_id, JUDGE.role),
        "trader": verifier.create_access_token(TRADER.user_id, TRADER.role),
    }


class TestHandshake:

    @pytest.mark.parametrize("query", ["", "?token=", "?token=not.a.jwt"])
    def test_rejected_without_valid_token(self, client, query):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/judging{query}"):
                pass
        assert exc.value.code == 1008

    def test_ping(self, client, tokens):
        with client.websocket_connect(f"/ws/judging?token={tokens['trader']}") as ws:
            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"

    def test_malformed_frames_get_error(self, client, tokens):
        with client.websocket_connect(f"/ws/judging?token={tokens['trader']}") as ws:
            ws.send_text("{not json")
            assert ws.receive_json() == {"event": "error", "data": {"error": "Invalid JSON"}}

            ws.send_json({"event": "dance"})
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"event": "join-session", "data": {}})
            assert ws.receive_json() == {"event": "error", "data": {"error": "sessionId is required"}}


class TestLiveSession:

    def test_rating_trade_settle_push(self, client, tokens, song_id, settings):
        admin = {"X-Master-Password": settings.master_password}
        trader_auth = {"Authorization": f"Bearer {tokens['trader']}"}

        session = client.post("/api/sessions", json={"songId": song_id}, headers=admin).json()["session"]
        assert client.patch(f"/api/sessions/{session['id']}/start", headers=admin).status_code == 200

        with client.websocket_connect(f"/ws/judging?token={tokens['judge']}") as judge_ws, \
                client.websocket_connect(f"/ws/judging?token={tokens['trader']}") as trader_ws:
            trader_ws.send_json({"event": "join-session", "data": {"sessionId": session["id"]}})
            trader_ws.send_json({"event": "ping"})
            assert trader_ws.receive_json()["event"] == "pong"

            judge_ws.send_json({"event": "submit-rating", "data": {"sessionId": session["id"], "rating": 70}})

            update = trader_ws.receive_json()
            assert update["event"] == "consensus-update"
            assert update["topic"] == f"session:{session['id']}"
            assert update["data"]["consensus"] == 70.0
            assert update["data"]["judgeCount"] == 1

            placed = client.post(
                "/api/trades",
                json={"sessionId": session["id"], "direction": "over", "amount": 10},
                headers=trader_auth
            )
            assert placed.status_code == 201
            assert placed.json()["trade"]["entry_sentiment"] == 70.0

            settled = client.post(f"/api/sessions/{session['id']}/settle", headers=admin).json()
            assert settled["finalConsensus"] == 70.0

            ended = trader_ws.receive_json()
            assert ended == {
                "event": "session-ended",
                "topic": f"session:{session['id']}",
                "data": {
                    "sessionId": session["id"],
                    "finalConsensus": 70.0,
                    "judgeCount": 1,
                    "tradesSettled": 1,
                },
            }

        history = client.get("/api/trades/history", headers=trader_auth).json()
        assert history["trades"][0]["outcome"] == "push"
        assert history["trades"][0]["payout"] == 10.0

        trader = client.get("/api/traders/profile", headers=trader_auth).json()["trader"]
        assert trader["balance"] == 100.0
        assert trader["total_profit_loss"] == 0.0
        assert trader["current_streak"] == 0

    def test_rating_from_non_judge_is_dropped(self, client, tokens, song_id, settings):
        admin = {"X-Master-Password": settings.master_password}
        session = client.post("/api/sessions", json={"songId": song_id}, headers=admin).json()["session"]
        client.patch(f"/api/sessions/{session['id']}/start", headers=admin)

        with client.websocket_connect(f"/ws/judging?token={tokens['trader']}") as ws:
            ws.send_json({"event": "join-session", "data": {"sessionId": session["id"]}})
            ws.send_json({"event": "submit-rating", "data": {"sessionId": session["id"], "rating": 99}})
            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"

        detail = client.get(f"/api/sessions/{session['id']}").json()["session"]
        assert detail["currentConsensus"] is None
        assert detail["activeJudges"] == 0
