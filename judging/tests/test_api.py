"""
HTTP API tests

The app runs inside its own lifespan (database, broadcast relay and
notification worker) and is driven through httpx's ASGI transport.
"""
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from judging.main import create_app
from judging.orm.catalog import Song
from judging.orm.judge import Judge, JudgeStatus
from judging.security import Identity
from judging.services.rating_service import record_rating

JUDGE = Identity("11", "listener")
TRADER = Identity("21", "listener")


@pytest_asyncio.fixture
async def app(settings):
    app = create_app(settings)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def admin_headers(settings):
    return {"X-Master-Password": settings.master_password}


@pytest.fixture
def auth(verifier):
    def headers(identity):
        return {"Authorization": f"Bearer {verifier.create_access_token(identity.user_id, identity.role)}"}
    return headers


async def seed_song(app, title="Lantern"):
    async with app.state.db.session() as db:
        song = Song(title=title, artist="Northbound", audio_url="https://cdn.example.com/lantern.mp3")
        db.add(song)
        await db.commit()
        await db.refresh(song)
        return song


async def seed_judge(app, identity):
    async with app.state.db.session() as db:
        db.add(Judge(
            user_id=identity.user_id,
            user_role=identity.role,
            status=JudgeStatus.ACTIVE,
            accuracy_score=Decimal("80.00"),
        ))
        await db.commit()


# =============================================================================
# Health and error envelope
# =============================================================================

class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["broadcast"] == "in-memory"
        assert body["connections"] == 0
        assert body["relay"] == "running"

    async def test_error_summary(self, client):
        response = await client.get("/api/errors/health")
        assert response.status_code == 200
        assert "CONFLICT" in response.json()["error_codes"]

    async def test_unknown_route_uses_error_envelope(self, client):
        response = await client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestAuth:

    async def test_missing_token(self, client):
        response = await client.get("/api/traders/profile")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "No token provided", "code": "AUTH_REQUIRED"}

    async def test_garbage_token(self, client):
        response = await client.get("/api/traders/profile", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_INVALID"

    async def test_admin_requires_master(self, client, auth):
        anonymous = await client.get("/api/admin/anchors")
        listener = await client.get("/api/admin/anchors", headers=auth(TRADER))
        wrong_password = await client.get("/api/admin/anchors", headers={"X-Master-Password": "guess"})

        for response in (anonymous, listener, wrong_password):
            assert response.status_code == 403
            assert response.json() == {"success": False, "error": "Unauthorized", "code": "FORBIDDEN"}

    async def test_master_token_is_admin(self, client, auth):
        response = await client.get("/api/admin/anchors", headers=auth(Identity("master", "master")))
        assert response.status_code == 200
        assert response.json() == {"anchors": []}


class TestValidation:

    async def test_body_type_error_is_400(self, client, admin_headers):
        response = await client.post("/api/sessions", json={"songId": "not-a-number"}, headers=admin_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"].startswith("songId")

    async def test_trade_fields_required(self, client, auth):
        response = await client.post("/api/trades", json={"direction": "over"}, headers=auth(TRADER))
        assert response.status_code == 400
        assert response.json()["error"] == "sessionId, direction, and amount are required"

    async def test_trade_amount_out_of_range(self, client, auth):
        response = await client.post(
            "/api/trades", json={"sessionId": 1, "direction": "over", "amount": 60}, headers=auth(TRADER)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Amount must be between 0.01 and 50"

    async def test_unknown_leaderboard_period(self, client):
        response = await client.get("/api/leaderboards/traders", params={"period": "fortnightly"})
        assert response.status_code == 400

    async def test_unknown_session(self, client):
        for path in ("/api/sessions/999", "/api/sessions/999/history"):
            response = await client.get(path)
            assert response.status_code == 404
            assert response.json()["error"] == "Session not found"


# =============================================================================
# Flows
# =============================================================================

class TestJudgeApplication:

    async def test_apply_then_screening_without_anchors(self, client, auth):
        applied = await client.post("/api/judges/apply", json={"musicBackground": "Session bassist"}, headers=auth(JUDGE))
        assert applied.status_code == 201
        application = applied.json()["application"]
        assert application["status"] == "screening"
        assert application["music_background"] == "Session bassist"

        again = await client.post("/api/judges/apply", headers=auth(JUDGE))
        assert again.status_code == 400
        assert again.json()["code"] == "CONFLICT"

        screening = await client.get(f"/api/judges/screening/{application['id']}", headers=auth(JUDGE))
        assert screening.status_code == 503
        assert screening.json()["code"] == "SERVICE_UNAVAILABLE"

        profile = await client.get("/api/judges/profile", headers=auth(JUDGE))
        assert profile.json()["isJudge"] is False

    async def test_overflowing_screening_rating_is_400(self, client, auth):
        applied = await client.post("/api/judges/apply", headers=auth(JUDGE))
        application_id = applied.json()["application"]["id"]

        response = await client.post(
            f"/api/judges/screening/{application_id}/submit",
            content='{"ratings": [{"anchorId": 1, "rating": 1e999}]}',
            headers={**auth(JUDGE), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

        profile = await client.get("/api/judges/profile", headers=auth(JUDGE))
        assert profile.json()["application"]["status"] == "screening"
        assert profile.json()["application"]["next_attempt_date"] is None


class TestSessionLifecycle:

    async def test_rate_trade_settle(self, app, client, auth, admin_headers):
        song = await seed_song(app)
        await seed_judge(app, JUDGE)

        created = await client.post("/api/sessions", json={"songId": song.id}, headers=admin_headers)
        assert created.status_code == 201
        session = created.json()["session"]
        assert session["title"] == "Judging: Lantern"
        assert session["status"] == "scheduled"

        started = await client.patch(f"/api/sessions/{session['id']}/start", json={}, headers=admin_headers)
        assert started.json()["session"]["status"] == "live"
        assert started.json()["session"]["trading_window_end"] is None

        restart = await client.patch(f"/api/sessions/{session['id']}/start", json={}, headers=admin_headers)
        assert restart.status_code == 400
        assert restart.json()["code"] == "INVALID_STATE"

        async with app.state.db.session() as db:
            recorded = await record_rating(db, session["id"], JUDGE, 64)
        assert recorded.consensus.as_float() == 64.0

        detail = (await client.get(f"/api/sessions/{session['id']}")).json()["session"]
        assert detail["currentConsensus"] == 64.0
        assert detail["activeJudges"] == 1
        assert detail["tradingOpen"] is True

        placed = await client.post(
            "/api/trades",
            json={"sessionId": session["id"], "direction": "over", "amount": 10},
            headers=auth(TRADER)
        )
        assert placed.status_code == 201
        assert placed.json()["trade"]["entry_sentiment"] == 64.0

        duplicate = await client.post(
            "/api/trades",
            json={"sessionId": session["id"], "direction": "under", "amount": 5},
            headers=auth(TRADER)
        )
        assert duplicate.status_code == 400
        assert duplicate.json()["code"] == "CONFLICT"

        active = (await client.get("/api/trades/active", headers=auth(TRADER))).json()["trades"]
        assert [t["session_id"] for t in active] == [session["id"]]

        async with app.state.db.session() as db:
            await record_rating(db, session["id"], JUDGE, 80)

        settled = await client.post(f"/api/sessions/{session['id']}/settle", headers=admin_headers)
        assert settled.status_code == 200
        assert settled.json() == {"success": True, "finalConsensus": 80.0, "judgeCount": 1, "tradesSettled": 1}

        second = await client.post(f"/api/sessions/{session['id']}/settle", headers=admin_headers)
        assert second.status_code == 400
        assert second.json()["error"] == "Session already settled"

        profile = (await client.get("/api/traders/profile", headers=auth(TRADER))).json()["trader"]
        assert profile["balance"] == 108.0
        assert profile["winning_trades"] == 1
        assert profile["total_profit_loss"] == 8.0

        history = (await client.get("/api/trades/history", headers=auth(TRADER))).json()
        assert history["total"] == 1
        assert history["trades"][0]["outcome"] == "win"

        board = (await client.get("/api/leaderboards/traders", params={"period": "daily"})).json()["leaderboard"]
        assert board[0]["period_profit"] == 8.0

        await app.state.notifier.drain()
        inbox = (await client.get("/api/notifications", headers=auth(TRADER))).json()
        assert inbox["unread_count"] == 1
        assert inbox["notifications"][0]["kind"] == "trade_settled"

        marked = await client.patch("/api/notifications/read-all", headers=auth(TRADER))
        assert marked.json() == {"success": True}

        admin_view = (await client.get("/api/admin/sessions", headers=admin_headers)).json()["sessions"]
        assert admin_view[0]["trade_count"] == 1
        assert admin_view[0]["status"] == "completed"


class TestAnchorAdmin:

    async def test_create_and_delete(self, app, client, admin_headers):
        song = await seed_song(app, "Reference")

        created = await client.post(
            "/api/admin/anchors", json={"songId": song.id, "correctRating": 72}, headers=admin_headers
        )
        assert created.status_code == 201
        anchor = created.json()["anchor"]
        assert anchor["correct_rating"] == 72

        duplicate = await client.post(
            "/api/admin/anchors", json={"songId": song.id, "correctRating": 10}, headers=admin_headers
        )
        assert duplicate.status_code == 400

        deleted = await client.delete(f"/api/admin/anchors/{anchor['id']}", headers=admin_headers)
        assert deleted.json() == {"success": True}

        missing = await client.delete(f"/api/admin/anchors/{anchor['id']}", headers=admin_headers)
        assert missing.status_code == 404


class TestWaitlist:

    async def test_join_and_stats_without_token(self, client):
        joined = await client.post(
            "/api/waitlist", json={"email": "host@example.com", "wantsToJudge": True}
        )
        assert joined.status_code == 201
        code = joined.json()["entry"]["referral_code"]

        referred = await client.post(
            "/api/waitlist",
            json={"email": "guest@example.com", "wants_to_trade": True, "referralCode": code},
        )
        assert referred.status_code == 201

        again = await client.post("/api/waitlist", json={"email": "HOST@example.com"})
        assert again.status_code == 400
        assert again.json()["error"] == "Email already on waitlist"
        assert again.json()["status"] == "waiting"

        stats = await client.get("/api/waitlist/stats")
        assert stats.json() == {"stats": {"total": 2, "judges": 1, "traders": 1, "uploaders": 0}}

    async def test_email_required(self, client):
        response = await client.post("/api/waitlist", json={"name": "Robin"})
        assert response.status_code == 400
        assert response.json()["error"] == "Email is required"
