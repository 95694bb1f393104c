"""
Judge Qualification Gate tests
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from judging.core.timeutil import utcnow
from judging.errors import (
    ConflictError, CooldownActiveError, InvalidStateError, NotFoundError,
    ResourceExhaustedError, ValidationError
)
from judging.orm.judge import ApplicationStatus, Judge, JudgeStatus
from judging.orm.notification import NotificationKind
from judging.security import Identity
from judging.services import screening_service
from judging.services.screening_service import COOLDOWN, score_deviations


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def enqueue(self, notification):
        self.sent.append(notification)
        return True


# =============================================================================
# Scoring
# =============================================================================

class TestScoring:

    def test_perfect_screening_passes(self):
        score, avg, passed = score_deviations([0, 0, 0, 0, 0])
        assert score == 100
        assert avg == 0
        assert passed is True

    def test_score_sixty_with_deviation_twenty_fails(self):
        score, avg, passed = score_deviations([20, 20, 20, 20, 20])
        assert score == 60
        assert avg == 20
        assert passed is False

    def test_pass_at_deviation_fifteen(self):
        score, avg, passed = score_deviations([15, 15, 15, 15, 15])
        assert score == 70
        assert passed is True

    def test_score_floors_at_zero(self):
        score, _, passed = score_deviations([90, 80])
        assert score == 0
        assert passed is False


# =============================================================================
# Applications
# =============================================================================

class TestApply:

    async def test_first_application_enters_screening(self, db_session, judge_identity):
        application = await screening_service.apply_for_judge(
            db_session, judge_identity, music_background="Choir, 10 years", genres_familiar="jazz"
        )
        assert application.status == ApplicationStatus.SCREENING
        assert application.attempt_count == 1
        assert application.user_id == judge_identity.user_id

    async def test_existing_judge_cannot_apply(self, factory, judge_identity):
        await factory.judge(judge_identity)
        with pytest.raises(ConflictError) as exc:
            await screening_service.apply_for_judge(factory.db, judge_identity)
        assert exc.value.message == "You are already a judge"

    async def test_suspended_judge_may_reapply(self, factory, judge_identity):
        await factory.judge(judge_identity, status=JudgeStatus.SUSPENDED)
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        assert application.status == ApplicationStatus.SCREENING
        assert application.attempt_count == 1

    async def test_open_application_blocks_new_one(self, db_session, judge_identity):
        await screening_service.apply_for_judge(db_session, judge_identity)
        with pytest.raises(ConflictError) as exc:
            await screening_service.apply_for_judge(db_session, judge_identity)
        assert exc.value.message == "You already have a pending application"

    async def test_same_user_id_with_other_role_is_separate(self, db_session, judge_identity):
        await screening_service.apply_for_judge(db_session, judge_identity)
        other_role = Identity(user_id=judge_identity.user_id, role="creator")
        application = await screening_service.apply_for_judge(db_session, other_role)
        assert application.attempt_count == 1


class TestCooldown:

    async def _reject(self, factory, identity, now):
        anchors = await factory.anchors([50, 50, 50, 50, 50])
        application = await screening_service.apply_for_judge(factory.db, identity, now=now)
        result = await screening_service.submit_screening(
            factory.db, application.id, identity,
            [(a.id, 100) for a in anchors],
            now=now
        )
        return application, result

    async def test_next_attempt_is_exactly_seven_days_after_rejection(self, factory, judge_identity):
        now = utcnow()
        application, result = await self._reject(factory, judge_identity, now)

        assert result.passed is False
        assert result.next_attempt_date == now + timedelta(days=7)
        await factory.db.refresh(application)
        assert application.status == ApplicationStatus.REJECTED
        assert application.next_attempt_date == now + COOLDOWN
        assert application.rejection_reason == "Screening score below threshold"

    async def test_reapply_during_cooldown_returns_same_date(self, factory, judge_identity):
        now = utcnow()
        _, result = await self._reject(factory, judge_identity, now)

        with pytest.raises(CooldownActiveError) as exc:
            await screening_service.apply_for_judge(
                factory.db, judge_identity, now=now + timedelta(days=6, hours=23)
            )
        assert exc.value.next_attempt_date == result.next_attempt_date
        assert exc.value.to_dict()["nextAttemptDate"] == result.next_attempt_date.isoformat()
        assert exc.value.status_code == 400

    async def test_reapply_after_cooldown_counts_attempts(self, factory, judge_identity):
        now = utcnow()
        await self._reject(factory, judge_identity, now)

        application = await screening_service.apply_for_judge(
            factory.db, judge_identity, now=now + timedelta(days=7, seconds=1)
        )
        assert application.attempt_count == 2
        assert application.status == ApplicationStatus.SCREENING


# =============================================================================
# Screening set
# =============================================================================

class TestScreeningSet:

    async def test_returns_five_anchors_without_answers(self, factory, judge_identity):
        await factory.anchors([10, 20, 30, 40, 50, 60, 70])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)

        songs = await screening_service.get_screening_set(factory.db, application.id, judge_identity)

        assert len(songs) == 5
        assert len({s["id"] for s in songs}) == 5
        for song in songs:
            assert "correct_rating" not in song
            assert "tolerance" not in song
            assert song["title"].startswith("Anchor")

    async def test_inactive_anchors_are_not_offered(self, factory, judge_identity):
        await factory.anchors([10, 20, 30, 40])
        await factory.anchors([50, 60], active=False)
        application = await screening_service.apply_for_judge(factory.db, judge_identity)

        with pytest.raises(ResourceExhaustedError) as exc:
            await screening_service.get_screening_set(factory.db, application.id, judge_identity)
        assert exc.value.status_code == 503

    async def test_other_users_application_is_not_found(self, factory, judge_identity, trader_identity):
        await factory.anchors([10, 20, 30, 40, 50])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)

        with pytest.raises(NotFoundError):
            await screening_service.get_screening_set(factory.db, application.id, trader_identity)


# =============================================================================
# Submission
# =============================================================================

class TestSubmitScreening:

    async def test_pass_creates_active_judge(self, factory, judge_identity):
        anchors = await factory.anchors([20, 40, 60, 80, 100])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        notifier = RecordingNotifier()

        result = await screening_service.submit_screening(
            factory.db, application.id, judge_identity,
            [(a.id, a.correct_rating + 4) for a in anchors],
            notifier=notifier
        )

        assert result.passed is True
        assert result.score == 92
        assert result.avg_deviation == 4
        assert "nextAttemptDate" not in result.to_dict()

        judge = (await factory.db.execute(
            select(Judge).where(Judge.user_id == judge_identity.user_id)
        )).scalar_one()
        assert judge.status == JudgeStatus.ACTIVE
        assert judge.accuracy_score == Decimal("92.00")

        await factory.db.refresh(application)
        assert application.status == ApplicationStatus.APPROVED
        assert application.screening_score == Decimal("92.00")

        assert [n.kind for n in notifier.sent] == [NotificationKind.SCREENING_PASSED]

    async def test_pass_reactivates_suspended_judge(self, factory, judge_identity):
        anchors = await factory.anchors([50, 50, 50, 50, 50])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        judge = await factory.judge(judge_identity, status=JudgeStatus.SUSPENDED)

        result = await screening_service.submit_screening(
            factory.db, application.id, judge_identity, [(a.id, 50) for a in anchors]
        )

        assert result.passed is True
        await factory.db.refresh(judge)
        assert judge.status == JudgeStatus.ACTIVE

    async def test_unknown_anchor_ids_are_skipped(self, factory, judge_identity):
        anchors = await factory.anchors([50, 50])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)

        result = await screening_service.submit_screening(
            factory.db, application.id, judge_identity,
            [(anchors[0].id, 50), (anchors[1].id, 60), (99999, 0)]
        )
        assert result.avg_deviation == 5
        assert result.score == 90

    async def test_no_matching_anchor_is_rejected(self, factory, judge_identity):
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        with pytest.raises(ValidationError) as exc:
            await screening_service.submit_screening(
                factory.db, application.id, judge_identity, [(99999, 50)]
            )
        assert exc.value.message == "No valid anchor songs scored"

    async def test_empty_ratings_are_rejected(self, factory, judge_identity):
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        with pytest.raises(ValidationError) as exc:
            await screening_service.submit_screening(factory.db, application.id, judge_identity, [])
        assert exc.value.message == "Ratings array is required"

    @pytest.mark.parametrize("rating", [float("inf"), float("nan"), -1, 101])
    async def test_rating_outside_scale_is_rejected(self, factory, judge_identity, rating):
        anchors = await factory.anchors([50])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        application_id = application.id

        with pytest.raises(ValidationError) as exc:
            await screening_service.submit_screening(
                factory.db, application_id, judge_identity, [(anchors[0].id, rating)]
            )
        assert exc.value.message == "Rating must be between 0 and 100"

        await factory.db.refresh(application)
        assert application.status == ApplicationStatus.SCREENING
        assert application.next_attempt_date is None

    async def test_application_can_only_be_scored_once(self, factory, judge_identity):
        anchors = await factory.anchors([50, 50, 50, 50, 50])
        application = await screening_service.apply_for_judge(factory.db, judge_identity)
        ratings = [(a.id, 50) for a in anchors]

        await screening_service.submit_screening(factory.db, application.id, judge_identity, ratings)
        with pytest.raises(InvalidStateError) as exc:
            await screening_service.submit_screening(factory.db, application.id, judge_identity, ratings)
        assert exc.value.message == "Application is not in screening phase"


class TestJudgeProfile:

    async def test_profile_without_judge_shows_latest_application(self, db_session, judge_identity):
        application = await screening_service.apply_for_judge(db_session, judge_identity)
        profile = await screening_service.get_judge_profile(db_session, judge_identity)
        assert profile["isJudge"] is False
        assert profile["application"]["id"] == application.id

    async def test_profile_of_stranger(self, db_session, trader_identity):
        profile = await screening_service.get_judge_profile(db_session, trader_identity)
        assert profile == {"isJudge": False, "application": None}

    async def test_profile_of_judge(self, factory, judge_identity):
        judge = await factory.judge(judge_identity)
        profile = await screening_service.get_judge_profile(factory.db, judge_identity)
        assert profile["isJudge"] is True
        assert profile["judge"]["id"] == judge.id


class TestAnchorAdministration:

    async def test_create_list_delete(self, factory):
        song = await factory.song(title="Reference Track")
        anchor = await screening_service.create_anchor(factory.db, song.id, correct_rating=65)

        assert anchor.tolerance == 10
        assert anchor.difficulty == "medium"
        assert anchor.active is True

        anchors = await screening_service.list_anchors(factory.db)
        assert [a["title"] for a in anchors] == ["Reference Track"]
        assert anchors[0]["correct_rating"] == 65

        await screening_service.delete_anchor(factory.db, anchor.id)
        assert await screening_service.list_anchors(factory.db) == []

    async def test_song_can_be_anchor_only_once(self, factory):
        song = await factory.song()
        await screening_service.create_anchor(factory.db, song.id, correct_rating=50)
        with pytest.raises(ConflictError) as exc:
            await screening_service.create_anchor(factory.db, song.id, correct_rating=70)
        assert exc.value.message == "This song is already an anchor"

    async def test_unknown_song(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            await screening_service.create_anchor(db_session, 4242, correct_rating=50)
        assert exc.value.message == "Song not found"

    async def test_correct_rating_out_of_range(self, factory):
        song = await factory.song()
        with pytest.raises(ValidationError):
            await screening_service.create_anchor(factory.db, song.id, correct_rating=101)

    async def test_delete_unknown_anchor(self, db_session):
        with pytest.raises(NotFoundError):
            await screening_service.delete_anchor(db_session, 999)
