"""Tests for the abuse heuristics engine and the post-action hooks."""

import logging

import pytest
from sqlalchemy.exc import OperationalError

from gallery_trust.core.errors import BadRequestError, NotFoundError
from gallery_trust.models import ActivityEvent, User
from gallery_trust.models.user import (
    USER_STATUS_ACTIVE,
    USER_STATUS_DEACTIVATED,
    USER_STATUS_FLAGGED,
    USER_STATUS_PENDING,
    USER_STATUS_SUSPENDED,
)
from gallery_trust.services.abuse import (
    FLAG_BULK_GALLERY_CREATION,
    FLAG_FAILED_LOGIN_BURST,
    FLAG_RAPID_UPLOADS,
    FLAG_UNUSUAL_LOGIN_IP,
    AbuseHeuristicsEngine,
    PostActionChecks,
)
from gallery_trust.services.activity import (
    ACTION_ARTWORK_CREATED,
    ACTION_GALLERY_CREATED,
    ACTION_SUSPICIOUS_CLEARED,
    ACTION_SUSPICIOUS_FLAGGED,
    ACTION_USER_LOGIN,
    ACTION_USER_LOGIN_FAILED,
)


@pytest.fixture
def abuse_engine(db_session, recorder, clock):
    return AbuseHeuristicsEngine(db_session, recorder, clock)


@pytest.fixture
def hooks(abuse_engine):
    return PostActionChecks(abuse_engine)


def _flag_events(db_session, user_id):
    return (
        db_session.query(ActivityEvent)
        .filter(
            ActivityEvent.user_id == user_id,
            ActivityEvent.action == ACTION_SUSPICIOUS_FLAGGED,
        )
        .all()
    )


def _status(db_session, user_id):
    db_session.expire_all()
    return db_session.get(User, user_id).status


class TestChecks:
    def test_rapid_uploads_above_threshold(self, abuse_engine, recorder, test_user):
        for _ in range(5):
            recorder.record(ACTION_ARTWORK_CREATED, actor_id=test_user.id)
        assert not abuse_engine.check_rapid_uploads(test_user.id).detected

        recorder.record(ACTION_ARTWORK_CREATED, actor_id=test_user.id)
        result = abuse_engine.check_rapid_uploads(test_user.id)
        assert result.detected
        assert result.count == 6

    def test_rapid_uploads_window_slides(self, abuse_engine, recorder, test_user, clock):
        for _ in range(6):
            recorder.record(ACTION_ARTWORK_CREATED, actor_id=test_user.id)
        clock.advance(seconds=61)
        assert abuse_engine.check_rapid_uploads(test_user.id).count == 0

    def test_bulk_gallery_creation(self, abuse_engine, recorder, test_user):
        for _ in range(11):
            recorder.record(ACTION_GALLERY_CREATED, actor_id=test_user.id)
        assert abuse_engine.check_bulk_gallery_creation(test_user.id).detected
        assert not abuse_engine.check_bulk_gallery_creation(test_user.id, threshold=11).detected

    def test_unusual_ip_with_history(self, abuse_engine, recorder, test_user):
        recorder.record(ACTION_USER_LOGIN, actor_id=test_user.id, ip_address="198.51.100.1")

        result = abuse_engine.check_unusual_ip(test_user.id, "203.0.113.9")
        assert result.is_unusual
        assert result.previous_ips == ["198.51.100.1"]
        assert not abuse_engine.check_unusual_ip(test_user.id, "198.51.100.1").is_unusual

    def test_unusual_ip_without_history(self, abuse_engine, test_user):
        result = abuse_engine.check_unusual_ip(test_user.id, "203.0.113.9")
        assert not result.is_unusual
        assert result.previous_ips == []

    def test_failed_logins_at_threshold(self, abuse_engine, recorder):
        for _ in range(4):
            recorder.record(ACTION_USER_LOGIN_FAILED, ip_address="192.0.2.50")
        assert not abuse_engine.check_failed_logins("192.0.2.50").detected

        recorder.record(ACTION_USER_LOGIN_FAILED, ip_address="192.0.2.50")
        assert abuse_engine.check_failed_logins("192.0.2.50").detected


class TestFlag:
    def test_high_severity_flags_and_escalates_once(self, abuse_engine, db_session, test_user):
        first = abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "high", {"uploadCount": 6})
        second = abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "high", {"uploadCount": 7})

        assert first.recorded and first.escalated
        assert not second.recorded and not second.escalated

        events = _flag_events(db_session, test_user.id)
        assert len(events) == 1
        assert events[0].metadata_ == {
            "flag": FLAG_RAPID_UPLOADS,
            "severity": "high",
            "uploadCount": 6,
        }
        assert events[0].entity_type == "user"
        assert _status(db_session, test_user.id) == USER_STATUS_FLAGGED

    def test_flag_repeats_after_dedup_window(self, abuse_engine, db_session, test_user, clock):
        abuse_engine.flag(test_user.id, FLAG_UNUSUAL_LOGIN_IP, "medium")
        clock.advance(hours=1, seconds=1)
        assert abuse_engine.flag(test_user.id, FLAG_UNUSUAL_LOGIN_IP, "medium").recorded
        assert len(_flag_events(db_session, test_user.id)) == 2

    def test_different_flag_names_are_independent(self, abuse_engine, db_session, test_user):
        abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "low")
        abuse_engine.flag(test_user.id, FLAG_BULK_GALLERY_CREATION, "low")
        assert len(_flag_events(db_session, test_user.id)) == 2

    @pytest.mark.parametrize("severity", ["low", "medium"])
    def test_low_and_medium_do_not_escalate(self, abuse_engine, db_session, test_user, severity):
        outcome = abuse_engine.flag(test_user.id, FLAG_UNUSUAL_LOGIN_IP, severity)
        assert outcome.recorded and not outcome.escalated
        assert _status(db_session, test_user.id) == USER_STATUS_ACTIVE

    def test_critical_escalates(self, abuse_engine, db_session, test_user):
        assert abuse_engine.flag(test_user.id, "manual_report", "critical").escalated
        assert _status(db_session, test_user.id) == USER_STATUS_FLAGGED

    def test_suspended_account_is_not_downgraded(self, abuse_engine, db_session, make_user):
        user = make_user(status=USER_STATUS_SUSPENDED)
        outcome = abuse_engine.flag(user.id, FLAG_RAPID_UPLOADS, "high")

        assert outcome.recorded and not outcome.escalated
        assert _status(db_session, user.id) == USER_STATUS_SUSPENDED

    @pytest.mark.parametrize(
        "status", [USER_STATUS_PENDING, USER_STATUS_DEACTIVATED, USER_STATUS_FLAGGED]
    )
    @pytest.mark.parametrize("severity", ["high", "critical"])
    def test_only_active_accounts_escalate(
        self, abuse_engine, db_session, make_user, status, severity
    ):
        user = make_user(status=status)
        outcome = abuse_engine.flag(user.id, FLAG_RAPID_UPLOADS, severity)

        assert outcome.recorded
        assert outcome.escalated is False
        assert _status(db_session, user.id) == status

    def test_invalid_severity(self, abuse_engine, db_session, test_user):
        with pytest.raises(BadRequestError):
            abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "urgent")
        assert _flag_events(db_session, test_user.id) == []


class TestClearFlags:
    def test_clears_flagged_account(self, abuse_engine, db_session, test_user, admin_user):
        abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "high")
        abuse_engine.clear_flags(test_user.id, admin_user.id, "Verified artist, batch import")

        assert _status(db_session, test_user.id) == USER_STATUS_ACTIVE
        cleared = (
            db_session.query(ActivityEvent)
            .filter(ActivityEvent.action == ACTION_SUSPICIOUS_CLEARED)
            .one()
        )
        assert cleared.user_id == admin_user.id
        assert cleared.entity_id == test_user.id
        assert cleared.metadata_ == {
            "reviewedBy": admin_user.id,
            "reviewNotes": "Verified artist, batch import",
            "clearedUserId": test_user.id,
        }

    def test_active_account_is_not_found(self, abuse_engine, test_user, admin_user):
        with pytest.raises(NotFoundError):
            abuse_engine.clear_flags(test_user.id, admin_user.id, "nothing to clear")

    def test_unknown_account_is_not_found(self, abuse_engine, admin_user):
        with pytest.raises(NotFoundError):
            abuse_engine.clear_flags("missing", admin_user.id, "notes")

    @pytest.mark.parametrize("notes", ["", "   ", "x" * 1001])
    def test_invalid_notes(self, abuse_engine, test_user, admin_user, notes):
        abuse_engine.flag(test_user.id, FLAG_RAPID_UPLOADS, "high")
        with pytest.raises(BadRequestError):
            abuse_engine.clear_flags(test_user.id, admin_user.id, notes)


class TestReviewSurfaces:
    def test_list_and_stats(self, abuse_engine, make_user):
        flagged = [make_user() for _ in range(3)]
        for user in flagged:
            abuse_engine.flag(user.id, FLAG_RAPID_UPLOADS, "high", {"uploadCount": 9})
        make_user()

        assert abuse_engine.count_flagged_users() == 3
        page = abuse_engine.list_flagged_users(page=1, limit=2)
        assert len(page) == 2
        assert page[0]["flags"][0]["flag"] == FLAG_RAPID_UPLOADS
        assert "detectedAt" in page[0]["flags"][0]

        stats = abuse_engine.flag_statistics()
        assert stats["flagged_users"] == 3
        assert stats["recent_flags"] == [
            {"flag": FLAG_RAPID_UPLOADS, "severity": "high", "count": 3}
        ]

    def test_invalid_pagination(self, abuse_engine):
        with pytest.raises(BadRequestError):
            abuse_engine.list_flagged_users(page=0)
        with pytest.raises(BadRequestError):
            abuse_engine.list_flagged_users(limit=101)


class TestPostActionChecks:
    def test_sixth_upload_flags_rapid_uploads(self, hooks, db_session, test_user):
        results = [hooks.after_artwork_created(test_user.id, f"art-{i}") for i in range(6)]

        assert not any(result.detected for result in results[:5])
        assert results[5].detected
        events = _flag_events(db_session, test_user.id)
        assert [event.metadata_["flag"] for event in events] == [FLAG_RAPID_UPLOADS]
        assert events[0].metadata_["threshold"] == 5
        assert _status(db_session, test_user.id) == USER_STATUS_FLAGGED

    def test_bulk_gallery_flag_is_medium(self, hooks, db_session, test_user):
        for i in range(11):
            hooks.after_gallery_created(test_user.id, f"gal-{i}")

        events = _flag_events(db_session, test_user.id)
        assert events[0].metadata_["flag"] == FLAG_BULK_GALLERY_CREATION
        assert events[0].metadata_["severity"] == "medium"
        assert _status(db_session, test_user.id) == USER_STATUS_ACTIVE

    def test_login_from_new_address(self, hooks, db_session, test_user, clock):
        assert not hooks.after_login(test_user.id, "198.51.100.1", is_signup=True).is_unusual
        clock.advance(days=1)
        assert not hooks.after_login(test_user.id, "198.51.100.1").is_unusual
        result = hooks.after_login(test_user.id, "203.0.113.7")

        assert result.is_unusual
        events = _flag_events(db_session, test_user.id)
        assert events[0].metadata_["ipAddress"] == "203.0.113.7"
        assert events[0].metadata_["previousIPs"] == "198.51.100.1"
        # The new address joined the history after the comparison.
        assert not hooks.after_login(test_user.id, "203.0.113.7").is_unusual

    def test_failed_login_burst_flags_known_account(self, hooks, db_session, test_user):
        for _ in range(5):
            result = hooks.after_login_failed("192.0.2.77", actor_id=test_user.id, reason="bad")

        assert result.detected
        events = _flag_events(db_session, test_user.id)
        assert [event.metadata_["flag"] for event in events] == [FLAG_FAILED_LOGIN_BURST]
        assert _status(db_session, test_user.id) == USER_STATUS_ACTIVE

    def test_failed_login_burst_without_account_only_logs(self, hooks, db_session, caplog):
        with caplog.at_level(logging.WARNING, logger="gallery_trust.services.abuse"):
            for _ in range(5):
                hooks.after_login_failed("192.0.2.88")

        assert "Failed login burst from 192.0.2.88" in caplog.text
        assert (
            db_session.query(ActivityEvent)
            .filter(ActivityEvent.action == ACTION_SUSPICIOUS_FLAGGED)
            .count()
            == 0
        )

    def test_check_failure_is_logged(self, hooks, abuse_engine, test_user, mocker, caplog):
        mocker.patch.object(
            abuse_engine,
            "check_rapid_uploads",
            side_effect=OperationalError("SELECT", {}, Exception("locked")),
        )
        with caplog.at_level(logging.ERROR, logger="gallery_trust.services.abuse"):
            assert hooks.after_artwork_created(test_user.id, "art-x") is None
        assert "Rapid upload check failed" in caplog.text

    def test_window_boundary(self, hooks, abuse_engine, test_user, clock):
        for i in range(5):
            hooks.after_artwork_created(test_user.id, f"art-{i}")
        clock.advance(seconds=61)
        assert not hooks.after_artwork_created(test_user.id, "art-late").detected
        assert abuse_engine.check_rapid_uploads(test_user.id).count == 1
