"""
Unit tests for the voter registry module.
"""

from datetime import date

import pytest
from werkzeug.security import check_password_hash

import database
from voter_registry import (
    age_on,
    approve_application,
    authenticate,
    bootstrap,
    enroll_face,
    face_status,
    reject_application,
    register_voter,
    reset_password_with_face,
    verify_face,
    withdraw_application,
)


pytestmark = pytest.mark.usefixtures("isolated_db")


def _register(username="VOTER_001", **extra):
    data = {"username": username, "password": "secret123", **extra}
    return register_voter(data)


class TestBootstrap:
    def test_admin_created_on_first_boot(self):
        bootstrap(admin_username="root", admin_password="rootpass")
        admin = database.get_user_by_username("root")
        assert admin["is_admin"]
        assert admin["application_status"] == "Approved"
        assert check_password_hash(admin["password_hash"], "rootpass")

    def test_admin_not_duplicated(self):
        bootstrap(admin_username="root", admin_password="rootpass")
        bootstrap(admin_username="root", admin_password="rootpass")
        assert len([u for u in database.list_users() if u["is_admin"]]) == 1

    def test_candidates_seeded_once(self):
        bootstrap(demo_candidates=["X", "Y"])
        bootstrap(demo_candidates=["X", "Y", "Z"])
        assert [c["name"] for c in database.list_candidates()] == ["X", "Y"]


class TestRegistration:
    def test_register_creates_pending_application(self):
        result = _register(full_name="Jane Doe", mobile_number="+91 9876543210")
        assert result["success"]
        user = database.get_user(result["user_id"])
        assert user["application_status"] == "Pending"
        assert not user["has_voted"]
        assert user["password_hash"] != "secret123"

    def test_duplicate_username(self):
        _register()
        result = _register()
        assert not result["success"]
        assert result["status"] == 409

    @pytest.mark.parametrize("extra", [
        {"full_name": "J4ne"},
        {"address": "abc"},
        {"mobile_number": "12345"},
        {"date_of_birth": "1990/01/01"},
        {"date_of_birth": "2999-01-01"},
        {"date_of_birth": "1990-02-30"},
        {"full_name": 123},
        {"address": 12345},
        {"mobile_number": 9876543210},
        {"date_of_birth": 19900101},
    ])
    def test_field_validation(self, extra):
        result = _register(**extra)
        assert not result["success"]
        assert result["status"] == 400

    def test_missing_credentials(self):
        assert not register_voter({"username": "x"})["success"]
        assert not register_voter({"username": "x", "password": "123"})["success"]

    def test_age_calculation(self):
        assert age_on(date(2000, 6, 15), today=date(2018, 6, 14)) == 17
        assert age_on(date(2000, 6, 15), today=date(2018, 6, 15)) == 18


class TestLogin:
    def test_valid_credentials(self):
        _register()
        result = authenticate("VOTER_001", "secret123")
        assert result["success"]
        assert result["user"]["username"] == "VOTER_001"
        assert "password_hash" not in result["user"]

    def test_wrong_password(self):
        _register()
        result = authenticate("VOTER_001", "nope")
        assert not result["success"]
        assert result["status"] == 401

    def test_unknown_user(self):
        assert authenticate("ghost", "secret123")["status"] == 401


class TestReview:
    def test_approve(self):
        uid = _register()["user_id"]
        assert approve_application(uid)["success"]
        assert database.get_user(uid)["application_status"] == "Approved"

    def test_reject_with_reason(self):
        uid = _register()["user_id"]
        assert reject_application(uid, "blurry ID")["success"]
        user = database.get_user(uid)
        assert user["application_status"] == "Rejected"
        assert user["rejection_reason"] == "blurry ID"

    def test_review_unknown_user(self):
        assert approve_application(404)["status"] == 404
        assert reject_application(404)["status"] == 404

    def test_withdraw_only_rejected(self):
        uid = _register()["user_id"]
        result = withdraw_application(uid)
        assert result["status"] == 403
        assert result["currentStatus"] == "Pending"

        reject_application(uid)
        assert withdraw_application(uid)["success"]
        assert database.get_user(uid) is None
        # Username is free again
        assert _register()["success"]


class TestFace:
    def test_enroll_and_verify(self):
        uid = _register()["user_id"]
        descriptor = [0.1] * 128
        assert not face_status(uid)["enrolled"]
        assert enroll_face(uid, descriptor)["success"]
        assert face_status(uid)["enrolled"]

        result = verify_face(uid, [0.1] * 127 + [0.12])
        assert result["verified"]
        assert result["distance"] < result["threshold"]

    def test_mismatch(self):
        uid = _register()["user_id"]
        enroll_face(uid, [0.0] * 128)
        result = verify_face(uid, [0.5] * 128)
        assert not result["verified"]
        assert result["status"] == 200

    def test_verify_without_enrollment(self):
        uid = _register()["user_id"]
        result = verify_face(uid, [0.1] * 128)
        assert not result["success"]
        assert not result["verified"]

    def test_invalid_descriptor(self):
        uid = _register()["user_id"]
        assert enroll_face(uid, [])["status"] == 400
        assert enroll_face(uid, ["a"])["status"] == 400

    def test_enrollment_locked_after_voting(self):
        uid = _register()["user_id"]
        enroll_face(uid, [0.1] * 128)
        with database.ballot_transaction() as conn:
            database.set_has_voted(conn, uid)
        result = enroll_face(uid, [0.9] * 128)
        assert result["status"] == 403
        assert verify_face(uid, [0.1] * 128)["verified"]


class TestPasswordReset:
    @pytest.fixture
    def enrolled(self):
        uid = _register(date_of_birth="1990-01-01")["user_id"]
        enroll_face(uid, [0.2] * 128)
        return uid

    def test_reset_with_matching_face(self, enrolled):
        result = reset_password_with_face("VOTER_001", "1990-01-01", [0.2] * 128, "brand-new-pass")
        assert result["success"]
        assert authenticate("VOTER_001", "brand-new-pass")["success"]
        assert not authenticate("VOTER_001", "secret123")["success"]

    @pytest.mark.parametrize("username,dob,descriptor", [
        ("VOTER_001", "1991-01-01", [0.2] * 128),
        ("VOTER_001", "1990-01-01", [0.9] * 128),
        ("ghost", "1990-01-01", [0.2] * 128),
    ])
    def test_identity_mismatch_refused(self, enrolled, username, dob, descriptor):
        result = reset_password_with_face(username, dob, descriptor, "brand-new-pass")
        assert result["status"] == 403
        assert authenticate("VOTER_001", "secret123")["success"]

    def test_short_password(self, enrolled):
        result = reset_password_with_face("VOTER_001", "1990-01-01", [0.2] * 128, "short")
        assert result["status"] == 400

    def test_requires_enrolled_face(self):
        _register(date_of_birth="1990-01-01")
        result = reset_password_with_face("VOTER_001", "1990-01-01", [0.2] * 128, "brand-new-pass")
        assert result["status"] == 403
