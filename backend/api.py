"""
AnchorVote REST API

  Auth:
    POST   /api/auth/register        — Submit a voter application (Pending)
    POST   /api/auth/login           — Start a session
    POST   /api/auth/logout          — End the session
    GET    /api/auth/session         — Who is logged in
    GET    /api/auth/me              — Full profile of the caller
    POST   /api/auth/enroll-face     — Store the caller's face descriptor
    GET    /api/auth/face-status     — Is a descriptor enrolled
    POST   /api/auth/verify-face     — Compare a live descriptor
    DELETE /api/auth/my-application  — Withdraw a rejected application
    POST   /api/auth/forgot-password/reset — Reset a password with DOB + face

  Voting:
    GET    /api/vote/user/status     — has_voted + anchor state of the ballot
    GET    /api/vote/candidates      — Candidates on the ballot
    POST   /api/vote/vote            — Cast a scored ballot

  Results:
    GET    /api/results              — Tallies, once published

  Admin (is_admin only):
    POST   /api/admin/publish-results | /api/admin/unpublish-results
    GET    /api/admin/candidates     POST /api/admin/candidates
    PUT    /api/admin/candidates/<id>  DELETE /api/admin/candidates/<id>
    GET    /api/admin/users          GET /api/admin/users/pending
    POST   /api/admin/users/<id>/approve | /api/admin/users/<id>/reject
    GET    /api/admin/ballots/unanchored
    GET    /api/admin/stats
"""

import logging
import sqlite3
import sys
from functools import wraps
from pathlib import Path

# Allow importing siblings
sys.path.insert(0, str(Path(__file__).parent))
sys.path.insert(0, str(Path(__file__).parent.parent / "blockchain"))

from flask import Flask, jsonify, request, session
from flask_cors import CORS

import config
import database
from errors import VoteError
from vote_coordinator import submit_vote
from voter_registry import (
    DEMO_CANDIDATES,
    approve_application,
    authenticate,
    bootstrap,
    enroll_face,
    face_status,
    parse_date,
    public_profile,
    register_voter,
    reject_application,
    reset_password_with_face,
    verify_face,
    withdraw_application,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)
app.config.update(
    SECRET_KEY=config.SECRET_KEY,
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
)
CORS(app, supports_credentials=True)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

def initialize(demo_candidates: list = None):
    config.configure_logging()
    bootstrap(demo_candidates=DEMO_CANDIDATES if demo_candidates is None else demo_candidates)
    logger.info("AnchorVote initialized and ready.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _respond(result: dict, ok_status: int = 200):
    result = dict(result)
    status = result.pop("status", None) or (ok_status if result["success"] else 400)
    return jsonify(result), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _current_user():
    """The logged-in user's row, or None. Clears sessions of deleted users."""
    user_id = session.get("user_id")
    if user_id is None:
        return None
    user = database.get_user(user_id)
    if user is None:
        session.clear()
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user = _current_user()
        if user is None:
            return jsonify({"success": False, "error": "Not authenticated"}), 401
        return view(user, *args, **kwargs)
    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user = _current_user()
        if user is None or not user["is_admin"]:
            return jsonify({"success": False, "error": "Forbidden: Admin access required"}), 403
        return view(*args, **kwargs)
    return wrapper


# ---------------------------------------------------------------------------
# Auth API
# ---------------------------------------------------------------------------

@app.route("/api/auth/register", methods=["POST"])
def api_register():
    data = _json_body() or request.form.to_dict()
    return _respond(register_voter(data), ok_status=201)


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    data = _json_body()
    result = authenticate(str(data.get("username", "")).strip(), str(data.get("password", "")))
    if not result["success"]:
        return _respond(result)
    session.clear()
    session["user_id"] = result["user"]["id"]
    return jsonify(result["user"])


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    session.clear()
    return jsonify({"success": True, "message": "Logged out successfully"})


@app.route("/api/auth/session", methods=["GET"])
def api_session():
    user = _current_user()
    if user is None:
        return jsonify({"user": None}), 401
    return jsonify({
        "user": {
            "id": user["id"],
            "username": user["username"],
            "isAdmin": bool(user["is_admin"]),
            "application_status": user["application_status"],
            "has_voted": bool(user["has_voted"]),
        }
    })


@app.route("/api/auth/me", methods=["GET"])
@login_required
def api_me(user):
    return jsonify(public_profile(user))


@app.route("/api/auth/enroll-face", methods=["POST"])
@login_required
def api_enroll_face(user):
    return _respond(enroll_face(user["id"], _json_body().get("faceDescriptor")))


@app.route("/api/auth/face-status", methods=["GET"])
@login_required
def api_face_status(user):
    return _respond(face_status(user["id"]))


@app.route("/api/auth/verify-face", methods=["POST"])
@login_required
def api_verify_face(user):
    data = _json_body()
    return _respond(verify_face(user["id"], data.get("liveDescriptor") or data.get("faceDescriptor")))


@app.route("/api/auth/my-application", methods=["DELETE"])
@login_required
def api_withdraw_application(user):
    result = withdraw_application(user["id"])
    if result["success"]:
        session.clear()
    return _respond(result)


@app.route("/api/auth/forgot-password/reset", methods=["POST"])
def api_forgot_password_reset():
    data = _json_body()
    return _respond(reset_password_with_face(
        str(data.get("username", "")).strip(),
        str(data.get("date_of_birth", "")).strip(),
        data.get("liveDescriptor"),
        str(data.get("newPassword", "")),
    ))


# ---------------------------------------------------------------------------
# Voting API
# ---------------------------------------------------------------------------

@app.route("/api/vote/user/status", methods=["GET"])
@login_required
def api_vote_status(user):
    ballot = database.get_ballot_for_user(user["id"])
    return jsonify({
        "has_voted": bool(user["has_voted"]),
        "ballot": None if ballot is None else {
            "ballotId": ballot["ballot_id"],
            "castAt": ballot["cast_at"],
            "anchorStatus": ballot["anchor_status"],
            "transactionHash": ballot["tx_hash"],
        },
    })


@app.route("/api/vote/candidates", methods=["GET"])
def api_vote_candidates():
    return jsonify(database.list_candidates())


@app.route("/api/vote/vote", methods=["POST"])
def api_submit_vote():
    """
    Cast a scored ballot for the logged-in voter.

    Request JSON:
      { "scores": { "<candidate_id>": int, ... } }

    Response JSON (success):
      { "success": true, "message": str,
        "data": { "transactionHash": str, "ballotId": str } }

    Response JSON (failure):
      { "success": false, "error": code, "message": str }
      AnchorFailure additionally carries "ballotId" and "voteRecorded": true.
    """
    try:
        receipt = submit_vote(session.get("user_id"), _json_body().get("scores"))
    except VoteError as e:
        return jsonify(e.to_dict()), e.status

    return jsonify({
        "success": True,
        "message": "Vote submitted successfully",
        "data": {
            "transactionHash": receipt["transaction_hash"],
            "ballotId": receipt["ballot_id"],
        },
    })


# ---------------------------------------------------------------------------
# Results API
# ---------------------------------------------------------------------------

@app.route("/api/results", methods=["GET"])
def api_results():
    if not database.get_results_published():
        return jsonify({"error": "Results have not been published yet", "status": "pending"}), 403
    return jsonify({
        "status": "published",
        "results": [
            {
                "id": row["id"],
                "name": row["name"],
                "totalScore": row["total_score"],
                "voteCount": row["vote_count"],
            }
            for row in database.get_results()
        ],
    })


# ---------------------------------------------------------------------------
# Admin API
# ---------------------------------------------------------------------------

def _validate_candidate_input(data: dict):
    """Return an error message, or None if every provided field is acceptable."""
    name = data.get("name")
    if "name" in data and (not isinstance(name, str) or not 2 <= len(name) <= 100):
        return "Name must be between 2 and 100 characters"
    dob = data.get("date_of_birth")
    if dob and parse_date(dob) is None:
        return "Date of birth must be a valid date in YYYY-MM-DD format"
    party = data.get("party")
    if party and (not isinstance(party, str) or len(party) > 100):
        return "Party name must be less than 100 characters"
    image_url = data.get("image_url")
    if image_url and (not isinstance(image_url, str) or len(image_url) > 500):
        return "Image URL must be less than 500 characters"
    return None


@app.route("/api/admin/publish-results", methods=["POST"])
@admin_required
def api_publish_results():
    database.set_results_published(True)
    logger.info("Results published.")
    return jsonify({"success": True, "message": "Results published successfully"})


@app.route("/api/admin/unpublish-results", methods=["POST"])
@admin_required
def api_unpublish_results():
    database.set_results_published(False)
    logger.info("Results unpublished.")
    return jsonify({"success": True, "message": "Results hidden successfully"})


@app.route("/api/admin/candidates", methods=["GET"])
@admin_required
def api_admin_candidates():
    return jsonify(database.list_candidates())


@app.route("/api/admin/candidates", methods=["POST"])
@admin_required
def api_create_candidate():
    data = _json_body()
    if not data.get("name"):
        return jsonify({"success": False, "error": "Candidate name is required"}), 400
    error = _validate_candidate_input(data)
    if error:
        return jsonify({"success": False, "error": error}), 400

    fields = {k: data.get(k) or None for k in database.CANDIDATE_FIELDS}
    try:
        candidate_id = database.create_candidate(**fields)
    except sqlite3.IntegrityError:
        return jsonify({"success": False, "error": "Candidate already exists"}), 409
    return jsonify(database.get_candidate(candidate_id)), 201


@app.route("/api/admin/candidates/<int:candidate_id>", methods=["PUT"])
@admin_required
def api_update_candidate(candidate_id: int):
    data = _json_body()
    error = _validate_candidate_input(data)
    if error:
        return jsonify({"success": False, "error": error}), 400
    if database.get_candidate(candidate_id) is None:
        return jsonify({"success": False, "error": "Candidate not found"}), 404

    fields = {k: data[k] for k in database.CANDIDATE_FIELDS if k in data}
    if not fields:
        return jsonify({"success": False, "error": "No fields to update"}), 400
    try:
        database.update_candidate(candidate_id, fields)
    except sqlite3.IntegrityError:
        return jsonify({"success": False, "error": "Candidate name already exists"}), 409
    return jsonify(database.get_candidate(candidate_id))


@app.route("/api/admin/candidates/<int:candidate_id>", methods=["DELETE"])
@admin_required
def api_delete_candidate(candidate_id: int):
    try:
        deleted = database.delete_candidate(candidate_id)
    except sqlite3.IntegrityError:
        return jsonify({"success": False, "error": "Candidate already has recorded votes"}), 409
    if not deleted:
        return jsonify({"success": False, "error": "Candidate not found"}), 404
    return "", 204


@app.route("/api/admin/users", methods=["GET"])
@admin_required
def api_users():
    return jsonify(database.list_users())


@app.route("/api/admin/users/pending", methods=["GET"])
@admin_required
def api_pending_users():
    return jsonify(database.list_pending_users())


@app.route("/api/admin/users/<int:user_id>/approve", methods=["POST"])
@admin_required
def api_approve_user(user_id: int):
    return _respond(approve_application(user_id))


@app.route("/api/admin/users/<int:user_id>/reject", methods=["POST"])
@admin_required
def api_reject_user(user_id: int):
    return _respond(reject_application(user_id, _json_body().get("reason")))


@app.route("/api/admin/ballots/unanchored", methods=["GET"])
@admin_required
def api_unanchored_ballots():
    """Ballots that count toward the tally but have no confirmed anchor."""
    return jsonify(database.list_unanchored_ballots())


@app.route("/api/admin/stats", methods=["GET"])
@admin_required
def api_stats():
    return jsonify(database.get_stats())


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"status": "ok", "service": "AnchorVote"})


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    initialize()
    app.run(host="0.0.0.0", port=config.PORT, debug=config.DEBUG, threaded=True)
