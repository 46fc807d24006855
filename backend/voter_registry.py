"""
Voter Registry — Applications, Approval and Face Enrollment

Orchestrates everything that happens to a voter before the ballot:
  1. Registration (application starts as Pending)
  2. Admin approval or rejection
  3. Face descriptor enrollment and verification
  4. Withdrawal of a rejected application

Functions return plain result dicts ({"success": bool, ...}); failures carry
an "error" message and the HTTP "status" the API should answer with.
"""

import logging
import re
import sqlite3
from datetime import date, datetime

from werkzeug.security import check_password_hash, generate_password_hash

import config
import database
from face_match import DescriptorError, dump_descriptor, is_match, load_descriptor, parse_descriptor

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
RESET_PASSWORD_MIN_LENGTH = 8
MINIMUM_VOTING_AGE = 18
DEMO_CANDIDATES = ["Candidate 1", "Candidate 2", "Candidate 3"]

_FULL_NAME_RE = re.compile(r"^[a-zA-Z\s]{2,50}$")
_MOBILE_RE = re.compile(r"^(\+\d{1,3}[- ]?)?\d{10}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _fail(error: str, status: int = 400, **extra) -> dict:
    return {"success": False, "error": error, "status": status, **extra}


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def parse_date(value: str):
    """Parse YYYY-MM-DD; None if the text is not a real calendar date."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def age_on(birth_date: date, today: date = None) -> int:
    today = today or date.today()
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def validate_full_name(name: str) -> bool:
    return bool(_FULL_NAME_RE.match(name))


def validate_address(address: str) -> bool:
    return 5 <= len(address) <= 200


def validate_mobile_number(mobile: str) -> bool:
    return bool(_MOBILE_RE.match(mobile))


def validate_voter_birth_date(value: str) -> bool:
    birth_date = parse_date(value)
    return birth_date is not None and age_on(birth_date) >= MINIMUM_VOTING_AGE


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

def bootstrap(admin_username: str = None, admin_password: str = None,
              demo_candidates: list = None):
    """
    Initialize the database, make sure the admin account exists and seed
    demo candidates when the candidate table is empty.
    """
    database.init_db()

    admin_username = admin_username or config.ADMIN_USERNAME
    admin_password = admin_password or config.ADMIN_PASSWORD
    if database.get_user_by_username(admin_username) is None:
        database.create_user(
            admin_username,
            generate_password_hash(admin_password),
            application_status="Approved",
            is_admin=True,
        )
        logger.info("Admin user '%s' created.", admin_username)
    else:
        logger.info("Admin user already exists.")

    if demo_candidates and database.count_candidates() == 0:
        for name in demo_candidates:
            database.create_candidate(name)
        logger.info("Seeded %d demo candidates.", len(demo_candidates))


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------

def register_voter(data: dict) -> dict:
    """
    Create a Pending application.

    Parameters
    ----------
    data : dict
        username, password (required); full_name, address, mobile_number,
        date_of_birth, id_proof_filename (optional)
    """
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")
    if not username or not password:
        return _fail("Username and password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        return _fail(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    full_name = data.get("full_name") or None
    address = data.get("address") or None
    mobile_number = data.get("mobile_number") or None
    date_of_birth = data.get("date_of_birth") or None

    if full_name and not (isinstance(full_name, str) and validate_full_name(full_name)):
        return _fail("Invalid full name format")
    if address and not (isinstance(address, str) and validate_address(address)):
        return _fail("Invalid address format")
    if mobile_number and not (isinstance(mobile_number, str)
                              and validate_mobile_number(mobile_number)):
        return _fail("Invalid mobile number format")
    if date_of_birth and not validate_voter_birth_date(date_of_birth):
        return _fail(
            "Invalid date of birth format (should be YYYY-MM-DD) "
            "or user must be at least 18 years old"
        )

    try:
        user_id = database.create_user(
            username,
            generate_password_hash(password),
            full_name=full_name,
            address=address,
            mobile_number=mobile_number,
            date_of_birth=date_of_birth,
            id_proof_filename=data.get("id_proof_filename") or None,
        )
    except sqlite3.IntegrityError:
        return _fail("Username already exists", 409)

    logger.info("Registered user %s (id=%d), application Pending.", username, user_id)
    return {"success": True, "user_id": user_id, "application_status": "Pending"}


def authenticate(username: str, password: str) -> dict:
    if not username or not password:
        return _fail("Username and password are required")
    user = database.get_user_by_username(username)
    if user is None or not check_password_hash(user["password_hash"], password):
        return _fail("Invalid username or password", 401)
    return {"success": True, "user": public_profile(user)}


def public_profile(user: dict) -> dict:
    """The user row without credential or biometric material."""
    return {
        "id": user["id"],
        "username": user["username"],
        "full_name": user["full_name"],
        "address": user["address"],
        "mobile_number": user["mobile_number"],
        "date_of_birth": user["date_of_birth"],
        "id_proof_filename": user["id_proof_filename"],
        "application_status": user["application_status"],
        "rejection_reason": user["rejection_reason"],
        "has_voted": bool(user["has_voted"]),
        "is_admin": bool(user["is_admin"]),
        "face_enrolled": bool(user["face_descriptor"]),
    }


# ---------------------------------------------------------------------------
# Admin review
# ---------------------------------------------------------------------------

def approve_application(user_id: int) -> dict:
    if not database.set_application_status(user_id, "Approved"):
        return _fail("User not found", 404)
    logger.info("Application %d approved.", user_id)
    return {"success": True, "message": "User application approved successfully"}


def reject_application(user_id: int, reason: str = None) -> dict:
    if not database.set_application_status(user_id, "Rejected", reason or None):
        return _fail("User not found", 404)
    logger.info("Application %d rejected.", user_id)
    return {"success": True, "message": "User application rejected successfully"}


def withdraw_application(user_id: int) -> dict:
    """Delete a Rejected application so the person can register again."""
    user = database.get_user(user_id)
    if user is None:
        return _fail("User not found", 404)
    if user["application_status"] != "Rejected" or user["has_voted"]:
        return _fail(
            "Application cannot be deleted at this status",
            403,
            currentStatus=user["application_status"],
        )
    database.delete_user(user_id)
    logger.info("Rejected application of %s deleted.", user["username"])
    return {
        "success": True,
        "message": "Application deleted successfully. You can now register again.",
        "username": user["username"],
    }


# ---------------------------------------------------------------------------
# Face enrollment & verification
# ---------------------------------------------------------------------------

def enroll_face(user_id: int, descriptor) -> dict:
    try:
        descriptor = parse_descriptor(descriptor)
    except DescriptorError as e:
        return _fail(str(e))

    user = database.get_user(user_id)
    if user is None:
        return _fail("User not found", 404)
    if user["has_voted"]:
        return _fail("Face data cannot be changed after voting", 403)

    if not database.set_face_descriptor(user_id, dump_descriptor(descriptor)):
        return _fail("Face data cannot be changed after voting", 403)
    logger.info("Face descriptor updated for user %d.", user_id)
    return {"success": True, "message": "Face enrolled successfully"}


def face_status(user_id: int) -> dict:
    user = database.get_user(user_id)
    if user is None:
        return _fail("User not found", 404)
    return {"success": True, "enrolled": bool(user["face_descriptor"])}


def verify_face(user_id: int, live_descriptor) -> dict:
    try:
        live = parse_descriptor(live_descriptor)
    except DescriptorError as e:
        return _fail(str(e))

    if database.get_user(user_id) is None:
        return _fail("User not found", 404)
    stored = database.get_face_descriptor(user_id)
    if not stored:
        return _fail("No face data has been enrolled for this user", verified=False)

    try:
        verified, distance, threshold = is_match(live, load_descriptor(stored))
    except DescriptorError as e:
        return _fail(str(e), verified=False)

    logger.info(
        "Face verification for user %d: distance=%.4f threshold=%s verified=%s",
        user_id, distance, threshold, verified,
    )
    return {
        "success": verified,
        "verified": verified,
        "distance": distance,
        "threshold": threshold,
        "message": "Face verified successfully" if verified else "Face does not match enrolled data",
        "status": 200,
    }


def reset_password_with_face(username: str, date_of_birth: str, live_descriptor,
                             new_password: str) -> dict:
    """
    Forgotten-password reset. The caller proves identity with the date of
    birth on the application plus a live face sample matching the enrolled
    descriptor; every identity mismatch gets the same answer.
    """
    if not username or not date_of_birth or not new_password:
        return _fail("Username, date of birth and new password are required.")
    if parse_date(date_of_birth) is None:
        return _fail("Invalid date of birth format. Use YYYY-MM-DD.")
    if len(new_password) < RESET_PASSWORD_MIN_LENGTH:
        return _fail(f"Password must be at least {RESET_PASSWORD_MIN_LENGTH} characters long.")
    try:
        live = parse_descriptor(live_descriptor)
    except DescriptorError as e:
        return _fail(str(e))

    not_eligible = _fail(
        "Invalid information or account not eligible for facial password reset.", 403
    )
    user = database.get_user_by_username(username)
    if user is None or user["date_of_birth"] != date_of_birth or not user["face_descriptor"]:
        return not_eligible
    try:
        verified, distance, _ = is_match(live, load_descriptor(user["face_descriptor"]))
    except DescriptorError:
        return not_eligible
    if not verified:
        logger.info("Password reset refused for %s: distance=%.4f", username, distance)
        return not_eligible

    database.update_password_hash(user["id"], generate_password_hash(new_password))
    logger.info("Password reset by face verification for %s.", username)
    return {"success": True, "message": "Password updated successfully."}
