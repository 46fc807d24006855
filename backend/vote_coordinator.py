"""
Vote Submission Coordinator

Turns one "cast vote" request into a durable, exactly-once, anchored record:

  1. Validate the ballot (no storage access)
  2. Check eligibility: voter exists, is Approved, has not voted
  3. Persist the ballot, every score and the has_voted flip in ONE
     transaction (all or nothing)
  4. After the commit, anchor the ballot reference on chain exactly once

Once step 3 commits the vote is final. If step 4 fails the voter is told
that the vote was recorded but could not be confirmed (AnchorFailure); the
ballot row keeps anchor_status='failed' so the gap stays visible. There is
no automatic retry and no compensating rollback.
"""

import logging
import re
import sqlite3
from datetime import datetime, timezone

import database
from anchor import compute_ballot_id, get_anchor_service
from errors import (
    AlreadyVoted,
    AnchorFailure,
    InvalidBallot,
    NotEligible,
    PersistenceFailure,
    Unauthenticated,
    UnknownVoter,
)

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"^\d+$")
SQLITE_MAX_INTEGER = 2 ** 63 - 1


def _parse_candidate_id(key) -> int:
    # JSON object keys always arrive as strings
    if isinstance(key, str) and _DIGITS_RE.match(key.strip()):
        key = int(key.strip())
    if isinstance(key, bool) or not isinstance(key, int) or not 0 < key <= SQLITE_MAX_INTEGER:
        raise InvalidBallot(f"Invalid candidate id: {key!r}")
    return key


def validate_ballot(ballot) -> dict:
    """Return {candidate_id: score} with int keys, or raise InvalidBallot."""
    if not isinstance(ballot, dict) or not ballot:
        raise InvalidBallot("Ballot must be a non-empty mapping of candidate ids to scores")

    scores = {}
    for key, value in ballot.items():
        candidate_id = _parse_candidate_id(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidBallot(f"Score for candidate {candidate_id} must be an integer")
        if not database.SCORE_MIN <= value <= database.SCORE_MAX:
            raise InvalidBallot(
                f"Score for candidate {candidate_id} must be between "
                f"{database.SCORE_MIN} and {database.SCORE_MAX}"
            )
        if candidate_id in scores:
            raise InvalidBallot(f"Candidate {candidate_id} appears more than once")
        scores[candidate_id] = value
    return scores


def _persist_ballot(voter_id: int, scores: dict) -> str:
    cast_at = datetime.now(timezone.utc).isoformat(timespec="microseconds")
    ballot_id = compute_ballot_id(voter_id, scores, cast_at)

    try:
        with database.ballot_transaction() as conn:
            # Eligibility re-read under the write lock
            if database.get_application_status(conn, voter_id) != "Approved":
                raise NotEligible()
            if not database.set_has_voted(conn, voter_id):
                raise AlreadyVoted()
            database.insert_ballot(conn, ballot_id, voter_id, cast_at)
            for candidate_id, score in sorted(scores.items()):
                database.insert_score(conn, ballot_id, voter_id, candidate_id, score, cast_at)
    except AlreadyVoted:
        logger.info("Voter %s lost a concurrent submission race; rolled back.", voter_id)
        raise
    except NotEligible:
        logger.info("Voter %s lost eligibility before commit; rolled back.", voter_id)
        raise
    except sqlite3.IntegrityError as e:
        logger.warning("Ballot for voter %s rolled back: %s", voter_id, e)
        if "FOREIGN KEY" in str(e):
            raise InvalidBallot("Ballot references an unknown candidate") from e
        if "UNIQUE" in str(e):
            raise AlreadyVoted() from e
        raise PersistenceFailure() from e
    except Exception as e:
        logger.error("Ballot for voter %s rolled back: %s", voter_id, e)
        raise PersistenceFailure() from e

    logger.info(
        "Ballot %s committed for voter %s (%d scores).", ballot_id, voter_id, len(scores)
    )
    return ballot_id


def _anchor_ballot(voter_id: int, ballot_id: str, anchor) -> str:
    try:
        if anchor is None:
            anchor = get_anchor_service()
        tx_hash = anchor.submit(voter_id, ballot_id)
    except Exception as e:
        logger.error("Ballot %s committed but NOT anchored: %s", ballot_id, e)
        try:
            database.mark_ballot_anchor_failed(ballot_id, str(e))
        except sqlite3.Error:
            logger.exception("Could not record anchor failure for ballot %s", ballot_id)
        raise AnchorFailure(ballot_id, str(e)) from e

    try:
        database.mark_ballot_anchored(ballot_id, tx_hash)
    except sqlite3.Error:
        logger.exception("Ballot %s anchored as %s but the hash was not stored", ballot_id, tx_hash)
    logger.info("Ballot %s anchored: %s", ballot_id, tx_hash)
    return tx_hash


def submit_vote(voter_id, ballot, anchor=None) -> dict:
    """
    Cast a ballot for an authenticated voter.

    Parameters
    ----------
    voter_id : int
        Id of the caller, resolved by the HTTP layer from the request's
        session. None means the request is not authenticated.
    ballot : dict
        {candidate_id: score}; keys may be ints or decimal strings.
    anchor : object, optional
        Anything with submit(voter_id, ballot_id) -> tx_hash. Defaults to
        the configured Ethereum anchor service.

    Returns
    -------
    dict with keys:
        ballot_id        : str
        transaction_hash : str
        scores           : {candidate_id: score}

    Raises
    ------
    Unauthenticated, InvalidBallot, UnknownVoter, NotEligible, AlreadyVoted,
    PersistenceFailure (nothing saved), AnchorFailure (vote saved).
    """
    if voter_id is None:
        raise Unauthenticated()
    scores = validate_ballot(ballot)

    voter = database.get_user(voter_id)
    if voter is None:
        raise UnknownVoter()
    if voter["application_status"] != "Approved":
        raise NotEligible()
    if database.get_has_voted(voter_id):
        raise AlreadyVoted()

    ballot_id = _persist_ballot(voter_id, scores)
    tx_hash = _anchor_ballot(voter_id, ballot_id, anchor)

    return {"ballot_id": ballot_id, "transaction_hash": tx_hash, "scores": scores}
