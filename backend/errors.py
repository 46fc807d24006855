"""
Vote submission errors

Each error carries a stable machine code, the HTTP status the API answers
with, and a message that is safe to show to the voter.
"""


class VoteError(Exception):
    code = "vote_error"
    status = 500
    message = "Vote submission failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class Unauthenticated(VoteError):
    code = "unauthenticated"
    status = 401
    message = "Not authenticated"


class UnknownVoter(VoteError):
    code = "unknown_voter"
    status = 404
    message = "Voter not found"


class NotEligible(VoteError):
    code = "not_eligible"
    status = 403
    message = "Your application has not been approved for voting"


class AlreadyVoted(VoteError):
    code = "already_voted"
    status = 403
    message = "User has already voted"


class InvalidBallot(VoteError):
    code = "invalid_ballot"
    status = 400
    message = "Invalid scores format"


class PersistenceFailure(VoteError):
    """The local transaction was rolled back; the voter may try again."""

    code = "persistence_failure"
    status = 500
    message = "Your vote could not be recorded. Nothing was saved, please try again."


class AnchorFailure(VoteError):
    """
    The ballot IS committed and counts toward the tally, but the blockchain
    transaction could not be confirmed. Anchoring is not retried.
    """

    code = "anchor_failure"
    status = 502
    message = (
        "Your vote was recorded, but it could not be confirmed on the "
        "blockchain. Do not vote again."
    )

    def __init__(self, ballot_id: str, reason: str = "", message: str = None):
        super().__init__(message)
        self.ballot_id = ballot_id
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["ballotId"] = self.ballot_id
        data["voteRecorded"] = True
        return data
