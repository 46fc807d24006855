"""
Ledger Store

Uses SQLite to hold voters, candidates, ballots, per-candidate scores and the
election state singleton. This is the only shared mutable resource in the
application: every write to a voter's has_voted flag and to the score rows
goes through ballot_transaction().
"""

import sqlite3
import threading
from contextlib import contextmanager

import config

DB_PATH = config.DB_PATH

APPLICATION_STATUSES = ("Pending", "Approved", "Rejected")
SCORE_MIN = 1
SCORE_MAX = 10

# Thread-local connection cache
_local = threading.local()


def get_connection() -> sqlite3.Connection:
    if not hasattr(_local, "conn") or _local.conn is None:
        _local.conn = sqlite3.connect(
            str(DB_PATH),
            timeout=config.DB_BUSY_TIMEOUT_SECONDS,
            check_same_thread=False,
        )
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
        _local.conn.execute("PRAGMA foreign_keys=ON")
    return _local.conn


def close_connection():
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None


@contextmanager
def get_db():
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


@contextmanager
def ballot_transaction():
    """
    Open the write transaction a ballot is persisted in.

    BEGIN IMMEDIATE takes SQLite's reserved lock up front, so two submissions
    can never both be inside this block at once. Commits on normal exit and
    rolls back on any exception.
    """
    conn = get_connection()
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise


def init_db():
    """Create tables if they do not exist."""
    with get_db() as conn:
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS users (
                id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                username           TEXT UNIQUE NOT NULL,
                password_hash      TEXT NOT NULL,
                full_name          TEXT,
                address            TEXT,
                mobile_number      TEXT,
                date_of_birth      TEXT,
                id_proof_filename  TEXT,
                face_descriptor    TEXT,
                application_status TEXT NOT NULL DEFAULT 'Pending'
                    CHECK (application_status IN ('Pending', 'Approved', 'Rejected')),
                rejection_reason   TEXT,
                has_voted          INTEGER NOT NULL DEFAULT 0,
                is_admin           INTEGER NOT NULL DEFAULT 0,
                created_at         TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS candidates (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                name          TEXT NOT NULL UNIQUE,
                date_of_birth TEXT,
                party         TEXT,
                image_url     TEXT
            );

            CREATE TABLE IF NOT EXISTS ballots (
                ballot_id     TEXT PRIMARY KEY,
                user_id       INTEGER NOT NULL UNIQUE REFERENCES users(id),
                cast_at       TEXT NOT NULL,
                anchor_status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (anchor_status IN ('pending', 'anchored', 'failed')),
                tx_hash       TEXT,
                anchor_error  TEXT,
                anchored_at   TEXT
            );

            CREATE TABLE IF NOT EXISTS votes (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                ballot_id    TEXT NOT NULL REFERENCES ballots(ballot_id),
                user_id      INTEGER NOT NULL REFERENCES users(id),
                candidate_id INTEGER NOT NULL REFERENCES candidates(id),
                score        INTEGER NOT NULL
                    CHECK (score BETWEEN {SCORE_MIN} AND {SCORE_MAX}),
                timestamp    TEXT NOT NULL,
                UNIQUE (user_id, candidate_id)
            );

            CREATE TABLE IF NOT EXISTS election_state (
                id                INTEGER PRIMARY KEY CHECK (id = 1),
                results_published INTEGER NOT NULL DEFAULT 0
            );

            INSERT OR IGNORE INTO election_state (id, results_published) VALUES (1, 0);
        """)


def _as_dict(row):
    return dict(row) if row is not None else None


# ---------------------------------------------------------------------------
# Voter operations
# ---------------------------------------------------------------------------

def create_user(
    username: str,
    password_hash: str,
    full_name: str = None,
    address: str = None,
    mobile_number: str = None,
    date_of_birth: str = None,
    id_proof_filename: str = None,
    application_status: str = "Pending",
    is_admin: bool = False,
) -> int:
    """Insert a user row. Raises sqlite3.IntegrityError on a duplicate username."""
    with get_db() as conn:
        cur = conn.execute(
            """INSERT INTO users (
                   username, password_hash, full_name, address, mobile_number,
                   date_of_birth, id_proof_filename, application_status, is_admin)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                username, password_hash, full_name, address, mobile_number,
                date_of_birth, id_proof_filename, application_status, int(is_admin),
            ),
        )
        return cur.lastrowid


def get_user(user_id: int) -> dict:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _as_dict(row)


def get_user_by_username(username: str) -> dict:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE username = ?", (username,)
        ).fetchone()
        return _as_dict(row)


def list_users() -> list:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, username, application_status, has_voted, is_admin "
            "FROM users ORDER BY id"
        ).fetchall()
        return [dict(r) for r in rows]


def list_pending_users() -> list:
    with get_db() as conn:
        rows = conn.execute(
            """SELECT id, username, full_name, address, mobile_number,
                      date_of_birth, id_proof_filename,
                      face_descriptor IS NOT NULL AS face_enrolled
               FROM users
               WHERE application_status = 'Pending'
               ORDER BY id"""
        ).fetchall()
        return [dict(r) for r in rows]


def set_application_status(user_id: int, status: str, reason: str = None) -> bool:
    if status not in APPLICATION_STATUSES:
        raise ValueError(f"Unknown application status: {status}")
    with get_db() as conn:
        cur = conn.execute(
            "UPDATE users SET application_status = ?, rejection_reason = ? WHERE id = ?",
            (status, reason, user_id),
        )
        return cur.rowcount == 1


def update_password_hash(user_id: int, password_hash: str) -> bool:
    with get_db() as conn:
        cur = conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id)
        )
        return cur.rowcount == 1


def delete_user(user_id: int) -> bool:
    with get_db() as conn:
        cur = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cur.rowcount == 1


def get_has_voted(user_id: int) -> bool:
    with get_db() as conn:
        row = conn.execute(
            "SELECT has_voted FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return False
        return bool(row["has_voted"])


def get_face_descriptor(user_id: int):
    """Return the stored descriptor JSON, or None if nothing is enrolled."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT face_descriptor FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return row["face_descriptor"] if row is not None else None


def set_face_descriptor(user_id: int, descriptor_json: str) -> bool:
    """Store a descriptor; refused (returns False) once the voter has voted."""
    with get_db() as conn:
        cur = conn.execute(
            "UPDATE users SET face_descriptor = ? WHERE id = ? AND has_voted = 0",
            (descriptor_json, user_id),
        )
        return cur.rowcount == 1


# ---------------------------------------------------------------------------
# Ballot transaction steps (only valid inside ballot_transaction())
# ---------------------------------------------------------------------------

def get_application_status(conn: sqlite3.Connection, user_id: int):
    """Application status read on the caller's connection (None if no such user)."""
    row = conn.execute(
        "SELECT application_status FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    return row["application_status"] if row else None


def set_has_voted(conn: sqlite3.Connection, user_id: int) -> bool:
    """Flip has_voted false -> true. Returns False if it was already true."""
    cur = conn.execute(
        "UPDATE users SET has_voted = 1 WHERE id = ? AND has_voted = 0",
        (user_id,),
    )
    return cur.rowcount == 1


def insert_ballot(conn: sqlite3.Connection, ballot_id: str, user_id: int, cast_at: str):
    conn.execute(
        "INSERT INTO ballots (ballot_id, user_id, cast_at) VALUES (?, ?, ?)",
        (ballot_id, user_id, cast_at),
    )


def insert_score(
    conn: sqlite3.Connection,
    ballot_id: str,
    user_id: int,
    candidate_id: int,
    score: int,
    timestamp: str,
):
    conn.execute(
        """INSERT INTO votes (ballot_id, user_id, candidate_id, score, timestamp)
           VALUES (?, ?, ?, ?, ?)""",
        (ballot_id, user_id, candidate_id, score, timestamp),
    )


# ---------------------------------------------------------------------------
# Ballot bookkeeping
# ---------------------------------------------------------------------------

def mark_ballot_anchored(ballot_id: str, tx_hash: str):
    with get_db() as conn:
        conn.execute(
            """UPDATE ballots
               SET anchor_status = 'anchored', tx_hash = ?, anchor_error = NULL,
                   anchored_at = datetime('now')
               WHERE ballot_id = ?""",
            (tx_hash, ballot_id),
        )


def mark_ballot_anchor_failed(ballot_id: str, error: str):
    with get_db() as conn:
        conn.execute(
            "UPDATE ballots SET anchor_status = 'failed', anchor_error = ? WHERE ballot_id = ?",
            (error, ballot_id),
        )


def get_ballot_for_user(user_id: int) -> dict:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM ballots WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _as_dict(row)


def get_scores_for_user(user_id: int) -> list:
    with get_db() as conn:
        rows = conn.execute(
            """SELECT candidate_id, score, timestamp FROM votes
               WHERE user_id = ? ORDER BY candidate_id""",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]


def list_unanchored_ballots() -> list:
    """Ballots that are committed but carry no confirmed transaction hash."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT b.ballot_id, b.user_id, u.username, b.cast_at,
                      b.anchor_status, b.anchor_error
               FROM ballots b
               JOIN users u ON u.id = b.user_id
               WHERE b.anchor_status != 'anchored'
               ORDER BY b.cast_at"""
        ).fetchall()
        return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Candidate operations
# ---------------------------------------------------------------------------

CANDIDATE_FIELDS = ("name", "date_of_birth", "party", "image_url")


def create_candidate(name: str, date_of_birth: str = None, party: str = None,
                     image_url: str = None) -> int:
    with get_db() as conn:
        cur = conn.execute(
            "INSERT INTO candidates (name, date_of_birth, party, image_url) VALUES (?, ?, ?, ?)",
            (name, date_of_birth, party, image_url),
        )
        return cur.lastrowid


def list_candidates() -> list:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT id, name, date_of_birth, party, image_url FROM candidates ORDER BY id"
        ).fetchall()
        return [dict(r) for r in rows]


def get_candidate(candidate_id: int) -> dict:
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, name, date_of_birth, party, image_url FROM candidates WHERE id = ?",
            (candidate_id,),
        ).fetchone()
        return _as_dict(row)


def get_candidate_by_name(name: str) -> dict:
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, name, date_of_birth, party, image_url FROM candidates WHERE name = ?",
            (name,),
        ).fetchone()
        return _as_dict(row)


def update_candidate(candidate_id: int, fields: dict) -> bool:
    updates = {k: v for k, v in fields.items() if k in CANDIDATE_FIELDS}
    if not updates:
        return False
    assignments = ", ".join(f"{column} = ?" for column in updates)
    with get_db() as conn:
        cur = conn.execute(
            f"UPDATE candidates SET {assignments} WHERE id = ?",
            (*updates.values(), candidate_id),
        )
        return cur.rowcount == 1


def delete_candidate(candidate_id: int) -> bool:
    """Raises sqlite3.IntegrityError if scores already reference the candidate."""
    with get_db() as conn:
        cur = conn.execute("DELETE FROM candidates WHERE id = ?", (candidate_id,))
        return cur.rowcount == 1


def count_candidates() -> int:
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM candidates").fetchone()[0]


# ---------------------------------------------------------------------------
# Election state & results
# ---------------------------------------------------------------------------

def get_results_published() -> bool:
    with get_db() as conn:
        row = conn.execute(
            "SELECT results_published FROM election_state WHERE id = 1"
        ).fetchone()
        return bool(row["results_published"]) if row is not None else False


def set_results_published(published: bool):
    with get_db() as conn:
        conn.execute(
            "UPDATE election_state SET results_published = ? WHERE id = 1",
            (int(published),),
        )


def get_results() -> list:
    """Total score and number of scores per candidate, best first."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT c.id, c.name,
                      COALESCE(SUM(v.score), 0) AS total_score,
                      COUNT(v.id) AS vote_count
               FROM candidates c
               LEFT JOIN votes v ON v.candidate_id = c.id
               GROUP BY c.id
               ORDER BY total_score DESC, c.id"""
        ).fetchall()
        return [dict(r) for r in rows]


def get_stats() -> dict:
    with get_db() as conn:
        voters = conn.execute(
            "SELECT COUNT(*) FROM users WHERE is_admin = 0"
        ).fetchone()[0]
        ballots = conn.execute("SELECT COUNT(*) FROM ballots").fetchone()[0]
        unanchored = conn.execute(
            "SELECT COUNT(*) FROM ballots WHERE anchor_status != 'anchored'"
        ).fetchone()[0]
        return {"voters": voters, "ballots_cast": ballots, "ballots_unanchored": unanchored}
