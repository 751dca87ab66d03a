"""
Record Store — commitments, attempts and the verification audit log.

Tables (owned by the upstream game system except where noted):

    game_commitments       one row per (contest_id, game_config_id); upserted here
    attempts               created upstream; verification columns written here
    contest_participants   read-only (wallet address)
    contest_game_configs   read-only (canonical game id)
    verification_logs      append-only audit trail written here

Methods are blocking. Callers on the event loop go through asyncio.to_thread.

A workflow claim (``acquire_claim`` / ``release_claim``) serializes every
oracle process sharing the store on one key. Postgres uses a session-level
advisory lock held on a dedicated pooled connection until release.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from zk_oracle.core.errors import PersistenceError

logger = logging.getLogger(__name__)

R = TypeVar("R")


# ═══════════════════════════════════════════════════════════════════════════════
# RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class CommitmentRecord:
    contest_id: str
    game_config_id: str
    commitment_hash: str
    answer_plaintext: str
    salt_full: str
    salt_hint: str
    proof_hash: str
    archive_cid: Optional[str] = None
    archive_url: Optional[str] = None
    anchor_tx_hash: Optional[str] = None


@dataclass
class ParticipantRecord:
    id: str
    contest_id: str
    wallet_address: str


@dataclass
class GameConfigRecord:
    id: str
    contest_id: str
    game_id: int
    difficulty: Optional[str] = None


@dataclass
class AttemptRecord:
    id: str
    contest_id: str
    participant_id: str
    game_config_id: str
    attempt_index: int
    submitted_answer: Optional[str] = None
    raw_response: Optional[str] = None
    is_correct: Optional[bool] = None
    verified: bool = False
    zk_matches: Optional[bool] = None
    zk_commitment_hash: Optional[str] = None
    zk_user_answer_hash: Optional[str] = None
    zk_proof_hash: Optional[str] = None
    zk_ipfs_cid: Optional[str] = None
    anchor_id: Optional[int] = None
    anchor_tx_hash: Optional[str] = None
    verification_metadata: Optional[Dict[str, Any]] = None
    verified_at: Optional[datetime] = None


@dataclass
class AttemptVerification:
    """Columns written to an attempt once its comparison proof is anchored."""
    matches: bool
    commitment_hash: str
    user_answer_hash: str
    proof_hash: str
    content_id: Optional[str]
    anchor_id: int
    anchor_tx_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VerificationLogEntry:
    attempt_id: str
    status: str
    ipfs_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _from_row(cls: Type[R], row: Optional[Dict[str, Any]]) -> Optional[R]:
    if row is None:
        return None
    names = {f.name for f in dataclasses.fields(cls)}
    values = {k: v for k, v in row.items() if k in names}
    # uuid columns come back as uuid.UUID
    for key in ("id", "contest_id", "participant_id", "game_config_id"):
        if key in values and values[key] is not None:
            values[key] = str(values[key])
    return cls(**values)


# ═══════════════════════════════════════════════════════════════════════════════
# ABSTRACT BASE
# ═══════════════════════════════════════════════════════════════════════════════

class RecordStore(ABC):

    @abstractmethod
    def acquire_claim(self, key: str) -> Any:
        """Block until no other holder has ``key``; returns the token for release_claim."""
        ...

    @abstractmethod
    def release_claim(self, claim: Any) -> None:
        ...

    @abstractmethod
    def get_attempt(self, attempt_id: str) -> Optional[AttemptRecord]:
        ...

    @abstractmethod
    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        ...

    @abstractmethod
    def get_game_config(self, game_config_id: str) -> Optional[GameConfigRecord]:
        ...

    @abstractmethod
    def get_commitment(self, contest_id: str, game_config_id: str) -> Optional[CommitmentRecord]:
        ...

    @abstractmethod
    def upsert_commitment(self, record: CommitmentRecord) -> CommitmentRecord:
        """Insert, or overwrite the row for (contest_id, game_config_id). Never duplicates."""
        ...

    @abstractmethod
    def set_commitment_anchor(self, contest_id: str, game_config_id: str, tx_hash: str) -> None:
        ...

    @abstractmethod
    def mark_attempt_verified(self, attempt_id: str, verification: AttemptVerification) -> AttemptRecord:
        ...

    @abstractmethod
    def log_verification(
        self,
        attempt_id: str,
        status: str,
        ipfs_hash: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        ...

    def close(self) -> None:
        pass


# ═══════════════════════════════════════════════════════════════════════════════
# POSTGRES IMPLEMENTATION
# ═══════════════════════════════════════════════════════════════════════════════

_UPSERT_COMMITMENT = """
    INSERT INTO game_commitments (
        contest_id,
        game_config_id,
        commitment_hash,
        answer_plaintext,
        salt_full,
        salt_hint,
        archive_cid,
        archive_url,
        proof_hash
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (contest_id, game_config_id) DO UPDATE
        SET commitment_hash  = EXCLUDED.commitment_hash,
            answer_plaintext = EXCLUDED.answer_plaintext,
            salt_full        = EXCLUDED.salt_full,
            salt_hint        = EXCLUDED.salt_hint,
            archive_cid      = EXCLUDED.archive_cid,
            archive_url      = EXCLUDED.archive_url,
            proof_hash       = EXCLUDED.proof_hash,
            anchor_tx_hash   = NULL
    RETURNING *
"""

_MARK_ATTEMPT_VERIFIED = """
    UPDATE attempts
    SET
        verified              = TRUE,
        zk_matches            = %s,
        zk_commitment_hash    = %s,
        zk_user_answer_hash   = %s,
        zk_proof_hash         = %s,
        zk_ipfs_cid           = %s,
        anchor_id             = %s,
        anchor_tx_hash        = %s,
        verification_metadata = %s,
        verified_at           = NOW()
    WHERE id = %s
    RETURNING *
"""

_ADVISORY_LOCK = "SELECT pg_advisory_lock(hashtext(%s))"
_ADVISORY_UNLOCK = "SELECT pg_advisory_unlock(hashtext(%s))"


class PostgresRecordStore(RecordStore):
    """psycopg2-backed store over a thread-safe connection pool."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        min_connections: int = 1,
        max_connections: int = 10,
        pool: Optional[ThreadedConnectionPool] = None,
    ) -> None:
        if pool is not None:
            self._pool = pool
            return
        try:
            self._pool = ThreadedConnectionPool(min_connections, max_connections, dsn)
        except psycopg2.Error as exc:
            raise PersistenceError(f"Database connection failed: {exc}") from exc
        logger.info(f"[STORE] Postgres pool ready ({min_connections}-{max_connections} connections)")

    def acquire_claim(self, key: str) -> Tuple[str, Any]:
        conn = self._pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(_ADVISORY_LOCK, (key,))
            conn.commit()
        except psycopg2.Error as exc:
            self._pool.putconn(conn, close=True)
            logger.error(f"[STORE] Could not claim {key}: {exc}")
            raise PersistenceError(f"Could not claim {key}: {exc}") from exc
        return key, conn

    def release_claim(self, claim: Tuple[str, Any]) -> None:
        key, conn = claim
        try:
            with conn.cursor() as cur:
                cur.execute(_ADVISORY_UNLOCK, (key,))
            conn.commit()
        except psycopg2.Error as exc:
            # Closing the session drops its advisory locks.
            logger.error(f"[STORE] Unlock of {key} failed, closing its connection: {exc}")
            self._pool.putconn(conn, close=True)
            return
        self._pool.putconn(conn)

    @contextmanager
    def _cursor(self):
        conn = self._pool.getconn()
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        except psycopg2.Error as exc:
            logger.error(f"[STORE] Query failed: {exc}")
            raise PersistenceError(f"Database error: {exc}") from exc
        finally:
            self._pool.putconn(conn)

    def _fetch_one(self, cls: Type[R], sql: str, params: Tuple[Any, ...]) -> Optional[R]:
        with self._cursor() as cur:
            cur.execute(sql, params)
            return _from_row(cls, cur.fetchone())

    def get_attempt(self, attempt_id: str) -> Optional[AttemptRecord]:
        return self._fetch_one(AttemptRecord, "SELECT * FROM attempts WHERE id = %s", (attempt_id,))

    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        return self._fetch_one(
            ParticipantRecord, "SELECT * FROM contest_participants WHERE id = %s", (participant_id,),
        )

    def get_game_config(self, game_config_id: str) -> Optional[GameConfigRecord]:
        return self._fetch_one(
            GameConfigRecord, "SELECT * FROM contest_game_configs WHERE id = %s", (game_config_id,),
        )

    def get_commitment(self, contest_id: str, game_config_id: str) -> Optional[CommitmentRecord]:
        return self._fetch_one(
            CommitmentRecord,
            "SELECT * FROM game_commitments WHERE contest_id = %s AND game_config_id = %s",
            (contest_id, game_config_id),
        )

    def upsert_commitment(self, record: CommitmentRecord) -> CommitmentRecord:
        stored = self._fetch_one(CommitmentRecord, _UPSERT_COMMITMENT, (
            record.contest_id,
            record.game_config_id,
            record.commitment_hash,
            record.answer_plaintext,
            record.salt_full,
            record.salt_hint,
            record.archive_cid,
            record.archive_url,
            record.proof_hash,
        ))
        logger.info(f"[STORE] Commitment upserted for {record.contest_id}/{record.game_config_id}")
        return stored

    def set_commitment_anchor(self, contest_id: str, game_config_id: str, tx_hash: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE game_commitments SET anchor_tx_hash = %s "
                "WHERE contest_id = %s AND game_config_id = %s",
                (tx_hash, contest_id, game_config_id),
            )

    def mark_attempt_verified(self, attempt_id: str, verification: AttemptVerification) -> AttemptRecord:
        updated = self._fetch_one(AttemptRecord, _MARK_ATTEMPT_VERIFIED, (
            verification.matches,
            verification.commitment_hash,
            verification.user_answer_hash,
            verification.proof_hash,
            verification.content_id,
            verification.anchor_id,
            verification.anchor_tx_hash,
            Json(verification.metadata),
            attempt_id,
        ))
        if updated is None:
            raise PersistenceError(f"Attempt {attempt_id} disappeared before verification was recorded")
        logger.info(f"[STORE] Attempt {attempt_id} marked verified")
        return updated

    def log_verification(
        self,
        attempt_id: str,
        status: str,
        ipfs_hash: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO verification_logs "
                "(attempt_id, verification_status, ipfs_hash, tx_hash, error_message) "
                "VALUES (%s, %s, %s, %s, %s)",
                (attempt_id, status, ipfs_hash, tx_hash, error_message),
            )

    def close(self) -> None:
        self._pool.closeall()


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY IMPLEMENTATION (Development / Testing)
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Reads return copies so callers cannot mutate stored rows."""

    def __init__(self) -> None:
        self.attempts: Dict[str, AttemptRecord] = {}
        self.participants: Dict[str, ParticipantRecord] = {}
        self.game_configs: Dict[str, GameConfigRecord] = {}
        self.commitments: Dict[Tuple[str, str], CommitmentRecord] = {}
        self.verification_logs: List[VerificationLogEntry] = []
        self._claims: Dict[str, threading.Lock] = {}
        self._claim_holders: Dict[str, int] = {}
        self._claims_guard = threading.Lock()

    # ── Seeding ──

    def add_attempt(self, record: AttemptRecord) -> AttemptRecord:
        self.attempts[record.id] = dataclasses.replace(record)
        return record

    def add_participant(self, record: ParticipantRecord) -> ParticipantRecord:
        self.participants[record.id] = dataclasses.replace(record)
        return record

    def add_game_config(self, record: GameConfigRecord) -> GameConfigRecord:
        self.game_configs[record.id] = dataclasses.replace(record)
        return record

    # ── RecordStore ──

    def acquire_claim(self, key: str) -> str:
        with self._claims_guard:
            lock = self._claims.setdefault(key, threading.Lock())
            self._claim_holders[key] = self._claim_holders.get(key, 0) + 1
        lock.acquire()
        return key

    def release_claim(self, claim: str) -> None:
        with self._claims_guard:
            self._claims[claim].release()
            self._claim_holders[claim] -= 1
            if self._claim_holders[claim] == 0:
                del self._claim_holders[claim]
                del self._claims[claim]

    @staticmethod
    def _copy(record):
        return dataclasses.replace(record) if record is not None else None

    def get_attempt(self, attempt_id: str) -> Optional[AttemptRecord]:
        return self._copy(self.attempts.get(attempt_id))

    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        return self._copy(self.participants.get(participant_id))

    def get_game_config(self, game_config_id: str) -> Optional[GameConfigRecord]:
        return self._copy(self.game_configs.get(game_config_id))

    def get_commitment(self, contest_id: str, game_config_id: str) -> Optional[CommitmentRecord]:
        return self._copy(self.commitments.get((contest_id, game_config_id)))

    def upsert_commitment(self, record: CommitmentRecord) -> CommitmentRecord:
        stored = dataclasses.replace(record, anchor_tx_hash=None)
        self.commitments[(record.contest_id, record.game_config_id)] = stored
        return self._copy(stored)

    def set_commitment_anchor(self, contest_id: str, game_config_id: str, tx_hash: str) -> None:
        record = self.commitments.get((contest_id, game_config_id))
        if record is not None:
            record.anchor_tx_hash = tx_hash

    def mark_attempt_verified(self, attempt_id: str, verification: AttemptVerification) -> AttemptRecord:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise PersistenceError(f"Attempt {attempt_id} disappeared before verification was recorded")

        attempt.verified = True
        attempt.zk_matches = verification.matches
        attempt.zk_commitment_hash = verification.commitment_hash
        attempt.zk_user_answer_hash = verification.user_answer_hash
        attempt.zk_proof_hash = verification.proof_hash
        attempt.zk_ipfs_cid = verification.content_id
        attempt.anchor_id = verification.anchor_id
        attempt.anchor_tx_hash = verification.anchor_tx_hash
        attempt.verification_metadata = dict(verification.metadata)
        attempt.verified_at = datetime.now(timezone.utc)
        return self._copy(attempt)

    def log_verification(
        self,
        attempt_id: str,
        status: str,
        ipfs_hash: Optional[str] = None,
        tx_hash: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.verification_logs.append(VerificationLogEntry(
            attempt_id=attempt_id,
            status=status,
            ipfs_hash=ipfs_hash,
            tx_hash=tx_hash,
            error_message=error_message,
        ))


def get_record_store(settings) -> RecordStore:
    """Factory: Postgres when DATABASE_URL is set, in-memory otherwise."""
    if settings.DATABASE_URL:
        return PostgresRecordStore(
            settings.DATABASE_URL,
            min_connections=settings.DB_POOL_MIN,
            max_connections=settings.DB_POOL_MAX,
        )
    logger.warning("[STORE] DATABASE_URL not set — using in-memory record store")
    return InMemoryRecordStore()
