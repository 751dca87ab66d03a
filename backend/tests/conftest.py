"""Shared fixtures: in-memory collaborators and a seeded contest."""

import asyncio

import pytest

from zk_oracle.core.errors import ArchiveError, LedgerError
from zk_oracle.infrastructure.blockchain.web3_service import InMemoryLedgerAnchor
from zk_oracle.infrastructure.db.store import (
    AttemptRecord,
    GameConfigRecord,
    InMemoryRecordStore,
    ParticipantRecord,
)
from zk_oracle.infrastructure.storage.archive import BaseContentArchive, InMemoryContentArchive
from zk_oracle.services.validator import IndependentValidator
from zk_oracle.services.verification import VerificationOrchestrator
from zk_oracle.services.zk_prover import ZKProverService

CONTEST_ID = "3f1c1c9e-8a61-4b8e-9b6f-2f6f0d3c4a11"
GAME_CONFIG_ID = "8d2b7a1e-5c3f-4e9a-a1b2-c3d4e5f60718"
PARTICIPANT_ID = "c0ffee00-1234-4abc-8def-0123456789ab"
ATTEMPT_ID = "a77e3b10-0000-4000-8000-000000000001"
WALLET = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
SECRET = "OMEGA-742"
GAME_ID = 1


# ═══════════════════════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════════════════════

class CountingProver(ZKProverService):
    """Real prover that records which proofs were requested."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = []

    async def prove_answer_exists(self, answer, salt):
        self.calls.append("existence")
        return await super().prove_answer_exists(answer, salt)

    async def prove_answer_comparison(self, user_answer, secret_answer, salt, claimed_matches=None):
        self.calls.append("comparison")
        return await super().prove_answer_comparison(user_answer, secret_answer, salt, claimed_matches)


class UnavailableArchive(BaseContentArchive):
    """Archive whose every call fails, as during an IPFS outage."""

    def __init__(self):
        super().__init__("https://{cid}.ipfs.example")
        self.upload_attempts = 0

    async def upload_json(self, data, filename="proof.json"):
        self.upload_attempts += 1
        raise ArchiveError("Upload timeout after 45000ms")

    async def retrieve_json(self, cid):
        raise ArchiveError("Failed to fetch JSON: 504 Gateway Timeout")

    def is_ready(self):
        return False


class RevertingLedger(InMemoryLedgerAnchor):
    """Ledger whose anchorProof always reverts."""

    def __init__(self, reason="Anchor already exists"):
        super().__init__()
        self.reason = reason
        self.attempts = 0

    def anchor_proof(self, request):
        self.attempts += 1
        raise LedgerError(f"Blockchain transaction failed: {self.reason}", self.reason)


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def prover():
    service = CountingProver(max_workers=2)
    yield service
    service.shutdown()


@pytest.fixture
def store():
    return seed_contest(InMemoryRecordStore())


@pytest.fixture
def archive():
    return InMemoryContentArchive()


@pytest.fixture
def ledger():
    return InMemoryLedgerAnchor()


@pytest.fixture
def oracle(prover, archive, ledger, store):
    return VerificationOrchestrator(
        prover=prover,
        archive=archive,
        ledger=ledger,
        store=store,
        validator=IndependentValidator(),
        explorer_base_url="https://sepolia.etherscan.io/tx/",
    )


@pytest.fixture
def committed_oracle(oracle):
    """Orchestrator whose contest already holds a commitment to SECRET."""
    asyncio.run(oracle.create_commitment(SECRET, CONTEST_ID, GAME_CONFIG_ID, game_id=GAME_ID))
    return oracle


def seed_contest(store):
    store.add_participant(ParticipantRecord(id=PARTICIPANT_ID, contest_id=CONTEST_ID, wallet_address=WALLET))
    store.add_game_config(GameConfigRecord(id=GAME_CONFIG_ID, contest_id=CONTEST_ID, game_id=GAME_ID, difficulty="easy"))
    return store


def add_attempt(store, attempt_id=ATTEMPT_ID, submitted_answer="ALPHA-111", attempt_index=1, **extra):
    return store.add_attempt(AttemptRecord(
        id=attempt_id,
        contest_id=CONTEST_ID,
        participant_id=PARTICIPANT_ID,
        game_config_id=GAME_CONFIG_ID,
        attempt_index=attempt_index,
        submitted_answer=submitted_answer,
        **extra,
    ))
