"""
Verification Orchestrator — sequences proving, archiving and anchoring.

Two workflows:

    CreateCommitment
        Start → ProofGenerated → LocallyVerified → (Archived | ArchiveSkipped)
              → Anchored → Persisted

    VerifyResponse
        Start → Loaded → ProofGenerated → LocallyVerified
              → (Archived | ArchiveSkipped) → Anchored → Persisted → Responded

Failure policy:
    - Input / not-found errors are raised before any side effect.
    - Proof generation and local verification failures abort before any write.
    - Archive failures are soft: the workflow continues without a content id.
    - Ledger and persistence failures propagate. Every write is an upsert
      (commitment) or an idempotent overwrite (attempt), so re-running the
      workflow reconciles a half-finished run.

Concurrency:
    Each workflow holds a per-key claim for its whole run: the commitment key
    is (contestId, gameConfigId), the verification key is attemptId. The claim
    is taken in the record store, so it holds across every oracle process that
    shares the store; an in-process KeyedLock in front of it keeps same-process
    waiters off the store. The "already verified" check and the anchor
    therefore happen under the claim.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from zk_oracle.core.errors import (
    InputError,
    LedgerError,
    LocalVerificationError,
    NotFoundError,
    OracleError,
)
from zk_oracle.core.logging import short_hash
from zk_oracle.infrastructure.blockchain.web3_service import (
    AnchorReceipt,
    AnchorRequest,
    BaseLedgerAnchor,
    DEFAULT_EXPLORER_BASE_URL,
    extract_revert_reason,
    normalize_address,
    proof_digest,
    uuid_to_bytes32,
)
from zk_oracle.infrastructure.db.store import (
    AttemptRecord,
    AttemptVerification,
    CommitmentRecord,
    GameConfigRecord,
    RecordStore,
)
from zk_oracle.infrastructure.storage.archive import (
    ArchiveResult,
    BaseContentArchive,
    safe_upload_json,
)
from zk_oracle.schemas.zk import (
    EXISTENCE_PACKAGE,
    VERIFICATION_PACKAGE,
    AnchorRef,
    ArchiveRef,
    CommitmentResponse,
    PackageMetadata,
    PackagePublicInputs,
    ProofLookupResponse,
    ProofPackage,
    Transparency,
    VerificationProofRefs,
    VerificationResponse,
)
from zk_oracle.services.locks import KeyedLock
from zk_oracle.services.validator import IndependentValidator
from zk_oracle.services.zk_prover import COMPARISON, EXISTENCE, ProofResult, ZKProverService

logger = logging.getLogger(__name__)

CORRECT_MESSAGE = "Your answer is CORRECT! (Cryptographically proven)"
INCORRECT_MESSAGE = "Your answer is INCORRECT (Cryptographically proven)"


class CommitmentState(str, Enum):
    START = "start"
    PROOF_GENERATED = "proof_generated"
    LOCALLY_VERIFIED = "locally_verified"
    ARCHIVED = "archived"
    ARCHIVE_SKIPPED = "archive_skipped"
    ANCHORED = "anchored"
    PERSISTED = "persisted"


class VerificationState(str, Enum):
    START = "start"
    LOADED = "loaded"
    PROOF_GENERATED = "proof_generated"
    LOCALLY_VERIFIED = "locally_verified"
    ARCHIVED = "archived"
    ARCHIVE_SKIPPED = "archive_skipped"
    ANCHORED = "anchored"
    PERSISTED = "persisted"
    RESPONDED = "responded"


def canonical_uuid(value: Any, field_name: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as exc:
        raise InputError(f"{field_name} must be a UUID") from exc


def salt_hint(salt: str) -> str:
    """Public SHA-256 fingerprint of the salt."""
    return hashlib.sha256(salt.encode("utf-8")).hexdigest()


def _archive_ref(archived: Optional[ArchiveResult]) -> Optional[ArchiveRef]:
    if archived is None:
        return None
    return ArchiveRef(cid=archived.cid, url=archived.url, size=archived.size)


class VerificationOrchestrator:
    """
    Runs CreateCommitment / VerifyResponse against injected collaborators.

    Args:
        prover: ZK proof capability.
        archive: Content archive for proof packages (best-effort).
        ledger: On-chain anchor registry (blocking; run in a worker thread).
        store: Commitment / attempt records (blocking; run in a worker thread).
        validator: Optional heuristic validator, reported for transparency only.
    """

    def __init__(
        self,
        prover: ZKProverService,
        archive: BaseContentArchive,
        ledger: BaseLedgerAnchor,
        store: RecordStore,
        validator: Optional[IndependentValidator] = None,
        explorer_base_url: str = DEFAULT_EXPLORER_BASE_URL,
    ) -> None:
        self.prover = prover
        self.archive = archive
        self.ledger = ledger
        self.store = store
        self.validator = validator
        self.explorer_base_url = explorer_base_url
        self._locks = KeyedLock()

    # ─────────────────────────────────────────────────────────────────────────
    # CreateCommitment
    # ─────────────────────────────────────────────────────────────────────────

    async def create_commitment(
        self,
        answer: Optional[str],
        contest_id: Optional[str],
        game_config_id: Optional[str],
        game_id: Optional[int] = None,
        difficulty: Optional[str] = None,
    ) -> CommitmentResponse:
        if not answer or not contest_id or not game_config_id:
            raise InputError("answer, contestId and gameConfigId are required")

        contest_id = canonical_uuid(contest_id, "contestId")
        game_config_id = canonical_uuid(game_config_id, "gameConfigId")
        contest_key = uuid_to_bytes32(contest_id)
        key = f"{contest_id}/{game_config_id}"

        logger.info(
            f"[ORACLE] CreateCommitment {key} (gameId={game_id}, difficulty={difficulty})"
        )
        async with self._claim("commitment", contest_id, game_config_id):
            self._transition("CreateCommitment", key, CommitmentState.START)

            salt = "0x" + secrets.token_hex(32)
            existence = await self.prover.prove_answer_exists(answer, salt)
            self._transition("CreateCommitment", key, CommitmentState.PROOF_GENERATED)

            if not await self.prover.verify_proof(existence.proof, EXISTENCE):
                raise LocalVerificationError("Internal ZK verification failed for existence proof")
            self._transition("CreateCommitment", key, CommitmentState.LOCALLY_VERIFIED)

            package = ProofPackage(
                type=EXISTENCE_PACKAGE,
                contest_id=contest_id,
                proof=existence.proof_hex,
                public_inputs=PackagePublicInputs(commitment_hash=existence.commitment_hash),
                metadata=self._package_metadata(existence),
            )
            archived = await safe_upload_json(
                self.archive,
                "commitment",
                package.to_wire(),
                f"commitment-{contest_id}-gamecfg-{game_config_id}.json",
            )
            self._transition(
                "CreateCommitment", key,
                CommitmentState.ARCHIVED if archived else CommitmentState.ARCHIVE_SKIPPED,
            )

            proof_hash = proof_digest(existence.proof_bytes)
            await asyncio.to_thread(self.store.upsert_commitment, CommitmentRecord(
                contest_id=contest_id,
                game_config_id=game_config_id,
                commitment_hash=existence.commitment_hash,
                answer_plaintext=answer,
                salt_full=salt,
                salt_hint=salt_hint(salt),
                proof_hash=proof_hash,
                archive_cid=archived.cid if archived else None,
                archive_url=archived.url if archived else None,
            ))
            logger.info(f"[ORACLE] CreateCommitment {key} row upserted")

            receipt = await self._anchor(AnchorRequest.for_commitment(
                contest_id=contest_key,
                game_id=game_id or 0,
                proof_hash=proof_hash,
                commitment_hash=existence.commitment_hash,
                content_id=archived.cid if archived else None,
            ))
            self._transition("CreateCommitment", key, CommitmentState.ANCHORED)

            await asyncio.to_thread(
                self.store.set_commitment_anchor, contest_id, game_config_id, receipt.tx_hash,
            )
            self._transition("CreateCommitment", key, CommitmentState.PERSISTED)

        return CommitmentResponse(
            commitment_hash=existence.commitment_hash,
            salt=salt,
            archive=_archive_ref(archived),
            proof_hash=proof_hash,
            anchor=AnchorRef(tx_hash=receipt.tx_hash, explorer_url=receipt.explorer_url),
            proving_time_ms=existence.proving_time_ms,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # VerifyResponse
    # ─────────────────────────────────────────────────────────────────────────

    async def verify_response(
        self,
        attempt_id: Optional[str],
        user_answer: Optional[str] = None,
    ) -> VerificationResponse:
        if not attempt_id:
            raise InputError("attemptId required")
        attempt_id = canonical_uuid(attempt_id, "attemptId")

        async with self._claim("attempt", attempt_id):
            self._transition("VerifyResponse", attempt_id, VerificationState.START)

            attempt = await asyncio.to_thread(self.store.get_attempt, attempt_id)
            if attempt is None:
                raise NotFoundError("Attempt not found")

            if attempt.verified:
                game_config = await self._load_game_config(attempt)
                logger.info(f"[ORACLE] VerifyResponse {attempt_id} already verified; returning stored result")
                return self._stored_response(attempt, game_config)

            participant = await asyncio.to_thread(self.store.get_participant, attempt.participant_id)
            if participant is None:
                raise NotFoundError("Contest participant not found")
            game_config = await self._load_game_config(attempt)
            commitment = await asyncio.to_thread(
                self.store.get_commitment, attempt.contest_id, attempt.game_config_id,
            )
            if commitment is None:
                raise NotFoundError("Commitment not found")
            self._transition("VerifyResponse", attempt_id, VerificationState.LOADED)

            try:
                response = await self._run_verification(
                    attempt, participant.wallet_address, game_config, commitment, user_answer,
                )
            except Exception as exc:
                message = exc.message if isinstance(exc, OracleError) else str(exc)
                logger.error(f"[ORACLE] VerifyResponse {attempt_id} failed: {message}")
                await self._log_outcome(attempt_id, "failed", error_message=message)
                raise

            await self._log_outcome(
                attempt_id, "verified",
                ipfs_hash=response.proof.archive.cid if response.proof.archive else None,
                tx_hash=response.proof.anchor.tx_hash,
            )
            self._transition("VerifyResponse", attempt_id, VerificationState.RESPONDED)
            return response

    async def _run_verification(
        self,
        attempt: AttemptRecord,
        wallet_address: str,
        game_config: GameConfigRecord,
        commitment: CommitmentRecord,
        user_answer: Optional[str],
    ) -> VerificationResponse:
        attempt_id = attempt.id
        player = normalize_address(wallet_address)
        candidate = user_answer if user_answer is not None else (attempt.submitted_answer or "")

        comparison = await self.prover.prove_answer_comparison(
            candidate, commitment.answer_plaintext, commitment.salt_full,
        )
        self._transition("VerifyResponse", attempt_id, VerificationState.PROOF_GENERATED)

        if not await self.prover.verify_proof(comparison.proof, COMPARISON):
            raise LocalVerificationError("Internal ZK verification failed for comparison proof")
        if comparison.commitment_hash != commitment.commitment_hash:
            raise LocalVerificationError("Comparison proof does not open the stored commitment")
        self._transition("VerifyResponse", attempt_id, VerificationState.LOCALLY_VERIFIED)

        matches = bool(comparison.matches)
        if attempt.is_correct is not None and bool(attempt.is_correct) != matches:
            logger.warning(
                f"[ORACLE] Attempt {attempt_id}: game system flag is_correct={attempt.is_correct} "
                f"disagrees with proven result; the proof is authoritative"
            )

        validator_report = None
        if self.validator is not None and attempt.raw_response:
            report = self.validator.assess(game_config.game_id, attempt.raw_response)
            validator_report = report.to_dict() if report else None

        package = ProofPackage(
            type=VERIFICATION_PACKAGE,
            attempt_id=attempt_id,
            contest_id=attempt.contest_id,
            player_wallet=player,
            proof=comparison.proof_hex,
            public_inputs=PackagePublicInputs(
                commitment_hash=comparison.commitment_hash,
                user_answer_hash=comparison.user_answer_hash,
                matches=matches,
            ),
            result=comparison.result,
            metadata=self._package_metadata(comparison),
        )
        package_wire = package.to_wire()
        archived = await safe_upload_json(
            self.archive, "verification", package_wire, f"verification-{attempt_id}.json",
        )
        self._transition(
            "VerifyResponse", attempt_id,
            VerificationState.ARCHIVED if archived else VerificationState.ARCHIVE_SKIPPED,
        )

        proof_hash = proof_digest(comparison.proof_bytes)
        receipt = await self._anchor(AnchorRequest(
            contest_id=uuid_to_bytes32(attempt.contest_id),
            game_id=game_config.game_id,
            player=player,
            attempt_id=attempt.attempt_index,
            proof_hash=proof_hash,
            commitment_hash=comparison.commitment_hash,
            user_answer_hash=comparison.user_answer_hash,
            matches=matches,
            content_id=archived.cid if archived else "",
        ))
        self._transition("VerifyResponse", attempt_id, VerificationState.ANCHORED)

        await asyncio.to_thread(self.store.mark_attempt_verified, attempt_id, AttemptVerification(
            matches=matches,
            commitment_hash=comparison.commitment_hash,
            user_answer_hash=comparison.user_answer_hash,
            proof_hash=proof_hash,
            content_id=archived.cid if archived else None,
            anchor_id=receipt.anchor_id,
            anchor_tx_hash=receipt.tx_hash,
            metadata=package_wire,
        ))
        self._transition("VerifyResponse", attempt_id, VerificationState.PERSISTED)

        return VerificationResponse(
            attempt_id=attempt_id,
            contest_id=attempt.contest_id,
            participant_id=attempt.participant_id,
            game_config_id=attempt.game_config_id,
            game_id=game_config.game_id,
            result=comparison.result,
            proof=VerificationProofRefs(
                archive=_archive_ref(archived),
                proof_hash=proof_hash,
                anchor=AnchorRef(
                    tx_hash=receipt.tx_hash,
                    explorer_url=receipt.explorer_url,
                    anchor_id=receipt.anchor_id,
                ),
            ),
            public_inputs=comparison.public_inputs,
            message=CORRECT_MESSAGE if matches else INCORRECT_MESSAGE,
            proving_time_ms=comparison.proving_time_ms,
            transparency=Transparency(
                user_answer_hash=comparison.user_answer_hash,
                commitment_hash=comparison.commitment_hash,
            ),
            validator=validator_report,
        )

    def _stored_response(self, attempt: AttemptRecord, game_config: GameConfigRecord) -> VerificationResponse:
        """Rebuild the response of an earlier verification from the attempt row."""
        package = attempt.verification_metadata or {}
        matches = bool(attempt.zk_matches)
        cid = attempt.zk_ipfs_cid
        tx_hash = attempt.anchor_tx_hash or ""

        return VerificationResponse(
            attempt_id=attempt.id,
            contest_id=attempt.contest_id,
            participant_id=attempt.participant_id,
            game_config_id=attempt.game_config_id,
            game_id=game_config.game_id,
            result="correct" if matches else "incorrect",
            proof=VerificationProofRefs(
                archive=ArchiveRef(cid=cid, url=self.archive.gateway_url(cid)) if cid else None,
                proof_hash=attempt.zk_proof_hash or "",
                anchor=AnchorRef(
                    tx_hash=tx_hash,
                    explorer_url=f"{self.explorer_base_url}{tx_hash}",
                    anchor_id=attempt.anchor_id,
                ),
            ),
            public_inputs=[
                attempt.zk_commitment_hash or "",
                attempt.zk_user_answer_hash or "",
                "1" if matches else "0",
            ],
            message=CORRECT_MESSAGE if matches else INCORRECT_MESSAGE,
            proving_time_ms=package.get("metadata", {}).get("provingTime", 0),
            transparency=Transparency(
                user_answer_hash=attempt.zk_user_answer_hash,
                commitment_hash=attempt.zk_commitment_hash,
            ),
            cached=True,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # RetrieveProof / status
    # ─────────────────────────────────────────────────────────────────────────

    async def retrieve_proof(self, content_id: Optional[str]) -> ProofLookupResponse:
        if not content_id:
            raise InputError("Content identifier is required")
        package = await self.archive.retrieve_json(content_id)
        return ProofLookupResponse(proof=package, url=self.archive.gateway_url(content_id))

    async def health(self) -> Dict[str, Any]:
        ledger = await asyncio.to_thread(self.ledger.health_check)
        return {
            "status": "ok" if ledger.get("connected") else "degraded",
            "ledger": ledger,
            "archive": {"ready": self.archive.is_ready()},
            "prover": {"backend": self.prover.backend, "version": self.prover.prover_version},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def network_info(self) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self.ledger.network_info)
        except Exception as exc:
            raise LedgerError(f"Network info unavailable: {extract_revert_reason(exc)}") from exc

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _claim(self, *parts: str):
        key = ":".join(parts)
        async with self._locks.hold(key):
            claim = await asyncio.to_thread(self.store.acquire_claim, key)
            try:
                yield
            finally:
                await asyncio.to_thread(self.store.release_claim, claim)

    async def _load_game_config(self, attempt: AttemptRecord) -> GameConfigRecord:
        game_config = await asyncio.to_thread(self.store.get_game_config, attempt.game_config_id)
        if game_config is None:
            raise NotFoundError("Game config not found")
        return game_config

    async def _anchor(self, request: AnchorRequest) -> AnchorReceipt:
        try:
            receipt = await asyncio.to_thread(self.ledger.anchor_proof, request)
        except LedgerError:
            raise
        except Exception as exc:
            reason = extract_revert_reason(exc)
            raise LedgerError(f"Blockchain transaction failed: {reason}", reason) from exc
        logger.info(f"[ORACLE] Anchored {short_hash(request.proof_hash)} in {short_hash(receipt.tx_hash)}")
        return receipt

    async def _log_outcome(self, attempt_id: str, status: str, **details: Optional[str]) -> None:
        try:
            await asyncio.to_thread(self.store.log_verification, attempt_id, status, **details)
        except Exception as exc:
            logger.error(f"[ORACLE] Could not write verification log for {attempt_id}: {exc}")

    def _package_metadata(self, result: ProofResult) -> PackageMetadata:
        return PackageMetadata(
            circuit=result.circuit,
            backend=self.prover.backend,
            prover_version=self.prover.prover_version,
            proving_time=result.proving_time_ms,
        )

    @staticmethod
    def _transition(workflow: str, key: str, state: Enum) -> None:
        logger.info(f"[ORACLE] {workflow} {key} → {state.value}")
