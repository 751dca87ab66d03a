"""
ZK Prover Service — async facade over the answer circuits.

Wraps circuit execution + proof generation + verification behind the
capability the orchestrator consumes:

    prover = ZKProverService()
    existence = await prover.prove_answer_exists("OMEGA-742", salt)
    assert await prover.verify_proof(existence.proof, "existence")

Proving is CPU-bound (2048-bit modular exponentiation). It runs on a
dedicated executor so request-serving coroutines are never blocked on it.
Pass a ``ProcessPoolExecutor`` for true parallelism across cores.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional

from zk_oracle.core.crypto.backend import BACKEND_NAME, Proof, SchnorrPedersenBackend
from zk_oracle.core.crypto.circuits import (
    AnswerComparisonCircuit,
    AnswerExistenceCircuit,
    Circuit,
)
from zk_oracle.core.crypto.field import (
    DEFAULT_WIDTH,
    encode_scalar,
    encode_text,
    vectors_equal,
)
from zk_oracle.core.errors import ProofGenerationError
from zk_oracle.core.logging import short_hash

logger = logging.getLogger(__name__)

PROVER_VERSION = "1.0.0"

EXISTENCE = "existence"
COMPARISON = "comparison"


@dataclass
class ProofResult:
    """Output of one proving run."""
    circuit: str
    proof: Proof
    commitment_hash: str
    public_inputs: List[str]
    proving_time_ms: int
    user_answer_hash: Optional[str] = None
    matches: Optional[bool] = None

    @property
    def proof_hex(self) -> str:
        return self.proof.to_hex()

    @property
    def proof_bytes(self) -> bytes:
        return self.proof.to_bytes()

    @property
    def result(self) -> Optional[str]:
        if self.matches is None:
            return None
        return "correct" if self.matches else "incorrect"


class ZKProverService:
    """
    Proof capability for the two answer circuits.

    Args:
        width: Number of field slots an answer is spread across.
        max_workers: Size of the default proving thread pool.
        executor: Optional executor override (e.g. a process pool).
    """

    def __init__(
        self,
        width: int = DEFAULT_WIDTH,
        max_workers: int = 2,
        executor: Optional[Executor] = None,
    ) -> None:
        self.width = width
        self._circuits: Dict[str, Circuit] = {
            EXISTENCE: AnswerExistenceCircuit(width),
            COMPARISON: AnswerComparisonCircuit(width),
        }
        self._backends: Dict[str, SchnorrPedersenBackend] = {
            kind: SchnorrPedersenBackend(circuit)
            for kind, circuit in self._circuits.items()
        }
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="zk-prover",
        )
        logger.info(
            f"[ZK-PROVER] Circuits ready: "
            f"{', '.join(c.name for c in self._circuits.values())} (backend={BACKEND_NAME})"
        )

    @property
    def backend(self) -> str:
        return BACKEND_NAME

    @property
    def prover_version(self) -> str:
        return PROVER_VERSION

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ── Proving ──

    async def prove_answer_exists(self, answer: str, salt: str) -> ProofResult:
        """Existence proof for (answer, salt); public output is the commitment digest."""
        logger.info("[ZK-PROVER] Generating answer existence proof...")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                self._executor, self._prove_exists_sync, answer, salt,
            )
        except Exception as exc:
            logger.error(f"[ZK-PROVER] Existence proof generation failed: {exc}")
            raise ProofGenerationError(f"Existence proof generation failed: {exc}") from exc

        logger.info(
            f"[ZK-PROVER] Existence proof generated in {result.proving_time_ms}ms "
            f"(commitment={short_hash(result.commitment_hash)})"
        )
        return result

    async def prove_answer_comparison(
        self,
        user_answer: Optional[str],
        secret_answer: str,
        salt: str,
        claimed_matches: Optional[bool] = None,
    ) -> ProofResult:
        """
        Comparison proof of ``user_answer`` against the committed secret.

        The claimed flag defaults to the off-circuit equality of the encoded
        answers. Passing ``claimed_matches`` explicitly overrides it; a wrong
        claim yields a proof that fails :meth:`verify_proof`.
        """
        logger.info("[ZK-PROVER] Generating answer comparison proof...")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                self._executor, self._prove_comparison_sync,
                user_answer or "", secret_answer, salt, claimed_matches,
            )
        except Exception as exc:
            logger.error(f"[ZK-PROVER] Comparison proof generation failed: {exc}")
            raise ProofGenerationError(f"Comparison proof generation failed: {exc}") from exc

        logger.info(
            f"[ZK-PROVER] Comparison proof generated in {result.proving_time_ms}ms "
            f"({'MATCH' if result.matches else 'NO MATCH'})"
        )
        return result

    def _prove_exists_sync(self, answer: str, salt: str) -> ProofResult:
        start = time.perf_counter()
        circuit = self._circuits[EXISTENCE]
        execution = circuit.execute({
            "answer": encode_text(answer, self.width),
            "salt": encode_scalar(salt),
        })
        proof = self._backends[EXISTENCE].generate_proof(execution.witness)
        commitment_hash = execution.return_value

        return ProofResult(
            circuit=circuit.name,
            proof=proof,
            commitment_hash=commitment_hash,
            public_inputs=[commitment_hash],
            proving_time_ms=int((time.perf_counter() - start) * 1000),
        )

    def _prove_comparison_sync(
        self,
        user_answer: str,
        secret_answer: str,
        salt: str,
        claimed_matches: Optional[bool],
    ) -> ProofResult:
        start = time.perf_counter()
        circuit = self._circuits[COMPARISON]
        user_fields = encode_text(user_answer, self.width)
        secret_fields = encode_text(secret_answer, self.width)

        # Advisory only: decides which flag to assert. The proof enforces it.
        matches = vectors_equal(user_fields, secret_fields)
        if claimed_matches is not None:
            matches = bool(claimed_matches)

        execution = circuit.execute({
            "matches": matches,
            "secret_answer": secret_fields,
            "salt": encode_scalar(salt),
            "user_answer": user_fields,
        })
        proof = self._backends[COMPARISON].generate_proof(execution.witness)
        commitment_hash, user_answer_hash = execution.return_value

        return ProofResult(
            circuit=circuit.name,
            proof=proof,
            commitment_hash=commitment_hash,
            user_answer_hash=user_answer_hash,
            public_inputs=[commitment_hash, user_answer_hash, "1" if matches else "0"],
            matches=matches,
            proving_time_ms=int((time.perf_counter() - start) * 1000),
        )

    # ── Verification ──

    async def verify_proof(self, proof, circuit_type: str = COMPARISON) -> bool:
        """Verify against the named circuit. Returns False, never raises."""
        backend = self._backends.get(circuit_type)
        if backend is None:
            logger.error(f"[ZK-PROVER] Unknown circuit type '{circuit_type}'")
            return False

        loop = asyncio.get_running_loop()
        try:
            is_valid = await loop.run_in_executor(self._executor, backend.verify_proof, proof)
        except Exception as exc:
            logger.error(f"[ZK-PROVER] Verification failed: {exc}")
            return False

        logger.info(f"[ZK-PROVER] {backend.circuit.name} proof {'valid' if is_valid else 'INVALID'}")
        return is_valid
