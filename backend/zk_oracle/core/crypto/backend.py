"""
Schnorr–Pedersen Proving Backend — ZK-ORACLE.

Turns a circuit witness into a self-describing, non-interactive proof and
verifies such proofs without any side inputs (the public inputs travel
inside the proof, as with an UltraHonk proof blob).

═══════════════════════════════════════════════════════════════════════════════
PROTOCOLS  (Fiat–Shamir in the Random Oracle Model)
═══════════════════════════════════════════════════════════════════════════════

  answer_existence — knowledge of (a, s) with C = g^a · h^s
      nonces     k_a, k_s ←$ Z_q
      R          = g^k_a · h^k_s
      e          = H(tag ‖ flags ‖ C ‖ R)
      z_a, z_s   = k_a + e·a,  k_s + e·s          (mod q)
      check      g^z_a · h^z_s ≡ R · C^e

  answer_comparison — knowledge of (a₁, s, a₂, r) with
                      C₁ = g^a₁ · h^s,  C₂ = g^a₂ · h^r   (independent s, r)
                      and D = C₁ · C₂⁻¹ = g^δ · h^ρ,  δ = a₁ − a₂,  ρ = s − r
      openings   k₁, k_s, k₂, k_r ←$ Z_q
                 R₁, R₂ = g^k₁ · h^k_s,  g^k₂ · h^k_r
      relation   matches:   knowledge of ρ with D = h^ρ
                            R₃ = h^k,            z = k + e·ρ
                 otherwise: knowledge of (α, β) with g = D^α · h^β,
                            α = δ⁻¹, β = −ρ·δ⁻¹   (exists only when δ ≠ 0)
                            R₃ = D^k_α · h^k_β,  z_α, z_β
      e          = H(tag ‖ matches ‖ C₁ ‖ C₂ ‖ R₁ ‖ R₂ ‖ R₃)
      check      g^z₁ · h^z_s ≡ R₁ · C₁^e
                 g^z₂ · h^z_r ≡ R₂ · C₂^e
                 h^z ≡ R₃ · D^e                 (matches)
                 D^z_α · h^z_β ≡ R₃ · g^e       (no match)

  D lies in ⟨h⟩ with a known exponent only when δ = 0, and g = D^α · h^β is
  solvable only when δ ≠ 0, so a proof claiming the wrong ``matches`` fails
  verification unless the prover knows log_h(g). The user blinding r is
  fresh for every proof, so D reveals nothing about a₁ to anyone who knows a₂.

Wire format (big-endian):
    [1B version] [1B circuit_id] [1B flags]
    [1B n_public]  n_public  × 256B group elements
    [1B n_nonce]   n_nonce   × 256B group elements
    [1B n_resp]    n_resp    × 256B scalars
"""

from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import List, Tuple

from zk_oracle.core.crypto.circuits import (
    ELEMENT_BYTES,
    GROUP_G,
    GROUP_H,
    GROUP_P,
    GROUP_Q,
    AnswerComparisonCircuit,
    AnswerExistenceCircuit,
    Circuit,
    ComparisonWitness,
    ExistenceWitness,
    commitment_digest,
    pedersen_commit,
    random_scalar,
)

logger = logging.getLogger(__name__)

PROOF_VERSION: int = 2
BACKEND_NAME: str = "schnorr-pedersen-rfc3526"

FLAG_MATCHES: int = 0x01


class MalformedProofError(ValueError):
    """Raised when proof bytes cannot be decoded."""


# ═══════════════════════════════════════════════════════════════════════════════
# PROOF MODEL
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Proof:
    """
    Non-interactive proof produced by :class:`SchnorrPedersenBackend`.

    Fields:
        circuit_id:     1 = answer_existence, 2 = answer_comparison
        matches:        Claimed comparison result (always False for existence)
        public_inputs:  Pedersen commitments the proof opens
        nonces:         Schnorr nonce commitments R
        responses:      Schnorr responses z
        version:        Wire format version
    """
    circuit_id: int
    matches: bool
    public_inputs: Tuple[int, ...]
    nonces: Tuple[int, ...]
    responses: Tuple[int, ...]
    version: int = PROOF_VERSION

    def to_bytes(self) -> bytes:
        flags = FLAG_MATCHES if self.matches else 0
        parts = [struct.pack(">BBB", self.version, self.circuit_id, flags)]
        for group in (self.public_inputs, self.nonces, self.responses):
            parts.append(struct.pack(">B", len(group)))
            parts.extend(x.to_bytes(ELEMENT_BYTES, "big") for x in group)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        if len(data) < 3:
            raise MalformedProofError("proof too short")
        version, circuit_id, flags = struct.unpack_from(">BBB", data, 0)
        offset = 3

        groups: List[Tuple[int, ...]] = []
        for _ in range(3):
            if offset >= len(data):
                raise MalformedProofError("truncated proof header")
            count = data[offset]
            offset += 1
            end = offset + count * ELEMENT_BYTES
            if end > len(data):
                raise MalformedProofError("truncated proof body")
            groups.append(tuple(
                int.from_bytes(data[i:i + ELEMENT_BYTES], "big")
                for i in range(offset, end, ELEMENT_BYTES)
            ))
            offset = end

        if offset != len(data):
            raise MalformedProofError("trailing bytes after proof")

        return cls(
            circuit_id=circuit_id,
            matches=bool(flags & FLAG_MATCHES),
            public_inputs=groups[0],
            nonces=groups[1],
            responses=groups[2],
            version=version,
        )

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()

    @classmethod
    def from_hex(cls, value: str) -> "Proof":
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            return cls.from_bytes(bytes.fromhex(text))
        except ValueError as exc:
            raise MalformedProofError(str(exc)) from exc

    @property
    def public_digests(self) -> Tuple[str, ...]:
        """commitment_hash (and user_answer_hash for comparison proofs)."""
        return tuple(commitment_digest(c) for c in self.public_inputs)

    @property
    def size_bytes(self) -> int:
        return len(self.to_bytes())


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSCRIPT
# ═══════════════════════════════════════════════════════════════════════════════

def _challenge(circuit: Circuit, matches: bool, elements: Tuple[int, ...]) -> int:
    """e = H(tag ‖ version ‖ matches ‖ elements…) mod q."""
    h = hashlib.blake2b(digest_size=32)
    h.update(f"zk-oracle/{circuit.name}/v{PROOF_VERSION}".encode("ascii"))
    h.update(struct.pack(">?", matches))
    for element in elements:
        h.update(element.to_bytes(ELEMENT_BYTES, "big"))
    return int.from_bytes(h.digest(), "big") % GROUP_Q


def _in_group(x: int) -> bool:
    return 1 <= x < GROUP_P


def _in_scalar_field(x: int) -> bool:
    return 0 <= x < GROUP_Q


def _ratio(secret_commitment: int, user_commitment: int) -> int:
    """D = C_secret · C_user⁻¹ (mod p)."""
    return (secret_commitment * pow(user_commitment, -1, GROUP_P)) % GROUP_P


def _opening_holds(z_value: int, z_blind: int, nonce: int, commitment: int, e: int) -> bool:
    lhs = pedersen_commit(z_value, z_blind)
    rhs = (nonce * pow(commitment, e, GROUP_P)) % GROUP_P
    return lhs == rhs


# ═══════════════════════════════════════════════════════════════════════════════
# BACKEND
# ═══════════════════════════════════════════════════════════════════════════════

class SchnorrPedersenBackend:
    """
    Proof generation and verification bound to one circuit.

    Usage:
        circuit = AnswerExistenceCircuit()
        backend = SchnorrPedersenBackend(circuit)
        execution = circuit.execute({"answer": encode_text("OMEGA-742"), "salt": 12345})
        proof = backend.generate_proof(execution.witness)
        assert backend.verify_proof(proof)
    """

    name = BACKEND_NAME

    def __init__(self, circuit: Circuit) -> None:
        self.circuit = circuit

    # ── Proving ──

    def generate_proof(self, witness) -> Proof:
        if isinstance(self.circuit, AnswerExistenceCircuit):
            if not isinstance(witness, ExistenceWitness):
                raise TypeError("answer_existence expects an ExistenceWitness")
            return self._prove_existence(witness)
        if isinstance(self.circuit, AnswerComparisonCircuit):
            if not isinstance(witness, ComparisonWitness):
                raise TypeError("answer_comparison expects a ComparisonWitness")
            return self._prove_comparison(witness)
        raise TypeError(f"unsupported circuit: {self.circuit.name}")

    def _prove_existence(self, w: ExistenceWitness) -> Proof:
        k_a = random_scalar()
        k_s = random_scalar()
        nonce = pedersen_commit(k_a, k_s)

        e = _challenge(self.circuit, False, (w.commitment, nonce))
        z_a = (k_a + e * w.answer) % GROUP_Q
        z_s = (k_s + e * w.salt) % GROUP_Q

        return Proof(
            circuit_id=self.circuit.circuit_id,
            matches=False,
            public_inputs=(w.commitment,),
            nonces=(nonce,),
            responses=(z_a, z_s),
        )

    def _prove_comparison(self, w: ComparisonWitness) -> Proof:
        k_1, k_s = random_scalar(), random_scalar()
        k_2, k_r = random_scalar(), random_scalar()
        nonce_1 = pedersen_commit(k_1, k_s)
        nonce_2 = pedersen_commit(k_2, k_r)

        ratio = _ratio(w.secret_commitment, w.user_commitment)
        delta = (w.secret - w.user) % GROUP_Q
        rho = (w.salt - w.user_blinding) % GROUP_Q

        if w.matches:
            k = random_scalar()
            nonce_3 = pow(GROUP_H, k, GROUP_P)
        else:
            # No inverse when the answers are equal; the proof then fails to verify.
            alpha = pow(delta, -1, GROUP_Q) if delta else random_scalar()
            beta = (-rho * alpha) % GROUP_Q
            k_alpha, k_beta = random_scalar(), random_scalar()
            nonce_3 = (pow(ratio, k_alpha, GROUP_P) * pow(GROUP_H, k_beta, GROUP_P)) % GROUP_P

        e = _challenge(
            self.circuit, w.matches,
            (w.secret_commitment, w.user_commitment, nonce_1, nonce_2, nonce_3),
        )
        responses = [
            (k_1 + e * w.secret) % GROUP_Q,
            (k_s + e * w.salt) % GROUP_Q,
            (k_2 + e * w.user) % GROUP_Q,
            (k_r + e * w.user_blinding) % GROUP_Q,
        ]
        if w.matches:
            responses.append((k + e * rho) % GROUP_Q)
        else:
            responses.append((k_alpha + e * alpha) % GROUP_Q)
            responses.append((k_beta + e * beta) % GROUP_Q)

        return Proof(
            circuit_id=self.circuit.circuit_id,
            matches=w.matches,
            public_inputs=(w.secret_commitment, w.user_commitment),
            nonces=(nonce_1, nonce_2, nonce_3),
            responses=tuple(responses),
        )

    # ── Verification ──

    def verify_proof(self, proof) -> bool:
        """
        Verify a proof (``Proof``, raw bytes or 0x-hex) against this circuit.

        Never raises: malformed input of any kind is reported as False.
        """
        try:
            parsed = self._coerce(proof)
            return self._verify(parsed)
        except Exception as exc:
            logger.warning(f"[ZK-BACKEND] {self.circuit.name}: rejecting malformed proof ({exc})")
            return False

    @staticmethod
    def _coerce(proof) -> Proof:
        if isinstance(proof, Proof):
            return proof
        if isinstance(proof, (bytes, bytearray)):
            return Proof.from_bytes(bytes(proof))
        if isinstance(proof, str):
            return Proof.from_hex(proof)
        raise MalformedProofError(f"unsupported proof type {type(proof).__name__}")

    def _verify(self, proof: Proof) -> bool:
        if proof.version != PROOF_VERSION:
            return False
        if proof.circuit_id != self.circuit.circuit_id:
            return False
        if not all(_in_group(x) for x in proof.public_inputs + proof.nonces):
            return False
        if not all(_in_scalar_field(z) for z in proof.responses):
            return False

        if isinstance(self.circuit, AnswerExistenceCircuit):
            return self._verify_existence(proof)
        return self._verify_comparison(proof)

    def _verify_existence(self, proof: Proof) -> bool:
        if (len(proof.public_inputs), len(proof.nonces), len(proof.responses)) != (1, 1, 2):
            return False
        if proof.matches:
            return False
        (commitment,) = proof.public_inputs
        (nonce,) = proof.nonces
        z_a, z_s = proof.responses

        e = _challenge(self.circuit, False, (commitment, nonce))
        return _opening_holds(z_a, z_s, nonce, commitment, e)

    def _verify_comparison(self, proof: Proof) -> bool:
        expected = (2, 3, 5) if proof.matches else (2, 3, 6)
        if (len(proof.public_inputs), len(proof.nonces), len(proof.responses)) != expected:
            return False
        secret_commitment, user_commitment = proof.public_inputs
        nonce_1, nonce_2, nonce_3 = proof.nonces
        z_1, z_s, z_2, z_r = proof.responses[:4]

        e = _challenge(
            self.circuit, proof.matches,
            (secret_commitment, user_commitment, nonce_1, nonce_2, nonce_3),
        )
        if not (
            _opening_holds(z_1, z_s, nonce_1, secret_commitment, e)
            and _opening_holds(z_2, z_r, nonce_2, user_commitment, e)
        ):
            return False

        ratio = _ratio(secret_commitment, user_commitment)
        if proof.matches:
            (z,) = proof.responses[4:]
            lhs = pow(GROUP_H, z, GROUP_P)
            rhs = (nonce_3 * pow(ratio, e, GROUP_P)) % GROUP_P
        else:
            z_alpha, z_beta = proof.responses[4:]
            lhs = (pow(ratio, z_alpha, GROUP_P) * pow(GROUP_H, z_beta, GROUP_P)) % GROUP_P
            rhs = (nonce_3 * pow(GROUP_G, e, GROUP_P)) % GROUP_P
        return lhs == rhs
