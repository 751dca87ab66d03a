"""
Answer Circuits — ZK-ORACLE commitment relations.

Two circuits are exposed with the same shape as a compiled Noir program:
``execute(inputs) → Execution(witness, return_value)``. The witness is handed
to a proving backend (see ``backend.py``); the return value is the list of
public outputs the circuit commits to.

═══════════════════════════════════════════════════════════════════════════════
RELATIONS
═══════════════════════════════════════════════════════════════════════════════

  Encoding:   a = H(encode_text(answer))  ∈ Z_q      (BLAKE2b-256, domain separated)
              s = encode_scalar(salt)      ∈ Z_q

  Commitment: C = g^a · h^s  (mod p)       RFC 3526 2048-bit group
  Digest:     commitment_hash = BLAKE2b-256(C)  → 0x-prefixed bytes32

  answer_existence
      private:  answer[8], salt
      returns:  commitment_hash

  answer_comparison
      private:  secret_answer[8], user_answer[8], salt, user_blinding r
      public:   matches
      returns:  (commitment_hash, user_answer_hash)
      asserts:  (secret_answer == user_answer) == matches

  Both circuits derive commitment_hash from (answer, salt) identically, so the
  digest anchored at commitment time is the one every later comparison proof
  re-derives from the stored secret.

The user commitment C_user = g^a_user · h^r takes a fresh random blinding r,
never the salt. The ratio D = C_secret · C_user⁻¹ = g^(a_secret − a_user) ·
h^(s − r) is therefore uniformly blinded and publishing both commitments
gives no handle for testing candidate secrets offline. The backend proves
``matches`` on D: D is a pure power of h exactly when the answers are equal.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple

from zk_oracle.core.crypto.field import (
    DEFAULT_WIDTH,
    FIELD_MODULUS,
    FieldVector,
    vectors_equal,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# GROUP PARAMETERS — RFC 3526 §3, 2048-bit MODP Group
# ═══════════════════════════════════════════════════════════════════════════════

GROUP_P: int = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)

GROUP_G: int = 2
GROUP_Q: int = (GROUP_P - 1) // 2  # Safe prime ⟹ q is also prime

ELEMENT_BYTES: int = 256


def _derive_second_generator() -> int:
    """
    Nothing-up-my-sleeve second generator: h = H(seed)^2 mod p.

    Squaring projects into the order-q subgroup; nobody knows log_g(h).
    """
    seed = hashlib.blake2b(b"ZK-ORACLE-PEDERSEN-H-v1", digest_size=64).digest()
    t = int.from_bytes(seed, "big") % GROUP_P
    h = pow(t, 2, GROUP_P)
    if h <= 1:
        raise RuntimeError("Degenerate second generator; change the seed string")
    return h


GROUP_H: int = _derive_second_generator()


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def answer_exponent(vector: Sequence[int]) -> int:
    """Hash an encoded answer vector into a non-zero exponent in Z_q."""
    h = hashlib.blake2b(digest_size=32)
    h.update(b"zk-oracle/answer/v1")
    for element in vector:
        h.update(int(element).to_bytes(32, "big"))
    scalar = int.from_bytes(h.digest(), "big") % GROUP_Q
    return scalar if scalar > 0 else 1


def salt_exponent(salt: int) -> int:
    return int(salt) % GROUP_Q


def pedersen_commit(value: int, blinding: int) -> int:
    """C = g^value · h^blinding (mod p)."""
    return (pow(GROUP_G, value, GROUP_P) * pow(GROUP_H, blinding, GROUP_P)) % GROUP_P


def commitment_digest(commitment: int) -> str:
    """0x-prefixed BLAKE2b-256 of a group element — safe to publish, fits bytes32."""
    digest = hashlib.blake2b(commitment.to_bytes(ELEMENT_BYTES, "big"), digest_size=32)
    return "0x" + digest.hexdigest()


def random_scalar() -> int:
    """Sample a uniform random scalar from Z_q \\ {0}."""
    while True:
        r = secrets.randbelow(GROUP_Q)
        if r > 0:
            return r


class CircuitInputError(ValueError):
    """Raised when circuit inputs are missing or outside the field."""


def _field_vector(inputs: Mapping[str, Any], key: str, width: int) -> FieldVector:
    try:
        raw = inputs[key]
    except KeyError:
        raise CircuitInputError(f"missing circuit input '{key}'")
    vector = tuple(int(x) for x in raw)
    if len(vector) != width:
        raise CircuitInputError(f"'{key}' must have {width} slots, got {len(vector)}")
    for x in vector:
        if not 0 <= x < FIELD_MODULUS:
            raise CircuitInputError(f"'{key}' element outside the field")
    return vector


def _field_scalar(inputs: Mapping[str, Any], key: str) -> int:
    try:
        value = int(inputs[key])
    except KeyError:
        raise CircuitInputError(f"missing circuit input '{key}'")
    if not 0 <= value < FIELD_MODULUS:
        raise CircuitInputError(f"'{key}' outside the field")
    return value


def _blinding(inputs: Mapping[str, Any]) -> int:
    """Caller-supplied user blinding, or a fresh one."""
    if inputs.get("user_blinding") is None:
        return random_scalar()
    r = int(inputs["user_blinding"]) % GROUP_Q
    if r == 0:
        raise CircuitInputError("'user_blinding' must be non-zero")
    return r


# ═══════════════════════════════════════════════════════════════════════════════
# WITNESSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExistenceWitness:
    answer: int          # exponent a
    salt: int            # exponent s
    commitment: int      # C = g^a · h^s


@dataclass(frozen=True)
class ComparisonWitness:
    secret: int
    user: int
    salt: int                     # blinding of the secret commitment
    user_blinding: int            # independent blinding of the user commitment
    secret_commitment: int
    user_commitment: int
    matches: bool                 # claimed public input
    constraints_satisfied: bool   # (secret == user) == matches


@dataclass(frozen=True)
class Execution:
    witness: Any
    return_value: Any


# ═══════════════════════════════════════════════════════════════════════════════
# CIRCUITS
# ═══════════════════════════════════════════════════════════════════════════════

class Circuit:
    name: str = ""
    circuit_id: int = 0

    def __init__(self, width: int = DEFAULT_WIDTH) -> None:
        self.width = width

    def execute(self, inputs: Mapping[str, Any]) -> Execution:
        raise NotImplementedError


class AnswerExistenceCircuit(Circuit):
    """Knowledge of (answer, salt) opening a published commitment digest."""
    name = "answer_existence"
    circuit_id = 1

    def execute(self, inputs: Mapping[str, Any]) -> Execution:
        answer = _field_vector(inputs, "answer", self.width)
        salt = _field_scalar(inputs, "salt")

        a = answer_exponent(answer)
        s = salt_exponent(salt)
        commitment = pedersen_commit(a, s)

        witness = ExistenceWitness(answer=a, salt=s, commitment=commitment)
        return Execution(witness=witness, return_value=commitment_digest(commitment))


class AnswerComparisonCircuit(Circuit):
    """Claimed equality/inequality of a user answer against the committed secret."""
    name = "answer_comparison"
    circuit_id = 2

    def execute(self, inputs: Mapping[str, Any]) -> Execution:
        if "matches" not in inputs:
            raise CircuitInputError("missing circuit input 'matches'")
        matches = bool(inputs["matches"])
        secret_answer = _field_vector(inputs, "secret_answer", self.width)
        user_answer = _field_vector(inputs, "user_answer", self.width)
        salt = _field_scalar(inputs, "salt")

        equal = vectors_equal(secret_answer, user_answer)
        satisfied = equal == matches
        if not satisfied:
            logger.warning(
                f"[CIRCUIT] {self.name}: claimed matches={matches} does not hold "
                f"— resulting proof will not verify"
            )

        s = salt_exponent(salt)
        r = _blinding(inputs)
        a_secret = answer_exponent(secret_answer)
        a_user = answer_exponent(user_answer)
        secret_commitment = pedersen_commit(a_secret, s)
        user_commitment = pedersen_commit(a_user, r)

        witness = ComparisonWitness(
            secret=a_secret,
            user=a_user,
            salt=s,
            user_blinding=r,
            secret_commitment=secret_commitment,
            user_commitment=user_commitment,
            matches=matches,
            constraints_satisfied=satisfied,
        )
        return_value: Tuple[str, str] = (
            commitment_digest(secret_commitment),
            commitment_digest(user_commitment),
        )
        return Execution(witness=witness, return_value=return_value)

