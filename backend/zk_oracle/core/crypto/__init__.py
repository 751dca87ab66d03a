"""
ZK-ORACLE cryptographic core.

Field encoding plus the two answer circuits and their proving backend.

Public API:
    - encode_text / encode_scalar:  UTF-8 answers and salts → BN254 field elements.
    - AnswerExistenceCircuit:       commitment to (answer, salt).
    - AnswerComparisonCircuit:      claimed equality of a user answer vs. the secret.
    - SchnorrPedersenBackend:       generate / verify proofs for either circuit.
"""

from zk_oracle.core.crypto.field import (
    FIELD_MODULUS,
    encode_scalar,
    encode_text,
    vectors_equal,
)
from zk_oracle.core.crypto.circuits import (
    AnswerComparisonCircuit,
    AnswerExistenceCircuit,
    CircuitInputError,
    Execution,
)
from zk_oracle.core.crypto.backend import (
    BACKEND_NAME,
    MalformedProofError,
    Proof,
    SchnorrPedersenBackend,
)

__all__ = [
    "FIELD_MODULUS",
    "encode_scalar",
    "encode_text",
    "vectors_equal",
    "AnswerComparisonCircuit",
    "AnswerExistenceCircuit",
    "CircuitInputError",
    "Execution",
    "BACKEND_NAME",
    "MalformedProofError",
    "Proof",
    "SchnorrPedersenBackend",
]
