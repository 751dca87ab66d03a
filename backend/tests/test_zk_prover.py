import asyncio

import pytest

from zk_oracle.core.crypto import (
    AnswerComparisonCircuit,
    AnswerExistenceCircuit,
    CircuitInputError,
    MalformedProofError,
    Proof,
    SchnorrPedersenBackend,
    encode_text,
)
from zk_oracle.core.crypto.circuits import GROUP_G, GROUP_P, answer_exponent
from zk_oracle.core.errors import ProofGenerationError
from zk_oracle.services.zk_prover import COMPARISON, EXISTENCE

SALT = "12345"

# ═══════════════════════════════════════════════════════════════════════════════
# EXISTENCE
# ═══════════════════════════════════════════════════════════════════════════════

def test_existence_proof_verifies(prover):
    result = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT))

    assert result.circuit == "answer_existence"
    assert result.public_inputs == [result.commitment_hash]
    assert result.commitment_hash.startswith("0x") and len(result.commitment_hash) == 66
    assert asyncio.run(prover.verify_proof(result.proof, EXISTENCE))

def test_existence_commitment_binds_answer_and_salt(prover):
    base = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT)).commitment_hash
    other_answer = asyncio.run(prover.prove_answer_exists("ALPHA-111", SALT)).commitment_hash
    other_salt = asyncio.run(prover.prove_answer_exists("OMEGA-742", "12346")).commitment_hash
    again = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT)).commitment_hash

    assert base != other_answer
    assert base != other_salt
    assert base == again

def test_existence_accepts_hex_salt(prover):
    result = asyncio.run(prover.prove_answer_exists("OMEGA-742", "0x" + "ab" * 32))
    assert asyncio.run(prover.verify_proof(result.proof_hex, EXISTENCE))

def test_existence_bad_salt_is_generation_error(prover):
    with pytest.raises(ProofGenerationError):
        asyncio.run(prover.prove_answer_exists("OMEGA-742", "not-a-salt"))

# ═══════════════════════════════════════════════════════════════════════════════
# COMPARISON
# ═══════════════════════════════════════════════════════════════════════════════

def test_comparison_incorrect_answer(prover):
    result = asyncio.run(prover.prove_answer_comparison("ALPHA-111", "OMEGA-742", SALT))

    assert result.matches is False
    assert result.result == "incorrect"
    assert result.public_inputs[2] == "0"
    assert asyncio.run(prover.verify_proof(result.proof, COMPARISON))

def test_comparison_correct_answer(prover):
    result = asyncio.run(prover.prove_answer_comparison("OMEGA-742", "OMEGA-742", SALT))

    assert result.matches is True
    assert result.result == "correct"
    # the user commitment carries its own blinding
    assert result.commitment_hash != result.user_answer_hash
    assert result.public_inputs == [result.commitment_hash, result.user_answer_hash, "1"]
    assert asyncio.run(prover.verify_proof(result.proof, COMPARISON))

def test_comparison_commitment_matches_existence(prover):
    existence = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT))
    comparison = asyncio.run(prover.prove_answer_comparison("ALPHA-111", "OMEGA-742", SALT))
    assert comparison.commitment_hash == existence.commitment_hash

@pytest.mark.parametrize("user_answer, secret", [
    ("ALPHA-111", "OMEGA-742"),
    ("OMEGA-742", "OMEGA-742"),
])
def test_wrong_claimed_flag_fails_verification(prover, user_answer, secret):
    truth = user_answer == secret
    forged = asyncio.run(prover.prove_answer_comparison(
        user_answer, secret, SALT, claimed_matches=not truth,
    ))
    assert forged.matches is (not truth)
    assert not asyncio.run(prover.verify_proof(forged.proof, COMPARISON))

def test_comparison_of_truncated_answers_matches(prover):
    # Only the first 8 bytes are compared
    result = asyncio.run(prover.prove_answer_comparison("OMEGA-749", "OMEGA-742", SALT))
    assert result.result == "correct"

def test_missing_user_answer_is_empty_string(prover):
    result = asyncio.run(prover.prove_answer_comparison(None, "OMEGA-742", SALT))
    assert result.result == "incorrect"
    assert asyncio.run(prover.verify_proof(result.proof, COMPARISON))

def test_user_commitment_is_rerandomized(prover):
    first = asyncio.run(prover.prove_answer_comparison("ALPHA-111", "OMEGA-742", SALT))
    second = asyncio.run(prover.prove_answer_comparison("ALPHA-111", "OMEGA-742", SALT))

    assert first.commitment_hash == second.commitment_hash
    assert first.user_answer_hash != second.user_answer_hash

def test_commitment_ratio_does_not_reveal_secret(prover):
    result = asyncio.run(prover.prove_answer_comparison("ALPHA-111", "OMEGA-742", SALT))
    secret_commitment, user_commitment = result.proof.public_inputs
    ratio = (secret_commitment * pow(user_commitment, -1, GROUP_P)) % GROUP_P

    # someone who knows their own wrong answer tries candidate secrets
    known = answer_exponent(encode_text("ALPHA-111"))
    candidates = ["BETA-222", "GAMMA-333", "OMEGA-742", "DELTA-444", "SIGMA-001"]
    recovered = [
        word for word in candidates
        if pow(GROUP_G, answer_exponent(encode_text(word)) - known, GROUP_P) == ratio
    ]
    assert recovered == []

# ═══════════════════════════════════════════════════════════════════════════════
# VERIFIER ROBUSTNESS
# ═══════════════════════════════════════════════════════════════════════════════

def test_malformed_proofs_return_false(prover):
    for junk in (b"", b"\x01\x02", "0xzz", "0x" + "00" * 40, 42, None):
        assert asyncio.run(prover.verify_proof(junk, COMPARISON)) is False
        assert asyncio.run(prover.verify_proof(junk, EXISTENCE)) is False

def test_proof_rejected_by_other_circuit(prover):
    existence = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT))
    assert not asyncio.run(prover.verify_proof(existence.proof, COMPARISON))

def test_unknown_circuit_type_is_false(prover):
    existence = asyncio.run(prover.prove_answer_exists("OMEGA-742", SALT))
    assert asyncio.run(prover.verify_proof(existence.proof, "groth16")) is False

def test_tampered_response_fails():
    circuit = AnswerExistenceCircuit()
    backend = SchnorrPedersenBackend(circuit)
    execution = circuit.execute({"answer": encode_text("OMEGA-742"), "salt": 12345})
    proof = backend.generate_proof(execution.witness)

    z_a, z_s = proof.responses
    tampered = Proof(
        circuit_id=proof.circuit_id,
        matches=proof.matches,
        public_inputs=proof.public_inputs,
        nonces=proof.nonces,
        responses=(z_a + 1, z_s),
    )
    assert backend.verify_proof(proof)
    assert not backend.verify_proof(tampered)

def test_proof_wire_format_is_self_describing():
    circuit = AnswerComparisonCircuit()
    backend = SchnorrPedersenBackend(circuit)
    execution = circuit.execute({
        "matches": False,
        "secret_answer": encode_text("OMEGA-742"),
        "user_answer": encode_text("ALPHA-111"),
        "salt": 12345,
    })
    proof = backend.generate_proof(execution.witness)
    decoded = Proof.from_hex(proof.to_hex())

    assert decoded == proof
    assert decoded.public_digests == execution.return_value
    assert backend.verify_proof(proof.to_bytes())

def test_trailing_bytes_are_malformed():
    circuit = AnswerExistenceCircuit()
    proof = SchnorrPedersenBackend(circuit).generate_proof(
        circuit.execute({"answer": encode_text("x"), "salt": 1}).witness
    )
    with pytest.raises(MalformedProofError):
        Proof.from_bytes(proof.to_bytes() + b"\x00")

def test_comparison_circuit_requires_claim():
    with pytest.raises(CircuitInputError):
        AnswerComparisonCircuit().execute({
            "secret_answer": encode_text("OMEGA-742"),
            "user_answer": encode_text("OMEGA-742"),
            "salt": 1,
        })
