import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

from zk_oracle.core.errors import InputError, LedgerError
from zk_oracle.infrastructure.blockchain.contracts import load_abi
from zk_oracle.infrastructure.blockchain.web3_service import (
    ZERO_ADDRESS,
    ZERO_HASH,
    AnchorRequest,
    InMemoryLedgerAnchor,
    ProofAnchorService,
    extract_revert_reason,
    normalize_address,
    proof_digest,
    uuid_to_bytes32,
)

from conftest import CONTEST_ID, WALLET

ORACLE_KEY = "0x" + "11" * 32
REGISTRY = "0x000000000000000000000000000000000000dEaD"

# ═══════════════════════════════════════════════════════════════════════════════
# ENCODING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def test_uuid_to_bytes32_left_pads():
    encoded = uuid_to_bytes32(CONTEST_ID)
    assert encoded == "0x" + "0" * 32 + CONTEST_ID.replace("-", "")
    assert len(encoded) == 66

def test_uuid_to_bytes32_rejects_bad_length():
    with pytest.raises(InputError):
        uuid_to_bytes32("1234")

def test_normalize_address_checksums():
    assert normalize_address(WALLET.lower()) == WALLET

def test_normalize_address_lowercases_bad_checksum():
    bad = "0x5AAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
    assert normalize_address(bad) == bad.lower()

def test_normalize_address_accepts_uppercase():
    assert normalize_address("0x" + WALLET[2:].upper()) == WALLET

def test_normalize_address_rejects_garbage():
    with pytest.raises(InputError):
        normalize_address("0x1234")

def test_proof_digest_is_keccak_hex():
    digest = proof_digest(b"")
    assert digest == "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

def test_commitment_anchor_uses_zero_participant():
    request = AnchorRequest.for_commitment(uuid_to_bytes32(CONTEST_ID), 1, "0x" + "aa" * 32, "0x" + "bb" * 32, None)
    args = request.as_args()
    assert len(args) == 9
    assert args[2] == ZERO_ADDRESS
    assert args[3] == 0
    assert args[6] == ZERO_HASH
    assert args[7] is False
    assert args[8] == ""

def test_abi_exposes_registry_surface():
    names = {entry["name"] for entry in load_abi()}
    assert {"anchorProof", "getAnchor", "ProofAnchored"} <= names
    anchor = next(e for e in load_abi() if e["name"] == "anchorProof")
    assert [i["name"] for i in anchor["inputs"]] == [
        "contestId", "gameId", "player", "attemptId",
        "proofHash", "commitmentHash", "userAnswerHash", "matches", "ipfsCid",
    ]

# ═══════════════════════════════════════════════════════════════════════════════
# REVERT REASONS
# ═══════════════════════════════════════════════════════════════════════════════

def test_revert_reason_preferred():
    exc = ContractLogicError("execution reverted: Anchor already exists")
    assert extract_revert_reason(exc) == "Anchor already exists"

def test_rpc_error_message_used():
    exc = ValueError({"code": -32000, "message": "insufficient funds for gas * price + value"})
    assert extract_revert_reason(exc) == "insufficient funds for gas * price + value"

def test_generic_error_falls_back_to_str():
    assert extract_revert_reason(RuntimeError("connection refused")) == "connection refused"

# ═══════════════════════════════════════════════════════════════════════════════
# PROOF ANCHOR SERVICE (no node: eth calls are stubbed)
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def sleeps():
    return []

@pytest.fixture
def service(sleeps):
    return ProofAnchorService(
        rpc_url="http://127.0.0.1:8545",
        contract_address=REGISTRY,
        private_key=ORACLE_KEY,
        chain_id=11155111,
        receipt_timeout=1,
        confirmation_retries=2,
        retry_backoff=0.5,
        gas_fallback=1_500_000,
        sleep=sleeps.append,
    )

def test_receipt_wait_retries_with_backoff(service, sleeps, monkeypatch):
    outcomes = [TimeExhausted("slow"), TimeExhausted("slow"), {"status": 1, "blockNumber": 7}]

    def wait(tx_hash, timeout):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(service.w3.eth, "wait_for_transaction_receipt", wait)
    receipt = service._wait_for_receipt(b"\x12" * 32)

    assert receipt["blockNumber"] == 7
    assert sleeps == [0.5, 1.0]

def test_receipt_wait_gives_up(service, sleeps, monkeypatch):
    waits = []

    def wait(tx_hash, timeout):
        waits.append(timeout)
        raise TimeExhausted("slow")

    monkeypatch.setattr(service.w3.eth, "wait_for_transaction_receipt", wait)
    with pytest.raises(LedgerError) as info:
        service._wait_for_receipt(b"\x12" * 32)

    assert waits == [1, 1, 1]
    assert sleeps == [0.5, 1.0]
    assert info.value.reason == "confirmation timeout"

class _FakeCall:
    def __init__(self, estimate):
        self._estimate = estimate

    def estimate_gas(self, tx):
        if isinstance(self._estimate, Exception):
            raise self._estimate
        return self._estimate

def test_gas_estimate_gets_buffer(service):
    assert service._estimate_gas(_FakeCall(100_000)) == 120_000

def test_gas_estimate_falls_back_on_transport_error(service):
    assert service._estimate_gas(_FakeCall(ConnectionError("rpc down"))) == 1_500_000

def test_reverting_estimate_aborts_before_sending(service, monkeypatch):
    class Functions:
        def anchorProof(self, *args):
            return _FakeCall(ContractLogicError("execution reverted: Not oracle"))

    class Contract:
        functions = Functions()

    sent = []
    service.contract = Contract()
    monkeypatch.setattr(service.w3.eth, "send_raw_transaction", sent.append)

    request = AnchorRequest.for_commitment(uuid_to_bytes32(CONTEST_ID), 1, "0x" + "aa" * 32, "0x" + "bb" * 32, "")
    with pytest.raises(LedgerError) as info:
        service.anchor_proof(request)

    assert info.value.reason == "Not oracle"
    assert sent == []

def test_oracle_address_derived_from_key(service):
    assert service.oracle_address.startswith("0x")
    assert service.explorer_url("0xabc") == "https://sepolia.etherscan.io/tx/0xabc"

# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY LEDGER
# ═══════════════════════════════════════════════════════════════════════════════

def test_in_memory_ledger_records_anchor():
    ledger = InMemoryLedgerAnchor()
    contest = uuid_to_bytes32(CONTEST_ID)
    request = AnchorRequest(contest, 1, WALLET, 3, "0x" + "aa" * 32, "0x" + "bb" * 32, "0x" + "cc" * 32, True, "bafy1")

    receipt = ledger.anchor_proof(request)
    again = ledger.anchor_proof(request)

    assert receipt.anchor_id == 3
    assert receipt.tx_hash != again.tx_hash
    assert receipt.explorer_url.endswith(receipt.tx_hash)
    anchor = ledger.get_anchor(contest, WALLET, 3)
    assert anchor["matches"] is True
    assert anchor["ipfsCid"] == "bafy1"

def test_in_memory_ledger_missing_anchor():
    with pytest.raises(LedgerError):
        InMemoryLedgerAnchor().get_anchor(uuid_to_bytes32(CONTEST_ID), WALLET, 9)
