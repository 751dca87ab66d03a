"""
Ledger Anchor — records proof digests in the on-chain ProofRegistry.

Every CreateCommitment / VerifyResponse run ends with one ``anchorProof``
transaction:

    anchorProof(contestId, gameId, player, attemptId,
                proofHash, commitmentHash, userAnswerHash, matches, ipfsCid)

Commitment-only anchors use the zero address, attempt index 0 and a zero
user-answer digest.

All methods here are blocking (web3.py HTTP provider). The orchestrator
calls them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import itertools
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from zk_oracle.core.errors import InputError, LedgerError
from zk_oracle.core.logging import short_hash
from zk_oracle.infrastructure.blockchain.contracts import (
    ANCHOR_RECORD_FIELDS,
    load_abi,
)

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_HASH = "0x" + "0" * 64

DEFAULT_EXPLORER_BASE_URL = "https://sepolia.etherscan.io/tx/"

_RAW_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_REVERT_PREFIX = "execution reverted"


# ═══════════════════════════════════════════════════════════════════════════════
# ENCODING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def uuid_to_bytes32(value: Any) -> str:
    """Map a UUID onto a left-padded bytes32 hex string."""
    digits = str(value).replace("-", "").lower()
    if len(digits) != 32 or not all(c in "0123456789abcdef" for c in digits):
        raise InputError(f"Invalid UUID hex length: {len(digits)}")
    return "0x" + digits.rjust(64, "0")


def normalize_address(address: str) -> str:
    """Checksum ``address``; syntactically valid but badly checksummed input is lowercased."""
    if not address or not _RAW_ADDRESS.match(address):
        raise InputError(f"Invalid wallet address: {address!r}")
    digits = address[2:]
    mixed_case = digits != digits.lower() and digits != digits.upper()
    if mixed_case and not Web3.is_checksum_address(address):
        return address.lower()
    return Web3.to_checksum_address(address)


def proof_digest(proof_bytes: bytes) -> str:
    """keccak256 of the serialized proof, as 0x-prefixed hex."""
    return Web3.to_hex(Web3.keccak(proof_bytes))


def extract_revert_reason(exc: BaseException) -> str:
    """Most specific message available: revert reason > RPC error message > str(exc)."""
    if isinstance(exc, ContractLogicError):
        message = exc.message or str(exc)
        if message.startswith(_REVERT_PREFIX):
            message = message[len(_REVERT_PREFIX):].lstrip(": ").strip()
        return message or "execution reverted"

    if exc.args and isinstance(exc.args[0], dict):
        rpc_error = exc.args[0]
        if rpc_error.get("message"):
            return str(rpc_error["message"])

    return str(exc) or exc.__class__.__name__


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnchorRequest:
    """The nine ``anchorProof`` arguments, in contract order."""
    contest_id: str
    game_id: int
    player: str
    attempt_id: int
    proof_hash: str
    commitment_hash: str
    user_answer_hash: str
    matches: bool
    content_id: str

    @classmethod
    def for_commitment(
        cls,
        contest_id: str,
        game_id: int,
        proof_hash: str,
        commitment_hash: str,
        content_id: Optional[str],
    ) -> "AnchorRequest":
        return cls(
            contest_id=contest_id,
            game_id=game_id,
            player=ZERO_ADDRESS,
            attempt_id=0,
            proof_hash=proof_hash,
            commitment_hash=commitment_hash,
            user_answer_hash=ZERO_HASH,
            matches=False,
            content_id=content_id or "",
        )

    def as_args(self) -> Tuple[Any, ...]:
        return (
            self.contest_id,
            self.game_id,
            self.player,
            self.attempt_id,
            self.proof_hash,
            self.commitment_hash,
            self.user_answer_hash,
            self.matches,
            self.content_id,
        )


@dataclass(frozen=True)
class AnchorReceipt:
    tx_hash: str
    anchor_id: int
    block_number: int
    status: str
    explorer_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "explorerUrl": self.explorer_url,
            "anchorId": self.anchor_id,
            "blockNumber": self.block_number,
            "status": self.status,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# ABSTRACT BASE
# ═══════════════════════════════════════════════════════════════════════════════

class BaseLedgerAnchor(ABC):
    """Append-only proof registry."""

    def __init__(self, explorer_base_url: str = DEFAULT_EXPLORER_BASE_URL) -> None:
        self.explorer_base_url = explorer_base_url

    def explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_base_url}{tx_hash}"

    @property
    @abstractmethod
    def oracle_address(self) -> str:
        ...

    @abstractmethod
    def anchor_proof(self, request: AnchorRequest) -> AnchorReceipt:
        """Submit and wait for confirmation; raises LedgerError on any failure."""
        ...

    @abstractmethod
    def get_anchor(self, contest_id: str, player: str, attempt_id: int) -> Dict[str, Any]:
        ...

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def network_info(self) -> Dict[str, Any]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# WEB3 IMPLEMENTATION
# ═══════════════════════════════════════════════════════════════════════════════

class ProofAnchorService(BaseLedgerAnchor):
    """
    ProofRegistry client signing with the oracle's key.

    Confirmation policy: wait ``receipt_timeout`` seconds for the receipt;
    on timeout wait again on the same transaction hash up to
    ``confirmation_retries`` more times, sleeping ``retry_backoff * 2**n``
    between waits. A transaction is never resubmitted. When the waits are
    exhausted a LedgerError is raised and the caller writes nothing, so
    re-running the workflow is safe.
    """

    def __init__(
        self,
        rpc_url: Optional[str],
        contract_address: str,
        private_key: str,
        chain_id: Optional[int] = None,
        explorer_base_url: str = DEFAULT_EXPLORER_BASE_URL,
        receipt_timeout: float = 120.0,
        confirmation_retries: int = 3,
        retry_backoff: float = 2.0,
        gas_fallback: int = 2_000_000,
        w3: Optional[Web3] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(explorer_base_url)
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.confirmation_retries = confirmation_retries
        self.retry_backoff = retry_backoff
        self.gas_fallback = gas_fallback
        self._sleep = sleep

        self.account = self.w3.eth.account.from_key(private_key)
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=load_abi())

        logger.info(
            f"[LEDGER] ProofRegistry at {self.contract_address} "
            f"(signer {self.account.address})"
        )

    @property
    def oracle_address(self) -> str:
        return self.account.address

    # ── Writes ──

    def anchor_proof(self, request: AnchorRequest) -> AnchorReceipt:
        label = "commitment" if request.player == ZERO_ADDRESS else "verification"
        logger.info(
            f"[LEDGER] anchorProof ({label}) contest={short_hash(request.contest_id)} "
            f"attempt={request.attempt_id} proof={short_hash(request.proof_hash)}"
        )
        func = self.contract.functions.anchorProof(*request.as_args())

        gas_limit = self._estimate_gas(func)
        try:
            tx_data = func.build_transaction({
                "chainId": self.chain_id or self.w3.eth.chain_id,
                "gas": gas_limit,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "from": self.account.address,
            })
            signed_tx = self.account.sign_transaction(tx_data)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception as exc:
            reason = extract_revert_reason(exc)
            logger.error(f"[LEDGER] anchorProof submission failed: {reason}")
            raise LedgerError(f"Blockchain transaction failed: {reason}", reason) from exc

        tx_hex = self.w3.to_hex(tx_hash)
        logger.info(f"[LEDGER] anchorProof ({label}) TX sent: {tx_hex}")

        receipt = self._wait_for_receipt(tx_hash)
        if receipt["status"] != 1:
            reason = self._replay_revert_reason(tx_data, receipt["blockNumber"])
            logger.error(f"[LEDGER] anchorProof {tx_hex} reverted: {reason}")
            raise LedgerError(f"Blockchain transaction reverted: {reason}", reason)

        logger.info(
            f"[LEDGER] anchorProof ({label}) confirmed in block {receipt['blockNumber']} "
            f"(gas used {receipt.get('gasUsed')})"
        )
        return AnchorReceipt(
            tx_hash=tx_hex,
            anchor_id=request.attempt_id,
            block_number=receipt["blockNumber"],
            status="success",
            explorer_url=self.explorer_url(tx_hex),
        )

    def _estimate_gas(self, func) -> int:
        try:
            gas_estimate = func.estimate_gas({"from": self.account.address})
        except ContractLogicError as exc:
            # The call itself would revert; sending it only burns gas.
            reason = extract_revert_reason(exc)
            logger.error(f"[LEDGER] Gas estimation reverted: {reason}")
            raise LedgerError(f"Blockchain transaction failed: {reason}", reason) from exc
        except Exception as exc:
            logger.warning(f"[LEDGER] Gas estimation failed, using fallback: {exc}")
            return self.gas_fallback
        return int(gas_estimate * 1.2)  # 20% buffer

    def _wait_for_receipt(self, tx_hash):
        tx_hex = self.w3.to_hex(tx_hash)
        for attempt in range(self.confirmation_retries + 1):
            try:
                return self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout,
                )
            except TimeExhausted as exc:
                if attempt == self.confirmation_retries:
                    waits = self.confirmation_retries + 1
                    raise LedgerError(
                        f"Transaction {tx_hex} not confirmed after {waits} waits "
                        f"of {self.receipt_timeout:g}s",
                        "confirmation timeout",
                    ) from exc
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    f"[LEDGER] {tx_hex} not confirmed within {self.receipt_timeout:g}s; "
                    f"waiting again in {delay:g}s ({attempt + 1}/{self.confirmation_retries})"
                )
                self._sleep(delay)
            except Exception as exc:
                reason = extract_revert_reason(exc)
                raise LedgerError(f"Confirmation of {tx_hex} failed: {reason}", reason) from exc

    def _replay_revert_reason(self, tx_data: Dict[str, Any], block_number: int) -> str:
        call = {k: tx_data[k] for k in ("from", "to", "data", "gas") if k in tx_data}
        try:
            self.w3.eth.call(call, block_identifier=block_number)
        except ContractLogicError as exc:
            return extract_revert_reason(exc)
        except Exception as exc:
            logger.debug(f"[LEDGER] Revert replay failed: {exc}")
        return "Transaction reverted on-chain"

    # ── Reads ──

    def get_anchor(self, contest_id: str, player: str, attempt_id: int) -> Dict[str, Any]:
        try:
            record = self.contract.functions.getAnchor(
                contest_id, normalize_address(player), attempt_id,
            ).call()
        except (ContractLogicError, ValueError) as exc:
            raise LedgerError(f"Failed to read anchor: {extract_revert_reason(exc)}") from exc

        anchor = dict(zip(ANCHOR_RECORD_FIELDS, record))
        for key in ("proofHash", "commitmentHash", "userAnswerHash"):
            anchor[key] = self.w3.to_hex(anchor[key])
        return anchor

    def health_check(self) -> Dict[str, Any]:
        try:
            block_number = self.w3.eth.block_number
            balance = self.w3.eth.get_balance(self.account.address)
        except Exception as exc:
            return {"connected": False, "error": str(exc)}

        if balance == 0:
            logger.critical(f"[LEDGER] Oracle account {self.account.address} has no funds for gas")
        return {
            "connected": True,
            "blockNumber": block_number,
            "oracleBalance": str(Web3.from_wei(balance, "ether")),
            "oracleAddress": self.account.address,
        }

    def network_info(self) -> Dict[str, Any]:
        return {
            "chainId": self.w3.eth.chain_id,
            "blockNumber": self.w3.eth.block_number,
            "oracleAddress": self.account.address,
            "contractAddress": self.contract_address,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY LEDGER (Development / Testing)
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryLedgerAnchor(BaseLedgerAnchor):
    """
    Process-local registry with the same interface as ProofAnchorService.

    Transaction hashes are keccak256 of the encoded arguments plus a
    sequence number, so repeated submissions get distinct hashes.
    """

    def __init__(
        self,
        explorer_base_url: str = DEFAULT_EXPLORER_BASE_URL,
        oracle_address: str = "0x00000000000000000000000000000000000A11CE",
    ) -> None:
        super().__init__(explorer_base_url)
        self._oracle_address = Web3.to_checksum_address(oracle_address)
        self._sequence = itertools.count(1)
        self.block_number = 0
        self.records: Dict[Tuple[str, str, int], Dict[str, Any]] = {}
        self.submissions: list = []
        logger.info("[LEDGER] InMemoryLedgerAnchor initialized (development mode)")

    @property
    def oracle_address(self) -> str:
        return self._oracle_address

    def anchor_proof(self, request: AnchorRequest) -> AnchorReceipt:
        sequence = next(self._sequence)
        payload = json.dumps([sequence, *request.as_args()]).encode("utf-8")
        tx_hash = Web3.to_hex(Web3.keccak(payload))

        self.block_number += 1
        self.submissions.append(request)
        self.records[(request.contest_id, request.player.lower(), request.attempt_id)] = {
            "proofHash": request.proof_hash,
            "commitmentHash": request.commitment_hash,
            "userAnswerHash": request.user_answer_hash,
            "matches": request.matches,
            "ipfsCid": request.content_id,
            "timestamp": int(time.time()),
        }
        logger.info(f"[LEDGER] (memory) anchored {short_hash(tx_hash)} in block {self.block_number}")
        return AnchorReceipt(
            tx_hash=tx_hash,
            anchor_id=request.attempt_id,
            block_number=self.block_number,
            status="success",
            explorer_url=self.explorer_url(tx_hash),
        )

    def get_anchor(self, contest_id: str, player: str, attempt_id: int) -> Dict[str, Any]:
        record = self.records.get((contest_id, player.lower(), attempt_id))
        if record is None:
            raise LedgerError(f"Failed to read anchor: no anchor for attempt {attempt_id}")
        return dict(record)

    def health_check(self) -> Dict[str, Any]:
        return {
            "connected": True,
            "blockNumber": self.block_number,
            "oracleBalance": "0",
            "oracleAddress": self._oracle_address,
        }

    def network_info(self) -> Dict[str, Any]:
        return {
            "chainId": 0,
            "blockNumber": self.block_number,
            "oracleAddress": self._oracle_address,
            "contractAddress": None,
        }


def get_ledger_anchor(settings) -> BaseLedgerAnchor:
    """Factory: web3-backed registry when credentials are configured, in-memory otherwise."""
    if not settings.ledger_configured:
        logger.warning("[LEDGER] RPC_URL / CONTRACT_ADDRESS / ORACLE_PRIVATE_KEY not set — using in-memory ledger")
        return InMemoryLedgerAnchor(settings.EXPLORER_BASE_URL)

    return ProofAnchorService(
        rpc_url=settings.RPC_URL,
        contract_address=settings.CONTRACT_ADDRESS,
        private_key=settings.ORACLE_PRIVATE_KEY,
        chain_id=settings.CHAIN_ID,
        explorer_base_url=settings.EXPLORER_BASE_URL,
        receipt_timeout=settings.LEDGER_RECEIPT_TIMEOUT_SECONDS,
        confirmation_retries=settings.LEDGER_CONFIRMATION_RETRIES,
        retry_backoff=settings.LEDGER_RETRY_BACKOFF_SECONDS,
        gas_fallback=settings.LEDGER_GAS_FALLBACK,
    )
