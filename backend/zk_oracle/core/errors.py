"""
Oracle error taxonomy.

Every failure the proof-and-anchoring pipeline can surface maps to exactly
one class below. The HTTP layer renders any OracleError as
``{"error": message, "code": code}`` with the class status code.

    InputError              400   missing / malformed request fields
    NotFoundError           404   attempt, participant, game config or commitment absent
    ProofGenerationError    500   circuit execution or proving threw
    LocalVerificationError  500   the oracle's own proof failed its own check
    ArchiveError            502   content archive upload / retrieval failed
    LedgerError             502   estimation, submission or confirmation failed
    PersistenceError        500   record store write / read failed
"""

from typing import Optional


class OracleError(Exception):
    """Base class for all pipeline failures."""
    status_code: int = 500
    code: str = "ORACLE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class InputError(OracleError):
    status_code = 400
    code = "INVALID_INPUT"


class NotFoundError(OracleError):
    status_code = 404
    code = "NOT_FOUND"


class ProofGenerationError(OracleError):
    code = "PROOF_GENERATION_FAILED"


class LocalVerificationError(OracleError):
    """Raised when a freshly generated proof does not verify locally."""
    code = "LOCAL_VERIFICATION_FAILED"


class ArchiveError(OracleError):
    status_code = 502
    code = "ARCHIVE_FAILED"


class LedgerError(OracleError):
    """
    Ledger submission or confirmation failed.

    ``reason`` holds the contract revert reason when one could be decoded,
    otherwise the most specific RPC error message available.
    """
    status_code = 502
    code = "LEDGER_FAILED"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason or message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "reason": self.reason}


class PersistenceError(OracleError):
    code = "PERSISTENCE_FAILED"
