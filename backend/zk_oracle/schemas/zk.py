"""
Wire models for the oracle's JSON surface.

Field names are snake_case in Python and camelCase on the wire; every
model accepts either on input and serializes with aliases.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

PACKAGE_VERSION = "1.0"
EXISTENCE_PACKAGE = "answer_existence"
VERIFICATION_PACKAGE = "answer_verification"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ═══════════════════════════════════════════════════════════════════════════════
# PROOF PACKAGE (persisted in the content archive; shape must stay stable)
# ═══════════════════════════════════════════════════════════════════════════════

class PackagePublicInputs(WireModel):
    commitment_hash: str = Field(..., alias="commitmentHash")
    user_answer_hash: Optional[str] = Field(default=None, alias="userAnswerHash")
    matches: Optional[bool] = None


class PackageMetadata(WireModel):
    circuit: str
    backend: str
    prover_version: str = Field(..., alias="proverVersion")
    timestamp: str = Field(default_factory=iso_timestamp)
    proving_time: int = Field(..., ge=0, alias="provingTime", description="Proving duration in ms")


class ProofPackage(WireModel):
    """Immutable envelope for one proof. A new verification always produces a new package."""
    version: str = PACKAGE_VERSION
    type: Literal["answer_existence", "answer_verification"]
    contest_id: Optional[str] = Field(default=None, alias="contestId")
    attempt_id: Optional[str] = Field(default=None, alias="attemptId")
    player_wallet: Optional[str] = Field(default=None, alias="playerWallet")
    proof: str = Field(..., description="Hex-encoded proof bytes")
    public_inputs: PackagePublicInputs = Field(..., alias="publicInputs")
    result: Optional[Literal["correct", "incorrect"]] = None
    metadata: PackageMetadata

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ═══════════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═══════════════════════════════════════════════════════════════════════════════

# Required fields are Optional here: presence is checked by the orchestrator
# so a missing field is a 400 InputError rather than a 422.

class CreateCommitmentRequest(WireModel):
    answer: Optional[str] = None
    contest_id: Optional[str] = Field(default=None, alias="contestId")
    game_config_id: Optional[str] = Field(default=None, alias="gameConfigId")
    game_id: Optional[int] = Field(default=None, ge=0, alias="gameId")
    difficulty: Optional[str] = None


class VerifyResponseRequest(WireModel):
    attempt_id: Optional[str] = Field(default=None, alias="attemptId")
    user_answer: Optional[str] = Field(default=None, alias="userAnswer")


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSES
# ═══════════════════════════════════════════════════════════════════════════════

class ArchiveRef(WireModel):
    cid: Optional[str] = None
    url: Optional[str] = None
    size: Optional[int] = None


class AnchorRef(WireModel):
    tx_hash: str = Field(..., alias="txHash")
    explorer_url: str = Field(..., alias="explorerUrl")
    anchor_id: Optional[int] = Field(default=None, alias="anchorId")


class CommitmentResponse(WireModel):
    commitment_hash: str = Field(..., alias="commitmentHash")
    salt: str
    archive: Optional[ArchiveRef] = None
    proof_hash: str = Field(..., alias="proofHash")
    anchor: AnchorRef
    proving_time_ms: int = Field(..., alias="provingTimeMs")


class VerificationProofRefs(WireModel):
    archive: Optional[ArchiveRef] = None
    proof_hash: str = Field(..., alias="proofHash")
    anchor: AnchorRef


class Transparency(WireModel):
    user_answer_hash: Optional[str] = Field(default=None, alias="userAnswerHash")
    commitment_hash: Optional[str] = Field(default=None, alias="commitmentHash")
    note: str = "Full ZK proof stored in the content archive (IPFS-compatible)"


class VerificationResponse(WireModel):
    verified: bool = True
    attempt_id: str = Field(..., alias="attemptId")
    contest_id: str = Field(..., alias="contestId")
    participant_id: str = Field(..., alias="participantId")
    game_config_id: str = Field(..., alias="gameConfigId")
    game_id: int = Field(..., alias="gameId")
    result: Literal["correct", "incorrect"]
    proof: VerificationProofRefs
    public_inputs: List[str] = Field(..., alias="publicInputs")
    message: str
    proving_time_ms: int = Field(..., alias="provingTimeMs")
    transparency: Transparency
    validator: Optional[dict] = None
    cached: bool = Field(default=False, description="True when an earlier verification was returned")


class ProofLookupResponse(WireModel):
    success: bool = True
    proof: dict
    url: str
