"""
ZK Verification API — commitment creation, response verification, proof lookup.

    POST /zk/create-commitment   commit to a game's secret answer
    POST /zk/verify-response     prove an attempt correct or incorrect
    GET  /zk/proof/{cid}         fetch an archived proof package

Handlers only translate HTTP to orchestrator calls. Errors are OracleError
subclasses rendered by the application's exception handler.
"""

import logging

from fastapi import APIRouter, Depends, Request

from zk_oracle.schemas.zk import (
    CommitmentResponse,
    CreateCommitmentRequest,
    ProofLookupResponse,
    VerificationResponse,
    VerifyResponseRequest,
)
from zk_oracle.services.verification import VerificationOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/zk", tags=["ZK Verification"])


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    return request.app.state.orchestrator


@router.post("/create-commitment", response_model=CommitmentResponse)
async def create_commitment(
    body: CreateCommitmentRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> CommitmentResponse:
    """Generate an existence proof for the secret answer, archive it and anchor it on-chain."""
    logger.info(f"[API] create-commitment contest={body.contest_id} gameConfig={body.game_config_id}")
    return await orchestrator.create_commitment(
        answer=body.answer,
        contest_id=body.contest_id,
        game_config_id=body.game_config_id,
        game_id=body.game_id,
        difficulty=body.difficulty,
    )


@router.post("/verify-response", response_model=VerificationResponse)
async def verify_response(
    body: VerifyResponseRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationResponse:
    """
    Verify any attempt, win or fail.

    ``userAnswer`` is optional and falls back to the attempt's submitted
    answer. An attempt that was already verified returns its stored result.
    """
    logger.info(f"[API] verify-response attempt={body.attempt_id}")
    return await orchestrator.verify_response(body.attempt_id, body.user_answer)


@router.get("/proof/{cid}", response_model=ProofLookupResponse)
async def get_proof(
    cid: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> ProofLookupResponse:
    return await orchestrator.retrieve_proof(cid)
