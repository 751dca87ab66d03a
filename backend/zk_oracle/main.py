"""
ZK-ORACLE — API Entry Point.

Verification oracle for answer-based games. A game's secret answer is
committed with a zero-knowledge existence proof; every later attempt is
proven correct or incorrect against that commitment without revealing
either value. Proof packages go to a content-addressed archive and their
digests are anchored in an on-chain registry.

Pipeline (per request):
    1. Field encoding of answer + salt
    2. Proof generation (worker pool) and local verification
    3. Archive upload (best-effort)
    4. Ledger anchor (confirmed, bounded retry)
    5. Record store update

Collaborators are built once in the lifespan and held on ``app.state``.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zk_oracle import __version__
from zk_oracle.api.zk import get_orchestrator, router as zk_router
from zk_oracle.core.config import Settings, get_settings
from zk_oracle.core.errors import OracleError
from zk_oracle.core.logging import configure_logging
from zk_oracle.infrastructure.blockchain.web3_service import get_ledger_anchor
from zk_oracle.infrastructure.db.store import get_record_store
from zk_oracle.infrastructure.storage.archive import get_content_archive
from zk_oracle.services.validator import IndependentValidator
from zk_oracle.services.verification import VerificationOrchestrator
from zk_oracle.services.zk_prover import ZKProverService

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> VerificationOrchestrator:
    """Wire the production collaborators from settings."""
    prover = ZKProverService(width=settings.ANSWER_SLOTS, max_workers=settings.PROVER_WORKERS)
    archive = get_content_archive(
        api_url=settings.ARCHIVE_API_URL,
        api_token=settings.ARCHIVE_API_TOKEN,
        gateway_template=settings.ARCHIVE_GATEWAY_TEMPLATE,
        session_ttl=settings.ARCHIVE_SESSION_TTL_SECONDS,
        step_timeout=settings.ARCHIVE_STEP_TIMEOUT_SECONDS,
    )
    return VerificationOrchestrator(
        prover=prover,
        archive=archive,
        ledger=get_ledger_anchor(settings),
        store=get_record_store(settings),
        validator=IndependentValidator(),
        explorer_base_url=settings.EXPLORER_BASE_URL,
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[VerificationOrchestrator] = None,
) -> FastAPI:
    """
    Build the application.

    Passing ``orchestrator`` skips collaborator wiring (tests inject one
    assembled from in-memory fakes); the caller then owns its shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        owned = orchestrator is None
        app.state.orchestrator = build_orchestrator(settings) if owned else orchestrator
        app.state.boot_time = time.time()
        logger.info(f"[API] {settings.PROJECT_NAME} ready ({settings.ENVIRONMENT})")
        yield
        if owned:
            app.state.orchestrator.prover.shutdown()
            app.state.orchestrator.store.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Zero-knowledge answer verification oracle",
        version=__version__,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )

    # --- CORS Configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error rendering ---
    @app.exception_handler(OracleError)
    async def oracle_error_handler(request: Request, exc: OracleError) -> JSONResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, f"[API] {request.method} {request.url.path} → {exc.status_code} {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
        content = {"error": "Internal server error"}
        if settings.is_development:
            content["detail"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    app.include_router(zk_router, prefix=settings.API_PREFIX)

    # ═══════════════════════════════════════════════════════════════════════════
    # SYSTEM ENDPOINTS
    # ═══════════════════════════════════════════════════════════════════════════

    @app.get("/", tags=["System"])
    def root() -> dict:
        """Root endpoint — confirms the API process is alive."""
        return {
            "service": settings.PROJECT_NAME,
            "version": __version__,
            "status": "operational",
            "endpoints": [
                f"POST {settings.API_PREFIX}/zk/create-commitment",
                f"POST {settings.API_PREFIX}/zk/verify-response",
                f"GET {settings.API_PREFIX}/zk/proof/{{cid}}",
                f"GET {settings.API_PREFIX}/health",
                f"GET {settings.API_PREFIX}/network-info",
            ],
        }

    @app.get(f"{settings.API_PREFIX}/health", tags=["System"])
    async def health_check(request: Request) -> dict:
        """Ledger connectivity, archive session state and uptime."""
        report = await get_orchestrator(request).health()
        report["uptime_seconds"] = round(time.time() - request.app.state.boot_time, 2)
        return report

    @app.get(f"{settings.API_PREFIX}/network-info", tags=["System"])
    async def network_info(request: Request) -> dict:
        info = await get_orchestrator(request).network_info()
        info["timestamp"] = datetime.now(timezone.utc).isoformat()
        return info

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("zk_oracle.main:app", host="0.0.0.0", port=get_settings().PORT, reload=True)
