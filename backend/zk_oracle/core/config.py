from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "ZK-ORACLE"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Deployment
    PORT: int = 3001
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Postgres Connection
    DATABASE_URL: Optional[str] = None
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10

    # Web3 / ProofRegistry Contract
    RPC_URL: Optional[str] = None
    CHAIN_ID: int = 11155111
    CONTRACT_ADDRESS: str = ""
    ORACLE_PRIVATE_KEY: str = ""
    EXPLORER_BASE_URL: str = "https://sepolia.etherscan.io/tx/"
    LEDGER_RECEIPT_TIMEOUT_SECONDS: float = 120.0
    LEDGER_CONFIRMATION_RETRIES: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 2.0
    LEDGER_GAS_FALLBACK: int = 2_000_000

    # Content archive (IPFS HTTP API)
    ARCHIVE_API_URL: Optional[str] = None
    ARCHIVE_API_TOKEN: Optional[str] = None
    ARCHIVE_GATEWAY_TEMPLATE: str = "https://{cid}.ipfs.w3s.link"
    ARCHIVE_SESSION_TTL_SECONDS: float = 15 * 60
    ARCHIVE_STEP_TIMEOUT_SECONDS: float = 45.0

    # Prover
    PROVER_WORKERS: int = 2
    ANSWER_SLOTS: int = 8

    class Config:
        case_sensitive = True
        env_file = ".env"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def ledger_configured(self) -> bool:
        return bool(self.RPC_URL and self.CONTRACT_ADDRESS and self.ORACLE_PRIVATE_KEY)


@lru_cache
def get_settings() -> Settings:
    return Settings()
