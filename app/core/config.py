# app/core/config.py
from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Lens402"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Alchemy provider (ledger lookups and transfer history)
    ALCHEMY_API_KEY: str = ""

    # x402 payment requirement
    X402_NETWORK: str = "base-sepolia"
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_TOKEN_CONTRACT: Optional[str] = None  # override, must match X402_NETWORK
    X402_PRICE: Decimal = Decimal("0.01")
    X402_AMOUNT_TOLERANCE: Decimal = Decimal("0.000001")
    X402_MIN_CONFIRMATIONS: int = 1

    # Enables the "demo" proof token. Never set in production.
    X402_DEVELOPMENT_MODE: bool = False

    # Verified-payment cache (unset TTL = entries never expire)
    X402_CACHE_TTL_SECONDS: Optional[int] = None
    X402_CACHE_MAX_ENTRIES: Optional[int] = None

    # Ledger RPC behaviour
    LEDGER_TIMEOUT_SECONDS: float = 10.0
    LEDGER_MAX_RETRIES: int = 2
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.5

    # Audit log
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    CORS_ALLOW_ORIGINS: str = "*"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def cors_origins(self) -> list:
        return [o.strip() for o in self.CORS_ALLOW_ORIGINS.split(",") if o.strip()]

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
