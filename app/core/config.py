# app/core/config.py
from decimal import Decimal
from typing import Literal, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, Field, field_validator # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "ContextNow"
    SERVICE_TAGLINE: str = "Fresh documentation for AI agents via HTTP 402 micropayments"

    # "production" disables the development bypass proof entirely; unknown names fail at startup
    ENVIRONMENT: Literal["production", "development", "test"] = "production"

    # Payment settings
    X402_WALLET_ADDRESS: Optional[str] = None  # base58 Solana wallet receiving funds
    X402_NETWORK: Literal["solana", "solana-devnet"] = "solana-devnet"
    X402_ASSET_SYMBOL: str = "USDC"
    X402_ASSET_MINT: Optional[str] = None  # defaults to USDC mint for X402_NETWORK
    X402_ASSET_DECIMALS: int = Field(default=6, ge=0, le=18)
    X402_TOLERANCE_PERCENT: int = Field(default=1, ge=0, lt=100)
    X402_DEV_BYPASS_PROOF: str = "valid_proof"

    # Audit trail
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Ledger (Solana JSON-RPC)
    SOLANA_RPC_URL: AnyHttpUrl = "https://api.devnet.solana.com"  # validates that it's a URL
    SOLANA_COMMITMENT: str = "confirmed"
    SOLANA_RPC_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def normalize_environment(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("SOLANA_COMMITMENT")
    @classmethod
    def commitment_must_be_final_enough(cls, value: str) -> str:
        # "processed" transactions can still be rolled back
        if value not in ("confirmed", "finalized"):
            raise ValueError("SOLANA_COMMITMENT must be 'confirmed' or 'finalized'")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def tolerance_percent(self) -> Decimal:
        return Decimal(self.X402_TOLERANCE_PERCENT)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
