# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from typing import Optional
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "DataBox Gateway"

    # Storage network (Bee-compatible /bytes API)
    STORAGE_API_URL: AnyHttpUrl = "http://localhost:1633"
    STORAGE_POSTAGE_BATCH_ID: Optional[str] = None
    STORAGE_MIN_OBJECT_SIZE: int = 127
    STORAGE_TIMEOUT_SECONDS: int = 60

    # Hex private key; also the source of the at-rest encryption key
    SIGNING_KEY: Optional[str] = None

    # x402 payment settings
    X402_ENABLED: bool = True
    X402_NETWORK: str = "base-sepolia"
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_UPLOAD_PRICE_USD: str = "0.01"
    X402_DOWNLOAD_PRICE_USD: str = "0.01"
    X402_MAX_TIMEOUT_SECONDS: int = 300
    X402_VERIFIER: str = "chain"  # "chain" or "facilitator"
    X402_FACILITATOR_URL: str = "https://x402.org/facilitator"
    X402_RPC_URL: str = "https://sepolia.base.org"
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"
    X402_AUDIT_API_KEY: Optional[str] = None  # enables GET /x402/audit when set
    # Consumed payment hashes; in-memory only when unset
    X402_CONSUMED_TX_PATH: Optional[str] = "logs/x402_consumed_tx.jsonl"

    # Local resource registry; in-memory only when unset
    REGISTRY_PATH: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
