"""
Reputation Intel — Configuration

All settings load from environment variables with safe defaults for development.
In production, set RI_ENV=production to enforce required values.
"""
import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


DEFAULT_SOURCE_PRIORITY = "onchain_security,market_data,web_research,ai_social"


def _csv(value: str) -> List[str]:
    return [v.strip().lower() for v in value.split(",") if v.strip()]


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("RI_ENV", "development")

        # === Cache ===
        self.REDIS_URL = os.getenv("REDIS_URL", "")
        self.CACHE_BACKEND = os.getenv("CACHE_BACKEND", "redis" if self.REDIS_URL else "memory")
        self.CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "21600"))  # 6 hours

        if self.is_production and not self.REDIS_URL:
            raise RuntimeError("REDIS_URL must be set in production. Add it to .env")

        # === AI social intelligence (xAI) ===
        self.XAI_API_KEY = os.getenv("XAI_API_KEY", "")
        self.XAI_BASE_URL = os.getenv("XAI_BASE_URL", "https://api.x.ai/v1")
        self.XAI_MODEL = os.getenv("XAI_MODEL", "grok-4-1-fast")

        # === Web research (Perplexity) ===
        self.PERPLEXITY_API_KEY = os.getenv("PERPLEXITY_API_KEY", "")
        self.PERPLEXITY_BASE_URL = os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")
        self.PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar")

        # === On-chain security / market data (keyless public APIs) ===
        self.RUGCHECK_BASE_URL = os.getenv("RUGCHECK_BASE_URL", "https://api.rugcheck.xyz/v1")
        self.GOPLUS_BASE_URL = os.getenv("GOPLUS_BASE_URL", "https://api.gopluslabs.io/api/v1")
        self.DEXSCREENER_BASE_URL = os.getenv("DEXSCREENER_BASE_URL", "https://api.dexscreener.com")

        # === Adapter retry policy ===
        self.ADAPTER_TIMEOUT_SECONDS = float(os.getenv("ADAPTER_TIMEOUT_SECONDS", "45"))
        self.ADAPTER_MAX_ATTEMPTS = int(os.getenv("ADAPTER_MAX_ATTEMPTS", "3"))
        self.ADAPTER_BACKOFF_SECONDS = float(os.getenv("ADAPTER_BACKOFF_SECONDS", "1.0"))
        # Whole fetch() including retries
        self.ADAPTER_DEADLINE_SECONDS = float(os.getenv("ADAPTER_DEADLINE_SECONDS", "150"))
        self.BREAKER_THRESHOLD = int(os.getenv("BREAKER_THRESHOLD", "3"))
        self.BREAKER_RECOVERY_SECONDS = int(os.getenv("BREAKER_RECOVERY_SECONDS", "60"))

        # === Reconciliation & scoring ===
        self.SOURCE_PRIORITY = _csv(os.getenv("SOURCE_PRIORITY", DEFAULT_SOURCE_PRIORITY))
        self.NUMERIC_TOLERANCE = float(os.getenv("NUMERIC_TOLERANCE", "0.05"))
        self.CONFIDENCE_LOW_SAMPLE = int(os.getenv("CONFIDENCE_LOW_SAMPLE", "100"))
        self.CONFIDENCE_HIGH_SAMPLE = int(os.getenv("CONFIDENCE_HIGH_SAMPLE", "500"))

        # === Jobs ===
        self.JOB_RETENTION_SECONDS = int(os.getenv("JOB_RETENTION_SECONDS", "3600"))

        # === Rate Limits ===
        self.RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
        self.RATE_LIMIT_SCAN_PER_MINUTE = int(os.getenv("RATE_LIMIT_SCAN_PER_MINUTE", "10"))
        self.RATE_LIMIT_TARGET_PER_MINUTE = int(os.getenv("RATE_LIMIT_TARGET_PER_MINUTE", "3"))

        # === Application ===
        self.RI_HOST = os.getenv("RI_HOST", "0.0.0.0")
        self.RI_PORT = int(os.getenv("RI_PORT", "8000"))
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8080").split(",")
            if o.strip()
        ]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
