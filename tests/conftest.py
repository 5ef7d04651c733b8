"""Shared fixtures: deterministic clock, settings without API keys, entities."""
import pytest

from repintel.config import Settings
from repintel.intel.models import EntityKind, ResolvedEntity

ETH_ADDRESS = "0x6982508145454Ce325dDbE47a25d4ec3d2311933"
SOL_ADDRESS = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay: float):
        self.calls.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def settings():
    s = Settings()
    s.ENVIRONMENT = "test"
    s.CACHE_BACKEND = "memory"
    s.REDIS_URL = ""
    s.XAI_API_KEY = ""
    s.PERPLEXITY_API_KEY = ""
    s.ADAPTER_MAX_ATTEMPTS = 3
    s.ADAPTER_BACKOFF_SECONDS = 1.0
    s.ADAPTER_DEADLINE_SECONDS = 5.0
    s.BREAKER_THRESHOLD = 3
    s.BREAKER_RECOVERY_SECONDS = 60
    s.CACHE_TTL_SECONDS = 21600
    s.JOB_RETENTION_SECONDS = 3600
    s.RATE_LIMIT_ENABLED = False
    return s


@pytest.fixture
def ticker_entity():
    return ResolvedEntity(EntityKind.TICKER, "$PEPE", "PEPE")


@pytest.fixture
def eth_entity():
    return ResolvedEntity(EntityKind.CONTRACT, ETH_ADDRESS, ETH_ADDRESS.lower(), chain="ethereum")


@pytest.fixture
def sol_entity():
    return ResolvedEntity(EntityKind.CONTRACT, SOL_ADDRESS, SOL_ADDRESS, chain="solana")
