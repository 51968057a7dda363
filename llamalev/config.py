import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

DEFAULT_QUOTE_API_URL = "https://prices.curve.finance/odos"


@dataclass(frozen=True)
class EngineConfig:
    """Empirical tunables of the solvers.

    The defaults reproduce the behaviour the markets were calibrated with:
    at most 5 solver rounds, a 0.05% convergence threshold and a 0.2%
    haircut on every max-borrowable read.
    """

    max_iterations: int = 5
    convergence_tolerance: Decimal = Decimal("0.0005")
    safety_numerator: int = 998
    safety_denominator: int = 1000
    quote_max_attempts: int = 10
    quote_backoff_seconds: float = 0.5
    quote_backoff_multiplier: float = 2.0
    quote_timeout_seconds: float = 30.0
    full_repay_buffer: Decimal = Decimal("1.0001")
    price_precision: int = 18
    # Upper bound on the oracle band walk; far beyond any real market.
    max_band_walk: int = 100_000

    def haircut(self, raw: int) -> int:
        return raw * self.safety_numerator // self.safety_denominator


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str]
    quote_api_url: str
    chain_id: int
    http_timeout: float
    log_level: str


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read connection settings from the environment (and ``.env`` if present)."""
    load_dotenv(env_file)
    return Settings(
        rpc_url=os.environ.get("LLAMALEV_RPC_URL") or None,
        quote_api_url=os.environ.get("LLAMALEV_QUOTE_API_URL", DEFAULT_QUOTE_API_URL),
        chain_id=int(os.environ.get("LLAMALEV_CHAIN_ID", "1")),
        http_timeout=float(os.environ.get("LLAMALEV_HTTP_TIMEOUT", "30")),
        log_level=os.environ.get("LLAMALEV_LOG_LEVEL", "WARNING").upper(),
    )
