"""Leverage sizing, band and health previews for LLAMMA lending markets."""

from llamalev.bands import BandSolver
from llamalev.bonding_curve import BondingCurveModel
from llamalev.config import EngineConfig, Settings, load_settings
from llamalev.errors import (
    BandRangeError,
    LeverageUnavailableError,
    LiquidationModeError,
    LlamalevError,
    LoanNotFoundError,
    MissingQuoteError,
    QuoteApiError,
    QuoteTimeoutError,
    RpcError,
    SlippageMismatchError,
)
from llamalev.health import HealthEstimator
from llamalev.loan import LoanCalculator
from llamalev.market import LeverageMarket
from llamalev.models import (
    BandRange,
    ExecutionRequest,
    ExpectedCollateral,
    LeverageEstimate,
    LeverageMetrics,
    MarketAddresses,
    MarketConfig,
    MarketFamily,
    MarketParameters,
    PositionState,
    RepayBands,
    RepayExpectation,
    SwapQuote,
    ZapGeneration,
)
from llamalev.quotes import SwapQuoteCache
from llamalev.sizer import LeverageSizer

__all__ = [
    "BandRange",
    "BandRangeError",
    "BandSolver",
    "BondingCurveModel",
    "EngineConfig",
    "ExecutionRequest",
    "ExpectedCollateral",
    "HealthEstimator",
    "LeverageEstimate",
    "LeverageMarket",
    "LeverageMetrics",
    "LeverageSizer",
    "LeverageUnavailableError",
    "LiquidationModeError",
    "LlamalevError",
    "LoanCalculator",
    "LoanNotFoundError",
    "MarketAddresses",
    "MarketConfig",
    "MarketFamily",
    "MarketParameters",
    "MissingQuoteError",
    "PositionState",
    "QuoteApiError",
    "QuoteTimeoutError",
    "RepayBands",
    "RepayExpectation",
    "RpcError",
    "Settings",
    "SlippageMismatchError",
    "SwapQuote",
    "SwapQuoteCache",
    "ZapGeneration",
    "load_settings",
]
