from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from llamalev.errors import BandRangeError


def check_band_range(n: int, min_bands: int, max_bands: int) -> None:
    if n < min_bands or n > max_bands:
        raise BandRangeError(n, min_bands, max_bands)


class MarketFamily(str, Enum):
    LEND = "lend"
    MINT = "mint"


class ZapGeneration(str, Enum):
    # V1 hands the aggregator calldata to the zap untouched, V2 prefixes the router.
    V1 = "v1"
    V2 = "v2"


class LoanAction(str, Enum):
    CREATE_LOAN = "create_loan"
    BORROW_MORE = "borrow_more"
    REPAY = "repay"


@dataclass(frozen=True)
class MarketAddresses:
    controller: str
    amm: str
    collateral_token: str
    borrowed_token: str
    leverage_zap: Optional[str] = None


@dataclass(frozen=True)
class MarketConfig:
    id: str
    family: MarketFamily
    addresses: MarketAddresses
    collateral_decimals: int = 18
    borrowed_decimals: int = 18
    min_bands: int = 4
    max_bands: int = 50
    zap_generation: ZapGeneration = ZapGeneration.V2
    leverage_start_id: int = 0
    supports_deleverage: bool = True
    index: Optional[int] = None

    def __post_init__(self) -> None:
        if self.min_bands > self.max_bands:
            raise ValueError("min_bands must not exceed max_bands")

    def check_range(self, n: int) -> None:
        check_band_range(n, self.min_bands, self.max_bands)

    def band_counts(self) -> range:
        return range(self.min_bands, self.max_bands + 1)

    def market_number(self) -> int:
        """Explicit ``index`` or the numeric suffix of ids like ``one-way-market-7``."""
        if self.index is not None:
            return self.index
        return int(self.id.split("-")[-1])

    def has_leverage(self) -> bool:
        if not self.addresses.leverage_zap:
            return False
        if self.family is MarketFamily.MINT:
            return self.supports_deleverage
        return self.market_number() >= self.leverage_start_id


@dataclass(frozen=True)
class MarketParameters:
    amplification: int
    base_price: Decimal
    loan_discount: Decimal
    liquidation_discount: Decimal
    borrowed_decimals: int = 18
    collateral_decimals: int = 18

    def __post_init__(self) -> None:
        # A = 1 collapses the band ratio (A-1)/A to zero.
        if self.amplification < 2:
            raise ValueError(f"amplification must be >= 2, got {self.amplification}")
        if self.base_price <= 0:
            raise ValueError(f"base price must be positive, got {self.base_price}")


@dataclass(frozen=True)
class PositionState:
    """Controller snapshot in raw base units."""

    collateral: int
    borrowed: int
    debt: int
    n: int

    @property
    def has_loan(self) -> bool:
        return self.debt > 0

    @property
    def in_liquidation(self) -> bool:
        return self.borrowed > 0


@dataclass(frozen=True)
class SwapQuote:
    input_token: str
    output_token: str
    input_amount: int
    output_amount: int
    price_impact: Decimal
    route_id: str
    slippage: Decimal
    route_image: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.route_id

    @classmethod
    def empty(
        cls,
        input_token: str,
        output_token: str,
        slippage: Decimal,
    ) -> "SwapQuote":
        return cls(
            input_token=input_token,
            output_token=output_token,
            input_amount=0,
            output_amount=0,
            price_impact=Decimal(0),
            route_id="",
            slippage=slippage,
        )


@dataclass(frozen=True)
class AssembledRoute:
    router: str
    calldata: bytes


@dataclass(frozen=True)
class LeverageEstimate:
    max_debt: Decimal
    max_total_collateral: Decimal
    user_collateral: Decimal
    collateral_from_user_borrowed: Decimal
    collateral_from_debt: Decimal
    max_leverage: Decimal
    avg_price: Decimal

    def decomposition_error(self) -> Decimal:
        return (
            self.max_total_collateral
            - self.user_collateral
            - self.collateral_from_user_borrowed
            - self.collateral_from_debt
        )


@dataclass(frozen=True)
class ExpectedCollateral:
    total_collateral: Decimal
    user_collateral: Decimal
    collateral_from_user_borrowed: Decimal
    collateral_from_debt: Decimal
    leverage: Decimal
    avg_price: Decimal
    future_state_collateral: Decimal


@dataclass(frozen=True)
class RepayExpectation:
    total_borrowed: Decimal
    borrowed_from_state_collateral: Decimal
    borrowed_from_user_collateral: Decimal
    user_borrowed: Decimal
    avg_price: Decimal


@dataclass(frozen=True)
class BandRange:
    n1: int
    n2: int

    def __post_init__(self) -> None:
        if self.n1 > self.n2:
            raise ValueError(f"n1 ({self.n1}) must not exceed n2 ({self.n2})")

    @classmethod
    def from_n1(cls, n1: int, n: int) -> "BandRange":
        return cls(n1=n1, n2=n1 + n - 1)

    @property
    def count(self) -> int:
        return self.n2 - self.n1 + 1


@dataclass(frozen=True)
class RepayBands:
    bands: Optional[BandRange]
    is_available: bool
    is_full_repay: bool


@dataclass(frozen=True)
class LeverageMetrics:
    price_impact: Decimal
    bands: Optional[BandRange]
    prices: Optional[Tuple[Decimal, Decimal]]
    health: Decimal


@dataclass(frozen=True)
class ExecutionRequest:
    """Everything the transaction layer needs, built from one cached quote."""

    action: LoanAction
    market_id: str
    zap: str
    user_collateral: int
    user_borrowed: int
    debt: int
    n: Optional[int]
    slippage: Decimal
    route_payload: bytes
    zap_args: Tuple[int, ...]
    state_collateral: int = 0
    quote: Optional[SwapQuote] = field(default=None, compare=False)
