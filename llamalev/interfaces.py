"""Read and quote capabilities the engine is built on.

Each market is wired with one implementation of every interface; tests use
in-memory fakes, production uses ``llamalev.adapters``. All amounts are raw
integers in token base units, prices are raw 18-decimal integers.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Sequence, Tuple

from llamalev.models import AssembledRoute, PositionState, SwapQuote


class ControllerReader(ABC):
    """View functions of a market controller."""

    @abstractmethod
    async def user_state(self, user: str) -> PositionState:
        ...

    @abstractmethod
    async def max_borrowable(self, collateral: int, n: int, current_debt: int = 0) -> int:
        ...

    @abstractmethod
    async def min_collateral(self, debt: int, n: int) -> int:
        ...

    @abstractmethod
    async def calculate_debt_n1(self, collateral: int, debt: int, n: int) -> int:
        ...

    @abstractmethod
    async def health_calculator(
        self, user: str, d_collateral: int, d_debt: int, full: bool, n: int
    ) -> int:
        """Projected health as an 18-decimal fraction."""

    @abstractmethod
    async def loan_discount(self) -> int:
        ...

    @abstractmethod
    async def liquidation_discount(self) -> int:
        ...

    async def max_borrowable_batch(
        self, collateral: int, ns: Sequence[int], current_debt: int = 0
    ) -> List[int]:
        return list(
            await asyncio.gather(*(self.max_borrowable(collateral, n, current_debt) for n in ns))
        )

    async def calculate_debt_n1_batch(
        self, collateral: int, debt: int, ns: Sequence[int]
    ) -> List[int]:
        return list(
            await asyncio.gather(*(self.calculate_debt_n1(collateral, debt, n) for n in ns))
        )


class AmmReader(ABC):
    @abstractmethod
    async def oracle_price(self) -> int:
        ...

    @abstractmethod
    async def base_price(self) -> int:
        ...

    @abstractmethod
    async def amplification(self) -> int:
        ...

    @abstractmethod
    async def band_edge_prices(self, n2: int, n1: int) -> Tuple[int, int]:
        """``(p_oracle_down(n2), p_oracle_up(n1))``."""

    @abstractmethod
    async def user_bands(self, user: str) -> Tuple[int, int]:
        """``(n1, n2)`` currently occupied by ``user``."""


class LeverageZapReader(ABC):
    """``max_borrowable`` view of the leverage zap contract."""

    @abstractmethod
    async def max_borrowable(
        self,
        controller: str,
        user_collateral: int,
        leverage_collateral: int,
        n: int,
        p_avg: int,
    ) -> int:
        ...

    async def max_borrowable_batch(
        self,
        controller: str,
        user_collateral: int,
        leverage_collateral: Sequence[int],
        ns: Sequence[int],
        p_avg: int,
    ) -> List[int]:
        return list(
            await asyncio.gather(
                *(
                    self.max_borrowable(controller, user_collateral, lev, n, p_avg)
                    for lev, n in zip(leverage_collateral, ns)
                )
            )
        )


class QuoteSource(ABC):
    """Swap aggregator: priced routes for an exact input amount."""

    default_slippage = Decimal("0.5")

    @abstractmethod
    async def quote(
        self,
        input_token: str,
        output_token: str,
        amount: int,
        slippage: Decimal,
        blacklist: str,
        route_image: bool = False,
    ) -> SwapQuote:
        """May return a quote with an empty ``route_id`` while the aggregator warms up."""

    @abstractmethod
    async def assemble(self, route_id: str) -> AssembledRoute:
        ...

    async def expected(
        self, input_token: str, output_token: str, amount: int, blacklist: str
    ) -> int:
        """Output amount only; used by the sizing loop where no route is kept."""
        quote = await self.quote(
            input_token, output_token, amount, self.default_slippage, blacklist
        )
        return quote.output_amount
