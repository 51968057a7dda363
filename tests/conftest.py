"""Shared fakes and factories for the llamalev test suite."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from llamalev.bonding_curve import BondingCurveModel
from llamalev.config import EngineConfig
from llamalev.interfaces import AmmReader, ControllerReader, LeverageZapReader, QuoteSource
from llamalev.market import LeverageMarket
from llamalev.models import (
    AssembledRoute,
    MarketAddresses,
    MarketConfig,
    MarketFamily,
    MarketParameters,
    PositionState,
    SwapQuote,
)
from llamalev.units import divide, format_units, parse_units

CONTROLLER = "0x1111111111111111111111111111111111111111"
AMM = "0x2222222222222222222222222222222222222222"
COLLATERAL = "0x3333333333333333333333333333333333333333"
BORROWED = "0x4444444444444444444444444444444444444444"
ZAP = "0x5555555555555555555555555555555555555555"
ROUTER = "0xabababababababababababababababababababab"
USER = "0x6666666666666666666666666666666666666666"

WAD = 10**18


def run(coro):
    return asyncio.run(coro)


def make_params(**overrides) -> MarketParameters:
    params = MarketParameters(
        amplification=100,
        base_price=Decimal(1),
        loan_discount=Decimal(9),
        liquidation_discount=Decimal(6),
    )
    if overrides:
        params = replace(params, **overrides)
    return params


def make_curve(**overrides) -> BondingCurveModel:
    return BondingCurveModel(make_params(**overrides))


def make_addresses(**overrides) -> MarketAddresses:
    addresses = MarketAddresses(
        controller=CONTROLLER,
        amm=AMM,
        collateral_token=COLLATERAL,
        borrowed_token=BORROWED,
        leverage_zap=ZAP,
    )
    if overrides:
        addresses = replace(addresses, **overrides)
    return addresses


def make_market_config(**overrides) -> MarketConfig:
    config = MarketConfig(id="one-way-market-7", family=MarketFamily.LEND, addresses=make_addresses())
    if overrides:
        config = replace(config, **overrides)
    return config


def make_state(collateral="0", borrowed="0", debt="0", n=10) -> PositionState:
    return PositionState(
        collateral=parse_units(collateral),
        borrowed=parse_units(borrowed),
        debt=parse_units(debt),
        n=n,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class CallLog:
    def __init__(self) -> None:
        self.calls: List[Tuple] = []

    def record(self, *call) -> None:
        self.calls.append(call)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeAmm(AmmReader, CallLog):
    def __init__(self, params: MarketParameters, oracle_price: Decimal = Decimal(1)) -> None:
        CallLog.__init__(self)
        self.curve = BondingCurveModel(params)
        self.params = params
        self.price = oracle_price
        self.bands: Dict[str, Tuple[int, int]] = {}

    async def oracle_price(self) -> int:
        self.record("oracle_price")
        return parse_units(self.price)

    async def base_price(self) -> int:
        self.record("base_price")
        return parse_units(self.params.base_price)

    async def amplification(self) -> int:
        self.record("amplification")
        return self.params.amplification

    async def band_edge_prices(self, n2: int, n1: int) -> Tuple[int, int]:
        self.record("band_edge_prices", n2, n1)
        return parse_units(self.curve.tick_price(n2 + 1)), parse_units(self.curve.tick_price(n1))

    async def user_bands(self, user: str) -> Tuple[int, int]:
        self.record("user_bands", user)
        return self.bands.get(user, (0, 0))


class FakeController(ControllerReader, CallLog):
    """LTV-style controller: max debt = collateral * oracle price * k_effective(N)."""

    def __init__(self, params: MarketParameters, oracle_price: Decimal = Decimal(1)) -> None:
        CallLog.__init__(self)
        self.curve = BondingCurveModel(params)
        self.params = params
        self.price = oracle_price
        self.states: Dict[str, PositionState] = {}
        self.health_raw = WAD // 20

    async def user_state(self, user: str) -> PositionState:
        self.record("user_state", user)
        return self.states.get(user, PositionState(0, 0, 0, 0))

    async def max_borrowable(self, collateral: int, n: int, current_debt: int = 0) -> int:
        self.record("max_borrowable", collateral, n, current_debt)
        value = format_units(collateral) * self.price * self.curve.k_effective(n)
        return max(parse_units(value), current_debt)

    async def min_collateral(self, debt: int, n: int) -> int:
        self.record("min_collateral", debt, n)
        return parse_units(divide(format_units(debt), self.price * self.curve.k_effective(n)))

    async def calculate_debt_n1(self, collateral: int, debt: int, n: int) -> int:
        self.record("calculate_debt_n1", collateral, debt, n)
        return debt * 10 // max(collateral, 1) - n

    async def health_calculator(self, user: str, d_collateral: int, d_debt: int, full: bool, n: int) -> int:
        self.record("health_calculator", user, d_collateral, d_debt, full, n)
        return self.health_raw

    async def loan_discount(self) -> int:
        return parse_units(self.params.loan_discount / 100)

    async def liquidation_discount(self) -> int:
        return parse_units(self.params.liquidation_discount / 100)


class FakeZap(LeverageZapReader, CallLog):
    """max_debt = C / (1 / (k_effective * p_base) - 1 / p_avg), optionally capped by liquidity."""

    def __init__(
        self,
        params: MarketParameters,
        oracle_price: Decimal = Decimal(1),
        liquidity_cap: Optional[Decimal] = None,
    ) -> None:
        CallLog.__init__(self)
        self.curve = BondingCurveModel(params)
        self.price = oracle_price
        self.liquidity_cap = liquidity_cap

    async def max_borrowable(
        self, controller: str, user_collateral: int, leverage_collateral: int, n: int, p_avg: int
    ) -> int:
        self.record("max_borrowable", controller, user_collateral, leverage_collateral, n, p_avg)
        k = self.curve.k_effective(n)
        denominator = 1 / (k * self.price) - 1 / format_units(p_avg)
        if denominator <= 0:
            debt = self.liquidity_cap if self.liquidity_cap is not None else Decimal(0)
        else:
            debt = format_units(user_collateral) / denominator
        if self.liquidity_cap is not None:
            debt = min(debt, self.liquidity_cap)
        return parse_units(debt)

    async def max_borrowable_batch(self, controller, user_collateral, leverage_collateral, ns, p_avg):
        self.record("max_borrowable_batch", len(ns))
        return await super().max_borrowable_batch(controller, user_collateral, leverage_collateral, ns, p_avg)


class FakeQuoteSource(QuoteSource, CallLog):
    """Constant-price swaps with linear price impact of ``impact`` per token swapped."""

    def __init__(
        self,
        price: Decimal = Decimal(1),
        impact: Decimal = Decimal(0),
        empty_responses: int = 0,
    ) -> None:
        CallLog.__init__(self)
        self.price = price
        self.impact = impact
        self.empty_responses = empty_responses
        self.routes = 0

    def _output(self, input_token: str, amount: int) -> int:
        size = format_units(amount)
        slip = 1 + self.impact * size
        if input_token == BORROWED:
            return parse_units(size / (self.price * slip))
        return parse_units(size * self.price / slip)

    async def quote(self, input_token, output_token, amount, slippage, blacklist, route_image=False):
        self.record("quote", input_token, amount, slippage)
        if self.empty_responses > 0:
            self.empty_responses -= 1
            return SwapQuote.empty(input_token, output_token, slippage)
        self.routes += 1
        return SwapQuote(
            input_token=input_token,
            output_token=output_token,
            input_amount=amount,
            output_amount=self._output(input_token, amount),
            price_impact=self.impact * format_units(amount) * 100,
            route_id=f"route-{self.routes}",
            slippage=slippage,
            route_image="<svg/>" if route_image else None,
        )

    async def expected(self, input_token, output_token, amount, blacklist):
        self.record("expected", input_token, amount)
        return self._output(input_token, amount)

    async def assemble(self, route_id: str) -> AssembledRoute:
        self.record("assemble", route_id)
        return AssembledRoute(router=ROUTER, calldata=bytes.fromhex("deadbeef"))


async def _no_sleep(delay: float) -> None:
    return None


def make_market(
    params: Optional[MarketParameters] = None,
    config: Optional[MarketConfig] = None,
    oracle_price: Decimal = Decimal(1),
    liquidity_cap: Optional[Decimal] = None,
    quote_source: Optional[FakeQuoteSource] = None,
    engine_config: Optional[EngineConfig] = None,
) -> LeverageMarket:
    params = params or make_params()
    market = LeverageMarket(
        config or make_market_config(),
        FakeController(params, oracle_price),
        FakeAmm(params, oracle_price),
        FakeZap(params, oracle_price, liquidity_cap),
        quote_source or FakeQuoteSource(),
        engine_config,
    )
    market.quotes._sleep = _no_sleep
    return market
