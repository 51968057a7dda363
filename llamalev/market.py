"""Leveraged loan previews and execution requests for one market and zap.

Typical flow:

1. ``create_loan_max_recv`` / ``create_loan_max_recv_all_ranges`` to size the loan;
2. ``create_loan_expected_collateral`` to fetch and cache the swap quote;
3. ``create_loan_expected_metrics`` (or bands / prices / health) from that quote;
4. ``prepare_create_loan`` with the same amounts and slippage.

Steps 3 and 4 never fetch a new quote: they read the one cached in step 2
for the exact amount being swapped.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

from eth_abi import encode

from llamalev.bonding_curve import BondingCurveModel
from llamalev.config import ZERO_ADDRESS, EngineConfig
from llamalev.errors import LeverageUnavailableError, LiquidationModeError, LoanNotFoundError
from llamalev.interfaces import AmmReader, ControllerReader, LeverageZapReader, QuoteSource
from llamalev.loan import LoanCalculator
from llamalev.models import (
    AssembledRoute,
    BandRange,
    ExecutionRequest,
    ExpectedCollateral,
    LeverageEstimate,
    LeverageMetrics,
    LoanAction,
    MarketConfig,
    PositionState,
    RepayBands,
    RepayExpectation,
    SwapQuote,
    ZapGeneration,
)
from llamalev.quotes import SwapQuoteCache
from llamalev.sizer import BorrowedSplit, CollateralSplit, LeverageSizer, split_borrowed, split_collateral
from llamalev.units import Amount, parse_units, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE = Decimal("0.1")


class LeverageMarket:
    def __init__(
        self,
        market: MarketConfig,
        controller: ControllerReader,
        amm: AmmReader,
        zap: Optional[LeverageZapReader],
        quote_source: QuoteSource,
        config: EngineConfig | None = None,
    ) -> None:
        self.market = market
        self.config = config or EngineConfig()
        self.loan = LoanCalculator(market, controller, amm, self.config)
        self.quotes = SwapQuoteCache(quote_source, market.addresses.amm, self.config)
        self.sizer = LeverageSizer(market, controller, amm, zap, self.quotes, self.config)
        self.band_solver = self.loan.band_solver
        self.health_estimator = self.loan.health_estimator
        self.controller = controller

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def has_leverage(self) -> bool:
        return self.market.has_leverage()

    def check(self) -> None:
        if not self.has_leverage():
            raise LeverageUnavailableError(self.market.id)

    async def curve(self) -> BondingCurveModel:
        return await self.loan.curve()

    async def max_leverage(self, n: int) -> Decimal:
        self.check()
        self.market.check_range(n)
        return (await self.curve()).max_leverage(n)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _collateral(self, amount: Amount) -> int:
        return parse_units(amount, self.market.collateral_decimals)

    def _borrowed(self, amount: Amount) -> int:
        return parse_units(amount, self.market.borrowed_decimals)

    def _buy_quote(self, user_borrowed: int, debt: int) -> SwapQuote:
        return self.quotes.get(self.market.addresses.borrowed_token, debt + user_borrowed)

    def _split(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, state_collateral: int = 0
    ) -> CollateralSplit:
        user_borrowed_raw = self._borrowed(user_borrowed)
        debt_raw = self._borrowed(debt)
        return split_collateral(
            self._collateral(user_collateral),
            user_borrowed_raw,
            debt_raw,
            self._buy_quote(user_borrowed_raw, debt_raw),
            state_collateral,
            self.market.collateral_decimals,
            self.market.borrowed_decimals,
        )

    async def _leverage_position(self, user: str) -> PositionState:
        state = await self.controller.user_state(user)
        if state.in_liquidation:
            raise LiquidationModeError(user)
        return state

    def _wrap_route(self, route: AssembledRoute) -> bytes:
        if self.market.zap_generation is ZapGeneration.V1:
            return route.calldata
        return encode(["address", "bytes"], [route.router, route.calldata])

    async def _route_payload(self, quote: SwapQuote) -> bytes:
        route = await self.quotes.source.assemble(quote.route_id)
        return self._wrap_route(route)

    async def _metrics(
        self, price_impact: Decimal, bands: Optional[BandRange], health: Decimal
    ) -> LeverageMetrics:
        prices = await self.band_solver.prices(bands) if bands is not None else None
        return LeverageMetrics(price_impact=price_impact, bands=bands, prices=prices, health=health)

    # ------------------------------------------------------------------
    # Create loan
    # ------------------------------------------------------------------

    async def create_loan_max_recv(
        self, user_collateral: Amount, user_borrowed: Amount, n: int
    ) -> LeverageEstimate:
        self.check()
        self.market.check_range(n)
        return await self.sizer.create_loan_max_recv(await self.curve(), user_collateral, user_borrowed, n)

    async def create_loan_max_recv_all_ranges(
        self, user_collateral: Amount, user_borrowed: Amount
    ) -> Dict[int, LeverageEstimate]:
        self.check()
        return await self.sizer.create_loan_max_recv_all_ranges(await self.curve(), user_collateral, user_borrowed)

    async def create_loan_max_range(self, user_collateral: Amount, user_borrowed: Amount, debt: Amount) -> int:
        self.check()
        return await self.sizer.create_loan_max_range(await self.curve(), user_collateral, user_borrowed, debt)

    async def create_loan_expected_collateral(
        self,
        user_collateral: Amount,
        user_borrowed: Amount,
        debt: Amount,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> ExpectedCollateral:
        """Fetch and cache the swap quote for ``debt + user_borrowed``, then split its output."""
        self.check()
        await self.quotes.fetch_and_store(
            self.market.addresses.borrowed_token,
            self.market.addresses.collateral_token,
            self._borrowed(debt) + self._borrowed(user_borrowed),
            slippage,
        )
        return self._split(user_collateral, user_borrowed, debt).to_model(self.market.collateral_decimals)

    def create_loan_price_impact(self, user_borrowed: Amount, debt: Amount) -> Decimal:
        self.check()
        return self._buy_quote(self._borrowed(user_borrowed), self._borrowed(debt)).price_impact

    def create_loan_route_image(self, user_borrowed: Amount, debt: Amount) -> Optional[str]:
        self.check()
        return self._buy_quote(self._borrowed(user_borrowed), self._borrowed(debt)).route_image

    async def create_loan_bands(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, n: int
    ) -> BandRange:
        self.check()
        self.market.check_range(n)
        split = self._split(user_collateral, user_borrowed, debt)
        return await self.band_solver.bands(split.future_state_collateral, self._borrowed(debt), n)

    async def create_loan_bands_all_ranges(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount
    ) -> Dict[int, Optional[BandRange]]:
        self.check()
        split = self._split(user_collateral, user_borrowed, debt)
        max_n = await self.create_loan_max_range(user_collateral, user_borrowed, debt)
        return await self.band_solver.bands_all_ranges(
            self.market.band_counts(), split.future_state_collateral, self._borrowed(debt), max_n
        )

    async def create_loan_prices(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, n: int
    ) -> Tuple[Decimal, Decimal]:
        bands = await self.create_loan_bands(user_collateral, user_borrowed, debt, n)
        return await self.band_solver.prices(bands)

    async def create_loan_prices_all_ranges(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount
    ) -> Dict[int, Optional[Tuple[Decimal, Decimal]]]:
        bands = await self.create_loan_bands_all_ranges(user_collateral, user_borrowed, debt)
        curve = await self.curve()
        return {n: curve.calc_prices(b) if b is not None else None for n, b in bands.items()}

    async def create_loan_health(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, n: int, full: bool = True
    ) -> Decimal:
        self.check()
        self.market.check_range(n)
        split = self._split(user_collateral, user_borrowed, debt)
        return await self.health_estimator.health(split.total, self._borrowed(debt), full, n, ZERO_ADDRESS)

    async def create_loan_expected_metrics(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, n: int, full: bool = True
    ) -> LeverageMetrics:
        bands = await self.create_loan_bands(user_collateral, user_borrowed, debt, n)
        health = await self.create_loan_health(user_collateral, user_borrowed, debt, n, full)
        quote = self._buy_quote(self._borrowed(user_borrowed), self._borrowed(debt))
        return await self._metrics(quote.price_impact, bands, health)

    async def prepare_create_loan(
        self,
        user_collateral: Amount,
        user_borrowed: Amount,
        debt: Amount,
        n: int,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> ExecutionRequest:
        self.check()
        self.market.check_range(n)
        user_borrowed_raw = self._borrowed(user_borrowed)
        debt_raw = self._borrowed(debt)
        quote = self.quotes.require(self.market.addresses.borrowed_token, debt_raw + user_borrowed_raw, slippage)
        payload = await self._route_payload(quote)
        logger.info("Prepared create_loan on %s: debt=%d N=%d", self.market.id, debt_raw, n)
        return ExecutionRequest(
            action=LoanAction.CREATE_LOAN,
            market_id=self.market.id,
            zap=self.market.addresses.leverage_zap,
            user_collateral=self._collateral(user_collateral),
            user_borrowed=user_borrowed_raw,
            debt=debt_raw,
            n=n,
            slippage=quote.slippage,
            route_payload=payload,
            zap_args=(0, self.market.market_number(), user_borrowed_raw),
            quote=quote,
        )

    # ------------------------------------------------------------------
    # Borrow more
    # ------------------------------------------------------------------

    async def borrow_more_max_recv(
        self, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> LeverageEstimate:
        self.check()
        return await self.sizer.borrow_more_max_recv(await self.curve(), user_collateral, user_borrowed, user)

    async def borrow_more_expected_collateral(
        self,
        user_collateral: Amount,
        user_borrowed: Amount,
        debt: Amount,
        user: str,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> ExpectedCollateral:
        self.check()
        state = await self._leverage_position(user)
        await self.quotes.fetch_and_store(
            self.market.addresses.borrowed_token,
            self.market.addresses.collateral_token,
            self._borrowed(debt) + self._borrowed(user_borrowed),
            slippage,
        )
        split = self._split(user_collateral, user_borrowed, debt, state.collateral)
        return split.to_model(self.market.collateral_decimals)

    def borrow_more_price_impact(self, user_borrowed: Amount, debt: Amount) -> Decimal:
        return self.create_loan_price_impact(user_borrowed, debt)

    def borrow_more_route_image(self, user_borrowed: Amount, debt: Amount) -> Optional[str]:
        return self.create_loan_route_image(user_borrowed, debt)

    async def _borrow_more_split(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, user: str
    ) -> Tuple[PositionState, CollateralSplit]:
        self.check()
        # Raises MissingQuoteError before any read.
        self._buy_quote(self._borrowed(user_borrowed), self._borrowed(debt))
        state = await self._leverage_position(user)
        return state, self._split(user_collateral, user_borrowed, debt, state.collateral)

    async def borrow_more_bands(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, user: str
    ) -> BandRange:
        state, split = await self._borrow_more_split(user_collateral, user_borrowed, debt, user)
        return await self.band_solver.bands(
            split.future_state_collateral, state.debt + self._borrowed(debt), state.n
        )

    async def borrow_more_prices(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, user: str
    ) -> Tuple[Decimal, Decimal]:
        bands = await self.borrow_more_bands(user_collateral, user_borrowed, debt, user)
        return await self.band_solver.prices(bands)

    async def borrow_more_health(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, user: str, full: bool = True
    ) -> Decimal:
        state, split = await self._borrow_more_split(user_collateral, user_borrowed, debt, user)
        return await self.health_estimator.health(split.total, self._borrowed(debt), full, state.n, user)

    async def borrow_more_expected_metrics(
        self, user_collateral: Amount, user_borrowed: Amount, debt: Amount, user: str, full: bool = True
    ) -> LeverageMetrics:
        bands = await self.borrow_more_bands(user_collateral, user_borrowed, debt, user)
        health = await self.borrow_more_health(user_collateral, user_borrowed, debt, user, full)
        quote = self._buy_quote(self._borrowed(user_borrowed), self._borrowed(debt))
        return await self._metrics(quote.price_impact, bands, health)

    async def prepare_borrow_more(
        self,
        user_collateral: Amount,
        user_borrowed: Amount,
        debt: Amount,
        user: str,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> ExecutionRequest:
        self.check()
        user_borrowed_raw = self._borrowed(user_borrowed)
        debt_raw = self._borrowed(debt)
        quote = self.quotes.require(self.market.addresses.borrowed_token, debt_raw + user_borrowed_raw, slippage)
        state = await self._leverage_position(user)
        if not state.has_loan:
            raise LoanNotFoundError(user)
        payload = await self._route_payload(quote)
        logger.info("Prepared borrow_more on %s for %s: debt=%d", self.market.id, user, debt_raw)
        return ExecutionRequest(
            action=LoanAction.BORROW_MORE,
            market_id=self.market.id,
            zap=self.market.addresses.leverage_zap,
            user_collateral=self._collateral(user_collateral),
            user_borrowed=user_borrowed_raw,
            debt=debt_raw,
            n=None,
            slippage=quote.slippage,
            route_payload=payload,
            zap_args=(0, self.market.market_number(), user_borrowed_raw),
            quote=quote,
        )

    # ------------------------------------------------------------------
    # Repay
    # ------------------------------------------------------------------

    def _sell_quote(self, state_collateral: int, user_collateral: int) -> Optional[SwapQuote]:
        sold = state_collateral + user_collateral
        if sold == 0:
            return None
        return self.quotes.get(self.market.addresses.collateral_token, sold)

    def _repay_split(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount
    ) -> BorrowedSplit:
        state_collateral_raw = self._collateral(state_collateral)
        user_collateral_raw = self._collateral(user_collateral)
        return split_borrowed(
            state_collateral_raw,
            user_collateral_raw,
            self._borrowed(user_borrowed),
            self._sell_quote(state_collateral_raw, user_collateral_raw),
            self.market.collateral_decimals,
            self.market.borrowed_decimals,
        )

    async def repay_expected_borrowed(
        self,
        state_collateral: Amount,
        user_collateral: Amount,
        user_borrowed: Amount,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> RepayExpectation:
        """Fetch and cache the quote for selling ``state_collateral + user_collateral``, then split it."""
        self.check()
        sold = self._collateral(state_collateral) + self._collateral(user_collateral)
        if sold > 0:
            await self.quotes.fetch_and_store(
                self.market.addresses.collateral_token,
                self.market.addresses.borrowed_token,
                sold,
                slippage,
            )
        split = self._repay_split(state_collateral, user_collateral, user_borrowed)
        return split.to_model(self.market.borrowed_decimals)

    def repay_price_impact(self, state_collateral: Amount, user_collateral: Amount) -> Decimal:
        self.check()
        quote = self._sell_quote(self._collateral(state_collateral), self._collateral(user_collateral))
        return quote.price_impact if quote is not None else Decimal(0)

    def repay_route_image(self, state_collateral: Amount, user_collateral: Amount) -> Optional[str]:
        self.check()
        quote = self._sell_quote(self._collateral(state_collateral), self._collateral(user_collateral))
        return quote.route_image if quote is not None else None

    @staticmethod
    def _is_full(state: PositionState, split: BorrowedSplit) -> bool:
        return state.borrowed + split.total > state.debt

    def _is_available(self, state: PositionState, state_collateral: int, split: BorrowedSplit) -> bool:
        if not state.has_loan:
            return False
        if state_collateral > state.collateral:
            return False
        # A position in liquidation may only be closed, never adjusted.
        if state.in_liquidation:
            return self._is_full(state, split)
        return True

    async def _repay_context(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> Tuple[PositionState, BorrowedSplit]:
        self.check()
        split = self._repay_split(state_collateral, user_collateral, user_borrowed)
        state = await self.controller.user_state(user)
        return state, split

    async def repay_is_full(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> bool:
        state, split = await self._repay_context(state_collateral, user_collateral, user_borrowed, user)
        return self._is_full(state, split)

    async def repay_is_available(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> bool:
        state, split = await self._repay_context(state_collateral, user_collateral, user_borrowed, user)
        return self._is_available(state, self._collateral(state_collateral), split)

    async def repay_bands(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> RepayBands:
        state, split = await self._repay_context(state_collateral, user_collateral, user_borrowed, user)
        state_collateral_raw = self._collateral(state_collateral)
        return await self.band_solver.repay_bands(
            state,
            state_collateral_raw,
            split.total,
            is_available=self._is_available(state, state_collateral_raw, split),
            is_full_repay=self._is_full(state, split),
        )

    async def repay_prices(
        self, state_collateral: Amount, user_collateral: Amount, user_borrowed: Amount, user: str
    ) -> Optional[Tuple[Decimal, Decimal]]:
        result = await self.repay_bands(state_collateral, user_collateral, user_borrowed, user)
        if result.bands is None:
            return None
        return await self.band_solver.prices(result.bands)

    async def repay_health(
        self,
        state_collateral: Amount,
        user_collateral: Amount,
        user_borrowed: Amount,
        user: str,
        full: bool = True,
    ) -> Decimal:
        state, split = await self._repay_context(state_collateral, user_collateral, user_borrowed, user)
        state_collateral_raw = self._collateral(state_collateral)
        return await self.health_estimator.repay_health(
            state,
            state_collateral_raw,
            split,
            self._is_available(state, state_collateral_raw, split),
            full,
            user,
        )

    async def repay_expected_metrics(
        self,
        state_collateral: Amount,
        user_collateral: Amount,
        user_borrowed: Amount,
        user: str,
        full: bool = True,
    ) -> LeverageMetrics:
        result = await self.repay_bands(state_collateral, user_collateral, user_borrowed, user)
        health = await self.repay_health(state_collateral, user_collateral, user_borrowed, user, full)
        price_impact = self.repay_price_impact(state_collateral, user_collateral)
        return await self._metrics(price_impact, result.bands, health)

    async def prepare_repay(
        self,
        state_collateral: Amount,
        user_collateral: Amount,
        user_borrowed: Amount,
        user: str,
        slippage: Amount = DEFAULT_SLIPPAGE,
    ) -> ExecutionRequest:
        self.check()
        state_collateral_raw = self._collateral(state_collateral)
        user_collateral_raw = self._collateral(user_collateral)
        user_borrowed_raw = self._borrowed(user_borrowed)
        sold = state_collateral_raw + user_collateral_raw
        quote: Optional[SwapQuote] = None
        if sold > 0:
            quote = self.quotes.require(self.market.addresses.collateral_token, sold, slippage)
        state = await self.controller.user_state(user)
        if not state.has_loan:
            raise LoanNotFoundError(user)
        if quote is not None:
            payload = await self._route_payload(quote)
        else:
            payload = self._wrap_route(AssembledRoute(router=ZERO_ADDRESS, calldata=b""))
        logger.info("Prepared repay on %s for %s: sell=%d", self.market.id, user, sold)
        return ExecutionRequest(
            action=LoanAction.REPAY,
            market_id=self.market.id,
            zap=self.market.addresses.leverage_zap,
            user_collateral=user_collateral_raw,
            user_borrowed=user_borrowed_raw,
            debt=0,
            n=None,
            slippage=quote.slippage if quote is not None else to_decimal(slippage),
            route_payload=payload,
            zap_args=(0, self.market.market_number(), user_collateral_raw, user_borrowed_raw),
            state_collateral=state_collateral_raw,
            quote=quote,
        )
