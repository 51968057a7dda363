"""Previews for plain (non-leveraged) loan actions on one market."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

from llamalev.bands import BandSolver
from llamalev.bonding_curve import BondingCurveModel
from llamalev.config import ZERO_ADDRESS, EngineConfig
from llamalev.errors import LiquidationModeError, LoanNotFoundError
from llamalev.health import CURRENT_RANGE, HealthEstimator
from llamalev.interfaces import AmmReader, ControllerReader
from llamalev.models import BandRange, MarketConfig, MarketParameters, PositionState, RepayBands
from llamalev.units import Amount, format_units, parse_units, to_decimal

logger = logging.getLogger(__name__)


class LoanCalculator:
    def __init__(
        self,
        market: MarketConfig,
        controller: ControllerReader,
        amm: AmmReader,
        config: EngineConfig | None = None,
    ) -> None:
        self.market = market
        self.controller = controller
        self.amm = amm
        self.config = config or EngineConfig()
        self.band_solver = BandSolver(controller, amm)
        self.health_estimator = HealthEstimator(controller)

    # ------------------------------------------------------------------
    # Market state
    # ------------------------------------------------------------------

    async def parameters(self) -> MarketParameters:
        amplification, base_price, loan_discount, liquidation_discount = await asyncio.gather(
            self.amm.amplification(),
            self.amm.base_price(),
            self.controller.loan_discount(),
            self.controller.liquidation_discount(),
        )
        return MarketParameters(
            amplification=amplification,
            base_price=format_units(base_price),
            loan_discount=format_units(loan_discount * 100),
            liquidation_discount=format_units(liquidation_discount * 100),
            borrowed_decimals=self.market.borrowed_decimals,
            collateral_decimals=self.market.collateral_decimals,
        )

    async def curve(self) -> BondingCurveModel:
        return BondingCurveModel(await self.parameters(), self.config)

    async def oracle_price(self) -> Decimal:
        return format_units(await self.amm.oracle_price())

    async def oracle_price_band(self) -> int:
        curve, oracle = await asyncio.gather(self.curve(), self.oracle_price())
        return curve.oracle_price_band(oracle)

    async def user_state(self, user: str) -> PositionState:
        return await self.controller.user_state(user)

    async def _open_position(self, user: str) -> PositionState:
        state = await self.controller.user_state(user)
        if not state.has_loan:
            raise LoanNotFoundError(user)
        return state

    async def _adjustable_position(self, user: str) -> PositionState:
        state = await self._open_position(user)
        if state.in_liquidation:
            raise LiquidationModeError(user)
        return state

    def _collateral(self, amount: Amount) -> int:
        return parse_units(amount, self.market.collateral_decimals)

    def _borrowed(self, amount: Amount) -> int:
        return parse_units(amount, self.market.borrowed_decimals)

    # ------------------------------------------------------------------
    # Create loan
    # ------------------------------------------------------------------

    async def create_loan_max_recv(self, collateral: Amount, n: int) -> Decimal:
        self.market.check_range(n)
        debt = await self.controller.max_borrowable(self._collateral(collateral), n, 0)
        return format_units(debt, self.market.borrowed_decimals)

    async def create_loan_max_recv_all_ranges(self, collateral: Amount) -> Dict[int, Decimal]:
        ns = list(self.market.band_counts())
        debts = await self.controller.max_borrowable_batch(self._collateral(collateral), ns, 0)
        return {n: format_units(debt, self.market.borrowed_decimals) for n, debt in zip(ns, debts)}

    async def max_range(self, collateral: Amount, debt: Amount) -> int:
        """Widest band count at which ``debt`` is still borrowable against ``collateral``."""
        debt = to_decimal(debt)
        max_recv = await self.create_loan_max_recv_all_ranges(collateral)
        for n in sorted(max_recv):
            if debt > max_recv[n]:
                return n - 1
        return self.market.max_bands

    async def create_loan_bands(self, collateral: Amount, debt: Amount, n: int) -> BandRange:
        self.market.check_range(n)
        return await self.band_solver.bands(self._collateral(collateral), self._borrowed(debt), n)

    async def create_loan_bands_all_ranges(
        self, collateral: Amount, debt: Amount
    ) -> Dict[int, Optional[BandRange]]:
        max_n = await self.max_range(collateral, debt)
        return await self.band_solver.bands_all_ranges(
            self.market.band_counts(), self._collateral(collateral), self._borrowed(debt), max_n
        )

    async def create_loan_prices(self, collateral: Amount, debt: Amount, n: int) -> Tuple[Decimal, Decimal]:
        bands = await self.create_loan_bands(collateral, debt, n)
        return await self.band_solver.prices(bands)

    async def create_loan_prices_all_ranges(
        self, collateral: Amount, debt: Amount
    ) -> Dict[int, Optional[Tuple[Decimal, Decimal]]]:
        curve = await self.curve()
        bands = await self.create_loan_bands_all_ranges(collateral, debt)
        return {n: curve.calc_prices(b) if b is not None else None for n, b in bands.items()}

    async def create_loan_health(
        self, collateral: Amount, debt: Amount, n: int, full: bool = True
    ) -> Decimal:
        self.market.check_range(n)
        return await self.health_estimator.health(
            self._collateral(collateral), self._borrowed(debt), full, n, ZERO_ADDRESS
        )

    # ------------------------------------------------------------------
    # Borrow more
    # ------------------------------------------------------------------

    async def borrow_more_max_recv(self, collateral: Amount, user: str) -> Decimal:
        state = await self._open_position(user)
        total = state.collateral + self._collateral(collateral)
        debt = await self.controller.max_borrowable(total, state.n, state.debt)
        return format_units(debt - state.debt, self.market.borrowed_decimals)

    async def borrow_more_bands(self, collateral: Amount, debt: Amount, user: str) -> BandRange:
        state = await self._adjustable_position(user)
        return await self.band_solver.bands(
            state.collateral + self._collateral(collateral), state.debt + self._borrowed(debt), state.n
        )

    async def borrow_more_health(
        self, collateral: Amount, debt: Amount, user: str, full: bool = True
    ) -> Decimal:
        return await self.health_estimator.health(
            self._collateral(collateral), self._borrowed(debt), full, CURRENT_RANGE, user
        )

    # ------------------------------------------------------------------
    # Add / remove collateral
    # ------------------------------------------------------------------

    async def add_collateral_bands(self, collateral: Amount, user: str) -> BandRange:
        state = await self._adjustable_position(user)
        return await self.band_solver.bands(
            state.collateral + self._collateral(collateral), state.debt, state.n
        )

    async def add_collateral_health(self, collateral: Amount, user: str, full: bool = True) -> Decimal:
        return await self.health_estimator.health(self._collateral(collateral), 0, full, CURRENT_RANGE, user)

    async def max_removable(self, user: str) -> Decimal:
        state = await self._open_position(user)
        required = await self.controller.min_collateral(state.debt, state.n)
        return format_units(state.collateral - required, self.market.collateral_decimals)

    async def remove_collateral_bands(self, collateral: Amount, user: str) -> BandRange:
        state = await self._adjustable_position(user)
        return await self.band_solver.bands(
            state.collateral - self._collateral(collateral), state.debt, state.n
        )

    async def remove_collateral_health(self, collateral: Amount, user: str, full: bool = True) -> Decimal:
        return await self.health_estimator.health(-self._collateral(collateral), 0, full, CURRENT_RANGE, user)

    # ------------------------------------------------------------------
    # Repay
    # ------------------------------------------------------------------

    async def repay_bands(self, debt: Amount, user: str) -> RepayBands:
        """Bands after repaying ``debt``; a position in liquidation keeps its current bands."""
        state = await self._open_position(user)
        if state.in_liquidation:
            logger.debug("%s is being liquidated, keeping its current bands", user)
            bands = await self.band_solver.user_bands(user)
            return RepayBands(bands=bands, is_available=True, is_full_repay=False)
        repaid = self._borrowed(debt)
        return await self.band_solver.repay_bands(
            state, 0, repaid, is_available=True, is_full_repay=repaid >= state.debt
        )

    async def repay_health(self, debt: Amount, user: str, full: bool = True) -> Decimal:
        return await self.health_estimator.health(0, -self._borrowed(debt), full, CURRENT_RANGE, user)

    async def full_repay_amount(self, user: str) -> Decimal:
        """Current debt plus a small buffer for interest accrued before the repay lands."""
        state = await self.controller.user_state(user)
        return format_units(state.debt, self.market.borrowed_decimals) * self.config.full_repay_buffer
