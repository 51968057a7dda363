"""Maximum-debt sizing for leveraged loans.

The swap that turns ``max_debt + user_borrowed`` into collateral has a price
impact that depends on its own size, so the maximum debt is found by fixed-point
iteration on the average execution price:

    effective = user_collateral + user_borrowed / p_avg
    max_debt  = zap.max_borrowable(effective, leverage_collateral, N, p_avg) * 998/1000
    p_avg     = (max_debt + user_borrowed) / quoted_output

The loop stops when max_debt moves by less than 0.05% or after 5 rounds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, NamedTuple, Optional

from llamalev.bonding_curve import BondingCurveModel
from llamalev.config import EngineConfig
from llamalev.errors import LiquidationModeError, LoanNotFoundError
from llamalev.interfaces import AmmReader, ControllerReader, LeverageZapReader
from llamalev.models import (
    ExpectedCollateral,
    LeverageEstimate,
    MarketConfig,
    RepayExpectation,
    SwapQuote,
)
from llamalev.quotes import SwapQuoteCache
from llamalev.units import WAD, Amount, divide, format_units, parse_units, to_decimal

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Quote-based splits
# ---------------------------------------------------------------------------


class CollateralSplit(NamedTuple):
    """Raw collateral amounts of a leveraged create / borrow-more."""

    user_collateral: int
    from_user_borrowed: int
    from_debt: int
    total: int
    future_state_collateral: int
    avg_price: Decimal

    def to_model(self, collateral_decimals: int) -> ExpectedCollateral:
        base = self.user_collateral + self.from_user_borrowed
        if base > 0:
            leverage = divide(self.total, base)
        else:
            leverage = Decimal(1) if self.total == 0 else Decimal("Infinity")
        return ExpectedCollateral(
            total_collateral=format_units(self.total, collateral_decimals),
            user_collateral=format_units(self.user_collateral, collateral_decimals),
            collateral_from_user_borrowed=format_units(self.from_user_borrowed, collateral_decimals),
            collateral_from_debt=format_units(self.from_debt, collateral_decimals),
            leverage=leverage,
            avg_price=self.avg_price,
            future_state_collateral=format_units(self.future_state_collateral, collateral_decimals),
        )


class BorrowedSplit(NamedTuple):
    """Raw borrowed amounts of a leveraged repay."""

    total: int
    from_state_collateral: int
    from_user_collateral: int
    user_borrowed: int
    avg_price: Decimal

    def to_model(self, borrowed_decimals: int) -> RepayExpectation:
        return RepayExpectation(
            total_borrowed=format_units(self.total, borrowed_decimals),
            borrowed_from_state_collateral=format_units(self.from_state_collateral, borrowed_decimals),
            borrowed_from_user_collateral=format_units(self.from_user_collateral, borrowed_decimals),
            user_borrowed=format_units(self.user_borrowed, borrowed_decimals),
            avg_price=self.avg_price,
        )


def split_collateral(
    user_collateral: int,
    user_borrowed: int,
    debt: int,
    quote: SwapQuote,
    state_collateral: int,
    collateral_decimals: int,
    borrowed_decimals: int,
) -> CollateralSplit:
    """Attribute the quoted swap output to debt and to user-supplied borrowed tokens.

    from_debt = debt / (debt + user_borrowed) * output, in WAD fixed point.
    """
    additional = quote.output_amount
    swapped = debt + user_borrowed
    if swapped > 0:
        from_debt = debt * WAD // swapped * additional // WAD
    else:
        from_debt = 0
    from_user_borrowed = additional - from_debt
    total = user_collateral + additional
    if additional > 0:
        avg_price = divide(
            format_units(swapped, borrowed_decimals), format_units(additional, collateral_decimals)
        )
    else:
        avg_price = Decimal(0)
    return CollateralSplit(
        user_collateral=user_collateral,
        from_user_borrowed=from_user_borrowed,
        from_debt=from_debt,
        total=total,
        future_state_collateral=state_collateral + total,
        avg_price=avg_price,
    )


def split_borrowed(
    state_collateral: int,
    user_collateral: int,
    user_borrowed: int,
    quote: Optional[SwapQuote],
    collateral_decimals: int,
    borrowed_decimals: int,
) -> BorrowedSplit:
    """Attribute the borrowed tokens a repay swap yields to position and wallet collateral."""
    sold = state_collateral + user_collateral
    expected = 0
    from_state = 0
    if sold > 0 and quote is not None:
        expected = quote.output_amount
        from_state = state_collateral * WAD // sold * expected // WAD
    if sold > 0:
        avg_price = divide(
            format_units(expected, borrowed_decimals), format_units(sold, collateral_decimals)
        )
    else:
        avg_price = Decimal(0)
    return BorrowedSplit(
        total=expected + user_borrowed,
        from_state_collateral=from_state,
        from_user_collateral=expected - from_state,
        user_borrowed=user_borrowed,
        avg_price=avg_price,
    )


# ---------------------------------------------------------------------------
# Fixed-point solver
# ---------------------------------------------------------------------------


@dataclass
class _Solution:
    max_debt: int
    effective_collateral: int
    leverage_collateral: int
    p_avg: Decimal


class LeverageSizer:
    def __init__(
        self,
        market: MarketConfig,
        controller: ControllerReader,
        amm: AmmReader,
        zap: LeverageZapReader,
        quotes: SwapQuoteCache,
        config: EngineConfig | None = None,
    ) -> None:
        self.market = market
        self.controller = controller
        self.amm = amm
        self.zap = zap
        self.quotes = quotes
        self.config = config or EngineConfig()

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def seed_price(self, curve: BondingCurveModel) -> Decimal:
        """High edge of the band the oracle price currently sits in."""
        oracle = format_units(await self.amm.oracle_price())
        return curve.tick_price(curve.oracle_price_band(oracle))

    async def create_loan_max_recv(
        self,
        curve: BondingCurveModel,
        user_collateral: Amount,
        user_borrowed: Amount,
        n: int,
    ) -> LeverageEstimate:
        self.market.check_range(n)
        user_collateral_raw = parse_units(user_collateral, self.market.collateral_decimals)
        p_avg = await self.seed_price(curve)
        solution = await self._solve(user_collateral_raw, to_decimal(user_borrowed), n, p_avg)
        return self._estimate(solution, user_collateral_raw, solution.max_debt)

    async def create_loan_max_recv_all_ranges(
        self,
        curve: BondingCurveModel,
        user_collateral: Amount,
        user_borrowed: Amount,
    ) -> Dict[int, LeverageEstimate]:
        """Solve every band count at once with one batched zap read per round.

        A single swap quote, for the smallest band count, prices all ranges.
        """
        ns = list(self.market.band_counts())
        user_collateral_raw = parse_units(user_collateral, self.market.collateral_decimals)
        user_borrowed = to_decimal(user_borrowed)
        user_borrowed_raw = parse_units(user_borrowed, self.market.borrowed_decimals)
        p_approx = await self.seed_price(curve)
        p_avg: Optional[Decimal] = None

        max_debt = [0] * len(ns)
        leverage_collateral = [0] * len(ns)
        for round_no in range(self.config.max_iterations):
            price = p_avg if p_avg is not None else p_approx
            previous = max_debt
            effective = user_collateral_raw + self._to_collateral(user_borrowed, price)
            raw = await self.zap.max_borrowable_batch(
                self.market.addresses.controller,
                effective,
                leverage_collateral,
                ns,
                parse_units(price, 18),
            )
            max_debt = [self.config.haircut(value) for value in raw]
            logger.debug("All-ranges round %d: p_avg=%s max_debt=%s", round_no, price, max_debt)

            delta = max(_relative_change(new, old) for new, old in zip(max_debt, previous))
            if delta < self.config.convergence_tolerance:
                max_debt = previous
                logger.info("All-ranges solver converged after %d rounds", round_no + 1)
                break

            if p_avg is None:
                swapped = max_debt[0] + user_borrowed_raw
                if swapped > 0:
                    out = await self.quotes.expected(
                        self.market.addresses.borrowed_token,
                        self.market.addresses.collateral_token,
                        swapped,
                    )
                    if out > 0:
                        p_avg = self._average_price(swapped, out)

            price = p_avg if p_avg is not None else p_approx
            leverage_collateral = [
                self._to_collateral(format_units(debt, self.market.borrowed_decimals), price)
                for debt in max_debt
            ]
        else:
            logger.info("All-ranges solver stopped at the %d round cap", self.config.max_iterations)

        price = p_avg if p_avg is not None else p_approx
        effective = user_collateral_raw + self._to_collateral(user_borrowed, price)
        return {
            n: self._estimate(
                _Solution(max_debt[j], effective, leverage_collateral[j], price),
                user_collateral_raw,
                max_debt[j],
            )
            for j, n in enumerate(ns)
        }

    async def create_loan_max_range(
        self,
        curve: BondingCurveModel,
        user_collateral: Amount,
        user_borrowed: Amount,
        debt: Amount,
    ) -> int:
        """Largest band count whose max debt still covers ``debt``.

        Returns ``min_bands - 1`` when even the narrowest range cannot.
        """
        estimates = await self.create_loan_max_recv_all_ranges(curve, user_collateral, user_borrowed)
        return max_range_for_debt(estimates, to_decimal(debt), self.market.max_bands)

    async def borrow_more_max_recv(
        self,
        curve: BondingCurveModel,
        user_collateral: Amount,
        user_borrowed: Amount,
        user: str,
    ) -> LeverageEstimate:
        """Additional debt an existing position can take on with leverage.

        The headroom of the current position is treated as extra borrowed
        tokens to swap, then the final figure is re-read from the controller
        for the whole future position.
        """
        state = await self.controller.user_state(user)
        if state.in_liquidation:
            raise LiquidationModeError(user)
        if not state.has_loan:
            raise LoanNotFoundError(user)

        user_collateral_raw = parse_units(user_collateral, self.market.collateral_decimals)
        headroom = await self.controller.max_borrowable(state.collateral, state.n, state.debt) - state.debt
        user_borrowed_raw = parse_units(user_borrowed, self.market.borrowed_decimals) + max(headroom, 0)
        total_borrowed = format_units(user_borrowed_raw, self.market.borrowed_decimals)

        p_avg = await self.seed_price(curve)
        solution = await self._solve(user_collateral_raw, total_borrowed, state.n, p_avg)

        total = solution.effective_collateral + solution.leverage_collateral
        final = await self.controller.max_borrowable(
            state.collateral + total, state.n, state.debt
        ) - state.debt
        return self._estimate(solution, user_collateral_raw, self.config.haircut(max(final, 0)))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _solve(
        self,
        user_collateral: int,
        user_borrowed: Decimal,
        n: int,
        p_avg: Decimal,
    ) -> _Solution:
        user_borrowed_raw = parse_units(user_borrowed, self.market.borrowed_decimals)
        max_debt = 0
        leverage_collateral = 0

        for round_no in range(self.config.max_iterations):
            previous = max_debt
            effective = user_collateral + self._to_collateral(user_borrowed, p_avg)
            raw = await self.zap.max_borrowable(
                self.market.addresses.controller,
                effective,
                leverage_collateral,
                n,
                parse_units(p_avg, 18),
            )
            raw = self.config.haircut(raw)
            logger.debug("N=%d round %d: p_avg=%s max_debt=%d", n, round_no, p_avg, raw)
            if raw == 0:
                break
            max_debt = raw

            if previous > 0 and _relative_change(max_debt, previous, previous) < self.config.convergence_tolerance:
                max_debt = previous
                logger.info("N=%d converged after %d rounds", n, round_no + 1)
                break

            swapped = max_debt + user_borrowed_raw
            out = await self.quotes.expected(
                self.market.addresses.borrowed_token,
                self.market.addresses.collateral_token,
                swapped,
            )
            if out == 0:
                logger.warning("N=%d: swap of %d returned nothing, keeping %d", n, swapped, previous)
                max_debt = previous
                break
            p_avg = self._average_price(swapped, out)
            leverage_collateral = out - self._to_collateral(user_borrowed, p_avg)
        else:
            logger.info("N=%d stopped at the %d round cap", n, self.config.max_iterations)

        effective = user_collateral + self._to_collateral(user_borrowed, p_avg)
        return _Solution(max_debt, effective, leverage_collateral, p_avg)

    def _to_collateral(self, borrowed: Decimal, price: Decimal) -> int:
        return parse_units(divide(borrowed, price), self.market.collateral_decimals)

    def _average_price(self, swapped: int, out: int) -> Decimal:
        return divide(
            format_units(swapped, self.market.borrowed_decimals),
            format_units(out, self.market.collateral_decimals),
        )

    def _estimate(self, solution: _Solution, user_collateral: int, max_debt: int) -> LeverageEstimate:
        decimals = self.market.collateral_decimals
        effective = solution.effective_collateral
        total = effective + solution.leverage_collateral
        return LeverageEstimate(
            max_debt=format_units(max_debt, self.market.borrowed_decimals),
            max_total_collateral=format_units(total, decimals),
            user_collateral=format_units(user_collateral, decimals),
            collateral_from_user_borrowed=format_units(effective - user_collateral, decimals),
            collateral_from_debt=format_units(solution.leverage_collateral, decimals),
            max_leverage=divide(total, effective) if effective > 0 else Decimal(1),
            avg_price=solution.p_avg,
        )


def _relative_change(new: int, old: int, scale: Optional[int] = None) -> Decimal:
    """|new - old| / scale (``new`` by default); 0 when both are zero."""
    scale = new if scale is None else scale
    if new == old:
        return Decimal(0)
    if scale == 0:
        return Decimal(1)
    return divide(abs(new - old), scale)


def max_range_for_debt(estimates: Dict[int, LeverageEstimate], debt: Decimal, max_bands: int) -> int:
    for n in sorted(estimates):
        if debt > estimates[n].max_debt:
            return n - 1
    return max_bands
