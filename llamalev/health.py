from __future__ import annotations

from decimal import Decimal

from llamalev.config import ZERO_ADDRESS
from llamalev.interfaces import ControllerReader
from llamalev.models import PositionState
from llamalev.sizer import BorrowedSplit
from llamalev.units import format_units

# Reported when the projected action cannot happen at all.
NOT_APPLICABLE = Decimal("0.0")

# Band count understood by the controller as "keep the position's current N".
CURRENT_RANGE = 0


class HealthEstimator:
    """Health projections delegated to the controller's ``health_calculator``.

    The controller returns an 18-decimal fraction; it is reported in percent.
    """

    def __init__(self, controller: ControllerReader) -> None:
        self.controller = controller

    async def health(
        self,
        d_collateral: int,
        d_debt: int,
        full: bool,
        n: int,
        user: str = ZERO_ADDRESS,
    ) -> Decimal:
        raw = await self.controller.health_calculator(user, d_collateral, d_debt, full, n)
        return format_units(raw * 100)

    async def repay_health(
        self,
        state: PositionState,
        state_collateral: int,
        split: BorrowedSplit,
        is_available: bool,
        full: bool,
        user: str,
    ) -> Decimal:
        """Health after a leveraged repay; ``NOT_APPLICABLE`` when it cannot happen or closes the loan."""
        if state.in_liquidation or not is_available:
            return NOT_APPLICABLE
        d_debt = -split.total
        if state.debt + d_debt <= 0:
            return NOT_APPLICABLE
        return await self.health(-state_collateral, d_debt, full, state.n, user)
