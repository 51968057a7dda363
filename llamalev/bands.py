from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple

from llamalev.interfaces import AmmReader, ControllerReader
from llamalev.models import BandRange, PositionState, RepayBands
from llamalev.units import format_units

logger = logging.getLogger(__name__)


class BandSolver:
    """Maps (collateral, debt, N) to the band range the controller would place a loan in.

    The band for a given amount is defined on-chain by ``calculate_debt_n1``;
    nothing here re-derives it, the solver only decides which combinations
    are worth asking about.
    """

    def __init__(self, controller: ControllerReader, amm: AmmReader) -> None:
        self.controller = controller
        self.amm = amm

    async def bands(self, collateral: int, debt: int, n: int) -> BandRange:
        n1 = await self.controller.calculate_debt_n1(collateral, debt, n)
        return BandRange.from_n1(n1, n)

    async def bands_all_ranges(
        self,
        band_counts: Sequence[int],
        collateral: int,
        debt: int,
        max_n: int,
    ) -> Dict[int, Optional[BandRange]]:
        """One batched read for every N up to ``max_n``; larger N are ``None``.

        ``max_n`` is the widest range ``debt`` is still borrowable at, so the
        controller is never asked about a combination it would reject.
        """
        available = [n for n in band_counts if n <= max_n]
        result: Dict[int, Optional[BandRange]] = {n: None for n in band_counts}
        if not available:
            return result
        n1s = await self.controller.calculate_debt_n1_batch(collateral, debt, available)
        for n, n1 in zip(available, n1s):
            result[n] = BandRange.from_n1(n1, n)
        return result

    async def user_bands(self, user: str) -> BandRange:
        n1, n2 = await self.amm.user_bands(user)
        return BandRange(n1=min(n1, n2), n2=max(n1, n2))

    async def repay_bands(
        self,
        state: PositionState,
        state_collateral: int,
        repaid: int,
        is_available: bool,
        is_full_repay: bool,
    ) -> RepayBands:
        """Bands left after selling ``state_collateral`` of the position and repaying ``repaid``.

        A repay that clears the debt has no bands left to compute.
        """
        if not is_available:
            return RepayBands(bands=None, is_available=False, is_full_repay=is_full_repay)
        remaining = state.debt - repaid
        if remaining <= 0:
            logger.debug("Repay of %d clears debt %d, skipping band lookup", repaid, state.debt)
            return RepayBands(bands=None, is_available=True, is_full_repay=True)
        bands = await self.bands(state.collateral - state_collateral, remaining, state.n)
        return RepayBands(bands=bands, is_available=True, is_full_repay=is_full_repay)

    async def prices(self, bands: BandRange) -> Tuple[Decimal, Decimal]:
        """Oracle price edges of ``bands`` as the AMM reports them: low, then high."""
        low, high = await self.amm.band_edge_prices(bands.n2, bands.n1)
        return format_units(low), format_units(high)
