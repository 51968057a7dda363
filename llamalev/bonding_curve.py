from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Tuple

from llamalev.config import EngineConfig
from llamalev.models import BandRange, MarketParameters
from llamalev.units import PRECISION, Amount, quantize, to_decimal


class BondingCurveModel:
    """Geometric band grid of a LLAMMA market.

    Band ``n`` spans ``[base * r**(n+1), base * r**n]`` with ``r = (A-1)/A``,
    so a lower index means a higher price.
    """

    def __init__(self, params: MarketParameters, config: EngineConfig | None = None) -> None:
        self.params = params
        self.config = config or EngineConfig()

    @property
    def ratio(self) -> Decimal:
        a = Decimal(self.params.amplification)
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return (a - 1) / a

    def tick_price(self, n: int) -> Decimal:
        """base_price * ((A-1)/A)^n, rounded to 18 decimals."""
        with localcontext() as ctx:
            ctx.prec = PRECISION
            price = self.params.base_price * self.ratio ** n
        return quantize(price, self.config.price_precision, ROUND_HALF_UP)

    def band_prices(self, n: int) -> Tuple[Decimal, Decimal]:
        """``(tick_price(n + 1), tick_price(n))``: the low edge first, then the high edge."""
        return self.tick_price(n + 1), self.tick_price(n)

    def oracle_price_band(self, oracle_price: Amount) -> int:
        """Index ``n`` with ``tick_price(n + 1) < oracle_price <= tick_price(n)``.

        Walks one tick at a time away from the base price. The walk is capped by
        ``EngineConfig.max_band_walk`` so a corrupt oracle read cannot spin forever.
        """
        oracle = to_decimal(oracle_price)
        if oracle <= 0:
            raise ValueError(f"oracle price must be positive, got {oracle}")

        band = 0
        steps = 0
        if oracle <= self.params.base_price:
            while oracle <= self.tick_price(band + 1):
                band += 1
                steps += 1
                self._check_walk(steps, oracle)
        else:
            while oracle > self.tick_price(band):
                band -= 1
                steps += 1
                self._check_walk(steps, oracle)
        return band

    def _check_walk(self, steps: int, oracle: Decimal) -> None:
        if steps > self.config.max_band_walk:
            raise ValueError(
                f"oracle price {oracle} is more than {self.config.max_band_walk} bands "
                f"away from base price {self.params.base_price}"
            )

    def range_width_pct(self, n: int) -> Decimal:
        """100 * (1 - r^N): price distance spanned by N bands, in percent."""
        with localcontext() as ctx:
            ctx.prec = PRECISION
            width = (1 - self.ratio ** n) * 100
        return quantize(width, 6)

    def k_effective(self, n: int) -> Decimal:
        # d_k_effective = (1 - loan_discount) * sqrt(r) / N
        # k_effective = d_k_effective * sum_{k=0..N-1} r^k
        if n < 1:
            raise ValueError(f"band count must be positive, got {n}")
        with localcontext() as ctx:
            ctx.prec = PRECISION
            ratio = self.ratio
            discount = (100 - self.params.loan_discount) / 100
            d_k = discount * ratio.sqrt() / n
            total = sum((ratio ** k for k in range(n)), Decimal(0))
            return d_k * total

    def max_leverage(self, n: int) -> Decimal:
        """Theoretical leverage ceiling 1 / (1 - k_effective) for N bands."""
        with localcontext() as ctx:
            ctx.prec = PRECISION
            return 1 / (1 - self.k_effective(n))

    def calc_prices(self, bands: BandRange) -> Tuple[Decimal, Decimal]:
        """Price interval covered by ``bands``: low edge of n2, high edge of n1."""
        return self.tick_price(bands.n2 + 1), self.tick_price(bands.n1)
