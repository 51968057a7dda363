"""Tabular views of sizing and band previews."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pandas as pd

from llamalev.bonding_curve import BondingCurveModel
from llamalev.models import BandRange, ExpectedCollateral, LeverageEstimate, LeverageMetrics


def max_recv_frame(
    estimates: Dict[int, LeverageEstimate],
    curve: Optional[BondingCurveModel] = None,
) -> pd.DataFrame:
    """One row per band count; adds the curve's range width and leverage ceiling when given."""
    ns = sorted(estimates)
    rows: List[Dict[str, float]] = []
    for n in ns:
        estimate = estimates[n]
        row = {
            "max_debt": float(estimate.max_debt),
            "total_collateral": float(estimate.max_total_collateral),
            "user_collateral": float(estimate.user_collateral),
            "from_user_borrowed": float(estimate.collateral_from_user_borrowed),
            "from_debt": float(estimate.collateral_from_debt),
            "leverage": float(estimate.max_leverage),
            "avg_price": float(estimate.avg_price),
        }
        if curve is not None:
            row["range_width_pct"] = float(curve.range_width_pct(n))
            row["leverage_bound"] = float(curve.max_leverage(n))
        rows.append(row)
    return pd.DataFrame(rows, index=pd.Index(ns, name="bands"))


def bands_frame(
    bands: Dict[int, Optional[BandRange]],
    prices: Optional[Dict[int, Optional[Tuple[Decimal, Decimal]]]] = None,
) -> pd.DataFrame:
    """Band ranges per band count; unavailable counts are kept as empty rows."""
    ns = sorted(bands)
    rows = []
    for n in ns:
        band = bands[n]
        price = prices.get(n) if prices else None
        rows.append(
            {
                "n1": band.n1 if band is not None else None,
                "n2": band.n2 if band is not None else None,
                "price_low": float(price[0]) if price is not None else None,
                "price_high": float(price[1]) if price is not None else None,
            }
        )
    frame = pd.DataFrame(rows, index=pd.Index(ns, name="bands"))
    return frame.astype({"n1": "Int64", "n2": "Int64"})


def format_expected(expected: ExpectedCollateral, metrics: Optional[LeverageMetrics] = None) -> str:
    lines = [
        "=== Expected Collateral ===",
        f"Total:            {expected.total_collateral}",
        f"User:             {expected.user_collateral}",
        f"From borrowed:    {expected.collateral_from_user_borrowed}",
        f"From debt:        {expected.collateral_from_debt}",
        f"Leverage:         {expected.leverage:.4f}",
        f"Avg price:        {expected.avg_price:.6f}",
    ]
    if metrics is not None:
        lines.append(f"Price impact:     {metrics.price_impact}%")
        if metrics.bands is not None:
            lines.append(f"Bands:            [{metrics.bands.n1}, {metrics.bands.n2}]")
        if metrics.prices is not None:
            lines.append(f"Prices:           {metrics.prices[0]:.6f} - {metrics.prices[1]:.6f}")
        lines.append(f"Health:           {metrics.health:.4f}%")
    return "\n".join(lines)


def format_report(title: str, frame: pd.DataFrame) -> str:
    return "\n".join([title, frame.to_string(float_format=lambda value: f"{value:.6f}")])
