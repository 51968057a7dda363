import argparse
import asyncio
import logging
from decimal import Decimal
from typing import Optional

from llamalev.adapters import JsonRpcClient, OdosQuoteSource, RpcAmm, RpcController, RpcLeverageZap
from llamalev.config import Settings, load_settings
from llamalev.market import LeverageMarket
from llamalev.models import MarketAddresses, MarketConfig, MarketFamily, ZapGeneration
from llamalev.report import format_expected, format_report, max_recv_frame


def build_market(args: argparse.Namespace, settings: Settings) -> LeverageMarket:
    rpc_url = args.rpc_url or settings.rpc_url
    if not rpc_url:
        raise SystemExit("An RPC url is required (--rpc-url or LLAMALEV_RPC_URL).")
    client = JsonRpcClient(rpc_url, timeout=settings.http_timeout)
    config = MarketConfig(
        id=args.market_id,
        family=MarketFamily(args.family),
        addresses=MarketAddresses(
            controller=args.controller,
            amm=args.amm,
            collateral_token=args.collateral_token,
            borrowed_token=args.borrowed_token,
            leverage_zap=args.zap,
        ),
        collateral_decimals=args.collateral_decimals,
        borrowed_decimals=args.borrowed_decimals,
        min_bands=args.min_bands,
        max_bands=args.max_bands,
        zap_generation=ZapGeneration(args.zap_generation),
    )
    return LeverageMarket(
        config,
        RpcController(client, args.controller),
        RpcAmm(client, args.amm),
        RpcLeverageZap(client, args.zap),
        OdosQuoteSource(
            caller=args.zap,
            chain_id=settings.chain_id,
            base_url=settings.quote_api_url,
            timeout=settings.http_timeout,
        ),
    )


async def run_simulation(
    market: LeverageMarket,
    user_collateral: Decimal,
    user_borrowed: Decimal,
    debt: Optional[Decimal],
    n: Optional[int],
    slippage: Decimal,
) -> str:
    curve = await market.curve()
    if debt is None:
        estimates = await market.create_loan_max_recv_all_ranges(user_collateral, user_borrowed)
        return format_report("=== Max Receivable ===", max_recv_frame(estimates, curve))

    expected = await market.create_loan_expected_collateral(user_collateral, user_borrowed, debt, slippage)
    if n is None:
        return format_expected(expected)
    metrics = await market.create_loan_expected_metrics(user_collateral, user_borrowed, debt, n)
    return "\n".join(
        [format_expected(expected, metrics), f"Range width:      {curve.range_width_pct(n)}%"]
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Leveraged loan sizing for LLAMMA markets.")
    parser.add_argument("--market-id", required=True, help="Market id, e.g. one-way-market-3.")
    parser.add_argument("--family", choices=[f.value for f in MarketFamily], default="lend")
    parser.add_argument("--controller", required=True)
    parser.add_argument("--amm", required=True)
    parser.add_argument("--zap", required=True, help="Leverage zap address.")
    parser.add_argument("--zap-generation", choices=[g.value for g in ZapGeneration], default="v2")
    parser.add_argument("--collateral-token", required=True)
    parser.add_argument("--borrowed-token", required=True)
    parser.add_argument("--collateral-decimals", type=int, default=18)
    parser.add_argument("--borrowed-decimals", type=int, default=18)
    parser.add_argument("--min-bands", type=int, default=4)
    parser.add_argument("--max-bands", type=int, default=50)
    parser.add_argument("--user-collateral", type=Decimal, default=Decimal(0))
    parser.add_argument("--user-borrowed", type=Decimal, default=Decimal(0))
    parser.add_argument("--debt", type=Decimal, help="Debt to preview; omit for the max-recv table.")
    parser.add_argument("--range", dest="n", type=int, help="Band count for metrics.")
    parser.add_argument("--slippage", type=Decimal, default=Decimal("0.1"))
    parser.add_argument("--rpc-url")
    parser.add_argument("--env-file", help="Path to a .env file with LLAMALEV_* settings.")
    parser.add_argument("--log-level")
    args = parser.parse_args()

    settings = load_settings(args.env_file)
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    market = build_market(args, settings)
    print(
        asyncio.run(
            run_simulation(
                market, args.user_collateral, args.user_borrowed, args.debt, args.n, args.slippage
            )
        )
    )


if __name__ == "__main__":
    main()
