from __future__ import annotations

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Dict
from urllib import error, parse, request

from eth_utils import decode_hex, to_checksum_address

from llamalev.config import DEFAULT_QUOTE_API_URL, ZERO_ADDRESS
from llamalev.errors import QuoteApiError
from llamalev.interfaces import QuoteSource
from llamalev.models import AssembledRoute, SwapQuote
from llamalev.units import to_decimal

logger = logging.getLogger(__name__)

NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


def _api_token(address: str) -> str:
    address = to_checksum_address(address)
    return ZERO_ADDRESS if address == NATIVE_TOKEN else address


class OdosQuoteSource(QuoteSource):
    """Quote and assemble endpoints of the Odos proxy behind the Curve prices API."""

    def __init__(
        self,
        caller: str,
        chain_id: int = 1,
        base_url: str = DEFAULT_QUOTE_API_URL,
        timeout: float = 30,
    ) -> None:
        self.caller = to_checksum_address(caller)
        self.chain_id = chain_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get_json(self, path: str, query: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}?{parse.urlencode(query)}"
        req = request.Request(url, headers={"Accept": "application/json"})
        try:
            with request.urlopen(req, timeout=self.timeout) as response:
                return json.load(response, parse_float=Decimal)
        except error.HTTPError as exc:
            raise QuoteApiError(f"Odos {path} error - {exc.code} {exc.reason}") from exc

    async def quote(
        self,
        input_token: str,
        output_token: str,
        amount: int,
        slippage: Decimal,
        blacklist: str,
        route_image: bool = False,
    ) -> SwapQuote:
        if amount == 0:
            return SwapQuote.empty(input_token, output_token, slippage)
        query = {
            "chain_id": self.chain_id,
            "from_address": _api_token(input_token),
            "to_address": _api_token(output_token),
            "amount": str(amount),
            "slippage": str(slippage),
            "pathVizImage": "true" if route_image else "false",
            "caller_address": self.caller,
            "blacklist": to_checksum_address(blacklist),
        }
        data = await asyncio.to_thread(self._get_json, "quote", query)
        logger.debug("Odos quote %s -> %s for %d: %s", input_token, output_token, amount, data.get("pathId"))
        return SwapQuote(
            input_token=input_token,
            output_token=output_token,
            input_amount=amount,
            output_amount=int(to_decimal(str(data["outAmounts"][0]))),
            price_impact=to_decimal(data.get("priceImpact") or 0),
            route_id=data.get("pathId") or "",
            slippage=slippage,
            route_image=data.get("pathVizImage") or None,
        )

    async def assemble(self, route_id: str) -> AssembledRoute:
        data = await asyncio.to_thread(
            self._get_json, "assemble", {"user": self.caller, "path_id": route_id}
        )
        transaction = data["transaction"]
        return AssembledRoute(
            router=transaction.get("to") or ZERO_ADDRESS,
            calldata=decode_hex(transaction["data"]),
        )
