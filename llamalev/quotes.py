from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Dict, Tuple

from llamalev.config import EngineConfig
from llamalev.errors import MissingQuoteError, QuoteTimeoutError, SlippageMismatchError
from llamalev.interfaces import QuoteSource
from llamalev.models import SwapQuote
from llamalev.units import Amount, to_decimal

logger = logging.getLogger(__name__)

QuoteKey = Tuple[str, int]


class SwapQuoteCache:
    """Swap quotes keyed by the exact ``(input token, raw input amount)`` they were priced for.

    A quote is only ever read back for the amount it was requested with, so a
    transaction can never be built from a route the user has not previewed.
    Entries are overwritten per key and never expire.
    """

    def __init__(
        self,
        source: QuoteSource,
        blacklist: str,
        config: EngineConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.source = source
        self.blacklist = blacklist
        self.config = config or EngineConfig()
        self._sleep = sleep
        self._quotes: Dict[QuoteKey, SwapQuote] = {}

    def __contains__(self, key: QuoteKey) -> bool:
        return key in self._quotes

    def __len__(self) -> int:
        return len(self._quotes)

    async def fetch_and_store(
        self,
        input_token: str,
        output_token: str,
        amount: int,
        slippage: Amount,
        route_image: bool = True,
    ) -> SwapQuote:
        slippage = to_decimal(slippage)
        if amount == 0:
            quote = SwapQuote.empty(input_token, output_token, slippage)
            self._quotes[(input_token, amount)] = quote
            return quote

        delay = self.config.quote_backoff_seconds
        attempts = self.config.quote_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                quote = await asyncio.wait_for(
                    self.source.quote(
                        input_token, output_token, amount, slippage, self.blacklist, route_image
                    ),
                    timeout=self.config.quote_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Quote for %d of %s timed out after %ss (attempt %d/%d)",
                    amount, input_token, self.config.quote_timeout_seconds, attempt, attempts,
                )
            else:
                if not quote.is_empty:
                    quote = replace(quote, input_amount=amount, slippage=slippage)
                    self._quotes[(input_token, amount)] = quote
                    logger.debug(
                        "Cached quote %s -> %s for %d: out=%d impact=%s",
                        input_token, output_token, amount, quote.output_amount, quote.price_impact,
                    )
                    return quote
                logger.warning(
                    "Empty route for %d of %s (attempt %d/%d)", amount, input_token, attempt, attempts
                )
            if attempt < attempts:
                await self._sleep(delay)
                delay *= self.config.quote_backoff_multiplier
        raise QuoteTimeoutError(input_token, amount, attempts)

    def get(self, input_token: str, amount: int) -> SwapQuote:
        try:
            return self._quotes[(input_token, amount)]
        except KeyError:
            raise MissingQuoteError(input_token, amount) from None

    def require(self, input_token: str, amount: int, slippage: Amount) -> SwapQuote:
        """Cached quote for the exact amount, recorded at exactly ``slippage``."""
        quote = self.get(input_token, amount)
        slippage = to_decimal(slippage)
        if quote.slippage != slippage:
            raise SlippageMismatchError(slippage, quote.slippage)
        return quote

    async def expected(self, input_token: str, output_token: str, amount: int) -> int:
        """Uncached output estimate, for the sizing loop."""
        return await self.source.expected(input_token, output_token, amount, self.blacklist)

    def clear(self) -> None:
        self._quotes.clear()
