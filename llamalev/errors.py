class LlamalevError(Exception):
    """Base class for every error raised by the engine."""


class LeverageUnavailableError(LlamalevError):
    def __init__(self, market_id: str) -> None:
        super().__init__(f"Market {market_id} does not support leverage")
        self.market_id = market_id


class BandRangeError(LlamalevError, ValueError):
    def __init__(self, n: int, min_bands: int, max_bands: int) -> None:
        if n < min_bands:
            message = f"range must be >= {min_bands}, got {n}"
        else:
            message = f"range must be <= {max_bands}, got {n}"
        super().__init__(message)
        self.n = n
        self.min_bands = min_bands
        self.max_bands = max_bands


class MissingQuoteError(LlamalevError, KeyError):
    def __init__(self, token: str, amount: int) -> None:
        super().__init__(token, amount)
        self.token = token
        self.amount = amount

    def __str__(self) -> str:
        return (
            f"You must fetch the expected amount for input {self.amount} of {self.token} "
            "before using it"
        )


class SlippageMismatchError(LlamalevError):
    def __init__(self, requested, quoted) -> None:
        super().__init__(
            f"You must fetch the expected amount with the same slippage "
            f"(quoted {quoted}, requested {requested})"
        )
        self.requested = requested
        self.quoted = quoted


class LiquidationModeError(LlamalevError):
    def __init__(self, user: str) -> None:
        super().__init__(f"User {user} is already in liquidation mode")
        self.user = user


class LoanNotFoundError(LlamalevError):
    def __init__(self, user: str) -> None:
        super().__init__(f"Loan for {user} does not exist")
        self.user = user


class QuoteTimeoutError(LlamalevError, TimeoutError):
    def __init__(self, token: str, amount: int, attempts: int) -> None:
        super().__init__(
            f"No route returned for {amount} of {token} after {attempts} attempts"
        )
        self.token = token
        self.amount = amount
        self.attempts = attempts


class RpcError(LlamalevError, RuntimeError):
    pass


class QuoteApiError(LlamalevError, RuntimeError):
    pass
