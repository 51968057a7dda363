"""Contract views over plain JSON-RPC ``eth_call``.

Batched reads go out as one JSON-RPC batch request, so an all-ranges query
costs a single HTTP round trip.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple
from urllib import request

from eth_abi import decode, encode
from eth_utils import decode_hex, encode_hex, function_signature_to_4byte_selector, to_checksum_address

from llamalev.errors import RpcError
from llamalev.interfaces import AmmReader, ControllerReader, LeverageZapReader
from llamalev.models import PositionState

logger = logging.getLogger(__name__)


def _post_json(url: str, payload: Any, timeout: float = 30) -> Any:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers={"Content-Type": "application/json"})
    with request.urlopen(req, timeout=timeout) as response:
        return json.load(response)


def _rpc_call(rpc_url: str, method: str, params: Iterable[Any], timeout: float = 30) -> Any:
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": list(params)}
    response = _post_json(rpc_url, payload, timeout)
    if "error" in response:
        raise RpcError(f"RPC error for {method}: {response['error']}")
    return response["result"]


def _rpc_batch(rpc_url: str, method: str, params: Sequence[List[Any]], timeout: float = 30) -> List[Any]:
    payload = [
        {"jsonrpc": "2.0", "id": i, "method": method, "params": p}
        for i, p in enumerate(params)
    ]
    responses = _post_json(rpc_url, payload, timeout)
    if isinstance(responses, dict):
        raise RpcError(f"RPC batch error for {method}: {responses.get('error', responses)}")
    by_id: Dict[int, Any] = {}
    for item in responses:
        if "error" in item:
            raise RpcError(f"RPC error for {method}: {item['error']}")
        by_id[item["id"]] = item["result"]
    return [by_id[i] for i in range(len(params))]


class ContractFunction:
    """ABI codec for one view function, e.g. ``ContractFunction("A()", ["uint256"])``."""

    def __init__(self, signature: str, output_types: Sequence[str]) -> None:
        self.signature = signature
        args = signature[signature.index("(") + 1:-1]
        self.input_types = [t for t in args.split(",") if t]
        self.output_types = list(output_types)
        self.selector = function_signature_to_4byte_selector(signature)

    def encode_call(self, *args: Any) -> bytes:
        return self.selector + encode(self.input_types, list(args))

    def decode_result(self, data: bytes) -> Tuple[Any, ...]:
        return decode(self.output_types, data)


class JsonRpcClient:
    def __init__(self, rpc_url: str, timeout: float = 30) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout

    async def call(self, to: str, fn: ContractFunction, *args: Any) -> Tuple[Any, ...]:
        params = [{"to": to, "data": encode_hex(fn.encode_call(*args))}, "latest"]
        result = await asyncio.to_thread(_rpc_call, self.rpc_url, "eth_call", params, self.timeout)
        return fn.decode_result(decode_hex(result))

    async def call_batch(
        self, to: str, fn: ContractFunction, arg_lists: Sequence[Sequence[Any]]
    ) -> List[Tuple[Any, ...]]:
        if not arg_lists:
            return []
        params = [
            [{"to": to, "data": encode_hex(fn.encode_call(*args))}, "latest"] for args in arg_lists
        ]
        logger.debug("eth_call batch of %d x %s on %s", len(params), fn.signature, to)
        results = await asyncio.to_thread(_rpc_batch, self.rpc_url, "eth_call", params, self.timeout)
        return [fn.decode_result(decode_hex(result)) for result in results]


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

USER_STATE = ContractFunction("user_state(address)", ["uint256[4]"])
MAX_BORROWABLE = ContractFunction("max_borrowable(uint256,uint256,uint256)", ["uint256"])
MIN_COLLATERAL = ContractFunction("min_collateral(uint256,uint256)", ["uint256"])
CALCULATE_DEBT_N1 = ContractFunction("calculate_debt_n1(uint256,uint256,uint256)", ["int256"])
HEALTH_CALCULATOR = ContractFunction(
    "health_calculator(address,int256,int256,bool,uint256)", ["int256"]
)
LOAN_DISCOUNT = ContractFunction("loan_discount()", ["uint256"])
LIQUIDATION_DISCOUNT = ContractFunction("liquidation_discount()", ["uint256"])


class RpcController(ControllerReader):
    def __init__(self, client: JsonRpcClient, address: str) -> None:
        self.client = client
        self.address = to_checksum_address(address)

    async def user_state(self, user: str) -> PositionState:
        (values,) = await self.client.call(self.address, USER_STATE, to_checksum_address(user))
        collateral, borrowed, debt, n = values
        return PositionState(collateral=collateral, borrowed=borrowed, debt=debt, n=n)

    async def max_borrowable(self, collateral: int, n: int, current_debt: int = 0) -> int:
        (value,) = await self.client.call(self.address, MAX_BORROWABLE, collateral, n, current_debt)
        return value

    async def max_borrowable_batch(
        self, collateral: int, ns: Sequence[int], current_debt: int = 0
    ) -> List[int]:
        results = await self.client.call_batch(
            self.address, MAX_BORROWABLE, [(collateral, n, current_debt) for n in ns]
        )
        return [value for (value,) in results]

    async def min_collateral(self, debt: int, n: int) -> int:
        (value,) = await self.client.call(self.address, MIN_COLLATERAL, debt, n)
        return value

    async def calculate_debt_n1(self, collateral: int, debt: int, n: int) -> int:
        (value,) = await self.client.call(self.address, CALCULATE_DEBT_N1, collateral, debt, n)
        return value

    async def calculate_debt_n1_batch(
        self, collateral: int, debt: int, ns: Sequence[int]
    ) -> List[int]:
        results = await self.client.call_batch(
            self.address, CALCULATE_DEBT_N1, [(collateral, debt, n) for n in ns]
        )
        return [value for (value,) in results]

    async def health_calculator(
        self, user: str, d_collateral: int, d_debt: int, full: bool, n: int
    ) -> int:
        (value,) = await self.client.call(
            self.address, HEALTH_CALCULATOR, to_checksum_address(user), d_collateral, d_debt, full, n
        )
        return value

    async def loan_discount(self) -> int:
        (value,) = await self.client.call(self.address, LOAN_DISCOUNT)
        return value

    async def liquidation_discount(self) -> int:
        (value,) = await self.client.call(self.address, LIQUIDATION_DISCOUNT)
        return value


# ---------------------------------------------------------------------------
# AMM
# ---------------------------------------------------------------------------

PRICE_ORACLE = ContractFunction("price_oracle()", ["uint256"])
GET_BASE_PRICE = ContractFunction("get_base_price()", ["uint256"])
AMPLIFICATION = ContractFunction("A()", ["uint256"])
P_ORACLE_UP = ContractFunction("p_oracle_up(int256)", ["uint256"])
P_ORACLE_DOWN = ContractFunction("p_oracle_down(int256)", ["uint256"])
READ_USER_TICK_NUMBERS = ContractFunction("read_user_tick_numbers(address)", ["int256[2]"])


class RpcAmm(AmmReader):
    def __init__(self, client: JsonRpcClient, address: str) -> None:
        self.client = client
        self.address = to_checksum_address(address)

    async def oracle_price(self) -> int:
        (value,) = await self.client.call(self.address, PRICE_ORACLE)
        return value

    async def base_price(self) -> int:
        (value,) = await self.client.call(self.address, GET_BASE_PRICE)
        return value

    async def amplification(self) -> int:
        (value,) = await self.client.call(self.address, AMPLIFICATION)
        return value

    async def band_edge_prices(self, n2: int, n1: int) -> Tuple[int, int]:
        (low,), (high,) = await asyncio.gather(
            self.client.call(self.address, P_ORACLE_DOWN, n2),
            self.client.call(self.address, P_ORACLE_UP, n1),
        )
        return low, high

    async def user_bands(self, user: str) -> Tuple[int, int]:
        (ticks,) = await self.client.call(self.address, READ_USER_TICK_NUMBERS, to_checksum_address(user))
        return ticks[0], ticks[1]


# ---------------------------------------------------------------------------
# Leverage zap
# ---------------------------------------------------------------------------

ZAP_MAX_BORROWABLE = ContractFunction(
    "max_borrowable(address,uint256,uint256,uint256,uint256)", ["uint256"]
)


class RpcLeverageZap(LeverageZapReader):
    def __init__(self, client: JsonRpcClient, address: str) -> None:
        self.client = client
        self.address = to_checksum_address(address)

    async def max_borrowable(
        self,
        controller: str,
        user_collateral: int,
        leverage_collateral: int,
        n: int,
        p_avg: int,
    ) -> int:
        (value,) = await self.client.call(
            self.address,
            ZAP_MAX_BORROWABLE,
            to_checksum_address(controller),
            user_collateral,
            leverage_collateral,
            n,
            p_avg,
        )
        return value

    async def max_borrowable_batch(
        self,
        controller: str,
        user_collateral: int,
        leverage_collateral: Sequence[int],
        ns: Sequence[int],
        p_avg: int,
    ) -> List[int]:
        controller = to_checksum_address(controller)
        results = await self.client.call_batch(
            self.address,
            ZAP_MAX_BORROWABLE,
            [
                (controller, user_collateral, lev, n, p_avg)
                for lev, n in zip(leverage_collateral, ns)
            ],
        )
        return [value for (value,) in results]
