"""Adapters against canned JSON-RPC and quote API responses; nothing leaves the process."""

from decimal import Decimal
from unittest.mock import patch
from urllib import error

import pytest
from eth_abi import encode
from eth_utils import encode_hex

from llamalev.adapters import odos, rpc
from llamalev.adapters.odos import NATIVE_TOKEN, OdosQuoteSource
from llamalev.adapters.rpc import (
    AMPLIFICATION,
    JsonRpcClient,
    RpcAmm,
    RpcController,
    RpcLeverageZap,
)
from llamalev.config import ZERO_ADDRESS
from llamalev.errors import QuoteApiError, RpcError
from tests.conftest import AMM, BORROWED, COLLATERAL, CONTROLLER, USER, ZAP, run


def result(types, values):
    return encode_hex(encode(types, values))


class FakeNode:
    """Replaces ``rpc._post_json``; answers every eth_call with ``responder(data)``."""

    def __init__(self, responder):
        self.responder = responder
        self.payloads = []

    def __call__(self, url, payload, timeout=30):
        self.payloads.append(payload)
        if isinstance(payload, list):
            answers = [
                {"jsonrpc": "2.0", "id": item["id"], "result": self.responder(item["params"][0]["data"])}
                for item in payload
            ]
            return list(reversed(answers))
        return {"jsonrpc": "2.0", "id": 1, "result": self.responder(payload["params"][0]["data"])}


@pytest.fixture
def client():
    return JsonRpcClient("http://node")


class TestContractFunction:
    def test_selector(self):
        assert AMPLIFICATION.selector.hex() == "f446c1d0"
        assert AMPLIFICATION.input_types == []

    def test_encode_call(self):
        fn = rpc.MAX_BORROWABLE
        data = fn.encode_call(10, 4, 0)
        assert data[:4] == fn.selector
        assert len(data) == 4 + 3 * 32


class TestRpcReaders:
    def test_amplification(self, client):
        node = FakeNode(lambda data: result(["uint256"], [100]))
        with patch.object(rpc, "_post_json", node):
            assert run(RpcAmm(client, AMM).amplification()) == 100
        call = node.payloads[0]
        assert call["method"] == "eth_call"
        assert call["params"][0]["to"] == AMM
        assert call["params"][0]["data"] == "0xf446c1d0"

    def test_user_state(self, client):
        node = FakeNode(lambda data: result(["uint256[4]"], [[10, 1, 5, 4]]))
        with patch.object(rpc, "_post_json", node):
            state = run(RpcController(client, CONTROLLER).user_state(USER))
        assert (state.collateral, state.borrowed, state.debt, state.n) == (10, 1, 5, 4)
        assert state.in_liquidation

    def test_negative_band(self, client):
        with patch.object(rpc, "_post_json", FakeNode(lambda data: result(["int256"], [-7]))):
            assert run(RpcController(client, CONTROLLER).calculate_debt_n1(10, 5, 4)) == -7

    def test_user_bands(self, client):
        with patch.object(rpc, "_post_json", FakeNode(lambda data: result(["int256[2]"], [[3, -2]]))):
            assert run(RpcAmm(client, AMM).user_bands(USER)) == (3, -2)

    def test_batch_results_follow_request_order(self, client):
        def responder(data):
            n = int(data[-128:-64], 16)
            return result(["uint256"], [n * 1000])

        node = FakeNode(responder)
        with patch.object(rpc, "_post_json", node):
            values = run(RpcController(client, CONTROLLER).max_borrowable_batch(10, [4, 5, 6]))
        assert values == [4000, 5000, 6000]
        assert len(node.payloads) == 1
        assert [item["id"] for item in node.payloads[0]] == [0, 1, 2]

    def test_zap_batch(self, client):
        def responder(data):
            return result(["uint256"], [int(data[-128:-64], 16)])

        with patch.object(rpc, "_post_json", FakeNode(responder)):
            zap = RpcLeverageZap(client, ZAP)
            assert run(zap.max_borrowable_batch(CONTROLLER, 10, [0, 0], [4, 5], 10**18)) == [4, 5]

    def test_empty_batch_skips_request(self, client):
        node = FakeNode(lambda data: "0x")
        with patch.object(rpc, "_post_json", node):
            assert run(RpcController(client, CONTROLLER).calculate_debt_n1_batch(10, 5, [])) == []
        assert node.payloads == []

    def test_rpc_error(self, client):
        reverted = {"id": 1, "error": {"message": "execution reverted"}}
        with patch.object(rpc, "_post_json", return_value=reverted):
            with pytest.raises(RpcError, match="execution reverted"):
                run(RpcAmm(client, AMM).oracle_price())

    def test_batch_item_error(self, client):
        answers = [{"id": 0, "result": "0x"}, {"id": 1, "error": "reverted"}]
        with patch.object(rpc, "_post_json", return_value=answers):
            with pytest.raises(RpcError):
                run(RpcController(client, CONTROLLER).max_borrowable_batch(10, [4, 5]))


class TestOdosQuoteSource:
    @pytest.fixture
    def source(self):
        return OdosQuoteSource(caller=ZAP, chain_id=1, base_url="https://quotes.test/odos/")

    def test_quote(self, source):
        response = {
            "outAmounts": ["19950000000000000000"],
            "priceImpact": Decimal("0.25"),
            "pathId": "abc",
            "pathVizImage": "data:image/svg",
        }
        with patch.object(source, "_get_json", return_value=response) as get_json:
            quote = run(source.quote(BORROWED, NATIVE_TOKEN.lower(), 20 * 10**18, Decimal("0.1"), AMM, True))
        assert quote.output_amount == 19950000000000000000
        assert quote.price_impact == Decimal("0.25")
        assert quote.route_id == "abc"
        assert quote.route_image == "data:image/svg"
        path, query = get_json.call_args.args
        assert path == "quote"
        assert query["to_address"] == ZERO_ADDRESS
        assert query["amount"] == "20000000000000000000"
        assert query["pathVizImage"] == "true"
        assert source.base_url == "https://quotes.test/odos"

    def test_zero_amount(self, source):
        with patch.object(source, "_get_json") as get_json:
            assert run(source.quote(COLLATERAL, BORROWED, 0, Decimal("0.1"), AMM)).is_empty
        get_json.assert_not_called()

    def test_missing_path_is_empty(self, source):
        with patch.object(source, "_get_json", return_value={"outAmounts": ["0"], "pathId": None}):
            assert run(source.quote(COLLATERAL, BORROWED, 10, Decimal("0.1"), AMM)).is_empty

    def test_assemble(self, source):
        response = {"transaction": {"to": "0x" + "ab" * 20, "data": "0xdeadbeef"}}
        with patch.object(source, "_get_json", return_value=response):
            route = run(source.assemble("abc"))
        assert route.calldata == bytes.fromhex("deadbeef")
        assert route.router == "0x" + "ab" * 20

    def test_http_error(self, source):
        def urlopen(req, timeout=None):
            raise error.HTTPError(req.full_url, 503, "Service Unavailable", {}, None)

        with patch.object(odos.request, "urlopen", side_effect=urlopen):
            with pytest.raises(QuoteApiError, match="503"):
                run(source.quote(BORROWED, COLLATERAL, 10, Decimal("0.1"), AMM))
