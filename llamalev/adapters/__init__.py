from llamalev.adapters.odos import OdosQuoteSource
from llamalev.adapters.rpc import JsonRpcClient, RpcAmm, RpcController, RpcLeverageZap

__all__ = [
    "JsonRpcClient",
    "OdosQuoteSource",
    "RpcAmm",
    "RpcController",
    "RpcLeverageZap",
]
