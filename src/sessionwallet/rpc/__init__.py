"""Remote ledger access: endpoint interface, JSON-RPC client, fallback pool."""

from sessionwallet.rpc.base import LedgerEndpoint, TransactionInfo, TransactionReceipt
from sessionwallet.rpc.jsonrpc import JsonRpcEndpoint
from sessionwallet.rpc.pool import EndpointPool, call_with_timeout

__all__ = [
    "LedgerEndpoint",
    "TransactionInfo",
    "TransactionReceipt",
    "JsonRpcEndpoint",
    "EndpointPool",
    "call_with_timeout",
]
