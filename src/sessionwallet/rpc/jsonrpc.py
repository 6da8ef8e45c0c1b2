"""EVM JSON-RPC endpoint over httpx."""

import logging
from typing import Any, Optional

import httpx

from sessionwallet.exceptions import RpcResponseError, TransportError
from sessionwallet.rpc.base import LedgerEndpoint, TransactionInfo, TransactionReceipt

logger = logging.getLogger(__name__)


def _parse_quantity(value: Any, field: str) -> int:
    """Decode a hex quantity such as ``0x1a``."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{field} is not a hex quantity: {value!r}")
    return int(value, 16)


class JsonRpcEndpoint(LedgerEndpoint):
    """Ledger endpoint speaking Ethereum JSON-RPC over HTTP.

    Each call opens a short-lived ``httpx.AsyncClient``; ``transport`` may be
    supplied to route requests elsewhere (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name or self._display_name(url))
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    @staticmethod
    def _display_name(url: str) -> str:
        # Drop path segments that commonly carry API keys
        parsed = httpx.URL(url)
        return parsed.host or url

    async def _call(self, method: str, params: list, timeout: Optional[float] = None) -> Any:
        """Perform one JSON-RPC request and return its ``result``."""
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=body)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} timed out: {e!r}", endpoint=self.name) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e!r}", endpoint=self.name) from e

        if response.status_code != 200:
            raise TransportError(
                f"{method} returned HTTP {response.status_code}", endpoint=self.name
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"{method} returned malformed JSON", endpoint=self.name) from e

        if not isinstance(data, dict):
            raise TransportError(f"{method} returned malformed response", endpoint=self.name)

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RpcResponseError(error.get("code"), str(error.get("message", "")), endpoint=self.name)
            raise RpcResponseError(None, str(error), endpoint=self.name)

        if "result" not in data:
            raise TransportError(f"{method} response has no result", endpoint=self.name)

        return data["result"]

    async def _call_quantity(self, method: str, params: list, timeout: Optional[float] = None) -> int:
        result = await self._call(method, params, timeout)
        try:
            return _parse_quantity(result, method)
        except ValueError as e:
            raise TransportError(f"{method} returned malformed quantity: {e}", endpoint=self.name) from e

    async def get_balance(self, address: str, timeout: Optional[float] = None) -> int:
        return await self._call_quantity("eth_getBalance", [address, "latest"], timeout)

    async def get_gas_price(self, timeout: Optional[float] = None) -> int:
        return await self._call_quantity("eth_gasPrice", [], timeout)

    async def get_block_number(self, timeout: Optional[float] = None) -> int:
        return await self._call_quantity("eth_blockNumber", [], timeout)

    async def get_transaction_count(self, address: str, timeout: Optional[float] = None) -> int:
        return await self._call_quantity("eth_getTransactionCount", [address, "pending"], timeout)

    async def send_raw_transaction(self, raw_tx: str, timeout: Optional[float] = None) -> str:
        if not raw_tx.startswith("0x"):
            raw_tx = f"0x{raw_tx}"
        result = await self._call("eth_sendRawTransaction", [raw_tx], timeout)
        if not isinstance(result, str) or not result:
            raise TransportError("eth_sendRawTransaction returned no hash", endpoint=self.name)
        return result

    async def get_transaction_by_hash(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionInfo]:
        result = await self._call("eth_getTransactionByHash", [tx_hash], timeout)
        if result is None:
            return None
        try:
            block = result.get("blockNumber")
            return TransactionInfo(
                tx_hash=result.get("hash", tx_hash),
                block_number=_parse_quantity(block, "blockNumber") if block is not None else None,
            )
        except (AttributeError, ValueError) as e:
            raise TransportError(f"malformed transaction for {tx_hash}: {e}", endpoint=self.name) from e

    async def get_transaction_receipt(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> Optional[TransactionReceipt]:
        result = await self._call("eth_getTransactionReceipt", [tx_hash], timeout)
        if result is None:
            return None
        try:
            block = result.get("blockNumber")
            return TransactionReceipt(
                tx_hash=result.get("transactionHash", tx_hash),
                status=_parse_quantity(result.get("status", "0x0"), "status"),
                gas_used=_parse_quantity(result.get("gasUsed", "0x0"), "gasUsed"),
                effective_gas_price=_parse_quantity(
                    result.get("effectiveGasPrice", "0x0"), "effectiveGasPrice"
                ),
                block_number=_parse_quantity(block, "blockNumber") if block is not None else None,
            )
        except (AttributeError, ValueError) as e:
            raise TransportError(f"malformed receipt for {tx_hash}: {e}", endpoint=self.name) from e
