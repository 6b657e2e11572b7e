"""
Plain JSON-RPC client for node queries that need no metadata.

Substrate nodes serve HTTP JSON-RPC on the same port as websockets, so a
ws:// endpoint is rewritten to http:// here.
"""

from typing import Any

import httpx

from .errors import NodeRpcError


def http_url(endpoint: str) -> str:
    """ws://host:9944 -> http://host:9944, wss:// -> https://."""
    if endpoint.startswith("wss://"):
        return "https://" + endpoint[len("wss://"):]
    if endpoint.startswith("ws://"):
        return "http://" + endpoint[len("ws://"):]
    return endpoint


class NodeRpc:
    """Sync JSON-RPC client for block headers and the transaction pool."""

    def __init__(self, endpoint: str, timeout: float = 10.0):
        self.url = http_url(endpoint)
        self.client = httpx.Client(timeout=timeout)
        self._request_id = 0

    def _call(self, method: str, params: list[Any] | None = None) -> Any:
        """Make RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NodeRpcError(-1, f"{method}: {e}") from e

        if result.get("error"):
            error = result["error"]
            raise NodeRpcError(error.get("code", -1), error.get("message", "Unknown error"))

        return result.get("result")

    def get_block_number(self) -> int:
        """Number of the best block."""
        header = self._call("chain_getHeader")
        if not header or "number" not in header:
            raise NodeRpcError(-1, "chain_getHeader returned no header")
        return int(header["number"], 16)

    def pending_extrinsics(self) -> list[str]:
        """Hex-encoded extrinsics currently in the node's pool."""
        return self._call("author_pendingExtrinsics") or []

    def close(self) -> None:
        self.client.close()
