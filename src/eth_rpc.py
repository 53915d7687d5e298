"""
Ethereum JSON-RPC access for read-only contract calls.

Only eth_call is needed: the profile registry is queried with view calls
and nothing is ever signed or sent as a transaction.
"""

import itertools
import logging
import os
import threading
from collections.abc import Callable
from typing import Any

import requests
from eth_utils import is_hex_address, to_checksum_address
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RPC_ENDPOINT = os.getenv("TXPOOL_IDENTITY_RPC_ENDPOINT", "http://localhost:8545")

JSONRPC_VERSION = "2.0"
DEFAULT_BLOCK_TAG = "latest"

# Seconds
DEFAULT_CALL_TIMEOUT = 0.5

# Connection pool sizing for the shared session
POOL_CONNECTIONS = 4
POOL_MAXSIZE = 16


# =============================================================================
# Errors
# =============================================================================


class RpcError(Exception):
    """Base class for JSON-RPC failures."""


class RpcTransportError(RpcError):
    """The node could not be reached, timed out, or answered with an HTTP error."""


class RpcResponseError(RpcError):
    """The node answered, but with an error object or a malformed envelope."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


# =============================================================================
# Addresses
# =============================================================================


def canonical_address(address: str | bytes) -> str:
    """
    Canonicalize an account address to its EIP-55 checksummed form.

    Accepts 20 raw bytes or 40 hex digits in any case, with or without the
    0x prefix. Mixed-case input is not checked against its checksum.

    Raises:
        ValueError: If the value is not a 20-byte address
    """
    if isinstance(address, (bytes, bytearray)):
        if len(address) != 20:
            raise ValueError(f"Address must be 20 bytes, got {len(address)}")
        return to_checksum_address(bytes(address))

    if not isinstance(address, str):
        raise ValueError(f"Unsupported address type: {type(address).__name__}")

    value = address.strip().lower()
    if not value.startswith("0x"):
        value = "0x" + value
    if not is_hex_address(value):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(value)


# =============================================================================
# Client
# =============================================================================


class EthRpcClient:
    """
    Minimal JSON-RPC 2.0 client for an Ethereum node.

    A single requests.Session is shared between threads; urllib3 pools the
    connections. Retries are left to the caller: the identity refresh loop
    polls again on its next tick anyway.
    """

    def __init__(self, endpoint: str = DEFAULT_RPC_ENDPOINT, verify_ssl: bool = True):
        self.endpoint = endpoint
        self.verify_ssl = verify_ssl
        self._ids = itertools.count(1)
        self.session = self._setup_session()

    def _setup_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=POOL_CONNECTIONS, pool_maxsize=POOL_MAXSIZE, max_retries=0
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )
        return session

    def _request(self, method: str, params: list[Any], timeout: float) -> Any:
        """Send one JSON-RPC request and return its "result" member."""
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                timeout=(timeout, timeout),
                verify=self.verify_ssl,
            )
        except requests.exceptions.Timeout as e:
            raise RpcTransportError(f"{method} timed out after {timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise RpcTransportError(f"Connection error: {e!s}") from e
        except requests.exceptions.RequestException as e:
            raise RpcTransportError(str(e)) from e

        if not response.ok:
            raise RpcTransportError(f"HTTP {response.status_code} from {self.endpoint}")

        try:
            body = response.json()
        except ValueError as e:
            raise RpcResponseError("Response is not valid JSON") from e

        if not isinstance(body, dict):
            raise RpcResponseError("Response is not a JSON-RPC object")

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcResponseError(str(error.get("message", "unknown error")), error.get("code"))
            raise RpcResponseError(str(error))

        if "result" not in body:
            raise RpcResponseError("Response has neither result nor error")

        return body["result"]

    def call_contract(
        self, to: str, data: bytes, timeout: float = DEFAULT_CALL_TIMEOUT
    ) -> bytes:
        """
        Execute a read-only call against a contract.

        Args:
            to: Contract address (0x-prefixed hex)
            data: ABI-encoded calldata
            timeout: Connect and read timeout in seconds

        Returns:
            Raw return data of the call

        Raises:
            RpcTransportError: Node unreachable, timeout or HTTP error
            RpcResponseError: JSON-RPC error or malformed result
        """
        call = {"to": to, "data": "0x" + data.hex()}
        result = self._request("eth_call", [call, DEFAULT_BLOCK_TAG], timeout)

        if not isinstance(result, str) or not result.startswith("0x"):
            raise RpcResponseError(f"Unexpected eth_call result: {result!r}")

        try:
            return bytes.fromhex(result[2:])
        except ValueError as e:
            raise RpcResponseError(f"eth_call result is not hex: {result!r}") from e

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    def __enter__(self) -> "EthRpcClient":
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> bool:
        self.close()
        return False


# =============================================================================
# Mock Client for Testing
# =============================================================================


class MockEthClient(EthRpcClient):
    """
    In-process stand-in for a node, for tests and offline runs.

    Calls are answered from a handler callable, then from canned
    per-calldata responses, then from the default response. A response that
    is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        handler: Callable[[str, bytes], bytes] | None = None,
        default: bytes | Exception | None = None,
    ):
        super().__init__(endpoint="http://mock:8545", verify_ssl=False)
        self.handler = handler
        self.default = default if default is not None else RpcTransportError("no response configured")
        self._responses: dict[tuple[str, bytes], bytes | Exception] = {}
        self._calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def set_response(self, to: str, data: bytes, response: bytes | Exception) -> None:
        """Answer calls to `to` with calldata `data` with `response`."""
        with self._lock:
            self._responses[(to.lower(), data)] = response

    def call_contract(
        self, to: str, data: bytes, timeout: float = DEFAULT_CALL_TIMEOUT
    ) -> bytes:
        with self._lock:
            self._calls.append({"to": to, "data": data, "timeout": timeout})
            response = self._responses.get((to.lower(), data), self.default)
            handler = self.handler

        if handler is not None:
            return handler(to, data)

        if isinstance(response, Exception):
            raise response
        return response

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self._calls)

    def get_calls(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._calls)
