"""
Profile registry client.

Reads an account's identity level from the profile registry contract with a
read-only GetProfileLevel(address) call. The ABI is validated once, when the
client is created; afterwards every lookup either returns a level or raises
RegistryUnavailable.
"""

import json
import logging

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError as AbiDecodingError
from eth_abi.exceptions import EncodingError as AbiEncodingError
from eth_utils import function_signature_to_4byte_selector

from config import DEFAULT_REQUEST_TIMEOUT, ConfigurationError
from eth_rpc import EthRpcClient, RpcError, RpcTransportError, canonical_address
from identity_levels import IdentityLevel
from monitoring.metrics import metrics

logger = logging.getLogger(__name__)

GET_PROFILE_LEVEL = "GetProfileLevel"

GET_PROFILE_LEVEL_ABI = """[{
      "constant": true,
      "inputs": [
        {
          "name": "_owner",
          "type": "address"
        }
      ],
      "name": "GetProfileLevel",
      "outputs": [
        {
          "name": "",
          "type": "uint8"
        }
      ],
      "payable": false,
      "stateMutability": "view",
      "type": "function"
    }]"""

EXPECTED_INPUT_TYPES = ["address"]
EXPECTED_OUTPUT_TYPES = ["uint8"]


# =============================================================================
# Errors
# =============================================================================


class RegistryUnavailable(Exception):
    """A registry lookup failed. Callers fall back to IdentityLevel.UNKNOWN."""

    category = "unavailable"


class EncodingError(RegistryUnavailable):
    """The call could not be encoded."""

    category = "encoding_error"


class TransportError(RegistryUnavailable):
    """The call to the chain node failed or timed out."""

    category = "transport_error"


class DecodingError(RegistryUnavailable):
    """The returned bytes are not a single uint8."""

    category = "decoding_error"


# =============================================================================
# ABI
# =============================================================================


class ContractMethod:
    """A contract function parsed from its JSON ABI."""

    def __init__(self, name: str, input_types: list[str], output_types: list[str]):
        self.name = name
        self.input_types = input_types
        self.output_types = output_types
        self.signature = f"{name}({','.join(input_types)})"
        self.selector = function_signature_to_4byte_selector(self.signature)

    @classmethod
    def from_abi(cls, abi_json: str, name: str) -> "ContractMethod":
        """
        Find function `name` in a JSON ABI.

        Raises:
            ConfigurationError: If the ABI does not parse or lacks the function
        """
        try:
            entries = json.loads(abi_json)
        except ValueError as e:
            raise ConfigurationError(f"Failed to parse contract ABI: {e}") from e

        if not isinstance(entries, list):
            raise ConfigurationError("Contract ABI must be a JSON array")

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("type", "function") != "function" or entry.get("name") != name:
                continue
            try:
                input_types = [param["type"] for param in entry.get("inputs", [])]
                output_types = [param["type"] for param in entry.get("outputs", [])]
            except (KeyError, TypeError) as e:
                raise ConfigurationError(f"Malformed parameters for {name} in ABI") from e
            return cls(name, input_types, output_types)

        raise ConfigurationError(f"Failed to find {name} in parsed ABI")


# =============================================================================
# Client
# =============================================================================


class ProfileRegistryClient:
    """
    Stateless reader for the profile registry contract.

    Args:
        registry_address: Address of the profile registry contract
        rpc: Chain node access
        abi_json: JSON ABI containing GetProfileLevel
        timeout: Default round-trip timeout in seconds

    Raises:
        ConfigurationError: If the ABI or the registry address is invalid
    """

    def __init__(
        self,
        registry_address: str,
        rpc: EthRpcClient,
        abi_json: str = GET_PROFILE_LEVEL_ABI,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        method = ContractMethod.from_abi(abi_json, GET_PROFILE_LEVEL)
        if method.input_types != EXPECTED_INPUT_TYPES or method.output_types != EXPECTED_OUTPUT_TYPES:
            raise ConfigurationError(
                f"Unexpected {GET_PROFILE_LEVEL} signature: "
                f"{method.signature} -> ({','.join(method.output_types)})"
            )

        try:
            self.registry_address = canonical_address(registry_address)
        except ValueError as e:
            raise ConfigurationError(f"Invalid profile registry address: {e}") from e

        self.method = method
        self.rpc = rpc
        self.timeout = timeout

    def encode_call(self, address: str) -> bytes:
        """Build GetProfileLevel calldata for `address`."""
        try:
            return self.method.selector + encode(self.method.input_types, [address])
        except (AbiEncodingError, TypeError, ValueError) as e:
            raise EncodingError(f"Failed to encode {self.method.signature}: {e}") from e

    def decode_result(self, data: bytes) -> IdentityLevel:
        """Decode GetProfileLevel return data into an identity level."""
        try:
            (raw_level,) = decode(self.method.output_types, data)
        except (AbiDecodingError, TypeError, ValueError) as e:
            raise DecodingError(f"Failed to unpack {self.method.name} result: {e}") from e
        return IdentityLevel.from_value(raw_level)

    def lookup(self, address: str, timeout: float | None = None) -> IdentityLevel:
        """
        Query the registry for an account's identity level.

        Args:
            address: Canonical account address
            timeout: Round-trip timeout, the client default if None

        Returns:
            The account's identity level

        Raises:
            RegistryUnavailable: On any encoding, transport or decoding failure
        """
        timeout = self.timeout if timeout is None else timeout

        try:
            with metrics.timer("registry_lookup_duration_ms"):
                calldata = self.encode_call(address)
                try:
                    result = self.rpc.call_contract(self.registry_address, calldata, timeout)
                except RpcTransportError as e:
                    raise TransportError(f"Failed to call profile registry: {e}") from e
                except RpcError as e:
                    # An RPC error object (e.g. a revert) is still a transport-level failure
                    raise TransportError(f"Profile registry call rejected: {e}") from e
                level = self.decode_result(result)
        except RegistryUnavailable as e:
            metrics.increment("registry_lookups_total", labels={"result": e.category})
            logger.warning(
                "Profile level lookup failed",
                extra={"address": address, "error_type": e.category, "error": str(e)},
            )
            raise

        metrics.increment("registry_lookups_total", labels={"result": "ok"})
        logger.info(
            "Unpacked profile level",
            extra={"address": address, "identity_level": level.name},
        )
        return level
