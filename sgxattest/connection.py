"""Wasm service requests: parsing, parameter hashing and response framing."""

from __future__ import annotations

import enum
import hashlib
import json
import sys
from dataclasses import dataclass
from typing import Any, BinaryIO, Union

from .codec import _read_exact

_U64_LIMIT = 1 << 64


class EnclaveErrorKind(enum.Enum):
    """Reasons the enclave can fail."""

    FAILED_TO_FETCH_SHARED_KEY = "FailedToFetchSharedKey"
    GENERATED_BAD_SHARED_KEY = "GeneratedBadSharedKey"
    EGETKEY_FAILED = "EGetKeyFailed"
    FAILED_TO_GENERATE_TLS_KEY = "FailedToGenerateTlsKey"
    FAILED_TO_SEAL = "FailedToSeal"
    FAILED_TO_UNSEAL = "FailedToUnseal"
    FAILED_TO_BUILD_TLS_CONFIG = "FailedToBuildTlsConfig"
    TLS_SERVER_ERROR = "TlsServerError"
    RUNNER_CONNECTION_FAILED = "RunnerConnectionFailed"
    MAX_QUOTE_SIZE_EXCEEDED = "MaxQuoteSizeExceeded"


class EnclaveError(Exception):
    """An enclave failure of a given kind."""

    def __init__(self, kind: EnclaveErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


def _optional(data: dict, key: str, default: Any, kind: type, what: str) -> Any:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise ValueError(f"invalid request: `{key}` must be {what}")
    return value


@dataclass(frozen=True)
class ServiceRequest:
    """A client request to run a wasm module."""

    hash: str
    fuel: int
    decrypt: bool = False
    function: str = "main"
    input: str = ""

    @classmethod
    def from_json(cls, payload: Union[str, bytes], max_fuel_limit: int) -> "ServiceRequest":
        """Decode a request; fuel defaults to, and may not exceed, ``max_fuel_limit``."""
        try:
            data = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid request: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("invalid request: expected a JSON object")
        if "hash" not in data:
            raise ValueError("invalid request: missing field `hash`")
        hash_ = data["hash"]
        if not isinstance(hash_, str):
            raise ValueError("invalid request: `hash` must be a string")

        fuel = _optional(data, "fuel", max_fuel_limit, int, "an unsigned integer")
        if not 0 <= fuel < _U64_LIMIT:
            raise ValueError("invalid request: `fuel` must be an unsigned 64 bit integer")
        if fuel > max_fuel_limit:
            raise ValueError(
                f"invalid request: requested fuel limit greater than maximum ({max_fuel_limit})"
            )
        return cls(
            hash=hash_,
            fuel=fuel,
            decrypt=_optional(data, "decrypt", False, bool, "a boolean"),
            function=_optional(data, "function", "main", str, "a string"),
            input=_optional(data, "input", "", str, "a string"),
        )

    def hash_parameters(self) -> bytes:
        """SHA-256 over the domain separated request parameters."""
        function = self.function.encode("utf-8")
        data = self.input.encode("utf-8")
        hasher = hashlib.sha256()
        hasher.update(b"MODULE_HASH")
        hasher.update(self.hash.encode("utf-8"))
        hasher.update(b"MODULE_DECRYPT")
        hasher.update(bytes([1 if self.decrypt else 0]))
        hasher.update(b"FUEL_LIMIT")
        hasher.update(self.fuel.to_bytes(8, "big"))
        hasher.update(b"FUNCTION_NAME")
        hasher.update(bytes([len(function) & 0xFF]))
        hasher.update(function)
        hasher.update(b"INPUT_DATA")
        hasher.update(len(data).to_bytes(8, "big"))
        hasher.update(data)
        return hasher.digest()


def response_digest(input_hash: bytes, fuel_used: int, output_hash: bytes) -> bytes:
    """SHA-256 digest that the shared key signs for a response."""
    hasher = hashlib.sha256()
    hasher.update(b"INPUT_HASH")
    hasher.update(bytes(input_hash))
    hasher.update(b"FUEL_USED")
    hasher.update(fuel_used.to_bytes(8, "big"))
    hasher.update(b"OUTPUT_HASH")
    hasher.update(bytes(output_hash))
    return hasher.digest()


def read_request(reader: BinaryIO, max_input_size: int, max_fuel_limit: int) -> ServiceRequest:
    """Read a length delimited JSON request from ``reader``."""
    length = int.from_bytes(_read_exact(reader, 4), "big")
    if length >= max_input_size:
        raise ValueError("input too large")
    payload = _read_exact(reader, length)
    return ServiceRequest.from_json(payload, max_fuel_limit)


def write_frame(writer: BinaryIO, payload: bytes) -> None:
    """Write ``payload`` prefixed with its big-endian 32 bit length."""
    payload = bytes(payload)
    if len(payload) >= 1 << 32:
        raise ValueError("frame too large")
    writer.write(len(payload).to_bytes(4, "big"))
    writer.write(payload)
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def write_error(writer: BinaryIO, message: object) -> None:
    """Report an error to stderr and send it to the client as a frame."""
    error = f"Error: {message}"
    print(f"Runtime error: {error}", file=sys.stderr)
    write_frame(writer, error.encode("utf-8"))