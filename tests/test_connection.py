import io
import json
import struct

import pytest

from sgxattest.connection import (
    EnclaveError,
    EnclaveErrorKind,
    ServiceRequest,
    read_request,
    response_digest,
    write_error,
    write_frame,
)

MAX_FUEL = 1000
HASH = "ab" * 32


def _frame(payload: bytes) -> bytes:
    return struct.pack(">I", len(payload)) + payload


def test_from_json_defaults():
    req = ServiceRequest.from_json(json.dumps({"hash": HASH}), MAX_FUEL)
    assert req.hash == HASH
    assert req.fuel == MAX_FUEL
    assert req.decrypt is False
    assert req.function == "main"
    assert req.input == ""


def test_from_json_explicit_fields():
    payload = json.dumps(
        {"hash": HASH, "decrypt": True, "fuel": 10, "function": "run", "input": "data"}
    ).encode()
    req = ServiceRequest.from_json(payload, MAX_FUEL)
    assert req == ServiceRequest(hash=HASH, fuel=10, decrypt=True, function="run", input="data")


def test_fuel_above_limit_rejected():
    with pytest.raises(ValueError, match=r"greater than maximum \(1000\)"):
        ServiceRequest.from_json(json.dumps({"hash": HASH, "fuel": MAX_FUEL + 1}), MAX_FUEL)


def test_fuel_at_limit_accepted():
    req = ServiceRequest.from_json(json.dumps({"hash": HASH, "fuel": MAX_FUEL}), MAX_FUEL)
    assert req.fuel == MAX_FUEL


def test_invalid_requests():
    with pytest.raises(ValueError):
        ServiceRequest.from_json("{}", MAX_FUEL)
    with pytest.raises(ValueError):
        ServiceRequest.from_json("not json", MAX_FUEL)
    with pytest.raises(ValueError):
        ServiceRequest.from_json(json.dumps({"hash": HASH, "fuel": -1}), MAX_FUEL)
    with pytest.raises(ValueError):
        ServiceRequest.from_json(json.dumps({"hash": HASH, "decrypt": 1}), MAX_FUEL)


def test_hash_parameters_is_deterministic_digest():
    req = ServiceRequest(hash=HASH, fuel=5)
    digest = req.hash_parameters()
    assert len(digest) == 32
    assert digest == ServiceRequest(hash=HASH, fuel=5).hash_parameters()


@pytest.mark.parametrize(
    "other",
    [
        ServiceRequest(hash=HASH, fuel=6),
        ServiceRequest(hash=HASH, fuel=5, decrypt=True),
        ServiceRequest(hash=HASH, fuel=5, function="other"),
        ServiceRequest(hash=HASH, fuel=5, input="x"),
        ServiceRequest(hash="cd" * 32, fuel=5),
    ],
)
def test_hash_parameters_depends_on_every_field(other):
    assert ServiceRequest(hash=HASH, fuel=5).hash_parameters() != other.hash_parameters()


def test_hash_parameters_separates_function_and_input():
    a = ServiceRequest(hash=HASH, fuel=5, function="ab", input="c")
    b = ServiceRequest(hash=HASH, fuel=5, function="a", input="bc")
    assert a.hash_parameters() != b.hash_parameters()


def test_response_digest():
    first = response_digest(bytes(32), 7, bytes(32))
    assert len(first) == 32
    assert first == response_digest(bytes(32), 7, bytes(32))
    assert first != response_digest(bytes(32), 8, bytes(32))
    assert first != response_digest(bytes(32), 7, b"\x01" * 32)


def test_read_request_round_trip():
    payload = json.dumps({"hash": HASH, "input": "hello"}).encode()
    reader = io.BytesIO(_frame(payload))
    req = read_request(reader, max_input_size=len(payload) + 1, max_fuel_limit=MAX_FUEL)
    assert req.hash == HASH
    assert req.input == "hello"


def test_read_request_too_large():
    payload = json.dumps({"hash": HASH}).encode()
    with pytest.raises(ValueError, match="input too large"):
        read_request(io.BytesIO(_frame(payload)), len(payload), MAX_FUEL)


def test_read_request_truncated():
    with pytest.raises(EOFError):
        read_request(io.BytesIO(struct.pack(">I", 20) + b"{}"), 100, MAX_FUEL)


def test_write_frame():
    out = io.BytesIO()
    write_frame(out, b"hello")
    assert out.getvalue() == b"\x00\x00\x00\x05hello"


def test_write_error_frame():
    out = io.BytesIO()
    write_error(out, "boom")
    data = out.getvalue()
    body = data[4:]
    assert int.from_bytes(data[:4], "big") == len(body)
    assert body == b"Error: boom"


@pytest.mark.parametrize(
    "kind, text",
    [
        (EnclaveErrorKind.MAX_QUOTE_SIZE_EXCEEDED, "MaxQuoteSizeExceeded"),
        (EnclaveErrorKind.RUNNER_CONNECTION_FAILED, "RunnerConnectionFailed"),
    ],
)
def test_enclave_error_kind(kind, text):
    err = EnclaveError(kind)
    assert err.kind is kind
    assert str(err) == text