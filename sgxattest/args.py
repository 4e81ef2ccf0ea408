"""Command line arguments passed to the enclave by its runner."""

from __future__ import annotations

import argparse
import ipaddress
import re
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_HEX = re.compile(r"[0-9a-fA-F]*")


@dataclass(frozen=True)
class InitialNode:
    """Initial node: generate the shared key."""


@dataclass(frozen=True)
class SealedOnDisk:
    """Recover the shared key from its sealed encoding."""

    encoded_secret_key: bytes


@dataclass(frozen=True)
class FetchFromPeers:
    """Fetch the shared key from one of a list of peers."""

    peer_ips: tuple[str, ...]


SharedSecretMethod = Union[InitialNode, SealedOnDisk, FetchFromPeers]


@dataclass(frozen=True)
class TlsConfig:
    """TLS related configuration."""

    tls_key_size: int
    our_ip: IpAddress
    mtls_port: int
    tls_port: int


@dataclass(frozen=True)
class WasmConfig:
    """Wasm runtime related configuration."""

    max_blockstore_size: int
    max_fuel_limit: int
    max_input_size: int
    max_output_size: int
    max_concurrent_wasm_threads: int
    debug: bool = False


@dataclass(frozen=True)
class Arguments:
    """All program arguments."""

    shared_secret_method: SharedSecretMethod
    tls_config: TlsConfig
    wasm_config: WasmConfig


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ValueError(message)


def _unsigned(bits: int) -> Callable[[str], int]:
    def convert(text: str) -> int:
        try:
            value = int(text, 10)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{text!r} is not an unsigned integer") from None
        if not 0 <= value < 1 << bits:
            raise argparse.ArgumentTypeError(f"{text!r} is out of range")
        return value

    return convert


def _guarded(bits: int, check: Callable[[int], bool], message: str) -> Callable[[str], int]:
    parse = _unsigned(bits)

    def convert(text: str) -> int:
        value = parse(text)
        if not check(value):
            raise argparse.ArgumentTypeError(message)
        return value

    return convert


def _hex(text: str) -> bytes:
    if not _HEX.fullmatch(text) or len(text) % 2:
        raise argparse.ArgumentTypeError(f"{text!r} is not valid hex")
    return bytes.fromhex(text)


def _peer_list(text: str) -> tuple[str, ...]:
    peers = tuple(text.split(","))
    if not peers:
        raise argparse.ArgumentTypeError("must have at least one peer")
    return peers


def _ip(text: str) -> IpAddress:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{text!r} is not an IP address") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="enclave", allow_abbrev=False)

    method = parser.add_mutually_exclusive_group(required=True)
    method.add_argument("--initial-node", action="store_true", help="Initial node, generate the key")
    method.add_argument("--encoded-secret-key", type=_hex, help="Hex encoded sealed key")
    method.add_argument(
        "--peer-ips", type=_peer_list, help="Fetch the key from a list of possible peers"
    )

    parser.add_argument(
        "--tls-key-size",
        required=True,
        type=_guarded(64, lambda v: v >= 2048, "key must be at least 2048 bytes"),
        help="TLS key size",
    )
    parser.add_argument("--our-ip", required=True, type=_ip, help="Current node ip")
    parser.add_argument("--mtls-port", required=True, type=_unsigned(16),
                        help="MTLS port to listen on for incoming enclave requests")
    parser.add_argument("--tls-port", required=True, type=_unsigned(16),
                        help="TLS port to listen on for incoming public key requests")

    nonzero = (lambda v: v != 0)
    parser.add_argument(
        "--max-blockstore-size",
        required=True,
        type=_guarded(64, nonzero, "max blockstore size cannot be zero"),
        help="Maximum size of blockstore content",
    )
    parser.add_argument(
        "--max-fuel-limit",
        required=True,
        type=_guarded(64, nonzero, "max fuel limit cannot be zero"),
        help="Maximum fuel limit allowed to be set by the client",
    )
    parser.add_argument(
        "--max-input-size",
        required=True,
        type=_guarded(64, nonzero, "max input cannot be zero"),
        help="Maximum size of input parameter",
    )
    parser.add_argument(
        "--max-output-size",
        required=True,
        type=_guarded(64, nonzero, "max input cannot be zero"),
        help="Maximum size of wasm output",
    )
    parser.add_argument(
        "--max-concurrent-wasm-threads",
        required=True,
        type=_guarded(64, lambda v: v <= 128, "max wasm threads must be <= 128"),
        help="Maximum number of concurrent wasm threads",
    )
    parser.add_argument("--debug", action="store_true",
                        help="Print debug logs from wasm to stdout")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Arguments:
    """Parse the enclave arguments; raise ValueError on invalid input."""
    ns = _build_parser().parse_args(sys.argv[1:] if argv is None else list(argv))

    method: SharedSecretMethod
    if ns.initial_node:
        method = InitialNode()
    elif ns.encoded_secret_key is not None:
        method = SealedOnDisk(ns.encoded_secret_key)
    else:
        method = FetchFromPeers(ns.peer_ips)

    return Arguments(
        shared_secret_method=method,
        tls_config=TlsConfig(
            tls_key_size=ns.tls_key_size,
            our_ip=ns.our_ip,
            mtls_port=ns.mtls_port,
            tls_port=ns.tls_port,
        ),
        wasm_config=WasmConfig(
            max_blockstore_size=ns.max_blockstore_size,
            max_fuel_limit=ns.max_fuel_limit,
            max_input_size=ns.max_input_size,
            max_output_size=ns.max_output_size,
            max_concurrent_wasm_threads=ns.max_concurrent_wasm_threads,
            debug=ns.debug,
        ),
    )