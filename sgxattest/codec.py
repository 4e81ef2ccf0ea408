"""Framing of the key exchange messages sent between enclaves."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Union

# Size of the base58check encoded bip32 extended public and private keys.
XPUB_KEY_SIZE = 111
XPRV_KEY_SIZE = 111

_GET_KEY = 0x01
_SECRET_KEY = 0xFF
_PUBLIC_KEY = 0xFE
_KEY_NOT_FOUND = 0xFD


@dataclass(frozen=True)
class GetKey:
    """Request for the shared key."""


@dataclass(frozen=True)
class SecretKey:
    """Response carrying the extended private key."""

    key: bytes

    def __post_init__(self) -> None:
        if len(self.key) != XPRV_KEY_SIZE:
            raise ValueError(f"secret key must be {XPRV_KEY_SIZE} bytes")


@dataclass(frozen=True)
class PublicKey:
    """Response carrying the extended public key."""

    key: bytes

    def __post_init__(self) -> None:
        if len(self.key) != XPUB_KEY_SIZE:
            raise ValueError(f"public key must be {XPUB_KEY_SIZE} bytes")


@dataclass(frozen=True)
class KeyNotFound:
    """Response telling the peer that no key is available."""


Message = Union[GetKey, SecretKey, PublicKey, KeyNotFound]


def encode(message: Message) -> bytes:
    """Encode a message as its magic byte followed by any key bytes."""
    if isinstance(message, GetKey):
        return bytes([_GET_KEY])
    if isinstance(message, SecretKey):
        return bytes([_SECRET_KEY]) + message.key
    if isinstance(message, PublicKey):
        return bytes([_PUBLIC_KEY]) + message.key
    if isinstance(message, KeyNotFound):
        return bytes([_KEY_NOT_FOUND])
    raise TypeError(f"not a codec message: {message!r}")


def send(message: Message, writer: BinaryIO) -> None:
    """Write an encoded message to ``writer`` and flush it."""
    writer.write(encode(message))
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes, raising EOFError if the stream ends first."""
    buf = bytearray()
    while len(buf) < size:
        chunk = reader.read(size - len(buf))
        if not chunk:
            raise EOFError("failed to fill whole buffer")
        buf += chunk
    return bytes(buf)


def recv(reader: BinaryIO) -> Message:
    """Read one message from ``reader``."""
    magic = _read_exact(reader, 1)[0]
    if magic == _GET_KEY:
        return GetKey()
    if magic == _SECRET_KEY:
        return SecretKey(_read_exact(reader, XPRV_KEY_SIZE))
    if magic == _PUBLIC_KEY:
        return PublicKey(_read_exact(reader, XPUB_KEY_SIZE))
    if magic == _KEY_NOT_FOUND:
        return KeyNotFound()
    raise ValueError(f"Invalid magic byte: {magic}")