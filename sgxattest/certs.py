"""Certificate helpers: validity windows, PEM chains, CRLs and byte reading."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

Timestamp = Union[datetime, int, float]


class VerificationError(Exception):
    """Raised when attestation material fails verification."""


def _as_utc(timestamp: Timestamp) -> datetime:
    """Normalise a datetime or a Unix timestamp to an aware UTC datetime."""
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc)
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class ByteReader:
    """Consumes a byte string from the front."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int) -> bytes:
        """Remove and return the next ``size`` bytes."""
        if size < 0 or size > len(self):
            raise ValueError("buffer underflow")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def u16(self) -> int:
        """Remove and return a little-endian 16 bit integer."""
        return int.from_bytes(self.take(2), "little")

    def u32(self) -> int:
        """Remove and return a little-endian 32 bit integer."""
        return int.from_bytes(self.take(4), "little")

    def rest(self) -> bytes:
        """Remove and return everything that is left."""
        return self.take(len(self))


def cert_valid_at(cert: x509.Certificate, timestamp: Timestamp) -> bool:
    """True if ``timestamp`` lies strictly inside the certificate's validity window."""
    moment = _as_utc(timestamp)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    return not (moment <= not_before or not_after <= moment)


def crl_valid_at(crl: x509.CertificateRevocationList, timestamp: Timestamp) -> bool:
    """True if the CRL was issued before ``timestamp`` and is not yet due for update."""
    moment = _as_utc(timestamp)
    next_update = crl.next_update_utc
    if next_update is not None and next_update <= moment:
        return False
    return crl.last_update_utc < moment


def chain_valid_at(chain: Iterable[x509.Certificate], timestamp: Timestamp) -> bool:
    """True if every certificate in the chain is valid at ``timestamp``."""
    return all(cert_valid_at(cert, timestamp) for cert in chain)


def _to_bytes(data: Union[str, bytes]) -> bytes:
    return data.encode() if isinstance(data, str) else bytes(data)


def load_pem_chain(data: Union[str, bytes]) -> list[x509.Certificate]:
    """Parse a sequence of concatenated PEM certificates."""
    raw = _to_bytes(data)
    if not raw.strip():
        return []
    return list(x509.load_pem_x509_certificates(raw))


def dump_pem_chain(chain: Iterable[x509.Certificate]) -> str:
    """Encode certificates as concatenated PEM blocks."""
    return "".join(
        cert.public_bytes(serialization.Encoding.PEM).decode() for cert in chain
    )


def load_pem_crl(text: Union[str, bytes]) -> x509.CertificateRevocationList:
    """Parse a PEM encoded certificate revocation list."""
    return x509.load_pem_x509_crl(_to_bytes(text))


def dump_pem_crl(crl: x509.CertificateRevocationList) -> str:
    """Encode a certificate revocation list as an ``X509 CRL`` PEM block."""
    return crl.public_bytes(serialization.Encoding.PEM).decode()