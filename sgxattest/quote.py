"""SGX ECDSA quotes (version 3)."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Union

from cryptography import x509

from .certs import ByteReader, VerificationError, load_pem_chain
from .report import REPORT_BODY_SIZE, SgxReportBody, parse_report_body
from .sgx_x509 import SgxPckExtension, is_pck_ext, parse_pck_extension
from .tcb_info import _der_signature

QUOTE_V3 = 3
ATTESTATION_ECDSA_P256 = 2
CERTIFICATION_PCK_CERT_CHAIN = 5

_HEADER = struct.Struct("<HH4sHH16s20s")
QUOTE_BODY_SIZE = _HEADER.size + REPORT_BODY_SIZE
_SIGNATURE_HEADER_SIZE = 64 + 64 + REPORT_BODY_SIZE + 64 + 2


@dataclass(frozen=True)
class SgxQuoteBody:
    """Quote header followed by the enclave report body."""

    version: int
    sign_type: int
    reserved: bytes
    qe_svn: int
    pce_svn: int
    qe_vendor_id: bytes
    user_data: bytes
    report_body: SgxReportBody

    def to_bytes(self) -> bytes:
        """Encode the body in its little-endian wire layout (the signed data)."""
        header = _HEADER.pack(
            self.version,
            self.sign_type,
            self.reserved,
            self.qe_svn,
            self.pce_svn,
            self.qe_vendor_id,
            self.user_data,
        )
        return header + self.report_body.to_bytes()


def parse_quote_body(data: bytes) -> SgxQuoteBody:
    """Decode a quote body, accepting only version 3 ECDSA P-256 quotes."""
    data = bytes(data)
    if len(data) != QUOTE_BODY_SIZE:
        raise ValueError(f"quote body must be {QUOTE_BODY_SIZE} bytes, got {len(data)}")
    version, sign_type, reserved, qe_svn, pce_svn, vendor, user = _HEADER.unpack(
        data[: _HEADER.size]
    )
    if version != QUOTE_V3:
        raise ValueError(f"unsupported SGX quote version: {version}")
    if sign_type != ATTESTATION_ECDSA_P256:
        raise ValueError(f"unsupported SGX attestation algorithm: {sign_type}")
    return SgxQuoteBody(
        version=version,
        sign_type=sign_type,
        reserved=reserved,
        qe_svn=qe_svn,
        pce_svn=pce_svn,
        qe_vendor_id=vendor,
        user_data=user,
        report_body=parse_report_body(data[_HEADER.size:]),
    )


@dataclass(frozen=True)
class SgxQuoteSupport:
    """Quote signature data: signatures, QE report and PCK certificate chain."""

    isv_signature: bytes
    attest_pub_key: bytes
    qe_report_body: SgxReportBody
    qe_report_signature: bytes
    auth_data: bytes
    pck_cert_chain: tuple[x509.Certificate, ...]
    pck_extension: SgxPckExtension

    def verify_qe_report(self) -> None:
        """Check the QE report data is SHA-256(attest key || auth data) padded with zeros."""
        digest = hashlib.sha256(self.attest_pub_key + self.auth_data).digest()
        report_data = self.qe_report_body.sgx_report_data_bytes
        if report_data[: len(digest)] != digest:
            raise VerificationError(
                "Quoting enclave report should be hash of attestation key and auth data"
            )
        if report_data[len(digest):] != bytes(32):
            raise VerificationError("Quoting enclave report should be zero padded")


def _checked_signature(raw: bytes, name: str) -> bytes:
    try:
        _der_signature(raw)
    except ValueError as exc:
        raise ValueError(f"{name}: {exc}") from exc
    return raw


def read_quote_support(reader: ByteReader) -> SgxQuoteSupport:
    """Read the quote signature data from ``reader``, advancing it."""
    if len(reader) < _SIGNATURE_HEADER_SIZE:
        raise ValueError("incorrect buffer size")
    isv_signature = reader.take(64)
    attest_pub_key = reader.take(64)
    qe_report_body = parse_report_body(reader.take(REPORT_BODY_SIZE))
    qe_report_signature = reader.take(64)
    auth_data_size = reader.u16()

    if len(reader) < auth_data_size:
        raise ValueError("buffer underflow")
    auth_data = reader.take(auth_data_size)
    if len(reader) < 6:
        raise ValueError("buffer underflow")
    cert_key_type = reader.u16()
    cert_data_size = reader.u32()
    if cert_key_type != CERTIFICATION_PCK_CERT_CHAIN:
        raise ValueError("unsupported certification key type")
    if len(reader) < cert_data_size:
        raise ValueError("remaining data does not match expected size")

    cert_data = reader.take(cert_data_size)
    if cert_data.endswith(b"\x00"):
        cert_data = cert_data[:-1]
    try:
        chain = load_pem_chain(cert_data)
    except ValueError as exc:
        raise ValueError("CertChain") from exc
    if not chain:
        raise ValueError("CertChain")

    extension = next((ext for ext in chain[0].extensions if is_pck_ext(ext.oid)), None)
    if extension is None:
        raise ValueError("PCK certificate is missing SGX extension")
    try:
        pck_extension = parse_pck_extension(extension.value.value)
    except ValueError as exc:
        raise ValueError(f"SgxPckExtension: {exc}") from exc

    return SgxQuoteSupport(
        isv_signature=_checked_signature(isv_signature, "isv_signature"),
        attest_pub_key=attest_pub_key,
        qe_report_body=qe_report_body,
        qe_report_signature=_checked_signature(qe_report_signature, "qe_report_signature"),
        auth_data=auth_data,
        pck_cert_chain=tuple(chain),
        pck_extension=pck_extension,
    )


@dataclass(frozen=True)
class SgxQuote:
    """A parsed quote: the signed body and its supporting signature data."""

    quote_body: SgxQuoteBody
    support: SgxQuoteSupport


def read_quote(data: Union[bytes, ByteReader]) -> SgxQuote:
    """Read a quote from bytes or from a reader, which is advanced past it."""
    reader = data if isinstance(data, ByteReader) else ByteReader(data)
    if len(reader) < QUOTE_BODY_SIZE:
        raise ValueError("incorrect buffer size")
    body_bytes = reader.take(QUOTE_BODY_SIZE)
    if int.from_bytes(body_bytes[:2], "little") != QUOTE_V3:
        raise ValueError("unsupported quote version")
    quote_body = parse_quote_body(body_bytes)

    if len(reader) < 4:
        raise ValueError("underflow reading signature length")
    signature_len = reader.u32()
    if len(reader) < signature_len:
        raise ValueError("underflow reading signature")
    return SgxQuote(quote_body=quote_body, support=read_quote_support(reader))