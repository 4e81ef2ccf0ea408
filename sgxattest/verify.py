"""Remote attestation verification of SGX quotes."""

from __future__ import annotations

import functools
import uuid
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .certs import Timestamp, VerificationError, chain_valid_at, crl_valid_at
from .collateral import SgxCollateral
from .qe_identity import EnclaveType, QeTcbStatus
from .quote import SgxQuote
from .report import SgxReportBody
from .sgx_x509 import SgxPckExtension
from .tcb_info import TcbInfo, TcbLevel, TcbStatus, _der_signature, _ecdsa_verify
from .trust import TrustStore, verify_certificate, verify_crl

SECP256R1_OID_STRING = "1.2.840.10045.3.1.7"

INTEL_QE_VENDOR_ID = uuid.UUID("939a7233-f79c-4ca9-940a-0db3957f0607")

INTEL_ROOT_CA_PEM = """\
-----BEGIN PUBLIC KEY-----
MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAEC6nEwMDIYZOj/iPWsCzaEKi71OiO
SLRFhWGjbnBVJfVnkY4u3IjkDYYL0MxO4mqsyYjlBalTVYxFP2sJBK5zlA==
-----END PUBLIC KEY-----"""


@dataclass(frozen=True)
class TcbStanding:
    """Result standing: up to date, or trustable once the listed advisories are mitigated."""

    hardening_needed: bool = False
    advisory_ids: tuple[str, ...] = ()


@functools.lru_cache(maxsize=None)
def intel_root_key() -> ec.EllipticCurvePublicKey:
    """The Intel SGX root CA public key."""
    key = serialization.load_pem_public_key(INTEL_ROOT_CA_PEM.encode())
    assert isinstance(key, ec.EllipticCurvePublicKey)
    return key


def _ec_key(public_key: Any, what: str) -> ec.EllipticCurvePublicKey:
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise VerificationError(f"invalid {what}")
    return public_key


def _verify_raw(public_key: ec.EllipticCurvePublicKey, raw_sig: bytes, data: bytes) -> bool:
    try:
        der = _der_signature(raw_sig)
    except ValueError:
        return False
    return _ecdsa_verify(public_key, der, data)


def verify_remote_attestation(
    current_time: Timestamp,
    collateral: SgxCollateral,
    quote: SgxQuote,
    expected_mrenclave: bytes,
) -> tuple[TcbStanding, SgxReportBody]:
    """Verify a quote against its collateral; return the TCB standing and report body.

    ``current_time`` must come from a trusted source.
    """
    tcb_info = verify_integrity(current_time, collateral, quote)
    verify_quote_source(collateral, quote)
    verify_quote_signatures(quote)
    standing = verify_tcb_status(tcb_info, quote.support.pck_extension)
    actual = quote.quote_body.report_body.mrenclave
    if bytes(expected_mrenclave) != actual:
        raise VerificationError(
            f"invalid MRENCLAVE, expected {bytes(expected_mrenclave).hex()}, "
            f"but got {actual.hex()}"
        )
    return standing, quote.quote_body.report_body


def verify_integrity(
    current_time: Timestamp, collateral: SgxCollateral, quote: SgxQuote
) -> TcbInfo:
    """Verify the certificate chains and CRLs, returning the verified TCB info."""
    if not chain_valid_at(collateral.tcb_info_issuer_chain, current_time):
        raise VerificationError("Expired tcb info issuer chain")
    if not chain_valid_at(collateral.pck_crl_issuer_chain, current_time):
        raise VerificationError("Expired pck crl issuer chain")
    if not chain_valid_at(quote.support.pck_cert_chain, current_time):
        raise VerificationError("Expired quote support pck chain")

    if not collateral.tcb_info_issuer_chain:
        raise VerificationError("Tcb issuer chain is empty")
    root_ca = collateral.tcb_info_issuer_chain[-1]
    if root_ca.issuer != root_ca.subject:
        raise VerificationError("Root cert authority is not self signed")
    try:
        verify_certificate(intel_root_key(), root_ca)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify root ca certificate: {exc}") from exc

    store = TrustStore(current_time, [root_ca])
    try:
        store.push_unverified_crl(collateral.root_ca_crl)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify root ca crl: {exc}") from exc

    try:
        pck_issuer = store.verify_chain_leaf(collateral.pck_crl_issuer_chain)
    except VerificationError as exc:
        raise VerificationError(
            f"failed to verify pck crl issuer certificate chain: {exc}"
        ) from exc
    try:
        verify_crl(pck_issuer.pk, collateral.pck_crl)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify pck crl: {exc}") from exc
    if not crl_valid_at(collateral.pck_crl, current_time):
        raise VerificationError("Expired or future PCK CRL")
    store.push_trusted_crl(collateral.pck_crl)

    try:
        tcb_issuer = store.verify_chain_leaf(collateral.tcb_info_issuer_chain)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify tcb issuer chain: {exc}") from exc
    tcb_signer = _ec_key(tcb_issuer.pk, "tcb signer public key")
    try:
        tcb_info = collateral.tcb_info.verify(tcb_signer)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify tcb info signature: {exc}") from exc

    try:
        store.verify_chain_leaf(quote.support.pck_cert_chain)
    except VerificationError as exc:
        raise VerificationError(
            f"failed to verify quote support pck signing certificate chain: {exc}"
        ) from exc
    try:
        store.verify_chain_leaf(collateral.qe_identity_issuer_chain)
    except VerificationError as exc:
        raise VerificationError(
            f"failed to verify qe identity issuer certificate chain: {exc}"
        ) from exc
    return tcb_info


def verify_quote_source(collateral: SgxCollateral, quote: SgxQuote) -> None:
    """Verify the quote comes from an up to date Intel quoting enclave."""
    vendor = quote.quote_body.qe_vendor_id
    if vendor != INTEL_QE_VENDOR_ID.bytes:
        raise VerificationError(f"QE Vendor ID: {vendor.hex()} not Intel")

    if not collateral.qe_identity_issuer_chain:
        raise VerificationError("missing subject public key")
    issuer_key = _ec_key(
        collateral.qe_identity_issuer_chain[0].public_key(), "qe identity issuer pk"
    )
    try:
        identity = collateral.qe_identity.verify_as_enclave_identity(issuer_key)
    except VerificationError as exc:
        raise VerificationError(f"failed to verify enclave identity: {exc}") from exc

    qe_report = quote.support.qe_report_body
    if identity.mrsigner != qe_report.mrsigner:
        raise VerificationError(
            f"invalid qe mrsigner, expected {identity.mrsigner.hex()} "
            f"but got {qe_report.mrsigner.hex()}"
        )
    if qe_report.isvprodid != identity.isvprodid:
        raise VerificationError(
            f"invalid qe isvprodid, expected {qe_report.isvprodid} "
            f"but got {identity.isvprodid}"
        )
    masked = bytes(m & a for m, a in zip(identity.attributes_mask, qe_report.sgx_attributes))
    if masked != identity.attributes:
        raise VerificationError("qe attributes mismatch")
    if identity.id is not EnclaveType.QE:
        raise VerificationError(
            f"Invalid enclave identity for quoting enclave : {identity.id.value}"
        )
    status = identity.tcb_status(qe_report.isvsvn)
    if status is not QeTcbStatus.UP_TO_DATE:
        raise VerificationError(f"Enclave version tcb not up to date (was {status.value})")


def verify_quote_signatures(quote: SgxQuote) -> None:
    """Verify the QE report signature, the QE report data and the quote signature."""
    support = quote.support
    if not support.pck_cert_chain:
        raise VerificationError("missing pck pk")
    pck_key = _ec_key(support.pck_cert_chain[0].public_key(), "pck key")
    if not _verify_raw(pck_key, support.qe_report_signature, support.qe_report_body.to_bytes()):
        raise VerificationError("failed to verify qe report signature")

    support.verify_qe_report()

    try:
        attest_key = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), b"\x04" + support.attest_pub_key
        )
    except ValueError as exc:
        raise VerificationError(f"failed to parse attest key: {exc}") from exc
    if not _verify_raw(attest_key, support.isv_signature, quote.quote_body.to_bytes()):
        raise VerificationError("failed to verify quote signature")


def _in_tcb_level(level: TcbLevel, pck_extension: SgxPckExtension) -> bool:
    return (
        all(p >= l for p, l in zip(pck_extension.tcb.compsvn, level.tcb.components()))
        and pck_extension.tcb.pcesvn >= level.tcb.pcesvn
    )


def verify_tcb_status(tcb_info: TcbInfo, pck_extension: SgxPckExtension) -> TcbStanding:
    """Find the platform's TCB level and accept it only if up to date or hardening-only."""
    if pck_extension.fmspc != tcb_info.fmspc:
        raise VerificationError(
            f"tcb fmspc mismatch (pck extension fmspc was {pck_extension.fmspc.hex()}, "
            f"tcb_info fmspc was {tcb_info.fmspc.hex()})"
        )
    if pck_extension.pceid != tcb_info.pce_id:
        raise VerificationError(
            f"tcb pceid mismatch (pck extension pceid was {pck_extension.pceid.hex()}, "
            f"tcb_info pceid was {tcb_info.pce_id.hex()})"
        )
    level = next(
        (lvl for lvl in tcb_info.tcb_levels if _in_tcb_level(lvl, pck_extension)), None
    )
    if level is None:
        raise VerificationError("Unsupported TCB in pck extension")
    if level.tcb_status is TcbStatus.UP_TO_DATE:
        return TcbStanding()
    if level.tcb_status is TcbStatus.SW_HARDENING_NEEDED:
        return TcbStanding(hardening_needed=True, advisory_ids=level.advisory_ids)
    if level.tcb_status is TcbStatus.CONFIGURATION_AND_SW_HARDENING_NEEDED:
        return TcbStanding(hardening_needed=True, advisory_ids=())
    raise VerificationError(f"invalid tcb status: {level.tcb_status.value}")