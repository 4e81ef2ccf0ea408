import dataclasses
import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from sgxattest.certs import VerificationError
from sgxattest.collateral import SgxCollateral
from sgxattest.qe_identity import QuotingEnclaveIdentityAndSignature
from sgxattest.quote import SgxQuote, SgxQuoteBody, SgxQuoteSupport
from sgxattest.report import parse_report_body
from sgxattest.sgx_x509 import PckTcb, SgxPckExtension, SgxType
from sgxattest.tcb_info import Tcb, TcbInfo, TcbInfoAndSignature, TcbLevel, TcbStatus
from sgxattest.verify import (
    INTEL_QE_VENDOR_ID,
    TcbStanding,
    intel_root_key,
    verify_integrity,
    verify_quote_signatures,
    verify_quote_source,
    verify_remote_attestation,
    verify_tcb_status,
)

NOW = datetime(2024, 8, 29, tzinfo=timezone.utc)
FMSPC = bytes(range(6))
PCEID = b"\x00\x01"


def _raw_sign(key, data):
    r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def _cert(key, days=1):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "pck")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(5)
        .not_valid_before(NOW - timedelta(days=days))
        .not_valid_after(NOW + timedelta(days=days))
        .sign(key, hashes.SHA256())
    )


def _extension(compsvn=(5,) * 16, pcesvn=10, fmspc=FMSPC):
    return SgxPckExtension(
        ppid=bytes(16),
        tcb=PckTcb(compsvn=tuple(compsvn), pcesvn=pcesvn, cpusvn=bytes(16)),
        pceid=PCEID,
        fmspc=fmspc,
        sgx_type=SgxType.STANDARD,
    )


def _build_quote(vendor=INTEL_QE_VENDOR_ID.bytes):
    pck_key = ec.generate_private_key(ec.SECP256R1())
    attest_key = ec.generate_private_key(ec.SECP256R1())
    attest_pub = attest_key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )[1:]
    auth = b"auth"
    report_data = hashlib.sha256(attest_pub + auth).digest() + bytes(32)
    qe_report = dataclasses.replace(
        parse_report_body(bytes(384)), sgx_report_data_bytes=report_data
    )
    body = SgxQuoteBody(
        version=3,
        sign_type=2,
        reserved=bytes(4),
        qe_svn=0,
        pce_svn=0,
        qe_vendor_id=vendor,
        user_data=bytes(20),
        report_body=dataclasses.replace(parse_report_body(bytes(384)), mrenclave=b"\x11" * 32),
    )
    support = SgxQuoteSupport(
        isv_signature=_raw_sign(attest_key, body.to_bytes()),
        attest_pub_key=attest_pub,
        qe_report_body=qe_report,
        qe_report_signature=_raw_sign(pck_key, qe_report.to_bytes()),
        auth_data=auth,
        pck_cert_chain=(_cert(pck_key),),
        pck_extension=_extension(),
    )
    return SgxQuote(quote_body=body, support=support)


def _tcb_info(levels):
    return TcbInfo(
        version=3,
        issue_date=NOW,
        next_update=NOW,
        fmspc=FMSPC,
        pce_id=PCEID,
        tcb_type=0,
        tcb_evaluation_data_number=1,
        tcb_levels=tuple(levels),
    )


def _level(svn, pcesvn, status, advisories=()):
    return TcbLevel(Tcb(3, (svn,) * 16, pcesvn), NOW, status, tuple(advisories))


def test_intel_root_key_is_p256():
    assert intel_root_key().curve.name == "secp256r1"


def test_quote_signatures_valid():
    quote = _build_quote()
    verify_quote_signatures(quote)
    assert quote.support.qe_report_body.sgx_report_data_bytes[32:] == bytes(32)


def test_quote_signature_tampered():
    quote = _build_quote()
    body = dataclasses.replace(quote.quote_body, qe_svn=1)
    with pytest.raises(VerificationError, match="quote signature"):
        verify_quote_signatures(dataclasses.replace(quote, quote_body=body))


def test_qe_report_signature_tampered():
    quote = _build_quote()
    support = dataclasses.replace(quote.support, qe_report_signature=b"\x01" * 64)
    with pytest.raises(VerificationError, match="qe report signature"):
        verify_quote_signatures(dataclasses.replace(quote, support=support))


def _collateral(chain_days=1):
    key = ec.generate_private_key(ec.SECP256R1())
    cert = _cert(key, days=chain_days)
    crl = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(cert.subject)
        .last_update(NOW - timedelta(hours=1))
        .next_update(NOW + timedelta(hours=1))
        .sign(key, hashes.SHA256())
    )
    return SgxCollateral(
        version=3,
        root_ca_crl=crl,
        pck_crl=crl,
        tcb_info_issuer_chain=(cert,),
        pck_crl_issuer_chain=(cert,),
        qe_identity_issuer_chain=(cert,),
        tcb_info=TcbInfoAndSignature("{}", bytes(64)),
        qe_identity=QuotingEnclaveIdentityAndSignature("{}", bytes(64)),
    )


def test_integrity_expired_chain():
    with pytest.raises(VerificationError, match="Expired tcb info issuer chain"):
        verify_integrity(NOW + timedelta(days=3), _collateral(), _build_quote())


def test_integrity_root_not_intel():
    with pytest.raises(VerificationError, match="root ca certificate"):
        verify_integrity(NOW, _collateral(), _build_quote())


def test_remote_attestation_propagates_integrity_failure():
    quote = _build_quote()
    with pytest.raises(VerificationError):
        verify_remote_attestation(NOW, _collateral(), quote, b"\x11" * 32)


def test_quote_source_wrong_vendor():
    with pytest.raises(VerificationError, match="not Intel"):
        verify_quote_source(_collateral(), _build_quote(vendor=bytes(16)))


def test_tcb_status_up_to_date():
    info = _tcb_info([_level(5, 10, TcbStatus.UP_TO_DATE)])
    assert verify_tcb_status(info, _extension()) == TcbStanding()


def test_tcb_status_first_matching_level():
    info = _tcb_info(
        [
            _level(9, 10, TcbStatus.UP_TO_DATE),
            _level(4, 10, TcbStatus.SW_HARDENING_NEEDED, ["INTEL-SA-00615"]),
        ]
    )
    standing = verify_tcb_status(info, _extension())
    assert standing == TcbStanding(hardening_needed=True, advisory_ids=("INTEL-SA-00615",))


def test_tcb_status_config_and_hardening_drops_advisories():
    info = _tcb_info(
        [_level(1, 1, TcbStatus.CONFIGURATION_AND_SW_HARDENING_NEEDED, ["INTEL-SA-00615"])]
    )
    assert verify_tcb_status(info, _extension()).advisory_ids == ()


def test_tcb_status_out_of_date_rejected():
    info = _tcb_info([_level(1, 1, TcbStatus.OUT_OF_DATE)])
    with pytest.raises(VerificationError, match="invalid tcb status"):
        verify_tcb_status(info, _extension())


def test_tcb_status_no_level():
    info = _tcb_info([_level(5, 11, TcbStatus.UP_TO_DATE)])
    with pytest.raises(VerificationError, match="Unsupported TCB"):
        verify_tcb_status(info, _extension())


def test_tcb_status_fmspc_mismatch():
    info = _tcb_info([_level(1, 1, TcbStatus.UP_TO_DATE)])
    with pytest.raises(VerificationError, match="fmspc mismatch"):
        verify_tcb_status(info, _extension(fmspc=bytes(6)))