"""Trust store for verifying certificate chains against trusted roots and CRLs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from .certs import Timestamp, VerificationError, chain_valid_at, crl_valid_at


def verify_signature(public_key: Any, signature: bytes, data: bytes, hash_algorithm: Any) -> None:
    """Check a signature made by ``public_key``; raise VerificationError if it fails."""
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            if hash_algorithm is None:
                raise VerificationError("missing signature hash algorithm")
            public_key.verify(signature, data, ec.ECDSA(hash_algorithm))
        elif isinstance(public_key, rsa.RSAPublicKey):
            if hash_algorithm is None:
                raise VerificationError("missing signature hash algorithm")
            public_key.verify(signature, data, padding.PKCS1v15(), hash_algorithm)
        elif hasattr(public_key, "verify"):
            public_key.verify(signature, data)
        else:
            raise VerificationError("unsupported public key type")
    except InvalidSignature as exc:
        raise VerificationError("invalid signature") from exc


def verify_certificate(public_key: Any, cert: x509.Certificate) -> None:
    """Check that ``cert`` was signed by ``public_key``."""
    verify_signature(
        public_key, cert.signature, cert.tbs_certificate_bytes, cert.signature_hash_algorithm
    )


def verify_crl(public_key: Any, crl: x509.CertificateRevocationList) -> None:
    """Check that ``crl`` was signed by ``public_key``."""
    verify_signature(
        public_key, crl.signature, crl.tbs_certlist_bytes, crl.signature_hash_algorithm
    )


@dataclass(frozen=True)
class TrustedIdentity:
    """A verified certificate together with its public key."""

    cert: x509.Certificate
    pk: Any

    @classmethod
    def from_cert(cls, cert: x509.Certificate) -> "TrustedIdentity":
        try:
            pk = cert.public_key()
        except (ValueError, TypeError) as exc:
            raise VerificationError(f"failed to decode key from certificate: {exc}") from exc
        return cls(cert=cert, pk=pk)


@dataclass
class TrustStore:
    """Trusted CAs plus the serial numbers revoked by trusted CRLs."""

    current_time: Timestamp
    trusted: dict[str, TrustedIdentity] = field(default_factory=dict)
    crl: set[str] = field(default_factory=set)

    def __init__(self, current_time: Timestamp, trusted: Iterable[x509.Certificate]) -> None:
        self.current_time = current_time
        self.trusted = {
            cert.subject.rfc4514_string(): TrustedIdentity.from_cert(cert) for cert in trusted
        }
        self.crl = set()

    def push_trusted_crl(self, crl: x509.CertificateRevocationList) -> None:
        """Record every serial number revoked by ``crl``."""
        self.crl.update(str(entry.serial_number) for entry in crl)

    def push_unverified_crl(self, crl: x509.CertificateRevocationList) -> None:
        """Verify ``crl`` against a trusted signer, then record it."""
        signer = self._find_issuer(crl.issuer.rfc4514_string())
        try:
            verify_crl(signer.pk, crl)
        except VerificationError as exc:
            raise VerificationError(f"failed to verify crl signature: {exc}") from exc
        if not crl_valid_at(crl, self.current_time):
            raise VerificationError("Expired or future CRL")
        self.push_trusted_crl(crl)

    def verify_chain_leaf(self, chain: Sequence[x509.Certificate]) -> TrustedIdentity:
        """Verify a chain (leaf first) is rooted in the store and unrevoked; return the leaf."""
        if not chain:
            raise VerificationError("empty certificate chain")
        if not chain_valid_at(chain, self.current_time):
            raise VerificationError("cert chain contains expired or future certificates")

        intermediary: dict[str, TrustedIdentity] = {}
        ident: Optional[TrustedIdentity] = None
        for cert in reversed(chain):
            self._check_crls(cert)
            signer = self._find_issuer(cert.issuer.rfc4514_string(), intermediary)
            try:
                verify_certificate(signer.pk, cert)
            except VerificationError as exc:
                raise VerificationError(f"failed to verify certificate: {exc}") from exc
            ident = TrustedIdentity.from_cert(cert)
            intermediary[cert.subject.rfc4514_string()] = ident
        assert ident is not None
        return ident

    def _check_crls(self, cert: x509.Certificate) -> None:
        if str(cert.serial_number) in self.crl:
            raise VerificationError("certificate is revoked")

    def _find_issuer(
        self, issuer: str, intermediary: Optional[Mapping[str, TrustedIdentity]] = None
    ) -> TrustedIdentity:
        signer = self.trusted.get(issuer)
        if signer is None and intermediary is not None:
            signer = intermediary.get(issuer)
        if signer is None:
            raise VerificationError("failed to find trusted issuer")
        return signer