"""Attestation collateral and the interface for fetching it."""

from __future__ import annotations

import abc
import json
from dataclasses import dataclass
from typing import Union

from cryptography import x509

from .certs import dump_pem_chain, dump_pem_crl, load_pem_chain, load_pem_crl
from .qe_identity import QuotingEnclaveIdentityAndSignature
from .tcb_info import TcbInfoAndSignature, _field, _raw_object_fields

COLLATERAL_VERSION = 3


class CollateralProvider(abc.ABC):
    """Provides the SGX collateral for a serialized quote."""

    @abc.abstractmethod
    def get_collateral(self, quote: bytes) -> bytes:
        """Return the JSON encoded collateral for ``quote``."""


def _string(fields: dict[str, str], key: str) -> str:
    value = json.loads(_field(fields, key))
    if not isinstance(value, str):
        raise ValueError(f"`{key}` must be a string")
    return value


@dataclass(frozen=True)
class SgxCollateral:
    """Revocation lists, issuer chains and signed structures needed to verify a quote."""

    version: int
    root_ca_crl: x509.CertificateRevocationList
    pck_crl: x509.CertificateRevocationList
    tcb_info_issuer_chain: tuple[x509.Certificate, ...]
    pck_crl_issuer_chain: tuple[x509.Certificate, ...]
    qe_identity_issuer_chain: tuple[x509.Certificate, ...]
    tcb_info: TcbInfoAndSignature
    qe_identity: QuotingEnclaveIdentityAndSignature

    def __post_init__(self) -> None:
        if self.version != COLLATERAL_VERSION:
            raise ValueError("version must be 3")

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "SgxCollateral":
        """Decode collateral JSON; the version must be 3."""
        fields = _raw_object_fields(text)
        version = json.loads(_field(fields, "version"))
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ValueError("`version` must be an unsigned integer")
        if version != COLLATERAL_VERSION:
            raise ValueError("version must be 3")
        return cls(
            version=version,
            root_ca_crl=load_pem_crl(_string(fields, "root_ca_crl")),
            pck_crl=load_pem_crl(_string(fields, "pck_crl")),
            tcb_info_issuer_chain=tuple(load_pem_chain(_string(fields, "tcb_info_issuer_chain"))),
            pck_crl_issuer_chain=tuple(load_pem_chain(_string(fields, "pck_crl_issuer_chain"))),
            qe_identity_issuer_chain=tuple(
                load_pem_chain(_string(fields, "qe_identity_issuer_chain"))
            ),
            tcb_info=TcbInfoAndSignature.from_json(_field(fields, "tcb_info")),
            qe_identity=QuotingEnclaveIdentityAndSignature.from_json(
                _field(fields, "qe_identity")
            ),
        )

    def to_json(self) -> str:
        """Encode as compact JSON, keeping signed texts unchanged."""
        parts = [
            f'"version":{self.version}',
            f'"root_ca_crl":{json.dumps(dump_pem_crl(self.root_ca_crl))}',
            f'"pck_crl":{json.dumps(dump_pem_crl(self.pck_crl))}',
            f'"tcb_info_issuer_chain":{json.dumps(dump_pem_chain(self.tcb_info_issuer_chain))}',
            f'"pck_crl_issuer_chain":{json.dumps(dump_pem_chain(self.pck_crl_issuer_chain))}',
            '"qe_identity_issuer_chain":'
            f"{json.dumps(dump_pem_chain(self.qe_identity_issuer_chain))}",
            f'"tcb_info":{self.tcb_info.to_json()}',
            f'"qe_identity":{self.qe_identity.to_json()}',
        ]
        return "{" + ",".join(parts) + "}"