"""Quoting enclave identity published by the provisioning service."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from cryptography.hazmat.primitives.asymmetric import ec

from .certs import VerificationError
from .tcb_info import (
    _der_signature,
    _ecdsa_verify,
    _field,
    _hex_bytes,
    _hex_string_field,
    _parse_datetime,
    _raw_object_fields,
    _uint,
)

ENCLAVE_IDENTITY_V2 = 2


class EnclaveType(enum.Enum):
    """Kind of Intel enclave an identity describes."""

    QE = "QE"
    QVE = "QVE"


class QeTcbStatus(enum.Enum):
    """TCB status of a quoting enclave level."""

    UP_TO_DATE = "UpToDate"
    OUT_OF_DATE = "OutOfDate"
    REVOKED = "Revoked"


@dataclass(frozen=True)
class QeTcbLevel:
    """A quoting enclave security version and its status."""

    isvsvn: int
    tcb_date: datetime
    tcb_status: QeTcbStatus


def _parse_level(data: Any) -> QeTcbLevel:
    tcb = _field(data, "tcb")
    return QeTcbLevel(
        isvsvn=_uint(_field(tcb, "isvsvn"), 16, "isvsvn"),
        tcb_date=_parse_datetime(_field(data, "tcbDate")),
        tcb_status=QeTcbStatus(_field(data, "tcbStatus")),
    )


def _u32_hex(value: Any, name: str) -> int:
    return int.from_bytes(_hex_bytes(value, 4, name), "little")


@dataclass(frozen=True)
class EnclaveIdentity:
    """Decoded ``enclaveIdentity`` structure."""

    id: EnclaveType
    version: int
    issue_date: datetime
    next_update: datetime
    tcb_evaluation_data_number: int
    miscselect: int
    miscselect_mask: int
    attributes: bytes
    attributes_mask: bytes
    mrsigner: bytes
    isvprodid: int
    tcb_levels: tuple[QeTcbLevel, ...]

    @classmethod
    def from_dict(cls, data: Any) -> "EnclaveIdentity":
        """Decode the ``enclaveIdentity`` JSON object."""
        levels = _field(data, "tcbLevels")
        if not isinstance(levels, list):
            raise ValueError("`tcbLevels` must be a list")
        return cls(
            id=EnclaveType(_field(data, "id")),
            version=_uint(_field(data, "version"), 16, "version"),
            issue_date=_parse_datetime(_field(data, "issueDate")),
            next_update=_parse_datetime(_field(data, "nextUpdate")),
            tcb_evaluation_data_number=_uint(
                _field(data, "tcbEvaluationDataNumber"), 16, "tcbEvaluationDataNumber"
            ),
            miscselect=_u32_hex(_field(data, "miscselect"), "miscselect"),
            miscselect_mask=_u32_hex(_field(data, "miscselectMask"), "miscselectMask"),
            attributes=_hex_bytes(_field(data, "attributes"), 16, "attributes"),
            attributes_mask=_hex_bytes(_field(data, "attributesMask"), 16, "attributesMask"),
            mrsigner=_hex_bytes(_field(data, "mrsigner"), 32, "mrsigner"),
            isvprodid=_uint(_field(data, "isvprodid"), 16, "isvprodid"),
            tcb_levels=tuple(_parse_level(level) for level in levels),
        )

    def tcb_status(self, report_isvsvn: int) -> QeTcbStatus:
        """Status of the first level (descending by ISVSVN) at or below ``report_isvsvn``."""
        return next(
            (level.tcb_status for level in self.tcb_levels if level.isvsvn <= report_isvsvn),
            QeTcbStatus.REVOKED,
        )


@dataclass(frozen=True)
class QuotingEnclaveIdentityAndSignature:
    """Signed enclave identity, keeping the exact signed JSON text."""

    enclave_identity_raw: str
    signature: bytes

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "QuotingEnclaveIdentityAndSignature":
        """Parse ``{"enclaveIdentity": ..., "signature": "<hex>"}``."""
        fields = _raw_object_fields(text)
        return cls(
            enclave_identity_raw=_field(fields, "enclaveIdentity"),
            signature=_hex_string_field(fields, "signature"),
        )

    def to_json(self) -> str:
        """Encode as compact JSON, keeping the signed text unchanged."""
        return (
            f'{{"enclaveIdentity":{self.enclave_identity_raw},'
            f'"signature":"{self.signature.hex()}"}}'
        )

    def verify_as_enclave_identity(
        self, public_key: ec.EllipticCurvePublicKey
    ) -> EnclaveIdentity:
        """Check the signature and return the decoded version 2 identity."""
        try:
            der = _der_signature(self.signature)
        except ValueError as exc:
            raise VerificationError("failed to parse signature") from exc
        if not _ecdsa_verify(public_key, der, self.enclave_identity_raw.encode("utf-8")):
            raise VerificationError("failed to verify qe identity signature")
        try:
            identity = EnclaveIdentity.from_dict(json.loads(self.enclave_identity_raw))
        except ValueError as exc:
            raise VerificationError(f"failed to parse enclave identity: {exc}") from exc
        if identity.version != ENCLAVE_IDENTITY_V2:
            raise VerificationError(f"unsupported enclave identity version {identity.version}")
        return identity