"""TCB info published for a platform family, and its signed envelope."""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from .certs import VerificationError

_P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)
_HEX = re.compile(r"[0-9a-fA-F]*")
_WHITESPACE = " \t\n\r"
_COMPONENT_COUNT = 16


def _der_signature(raw: bytes) -> bytes:
    """Convert a fixed size ``r || s`` P-256 signature to DER, checking its scalars."""
    if len(raw) != 64:
        raise ValueError("signature must be 64 bytes")
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:], "big")
    if not (0 < r < _P256_ORDER and 0 < s < _P256_ORDER):
        raise ValueError("signature scalar out of range")
    return encode_dss_signature(r, s)


def _ecdsa_verify(public_key: ec.EllipticCurvePublicKey, der: bytes, message: bytes) -> bool:
    try:
        public_key.verify(der, message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp {value!r}")
    date, time, fraction, zone = match.groups()
    fraction = (fraction or "")[:6].ljust(6, "0")
    zone = "+00:00" if zone.upper() == "Z" else zone
    return datetime.fromisoformat(f"{date}T{time}.{fraction}{zone}").astimezone(timezone.utc)


def _uint(value: Any, bits: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 1 << bits:
        raise ValueError(f"`{name}` must be an unsigned {bits} bit integer")
    return value


def _hex_bytes(value: Any, size: Union[int, None], name: str) -> bytes:
    if not isinstance(value, str) or not _HEX.fullmatch(value) or len(value) % 2:
        raise ValueError(f"`{name}` must be a hex string")
    data = bytes.fromhex(value)
    if size is not None and len(data) != size:
        raise ValueError(f"`{name}` must be {size} bytes")
    return data


def _field(data: Mapping[str, Any], key: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    return data[key]


def _raw_object_fields(text: Union[str, bytes]) -> dict[str, str]:
    """Split a JSON object into its keys and the exact source text of each value."""
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8")
    decoder = json.JSONDecoder()

    def skip(pos: int) -> int:
        while pos < len(text) and text[pos] in _WHITESPACE:
            pos += 1
        return pos

    fields: dict[str, str] = {}
    pos = skip(0)
    if not text.startswith("{", pos):
        raise ValueError("expected a JSON object")
    pos = skip(pos + 1)
    if text.startswith("}", pos):
        pos += 1
    else:
        while True:
            key, pos = decoder.raw_decode(text, pos)
            if not isinstance(key, str):
                raise ValueError("expected an object key")
            pos = skip(pos)
            if not text.startswith(":", pos):
                raise ValueError("expected `:`")
            start = skip(pos + 1)
            _, end = decoder.raw_decode(text, start)
            if key in fields:
                raise ValueError(f"duplicate field `{key}`")
            fields[key] = text[start:end]
            pos = skip(end)
            if text.startswith(",", pos):
                pos = skip(pos + 1)
                continue
            if text.startswith("}", pos):
                pos += 1
                break
            raise ValueError("expected `,` or `}`")
    if skip(pos) != len(text):
        raise ValueError("trailing characters after JSON object")
    return fields


def _hex_string_field(fields: Mapping[str, str], key: str) -> bytes:
    value = json.loads(_field(fields, key))
    return _hex_bytes(value, None, key)


class TcbStatus(enum.Enum):
    """Status of a TCB level."""

    UP_TO_DATE = "UpToDate"
    OUT_OF_DATE = "OutOfDate"
    CONFIGURATION_NEEDED = "ConfigurationNeeded"
    SW_HARDENING_NEEDED = "SWHardeningNeeded"
    CONFIGURATION_AND_SW_HARDENING_NEEDED = "ConfigurationAndSWHardeningNeeded"
    OUT_OF_DATE_CONFIGURATION_NEEDED = "OutOfDateConfigurationNeeded"
    REVOKED = "Revoked"


@dataclass(frozen=True)
class Tcb:
    """Component versions identifying a TCB level, in the v2 or v3 layout."""

    version: int
    component_svns: tuple[int, ...]
    pcesvn: int

    def __post_init__(self) -> None:
        if len(self.component_svns) != _COMPONENT_COUNT:
            raise ValueError(f"a TCB has exactly {_COMPONENT_COUNT} components")

    def components(self) -> tuple[int, ...]:
        """The 16 SGX TCB component security versions."""
        return self.component_svns

    @classmethod
    def from_dict(cls, data: Any) -> "Tcb":
        """Decode a TCB, trying the v2 layout first and then the v3 one."""
        for decode in (cls._from_v2, cls._from_v3):
            try:
                return decode(data)
            except ValueError:
                continue
        raise ValueError("data did not match any variant of untagged enum Tcb")

    @classmethod
    def _from_v2(cls, data: Any) -> "Tcb":
        svns = tuple(
            _uint(_field(data, f"sgxtcbcomp{n:02d}svn"), 8, f"sgxtcbcomp{n:02d}svn")
            for n in range(1, _COMPONENT_COUNT + 1)
        )
        return cls(2, svns, _uint(_field(data, "pcesvn"), 16, "pcesvn"))

    @classmethod
    def _from_v3(cls, data: Any) -> "Tcb":
        components = _field(data, "sgxtcbcomponents")
        if not isinstance(components, list) or len(components) != _COMPONENT_COUNT:
            raise ValueError(f"`sgxtcbcomponents` must hold {_COMPONENT_COUNT} entries")
        svns = tuple(_uint(_field(item, "svn"), 8, "svn") for item in components)
        return cls(3, svns, _uint(_field(data, "pcesvn"), 16, "pcesvn"))


@dataclass(frozen=True)
class TcbLevel:
    """A TCB level and the status assigned to it."""

    tcb: Tcb
    tcb_date: datetime
    tcb_status: TcbStatus
    advisory_ids: tuple[str, ...]


def _parse_level(data: Any) -> TcbLevel:
    advisories = _field(data, "advisoryIDs")
    if not isinstance(advisories, list) or not all(isinstance(a, str) for a in advisories):
        raise ValueError("`advisoryIDs` must be a list of strings")
    return TcbLevel(
        tcb=Tcb.from_dict(_field(data, "tcb")),
        tcb_date=_parse_datetime(_field(data, "tcbDate")),
        tcb_status=TcbStatus(_field(data, "tcbStatus")),
        advisory_ids=tuple(advisories),
    )


@dataclass(frozen=True)
class TcbInfo:
    """TCB info structure for one FMSPC."""

    version: int
    issue_date: datetime
    next_update: datetime
    fmspc: bytes
    pce_id: bytes
    tcb_type: int
    tcb_evaluation_data_number: int
    tcb_levels: tuple[TcbLevel, ...]

    @classmethod
    def from_dict(cls, data: Any) -> "TcbInfo":
        """Decode the ``tcbInfo`` JSON object."""
        version = _uint(_field(data, "version"), 16, "version")
        if version not in (2, 3):
            raise ValueError("Unsupported TCB Info version")
        levels = _field(data, "tcbLevels")
        if not isinstance(levels, list):
            raise ValueError("`tcbLevels` must be a list")
        return cls(
            version=version,
            issue_date=_parse_datetime(_field(data, "issueDate")),
            next_update=_parse_datetime(_field(data, "nextUpdate")),
            fmspc=_hex_bytes(_field(data, "fmspc"), 6, "fmspc"),
            pce_id=_hex_bytes(_field(data, "pceId"), 2, "pceId"),
            tcb_type=_uint(_field(data, "tcbType"), 16, "tcbType"),
            tcb_evaluation_data_number=_uint(
                _field(data, "tcbEvaluationDataNumber"), 16, "tcbEvaluationDataNumber"
            ),
            tcb_levels=tuple(_parse_level(level) for level in levels),
        )


@dataclass(frozen=True)
class TcbInfoAndSignature:
    """Signed TCB info, keeping the exact signed JSON text."""

    tcb_info_raw: str
    signature: bytes

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "TcbInfoAndSignature":
        """Parse ``{"tcbInfo": ..., "signature": "<hex>"}``."""
        fields = _raw_object_fields(text)
        return cls(
            tcb_info_raw=_field(fields, "tcbInfo"),
            signature=_hex_string_field(fields, "signature"),
        )

    def to_json(self) -> str:
        """Encode as compact JSON, keeping the signed text unchanged."""
        return f'{{"tcbInfo":{self.tcb_info_raw},"signature":"{self.signature.hex()}"}}'

    def verify(self, public_key: ec.EllipticCurvePublicKey) -> TcbInfo:
        """Check the signature over the raw text and return the decoded TCB info."""
        try:
            der = _der_signature(self.signature)
        except ValueError as exc:
            raise VerificationError(f"invalid tcb info signature: {exc}") from exc
        if not _ecdsa_verify(public_key, der, self.tcb_info_raw.encode("utf-8")):
            raise VerificationError("invalid tcb info signature")
        try:
            info = TcbInfo.from_dict(json.loads(self.tcb_info_raw))
        except ValueError as exc:
            raise VerificationError(f"tcb info: {exc}") from exc
        if any(level.tcb.version != info.version for level in info.tcb_levels):
            raise VerificationError(
                f"mismatched tcb info versions, should all be V{info.version}"
            )
        if info.tcb_type != 0:
            raise VerificationError(f"unsupported tcb type {info.tcb_type}")
        return info