"""The Intel SGX extension carried by PCK certificates."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

SGX_EXTENSIONS_OID = "1.2.840.113741.1.13.1"

_PPID_OID = f"{SGX_EXTENSIONS_OID}.1"
_TCB_OID = f"{SGX_EXTENSIONS_OID}.2"
_TCB_COMPSVN_OIDS = tuple(f"{_TCB_OID}.{n}" for n in range(1, 17))
_TCB_PCESVN_OID = f"{_TCB_OID}.17"
_TCB_CPUSVN_OID = f"{_TCB_OID}.18"
_PCE_ID_OID = f"{SGX_EXTENSIONS_OID}.3"
_FMSPC_OID = f"{SGX_EXTENSIONS_OID}.4"
_SGX_TYPE_OID = f"{SGX_EXTENSIONS_OID}.5"

_PPID_LEN = 16
_CPUSVN_LEN = 16
_PCEID_LEN = 2
_FMSPC_LEN = 6

_MALFORMED = "malformed extension value in PCK certificate"

_TAG_BOOLEAN = 0x01
_TAG_INTEGER = 0x02
_TAG_OCTET_STRING = 0x04
_TAG_OID = 0x06
_TAG_ENUMERATED = 0x0A
_TAG_SEQUENCE = 0x30


class SgxType(enum.Enum):
    """SGX platform type."""

    STANDARD = 0
    SCALABLE = 1


@dataclass(frozen=True)
class PckTcb:
    """TCB component versions recorded in a PCK certificate."""

    compsvn: tuple[int, ...]
    pcesvn: int
    cpusvn: bytes


@dataclass(frozen=True)
class SgxPckExtension:
    """Decoded SGX extension of a PCK certificate."""

    ppid: bytes
    tcb: PckTcb
    pceid: bytes
    fmspc: bytes
    sgx_type: SgxType


class _DerError(ValueError):
    pass


@dataclass(frozen=True)
class _Enumerated:
    value: int


@dataclass(frozen=True)
class _Extension:
    oid: str
    value: Any


def _read_tlv(data: bytes, pos: int) -> tuple[int, bytes, int]:
    if pos >= len(data):
        raise _DerError("truncated element")
    tag = data[pos]
    if tag & 0x1F == 0x1F:
        raise _DerError("unsupported tag")
    pos += 1
    if pos >= len(data):
        raise _DerError("truncated length")
    first = data[pos]
    pos += 1
    if first < 0x80:
        length = first
    else:
        count = first & 0x7F
        if count == 0 or count > 4 or pos + count > len(data):
            raise _DerError("invalid length")
        if data[pos] == 0:
            raise _DerError("non-minimal length")
        length = int.from_bytes(data[pos:pos + count], "big")
        if length < 0x80:
            raise _DerError("non-minimal length")
        pos += count
    end = pos + length
    if end > len(data):
        raise _DerError("truncated content")
    return tag, data[pos:end], end


def _parse_oid(content: bytes) -> str:
    if not content or content[-1] & 0x80:
        raise _DerError("invalid object identifier")
    values: list[int] = []
    current = 0
    fresh = True
    for byte in content:
        if fresh and byte == 0x80:
            raise _DerError("non-minimal object identifier")
        current = (current << 7) | (byte & 0x7F)
        fresh = not byte & 0x80
        if fresh:
            values.append(current)
            current = 0
    head = values[0]
    if head < 40:
        arcs = [0, head]
    elif head < 80:
        arcs = [1, head - 40]
    else:
        arcs = [2, head - 80]
    return ".".join(str(arc) for arc in arcs + values[1:])


def _parse_unsigned(content: bytes, bits: int) -> int:
    if not content:
        raise _DerError("empty integer")
    if len(content) > 1 and (
        (content[0] == 0x00 and content[1] < 0x80)
        or (content[0] == 0xFF and content[1] >= 0x80)
    ):
        raise _DerError("non-minimal integer")
    value = int.from_bytes(content, "big", signed=True)
    if not 0 <= value < 1 << bits:
        raise _DerError("integer out of range")
    return value


def _parse_value(tag: int, content: bytes) -> Any:
    if tag == _TAG_OCTET_STRING:
        return bytes(content)
    if tag == _TAG_SEQUENCE:
        return _parse_extension_sequence(content)
    if tag == _TAG_INTEGER:
        return _parse_unsigned(content, 64)
    if tag == _TAG_ENUMERATED:
        return _Enumerated(_parse_unsigned(content, 32))
    if tag == _TAG_BOOLEAN:
        if content == b"\x00":
            return False
        if content == b"\xff":
            return True
        raise _DerError("invalid boolean")
    raise _DerError("unexpected value type")


def _parse_extension(content: bytes) -> _Extension:
    tag, oid_content, pos = _read_tlv(content, 0)
    if tag != _TAG_OID:
        raise _DerError("expected object identifier")
    tag, value_content, pos = _read_tlv(content, pos)
    if pos != len(content):
        raise _DerError("trailing data in extension")
    return _Extension(_parse_oid(oid_content), _parse_value(tag, value_content))


def _parse_extension_sequence(content: bytes) -> list[_Extension]:
    extensions = []
    pos = 0
    while pos < len(content):
        tag, body, pos = _read_tlv(content, pos)
        if tag != _TAG_SEQUENCE:
            raise _DerError("expected extension sequence")
        extensions.append(_parse_extension(body))
    return extensions


Converter = Callable[[Any], Any]


def _parse_extensions(
    extensions: list[_Extension], converters: Mapping[str, Converter]
) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    for extension in extensions:
        convert = converters.get(extension.oid)
        if convert is None:
            raise ValueError(f"unexpected extension in PCK certificate {extension.oid}")
        try:
            if extension.oid in parsed:
                raise ValueError("duplicate extension in PCK certificate")
            parsed[extension.oid] = convert(extension.value)
        except ValueError as exc:
            raise ValueError(f"{extension.oid}: {exc}") from exc
    for oid in converters:
        if oid not in parsed:
            raise ValueError(f"could not parse required extension from PCK certificate: {oid}")
    return parsed


def _octets(size: int) -> Converter:
    def convert(value: Any) -> bytes:
        if isinstance(value, bytes) and len(value) == size:
            return value
        raise ValueError(_MALFORMED)

    return convert


def _unsigned(bits: int) -> Converter:
    def convert(value: Any) -> int:
        if isinstance(value, int) and not isinstance(value, bool) and value < 1 << bits:
            return value
        raise ValueError(_MALFORMED)

    return convert


def _tcb(value: Any) -> PckTcb:
    if not isinstance(value, list):
        raise ValueError(_MALFORMED)
    converters: dict[str, Converter] = {oid: _unsigned(8) for oid in _TCB_COMPSVN_OIDS}
    converters[_TCB_PCESVN_OID] = _unsigned(16)
    converters[_TCB_CPUSVN_OID] = _octets(_CPUSVN_LEN)
    parsed = _parse_extensions(value, converters)
    return PckTcb(
        compsvn=tuple(parsed[oid] for oid in _TCB_COMPSVN_OIDS),
        pcesvn=parsed[_TCB_PCESVN_OID],
        cpusvn=parsed[_TCB_CPUSVN_OID],
    )


def _sgx_type(value: Any) -> SgxType:
    if not isinstance(value, _Enumerated):
        raise ValueError(_MALFORMED)
    try:
        return SgxType(value.value)
    except ValueError:
        raise ValueError("unknown SGX type in PCK certificate") from None


def is_pck_ext(oid: Union[str, Any]) -> bool:
    """True if ``oid`` names the top-level SGX extension."""
    dotted = getattr(oid, "dotted_string", oid)
    return dotted == SGX_EXTENSIONS_OID


def parse_pck_extension(der: bytes) -> SgxPckExtension:
    """Decode the DER value of the SGX extension of a PCK certificate."""
    data = bytes(der)
    try:
        tag, body, end = _read_tlv(data, 0)
        if tag != _TAG_SEQUENCE or end != len(data):
            raise _DerError("expected a single sequence")
        extensions = _parse_extension_sequence(body)
    except _DerError as exc:
        raise ValueError("could not parse required extension from PCK certificate") from exc

    parsed = _parse_extensions(
        extensions,
        {
            _PPID_OID: _octets(_PPID_LEN),
            _TCB_OID: _tcb,
            _PCE_ID_OID: _octets(_PCEID_LEN),
            _FMSPC_OID: _octets(_FMSPC_LEN),
            _SGX_TYPE_OID: _sgx_type,
        },
    )
    return SgxPckExtension(
        ppid=parsed[_PPID_OID],
        tcb=parsed[_TCB_OID],
        pceid=parsed[_PCE_ID_OID],
        fmspc=parsed[_FMSPC_OID],
        sgx_type=parsed[_SGX_TYPE_OID],
    )