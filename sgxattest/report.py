"""SGX enclave report body (``sgx_report_body_t``)."""

from __future__ import annotations

import enum
import struct
from dataclasses import astuple, dataclass, fields

_FORMAT = struct.Struct("<16sI12s16s16s32s32s32s32s64sHHH42s16s64s")

REPORT_BODY_SIZE = _FORMAT.size


class SgxFlags(enum.IntFlag):
    """SGX enclave attribute flags (first 8 bytes of the attributes)."""

    INITED = 0b00000001
    DEBUG = 0b00000010
    MODE64BIT = 0b00000100
    PROVISION_KEY = 0b00001000
    EINITTOKEN_KEY = 0b00100000
    KSS = 0b10000000


_KNOWN_FLAG_BITS = int(
    SgxFlags.INITED
    | SgxFlags.DEBUG
    | SgxFlags.MODE64BIT
    | SgxFlags.PROVISION_KEY
    | SgxFlags.EINITTOKEN_KEY
    | SgxFlags.KSS
)

_BYTE_FIELD_SIZES = {
    "cpusvn": 16,
    "reserved1": 12,
    "isvextprodid": 16,
    "sgx_attributes": 16,
    "mrenclave": 32,
    "reserved2": 32,
    "mrsigner": 32,
    "reserved3": 32,
    "configid": 64,
    "reserved4": 42,
    "isvfamilyid": 16,
    "sgx_report_data_bytes": 64,
}


@dataclass(frozen=True)
class SgxReportBody:
    """The 384 byte report of an enclave, as laid out in memory."""

    cpusvn: bytes
    miscselect: int
    reserved1: bytes
    isvextprodid: bytes
    sgx_attributes: bytes
    mrenclave: bytes
    reserved2: bytes
    mrsigner: bytes
    reserved3: bytes
    configid: bytes
    isvprodid: int
    isvsvn: int
    configsvn: int
    reserved4: bytes
    isvfamilyid: bytes
    sgx_report_data_bytes: bytes

    def __post_init__(self) -> None:
        for name, size in _BYTE_FIELD_SIZES.items():
            if len(getattr(self, name)) != size:
                raise ValueError(f"{name} must be {size} bytes")

    def to_bytes(self) -> bytes:
        """Encode the report body in its little-endian wire layout."""
        return _FORMAT.pack(*astuple(self))

    def has_flag(self, flag: SgxFlags) -> bool:
        """True if every bit of ``flag`` is set among the known attribute flags."""
        bits = int.from_bytes(self.sgx_attributes[:8], "little") & _KNOWN_FLAG_BITS
        wanted = int(flag)
        return bits & wanted == wanted


def parse_report_body(data: bytes) -> SgxReportBody:
    """Decode a report body from exactly ``REPORT_BODY_SIZE`` bytes."""
    if len(data) != REPORT_BODY_SIZE:
        raise ValueError(f"report body must be {REPORT_BODY_SIZE} bytes, got {len(data)}")
    values = _FORMAT.unpack(bytes(data))
    return SgxReportBody(**{f.name: v for f, v in zip(fields(SgxReportBody), values)})