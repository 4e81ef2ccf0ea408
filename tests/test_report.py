import pytest

from sgxattest.report import (
    REPORT_BODY_SIZE,
    SgxFlags,
    SgxReportBody,
    parse_report_body,
)


def _raw_report(attributes=bytes(16)):
    data = bytearray(range(256)) + bytearray(range(128))
    data[48:64] = attributes
    return bytes(data)


def test_size_matches_layout():
    body = parse_report_body(bytes(384))
    assert len(body.to_bytes()) == 384
    assert REPORT_BODY_SIZE == 384


def test_round_trip():
    raw = _raw_report()
    body = parse_report_body(raw)
    assert body.to_bytes() == raw


def test_field_offsets():
    raw = _raw_report()
    body = parse_report_body(raw)
    assert body.cpusvn == raw[0:16]
    assert body.miscselect == int.from_bytes(raw[16:20], "little")
    assert body.sgx_attributes == raw[48:64]
    assert body.mrenclave == raw[64:96]
    assert body.mrsigner == raw[128:160]
    assert body.isvprodid == int.from_bytes(raw[256:258], "little")
    assert body.isvsvn == int.from_bytes(raw[258:260], "little")
    assert body.sgx_report_data_bytes == raw[320:384]


@pytest.mark.parametrize("size", [0, 383, 385])
def test_wrong_size_rejected(size):
    with pytest.raises(ValueError):
        parse_report_body(bytes(size))


def test_has_flag():
    bits = int(SgxFlags.DEBUG | SgxFlags.MODE64BIT)
    body = parse_report_body(_raw_report(bits.to_bytes(8, "little") + bytes(8)))
    assert body.has_flag(SgxFlags.DEBUG) is True
    assert body.has_flag(SgxFlags.MODE64BIT) is True
    assert body.has_flag(SgxFlags.DEBUG | SgxFlags.MODE64BIT) is True
    assert body.has_flag(SgxFlags.PROVISION_KEY) is False
    assert body.has_flag(SgxFlags.DEBUG | SgxFlags.KSS) is False


def test_has_flag_ignores_upper_attribute_bytes():
    attributes = bytes(8) + int(SgxFlags.DEBUG).to_bytes(8, "little")
    body = parse_report_body(_raw_report(attributes))
    assert body.has_flag(SgxFlags.DEBUG) is False


def test_field_length_checked():
    body = parse_report_body(_raw_report())
    with pytest.raises(ValueError):
        SgxReportBody(**{**body.__dict__, "mrenclave": bytes(31)})