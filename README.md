# sgxattest

Verification of Intel SGX DCAP remote attestations, together with the small
wire formats used by an attested key-sharing and compute service built on top
of them.

## What it does

- Parses SGX v3 ECDSA-P256 quotes (`sgxattest.quote.read_quote`), including
  the quoting-enclave report, the PCK certificate chain and Intel's custom PCK
  certificate extension (`sgxattest.sgx_x509.parse_pck_extension`).
- Decodes and encodes the 384-byte enclave report body
  (`sgxattest.report.parse_report_body`, `SgxReportBody.to_bytes`) and checks
  its attribute flags (`SgxReportBody.has_flag` with `sgxattest.report.SgxFlags`).
- Loads the attestation collateral (CRLs, issuer chains, signed TCB info and
  signed QE identity) from its JSON form and writes it back
  (`sgxattest.collateral.SgxCollateral.from_json` / `to_json`). The signed
  JSON texts are kept byte for byte so their signatures still verify.
- Verifies the whole chain of trust against Intel's SGX root key:
  certificate validity windows, CRLs, the signed TCB info and QE identity,
  the quote signatures, the TCB level of the platform, and finally the
  MRENCLAVE of the attested enclave
  (`sgxattest.verify.verify_remote_attestation`).
- Encodes and decodes the one-byte-tagged key exchange messages exchanged
  between enclaves (`sgxattest.codec`).
- Parses and hashes client compute requests and frames responses
  (`sgxattest.connection`), and parses the enclave's command-line
  configuration (`sgxattest.args.parse_args`).

## Verifying a quote

```python
from datetime import datetime, timezone

from sgxattest.collateral import SgxCollateral
from sgxattest.quote import read_quote
from sgxattest.verify import verify_remote_attestation

with open("quote.bin", "rb") as f:
    quote = read_quote(f.read())

with open("collateral.json", encoding="utf-8") as f:
    collateral = SgxCollateral.from_json(f.read())

expected_mrenclave = bytes.fromhex("00" * 32)  # the measurement you trust

standing, report_body = verify_remote_attestation(
    datetime.now(timezone.utc),
    collateral,
    quote,
    expected_mrenclave,
)
print(standing.hardening_needed, standing.advisory_ids)
print(report_body.sgx_report_data_bytes.hex())
```

Any failure along the way raises `sgxattest.certs.VerificationError` with a
message naming the step that failed. The individual steps are also available
on their own in `sgxattest.verify`: `verify_integrity` (returns the verified
`TcbInfo`), `verify_quote_source`, `verify_quote_signatures` and
`verify_tcb_status`.

The returned `TcbStanding` is either up to date (`hardening_needed` false) or
trustable once the listed advisories are mitigated. Levels in
`ConfigurationAndSWHardeningNeeded` are accepted as hardening-needed with no
advisory ids; any other status is rejected.

The current time you pass in (an aware or naive-UTC `datetime`, or a Unix
timestamp) is trusted as-is. Take it from a source you trust; every
certificate, CRL and chain is checked against it.

Lower-level pieces are usable directly: `sgxattest.trust.TrustStore` verifies
certificate chains and CRLs against trusted roots, and `sgxattest.certs` has
the PEM chain/CRL loaders and the validity-window checks.

## Supplying collateral

Code that needs collateral for a quote can accept any subclass of
`sgxattest.collateral.CollateralProvider`, whose `get_collateral(quote)`
returns the JSON-encoded collateral as bytes.

## Key exchange messages

```python
import io

from sgxattest.codec import GetKey, KeyNotFound, recv, send

buf = io.BytesIO()
send(GetKey(), buf)
send(KeyNotFound(), buf)
buf.seek(0)

assert recv(buf) == GetKey()
assert recv(buf) == KeyNotFound()
```

`SecretKey` and `PublicKey` carry a 111-byte base58check extended key.
`encode(message)` gives the bytes without writing them. An unknown tag byte
raises `ValueError`; a stream that ends early raises `EOFError`.

## Compute requests

```python
import io

from sgxattest.connection import read_request

payload = b'{"hash": "' + b"ab" * 32 + b'", "input": "hello"}'
frame = len(payload).to_bytes(4, "big") + payload

request = read_request(io.BytesIO(frame), max_input_size=1 << 20, max_fuel_limit=10_000)
print(request.function, request.fuel)           # main 10000
print(request.hash_parameters().hex())
```

A request whose length is at least `max_input_size`, whose JSON is invalid, or
whose `fuel` exceeds `max_fuel_limit` raises `ValueError`. Missing fields
default to `decrypt=False`, `function="main"`, `input=""` and
`fuel=max_fuel_limit`.

`response_digest(input_hash, fuel_used, output_hash)` gives the SHA-256 digest
that the shared key signs for a response. `write_frame` writes a payload
prefixed with its big-endian 32-bit length, and `write_error` prints
`Runtime error: Error: <message>` to stderr and sends `Error: <message>` as a
frame. `EnclaveError` carries an `EnclaveErrorKind` naming why the enclave
failed.

## Enclave configuration

`sgxattest.args.parse_args(argv)` parses the enclave options into an
`Arguments` value. Exactly one of `--initial-node`, `--encoded-secret-key HEX`
or `--peer-ips IP,IP,...` selects how the shared key is obtained; the other
required options are `--tls-key-size` (at least 2048), `--our-ip`,
`--mtls-port`, `--tls-port`, `--max-blockstore-size`, `--max-fuel-limit`,
`--max-input-size`, `--max-output-size` (all non-zero) and
`--max-concurrent-wasm-threads` (at most 128), plus the optional `--debug`.
Invalid input raises `ValueError`.

## What it does not do

This package verifies attestations and handles the message formats; it does
not run anything. It does not generate quotes or reports, seal or derive keys,
fetch content from a blockstore, execute wasm modules, sign responses, or run
the TLS, mutual-TLS or request servers. It installs no command; `parse_args`
is meant to be called from your own program.