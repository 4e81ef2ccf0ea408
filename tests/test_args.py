import ipaddress

import pytest

from sgxattest.args import (
    FetchFromPeers,
    InitialNode,
    SealedOnDisk,
    parse_args,
)

BASE = [
    "--tls-key-size", "2048",
    "--our-ip", "127.0.0.1",
    "--mtls-port", "55557",
    "--tls-port", "55558",
    "--max-blockstore-size", "1000",
    "--max-fuel-limit", "4000000000",
    "--max-input-size", "100",
    "--max-output-size", "200",
    "--max-concurrent-wasm-threads", "8",
]


def _with(**overrides):
    argv = list(BASE)
    for name, value in overrides.items():
        flag = "--" + name.replace("_", "-")
        argv[argv.index(flag) + 1] = value
    return argv


def test_initial_node_parses_all_fields():
    args = parse_args(["--initial-node", *BASE])
    assert args.shared_secret_method == InitialNode()
    assert args.tls_config.tls_key_size == 2048
    assert args.tls_config.our_ip == ipaddress.ip_address("127.0.0.1")
    assert args.tls_config.mtls_port == 55557
    assert args.tls_config.tls_port == 55558
    assert args.wasm_config.max_blockstore_size == 1000
    assert args.wasm_config.max_fuel_limit == 4000000000
    assert args.wasm_config.max_input_size == 100
    assert args.wasm_config.max_output_size == 200
    assert args.wasm_config.max_concurrent_wasm_threads == 8
    assert args.wasm_config.debug is False


def test_debug_flag():
    args = parse_args(["--initial-node", "--debug", *BASE])
    assert args.wasm_config.debug is True


def test_sealed_on_disk_decodes_hex():
    args = parse_args(["--encoded-secret-key", "00ff10", *BASE])
    assert args.shared_secret_method == SealedOnDisk(bytes.fromhex("00ff10"))


def test_invalid_hex_rejected():
    with pytest.raises(ValueError):
        parse_args(["--encoded-secret-key", "abc", *BASE])
    with pytest.raises(ValueError):
        parse_args(["--encoded-secret-key", "zz", *BASE])


def test_peer_ips_split_on_commas():
    args = parse_args(["--peer-ips", "10.0.0.1,10.0.0.2", *BASE])
    assert args.shared_secret_method == FetchFromPeers(("10.0.0.1", "10.0.0.2"))


def test_method_required():
    with pytest.raises(ValueError):
        parse_args(BASE)


def test_methods_are_exclusive():
    with pytest.raises(ValueError):
        parse_args(["--initial-node", "--peer-ips", "10.0.0.1", *BASE])


def test_small_tls_key_rejected():
    with pytest.raises(ValueError, match="key must be at least 2048 bytes"):
        parse_args(["--initial-node", *_with(tls_key_size="2047")])


def test_zero_limits_rejected():
    with pytest.raises(ValueError, match="max blockstore size cannot be zero"):
        parse_args(["--initial-node", *_with(max_blockstore_size="0")])
    with pytest.raises(ValueError, match="max fuel limit cannot be zero"):
        parse_args(["--initial-node", *_with(max_fuel_limit="0")])
    with pytest.raises(ValueError, match="max input cannot be zero"):
        parse_args(["--initial-node", *_with(max_input_size="0")])
    with pytest.raises(ValueError, match="max input cannot be zero"):
        parse_args(["--initial-node", *_with(max_output_size="0")])


def test_thread_limit():
    args = parse_args(["--initial-node", *_with(max_concurrent_wasm_threads="128")])
    assert args.wasm_config.max_concurrent_wasm_threads == 128
    with pytest.raises(ValueError, match="max wasm threads must be <= 128"):
        parse_args(["--initial-node", *_with(max_concurrent_wasm_threads="129")])


def test_port_out_of_range():
    with pytest.raises(ValueError):
        parse_args(["--initial-node", *_with(mtls_port="65536")])


def test_ipv6_address():
    args = parse_args(["--initial-node", *_with(our_ip="::1")])
    assert args.tls_config.our_ip == ipaddress.ip_address("::1")


def test_invalid_ip_rejected():
    with pytest.raises(ValueError):
        parse_args(["--initial-node", *_with(our_ip="not-an-ip")])


def test_missing_required_option():
    argv = ["--initial-node", *BASE[:-2]]
    with pytest.raises(ValueError):
        parse_args(argv)