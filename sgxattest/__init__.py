"""Intel SGX DCAP remote attestation verification and enclave service wire formats."""

__version__ = "0.1.0"