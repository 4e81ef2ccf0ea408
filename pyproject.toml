[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sgxattest"
version = "0.1.0"
description = "Intel SGX DCAP remote attestation verification, with the wire formats of an attested key-sharing and compute service"
requires-python = ">=3.10"
keywords = [
    "sgx",
    "dcap",
    "remote-attestation",
    "quote",
    "tcb",
    "x509",
    "enclave",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: Security",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sgxattest"]

[tool.hatch.build.targets.sdist]
include = [
    "sgxattest",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 99
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
