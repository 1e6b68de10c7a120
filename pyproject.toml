[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mpcnode"
version = "0.1.0"
description = "Coordination layer for threshold (MPC) wallet nodes: wire messages, party identities, topics, peer readiness and ECDH key exchange"
requires-python = ">=3.10"
keywords = ["mpc", "threshold-signatures", "tss", "ecdh", "wallet", "ecdsa", "eddsa"]
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
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mpcnode"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
