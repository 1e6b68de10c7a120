"""Coordination layer for threshold-signature wallet nodes: wire types, party IDs, rounds, sessions, key exchange, peer readiness, node planning, migrations and secure memory."""

__version__ = "0.1.0"

__all__ = [
    "types",
    "memory",
    "party_id",
    "rounds",
    "migration",
    "session",
    "key_exchange",
    "registry",
    "node",
]