"""One-off migrations that add the key-type prefix to stored keys."""

from __future__ import annotations

import logging
from typing import MutableMapping, Optional, Protocol, Union

logger = logging.getLogger(__name__)

KEYINFO_PREFIX = "threshold_keyinfo"
_KEYINFO_KEY_PREFIX = "threshold_keyinfo/"

Key = Union[str, bytes]


class KeyValueBackend(Protocol):
    """The subset of a remote key/value store the keyinfo migration needs."""

    def keys(self, prefix: str) -> list[str]: ...

    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


def _has_type_prefix(key: Key) -> bool:
    if isinstance(key, bytes):
        return key.startswith((b"eddsa:", b"ecdsa:"))
    return key.startswith(("eddsa:", "ecdsa:"))


def _with_ecdsa_prefix(key: Key) -> Key:
    if isinstance(key, bytes):
        return b"ecdsa:" + key
    return f"ecdsa:{key}"


def add_key_type_prefix(store: MutableMapping[Key, bytes]) -> list[Key]:
    """Move every key lacking a key-type prefix under ``ecdsa:``.

    Returns the keys of the store after the migration.
    """
    for key, value in list(store.items()):
        if _has_type_prefix(key):
            continue
        store[_with_ecdsa_prefix(key)] = value
        del store[key]
    return list(store.keys())


def _scan_wallet_id(key: str) -> str:
    if not key.startswith(_KEYINFO_KEY_PREFIX):
        raise ValueError(f"key {key!r} does not match {_KEYINFO_KEY_PREFIX}<walletID>")
    tokens = key[len(_KEYINFO_KEY_PREFIX):].split()
    if not tokens:
        raise ValueError(f"key {key!r} holds no wallet ID")
    return tokens[0]


def update_keyinfo_prefix(kv: KeyValueBackend, prefix: str = KEYINFO_PREFIX) -> list[str]:
    """Rename keyinfo entries without a key type to ``threshold_keyinfo/ecdsa:<id>``.

    Returns every key listed under ``prefix``. Raises ValueError when a key
    cannot be parsed and KeyError when a listed key has vanished. Failures to
    write or delete a single entry are logged and the migration carries on.
    """
    listed = kv.keys(prefix)
    for key in listed:
        if "ecdsa" in key or "eddsa" in key:
            continue
        value = kv.get(key)
        if value is None:
            raise KeyError(key)
        wallet_id = _scan_wallet_id(key)
        new_key = f"{_KEYINFO_KEY_PREFIX}ecdsa:{wallet_id}"
        try:
            kv.put(new_key, value)
        except Exception as exc:  # backend-specific failures
            logger.warning("Failed to put key for wallet %s: %s", wallet_id, exc)
        try:
            kv.delete(key)
        except Exception as exc:  # backend-specific failures
            logger.warning("Failed to delete key %s: %s", key, exc)
    return list(listed)