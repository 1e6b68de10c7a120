"""Ephemeral X25519 key exchange that gives every pair of nodes a shared key."""

from __future__ import annotations

import logging
import queue
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from .types import ECDHMessage

logger = logging.getLogger(__name__)

ECDH_EXCHANGE_TOPIC = "ecdh:exchange"
ECDH_EXCHANGE_TIMEOUT = timedelta(minutes=2)
SYMMETRIC_KEY_SIZE = 32


class _Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class _PubSub(Protocol):
    def publish(self, topic: str, data: bytes) -> None: ...

    def subscribe(self, topic: str, handler: Callable[[bytes], None]) -> _Subscription: ...


class _IdentityStore(Protocol):
    def sign_ecdh_message(self, msg: ECDHMessage) -> bytes: ...

    def verify_signature(self, msg: ECDHMessage) -> None: ...

    def set_symmetric_key(self, peer_id: str, key: bytes) -> None: ...

    def remove_symmetric_key(self, peer_id: str) -> None: ...

    def symmetric_key_count(self) -> int: ...


def derive_consistent_info(a: str, b: str) -> bytes:
    """HKDF info for a pair of nodes, identical whichever side computes it."""
    if a < b:
        return (a + b).encode("utf-8")
    return (b + a).encode("utf-8")


class ECDHSession:
    """Announces this node's ephemeral key and derives keys from peers' announcements.

    Failures raised while handling incoming announcements are put on
    ``error_queue``, since they arrive from a messaging callback.
    """

    def __init__(
        self,
        node_id: str,
        peer_ids: list,
        pub_sub: _PubSub,
        identity_store: _IdentityStore,
    ) -> None:
        self.node_id = node_id
        self.peer_ids = list(peer_ids)
        self.pub_sub = pub_sub
        self.identity_store = identity_store
        self.error_queue: "queue.Queue[Exception]" = queue.Queue()
        self._private_key: Optional[X25519PrivateKey] = None
        self._public_key: Optional[X25519PublicKey] = None
        self._subscription: Optional[_Subscription] = None

    def is_initialized(self) -> bool:
        return self._public_key is not None

    def remove_peer(self, peer_id: str) -> None:
        self.identity_store.remove_symmetric_key(peer_id)

    def ready_peers_count(self) -> int:
        return self.identity_store.symmetric_key_count()

    def listen_key_exchange(self) -> None:
        """Generate a fresh key pair and subscribe to peers' announcements."""
        self._private_key = X25519PrivateKey.generate()
        self._public_key = self._private_key.public_key()
        try:
            self._subscription = self.pub_sub.subscribe(ECDH_EXCHANGE_TOPIC, self._on_message)
        except Exception as exc:
            raise RuntimeError(f"failed to subscribe to ECDH topic: {exc}") from exc

    def _on_message(self, data: bytes) -> None:
        try:
            msg = ECDHMessage.from_json(data)
        except ValueError:
            return
        if msg.from_id == self.node_id or self._private_key is None:
            return

        try:
            self.identity_store.verify_signature(msg)
        except Exception as exc:
            self.error_queue.put(exc)
            return

        try:
            peer_key = X25519PublicKey.from_public_bytes(msg.public_key or b"")
            shared_secret = self._private_key.exchange(peer_key)
        except ValueError as exc:
            self.error_queue.put(exc)
            return

        symmetric_key = self.derive_symmetric_key(shared_secret, msg.from_id)
        self.identity_store.set_symmetric_key(msg.from_id, symmetric_key)
        logger.debug(
            "ECDH progress peer=%s current=%d",
            msg.from_id,
            self.identity_store.symmetric_key_count(),
        )

    def broadcast_public_key(self) -> None:
        """Publish this node's signed public key."""
        if self._public_key is None:
            raise RuntimeError("ECDH session is not initialized")
        msg = ECDHMessage(
            from_id=self.node_id,
            public_key=self._public_key.public_bytes(Encoding.Raw, PublicFormat.Raw),
            timestamp=datetime.now(timezone.utc),
        )
        try:
            msg.signature = self.identity_store.sign_ecdh_message(msg)
        except Exception as exc:
            raise RuntimeError(f"failed to sign ECDH message: {exc}") from exc

        logger.info("Starting to broadcast DH key, node %s", self.node_id)
        try:
            self.pub_sub.publish(ECDH_EXCHANGE_TOPIC, msg.to_json())
        except Exception as exc:
            raise RuntimeError(
                f"{self.node_id} failed to publish DH message because {exc}"
            ) from exc

    def derive_symmetric_key(self, shared_secret: bytes, peer_id: str) -> bytes:
        """A 32-byte key from the shared secret, bound to both node IDs."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=SYMMETRIC_KEY_SIZE,
            salt=None,
            info=derive_consistent_info(self.node_id, peer_id),
        )
        return hkdf.derive(shared_secret)

    def close(self) -> None:
        """Stop listening for announcements."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None