"""Tracks which peers are online and whether pairwise keys are established."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from .key_exchange import ECDHSession

logger = logging.getLogger(__name__)

READINESS_CHECK_PERIOD = 1.0
HEALTH_CHECK_PERIOD = 5.0
READY_PREFIX = "ready/"
HEALTH_CHECK_RETRY_ATTEMPTS = 2

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}

PeerCallback = Callable[[str], None]


class _ConsulKV(Protocol):
    def put(self, key: str, value: bytes) -> None: ...

    def keys(self, prefix: str) -> list: ...

    def delete(self, key: str) -> None: ...


class _Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class _DirectMessaging(Protocol):
    def listen(self, topic: str, handler: Callable[[bytes], None]) -> _Subscription: ...

    def send_to_other_with_retry(self, topic: str, data: bytes, attempts: int) -> None: ...


class _IdentityStore(Protocol):
    def check_symmetric_key_complete(self, required: int) -> bool: ...


def _start_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


def get_peer_ids_except_self(node_id: str, peer_node_ids: list) -> list:
    return [peer_id for peer_id in peer_node_ids if peer_id != node_id]


def parse_health_data(s: str) -> tuple:
    """Split ``"<peerID>,<bool>"`` into the peer ID and its ECDH readiness."""
    parts = s.split(",", 1)
    if len(parts) != 2:
        raise ValueError(f"invalid format: {s!r}")
    peer_id, flag = parts
    if flag in _TRUE_WORDS:
        return peer_id, True
    if flag in _FALSE_WORDS:
        return peer_id, False
    raise ValueError(f"invalid boolean: {flag!r}")


def _ready_key(node_id: str) -> str:
    return f"{READY_PREFIX}{node_id}"


def _health_check_topic(node_id: str) -> str:
    return f"healthcheck:{node_id}"


def _scan_ready_key(key: str) -> str:
    if key.startswith(READY_PREFIX):
        tokens = key[len(READY_PREFIX):].split()
        if tokens:
            return tokens[0]
    logger.error("Parse ready key failed: %r", key)
    return ""


class Registry:
    """Peer readiness as seen through the shared ready/ keys and health checks."""

    def __init__(
        self,
        node_id: str,
        peer_node_ids: list,
        consul_kv: _ConsulKV,
        direct_messaging: _DirectMessaging,
        pub_sub,
        identity_store: _IdentityStore,
        mpc_threshold: int,
        ecdh_session: Optional[ECDHSession] = None,
        spawn: Callable[[Callable[[], None]], None] = _start_thread,
    ) -> None:
        if mpc_threshold < 1:
            raise ValueError("mpc_threshold must be greater than 0")
        self.node_id = node_id
        self.peer_node_ids = get_peer_ids_except_self(node_id, peer_node_ids)
        self.consul_kv = consul_kv
        self.health_check = direct_messaging
        self.pub_sub = pub_sub
        self.identity_store = identity_store
        self.mpc_threshold = mpc_threshold
        self.ecdh_session = ecdh_session or ECDHSession(
            node_id, peer_node_ids, pub_sub, identity_store
        )
        self._spawn = spawn
        self._ready_map: dict = {}
        self._ready_count = 1  # self
        self._all_ready = False
        self._lock = threading.RLock()
        self._on_peer_connected: Optional[PeerCallback] = None
        self._on_peer_disconnected: Optional[PeerCallback] = None
        self._on_peer_reconnected: Optional[PeerCallback] = None

    def _drain_ecdh_errors(self) -> None:
        while not self.ecdh_session.error_queue.empty():
            logger.error("ECDH error: %s", self.ecdh_session.error_queue.get_nowait())

    def _trigger_ecdh_exchange(self) -> None:
        logger.info("Triggering ECDH key exchange")
        if not self.ecdh_session.is_initialized():
            try:
                self.ecdh_session.listen_key_exchange()
            except Exception as exc:
                logger.error("Failed to start ECDH listener during retrigger: %s", exc)
                return
        try:
            self.ecdh_session.broadcast_public_key()
        except Exception as exc:
            logger.error("Failed to trigger ECDH exchange: %s", exc)

    def _register_ready_pairs(self, peer_ids: list) -> None:
        for peer_id in peer_ids:
            with self._lock:
                known = peer_id in self._ready_map
                was_ready = self._ready_map.get(peer_id, False)
                if not was_ready:
                    self._ready_count += 1
                self._ready_map[peer_id] = True
            if not known:
                logger.info("Register peer %s", peer_id)
                if self._on_peer_connected is not None:
                    self._on_peer_connected(peer_id)
                self._spawn(self._trigger_ecdh_exchange)
            elif not was_ready:
                logger.info("Reconnecting peer %s", peer_id)
                if self._on_peer_reconnected is not None:
                    self._on_peer_reconnected(peer_id)
                self._spawn(self._trigger_ecdh_exchange)

        with self._lock:
            if len(peer_ids) == len(self.peer_node_ids) and not self._all_ready:
                self._all_ready = True
                logger.info("All peers are ready including ECDH exchange completion")

    def _on_health_check(self, data: bytes) -> None:
        try:
            peer_id, is_ecdh_ready = parse_health_data(data.decode("utf-8", errors="replace"))
        except ValueError:
            peer_id, is_ecdh_ready = "", False
        logger.debug("Health check ok peer=%s ecdh_ready=%s", peer_id, is_ecdh_ready)
        if not is_ecdh_ready:
            logger.info("[ECDH exchange retriggered] not all peers are ready, peer %s", peer_id)
            self._spawn(self._trigger_ecdh_exchange)

    def ready(self) -> None:
        """Start the key exchange, announce readiness and answer health checks."""
        try:
            self.ecdh_session.listen_key_exchange()
            self.ecdh_session.broadcast_public_key()
        except Exception as exc:
            raise RuntimeError(f"failed to start ECDH exchange: {exc}") from exc
        try:
            self.consul_kv.put(_ready_key(self.node_id), b"true")
        except Exception as exc:
            raise RuntimeError(f"Put ready key failed: {exc}") from exc
        try:
            self.health_check.listen(_health_check_topic(self.node_id), self._on_health_check)
        except Exception as exc:
            raise RuntimeError(f"Listen health check failed: {exc}") from exc

    def _list_ready_peers(self) -> list:
        keys = self.consul_kv.keys(READY_PREFIX)
        peers = []
        for key in keys:
            peer_id = _scan_ready_key(key)
            if peer_id != self.node_id:
                peers.append(peer_id)
        return peers

    def poll_once(self) -> list:
        """Reconcile readiness with the ready/ keys once; returns the ready peers seen."""
        self._drain_ecdh_errors()
        try:
            new_ready = self._list_ready_peers()
        except Exception as exc:
            logger.error("List ready keys failed: %s", exc)
            new_ready = []

        if len(new_ready) != len(self.peer_node_ids):
            with self._lock:
                self._all_ready = False
                currently_ready = [p for p, ok in self._ready_map.items() if ok]
            seen = set(new_ready)
            for peer_id in currently_ready:
                if peer_id in seen:
                    continue
                logger.warning("Peer disconnected: %s", peer_id)
                with self._lock:
                    self._ready_map[peer_id] = False
                    self._ready_count -= 1
                self.ecdh_session.remove_peer(peer_id)
                if self._on_peer_disconnected is not None:
                    self._on_peer_disconnected(peer_id)

        self._register_ready_pairs(new_ready)
        return new_ready

    def _health_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(HEALTH_CHECK_PERIOD):
            self.check_peers_health_once()

    def watch_peers_ready(self, stop_event: threading.Event) -> None:
        """Poll readiness every second, and health-check peers, until stopped."""
        self._spawn(lambda: self._health_loop(stop_event))
        while True:
            self.poll_once()
            if stop_event.wait(READINESS_CHECK_PERIOD):
                return

    def check_peers_health_once(self) -> None:
        """Ping every ready peer; drop the ready key of peers nobody answers for."""
        if not self.are_peers_ready():
            logger.info(
                "Peers are not ready yet: ready=%d expected=%d",
                self.ready_peers_count(),
                len(self.peer_node_ids) + 1,
            )
        try:
            peers = self._list_ready_peers()
        except Exception as exc:
            logger.error("List ready keys failed: %s", exc)
            return
        payload = self._compose_health_data().encode("utf-8")
        for peer_id in peers:
            try:
                self.health_check.send_to_other_with_retry(
                    _health_check_topic(peer_id), payload, HEALTH_CHECK_RETRY_ATTEMPTS
                )
            except Exception as exc:
                if "no responders" not in str(exc):
                    continue
                logger.info("No response from peer %s", peer_id)
                try:
                    self.consul_kv.delete(_ready_key(peer_id))
                except Exception as delete_exc:
                    logger.error("Delete ready key failed: %s", delete_exc)

    def _is_ecdh_ready(self) -> bool:
        return self.identity_store.check_symmetric_key_complete(
            self.ready_peers_count_exclude_self()
        )

    def _compose_health_data(self) -> str:
        return f"{self.node_id},{'true' if self._is_ecdh_ready() else 'false'}"

    def are_peers_ready(self) -> bool:
        """All peers are up and pairwise keys with all of them exist."""
        with self._lock:
            return self._all_ready and self._is_ecdh_ready()

    def are_majority_ready(self) -> bool:
        """At least threshold+1 nodes are up and keys with the ready ones exist."""
        return self.ready_peers_count() >= self.mpc_threshold + 1 and self._is_ecdh_ready()

    def resign(self) -> None:
        """Withdraw this node's ready key before shutting down."""
        try:
            self.consul_kv.delete(_ready_key(self.node_id))
        except Exception as exc:
            raise RuntimeError(f"Delete ready key failed: {exc}") from exc

    def ready_peers_count(self) -> int:
        """Ready nodes, this one included."""
        with self._lock:
            return self._ready_count

    def ready_peers_count_exclude_self(self) -> int:
        return self.ready_peers_count() - 1

    def ready_peers_include_self(self) -> list:
        with self._lock:
            peers = [peer_id for peer_id, ok in self._ready_map.items() if ok]
        peers.append(self.node_id)
        return peers

    def total_peers_count(self) -> int:
        return len(self.peer_node_ids) + 1

    def on_peer_connected(self, callback: PeerCallback) -> None:
        self._on_peer_connected = callback

    def on_peer_disconnected(self, callback: PeerCallback) -> None:
        self._on_peer_disconnected = callback

    def on_peer_reconnected(self, callback: PeerCallback) -> None:
        self._on_peer_reconnected = callback