"""Message routing shared by keygen, signing and resharing sessions."""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .party_id import compare_party_ids, party_id_to_node_id, party_ids_to_node_ids
from .rounds import RoundInfo
from .types import (
    PartyID,
    TssMessage,
    marshal_tss_message,
    new_tss_message,
    unmarshal_tss_message,
)

logger = logging.getLogger(__name__)

TYPE_GENERATE_WALLET_RESULT_FMT = "mpc.mpc_keygen_result.%s"
TYPE_RESHARE_WALLET_RESULT_FMT = "mpc.mpc_reshare_result.%s"
TYPE_SIGNING_RESULT_FMT = "mpc.mpc_signing_result.%s"

_ALGORITHMS = ("ecdsa", "eddsa")


class SessionType(str, Enum):
    """Signature scheme a session runs."""

    ECDSA = "session_ecdsa"
    EDDSA = "session_eddsa"


class NotEnoughParticipantsError(Exception):
    """Fewer participants are available than the threshold requires."""

    def __init__(self, message: str = "Not enough participants to sign") -> None:
        super().__init__(message)


class NotInParticipantListError(Exception):
    """This node does not hold a share of the key."""

    def __init__(self, message: str = "Node is not in the participant list") -> None:
        super().__init__(message)


class _Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class _PubSub(Protocol):
    def publish(self, topic: str, data: bytes) -> None: ...

    def subscribe(self, topic: str, handler: Callable[[bytes], None]) -> _Subscription: ...


class _DirectMessaging(Protocol):
    def listen(self, topic: str, handler: Callable[[bytes], None]) -> _Subscription: ...

    def send_to_self(self, topic: str, data: bytes) -> None: ...

    def send_to_other(self, topic: str, data: bytes) -> None: ...


class _IdentityStore(Protocol):
    def sign_message(self, msg: TssMessage) -> bytes: ...

    def verify_message(self, msg: TssMessage) -> None: ...

    def encrypt_message(self, plaintext: bytes, peer_id: str) -> bytes: ...

    def decrypt_message(self, cipher: bytes, peer_id: str) -> bytes: ...


class _KVStore(Protocol):
    def get(self, key: str) -> bytes: ...


class _Party(Protocol):
    def update_from_bytes(self, data: bytes, from_party: PartyID, is_broadcast: bool) -> bool: ...


@dataclass(frozen=True)
class TopicComposer:
    """Builds the broadcast topic and per-pair direct topics of a session."""

    compose_broadcast_topic: Callable[[], str]
    compose_direct_topic: Callable[[str, str], str]


@dataclass
class OutgoingMessage:
    """A protocol message produced locally, with its routing."""

    data: bytes
    is_broadcast: bool
    from_party: PartyID
    to: list = field(default_factory=list)


def _check_algorithm(algorithm: str) -> None:
    if algorithm not in _ALGORITHMS:
        raise ValueError(f"unsupported algorithm: {algorithm!r}")


def keygen_topic_composer(algorithm: str, wallet_id: str) -> TopicComposer:
    _check_algorithm(algorithm)
    return TopicComposer(
        compose_broadcast_topic=lambda: f"keygen:broadcast:{algorithm}:{wallet_id}",
        compose_direct_topic=lambda from_id, to_id: (
            f"keygen:direct:{algorithm}:{from_id}:{to_id}:{wallet_id}"
        ),
    )


def signing_topic_composer(algorithm: str, wallet_id: str, tx_id: str) -> TopicComposer:
    _check_algorithm(algorithm)
    return TopicComposer(
        compose_broadcast_topic=lambda: f"sign:{algorithm}:broadcast:{wallet_id}:{tx_id}",
        compose_direct_topic=lambda from_id, to_id: (
            f"sign:{algorithm}:direct:{from_id}:{to_id}:{tx_id}"
        ),
    )


def reshare_topic_composer(algorithm: str, wallet_id: str) -> TopicComposer:
    _check_algorithm(algorithm)
    label = "resharing" if algorithm == "ecdsa" else "reshare"
    return TopicComposer(
        compose_broadcast_topic=lambda: f"{label}:broadcast:{algorithm}:{wallet_id}",
        compose_direct_topic=lambda from_id, to_id: (
            f"{label}:direct:{algorithm}:{from_id}:{to_id}:{wallet_id}"
        ),
    )


def wallet_id_with_version(wallet_id: str, version: int) -> str:
    """Storage key suffix for a versioned share; version 0 means unversioned."""
    if version > 0:
        return f"{wallet_id}_v{version}"
    return wallet_id


def extract_sender_id_from_direct_topic(topic: str) -> str:
    """The sender node ID of a direct topic, or '' if the topic is malformed."""
    parts = topic.split(":", 4)
    if len(parts) >= 4:
        return parts[3]
    return ""


@dataclass(eq=False)
class Session:
    """Routes protocol messages between the local party and its peers.

    Failures that occur while handling messages are put on ``error_queue``
    rather than raised, since they arrive from messaging callbacks.
    """

    wallet_id: str
    pub_sub: _PubSub
    direct: _DirectMessaging
    identity_store: _IdentityStore
    kvstore: _KVStore
    self_party: PartyID
    party_ids: list
    topic_composer: TopicComposer
    get_round: Callable[[bytes, PartyID, bool], RoundInfo]
    key_prefix: str = "ecdsa"
    session_type: Optional[SessionType] = None
    threshold: int = 0
    version: int = 0
    participant_peer_ids: list = field(default_factory=list)
    party: Optional[_Party] = None
    pubkey_bytes: Optional[bytes] = None
    idempotent_key: str = ""
    error_queue: "queue.Queue[Exception]" = field(default_factory=queue.Queue)
    _broadcast_sub: Optional[_Subscription] = field(default=None, init=False, repr=False)
    _direct_subs: list = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def party_count(self) -> int:
        return len(self.party_ids)

    def compose_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"

    def _report(self, error: Exception) -> None:
        self.error_queue.put(error)

    def handle_tss_message(self, outgoing: OutgoingMessage) -> None:
        """Publish a locally produced message: signed broadcast or encrypted direct."""
        tss_msg = new_tss_message(
            self.wallet_id,
            outgoing.data,
            outgoing.is_broadcast,
            outgoing.from_party,
            list(outgoing.to),
        )
        logger.debug(
            "%s sending message from %s to %s broadcast=%s",
            self.session_type.value if self.session_type else "session",
            self.self_party,
            [str(p) for p in outgoing.to],
            outgoing.is_broadcast,
        )

        if outgoing.is_broadcast and not outgoing.to:
            try:
                tss_msg.signature = self.identity_store.sign_message(tss_msg)
            except Exception as exc:
                self._report(RuntimeError(f"failed to sign message: {exc}"))
                return
            payload = marshal_tss_message(tss_msg)
            try:
                self.pub_sub.publish(self.topic_composer.compose_broadcast_topic(), payload)
            except Exception as exc:
                self._report(exc)
            return

        payload = marshal_tss_message(tss_msg)
        self_id = party_id_to_node_id(self.self_party)
        for recipient in outgoing.to:
            to_node_id = party_id_to_node_id(recipient)
            topic = self.topic_composer.compose_direct_topic(self_id, to_node_id)
            if to_node_id == self_id:
                try:
                    self.direct.send_to_self(topic, payload)
                except Exception as exc:
                    logger.error("Failed in send_to_self on %s: %s", topic, exc)
                    self._report(RuntimeError(f"failed to send direct message to {topic}"))
                continue
            try:
                cipher = self.identity_store.encrypt_message(payload, to_node_id)
            except Exception as exc:
                logger.error("Encrypt tss message error on %s: %s", topic, exc)
                self._report(RuntimeError(f"encrypt tss message error {exc}"))
                continue
            try:
                self.direct.send_to_other(topic, cipher)
            except Exception as exc:
                logger.error("Failed in send_to_other on %s: %s", topic, exc)
                self._report(RuntimeError(f"failed to send direct message to {exc}"))

    def receive_p2p_tss_message(self, topic: str, cipher: bytes) -> None:
        """Decrypt and deliver a direct message received on ``topic``."""
        sender_id = extract_sender_id_from_direct_topic(topic)
        if not sender_id:
            self._report(
                ValueError(
                    "failed to extract senderID from direct topic: "
                    "the direct topic format is wrong"
                )
            )
            return

        if sender_id == party_id_to_node_id(self.self_party):
            plaintext = cipher
        else:
            try:
                plaintext = self.identity_store.decrypt_message(cipher, sender_id)
            except Exception as exc:
                self._report(RuntimeError(f"failed to decrypt message: {exc}, tampered message"))
                return

        try:
            msg = unmarshal_tss_message(plaintext)
        except ValueError as exc:
            self._report(ValueError(f"failed to unmarshal message: {exc}"))
            return
        self.receive_tss_message(msg)

    def receive_broadcast_tss_message(self, raw: bytes) -> None:
        """Verify and deliver a signed broadcast message."""
        try:
            msg = unmarshal_tss_message(raw)
        except ValueError as exc:
            self._report(ValueError(f"failed to unmarshal message: {exc}"))
            return
        try:
            self.identity_store.verify_message(msg)
        except Exception as exc:
            self._report(RuntimeError(f"Failed to verify message: {exc}, tampered message"))
            return
        self.receive_tss_message(msg)

    def receive_tss_message(self, msg: TssMessage) -> bool:
        """Hand a message meant for this party to the protocol.

        Returns True when the party accepted it.
        """
        try:
            round_info = self.get_round(msg.msg_bytes or b"", self.self_party, msg.is_broadcast)
        except Exception as exc:
            self._report(RuntimeError(f"Broken TSS Share: {exc}"))
            return False

        recipients = msg.to or []
        logger.debug(
            "Received message round=%s broadcast=%s to=%s from=%s self=%s",
            round_info.round_msg,
            msg.is_broadcast,
            [str(p) for p in recipients],
            msg.from_party,
            self.self_party,
        )
        is_broadcast = msg.is_broadcast and not recipients
        is_to_self = any(compare_party_ids(to, self.self_party) for to in recipients)
        if not (is_broadcast or is_to_self):
            return False

        if self.party is None:
            self._report(RuntimeError("session has no protocol party"))
            return False

        with self._lock:
            try:
                accepted = self.party.update_from_bytes(
                    msg.msg_bytes or b"", msg.from_party, msg.is_broadcast
                )
            except Exception as exc:
                logger.error("Failed to update party for wallet %s: %s", self.wallet_id, exc)
                return False
        if not accepted:
            logger.error("Party rejected message for wallet %s", self.wallet_id)
        return bool(accepted)

    def _subscribe_direct_topic(self, topic: str) -> None:
        def handler(cipher: bytes) -> None:
            self.receive_p2p_tss_message(topic, cipher)

        try:
            subscription = self.direct.listen(topic, handler)
        except Exception as exc:
            raise RuntimeError(f"Failed to subscribe to direct topic {topic}: {exc}") from exc
        self._direct_subs.append(subscription)

    def _subscribe_from_peers(self, from_ids: list) -> None:
        to_id = party_id_to_node_id(self.self_party)
        for from_id in from_ids:
            topic = self.topic_composer.compose_direct_topic(from_id, to_id)
            try:
                self._subscribe_direct_topic(topic)
            except RuntimeError as exc:
                self._report(exc)

    def _subscribe_broadcast(self) -> None:
        topic = self.topic_composer.compose_broadcast_topic()
        try:
            self._broadcast_sub = self.pub_sub.subscribe(topic, self.receive_broadcast_tss_message)
        except Exception as exc:
            self._report(RuntimeError(f"Failed to subscribe to broadcast topic {topic}: {exc}"))

    def listen_to_incoming_messages(self) -> None:
        """Subscribe to the broadcast topic and to direct topics from every party."""
        self._subscribe_broadcast()
        self._subscribe_from_peers(party_ids_to_node_ids(self.party_ids))

    def listen_to_peers(self, peer_ids: list) -> None:
        """Subscribe to direct topics from additional peers."""
        self._subscribe_from_peers(list(peer_ids))

    def close(self) -> None:
        """Drop every subscription; the first failure is raised."""
        if self._broadcast_sub is not None:
            self._broadcast_sub.unsubscribe()
            self._broadcast_sub = None
        while self._direct_subs:
            self._direct_subs[0].unsubscribe()
            self._direct_subs.pop(0)

    def load_old_share_data(self, wallet_id: str, version: int) -> Any:
        """Load a stored share, from the versioned key or the legacy unversioned one."""
        if version < 0:
            raise ValueError(f"invalid share version: {version}")
        key = self.compose_key(wallet_id_with_version(wallet_id, version))
        data = self.kvstore.get(key)
        try:
            return json.loads(data)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to unmarshal wallet data: {exc}") from exc