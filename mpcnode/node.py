"""Participant selection and committee planning for a single MPC node."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Protocol, Union

from .party_id import DEFAULT_VERSION, generate_party_ids, party_ids_to_node_ids
from .session import (
    NotEnoughParticipantsError,
    NotInParticipantListError,
    SessionType,
    wallet_id_with_version,
)
from .types import PartyID

logger = logging.getLogger(__name__)

PURPOSE_KEYGEN = "keygen"
PURPOSE_SIGN = "sign"
PURPOSE_RESHARE = "reshare"

_PREFIXES = {SessionType.ECDSA: "ecdsa", SessionType.EDDSA: "eddsa"}


@dataclass
class KeyInfo:
    """Who holds shares of a wallet key, its threshold and its share version."""

    participant_peer_ids: list = field(default_factory=list)
    threshold: int = 0
    version: int = DEFAULT_VERSION


class _KeyInfoStore(Protocol):
    def get(self, key: str) -> KeyInfo: ...


class _PeerRegistry(Protocol):
    def ready_peers_count(self) -> int: ...

    def ready_peers_include_self(self) -> list: ...

    def resign(self) -> None: ...


def compose_ready_key(node_id: str) -> str:
    """The key a node writes to announce it is ready."""
    return f"ready/{node_id}"


def _as_session_type(session_type: Union[SessionType, str]) -> SessionType:
    try:
        return SessionType(session_type)
    except ValueError:
        raise ValueError(f"unsupported session type: {session_type!r}") from None


def session_key_prefix(session_type: Union[SessionType, str]) -> str:
    """Storage prefix ('ecdsa' or 'eddsa') of a session type."""
    return _PREFIXES[_as_session_type(session_type)]


def legacy_committee_peers(old_peer_ids: list, new_peer_ids: list) -> list:
    """Peers of the old committee that are not in the new one, in old order.

    They still take part in resharing, since they hand their shares over.
    """
    leaving = set(new_peer_ids)
    return [peer_id for peer_id in old_peer_ids if peer_id not in leaving]


class _SigningPlan(NamedTuple):
    key_info: KeyInfo
    participant_peer_ids: list
    self_party: Optional[PartyID]
    party_ids: list
    version: int


@dataclass
class ReshareSetup:
    """Everything a resharing session needs, as decided by the node."""

    session_type: SessionType
    wallet_id: str
    is_new_party: bool
    self_party: Optional[PartyID]
    old_party_ids: list
    new_party_ids: list
    participant_peer_ids: list
    new_peer_ids: list
    old_threshold: int
    new_threshold: int
    version: int
    pre_params_index: Optional[int] = None

    @property
    def party_ids(self) -> list:
        """The committee this node acts in."""
        return self.new_party_ids if self.is_new_party else self.old_party_ids

    @property
    def old_peer_ids(self) -> list:
        return party_ids_to_node_ids(self.old_party_ids)

    @property
    def legacy_committee_peers(self) -> list:
        return legacy_committee_peers(self.old_peer_ids, self.new_peer_ids)

    def new_key_info(self) -> KeyInfo:
        """Key info to store once the new committee holds the shares."""
        return KeyInfo(
            participant_peer_ids=list(self.new_peer_ids),
            threshold=self.new_threshold,
            version=self.version + 1,
        )

    def new_share_key(self) -> str:
        """Storage key of the share produced by resharing."""
        prefix = session_key_prefix(self.session_type)
        return f"{prefix}:{wallet_id_with_version(self.wallet_id, self.version + 1)}"


class Node:
    """One MPC node: decides who takes part in signing and resharing runs."""

    def __init__(
        self,
        node_id: str,
        peer_ids: list,
        keyinfo_store: _KeyInfoStore,
        peer_registry: _PeerRegistry,
    ) -> None:
        self.node_id = node_id
        self.peer_ids = list(peer_ids)
        self.keyinfo_store = keyinfo_store
        self.peer_registry = peer_registry

    def get_key_info(self, session_type: Union[SessionType, str], wallet_id: str) -> KeyInfo:
        """Stored key info of a wallet; the store's lookup error propagates."""
        prefix = session_key_prefix(session_type)
        return self.keyinfo_store.get(f"{prefix}:{wallet_id}")

    def ready_peers_for_session(self, key_info: KeyInfo, ready_peers: list) -> list:
        """Key participants that are currently ready, in key-info order."""
        ready = set(ready_peers)
        return [peer_id for peer_id in key_info.participant_peer_ids if peer_id in ready]

    def ensure_node_is_participant(self, key_info: KeyInfo) -> None:
        if self.node_id not in key_info.participant_peer_ids:
            raise NotInParticipantListError()

    def get_version(self, session_type: Union[SessionType, str], wallet_id: str) -> int:
        """Share version of a wallet, or the default when no key info exists."""
        prefix = session_key_prefix(session_type)
        try:
            key_info = self.keyinfo_store.get(f"{prefix}:{wallet_id}")
        except Exception as exc:
            logger.error("Get keyinfo failed for wallet %s: %s", wallet_id, exc)
            return DEFAULT_VERSION
        return key_info.version

    def generate_party_ids(self, label: str, ready_peer_ids: list, version: int) -> tuple:
        """This node's party and all parties sorted by key."""
        return generate_party_ids(self.node_id, label, ready_peer_ids, version)

    def signing_participants(
        self, session_type: Union[SessionType, str], wallet_id: str
    ) -> _SigningPlan:
        """Choose the ready key holders that will sign for a wallet."""
        version = self.get_version(session_type, wallet_id)
        key_info = self.get_key_info(session_type, wallet_id)
        ready_peers = self.peer_registry.ready_peers_include_self()
        participants = self.ready_peers_for_session(key_info, ready_peers)
        logger.info(
            "Creating signing session type=%s ready=%s participants=%s min=%d version=%d",
            session_type,
            ready_peers,
            key_info.participant_peer_ids,
            key_info.threshold + 1,
            version,
        )
        if len(participants) < key_info.threshold + 1:
            raise NotEnoughParticipantsError(
                "not enough peers to create signing session! "
                f"expected {key_info.threshold + 1}, got {len(participants)}"
            )
        self.ensure_node_is_participant(key_info)
        self_party, party_ids = self.generate_party_ids(PURPOSE_KEYGEN, participants, version)
        return _SigningPlan(key_info, participants, self_party, party_ids, version)

    def reshare_plan(
        self,
        session_type: Union[SessionType, str],
        wallet_id: str,
        new_threshold: int,
        new_peer_ids: list,
        is_new_peer: bool,
    ) -> Optional[ReshareSetup]:
        """Plan this node's part in moving a key to a new committee.

        Returns None when this node has no role on the requested side.
        """
        kind = _as_session_type(session_type)
        count = self.peer_registry.ready_peers_count()
        if count < new_threshold + 1:
            raise NotEnoughParticipantsError(
                "not enough peers to create reshare session! "
                f"Expected at least {new_threshold + 1}, got {count}"
            )
        if len(new_peer_ids) < new_threshold + 1:
            raise ValueError("new peer list is smaller than required t+1")

        ready_peers = self.peer_registry.ready_peers_include_self()
        ready_set = set(ready_peers)
        for peer_id in new_peer_ids:
            if peer_id not in ready_set:
                raise ValueError(f"new peer {peer_id} is not ready")

        prefix = session_key_prefix(kind)
        try:
            old_key_info = self.keyinfo_store.get(f"{prefix}:{wallet_id}")
        except Exception as exc:
            raise LookupError(f"failed to get old key info: {exc}") from exc

        ready_old = self.ready_peers_for_session(old_key_info, ready_peers)
        in_old = self.node_id in old_key_info.participant_peer_ids
        in_new = self.node_id in new_peer_ids

        if is_new_peer and not in_new:
            logger.info("Skipping new session for %s: node not in new committee", wallet_id)
            return None
        if not is_new_peer and not in_old:
            logger.info("Skipping old session for %s: node not in old committee", wallet_id)
            return None

        if len(ready_old) < old_key_info.threshold + 1:
            raise NotEnoughParticipantsError(
                "not enough peers to create resharing session! "
                f"expected {old_key_info.threshold + 1}, got {len(ready_old)}"
            )
        if not is_new_peer:
            self.ensure_node_is_participant(old_key_info)

        version = self.get_version(kind, wallet_id)
        old_self, old_all = self.generate_party_ids(PURPOSE_KEYGEN, ready_old, version)
        new_self, new_all = self.generate_party_ids(PURPOSE_RESHARE, new_peer_ids, version + 1)

        pre_params_index: Optional[int] = None
        if is_new_peer:
            participants = list(new_peer_ids)
        elif kind is SessionType.ECDSA:
            participants = list(old_key_info.participant_peer_ids)
        else:
            participants = ready_old
        if kind is SessionType.ECDSA:
            pre_params_index = 1 if is_new_peer else 0

        return ReshareSetup(
            session_type=kind,
            wallet_id=wallet_id,
            is_new_party=is_new_peer,
            self_party=new_self if is_new_peer else old_self,
            old_party_ids=old_all,
            new_party_ids=new_all,
            participant_peer_ids=participants,
            new_peer_ids=list(new_peer_ids),
            old_threshold=old_key_info.threshold,
            new_threshold=new_threshold,
            version=old_key_info.version,
            pre_params_index=pre_params_index,
        )

    def close(self) -> None:
        """Withdraw from the registry; a failure is logged, not raised."""
        try:
            self.peer_registry.resign()
        except Exception as exc:
            logger.error("Resign failed: %s", exc)