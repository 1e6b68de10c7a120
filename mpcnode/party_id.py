"""Creation and inspection of protocol party identities."""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

from .types import PartyID

BACKWARD_COMPATIBLE_VERSION = 0
DEFAULT_VERSION = 1


def _key_bytes(node_id: str, version: int) -> bytes:
    if version == BACKWARD_COMPATIBLE_VERSION:
        material = node_id
    else:
        material = f"{node_id}:{version}"
    # Keys are big-endian integers, so leading zero bytes carry no information.
    return material.encode("utf-8").lstrip(b"\x00")


def create_party_id(node_id: str, label: str, version: int) -> PartyID:
    """Build a party ID with a random id, the label as moniker and a stable key.

    The key is derived from the node ID (and the version, unless it is the
    backward compatible one) so that it survives across sessions.
    """
    return PartyID(
        id=str(uuid.uuid4()),
        moniker=label,
        key=_key_bytes(node_id, version),
    )


def sort_party_ids(party_ids: Iterable[PartyID]) -> list[PartyID]:
    """Order parties by key and number them from zero.

    The index of every party is updated in place; the sorted list is returned.
    """
    ordered = sorted(party_ids, key=lambda party: party.key_int)
    for index, party in enumerate(ordered):
        party.index = index
    return ordered


def generate_party_ids(
    self_node_id: str,
    label: str,
    ready_peer_ids: Iterable[str],
    version: int,
) -> tuple[Optional[PartyID], list[PartyID]]:
    """Create party IDs for every ready peer.

    Returns the party belonging to ``self_node_id`` (None if it is not among
    the peers) and all parties sorted by key.
    """
    self_party: Optional[PartyID] = None
    parties = []
    for peer_id in ready_peer_ids:
        party = create_party_id(peer_id, label, version)
        if peer_id == self_node_id:
            self_party = party
        parties.append(party)
    return self_party, sort_party_ids(parties)


def party_id_to_node_id(party_id: Optional[PartyID]) -> str:
    """Recover the node ID encoded in a party's key."""
    if party_id is None:
        return ""
    raw = party_id.key.lstrip(b"\x00").decode("utf-8", errors="replace")
    node_id, _, _ = raw.partition(":")
    return node_id.strip()


def party_ids_to_node_ids(party_ids: Iterable[PartyID]) -> list[str]:
    return [party_id_to_node_id(party) for party in party_ids]


def compare_party_ids(x: PartyID, y: PartyID) -> bool:
    """True when both parties carry the same key."""
    return x.key_int == y.key_int