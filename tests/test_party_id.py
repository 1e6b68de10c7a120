import pytest

from mpcnode.party_id import (
    BACKWARD_COMPATIBLE_VERSION,
    DEFAULT_VERSION,
    compare_party_ids,
    create_party_id,
    generate_party_ids,
    party_id_to_node_id,
    party_ids_to_node_ids,
    sort_party_ids,
)
from mpcnode.types import PartyID


def test_create_party_id_structure():
    party = create_party_id("test-session-123", "keygen", 5)
    assert party.id
    assert party.moniker == "keygen"
    assert party.key == b"test-session-123:5"


def test_create_party_id_different_versions():
    party0 = create_party_id("test-session-456", "keygen", BACKWARD_COMPATIBLE_VERSION)
    party1 = create_party_id("test-session-456", "keygen", DEFAULT_VERSION)
    assert party0.moniker == "keygen"
    assert party1.moniker == "keygen"
    assert party0.key != party1.key
    assert party0.key == b"test-session-456"


def test_create_party_id_empty_values():
    party = create_party_id("", "keygen", 0)
    assert party.moniker == "keygen"
    assert party.key == b""
    party = create_party_id("session", "", 1)
    assert party.moniker == ""
    assert party.key == b"session:1"


def test_create_party_id_unique_ids():
    first = create_party_id("test-session", "keygen", 1)
    second = create_party_id("test-session", "keygen", 1)
    assert first.id != second.id
    assert first.moniker == second.moniker
    assert first.key == second.key


@pytest.mark.parametrize("version", [0, 1, 7])
def test_party_id_to_node_id_round_trip(version):
    assert party_id_to_node_id(create_party_id("node1", "sign", version)) == "node1"


def test_party_id_to_node_id_none():
    assert party_id_to_node_id(None) == ""


def test_party_ids_to_node_ids_keeps_order():
    parties = [create_party_id(n, "keygen", 1) for n in ["b", "a", "c"]]
    assert party_ids_to_node_ids(parties) == ["b", "a", "c"]


def test_sort_party_ids_orders_by_key_and_sets_index():
    parties = [create_party_id(n, "keygen", 1) for n in ["node3", "node1", "node2"]]
    ordered = sort_party_ids(parties)
    assert party_ids_to_node_ids(ordered) == ["node1", "node2", "node3"]
    assert [p.index for p in ordered] == list(range(len(ordered)))


def test_generate_party_ids_finds_self():
    self_party, all_parties = generate_party_ids("node2", "keygen", ["node3", "node2", "node1"], 1)
    assert party_id_to_node_id(self_party) == "node2"
    assert self_party in all_parties
    assert party_ids_to_node_ids(all_parties) == ["node1", "node2", "node3"]
    assert self_party.moniker == "keygen"


def test_generate_party_ids_without_self():
    self_party, all_parties = generate_party_ids("node9", "keygen", ["node1", "node2"], 1)
    assert self_party is None
    assert len(all_parties) == 2


def test_compare_party_ids():
    a = create_party_id("node1", "keygen", 1)
    b = create_party_id("node1", "reshare", 1)
    c = create_party_id("node1", "keygen", 2)
    assert compare_party_ids(a, b) is True
    assert compare_party_ids(a, c) is False


def test_compare_party_ids_ignores_leading_zero_bytes():
    assert compare_party_ids(PartyID(key=b"\x00ab"), PartyID(key=b"ab")) is True