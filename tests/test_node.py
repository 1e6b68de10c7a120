import pytest

from mpcnode.node import (
    KeyInfo,
    Node,
    compose_ready_key,
    legacy_committee_peers,
    session_key_prefix,
)
from mpcnode.party_id import DEFAULT_VERSION, party_id_to_node_id
from mpcnode.session import (
    NotEnoughParticipantsError,
    NotInParticipantListError,
    SessionType,
)


class FakeKeyInfoStore:
    def __init__(self, entries=None):
        self.entries = dict(entries or {})

    def get(self, key):
        return self.entries[key]


class FakeRegistry:
    def __init__(self, ready, fail_resign=False):
        self.ready = list(ready)
        self.fail_resign = fail_resign
        self.resigned = False

    def ready_peers_count(self):
        return len(self.ready)

    def ready_peers_include_self(self):
        return list(self.ready)

    def resign(self):
        self.resigned = True
        if self.fail_resign:
            raise RuntimeError("consul down")


OLD_INFO = KeyInfo(participant_peer_ids=["n1", "n2", "n3"], threshold=1, version=1)


def make_node(node_id="n1", ready=("n1", "n2", "n3", "n4"), entries=None):
    if entries is None:
        entries = {"ecdsa:w1": OLD_INFO, "eddsa:w1": OLD_INFO}
    return Node(node_id, ["n1", "n2", "n3", "n4"], FakeKeyInfoStore(entries), FakeRegistry(ready))


def test_compose_ready_key():
    assert compose_ready_key("node0") == "ready/node0"


def test_session_key_prefix():
    assert session_key_prefix(SessionType.ECDSA) == "ecdsa"
    assert session_key_prefix(SessionType.EDDSA) == "eddsa"
    assert session_key_prefix("session_eddsa") == "eddsa"
    with pytest.raises(ValueError):
        session_key_prefix("session_rsa")


def test_legacy_committee_peers():
    assert legacy_committee_peers(["a", "b", "c"], ["b", "c", "d"]) == ["a"]
    assert legacy_committee_peers(["a", "b"], ["a", "b", "c"]) == []


def test_get_key_info_and_missing():
    node = make_node(entries={"eddsa:w1": OLD_INFO})
    assert node.get_key_info(SessionType.EDDSA, "w1") == OLD_INFO
    with pytest.raises(KeyError):
        node.get_key_info(SessionType.ECDSA, "w1")


def test_get_version():
    info = KeyInfo(participant_peer_ids=["n1"], threshold=0, version=7)
    node = make_node(entries={"ecdsa:w1": info})
    assert node.get_version(SessionType.ECDSA, "w1") == 7
    assert node.get_version(SessionType.ECDSA, "missing") == DEFAULT_VERSION
    with pytest.raises(ValueError):
        node.get_version("bogus", "w1")


def test_ready_peers_for_session_keeps_key_order():
    node = make_node()
    assert node.ready_peers_for_session(OLD_INFO, ["n3", "n1", "n9"]) == ["n1", "n3"]


def test_ensure_node_is_participant():
    node = make_node(node_id="n4")
    with pytest.raises(NotInParticipantListError):
        node.ensure_node_is_participant(OLD_INFO)
    make_node(node_id="n2").ensure_node_is_participant(OLD_INFO)
    assert "n2" in OLD_INFO.participant_peer_ids


def test_generate_party_ids():
    node = make_node()
    self_party, parties = node.generate_party_ids("keygen", ["n3", "n1", "n2"], 1)
    assert party_id_to_node_id(self_party) == "n1"
    assert sorted(party_id_to_node_id(p) for p in parties) == ["n1", "n2", "n3"]
    assert [p.index for p in parties] == [0, 1, 2]
    assert all(p.moniker == "keygen" for p in parties)


def test_signing_participants_success():
    node = make_node(ready=["n1", "n3"])
    plan = node.signing_participants(SessionType.ECDSA, "w1")
    assert plan.participant_peer_ids == ["n1", "n3"]
    assert party_id_to_node_id(plan.self_party) == "n1"
    assert len(plan.party_ids) == 2
    assert plan.version == OLD_INFO.version


def test_signing_participants_not_enough():
    node = make_node(ready=["n1", "n4"])
    with pytest.raises(NotEnoughParticipantsError):
        node.signing_participants(SessionType.ECDSA, "w1")


def test_signing_participants_not_a_holder():
    node = make_node(node_id="n4", ready=["n1", "n2", "n4"])
    with pytest.raises(NotInParticipantListError):
        node.signing_participants(SessionType.EDDSA, "w1")


def test_signing_participants_missing_key():
    node = make_node(entries={})
    with pytest.raises(KeyError):
        node.signing_participants(SessionType.ECDSA, "w1")


def test_reshare_plan_old_member_ecdsa():
    node = make_node()
    setup = node.reshare_plan(SessionType.ECDSA, "w1", 1, ["n2", "n3", "n4"], False)
    assert setup.is_new_party is False
    assert party_id_to_node_id(setup.self_party) == "n1"
    assert setup.participant_peer_ids == ["n1", "n2", "n3"]
    assert setup.legacy_committee_peers == ["n1"]
    assert setup.party_ids == setup.old_party_ids
    assert setup.pre_params_index == 0
    assert setup.new_key_info() == KeyInfo(["n2", "n3", "n4"], 1, OLD_INFO.version + 1)
    assert setup.new_share_key() == "ecdsa:w1_v2"


def test_reshare_plan_new_member():
    node = make_node(node_id="n4")
    setup = node.reshare_plan(SessionType.ECDSA, "w1", 1, ["n2", "n3", "n4"], True)
    assert setup.is_new_party is True
    assert setup.self_party.key == b"n4:2"
    assert setup.party_ids == setup.new_party_ids
    assert setup.participant_peer_ids == ["n2", "n3", "n4"]
    assert setup.pre_params_index == 1


def test_reshare_plan_skips_irrelevant_side():
    assert make_node(node_id="n1").reshare_plan(
        SessionType.ECDSA, "w1", 1, ["n2", "n3", "n4"], True
    ) is None
    assert make_node(node_id="n4").reshare_plan(
        SessionType.ECDSA, "w1", 1, ["n2", "n3", "n4"], False
    ) is None


def test_reshare_plan_eddsa_uses_ready_old_participants():
    node = make_node(ready=["n1", "n2", "n4"])
    setup = node.reshare_plan(SessionType.EDDSA, "w1", 1, ["n2", "n4"], False)
    assert setup.participant_peer_ids == ["n1", "n2"]
    assert setup.pre_params_index is None
    assert sorted(setup.old_peer_ids) == ["n1", "n2"]


def test_reshare_plan_errors():
    node = make_node(ready=["n1", "n2", "n3"])
    with pytest.raises(ValueError, match="not ready"):
        node.reshare_plan(SessionType.ECDSA, "w1", 1, ["n2", "n4"], False)
    with pytest.raises(ValueError, match="smaller than required"):
        node.reshare_plan(SessionType.ECDSA, "w1", 1, ["n2"], False)
    with pytest.raises(NotEnoughParticipantsError):
        node.reshare_plan(SessionType.ECDSA, "w1", 5, ["n1", "n2", "n3"], False)
    with pytest.raises(LookupError):
        make_node(entries={}).reshare_plan(SessionType.ECDSA, "w1", 1, ["n2", "n3"], False)


def test_reshare_plan_old_committee_not_ready():
    node = make_node(ready=["n1", "n4"])
    with pytest.raises(NotEnoughParticipantsError):
        node.reshare_plan(SessionType.ECDSA, "w1", 1, ["n1", "n4"], False)


def test_close_resigns_and_swallows_errors():
    registry = FakeRegistry(["n1"], fail_resign=True)
    node = Node("n1", ["n1"], FakeKeyInfoStore(), registry)
    node.close()
    assert registry.resigned is True