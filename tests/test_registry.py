import threading

import pytest

from mpcnode.key_exchange import ECDH_EXCHANGE_TOPIC
from mpcnode.registry import Registry, get_peer_ids_except_self, parse_health_data


class FakeSubscription:
    def unsubscribe(self):
        pass


class FakeBus:
    def __init__(self):
        self.handlers = {}
        self.published = []

    def subscribe(self, topic, handler):
        self.handlers.setdefault(topic, []).append(handler)
        return FakeSubscription()

    def publish(self, topic, data):
        self.published.append((topic, data))
        for handler in list(self.handlers.get(topic, [])):
            handler(data)


class FakeConsul:
    def __init__(self):
        self.data = {}
        self.fail_delete = False

    def put(self, key, value):
        self.data[key] = value

    def keys(self, prefix):
        return [k for k in self.data if k.startswith(prefix)]

    def delete(self, key):
        if self.fail_delete:
            raise OSError("consul down")
        self.data.pop(key, None)


class FakeDirect:
    def __init__(self):
        self.listeners = {}
        self.sent = []
        self.error = None

    def listen(self, topic, handler):
        self.listeners[topic] = handler
        return FakeSubscription()

    def send_to_other_with_retry(self, topic, data, attempts):
        self.sent.append((topic, data, attempts))
        if self.error is not None:
            raise self.error


class FakeIdentity:
    def __init__(self):
        self.keys = {}

    def sign_ecdh_message(self, msg):
        return b"signed:" + msg.from_id.encode()

    def verify_signature(self, msg):
        if msg.signature != b"signed:" + msg.from_id.encode():
            raise ValueError("bad signature")

    def set_symmetric_key(self, peer_id, key):
        self.keys[peer_id] = key

    def remove_symmetric_key(self, peer_id):
        self.keys.pop(peer_id, None)

    def symmetric_key_count(self):
        return len(self.keys)

    def check_symmetric_key_complete(self, required):
        return len(self.keys) >= required


def make_registry(threshold=1):
    consul, direct, bus, identity = FakeConsul(), FakeDirect(), FakeBus(), FakeIdentity()
    reg = Registry(
        "node0",
        ["node0", "node1", "node2"],
        consul,
        direct,
        bus,
        identity,
        threshold,
        spawn=lambda fn: fn(),
    )
    return reg, consul, direct, bus, identity


def test_get_peer_ids_except_self():
    assert get_peer_ids_except_self("b", ["a", "b", "c"]) == ["a", "c"]


def test_parse_health_data():
    assert parse_health_data("node1,true") == ("node1", True)
    assert parse_health_data("node1,0") == ("node1", False)


@pytest.mark.parametrize("bad", ["node1", "node1,maybe"])
def test_parse_health_data_rejects_bad_input(bad):
    with pytest.raises(ValueError):
        parse_health_data(bad)


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        make_registry(threshold=0)


def test_ready_announces_node():
    reg, consul, direct, bus, _ = make_registry()
    reg.ready()
    assert consul.data["ready/node0"] == b"true"
    assert "healthcheck:node0" in direct.listeners
    assert bus.published[0][0] == ECDH_EXCHANGE_TOPIC
    assert reg.ecdh_session.is_initialized() is True


def test_poll_registers_and_disconnects_peers():
    reg, consul, _, _, identity = make_registry()
    events = []
    reg.on_peer_connected(lambda p: events.append(("up", p)))
    reg.on_peer_disconnected(lambda p: events.append(("down", p)))
    reg.on_peer_reconnected(lambda p: events.append(("again", p)))
    for node in ("node0", "node1", "node2"):
        consul.put(f"ready/{node}", b"true")

    assert sorted(reg.poll_once()) == ["node1", "node2"]
    assert reg.ready_peers_count() == reg.total_peers_count()
    assert reg.ready_peers_include_self()[-1] == "node0"
    assert reg.are_peers_ready() is False

    identity.keys.update({"node1": b"k1", "node2": b"k2"})
    assert reg.are_peers_ready() is True

    del consul.data["ready/node2"]
    reg.poll_once()
    assert ("down", "node2") in events
    assert "node2" not in identity.keys
    assert reg.ready_peers_count_exclude_self() == 1
    assert reg.are_peers_ready() is False

    consul.put("ready/node2", b"true")
    reg.poll_once()
    assert events[-1] == ("again", "node2")
    assert sorted(reg.ready_peers_include_self()) == ["node0", "node1", "node2"]


def test_majority_ready():
    reg, consul, _, _, identity = make_registry(threshold=1)
    assert reg.are_majority_ready() is False
    consul.put("ready/node1", b"true")
    reg.poll_once()
    assert reg.are_majority_ready() is False
    identity.keys["node1"] = b"k1"
    assert reg.are_majority_ready() is True


def test_health_check_drops_unresponsive_peer():
    reg, consul, direct, _, _ = make_registry()
    consul.put("ready/node1", b"true")
    direct.error = RuntimeError("nats: no responders available for request")
    reg.check_peers_health_once()
    assert "ready/node1" not in consul.data
    topic, payload, attempts = direct.sent[0]
    assert topic == "healthcheck:node1"
    assert parse_health_data(payload.decode()) == ("node0", True)
    assert attempts == 2


def test_health_check_keeps_peer_on_other_errors():
    reg, consul, direct, _, _ = make_registry()
    consul.put("ready/node1", b"true")
    direct.error = RuntimeError("timeout")
    reg.check_peers_health_once()
    assert "ready/node1" in consul.data


def test_health_message_not_ready_retriggers_exchange():
    reg, _, direct, bus, _ = make_registry()
    reg.ready()
    before = len(bus.published)
    direct.listeners["healthcheck:node0"](b"node1,false")
    assert len(bus.published) == before + 1
    direct.listeners["healthcheck:node0"](b"node1,true")
    assert len(bus.published) == before + 1


def test_resign_deletes_ready_key():
    reg, consul, _, _, _ = make_registry()
    reg.ready()
    reg.resign()
    assert "ready/node0" not in consul.data


def test_resign_failure_raises():
    reg, consul, _, _, _ = make_registry()
    consul.fail_delete = True
    with pytest.raises(RuntimeError):
        reg.resign()


def test_watch_stops_when_event_set():
    reg, consul, _, _, _ = make_registry()
    consul.put("ready/node1", b"true")
    stop = threading.Event()
    stop.set()
    reg.watch_peers_ready(stop)
    assert reg.ready_peers_include_self() == ["node1", "node0"]