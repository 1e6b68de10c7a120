# mpcnode

`mpcnode` is the coordination layer of a node that takes part in threshold
(multi-party computation) wallets. It does not run the threshold protocols
themselves. It handles the work around them:

- **Wire types** (`mpcnode.types`): `TssMessage`, `ECDHMessage`,
  `StartMessage`, `PartyID` and the initiator messages `GenerateKeyMessage`,
  `SignTxMessage` and `ResharingMessage`. Each has compact, deterministic JSON.
  `raw()` on an initiator message returns the exact bytes that were signed.
  `TssMessage.marshal_for_signing()` and `ECDHMessage.marshal_for_signing()`
  return the bytes that a signature covers.
- **Party identities** (`mpcnode.party_id`): `create_party_id`,
  `generate_party_ids`, `sort_party_ids`, `party_id_to_node_id`,
  `party_ids_to_node_ids` and `compare_party_ids`. A party's key encodes the
  node ID and, unless the version is `0`, the key version. Every node sorts
  parties by that key in the same way.
- **Round classification** (`mpcnode.rounds`): `ecdsa_msg_round` and
  `eddsa_msg_round` map a message type name to a `RoundInfo`. An unknown name
  raises `UnknownRoundError`. `is_reshare_round` recognises the ECDSA resharing
  message types.
- **Sessions** (`mpcnode.session`): topic composers for keygen, signing and
  resharing, and `Session`. A `Session` signs and publishes broadcast messages,
  encrypts and sends direct messages, verifies or decrypts incoming messages,
  and passes the ones addressed to this party on to the protocol party. It can
  also load a stored key share. Errors that come up while messages are being
  handled go on `Session.error_queue` and are not raised.
- **Key exchange** (`mpcnode.key_exchange`): `ECDHSession` generates an
  ephemeral X25519 key pair and announces the signed public key on
  `ecdh:exchange`. From each peer's announcement it derives a 32-byte key with
  HKDF-SHA256, using `derive_consistent_info` for the info parameter, so both
  sides of a pair derive the same key.
- **Peer readiness** (`mpcnode.registry`): `Registry` compares the `ready/`
  keys in a shared key/value store with what it already knows. It calls your
  connect, disconnect and reconnect callbacks, starts the key exchange again
  when a peer asks for it, and health-checks peers. Use `poll_once()` for a
  single pass, or `watch_peers_ready(stop_event)` to keep polling every second
  until `stop_event` is set.
- **Node logic** (`mpcnode.node`): `Node.signing_participants` and
  `Node.reshare_plan` choose the participants, check thresholds and committee
  membership, and generate the party IDs. `reshare_plan` returns a
  `ReshareSetup`, or `None` when this node has no role on the side that was
  asked for. The checks raise `NotEnoughParticipantsError` and
  `NotInParticipantListError`.
- **Migrations** (`mpcnode.migration`): `add_key_type_prefix` moves share
  keys that have no key type into `ecdsa:`. `update_keyinfo_prefix` renames
  `threshold_keyinfo/<wallet>` entries to `threshold_keyinfo/ecdsa:<wallet>`.
- **Sensitive memory** (`mpcnode.memory`): `zero_bytes` overwrites a
  writable buffer in place. `SecureBytes` keeps a private copy of the data and
  wipes it on `clear()`, when its `with` block exits, or when it is collected.

## Installation

```
pip install mpcnode
```

Python 3.10 or later is required. The only runtime dependency is
`cryptography`.

## Examples

### Initiator messages

```python
from mpcnode.types import KeyType, SignTxMessage

msg = SignTxMessage(
    key_type=KeyType.SECP256K1,
    wallet_id="wallet-123",
    network_internal_code="BTC",
    tx_id="tx-456",
    tx=b"transaction-data",
    signature=b"signature",
)
payload = msg.raw()      # canonical JSON bytes, without the signature
msg.initiator_id()       # "tx-456"
```

### TSS messages

```python
from mpcnode.types import (
    PartyID, new_tss_message, marshal_tss_message, unmarshal_tss_message,
)

sender = PartyID(id="party1", moniker="moniker1", key=b"node0:1", index=0)
receiver = PartyID(id="party2", moniker="moniker2", key=b"node1:1", index=1)

msg = new_tss_message("wallet-123", b"payload", True, sender, [receiver])
data = marshal_tss_message(msg)
assert unmarshal_tss_message(data).wallet_id == "wallet-123"
```

Malformed input to `unmarshal_tss_message` or `unmarshal_start_message`
raises `ValueError`.

### Party IDs

```python
from mpcnode.party_id import generate_party_ids, party_id_to_node_id

me, everyone = generate_party_ids("node0", "keygen", ["node1", "node0", "node2"], 1)
party_id_to_node_id(me)   # "node0"
[p.index for p in everyone]   # [0, 1, 2], sorted by key
```

### Round classification and topics

```python
from mpcnode.rounds import ecdsa_msg_round, is_reshare_round
from mpcnode.session import (
    extract_sender_id_from_direct_topic, keygen_topic_composer, wallet_id_with_version,
)

ecdsa_msg_round("KGRound2Message1").index   # 1
is_reshare_round("DGRound1Message")          # True
wallet_id_with_version("w1", 2)              # "w1_v2"

topics = keygen_topic_composer("ecdsa", "w1")
topics.compose_broadcast_topic()             # "keygen:broadcast:ecdsa:w1"
topics.compose_direct_topic("node0", "node1")  # "keygen:direct:ecdsa:node0:node1:w1"
extract_sender_id_from_direct_topic("keygen:direct:ecdsa:node0:node1:w1")  # "node0"
```

### Migrating stored keys

```python
from mpcnode.migration import add_key_type_prefix

store = {"w1": b"share", "eddsa:w2": b"share"}
add_key_type_prefix(store)   # ["eddsa:w2", "ecdsa:w1"]
```

### Secure bytes

```python
from mpcnode.memory import SecureBytes, zero_bytes

buf = bytearray(b"sensitive")
zero_bytes(buf)            # every byte is now 0

with SecureBytes(b"secret") as sb:
    sb.copy()              # bytearray(b"secret"), an independent copy
# leaving the block zeroes the data and drops it; sb.data is now None
```

## Versions and key names

A key share is stored under `<algorithm>:<wallet_id>_v<version>`, for example
`ecdsa:w1_v1`. Version `0` is the older layout and has no suffix. Key
information is stored under `<algorithm>:<wallet_id>`. A reshare writes its
share under the next version: see `ReshareSetup.new_share_key()` and
`ReshareSetup.new_key_info()`.

## What this package does not do

- It does not implement the ECDSA or EdDSA threshold keygen, signing or
  resharing protocols. `Session` forwards messages to a protocol party object
  that you supply, through its `update_from_bytes` method. It classifies
  messages with a round function that you supply.
- It has no messaging transport, key/value store, key-info store or identity
  store of its own. `Session`, `ECDHSession`, `Registry`, `Node` and
  `update_keyinfo_prefix` all take objects you provide with the small set of
  methods they call, for example `publish`/`subscribe`, `listen`/`send_to_other`
  or `get`/`put`/`delete`/`keys`.
- It does not generate or store pre-parameters. `ReshareSetup.pre_params_index`
  only says which of your two ECDSA pre-parameter sets to use.
- It has no command-line program. The migrations are plain functions that
  you call yourself.

## Running the tests

```
pip install -e ".[test]"
pytest
```