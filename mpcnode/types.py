"""Wire types exchanged between MPC nodes and with request initiators."""

from __future__ import annotations

import base64
import binascii
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

JSONInput = Union[bytes, bytearray, str]


class KeyType(str, Enum):
    """Curve a wallet key lives on."""

    SECP256K1 = "secp256k1"
    ED25519 = "ed25519"


class EventInitiatorKeyType(str, Enum):
    """Key algorithm used by the party that initiates events."""

    ED25519 = "ed25519"
    P256 = "p256"


_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})$"
)


def _dumps(obj: Any) -> bytes:
    """Compact JSON with the same HTML-safe escaping the peers use."""
    text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in (
        ("&", "\\u0026"),
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(raw, escaped)
    return text.encode("utf-8")


def _loads_object(data: JSONInput) -> dict:
    """Parse a JSON document that must be an object (or null)."""
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    parsed = json.loads(data)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _b64(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return base64.b64encode(bytes(value)).decode("ascii")


def _unb64(data: dict, key: str) -> Optional[bytes]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"field {key!r} is not valid base64: {exc}") from exc


def _get_str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _get_bool(data: dict, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r} must be a boolean")
    return value


def _get_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


def _enum_value(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else value


def _format_time(moment: datetime) -> str:
    """RFC 3339 with trailing fractional zeros trimmed and 'Z' for UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_time(value: Any) -> datetime:
    if value is None:
        return _ZERO_TIME
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    match = _TIME_RE.match(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "").ljust(6, "0")[:6])
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )


@dataclass
class PartyID:
    """Identity of one participant in a threshold protocol run."""

    id: str = ""
    moniker: str = ""
    key: bytes = b""
    index: int = 0

    @property
    def key_int(self) -> int:
        return int.from_bytes(self.key, "big")

    def to_dict(self) -> dict:
        out: dict = {}
        if self.id:
            out["id"] = self.id
        if self.moniker:
            out["moniker"] = self.moniker
        if self.key:
            out["key"] = _b64(self.key)
        out["index"] = self.index
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "PartyID":
        if not isinstance(data, dict):
            raise ValueError("party id must be a JSON object")
        return cls(
            id=_get_str(data, "id"),
            moniker=_get_str(data, "moniker"),
            key=_unb64(data, "key") or b"",
            index=_get_int(data, "index"),
        )

    def __str__(self) -> str:
        return f"{{{self.index},{self.moniker}}}"


def _party_or_none(value: Any) -> Optional[PartyID]:
    return None if value is None else PartyID.from_dict(value)


def _parties_or_none(value: Any) -> Optional[list]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError("field 'to' must be a list")
    return [PartyID.from_dict(item) for item in value]


@dataclass
class ECDHMessage:
    """Signed announcement of a node's ephemeral key-exchange public key."""

    from_id: str = ""
    public_key: Optional[bytes] = None
    timestamp: datetime = _ZERO_TIME
    signature: Optional[bytes] = None

    def marshal_for_signing(self) -> bytes:
        """Deterministic bytes covered by the message signature."""
        return _dumps(
            {
                "from": self.from_id,
                "publicKey": _b64(self.public_key),
                "timestamp": _format_time(self.timestamp),
            }
        )

    def to_json(self) -> bytes:
        return _dumps(
            {
                "from": self.from_id,
                "public_key": _b64(self.public_key),
                "timestamp": _format_time(self.timestamp),
                "signature": _b64(self.signature),
            }
        )

    @classmethod
    def from_json(cls, data: JSONInput) -> "ECDHMessage":
        obj = _loads_object(data)
        return cls(
            from_id=_get_str(obj, "from"),
            public_key=_unb64(obj, "public_key"),
            timestamp=_parse_time(obj.get("timestamp")),
            signature=_unb64(obj, "signature"),
        )


class InitiatorMessage(ABC):
    """A request carrying a payload and the initiator's signature over it."""

    @abstractmethod
    def raw(self) -> bytes:
        """The canonical bytes that were signed."""

    @abstractmethod
    def sig(self) -> Optional[bytes]:
        """The signature over raw()."""

    @abstractmethod
    def initiator_id(self) -> str:
        """The identifier whose public key verifies the signature."""


@dataclass
class GenerateKeyMessage(InitiatorMessage):
    wallet_id: str = ""
    signature: Optional[bytes] = None

    def raw(self) -> bytes:
        return self.wallet_id.encode("utf-8")

    def sig(self) -> Optional[bytes]:
        return self.signature

    def initiator_id(self) -> str:
        return self.wallet_id


@dataclass
class SignTxMessage(InitiatorMessage):
    key_type: Union[KeyType, str] = ""
    wallet_id: str = ""
    network_internal_code: str = ""
    tx_id: str = ""
    tx: Optional[bytes] = None
    signature: Optional[bytes] = None

    def raw(self) -> bytes:
        return _dumps(
            {
                "key_type": _enum_value(self.key_type),
                "wallet_id": self.wallet_id,
                "network_internal_code": self.network_internal_code,
                "tx_id": self.tx_id,
                "tx": _b64(self.tx),
            }
        )

    def sig(self) -> Optional[bytes]:
        return self.signature

    def initiator_id(self) -> str:
        return self.tx_id


@dataclass
class ResharingMessage(InitiatorMessage):
    session_id: str = ""
    node_ids: Optional[list] = None
    new_threshold: int = 0
    key_type: Union[KeyType, str] = ""
    wallet_id: str = ""
    signature: Optional[bytes] = None

    def _to_dict(self) -> dict:
        out = {
            "session_id": self.session_id,
            "node_ids": None if self.node_ids is None else list(self.node_ids),
            "new_threshold": self.new_threshold,
            "key_type": _enum_value(self.key_type),
            "wallet_id": self.wallet_id,
        }
        if self.signature:
            out["signature"] = _b64(self.signature)
        return out

    def raw(self) -> bytes:
        return _dumps(replace(self, signature=None)._to_dict())

    def sig(self) -> Optional[bytes]:
        return self.signature

    def initiator_id(self) -> str:
        return self.wallet_id


@dataclass
class TssMessage:
    """A protocol message routed between parties of a session."""

    wallet_id: str = ""
    msg_bytes: Optional[bytes] = None
    is_broadcast: bool = False
    from_party: Optional[PartyID] = None
    to: Optional[list] = None
    is_to_old_committee: bool = False
    is_to_old_and_new_committees: bool = False
    signature: Optional[bytes] = None

    def _to_dict(self) -> dict:
        return {
            "sessionID": self.wallet_id,
            "msgBytes": _b64(self.msg_bytes),
            "isBroadcast": self.is_broadcast,
            "from": None if self.from_party is None else self.from_party.to_dict(),
            "to": None if self.to is None else [p.to_dict() for p in self.to],
            "isToOldCommittee": self.is_to_old_committee,
            "isToOldAndNewCommittees": self.is_to_old_and_new_committees,
            "signature": _b64(self.signature),
        }

    @classmethod
    def _from_dict(cls, obj: dict) -> "TssMessage":
        return cls(
            wallet_id=_get_str(obj, "sessionID"),
            msg_bytes=_unb64(obj, "msgBytes"),
            is_broadcast=_get_bool(obj, "isBroadcast"),
            from_party=_party_or_none(obj.get("from")),
            to=_parties_or_none(obj.get("to")),
            is_to_old_committee=_get_bool(obj, "isToOldCommittee"),
            is_to_old_and_new_committees=_get_bool(obj, "isToOldAndNewCommittees"),
            signature=_unb64(obj, "signature"),
        )

    def marshal_for_signing(self) -> bytes:
        """Deterministic bytes covered by the broadcast signature."""
        if self.from_party is None:
            raise ValueError("cannot sign a message without a sender")
        return _dumps(
            {
                "from": self.from_party.id,
                "isBroadcast": self.is_broadcast,
                "isToOldAndNewCommittees": self.is_to_old_and_new_committees,
                "isToOldCommittee": self.is_to_old_committee,
                "msgBytes": _b64(self.msg_bytes),
                "sessionID": self.wallet_id,
                "to": None if self.to is None else [p.to_dict() for p in self.to],
            }
        )


@dataclass
class StartMessage:
    params: Optional[bytes] = None


def new_tss_message(
    wallet_id: str,
    msg_bytes: Optional[bytes],
    is_broadcast: bool,
    from_party: Optional[PartyID],
    to: Optional[list],
) -> TssMessage:
    return TssMessage(
        wallet_id=wallet_id,
        msg_bytes=msg_bytes,
        is_broadcast=is_broadcast,
        from_party=from_party,
        to=to,
    )


def marshal_tss_message(msg: TssMessage) -> bytes:
    return _dumps(msg._to_dict())


def marshal_tss_resharing_message(
    msg_bytes: Optional[bytes],
    is_to_old_committee: bool,
    is_broadcast: bool,
    is_to_old_and_new_committees: bool,
    from_party: Optional[PartyID],
    to: Optional[list],
) -> bytes:
    msg = TssMessage(
        msg_bytes=msg_bytes,
        is_broadcast=is_broadcast,
        from_party=from_party,
        to=to,
        is_to_old_committee=is_to_old_committee,
        is_to_old_and_new_committees=is_to_old_and_new_committees,
    )
    return marshal_tss_message(msg)


def unmarshal_tss_message(data: JSONInput) -> TssMessage:
    """Decode a TssMessage; raises ValueError on malformed input."""
    return TssMessage._from_dict(_loads_object(data))


def marshal_start_message(params: Optional[bytes]) -> bytes:
    return _dumps({"params": _b64(params)})


def unmarshal_start_message(data: JSONInput) -> StartMessage:
    """Decode a StartMessage; raises ValueError on malformed input."""
    return StartMessage(params=_unb64(_loads_object(data), "params"))