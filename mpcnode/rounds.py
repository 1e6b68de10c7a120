"""Classification of threshold protocol messages into rounds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RoundInfo:
    """Position of a protocol message within its run."""

    index: int
    round_msg: str
    msg_identifier: str = ""


class UnknownRoundError(ValueError):
    """Raised when a message type belongs to no known round."""


GetRoundFunc = Callable[[str], RoundInfo]

KEYGEN1 = "KGRound1Message"
KEYGEN2A_UNICAST = "KGRound2Message1"
KEYGEN2B = "KGRound2Message2"
KEYGEN3 = "KGRound3Message"
KEYSIGN1A_UNICAST = "SignRound1Message1"
KEYSIGN1B = "SignRound1Message2"
KEYSIGN2_UNICAST = "SignRound2Message"
KEYSIGN3 = "SignRound3Message"
KEYSIGN4 = "SignRound4Message"
KEYSIGN5 = "SignRound5Message"
KEYSIGN6 = "SignRound6Message"
KEYSIGN7 = "SignRound7Message"
KEYSIGN8 = "SignRound8Message"
KEYSIGN9 = "SignRound9Message"
KEYRESHARING1_UNICAST = "DGRound1Message"
KEYRESHARING2A_UNICAST = "DGRound2Message1"
KEYRESHARING2B_UNICAST = "DGRound2Message2"
KEYRESHARING3A_UNICAST = "DGRound3Message1"
KEYRESHARING3B = "DGRound3Message2"
KEYRESHARING4A = "DGRound4Message1"
KEYRESHARING4B_UNICAST = "DGRound4Message2"

TSS_KEYGEN_ROUNDS = 4
TSS_KEYSIGN_ROUNDS = 10

EDDSA_KEYGEN1 = "KGRound1Message"
EDDSA_KEYGEN2A_UNICAST = "KGRound2Message1"
EDDSA_KEYGEN2B = "KGRound2Message2"
EDDSA_KEYSIGN1 = "SignRound1Message"
EDDSA_KEYSIGN2 = "SignRound2Message"
EDDSA_KEYSIGN3 = "SignRound3Message"
EDDSA_RESHARING1 = "DGRound1Message"
EDDSA_RESHARING2 = "DGRound2Message"
EDDSA_RESHARING3A_UNICAST = "DGRound3Message1"
EDDSA_RESHARING3B_UNICAST = "DGRound3Message2"
EDDSA_RESHARING4 = "DGRound4Message"

EDDSA_TSS_KEYGEN_ROUNDS = 3
EDDSA_TSS_KEYSIGN_ROUNDS = 3
EDDSA_RESHARING_ROUNDS = 4

_ECDSA_ROUNDS: dict[str, int] = {
    KEYGEN1: 0,
    KEYGEN2A_UNICAST: 1,
    KEYGEN2B: 2,
    KEYGEN3: 3,
    KEYSIGN1A_UNICAST: 0,
    KEYSIGN1B: 1,
    KEYSIGN2_UNICAST: 2,
    KEYSIGN3: 3,
    KEYSIGN4: 4,
    KEYSIGN5: 5,
    KEYSIGN6: 6,
    KEYSIGN7: 7,
    KEYSIGN8: 8,
    KEYSIGN9: 9,
    KEYRESHARING1_UNICAST: 0,
    KEYRESHARING2A_UNICAST: 1,
    KEYRESHARING2B_UNICAST: 2,
    KEYRESHARING3A_UNICAST: 3,
    KEYRESHARING3B: 4,
    KEYRESHARING4A: 5,
    KEYRESHARING4B_UNICAST: 6,
}

_EDDSA_ROUNDS: dict[str, int] = {
    EDDSA_KEYGEN1: 0,
    EDDSA_KEYGEN2A_UNICAST: 1,
    EDDSA_KEYGEN2B: 2,
    EDDSA_KEYSIGN1: 0,
    EDDSA_KEYSIGN2: 0,
    EDDSA_KEYSIGN3: 0,
    EDDSA_RESHARING1: 0,
    EDDSA_RESHARING2: 1,
    EDDSA_RESHARING3A_UNICAST: 2,
    EDDSA_RESHARING3B_UNICAST: 3,
    EDDSA_RESHARING4: 4,
}

_RESHARE_ROUNDS = frozenset(
    {
        KEYRESHARING1_UNICAST,
        KEYRESHARING2A_UNICAST,
        KEYRESHARING2B_UNICAST,
        KEYRESHARING3A_UNICAST,
        KEYRESHARING3B,
        KEYRESHARING4A,
        KEYRESHARING4B_UNICAST,
    }
)


def _lookup(table: dict[str, int], content_type: str) -> RoundInfo:
    try:
        index = table[content_type]
    except KeyError:
        raise UnknownRoundError(f"unknown round: {content_type!r}") from None
    return RoundInfo(index=index, round_msg=content_type)


def ecdsa_msg_round(content_type: str) -> RoundInfo:
    """Round of an ECDSA keygen, signing or resharing message type."""
    return _lookup(_ECDSA_ROUNDS, content_type)


def eddsa_msg_round(content_type: str) -> RoundInfo:
    """Round of an EdDSA keygen, signing or resharing message type."""
    return _lookup(_EDDSA_ROUNDS, content_type)


def is_reshare_round(round_msg: str) -> bool:
    """True for the ECDSA resharing message types."""
    return round_msg in _RESHARE_ROUNDS