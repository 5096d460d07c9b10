"""Message types and JSON wire encoding shared by the chat server and client."""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import IntEnum
from typing import Any

TERMINATOR = b"\0"


class MsgType(IntEnum):
    """Identifiers carried in the ``msgid`` field of every message."""

    LOGIN_MSG = 1
    REG_MSG = 2
    LOGINOUT_MSG = 3
    REG_MSG_ACK = 4
    LOGIN_MSG_ACK = 5
    ONE_CHAT_MSG = 6
    ADD_FRIEND_MSG = 7
    CREATE_GROUP_MSG = 8
    ADD_GROUP_MSG = 9
    GROUP_CHAT_MSG = 10


def encode(message: Mapping[str, Any]) -> bytes:
    """Serialise a message as compact JSON with sorted keys, NUL-terminated."""
    text = json.dumps(
        message,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
    )
    return text.encode("utf-8") + TERMINATOR


def decode(data: bytes | str) -> dict[str, Any]:
    """Parse one message; trailing NUL terminators are ignored.

    Raises ValueError if the data is not a JSON object.
    """
    if isinstance(data, (bytes, bytearray)):
        text = bytes(data).rstrip(TERMINATOR).decode("utf-8")
    else:
        text = data.rstrip("\0")
    message = json.loads(text)
    if not isinstance(message, dict):
        raise ValueError("message must be a JSON object")
    return message