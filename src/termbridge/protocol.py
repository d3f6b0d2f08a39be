"""Wire protocol for termbridge WebSocket communication.

Message types (one JSON text frame each):
  - input:   client -> server  {"type":"input","data":"..."}
  - output:  server -> client  {"type":"output","data":"..."}
  - resize:  client -> server  {"type":"resize","cols":N,"rows":N}

Decoding never raises. Anything that is not one of the three shapes above
comes back as an ``Unrecognized`` value and the caller drops it.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

# struct winsize stores each dimension in an unsigned short.
MAX_DIMENSION = 65535


class MsgType(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    RESIZE = "resize"


@dataclass(frozen=True)
class Input:
    data: str


@dataclass(frozen=True)
class Output:
    data: str


@dataclass(frozen=True)
class Resize:
    cols: int
    rows: int


@dataclass(frozen=True)
class Unrecognized:
    """A frame that could not be turned into a message."""

    raw: str | bytes
    reason: str


Message = Input | Output | Resize


def encode(message: Message) -> str:
    """Encode a single message as one JSON frame."""
    if isinstance(message, Input):
        return json.dumps({"type": MsgType.INPUT.value, "data": message.data})
    if isinstance(message, Output):
        return json.dumps({"type": MsgType.OUTPUT.value, "data": message.data})
    if isinstance(message, Resize):
        return json.dumps({
            "type": MsgType.RESIZE.value,
            "cols": message.cols,
            "rows": message.rows,
        })
    raise TypeError(f"Cannot encode {type(message).__name__}")


def _dimension(value: Any) -> int | None:
    # bool is an int subclass; true/false are not dimensions
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if 0 < value <= MAX_DIMENSION:
        return value
    return None


def decode(raw: str | bytes) -> Message | Unrecognized:
    """Decode a frame into a message, or ``Unrecognized`` if it is not one."""
    try:
        data = json.loads(raw)
    except (ValueError, TypeError) as e:
        return Unrecognized(raw, f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return Unrecognized(raw, "frame is not a JSON object")

    msg_type = data.get("type")
    if msg_type in (MsgType.INPUT.value, MsgType.OUTPUT.value):
        payload = data.get("data")
        if not isinstance(payload, str):
            return Unrecognized(raw, f"'{msg_type}' without string 'data'")
        if msg_type == MsgType.INPUT.value:
            return Input(payload)
        return Output(payload)

    if msg_type == MsgType.RESIZE.value:
        cols = _dimension(data.get("cols"))
        rows = _dimension(data.get("rows"))
        if cols is None or rows is None:
            return Unrecognized(raw, "resize needs positive integer cols/rows")
        return Resize(cols=cols, rows=rows)

    return Unrecognized(raw, f"unknown message type {msg_type!r}")


def input_msg(data: str) -> str:
    return encode(Input(data))


def output_msg(data: str) -> str:
    return encode(Output(data))


def resize_msg(cols: int, rows: int) -> str:
    return encode(Resize(cols=cols, rows=rows))
