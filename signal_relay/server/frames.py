"""Transport-neutral WebSocket frame model."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class FrameKind(Enum):
    TEXT = "text"
    BINARY = "binary"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"
    OTHER = "other"


@dataclass(frozen=True)
class Frame:
    """A single frame read from or written to a connection.

    Attributes:
        kind: Frame type.
        data: ``str`` for text frames, ``bytes`` for everything else.
    """

    kind: FrameKind
    data: Union[str, bytes] = b""

    @classmethod
    def text(cls, data: str) -> "Frame":
        return cls(FrameKind.TEXT, data)

    @classmethod
    def binary(cls, data: bytes) -> "Frame":
        return cls(FrameKind.BINARY, bytes(data))

    @classmethod
    def ping(cls, data: bytes = b"") -> "Frame":
        return cls(FrameKind.PING, data)

    @classmethod
    def pong(cls, data: bytes = b"") -> "Frame":
        return cls(FrameKind.PONG, data)

    @classmethod
    def close(cls) -> "Frame":
        return cls(FrameKind.CLOSE)

    def __repr__(self) -> str:
        return f"Frame({self.kind.value}, {len(self.data)} {'chars' if self.kind is FrameKind.TEXT else 'bytes'})"
