"""
Payload codec applied at the persistence boundary.

Node payloads and task text are opaque to the scheduler. Deployments that
encrypt at rest install their own codec; the default stores text as-is.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


class PayloadCodec(ABC):
    """Reversible string transform used when writing/reading opaque columns."""

    @abstractmethod
    def encode(self, value: str) -> str:
        pass

    @abstractmethod
    def decode(self, value: str) -> str:
        pass


class IdentityCodec(PayloadCodec):
    def encode(self, value: str) -> str:
        return value

    def decode(self, value: str) -> str:
        return value


_codec: PayloadCodec = IdentityCodec()


def set_payload_codec(codec: Optional[PayloadCodec]) -> None:
    """Install the codec for opaque columns. ``None`` restores the identity codec."""
    global _codec
    _codec = codec or IdentityCodec()


def get_payload_codec() -> PayloadCodec:
    return _codec


class EncodedText(TypeDecorator):
    """Text column passed through the active payload codec."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return _codec.encode(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return _codec.decode(value)
