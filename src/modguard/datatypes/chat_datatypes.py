"""
Type-safe wrapper classes for chat platform identifiers.

Chat platforms hand out 64-bit integer identifiers (Discord snowflakes,
negative Telegram group ids) that are often transported as strings. These
wrappers keep chats, users and messages from being mixed up and give every
component the same hashing and comparison rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


class _PlatformID:
    """
    Shared behaviour for integer identifiers.

    Attributes:
        _value (int): The identifier as an integer.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "_PlatformID"]) -> None:
        """
        Initialize an identifier from a string, int, or another identifier of the same kind.

        Args:
            value: The identifier as a string, int, or wrapper instance.

        Raises:
            ValueError: If the value cannot be converted to an integer identifier.
        """
        if isinstance(value, _PlatformID):
            if not isinstance(value, type(self)):
                raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}")
            self._value = value._value
        elif isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool: {value}")
        elif isinstance(value, int):
            self._value = value
        elif isinstance(value, str):
            self._value = int(value.strip())
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")

    def to_int(self) -> int:
        """Return the identifier as an integer for platform API calls."""
        return self._value

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, type(self)):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._value))


class ChatID(_PlatformID):
    """Identifier of a group chat, channel, or sender chat."""

    __slots__ = ()


class UserID(_PlatformID):
    """Identifier of a human (or bot) account."""

    __slots__ = ()


class MessageID(_PlatformID):
    """Identifier of a single message, unique within its chat."""

    __slots__ = ()


@dataclass(frozen=True, slots=True)
class ChatUserKey:
    """Identity of all per-user moderation state. Never shared across chats."""

    chat_id: ChatID
    user_id: UserID

    def __str__(self) -> str:
        return f"{self.chat_id}/{self.user_id}"
