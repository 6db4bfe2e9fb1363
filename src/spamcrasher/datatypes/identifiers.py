"""
Type-safe wrappers for chat platform identifiers.

Platform IDs are 64-bit integers (group chats may be negative) that are
frequently carried around as strings in JSON exports and config files.
These wrappers give the rest of the engine one consistent representation.
"""

from __future__ import annotations

from typing import Union


class _PlatformID:
    """
    Shared implementation for integer platform identifiers.

    The value is stored as its canonical decimal string so that IDs read
    from JSON, YAML and the command line compare equal.

    Attributes:
        _value (str): The identifier in canonical string form.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "_PlatformID"]) -> None:
        """
        Initialize from a string, int, or another identifier of the same kind.

        Raises:
            ValueError: If the value cannot be converted to an integer ID.
        """
        if isinstance(value, type(self)):
            self._value = value._value
        elif isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool: {value}")
        elif isinstance(value, int):
            self._value = str(value)
        elif isinstance(value, str):
            self._value = str(int(value.strip()))
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")

    @classmethod
    def from_int(cls, value: int):
        return cls(value)

    def to_int(self) -> int:
        return int(self._value)

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, type(self)):
            return self._value == other._value
        if isinstance(other, str):
            return self._value == other
        if isinstance(other, int) and not isinstance(other, bool):
            return self._value == str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._value))


class UserID(_PlatformID):
    """
    Identifier of a chat participant.

    Example:
        >>> uid = UserID("123456789")
        >>> uid.to_int()
        123456789
        >>> uid == 123456789
        True
    """

    __slots__ = ()


class ChannelID(_PlatformID):
    """
    Identifier of a chat, group or channel.

    Example:
        >>> ChannelID(-1001234567890).to_int()
        -1001234567890
    """

    __slots__ = ()
