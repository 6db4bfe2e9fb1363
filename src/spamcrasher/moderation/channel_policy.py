"""Whitelist of channels that are never classified."""

from __future__ import annotations

from typing import FrozenSet, Iterable, Union

from spamcrasher.datatypes.identifiers import ChannelID
from spamcrasher.errors import ConfigError

ChannelLike = Union[ChannelID, int, str]


def parse_channel_ids(raw: Iterable[ChannelLike] | str | None) -> FrozenSet[ChannelID]:
    """Parse a channel list from config or the command line.

    Accepts an iterable of ints / numeric strings, or a single comma-separated
    string such as ``"-1001,-1002"``. Blank entries are skipped.

    Raises:
        ConfigError: If any entry is not an integer channel ID.
    """
    if raw is None:
        return frozenset()
    if isinstance(raw, (str, int)):
        raw = str(raw).split(",")

    channels = set()
    for entry in raw:
        if isinstance(entry, str):
            entry = entry.strip()
            if not entry:
                continue
        try:
            channels.add(ChannelID(entry))
        except ValueError as exc:
            raise ConfigError(f"Invalid whitelist channel id: {entry!r}") from exc
    return frozenset(channels)


class ChannelPolicy:
    """Immutable set of channel IDs exempt from classification.

    Built once at startup; there is no way to mutate it afterwards.
    """

    __slots__ = ("_channels",)

    def __init__(self, channels: Iterable[ChannelLike] | str | None = None) -> None:
        self._channels: FrozenSet[ChannelID] = parse_channel_ids(channels)

    @property
    def channels(self) -> FrozenSet[ChannelID]:
        return self._channels

    def is_whitelisted(self, channel_id: ChannelLike) -> bool:
        if not self._channels:
            return False
        try:
            return ChannelID(channel_id) in self._channels
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._channels)

    def __repr__(self) -> str:
        return f"ChannelPolicy({sorted(c.to_int() for c in self._channels)!r})"
