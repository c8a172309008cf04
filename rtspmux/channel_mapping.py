"""Track RTSP interleaved channel to stream assignments.

There are 256 possible interleaved channels. Even channels always carry RTP
and the odd channel after each carries RTCP for the same stream, so one slot
per channel pair is enough. At most 255 streams (indices 0 to 254) can be
mapped.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

_MAX_PAIRS = 128
_MAX_STREAMS = 255


class ChannelType(enum.Enum):
    """Whether an interleaved channel carries RTP or RTCP."""

    RTP = "rtp"
    RTCP = "rtcp"


@dataclass(frozen=True)
class ChannelMapping:
    """The stream and packet type assigned to one interleaved channel."""

    stream_i: int
    channel_type: ChannelType


def _check_channel_id(channel_id: int) -> None:
    if not 0 <= channel_id <= 255:
        raise ValueError(f"Channel id {channel_id} is outside [0, 255]")


class ChannelMappings:
    """Mapping of interleaved channel pairs to stream indices."""

    def __init__(self) -> None:
        self._pairs: list[int | None] = []

    def next_unassigned(self) -> int | None:
        """Returns the next unassigned even channel id, or None if all are assigned."""
        for i, stream_i in enumerate(self._pairs):
            if stream_i is None:
                return i << 1
        if len(self._pairs) < _MAX_PAIRS:
            return len(self._pairs) << 1
        return None

    def assign(self, channel_id: int, stream_i: int) -> None:
        """Assigns an even channel id to RTP and its odd successor to RTCP.

        Raises ValueError if the assignment is not possible.
        """
        _check_channel_id(channel_id)
        if channel_id & 1:
            raise ValueError(f"Can't assign odd channel id {channel_id}")
        if not 0 <= stream_i < _MAX_STREAMS:
            raise ValueError(
                f"Can't assign channel to stream id {stream_i} because it's "
                f"outside [0, {_MAX_STREAMS})"
            )
        i = channel_id >> 1
        if i >= len(self._pairs):
            self._pairs.extend([None] * (i + 1 - len(self._pairs)))
        existing = self._pairs[i]
        if existing is not None:
            raise ValueError(
                f"Channel id {channel_id} is already assigned to stream "
                f"{existing}; won't reassign to stream {stream_i}"
            )
        self._pairs[i] = stream_i

    def lookup(self, channel_id: int) -> ChannelMapping | None:
        """Looks up a channel id's mapping, or None if it is unassigned."""
        _check_channel_id(channel_id)
        i = channel_id >> 1
        if i >= len(self._pairs):
            return None
        stream_i = self._pairs[i]
        if stream_i is None:
            return None
        channel_type = ChannelType.RTCP if channel_id & 1 else ChannelType.RTP
        return ChannelMapping(stream_i=stream_i, channel_type=channel_type)

    def __repr__(self) -> str:
        entries = {
            f"{i << 1}-{(i << 1) + 1}": stream_i
            for i, stream_i in enumerate(self._pairs)
            if stream_i is not None
        }
        return repr(entries)