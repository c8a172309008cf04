"""ISO BMFF box writing and per-track sample table bookkeeping."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

_U32_MAX = 0xFFFFFFFF


class Mp4Error(Exception):
    """Raised when samples or boxes cannot be represented in an .mp4 file."""


def _u32(value: int, what: str) -> int:
    if not 0 <= value <= _U32_MAX:
        raise Mp4Error(f"{what} {value} does not fit in 32 bits")
    return value


def _put_u32(buf: bytearray, *values: int) -> None:
    buf += struct.pack(f">{len(values)}I", *values)


@contextmanager
def write_box(buf: bytearray, fourcc: bytes) -> Iterator[bytearray]:
    """Appends a box header to ``buf`` and fills in its length on exit.

    Everything appended to ``buf`` inside the ``with`` block becomes the
    box's body.
    """
    if len(fourcc) != 4:
        raise ValueError(f"box type must be 4 bytes, got {fourcc!r}")
    start = len(buf)
    buf += b"\x00\x00\x00\x00" + bytes(fourcc)
    yield buf
    length = _u32(len(buf) - start, "box length")
    buf[start : start + 4] = length.to_bytes(4, "big")


@dataclass
class Chunk:
    """A run of samples with consecutive byte positions and one sample description."""

    first_sample_number: int
    byte_pos: int
    sample_description_index: int


@dataclass
class TrakTracker:
    """Tracks the parts of a ``trak`` box common to video and audio samples.

    ``durations`` is a run-length encoding of ``[sample count, duration]``
    pairs. It lags one sample behind ``add_sample`` because each sample's
    duration comes from the timestamp of the sample after it.
    """

    samples: int = 0
    next_pos: int | None = None
    chunks: list[Chunk] = field(default_factory=list)
    sizes: list[int] = field(default_factory=list)
    durations: list[list[int]] = field(default_factory=list)
    last_pts: int | None = None
    tot_duration: int = 0

    def add_sample(
        self,
        sample_description_index: int,
        byte_pos: int,
        size: int,
        timestamp: int,
        loss: int,
        allow_loss: bool,
    ) -> None:
        """Records a sample of ``size`` bytes at ``byte_pos`` with the given timestamp."""
        if self.samples > 0 and loss > 0 and not allow_loss:
            raise Mp4Error(f"Lost {loss} RTP packets mid-stream")
        self.samples += 1
        last_chunk = self.chunks[-1] if self.chunks else None
        if (
            self.next_pos != byte_pos
            or last_chunk is None
            or last_chunk.sample_description_index != sample_description_index
        ):
            self.chunks.append(
                Chunk(
                    first_sample_number=self.samples,
                    byte_pos=byte_pos,
                    sample_description_index=sample_description_index,
                )
            )
        self.sizes.append(size)
        self.next_pos = byte_pos + size
        last_pts, self.last_pts = self.last_pts, timestamp
        if last_pts is None:
            return
        duration = timestamp - last_pts
        if duration < 0:
            raise Mp4Error(
                f"timestamp {timestamp} goes backwards from previous {last_pts}"
            )
        self.tot_duration += duration
        _u32(duration, "sample duration")
        if self.durations and self.durations[-1][1] == duration:
            self.durations[-1][0] += 1
        else:
            self.durations.append([1, duration])

    def finish(self) -> None:
        """Gives the final sample a zero duration."""
        if self.last_pts is not None:
            self.durations.append([1, 0])

    def size_estimate(self) -> int:
        """Estimates the total size of the variable-length table entries."""
        return (
            len(self.durations) * 8  # stts
            + len(self.chunks) * 12  # stsc
            + len(self.sizes) * 4  # stsz
            + len(self.chunks) * 4  # stco
        )

    def write_common_stbl_parts(self, buf: bytearray) -> None:
        """Appends the ``stts``, ``stsc``, ``stsz`` and ``stco`` boxes to ``buf``."""
        with write_box(buf, b"stts"):
            _put_u32(buf, 0, _u32(len(self.durations), "stts entry count"))
            for samples, duration in self.durations:
                _put_u32(buf, samples, duration)
        with write_box(buf, b"stsc"):
            _put_u32(buf, 0, _u32(len(self.chunks), "stsc entry count"))
            if self.chunks:
                prev_sample_number = 1
                chunk_number = 1
                for chunk in self.chunks[1:]:
                    _put_u32(
                        buf,
                        chunk_number,
                        chunk.first_sample_number - prev_sample_number,
                        chunk.sample_description_index,
                    )
                    prev_sample_number = chunk.first_sample_number
                    chunk_number += 1
                _put_u32(buf, chunk_number, self.samples + 1 - prev_sample_number, 1)
        with write_box(buf, b"stsz"):
            _put_u32(buf, 0, 0, _u32(len(self.sizes), "stsz entry count"))
            for size in self.sizes:
                _put_u32(buf, size)
        with write_box(buf, b"stco"):
            _put_u32(buf, 0, _u32(len(self.chunks), "stco entry count"))
            for chunk in self.chunks:
                _put_u32(buf, chunk.byte_pos)