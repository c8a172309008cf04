"""Streaming ``.mp4`` writer.

Media data (``mdat``) is written to the sink as frames arrive, while the
sample tables are kept in memory and written as a ``moov`` box at the end.
This avoids buffering the media data or reserving a fixed size for ``moov``,
at the cost of slower playback start, particularly when the file is served
remotely.
"""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO

from .boxes import Mp4Error, TrakTracker, write_box

_log = logging.getLogger(__name__)

_U32_MAX = 0xFFFFFFFF
_U16_MAX = 0xFFFF
_VIDEO_TIMESCALE = 90_000
_MATRIX = (0x00010000, 0, 0, 0, 0x00010000, 0, 0, 0, 0x40000000)
_LANGUAGE_UND = 0x55C40000

_VIDEO_HDLR = (
    b"\x00\x00\x00\x00"  # version + flags
    b"\x00\x00\x00\x00"  # pre_defined
    b"vide"  # handler type
    + b"\x00" * 12  # reserved
    + b"\x00"  # name, zero-terminated (empty)
)
_AUDIO_HDLR = (
    b"\x00\x00\x00\x00"  # version + flags
    b"\x00\x00\x00\x00"  # pre_defined
    b"soun"  # handler type
    + b"\x00" * 12  # reserved
    + b"\x00"  # name, zero-terminated (empty)
)


def _pack(buf: bytearray, fmt: str, *values: int) -> None:
    buf += struct.pack(">" + fmt, *values)


def _u32(value: int, what: str) -> int:
    if not 0 <= value <= _U32_MAX:
        raise Mp4Error(f"{what} {value} does not fit in 32 bits")
    return value


@dataclass(frozen=True)
class VideoParameters:
    """Parameters of a video stream, as far as the ``.mp4`` file needs them.

    ``sample_entry`` is the complete ``VisualSampleEntry`` box, or None if
    one cannot be produced for this stream.
    """

    rfc6381_codec: str
    pixel_dimensions: tuple[int, int]
    sample_entry: bytes | None


@dataclass(frozen=True)
class AudioParameters:
    """Parameters of an audio stream: its codec, clock rate and sample entry box."""

    rfc6381_codec: str
    clock_rate: int
    sample_entry: bytes


class Mp4Writer:
    """Writes ``.mp4`` data to a seekable binary sink."""

    def __init__(
        self,
        inner: BinaryIO,
        audio_params: AudioParameters | None = None,
        allow_loss: bool = False,
    ) -> None:
        self._inner = inner
        self._audio_params = audio_params
        self._allow_loss = allow_loss
        self._video_params: list[VideoParameters] = []
        self._cur_video_index: int | None = None
        self._video_sync_sample_nums: list[int] = []
        self._video_trak = TrakTracker()
        self._audio_trak = TrakTracker()
        self._finished = False

        buf = bytearray()
        with write_box(buf, b"ftyp"):
            buf += b"isom"  # major_brand
            buf += b"\x00\x00\x00\x00"  # minor_version
            buf += b"isom"  # compatible_brands[0]
        buf += b"\x00\x00\x00\x00mdat"
        self._mdat_start = len(buf)
        self._mdat_pos = self._mdat_start
        inner.write(bytes(buf))

    def _check_open(self) -> None:
        if self._finished:
            raise Mp4Error("writer is already finished")

    def _advance(self, size: int) -> None:
        self._mdat_pos = _u32(self._mdat_pos + size, "mdat position")

    def video(
        self,
        params: VideoParameters | None,
        data: bytes,
        timestamp: int,
        loss: int = 0,
        is_random_access_point: bool = False,
        has_new_parameters: bool = False,
    ) -> bool:
        """Appends a video frame.

        ``params`` are the stream's current parameters. Returns False if the
        frame was discarded because no parameters are known yet.
        """
        self._check_open()
        _log.debug("%s: %d-byte video frame", timestamp, len(data))
        if self._cur_video_index is not None and not has_new_parameters:
            index = self._cur_video_index
        elif params is None:
            _log.debug("Discarding video frame received before parameters")
            return False
        else:
            _log.info("new video params: %r", params)
            try:
                index = self._video_params.index(params) + 1
            except ValueError:
                self._video_params.append(params)
                index = len(self._video_params)
        self._cur_video_index = index
        size = _u32(len(data), "video frame size")
        self._video_trak.add_sample(
            index, self._mdat_pos, size, timestamp, loss, self._allow_loss
        )
        self._advance(size)
        if is_random_access_point:
            self._video_sync_sample_nums.append(self._video_trak.samples)
        self._inner.write(bytes(data))
        return True

    def audio(self, data: bytes, timestamp: int, loss: int = 0) -> None:
        """Appends an audio frame."""
        self._check_open()
        if self._audio_params is None:
            raise Mp4Error("audio frame written without audio parameters")
        _log.debug("%s: %d-byte audio frame", timestamp, len(data))
        size = _u32(len(data), "audio frame size")
        self._audio_trak.add_sample(
            1, self._mdat_pos, size, timestamp, loss, self._allow_loss
        )
        self._advance(size)
        self._inner.write(bytes(data))

    def finish(self) -> None:
        """Writes the ``moov`` box and fixes up the ``mdat`` length."""
        self._check_open()
        self._finished = True
        self._video_trak.finish()
        self._audio_trak.finish()
        buf = bytearray()
        with write_box(buf, b"moov"):
            with write_box(buf, b"mvhd"):
                _pack(buf, "I", 1 << 24)  # version
                _pack(buf, "QQ", 0, 0)  # creation_time, modification_time
                _pack(buf, "I", _VIDEO_TIMESCALE)
                _pack(buf, "Q", self._video_trak.tot_duration)
                _pack(buf, "I", 0x00010000)  # rate
                _pack(buf, "HH", 0x0100, 0)  # volume, reserved
                _pack(buf, "Q", 0)  # reserved
                _pack(buf, "9I", *_MATRIX)
                _pack(buf, "6I", *([0] * 6))  # pre_defined
                _pack(buf, "I", 2)  # next_track_id
            if self._video_trak.samples > 0:
                self._write_video_trak(buf)
            if self._audio_trak.samples > 0 and self._audio_params is not None:
                self._write_audio_trak(buf, self._audio_params)
        self._inner.write(bytes(buf))
        self._inner.seek(self._mdat_start - 8, os.SEEK_SET)
        mdat_len = _u32(self._mdat_pos + 8 - self._mdat_start, "mdat length")
        self._inner.write(mdat_len.to_bytes(4, "big"))

    @staticmethod
    def _write_tkhd(buf: bytearray, track_id: int, duration: int, width: int, height: int) -> None:
        with write_box(buf, b"tkhd"):
            _pack(buf, "I", (1 << 24) | 7)  # version, flags
            _pack(buf, "QQ", 0, 0)  # creation_time, modification_time
            _pack(buf, "II", track_id, 0)
            _pack(buf, "Q", duration)
            _pack(buf, "Q", 0)  # reserved
            _pack(buf, "4H", 0, 0, 0, 0)  # layer, alternate_group, volume, reserved
            _pack(buf, "9I", *_MATRIX)
            _pack(buf, "II", width, height)

    @staticmethod
    def _write_mdhd(buf: bytearray, timescale: int, duration: int) -> None:
        with write_box(buf, b"mdhd"):
            _pack(buf, "I", 1 << 24)  # version
            _pack(buf, "QQ", 0, 0)  # creation_time, modification_time
            _pack(buf, "I", _u32(timescale, "timescale"))
            _pack(buf, "Q", duration)
            _pack(buf, "I", _LANGUAGE_UND)

    @staticmethod
    def _write_dinf(buf: bytearray) -> None:
        with write_box(buf, b"dinf"):
            with write_box(buf, b"dref"):
                _pack(buf, "II", 0, 1)  # version, entry_count
                with write_box(buf, b"url "):
                    _pack(buf, "I", 1)  # flags=self-contained

    def _write_video_trak(self, buf: bytearray) -> None:
        max_w = max((p.pixel_dimensions[0] for p in self._video_params), default=0)
        max_h = max((p.pixel_dimensions[1] for p in self._video_params), default=0)
        for dim in (max_w, max_h):
            if not 0 <= dim <= _U16_MAX:
                raise Mp4Error(f"pixel dimension {dim} does not fit in 16 bits")
        trak = self._video_trak
        with write_box(buf, b"trak"):
            self._write_tkhd(buf, 1, trak.tot_duration, max_w << 16, max_h << 16)
            with write_box(buf, b"mdia"):
                self._write_mdhd(buf, _VIDEO_TIMESCALE, trak.tot_duration)
                with write_box(buf, b"hdlr"):
                    buf += _VIDEO_HDLR
                with write_box(buf, b"minf"):
                    with write_box(buf, b"vmhd"):
                        _pack(buf, "IQ", 1, 0)
                    self._write_dinf(buf)
                    with write_box(buf, b"stbl"):
                        with write_box(buf, b"stsd"):
                            _pack(buf, "II", 0, len(self._video_params))
                            for p in self._video_params:
                                if p.sample_entry is None:
                                    raise Mp4Error(
                                        "unable to produce VisualSampleEntry for "
                                        f"{p.rfc6381_codec} stream"
                                    )
                                buf += p.sample_entry
                        trak.write_common_stbl_parts(buf)
                        with write_box(buf, b"stss"):
                            _pack(buf, "II", 0, len(self._video_sync_sample_nums))
                            for n in self._video_sync_sample_nums:
                                _pack(buf, "I", n)

    def _write_audio_trak(self, buf: bytearray, params: AudioParameters) -> None:
        trak = self._audio_trak
        with write_box(buf, b"trak"):
            self._write_tkhd(buf, 2, trak.tot_duration, 0, 0)
            with write_box(buf, b"mdia"):
                self._write_mdhd(buf, params.clock_rate, trak.tot_duration)
                with write_box(buf, b"hdlr"):
                    buf += _AUDIO_HDLR
                with write_box(buf, b"minf"):
                    with write_box(buf, b"smhd"):
                        _pack(buf, "IHH", 0, 0, 0)  # version+flags, balance, reserved
                    self._write_dinf(buf)
                    with write_box(buf, b"stbl"):
                        with write_box(buf, b"stsd"):
                            _pack(buf, "II", 0, 1)
                            buf += params.sample_entry
                        trak.write_common_stbl_parts(buf)
                        # AAC needs the previous frame to decode accurately.
                        with write_box(buf, b"sgpd"):
                            _pack(buf, "I", 0)
                            buf += b"roll"
                            _pack(buf, "I", 1)
                            _pack(buf, "h", -1)  # roll_distance
                        with write_box(buf, b"sbgp"):
                            _pack(buf, "I", 0)
                            buf += b"roll"
                            _pack(buf, "III", 1, trak.samples, 1)