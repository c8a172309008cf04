import io
import struct

import pytest

from rtspmux.boxes import Mp4Error, write_box
from rtspmux.mp4 import AudioParameters, Mp4Writer, VideoParameters


def _entry(fourcc: bytes, payload: bytes) -> bytes:
    buf = bytearray()
    with write_box(buf, fourcc):
        buf += payload
    return bytes(buf)


def _boxes(data: bytes) -> list[tuple[str, bytes]]:
    out = []
    pos = 0
    while pos < len(data):
        size = int.from_bytes(data[pos : pos + 4], "big")
        assert size >= 8
        out.append((data[pos + 4 : pos + 8].decode("latin-1"), data[pos + 8 : pos + size]))
        pos += size
    assert pos == len(data)
    return out


def _all(data: bytes, kind: str) -> list[bytes]:
    return [body for k, body in _boxes(data) if k == kind]


def _child(data: bytes, *path: str) -> bytes:
    for kind in path:
        data = _all(data, kind)[0]
    return data


def _u32s(data: bytes) -> list[int]:
    return list(struct.unpack(f">{len(data) // 4}I", data))


VIDEO = VideoParameters("avc1.64001e", (640, 480), _entry(b"avc1", b"vid-a"))
VIDEO_B = VideoParameters("avc1.64001f", (1280, 360), _entry(b"avc1", b"vid-b"))
AUDIO = AudioParameters("mp4a.40.2", 48000, _entry(b"mp4a", b"aud"))


def test_video_only_file_structure():
    sink = io.BytesIO()
    w = Mp4Writer(sink)
    frames = [b"a" * 10, b"b" * 5, b"c" * 7]
    for i, f in enumerate(frames):
        assert w.video(VIDEO, f, i * 3000, is_random_access_point=(i == 0))
    w.finish()
    top = _boxes(sink.getvalue())
    assert [k for k, _ in top] == ["ftyp", "mdat", "moov"]
    assert top[1][1] == b"".join(frames)
    moov = top[2][1]
    assert [k for k, _ in _boxes(moov)] == ["mvhd", "trak"]
    trak = _child(moov, "trak")
    stbl = _child(trak, "mdia", "minf", "stbl")
    stsz = _child(stbl, "stsz")
    assert _u32s(stsz) == [0, 0, 3, 10, 5, 7]
    assert _u32s(_child(stbl, "stss")) == [0, 1, 1]
    assert _u32s(_child(stbl, "stts")) == [0, 2, 2, 3000, 1, 0]
    hdlr = _child(trak, "mdia", "hdlr")
    assert hdlr[8:12] == b"vide"
    mdhd = _child(trak, "mdia", "mdhd")
    assert int.from_bytes(mdhd[20:24], "big") == 90000
    assert int.from_bytes(mdhd[24:32], "big") == 6000
    stsd = _child(stbl, "stsd")
    assert _u32s(stsd[:8]) == [0, 1]
    assert stsd[8:] == VIDEO.sample_entry


def test_chunk_offsets_point_at_frames():
    sink = io.BytesIO()
    w = Mp4Writer(sink, AUDIO)
    w.video(VIDEO, b"VVVV", 0, is_random_access_point=True)
    w.audio(b"AA", 0)
    w.video(VIDEO, b"WWW", 3000)
    w.finish()
    data = sink.getvalue()
    traks = _all(_child(data, "moov"), "trak")
    assert len(traks) == 2
    video_stco = _u32s(_child(traks[0], "mdia", "minf", "stbl", "stco"))
    audio_stco = _u32s(_child(traks[1], "mdia", "minf", "stbl", "stco"))
    assert video_stco[:2] == [0, 2]
    assert data[video_stco[2] : video_stco[2] + 4] == b"VVVV"
    assert data[video_stco[3] : video_stco[3] + 3] == b"WWW"
    assert audio_stco[:2] == [0, 1]
    assert data[audio_stco[2] : audio_stco[2] + 2] == b"AA"


def test_audio_track():
    sink = io.BytesIO()
    w = Mp4Writer(sink, AUDIO)
    for i in range(3):
        w.audio(b"x" * 4, i * 1024)
    w.finish()
    moov = _child(sink.getvalue(), "moov")
    trak = _child(moov, "trak")
    assert _child(trak, "mdia", "hdlr")[8:12] == b"soun"
    mdhd = _child(trak, "mdia", "mdhd")
    assert int.from_bytes(mdhd[20:24], "big") == AUDIO.clock_rate
    stbl = _child(trak, "mdia", "minf", "stbl")
    assert _child(stbl, "stsd")[8:] == AUDIO.sample_entry
    sgpd = _child(stbl, "sgpd")
    assert sgpd[4:8] == b"roll"
    assert struct.unpack(">h", sgpd[12:14])[0] == -1
    sbgp = _child(stbl, "sbgp")
    assert sbgp[4:8] == b"roll"
    assert _u32s(sbgp[8:]) == [1, 3, 1]
    tkhd = _child(trak, "tkhd")
    assert int.from_bytes(tkhd[20:24], "big") == 2


def test_track_dimensions_are_maximum_over_params():
    sink = io.BytesIO()
    w = Mp4Writer(sink)
    w.video(VIDEO, b"a", 0)
    w.video(VIDEO_B, b"b", 3000, has_new_parameters=True)
    w.finish()
    trak = _child(sink.getvalue(), "moov", "trak")
    tkhd = _child(trak, "tkhd")
    assert int.from_bytes(tkhd[88:92], "big") >> 16 == 1280
    assert int.from_bytes(tkhd[92:96], "big") >> 16 == 480
    stbl = _child(trak, "mdia", "minf", "stbl")
    stsd = _child(stbl, "stsd")
    assert _u32s(stsd[:8]) == [0, 2]
    assert stsd[8:] == VIDEO.sample_entry + VIDEO_B.sample_entry


def test_repeated_parameters_reuse_description():
    sink = io.BytesIO()
    w = Mp4Writer(sink)
    w.video(VIDEO, b"a", 0)
    w.video(VIDEO, b"b", 1, has_new_parameters=True)
    w.finish()
    stsd = _child(sink.getvalue(), "moov", "trak", "mdia", "minf", "stbl", "stsd")
    assert _u32s(stsd[:8]) == [0, 1]


def test_frame_before_parameters_is_discarded():
    sink = io.BytesIO()
    w = Mp4Writer(sink)
    assert w.video(None, b"zzz", 0) is False
    w.finish()
    top = _boxes(sink.getvalue())
    assert top[1] == ("mdat", b"")
    assert [k for k, _ in _boxes(top[2][1])] == ["mvhd"]


def test_loss_mid_stream_rejected():
    w = Mp4Writer(io.BytesIO())
    w.video(VIDEO, b"a", 0, loss=3)
    with pytest.raises(Mp4Error):
        w.video(VIDEO, b"b", 3000, loss=1)


def test_loss_mid_stream_allowed():
    sink = io.BytesIO()
    w = Mp4Writer(sink, allow_loss=True)
    w.video(VIDEO, b"a", 0)
    assert w.video(VIDEO, b"b", 3000, loss=1)
    w.finish()
    assert _boxes(sink.getvalue())[1] == ("mdat", b"ab")


def test_missing_sample_entry_fails_at_finish():
    params = VideoParameters("hvc1.1.6.L93.B0", (320, 240), None)
    w = Mp4Writer(io.BytesIO())
    w.video(params, b"a", 0)
    with pytest.raises(Mp4Error, match="VisualSampleEntry"):
        w.finish()


def test_oversized_dimensions_rejected():
    params = VideoParameters("avc1.64001e", (70000, 240), _entry(b"avc1", b""))
    w = Mp4Writer(io.BytesIO())
    w.video(params, b"a", 0)
    with pytest.raises(Mp4Error):
        w.finish()


def test_audio_without_parameters_rejected():
    w = Mp4Writer(io.BytesIO())
    with pytest.raises(Mp4Error):
        w.audio(b"a", 0)


def test_use_after_finish_rejected():
    w = Mp4Writer(io.BytesIO())
    w.finish()
    with pytest.raises(Mp4Error):
        w.video(VIDEO, b"a", 0)
    with pytest.raises(Mp4Error):
        w.finish()