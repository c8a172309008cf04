# rtspmux

Small building blocks for handling RTSP/RTP media in Python, with no
dependencies outside the standard library:

- `rtspmux.channel_mapping`: tracks RTSP interleaved channel assignments.
  Even channel ids carry RTP and their odd successors carry RTCP for the
  same stream.
- `rtspmux.annexb`: converts an H.264 access unit from the AVC
  length-prefixed form to Annex B start-code form.
- `rtspmux.boxes`: the `write_box` context manager for ISO BMFF boxes and
  `TrakTracker`, which keeps the sample tables shared by video and audio
  tracks.
- `rtspmux.mp4`: `Mp4Writer`, a streaming `.mp4` writer. It writes media
  data (`mdat`) as frames arrive and appends the `moov` box when finished.

## Installation

```
pip install .
```

## Channel mappings

```python
from rtspmux.channel_mapping import ChannelMappings, ChannelType

mappings = ChannelMappings()
channel = mappings.next_unassigned()   # 0
mappings.assign(channel, 42)
mapping = mappings.lookup(1)
assert mapping.stream_i == 42
assert mapping.channel_type is ChannelType.RTCP
```

`next_unassigned()` returns the lowest free even channel id, or `None`
once all 128 channel pairs are taken. `lookup()` returns a frozen
`ChannelMapping` or `None` for an unassigned channel.

`assign()` raises `ValueError` for an odd channel id, a channel id
outside 0 to 255, a stream index outside 0 to 254, or a channel that is
already assigned. `lookup()` raises `ValueError` for a channel id outside
0 to 255.

## AVC to Annex B

```python
from rtspmux.annexb import avcc_to_annexb, AnnexBError

annexb = avcc_to_annexb(b"\x00\x00\x00\x02\x65\x88")
# b"\x00\x00\x00\x01\x65\x88"
```

Each 4-byte big-endian NAL length is replaced by the start code
`00 00 00 01`. A truncated NAL body or length prefix raises
`AnnexBError`, a subclass of `ValueError`.

## Writing boxes

```python
from rtspmux.boxes import write_box

buf = bytearray()
with write_box(buf, b"free"):
    buf += b"\x00" * 4
# buf == b"\x00\x00\x00\x0cfree\x00\x00\x00\x00"
```

`TrakTracker` records samples with `add_sample()`, closes the duration
table with `finish()`, and appends the `stts`, `stsc`, `stsz` and `stco`
boxes with `write_common_stbl_parts()`.

## Writing an .mp4 file

```python
from rtspmux.mp4 import Mp4Writer, VideoParameters

params = VideoParameters(
    rfc6381_codec="avc1.4d401e",
    pixel_dimensions=(1280, 720),
    sample_entry=visual_sample_entry,   # a complete sample entry box, as bytes
)

with open("out.mp4", "w+b") as f:
    writer = Mp4Writer(f, audio_params=None, allow_loss=False)
    writer.video(params, frame_data, timestamp=0, is_random_access_point=True)
    writer.video(params, next_frame_data, timestamp=3000)
    writer.finish()
```

- `video(params, data, timestamp, loss=0, is_random_access_point=False,
  has_new_parameters=False)` appends a frame. It returns `False`, and
  writes nothing, for a frame that arrives before any parameters are known.
  Video timestamps are in a 90 kHz timescale.
- `audio(data, timestamp, loss=0)` appends an audio frame; it needs an
  `AudioParameters` (codec, clock rate and sample entry box) passed to the
  writer, and its timestamps are in that clock rate.
- `finish()` writes the `moov` box and goes back to fill in the size of
  the `mdat` box, so the sink must be writable and seekable. A writer can
  be finished only once; further calls raise `Mp4Error`.

`Mp4Error` is raised when packets are lost after the first sample of a
track and `allow_loss` is false, when timestamps go backwards, when a size
or position does not fit in 32 bits, and when a video stream has no
sample entry.

## What this package does not do

It does not connect to RTSP servers, parse SDP, depacketize RTP into
frames, or build codec sample entries: the caller supplies frame data,
timestamps and the sample entry bytes. There is no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```