"""Conversion of length-prefixed (AVC) H.264 data to Annex B form."""

from __future__ import annotations

START_CODE = b"\x00\x00\x00\x01"
_LENGTH_SIZE = 4


class AnnexBError(ValueError):
    """Raised when AVC data holds a truncated NAL unit or length prefix."""


def avcc_to_annexb(data: bytes) -> bytes:
    """Replaces each 4-byte big-endian NAL length with an Annex B start code."""
    out = bytearray(data)
    end = len(out)
    pos = 0
    while pos + _LENGTH_SIZE <= end:
        length = int.from_bytes(out[pos : pos + _LENGTH_SIZE], "big")
        out[pos : pos + _LENGTH_SIZE] = START_CODE
        pos += _LENGTH_SIZE + length
        if pos > end:
            raise AnnexBError("partial NAL body")
    if pos < end:
        raise AnnexBError("partial NAL length")
    return bytes(out)