"""RTSP channel mapping, AVC to Annex B conversion, BMFF boxes and streaming .mp4 writing."""

__version__ = "0.1.0"
__all__ = ["annexb", "boxes", "channel_mapping", "mp4"]