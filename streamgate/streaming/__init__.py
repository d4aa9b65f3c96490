"""
Media streaming proxy - resolves embed references and relays byte ranges.
"""

from streamgate.streaming.embed import (
    EmbedResolver,
    StreamReference,
    StreamTarget,
    VideoConfigResolver,
    drive_target,
)
from streamgate.streaming.proxy import MediaStream, MediaStreamProxy

__all__ = [
    "EmbedResolver",
    "StreamReference",
    "StreamTarget",
    "VideoConfigResolver",
    "drive_target",
    "MediaStream",
    "MediaStreamProxy",
]
