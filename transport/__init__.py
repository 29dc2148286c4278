"""
Outbound transports for generated text.
"""

from .streaming import (
    JSON_MEDIA_TYPE,
    ByteSink,
    TokenStreamWriter,
    StreamClosed,
    ChunkChannel,
)

__all__ = [
    "JSON_MEDIA_TYPE",
    "ByteSink",
    "TokenStreamWriter",
    "StreamClosed",
    "ChunkChannel",
]
