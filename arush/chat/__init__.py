"""
Chat package: stream protocol, model adaptation and turn orchestration.

Only leaf modules are re-exported here; ``arush.tools`` imports from this
package, so the orchestrator is imported from its own module.
"""

from .errors import BadRequest, ChatError, NotFound, Unauthorized
from .stream_protocol import STREAM_MEDIA_TYPE, StreamFragment, decode_stream

__all__ = [
    "STREAM_MEDIA_TYPE",
    "BadRequest",
    "ChatError",
    "NotFound",
    "StreamFragment",
    "Unauthorized",
    "decode_stream",
]
