from .client import RelayClient
from .messages import ConnectionState, Envelope, MessageType, PlaybackAction
from .server import RelayServer

__all__ = ["RelayClient", "RelayServer", "ConnectionState", "Envelope", "MessageType", "PlaybackAction"]
