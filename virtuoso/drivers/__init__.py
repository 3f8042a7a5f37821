"""Connection providers."""

from .loopback import LoopbackConnection, LoopbackProvider, Responder

__all__ = [
    "LoopbackConnection",
    "LoopbackProvider",
    "Responder",
]
