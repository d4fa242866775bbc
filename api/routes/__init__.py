"""API Routes Package."""

from api.routes import health, connections, sync, compliance, providers

__all__ = [
    "health",
    "connections",
    "sync",
    "compliance",
    "providers",
]
