"""Platform backend collaborators.

- PlatformBackend: abstract, tenant-scoped interface
- HttpPlatformBackend: aiohttp client for the platform API
- InMemoryPlatformBackend: in-process fake for development and tests
"""

from backend.base import PlatformBackend
from backend.http_client import HttpPlatformBackend, RetryConfig, PlatformApiConfig
from backend.in_memory import InMemoryPlatformBackend

__all__ = [
    "PlatformBackend",
    "HttpPlatformBackend",
    "RetryConfig",
    "PlatformApiConfig",
    "InMemoryPlatformBackend",
]
