"""API Package.

FastAPI server for ERP connections, sync and FIRS compliance.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
