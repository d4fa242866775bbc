"""Access-point provider models."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import Field

from core.models.base import PlatformBase


class AccessPointProvider(PlatformBase):
    """A relay credentialed to submit signed invoices to the regulator."""
    id: str
    code: str
    name: str
    is_active: bool = False
    has_credentials: bool = False
    description: Optional[str] = None


class ActiveProvider(PlatformBase):
    """The tenant's active provider with its credential fields.

    ``credentials`` is masked unless explicitly requested unmasked.
    """
    provider: AccessPointProvider
    credentials: Dict[str, str] = Field(default_factory=dict)
    masked: bool = True
    activated_at: Optional[datetime] = None
