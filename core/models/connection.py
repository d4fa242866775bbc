"""ERP connection profile models.

Payload models are deliberately lenient (most fields optional) so that the
profile validator, not pydantic, decides what a given ERP type requires and
reports it with field-keyed messages.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from core.errors import ConnectionTestError
from core.models.base import DateValue, PlatformBase


class ConnectionPath(str, Enum):
    """Leg of a connection test."""
    API = "api"
    DATABASE = "database"


class Protocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"


class ServerDetails(PlatformBase):
    """Where the ERP lives."""
    host: Optional[str] = Field(None, description="Hostname or IP of the ERP server")
    port: Optional[int] = Field(None, description="TCP port")
    protocol: Protocol = Field(default=Protocol.HTTPS, description="http or https")
    ssl_verify: Optional[bool] = Field(None, description="Verify TLS certificates (https only)")
    schema_name: Optional[str] = Field(None, alias="schema", description="Database schema")
    pool_alias: Optional[str] = Field(None, description="API pool / folder alias")
    api_version: Optional[str] = Field(None, description="ERP API version")
    database: Optional[str] = Field(None, description="Database name (database-primary types)")


class Credentials(PlatformBase):
    """Username/password pair for one connection leg."""
    username: Optional[str] = None
    password: Optional[str] = None

    def is_complete(self) -> bool:
        return bool((self.username or "").strip()) and bool((self.password or "").strip())

    def missing_fields(self) -> list:
        return [
            name for name in ("username", "password")
            if not (getattr(self, name) or "").strip()
        ]


class DbCredentials(Credentials):
    """Database credentials; ``database`` is authoritative here for API-primary types."""
    database: Optional[str] = None


class ReadPermissions(PlatformBase):
    """Which entity types the ERP account may read."""
    vendors: bool = True
    customers: bool = True
    products: bool = True
    invoices: bool = True
    tax_categories: bool = True

    def allows(self, entity_type: str) -> bool:
        return bool(getattr(self, str(getattr(entity_type, "value", entity_type)), False))


class SyncSettings(PlatformBase):
    frequency_minutes: int = Field(default=60, description="Scheduled sync frequency")


class ConnectionProfile(PlatformBase):
    """A tenant's connection settings for one ERP system."""
    erp_type: str = Field(..., description="ERP type code, e.g. sage_x3")
    server_details: ServerDetails = Field(default_factory=ServerDetails)
    api_credentials: Optional[Credentials] = None
    db_credentials: Optional[DbCredentials] = None
    read_permissions: ReadPermissions = Field(default_factory=ReadPermissions)
    sync_settings: SyncSettings = Field(default_factory=SyncSettings)
    invoice_sync_start_date: Optional[DateValue] = None
    is_active: bool = True

    @property
    def has_api_credentials(self) -> bool:
        return self.api_credentials is not None and self.api_credentials.is_complete()

    @property
    def has_db_credentials(self) -> bool:
        return self.db_credentials is not None and self.db_credentials.is_complete()


class ConnectionTestResult(BaseModel):
    """Outcome of testing one connection path."""
    success: bool
    path_tested: ConnectionPath
    message: str
    latency_ms: Optional[float] = None
    tested_at: datetime = Field(default_factory=datetime.utcnow)

    def raise_for_failure(self) -> "ConnectionTestResult":
        if not self.success:
            raise ConnectionTestError(self.path_tested.value, self.message)
        return self


class StoredProfile(ConnectionProfile):
    """A persisted profile, owned by a tenant."""
    id: str
    tenant_id: str
    last_test: Optional[ConnectionTestResult] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def to_profile(self) -> ConnectionProfile:
        return ConnectionProfile.model_validate(
            self.model_dump(include=set(ConnectionProfile.model_fields))
        )
