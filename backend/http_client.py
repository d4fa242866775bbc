"""Platform API HTTP client.

Async client for the multi-tenant platform API. Handles the bearer session
token, the ``{status, message, data, errors}`` response envelope, retries and
error mapping.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from backend.base import PlatformBackend
from core.config import Settings, get_settings
from core.errors import (
    BackendError,
    BackendTimeoutError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from core.models import (
    AccessPointProvider,
    ActiveProvider,
    ConnectionPath,
    ConnectionProfile,
    ConnectionTestResult,
    EntityType,
    FirsStatus,
    Invoice,
    InvoiceDirection,
    PaymentStatus,
    StoredProfile,
    SyncJob,
    SyncJobSpec,
    SyncStatus,
    ValidationReport,
)
from core.observability.logging import get_logger
from core.security.encryption import SecretEncryption
from core.security.token_store import FileTokenStore, InMemoryTokenStore, SessionTokens

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)
    idempotent_methods: Tuple[str, ...] = ("GET", "HEAD", "PUT", "DELETE")

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class PlatformApiConfig:
    """Configuration for the platform API client."""
    base_url: str = "http://localhost:8080/api"
    timeout_seconds: float = 30.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PlatformApiConfig":
        settings = settings or get_settings()
        return cls(
            base_url=settings.platform_api_base_url.rstrip("/"),
            timeout_seconds=settings.platform_api_timeout_seconds,
            retry_config=RetryConfig(max_retries=settings.platform_api_max_retries),
        )


def _field_errors(errors: Any) -> Dict[str, str]:
    """Flatten the platform's ``errors`` member to ``{field: message}``."""
    if isinstance(errors, dict):
        flat: Dict[str, str] = {}
        for key, value in errors.items():
            if isinstance(value, list):
                flat[str(key)] = str(value[0]) if value else "Invalid value"
            else:
                flat[str(key)] = str(value)
        return flat
    if isinstance(errors, list):
        return {"request": "; ".join(str(e) for e in errors)}
    return {}


class HttpPlatformBackend(PlatformBackend):
    """Platform backend over HTTP.

    Usage:
        backend = HttpPlatformBackend("tenant-1", tokens)
        profile = await backend.get_profile("erp-1")
        await backend.close()
    """

    def __init__(
        self,
        tenant_id: str,
        tokens: SessionTokens,
        config: Optional[PlatformApiConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(tenant_id)
        self.config = config or PlatformApiConfig.from_settings()
        self._tokens = tokens
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, tenant_id: str, settings: Optional[Settings] = None) -> "HttpPlatformBackend":
        """Backend whose bearer token comes from the configured encrypted token store."""
        settings = settings or get_settings()
        if not settings.token_encryption_key:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY must be set to reach the platform API")
        if settings.token_store_path:
            store = FileTokenStore(settings.token_store_path)
        else:
            store = InMemoryTokenStore()
        tokens = SessionTokens(store, SecretEncryption(settings.token_encryption_key))
        return cls(tenant_id, tokens, PlatformApiConfig.from_settings(settings))

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _headers(self) -> Dict[str, str]:
        token = await self._tokens.get_access_token(self.tenant_id)
        if not token:
            raise PermissionDenied("No platform session for this tenant. Please sign in again.")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
        idempotent: Optional[bool] = None,
    ) -> Any:
        """Make an authenticated API request with automatic retries.

        Non-idempotent requests are repeated only when the server cannot have
        acted on them: the connection was never established, or a 429/503
        carried ``Retry-After``. ``idempotent`` defaults from the method.

        Returns:
            The envelope's ``data`` member

        Raises:
            PermissionDenied: 401/403
            NotFoundError: 404
            ValidationError: 422 with field errors
            BackendTimeoutError: request timed out on every attempt
            BackendError: any other failure
        """
        session = await self._get_session()
        url = f"{self.config.base_url}{endpoint}"
        retry_config = self.config.retry_config
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        last_error: Optional[Exception] = None
        if idempotent is None:
            idempotent = method.upper() in retry_config.idempotent_methods

        for attempt in range(retry_config.max_retries + 1):
            headers = await self._headers()
            try:
                async with session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=data,
                    timeout=timeout,
                ) as response:
                    if response.status == 204:
                        return None
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = {"message": await response.text()}
                    if not isinstance(body, dict):
                        body = {"data": body}

                    if response.status < 400 and body.get("status", "success") != "error":
                        return body.get("data")

                    message = body.get("message") or f"API error {response.status}"

                    if response.status in (401, 403):
                        raise PermissionDenied(message)
                    if response.status == 404:
                        raise NotFoundError(message)
                    if response.status in (400, 422) and body.get("errors"):
                        raise ValidationError(_field_errors(body["errors"]), message)

                    retry_after = response.headers.get("Retry-After", "")
                    deferred = response.status in (429, 503) and retry_after.isdigit()
                    retryable = response.status in retry_config.retry_on_status and (idempotent or deferred)

                    if retryable and attempt < retry_config.max_retries:
                        if deferred:
                            delay = min(float(retry_after), retry_config.max_delay)
                        else:
                            delay = retry_config.get_delay(attempt)
                        logger.warning(
                            f"Request failed with {response.status}, "
                            f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    raise BackendError(message, response.status, body)

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_error = e
                # a POST may have been committed unless the connection never opened
                never_sent = isinstance(e, aiohttp.ClientConnectorError)
                if (idempotent or never_sent) and attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                if isinstance(e, asyncio.TimeoutError):
                    raise BackendTimeoutError() from e
                raise BackendError(f"Request failed after {retry_config.max_retries} retries: {e}") from e

        raise BackendError(f"Request failed: {last_error}")

    # =========================================================================
    # Connection Profiles
    # =========================================================================

    @staticmethod
    def _profile_body(profile: ConnectionProfile) -> Dict[str, Any]:
        return profile.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def create_profile(self, profile: ConnectionProfile) -> StoredProfile:
        data = await self._request("POST", "/settings/erp", data=self._profile_body(profile))
        return StoredProfile.model_validate(data)

    async def get_profile(self, profile_id: str) -> StoredProfile:
        data = await self._request("GET", f"/settings/erp/{profile_id}")
        return StoredProfile.model_validate(data)

    async def list_profiles(self) -> List[StoredProfile]:
        data = await self._request("GET", "/settings/erp")
        return [StoredProfile.model_validate(item) for item in data or []]

    async def update_profile(self, profile_id: str, profile: ConnectionProfile) -> StoredProfile:
        data = await self._request("PUT", f"/settings/erp/{profile_id}", data=self._profile_body(profile))
        return StoredProfile.model_validate(data)

    async def delete_profile(self, profile_id: str) -> None:
        await self._request("DELETE", f"/settings/erp/{profile_id}")

    # =========================================================================
    # Connection Tests
    # =========================================================================

    async def test_connection(
        self,
        profile: ConnectionProfile,
        path: ConnectionPath,
        profile_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        if profile_id:
            data = await self._request(
                "POST", f"/settings/erp/{profile_id}/test", data={"path": path.value}, idempotent=True
            )
        else:
            body = self._profile_body(profile)
            body["path"] = path.value
            data = await self._request("POST", "/settings/erp/test", data=body, idempotent=True)
        data = dict(data or {})
        data.setdefault("path_tested", path.value)
        data.setdefault("message", "Connection successful" if data.get("success") else "Connection failed")
        return ConnectionTestResult.model_validate(data)

    # =========================================================================
    # Sync
    # =========================================================================

    async def submit_sync_job(self, profile_id: str, spec: SyncJobSpec) -> SyncJob:
        body = spec.model_dump(mode="json", exclude_none=True)
        data = await self._request("POST", f"/settings/erp/{profile_id}/sync", data=body)
        return SyncJob.model_validate(data)

    async def get_sync_job(self, job_id: str) -> SyncJob:
        data = await self._request("GET", f"/settings/erp/sync-jobs/{job_id}")
        return SyncJob.model_validate(data)

    async def get_sync_status(self, profile_id: str) -> SyncStatus:
        data = await self._request("GET", f"/settings/erp/{profile_id}/sync-status")
        data = dict(data or {})
        data.setdefault("profile_id", profile_id)
        return SyncStatus.model_validate(data)

    async def record_watermark(self, profile_id: str, entity_type: EntityType, at: datetime) -> None:
        await self._request(
            "PUT",
            f"/settings/erp/{profile_id}/watermarks/{entity_type.value}",
            data={"synced_at": at.isoformat()},
        )

    # =========================================================================
    # Access-Point Providers
    # =========================================================================

    async def list_providers(self) -> List[AccessPointProvider]:
        data = await self._request("GET", "/settings/access-point-providers/available")
        return [AccessPointProvider.model_validate(item) for item in data or []]

    async def get_active_provider(self, unmask: bool = False) -> Optional[ActiveProvider]:
        params = {"unmask": "true"} if unmask else None
        data = await self._request("GET", "/settings/access-point-providers/active", params=params)
        if not data:
            return None
        return ActiveProvider.model_validate({**data, "masked": not unmask})

    async def activate_provider(
        self,
        provider_id: str,
        credentials: Optional[Dict[str, str]] = None,
    ) -> AccessPointProvider:
        body: Dict[str, Any] = {"provider_id": provider_id}
        if credentials:
            body["credentials"] = credentials
        data = await self._request("POST", "/settings/access-point-providers/activate", data=body)
        return AccessPointProvider.model_validate(data)

    async def update_provider_credentials(
        self,
        provider_id: str,
        credentials: Dict[str, str],
    ) -> AccessPointProvider:
        data = await self._request(
            "PUT",
            f"/settings/access-point-providers/{provider_id}/credentials",
            data={"credentials": credentials},
        )
        return AccessPointProvider.model_validate(data)

    async def deactivate_provider(self) -> None:
        await self._request("POST", "/settings/access-point-providers/deactivate")

    async def resync_provider_profile(self) -> Dict[str, object]:
        data = await self._request("POST", "/settings/access-point-providers/resync-firs-profile")
        return dict(data or {})

    # =========================================================================
    # Compliance
    # =========================================================================

    @staticmethod
    def _invoice_path(invoice_id: str, direction: InvoiceDirection) -> str:
        return f"/invoices/{direction.route_segment}/{invoice_id}"

    async def get_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        data = await self._request("GET", self._invoice_path(invoice_id, direction))
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def validate_invoice(self, invoice_id: str, direction: InvoiceDirection) -> ValidationReport:
        try:
            data = await self._request(
                "POST", "/firs/validate",
                data={"invoice_id": invoice_id, "direction": direction.value},
            )
        except ValidationError as e:
            # Regulator rejections come back as 422 with the findings as field errors
            return ValidationReport(valid=False, errors=list(e.field_errors.values()))
        data = dict(data or {})
        data.setdefault("valid", not data.get("errors"))
        return ValidationReport.model_validate(data)

    async def sign_invoice(self, invoice_id: str, direction: InvoiceDirection) -> Invoice:
        data = await self._request("POST", "/firs/sign", data={"invoice_id": invoice_id, "direction": direction.value})
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def update_payment_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: PaymentStatus,
    ) -> Invoice:
        data = await self._request(
            "POST", "/firs/invoice/payment",
            data={"invoice_id": invoice_id, "direction": direction.value, "payment_status": status.value},
        )
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def update_firs_fields(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        fields: Dict[str, Optional[str]],
    ) -> Invoice:
        data = await self._request("PATCH", f"{self._invoice_path(invoice_id, direction)}/firs-fields", data=fields)
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def update_item_classifications(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        codes: Dict[str, str],
    ) -> Invoice:
        body = {"items": [{"item_id": item_id, "hsn_code": code} for item_id, code in codes.items()]}
        data = await self._request("PATCH", f"{self._invoice_path(invoice_id, direction)}/items/hsn-codes", data=body)
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def cancel_invoice(self, invoice_id: str, direction: InvoiceDirection, reason: str) -> Invoice:
        data = await self._request(
            "POST", "/firs/cancel",
            data={"invoice_id": invoice_id, "direction": direction.value, "reason": reason},
        )
        return Invoice.model_validate({"direction": direction.value, **(data or {})})

    async def get_firs_status(self, irn: str) -> FirsStatus:
        data = await self._request("GET", f"/firs/status/{irn}")
        return FirsStatus((data or {}).get("status", FirsStatus.NONE.value))

    async def record_firs_status(
        self,
        invoice_id: str,
        direction: InvoiceDirection,
        status: FirsStatus,
    ) -> Invoice:
        data = await self._request(
            "PATCH", f"{self._invoice_path(invoice_id, direction)}/firs-status",
            data={"firs_status": status.value},
        )
        return Invoice.model_validate({"direction": direction.value, **(data or {})})
