from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from commsflow.config import Settings
from commsflow.logging_config import get_logger

logger = get_logger("crm_client")


class CRMError(Exception):
    """Transient external CRM failure; the job is retried."""


class CRMAuthError(CRMError):
    """Credentials rejected. Retrying cannot help."""


class CRMClient(ABC):
    @abstractmethod
    def fetch(self, resource_type: str, resource_id: Optional[str], params: dict) -> Any:
        pass

    @abstractmethod
    def push(self, resource_type: str, operation: str, resource_id: Optional[str], data: dict) -> Any:
        pass


class HttpCRMClient(CRMClient):
    """JSON-over-HTTP CRM adapter: /{resource_type}s[/{id}] with bearer auth."""

    METHODS = {"write": "POST", "update": "PATCH", "delete": "DELETE", "append_note": "POST"}

    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def _url(self, resource_type: str, resource_id: Optional[str], suffix: str = "") -> str:
        url = f"{self.base_url}/{resource_type}s"
        if resource_id:
            url += f"/{resource_id}"
        return url + suffix

    def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            raise CRMError(f"CRM transport error: {exc}") from exc

        if response.status_code in (401, 403):
            raise CRMAuthError(f"CRM rejected credentials ({response.status_code})")
        if response.status_code >= 400:
            raise CRMError(f"CRM error ({response.status_code}): {response.text[:300]}")
        if not response.content:
            return {}
        return response.json()

    def fetch(self, resource_type: str, resource_id: Optional[str], params: dict) -> Any:
        return self._request("GET", self._url(resource_type, resource_id), params=params or None)

    def push(self, resource_type: str, operation: str, resource_id: Optional[str], data: dict) -> Any:
        method = self.METHODS.get(operation)
        if method is None:
            raise CRMError(f"Unsupported push operation: {operation}")
        suffix = "/notes" if operation == "append_note" else ""
        logger.info(
            "CRM push",
            extra={"context": {"resource_type": resource_type, "operation": operation, "resource_id": resource_id}},
        )
        if method == "DELETE":
            return self._request(method, self._url(resource_type, resource_id))
        return self._request(method, self._url(resource_type, resource_id, suffix), json=data)


class UnconfiguredCRMClient(CRMClient):
    def fetch(self, resource_type, resource_id, params):
        raise CRMAuthError("External CRM is not configured")

    def push(self, resource_type, operation, resource_id, data):
        raise CRMAuthError("External CRM is not configured")


def build_crm_client(settings: Settings) -> CRMClient:
    if settings.crm_base_url and settings.crm_api_key:
        return HttpCRMClient(settings.crm_base_url, settings.crm_api_key, settings.crm_timeout_seconds)
    logger.warning("External CRM not configured; integration jobs will fail")
    return UnconfiguredCRMClient()
