# clinic_records/gateway/http_gateway.py
"""
HTTP Record Gateway - async client for the clinic REST backend
JSON everywhere except file upload (multipart)
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from clinic_records.gateway.base import RecordGateway
from clinic_records.shared.exceptions import GatewayError
from config.appconfig import settings

logger = logging.getLogger(__name__)


class HttpRecordGateway(RecordGateway):
    """Record Gateway over httpx.AsyncClient."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        history_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.RECORD_GATEWAY_URL).rstrip("/")
        self.history_base_url = (history_base_url or settings.resolved_history_base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ========================================================================
    # REQUEST PLUMBING
    # ========================================================================
    @staticmethod
    def _server_error(response: httpx.Response) -> Optional[str]:
        """The backend reports failures as `{error: "..."}`."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            logger.error(f"❌ {method} {url} failed: {e}")
            raise GatewayError(f"{method} {url} failed: {e}", detail={"url": url}) from e

        if response.is_success:
            return response

        server_error = self._server_error(response)
        logger.warning(f"⚠️  {method} {url} → {response.status_code} {server_error or ''}".rstrip())
        raise GatewayError(
            status_code=response.status_code,
            server_error=server_error,
            message=server_error or f"{method} {url} returned {response.status_code}",
            detail={"url": url, "status_code": response.status_code},
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _history_url(self, category: str) -> str:
        return f"{self.history_base_url}/{category}"

    # ========================================================================
    # PRESCRIPTIONS
    # ========================================================================
    async def create_prescription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", "/prescription/add", json=payload)
        body = self._json(response)
        return body if isinstance(body, dict) else {}

    async def add_prescription_medicines(self, medicines: List[Dict[str, Any]]) -> None:
        await self._request("POST", "/prescription/medicines/add", json={"medicines": medicines})

    async def add_prescription_lab_tests(self, lab_tests: List[Dict[str, Any]]) -> None:
        await self._request("POST", "/prescription/labtests/add", json={"labTests": lab_tests})

    async def add_prescription_imaging_studies(self, imaging_studies: List[Dict[str, Any]]) -> None:
        await self._request(
            "POST", "/prescription/imagingstudies/add", json={"imagingStudies": imaging_studies}
        )

    async def get_visit_prescription(self, visit_id: Any) -> Optional[Dict[str, Any]]:
        try:
            response = await self._request("GET", f"/visits/{visit_id}/prescription")
        except GatewayError as e:
            if e.is_not_found:
                return None
            raise
        body = self._json(response)
        return body if isinstance(body, dict) and body else None

    async def update_prescription(self, prescription_id: Any, payload: Dict[str, Any]) -> None:
        await self._request("PUT", f"/prescriptions/{prescription_id}", json=payload)

    async def delete_prescription_items(self, prescription_id: Any, kind: str) -> None:
        await self._request("DELETE", f"/prescriptions/{prescription_id}/{kind}")

    # ========================================================================
    # FILES
    # ========================================================================
    async def upload_patient_file(
        self,
        patient_id: Any,
        filename: str,
        content: Any,
        content_type: Optional[str],
        description: str,
        visit_id: Any,
    ) -> Dict[str, Any]:
        file_part = (filename, content, content_type) if content_type else (filename, content)
        response = await self._request(
            "POST",
            f"/patients/{patient_id}/files",
            files={"file": file_part},
            data={
                "description": description or "",
                "visitId": "" if visit_id is None else str(visit_id),
            },
        )
        body = self._json(response)
        return body if isinstance(body, dict) else {}

    # ========================================================================
    # HISTORY
    # ========================================================================
    async def list_history(self, category: str, limit: int) -> List[Any]:
        try:
            response = await self._request("GET", self._history_url(category), params={"limit": limit})
        except GatewayError as e:
            if e.is_not_found:
                return []
            raise
        body = self._json(response)
        return body if isinstance(body, list) else []

    async def add_history(self, category: str, text: str) -> None:
        await self._request("POST", self._history_url(category), json={"text": text})

    async def delete_history(self, category: str, text: str) -> None:
        await self._request("DELETE", self._history_url(category), json={"text": text})
