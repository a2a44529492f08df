# clinic_records/gateway/base.py
"""
Record Gateway interface
The REST backend the core writes through. Business code depends only on this
interface; the HTTP implementation and the test fakes both subclass it.

Every method raises GatewayError on a non-2xx response or transport failure.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class RecordGateway(ABC):

    # ============================================================================
    # PRESCRIPTIONS
    # ============================================================================
    @abstractmethod
    async def create_prescription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /prescription/add → response body, expected to carry `prescriptionId`."""

    @abstractmethod
    async def add_prescription_medicines(self, medicines: List[Dict[str, Any]]) -> None:
        """POST /prescription/medicines/add with `{medicines: [...]}`."""

    @abstractmethod
    async def add_prescription_lab_tests(self, lab_tests: List[Dict[str, Any]]) -> None:
        """POST /prescription/labtests/add with `{labTests: [...]}`."""

    @abstractmethod
    async def add_prescription_imaging_studies(self, imaging_studies: List[Dict[str, Any]]) -> None:
        """POST /prescription/imagingstudies/add with `{imagingStudies: [...]}`."""

    @abstractmethod
    async def get_visit_prescription(self, visit_id: Any) -> Optional[Dict[str, Any]]:
        """GET /visits/{visitId}/prescription; None on 404."""

    @abstractmethod
    async def update_prescription(self, prescription_id: Any, payload: Dict[str, Any]) -> None:
        """PUT /prescriptions/{id}."""

    @abstractmethod
    async def delete_prescription_items(self, prescription_id: Any, kind: str) -> None:
        """DELETE /prescriptions/{id}/{kind}, kind in items / labtests / imagingstudies."""

    # ============================================================================
    # FILES
    # ============================================================================
    @abstractmethod
    async def upload_patient_file(
        self,
        patient_id: Any,
        filename: str,
        content: Any,
        content_type: Optional[str],
        description: str,
        visit_id: Any,
    ) -> Dict[str, Any]:
        """POST /patients/{patientId}/files as multipart `file`, `description`, `visitId`."""

    # ============================================================================
    # HISTORY
    # ============================================================================
    @abstractmethod
    async def list_history(self, category: str, limit: int) -> List[Any]:
        """GET {historyBaseUrl}/{category}; raw rows, already ranked by the backend."""

    @abstractmethod
    async def add_history(self, category: str, text: str) -> None:
        """POST {historyBaseUrl}/{category} with `{text}`; backend upserts and counts."""

    @abstractmethod
    async def delete_history(self, category: str, text: str) -> None:
        """DELETE {historyBaseUrl}/{category} with `{text}`."""

    async def aclose(self) -> None:
        """Release connections; nothing to do by default."""
