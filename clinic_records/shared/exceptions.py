# clinic_records/shared/exceptions.py
"""
Error taxonomy for the submission pipeline and history stores

Every error carries:
- type:    family identifier (gateway / submission / file_upload / history)
- code:    specific error code (MISSING_PRESCRIPTION_ID, MEDICINE_WRITE_FAILED, ...)
- message: human readable description, the backend's `error` string when it sent one
- detail:  optional extra context (dict)

Fatal stage errors (submission family) are raised to the caller and carry the
partial SubmissionResult. FileUploadFailed is recorded per file while the batch
continues. HistoryOperationFailed is only ever logged.
"""
from typing import Any, Dict, Optional


class ClinicRecordsError(Exception):
    """Base class for every error raised by the core."""

    type = "error"
    code = "UNKNOWN_ERROR"
    default_message = "Unexpected clinic records error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.detail = detail if detail is not None else {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
        }


# ============================================================================
# RECORD GATEWAY
# ============================================================================
class GatewayError(ClinicRecordsError):
    """Non-2xx response or transport failure talking to the Record Gateway."""

    type = "gateway"
    code = "GATEWAY_ERROR"
    default_message = "Record gateway request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        server_error: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message or server_error, detail=detail)
        self.status_code = status_code
        # The backend's own `{error: ...}` string, None when it sent none
        self.server_error = server_error

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


# ============================================================================
# SUBMISSION (fatal, raised)
# ============================================================================
class SubmissionError(ClinicRecordsError):
    """A strict stage failed; the submission halted at `stage`."""

    type = "submission"
    code = "SUBMISSION_FAILED"
    stage = None

    def __init__(self, message: Optional[str] = None, result=None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail)
        self.result = result

    @classmethod
    def from_gateway(cls, exc: GatewayError, result=None):
        """Surface the server's error string verbatim, else the stage's generic message."""
        detail = {"status_code": exc.status_code} if exc.status_code is not None else {}
        return cls(exc.server_error or cls.default_message, result=result, detail=detail)


class MissingPrescriptionId(SubmissionError):
    code = "MISSING_PRESCRIPTION_ID"
    stage = "create_prescription"
    default_message = "Prescription was not created: no prescriptionId returned"


class MedicineWriteFailed(SubmissionError):
    code = "MEDICINE_WRITE_FAILED"
    stage = "write_medicines"
    default_message = "Failed to save prescription medicines"


class LabTestWriteFailed(SubmissionError):
    code = "LAB_TEST_WRITE_FAILED"
    stage = "write_lab_tests"
    default_message = "Failed to save prescription lab tests"


class ImagingWriteFailed(SubmissionError):
    code = "IMAGING_WRITE_FAILED"
    stage = "write_imaging_studies"
    default_message = "Failed to save prescription imaging studies"


class PrescriptionUpdateFailed(SubmissionError):
    """Edit mode could not update or clear the existing prescription."""

    code = "PRESCRIPTION_UPDATE_FAILED"
    stage = "update_prescription"
    default_message = "Failed to update the existing prescription"


# ============================================================================
# PER-ITEM / ADVISORY (never raised out of the core)
# ============================================================================
class FileUploadFailed(ClinicRecordsError):
    """One attachment failed; the remaining files are still uploaded."""

    type = "file_upload"
    code = "FILE_UPLOAD_FAILED"
    default_message = "Failed to upload file"

    def __init__(self, filename: str, message: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message or f"{self.default_message} '{filename}'", detail=detail)
        self.filename = filename


class HistoryOperationFailed(ClinicRecordsError):
    """History is advisory: logged, never allowed to block the clinical save."""

    type = "history"
    code = "HISTORY_OPERATION_FAILED"
    default_message = "History operation failed"

    def __init__(self, category: str, operation: str, message: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(
            message or f"{self.default_message}: {operation} on '{category}'",
            detail=detail,
        )
        self.category = category
        self.operation = operation
