# clinic_records/system_models/submission_model/submission_schemas.py
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, Field

from clinic_records.shared.exceptions import ClinicRecordsError, FileUploadFailed


class SubmissionStage(str, Enum):
    CREATE_PRESCRIPTION = "create_prescription"
    WRITE_MEDICINES = "write_medicines"
    WRITE_LAB_TESTS = "write_lab_tests"
    WRITE_IMAGING_STUDIES = "write_imaging_studies"
    UPLOAD_FILES = "upload_files"

    @property
    def next(self) -> Optional["SubmissionStage"]:
        order = list(SubmissionStage)
        index = order.index(self)
        return order[index + 1] if index + 1 < len(order) else None


class StageFailure(BaseModel):
    stage: SubmissionStage
    code: str
    message: str
    filename: Optional[str] = None
    item_index: Optional[int] = None

    @classmethod
    def from_error(cls, stage: SubmissionStage, error: ClinicRecordsError, item_index: Optional[int] = None) -> "StageFailure":
        return cls(
            stage=stage,
            code=error.code,
            message=error.message,
            filename=error.filename if isinstance(error, FileUploadFailed) else None,
            item_index=item_index,
        )


class SubmissionResult(BaseModel):
    """Outcome of one submission call, read by the visit form to report or retry."""

    prescription_id: Optional[Union[int, str]] = None
    medicines_written: bool = False
    lab_tests_written: bool = False
    imaging_written: bool = False
    files_written: int = 0
    uploaded_file_indexes: List[int] = Field(default_factory=list)
    failures: List[StageFailure] = Field(default_factory=list)
    halted_at: Optional[SubmissionStage] = None
    cancelled: bool = False

    @property
    def file_failures(self) -> List[StageFailure]:
        return [f for f in self.failures if f.stage == SubmissionStage.UPLOAD_FILES]

    @property
    def next_stage(self) -> Optional[SubmissionStage]:
        """Stage a retry has to start from, None when nothing is left to do."""
        if self.halted_at is not None:
            return self.halted_at
        if self.file_failures:
            return SubmissionStage.UPLOAD_FILES
        return None

    @property
    def succeeded(self) -> bool:
        return self.next_stage is None
