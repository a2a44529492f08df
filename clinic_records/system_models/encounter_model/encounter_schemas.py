# clinic_records/system_models/encounter_model/encounter_schemas.py
from typing import Any, List, Optional, Union
from datetime import date
from pydantic import BaseModel, ConfigDict, Field

Identifier = Union[int, str]


class MedicineLine(BaseModel):
    """One medicine row of the prescription form; rows without a medicine are placeholders."""
    model_config = ConfigDict(frozen=True)

    medicine_id: Optional[Identifier] = None
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""

    @property
    def is_placeholder(self) -> bool:
        return self.medicine_id is None or str(self.medicine_id).strip() == ""


class LabTestRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_id: Identifier
    notes: Optional[str] = None


class ImagingRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    study_id: Identifier
    notes: Optional[str] = None


class PendingFile(BaseModel):
    """An attachment picked in the visit form, uploaded after the prescription is saved."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    filename: str
    content: Optional[Any] = Field(default=None, repr=False)  # bytes or a binary file handle
    content_type: Optional[str] = None
    description: str = ""

    @property
    def is_bound(self) -> bool:
        return self.content is not None


class EncounterDraft(BaseModel):
    """In-memory visit prescription being filled in by the doctor."""

    patient_id: Identifier
    visit_id: Optional[Identifier] = None
    prescription_date: Optional[date] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    medicines: List[MedicineLine] = Field(default_factory=list)
    selected_lab_tests: List[LabTestRef] = Field(default_factory=list)
    selected_imaging_studies: List[ImagingRef] = Field(default_factory=list)
    attachments: List[PendingFile] = Field(default_factory=list)

    def snapshot(self) -> "EncounterDraft":
        """Copy taken when a submission starts; later edits to the form do not leak into it."""
        return self.model_copy(
            update={
                "medicines": list(self.medicines),
                "selected_lab_tests": list(self.selected_lab_tests),
                "selected_imaging_studies": list(self.selected_imaging_studies),
                "attachments": list(self.attachments),
            }
        )

    @property
    def submittable_medicines(self) -> List[MedicineLine]:
        return [line for line in self.medicines if not line.is_placeholder]
