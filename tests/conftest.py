"""
Shared fixtures for all tests.

Async code is driven with asyncio.run from plain pytest functions.
"""
import asyncio
from datetime import date

import pytest

from clinic_records.system_models.encounter_model.encounter_schemas import (
    EncounterDraft,
    ImagingRef,
    LabTestRef,
    MedicineLine,
    PendingFile,
)
from tests.fakes import FakeRecordGateway


@pytest.fixture
def run():
    """Run a coroutine to completion."""
    return asyncio.run


@pytest.fixture
def gateway():
    return FakeRecordGateway()


@pytest.fixture
def empty_draft():
    """Prescription with no line items and no attachments."""
    return EncounterDraft(
        patient_id=7,
        visit_id=31,
        prescription_date=date(2026, 3, 14),
        diagnosis="التهاب الحلق",
        notes="Review in one week",
    )


@pytest.fixture
def full_draft():
    """Prescription with every kind of line item plus one placeholder medicine row."""
    return EncounterDraft(
        patient_id=7,
        visit_id=31,
        prescription_date=date(2026, 3, 14),
        diagnosis="صداع شديد",
        notes="Avoid screens",
        medicines=[
            MedicineLine(medicine_id=3, dosage="500mg", frequency="3x", duration="5 days", instructions="بعد الأكل"),
            MedicineLine(medicine_id=None, dosage="placeholder"),
            MedicineLine(medicine_id=9, dosage="1 tab", duration="أسبوع"),
        ],
        selected_lab_tests=[LabTestRef(test_id=12), LabTestRef(test_id=14, notes="fasting")],
        selected_imaging_studies=[ImagingRef(study_id=4, notes="left side")],
        attachments=[
            PendingFile(filename="xray.png", content=b"\x89PNG", content_type="image/png", description="Chest"),
            PendingFile(filename="report.pdf", content=b"%PDF-1.4", content_type="application/pdf"),
        ],
    )
