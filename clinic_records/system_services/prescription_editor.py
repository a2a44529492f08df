# clinic_records/system_services/prescription_editor.py
"""
Prescription Editor - edit mode for a visit that already has a prescription
Updates the scalar fields, clears the old line items and writes the new ones
against the same prescription id.
"""
import logging
from typing import Any, Dict, Optional

from clinic_records.gateway.base import RecordGateway
from clinic_records.shared.exceptions import GatewayError, PrescriptionUpdateFailed, SubmissionError
from clinic_records.system_models.encounter_model.encounter_schemas import EncounterDraft
from clinic_records.system_models.submission_model.submission_schemas import (
    StageFailure,
    SubmissionResult,
    SubmissionStage,
)
from clinic_records.system_services.submission_pipeline import SubmissionPipeline

logger = logging.getLogger(__name__)

# Cleared in this order before the new items are written
LINE_ITEM_KINDS = ("items", "labtests", "imagingstudies")


class PrescriptionEditor:

    def __init__(self, gateway: RecordGateway, pipeline: Optional[SubmissionPipeline] = None):
        self.gateway = gateway
        self.pipeline = pipeline or SubmissionPipeline(gateway)

    async def load_visit_prescription(self, visit_id: Any) -> Optional[Dict[str, Any]]:
        """The visit's prescription with its line items, or None when it has none."""
        if visit_id is None or str(visit_id).strip() == "":
            return None

        try:
            return await self.gateway.get_visit_prescription(visit_id)
        except GatewayError as e:
            if not e.is_not_found:
                logger.error(f"❌ Error loading prescription for visit {visit_id}: {e.message}")
            return None

    async def update_existing(self, prescription_id: Any, draft: EncounterDraft) -> SubmissionResult:
        """
        Rewrite an existing prescription from `draft`.
        Its free text is remembered once the line items are written.

        Raises:
            PrescriptionUpdateFailed: scalar update or clearing failed, nothing new written
            MedicineWriteFailed / LabTestWriteFailed / ImagingWriteFailed: as in a new submission
        """
        snapshot = draft.snapshot()
        result = SubmissionResult(prescription_id=prescription_id)

        try:
            await self.gateway.update_prescription(
                prescription_id,
                {"diagnosis": snapshot.diagnosis or "", "notes": snapshot.notes or ""},
            )
            for kind in LINE_ITEM_KINDS:
                await self.gateway.delete_prescription_items(prescription_id, kind)
        except GatewayError as e:
            error = PrescriptionUpdateFailed.from_gateway(e, result=result)
            result.failures.append(StageFailure.from_error(SubmissionStage.CREATE_PRESCRIPTION, error))
            result.halted_at = SubmissionStage.CREATE_PRESCRIPTION
            logger.error(f"❌ Could not update prescription {prescription_id}: {error.message}")
            raise error

        logger.info(f"✏️  Prescription {prescription_id} updated, rewriting line items")

        stage = SubmissionStage.WRITE_MEDICINES
        try:
            result.medicines_written = await self.pipeline.write_medicines(snapshot, prescription_id)
            stage = SubmissionStage.WRITE_LAB_TESTS
            result.lab_tests_written = await self.pipeline.write_lab_tests(snapshot, prescription_id)
            stage = SubmissionStage.WRITE_IMAGING_STUDIES
            result.imaging_written = await self.pipeline.write_imaging_studies(snapshot, prescription_id)
        except SubmissionError as e:
            result.failures.append(StageFailure.from_error(stage, e))
            result.halted_at = stage
            e.result = result
            logger.error(f"❌ Stage '{stage.value}' failed while editing prescription {prescription_id}: {e}")
            raise

        if self.pipeline.history is not None:
            await self.pipeline.history.remember_encounter(snapshot)

        return result
