# clinic_records/system_services/submission_pipeline.py

"""
Encounter Submission Pipeline
Writes a visit prescription, its line items and its attachments as a strict
sequence of independent gateway calls (the backend has no transaction).

Stages, in order:
    CREATE_PRESCRIPTION → WRITE_MEDICINES → WRITE_LAB_TESTS → WRITE_IMAGING_STUDIES → UPLOAD_FILES

Stages 1-4 stop the submission on their first error and raise it with the
partial SubmissionResult attached. Stage 5 keeps going past a failed file.
Nothing is rolled back; a retry resumes from the stage that failed and reuses
the prescription id already created.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from clinic_records.gateway.base import RecordGateway
from clinic_records.history.history_book import HistoryBook
from clinic_records.shared.exceptions import (
    FileUploadFailed,
    GatewayError,
    ImagingWriteFailed,
    LabTestWriteFailed,
    MedicineWriteFailed,
    MissingPrescriptionId,
    SubmissionError,
)
from clinic_records.system_models.encounter_model.encounter_schemas import EncounterDraft
from clinic_records.system_models.submission_model.submission_schemas import (
    StageFailure,
    SubmissionResult,
    SubmissionStage,
)

logger = logging.getLogger(__name__)


class CancellationToken:
    """Checked between stages and between file uploads, never during a call."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# ============================================================
# ✅ PAYLOAD BUILDERS (draft → gateway field names)
# ============================================================
def build_prescription_payload(draft: EncounterDraft) -> Dict[str, Any]:
    prescription_date = draft.prescription_date or date.today()
    return {
        "patient_id": draft.patient_id,
        "visit_id": draft.visit_id,
        "diagnosis": draft.diagnosis or "",
        "notes": draft.notes or "",
        "prescription_date": prescription_date.isoformat(),
    }


def build_medicine_items(draft: EncounterDraft, prescription_id: Any) -> List[Dict[str, Any]]:
    return [
        {
            "prescription_id": prescription_id,
            "medicine_id": line.medicine_id,
            "dosage": line.dosage or "",
            "frequency": line.frequency or "",
            "duration": line.duration or "",
            "instructions": line.instructions or "",
        }
        for line in draft.submittable_medicines
    ]


def build_lab_test_items(draft: EncounterDraft, prescription_id: Any) -> List[Dict[str, Any]]:
    return [
        {
            "prescription_id": prescription_id,
            "lab_test_id": test.test_id,
            "notes": test.notes,
        }
        for test in draft.selected_lab_tests
    ]


def build_imaging_items(draft: EncounterDraft, prescription_id: Any) -> List[Dict[str, Any]]:
    # The backend names these imaging_studies_id / comments
    return [
        {
            "prescription_id": prescription_id,
            "imaging_studies_id": study.study_id,
            "comments": study.notes,
        }
        for study in draft.selected_imaging_studies
    ]


class SubmissionPipeline:
    """
    Linear state machine over one EncounterDraft snapshot.
    Each stage needs the prescription id produced by the first, so stage N+1
    never starts before stage N has resolved.
    """

    def __init__(self, gateway: RecordGateway, history: Optional[HistoryBook] = None):
        self.gateway = gateway
        self.history = history
        self._stages = {
            SubmissionStage.CREATE_PRESCRIPTION: self._run_create_prescription,
            SubmissionStage.WRITE_MEDICINES: self._run_write_medicines,
            SubmissionStage.WRITE_LAB_TESTS: self._run_write_lab_tests,
            SubmissionStage.WRITE_IMAGING_STUDIES: self._run_write_imaging_studies,
            SubmissionStage.UPLOAD_FILES: self._run_upload_files,
        }

    # ============================================================
    # ✅ SUBMIT / RESUME
    # ============================================================
    async def submit(
        self,
        draft: EncounterDraft,
        resume_from: Optional[SubmissionResult] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SubmissionResult:
        """
        Run the stages for `draft`.

        Args:
            draft: the encounter; a snapshot is taken so later form edits do not leak in
            resume_from: result of an earlier attempt; the run restarts at its failed
                stage and reuses its prescription id
            cancel_token: stops the run at the next stage boundary

        Returns:
            SubmissionResult (file failures listed in `failures`)

        Raises:
            MissingPrescriptionId / MedicineWriteFailed / LabTestWriteFailed /
            ImagingWriteFailed with `.result` holding the partial outcome
        """
        snapshot = draft.snapshot()
        result, stage = self._starting_point(resume_from)

        if stage is None:
            logger.info("✅ Nothing left to submit")
            return result

        logger.info(f"🚀 Submitting visit {snapshot.visit_id} for patient {snapshot.patient_id} from stage '{stage.value}'")

        while stage is not None:
            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                result.halted_at = stage
                logger.warning(f"⚠️  Submission cancelled before stage '{stage.value}'")
                return result

            try:
                await self._stages[stage](snapshot, result, cancel_token)
            except SubmissionError as e:
                result.failures.append(StageFailure.from_error(stage, e))
                result.halted_at = stage
                e.result = result
                logger.error(
                    f"❌ Stage '{stage.value}' failed: {e.message} "
                    f"(prescription_id={result.prescription_id})"
                )
                raise

            if result.cancelled:
                return result

            if stage == SubmissionStage.WRITE_IMAGING_STUDIES and self.history is not None:
                await self.history.remember_encounter(snapshot)

            stage = stage.next

        if result.file_failures:
            logger.warning(f"⚠️  Submission saved with {len(result.file_failures)} failed file upload(s)")
        else:
            logger.info(f"✅ Submission complete: prescription {result.prescription_id}")
        return result

    @staticmethod
    def _starting_point(resume_from: Optional[SubmissionResult]):
        if resume_from is None:
            return SubmissionResult(), SubmissionStage.CREATE_PRESCRIPTION

        result = resume_from.model_copy(deep=True)
        stage = result.next_stage
        if stage is None:
            return result, None

        # Without an id every later stage would write orphans
        if result.prescription_id is None:
            stage = SubmissionStage.CREATE_PRESCRIPTION
        elif stage == SubmissionStage.CREATE_PRESCRIPTION:
            # Only an edit-mode result halts here with an id; creating again would duplicate it
            raise ValueError(
                f"Prescription {result.prescription_id} already exists; retry the edit with PrescriptionEditor.update_existing"
            )

        order = list(SubmissionStage)
        result.failures = [f for f in result.failures if order.index(f.stage) < order.index(stage)]
        result.halted_at = None
        result.cancelled = False
        return result, stage

    # ============================================================
    # ✅ STAGES 2-4 (shared with edit mode)
    # ============================================================
    async def write_medicines(self, draft: EncounterDraft, prescription_id: Any) -> bool:
        items = build_medicine_items(draft, prescription_id)
        if not items:
            logger.info("⏭️  No medicines selected, skipping")
            return False
        try:
            await self.gateway.add_prescription_medicines(items)
        except GatewayError as e:
            raise MedicineWriteFailed.from_gateway(e)
        logger.info(f"✅ Saved {len(items)} medicine(s) for prescription {prescription_id}")
        return True

    async def write_lab_tests(self, draft: EncounterDraft, prescription_id: Any) -> bool:
        items = build_lab_test_items(draft, prescription_id)
        if not items:
            logger.info("⏭️  No lab tests selected, skipping")
            return False
        try:
            await self.gateway.add_prescription_lab_tests(items)
        except GatewayError as e:
            raise LabTestWriteFailed.from_gateway(e)
        logger.info(f"✅ Saved {len(items)} lab test(s) for prescription {prescription_id}")
        return True

    async def write_imaging_studies(self, draft: EncounterDraft, prescription_id: Any) -> bool:
        items = build_imaging_items(draft, prescription_id)
        if not items:
            logger.info("⏭️  No imaging studies selected, skipping")
            return False
        try:
            await self.gateway.add_prescription_imaging_studies(items)
        except GatewayError as e:
            raise ImagingWriteFailed.from_gateway(e)
        logger.info(f"✅ Saved {len(items)} imaging study item(s) for prescription {prescription_id}")
        return True

    # ============================================================
    # ✅ STAGE RUNNERS
    # ============================================================
    async def _run_create_prescription(self, draft, result, cancel_token) -> None:
        try:
            body = await self.gateway.create_prescription(build_prescription_payload(draft))
        except GatewayError as e:
            raise MissingPrescriptionId.from_gateway(e)

        prescription_id = (body or {}).get("prescriptionId")
        if prescription_id is None or str(prescription_id).strip() == "":
            raise MissingPrescriptionId(detail={"response": body})

        result.prescription_id = prescription_id
        logger.info(f"✅ Prescription {prescription_id} created")

    async def _run_write_medicines(self, draft, result, cancel_token) -> None:
        result.medicines_written = await self.write_medicines(draft, result.prescription_id)

    async def _run_write_lab_tests(self, draft, result, cancel_token) -> None:
        result.lab_tests_written = await self.write_lab_tests(draft, result.prescription_id)

    async def _run_write_imaging_studies(self, draft, result, cancel_token) -> None:
        result.imaging_written = await self.write_imaging_studies(draft, result.prescription_id)

    async def _run_upload_files(self, draft, result, cancel_token) -> None:
        pending = [
            (index, pending_file)
            for index, pending_file in enumerate(draft.attachments)
            if pending_file.is_bound and index not in result.uploaded_file_indexes
        ]
        if not pending:
            logger.info("⏭️  No files to upload, skipping")
            return

        # One at a time, in order; a failed file does not stop the rest
        for position, (index, pending_file) in enumerate(pending):
            if position > 0 and cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                result.halted_at = SubmissionStage.UPLOAD_FILES
                logger.warning(f"⚠️  Upload cancelled with {len(pending) - position} file(s) left")
                return

            try:
                content = pending_file.content
                if hasattr(content, "seek"):
                    content.seek(0)

                await self.gateway.upload_patient_file(
                    patient_id=draft.patient_id,
                    filename=pending_file.filename,
                    content=content,
                    content_type=pending_file.content_type,
                    description=pending_file.description,
                    visit_id=draft.visit_id,
                )
            except GatewayError as e:
                failure = FileUploadFailed(pending_file.filename, message=e.server_error)
                self._record_file_failure(result, index, failure, e.message)
                continue
            except Exception as e:
                # Unreadable handle or client-side failure; the file is lost, the batch is not
                failure = FileUploadFailed(pending_file.filename, detail={"cause": f"{type(e).__name__}: {e}"})
                self._record_file_failure(result, index, failure, str(e))
                continue

            result.files_written += 1
            result.uploaded_file_indexes.append(index)
            logger.info(f"📎 Uploaded '{pending_file.filename}'")

    @staticmethod
    def _record_file_failure(result: SubmissionResult, index: int, failure: FileUploadFailed, cause: str) -> None:
        result.failures.append(StageFailure.from_error(SubmissionStage.UPLOAD_FILES, failure, item_index=index))
        logger.warning(f"⚠️  {failure.message}: {cause}")
