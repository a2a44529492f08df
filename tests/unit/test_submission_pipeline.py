"""
Ordered prescription submission: create, line items, files, retry and cancel.
"""
import io
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from clinic_records.history.history_book import HistoryBook
from clinic_records.shared.exceptions import (
    ImagingWriteFailed,
    LabTestWriteFailed,
    MedicineWriteFailed,
    MissingPrescriptionId,
)
from clinic_records.system_models.encounter_model.encounter_schemas import MedicineLine, PendingFile
from clinic_records.system_models.submission_model.submission_schemas import SubmissionResult, SubmissionStage
from clinic_records.system_services.submission_pipeline import (
    CancellationToken,
    SubmissionPipeline,
    build_prescription_payload,
)
from tests.fakes import FakeRecordGateway, gateway_error


ALL_STAGES = [
    "create_prescription",
    "add_prescription_medicines",
    "add_prescription_lab_tests",
    "add_prescription_imaging_studies",
    "upload_patient_file",
    "upload_patient_file",
]


class TestPayloads:

    def test_prescription_payload(self, empty_draft):
        assert build_prescription_payload(empty_draft) == {
            "patient_id": 7,
            "visit_id": 31,
            "diagnosis": "التهاب الحلق",
            "notes": "Review in one week",
            "prescription_date": "2026-03-14",
        }

    def test_missing_date_defaults_to_today(self, empty_draft):
        draft = empty_draft.model_copy(update={"prescription_date": None, "diagnosis": None})
        payload = build_prescription_payload(draft)
        assert payload["prescription_date"] == date.today().isoformat()
        assert payload["diagnosis"] == ""


class TestHappyPath:

    def test_empty_draft_only_creates_prescription(self, run, gateway, empty_draft):
        result = run(SubmissionPipeline(gateway).submit(empty_draft))

        assert gateway.method_names == ["create_prescription"]
        assert result.prescription_id == 101
        assert result.medicines_written is False
        assert result.lab_tests_written is False
        assert result.imaging_written is False
        assert result.files_written == 0
        assert result.succeeded

    def test_stages_run_in_order(self, run, gateway, full_draft):
        result = run(SubmissionPipeline(gateway).submit(full_draft))

        assert gateway.method_names == ALL_STAGES
        assert result.medicines_written and result.lab_tests_written and result.imaging_written
        assert result.files_written == 2
        assert result.uploaded_file_indexes == [0, 1]
        assert result.failures == []
        assert result.succeeded

    def test_placeholder_medicine_rows_are_not_sent(self, run, gateway, full_draft):
        run(SubmissionPipeline(gateway).submit(full_draft))

        assert [row["medicine_id"] for row in gateway.medicines] == [3, 9]
        assert gateway.medicines[0] == {
            "prescription_id": 101,
            "medicine_id": 3,
            "dosage": "500mg",
            "frequency": "3x",
            "duration": "5 days",
            "instructions": "بعد الأكل",
        }

    def test_only_placeholder_medicines_skips_the_stage(self, run, gateway, empty_draft):
        draft = empty_draft.model_copy(update={"medicines": [MedicineLine(dosage="2 tabs")]})
        result = run(SubmissionPipeline(gateway).submit(draft))

        assert "add_prescription_medicines" not in gateway.method_names
        assert result.medicines_written is False

    def test_lab_test_field_mapping(self, run, gateway, full_draft):
        run(SubmissionPipeline(gateway).submit(full_draft))

        assert gateway.lab_tests == [
            {"prescription_id": 101, "lab_test_id": 12, "notes": None},
            {"prescription_id": 101, "lab_test_id": 14, "notes": "fasting"},
        ]

    def test_imaging_field_mapping(self, run, gateway, full_draft):
        run(SubmissionPipeline(gateway).submit(full_draft))

        assert gateway.imaging_studies == [
            {"prescription_id": 101, "imaging_studies_id": 4, "comments": "left side"},
        ]

    def test_uploads_carry_patient_and_visit(self, run, gateway, full_draft):
        run(SubmissionPipeline(gateway).submit(full_draft))

        uploads = gateway.called("upload_patient_file")
        assert [u["filename"] for u in uploads] == ["xray.png", "report.pdf"]
        assert uploads[0] == {"patient_id": 7, "filename": "xray.png", "description": "Chest", "visit_id": 31}

    def test_unbound_files_are_skipped(self, run, gateway, empty_draft):
        draft = empty_draft.model_copy(
            update={"attachments": [PendingFile(filename="lost.png"), PendingFile(filename="ok.png", content=b"x")]}
        )
        result = run(SubmissionPipeline(gateway).submit(draft))

        assert [u["filename"] for u in gateway.called("upload_patient_file")] == ["ok.png"]
        assert result.uploaded_file_indexes == [1]

    def test_snapshot_ignores_edits_made_during_submission(self, run, full_draft):

        class EditingGateway(FakeRecordGateway):
            async def create_prescription(self, payload):
                full_draft.medicines.append(MedicineLine(medicine_id=77, dosage="late"))
                full_draft.attachments.clear()
                return await super().create_prescription(payload)

        gateway = EditingGateway()
        result = run(SubmissionPipeline(gateway).submit(full_draft))

        assert [row["medicine_id"] for row in gateway.medicines] == [3, 9]
        assert result.files_written == 2


class TestCreateFailure:

    def test_missing_prescription_id_stops_everything(self, run, gateway, full_draft):
        gateway.create_response = {"message": "Prescription added successfully"}

        with pytest.raises(MissingPrescriptionId) as exc_info:
            run(SubmissionPipeline(gateway).submit(full_draft))

        assert gateway.method_names == ["create_prescription"]
        result = exc_info.value.result
        assert result.prescription_id is None
        assert result.halted_at == SubmissionStage.CREATE_PRESCRIPTION
        assert result.failures[0].code == "MISSING_PRESCRIPTION_ID"

    def test_blank_prescription_id_is_missing(self, run, gateway, empty_draft):
        gateway.create_response = {"prescriptionId": "  "}

        with pytest.raises(MissingPrescriptionId):
            run(SubmissionPipeline(gateway).submit(empty_draft))

    def test_gateway_error_on_create_surfaces_server_message(self, run, gateway, full_draft):
        gateway.failures["create_prescription"] = gateway_error(400, "Visit 31 is closed")

        with pytest.raises(MissingPrescriptionId) as exc_info:
            run(SubmissionPipeline(gateway).submit(full_draft))

        assert exc_info.value.message == "Visit 31 is closed"
        assert gateway.method_names == ["create_prescription"]


class TestStrictStageFailure:

    def test_medicine_failure_halts_later_stages(self, run, gateway, full_draft):
        gateway.failures["add_prescription_medicines"] = gateway_error(500, "Medicine 3 does not exist")

        with pytest.raises(MedicineWriteFailed) as exc_info:
            run(SubmissionPipeline(gateway).submit(full_draft))

        error = exc_info.value
        assert error.message == "Medicine 3 does not exist"
        assert gateway.method_names == ["create_prescription", "add_prescription_medicines"]
        assert error.result.prescription_id == 101
        assert error.result.halted_at == SubmissionStage.WRITE_MEDICINES
        assert not error.result.succeeded

    def test_generic_message_when_server_sends_none(self, run, gateway, full_draft):
        gateway.failures["add_prescription_lab_tests"] = gateway_error(502)

        with pytest.raises(LabTestWriteFailed) as exc_info:
            run(SubmissionPipeline(gateway).submit(full_draft))

        assert exc_info.value.message == LabTestWriteFailed.default_message
        assert exc_info.value.result.medicines_written is True

    def test_imaging_failure_skips_uploads(self, run, gateway, full_draft):
        gateway.failures["add_prescription_imaging_studies"] = gateway_error(500, "bad study")

        with pytest.raises(ImagingWriteFailed):
            run(SubmissionPipeline(gateway).submit(full_draft))

        assert "upload_patient_file" not in gateway.method_names

    def test_retry_reuses_prescription_id(self, run, gateway, full_draft):
        pipeline = SubmissionPipeline(gateway)
        gateway.failures["add_prescription_medicines"] = gateway_error(500, "Medicine 3 does not exist")
        with pytest.raises(MedicineWriteFailed) as exc_info:
            run(pipeline.submit(full_draft))

        del gateway.failures["add_prescription_medicines"]
        result = run(pipeline.submit(full_draft, resume_from=exc_info.value.result))

        assert gateway.method_names.count("create_prescription") == 1
        assert gateway.method_names[2:] == ALL_STAGES[1:]
        assert {row["prescription_id"] for row in gateway.medicines} == {101}
        assert result.prescription_id == 101
        assert result.failures == []
        assert result.succeeded

    def test_resume_does_not_mutate_previous_result(self, run, gateway, full_draft):
        pipeline = SubmissionPipeline(gateway)
        gateway.failures["add_prescription_lab_tests"] = gateway_error(500, "x")
        with pytest.raises(LabTestWriteFailed) as exc_info:
            run(pipeline.submit(full_draft))
        previous = exc_info.value.result

        del gateway.failures["add_prescription_lab_tests"]
        run(pipeline.submit(full_draft, resume_from=previous))

        assert previous.halted_at == SubmissionStage.WRITE_LAB_TESTS
        assert len(previous.failures) == 1

    def test_resume_without_id_starts_over(self, run, gateway, empty_draft):
        result = run(SubmissionPipeline(gateway).submit(empty_draft, resume_from=SubmissionResult(
            halted_at=SubmissionStage.WRITE_LAB_TESTS,
        )))

        assert gateway.method_names == ["create_prescription"]
        assert result.prescription_id == 101

    def test_resume_at_create_with_existing_id_is_refused(self, run, gateway, empty_draft):
        previous = SubmissionResult(prescription_id=55, halted_at=SubmissionStage.CREATE_PRESCRIPTION)

        with pytest.raises(ValueError):
            run(SubmissionPipeline(gateway).submit(empty_draft, resume_from=previous))

        assert gateway.calls == []

    def test_resume_of_finished_result_does_nothing(self, run, gateway, empty_draft):
        result = run(SubmissionPipeline(gateway).submit(empty_draft, resume_from=SubmissionResult(prescription_id=5)))

        assert gateway.calls == []
        assert result.prescription_id == 5


class TestFileUploads:

    def test_failed_file_does_not_stop_the_batch(self, run, gateway, full_draft):
        gateway.failing_files["xray.png"] = gateway_error(413, "File too large")

        result = run(SubmissionPipeline(gateway).submit(full_draft))

        assert result.files_written == 1
        assert result.uploaded_file_indexes == [1]
        assert len(result.file_failures) == 1
        failure = result.file_failures[0]
        assert failure.filename == "xray.png"
        assert failure.item_index == 0
        assert failure.message == "File too large"
        assert failure.code == "FILE_UPLOAD_FAILED"
        assert result.halted_at is None
        assert result.next_stage == SubmissionStage.UPLOAD_FILES
        assert not result.succeeded

    def test_file_failure_without_server_message(self, run, gateway, full_draft):
        gateway.failing_files["report.pdf"] = gateway_error(500)

        result = run(SubmissionPipeline(gateway).submit(full_draft))

        assert result.file_failures[0].message == "Failed to upload file 'report.pdf'"

    def test_retry_uploads_only_failed_files(self, run, gateway, full_draft):
        pipeline = SubmissionPipeline(gateway)
        gateway.failing_files["xray.png"] = gateway_error(413, "File too large")
        first = run(pipeline.submit(full_draft))

        gateway.failing_files.clear()
        gateway.calls.clear()
        second = run(pipeline.submit(full_draft, resume_from=first))

        assert gateway.method_names == ["upload_patient_file"]
        assert gateway.called("upload_patient_file")[0]["filename"] == "xray.png"
        assert second.files_written == 2
        assert sorted(second.uploaded_file_indexes) == [0, 1]
        assert second.succeeded

    def test_file_handles_are_rewound(self, run, gateway, empty_draft):

        class Handle:
            def __init__(self):
                self.position = 9

            def seek(self, offset):
                self.position = offset

        handle = Handle()
        draft = empty_draft.model_copy(update={"attachments": [PendingFile(filename="scan.png", content=handle)]})
        run(SubmissionPipeline(gateway).submit(draft))

        assert handle.position == 0

    def test_unreadable_file_does_not_stop_the_batch(self, run, gateway, empty_draft):
        closed = io.BytesIO(b"\x89PNG")
        closed.close()
        draft = empty_draft.model_copy(update={"attachments": [
            PendingFile(filename="bad.png", content=closed),
            PendingFile(filename="good.pdf", content=b"%PDF"),
        ]})

        result = run(SubmissionPipeline(gateway).submit(draft))

        assert [u["filename"] for u in gateway.called("upload_patient_file")] == ["good.pdf"]
        assert result.prescription_id == 101
        assert result.files_written == 1
        assert result.uploaded_file_indexes == [1]
        failure = result.file_failures[0]
        assert failure.filename == "bad.png"
        assert failure.item_index == 0
        assert failure.message == "Failed to upload file 'bad.png'"

    def test_client_side_error_is_a_file_failure(self, run, gateway, full_draft):
        gateway.failing_files["xray.png"] = RuntimeError("encoder blew up")

        result = run(SubmissionPipeline(gateway).submit(full_draft))

        assert result.files_written == 1
        assert [f.filename for f in result.file_failures] == ["xray.png"]
        assert result.next_stage == SubmissionStage.UPLOAD_FILES


class TestCancellation:

    def test_cancel_before_start(self, run, gateway, full_draft):
        token = CancellationToken()
        token.cancel()

        result = run(SubmissionPipeline(gateway).submit(full_draft, cancel_token=token))

        assert gateway.calls == []
        assert result.cancelled is True
        assert result.halted_at == SubmissionStage.CREATE_PRESCRIPTION

    def test_cancel_between_stages_then_resume(self, run, full_draft):
        token = CancellationToken()

        class CancellingGateway(FakeRecordGateway):
            async def add_prescription_medicines(self, medicines):
                await super().add_prescription_medicines(medicines)
                token.cancel()

        gateway = CancellingGateway()
        pipeline = SubmissionPipeline(gateway)
        result = run(pipeline.submit(full_draft, cancel_token=token))

        assert gateway.method_names == ["create_prescription", "add_prescription_medicines"]
        assert result.cancelled is True
        assert result.halted_at == SubmissionStage.WRITE_LAB_TESTS
        assert result.medicines_written is True

        resumed = run(pipeline.submit(full_draft, resume_from=result))

        assert gateway.method_names.count("create_prescription") == 1
        assert gateway.method_names.count("add_prescription_medicines") == 1
        assert resumed.cancelled is False
        assert resumed.succeeded

    def test_cancel_between_file_uploads(self, run, full_draft):
        token = CancellationToken()

        class CancellingGateway(FakeRecordGateway):
            async def upload_patient_file(self, **kwargs):
                response = await super().upload_patient_file(**kwargs)
                token.cancel()
                return response

        gateway = CancellingGateway()
        result = run(SubmissionPipeline(gateway).submit(full_draft, cancel_token=token))

        assert [u["filename"] for u in gateway.called("upload_patient_file")] == ["xray.png"]
        assert result.cancelled is True
        assert result.halted_at == SubmissionStage.UPLOAD_FILES
        assert result.uploaded_file_indexes == [0]


class TestHistoryAfterSave:

    def test_history_recorded_once_line_items_are_saved(self, run, gateway, full_draft):
        pipeline = SubmissionPipeline(gateway, history=HistoryBook(gateway))

        run(pipeline.submit(full_draft))

        added = [(c["category"], c["text"]) for c in gateway.called("add_history")]
        assert ("diagnosis", "صداع شديد") in added
        assert ("dosage", "500mg") in added
        assert ("dosage", "placeholder") not in added
        # history is written after imaging and before any file upload
        names = gateway.method_names
        assert names.index("add_prescription_imaging_studies") < names.index("add_history")
        assert names.index("add_history") < names.index("upload_patient_file")

    def test_no_history_when_a_stage_fails(self, run, gateway, full_draft):
        gateway.failures["add_prescription_medicines"] = gateway_error(500, "nope")
        pipeline = SubmissionPipeline(gateway, history=HistoryBook(gateway))

        with pytest.raises(MedicineWriteFailed):
            run(pipeline.submit(full_draft))

        assert gateway.called("add_history") == []

    def test_history_failure_does_not_fail_submission(self, run, gateway, full_draft):
        gateway.failures["add_history"] = gateway_error(500, "history down")
        pipeline = SubmissionPipeline(gateway, history=HistoryBook(gateway))

        result = run(pipeline.submit(full_draft))

        assert result.succeeded
        assert result.files_written == 2

    def test_file_retry_does_not_count_history_twice(self, run, gateway, full_draft):
        history = MagicMock()
        history.remember_encounter = AsyncMock()
        pipeline = SubmissionPipeline(gateway, history=history)
        gateway.failing_files["report.pdf"] = gateway_error(500, "disk full")

        first = run(pipeline.submit(full_draft))
        gateway.failing_files.clear()
        run(pipeline.submit(full_draft, resume_from=first))

        history.remember_encounter.assert_awaited_once()
        assert history.remember_encounter.await_args.args[0].visit_id == 31

    def test_unexpected_history_error_does_not_fail_submission(self, run, gateway, full_draft):
        gateway.failures["add_history"] = ValueError("Invalid history URL")
        pipeline = SubmissionPipeline(gateway, history=HistoryBook(gateway))

        result = run(pipeline.submit(full_draft))

        assert result.prescription_id == 101
        assert result.files_written == 2
        assert result.succeeded
