# clinic_records/main.py
from dotenv import load_dotenv

load_dotenv()

import logging
import logging.config
from dataclasses import dataclass
from typing import Optional

from clinic_records.gateway.base import RecordGateway
from clinic_records.gateway.http_gateway import HttpRecordGateway
from clinic_records.history.history_book import HistoryBook
from clinic_records.system_services.prescription_editor import PrescriptionEditor
from clinic_records.system_services.submission_pipeline import SubmissionPipeline
from config.appconfig import settings

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Apply logging configuration"""
    logging.config.dictConfig(settings.LOGGING_CONFIG)


@dataclass
class ClinicRecordsCore:
    """Everything the visit form needs, wired to one gateway."""
    gateway: RecordGateway
    pipeline: SubmissionPipeline
    editor: PrescriptionEditor
    history: HistoryBook

    async def aclose(self) -> None:
        self.history.cache.clear()
        await self.gateway.aclose()
        logger.info("👋 Record gateway closed")


def build_core(gateway: Optional[RecordGateway] = None) -> ClinicRecordsCore:
    """
    Wire the pipeline, editor and history stores.
    Tests pass their own gateway; otherwise the HTTP gateway is built from settings.
    """
    gateway = gateway or HttpRecordGateway()
    history = HistoryBook(gateway)
    pipeline = SubmissionPipeline(gateway, history=history)
    editor = PrescriptionEditor(gateway, pipeline=pipeline)

    logger.info(f"✅ Record Gateway: {settings.RECORD_GATEWAY_URL}")
    logger.info(f"✅ History Base URL: {settings.resolved_history_base_url}")
    logger.info(f"✅ History limit: {settings.HISTORY_LIST_LIMIT} / suggestions: {settings.SUGGESTION_LIMIT}")

    return ClinicRecordsCore(gateway=gateway, pipeline=pipeline, editor=editor, history=history)
