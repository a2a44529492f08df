# clinic_records/history/history_book.py
"""
History Book - the five category stores sharing one gateway and one cache
"""
import logging
from typing import Dict, Optional

from clinic_records.gateway.base import RecordGateway
from clinic_records.history.history_store import HistoryCache, HistoryStore
from clinic_records.system_models.encounter_model.encounter_schemas import EncounterDraft
from clinic_records.system_models.history_model.history_schemas import HistoryCategory

logger = logging.getLogger(__name__)


class HistoryBook:

    def __init__(self, gateway: RecordGateway, cache: Optional[HistoryCache] = None, limit: Optional[int] = None):
        self.cache = cache if cache is not None else HistoryCache()
        self.stores: Dict[HistoryCategory, HistoryStore] = {
            category: HistoryStore(category, gateway, cache=self.cache, limit=limit)
            for category in HistoryCategory
        }

    def store(self, category) -> HistoryStore:
        return self.stores[HistoryCategory(category)]

    async def remember_encounter(self, draft: EncounterDraft) -> None:
        """
        Record the free text of a saved encounter.
        Placeholder medicine rows were never submitted, so their text is not kept.
        """
        await self.store(HistoryCategory.DIAGNOSIS).record(draft.diagnosis)
        await self.store(HistoryCategory.NOTES).record(draft.notes)

        for line in draft.submittable_medicines:
            await self.store(HistoryCategory.DOSAGE).record(line.dosage)
            await self.store(HistoryCategory.DURATION).record(line.duration)
            await self.store(HistoryCategory.INSTRUCTION).record(line.instructions)

        logger.info(f"📝 History updated for visit {draft.visit_id}")
