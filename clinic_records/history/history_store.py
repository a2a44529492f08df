# clinic_records/history/history_store.py

"""
History Store - previously used free text per form field
Feeds autocomplete for dosage, duration, diagnosis, notes and instructions.

History is a convenience: every failure here becomes a logged
HistoryOperationFailed and never reaches the clinical save path.
"""
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from clinic_records.gateway.base import RecordGateway
from clinic_records.shared.exceptions import GatewayError, HistoryOperationFailed
from clinic_records.shared.fuzzy_matcher import suggest as rank_suggestions
from clinic_records.shared.text_normalizer import normalize
from clinic_records.system_models.history_model.history_schemas import HistoryCategory, HistoryEntry
from config.appconfig import settings

logger = logging.getLogger(__name__)


class HistoryCache:
    """
    Read-through cache of ranked history text, keyed per category.
    No TTL: entries live until a write to the same category invalidates them.
    """

    def __init__(self):
        self._lists: Dict[HistoryCategory, List[str]] = {}

    def get(self, category: HistoryCategory) -> Optional[List[str]]:
        cached = self._lists.get(category)
        return list(cached) if cached is not None else None

    def put(self, category: HistoryCategory, texts: List[str]) -> None:
        self._lists[category] = list(texts)

    def invalidate(self, category: HistoryCategory) -> None:
        self._lists.pop(category, None)

    def clear(self) -> None:
        self._lists.clear()


class HistoryStore:
    """Ranked, deduplicated history for one field category."""

    def __init__(
        self,
        category: HistoryCategory,
        gateway: RecordGateway,
        cache: Optional[HistoryCache] = None,
        limit: Optional[int] = None,
    ):
        self.category = HistoryCategory(category)
        self.gateway = gateway
        self.cache = cache if cache is not None else HistoryCache()
        self.limit = limit or settings.HISTORY_LIST_LIMIT

    def _log_failure(self, operation: str, error: Exception) -> None:
        cause = error.message if isinstance(error, GatewayError) else f"{type(error).__name__}: {error}"
        failure = HistoryOperationFailed(
            self.category.value,
            operation,
            detail={"cause": cause, "status_code": getattr(error, "status_code", None)},
        )
        logger.warning(f"⚠️  {failure.message}: {cause}")

    # ========================================================================
    # READ
    # ========================================================================
    async def list(self) -> List[str]:
        """
        Ranked history text (most used, then most recent, first).

        The backend ranks; its order is kept as-is. Entries whose normalized
        text repeats an earlier one are dropped.
        """
        cached = self.cache.get(self.category)
        if cached is not None:
            return cached

        try:
            rows = await self.gateway.list_history(self.category.value, self.limit)
        except GatewayError as e:
            if e.is_not_found:
                rows = []
            else:
                self._log_failure("list", e)
                return []
        except Exception as e:
            self._log_failure("list", e)
            return []

        texts = []
        seen = set()
        for row in rows:
            try:
                entry = HistoryEntry.from_raw(row)
            except ValidationError:
                logger.debug(f"Skipping malformed '{self.category.value}' history row: {row!r}")
                continue
            key = normalize(entry.text)
            if not key or key in seen:
                continue
            seen.add(key)
            texts.append(entry.text)
            if len(texts) >= self.limit:
                break

        self.cache.put(self.category, texts)
        logger.debug(f"📋 Loaded {len(texts)} '{self.category.value}' history entries")
        return list(texts)

    async def suggest(self, query: str, limit: Optional[int] = None) -> List[str]:
        """Autocomplete suggestions for what the user has typed so far."""
        if not query or not query.strip():
            return []
        return rank_suggestions(query, await self.list(), limit or settings.SUGGESTION_LIMIT)

    # ========================================================================
    # WRITE
    # ========================================================================
    async def record(self, text: Optional[str]) -> None:
        """Remember a value the user saved; the backend increments repeat entries."""
        if not text or not text.strip():
            return

        try:
            await self.gateway.add_history(self.category.value, text.strip())
        except Exception as e:
            self._log_failure("record", e)
            return

        self.cache.invalidate(self.category)

    async def forget(self, text: Optional[str]) -> None:
        """Delete an entry the user removed from the suggestion list."""
        if not text or not text.strip():
            return

        try:
            await self.gateway.delete_history(self.category.value, text.strip())
        except Exception as e:
            self._log_failure("forget", e)
        finally:
            self.cache.invalidate(self.category)
