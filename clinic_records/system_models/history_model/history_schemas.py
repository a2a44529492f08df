# clinic_records/system_models/history_model/history_schemas.py
from enum import Enum
from typing import Any, Optional
from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field


class HistoryCategory(str, Enum):
    DOSAGE = "dosage"
    DURATION = "duration"
    DIAGNOSIS = "diagnosis"
    NOTES = "notes"
    INSTRUCTION = "instruction"


class HistoryEntry(BaseModel):
    text: str
    use_count: Optional[int] = Field(default=1, validation_alias=AliasChoices("use_count", "usage_count"))
    last_used_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("last_used_at", "last_used")
    )

    @classmethod
    def from_raw(cls, raw: Any) -> "HistoryEntry":
        """Backends return either bare strings or `{text, usage_count, last_used}` rows."""
        if isinstance(raw, str):
            return cls(text=raw)
        return cls.model_validate(raw)
