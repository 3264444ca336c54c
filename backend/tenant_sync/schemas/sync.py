"""
Pydantic schemas for sync operations
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConflictPayload(BaseModel):
    """Conflicting versions of one record as handed to the conflict resolver"""
    model_config = ConfigDict(extra="allow")

    source_table: str = "unknown"
    target_table: str = "unknown"
    global_record_id: Optional[str] = None
    tenant_record_id: Optional[int] = None
    global_data: Dict[str, Any] = Field(default_factory=dict)
    tenant_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('global_record_id', mode='before')
    @classmethod
    def coerce_global_record_id(cls, v: Union[str, int, None]) -> Optional[str]:
        if v is None:
            return None
        return str(v)


class FlaggedConflict(BaseModel):
    """Conflict recorded on a ledger entry for manual review"""
    conflict_type: str
    global_record_id: Optional[str] = None
    tenant_record_id: Optional[int] = None
    global_data: Dict[str, Any] = Field(default_factory=dict)
    tenant_data: Dict[str, Any] = Field(default_factory=dict)
    status: str = "pending_review"
