# db/schemas/audit_log.py
import uuid
from datetime import datetime
from typing import Any, Optional
from pydantic import Field
from mob_maps.db.schemas._base import OrmModel

class AuditLogBase(OrmModel):
    # action is "<service prefix>.<method>", with ".error" appended for failed calls
    actor_id: Optional[uuid.UUID] = None
    action: str = Field(max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)

class AuditLogCreate(AuditLogBase): ...
class AuditLogRead(AuditLogBase):
    id: uuid.UUID
    created_at: datetime
