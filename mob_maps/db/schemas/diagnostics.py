# db/schemas/diagnostics.py
import uuid
from typing import Optional
from mob_maps.db.schemas._base import OrmModel

class OwnershipCheck(OrmModel):
    spot_id: uuid.UUID
    stored_owner_id: Optional[uuid.UUID] = None
    expected_owner_id: Optional[uuid.UUID] = None
    correct: bool
