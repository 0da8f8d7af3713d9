import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    dossier_id: Optional[uuid.UUID]
    name: str
    original_filename: str
    mime_type: str
    size_bytes: int
    description: Optional[str]
    category: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
