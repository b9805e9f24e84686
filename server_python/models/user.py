from datetime import datetime
from typing import Optional
from uuid import UUID
from pydantic import BaseModel


class User(BaseModel):
    id: UUID
    name: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "User":
        return cls(id=record.id, name=record.name, created_at=record.created_at)
