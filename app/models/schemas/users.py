"""
Pydantic schemas for user-related operations.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from ..db.enums import UserRole

class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    role: UserRole = UserRole.BROKER

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Ana Souza",
            "email": "ana@corretora.com.br",
            "role": "BROKER"
        }
    })

class UserRead(BaseModel):
    id: int
    name: str
    email: str
    api_key: Optional[str]
    is_active: bool
    role: UserRole
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
