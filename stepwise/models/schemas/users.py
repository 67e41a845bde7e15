from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional


class UserBase(BaseModel):
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserRead(UserBase):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserLogin(BaseModel):
    email: EmailStr = Field(..., description="The email of the user")
    password: str = Field(..., description="The password of the user")


class UserRegister(BaseModel):
    email: EmailStr = Field(..., description="The email of the user")
    password: str = Field(..., min_length=6, description="The password of the user")
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class UserStatusUpdate(BaseModel):
    is_active: bool
