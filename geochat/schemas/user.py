# User / auth request and response schemas

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterUserBody(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=6, max_length=128)
    nickname: str = Field(..., min_length=2, max_length=24)


class TemporaryUserBody(BaseModel):
    nickname: Optional[str] = Field(default=None, min_length=2, max_length=24)


class LoginBody(BaseModel):
    user_id: str
    password: str


class NicknameBody(BaseModel):
    nickname: str = Field(..., min_length=2, max_length=24)


class PasswordBody(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class ResetPasswordBody(BaseModel):
    user_id: str
    reset_code: str
    new_password: str = Field(..., min_length=6, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    nickname: str
    is_temporary: bool
    created_at: Optional[datetime] = None


class TokenOut(BaseModel):
    """Login / registration / refresh response. recovery_code only on register and reset."""

    user_id: str
    nickname: str
    token: str
    expires_at: int
    is_temporary: bool = False
    recovery_code: Optional[str] = None
