from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.account import AccountRole


class AccountProfile(BaseModel):
    """Profile as seen by the rest of the app (persisted row or synthesized fallback)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    role: AccountRole
    full_name: str | None = None
    department: str | None = None
    semester: str | None = None
    verified_at: datetime | None = None
    device_bound: bool = False
    persisted: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role is AccountRole.ADMIN


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignInResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile: AccountProfile


class AccountAdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    role: str
    full_name: str | None = None
    department: str | None = None
    semester: str | None = None
    device_id: str | None = None
    verified_at: datetime | None = None
    created_at: datetime | None = None
