"""
Account (profile) record. id equals the identity-provider user id.
device_id is bound on the first student sign-in and changes only via admin reset.
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import validates

from app.db.base import Base


class AccountRole(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


def parse_role(value: str | None) -> AccountRole:
    """Closed set: unknown values are rejected, never defaulted."""
    try:
        return AccountRole(value)
    except ValueError:
        raise ValueError(f"Unknown account role: {value!r}") from None


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)  # stored lower-cased
    role = Column(String, nullable=False, default=AccountRole.STUDENT.value)
    device_id = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    full_name = Column(String, nullable=True)
    department = Column(String, nullable=True)
    semester = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @validates("role")
    def _validate_role(self, key: str, value) -> str:
        return parse_role(value.value if isinstance(value, AccountRole) else value).value

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    @property
    def account_role(self) -> AccountRole:
        return parse_role(self.role)

    @property
    def is_admin(self) -> bool:
        return self.account_role is AccountRole.ADMIN
